"""
idlsync - Aggregate IDL files from many git repositories into one registry.

Each contributing repository owns IDL files (e.g. Thrift) on a branch.
idlsync keeps a cached checkout of every source, extracts and renames the
files deterministically, reports naming collisions, and commits the merged
tree plus a meta.json provenance record to a working repository that is
pushed upstream.

Quick Start:
    import idlsync

    report = idlsync.bootstrap(config_path="idlsync.json")
    if not report.success:
        print(report.failed_stage, report.error)

    for error in report.source_errors:
        print(error.source, error.error)

Published layout:
    idl/<public name>    one file per aggregated IDL file
    meta.json            per source: repository, branch, commit, files
"""

__version__ = "0.3.0"

# High-level API
from .api import IdlSync, bootstrap

# Domain objects
from .domain import (
    RemoteSource,
    ExtractedFile,
    FileNameStrategy,
    CollisionPolicy,
    Collision,
    ProvenanceRecord,
    AggregationResult,
    RunReport,
    RunStage,
)

# Services (for advanced use)
from .services import (
    RemoteCache,
    FileExtractor,
    Aggregator,
    Publisher,
    BootstrapService,
)

# Configuration
from .config import load_config, load_settings, build_settings, SyncSettings

__all__ = [
    # Version
    "__version__",
    # High-level API
    "IdlSync",
    "bootstrap",
    # Domain objects
    "RemoteSource",
    "ExtractedFile",
    "FileNameStrategy",
    "CollisionPolicy",
    "Collision",
    "ProvenanceRecord",
    "AggregationResult",
    "RunReport",
    "RunStage",
    # Services
    "RemoteCache",
    "FileExtractor",
    "Aggregator",
    "Publisher",
    "BootstrapService",
    # Configuration
    "load_config",
    "load_settings",
    "build_settings",
    "SyncSettings",
]
