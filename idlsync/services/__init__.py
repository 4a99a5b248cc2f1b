"""
Service layer for idlsync.

Contains the engine that orchestrates domain objects and infrastructure:
- RemoteCache: One refreshed working copy per source
- FileExtractor: IDL files of a working copy, under their public names
- Aggregator: Collision-aware merge plus provenance
- Publisher: Commit and push of the aggregated tree
- BootstrapService: A full sync run

Services are the primary API for commands to use.
"""

from .remote_cache import RemoteCache
from .extractor import FileExtractor
from .aggregator import Aggregator
from .publisher import Publisher
from .bootstrap_service import BootstrapService, RunCancelled

__all__ = [
    'RemoteCache',
    'FileExtractor',
    'Aggregator',
    'Publisher',
    'BootstrapService',
    'RunCancelled',
]
