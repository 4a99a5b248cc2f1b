"""
Domain layer for idlsync.

Contains pure domain objects with no I/O or side effects:
- RemoteSource: A contributing repository, branch and IDL directory
- ExtractedFile: One IDL file under its public name
- FileNameStrategy: Closed set of naming strategies
- ProvenanceRecord: The meta.json audit trail
- RunReport: Outcome of a bootstrap run
"""

from .source import (
    RemoteSource,
    CachedWorkingCopy,
    ExtractedFile,
    SourceExtraction,
    name_from_repository,
)
from .naming import FileNameStrategy
from .result import (
    CollisionPolicy,
    RunStage,
    SourceError,
    Contender,
    Collision,
    ProvenanceEntry,
    StaleEntry,
    ProvenanceRecord,
    AggregationResult,
    PublishOutcome,
    RunReport,
)

__all__ = [
    'RemoteSource',
    'CachedWorkingCopy',
    'ExtractedFile',
    'SourceExtraction',
    'name_from_repository',
    'FileNameStrategy',
    'CollisionPolicy',
    'RunStage',
    'SourceError',
    'Contender',
    'Collision',
    'ProvenanceEntry',
    'StaleEntry',
    'ProvenanceRecord',
    'AggregationResult',
    'PublishOutcome',
    'RunReport',
]
