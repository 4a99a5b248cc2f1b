"""
Run result domain objects for idlsync.

Provides the values produced while aggregating: collisions, the
provenance record written as meta.json, and the report returned by a
bootstrap run.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, List, Optional

from .source import ExtractedFile

PROVENANCE_VERSION = 1
META_FILENAME = "meta.json"


class CollisionPolicy(Enum):
    """Which contender wins a contested public name.

    Contenders are ordered by (source name, original path), so the outcome
    never depends on fetch order.
    """
    FIRST = "first"  # lexically smallest source wins
    LAST = "last"    # lexically largest source wins


class RunStage(Enum):
    """Stages of a bootstrap run."""
    INIT = "init"
    CACHE_READY = "cache_ready"
    EXTRACTED = "extracted"
    AGGREGATED = "aggregated"
    PUBLISHED = "published"
    FAILED = "failed"


@dataclass
class SourceError:
    """A per-source failure; the source is excluded from this run."""
    source: str
    stage: str  # "cache" or "extract"
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source': self.source,
            'stage': self.stage,
            'error': self.error,
        }


@dataclass(frozen=True)
class Contender:
    """One contribution to a contested public name."""
    source: str
    commit: str
    original_path: str
    content: bytes = field(repr=False)

    @classmethod
    def of(cls, extracted: ExtractedFile) -> 'Contender':
        return cls(
            source=extracted.source_name,
            commit=extracted.commit,
            original_path=extracted.original_path,
            content=extracted.content,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source': self.source,
            'commit': self.commit,
            'original_path': self.original_path,
            'size': len(self.content),
        }


@dataclass
class Collision:
    """Two or more contributions derived the same public name."""
    public_name: str
    winner: str
    contenders: List[Contender] = field(default_factory=list)

    @property
    def identical(self) -> bool:
        """True if every contender carries the same bytes."""
        return len({c.content for c in self.contenders}) <= 1

    @property
    def sources(self) -> List[str]:
        return [c.source for c in self.contenders]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'public_name': self.public_name,
            'winner': self.winner,
            'identical': self.identical,
            'contenders': [c.to_dict() for c in self.contenders],
        }


@dataclass
class ProvenanceEntry:
    """What one source contributed to a publish."""
    repository: str
    branch: str
    commit: str
    files: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'repository': self.repository,
            'branch': self.branch,
            'commit': self.commit,
            'files': sorted(self.files),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProvenanceEntry':
        return cls(
            repository=str(data.get('repository', '')),
            branch=str(data.get('branch', '')),
            commit=str(data.get('commit', '')),
            files=[str(f) for f in data.get('files', [])],
        )


@dataclass
class StaleEntry:
    """A source that failed this run; its last published state, flagged."""
    commit: Optional[str]
    files: List[str] = field(default_factory=list)
    error: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'commit': self.commit,
            'files': sorted(self.files),
            'error': self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StaleEntry':
        return cls(
            commit=data.get('commit'),
            files=[str(f) for f in data.get('files', [])],
            error=str(data.get('error', '')),
        )


@dataclass
class ProvenanceRecord:
    """
    The meta.json document: which source and commit produced which file.

    ``remotes`` lists only sources processed successfully in the run.
    ``stale`` flags sources that are still configured but failed this run,
    carrying the commit and files they had in the previous publish.
    """
    remotes: Dict[str, ProvenanceEntry] = field(default_factory=dict)
    stale: Dict[str, StaleEntry] = field(default_factory=dict)
    version: int = PROVENANCE_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            'version': self.version,
            'remotes': {name: entry.to_dict() for name, entry in sorted(self.remotes.items())},
            'stale': {name: entry.to_dict() for name, entry in sorted(self.stale.items())},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProvenanceRecord':
        remotes = data.get('remotes') or {}
        stale = data.get('stale') or {}
        return cls(
            remotes={
                str(name): ProvenanceEntry.from_dict(entry)
                for name, entry in remotes.items() if isinstance(entry, dict)
            },
            stale={
                str(name): StaleEntry.from_dict(entry)
                for name, entry in stale.items() if isinstance(entry, dict)
            },
            version=int(data.get('version', PROVENANCE_VERSION)),
        )

    def last_known(self, name: str) -> Optional[StaleEntry]:
        """Previous state of ``name``, whether it was fresh or already stale."""
        if name in self.remotes:
            entry = self.remotes[name]
            return StaleEntry(commit=entry.commit, files=list(entry.files))
        if name in self.stale:
            entry = self.stale[name]
            return StaleEntry(commit=entry.commit, files=list(entry.files))
        return None


@dataclass
class AggregationResult:
    """
    Merged view of every extraction in a run.

    Each public name maps to exactly one file; contested names are listed
    in ``collisions`` with every contender.
    """
    files: Dict[str, ExtractedFile] = field(default_factory=dict)
    collisions: List[Collision] = field(default_factory=list)
    provenance: ProvenanceRecord = field(default_factory=ProvenanceRecord)

    @property
    def has_collisions(self) -> bool:
        return bool(self.collisions)


@dataclass
class PublishOutcome:
    """What the publisher did with an aggregation."""
    commit: Optional[str]
    committed: bool = False
    pushed: bool = False


@dataclass
class RunReport:
    """
    Outcome of a bootstrap run.

    Collects per-source errors and collisions instead of raising them, so
    the caller gets one success/failure signal plus the detail to log or
    alert on.
    """
    stage: RunStage = RunStage.INIT
    failed_stage: Optional[RunStage] = None
    error: Optional[str] = None
    source_errors: List[SourceError] = field(default_factory=list)
    collisions: List[Collision] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)
    files: List[str] = field(default_factory=list)
    contributions: Dict[str, List[str]] = field(default_factory=dict)
    commit: Optional[str] = None
    committed: bool = False
    pushed: bool = False
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    @property
    def success(self) -> bool:
        """True if the run reached PUBLISHED."""
        return self.stage == RunStage.PUBLISHED

    @property
    def partial(self) -> bool:
        """True if the run published but some sources were excluded."""
        return self.success and bool(self.source_errors)

    def fail(self, stage: RunStage, error: str) -> None:
        self.failed_stage = stage
        self.error = error
        self.stage = RunStage.FAILED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            'type': 'bootstrap',
            'success': self.success,
            'stage': self.stage.value,
            'sources': self.sources,
            'files': self.files,
            'contributions': self.contributions,
            'commit': self.commit,
            'committed': self.committed,
            'pushed': self.pushed,
            'source_errors': [e.to_dict() for e in self.source_errors],
            'collisions': [c.to_dict() for c in self.collisions],
            'started_at': self.started_at,
            'finished_at': self.finished_at,
        }
        if self.failed_stage:
            result['failed_stage'] = self.failed_stage.value
        if self.error:
            result['error'] = self.error
        return result
