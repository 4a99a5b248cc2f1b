"""
Source domain objects for idlsync.

A RemoteSource is one contributing repository: where it lives, which branch
is tracked, and where its IDL files sit. Extraction turns a refreshed
working copy of a source into ExtractedFile values.

These are immutable value objects; nothing here touches the filesystem.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Tuple
from urllib.parse import urlparse


DEFAULT_BRANCH = "master"
DEFAULT_IDL_DIRECTORY = "idl"


def name_from_repository(repository: str) -> str:
    """
    Derive a source name from the last path segment of a repository URI.

    Examples:
        "file:///srv/remotes/A"                  -> "A"
        "git@github.com:org/service-idl.git"     -> "service-idl"
        "https://example.com/org/foo.git/"       -> "foo"
    """
    uri = repository.strip().replace("\\", "/")
    parsed = urlparse(uri)
    if parsed.scheme and len(parsed.scheme) > 1:
        path = parsed.path
    elif ":" in uri and not uri.startswith("/") and len(uri.split(":", 1)[0]) > 1:
        # scp-like "git@host:org/repo.git"
        path = uri.split(":", 1)[1]
    else:
        path = uri
    segment = path.rstrip('/').rsplit('/', 1)[-1]
    if segment.endswith('.git'):
        segment = segment[:-4]
    return segment


@dataclass(frozen=True)
class RemoteSource:
    """A configured contributing repository."""
    name: str
    repository: str
    branch: str = DEFAULT_BRANCH
    idl_directory: str = DEFAULT_IDL_DIRECTORY
    recursive: bool = False

    @classmethod
    def from_config(cls, entry: Dict[str, Any], default_idl_directory: str = DEFAULT_IDL_DIRECTORY) -> 'RemoteSource':
        """
        Build a source from one ``remotes`` entry of the configuration.

        Accepts the original camelCase keys (``idlDirectory``) as well as
        snake_case ones.
        """
        repository = str(entry['repository'])
        name = entry.get('name') or name_from_repository(repository)
        idl_directory = (
            entry.get('idlDirectory')
            or entry.get('idl_directory')
            or default_idl_directory
        )
        return cls(
            name=str(name),
            repository=repository,
            branch=str(entry.get('branch') or DEFAULT_BRANCH),
            idl_directory=str(idl_directory).strip('/') or '.',
            recursive=bool(entry.get('recursive', False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'repository': self.repository,
            'branch': self.branch,
            'idl_directory': self.idl_directory,
            'recursive': self.recursive,
        }


@dataclass(frozen=True)
class CachedWorkingCopy:
    """A refreshed local checkout of one source, pinned to its branch tip."""
    source: RemoteSource
    path: Path
    commit: str
    recloned: bool = False


@dataclass(frozen=True)
class ExtractedFile:
    """One IDL file taken from a source, under its public name."""
    public_name: str
    content: bytes = field(repr=False)
    source_name: str = ""
    commit: str = ""
    original_path: str = ""

    def sort_key(self) -> Tuple[str, str]:
        return (self.source_name, self.original_path)


@dataclass(frozen=True)
class SourceExtraction:
    """Everything extracted from one source during a run."""
    source: RemoteSource
    commit: str
    files: Tuple[ExtractedFile, ...] = ()

    @property
    def name(self) -> str:
        return self.source.name

