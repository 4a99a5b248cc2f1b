"""
Remote cache service for idlsync.

Keeps one local working copy per configured source under a cache
directory, so repeated runs fetch incrementally instead of re-cloning.

Each source's directory is single-writer: ensure() calls for the same
source are serialised by a per-source lock, while distinct sources may be
refreshed concurrently.
"""

import logging
import shutil
import threading
from pathlib import Path
from typing import Dict, List, Optional

from ..domain.source import RemoteSource, CachedWorkingCopy
from ..infra.git_client import GitClient, GitCommandError

logger = logging.getLogger(__name__)

# One writer per cached copy in this process, shared by every RemoteCache
# pointing at the same directory.
_entry_locks: Dict[str, threading.Lock] = {}
_entry_locks_guard = threading.Lock()


class RemoteCache:
    """
    Local store of one checked-out working copy per source.

    Example:
        cache = RemoteCache(Path("~/.idlsync/remote-cache"), GitClient())
        cache.init()
        copy = cache.ensure(source)
        print(copy.path, copy.commit)
    """

    def __init__(self, root: Path, git_client: Optional[GitClient] = None):
        """
        Initialize RemoteCache.

        Args:
            root: Cache directory (created by init())
            git_client: GitClient instance (creates new if None)
        """
        self.root = Path(root).expanduser()
        self.git = git_client or GitClient()

    def init(self) -> None:
        """Create the cache directory on first use."""
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, source: RemoteSource) -> Path:
        return self.root / source.name

    def _lock_for(self, name: str) -> threading.Lock:
        key = str((self.root / name).resolve())
        with _entry_locks_guard:
            if key not in _entry_locks:
                _entry_locks[key] = threading.Lock()
            return _entry_locks[key]

    def entries(self) -> List[str]:
        """Names of sources that currently have a cached copy."""
        if not self.root.is_dir():
            return []
        return sorted(
            p.name for p in self.root.iterdir()
            if p.is_dir() and not p.name.startswith('.')
        )

    def ensure(self, source: RemoteSource) -> CachedWorkingCopy:
        """
        Bring the source's working copy to its remote branch tip.

        Clones on first use. An existing copy is fetched and force-checked
        out at ``origin/<branch>``; if it is not a valid repository, points
        at a different remote, or cannot be refreshed after a successful
        fetch, it is discarded and cloned again.

        Raises:
            GitCommandError: If the remote cannot be cloned or fetched
        """
        with self._lock_for(source.name):
            path = self.path_for(source)

            if path.exists() and not self._is_usable(source, path):
                logger.warning(f"Cache for {source.name} is corrupted or stale; re-cloning")
                self._remove(path)

            if not path.exists():
                return self._clone(source, path)

            logger.info(f"Fetching {source.name} ({source.branch})")
            # A fetch failure is most likely the network or the remote:
            # keep the cached copy for the next run and report the error.
            self.git.fetch(path, "origin", source.branch)

            try:
                self._refresh(source, path)
            except GitCommandError as e:
                logger.warning(f"Refreshing {source.name} failed ({e}); re-cloning")
                self._remove(path)
                return self._clone(source, path)

            commit = self.git.head_commit(path)
            if commit is None:
                raise GitCommandError(["rev-parse", "HEAD"], path, -1,
                                      stderr=f"branch {source.branch} has no commits")
            return CachedWorkingCopy(source=source, path=path, commit=commit)

    def invalidate(self, name: Optional[str] = None) -> List[str]:
        """
        Remove one source's cached copy, or the whole cache.

        Returns:
            Names of removed entries
        """
        if name is not None:
            path = self.root / name
            if not path.exists():
                return []
            with self._lock_for(name):
                self._remove(path)
            return [name]

        removed = self.entries()
        for entry in removed:
            with self._lock_for(entry):
                self._remove(self.root / entry)
        # leftover temporary clones from interrupted runs
        if self.root.is_dir():
            for leftover in self.root.glob('.*.tmp'):
                self._remove(leftover)
        return removed

    # ------------------------------------------------------------------
    # Helpers

    def _is_usable(self, source: RemoteSource, path: Path) -> bool:
        if not self.git.is_git_repo(path):
            return False
        return self.git.remote_url(path, "origin") == source.repository

    def _refresh(self, source: RemoteSource, path: Path) -> None:
        self.git.checkout_branch(path, source.branch, f"origin/{source.branch}")
        self.git.clean(path)

    def _clone(self, source: RemoteSource, path: Path) -> CachedWorkingCopy:
        """Clone into a temporary sibling, then move it into place."""
        self.init()
        temp = self.root / f".{source.name}.tmp"
        if temp.exists():
            self._remove(temp)

        logger.info(f"Cloning {source.name} from {source.repository} ({source.branch})")
        try:
            self.git.clone(source.repository, temp, branch=source.branch)
            commit = self.git.head_commit(temp)
            if commit is None:
                raise GitCommandError(["rev-parse", "HEAD"], temp, -1,
                                      stderr=f"branch {source.branch} has no commits")
            temp.rename(path)
        except Exception:
            self._remove(temp)
            raise

        return CachedWorkingCopy(source=source, path=path, commit=commit, recloned=True)

    @staticmethod
    def _remove(path: Path) -> None:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            path.unlink()
