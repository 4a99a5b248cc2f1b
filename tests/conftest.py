"""
Shared fixtures for idlsync tests.

Integration fixtures drive a real git binary against repositories under
tmp_path; tests using them are skipped when git is not installed.
"""

import logging
import shutil
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Optional

import pytest

from idlsync.infra.git_client import GitClient

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


@pytest.fixture(autouse=True)
def reset_idlsync_logger():
    """configure_logging() binds a handler to the current stderr; undo it after each test."""
    logger = logging.getLogger("idlsync")
    yield
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def git_client():
    """GitClient with a fixed test identity."""
    return GitClient(timeout=60, user_name="idlsync-test", user_email="test@example.com")


class RemoteFactory:
    """Creates and updates throwaway source repositories for integration tests."""

    def __init__(self, root: Path, git: GitClient):
        self.root = root
        self.git = git

    def path(self, name: str) -> Path:
        return self.root / name

    def commit(self, name: str, files: Dict[str, Optional[str]], branch: str = "master") -> str:
        """
        Write ``files`` into the repository and commit them.

        A value of None deletes the file. Returns the new commit SHA.
        """
        path = self.path(name)
        if not path.exists():
            self.git.init(path, branch=branch)
        for relative, content in files.items():
            target = path / relative
            if content is None:
                target.unlink()
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
        self.git.add_all(path)
        return self.git.commit(path, f"Update {name}", allow_empty=True)


@pytest.fixture
def remotes(tmp_path, git_client):
    return RemoteFactory(tmp_path / "remotes", git_client)


@pytest.fixture
def upstream(tmp_path, git_client):
    """An empty bare repository playing the upstream registry."""
    path = tmp_path / "upstream.git"
    path.mkdir()
    git_client.run(["init", "--bare"], cwd=path)
    return path


def show(git: GitClient, repo: Path, revision: str) -> str:
    """``git show <revision>`` in ``repo``."""
    out, _ = git.run(["show", revision], cwd=repo)
    return out


def tree(git: GitClient, repo: Path, ref: str = "master"):
    """Sorted file list of ``ref`` in ``repo``."""
    out, _ = git.run(["ls-tree", "-r", "--name-only", ref], cwd=repo)
    return sorted(line for line in out.splitlines() if line)


class ConcurrencyMeter:
    """
    Counts overlapping calls of wrapped side effects.

    ``peak`` is the largest number of wrapped calls seen in flight at once.
    A ``barrier`` makes that many callers wait for each other, so overlap
    is guaranteed rather than left to timing.
    """

    def __init__(self, delay: float = 0.05, barrier: Optional[int] = None):
        self.delay = delay
        self.barrier = threading.Barrier(barrier, timeout=5) if barrier else None
        self.active = 0
        self.peak = 0
        self._guard = threading.Lock()

    def wrap(self, func: Optional[Callable] = None) -> Callable:
        def call(*args, **kwargs):
            with self._guard:
                self.active += 1
                self.peak = max(self.peak, self.active)
            try:
                if self.barrier:
                    self.barrier.wait()
                else:
                    time.sleep(self.delay)
                return func(*args, **kwargs) if func else None
            finally:
                with self._guard:
                    self.active -= 1
        return call
