"""
Infrastructure layer for idlsync.

Contains abstractions for external systems:
- GitClient: Git command execution
- FileStore: JSON document persistence (meta.json)

These provide clean interfaces that can be mocked for testing.
"""

from .git_client import GitClient, GitCommandError, GitTimeoutError
from .file_store import FileStore

__all__ = [
    'GitClient',
    'GitCommandError',
    'GitTimeoutError',
    'FileStore',
]
