"""
File store infrastructure for idlsync.

Provides JSON document persistence with:
- Atomic writes (write to temp, then rename)
- Stable formatting (sorted keys, fixed indent) so unchanged data
  produces byte-identical files
- Thread-safe operations
"""

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Optional
import logging

logger = logging.getLogger(__name__)


class FileStore:
    """
    JSON file persistence with atomic writes.

    Example:
        store = FileStore(Path("repository/meta.json"))
        store.write({"version": 1, "remotes": {}})
        data = store.read()
    """

    def __init__(self, path: Path, indent: int = 4, sort_keys: bool = True):
        """
        Initialize FileStore.

        Args:
            path: Path to JSON file
            indent: Indentation used when writing
            sort_keys: Write keys in sorted order
        """
        self.path = Path(path).expanduser()
        self.indent = indent
        self.sort_keys = sort_keys
        self._lock = threading.Lock()
        self._cache: Optional[Dict[str, Any]] = None

    def exists(self) -> bool:
        return self.path.exists()

    def dumps(self, data: Dict[str, Any]) -> str:
        """Serialise ``data`` exactly as it would be written to disk."""
        return json.dumps(
            data, indent=self.indent, sort_keys=self.sort_keys, ensure_ascii=False
        ) + '\n'

    def _write_atomic(self, data: Dict[str, Any]) -> None:
        """Write data atomically using temp file and rename."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        # Write to temp file in same directory
        fd, temp_path = tempfile.mkstemp(
            dir=self.path.parent,
            prefix=f".{self.path.name}.",
            suffix=".tmp"
        )

        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(self.dumps(data))

            # Atomic rename
            os.replace(temp_path, self.path)

        except Exception:
            # Clean up temp file on error
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise

    def read(self) -> Dict[str, Any]:
        """
        Read entire store.

        A missing or unreadable file reads as an empty dict.
        """
        with self._lock:
            if self._cache is not None:
                return self._cache.copy()

            try:
                if self.path.exists():
                    with open(self.path, 'r', encoding='utf-8') as f:
                        loaded = json.load(f)
                    if isinstance(loaded, dict):
                        self._cache = loaded
                        return self._cache.copy()
                    logger.warning(f"Ignoring {self.path}: top level is not an object")
            except (json.JSONDecodeError, IOError) as e:
                logger.warning(f"Error reading {self.path}: {e}")

            self._cache = {}
            return {}

    def write(self, data: Dict[str, Any]) -> None:
        """
        Write entire store.

        Args:
            data: Dictionary to write
        """
        with self._lock:
            self._write_atomic(data)
            self._cache = data.copy()

    def invalidate_cache(self) -> None:
        """Invalidate in-memory cache, forcing next read from disk."""
        with self._lock:
            self._cache = None
