"""
File naming strategies for idlsync.

A naming strategy decides the public path of an IDL file inside the
published tree. Strategies form a closed set; each is a pure function of
(source name, path relative to the source's IDL directory).

    Strategy       Config value(s)             A + sub/service.thrift
    -----------    ------------------------    ----------------------
    SOURCE_NAME    sourceName, lastSegment     A.thrift
    FILE_NAME      fileName                    service.thrift
    SOURCE_PATH    sourcePath, fullPath        A/sub/service.thrift

``lastSegment`` is the historical config value: it names the file after the
last segment of the remote's repository URL, which is the source name.
"""

from enum import Enum
from pathlib import PurePosixPath

from ..exit_codes import ConfigError


class FileNameStrategy(Enum):
    """How an extracted file is named in the published tree."""
    SOURCE_NAME = "sourceName"
    FILE_NAME = "fileName"
    SOURCE_PATH = "sourcePath"

    @classmethod
    def from_config(cls, value: str) -> 'FileNameStrategy':
        """
        Parse a configuration value (case-insensitive, legacy aliases allowed).

        Raises:
            ConfigError: For an unknown strategy name
        """
        key = str(value).strip().lower()
        for member in cls:
            if member.value.lower() == key or member.name.lower() == key:
                return member
        if key in _ALIASES:
            return _ALIASES[key]
        choices = ', '.join(sorted({m.value for m in cls} | set(_ALIASES)))
        raise ConfigError(f"Unknown fileNameStrategy '{value}' (expected one of: {choices})")

    def public_name(self, source_name: str, original_path: str) -> str:
        """
        Map a source's file to its public path (POSIX, relative).

        Args:
            source_name: Name of the contributing source
            original_path: POSIX path relative to the source's IDL directory
        """
        original = PurePosixPath(original_path)

        if self is FileNameStrategy.SOURCE_NAME:
            return f"{source_name}{original.suffix}"
        if self is FileNameStrategy.FILE_NAME:
            return original.name
        if self is FileNameStrategy.SOURCE_PATH:
            return str(PurePosixPath(source_name) / original)

        raise AssertionError(f"unhandled strategy {self!r}")


_ALIASES = {
    'lastsegment': FileNameStrategy.SOURCE_NAME,
    'fullpath': FileNameStrategy.SOURCE_PATH,
}
