"""
File extraction service for idlsync.

Reads a source's IDL directory from its cached working copy and names
each file with the configured strategy. File content is treated as
opaque bytes.
"""

import logging
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from ..domain.naming import FileNameStrategy
from ..domain.source import (
    RemoteSource,
    CachedWorkingCopy,
    ExtractedFile,
    SourceExtraction,
)

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = (".thrift",)


class FileExtractor:
    """
    Extracts IDL files from working copies.

    Example:
        extractor = FileExtractor(FileNameStrategy.SOURCE_NAME)
        extraction = extractor.extract(source, working_copy)
        for f in extraction.files:
            print(f.public_name, len(f.content))
    """

    def __init__(
        self,
        strategy: FileNameStrategy = FileNameStrategy.SOURCE_NAME,
        extensions: Optional[Iterable[str]] = None
    ):
        self.strategy = strategy
        self.extensions = frozenset(e.lower() for e in (extensions or DEFAULT_EXTENSIONS))

    def extract(self, source: RemoteSource, working_copy: CachedWorkingCopy) -> SourceExtraction:
        """
        Extract the IDL files of one source.

        A missing IDL directory is not an error: the source contributes
        no files.

        Raises:
            OSError: If a file exists but cannot be read
        """
        idl_dir = Path(working_copy.path) / source.idl_directory

        if not idl_dir.is_dir():
            logger.info(f"{source.name}: no '{source.idl_directory}' directory, nothing to extract")
            return SourceExtraction(source=source, commit=working_copy.commit)

        files: List[ExtractedFile] = []
        for path in self._candidates(idl_dir, source.recursive):
            original_path = path.relative_to(idl_dir).as_posix()
            files.append(ExtractedFile(
                public_name=self.strategy.public_name(source.name, original_path),
                content=path.read_bytes(),
                source_name=source.name,
                commit=working_copy.commit,
                original_path=original_path,
            ))

        logger.debug(f"{source.name}: extracted {len(files)} file(s) at {working_copy.commit[:12]}")
        return SourceExtraction(source=source, commit=working_copy.commit, files=tuple(files))

    def _candidates(self, idl_dir: Path, recursive: bool) -> Iterator[Path]:
        """IDL files under ``idl_dir`` in a stable order, skipping hidden entries."""
        entries = idl_dir.rglob('*') if recursive else idl_dir.iterdir()
        for path in sorted(entries):
            relative = path.relative_to(idl_dir)
            if any(part.startswith('.') for part in relative.parts):
                continue
            if not path.is_file():
                continue
            if path.suffix.lower() in self.extensions:
                yield path
