"""Destinations for rendered artifacts."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from .errors import EmptyArtifactError

logger = logging.getLogger(__name__)


class Sink(Protocol):
    def save(self, filename: str, content: bytes) -> str:
        """Deliver *content* under *filename* and return where it went."""


class DirectorySink:
    """Write artifacts into a directory, creating it on first use."""

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    def save(self, filename: str, content: bytes) -> str:
        if not content:
            raise EmptyArtifactError(f"Refusing to write empty artifact {filename}")
        self._directory.mkdir(parents=True, exist_ok=True)
        # Never let a filename escape the export directory.
        target = self._directory / Path(filename).name
        target.write_bytes(content)
        logger.info("Wrote %s (%d bytes)", target, len(content))
        return str(target)


class MemorySink:
    """Keep artifacts in a dict keyed by filename."""

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}

    def save(self, filename: str, content: bytes) -> str:
        if not content:
            raise EmptyArtifactError(f"Refusing to store empty artifact {filename}")
        self.files[filename] = content
        return filename
