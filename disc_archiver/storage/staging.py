"""Staged image files.

A copy is written to a hidden temporary file in the output directory and
only gets its final name when the operator has chosen one. Keeping the
staged file in the same directory as the target makes the commit a single
atomic rename.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import BinaryIO

STAGED_PREFIX = ".disc-archiver-"
STAGED_SUFFIX = ".part"
IMAGE_MODE = 0o644


class StagedImage:
    """A temporary image file owned by one copy in progress."""

    def __init__(self, path: Path, file: BinaryIO) -> None:
        self.path = path
        self.file = file
        self.committed_to: Path | None = None
        self.discarded = False

    @classmethod
    def create(cls, directory: str | Path) -> "StagedImage":
        """Create an empty staged file in ``directory``.

        Raises:
            OSError: The file could not be created.
        """
        fd, name = tempfile.mkstemp(
            prefix=STAGED_PREFIX, suffix=STAGED_SUFFIX, dir=str(directory)
        )
        return cls(Path(name), os.fdopen(fd, "wb"))

    @property
    def finished(self) -> bool:
        return self.committed_to is not None or self.discarded

    def commit(self, target: str | Path) -> Path:
        """Flush, close and atomically rename the staged file to ``target``.

        An existing ``target`` is replaced.

        Raises:
            RuntimeError: The image was already committed or discarded.
            OSError: Flushing or renaming failed; the staged file is left
                in place for :meth:`discard`.
        """
        if self.finished:
            raise RuntimeError(f"Staged image {self.path} is already finished")
        target = Path(target)
        if not self.file.closed:
            self.file.flush()
            os.fsync(self.file.fileno())
            self.file.close()
        os.chmod(self.path, IMAGE_MODE)
        os.replace(self.path, target)
        self.committed_to = target
        return target

    def discard(self) -> None:
        """Close and delete the staged file. Safe to call more than once."""
        if self.finished:
            return
        try:
            if not self.file.closed:
                self.file.close()
        finally:
            self.path.unlink(missing_ok=True)
            self.discarded = True
