"""Domain model for disc archiving.

Type-safe value objects shared by the parsers, the lifecycle engine and the
operator surface.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


PROGRESS_SCALE = 1000


# ==============================================================================
# Drive State Domain
# ==============================================================================


class DriveState(Enum):
    """Lifecycle state of a single drive."""

    SETUP = "setup"
    NO_DISC = "no_disc"
    COPYING = "copying"
    WAITING_FOR_NAME = "waiting_for_name"
    CONFIRMING_NAME = "confirming_name"
    SAVING = "saving"
    DONE = "done"
    COPY_READ_ERROR = "copy_read_error"
    COPY_WRITE_ERROR = "copy_write_error"

    @property
    def is_error(self) -> bool:
        return self in (DriveState.COPY_READ_ERROR, DriveState.COPY_WRITE_ERROR)


STATUS_MESSAGES = {
    DriveState.SETUP: "Setting up...",
    DriveState.NO_DISC: "No Disc.",
    DriveState.COPYING: "Copying...",
    DriveState.WAITING_FOR_NAME: "Choose a file name to finish.",
    DriveState.CONFIRMING_NAME: "A file with this name exists. Overwrite it?",
    DriveState.SAVING: "Saving...",
    DriveState.DONE: "Done.",
    DriveState.COPY_READ_ERROR: "Error reading disc.",
    DriveState.COPY_WRITE_ERROR: "Error writing to output file.",
}


@dataclass(frozen=True)
class DriveStatus:
    """Current state of a drive plus the name attached to it, if any.

    ``name`` is the operator's chosen file name while ``SAVING`` and the
    name awaiting overwrite confirmation while ``CONFIRMING_NAME``.
    """

    state: DriveState
    name: str | None = None

    @property
    def message(self) -> str:
        return STATUS_MESSAGES[self.state]

    def __str__(self) -> str:
        if self.name is not None:
            return f"{self.state.name}({self.name})"
        return self.state.name


# ==============================================================================
# Volume Domain
# ==============================================================================


@dataclass(frozen=True)
class VolumeInfo:
    """Volume label and block geometry reported by the inserted media."""

    name: str
    block_size: int
    block_count: int

    @property
    def total_bytes(self) -> int:
        return self.block_count * self.block_size

    @property
    def default_image_name(self) -> str:
        return f"{self.name}.iso"


# ==============================================================================
# Snapshot Domain
# ==============================================================================


@dataclass(frozen=True)
class DriveSnapshot:
    """Read-only view of a drive handed to the operator surface."""

    device_path: str
    has_disc: bool
    status: DriveStatus
    progress: int
    volume: VolumeInfo | None = None
    suggested_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        volume = None
        if self.volume is not None:
            volume = {
                "name": self.volume.name,
                "block_size": self.volume.block_size,
                "block_count": self.volume.block_count,
                "total_bytes": self.volume.total_bytes,
            }
        return {
            "device_path": self.device_path,
            "has_disc": self.has_disc,
            "state": self.status.state.value,
            "name": self.status.name,
            "message": self.status.message,
            "error": self.status.state.is_error,
            "progress": self.progress,
            "progress_max": PROGRESS_SCALE,
            "volume": volume,
            "suggested_name": self.suggested_name,
        }
