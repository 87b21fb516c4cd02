"""Domain models for disc archiving."""

from __future__ import annotations

from .models import (
    PROGRESS_SCALE,
    DriveSnapshot,
    DriveState,
    DriveStatus,
    VolumeInfo,
)


__all__ = [
    "PROGRESS_SCALE",
    "DriveSnapshot",
    "DriveState",
    "DriveStatus",
    "VolumeInfo",
]
