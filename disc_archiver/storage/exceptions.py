"""Custom exceptions for disc archiving operations.

Exception Hierarchy:
    ArchiverError (base)
        ├── DiskInfoError
        │   ├── LaunchFailError
        │   ├── ConvertToUTFError
        │   └── ParseError
        ├── CopyError
        │   ├── CopyReadError
        │   ├── CopyWriteError
        │   └── CopyCancelledError
        └── InvalidTransitionError

Usage:
    from disc_archiver.storage.exceptions import ParseError

    if not line.startswith("Volume id: "):
        raise ParseError("isoinfo", "missing volume id")
"""

from __future__ import annotations


class ArchiverError(Exception):
    """Base exception for all disc archiver operations."""


class DiskInfoError(ArchiverError):
    """An external tool could not provide usable drive or disc information."""

    def __init__(self, command: str, detail: str = ""):
        self.command = command
        self.detail = detail
        msg = f"{self.describe()} ({command})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)

    def describe(self) -> str:
        return "Disk info error"


class LaunchFailError(DiskInfoError):
    """The external command could not be started or exited unsuccessfully."""

    def describe(self) -> str:
        return "Failed to launch command"


class ConvertToUTFError(DiskInfoError):
    """The command output was not valid UTF-8."""

    def describe(self) -> str:
        return "Command output is not valid UTF-8"


class ParseError(DiskInfoError):
    """The command output did not match the expected structure."""

    def describe(self) -> str:
        return "Failed to parse command output"


class CopyError(ArchiverError):
    """Base exception for streaming copy failures."""


class CopyReadError(CopyError):
    """Reading from the source device failed."""

    def __init__(self, message: str = "Error reading disc"):
        super().__init__(message)


class CopyWriteError(CopyError):
    """Writing to the staged image failed."""

    def __init__(self, message: str = "Error writing to output file"):
        super().__init__(message)


class CopyCancelledError(CopyError):
    """The copy was stopped before the whole volume was read."""

    def __init__(self, message: str = "Copy cancelled"):
        super().__init__(message)


class InvalidTransitionError(ArchiverError):
    """A drive status write was not a legal edge from the current state."""

    def __init__(self, current, requested):
        self.current = current
        self.requested = requested
        super().__init__(f"Illegal drive transition: {current} -> {requested}")


DISK_INFO_MESSAGES: dict[type[DiskInfoError], str] = {
    LaunchFailError: "Failed to launch {command}. Is it not installed?",
    ConvertToUTFError: (
        "Failed to convert {command} output to UTF8 for parsing. Major bug?"
    ),
    ParseError: (
        "Failed to parse {command} output. Has the application changed its formatting?"
    ),
}


def describe_disk_info_error(error: DiskInfoError) -> str:
    """Return the operator-facing message for a discovery failure."""
    template = DISK_INFO_MESSAGES.get(type(error), "{command} failed: {detail}")
    return template.format(command=error.command, detail=error.detail)
