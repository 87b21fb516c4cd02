"""Streaming copy from a disc device into an image file."""

from __future__ import annotations

from typing import BinaryIO, Callable, Optional

from disc_archiver.storage.exceptions import (
    CopyCancelledError,
    CopyReadError,
    CopyWriteError,
)


def copy_stream(
    source: BinaryIO,
    sink: BinaryIO,
    length: int,
    buffer_size: int,
    on_progress: Callable[[int], None],
    should_stop: Optional[Callable[[], bool]] = None,
) -> None:
    """Copy at most ``length`` bytes from ``source`` to ``sink``.

    Reads in chunks of up to ``buffer_size`` bytes. After every successful
    read ``on_progress`` is called with that chunk's size, then the whole
    chunk is written before the next read. An interrupted read is retried
    without reporting progress. Reaching end of input early is not an
    error. ``should_stop`` is checked before every read.

    Raises:
        ValueError: ``buffer_size`` is not positive.
        CopyReadError: Reading from ``source`` failed.
        CopyWriteError: Writing to ``sink`` failed.
        CopyCancelledError: ``should_stop`` returned true.
    """
    if buffer_size <= 0:
        raise ValueError(f"buffer_size must be positive, got {buffer_size}")

    remaining = max(0, length)
    while remaining > 0:
        if should_stop is not None and should_stop():
            raise CopyCancelledError()
        try:
            chunk = source.read(min(buffer_size, remaining))
        except InterruptedError:
            continue
        except OSError as error:
            raise CopyReadError(f"Error reading disc: {error}") from error
        if not chunk:
            break

        on_progress(len(chunk))

        try:
            sink.write(chunk)
        except OSError as error:
            raise CopyWriteError(f"Error writing to output file: {error}") from error
        remaining -= len(chunk)
