"""Volume metadata extraction using ``isoinfo -d``.

``isoinfo -d -i/dev/sr0`` prints the primary volume descriptor as a fixed
sequence of lines. Only three of the first fourteen are needed::

    CD-ROM is in ISO 9660 format
    System id: LINUX
    Volume id: FOO                          <- line 3
    ...
    Logical block size is: 2048             <- line 13
    Volume size is: 10                      <- line 14

Anything after line 14 is ignored.
"""

from __future__ import annotations

import re

from disc_archiver.domain.models import VolumeInfo
from disc_archiver.storage.commands import decode_output, run_command
from disc_archiver.storage.exceptions import ParseError

METADATA_COMMAND = "isoinfo"
DESCRIPTOR_LINES = 14

VOLUME_ID_PREFIX = "Volume id: "
BLOCK_SIZE_PREFIX = "Logical block size is: "
VOLUME_SIZE_PREFIX = "Volume size is: "

_NUMBER = re.compile(r"[0-9]+")


def _field(line: str, prefix: str) -> str:
    if not line.startswith(prefix):
        raise ParseError(METADATA_COMMAND, f"expected {prefix.strip()!r}, got {line!r}")
    return line[len(prefix):]


def _number(line: str, prefix: str) -> int:
    value = _field(line, prefix)
    if not _NUMBER.fullmatch(value):
        raise ParseError(METADATA_COMMAND, f"{prefix.strip()} is not a number: {value!r}")
    return int(value)


def parse_iso_info(text: str) -> VolumeInfo:
    """Parse isoinfo's descriptor dump into :class:`VolumeInfo`.

    Raises:
        ParseError: Fewer than fourteen complete lines, a missing field
            label, a non-numeric size, or a zero block size.
    """
    lines = text.split("\n")
    # The last element is whatever follows the final newline.
    if len(lines) - 1 < DESCRIPTOR_LINES:
        raise ParseError(
            METADATA_COMMAND,
            f"expected {DESCRIPTOR_LINES} lines, got {len(lines) - 1}",
        )

    name = _field(lines[2], VOLUME_ID_PREFIX)
    block_size = _number(lines[12], BLOCK_SIZE_PREFIX)
    block_count = _number(lines[13], VOLUME_SIZE_PREFIX)
    if block_size == 0:
        raise ParseError(METADATA_COMMAND, "logical block size is zero")

    return VolumeInfo(name=name, block_size=block_size, block_count=block_count)


def fetch_iso_info(device_path: str) -> VolumeInfo:
    """Read the volume descriptor of the disc in ``device_path``.

    Raises:
        LaunchFailError: isoinfo could not be started.
        ConvertToUTFError: isoinfo printed something that is not UTF-8.
        ParseError: The output is not a volume descriptor dump (no disc,
            unreadable disc, or a format change).
    """
    result = run_command([METADATA_COMMAND, "-d", f"-i{device_path}"])
    return parse_iso_info(decode_output(METADATA_COMMAND, result.stdout))
