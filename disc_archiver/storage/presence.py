"""Disc presence detection using blkid.

blkid lists every block device that carries a recognisable signature::

    /dev/sda1: UUID="..." TYPE="ext4"
    /dev/sr0: UUID="2023-01-01-00-00-00-00" LABEL="FOO" TYPE="iso9660"

A drive holds a disc when one of those device paths is a prefix of the
drive's own path. Presence is recomputed from the latest output on every
call, nothing is remembered between polls.
"""

from __future__ import annotations

import re
from typing import Iterable

from disc_archiver.services.drives import DriveHandle
from disc_archiver.storage.commands import decode_output, run_command

PRESENCE_COMMAND = "blkid"

_LINE_PATTERN = re.compile(r"(?P<path>[^:\n]*):(?P<info>[^\n]*)\n")


def parse_block_id_list(text: str) -> set[tuple[str, str]]:
    """Return ``(device path, rest of line)`` pairs from blkid output."""
    pairs = set()
    position = 0
    while True:
        match = _LINE_PATTERN.match(text, position)
        if match is None:
            break
        position = match.end()
        pairs.add((match.group("path"), match.group("info")))
    return pairs


def has_disc_for(device_path: str, pairs: Iterable[tuple[str, str]]) -> bool:
    return any(device_path.startswith(path) for path, _ in pairs)


def check_discs_in_drives(drives: Iterable[DriveHandle]) -> set[tuple[str, str]]:
    """Run blkid once and update ``has_disc`` on every drive.

    blkid exits with status 2 when nothing carries a signature, so the exit
    status is not treated as a failure.

    Raises:
        LaunchFailError: blkid could not be started.
        ConvertToUTFError: blkid printed something that is not UTF-8.
    """
    result = run_command([PRESENCE_COMMAND])
    pairs = parse_block_id_list(decode_output(PRESENCE_COMMAND, result.stdout))
    for drive in drives:
        drive.set_has_disc(has_disc_for(drive.device_path, pairs))
    return pairs
