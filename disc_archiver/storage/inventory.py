"""Optical drive discovery using lsscsi.

``lsscsi`` prints one SCSI device per line::

    [0:0:0:0]    disk    ATA      Samsung SSD 860  2B6Q  /dev/sda
    [1:0:0:0]    cd/dvd  HL-DT-ST DVDRAM GH24NSD1  LG00  /dev/sr0

Only ``cd/dvd`` lines become drives. The device path runs from the first
``/`` after the type column to the end of the line, minus its last
character (lsscsi pads the device column with a trailing space).

Parsing stops at the first line that does not have the
``[id] type ... /path`` shape; text without any such line yields no drives.
"""

from __future__ import annotations

import re

from disc_archiver.logging import LoggerFactory
from disc_archiver.services.drives import DriveHandle
from disc_archiver.storage.commands import decode_output, run_command
from disc_archiver.storage.exceptions import LaunchFailError

INVENTORY_COMMAND = "lsscsi"
DRIVE_TYPE = "cd/dvd"

_LINE_PATTERN = re.compile(
    r"\[(?P<id>[^\]\n]*)\]\s*(?P<type>[^ \n]*) *[^/\n]*(?P<path>/[^\n]*)\n"
)

log = LoggerFactory.for_inventory()


def parse_drive_list(text: str) -> list[DriveHandle]:
    """Build a drive handle for every ``cd/dvd`` line of lsscsi output."""
    drives = []
    position = 0
    while True:
        match = _LINE_PATTERN.match(text, position)
        if match is None:
            break
        position = match.end()
        if match.group("type") == DRIVE_TYPE:
            drives.append(DriveHandle(match.group("path")[:-1]))
    return drives


def list_disc_drives() -> list[DriveHandle]:
    """Run lsscsi and return the optical drives it reports.

    Raises:
        LaunchFailError: lsscsi could not be started or exited non-zero.
        ConvertToUTFError: lsscsi printed something that is not UTF-8.
    """
    result = run_command([INVENTORY_COMMAND])
    if result.returncode != 0:
        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        raise LaunchFailError(
            INVENTORY_COMMAND, stderr or f"exit status {result.returncode}"
        )
    drives = parse_drive_list(decode_output(INVENTORY_COMMAND, result.stdout))
    log.info(f"Found {len(drives)} disc drives")
    for drive in drives:
        log.debug(f"Disc drive: {drive.device_path}")
    return drives
