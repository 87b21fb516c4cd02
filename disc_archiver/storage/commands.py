"""External command execution for the drive tooling.

Every tool the archiver talks to (``lsscsi``, ``blkid``, ``isoinfo`` and
``eject``) is run through :func:`run_command`, which maps an inability to
start the process onto :class:`LaunchFailError`. Output is captured as bytes
so that decoding failures can be reported separately through
:func:`decode_output`.
"""

from __future__ import annotations

import subprocess
from typing import Sequence

from disc_archiver.logging import get_logger
from disc_archiver.storage.exceptions import ConvertToUTFError, LaunchFailError

log = get_logger(source="commands", tags=["commands"])


def run_command(command: Sequence[str]) -> subprocess.CompletedProcess:
    """Run ``command`` and capture its output as bytes.

    Raises:
        LaunchFailError: The executable is missing, not permitted, or the
            OS refused to start it.
    """
    log.trace(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(list(command), capture_output=True)
    except OSError as error:
        log.debug(f"Failed to launch {command[0]}: {error}")
        raise LaunchFailError(command[0], str(error)) from error
    log.trace(f"Command completed with return code {result.returncode}")
    return result


def decode_output(command: str, data: bytes) -> str:
    """Decode tool output as UTF-8 text."""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as error:
        raise ConvertToUTFError(command, str(error)) from error
