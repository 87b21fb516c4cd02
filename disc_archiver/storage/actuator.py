"""Tray control for optical drives using the ``eject`` command."""

from __future__ import annotations

import time
from typing import Sequence

from disc_archiver.config import settings
from disc_archiver.logging import LoggerFactory
from disc_archiver.storage.commands import run_command

ACTUATOR_COMMAND = "eject"

log = LoggerFactory.for_actuator()


def _attempt(command: Sequence[str]) -> bool:
    return run_command(command).returncode == 0


def _retry(
    command: Sequence[str],
    attempts: int | None,
    retry_delay: float | None,
) -> bool:
    """Run ``command`` until it succeeds or ``attempts`` runs out.

    A launch failure is raised immediately; only a non-zero exit is retried.
    """
    if attempts is None:
        attempts = settings.get_int("actuator_attempts", settings.DEFAULT_ACTUATOR_ATTEMPTS)
    if retry_delay is None:
        retry_delay = settings.get_float(
            "actuator_retry_delay", settings.DEFAULT_ACTUATOR_RETRY_DELAY
        )
    for attempt in range(1, attempts + 1):
        if _attempt(command):
            log.info(f"{' '.join(command)} succeeded on attempt {attempt}")
            return True
        log.debug(f"{' '.join(command)} failed (attempt {attempt}/{attempts})")
        if attempt < attempts and retry_delay > 0:
            time.sleep(retry_delay)
    log.warning(f"{' '.join(command)} failed after {attempts} attempts")
    return False


def eject_drive_disc(
    device_path: str,
    *,
    attempts: int | None = None,
    retry_delay: float | None = None,
) -> bool:
    """Open the tray of ``device_path``.

    Returns:
        True if any attempt succeeded.

    Raises:
        LaunchFailError: eject could not be started.
    """
    return _retry([ACTUATOR_COMMAND, device_path], attempts, retry_delay)


def close_drive_disc(
    device_path: str,
    *,
    attempts: int | None = None,
    retry_delay: float | None = None,
) -> bool:
    """Close the tray of ``device_path``.

    Returns:
        True if any attempt succeeded.

    Raises:
        LaunchFailError: eject could not be started.
    """
    return _retry([ACTUATOR_COMMAND, "-t", device_path], attempts, retry_delay)
