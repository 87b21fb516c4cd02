"""Background disc presence polling."""

from __future__ import annotations

import threading
from typing import Sequence

from disc_archiver.config import settings
from disc_archiver.logging import LoggerFactory
from disc_archiver.services.drives import DriveHandle
from disc_archiver.storage.exceptions import DiskInfoError
from disc_archiver.storage.presence import check_discs_in_drives

log = LoggerFactory.for_presence()


class PresencePoller:
    """Runs blkid on a fixed interval and feeds the result into every drive.

    Failures are logged and the next tick simply tries again.
    """

    def __init__(
        self,
        drives: Sequence[DriveHandle],
        *,
        stop_event: threading.Event | None = None,
        interval: float | None = None,
    ) -> None:
        self.drives = list(drives)
        self.stop_event = stop_event or threading.Event()
        if interval is None:
            interval = settings.get_float(
                "presence_poll_interval", settings.DEFAULT_POLL_INTERVAL
            )
        self.interval = interval
        self.failures = 0
        self._thread: threading.Thread | None = None

    def poll_once(self) -> bool:
        """Run one presence check. Returns False if it failed."""
        try:
            pairs = check_discs_in_drives(self.drives)
        except DiskInfoError as error:
            self.failures += 1
            log.warning(f"Presence poll failed: {error}")
            return False
        log.trace(
            "Presence poll found {count} block devices",
            count=len(pairs),
            event_type="presence_poll",
        )
        return True

    def run(self) -> None:
        log.info(f"Presence poller started ({self.interval}s interval)")
        while not self.stop_event.is_set():
            self.poll_once()
            self.stop_event.wait(self.interval)
        log.info("Presence poller stopped")

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.run, name="presence-poller", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self) -> None:
        self.stop_event.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)
