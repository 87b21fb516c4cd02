"""Archive session: drive discovery and the worker threads that serve it."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, List, Optional

from disc_archiver.app.context import AppContext
from disc_archiver.domain.models import DriveSnapshot
from disc_archiver.logging import LoggerFactory
from disc_archiver.services.drives import DriveHandle
from disc_archiver.services.lifecycle import DriveLifecycle
from disc_archiver.services.presence import PresencePoller
from disc_archiver.storage.inventory import list_disc_drives

log = LoggerFactory.for_system()

JOIN_TIMEOUT_SECONDS = 5.0


class ArchiveSession:
    """Owns the drive handles and runs one engine per drive plus a poller.

    Worker count is fixed at ``len(drives) + 1`` for the life of the session.
    """

    def __init__(
        self,
        *,
        output_dir: str | Path = ".",
        poll_interval: Optional[float] = None,
        app_context: Optional[AppContext] = None,
        discover: Callable[[], List[DriveHandle]] = list_disc_drives,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.poll_interval = poll_interval
        self.app_context = app_context
        self._discover = discover
        self.drives: List[DriveHandle] = []
        self.stop_event = threading.Event()
        self.engines: List[DriveLifecycle] = []
        self.poller: Optional[PresencePoller] = None

    def discover(self) -> List[DriveHandle]:
        """Find the optical drives once.

        Raises:
            DiskInfoError: Discovery failed; the session cannot run.
        """
        drives = self._discover()
        for drive in drives:
            drive.output_dir = self.output_dir
        self.drives = drives
        if self.app_context is not None:
            self.app_context.discovered_drives = [drive.device_path for drive in drives]
        return drives

    @property
    def running(self) -> bool:
        return self.poller is not None and not self.stop_event.is_set()

    def start(self) -> None:
        if self.running:
            return
        if self.engines:
            raise RuntimeError("An archive session can only be started once")
        self.engines = [
            DriveLifecycle(drive, stop_event=self.stop_event, poll_interval=self.poll_interval)
            for drive in self.drives
        ]
        for engine in self.engines:
            engine.start()
        self.poller = PresencePoller(
            self.drives, stop_event=self.stop_event, interval=self.poll_interval
        )
        self.poller.start()
        log.info(f"Archive session started with {len(self.drives)} drives")

    def stop(self, timeout: float = JOIN_TIMEOUT_SECONDS) -> None:
        if self.poller is None:
            return
        self.stop_event.set()
        for drive in self.drives:
            drive.wake()
        self.poller.join(timeout=timeout)
        for engine in self.engines:
            engine.join(timeout=timeout)
        self.poller = None
        log.info("Archive session stopped")

    def drive(self, index: int) -> DriveHandle:
        """Return the drive at ``index`` in discovery order.

        Raises:
            IndexError: No such drive.
        """
        if index < 0 or index >= len(self.drives):
            raise IndexError(f"No drive with index {index}")
        return self.drives[index]

    def snapshots(self) -> List[DriveSnapshot]:
        return [drive.snapshot() for drive in self.drives]

    def add_listener(self, callback: Callable[[DriveSnapshot], None]) -> None:
        for drive in self.drives:
            drive.add_listener(callback)

    def remove_listener(self, callback: Callable[[DriveSnapshot], None]) -> None:
        for drive in self.drives:
            drive.remove_listener(callback)
