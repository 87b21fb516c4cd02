"""Per-drive archiving lifecycle.

Each discovered drive gets one :class:`DriveLifecycle` running on its own
thread for the life of the process. One insertion cycle looks like this::

    NO_DISC --disc--> COPYING --ok--> WAITING_FOR_NAME <--> CONFIRMING_NAME
       |                 |                   |
       |  (bad metadata) |  (read/write      v
       v                 v   failure)     SAVING --renamed--> DONE
      DONE         COPY_*_ERROR

and ends when the disc is taken out, at which point the drive returns to
``NO_DISC``. The naming step is driven by the operator through
:class:`~disc_archiver.services.drives.DriveHandle`; the engine only waits
for it.
"""

from __future__ import annotations

import threading

from disc_archiver.config import settings
from disc_archiver.domain.models import PROGRESS_SCALE, DriveState, DriveStatus, VolumeInfo
from disc_archiver.logging import LoggerFactory, ThrottledLogger, operation_context
from disc_archiver.services.drives import DriveHandle
from disc_archiver.storage.actuator import eject_drive_disc
from disc_archiver.storage.copy import copy_stream
from disc_archiver.storage.exceptions import (
    CopyCancelledError,
    CopyError,
    CopyReadError,
    CopyWriteError,
    DiskInfoError,
)
from disc_archiver.storage.iso_info import fetch_iso_info
from disc_archiver.storage.staging import StagedImage


class DriveLifecycle:
    """The state machine that archives every disc put into one drive."""

    def __init__(
        self,
        drive: DriveHandle,
        *,
        stop_event: threading.Event | None = None,
        poll_interval: float | None = None,
        name_poll_interval: float | None = None,
        blocks_per_read: int | None = None,
    ) -> None:
        self.drive = drive
        self.stop_event = stop_event or threading.Event()
        if poll_interval is None:
            poll_interval = settings.get_float(
                "presence_poll_interval", settings.DEFAULT_POLL_INTERVAL
            )
        if name_poll_interval is None:
            name_poll_interval = settings.get_float(
                "name_poll_interval", settings.DEFAULT_POLL_INTERVAL
            )
        if blocks_per_read is None:
            blocks_per_read = settings.get_int(
                "copy_blocks_per_read", settings.DEFAULT_COPY_BLOCKS_PER_READ
            )
        self.poll_interval = poll_interval
        self.name_poll_interval = name_poll_interval
        self.blocks_per_read = max(1, blocks_per_read)
        self._thread: threading.Thread | None = None
        self._log = LoggerFactory.for_drive(drive.device_path)

    # ------------------------------------------------------------------
    # Thread management
    # ------------------------------------------------------------------

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(
            target=self.run, name=f"drive-{self.drive.device_path}", daemon=True
        )
        self._thread.start()
        return self._thread

    def stop(self) -> None:
        self.stop_event.set()
        self.drive.wake()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    def run(self) -> None:
        """Loop over insertion cycles until the stop event is set."""
        self._log.info("Drive engine started")
        try:
            self.drive.transition(DriveState.NO_DISC)
            while not self.stopped:
                if not self.drive.wait_for_disc(
                    True, stop_event=self.stop_event, interval=self.poll_interval
                ):
                    break
                self.run_cycle()
                if not self.drive.wait_for_disc(
                    False, stop_event=self.stop_event, interval=self.poll_interval
                ):
                    break
                self.drive.transition(DriveState.NO_DISC)
        except Exception:
            self._log.exception("Drive engine stopped unexpectedly")
            return
        self._log.info("Drive engine stopped")

    # ------------------------------------------------------------------
    # One insertion cycle
    # ------------------------------------------------------------------

    def run_cycle(self) -> DriveStatus:
        """Archive the disc currently in the drive.

        Starts from ``NO_DISC`` and returns the status the cycle ended in:
        ``DONE``, ``COPY_READ_ERROR``, ``COPY_WRITE_ERROR``, or the state
        the engine was stopped in (``COPYING``, ``WAITING_FOR_NAME`` or
        ``CONFIRMING_NAME``). A stopped cycle leaves no staged file behind.
        """
        try:
            volume = fetch_iso_info(self.drive.device_path)
        except DiskInfoError as error:
            self._log.warning(f"Could not read volume metadata: {error}")
            self._eject_best_effort()
            return self.drive.transition(DriveState.DONE)

        self._log.info(
            f"Volume {volume.name!r}: {volume.block_count} blocks of {volume.block_size} bytes"
        )
        self.drive.transition(DriveState.COPYING, volume=volume)

        staged = self._copy_volume(volume)
        if staged is None:
            return self.drive.status

        self.drive.transition(DriveState.WAITING_FOR_NAME)
        if not self.drive.wait_for_state(
            DriveState.SAVING,
            stop_event=self.stop_event,
            interval=self.name_poll_interval,
        ):
            self._log.info("Stopped before an image name was chosen, discarding copy")
            self._discard(staged)
            return self.drive.status

        return self._commit(staged, self.drive.status)

    def _copy_volume(self, volume: VolumeInfo) -> StagedImage | None:
        """Stream the whole volume into a new staged image.

        Returns the staged image, or ``None`` after moving the drive into a
        copy error state.
        """
        try:
            staged = StagedImage.create(self.drive.output_dir)
        except OSError as error:
            self._log.error(f"Could not create staged image: {error}")
            self.drive.transition(DriveState.COPY_WRITE_ERROR)
            return None

        total = volume.total_bytes
        copied = 0
        progress_log = ThrottledLogger(self._log)

        def on_progress(chunk_size: int) -> None:
            nonlocal copied
            copied += chunk_size
            self.drive.set_progress(copied * PROGRESS_SCALE // total)
            progress_log.trace(
                "copy",
                "Copy progress",
                event_type="copy_progress",
                bytes_copied=copied,
                total_bytes=total,
            )

        try:
            with operation_context(
                "copy",
                device=self.drive.device_path,
                volume=volume.name,
                total_bytes=total,
            ):
                self._stream_device(
                    staged, total, volume.block_size * self.blocks_per_read, on_progress
                )
        except CopyCancelledError:
            self._log.info("Stopped during copy, discarding partial image")
            self._discard(staged)
            return None
        except CopyError as error:
            self._discard(staged)
            if isinstance(error, CopyReadError):
                self.drive.transition(DriveState.COPY_READ_ERROR)
            else:
                self.drive.transition(DriveState.COPY_WRITE_ERROR)
            return None

        self.drive.set_progress(PROGRESS_SCALE)
        return staged

    def _stream_device(
        self, staged: StagedImage, total: int, buffer_size: int, on_progress
    ) -> None:
        try:
            source = open(self.drive.device_path, "rb", buffering=0)
        except OSError as error:
            raise CopyReadError(f"Could not open {self.drive.device_path}: {error}") from error
        with source:
            copy_stream(
                source,
                staged.file,
                total,
                buffer_size,
                on_progress,
                should_stop=self.stop_event.is_set,
            )
        try:
            staged.file.flush()
        except OSError as error:
            raise CopyWriteError(f"Error writing to output file: {error}") from error

    def _commit(self, staged: StagedImage, status: DriveStatus) -> DriveStatus:
        target = self.drive.resolve_target(status.name)
        try:
            staged.commit(target)
        except (OSError, ValueError) as error:
            self._log.error(f"Could not save image as {target}: {error}")
            self._discard(staged)
            return self.drive.transition(DriveState.COPY_WRITE_ERROR)
        self._log.success(f"Saved image {target}")
        return self.drive.transition(DriveState.DONE)

    def _discard(self, staged: StagedImage) -> None:
        try:
            staged.discard()
        except OSError as error:
            self._log.warning(f"Could not remove staged image {staged.path}: {error}")

    def _eject_best_effort(self) -> None:
        try:
            ejected = eject_drive_disc(self.drive.device_path)
        except DiskInfoError as error:
            self._log.warning(f"Could not eject unreadable disc: {error}")
            return
        if not ejected:
            self._log.warning("Could not eject unreadable disc")
