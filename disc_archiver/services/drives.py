"""Per-drive shared state and the transition rules that guard it.

A :class:`DriveHandle` is created once per discovered drive and lives for the
whole process. Three parties touch it:

- the presence poller writes ``has_disc`` (and nothing else),
- the drive's lifecycle engine walks ``status`` along the engine edges and
  reports copy progress,
- the operator surface answers the naming exchange through
  :meth:`DriveHandle.submit_name` and :meth:`DriveHandle.resolve_overwrite`.

All writes go through one lock. The lock is wrapped in a condition so that
engine waits wake as soon as presence or status changes, with the poll
interval only bounding each wait.
"""

from __future__ import annotations

import os
import threading
import time
from pathlib import Path
from typing import Callable, Iterable

from disc_archiver.domain.models import (
    PROGRESS_SCALE,
    DriveSnapshot,
    DriveState,
    DriveStatus,
    VolumeInfo,
)
from disc_archiver.logging import LoggerFactory
from disc_archiver.storage.exceptions import InvalidTransitionError

S = DriveState

ENGINE_TRANSITIONS: dict[DriveState, frozenset[DriveState]] = {
    S.SETUP: frozenset({S.NO_DISC}),
    S.NO_DISC: frozenset({S.COPYING, S.DONE}),
    S.COPYING: frozenset({S.WAITING_FOR_NAME, S.COPY_READ_ERROR, S.COPY_WRITE_ERROR}),
    S.SAVING: frozenset({S.DONE, S.COPY_WRITE_ERROR}),
    S.DONE: frozenset({S.NO_DISC}),
    S.COPY_READ_ERROR: frozenset({S.NO_DISC}),
    S.COPY_WRITE_ERROR: frozenset({S.NO_DISC}),
}

OPERATOR_TRANSITIONS: dict[DriveState, frozenset[DriveState]] = {
    S.WAITING_FOR_NAME: frozenset({S.SAVING, S.CONFIRMING_NAME}),
    S.CONFIRMING_NAME: frozenset({S.WAITING_FOR_NAME, S.SAVING}),
}

Listener = Callable[[DriveSnapshot], None]

NAME_MAX_BYTES = 255


def _check_image_name(name: str) -> None:
    if not name or not name.strip():
        raise ValueError("Image name must not be empty")
    if "\x00" in name:
        raise ValueError("Image name must not contain a NUL byte")
    for part in Path(name).parts:
        if len(os.fsencode(part)) > NAME_MAX_BYTES:
            raise ValueError(f"Image name is longer than {NAME_MAX_BYTES} bytes")


class DriveHandle:
    """One physical optical drive and its lifecycle state."""

    def __init__(self, device_path: str, *, output_dir: str | Path = ".") -> None:
        self._device_path = device_path
        self.output_dir = Path(output_dir)
        self._lock = threading.RLock()
        self._changed = threading.Condition(self._lock)
        self._has_disc = False
        self._status = DriveStatus(S.SETUP)
        self._progress = 0
        self._volume: VolumeInfo | None = None
        self._listeners: list[Listener] = []
        self._log = LoggerFactory.for_drive(device_path)

    def __repr__(self) -> str:
        return f"DriveHandle({self._device_path!r}, status={self._status})"

    @property
    def device_path(self) -> str:
        return self._device_path

    @property
    def has_disc(self) -> bool:
        return self._has_disc

    @property
    def status(self) -> DriveStatus:
        with self._lock:
            return self._status

    @property
    def progress(self) -> int:
        return self._progress

    @property
    def volume(self) -> VolumeInfo | None:
        return self._volume

    def snapshot(self) -> DriveSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def _snapshot_locked(self) -> DriveSnapshot:
        volume = self._volume
        return DriveSnapshot(
            device_path=self._device_path,
            has_disc=self._has_disc,
            status=self._status,
            progress=self._progress,
            volume=volume,
            suggested_name=volume.default_image_name if volume else None,
        )

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, callback: Listener) -> None:
        """Call ``callback`` with a fresh snapshot after every change."""
        self._listeners.append(callback)

    def remove_listener(self, callback: Listener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify_listeners(self, snapshot: DriveSnapshot) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                self._log.warning(f"Error in drive listener: {e}")

    # ------------------------------------------------------------------
    # Presence (poller only)
    # ------------------------------------------------------------------

    def set_has_disc(self, present: bool) -> None:
        present = bool(present)
        with self._changed:
            if present == self._has_disc:
                return
            self._has_disc = present
            self._changed.notify_all()
            snapshot = self._snapshot_locked()
        self._log.info("Disc inserted" if present else "Disc removed")
        self._notify_listeners(snapshot)

    # ------------------------------------------------------------------
    # Engine edges
    # ------------------------------------------------------------------

    def transition(self, state: DriveState, *, volume: VolumeInfo | None = None) -> DriveStatus:
        """Move along an engine edge.

        ``volume`` is recorded when entering ``COPYING``; entering ``NO_DISC``
        clears the previous cycle's volume and progress.

        Raises:
            InvalidTransitionError: ``state`` is not an engine edge from the
                current state.
        """
        with self._changed:
            current = self._status
            if state not in ENGINE_TRANSITIONS.get(current.state, frozenset()):
                raise InvalidTransitionError(current, state)
            new_status = DriveStatus(state, current.name if state is S.DONE else None)
            if state is S.NO_DISC:
                self._volume = None
                self._progress = 0
            elif state is S.COPYING:
                self._volume = volume
                self._progress = 0
            self._status = new_status
            self._changed.notify_all()
            snapshot = self._snapshot_locked()
        self._log.debug(f"Status {current} -> {new_status}")
        self._notify_listeners(snapshot)
        return new_status

    def set_progress(self, value: int) -> None:
        value = max(0, min(PROGRESS_SCALE, int(value)))
        with self._lock:
            if value == self._progress:
                return
            self._progress = value
            snapshot = self._snapshot_locked()
        self._notify_listeners(snapshot)

    # ------------------------------------------------------------------
    # Operator edges
    # ------------------------------------------------------------------

    def resolve_target(self, name: str) -> Path:
        """Return the path an image named ``name`` is committed to."""
        return self.output_dir / name

    def submit_name(
        self, name: str, *, exists: Callable[[Path], bool] = os.path.exists
    ) -> DriveStatus:
        """Answer ``WAITING_FOR_NAME`` with the operator's chosen file name.

        Goes straight to ``SAVING`` when the target does not exist yet, and to
        ``CONFIRMING_NAME`` when it does. A rejected name leaves the drive
        waiting, so the copy is kept for another try.

        Raises:
            ValueError: ``name`` is blank, contains a NUL byte, is too long
                for the filesystem, or names an existing directory.
            InvalidTransitionError: The drive is not waiting for a name.
        """
        _check_image_name(name)
        if self.resolve_target(name).is_dir():
            raise ValueError(f"{name!r} is an existing directory")
        with self._changed:
            current = self._status
            if current.state is not S.WAITING_FOR_NAME:
                raise InvalidTransitionError(current, S.SAVING)
            if exists(self.resolve_target(name)):
                new_status = DriveStatus(S.CONFIRMING_NAME, name)
            else:
                new_status = DriveStatus(S.SAVING, name)
            self._set_operator_status_locked(new_status)
            snapshot = self._snapshot_locked()
        self._log.info(f"Operator chose name {name!r}: {new_status.state.name}")
        self._notify_listeners(snapshot)
        return new_status

    def resolve_overwrite(self, accept: bool) -> DriveStatus:
        """Answer ``CONFIRMING_NAME``: save over the file or pick again.

        Raises:
            InvalidTransitionError: No overwrite confirmation is pending.
        """
        with self._changed:
            current = self._status
            if current.state is not S.CONFIRMING_NAME:
                requested = S.SAVING if accept else S.WAITING_FOR_NAME
                raise InvalidTransitionError(current, requested)
            if accept:
                new_status = DriveStatus(S.SAVING, current.name)
            else:
                new_status = DriveStatus(S.WAITING_FOR_NAME)
            self._set_operator_status_locked(new_status)
            snapshot = self._snapshot_locked()
        self._log.info(
            "Operator accepted overwrite" if accept else "Operator declined overwrite"
        )
        self._notify_listeners(snapshot)
        return new_status

    def _set_operator_status_locked(self, new_status: DriveStatus) -> None:
        allowed = OPERATOR_TRANSITIONS.get(self._status.state, frozenset())
        if new_status.state not in allowed:
            raise InvalidTransitionError(self._status, new_status.state)
        self._status = new_status
        self._changed.notify_all()

    # ------------------------------------------------------------------
    # Waiting
    # ------------------------------------------------------------------

    def wake(self) -> None:
        """Wake every thread blocked in a wait on this handle."""
        with self._changed:
            self._changed.notify_all()

    def wait_until(
        self,
        predicate: Callable[["DriveHandle"], bool],
        *,
        stop_event: threading.Event | None = None,
        interval: float | None = None,
        timeout: float | None = None,
    ) -> bool:
        """Block until ``predicate(self)`` holds.

        Each wait on the condition is bounded by ``interval`` so a missed
        notification is picked up on the next check. Returns ``False`` when
        ``stop_event`` is set or ``timeout`` runs out first.
        """

        deadline = None if timeout is None else time.monotonic() + timeout
        with self._changed:
            while True:
                if stop_event is not None and stop_event.is_set():
                    return False
                if predicate(self):
                    return True
                wait_time = interval
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return False
                    wait_time = remaining if wait_time is None else min(wait_time, remaining)
                self._changed.wait(wait_time)

    def wait_for_disc(
        self, present: bool, *, stop_event: threading.Event | None = None, interval: float | None = None
    ) -> bool:
        return self.wait_until(
            lambda drive: drive.has_disc == present,
            stop_event=stop_event,
            interval=interval,
        )

    def wait_for_state(
        self,
        states: DriveState | Iterable[DriveState],
        *,
        stop_event: threading.Event | None = None,
        interval: float | None = None,
        timeout: float | None = None,
    ) -> bool:
        if isinstance(states, DriveState):
            states = (states,)
        wanted = frozenset(states)
        return self.wait_until(
            lambda drive: drive._status.state in wanted,
            stop_event=stop_event,
            interval=interval,
            timeout=timeout,
        )
