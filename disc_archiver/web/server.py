"""Operator web surface.

JSON endpoints and a WebSocket feed through which an operator watches every
drive, names finished images, confirms overwrites and opens or closes
trays. Rendering is left to whatever client talks to it.
"""

from __future__ import annotations

import asyncio
import json
import queue
import threading
import weakref
from dataclasses import dataclass
from pathlib import PurePath
from typing import Any, Optional, cast

from aiohttp import WSCloseCode, web

from disc_archiver.app.context import AppContext
from disc_archiver.app.session import ArchiveSession
from disc_archiver.config import settings
from disc_archiver.domain.models import DriveSnapshot
from disc_archiver.logging import LoggerFactory
from disc_archiver.services.drives import DriveHandle
from disc_archiver.storage.actuator import close_drive_disc, eject_drive_disc
from disc_archiver.storage.exceptions import (
    DiskInfoError,
    InvalidTransitionError,
    describe_disk_info_error,
)

DEFAULT_HOST = settings.DEFAULT_WEB_HOST
DEFAULT_PORT = settings.DEFAULT_WEB_PORT
HEARTBEAT_SECONDS = 15.0


@dataclass
class ServerHandle:
    runner: web.AppRunner
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop

    def stop(self, timeout: float = 5.0) -> None:
        if self.loop.is_running():
            self.loop.call_soon_threadsafe(self.loop.stop)
        self.thread.join(timeout=timeout)


_current_handle: ServerHandle | None = None


class DriveUpdateNotifier:
    """Async notifier for drive changes shared across websocket clients."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._condition = asyncio.Condition()
        self._update_id = 0
        self._pending: set[asyncio.Task] = set()

    def get_update_id(self) -> int:
        return self._update_id

    async def wait_for_update(self, last_update_id: int, timeout: float) -> int:
        async with self._condition:
            if self._update_id > last_update_id:
                return self._update_id
            try:
                await asyncio.wait_for(self._condition.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                return self._update_id
            return self._update_id

    async def _mark_update(self) -> None:
        async with self._condition:
            self._update_id += 1
            self._condition.notify_all()

    def mark_update_threadsafe(self, _snapshot: DriveSnapshot | None = None) -> None:
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._schedule_mark_update)

    def _schedule_mark_update(self) -> None:
        task = asyncio.create_task(self._mark_update())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


SESSION_KEY: web.AppKey[ArchiveSession] = web.AppKey("session", ArchiveSession)
NOTIFIER_KEY: web.AppKey[DriveUpdateNotifier] = web.AppKey(
    "drive_notifier", DriveUpdateNotifier
)
APP_CONTEXT_KEY: web.AppKey[AppContext | None] = web.AppKey("app_context", AppContext)
WEBSOCKETS_KEY: web.AppKey[weakref.WeakSet[web.WebSocketResponse]] = web.AppKey(
    "websockets", cast(Any, weakref.WeakSet)
)


async def _on_startup(app: web.Application) -> None:
    notifier = DriveUpdateNotifier(asyncio.get_running_loop())
    app[NOTIFIER_KEY] = notifier
    app[SESSION_KEY].add_listener(notifier.mark_update_threadsafe)


async def _on_shutdown(app: web.Application) -> None:
    """Close every open WebSocket with GOING_AWAY."""
    log = LoggerFactory.for_web()
    notifier = app.get(NOTIFIER_KEY)
    if notifier is not None:
        app[SESSION_KEY].remove_listener(notifier.mark_update_threadsafe)
    active_ws = set(app.get(WEBSOCKETS_KEY) or ())
    if not active_ws:
        return
    log.info(f"Closing {len(active_ws)} WebSocket connection(s)")
    await asyncio.gather(
        *(_close_websocket_gracefully(ws, log) for ws in active_ws),
        return_exceptions=True,
    )


async def _close_websocket_gracefully(ws: web.WebSocketResponse, log) -> None:
    try:
        if not ws.closed:
            await ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")
    except Exception as exc:
        log.debug(f"Error closing WebSocket: {exc}")


def _build_headers() -> dict[str, str]:
    return {
        "Cache-Control": "no-cache, no-store, must-revalidate",
        "Pragma": "no-cache",
    }


def _json_error(status: int, message: str) -> web.Response:
    return web.json_response({"error": message}, status=status, headers=_build_headers())


def _lookup_drive(request: web.Request) -> DriveHandle | None:
    try:
        return request.app[SESSION_KEY].drive(int(request.match_info["index"]))
    except (IndexError, ValueError):
        return None


async def _read_json(request: web.Request) -> dict | None:
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def _serialize_drives(session: ArchiveSession) -> list[dict]:
    return [
        {"index": index, **snapshot.to_dict()}
        for index, snapshot in enumerate(session.snapshots())
    ]


async def handle_drives(request: web.Request) -> web.Response:
    return web.json_response(
        {"drives": _serialize_drives(request.app[SESSION_KEY])},
        headers=_build_headers(),
    )


async def handle_drive(request: web.Request) -> web.Response:
    drive = _lookup_drive(request)
    if drive is None:
        return _json_error(404, "No such drive")
    return web.json_response(drive.snapshot().to_dict(), headers=_build_headers())


async def handle_name(request: web.Request) -> web.Response:
    """Answer a drive that is waiting for an image name."""
    log = LoggerFactory.for_web()
    drive = _lookup_drive(request)
    if drive is None:
        return _json_error(404, "No such drive")
    data = await _read_json(request)
    name = data.get("name") if data else None
    if not isinstance(name, str) or not name.strip():
        return _json_error(400, "A non-empty 'name' is required")
    if PurePath(name).name != name or name in (".", ".."):
        return _json_error(400, "Image names must not contain a directory")
    try:
        drive.submit_name(name)
    except ValueError as error:
        return _json_error(400, str(error))
    except InvalidTransitionError as error:
        log.debug(f"Rejected name for {drive.device_path}: {error}")
        return _json_error(409, str(error))
    return web.json_response(drive.snapshot().to_dict(), headers=_build_headers())


async def handle_overwrite(request: web.Request) -> web.Response:
    """Accept or decline overwriting an existing image."""
    log = LoggerFactory.for_web()
    drive = _lookup_drive(request)
    if drive is None:
        return _json_error(404, "No such drive")
    data = await _read_json(request)
    accept = data.get("accept") if data else None
    if not isinstance(accept, bool):
        return _json_error(400, "A boolean 'accept' is required")
    try:
        drive.resolve_overwrite(accept)
    except InvalidTransitionError as error:
        log.debug(f"Rejected overwrite answer for {drive.device_path}: {error}")
        return _json_error(409, str(error))
    return web.json_response(drive.snapshot().to_dict(), headers=_build_headers())


async def _run_actuator(request: web.Request, action) -> web.Response:
    log = LoggerFactory.for_web()
    drive = _lookup_drive(request)
    if drive is None:
        return _json_error(404, "No such drive")
    loop = asyncio.get_running_loop()
    try:
        success = await loop.run_in_executor(None, action, drive.device_path)
    except DiskInfoError as error:
        log.error(f"Tray command failed for {drive.device_path}: {error}")
        return _json_error(500, describe_disk_info_error(error))
    return web.json_response(
        {"device_path": drive.device_path, "success": success},
        headers=_build_headers(),
    )


async def handle_eject(request: web.Request) -> web.Response:
    return await _run_actuator(request, eject_drive_disc)


async def handle_close(request: web.Request) -> web.Response:
    return await _run_actuator(request, close_drive_disc)


async def handle_logs(request: web.Request) -> web.Response:
    app_context = request.app.get(APP_CONTEXT_KEY)
    entries = list(app_context.log_buffer) if app_context is not None else []
    return web.json_response(
        {"logs": [entry.to_dict() for entry in entries]},
        headers=_build_headers(),
    )


async def _drain_client(ws: web.WebSocketResponse) -> None:
    """Read until the client goes away; incoming messages are ignored."""
    async for msg in ws:
        if msg.type == web.WSMsgType.ERROR:
            break


async def handle_drives_ws(request: web.Request) -> web.WebSocketResponse:
    """Push the full drive list on connect and after every change."""
    log = LoggerFactory.for_web()
    ws = web.WebSocketResponse(autoping=True)
    await ws.prepare(request)

    request.app[WEBSOCKETS_KEY].add(ws)
    connection_id = id(ws)
    log.debug(f"Drives WebSocket connected from {request.remote} (id={connection_id})")

    session = request.app[SESSION_KEY]
    notifier = request.app[NOTIFIER_KEY]
    reader = asyncio.create_task(_drain_client(ws))
    try:
        last_update_id = notifier.get_update_id()
        await ws.send_json({"drives": _serialize_drives(session)})
        while not ws.closed:
            update = asyncio.create_task(
                notifier.wait_for_update(last_update_id, HEARTBEAT_SECONDS)
            )
            done, _ = await asyncio.wait(
                {reader, update}, return_when=asyncio.FIRST_COMPLETED
            )
            if reader in done:
                update.cancel()
                break
            last_update_id = update.result()
            if ws.closed:
                break
            await ws.send_json({"drives": _serialize_drives(session)})
    except asyncio.CancelledError:
        raise
    except ConnectionResetError as exc:
        log.debug(f"Drives WebSocket reset (id={connection_id}): {exc}")
    finally:
        reader.cancel()
        request.app[WEBSOCKETS_KEY].discard(ws)
        if not ws.closed:
            await ws.close()
        log.debug(f"Drives WebSocket disconnected (id={connection_id})")

    return ws


def create_app(
    session: ArchiveSession, app_context: AppContext | None = None
) -> web.Application:
    app = web.Application()
    app[SESSION_KEY] = session
    app[APP_CONTEXT_KEY] = app_context
    app[WEBSOCKETS_KEY] = weakref.WeakSet()
    app.on_startup.append(_on_startup)
    app.on_shutdown.append(_on_shutdown)
    app.router.add_get("/drives", handle_drives)
    app.router.add_get(r"/drives/{index:\d+}", handle_drive)
    app.router.add_post(r"/drives/{index:\d+}/name", handle_name)
    app.router.add_post(r"/drives/{index:\d+}/overwrite", handle_overwrite)
    app.router.add_post(r"/drives/{index:\d+}/eject", handle_eject)
    app.router.add_post(r"/drives/{index:\d+}/close", handle_close)
    app.router.add_get("/logs", handle_logs)
    app.router.add_get("/ws/drives", handle_drives_ws)
    return app


def is_running() -> bool:
    return _current_handle is not None and _current_handle.thread.is_alive()


def stop_server(timeout: float = 5.0) -> bool:
    global _current_handle
    handle = _current_handle
    if handle is None:
        return False
    handle.stop(timeout=timeout)
    _current_handle = None
    return True


def start_server(
    session: ArchiveSession,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    app_context: Optional[AppContext] = None,
) -> ServerHandle:
    """Serve the operator surface on a background thread with its own loop."""
    global _current_handle
    if is_running():
        return cast(ServerHandle, _current_handle)
    runner_queue: queue.Queue[tuple[str, Any]] = queue.Queue(maxsize=1)
    log = LoggerFactory.for_web()

    def run_app() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        app = create_app(session, app_context)

        async def start_site() -> web.AppRunner:
            runner = web.AppRunner(app)
            await runner.setup()
            site = web.TCPSite(runner, host, port)
            await site.start()
            return runner

        try:
            runner = loop.run_until_complete(start_site())
        except Exception as exc:
            runner_queue.put(("error", exc))
            loop.close()
            return
        runner_queue.put(("ok", (runner, loop)))
        log.info(f"Web server started at http://{host}:{port}")
        try:
            loop.run_forever()
        finally:
            # runner.cleanup() fires on_shutdown, which closes the WebSockets.
            loop.run_until_complete(runner.cleanup())
            loop.close()
            log.info("Web server stopped")

    thread = threading.Thread(target=run_app, name="web-server", daemon=True)
    thread.start()
    try:
        status, payload = runner_queue.get(timeout=5)
    except queue.Empty as exc:
        raise TimeoutError("Web server failed to start within timeout.") from exc
    if status == "error":
        raise payload
    runner, loop = payload
    _current_handle = ServerHandle(runner=runner, thread=thread, loop=loop)
    return _current_handle
