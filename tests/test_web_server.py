"""Tests for the operator web server."""

import asyncio

import pytest
import pytest_asyncio

from disc_archiver.app.context import AppContext
from disc_archiver.app.session import ArchiveSession
from disc_archiver.domain.models import DriveState, VolumeInfo
from disc_archiver.services.drives import DriveHandle
from disc_archiver.storage.exceptions import LaunchFailError
from disc_archiver.web import server

VOLUME = VolumeInfo(name="FOO", block_size=2048, block_count=10)


# ==============================================================================
# Test Fixtures
# ==============================================================================


@pytest.fixture
def session(output_dir) -> ArchiveSession:
    archive_session = ArchiveSession(
        output_dir=output_dir,
        discover=lambda: [DriveHandle("/dev/sr0"), DriveHandle("/dev/sr1")],
    )
    archive_session.discover()
    for drive in archive_session.drives:
        drive.transition(DriveState.NO_DISC)
    return archive_session


@pytest.fixture
def app_context() -> AppContext:
    context = AppContext()
    context.add_log("Found 2 disc drives", source="inventory")
    return context


@pytest_asyncio.fixture
async def client(aiohttp_client, session, app_context):
    return await aiohttp_client(server.create_app(session, app_context))


def _wait_for_name(drive: DriveHandle) -> None:
    drive.transition(DriveState.COPYING, volume=VOLUME)
    drive.transition(DriveState.WAITING_FOR_NAME)


# ==============================================================================
# Drive Status Endpoints
# ==============================================================================


class TestDriveEndpoints:
    """Tests for GET /drives and GET /drives/{index}."""

    @pytest.mark.asyncio
    async def test_list_drives(self, client):
        resp = await client.get("/drives")

        assert resp.status == 200
        assert resp.headers["Cache-Control"].startswith("no-cache")
        data = await resp.json()
        assert [d["device_path"] for d in data["drives"]] == ["/dev/sr0", "/dev/sr1"]
        assert [d["index"] for d in data["drives"]] == [0, 1]
        assert data["drives"][0]["state"] == "no_disc"

    @pytest.mark.asyncio
    async def test_get_drive(self, client, session):
        _wait_for_name(session.drive(1))

        resp = await client.get("/drives/1")

        assert resp.status == 200
        data = await resp.json()
        assert data["state"] == "waiting_for_name"
        assert data["suggested_name"] == "FOO.iso"
        assert data["volume"]["total_bytes"] == 20480

    @pytest.mark.asyncio
    async def test_unknown_drive(self, client):
        resp = await client.get("/drives/7")

        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_logs(self, client):
        resp = await client.get("/logs")

        data = await resp.json()
        assert data["logs"][0]["message"] == "Found 2 disc drives"


# ==============================================================================
# Naming Exchange
# ==============================================================================


class TestNameEndpoint:
    """Tests for POST /drives/{index}/name."""

    @pytest.mark.asyncio
    async def test_new_name_saves(self, client, session):
        _wait_for_name(session.drive(0))

        resp = await client.post("/drives/0/name", json={"name": "FOO.iso"})

        assert resp.status == 200
        data = await resp.json()
        assert data["state"] == "saving"
        assert data["name"] == "FOO.iso"

    @pytest.mark.asyncio
    async def test_existing_name_needs_confirmation(self, client, session, output_dir):
        (output_dir / "FOO.iso").write_bytes(b"old")
        _wait_for_name(session.drive(0))

        resp = await client.post("/drives/0/name", json={"name": "FOO.iso"})

        data = await resp.json()
        assert data["state"] == "confirming_name"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{}, {"name": ""}, {"name": "  "}, {"name": 5}])
    async def test_blank_name_rejected(self, client, session, body):
        _wait_for_name(session.drive(0))

        resp = await client.post("/drives/0/name", json=body)

        assert resp.status == 400
        assert session.drive(0).status.state is DriveState.WAITING_FOR_NAME

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["../FOO.iso", "sub/FOO.iso", ".."])
    async def test_directory_names_rejected(self, client, session, name):
        _wait_for_name(session.drive(0))

        resp = await client.post("/drives/0/name", json={"name": name})

        assert resp.status == 400

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["a\x00b.iso", "x" * 300, "FOO.iso"])
    async def test_unusable_names_rejected(self, client, session, output_dir, name):
        (output_dir / "FOO.iso").mkdir()
        _wait_for_name(session.drive(0))

        resp = await client.post("/drives/0/name", json={"name": name})

        assert resp.status == 400
        assert "error" in await resp.json()
        assert session.drive(0).status.state is DriveState.WAITING_FOR_NAME

    @pytest.mark.asyncio
    async def test_invalid_json_rejected(self, client, session):
        _wait_for_name(session.drive(0))

        resp = await client.post("/drives/0/name", data=b"{not json")

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_name_while_copying_conflicts(self, client, session):
        session.drive(0).transition(DriveState.COPYING, volume=VOLUME)

        resp = await client.post("/drives/0/name", json={"name": "FOO.iso"})

        assert resp.status == 409
        assert "error" in await resp.json()

    @pytest.mark.asyncio
    async def test_unknown_drive(self, client):
        resp = await client.post("/drives/3/name", json={"name": "FOO.iso"})

        assert resp.status == 404


class TestOverwriteEndpoint:
    """Tests for POST /drives/{index}/overwrite."""

    @pytest.mark.asyncio
    async def test_accept(self, client, session):
        drive = session.drive(0)
        _wait_for_name(drive)
        drive.submit_name("FOO.iso", exists=lambda path: True)

        resp = await client.post("/drives/0/overwrite", json={"accept": True})

        data = await resp.json()
        assert data["state"] == "saving"
        assert data["name"] == "FOO.iso"

    @pytest.mark.asyncio
    async def test_decline(self, client, session):
        drive = session.drive(0)
        _wait_for_name(drive)
        drive.submit_name("FOO.iso", exists=lambda path: True)

        resp = await client.post("/drives/0/overwrite", json={"accept": False})

        assert (await resp.json())["state"] == "waiting_for_name"

    @pytest.mark.asyncio
    async def test_not_confirming_conflicts(self, client, session):
        _wait_for_name(session.drive(0))

        resp = await client.post("/drives/0/overwrite", json={"accept": True})

        assert resp.status == 409

    @pytest.mark.asyncio
    async def test_accept_must_be_boolean(self, client, session):
        resp = await client.post("/drives/0/overwrite", json={"accept": "yes"})

        assert resp.status == 400


# ==============================================================================
# Tray Actions
# ==============================================================================


class TestTrayEndpoints:
    """Tests for POST /drives/{index}/eject and /close."""

    @pytest.mark.asyncio
    async def test_eject(self, client, mocker):
        eject = mocker.patch("disc_archiver.web.server.eject_drive_disc", return_value=True)

        resp = await client.post("/drives/1/eject")

        assert resp.status == 200
        assert await resp.json() == {"device_path": "/dev/sr1", "success": True}
        eject.assert_called_once_with("/dev/sr1")

    @pytest.mark.asyncio
    async def test_close_failure_reported(self, client, mocker):
        mocker.patch("disc_archiver.web.server.close_drive_disc", return_value=False)

        resp = await client.post("/drives/0/close")

        assert resp.status == 200
        assert (await resp.json())["success"] is False

    @pytest.mark.asyncio
    async def test_launch_failure_is_server_error(self, client, mocker):
        mocker.patch(
            "disc_archiver.web.server.eject_drive_disc",
            side_effect=LaunchFailError("eject", "not found"),
        )

        resp = await client.post("/drives/0/eject")

        assert resp.status == 500
        assert (await resp.json())["error"] == "Failed to launch eject. Is it not installed?"


# ==============================================================================
# WebSocket Feed
# ==============================================================================


class TestDrivesWebSocket:
    """Tests for GET /ws/drives."""

    @pytest.mark.asyncio
    async def test_sends_snapshot_on_connect(self, client):
        ws = await client.ws_connect("/ws/drives")
        try:
            message = await asyncio.wait_for(ws.receive_json(), timeout=5)
            assert len(message["drives"]) == 2
            assert message["drives"][0]["has_disc"] is False
        finally:
            await ws.close()

    @pytest.mark.asyncio
    async def test_pushes_changes(self, client, session):
        ws = await client.ws_connect("/ws/drives")
        try:
            await asyncio.wait_for(ws.receive_json(), timeout=5)

            session.drive(0).set_has_disc(True)

            message = await asyncio.wait_for(ws.receive_json(), timeout=5)
            while not message["drives"][0]["has_disc"]:
                message = await asyncio.wait_for(ws.receive_json(), timeout=5)
            assert message["drives"][0]["has_disc"] is True
        finally:
            await ws.close()

    @pytest.mark.asyncio
    async def test_listener_removed_on_shutdown(self, aiohttp_client, session):
        app = server.create_app(session)
        test_client = await aiohttp_client(app)
        notifier = app[server.NOTIFIER_KEY]
        assert notifier.mark_update_threadsafe in session.drive(0)._listeners

        await test_client.close()

        assert notifier.mark_update_threadsafe not in session.drive(0)._listeners


class TestDriveUpdateNotifier:
    """Tests for DriveUpdateNotifier."""

    @pytest.mark.asyncio
    async def test_wait_returns_after_mark(self):
        notifier = server.DriveUpdateNotifier(asyncio.get_running_loop())

        waiter = asyncio.create_task(notifier.wait_for_update(0, timeout=5))
        await asyncio.sleep(0)
        notifier.mark_update_threadsafe()

        assert await asyncio.wait_for(waiter, timeout=5) == 1

    @pytest.mark.asyncio
    async def test_wait_times_out_without_update(self):
        notifier = server.DriveUpdateNotifier(asyncio.get_running_loop())

        assert await notifier.wait_for_update(0, timeout=0.01) == 0

    @pytest.mark.asyncio
    async def test_pending_update_returns_immediately(self):
        notifier = server.DriveUpdateNotifier(asyncio.get_running_loop())
        notifier.mark_update_threadsafe()
        await asyncio.sleep(0.01)

        assert await notifier.wait_for_update(0, timeout=5) == 1

    @pytest.mark.asyncio
    async def test_update_id_counts_marks(self):
        notifier = server.DriveUpdateNotifier(asyncio.get_running_loop())
        assert notifier.get_update_id() == 0

        notifier.mark_update_threadsafe()
        notifier.mark_update_threadsafe()
        await asyncio.sleep(0.01)

        assert notifier.get_update_id() == 2
        assert notifier._pending == set()


# ==============================================================================
# Server Thread
# ==============================================================================


class TestServerLifecycle:
    """Tests for start_server() and stop_server()."""

    def test_start_and_stop(self, session, unused_tcp_port):
        handle = server.start_server(session, host="127.0.0.1", port=unused_tcp_port)
        try:
            assert server.is_running()
            assert server.start_server(session, host="127.0.0.1", port=unused_tcp_port) is handle
        finally:
            assert server.stop_server() is True

        assert not server.is_running()
        assert not handle.thread.is_alive()

    def test_stop_without_server(self):
        assert server.stop_server() is False
