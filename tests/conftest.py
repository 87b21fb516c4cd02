"""
Pytest configuration and shared fixtures for disc-archiver tests.

This module provides common fixtures and utilities used across all test modules.
"""

import subprocess
from pathlib import Path
from typing import Callable, List
from unittest.mock import Mock

import pytest

from disc_archiver.config import settings
from disc_archiver.domain.models import DriveState
from disc_archiver.services.drives import DriveHandle


# ==============================================================================
# Tool Output Fixtures
# ==============================================================================


@pytest.fixture
def lsscsi_output() -> str:
    """
    Fixture providing lsscsi output with two optical drives and two disks.

    Returns:
        Text as printed by ``lsscsi`` (device column padded by one space).
    """
    return (
        "[0:0:0:0]    disk    ATA      Samsung SSD 860  2B6Q  /dev/sda \n"
        "[1:0:0:0]    cd/dvd  HL-DT-ST DVDRAM GH24NSD1  LG00  /dev/sr0 \n"
        "[2:0:0:0]    disk    WDC      WD40EFRX-68N32N0 0A82  /dev/sdb \n"
        "[3:0:0:0]    cd/dvd  ASUS     DRW-24D5MT       1.00  /dev/sr1 \n"
    )


@pytest.fixture
def blkid_output() -> str:
    """Fixture providing blkid output where only /dev/sr0 holds a disc."""
    return (
        '/dev/sda1: UUID="1234-5678" TYPE="vfat"\n'
        '/dev/sda2: UUID="0b4c8a1e-7a51-4b6a-9b0e-7d3f5c0e2b11" TYPE="ext4"\n'
        '/dev/sr0: UUID="2023-01-01-00-00-00-00" LABEL="FOO" TYPE="iso9660"\n'
    )


def make_iso_info(
    volume_id: str = "FOO", block_size: str = "2048", volume_size: str = "10"
) -> str:
    """Build an ``isoinfo -d`` descriptor dump."""
    lines = [
        "CD-ROM is in ISO 9660 format",
        "System id: LINUX",
        f"Volume id: {volume_id}",
        "Volume set id: ",
        "Publisher id: ",
        "Data preparer id: ",
        "Application id: GENISOIMAGE ISO 9660/HFS FILESYSTEM CREATOR",
        "Copyright File id: ",
        "Abstract File id: ",
        "Bibliographic File id: ",
        "Volume set size is: 1",
        "Volume set sequence number is: 1",
        f"Logical block size is: {block_size}",
        f"Volume size is: {volume_size}",
    ]
    return "".join(f"{line}\n" for line in lines)


@pytest.fixture
def iso_info_output() -> str:
    """Fixture providing an isoinfo dump for volume FOO (10 x 2048 bytes)."""
    return make_iso_info()


# ==============================================================================
# Subprocess Mock Fixtures
# ==============================================================================


def completed(stdout: bytes = b"", returncode: int = 0, stderr: bytes = b"") -> Mock:
    """Build a fake ``subprocess.CompletedProcess`` with byte output."""
    result = Mock(spec=subprocess.CompletedProcess)
    result.returncode = returncode
    result.stdout = stdout
    result.stderr = stderr
    return result


@pytest.fixture
def mock_subprocess_run(mocker) -> Mock:
    """
    Fixture providing a mock for subprocess.run.

    Returns:
        Mock object for subprocess.run returning an empty successful result.
    """
    return mocker.patch("subprocess.run", return_value=completed())


@pytest.fixture
def mock_subprocess_missing(mocker) -> Mock:
    """Fixture providing a subprocess.run that cannot find the executable."""
    return mocker.patch(
        "subprocess.run", side_effect=FileNotFoundError(2, "No such file or directory")
    )


@pytest.fixture
def capture_subprocess_calls(mocker) -> List[List[str]]:
    """
    Fixture that captures all subprocess.run calls for inspection.

    Returns:
        List that will contain all subprocess command arguments.
    """
    calls = []

    def track_call(cmd, **kwargs):
        calls.append(cmd)
        return completed()

    mocker.patch("subprocess.run", side_effect=track_call)
    return calls


# ==============================================================================
# Drive Fixtures
# ==============================================================================


@pytest.fixture
def output_dir(tmp_path) -> Path:
    """Fixture providing an empty directory that receives finished images."""
    directory = tmp_path / "images"
    directory.mkdir()
    return directory


@pytest.fixture
def drive(output_dir) -> DriveHandle:
    """Fixture providing a drive handle that has left SETUP."""
    handle = DriveHandle("/dev/sr0", output_dir=output_dir)
    handle.transition(DriveState.NO_DISC)
    return handle


@pytest.fixture
def disc_image(tmp_path) -> Callable[[bytes], Path]:
    """
    Fixture returning a factory for fake device files.

    The lifecycle engine opens the device path directly, so a regular file
    stands in for /dev/srN.
    """

    def factory(data: bytes) -> Path:
        path = tmp_path / "sr0.img"
        path.write_bytes(data)
        return path

    return factory


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture
def temp_settings_file(tmp_path) -> Path:
    """
    Fixture providing a temporary settings file path.

    Args:
        tmp_path: pytest's built-in temporary directory fixture.

    Returns:
        Path to a temporary settings file.
    """
    settings_dir = tmp_path / ".config" / "disc-archiver"
    settings_dir.mkdir(parents=True, exist_ok=True)
    return settings_dir / "settings.json"


@pytest.fixture(autouse=True)
def reset_settings(tmp_path, monkeypatch):
    """
    Auto-use fixture that isolates tests from the user's settings file.

    Every test starts from the built-in defaults with the settings path
    pointing into its own temporary directory.
    """
    monkeypatch.setattr(settings, "SETTINGS_PATH", tmp_path / "no-settings.json")
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)
    yield
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)


@pytest.fixture
def iso_info_factory() -> Callable[..., str]:
    """Fixture exposing :func:`make_iso_info` to test modules."""
    return make_iso_info


@pytest.fixture
def completed_process() -> Callable[..., Mock]:
    """Fixture exposing :func:`completed` to test modules."""
    return completed
