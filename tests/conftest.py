"""Pytest configuration and shared fixtures for FTP engine tests."""

import pytest
from pathlib import Path
from typing import Generator
from dataclasses import dataclass
from unittest.mock import MagicMock

from ftp_engine.config.settings import EngineSettings


# Test constants
TEST_FTP_HOST = "127.0.0.1"
TEST_FTP_USER = "testuser"
TEST_FTP_PASS = "testpass"


@dataclass
class MockFTPConfig:
    """Credentials used against mocked or local FTP servers in tests."""
    host: str = TEST_FTP_HOST
    username: str = TEST_FTP_USER
    password: str = TEST_FTP_PASS


@pytest.fixture
def ftp_config() -> MockFTPConfig:
    """Provide mock FTP configuration for tests."""
    return MockFTPConfig()


@pytest.fixture
def fast_settings() -> EngineSettings:
    """Settings with short timeouts and no connect retry delay."""
    return EngineSettings(timeout=5, retry_delay=0, connect_retries=0)


@pytest.fixture
def mock_ftp() -> MagicMock:
    """An ftplib.FTP double with successful login and PASV replies."""
    ftp = MagicMock()
    ftp.connect.return_value = "220 Welcome"
    ftp.login.return_value = "230 Login successful"
    ftp.sendcmd.return_value = "200 OK"
    ftp.getresp.return_value = "226 Transfer complete"
    return ftp


@pytest.fixture
def temp_settings_file(tmp_path: Path) -> Generator[Path, None, None]:
    """Provide a temporary settings file path for testing."""
    settings_file = tmp_path / "settings.json"
    yield settings_file


@pytest.fixture
def sample_file(tmp_path: Path) -> Path:
    """A 200 KiB local file with non-repeating content."""
    path = tmp_path / "sample.bin"
    path.write_bytes(bytes(i % 251 for i in range(200 * 1024)))
    return path
