"""Unit tests for the command line interface."""

import argparse
import json
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from ftp_engine.config.settings import EngineSettings
from ftp_engine.ftp.exceptions import FTPInvalidArgumentError, FTPNotFoundError
from ftp_engine.ftp.listing import DirectoryEntry, EntryType
from ftp_engine.ftp.replies import parse_reply
from ftp_engine import main as cli


def finished(value=None, error=None) -> MagicMock:
    """A SessionTask double that has already finished."""
    task = MagicMock()
    if error is not None:
        task.result.side_effect = error
    else:
        task.result.return_value = value
    task.iter_progress.return_value = iter([0.0, 0.5, 1.0])
    task.operation = "download"
    return task


@pytest.fixture
def session():
    session = MagicMock()
    session.__enter__.return_value = session
    session.__exit__.return_value = False
    session.connect.return_value = finished()
    return session


@pytest.fixture
def environment(session, tmp_path):
    """Patch settings, keyring, logging and the session class."""
    settings_manager = MagicMock()
    settings_manager.load.return_value = EngineSettings()
    credentials = MagicMock()
    credentials.resolve_password.side_effect = lambda address, user, password: password or ""

    with patch.object(cli, "FTPSession", return_value=session) as session_class, \
            patch.object(cli, "SettingsManager", return_value=settings_manager), \
            patch.object(cli, "CredentialManager", return_value=credentials), \
            patch.object(cli, "setup_logging"), \
            patch.object(cli, "get_log_file_path", return_value=tmp_path / "cli.log"):
        yield {
            "session_class": session_class,
            "settings_manager": settings_manager,
            "credentials": credentials,
        }


class TestCommands:
    """Tests for CLI subcommands."""

    def test_ls(self, environment, session, capsys):
        session.ls.return_value = finished([
            DirectoryEntry("docs", EntryType.DIRECTORY),
            DirectoryEntry("a.txt", EntryType.FILE, size=12,
                           modified_at=datetime(2020, 1, 1, tzinfo=timezone.utc)),
        ])

        code = cli.main(["--host", "ftp.example.com", "ls", "/pub"])

        out = capsys.readouterr().out
        assert code == 0
        assert "docs" in out
        assert "2020-01-01 00:00:00 GMT" in out
        session.connect.assert_called_once_with("ftp.example.com", "", "")
        session.ls.assert_called_once_with("/pub")

    def test_ls_json(self, environment, session, capsys):
        session.ls.return_value = finished([DirectoryEntry("ln", EntryType.SYMBOLIC_LINK, "target")])

        cli.main(["--host", "h", "ls", "--json"])

        data = json.loads(capsys.readouterr().out)
        assert data == [{"name": "ln", "type": 2, "link": "target", "size": 0, "modifiedDate": ""}]

    @pytest.mark.parametrize("command", ["mkdir", "rmdir", "rm"])
    def test_path_commands(self, environment, session, command):
        getattr(session, command).return_value = finished()

        assert cli.main(["--host", "h", command, "/x"]) == 0

        getattr(session, command).assert_called_once_with("/x")

    def test_download(self, environment, session, capsys):
        transfer = MagicMock(bytes_transferred=10, duration_seconds=0.5)
        transfer.direction.value = "download"
        session.download.return_value = finished(transfer)

        code = cli.main(["--host", "h", "download", "/remote.bin", "local.bin"])

        assert code == 0
        session.download.assert_called_once_with("local.bin", "/remote.bin")
        assert "100.0%" in capsys.readouterr().err

    def test_upload(self, environment, session):
        transfer = MagicMock(bytes_transferred=10, duration_seconds=0.5)
        transfer.direction.value = "upload"
        session.upload.return_value = finished(transfer)

        assert cli.main(["--host", "h", "upload", "local.bin", "/remote.bin"]) == 0
        session.upload.assert_called_once_with("local.bin", "/remote.bin")

    def test_ftp_error_exit_code(self, environment, session, capsys):
        session.rmdir.return_value = finished(
            error=FTPNotFoundError("remove directory", parse_reply("550 No such file"), "/x")
        )

        code = cli.main(["--host", "h", "rmdir", "/x"])

        assert code == 1
        assert "Error:" in capsys.readouterr().err


class TestOptions:
    """Tests for connection options."""

    def test_security_and_timeout_override_settings(self, environment, session):
        session.mkdir.return_value = finished()

        cli.main(["--host", "h", "--security", "ftpes", "--timeout", "9", "mkdir", "/x"])

        settings = environment["session_class"].call_args.args[0]
        assert settings.security == "ftpes"
        assert settings.timeout == 9

    def test_last_server_is_remembered(self, environment, session):
        session.mkdir.return_value = finished()

        cli.main(["--host", "ftp.example.com:2121", "--user", "alice", "-p", "pw", "mkdir", "/x"])

        environment["settings_manager"].update.assert_called_once_with(
            last_host="ftp.example.com", last_port=2121, last_username="alice"
        )

    def test_save_password(self, environment, session):
        session.mkdir.return_value = finished()

        cli.main(["--host", "h", "--user", "alice", "-p", "pw", "--save-password", "mkdir", "/x"])

        environment["credentials"].save_password.assert_called_once_with("h", "alice", "pw")

    def test_password_not_saved_by_default(self, environment, session):
        session.mkdir.return_value = finished()

        cli.main(["--host", "h", "--user", "alice", "-p", "pw", "mkdir", "/x"])

        environment["credentials"].save_password.assert_not_called()


class TestResolveAddress:
    """Tests for resolve_address."""

    def test_explicit_host(self):
        args = argparse.Namespace(host="a.example.com")
        assert cli.resolve_address(args, EngineSettings(last_host="b")) == "a.example.com"

    def test_last_host_with_port(self):
        args = argparse.Namespace(host=None)
        assert cli.resolve_address(args, EngineSettings(last_host="b", last_port=2121)) == "b:2121"

    def test_no_host_known(self):
        with pytest.raises(FTPInvalidArgumentError):
            cli.resolve_address(argparse.Namespace(host=None), EngineSettings())
