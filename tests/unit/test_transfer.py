"""Unit tests for DataTransferEngine.

Uses a mocked control channel and data socket to test progress
reporting, completion, failure and cancellation of transfers.
"""

import pytest
from pathlib import Path
from unittest.mock import MagicMock

from ftp_engine.ftp.exceptions import (
    FTPCancelledError,
    FTPCommandError,
    FTPConnectionLostError,
    FTPInvalidArgumentError,
    FTPNotFoundError,
    FTPTransferError,
)
from ftp_engine.ftp.replies import parse_reply
from ftp_engine.ftp.transfer import (
    UNKNOWN_SIZE_HORIZON,
    DataTransferEngine,
    TransferDirection,
    TransferState,
    TransferTask,
    progress_fraction,
)


def make_control(final_reply: str = "226 Transfer complete", size_hint=None) -> MagicMock:
    """Control channel double that accepts TYPE and opens one data socket."""
    control = MagicMock()
    control.send_command.return_value = parse_reply("200 Type set")
    control.read_final_reply.return_value = parse_reply(final_reply)
    control.size.return_value = None
    data_socket = MagicMock()
    control.open_data_connection.return_value = (data_socket, size_hint)
    return control


def download_task(tmp_path: Path) -> TransferTask:
    return TransferTask(
        direction=TransferDirection.DOWNLOAD,
        local_path=str(tmp_path / "out.bin"),
        remote_path="/pub/file.bin",
    )


def upload_task(local: Path) -> TransferTask:
    return TransferTask(
        direction=TransferDirection.UPLOAD,
        local_path=str(local),
        remote_path="/incoming/file.bin",
    )


class TestProgressFraction:
    """Tests for progress_fraction helper."""

    def test_known_total(self):
        assert progress_fraction(50, 200) == 0.25

    def test_capped_at_one(self):
        assert progress_fraction(300, 200) == 1.0

    def test_zero_total(self):
        assert progress_fraction(0, 0) == 0.0

    def test_unknown_total_approaches_one(self):
        fraction = progress_fraction(UNKNOWN_SIZE_HORIZON, None)
        assert fraction == 0.5
        assert progress_fraction(100 * UNKNOWN_SIZE_HORIZON, None) < 1.0


class TestTransferTask:
    """Tests for TransferTask."""

    def test_initial_state(self):
        task = upload_task(Path("/tmp/x"))
        assert task.state == TransferState.PENDING
        assert task.bytes_transferred == 0
        assert task.fraction == 0.0

    def test_cancel_closes_attached_socket(self):
        task = upload_task(Path("/tmp/x"))
        conn = MagicMock()
        task.attach(conn)

        task.cancel()

        assert task.is_cancelled
        conn.shutdown.assert_called_once()
        conn.close.assert_called_once()

    def test_attach_after_cancel_closes_immediately(self):
        task = upload_task(Path("/tmp/x"))
        task.cancel()
        conn = MagicMock()

        task.attach(conn)

        conn.close.assert_called_once()


class TestDownload:
    """Tests for DataTransferEngine.download."""

    def test_download_writes_file_and_reports_progress(self, tmp_path):
        control = make_control()
        control.size.return_value = 8
        conn = control.open_data_connection.return_value[0]
        conn.recv.side_effect = [b"abcd", b"efgh", b""]
        fractions = []

        task = DataTransferEngine(control, block_size=4).download(download_task(tmp_path), fractions.append)

        assert (tmp_path / "out.bin").read_bytes() == b"abcdefgh"
        assert task.state == TransferState.COMPLETED
        assert task.bytes_total == 8
        assert task.bytes_transferred == 8
        assert fractions == [0.0, 0.5, 1.0]
        control.send_command.assert_called_once_with("TYPE", "I")
        control.open_data_connection.assert_called_once_with("RETR", "/pub/file.bin")

    def test_one_is_held_until_server_confirms(self, tmp_path):
        """The final chunk alone never reports completion."""
        control = make_control(final_reply="451 Local error")
        control.size.return_value = 4
        conn = control.open_data_connection.return_value[0]
        conn.recv.side_effect = [b"abcd", b""]
        fractions = []

        with pytest.raises(FTPTransferError):
            DataTransferEngine(control).download(download_task(tmp_path), fractions.append)

        assert fractions == [0.0]

    def test_size_hint_from_150_reply(self, tmp_path):
        control = make_control(size_hint=4)
        conn = control.open_data_connection.return_value[0]
        conn.recv.side_effect = [b"ab", b"cd", b""]
        fractions = []

        DataTransferEngine(control, block_size=2).download(download_task(tmp_path), fractions.append)

        assert fractions == [0.0, 0.5, 1.0]

    def test_unknown_size_progress_stays_below_one(self, tmp_path):
        control = make_control()
        conn = control.open_data_connection.return_value[0]
        conn.recv.side_effect = [b"x" * 1024, b"x" * 1024, b""]
        fractions = []

        DataTransferEngine(control, block_size=1024).download(download_task(tmp_path), fractions.append)

        assert fractions[-1] == 1.0
        assert all(0.0 <= f < 1.0 for f in fractions[:-1])
        assert fractions == sorted(fractions)

    def test_empty_file(self, tmp_path):
        control = make_control()
        control.size.return_value = 0
        conn = control.open_data_connection.return_value[0]
        conn.recv.side_effect = [b""]
        fractions = []

        task = DataTransferEngine(control).download(download_task(tmp_path), fractions.append)

        assert task.state == TransferState.COMPLETED
        assert fractions == [0.0, 1.0]

    def test_missing_remote_file(self, tmp_path):
        control = make_control()
        control.open_data_connection.side_effect = FTPNotFoundError(
            "RETR", parse_reply("550 No such file or directory."), "/pub/file.bin"
        )
        task = download_task(tmp_path)

        with pytest.raises(FTPNotFoundError):
            DataTransferEngine(control).download(task)

        assert task.state == TransferState.FAILED

    def test_other_refusal_is_transfer_error(self, tmp_path):
        control = make_control()
        control.open_data_connection.side_effect = FTPCommandError(
            "RETR", parse_reply("425 Can't open data connection"), "/pub/file.bin"
        )

        with pytest.raises(FTPTransferError):
            DataTransferEngine(control).download(download_task(tmp_path))

    def test_broken_data_connection(self, tmp_path):
        control = make_control(final_reply="426 Connection closed; transfer aborted")
        conn = control.open_data_connection.return_value[0]
        conn.recv.side_effect = [b"abcd", ConnectionResetError("reset")]

        with pytest.raises(FTPTransferError) as exc_info:
            DataTransferEngine(control).download(download_task(tmp_path))

        assert exc_info.value.reply.code == 426

    def test_unwritable_local_path(self, tmp_path):
        control = make_control()
        task = TransferTask(
            direction=TransferDirection.DOWNLOAD,
            local_path=str(tmp_path / "missing_dir" / "out.bin"),
            remote_path="/pub/file.bin",
        )

        with pytest.raises(FTPInvalidArgumentError):
            DataTransferEngine(control).download(task)

        conn = control.open_data_connection.return_value[0]
        conn.close.assert_called()
        control.read_final_reply.assert_called_once_with("abort")

    def test_refused_download_keeps_existing_local_file(self, tmp_path):
        control = make_control()
        control.open_data_connection.side_effect = FTPNotFoundError(
            "RETR", parse_reply("550 No such file or directory."), "/pub/file.bin"
        )
        task = download_task(tmp_path)
        Path(task.local_path).write_bytes(b"local data")

        with pytest.raises(FTPNotFoundError):
            DataTransferEngine(control).download(task)

        assert Path(task.local_path).read_bytes() == b"local data"

    def test_cancel_during_download(self, tmp_path):
        """Cancelling mid-stream drains the abort reply and raises."""
        control = make_control(final_reply="426 Transfer aborted")
        control.size.return_value = 12
        engine = DataTransferEngine(control, block_size=4)
        task = download_task(tmp_path)
        conn = control.open_data_connection.return_value[0]

        def recv(size):
            if task.bytes_transferred >= 4:
                task.cancel()
                raise OSError("Bad file descriptor")
            return b"abcd"

        conn.recv.side_effect = recv

        with pytest.raises(FTPCancelledError):
            engine.download(task)

        assert task.state == TransferState.CANCELLED
        control.read_final_reply.assert_called_once_with("abort")
        assert engine.current_task is None

    def test_cancel_when_abort_reply_never_comes(self, tmp_path):
        control = make_control()
        control.read_final_reply.side_effect = FTPConnectionLostError("abort")
        task = download_task(tmp_path)
        conn = control.open_data_connection.return_value[0]

        def recv(size):
            task.cancel()
            return b"abcd"

        conn.recv.side_effect = recv

        with pytest.raises(FTPCancelledError):
            DataTransferEngine(control).download(task)

    def test_cancelled_before_start(self, tmp_path):
        control = make_control()
        task = download_task(tmp_path)
        task.cancel()

        with pytest.raises(FTPCancelledError):
            DataTransferEngine(control).download(task)

        control.open_data_connection.assert_not_called()


class TestUpload:
    """Tests for DataTransferEngine.upload."""

    def test_upload_sends_file(self, tmp_path):
        local = tmp_path / "in.bin"
        local.write_bytes(b"0123456789")
        control = make_control()
        conn = control.open_data_connection.return_value[0]
        fractions = []

        task = DataTransferEngine(control, block_size=5).upload(upload_task(local), fractions.append)

        sent = b"".join(c.args[0] for c in conn.sendall.call_args_list)
        assert sent == b"0123456789"
        assert task.bytes_total == 10
        assert task.state == TransferState.COMPLETED
        assert task.duration_seconds >= 0
        assert fractions == [0.0, 0.5, 1.0]
        control.open_data_connection.assert_called_once_with("STOR", "/incoming/file.bin")

    def test_upload_missing_local_file(self, tmp_path):
        control = make_control()

        with pytest.raises(FTPInvalidArgumentError):
            DataTransferEngine(control).upload(upload_task(tmp_path / "nope.bin"))

        control.open_data_connection.assert_not_called()

    def test_upload_rejected_by_server(self, tmp_path):
        local = tmp_path / "in.bin"
        local.write_bytes(b"data")
        control = make_control(final_reply="552 Quota exceeded")

        with pytest.raises(FTPTransferError):
            DataTransferEngine(control).upload(upload_task(local))

    def test_engine_cancel_targets_current_transfer(self, tmp_path):
        local = tmp_path / "in.bin"
        local.write_bytes(b"x" * 100)
        control = make_control()
        engine = DataTransferEngine(control, block_size=10)
        conn = control.open_data_connection.return_value[0]
        conn.sendall.side_effect = lambda block: engine.cancel()
        task = upload_task(local)

        with pytest.raises(FTPCancelledError):
            engine.upload(task)

        assert task.bytes_transferred == 10

    def test_engine_cancel_when_idle(self):
        DataTransferEngine(make_control()).cancel()


class TestRetrieveText:
    """Tests for listing retrieval."""

    def test_retrieve_text(self):
        control = make_control()
        conn = control.open_data_connection.return_value[0]
        conn.recv.side_effect = [b"type=file;size=1; a.txt\r\n", b""]

        text = DataTransferEngine(control).retrieve_text("MLSD", "/pub")

        assert text == "type=file;size=1; a.txt\r\n"
        control.send_command.assert_called_once_with("TYPE", "A")
        control.open_data_connection.assert_called_once_with("MLSD", "/pub")

    def test_retrieve_text_failure_reply(self):
        control = make_control(final_reply="550 No such file or directory.")
        conn = control.open_data_connection.return_value[0]
        conn.recv.side_effect = [b""]

        with pytest.raises(FTPNotFoundError):
            DataTransferEngine(control).retrieve_text("LIST", "/gone")

    def test_invalid_utf8_is_replaced(self):
        control = make_control()
        conn = control.open_data_connection.return_value[0]
        conn.recv.side_effect = [b"caf\xe9\r\n", b""]

        text = DataTransferEngine(control).retrieve_text("LIST", "/")

        assert text.startswith("caf")
