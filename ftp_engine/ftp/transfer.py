"""Data transfer engine for the FTP engine.

Streams files over a per-transfer data connection, reports progress
and supports cancellation at chunk boundaries.
"""

import logging
import socket
import ssl
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from ftp_engine.ftp.connection import ControlChannel
from ftp_engine.ftp.exceptions import (
    FTPCancelledError,
    FTPCommandError,
    FTPConnectionLostError,
    FTPError,
    FTPInvalidArgumentError,
    FTPNotFoundError,
    FTPPermissionError,
    FTPTimeoutError,
    FTPTransferError,
)
from ftp_engine.ftp.replies import error_for_reply
from ftp_engine.utils.validators import validate_file_path

logger = logging.getLogger("ftp_engine.transfer")

# Progress scale used while the total size is unknown
UNKNOWN_SIZE_HORIZON = 1024 * 1024


class TransferDirection(Enum):
    """Direction of a file transfer."""
    UPLOAD = "upload"
    DOWNLOAD = "download"


class TransferState(Enum):
    """Lifecycle state of a transfer."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


def progress_fraction(bytes_transferred: int, bytes_total: Optional[int]) -> float:
    """
    Fraction of a transfer that is done.

    With a known total this is the plain ratio (capped at 1). Without
    one it grows towards 1 but never reaches it.
    """
    if bytes_total:
        return min(1.0, bytes_transferred / bytes_total)
    if bytes_total == 0:
        return 0.0
    return bytes_transferred / (bytes_transferred + UNKNOWN_SIZE_HORIZON)


@dataclass
class TransferTask:
    """A single upload or download."""
    direction: TransferDirection
    local_path: str
    remote_path: str
    bytes_total: Optional[int] = None
    bytes_transferred: int = 0
    state: TransferState = TransferState.PENDING
    duration_seconds: float = 0.0
    _cancelled: threading.Event = field(default_factory=threading.Event, repr=False)
    _data_socket: Optional[socket.socket] = field(default=None, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def fraction(self) -> float:
        """Transfer progress between 0.0 and 1.0."""
        if self.state == TransferState.COMPLETED:
            return 1.0
        return progress_fraction(self.bytes_transferred, self.bytes_total)

    @property
    def is_cancelled(self) -> bool:
        """True if cancellation was requested."""
        return self._cancelled.is_set()

    def attach(self, conn: socket.socket) -> None:
        """Register the data socket so cancel() can close it."""
        with self._lock:
            self._data_socket = conn
            cancelled = self.is_cancelled
        if cancelled:
            self.close_data()

    def close_data(self) -> None:
        """Shut down and close the data socket, if any."""
        with self._lock:
            conn, self._data_socket = self._data_socket, None
        if conn is None:
            return
        try:
            # Wakes a recv() blocked in the worker thread
            conn.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        conn.close()

    def cancel(self) -> None:
        """Request cancellation and close the data connection."""
        self._cancelled.set()
        self.close_data()


ProgressCallback = Callable[[float], None]


class _ProgressReporter:
    """Emits non-decreasing fractions, holding back 1.0 until confirmation."""

    def __init__(self, callback: Optional[ProgressCallback]):
        self._callback = callback
        self._last = 0.0

    def report(self, fraction: float) -> None:
        if self._callback is None or fraction >= 1.0 or fraction < self._last:
            return
        self._last = fraction
        self._callback(fraction)

    def start(self) -> None:
        if self._callback:
            self._callback(0.0)

    def complete(self) -> None:
        self._last = 1.0
        if self._callback:
            self._callback(1.0)


class DataTransferEngine:
    """Runs file transfers over the session's control channel."""

    # Block size for FTP transfers (8KB)
    BLOCK_SIZE = 8192

    def __init__(self, control: ControlChannel, block_size: int = BLOCK_SIZE):
        """
        Initialize the transfer engine.

        Args:
            control: Control channel of the session
            block_size: Bytes per chunk read from disk or socket
        """
        self._control = control
        self._block_size = block_size
        self._current: Optional[TransferTask] = None

    @property
    def current_task(self) -> Optional[TransferTask]:
        """Transfer currently in progress, if any."""
        return self._current

    def cancel(self) -> None:
        """Cancel the transfer in progress. No-op when idle."""
        task = self._current
        if task is not None:
            task.cancel()

    def upload(
        self,
        task: TransferTask,
        on_progress: Optional[ProgressCallback] = None
    ) -> TransferTask:
        """
        Upload a local file with STOR.

        Args:
            task: Upload task (paths already normalized)
            on_progress: Called with the completed fraction after each chunk

        Returns:
            The completed task

        Raises:
            FTPInvalidArgumentError: If the local file does not exist
            FTPNotFoundError: If the remote directory does not exist
            FTPPermissionError: If the server refuses the write
            FTPTransferError: If the transfer fails
            FTPCancelledError: If the transfer was cancelled
        """
        local = Path(task.local_path)
        is_valid, error = validate_file_path(local)
        if not is_valid:
            raise FTPInvalidArgumentError("local path", error)
        task.bytes_total = local.stat().st_size

        def body(reporter: _ProgressReporter) -> None:
            with open(local, "rb") as f:
                conn = self._open(task, "STOR")

                def pump() -> None:
                    while not task.is_cancelled:
                        block = f.read(self._block_size)
                        if not block:
                            break
                        conn.sendall(block)
                        task.bytes_transferred += len(block)
                        reporter.report(task.fraction)
                    if isinstance(conn, ssl.SSLSocket) and not task.is_cancelled:
                        conn.unwrap()

                self._stream(task, pump)

        return self._run(task, on_progress, body)

    def download(
        self,
        task: TransferTask,
        on_progress: Optional[ProgressCallback] = None
    ) -> TransferTask:
        """
        Download a remote file with RETR.

        A partial file stays on disk if the transfer fails or is cancelled.

        Args:
            task: Download task (paths already normalized)
            on_progress: Called with the completed fraction after each chunk

        Returns:
            The completed task

        Raises:
            FTPInvalidArgumentError: If the local file cannot be created
            FTPNotFoundError: If the remote file does not exist
            FTPPermissionError: If the server refuses the read
            FTPTransferError: If the transfer fails
            FTPCancelledError: If the transfer was cancelled
        """
        def body(reporter: _ProgressReporter) -> None:
            task.bytes_total = self._control.size(task.remote_path)
            # The local file is only touched once the server accepts RETR
            conn = self._open(task, "RETR")
            try:
                f = open(task.local_path, "wb")
            except OSError as e:
                task.close_data()
                self._drain_abort(task)
                raise FTPInvalidArgumentError("local path", f"cannot write {task.local_path}", e)

            with f:
                def pump() -> None:
                    while not task.is_cancelled:
                        block = conn.recv(self._block_size)
                        if not block:
                            break
                        f.write(block)
                        task.bytes_transferred += len(block)
                        reporter.report(task.fraction)
                    if isinstance(conn, ssl.SSLSocket) and not task.is_cancelled:
                        conn.unwrap()

                self._stream(task, pump)

        return self._run(task, on_progress, body)

    def _run(
        self,
        task: TransferTask,
        on_progress: Optional[ProgressCallback],
        body: Callable[[_ProgressReporter], None]
    ) -> TransferTask:
        """Drive one transfer through its states."""
        reporter = _ProgressReporter(on_progress)
        start_time = time.time()
        self._current = task
        task.state = TransferState.RUNNING
        logger.info(f"Starting {task.direction.value}: {task.local_path} <-> {task.remote_path}")

        try:
            if task.is_cancelled:
                raise FTPCancelledError(task.direction.value.capitalize())
            self._binary_mode(task)
            reporter.start()
            body(reporter)
        except FTPCancelledError:
            task.state = TransferState.CANCELLED
            logger.info(f"{task.direction.value.capitalize()} cancelled: {task.remote_path}")
            raise
        except FTPError:
            task.state = TransferState.FAILED
            raise
        finally:
            task.duration_seconds = time.time() - start_time
            task.close_data()
            self._current = None

        task.state = TransferState.COMPLETED
        reporter.complete()
        logger.info(
            f"{task.direction.value.capitalize()} complete: {task.remote_path} "
            f"({task.bytes_transferred} bytes in {task.duration_seconds:.2f}s)"
        )
        return task

    def _binary_mode(self, task: TransferTask) -> None:
        """Switch the session to image (binary) type."""
        reply = self._control.send_command("TYPE", "I")
        if not reply.is_success:
            raise FTPTransferError(
                task.direction.value, task.local_path, task.remote_path, reply=reply
            )

    def _open(self, task: TransferTask, verb: str) -> socket.socket:
        """Open the data connection and start STOR/RETR."""
        try:
            conn, size_hint = self._control.open_data_connection(verb, task.remote_path)
        except (FTPNotFoundError, FTPPermissionError):
            raise
        except FTPCommandError as e:
            raise FTPTransferError(
                task.direction.value, task.local_path, task.remote_path, e, e.reply
            )

        if task.bytes_total is None and size_hint is not None:
            task.bytes_total = size_hint
        task.attach(conn)
        return conn

    def _stream(self, task: TransferTask, pump: Callable[[], None]) -> None:
        """Move the bytes, then collect the server's completion reply."""
        try:
            pump()
        except OSError as e:
            if not task.is_cancelled:
                task.close_data()
                reply = self._control.read_final_reply(task.direction.value)
                raise FTPTransferError(
                    task.direction.value, task.local_path, task.remote_path, e,
                    None if reply.is_success else reply
                )
        finally:
            task.close_data()

        if task.is_cancelled:
            self._drain_abort(task)
            raise FTPCancelledError(task.direction.value.capitalize())

        reply = self._control.read_final_reply(task.direction.value)
        if not reply.is_success:
            raise FTPTransferError(
                task.direction.value, task.local_path, task.remote_path, reply=reply
            )

    def _drain_abort(self, task: TransferTask) -> None:
        """Read the reply the server sends for an aborted transfer."""
        try:
            reply = self._control.read_final_reply("abort")
            logger.debug(f"Abort reply for {task.remote_path}: {reply}")
        except (FTPTimeoutError, FTPConnectionLostError) as e:
            # The control channel has already marked itself disconnected
            logger.warning(f"Control channel unusable after cancelling transfer: {e}")

    def retrieve_text(self, verb: str, path: str, encoding: str = "utf-8") -> str:
        """
        Run a listing command (MLSD, LIST) and return its data as text.

        Args:
            verb: Listing command
            path: Remote directory, may be empty for the current one
            encoding: Encoding of names on the server

        Returns:
            Decoded data channel contents

        Raises:
            FTPCommandError: (or subclass) if the server refuses the command
            FTPTransferError: If the data connection breaks
        """
        reply = self._control.send_command("TYPE", "A")
        if not reply.is_success:
            raise error_for_reply("set ASCII mode", reply)

        conn, _ = self._control.open_data_connection(verb, path)
        chunks = []
        try:
            while True:
                block = conn.recv(self._block_size)
                if not block:
                    break
                chunks.append(block)
            if isinstance(conn, ssl.SSLSocket):
                conn.unwrap()
        except OSError as e:
            conn.close()
            reply = self._control.read_final_reply(verb)
            raise FTPTransferError(
                "list", "", path, e, None if reply.is_success else reply
            )
        finally:
            conn.close()

        reply = self._control.read_final_reply(verb)
        if not reply.is_success:
            raise error_for_reply("list", reply, path)
        return b"".join(chunks).decode(encoding, errors="replace")
