"""Session facade for the FTP engine.

FTPSession is the public entry point: it owns one control channel,
queues operations so only one command is in flight at a time, and hands
every caller a SessionTask to wait on.
"""

import itertools
import logging
from typing import List, Optional

from ftp_engine.config.settings import EngineSettings
from ftp_engine.ftp.connection import ConnectionState, ControlChannel, FTPConnectionConfig
from ftp_engine.ftp.exceptions import (
    FTPCommandError,
    FTPInvalidStateError,
    FTPNotConnectedError,
)
from ftp_engine.ftp.listing import DirectoryEntry, parse_listing
from ftp_engine.ftp.paths import normalize_path
from ftp_engine.ftp.security import SecurityMode
from ftp_engine.ftp.transfer import (
    DataTransferEngine,
    ProgressCallback,
    TransferDirection,
    TransferTask,
)
from ftp_engine.utils.threading import SerialExecutor, SessionTask

logger = logging.getLogger("ftp_engine.session")

# Replies meaning "command not understood / not implemented"
UNSUPPORTED_COMMAND_CODES = (500, 502)

_session_ids = itertools.count(1)


class FTPSession:
    """
    One connection to one FTP server.

    Usage:
        with FTPSession() as session:
            session.connect("ftp.example.com").result()
            for entry in session.ls("/pub").result():
                print(entry.name)
    """

    def __init__(self, settings: Optional[EngineSettings] = None):
        """
        Initialize the session.

        Args:
            settings: Engine settings (defaults if omitted)
        """
        self._settings = settings or EngineSettings()
        self._security = SecurityMode.parse(self._settings.security)
        self._control = ControlChannel(
            connect_retries=self._settings.connect_retries,
            retry_delay=self._settings.retry_delay
        )
        self._engine = DataTransferEngine(self._control, self._settings.block_size)
        self._executor = SerialExecutor(name=f"ftp-session-{next(_session_ids)}")
        self._connect_task: Optional[SessionTask] = None
        self._closed = False

    def __enter__(self) -> "FTPSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def settings(self) -> EngineSettings:
        """Settings the session was built with."""
        return self._settings

    @property
    def security(self) -> SecurityMode:
        """Security mode used by the next connect."""
        return self._security

    @property
    def control(self) -> ControlChannel:
        """The session's control channel."""
        return self._control

    @property
    def state(self) -> ConnectionState:
        """Session state; BUSY while a command runs on a ready channel."""
        state = self._control.state
        current = self._executor.current
        if state == ConnectionState.READY and current is not None and not current.is_done:
            return ConnectionState.BUSY
        return state

    @property
    def pending_tasks(self) -> List[SessionTask]:
        """Running task (if any) followed by queued tasks."""
        current = self._executor.current
        tasks = [current] if current is not None and not current.is_done else []
        return tasks + self._executor.pending

    def set_security(self, mode) -> None:
        """
        Choose the security mode for the next connect.

        Args:
            mode: "ftp", "ftps" (implicit TLS) or "ftpes" (explicit TLS)

        Raises:
            FTPInvalidArgumentError: If the mode is unknown
            FTPInvalidStateError: If the session is connected or a connect
                is already queued
        """
        security = SecurityMode.parse(mode)
        state = self.state
        if state == ConnectionState.DISCONNECTED and self._connect_pending():
            state = ConnectionState.CONNECTING
        if state != ConnectionState.DISCONNECTED:
            raise FTPInvalidStateError("Set security", state.value)
        self._security = security
        logger.info(f"Security mode set to {security.value}")

    def connect(self, address: str, username: str = "", password: str = "") -> SessionTask[None]:
        """
        Connect and log in.

        Args:
            address: "host" or "host:port"
            username: Login name; empty with an empty password means anonymous
            password: Login password

        Returns:
            Task resolving to None once logged in

        Raises:
            FTPInvalidArgumentError: If the address is invalid
        """
        config = FTPConnectionConfig.from_address(
            address,
            username,
            password,
            security=self._security,
            passive_mode=self._settings.passive_mode,
            timeout=self._settings.timeout,
            verify_tls=self._settings.verify_tls,
        )
        self._connect_task = self._submit("connect", lambda task: self._control.connect(config))
        return self._connect_task

    def ls(self, remote_path: str) -> SessionTask[List[DirectoryEntry]]:
        """
        List a remote directory.

        Uses MLSD and falls back to LIST on servers without it.

        Returns:
            Task resolving to a list of DirectoryEntry
        """
        path = normalize_path(remote_path)
        return self._submit("list", lambda task: self._list(path))

    def mkdir(self, remote_path: str) -> SessionTask[None]:
        """Create a remote directory (MKD)."""
        path = normalize_path(remote_path)
        return self._submit("create directory", lambda task: self._command("create directory", "MKD", path))

    def rmdir(self, remote_path: str) -> SessionTask[None]:
        """Remove a remote directory (RMD). Most servers require it to be empty."""
        path = normalize_path(remote_path)
        return self._submit("remove directory", lambda task: self._command("remove directory", "RMD", path))

    def rm(self, remote_path: str) -> SessionTask[None]:
        """Delete a remote file (DELE)."""
        path = normalize_path(remote_path)
        return self._submit("delete file", lambda task: self._command("delete file", "DELE", path))

    def upload(
        self,
        local_path: str,
        remote_path: str,
        on_progress: Optional[ProgressCallback] = None
    ) -> SessionTask[TransferTask]:
        """
        Upload a local file.

        Args:
            local_path: File to send
            remote_path: Destination on the server (may be renamed)
            on_progress: Optional callable receiving fractions in [0, 1]

        Returns:
            Task resolving to the completed TransferTask; progress is
            also available through ``task.iter_progress()``
        """
        transfer = TransferTask(
            direction=TransferDirection.UPLOAD,
            local_path=normalize_path(local_path),
            remote_path=normalize_path(remote_path),
        )
        return self._submit_transfer(transfer, on_progress)

    def download(
        self,
        local_path: str,
        remote_path: str,
        on_progress: Optional[ProgressCallback] = None
    ) -> SessionTask[TransferTask]:
        """
        Download a remote file.

        Args:
            local_path: File to create locally (may be renamed)
            remote_path: File on the server
            on_progress: Optional callable receiving fractions in [0, 1]

        Returns:
            Task resolving to the completed TransferTask
        """
        transfer = TransferTask(
            direction=TransferDirection.DOWNLOAD,
            local_path=normalize_path(local_path),
            remote_path=normalize_path(remote_path),
        )
        return self._submit_transfer(transfer, on_progress)

    def cancel(self) -> None:
        """Cancel all queued and running operations. Never fails."""
        cancelled = self._executor.cancel_all()
        if cancelled:
            logger.info(f"Cancelled {len(cancelled)} pending operation(s)")

    def disconnect(self) -> SessionTask[None]:
        """
        Cancel pending operations, then close the connection.

        Allowed in any state; resolves immediately if already disconnected.
        """
        self.cancel()
        return self._submit("disconnect", lambda task: self._control.disconnect())

    def close(self, timeout: Optional[float] = None) -> None:
        """
        Disconnect and stop the session's worker thread.

        Args:
            timeout: Maximum seconds to wait for the disconnect
        """
        if self._closed:
            return
        self._closed = True
        task = self.disconnect()
        try:
            task.get_result(timeout)
        except TimeoutError:
            logger.warning("Disconnect did not finish before close timeout")
        self._executor.shutdown(wait=True, timeout=timeout)

    def _submit(self, operation: str, target, on_cancel=None) -> SessionTask:
        """Queue an operation behind all earlier ones."""
        task = SessionTask(operation, target, on_cancel)
        logger.debug(f"Queued {operation}")
        return self._executor.submit(task)

    def _submit_transfer(
        self,
        transfer: TransferTask,
        on_progress: Optional[ProgressCallback]
    ) -> SessionTask[TransferTask]:
        """Queue an upload or download."""
        operation = transfer.direction.value

        def run(task: SessionTask) -> TransferTask:
            self._require_connection(operation)

            def progress(fraction: float) -> None:
                task.report_progress(fraction)
                if on_progress:
                    on_progress(fraction)

            if transfer.direction is TransferDirection.UPLOAD:
                return self._engine.upload(transfer, progress)
            return self._engine.download(transfer, progress)

        return self._submit(operation, run, on_cancel=transfer.cancel)

    def _connect_pending(self) -> bool:
        """True while a queued or running connect has not finished."""
        task = self._connect_task
        return task is not None and not task.is_done

    def _require_connection(self, operation: str) -> None:
        if not self._control.is_connected:
            raise FTPNotConnectedError(operation.capitalize())

    def _command(self, operation: str, verb: str, path: str) -> None:
        """Run a single path command."""
        self._require_connection(operation)
        reply = self._control.execute(operation, verb, path)
        logger.info(f"{operation.capitalize()} '{path}': {reply}")

    def _list(self, path: str) -> List[DirectoryEntry]:
        """Fetch and parse a directory listing."""
        self._require_connection("list")
        try:
            raw = self._engine.retrieve_text("MLSD", path)
        except FTPCommandError as e:
            if e.code not in UNSUPPORTED_COMMAND_CODES:
                raise
            logger.info(f"MLSD not supported ({e.reply}), falling back to LIST")
            raw = self._engine.retrieve_text("LIST", path)
        return parse_listing(raw)
