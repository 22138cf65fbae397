"""FTP control channel management for the FTP engine.

Provides ConnectionState enum, FTPConnectionConfig dataclass,
and ControlChannel class for the single command/response connection
of a session.
"""

import logging
import socket
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from ftplib import FTP, error_perm, error_proto, error_reply, error_temp
from typing import Callable, Optional, Tuple

from ftp_engine.ftp.exceptions import (
    FTPAuthenticationError,
    FTPConnectError,
    FTPConnectionLostError,
    FTPError,
    FTPInvalidArgumentError,
    FTPInvalidStateError,
    FTPNotConnectedError,
    FTPProtocolError,
    FTPTimeoutError,
)
from ftp_engine.ftp.replies import FTPReply, error_for_reply, parse_reply, reply_from_error
from ftp_engine.ftp.security import SecurityMode, create_client
from ftp_engine.utils.validators import split_address, validate_host, validate_port, validate_timeout

logger = logging.getLogger("ftp_engine.control")

ANONYMOUS_USER = "anonymous"
ANONYMOUS_PASSWORD = "anonymous@"


class ConnectionState(Enum):
    """Connection state of a control channel or session."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    BUSY = "busy"


@dataclass(frozen=True)
class FTPConnectionConfig:
    """FTP connection configuration, immutable once built."""
    host: str
    port: Optional[int] = None
    username: str = ""
    password: str = field(default="", repr=False)
    security: SecurityMode = SecurityMode.PLAIN
    passive_mode: bool = True
    timeout: float = 30
    verify_tls: bool = True

    def __post_init__(self):
        """Validate configuration and fill in defaults."""
        is_valid, error = validate_host(self.host)
        if not is_valid:
            raise FTPInvalidArgumentError("host", error)

        security = SecurityMode.parse(self.security)
        object.__setattr__(self, "security", security)

        if self.port is None:
            object.__setattr__(self, "port", security.default_port)
        is_valid, error = validate_port(self.port)
        if not is_valid:
            raise FTPInvalidArgumentError("port", error)

        is_valid, error = validate_timeout(self.timeout)
        if not is_valid:
            raise FTPInvalidArgumentError("timeout", error)

        username = self.username or ""
        password = self.password or ""
        if not username and not password:
            username, password = ANONYMOUS_USER, ANONYMOUS_PASSWORD
        object.__setattr__(self, "username", username)
        object.__setattr__(self, "password", password)

    @classmethod
    def from_address(
        cls,
        address: str,
        username: str = "",
        password: str = "",
        **kwargs
    ) -> "FTPConnectionConfig":
        """
        Build a configuration from a "host" or "host:port" address.

        Args:
            address: Server address without protocol prefix
            username: Login name, empty for anonymous
            password: Login password, empty for anonymous
            **kwargs: Other FTPConnectionConfig fields

        Raises:
            FTPInvalidArgumentError: If the address or another field is invalid
        """
        try:
            host, port = split_address(address)
        except ValueError as e:
            raise FTPInvalidArgumentError("address", str(e))
        return cls(host=host, port=port, username=username, password=password, **kwargs)


class ControlChannel:
    """Manages the command/response connection to one FTP server."""

    def __init__(self, connect_retries: int = 1, retry_delay: float = 0.5):
        """
        Initialize the control channel.

        Args:
            connect_retries: Extra connect attempts after a transient (4xx) reply
            retry_delay: Seconds to wait between connect attempts
        """
        self._ftp: Optional[FTP] = None
        self._config: Optional[FTPConnectionConfig] = None
        self._state = ConnectionState.DISCONNECTED
        self._connected_at: Optional[datetime] = None
        self._error_message: Optional[str] = None
        self._welcome: Optional[str] = None
        self._connect_retries = connect_retries
        self._retry_delay = retry_delay
        self._lock = threading.Lock()

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """True if currently connected."""
        return self._state == ConnectionState.READY

    @property
    def config(self) -> Optional[FTPConnectionConfig]:
        """Current connection configuration."""
        return self._config

    @property
    def connected_at(self) -> Optional[datetime]:
        """Timestamp when connection was established."""
        return self._connected_at

    @property
    def error_message(self) -> Optional[str]:
        """Reason of the last failed connect or lost connection."""
        return self._error_message

    @property
    def welcome(self) -> Optional[str]:
        """Greeting sent by the server on connect."""
        return self._welcome

    @property
    def ftp(self) -> FTP:
        """
        Get the underlying FTP object.

        Raises:
            FTPNotConnectedError: If not connected
        """
        if not self.is_connected or self._ftp is None:
            raise FTPNotConnectedError("FTP access")
        return self._ftp

    @property
    def timeout(self) -> float:
        """Reply timeout of the current configuration."""
        return self._config.timeout if self._config else 30

    def connect(self, config: FTPConnectionConfig) -> None:
        """
        Establish the FTP connection and log in.

        Transient (4xx) replies during greeting or login are retried
        up to ``connect_retries`` times.

        Args:
            config: Connection configuration

        Raises:
            FTPInvalidStateError: If already connected
            FTPConnectError: If connection or handshake fails
            FTPAuthenticationError: If login fails
            FTPTimeoutError: If connection times out
        """
        if self._state != ConnectionState.DISCONNECTED:
            raise FTPInvalidStateError("Connect", self._state.value)

        self._config = config
        self._state = ConnectionState.CONNECTING
        self._error_message = None
        attempts = self._connect_retries + 1

        for attempt in range(1, attempts + 1):
            logger.info(
                f"Connecting to {config.host}:{config.port} "
                f"({config.security.value}, attempt {attempt}/{attempts})"
            )
            try:
                self._ftp = self._open(config)
                break
            except FTPConnectError as e:
                self._discard()
                if e.reply is not None and e.reply.is_transient and attempt < attempts:
                    logger.warning(f"Transient reply while connecting, retrying: {e.reply}")
                    time.sleep(self._retry_delay)
                    continue
                self._fail(e)
                raise
            except FTPError as e:
                self._discard()
                self._fail(e)
                raise

        self._state = ConnectionState.READY
        self._connected_at = datetime.now()
        logger.info(f"Connected to {config.host}:{config.port} as {config.username}")

    def _open(self, config: FTPConnectionConfig) -> FTP:
        """Connect, secure and authenticate one ftplib client."""
        ftp = create_client(config.security, config.timeout, config.verify_tls)
        self._ftp = ftp

        try:
            self._welcome = ftp.connect(
                host=config.host,
                port=config.port,
                timeout=config.timeout
            )
        except socket.timeout:
            raise FTPTimeoutError("Connection", config.timeout)
        except (error_perm, error_temp, error_reply, error_proto) as e:
            raise FTPConnectError(config.host, config.port, e, reply_from_error(e))
        except (socket.error, OSError, EOFError) as e:
            raise FTPConnectError(config.host, config.port, e)
        logger.debug(f"Server greeting: {self._welcome}")

        if config.security is SecurityMode.EXPLICIT_TLS:
            self._handshake(config, "TLS upgrade", ftp.auth)

        try:
            ftp.login(user=config.username, passwd=config.password)
        except error_perm as e:
            raise FTPAuthenticationError(
                config.host, config.port, config.username, e, reply_from_error(e)
            )
        except socket.timeout:
            raise FTPTimeoutError("Login", config.timeout)
        except (error_temp, error_reply, error_proto) as e:
            raise FTPConnectError(config.host, config.port, e, reply_from_error(e))
        except (socket.error, OSError, EOFError) as e:
            raise FTPConnectError(config.host, config.port, e)

        if config.security.uses_tls:
            # Protect the data channel as well
            self._handshake(config, "data channel protection", ftp.prot_p)

        ftp.set_pasv(config.passive_mode)
        return ftp

    def _handshake(self, config: FTPConnectionConfig, step: str, call: Callable[[], str]) -> None:
        """Run a pre-login or post-login negotiation step."""
        try:
            reply = call()
            logger.debug(f"{step}: {reply}")
        except socket.timeout:
            raise FTPTimeoutError(step.capitalize(), config.timeout)
        except (error_perm, error_temp, error_reply, error_proto) as e:
            raise FTPConnectError(config.host, config.port, e, reply_from_error(e))
        except (socket.error, OSError, EOFError) as e:
            raise FTPConnectError(config.host, config.port, e)

    def _discard(self) -> None:
        """Drop a half-open client without talking to the server."""
        if self._ftp is not None:
            try:
                self._ftp.close()
            except OSError as e:
                logger.debug(f"Ignoring error while closing socket: {e}")
        self._ftp = None

    def _fail(self, error: Exception) -> None:
        """Record a failed connect."""
        self._state = ConnectionState.DISCONNECTED
        self._error_message = str(error)
        logger.warning(f"Connect failed: {error}")

    def disconnect(self) -> None:
        """Close FTP connection gracefully. Safe to call when disconnected."""
        if self._ftp:
            try:
                self._ftp.quit()
            except (error_perm, error_temp, error_reply, error_proto, OSError, EOFError) as e:
                # QUIT is a courtesy, the socket is closed below regardless
                logger.debug(f"QUIT failed: {e}")
            self._discard()
            logger.info("Disconnected")

        self._ftp = None
        self._state = ConnectionState.DISCONNECTED
        self._connected_at = None

    def _connection_lost(self, error: Exception) -> None:
        """Tear down after the server stopped answering."""
        self._error_message = str(error)
        logger.warning(f"Control connection dropped: {error}")
        self._discard()
        self._state = ConnectionState.DISCONNECTED
        self._connected_at = None

    def _exchange(self, operation: str, call: Callable[[FTP], str]) -> FTPReply:
        """
        Run one ftplib request/response call and parse its reply.

        Failing replies (4xx/5xx) are returned, not raised; the caller
        decides how to map them.
        """
        ftp = self.ftp
        try:
            raw = call(ftp)
        except (error_perm, error_temp) as e:
            reply = reply_from_error(e)
            if reply is None:
                raise FTPProtocolError(str(e), e)
            return reply
        except (error_proto, error_reply) as e:
            raise FTPProtocolError(str(e), e)
        except socket.timeout as e:
            # A late reply would desynchronize the channel
            self._connection_lost(e)
            raise FTPTimeoutError(operation, self.timeout)
        except (EOFError, OSError) as e:
            self._connection_lost(e)
            raise FTPConnectionLostError(operation, e)

        return parse_reply(raw)

    def send_command(self, verb: str, *args: str) -> FTPReply:
        """
        Send one command line and read its reply.

        Args:
            verb: Command verb (e.g. "MKD")
            *args: Command arguments, joined with single spaces

        Returns:
            FTPReply (may be a 4xx/5xx failure reply)

        Raises:
            FTPNotConnectedError: If not connected
            FTPProtocolError: If the reply is malformed
            FTPTimeoutError: If no reply arrives within the timeout
            FTPConnectionLostError: If the connection closed
        """
        line = " ".join((verb.upper(),) + args)
        with self._lock:
            logger.debug(f"-> {line}")
            reply = self._exchange(verb.upper(), lambda ftp: ftp.sendcmd(line))
            logger.debug(f"<- {reply}")
        return reply

    def execute(self, operation: str, verb: str, path: Optional[str] = None) -> FTPReply:
        """
        Send a command and raise if the server refuses it.

        Args:
            operation: Human-readable operation name used in errors
            verb: Command verb
            path: Optional path argument

        Returns:
            The success reply

        Raises:
            FTPCommandError: (or subclass) for a failure reply
        """
        reply = self.send_command(verb, path) if path is not None else self.send_command(verb)
        if reply.is_transient or reply.is_permanent:
            raise error_for_reply(operation, reply, path)
        return reply

    def size(self, path: str) -> Optional[int]:
        """
        Ask the server for a file size.

        Returns:
            Size in bytes, or None if the server cannot tell
        """
        reply = self.send_command("SIZE", path)
        if not reply.is_success:
            return None
        try:
            return int(reply.text.split()[0])
        except (IndexError, ValueError):
            logger.debug(f"Unusable SIZE reply: {reply}")
            return None

    def open_data_connection(self, command: str, path: str) -> Tuple[socket.socket, Optional[int]]:
        """
        Set up a data connection and start a transfer command.

        Passive mode sends PASV (EPSV for IPv6) and connects to the address
        from the reply; active mode listens locally and sends PORT.

        Args:
            command: Transfer verb (RETR, STOR, MLSD, LIST)
            path: Remote path argument, may be empty

        Returns:
            Tuple of (data socket, size hint from the 150 reply or None)

        Raises:
            FTPCommandError: (or subclass) if the server refuses the command
        """
        line = f"{command} {path}".rstrip()
        with self._lock:
            ftp = self.ftp
            logger.debug(f"-> {'PASV' if ftp.passiveserver else 'PORT'} + {line}")
            try:
                conn, size = ftp.ntransfercmd(line)
            except (error_perm, error_temp) as e:
                reply = reply_from_error(e)
                if reply is None:
                    raise FTPProtocolError(str(e), e)
                raise error_for_reply(command, reply, path or None, e)
            except (error_proto, error_reply) as e:
                raise FTPProtocolError(str(e), e)
            except socket.timeout as e:
                self._connection_lost(e)
                raise FTPTimeoutError(command, self.timeout)
            except (EOFError, OSError) as e:
                self._connection_lost(e)
                raise FTPConnectionLostError(command, e)
        return conn, size

    def read_final_reply(self, operation: str = "transfer") -> FTPReply:
        """
        Read the completion reply that follows a data transfer.

        Returns:
            FTPReply (may be a failure reply)
        """
        with self._lock:
            reply = self._exchange(operation, lambda ftp: ftp.getresp())
            logger.debug(f"<- {reply}")
        return reply
