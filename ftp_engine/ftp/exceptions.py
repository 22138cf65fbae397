"""FTP-specific exceptions for the FTP engine.

Custom exception hierarchy for FTP operations to provide
clear error handling and diagnosable messages.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ftp_engine.ftp.replies import FTPReply


class FTPError(Exception):
    """Base exception for all FTP-related errors."""

    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


class FTPInvalidArgumentError(FTPError):
    """An argument passed to the engine is not acceptable."""

    def __init__(self, argument: str, reason: str, original_error: Exception = None):
        self.argument = argument
        self.reason = reason
        message = f"Invalid {argument}: {reason}"
        super().__init__(message, original_error)


class FTPInvalidStateError(FTPError):
    """Operation is not allowed in the current session state."""

    def __init__(self, operation: str, state: str):
        self.operation = operation
        self.state = state
        message = f"{operation} is not allowed while session is {state}"
        super().__init__(message)


class FTPNotConnectedError(FTPInvalidStateError):
    """Operation attempted without active FTP connection."""

    def __init__(self, operation: str = "Operation"):
        super().__init__(operation, "disconnected")
        self.message = f"{operation} requires an active FTP connection"


class FTPConnectError(FTPError):
    """Failed to establish FTP connection."""

    def __init__(
        self,
        host: str,
        port: int,
        original_error: Exception = None,
        reply: Optional["FTPReply"] = None
    ):
        self.host = host
        self.port = port
        self.reply = reply
        message = f"Failed to connect to {host}:{port}"
        super().__init__(message, original_error)


class FTPAuthenticationError(FTPConnectError):
    """FTP authentication (login) failed."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        original_error: Exception = None,
        reply: Optional["FTPReply"] = None
    ):
        super().__init__(host, port, original_error, reply)
        self.username = username
        self.message = f"Authentication failed for user '{username}'"


class FTPProtocolError(FTPError):
    """The server sent a reply that does not follow the protocol."""

    def __init__(self, detail: str, original_error: Exception = None):
        self.detail = detail
        message = f"Malformed server reply: {detail}"
        super().__init__(message, original_error)


class FTPTimeoutError(FTPError):
    """FTP operation timed out."""

    def __init__(self, operation: str = "Operation", timeout: float = 30):
        self.timeout = timeout
        message = f"{operation} timed out after {timeout} seconds"
        super().__init__(message)


class FTPConnectionLostError(FTPError):
    """The control connection closed unexpectedly."""

    def __init__(self, operation: str = "Operation", original_error: Exception = None):
        self.operation = operation
        message = f"Connection lost during {operation}"
        super().__init__(message, original_error)


class FTPCommandError(FTPError):
    """Server answered a command with a non-success reply."""

    def __init__(
        self,
        operation: str,
        reply: "FTPReply",
        path: Optional[str] = None,
        original_error: Exception = None
    ):
        self.operation = operation
        self.reply = reply
        self.path = path
        if path is not None:
            message = f"Failed to {operation} '{path}' ({reply})"
        else:
            message = f"{operation} failed ({reply})"
        super().__init__(message, original_error)

    @property
    def code(self) -> int:
        """Numeric reply code returned by the server."""
        return self.reply.code


class FTPNotFoundError(FTPCommandError):
    """Remote path does not exist."""


class FTPPermissionError(FTPCommandError):
    """FTP permission denied for operation."""


class FTPParseError(FTPError):
    """Directory listing could not be parsed."""

    def __init__(self, line_count: int, sample: str = ""):
        self.line_count = line_count
        self.sample = sample
        message = f"No entries could be parsed from {line_count} listing lines"
        if sample:
            message = f"{message} (first line: {sample!r})"
        super().__init__(message)


class FTPTransferError(FTPError):
    """Failed to transfer a file via FTP."""

    def __init__(
        self,
        direction: str,
        local_path: str,
        remote_path: str,
        original_error: Exception = None,
        reply: Optional["FTPReply"] = None
    ):
        self.direction = direction
        self.local_path = local_path
        self.remote_path = remote_path
        self.reply = reply
        message = f"Failed to {direction} '{local_path}' <-> '{remote_path}'"
        if reply is not None:
            message = f"{message} ({reply})"
        super().__init__(message, original_error)


class FTPCancelledError(FTPError):
    """Operation was cancelled before it completed."""

    def __init__(self, operation: str = "Operation"):
        self.operation = operation
        message = f"{operation} was cancelled"
        super().__init__(message)

