"""Connection security modes for the FTP engine.

Provides SecurityMode enum and the factory that builds the ftplib
client matching a mode:
- ftp: plain FTP
- ftps: FTP over implicit TLS (TLS handshake right after TCP connect)
- ftpes: FTP over explicit TLS (AUTH TLS before login)
"""

import ssl
from enum import Enum
from ftplib import FTP, FTP_TLS
from typing import Optional

from ftp_engine.ftp.exceptions import FTPInvalidArgumentError


class SecurityMode(Enum):
    """Security level of a connection."""
    PLAIN = "ftp"
    IMPLICIT_TLS = "ftps"
    EXPLICIT_TLS = "ftpes"

    @classmethod
    def parse(cls, value) -> "SecurityMode":
        """
        Convert user input into a SecurityMode.

        Args:
            value: SecurityMode or one of "ftp", "ftps", "ftpes" (any case)

        Raises:
            FTPInvalidArgumentError: If the value is not a known mode
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(mode.value for mode in cls)
            raise FTPInvalidArgumentError(
                "security mode", f"{value!r} (expected one of {allowed})"
            )

    @property
    def default_port(self) -> int:
        """Control port used when the address carries none."""
        return 990 if self is SecurityMode.IMPLICIT_TLS else 21

    @property
    def uses_tls(self) -> bool:
        """True if the control channel is encrypted."""
        return self is not SecurityMode.PLAIN


class ImplicitFTP_TLS(FTP_TLS):
    """FTP_TLS variant that starts TLS as soon as the socket is connected."""

    _sock = None

    @property
    def sock(self):
        """The control socket, always TLS-wrapped once assigned."""
        return self._sock

    @sock.setter
    def sock(self, value):
        if value is not None and not isinstance(value, ssl.SSLSocket):
            value = self.context.wrap_socket(value, server_hostname=self.host)
        self._sock = value


def create_tls_context(verify: bool = True) -> ssl.SSLContext:
    """
    Build the TLS context for FTPS connections.

    Args:
        verify: If False, disable certificate and hostname verification

    Returns:
        Configured SSLContext
    """
    if verify:
        return ssl.create_default_context(purpose=ssl.Purpose.SERVER_AUTH)

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def create_client(
    mode: SecurityMode,
    timeout: float,
    verify_tls: bool = True,
    context: Optional[ssl.SSLContext] = None
) -> FTP:
    """
    Create an unconnected ftplib client for a security mode.

    Args:
        mode: Security mode of the connection
        timeout: Socket timeout in seconds for control and data sockets
        verify_tls: Verify server certificates (TLS modes only)
        context: Explicit TLS context, overrides verify_tls

    Returns:
        FTP, FTP_TLS or ImplicitFTP_TLS instance
    """
    if mode is SecurityMode.PLAIN:
        return FTP(timeout=timeout)

    context = context or create_tls_context(verify_tls)
    if mode is SecurityMode.IMPLICIT_TLS:
        return ImplicitFTP_TLS(context=context, timeout=timeout)
    return FTP_TLS(context=context, timeout=timeout)
