"""Server reply model for the FTP engine.

Every command on the control channel is answered by a reply made of a
three-digit code and one or more text lines. Multi-line replies open with
``xyz-`` and end on the first line that starts with ``xyz `` (same code).
This module parses such replies and maps failing replies onto the
engine's exception hierarchy.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Type

from ftp_engine.ftp.exceptions import (
    FTPCommandError,
    FTPNotFoundError,
    FTPPermissionError,
    FTPProtocolError,
)


REPLY_LINE = re.compile(r"^(?P<code>[1-5]\d\d)(?P<sep>[ -]|$)(?P<text>.*)$")

# Phrases servers use in 550 replies for a path that does not exist
NOT_FOUND_MARKERS = (
    "no such file",
    "no such directory",
    "not found",
    "does not exist",
    "doesn't exist",
    "can't find",
    "cannot find",
    "can't check for file existence",
)

# Phrases servers use in 550/553 replies when access is refused
PERMISSION_MARKERS = (
    "permission denied",
    "access denied",
    "access is denied",
    "not enough privileges",
    "insufficient privileges",
    "not allowed",
    "forbidden",
    "read-only",
)


@dataclass(frozen=True)
class FTPReply:
    """A parsed server reply."""
    code: int
    text: str
    lines: List[str] = field(default_factory=list)

    @property
    def is_preliminary(self) -> bool:
        """True for 1xx replies (more replies will follow)."""
        return 100 <= self.code < 200

    @property
    def is_success(self) -> bool:
        """True for 2xx replies."""
        return 200 <= self.code < 300

    @property
    def is_intermediate(self) -> bool:
        """True for 3xx replies (server waits for another command)."""
        return 300 <= self.code < 400

    @property
    def is_transient(self) -> bool:
        """True for 4xx replies (command may succeed if retried)."""
        return 400 <= self.code < 500

    @property
    def is_permanent(self) -> bool:
        """True for 5xx replies."""
        return 500 <= self.code < 600

    def __str__(self) -> str:
        return f"{self.code} {self.text}".rstrip()


def parse_reply(raw: str) -> FTPReply:
    """
    Parse one logical reply.

    Args:
        raw: Reply text, lines separated by newlines (CRLF or LF)

    Returns:
        FTPReply with the code and the joined text of all lines

    Raises:
        FTPProtocolError: If the reply does not follow RFC 959 framing
    """
    lines = [line for line in raw.replace("\r\n", "\n").split("\n") if line != ""]
    if not lines:
        raise FTPProtocolError("empty reply")

    first = REPLY_LINE.match(lines[0])
    if first is None:
        raise FTPProtocolError(repr(lines[0]))
    code = first.group("code")

    if first.group("sep") != "-":
        if len(lines) > 1:
            raise FTPProtocolError(f"unexpected continuation after {lines[0]!r}")
        return FTPReply(int(code), first.group("text").strip(), lines)

    last = REPLY_LINE.match(lines[-1])
    if last is None or last.group("code") != code or last.group("sep") == "-":
        raise FTPProtocolError(f"unterminated multi-line reply {code}")

    text_parts = [first.group("text").strip()]
    for line in lines[1:-1]:
        # Intermediate lines may repeat the code with a dash
        if line.startswith(f"{code}-"):
            line = line[4:]
        text_parts.append(line.strip())
    text_parts.append(last.group("text").strip())
    text = "\n".join(part for part in text_parts if part)
    return FTPReply(int(code), text, lines)


def reply_from_error(error: Exception) -> Optional[FTPReply]:
    """
    Recover the server reply carried by an ftplib error.

    ftplib raises ``error_perm``/``error_temp``/``error_reply`` with the
    raw reply as the single argument.

    Returns:
        FTPReply, or None if the error text is not a reply
    """
    raw = str(error.args[0]) if error.args else str(error)
    try:
        return parse_reply(raw)
    except FTPProtocolError:
        return None


def _contains_any(text: str, markers) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in markers)


def error_class_for_reply(reply: FTPReply) -> Type[FTPCommandError]:
    """
    Choose the exception type for a failing reply.

    550 is used by servers for both missing and protected paths, so
    the reply text decides between them.
    """
    if reply.code == 550:
        if _contains_any(reply.text, NOT_FOUND_MARKERS):
            return FTPNotFoundError
        if _contains_any(reply.text, PERMISSION_MARKERS):
            return FTPPermissionError
    elif reply.code == 553 and _contains_any(reply.text, PERMISSION_MARKERS):
        return FTPPermissionError
    return FTPCommandError


def error_for_reply(
    operation: str,
    reply: FTPReply,
    path: Optional[str] = None,
    original_error: Exception = None
) -> FTPCommandError:
    """
    Build the exception for a failing reply.

    Args:
        operation: Human-readable operation name (e.g. "remove directory")
        reply: The failing reply
        path: Remote path the command targeted
        original_error: The ftplib error that carried the reply

    Returns:
        FTPNotFoundError, FTPPermissionError or FTPCommandError
    """
    error_class = error_class_for_reply(reply)
    return error_class(operation, reply, path, original_error)
