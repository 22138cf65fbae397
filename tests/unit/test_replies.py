"""Unit tests for reply parsing, error mapping and path normalization."""

import pytest
from ftplib import error_perm

from ftp_engine.ftp.exceptions import (
    FTPCommandError,
    FTPNotFoundError,
    FTPPermissionError,
    FTPProtocolError,
)
from ftp_engine.ftp.paths import normalize_path
from ftp_engine.ftp.replies import (
    error_class_for_reply,
    error_for_reply,
    parse_reply,
    reply_from_error,
)


class TestParseReply:
    """Tests for parse_reply."""

    def test_single_line(self):
        reply = parse_reply("250 Requested file action okay, completed.")

        assert reply.code == 250
        assert reply.text == "Requested file action okay, completed."
        assert reply.is_success
        assert str(reply) == "250 Requested file action okay, completed."

    def test_multi_line(self):
        reply = parse_reply("211-Features:\r\n MLSD\r\n SIZE\r\n211 End")

        assert reply.code == 211
        assert reply.text == "Features:\nMLSD\nSIZE\nEnd"
        assert len(reply.lines) == 4

    def test_multi_line_repeating_code(self):
        reply = parse_reply("230-Welcome\n230-Be nice\n230 Logged in")
        assert reply.text == "Welcome\nBe nice\nLogged in"

    def test_code_classes(self):
        assert parse_reply("150 Opening").is_preliminary
        assert parse_reply("331 Password required").is_intermediate
        assert parse_reply("421 Too many users").is_transient
        assert parse_reply("550 Failed").is_permanent

    @pytest.mark.parametrize("raw", [
        "",
        "hello",
        "99 too short",
        "211-Features:\n MLSD",
        "250 ok\n250 again",
    ])
    def test_malformed(self, raw):
        with pytest.raises(FTPProtocolError):
            parse_reply(raw)

    def test_reply_from_error(self):
        reply = reply_from_error(error_perm("530 Login incorrect."))
        assert reply.code == 530

    def test_reply_from_error_without_reply(self):
        assert reply_from_error(error_perm("connection reset")) is None


class TestErrorMapping:
    """Tests for mapping failure replies to exceptions."""

    @pytest.mark.parametrize("raw", [
        "550 No such file or directory.",
        "550 /x: not found",
        "550 Directory does not exist",
        "550 Can't check for file existence",
    ])
    def test_not_found(self, raw):
        assert error_class_for_reply(parse_reply(raw)) is FTPNotFoundError

    @pytest.mark.parametrize("raw", [
        "550 Not enough privileges.",
        "550 Permission denied",
        "553 Access denied: read-only account",
    ])
    def test_permission(self, raw):
        assert error_class_for_reply(parse_reply(raw)) is FTPPermissionError

    @pytest.mark.parametrize("raw", [
        "550 Failed",
        "450 File busy",
        "500 Unknown command",
        "553 Bad file name",
    ])
    def test_generic(self, raw):
        assert error_class_for_reply(parse_reply(raw)) is FTPCommandError

    def test_error_for_reply_carries_context(self):
        error = error_for_reply("remove directory", parse_reply("550 No such file or directory."), "/gone")

        assert isinstance(error, FTPNotFoundError)
        assert error.code == 550
        assert error.path == "/gone"
        assert "/gone" in str(error)


class TestNormalizePath:
    """Tests for normalize_path."""

    @pytest.mark.parametrize("given, expected", [
        ("file:///home/u/a.txt", "/home/u/a.txt"),
        ("file:/home/u/a.txt", "/home/u/a.txt"),
        ("/pub/a.txt", "/pub/a.txt"),
        ("relative/a.txt", "relative/a.txt"),
        ("", ""),
        ("FILE:///x", "FILE:///x"),
    ])
    def test_normalize(self, given, expected):
        assert normalize_path(given) == expected

