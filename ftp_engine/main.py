"""Command line entry point for the FTP engine.

Runs a single session operation against a server, for example:

    ftp-engine --host ftp.example.com ls /pub
    ftp-engine --host 10.0.0.2:2121 --user alice upload ./a.bin /incoming/a.bin
"""

import argparse
import dataclasses
import json
import sys
from typing import List, Optional

from .config.credentials import CredentialManager
from .config.paths import get_log_file_path
from .config.settings import EngineSettings, SettingsManager
from .ftp.exceptions import FTPError, FTPInvalidArgumentError
from .ftp.listing import DirectoryEntry, format_timestamp
from .ftp.security import SecurityMode
from .ftp.session import FTPSession
from .utils.logging import setup_logging, get_logger
from .utils.threading import SessionTask
from .utils.validators import split_address

logger = get_logger("ftp_engine.cli")

ENTRY_MARKERS = {
    "FILE": "-",
    "DIRECTORY": "d",
    "SYMBOLIC_LINK": "l",
    "UNKNOWN": "?",
}


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="ftp-engine",
        description="FTP/FTPS client: list, create, remove and transfer remote files",
    )
    parser.add_argument("--host", help="Server address, host or host:port (default: last used)")
    parser.add_argument("-u", "--user", help="Username (default: last used, empty for anonymous)")
    parser.add_argument("-p", "--password", help="Password (default: stored in keyring)")
    parser.add_argument(
        "--security",
        choices=[mode.value for mode in SecurityMode],
        help="ftp (plain), ftps (implicit TLS) or ftpes (explicit TLS)",
    )
    parser.add_argument("--timeout", type=float, help="Control channel timeout in seconds")
    parser.add_argument(
        "--save-password",
        action="store_true",
        help="Store the password in the system keyring after a successful login",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log to stderr at DEBUG level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    ls_parser = subparsers.add_parser("ls", help="List a remote directory")
    ls_parser.add_argument("path", nargs="?", default="/", help="Remote directory (default: /)")
    ls_parser.add_argument("--json", action="store_true", help="Print entries as JSON")
    ls_parser.set_defaults(func=cmd_ls)

    for name, help_text in (
        ("mkdir", "Create a remote directory"),
        ("rmdir", "Remove a remote directory"),
        ("rm", "Delete a remote file"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("path", help="Remote path")
        sub.set_defaults(func=cmd_path_command)

    upload_parser = subparsers.add_parser("upload", help="Upload a local file")
    upload_parser.add_argument("local", help="Local file")
    upload_parser.add_argument("remote", help="Remote destination")
    upload_parser.set_defaults(func=cmd_transfer)

    download_parser = subparsers.add_parser("download", help="Download a remote file")
    download_parser.add_argument("remote", help="Remote file")
    download_parser.add_argument("local", help="Local destination")
    download_parser.set_defaults(func=cmd_transfer)

    return parser


def format_entry(entry: DirectoryEntry) -> str:
    """Render one listing line, ``ls -l`` style."""
    marker = ENTRY_MARKERS[entry.type.name]
    modified = format_timestamp(entry.modified_at) if entry.modified_at else "-"
    name = entry.name
    if entry.is_link and entry.link_target:
        name = f"{name} -> {entry.link_target}"
    return f"{marker} {entry.size:>12} {modified:<28} {name}"


def cmd_ls(session: FTPSession, args: argparse.Namespace) -> int:
    """List a directory."""
    entries = session.ls(args.path).result()
    if args.json:
        print(json.dumps([entry.to_dict() for entry in entries], indent=2))
    else:
        for entry in entries:
            print(format_entry(entry))
    return 0


def cmd_path_command(session: FTPSession, args: argparse.Namespace) -> int:
    """Run mkdir, rmdir or rm."""
    operation = getattr(session, args.command)
    operation(args.path).result()
    return 0


def _print_progress(task: SessionTask) -> None:
    """Draw a one-line progress indicator on stderr until the task ends."""
    for fraction in task.iter_progress():
        sys.stderr.write(f"\r{task.operation}: {fraction * 100:5.1f}%")
        sys.stderr.flush()
    sys.stderr.write("\n")


def cmd_transfer(session: FTPSession, args: argparse.Namespace) -> int:
    """Upload or download one file."""
    if args.command == "upload":
        task = session.upload(args.local, args.remote)
    else:
        task = session.download(args.local, args.remote)
    _print_progress(task)
    transfer = task.result()
    print(
        f"{transfer.direction.value.capitalize()} complete: "
        f"{transfer.bytes_transferred} bytes in {transfer.duration_seconds:.2f}s"
    )
    return 0


def resolve_address(args: argparse.Namespace, settings: EngineSettings) -> str:
    """
    Pick the server address from the command line or the last session.

    Raises:
        FTPInvalidArgumentError: If no address is known
    """
    if args.host:
        return args.host
    if not settings.last_host:
        raise FTPInvalidArgumentError("address", "no --host given and no previous server saved")
    if settings.last_port:
        return f"{settings.last_host}:{settings.last_port}"
    return settings.last_host


def run(args: argparse.Namespace, settings_manager: SettingsManager, credentials: CredentialManager) -> int:
    """
    Connect, run the selected command, and disconnect.

    Returns:
        Exit code (0 for success)
    """
    settings = settings_manager.load()

    overrides = {}
    if args.security:
        overrides["security"] = args.security
    if args.timeout is not None:
        overrides["timeout"] = args.timeout
    session_settings = dataclasses.replace(settings, **overrides)

    address = resolve_address(args, settings)
    username = args.user if args.user is not None else (settings.last_username if not args.host else "")
    password = credentials.resolve_password(address, username, args.password)

    with FTPSession(session_settings) as session:
        session.connect(address, username, password).result()
        logger.info(f"Connected to {address}")

        try:
            host, port = split_address(address)
        except ValueError:
            host, port = address, None
        settings_manager.update(last_host=host, last_port=port or 0, last_username=username)

        if args.save_password and username and password:
            credentials.save_password(address, username, password)

        return args.func(session, args)


def main(argv: Optional[List[str]] = None) -> int:
    """
    CLI entry point.

    Returns:
        Exit code (0 for success, 1 on FTP errors)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    settings_manager = SettingsManager()
    level = "DEBUG" if args.verbose else settings_manager.load().log_level
    setup_logging(level=level, log_file=get_log_file_path(), console=args.verbose)

    try:
        return run(args, settings_manager, CredentialManager())
    except FTPError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
