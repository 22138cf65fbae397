"""Directory listing parser for the FTP engine.

Turns raw MLSD or Unix ``ls -l`` style LIST output into DirectoryEntry
objects, and formats entry timestamps as ``yyyy-MM-dd HH:mm:ss zzz``.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional

from ftp_engine.ftp.exceptions import FTPParseError

logger = logging.getLogger("ftp_engine.listing")


MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

# "fact=value;fact=value; name" (facts may be empty)
MLSD_LINE = re.compile(r"^(?P<facts>(?:[^=;\s]+=[^;]*;)+) (?P<name>.+)$")

# "-rw-r--r--  1 owner group  1024 Jan  1 12:00 name"
UNIX_LINE = re.compile(
    r"^(?P<kind>[-dlbcps])[-rwxsStTlL]{9}[.+@]?\s+"
    r"(?:\d+\s+)?"
    r"\S+\s+(?:\S+\s+)?"
    r"(?P<size>\d+)\s+"
    r"(?P<month>[A-Za-z]{3})\s+(?P<day>\d{1,2})\s+"
    r"(?P<time>\d{1,2}:\d{2}|\d{4})\s+"
    r"(?P<name>.+)$"
)

TOTAL_LINE = re.compile(r"^total\s+\d+", re.IGNORECASE)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
TIMESTAMP_TEXT = re.compile(
    r"^(?P<stamp>\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}) "
    r"(?:GMT|UTC)(?:(?P<sign>[+-])(?P<hours>\d{1,2})(?::?(?P<minutes>\d{2}))?)?$"
)

SYMLINK_ARROW = " -> "


class EntryType(Enum):
    """Type of a directory entry, valued with the host bridge type codes."""
    FILE = 0
    DIRECTORY = 1
    SYMBOLIC_LINK = 2
    UNKNOWN = -1


UNIX_KINDS = {
    "-": EntryType.FILE,
    "d": EntryType.DIRECTORY,
    "l": EntryType.SYMBOLIC_LINK,
}


@dataclass
class DirectoryEntry:
    """One entry of a remote directory."""
    name: str
    type: EntryType
    link_target: str = ""
    size: int = 0
    modified_at: Optional[datetime] = None

    @property
    def is_file(self) -> bool:
        """True for regular files."""
        return self.type is EntryType.FILE

    @property
    def is_directory(self) -> bool:
        """True for directories."""
        return self.type is EntryType.DIRECTORY

    @property
    def is_link(self) -> bool:
        """True for symbolic links."""
        return self.type is EntryType.SYMBOLIC_LINK

    def to_dict(self) -> dict:
        """
        Render the entry the way host bridges expect it.

        Returns:
            Dict with name, type (numeric code), link, size and modifiedDate
        """
        return {
            "name": self.name,
            "type": self.type.value,
            "link": self.link_target,
            "size": self.size,
            "modifiedDate": format_timestamp(self.modified_at) if self.modified_at else "",
        }


def format_timestamp(value: datetime) -> str:
    """
    Format a timestamp as ``yyyy-MM-dd HH:mm:ss zzz``.

    Naive datetimes are taken as UTC. The zone renders as ``GMT``,
    ``GMT+8`` or ``GMT-5:30``.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)

    offset = value.utcoffset() or timedelta(0)
    total_minutes = int(offset.total_seconds() // 60)
    zone = "GMT"
    if total_minutes:
        sign = "+" if total_minutes > 0 else "-"
        hours, minutes = divmod(abs(total_minutes), 60)
        zone = f"GMT{sign}{hours}" + (f":{minutes:02d}" if minutes else "")
    return f"{value.strftime(TIMESTAMP_FORMAT)} {zone}"


def parse_timestamp(text: str) -> datetime:
    """
    Parse a ``yyyy-MM-dd HH:mm:ss zzz`` timestamp.

    Raises:
        ValueError: If the text is not in that form
    """
    match = TIMESTAMP_TEXT.match(text.strip())
    if not match:
        raise ValueError(f"Unrecognized timestamp: {text!r}")

    offset = timedelta(0)
    if match.group("sign"):
        offset = timedelta(
            hours=int(match.group("hours")),
            minutes=int(match.group("minutes") or 0)
        )
        if match.group("sign") == "-":
            offset = -offset
    stamp = datetime.strptime(match.group("stamp"), TIMESTAMP_FORMAT)
    return stamp.replace(tzinfo=timezone(offset))


def _parse_mlsd_modify(value: str) -> datetime:
    """Parse an MLSD ``modify`` fact (YYYYMMDDHHMMSS[.fff], UTC)."""
    stamp, _, fraction = value.partition(".")
    parsed = datetime.strptime(stamp, "%Y%m%d%H%M%S")
    if fraction:
        parsed = parsed.replace(microsecond=int(fraction[:6].ljust(6, "0")))
    return parsed.replace(tzinfo=timezone.utc)


def parse_mlsd_line(line: str) -> Optional[DirectoryEntry]:
    """
    Parse one MLSD line.

    Returns:
        DirectoryEntry, or None for the ``cdir``/``pdir`` self/parent entries

    Raises:
        ValueError: If the line is not a valid MLSD entry
    """
    match = MLSD_LINE.match(line)
    if not match:
        raise ValueError(f"Not an MLSD line: {line!r}")

    facts: Dict[str, str] = {}
    for fact in match.group("facts").rstrip(";").split(";"):
        key, _, value = fact.partition("=")
        facts[key.strip().lower()] = value

    name = match.group("name")
    raw_type = facts.get("type", "")
    kind = raw_type.lower()
    link_target = ""

    if kind in ("cdir", "pdir"):
        return None
    if kind == "file":
        entry_type = EntryType.FILE
    elif kind == "dir":
        entry_type = EntryType.DIRECTORY
    elif kind.startswith("os.unix=slink") or kind.startswith("os.unix=symlink"):
        entry_type = EntryType.SYMBOLIC_LINK
        _, _, link_target = raw_type.partition(":")
    else:
        entry_type = EntryType.UNKNOWN

    size_text = facts.get("size", facts.get("sizd", "0")) or "0"
    modified_at = None
    if facts.get("modify"):
        modified_at = _parse_mlsd_modify(facts["modify"])

    return DirectoryEntry(
        name=name,
        type=entry_type,
        link_target=link_target,
        size=int(size_text),
        modified_at=modified_at,
    )


def _unix_timestamp(month: int, day: int, time_or_year: str, now: datetime) -> datetime:
    """Resolve the date columns of a LIST line into a UTC datetime."""
    if ":" not in time_or_year:
        return datetime(int(time_or_year), month, day, tzinfo=timezone.utc)

    hour, minute = (int(part) for part in time_or_year.split(":"))
    # Recent files carry no year: use the latest year that is not in the future
    for year in range(now.year, now.year - 5, -1):
        try:
            candidate = datetime(year, month, day, hour, minute, tzinfo=timezone.utc)
        except ValueError:
            continue
        if candidate <= now + timedelta(days=1):
            return candidate
    raise ValueError(f"No valid year for {month}/{day}")


def parse_unix_line(line: str, now: Optional[datetime] = None) -> Optional[DirectoryEntry]:
    """
    Parse one Unix ``ls -l`` style LIST line.

    Args:
        line: LIST output line
        now: Reference time for year inference (default: current UTC time)

    Returns:
        DirectoryEntry, or None for the ``.``/``..`` entries

    Raises:
        ValueError: If the line is not a valid LIST entry
    """
    match = UNIX_LINE.match(line)
    if not match:
        raise ValueError(f"Not a LIST line: {line!r}")

    month = MONTHS.get(match.group("month").lower())
    if month is None:
        raise ValueError(f"Unknown month in {line!r}")

    now = now or datetime.now(timezone.utc)
    modified_at = _unix_timestamp(month, int(match.group("day")), match.group("time"), now)

    entry_type = UNIX_KINDS.get(match.group("kind"), EntryType.UNKNOWN)
    name = match.group("name")
    link_target = ""
    if entry_type is EntryType.SYMBOLIC_LINK and SYMLINK_ARROW in name:
        name, link_target = name.split(SYMLINK_ARROW, 1)

    if name in (".", ".."):
        return None

    return DirectoryEntry(
        name=name,
        type=entry_type,
        link_target=link_target,
        size=int(match.group("size")),
        modified_at=modified_at,
    )


def parse_listing(raw: str, now: Optional[datetime] = None) -> List[DirectoryEntry]:
    """
    Parse a raw MLSD or LIST response body.

    The format is detected per line. Lines that cannot be parsed are
    skipped. Entries keep the order the server sent them in.

    Args:
        raw: Listing text
        now: Reference time for LIST year inference

    Returns:
        List of DirectoryEntry

    Raises:
        FTPParseError: If the listing has lines but none of them parse
    """
    entries: List[DirectoryEntry] = []
    failed: List[str] = []

    for line in raw.replace("\r\n", "\n").split("\n"):
        if not line.strip() or TOTAL_LINE.match(line):
            continue
        try:
            if MLSD_LINE.match(line):
                entry = parse_mlsd_line(line)
            else:
                entry = parse_unix_line(line, now)
        except ValueError as e:
            logger.debug(f"Skipping unparseable listing line: {e}")
            failed.append(line)
            continue
        if entry is not None:
            entries.append(entry)

    if not entries and failed:
        raise FTPParseError(len(failed), failed[0])

    logger.debug(f"Parsed {len(entries)} entries ({len(failed)} lines skipped)")
    return entries
