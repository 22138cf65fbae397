"""Path helpers for the FTP engine.

Host applications often hand over local paths as ``file://`` URLs; the
engine strips that decoration before a path reaches the server or the
local filesystem.
"""

FILE_URL_PREFIXES = ("file://", "file:")


def normalize_path(path: str) -> str:
    """
    Remove a leading ``file://`` or ``file:`` prefix.

    Args:
        path: Local or remote path, optionally prefixed

    Returns:
        The path without its prefix, or the input unchanged
    """
    for prefix in FILE_URL_PREFIXES:
        if path.startswith(prefix):
            return path[len(prefix):]
    return path
