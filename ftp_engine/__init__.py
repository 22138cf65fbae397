"""FTP engine: FTP/FTPS client sessions with queued operations.

Exposes FTPSession, the entry point host applications and the
``ftp-engine`` command line tool drive.
"""

__version__ = "1.0.0"
