"""FTP protocol module for the FTP engine.

This module handles all FTP-related functionality:
- FTPSession: Queued session operations returning SessionTask futures
- ControlChannel: Command/reply exchange with state tracking
- DataTransferEngine: Uploads and downloads with progress and cancellation
- Listing: MLSD and Unix LIST parsing into DirectoryEntry values
- Exceptions: FTP-specific error types
"""
