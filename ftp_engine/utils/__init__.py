"""Utility module for the FTP engine.

This module provides cross-cutting helpers:
- Logging: Engine logging with password redaction
- Validators: Host, port, timeout and address checks
- Threading: SessionTask futures and the serial task executor
"""
