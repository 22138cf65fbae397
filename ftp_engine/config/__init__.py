"""Configuration module for the FTP engine.

This module handles engine settings and credentials:
- SettingsManager: JSON-based settings persistence
- CredentialManager: Password storage in the system keyring
- Paths: Per-user settings and log locations
"""
