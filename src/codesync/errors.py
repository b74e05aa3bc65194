"""
Error taxonomy for codesync.

Every failure the core can raise derives from CodeSyncError so the CLI
can report it in one place. Nothing in the core retries.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class CodeSyncError(Exception):
    """Base class for all codesync failures."""


class ConfigError(CodeSyncError):
    """Raised when the codesync settings file is unreadable or invalid."""


class ConfigNotFound(CodeSyncError):
    """Raised when the editor configuration root cannot be located."""


class UnsupportedPlatform(CodeSyncError):
    """Raised for a host OS with no known configuration layout."""

    def __init__(self, identifier: str):
        super().__init__(f"Unsupported platform: {identifier}")
        self.identifier = identifier


class EncodeIOError(CodeSyncError):
    """Raised when a source file cannot be read while building an archive."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


class ArchiveCorrupt(CodeSyncError):
    """Raised when a received archive is truncated or structurally invalid."""


class PathTraversal(CodeSyncError):
    """Raised when an archive entry would land outside its destination."""

    def __init__(self, name: str, destination: Optional[Path] = None):
        where = destination if destination is not None else "its destination"
        super().__init__(f"Archive entry escapes {where}: {name!r}")
        self.name = name
        self.destination = destination


class DecodeIOError(CodeSyncError):
    """Raised when an extracted entry cannot be written to disk."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


class BackupFailed(CodeSyncError):
    """Raised when the safety copy of a destination cannot be made."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"Could not back up {path}: {reason}")
        self.path = path


class TransportError(CodeSyncError):
    """Raised for connection failures, timeouts, and non-200 responses."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
