"""
Pydantic models shared by the encoder, decoder, backup manager and
the HTTP orchestration layer.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

USER_LABEL = "User"
EXTENSIONS_LABEL = "extensions"


class ConfigRoot(BaseModel):
    """A directory subtree that travels as one unit.

    Attributes:
        label: Logical name, used as the path prefix inside the archive.
        path: Absolute location of the subtree on this machine.
    """

    label: str
    path: Path


class ArchiveEntry(BaseModel):
    """One record of a received archive, as listed in its index."""

    name: str
    is_dir: bool = False
    size: int = 0
    mode: int = 0

    @property
    def label(self) -> Optional[str]:
        """First path segment, which names the root in labelled archives."""
        head, sep, _ = self.name.partition("/")
        return head if sep else None

    def relative_to_label(self) -> str:
        """Entry name with its root label stripped."""
        return self.name.partition("/")[2]


class ArchiveStats(BaseModel):
    """Counters collected while an archive is written."""

    files: int = 0
    directories: int = 0
    bytes_read: int = 0
    per_root: dict[str, int] = Field(default_factory=dict)


class BackupSnapshot(BaseModel):
    """A destination directory renamed aside before being overwritten.

    Attributes:
        original: The live path that was moved.
        path: Where the previous content now lives.
        created_at: Local time the snapshot was taken.
    """

    original: Path
    path: Path
    created_at: datetime


class SyncResult(BaseModel):
    """Outcome of one client-side sync."""

    url: str
    archive_size: int = 0
    entries_written: int = 0
    roots: dict[str, Path] = Field(default_factory=dict)
    snapshots: list[BackupSnapshot] = Field(default_factory=list)
