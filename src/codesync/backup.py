"""
Backup before overwrite.

The client never writes into a configuration root it has not first
moved aside. A backup is a rename of the whole directory to a sibling:

    ~/.config/Code/User                        # live
    ~/.config/Code/User_backup_20261019-143005 # previous content

Renames within one directory are atomic, so after create_backup()
returns either the snapshot exists or nothing changed. Snapshots are
never read back automatically; restore_snapshot() exists for rolling
back an aborted sync and for manual recovery.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

from .errors import BackupFailed
from .models import BackupSnapshot

logger = logging.getLogger("codesync.backup")

BACKUP_MARKER = "_backup_"
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"

_SNAPSHOT_RE = re.compile(r"^(?P<ts>\d{8}-\d{6})(?:-(?P<seq>\d+))?$")


def backup_path(path: Path, now: Optional[datetime] = None) -> Path:
    """Pick the snapshot location for a directory.

    Timestamps have second resolution; a numeric suffix keeps two
    backups taken in the same second apart.

    Args:
        path: Directory about to be backed up.
        now: Timestamp to use. Defaults to the local time.

    Returns:
        Path: A sibling of path that does not exist yet.
    """
    path = Path(path)
    stamp = (now or datetime.now()).strftime(TIMESTAMP_FORMAT)
    candidate = path.with_name(f"{path.name}{BACKUP_MARKER}{stamp}")
    seq = 1
    while candidate.exists():
        candidate = path.with_name(f"{path.name}{BACKUP_MARKER}{stamp}-{seq}")
        seq += 1
    return candidate


def create_backup(path: Path, now: Optional[datetime] = None) -> Optional[BackupSnapshot]:
    """Rename a directory aside before it gets overwritten.

    Args:
        path: Directory to protect.
        now: Timestamp override.

    Returns:
        BackupSnapshot, or None when there was nothing to protect.

    Raises:
        BackupFailed: The rename did not happen.
    """
    path = Path(path)
    if not path.exists() and not path.is_symlink():
        logger.info("No existing directory at %s, nothing to back up", path)
        return None

    created_at = now or datetime.now()
    try:
        target = backup_path(path, created_at)
        path.rename(target)
    except OSError as exc:
        raise BackupFailed(path, str(exc)) from exc

    logger.info("Backed up %s -> %s", path, target)
    return BackupSnapshot(original=path, path=target, created_at=created_at)


def restore_snapshot(snapshot: BackupSnapshot) -> None:
    """Move a snapshot back to its original location.

    Raises:
        BackupFailed: The original path is occupied or the rename failed.
    """
    if snapshot.original.exists():
        raise BackupFailed(snapshot.original, "original location is not empty")
    try:
        snapshot.path.rename(snapshot.original)
    except OSError as exc:
        raise BackupFailed(snapshot.original, str(exc)) from exc
    logger.info("Restored %s from %s", snapshot.original, snapshot.path)


def list_backups(path: Path) -> list[BackupSnapshot]:
    """List snapshots taken of a directory.

    Args:
        path: The live directory whose siblings are scanned.

    Returns:
        list[BackupSnapshot]: Newest first.
    """
    path = Path(path)
    parent = path.parent
    if not parent.is_dir():
        return []

    prefix = f"{path.name}{BACKUP_MARKER}"
    found = []
    for candidate in parent.iterdir():
        if not candidate.name.startswith(prefix) or not candidate.is_dir():
            continue
        match = _SNAPSHOT_RE.match(candidate.name[len(prefix):])
        if not match:
            continue
        created_at = datetime.strptime(match.group("ts"), TIMESTAMP_FORMAT)
        seq = int(match.group("seq") or 0)
        found.append((created_at, seq, candidate))

    found.sort(key=lambda item: (item[0], item[1]), reverse=True)
    return [
        BackupSnapshot(original=path, path=candidate, created_at=created_at)
        for created_at, _, candidate in found
    ]
