"""
Sync client: pull a configuration from a codesync server.

Order of operations, each step gated on the previous one:

    1. GET http://<server>:<port>/sync, require 200.
    2. Parse the whole body; reject truncated or malicious archives.
    3. Rename every local root the archive touches aside.
    4. Extract.

Nothing local changes until step 3, and nothing is written until every
rename in step 3 has succeeded.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import requests

from . import DEFAULT_PORT, SYNC_PATH
from .archive import ArchiveReader, open_archive
from .backup import create_backup, restore_snapshot
from .errors import ArchiveCorrupt, BackupFailed, TransportError
from .models import USER_LABEL, BackupSnapshot, ConfigRoot, SyncResult

logger = logging.getLogger("codesync.client")

DEFAULT_TIMEOUT = 60.0


def build_sync_url(address: str, port: int = DEFAULT_PORT) -> str:
    """Build the sync URL from 'host' or 'host:port'.

    A port inside the address wins over the port argument.
    """
    address = address.strip()
    for scheme in ("http://", "https://"):
        if address.startswith(scheme):
            address = address[len(scheme):]
    address = address.rstrip("/")

    host, sep, maybe_port = address.rpartition(":")
    if sep and maybe_port.isdigit() and not host.endswith(":"):
        return f"http://{host}:{int(maybe_port)}{SYNC_PATH}"
    return f"http://{address}:{port}{SYNC_PATH}"


def fetch_archive(url: str, timeout: float = DEFAULT_TIMEOUT) -> bytes:
    """Download the archive body.

    Raises:
        TransportError: Connection failure, timeout, or non-200 status.
    """
    logger.info("Requesting %s", url)
    try:
        resp = requests.get(url, timeout=timeout)
    except requests.RequestException as exc:
        raise TransportError(f"Cannot reach {url}: {exc}") from exc

    if resp.status_code != 200:
        detail = resp.text.strip()[:200]
        raise TransportError(
            f"Server returned {resp.status_code} {resp.reason}: {detail}",
            status=resp.status_code,
        )
    logger.info("Received %d bytes", len(resp.content))
    return resp.content


def _destinations(reader: ArchiveReader, roots: Iterable[ConfigRoot]) -> dict[str, Path]:
    """Map each root the archive carries to its local directory.

    Archives without a root list hold a single User tree.
    """
    local = {root.label: root.path for root in roots}
    wanted = reader.labels or [USER_LABEL]
    missing = [label for label in wanted if label not in local]
    if missing:
        raise ArchiveCorrupt(f"Archive carries roots with no local destination: {', '.join(missing)}")
    return {label: local[label] for label in wanted}


def backup_roots(paths: Iterable[Path]) -> list[BackupSnapshot]:
    """Back up several roots as one step.

    If any rename fails, the ones already made are moved back so the
    caller sees either every root protected or none touched.

    Raises:
        BackupFailed: From the first root that could not be renamed.
    """
    taken: list[BackupSnapshot] = []
    for path in paths:
        try:
            snapshot = create_backup(path)
        except BackupFailed:
            for done in reversed(taken):
                try:
                    restore_snapshot(done)
                except BackupFailed as exc:
                    logger.error("Rollback failed, previous settings remain at %s: %s", done.path, exc)
            raise
        if snapshot is not None:
            taken.append(snapshot)
    return taken


def run_sync(
    address: str,
    roots: Iterable[ConfigRoot],
    port: int = DEFAULT_PORT,
    timeout: float = DEFAULT_TIMEOUT,
) -> SyncResult:
    """Replace the local configuration with the server's.

    Args:
        address: Server host, optionally 'host:port'.
        roots: Local roots, keyed by label.
        port: Server port when address carries none.
        timeout: HTTP timeout in seconds.

    Returns:
        SyncResult: What was fetched, backed up and written.

    Raises:
        TransportError: The download failed. Nothing local changed.
        ArchiveCorrupt: The body was not a complete archive. Nothing changed.
        PathTraversal: The archive tried to escape. Nothing changed.
        BackupFailed: A root could not be moved aside. Nothing was written.
        DecodeIOError: Extraction failed part way; backups remain.
    """
    roots = list(roots)
    url = build_sync_url(address, port)
    data = fetch_archive(url, timeout)

    with open_archive(data) as reader:
        destinations = _destinations(reader, roots)
        snapshots = backup_roots(destinations.values())
        if reader.labels:
            written = reader.extract_roots(destinations)
        else:
            written = reader.extract_to(destinations[USER_LABEL])

    logger.info("Sync from %s complete: %d entries", url, written)
    return SyncResult(
        url=url,
        archive_size=len(data),
        entries_written=written,
        roots=destinations,
        snapshots=snapshots,
    )
