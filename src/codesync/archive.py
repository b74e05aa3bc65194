"""
Archive transport: configuration trees to ZIP streams and back.

Encoding is a two-phase protocol:

    writer = ArchiveWriter(sink)
    writer.add_root(user_dir, prefix="User")     # entries, streamed
    writer.add_root(ext_dir, prefix="extensions")
    writer.finalize()                            # central directory

The central directory is what makes a ZIP readable. A stream that ends
without it is corrupt, so an aborted writer must never emit it: after
abort() every further byte is discarded, and a receiver sees a
truncated archive instead of a silently incomplete one.

Decoding buffers the whole stream, verifies the index and CRCs, and
checks every entry name before the first byte hits the disk.
"""

from __future__ import annotations

import io
import json
import logging
import os
import shutil
import stat
import zipfile
import zlib
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import BinaryIO, Iterable, Iterator, Mapping, NamedTuple, Optional, Union

from .errors import ArchiveCorrupt, DecodeIOError, EncodeIOError, PathTraversal
from .filters import EntryFilter, FilterDecision
from .models import ArchiveEntry, ArchiveStats, ConfigRoot

logger = logging.getLogger("codesync.archive")

ARCHIVE_FORMAT = 1
DEFAULT_FILE_MODE = 0o644
DEFAULT_DIR_MODE = 0o755


# ---------------------------------------------------------------------------
# Walking
# ---------------------------------------------------------------------------


class WalkEntry(NamedTuple):
    """One filesystem entry produced by iter_entries."""

    path: Path
    rel: str
    is_dir: bool


def _raise_walk_error(exc: OSError) -> None:
    path = Path(exc.filename) if exc.filename else None
    raise EncodeIOError(f"Cannot read {exc.filename}: {exc.strerror or exc}", path) from exc


def iter_entries(root: Path, entry_filter: Optional[EntryFilter] = None) -> Iterator[WalkEntry]:
    """Lazily walk a configuration root depth-first.

    Excluded directories are pruned, so their contents are never read.
    Directories are only yielded when nothing below them survives the
    filter, which keeps empty directories without padding the archive.
    Sockets, FIFOs and dangling links are skipped. A file that was listed
    but is gone by the time it is examined aborts the walk.

    Args:
        root: Directory to walk.
        entry_filter: Exclusion rules. Defaults to EntryFilter().

    Yields:
        WalkEntry: Paths with forward-slash names relative to root.

    Raises:
        EncodeIOError: On the first directory that cannot be listed, or a
            listed file that cannot be examined.
    """
    entry_filter = entry_filter or EntryFilter()
    root = Path(root)

    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise_walk_error):
        current = Path(dirpath)
        rel_dir = current.relative_to(root).as_posix()
        rel_dir = "" if rel_dir == "." else rel_dir

        def rel(name: str) -> str:
            return f"{rel_dir}/{name}" if rel_dir else name

        dirnames[:] = sorted(
            d for d in dirnames
            if entry_filter.decide(rel(d), is_dir=True) is not FilterDecision.SKIP_SUBTREE
        )

        files = []
        for fname in sorted(filenames):
            full = current / fname
            if not entry_filter.includes(rel(fname)):
                continue
            try:
                st = os.stat(full)
            except FileNotFoundError as exc:
                if os.path.islink(full):
                    logger.debug("Skipping dangling link %s", full)
                    continue
                raise EncodeIOError(f"File removed during walk: {full}", full) from exc
            except OSError as exc:
                raise EncodeIOError(f"Cannot read {full}: {exc.strerror or exc}", full) from exc
            if not stat.S_ISREG(st.st_mode):
                logger.debug("Skipping non-regular file %s", full)
                continue
            files.append(WalkEntry(full, rel(fname), False))

        if rel_dir and not dirnames and not files:
            yield WalkEntry(current, rel_dir, True)
        yield from files


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


class _SinkGuard:
    """Write-only view of the output sink that can be cut off.

    Remembers whether a failure came from the sink itself so the writer
    can tell a dropped connection from an unreadable source file.
    """

    def __init__(self, sink: BinaryIO):
        self._sink = sink
        self.aborted = False
        self.error: Optional[BaseException] = None
        self.bytes_written = 0

    def write(self, data) -> int:
        if self.aborted:
            return len(data)
        try:
            n = self._sink.write(data)
        except OSError as exc:
            self.error = exc
            raise
        self.bytes_written += len(data)
        return len(data) if n is None else n

    def flush(self) -> None:
        if self.aborted:
            return
        flush = getattr(self._sink, "flush", None)
        if flush is not None:
            try:
                flush()
            except OSError as exc:
                self.error = exc
                raise


class ArchiveWriter:
    """Streams configuration roots into a ZIP archive.

    The sink only needs write(); it is never seeked, so sockets and
    HTTP response bodies work. Entries use data descriptors and are
    deflated in 8 KB chunks as they are read.

    Args:
        sink: Byte sink receiving the archive.
        entry_filter: Exclusion rules. Defaults to EntryFilter().
        compresslevel: Deflate level, 0-9.
    """

    def __init__(
        self,
        sink: BinaryIO,
        entry_filter: Optional[EntryFilter] = None,
        compresslevel: int = 6,
    ):
        self._guard = _SinkGuard(sink)
        self._filter = entry_filter or EntryFilter()
        self._zip = zipfile.ZipFile(
            self._guard,
            mode="w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=compresslevel,
            strict_timestamps=False,
        )
        self._labels: list[str] = []
        self._state = "open"
        self.stats = ArchiveStats()

    @property
    def finalized(self) -> bool:
        return self._state == "finalized"

    @property
    def aborted(self) -> bool:
        return self._state == "aborted"

    @property
    def bytes_written(self) -> int:
        return self._guard.bytes_written

    def add_root(self, root: Path, prefix: Optional[str] = None) -> int:
        """Write every non-filtered entry under root.

        Args:
            root: Directory to archive.
            prefix: Root label prepended to entry names, if any.

        Returns:
            int: Number of entries written for this root.

        Raises:
            EncodeIOError: A source entry could not be read.
            OSError: The sink failed.
        """
        if self._state != "open":
            raise RuntimeError(f"Archive already {self._state}")
        if prefix:
            self._labels.append(prefix)

        count = 0
        for entry in iter_entries(root, self._filter):
            arcname = f"{prefix}/{entry.rel}" if prefix else entry.rel
            try:
                self._zip.write(entry.path, arcname=arcname)
            except OSError as exc:
                if self._guard.error is not None:
                    raise
                raise EncodeIOError(f"Cannot read {entry.path}: {exc}", entry.path) from exc

            count += 1
            if entry.is_dir:
                self.stats.directories += 1
            else:
                self.stats.files += 1
                self.stats.bytes_read += self._zip.getinfo(arcname).file_size
            logger.debug("Archived %s", arcname)

        self.stats.per_root[prefix or ""] = count
        logger.info("Archived %d entries from %s", count, root)
        return count

    def finalize(self) -> ArchiveStats:
        """Write the central directory. The archive is complete after this."""
        if self._state != "open":
            raise RuntimeError(f"Archive already {self._state}")
        self._zip.comment = json.dumps(
            {"format": ARCHIVE_FORMAT, "roots": self._labels}
        ).encode("utf-8")
        self._zip.close()
        self._guard.flush()
        self._state = "finalized"
        return self.stats

    def abort(self) -> None:
        """Drop the archive without a central directory.

        Bytes already handed to the sink stay there; nothing more is
        written, so the result is unreadable.
        """
        if self._state != "open":
            return
        self._guard.aborted = True
        self._zip.close()
        self._state = "aborted"
        logger.warning("Archive aborted after %d bytes", self._guard.bytes_written)

    def __enter__(self) -> "ArchiveWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            if self._state == "open":
                self.finalize()
        else:
            self.abort()
        return False


def write_archive(
    roots: Iterable[ConfigRoot],
    sink: BinaryIO,
    entry_filter: Optional[EntryFilter] = None,
    labelled: bool = True,
    compresslevel: int = 6,
) -> ArchiveStats:
    """Encode configuration roots into a single archive stream.

    Args:
        roots: Roots to include, in order.
        sink: Byte sink receiving the archive.
        entry_filter: Exclusion rules.
        labelled: Prefix entry names with each root's label. Unlabelled
            archives may hold only one root.
        compresslevel: Deflate level, 0-9.

    Returns:
        ArchiveStats: Counters for the finished archive.
    """
    roots = list(roots)
    if not labelled and len(roots) > 1:
        raise ValueError("Unlabelled archives hold exactly one root")

    with ArchiveWriter(sink, entry_filter, compresslevel) as writer:
        for root in roots:
            writer.add_root(root.path, prefix=root.label if labelled else None)
    return writer.stats


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _name_parts(name: str, destination: Optional[Path] = None) -> list[str]:
    """Split an entry name into safe path components.

    Raises:
        PathTraversal: Absolute names, drive letters, '..' or NUL bytes.
    """
    normalized = name.replace("\\", "/")
    if "\x00" in normalized or PureWindowsPath(name).drive or PurePosixPath(normalized).is_absolute():
        raise PathTraversal(name, destination)
    parts = [p for p in normalized.split("/") if p and p != "."]
    if not parts or ".." in parts:
        raise PathTraversal(name, destination)
    return parts


def safe_join(destination: Path, name: str) -> Path:
    """Join an entry name to a destination, refusing to leave it.

    Args:
        destination: Extraction root.
        name: Entry name from the archive.

    Returns:
        Path: Normalized target strictly inside destination.

    Raises:
        PathTraversal: The target would not be strictly inside destination.
    """
    parts = _name_parts(name, destination)
    base = os.path.normpath(os.path.abspath(destination))
    joined = os.path.normpath(os.path.join(base, *parts))
    prefix = base if base.endswith(os.sep) else base + os.sep
    if not joined.startswith(prefix):
        raise PathTraversal(name, destination)
    return Path(joined)


def _is_root_entry(entry: ArchiveEntry) -> bool:
    """Whether a labelled entry is the directory of its root itself, e.g. 'User/'."""
    rel = entry.relative_to_label().replace("\\", "/")
    return entry.is_dir and not [p for p in rel.split("/") if p and p != "."]


def _entry_mode(info: zipfile.ZipInfo) -> int:
    return (info.external_attr >> 16) & 0o777


class ArchiveReader:
    """A fully buffered, verified archive ready for extraction.

    Use open_archive() rather than constructing this directly.
    """

    def __init__(self, data: bytes):
        self.size = len(data)
        try:
            self._zip = zipfile.ZipFile(io.BytesIO(data))
            bad = self._zip.testzip()
        except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError, zlib.error, NotImplementedError) as exc:
            raise ArchiveCorrupt(f"Invalid archive: {exc}") from exc
        if bad is not None:
            raise ArchiveCorrupt(f"Checksum mismatch in {bad}")

        self.labels = self._read_labels()
        self._infos = self._zip.infolist()
        self.entries = [
            ArchiveEntry(
                name=info.filename,
                is_dir=info.is_dir(),
                size=info.file_size,
                mode=_entry_mode(info),
            )
            for info in self._infos
        ]
        for entry in self.entries:
            _name_parts(entry.name)
            if not self.labels:
                continue
            if entry.label not in self.labels:
                raise ArchiveCorrupt(f"Entry outside declared roots: {entry.name!r}")
            if not _is_root_entry(entry):
                _name_parts(entry.relative_to_label())

    def _read_labels(self) -> list[str]:
        if not self._zip.comment:
            return []
        try:
            meta = json.loads(self._zip.comment.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.debug("Archive comment is not codesync metadata")
            return []
        if not isinstance(meta, dict):
            return []
        return [str(label) for label in meta.get("roots", [])]

    def close(self) -> None:
        self._zip.close()

    def __enter__(self) -> "ArchiveReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    def extract_to(self, destination: Path) -> int:
        """Extract an unlabelled archive under destination.

        Returns:
            int: Number of entries written.
        """
        destination = Path(destination)
        plan = [(info, safe_join(destination, info.filename)) for info in self._infos]
        destination.mkdir(parents=True, exist_ok=True)
        return self._apply(plan)

    def extract_roots(self, destinations: Mapping[str, Path]) -> int:
        """Extract a labelled archive, one destination per root label.

        Args:
            destinations: Root label -> local directory.

        Returns:
            int: Number of entries written.

        Raises:
            ArchiveCorrupt: An entry's label has no destination.
            PathTraversal: An entry escapes its destination.
        """
        plan = []
        for info, entry in zip(self._infos, self.entries):
            label = entry.label
            if label is None or label not in destinations:
                raise ArchiveCorrupt(f"No destination for archive entry {entry.name!r}")
            if _is_root_entry(entry):
                continue
            plan.append((info, safe_join(Path(destinations[label]), entry.relative_to_label())))

        for dest in destinations.values():
            Path(dest).mkdir(parents=True, exist_ok=True)
        return self._apply(plan)

    def _apply(self, plan: list[tuple[zipfile.ZipInfo, Path]]) -> int:
        for info, target in plan:
            self._write_entry(info, target)
        logger.info("Extracted %d entries", len(plan))
        return len(plan)

    def _write_entry(self, info: zipfile.ZipInfo, target: Path) -> None:
        mode = _entry_mode(info)
        try:
            if info.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                os.chmod(target, (mode or DEFAULT_DIR_MODE) | 0o700)
                return
            target.parent.mkdir(parents=True, exist_ok=True)
            with self._zip.open(info) as src, open(target, "wb") as dst:
                shutil.copyfileobj(src, dst)
            os.chmod(target, (mode or DEFAULT_FILE_MODE) | 0o600)
        except OSError as exc:
            raise DecodeIOError(f"Cannot write {target}: {exc}", target) from exc
        except (zipfile.BadZipFile, zlib.error) as exc:
            raise ArchiveCorrupt(f"Cannot read {info.filename}: {exc}") from exc
        logger.debug("Wrote %s", target)


def open_archive(source: Union[bytes, BinaryIO]) -> ArchiveReader:
    """Buffer and verify an archive.

    Args:
        source: Raw bytes or a readable byte stream.

    Returns:
        ArchiveReader: Parsed archive with every entry name validated.

    Raises:
        ArchiveCorrupt: Truncated stream, missing index, bad CRC.
        PathTraversal: Any entry name that could escape a destination.
    """
    data = source if isinstance(source, (bytes, bytearray)) else source.read()
    return ArchiveReader(bytes(data))


def extract_archive(source: Union[bytes, BinaryIO], destination: Path) -> int:
    """Extract an unlabelled archive stream under destination."""
    with open_archive(source) as reader:
        return reader.extract_to(destination)
