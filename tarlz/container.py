from __future__ import annotations

import enum
import io
import logging
import os
import tarfile
from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO, Dict, List, Optional, Tuple, Type

from .codec import Codec, LzipCodec, LzmaCodec, XzCodec, parse_level
from .constants import (
    MODE_READ,
    MODE_WRITE,
    TAR_HEADER_SIZE,
    TAR_TRAILER_SIZE,
    DEFAULT_COMPRESSION_LEVEL,
    MIN_COMPRESSION_LEVEL,
    MAX_COMPRESSION_LEVEL,
)
from .entries import (
    Entry,
    EntryTable,
    TableBuild,
    TableStatus,
    build_entry_table,
    entry_pairs,
    timestamp_to_epoch,
)
from .errors import EntryNotFoundError, ModeViolationError, UnsupportedEntryShapeError
from .native import TarView
from .pathutil import FilenameComparer, norm_key
from .streams import BufferedEntryWriter, ReadStrategy, StagedEntry, scan_for_entry, select_strategy


logger = logging.getLogger(__name__)

CANNOT_READ_WHILE_WRITING = "Cannot read while writing"
CANNOT_WRITE_WHILE_READING = "Cannot write while reading"


class CompressionHint(enum.Enum):
    """How compressible an entry is expected to be. Informational only."""

    DEFAULT = "default"
    COMPRESSIBLE = "compressible"
    NONCOMPRESSIBLE = "noncompressible"


@dataclass(frozen=True)
class CommandLineArgument:
    name: str
    type: str
    short_description: str
    long_description: str = ""
    default: Optional[str] = None
    values: Tuple[str, ...] = ()


class ArchiveContainer:
    """Capability interface shared by read and write containers.

    Every operation is declared here and refuses with ModeViolationError;
    each variant overrides only the operations legal in its mode. The
    caller's stream is never closed by a container.
    """

    mode = ""

    def __init__(self, stream: BinaryIO, codec: Codec, archive_format: Optional[Type["ArchiveFormat"]] = None):
        self._stream: Optional[BinaryIO] = stream
        self.codec = codec
        self.archive_format = archive_format

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.dispose()

    @property
    def filename_extension(self) -> str:
        return self.archive_format.FILENAME_EXTENSION if self.archive_format else ""

    @property
    def display_name(self) -> str:
        return self.archive_format.DISPLAY_NAME if self.archive_format else self.codec.name

    @property
    def description(self) -> str:
        return self.archive_format.DESCRIPTION if self.archive_format else ""

    @property
    def closed(self) -> bool:
        return self._stream is None

    def _check_open(self) -> None:
        if self._stream is None:
            raise RuntimeError("Archive not open")

    # Read operations
    def list_files(self, prefix: Optional[str] = "") -> List[str]:
        raise ModeViolationError(CANNOT_READ_WHILE_WRITING)

    def list_files_with_size(self, prefix: Optional[str] = "") -> List[Tuple[str, int]]:
        raise ModeViolationError(CANNOT_READ_WHILE_WRITING)

    def file_exists(self, key: str) -> bool:
        raise ModeViolationError(CANNOT_READ_WHILE_WRITING)

    def open_read(self, key: str) -> Optional[BinaryIO]:
        raise ModeViolationError(CANNOT_READ_WHILE_WRITING)

    def get_last_write_time(self, key: str) -> datetime:
        raise ModeViolationError(CANNOT_READ_WHILE_WRITING)

    # Write operations
    def create_file(
        self,
        key: str,
        hint: CompressionHint = CompressionHint.DEFAULT,
        last_write: Optional[datetime] = None,
    ) -> BufferedEntryWriter:
        raise ModeViolationError(CANNOT_WRITE_WHILE_READING)

    @property
    def flush_buffer_size(self) -> int:
        raise ModeViolationError(CANNOT_WRITE_WHILE_READING)

    @property
    def size(self) -> int:
        raise NotImplementedError

    def dispose(self) -> None:
        self._stream = None

    def close(self) -> None:
        self.dispose()


class ReadContainer(ArchiveContainer):
    """Read-only view of a container.

    The native tar reader is opened on first use and the entry table is
    built by one full scan, then reused for the container's lifetime.
    """

    mode = MODE_READ

    def __init__(
        self,
        stream: BinaryIO,
        codec: Codec,
        comparer: Optional[FilenameComparer] = None,
        archive_format: Optional[Type["ArchiveFormat"]] = None,
    ):
        seekable = getattr(stream, "seekable", None)
        if seekable is not None and not seekable():
            # every scan, and every rescan, starts from offset 0
            raise io.UnsupportedOperation("Read mode requires a seekable stream")
        super().__init__(stream, codec, archive_format)
        self.comparer = comparer or FilenameComparer()
        self.random_access = codec.random_access
        self._view: Optional[TarView] = None
        self._build: Optional[TableBuild] = None

    def _native(self) -> TarView:
        self._check_open()
        if self._view is None:
            self._view = TarView(self._stream, self.codec, self.random_access)
        return self._view

    def _scan(self):
        return self._native().members()

    def _open_sequential(self) -> TarView:
        self._check_open()
        return TarView(self._stream, self.codec, random_access=False)

    def _close_view(self) -> None:
        view, self._view = self._view, None
        if view is not None:
            view.close()

    def entries(self) -> EntryTable:
        self._check_open()
        if self._build is None:
            try:
                self._build = build_entry_table(self._scan, self.comparer)
            except BaseException:
                self._close_view()
                raise
        return self._build.table

    @property
    def table_status(self) -> TableStatus:
        return self._build.status if self._build is not None else TableStatus.NOT_BUILT

    @property
    def recovered_count(self) -> Optional[int]:
        return self._build.recovered if self._build is not None else None

    @property
    def scan_warning(self) -> Optional[BaseException]:
        return self._build.warning if self._build is not None else None

    def get_entry(self, key: str) -> Optional[Entry]:
        return self.entries().lookup(key)

    def list_files(self, prefix: Optional[str] = "") -> List[str]:
        return [e.key for e in self.entries().filter(prefix)]

    def list_files_with_size(self, prefix: Optional[str] = "") -> List[Tuple[str, int]]:
        return entry_pairs(self.entries().filter(prefix))

    def file_exists(self, key: str) -> bool:
        return self.get_entry(key) is not None

    def read_strategy(self, key: str) -> Optional[ReadStrategy]:
        entry = self.get_entry(key)
        if entry is None:
            return None
        return select_strategy(entry, self.random_access)

    def open_read(self, key: str) -> Optional[BinaryIO]:
        """Open an entry for reading, or return None if it does not exist.

        Streams from the sequential fallback share the caller's stream
        position and must be closed before the next ``open_read``.
        """
        entry = self.get_entry(key)
        if entry is None:
            return None
        if select_strategy(entry, self.random_access) is ReadStrategy.DIRECT_STREAM:
            payload = self._native().open_member(entry.member)
            if payload is None:
                raise UnsupportedEntryShapeError(f"Unexpected entry type for {entry.key}")
            return payload
        logger.debug("Rescanning %s container for %s", self.codec.name, entry.key)
        return scan_for_entry(
            self._open_sequential,
            entry.key,
            offset=entry.member.offset if entry.member is not None else None,
        )

    def get_last_write_time(self, key: str) -> datetime:
        entry = self.get_entry(key)
        if entry is None:
            raise EntryNotFoundError(f"File not found: {key}")
        return entry.last_write_time

    @property
    def size(self) -> int:
        return self.entries().total_size

    def dispose(self) -> None:
        try:
            self._close_view()
        finally:
            super().dispose()


def _physical_length(stream: BinaryIO) -> int:
    stream.flush()
    try:
        return os.fstat(stream.fileno()).st_size
    except (AttributeError, OSError, io.UnsupportedOperation):
        pass
    pos = stream.tell()
    end = stream.seek(0, io.SEEK_END)
    stream.seek(pos)
    return end


class WriteContainer(ArchiveContainer):
    """Append-only container. Entries are buffered and written whole."""

    mode = MODE_WRITE

    def __init__(
        self,
        stream: BinaryIO,
        codec: Codec,
        level: int = DEFAULT_COMPRESSION_LEVEL,
        archive_format: Optional[Type["ArchiveFormat"]] = None,
    ):
        super().__init__(stream, codec, archive_format)
        self.level = level
        self._tar: Optional[tarfile.TarFile] = None
        self._encoded: Optional[BinaryIO] = codec.open_writer(stream, level)
        try:
            self._tar = tarfile.open(fileobj=self._encoded, mode="w|", format=tarfile.PAX_FORMAT)
        except BaseException:
            self._encoded.close()
            self._encoded = None
            raise
        self._flush_buffer_size = TAR_TRAILER_SIZE
        self.entries_written = 0
        self._writers: List[BufferedEntryWriter] = []

    def create_file(
        self,
        key: str,
        hint: CompressionHint = CompressionHint.DEFAULT,
        last_write: Optional[datetime] = None,
    ) -> BufferedEntryWriter:
        """Start a new entry; it is appended when the returned writer closes.

        A naive ``last_write`` is stored as UTC and reads back timezone-aware.
        """
        self._check_open()
        key = norm_key(key)
        self._flush_buffer_size += TAR_HEADER_SIZE + len(key.encode("utf-8"))
        writer = BufferedEntryWriter(key, self.commit, last_write)
        self._writers = [w for w in self._writers if not w.closed]
        self._writers.append(writer)
        return writer

    def commit(self, staged: StagedEntry) -> Entry:
        """Append one staged entry to the tar stream."""
        if self._tar is None:
            raise RuntimeError("Archive not open")
        info = tarfile.TarInfo(staged.key)
        info.size = staged.size
        info.mtime = timestamp_to_epoch(staged.last_write)
        if staged.last_write is not None and not info.mtime:
            # mtime 0 alone means "unknown"
            info.pax_headers = {"mtime": "0"}
        info.mode = 0o644
        self._tar.addfile(info, io.BytesIO(staged.data))
        self.entries_written += 1
        logger.debug("Committed %s (%d bytes)", staged.key, staged.size)
        return Entry(key=staged.key, size=staged.size, last_modified=staged.last_write, member=info)

    @property
    def flush_buffer_size(self) -> int:
        return self._flush_buffer_size

    @property
    def size(self) -> int:
        self._check_open()
        return _physical_length(self._stream)

    def dispose(self) -> None:
        pending = [w for w in self._writers if not w.closed]
        self._writers = []
        if pending:
            logger.warning(
                "Closing container with %d uncommitted entries; discarding: %s",
                len(pending),
                ", ".join(w.key for w in pending),
            )
            for w in pending:
                w.discard()
        tar, self._tar = self._tar, None
        encoded, self._encoded = self._encoded, None
        try:
            if tar is not None:
                tar.close()
        finally:
            try:
                if encoded is not None:
                    encoded.close()
            finally:
                super().dispose()


def open_container(
    stream: BinaryIO,
    mode: str,
    options: Optional[Dict[str, str]] = None,
    codec: Optional[Codec] = None,
    case_sensitive: Optional[bool] = None,
    archive_format: Optional[Type["ArchiveFormat"]] = None,
) -> ArchiveContainer:
    """Open ``stream`` as a container in ``mode`` ("r" or "w").

    Write mode starts the compressed tar stream immediately. Read mode
    touches nothing until the first query.
    """
    if codec is None:
        if archive_format is None:
            raise ValueError("A codec or archive format is required")
        codec = archive_format.codec
    if mode == MODE_WRITE:
        level = parse_level(options, codec.level_option) if codec.level_option else DEFAULT_COMPRESSION_LEVEL
        return WriteContainer(stream, codec, level, archive_format)
    if mode == MODE_READ:
        return ReadContainer(stream, codec, FilenameComparer(case_sensitive), archive_format)
    raise ValueError(f"Unknown archive mode: {mode!r}")


def _level_argument(option: str, display: str) -> CommandLineArgument:
    return CommandLineArgument(
        name=option,
        type="enumeration",
        short_description=f"Set the {display} compression level",
        long_description=(
            f"Compression level for {display} archives, from {MIN_COMPRESSION_LEVEL} (fastest) "
            f"to {MAX_COMPRESSION_LEVEL} (smallest)."
        ),
        default=str(DEFAULT_COMPRESSION_LEVEL),
        values=tuple(str(i) for i in range(MIN_COMPRESSION_LEVEL, MAX_COMPRESSION_LEVEL + 1)),
    )


class ArchiveFormat:
    """A container type: one codec around a tar stream."""

    FILENAME_EXTENSION = ""
    DISPLAY_NAME = ""
    DESCRIPTION = ""
    codec: Codec = Codec()

    @classmethod
    def supported_commands(cls) -> List[CommandLineArgument]:
        if not cls.codec.level_option:
            return []
        return [_level_argument(cls.codec.level_option, cls.DISPLAY_NAME)]

    @classmethod
    def open(
        cls,
        stream: BinaryIO,
        mode: str,
        options: Optional[Dict[str, str]] = None,
        case_sensitive: Optional[bool] = None,
    ) -> ArchiveContainer:
        return open_container(stream, mode, options, cls.codec, case_sensitive, archive_format=cls)


class LzmaArchive(ArchiveFormat):
    FILENAME_EXTENSION = "tlz"
    DISPLAY_NAME = "LZMA tar"
    DESCRIPTION = "This module stores entries in a tar stream compressed with the LZMA algorithm."
    codec = LzmaCodec()


class LzipArchive(ArchiveFormat):
    FILENAME_EXTENSION = "tar.lz"
    DISPLAY_NAME = "lzip tar"
    DESCRIPTION = (
        "This module stores entries in a tar stream compressed with lzip. "
        "The format is sequential, so reading an entry rescans the archive."
    )
    codec = LzipCodec()


class XzArchive(ArchiveFormat):
    FILENAME_EXTENSION = "txz"
    DISPLAY_NAME = "xz tar"
    DESCRIPTION = "This module stores entries in a tar stream compressed with xz."
    codec = XzCodec()
