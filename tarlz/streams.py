from __future__ import annotations

import enum
import io
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO, Callable, Optional

from .entries import Entry
from .errors import StreamExhaustedError, UnsupportedEntryShapeError
from .native import TarView


logger = logging.getLogger(__name__)


class EntryStream(io.RawIOBase):
    """Readable stream over one entry's payload.

    ``on_close`` runs exactly once, after the payload stream is closed,
    and releases whatever produced the payload (e.g. a sequential reader).
    """

    def __init__(self, payload: BinaryIO, on_close: Optional[Callable[[], None]] = None, name: str = ""):
        super().__init__()
        self._payload = payload
        self._on_close = on_close
        self.name = name

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        with memoryview(b) as view, view.cast("B") as byte_view:
            data = self._payload.read(len(byte_view))
            byte_view[: len(data)] = data
        return len(data)

    def close(self) -> None:
        if self.closed:
            return
        on_close, self._on_close = self._on_close, None
        try:
            self._payload.close()
        finally:
            try:
                if on_close is not None:
                    on_close()
            finally:
                super().close()


class ReadStrategy(enum.Enum):
    DIRECT_STREAM = "direct"
    REQUIRES_SCAN = "scan"


def select_strategy(entry: Entry, random_access: bool) -> ReadStrategy:
    """Decide how the payload of ``entry`` can be reached.

    Regular files open straight from the native reader when it has random
    access; otherwise a sequential rescan is needed. Any other member type
    cannot be opened at all.
    """
    if not entry.is_file:
        raise UnsupportedEntryShapeError(f"Entry is not a regular file: {entry.key}")
    if random_access and entry.member is not None:
        return ReadStrategy.DIRECT_STREAM
    return ReadStrategy.REQUIRES_SCAN


def scan_for_entry(open_view: Callable[[], TarView], key: str, offset: Optional[int] = None) -> EntryStream:
    """Sequential fallback: rescan a container from the start for ``key``.

    A fresh sequential reader is opened and advanced record by record. The
    first record whose name equals ``key`` (and, when ``offset`` is given,
    whose header starts at that offset) is returned as a stream; closing
    that stream closes the reader. If no record matches, or anything fails
    before a match, the reader is closed before the error propagates.

    Cost is linear in the archive size for every call.
    """
    view: Optional[TarView] = None
    try:
        view = open_view()
        for member in view.members():
            if member.name != key or (offset is not None and member.offset != offset):
                continue
            payload = view.open_member(member)
            if payload is None:
                raise UnsupportedEntryShapeError(f"Entry is not a regular file: {key}")
            logger.debug("Sequential scan found %s", key)
            return EntryStream(payload, on_close=view.close, name=key)
        raise StreamExhaustedError(f"Stream not found: {key}")
    except BaseException:
        if view is not None:
            view.close()
        raise


@dataclass(frozen=True)
class StagedEntry:
    key: str
    data: bytes
    last_write: Optional[datetime] = None

    @property
    def size(self) -> int:
        return len(self.data)


class BufferedEntryWriter(io.RawIOBase):
    """Writable stream that holds one new entry in memory.

    Tar needs the entry length up front, so nothing reaches the archive
    while the caller writes. ``stage()`` snapshots the buffer as a
    StagedEntry; ``close()`` stages and hands it to ``commit`` exactly once,
    then drops the buffer. A failing commit raises from ``close()``.
    """

    def __init__(self, key: str, commit: Callable[[StagedEntry], Entry], last_write: Optional[datetime] = None):
        super().__init__()
        self.key = key
        self.last_write = last_write
        self._commit = commit
        self._buffer: Optional[bytearray] = bytearray()
        self.committed: Optional[Entry] = None

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        if self._buffer is None:
            raise ValueError("I/O operation on closed entry writer")
        with memoryview(data) as view:
            self._buffer += view
            return view.nbytes

    def tell(self) -> int:
        if self._buffer is None:
            raise ValueError("I/O operation on closed entry writer")
        return len(self._buffer)

    def stage(self) -> StagedEntry:
        if self._buffer is None:
            raise ValueError("Entry writer already committed")
        return StagedEntry(self.key, bytes(self._buffer), self.last_write)

    def discard(self) -> None:
        """Close without committing; the buffered bytes are dropped."""
        self._buffer = None
        super().close()

    def close(self) -> None:
        if self.closed:
            return
        try:
            if self._buffer is not None:
                staged = self.stage()
                self._buffer = None
                self.committed = self._commit(staged)
        finally:
            self._buffer = None
            super().close()
