from __future__ import annotations

import enum
import logging
import tarfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from .constants import MIN_TIMESTAMP
from .pathutil import FilenameComparer, candidate_keys, to_slash


logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Entry:
    key: str
    size: int = 0
    last_modified: Optional[datetime] = None
    is_file: bool = True
    member: Optional[tarfile.TarInfo] = field(default=None, repr=False, compare=False)

    @property
    def last_write_time(self) -> datetime:
        return self.last_modified if self.last_modified is not None else MIN_TIMESTAMP

    @classmethod
    def from_member(cls, member: tarfile.TarInfo) -> "Entry":
        return cls(
            key=member.name,
            size=member.size,
            last_modified=epoch_to_timestamp(member.mtime, "mtime" in member.pax_headers),
            is_file=member.isfile(),
            member=member,
        )


def timestamp_to_epoch(ts: Optional[datetime]) -> Union[int, float]:
    """Convert a modification time to a tar mtime.

    ``None`` maps to 0, the tar value for "unknown". The epoch itself also
    maps to 0, so writers record it with an explicit PAX ``mtime`` field.
    Naive datetimes are taken as UTC. Whole seconds stay integers so they
    fit the ustar field.
    """
    if ts is None:
        return 0
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    if ts.microsecond == 0:
        return int((ts - _EPOCH).total_seconds())
    return ts.timestamp()


def epoch_to_timestamp(mtime: Union[int, float, None], explicit: bool = False) -> Optional[datetime]:
    """Convert a tar mtime back; 0 is "unknown" unless ``explicit``."""
    if mtime is None or (not mtime and not explicit):
        return None
    return datetime.fromtimestamp(mtime, tz=timezone.utc)


class EntryTable:
    """Name to Entry mapping built from one scan of a container.

    Keys are folded through a ``FilenameComparer``. A later entry with the
    same key replaces the earlier one but keeps its position, so iteration
    follows the scan order.
    """

    def __init__(self, comparer: Optional[FilenameComparer] = None):
        self.comparer = comparer or FilenameComparer()
        self._entries: Dict[str, Entry] = {}

    def add(self, entry: Entry) -> None:
        self._entries[self.comparer.fold(entry.key)] = entry

    def get(self, key: str) -> Optional[Entry]:
        return self._entries.get(self.comparer.fold(key))

    def lookup(self, key: str) -> Optional[Entry]:
        for candidate in candidate_keys(key):
            e = self.get(candidate)
            if e is not None:
                return e
        return None

    def filter(self, prefix: Optional[str]) -> List[Entry]:
        if not prefix:
            return list(self._entries.values())
        starts = self.comparer.startswith
        return [
            e
            for e in self._entries.values()
            if starts(e.key, prefix) or starts(to_slash(e.key), prefix)
        ]

    @property
    def total_size(self) -> int:
        return sum(e.size for e in self._entries.values())

    def __contains__(self, key: str) -> bool:
        return self.lookup(key) is not None

    def __iter__(self) -> Iterator[Entry]:
        return iter(list(self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)


class TableStatus(enum.Enum):
    NOT_BUILT = "not-built"
    BUILT = "built"
    BUILT_WITH_WARNING = "built-with-warning"


@dataclass(frozen=True)
class TableBuild:
    table: EntryTable
    status: TableStatus = TableStatus.BUILT
    recovered: int = 0
    warning: Optional[BaseException] = None


# A scan that recovered fewer entries than this is not worth keeping
MIN_RECOVERED_ENTRIES = 2


def build_entry_table(
    scan: Callable[[], Iterable[tarfile.TarInfo]],
    comparer: Optional[FilenameComparer] = None,
) -> TableBuild:
    """Run ``scan`` once and collect every member into an EntryTable.

    ``scan`` opens the native reader and yields its members; errors raised
    while opening count as scan errors too. If the scan fails after at
    least two entries were recovered, the partial table is kept and a
    warning is logged. Otherwise the original error propagates unchanged.
    """
    table = EntryTable(comparer)
    try:
        for member in scan():
            table.add(Entry.from_member(member))
    except Exception as exc:
        if len(table) < MIN_RECOVERED_ENTRIES:
            raise
        logger.warning(
            "Archive appears to have broken records; returning the %d records that could be recovered",
            len(table),
            exc_info=exc,
        )
        return TableBuild(table, TableStatus.BUILT_WITH_WARNING, len(table), exc)
    logger.debug("Entry table built with %d entries", len(table))
    return TableBuild(table, TableStatus.BUILT, len(table))


def entry_pairs(entries: Iterable[Entry]) -> List[Tuple[str, int]]:
    return [(e.key, e.size) for e in entries]
