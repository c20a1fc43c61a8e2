from __future__ import annotations

import io
import tarfile
import unittest
from datetime import datetime, timezone

from tarlz.constants import MIN_TIMESTAMP
from tarlz.entries import (
    Entry,
    EntryTable,
    TableStatus,
    build_entry_table,
    epoch_to_timestamp,
    timestamp_to_epoch,
)
from tarlz.errors import UnsupportedEntryShapeError
from tarlz.pathutil import FilenameComparer, candidate_keys, norm_key, norm_path
from tarlz.streams import BufferedEntryWriter, EntryStream, ReadStrategy, StagedEntry, select_strategy


def _member(name: str, size: int = 0, mtime: int = 0, kind: bytes = tarfile.REGTYPE) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.size = size
    info.mtime = mtime
    info.type = kind
    return info


def _scan(members, error=None):
    def scan():
        for m in members:
            yield m
        if error is not None:
            raise error

    return scan


class PathRuleTests(unittest.TestCase):
    def test_candidate_keys_order(self):
        self.assertEqual(candidate_keys("a/b\\c"), ["a/b\\c", "a\\b\\c", "a/b/c"])
        self.assertEqual(candidate_keys("plain"), ["plain"])

    def test_comparer_case_rules(self):
        sensitive = FilenameComparer(case_sensitive=True)
        insensitive = FilenameComparer(case_sensitive=False)
        self.assertFalse(sensitive.equals("Logs/A.txt", "logs/a.txt"))
        self.assertTrue(insensitive.equals("Logs/A.txt", "logs/a.txt"))
        self.assertTrue(insensitive.startswith("LOGS/x", "logs"))
        self.assertIsInstance(FilenameComparer().case_sensitive, bool)

    def test_norm_key(self):
        self.assertEqual(norm_key("a/b"), "a/b")
        with self.assertRaises(ValueError):
            norm_key("")
        with self.assertRaises(ValueError):
            norm_key("bad\x00key")

    def test_norm_path(self):
        self.assertEqual(norm_path("\\dir\\.\\file.txt"), "dir/file.txt")
        with self.assertRaises(ValueError):
            norm_path("../escape")


class EntryTableTests(unittest.TestCase):
    def _table(self, *keys, case_sensitive=True):
        table = EntryTable(FilenameComparer(case_sensitive))
        for i, k in enumerate(keys):
            table.add(Entry(key=k, size=i + 1))
        return table

    def test_lookup_is_separator_insensitive(self):
        table = self._table("a/b/c", "x\\y")
        self.assertEqual(table.lookup("a/b/c").key, "a/b/c")
        self.assertEqual(table.lookup("a\\b\\c").key, "a/b/c")
        self.assertEqual(table.lookup("x/y").key, "x\\y")
        self.assertIsNone(table.lookup("a/b"))

    def test_prefix_filter_keeps_scan_order(self):
        table = self._table("logs/b.txt", "data/c.txt", "logs/a.txt")
        self.assertEqual([e.key for e in table.filter("logs")], ["logs/b.txt", "logs/a.txt"])
        self.assertEqual(len(table.filter("")), 3)
        self.assertEqual(len(table.filter(None)), 3)

    def test_prefix_filter_matches_backslash_keys(self):
        table = self._table("logs\\a.txt", "data\\c.txt")
        self.assertEqual([e.key for e in table.filter("logs/")], ["logs\\a.txt"])

    def test_last_write_wins_keeps_position(self):
        table = EntryTable(FilenameComparer(True))
        table.add(Entry("first", 1))
        table.add(Entry("dup", 2))
        table.add(Entry("last", 3))
        table.add(Entry("dup", 20))
        self.assertEqual([e.key for e in table], ["first", "dup", "last"])
        self.assertEqual(table.lookup("dup").size, 20)
        self.assertEqual(table.total_size, 24)

    def test_case_insensitive_table(self):
        table = self._table("Logs/A.txt", case_sensitive=False)
        self.assertIn("logs/a.txt", table)
        self.assertEqual([e.key for e in table.filter("LOGS")], ["Logs/A.txt"])


class TimestampTests(unittest.TestCase):
    def test_roundtrip_whole_seconds(self):
        t = datetime(2021, 5, 4, 3, 2, 1, tzinfo=timezone.utc)
        epoch = timestamp_to_epoch(t)
        self.assertIsInstance(epoch, int)
        self.assertEqual(epoch_to_timestamp(epoch), t)

    def test_naive_is_utc(self):
        naive = datetime(2020, 1, 2, 3, 4, 5)
        self.assertEqual(epoch_to_timestamp(timestamp_to_epoch(naive)), naive.replace(tzinfo=timezone.utc))

    def test_unknown(self):
        self.assertEqual(timestamp_to_epoch(None), 0)
        self.assertIsNone(epoch_to_timestamp(0))
        self.assertEqual(epoch_to_timestamp(0, explicit=True), datetime(1970, 1, 1, tzinfo=timezone.utc))
        self.assertEqual(Entry("k").last_write_time, MIN_TIMESTAMP)


class BuildEntryTableTests(unittest.TestCase):
    def test_explicit_epoch_member(self):
        member = _member("e")
        member.pax_headers = {"mtime": "0"}
        build = build_entry_table(_scan([member, _member("u")]))
        self.assertEqual(build.table.lookup("e").last_write_time, datetime(1970, 1, 1, tzinfo=timezone.utc))
        self.assertEqual(build.table.lookup("u").last_write_time, MIN_TIMESTAMP)

    def test_clean_scan(self):
        build = build_entry_table(_scan([_member("a", 1, 100), _member("b", 2)]))
        self.assertEqual(build.status, TableStatus.BUILT)
        self.assertEqual(build.recovered, 2)
        self.assertIsNone(build.warning)
        a = build.table.lookup("a")
        self.assertEqual(a.size, 1)
        self.assertEqual(a.last_modified, datetime.fromtimestamp(100, tz=timezone.utc))
        self.assertIsNone(build.table.lookup("b").last_modified)

    def test_partial_scan_kept_with_warning(self):
        err = EOFError("Compressed file ended before the end-of-stream marker was reached")
        members = [_member("one"), _member("two"), _member("three")]
        with self.assertLogs("tarlz", level="WARNING") as cm:
            build = build_entry_table(_scan(members, err))
        self.assertEqual(build.status, TableStatus.BUILT_WITH_WARNING)
        self.assertEqual(build.recovered, 3)
        self.assertIs(build.warning, err)
        self.assertEqual([e.key for e in build.table], ["one", "two", "three"])
        self.assertIn("3 records", cm.output[0])

    def test_two_entries_is_enough(self):
        build = build_entry_table(_scan([_member("one"), _member("two")], ValueError("broken")))
        self.assertEqual(build.status, TableStatus.BUILT_WITH_WARNING)

    def test_single_entry_failure_propagates(self):
        err = ValueError("broken header")
        with self.assertRaises(ValueError) as cm:
            build_entry_table(_scan([_member("one")], err))
        self.assertIs(cm.exception, err)

    def test_open_failure_propagates(self):
        def scan():
            raise tarfile.ReadError("not a tar")

        with self.assertRaises(tarfile.ReadError):
            build_entry_table(scan)


class StrategyTests(unittest.TestCase):
    def test_selection(self):
        member = _member("f", 3)
        entry = Entry.from_member(member)
        self.assertIs(select_strategy(entry, True), ReadStrategy.DIRECT_STREAM)
        self.assertIs(select_strategy(entry, False), ReadStrategy.REQUIRES_SCAN)
        self.assertIs(select_strategy(Entry("f", 3), True), ReadStrategy.REQUIRES_SCAN)

    def test_directory_is_unsupported(self):
        entry = Entry.from_member(_member("dir", kind=tarfile.DIRTYPE))
        self.assertFalse(entry.is_file)
        with self.assertRaises(UnsupportedEntryShapeError):
            select_strategy(entry, True)


class EntryStreamTests(unittest.TestCase):
    def test_release_runs_once(self):
        calls = []
        payload = io.BytesIO(b"payload")
        s = EntryStream(payload, on_close=lambda: calls.append(1))
        self.assertEqual(s.read(), b"payload")
        s.close()
        s.close()
        self.assertEqual(calls, [1])
        self.assertTrue(payload.closed)

    def test_release_runs_when_payload_close_fails(self):
        calls = []

        class _Broken(io.BytesIO):
            def close(self):
                raise OSError("close failed")

        s = EntryStream(_Broken(b""), on_close=lambda: calls.append(1))
        with self.assertRaises(OSError):
            s.close()
        self.assertEqual(calls, [1])
        self.assertTrue(s.closed)


class BufferedEntryWriterTests(unittest.TestCase):
    def test_commit_only_on_close(self):
        committed = []

        def commit(staged: StagedEntry) -> Entry:
            committed.append(staged)
            return Entry(staged.key, staged.size)

        when = datetime(2022, 2, 2, tzinfo=timezone.utc)
        with BufferedEntryWriter("k", commit, when) as w:
            w.write(b"hello ")
            w.write(memoryview(b"world"))
            self.assertEqual(w.tell(), 11)
            self.assertEqual(w.stage(), StagedEntry("k", b"hello world", when))
            self.assertEqual(committed, [])
        self.assertEqual(committed, [StagedEntry("k", b"hello world", when)])
        self.assertEqual(w.committed.size, 11)
        w.close()
        self.assertEqual(len(committed), 1)

    def test_commit_failure_is_visible(self):
        def commit(staged):
            raise RuntimeError("Archive not open")

        w = BufferedEntryWriter("k", commit)
        w.write(b"data")
        with self.assertRaises(RuntimeError):
            w.close()
        self.assertTrue(w.closed)
        with self.assertRaises(ValueError):
            w.write(b"more")


if __name__ == "__main__":
    unittest.main()
