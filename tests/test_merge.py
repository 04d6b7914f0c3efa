"""Tests for diff and merge helpers"""

from datetime import datetime

from conftest import at
from mangasync.sync.kinds import HistoryAdapter, LibraryAdapter, SourceAdapter
from mangasync.sync.merge import closest_chapter, index_by_key, max_timestamp, three_way_diff
from mangasync.sync.models import ChapterRef, HistoryEntry, LibraryItem, Source


class TestMaxTimestamp:

    def test_none_is_ordered_below_any_value(self):
        assert max_timestamp(None, at(1)) == at(1)
        assert max_timestamp(at(1), None) == at(1)
        assert max_timestamp(None, None) is None

    def test_naive_values_are_treated_as_utc(self):
        naive = datetime(2024, 1, 1, 12, 30)
        assert max_timestamp(naive, at(10)) == at(30)


def test_three_way_diff_partitions_keys():
    diff = three_way_diff({"a": 1, "b": 2}, {"b": 20, "c": 30})

    assert diff.upload == {"a": 1}
    assert diff.download == {"c": 30}
    assert diff.merge == {"b": (2, 20)}
    assert not diff.empty


def test_index_by_key_keeps_first_and_reports_duplicates():
    indexed, duplicates = index_by_key(["apple", "avocado", "banana"], key=lambda word: word[0])

    assert indexed == {"a": "apple", "b": "banana"}
    assert duplicates == [("a", "avocado")]


def test_closest_chapter_respects_tolerance():
    chapters = [
        ChapterRef("x", None),
        ChapterRef("c10", 10.0),
        ChapterRef("c10.5", 10.5),
    ]

    assert closest_chapter(chapters, 10.04).chapter_id == "c10"
    assert closest_chapter(chapters, 10.5).chapter_id == "c10.5"
    assert closest_chapter(chapters, 10.2) is None


class TestAdapterMerge:

    def test_library_merge_is_symmetric(self):
        local = LibraryItem("s1", "m1", canonical_id="c1", date_added=at(5), last_read=at(1))
        remote = LibraryItem("s1", "m1", canonical_id="c1", date_added=at(2), last_read=at(7))

        new_local, new_remote = LibraryAdapter().merge(local, remote)

        assert new_local == new_remote
        assert new_local.date_added == at(5)
        assert new_local.last_read == at(7)

    def test_library_merge_of_equal_records_changes_nothing(self):
        item = LibraryItem("s1", "m1", canonical_id="c1", last_opened=at(3))

        assert LibraryAdapter().merge(item, item) == (item, item)

    def test_history_tie_takes_per_field_maximum(self):
        local = HistoryEntry("s1", "m1", 3.0, page_number=9, total_pages=18, last_read_at=at(1))
        remote = HistoryEntry("s1", "m1", 3.0, page_number=4, total_pages=20, last_read_at=at(1), chapter_title="Three")

        new_local, new_remote = HistoryAdapter().merge(local, remote)

        assert new_local.page_number == new_remote.page_number == 9
        assert new_local.total_pages == 20
        assert new_local.chapter_title == "Three"

    def test_history_key_uses_one_decimal_chapter_number(self):
        entry = HistoryEntry("s1", "m1", 12)

        assert HistoryAdapter().key(entry) == ("s1", "m1", "12.0")

    def test_source_merge_prefers_local_values(self):
        merged, _ = SourceAdapter().merge(
            Source("s1", name="Local", lang=None),
            Source("s1", name="Remote", lang="en", origin_url="https://repo.example"),
        )

        assert merged == Source("s1", name="Local", lang="en", origin_url="https://repo.example")
