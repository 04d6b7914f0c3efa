"""Tests for user-initiated library operations"""

import pytest

from conftest import at
from mangasync.auth import AuthContext
from mangasync.errors import RemoteUnavailable
from mangasync.library import LibraryManager
from mangasync.sync.models import EntityKind, HistoryEntry, LibraryItem, Source


def test_remove_from_library_deletes_remote_then_local(local, remote, auth):
    item = LibraryItem("s1", "m1", canonical_id="c1")
    local.add(item)
    remote.add(EntityKind.LIBRARY, item)

    assert LibraryManager(local, remote, auth).remove_from_library("s1", "m1")

    assert remote.library == {}
    assert local.library == {}


def test_failed_remote_delete_keeps_local_entry(local, remote, auth):
    local.add(LibraryItem("s1", "m1", canonical_id="c1"))

    def failing_delete(kind, record, user_id):
        raise RemoteUnavailable("DELETE failed")

    remote.delete = failing_delete

    with pytest.raises(RemoteUnavailable):
        LibraryManager(local, remote, auth).remove_from_library("s1", "m1")
    assert ("s1", "m1") in local.library


def test_remove_unknown_item_touches_nothing(local, remote, auth):
    assert not LibraryManager(local, remote, auth).remove_from_library("s1", "m1")

    assert remote.resolve_calls == []
    assert remote.writes == []


def test_remove_unresolved_item_resolves_identity_first(local, remote, auth):
    local.add(LibraryItem("s1", "m1", title="One Piece"))
    remote.add(EntityKind.LIBRARY, LibraryItem("s1", "m1", canonical_id="c-s1-m1"))

    LibraryManager(local, remote, auth).remove_from_library("s1", "m1")

    assert remote.resolve_calls == [("One Piece", "s1", "m1")]
    assert remote.library == {}


def test_without_session_only_local_state_changes(local, remote):
    local.add(Source("s1"))
    remote.add(EntityKind.SOURCE, Source("s1"))

    LibraryManager(local, remote, AuthContext.anonymous()).uninstall_source("s1")

    assert local.sources == {}
    assert "s1" in remote.sources


def test_uninstall_source(local, remote, auth):
    local.add(Source("s1"))
    remote.add(EntityKind.SOURCE, Source("s1"))

    LibraryManager(local, remote, auth).uninstall_source("s1")

    assert local.sources == {}
    assert remote.sources == {}


def test_remove_selected_chapters_from_history(local, remote, auth):
    for number in (1.0, 2.0, 3.0):
        local.add(HistoryEntry("s1", "m1", number))
        remote.add(EntityKind.HISTORY, HistoryEntry("s1", "m1", number, canonical_id="c1"))

    removed = LibraryManager(local, remote, auth).remove_history("s1", "m1", chapter_numbers=[1, 3])

    assert removed == 2
    assert list(local.history) == [("s1", "m1", "2.0")]
    assert list(remote.history) == [("s1", "m1", "2.0")]


def test_remove_all_history_of_an_entity(local, remote, auth):
    local.add(HistoryEntry("s1", "m1", 1.0), HistoryEntry("s1", "m2", 1.0))
    remote.add(EntityKind.HISTORY, HistoryEntry("s1", "m1", 1.0, canonical_id="c1"))

    assert LibraryManager(local, remote, auth).remove_history("s1", "m1") == 1

    assert remote.deleted_history == [("s1", "m1", None)]
    assert list(local.history) == [("s1", "m2", "1.0")]


def test_record_progress_pushes_immediately(local, remote, auth):
    entry = HistoryEntry("s1", "m1", 5.0, page_number=3, last_read_at=at(1), title="One Piece")

    assert LibraryManager(local, remote, auth).record_progress(entry)

    assert local.history[("s1", "m1", "5.0")].page_number == 3
    assert remote.history[("s1", "m1", "5.0")].canonical_id == "c-s1-m1"


def test_record_progress_push_failure_keeps_local_write(local, remote, auth):
    remote.fail_upserts = {("s1", "m1", "5.0")}
    entry = HistoryEntry("s1", "m1", 5.0, page_number=3, canonical_id="c1")

    assert not LibraryManager(local, remote, auth).record_progress(entry)

    assert ("s1", "m1", "5.0") in local.history
    assert remote.history == {}


def test_install_source_pushes_immediately(local, remote, auth):
    source = Source("s1", name="Source", origin_url="https://repo.example/s1")

    assert LibraryManager(local, remote, auth).install_source(source)

    assert local.sources["s1"] == source
    assert remote.sources["s1"] == source


def test_install_source_without_session_is_local_only(local, remote):
    assert not LibraryManager(local, remote, AuthContext.anonymous()).install_source(Source("s1"))

    assert "s1" in local.sources
    assert remote.sources == {}


def test_install_source_push_failure_keeps_local_write(local, remote, auth):
    remote.fail_upserts = {"s1"}

    assert not LibraryManager(local, remote, auth).install_source(Source("s1"))

    assert "s1" in local.sources
    assert remote.sources == {}


def test_mark_completed_keeps_progress_and_pushes_each_chapter(local, remote, auth):
    local.add(HistoryEntry("s1", "m1", 1.0, page_number=7, total_pages=20, last_read_at=at(1)))

    pushed = LibraryManager(local, remote, auth).mark_completed("s1", "m1", [1, 2], title="One Piece")

    assert pushed == 2
    assert remote.resolve_calls == [("One Piece", "s1", "m1")]
    first = local.history[("s1", "m1", "1.0")]
    assert first.completed is True
    assert first.page_number == 7
    assert first.last_read_at > at(1)
    assert local.history[("s1", "m1", "2.0")].completed is True
    assert all(entry.canonical_id == "c-s1-m1" for entry in remote.history.values())
    assert sorted(remote.history) == [("s1", "m1", "1.0"), ("s1", "m1", "2.0")]


def test_mark_completed_continues_after_a_failed_push(local, remote, auth):
    remote.fail_upserts = {("s1", "m1", "2.0")}

    pushed = LibraryManager(local, remote, auth).mark_completed("s1", "m1", [1, 2, 3], title="One Piece")

    assert pushed == 2
    assert len(local.history) == 3
    assert ("s1", "m1", "2.0") not in remote.history
