"""Test configuration and fixtures"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from mangasync.auth import AuthContext
from mangasync.db.database import Database
from mangasync.errors import (
    AuthRequired,
    ContentProviderError,
    IdentityResolutionFailed,
    RemoteUnavailable,
)
from mangasync.sync.models import (
    ChapterRef,
    EntityKind,
    LibraryItem,
    MangaDetail,
    Source,
)

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def at(minutes):
    """Timestamp a number of minutes after T0."""
    return T0 + timedelta(minutes=minutes)


class FakeLocalStore:
    """In-memory local store that records every write."""

    def __init__(self):
        self.sources = {}
        self.library = {}
        self.history = {}
        self.manga = {}
        self.writes = []
        self.fail_upserts = set()

    def _bucket(self, kind):
        return {
            EntityKind.SOURCE: self.sources,
            EntityKind.LIBRARY: self.library,
            EntityKind.HISTORY: self.history,
        }[kind]

    @staticmethod
    def _kind_of(record):
        if isinstance(record, Source):
            return EntityKind.SOURCE
        if isinstance(record, LibraryItem):
            return EntityKind.LIBRARY
        return EntityKind.HISTORY

    @staticmethod
    def _key(record):
        if isinstance(record, Source):
            return record.source_id
        if isinstance(record, LibraryItem):
            return record.source_id, record.entity_id
        return record.source_id, record.entity_id, record.chapter_key

    def add(self, *records):
        for record in records:
            self._bucket(self._kind_of(record))[self._key(record)] = record
        return self

    def list(self, kind):
        return list(self._bucket(kind).values())

    def upsert(self, record):
        key = self._key(record)
        if key in self.fail_upserts:
            raise RuntimeError(f"disk full for {key}")
        self.writes.append(("upsert", record))
        self._bucket(self._kind_of(record))[key] = record

    def delete(self, kind, record):
        self.writes.append(("delete", record))
        self._bucket(kind).pop(self._key(record), None)

    def exists(self, source_id, entity_id):
        return (source_id, entity_id) in self.manga

    def source_installed(self, source_id):
        return source_id in self.sources

    def get_manga(self, source_id, entity_id):
        return self.manga.get((source_id, entity_id))

    def save_manga(self, detail):
        self.writes.append(("save_manga", detail))
        self.manga[(detail.source_id, detail.entity_id)] = detail


class FakeRemoteService:
    """In-memory remote account with call counters and failure switches."""

    def __init__(self):
        self.sources = {}
        self.library = {}
        self.history = {}
        self.canonical_ids = {}
        self.writes = []
        self.resolve_calls = []
        self.deleted_history = []
        self.fail_upserts = set()
        self.fail_resolve = set()
        self.fail_list = None
        self.reject_auth = False

    @staticmethod
    def _key(record):
        if isinstance(record, Source):
            return record.source_id
        if isinstance(record, LibraryItem):
            return record.canonical_id
        return record.source_id, record.entity_id, record.chapter_key

    def _bucket(self, kind):
        return {
            EntityKind.SOURCE: self.sources,
            EntityKind.LIBRARY: self.library,
            EntityKind.HISTORY: self.history,
        }[kind]

    def add(self, kind, *records):
        for record in records:
            self._bucket(kind)[self._key(record)] = record
        return self

    def _check_auth(self):
        if self.reject_auth:
            raise AuthRequired("Session rejected by remote service")

    def list(self, kind, user_id):
        self._check_auth()
        if self.fail_list == kind:
            raise RemoteUnavailable(f"GET {kind.value} failed")
        return list(self._bucket(kind).values())

    def upsert(self, kind, record, user_id):
        self._check_auth()
        key = self._key(record)
        if key in self.fail_upserts:
            raise RemoteUnavailable(f"POST {key} failed")
        if kind != EntityKind.SOURCE and not record.canonical_id:
            raise IdentityResolutionFailed("Record has no canonical id")
        self.writes.append(("upsert", record))
        self._bucket(kind)[key] = record
        return record

    def delete(self, kind, record, user_id):
        self._check_auth()
        self.writes.append(("delete", record))
        self._bucket(kind).pop(self._key(record), None)

    def delete_history(self, user_id, source_id, entity_id, chapter_number=None):
        self._check_auth()
        self.deleted_history.append((source_id, entity_id, chapter_number))
        for key in list(self.history):
            if key[:2] != (source_id, entity_id):
                continue
            if chapter_number is None or key[2] == f"{float(chapter_number):.1f}":
                del self.history[key]

    def resolve_canonical_id(self, title, source_id, entity_id):
        self._check_auth()
        self.resolve_calls.append((title, source_id, entity_id))
        if (source_id, entity_id) in self.fail_resolve:
            raise RemoteUnavailable(f"resolve {source_id}/{entity_id} failed")
        return self.canonical_ids.setdefault((source_id, entity_id), f"c-{source_id}-{entity_id}")


class FakeContentProvider:
    """Serves canned entity details."""

    def __init__(self):
        self.details = {}
        self.calls = []

    def add(self, detail):
        self.details[(detail.source_id, detail.entity_id)] = detail
        return self

    def fetch_detail(self, source_id, entity_id):
        self.calls.append((source_id, entity_id))
        detail = self.details.get((source_id, entity_id))
        if detail is None:
            raise ContentProviderError(f"Entity no longer exists upstream: {source_id}/{entity_id}")
        return replace(detail)


@pytest.fixture
def auth():
    return AuthContext(access_token="token-123", user_id="user-1", expires_at=T0 + timedelta(days=3650))


@pytest.fixture
def local():
    return FakeLocalStore()


@pytest.fixture
def remote():
    return FakeRemoteService()


@pytest.fixture
def provider():
    return FakeContentProvider()


@pytest.fixture
def sample_detail():
    return MangaDetail(
        source_id="s1",
        entity_id="m1",
        title="One Piece",
        author="Oda",
        chapters=[
            ChapterRef(chapter_id="ch-1", chapter_number=1.0, title="Romance Dawn"),
            ChapterRef(chapter_id="ch-2", chapter_number=2.0),
            ChapterRef(chapter_id="ch-2.5", chapter_number=2.5),
        ],
    )


@pytest.fixture
def database(tmp_path):
    """File-backed SQLite database with all tables."""
    db = Database(f"sqlite:///{tmp_path / 'test.db'}")
    db.create_all()
    yield db
    db.close()
