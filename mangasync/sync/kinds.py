"""
Per-kind rules plugged into the generic entity syncer.

Each adapter says how a record is keyed, how two copies of the same
record are merged, what must exist locally before a remote-only record
can be restored, and how it is materialised.
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Generic, Hashable, Iterable, Optional, Tuple, TypeVar

from mangasync.errors import AuthRequired, IdentityResolutionFailed
from mangasync.sync.hydrator import MetadataHydrator
from mangasync.sync.identity import IdentityResolver
from mangasync.sync.merge import closest_chapter, max_optional, max_timestamp, merge_timestamps
from mangasync.sync.models import EntityKind, HistoryEntry, LibraryItem, LocalStore, Source
from mangasync.utils.dates import ensure_utc

T = TypeVar("T")

LIBRARY_TIMESTAMPS = ("date_added", "last_opened", "last_read", "last_updated")


class EntityAdapter(ABC, Generic[T]):
    """Identity and merge rules for one entity kind."""

    kind: EntityKind

    @abstractmethod
    def key(self, record: T) -> Hashable:
        """Identity key used for set comparison."""

    def key_label(self, key: Hashable) -> str:
        if isinstance(key, tuple):
            return "/".join(str(part) for part in key)
        return str(key)

    def local_ref(self, record: T) -> Optional[Tuple[str, str]]:
        """(source_id, entity_id) of the record, when it has one."""
        return None

    def needs_identity(self, record: T) -> bool:
        """Whether the key cannot be computed before resolution."""
        return False

    def with_identity(self, record: T, resolver: IdentityResolver) -> T:
        return record

    def seed(self, resolver: IdentityResolver, records: Iterable[T]) -> None:
        """Feed ids already known from a snapshot into the resolver cache."""

    def prepare_upload(self, record: T, resolver: IdentityResolver) -> T:
        """Complete a record before it is sent to the remote."""
        return record

    @abstractmethod
    def merge(self, local: T, remote: T) -> Tuple[T, T]:
        """Return (new_local, new_remote); unchanged sides compare equal."""

    @abstractmethod
    def missing_prerequisite(self, record: T, local: LocalStore) -> Optional[str]:
        """Why a remote-only record cannot be restored, or None."""

    def materialize(self, record: T, hydrator: MetadataHydrator) -> T:
        """Build the local record for a remote-only one."""
        return record


class SourceAdapter(EntityAdapter[Source]):
    """Installed sources, keyed by source id."""

    kind = EntityKind.SOURCE

    def key(self, record: Source) -> Hashable:
        return record.source_id

    def merge(self, local: Source, remote: Source) -> Tuple[Source, Source]:
        merged = Source(
            source_id=local.source_id,
            name=local.name or remote.name,
            lang=local.lang or remote.lang,
            origin_url=local.origin_url or remote.origin_url,
        )
        return merged, merged

    def missing_prerequisite(self, record: Source, local: LocalStore) -> Optional[str]:
        if not record.origin_url:
            return "source has no origin url and cannot be reinstalled"
        return None


class LibraryAdapter(EntityAdapter[LibraryItem]):
    """Library entries, keyed by canonical id."""

    kind = EntityKind.LIBRARY

    def key(self, record: LibraryItem) -> Hashable:
        return record.canonical_id

    def local_ref(self, record: LibraryItem) -> Optional[Tuple[str, str]]:
        return record.source_id, record.entity_id

    def needs_identity(self, record: LibraryItem) -> bool:
        return not record.canonical_id

    def with_identity(self, record: LibraryItem, resolver: IdentityResolver) -> LibraryItem:
        canonical_id = resolver.resolve(record.title, record.source_id, record.entity_id)
        return replace(record, canonical_id=canonical_id)

    def seed(self, resolver: IdentityResolver, records: Iterable[LibraryItem]) -> None:
        for record in records:
            resolver.remember(record.source_id, record.entity_id, record.canonical_id)

    def merge(self, local: LibraryItem, remote: LibraryItem) -> Tuple[LibraryItem, LibraryItem]:
        timestamps = merge_timestamps(local, remote, LIBRARY_TIMESTAMPS)
        return replace(local, **timestamps), replace(remote, **timestamps)

    def missing_prerequisite(self, record: LibraryItem, local: LocalStore) -> Optional[str]:
        if not local.source_installed(record.source_id):
            return f"source {record.source_id} is not installed"
        return None

    def materialize(self, record: LibraryItem, hydrator: MetadataHydrator) -> LibraryItem:
        detail = hydrator.hydrate(record.source_id, record.entity_id)
        return replace(record, title=detail.title)


class HistoryAdapter(EntityAdapter[HistoryEntry]):
    """
    Reading history, keyed by (source_id, entity_id, chapter number).

    Chapter ids are device-specific, so entries are matched by chapter
    number. This is lossy when a source lists two chapters with the same
    number.
    """

    kind = EntityKind.HISTORY

    def key(self, record: HistoryEntry) -> Hashable:
        return record.source_id, record.entity_id, record.chapter_key

    def local_ref(self, record: HistoryEntry) -> Optional[Tuple[str, str]]:
        return record.source_id, record.entity_id

    def seed(self, resolver: IdentityResolver, records: Iterable[HistoryEntry]) -> None:
        for record in records:
            resolver.remember(record.source_id, record.entity_id, record.canonical_id)

    def prepare_upload(self, record: HistoryEntry, resolver: IdentityResolver) -> HistoryEntry:
        if record.canonical_id:
            return record
        try:
            canonical_id = resolver.resolve(record.title, record.source_id, record.entity_id)
        except (AuthRequired, IdentityResolutionFailed):
            raise
        except Exception as e:
            raise IdentityResolutionFailed(
                f"Could not resolve {record.source_id}/{record.entity_id}", cause=e
            )
        return replace(record, canonical_id=canonical_id)

    def merge(self, local: HistoryEntry, remote: HistoryEntry) -> Tuple[HistoryEntry, HistoryEntry]:
        local_at = ensure_utc(local.last_read_at)
        remote_at = ensure_utc(remote.last_read_at)

        if local_at is not None and (remote_at is None or local_at > remote_at):
            progress = self._progress_of(local, fallback=remote)
        elif remote_at is not None and (local_at is None or remote_at > local_at):
            progress = self._progress_of(remote, fallback=local)
        else:
            progress = {
                "page_number": max(local.page_number, remote.page_number),
                "total_pages": max(local.total_pages, remote.total_pages),
                "chapter_title": max_optional(local.chapter_title, remote.chapter_title),
            }

        shared = dict(
            progress,
            last_read_at=max_timestamp(local_at, remote_at),
            completed=local.completed or remote.completed,
        )
        return replace(local, **shared), replace(remote, **shared)

    @staticmethod
    def _progress_of(winner: HistoryEntry, fallback: HistoryEntry) -> dict:
        return {
            "page_number": winner.page_number,
            "total_pages": winner.total_pages,
            "chapter_title": winner.chapter_title or fallback.chapter_title,
        }

    def missing_prerequisite(self, record: HistoryEntry, local: LocalStore) -> Optional[str]:
        if not local.source_installed(record.source_id):
            return f"source {record.source_id} is not installed"
        return None

    def materialize(self, record: HistoryEntry, hydrator: MetadataHydrator) -> HistoryEntry:
        detail = hydrator.hydrate(record.source_id, record.entity_id)
        chapter = closest_chapter(detail.chapters, record.chapter_number)
        return replace(
            record,
            chapter_id=chapter.chapter_id if chapter else None,
            title=detail.title,
        )


def default_adapters() -> Tuple[EntityAdapter, ...]:
    """Adapters in phase order."""
    return SourceAdapter(), LibraryAdapter(), HistoryAdapter()
