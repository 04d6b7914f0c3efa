"""
User-initiated library operations that must reach the remote account
outside of a full sync run.
"""

from dataclasses import replace
from typing import Iterable, List, Optional

from mangasync.auth import AuthContext
from mangasync.errors import SyncError
from mangasync.sync.identity import IdentityResolver
from mangasync.sync.models import (
    EntityKind,
    HistoryEntry,
    LibraryItem,
    LocalStore,
    RemoteService,
    Source,
    chapter_key,
)
from mangasync.utils.dates import utcnow
from mangasync.utils.logging import get_logger

logger = get_logger(__name__)


class LibraryManager:
    """
    Removes and updates records on both sides.

    Deletes go to the remote first: if that fails the local record is kept,
    otherwise the next sync would restore it from the remote copy. Without
    a session only the local side is touched.
    """

    def __init__(self, local: LocalStore, remote: RemoteService, auth: AuthContext):
        self.local = local
        self.remote = remote
        self.auth = auth
        self.resolver = IdentityResolver(remote, auth)

    def _find_library_item(self, source_id: str, entity_id: str) -> Optional[LibraryItem]:
        for item in self.local.list(EntityKind.LIBRARY):
            if item.source_id == source_id and item.entity_id == entity_id:
                return item
        return None

    def remove_from_library(self, source_id: str, entity_id: str) -> bool:
        """
        Remove an entity from the library.

        Returns:
            True if a local entry was removed
        """
        item = self._find_library_item(source_id, entity_id)
        if item is None:
            return False

        if self.auth.is_valid():
            canonical_id = item.canonical_id or self.resolver.resolve(item.title, source_id, entity_id)
            self.remote.delete(
                EntityKind.LIBRARY,
                LibraryItem(source_id=source_id, entity_id=entity_id, canonical_id=canonical_id),
                self.auth.user_id,
            )

        self.local.delete(EntityKind.LIBRARY, item)
        logger.info("Removed from library", source_id=source_id, entity_id=entity_id)
        return True

    def install_source(self, source: Source) -> bool:
        """
        Install a source locally and add it to the account right away.

        Returns:
            True if the source reached the remote
        """
        self.local.upsert(source)
        logger.info("Installed source", source_id=source.source_id)

        if not self.auth.is_valid():
            return False

        try:
            self.remote.upsert(EntityKind.SOURCE, source, self.auth.user_id)
        except SyncError as e:
            logger.warning(
                "Source push failed, will sync later",
                source_id=source.source_id,
                reason=e.reason,
                error=str(e),
            )
            return False

        return True

    def uninstall_source(self, source_id: str) -> None:
        """Uninstall a source on this device and on the account."""
        record = Source(source_id=source_id)
        if self.auth.is_valid():
            self.remote.delete(EntityKind.SOURCE, record, self.auth.user_id)

        self.local.delete(EntityKind.SOURCE, record)
        logger.info("Uninstalled source", source_id=source_id)

    def remove_history(
        self,
        source_id: str,
        entity_id: str,
        chapter_numbers: Optional[Iterable[float]] = None,
    ) -> int:
        """
        Remove reading history of an entity, or of some of its chapters.

        Returns:
            Number of local entries removed
        """
        wanted = None
        if chapter_numbers is not None:
            chapter_numbers = list(chapter_numbers)
            wanted = {chapter_key(number) for number in chapter_numbers}

        if self.auth.is_valid():
            if chapter_numbers is None:
                self.remote.delete_history(self.auth.user_id, source_id, entity_id)
            else:
                for number in chapter_numbers:
                    self.remote.delete_history(
                        self.auth.user_id,
                        source_id,
                        entity_id,
                        chapter_number=number,
                    )

        removed = 0
        for entry in self.local.list(EntityKind.HISTORY):
            if entry.source_id != source_id or entry.entity_id != entity_id:
                continue
            if wanted is not None and entry.chapter_key not in wanted:
                continue
            self.local.delete(EntityKind.HISTORY, entry)
            removed += 1

        logger.info(
            "Removed reading history",
            source_id=source_id,
            entity_id=entity_id,
            removed=removed,
        )
        return removed

    def record_progress(self, entry: HistoryEntry) -> bool:
        """
        Save reading progress locally and push it right away.

        The local write always happens. Push failures are logged and left
        for the next sync run.

        Returns:
            True if the entry reached the remote
        """
        self.local.upsert(entry)

        if not self.auth.is_valid():
            return False

        try:
            canonical_id = entry.canonical_id or self.resolver.resolve(
                entry.title, entry.source_id, entry.entity_id
            )
            entry = replace(entry, canonical_id=canonical_id)
            self.remote.upsert(EntityKind.HISTORY, entry, self.auth.user_id)
        except SyncError as e:
            logger.warning(
                "Progress push failed, will sync later",
                source_id=entry.source_id,
                entity_id=entry.entity_id,
                chapter=entry.chapter_key,
                reason=e.reason,
                error=str(e),
            )
            return False

        return True

    def mark_completed(
        self,
        source_id: str,
        entity_id: str,
        chapter_numbers: Iterable[float],
        title: Optional[str] = None,
    ) -> int:
        """
        Mark several chapters of an entity as read.

        Existing progress of a chapter is kept, only the completed flag and
        read time change. Every chapter is written locally; pushes are
        best-effort like record_progress().

        Returns:
            Number of chapters that reached the remote
        """
        existing = {
            entry.chapter_key: entry
            for entry in self.local.list(EntityKind.HISTORY)
            if entry.source_id == source_id and entry.entity_id == entity_id
        }

        now = utcnow()
        entries: List[HistoryEntry] = []
        for number in chapter_numbers:
            entry = existing.get(chapter_key(number))
            if entry is None:
                entry = HistoryEntry(source_id=source_id, entity_id=entity_id, chapter_number=number)
            entry = replace(entry, completed=True, last_read_at=now, title=entry.title or title)
            self.local.upsert(entry)
            entries.append(entry)

        if not entries or not self.auth.is_valid():
            return 0

        try:
            canonical_id = next((entry.canonical_id for entry in entries if entry.canonical_id), None)
            canonical_id = canonical_id or self.resolver.resolve(title or entries[0].title, source_id, entity_id)
        except SyncError as e:
            logger.warning(
                "Completion push failed, will sync later",
                source_id=source_id,
                entity_id=entity_id,
                reason=e.reason,
                error=str(e),
            )
            return 0

        pushed = 0
        for entry in entries:
            try:
                self.remote.upsert(EntityKind.HISTORY, replace(entry, canonical_id=canonical_id), self.auth.user_id)
                pushed += 1
            except SyncError as e:
                logger.warning(
                    "Completion push failed, will sync later",
                    source_id=source_id,
                    entity_id=entity_id,
                    chapter=entry.chapter_key,
                    reason=e.reason,
                    error=str(e),
                )

        logger.info(
            "Marked chapters completed",
            source_id=source_id,
            entity_id=entity_id,
            chapters=len(entries),
            pushed=pushed,
        )
        return pushed
