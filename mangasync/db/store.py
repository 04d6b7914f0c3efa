"""
SQLAlchemy implementation of the local store.

Every method is its own short transaction so that no write transaction is
ever held across a network call made by the engine.
"""

from typing import List, Optional

from sqlalchemy import select

from mangasync.db.database import Database
from mangasync.db.models import (
    ChapterRecord,
    HistoryRecord,
    LibraryRecord,
    MangaRecord,
    SourceRecord,
)
from mangasync.sync.models import (
    ChapterRef,
    EntityKind,
    HistoryEntry,
    LibraryItem,
    MangaDetail,
    Record,
    Source,
    chapter_key,
)
from mangasync.utils.dates import ensure_utc, to_naive_utc


class SqlLocalStore:
    """Local store backed by the application database."""

    def __init__(self, database: Database):
        self.database = database

    # -- reads ------------------------------------------------------------------

    def list(self, kind: EntityKind) -> List[Record]:
        if kind == EntityKind.SOURCE:
            return self.list_sources()
        if kind == EntityKind.LIBRARY:
            return self.list_library()
        return self.list_history()

    def list_sources(self) -> List[Source]:
        with self.database.session() as session:
            rows = session.scalars(select(SourceRecord).order_by(SourceRecord.source_id)).all()
            return [
                Source(
                    source_id=row.source_id,
                    name=row.name,
                    lang=row.lang,
                    origin_url=row.origin_url,
                )
                for row in rows
            ]

    def list_library(self) -> List[LibraryItem]:
        with self.database.session() as session:
            rows = session.execute(
                select(LibraryRecord, MangaRecord.title)
                .outerjoin(
                    MangaRecord,
                    (MangaRecord.source_id == LibraryRecord.source_id)
                    & (MangaRecord.entity_id == LibraryRecord.entity_id),
                )
                .order_by(LibraryRecord.id)
            ).all()
            return [
                LibraryItem(
                    source_id=row.source_id,
                    entity_id=row.entity_id,
                    canonical_id=row.canonical_id,
                    date_added=ensure_utc(row.date_added),
                    last_opened=ensure_utc(row.last_opened),
                    last_read=ensure_utc(row.last_read),
                    last_updated=ensure_utc(row.last_updated),
                    title=title,
                )
                for row, title in rows
            ]

    def list_history(self) -> List[HistoryEntry]:
        with self.database.session() as session:
            rows = session.execute(
                select(HistoryRecord, MangaRecord.title)
                .outerjoin(
                    MangaRecord,
                    (MangaRecord.source_id == HistoryRecord.source_id)
                    & (MangaRecord.entity_id == HistoryRecord.entity_id),
                )
                .order_by(HistoryRecord.id)
            ).all()
            return [
                HistoryEntry(
                    source_id=row.source_id,
                    entity_id=row.entity_id,
                    chapter_number=float(row.chapter_number),
                    chapter_title=row.chapter_title,
                    page_number=row.page_number or 0,
                    total_pages=row.total_pages or 0,
                    completed=bool(row.completed),
                    last_read_at=ensure_utc(row.last_read_at),
                    chapter_id=row.chapter_id,
                    title=title,
                )
                for row, title in rows
            ]

    def exists(self, source_id: str, entity_id: str) -> bool:
        """Whether metadata for the entity is present locally."""
        with self.database.session() as session:
            return session.scalar(
                select(MangaRecord.id).where(
                    MangaRecord.source_id == source_id,
                    MangaRecord.entity_id == entity_id,
                )
            ) is not None

    def source_installed(self, source_id: str) -> bool:
        with self.database.session() as session:
            return session.scalar(
                select(SourceRecord.id).where(SourceRecord.source_id == source_id)
            ) is not None

    def get_manga(self, source_id: str, entity_id: str) -> Optional[MangaDetail]:
        with self.database.session() as session:
            manga = session.scalars(
                select(MangaRecord).where(
                    MangaRecord.source_id == source_id,
                    MangaRecord.entity_id == entity_id,
                )
            ).first()
            if manga is None:
                return None
            return MangaDetail(
                source_id=manga.source_id,
                entity_id=manga.entity_id,
                title=manga.title,
                author=manga.author,
                description=manga.description,
                cover_url=manga.cover_url,
                url=manga.url,
                chapters=[
                    ChapterRef(
                        chapter_id=chapter.chapter_id,
                        chapter_number=chapter.chapter_number,
                        title=chapter.title,
                    )
                    for chapter in manga.chapters
                ],
            )

    # -- writes -----------------------------------------------------------------

    def save_manga(self, detail: MangaDetail) -> None:
        """Insert or replace entity metadata together with its chapter list."""
        with self.database.session() as session:
            manga = session.scalars(
                select(MangaRecord).where(
                    MangaRecord.source_id == detail.source_id,
                    MangaRecord.entity_id == detail.entity_id,
                )
            ).first()
            if manga is None:
                manga = MangaRecord(source_id=detail.source_id, entity_id=detail.entity_id)
                session.add(manga)

            manga.title = detail.title
            manga.author = detail.author
            manga.description = detail.description
            manga.cover_url = detail.cover_url
            manga.url = detail.url

            # Old chapters must be gone before rows with the same ids are inserted
            manga.chapters.clear()
            session.flush()

            manga.chapters = [
                ChapterRecord(
                    chapter_id=chapter.chapter_id,
                    chapter_number=chapter.chapter_number,
                    title=chapter.title,
                )
                for chapter in detail.chapters
            ]

    def upsert(self, record: Record) -> None:
        if isinstance(record, Source):
            self._upsert_source(record)
        elif isinstance(record, LibraryItem):
            self._upsert_library_item(record)
        elif isinstance(record, HistoryEntry):
            self._upsert_history_entry(record)
        else:
            raise TypeError(f"Unsupported record type: {type(record).__name__}")

    def _upsert_source(self, record: Source) -> None:
        with self.database.session() as session:
            row = session.scalars(
                select(SourceRecord).where(SourceRecord.source_id == record.source_id)
            ).first()
            if row is None:
                row = SourceRecord(source_id=record.source_id)
                session.add(row)
            row.name = record.name
            row.lang = record.lang
            row.origin_url = record.origin_url

    def _upsert_library_item(self, record: LibraryItem) -> None:
        with self.database.session() as session:
            row = session.scalars(
                select(LibraryRecord).where(
                    LibraryRecord.source_id == record.source_id,
                    LibraryRecord.entity_id == record.entity_id,
                )
            ).first()
            if row is None:
                row = LibraryRecord(source_id=record.source_id, entity_id=record.entity_id)
                session.add(row)
            row.canonical_id = record.canonical_id
            row.date_added = to_naive_utc(record.date_added)
            row.last_opened = to_naive_utc(record.last_opened)
            row.last_read = to_naive_utc(record.last_read)
            row.last_updated = to_naive_utc(record.last_updated)

    def _upsert_history_entry(self, record: HistoryEntry) -> None:
        with self.database.session() as session:
            row = session.scalars(
                select(HistoryRecord).where(
                    HistoryRecord.source_id == record.source_id,
                    HistoryRecord.entity_id == record.entity_id,
                    HistoryRecord.chapter_number == record.chapter_key,
                )
            ).first()
            if row is None:
                row = HistoryRecord(
                    source_id=record.source_id,
                    entity_id=record.entity_id,
                    chapter_number=record.chapter_key,
                )
                session.add(row)
            if record.chapter_id is not None:
                row.chapter_id = record.chapter_id
            row.chapter_title = record.chapter_title
            row.page_number = record.page_number
            row.total_pages = record.total_pages
            row.completed = record.completed
            row.last_read_at = to_naive_utc(record.last_read_at)

    def delete(self, kind: EntityKind, record: Record) -> None:
        with self.database.session() as session:
            if kind == EntityKind.SOURCE:
                statement = select(SourceRecord).where(SourceRecord.source_id == record.source_id)
            elif kind == EntityKind.LIBRARY:
                statement = select(LibraryRecord).where(
                    LibraryRecord.source_id == record.source_id,
                    LibraryRecord.entity_id == record.entity_id,
                )
            else:
                statement = select(HistoryRecord).where(
                    HistoryRecord.source_id == record.source_id,
                    HistoryRecord.entity_id == record.entity_id,
                    HistoryRecord.chapter_number == chapter_key(record.chapter_number),
                )
            for row in session.scalars(statement).all():
                session.delete(row)
