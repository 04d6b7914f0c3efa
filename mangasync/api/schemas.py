"""
Wire models for the remote service.

Every request body is built from one of these models and every response
row is validated through one, so malformed payloads are rejected at the
client boundary instead of deep inside the merge.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mangasync.sync.models import HistoryEntry, LibraryItem, Source, chapter_key
from mangasync.utils.dates import ensure_utc


class WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# -- Sources ---------------------------------------------------------------

class RemoteSourceRow(WireModel):
    """Row of the user sources table."""
    id: Optional[str] = None
    user_id: Optional[str] = None
    source_id: str
    source_name: Optional[str] = None
    source_lang: Optional[str] = None
    source_url: Optional[str] = None
    added_at: Optional[datetime] = None

    def to_record(self) -> Source:
        return Source(
            source_id=self.source_id,
            name=self.source_name,
            lang=self.source_lang,
            origin_url=self.source_url,
        )


class UpsertSourceRequest(WireModel):
    user_id: str
    source_id: str
    source_name: Optional[str] = None
    source_lang: Optional[str] = None
    source_url: Optional[str] = None

    @classmethod
    def from_record(cls, record: Source, user_id: str) -> "UpsertSourceRequest":
        return cls(
            user_id=user_id,
            source_id=record.source_id,
            source_name=record.name,
            source_lang=record.lang,
            source_url=record.origin_url,
        )


# -- Library ---------------------------------------------------------------

class RemoteLibraryRow(WireModel):
    """Row of the user library table."""
    id: Optional[str] = None
    user_id: Optional[str] = None
    canonical_manga_id: str
    source_id: str
    manga_id: str
    date_added: Optional[datetime] = None
    last_opened: Optional[datetime] = None
    last_read: Optional[datetime] = None
    last_updated: Optional[datetime] = None

    def to_record(self) -> LibraryItem:
        return LibraryItem(
            canonical_id=self.canonical_manga_id,
            source_id=self.source_id,
            entity_id=self.manga_id,
            date_added=ensure_utc(self.date_added),
            last_opened=ensure_utc(self.last_opened),
            last_read=ensure_utc(self.last_read),
            last_updated=ensure_utc(self.last_updated),
        )


class UpsertLibraryRequest(WireModel):
    """Parameters of the library upsert RPC."""
    p_user_id: str
    p_canonical_manga_id: str
    p_source_id: str
    p_manga_id: str
    p_date_added: Optional[datetime] = None
    p_last_opened: Optional[datetime] = None
    p_last_read: Optional[datetime] = None
    p_last_updated: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: LibraryItem, user_id: str) -> "UpsertLibraryRequest":
        return cls(
            p_user_id=user_id,
            p_canonical_manga_id=record.canonical_id,
            p_source_id=record.source_id,
            p_manga_id=record.entity_id,
            p_date_added=record.date_added,
            p_last_opened=record.last_opened,
            p_last_read=record.last_read,
            p_last_updated=record.last_updated,
        )


# -- Reading history -------------------------------------------------------

class RemoteHistoryRow(WireModel):
    """Row of the reading history table."""
    id: Optional[str] = None
    user_id: Optional[str] = None
    canonical_manga_id: Optional[str] = None
    source_id: str
    manga_id: str
    chapter_number: str
    chapter_title: Optional[str] = None
    page_number: int = 0
    total_pages: int = 0
    is_completed: bool = False
    last_read_at: Optional[datetime] = None

    @field_validator("chapter_number", mode="before")
    @classmethod
    def normalise_chapter_number(cls, value):
        return chapter_key(float(value))

    def to_record(self) -> HistoryEntry:
        return HistoryEntry(
            source_id=self.source_id,
            entity_id=self.manga_id,
            chapter_number=float(self.chapter_number),
            chapter_title=self.chapter_title,
            page_number=self.page_number,
            total_pages=self.total_pages,
            completed=self.is_completed,
            last_read_at=ensure_utc(self.last_read_at),
            canonical_id=self.canonical_manga_id,
        )


class UpsertHistoryRequest(WireModel):
    user_id: str
    canonical_manga_id: str
    source_id: str
    manga_id: str
    chapter_id: Optional[str] = None
    chapter_number: str
    chapter_title: Optional[str] = None
    page_number: int = 0
    total_pages: int = 0
    is_completed: bool = False
    last_read_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: HistoryEntry, user_id: str) -> "UpsertHistoryRequest":
        return cls(
            user_id=user_id,
            canonical_manga_id=record.canonical_id,
            source_id=record.source_id,
            manga_id=record.entity_id,
            chapter_id=record.chapter_id,
            chapter_number=record.chapter_key,
            chapter_title=record.chapter_title,
            page_number=record.page_number,
            total_pages=record.total_pages,
            is_completed=record.completed,
            last_read_at=record.last_read_at,
        )


# -- Identity --------------------------------------------------------------

class ResolveCanonicalRequest(WireModel):
    p_title: str
    p_source_id: str
    p_manga_id: str


# -- Content provider ------------------------------------------------------

class ProviderChapter(WireModel):
    id: str
    chapter_number: Optional[float] = Field(default=None, alias="chapterNumber")
    title: Optional[str] = None


class ProviderManga(WireModel):
    id: str
    title: str
    author: Optional[str] = None
    description: Optional[str] = None
    cover_url: Optional[str] = Field(default=None, alias="coverUrl")
    url: Optional[str] = None
    chapters: List[ProviderChapter] = Field(default_factory=list)
