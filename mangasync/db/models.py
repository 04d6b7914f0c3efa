"""
SQLAlchemy database models for mangasync.
"""

from datetime import datetime
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from mangasync.utils.dates import to_naive_utc, utcnow

Base = declarative_base()


def _utcnow() -> datetime:
    return to_naive_utc(utcnow())


class SourceRecord(Base):
    """An installed content source."""
    __tablename__ = 'source'

    id = Column(Integer, primary_key=True)
    source_id = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    lang = Column(String(20), nullable=True)
    origin_url = Column(String(1000), nullable=True)  # None when side-loaded
    installed_at = Column(DateTime, default=_utcnow)


class MangaRecord(Base):
    """Metadata of one entity of a source."""
    __tablename__ = 'manga'
    __table_args__ = (UniqueConstraint('source_id', 'entity_id'),)

    id = Column(Integer, primary_key=True)
    source_id = Column(String(255), index=True, nullable=False)
    entity_id = Column(String(500), nullable=False)
    title = Column(String(1000), nullable=False)
    author = Column(String(500), nullable=True)
    description = Column(Text, nullable=True)
    cover_url = Column(String(1000), nullable=True)
    url = Column(String(1000), nullable=True)

    chapters = relationship(
        "ChapterRecord",
        back_populates="manga",
        cascade="all, delete-orphan",
        order_by="ChapterRecord.chapter_number",
    )


class ChapterRecord(Base):
    """A chapter listed for a manga."""
    __tablename__ = 'chapter'
    __table_args__ = (UniqueConstraint('manga_id', 'chapter_id'),)

    id = Column(Integer, primary_key=True)
    manga_id = Column(Integer, ForeignKey('manga.id', ondelete='CASCADE'), nullable=False)
    chapter_id = Column(String(500), nullable=False)
    chapter_number = Column(Float, nullable=True)
    title = Column(String(1000), nullable=True)

    manga = relationship("MangaRecord", back_populates="chapters")


class LibraryRecord(Base):
    """An entry of the user's library."""
    __tablename__ = 'library'
    __table_args__ = (UniqueConstraint('source_id', 'entity_id'),)

    id = Column(Integer, primary_key=True)
    source_id = Column(String(255), index=True, nullable=False)
    entity_id = Column(String(500), nullable=False)
    canonical_id = Column(String(100), index=True, nullable=True)
    date_added = Column(DateTime, nullable=True)
    last_opened = Column(DateTime, nullable=True)
    last_read = Column(DateTime, nullable=True)
    last_updated = Column(DateTime, nullable=True)


class HistoryRecord(Base):
    """Reading progress of one chapter."""
    __tablename__ = 'history'
    __table_args__ = (UniqueConstraint('source_id', 'entity_id', 'chapter_number'),)

    id = Column(Integer, primary_key=True)
    source_id = Column(String(255), index=True, nullable=False)
    entity_id = Column(String(500), nullable=False)
    chapter_id = Column(String(500), nullable=True)
    chapter_number = Column(String(20), nullable=False)  # one-decimal string
    chapter_title = Column(String(1000), nullable=True)
    page_number = Column(Integer, default=0)
    total_pages = Column(Integer, default=0)
    completed = Column(Boolean, default=False)
    last_read_at = Column(DateTime, nullable=True)


class AuthSession(Base):
    """The signed-in session of this device."""
    __tablename__ = 'auth_session'

    id = Column(Integer, primary_key=True)
    access_token = Column(Text, nullable=True)
    user_id = Column(String(100), nullable=True)
    expires_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class SyncRun(Base):
    """Represents a single sync run (execution)."""
    __tablename__ = 'sync_run'

    id = Column(Integer, primary_key=True)
    run_id = Column(String(50), unique=True, index=True, nullable=False)
    user_id = Column(String(100), nullable=True)
    started_at = Column(DateTime, default=_utcnow)
    completed_at = Column(DateTime, nullable=True)
    status = Column(String(20), default='completed')  # completed, aborted
    abort_reason = Column(String(50), nullable=True)
    uploaded = Column(Integer, default=0)
    downloaded = Column(Integer, default=0)
    merged = Column(Integer, default=0)
    skipped = Column(Integer, default=0)
    failed = Column(Integer, default=0)
    phases = Column(JSON, nullable=True)
