"""
Data models for sync operations.

Records are frozen dataclasses so the engine can compare a merged record
with its inputs to decide which side needs a write. Fields that never
travel between devices are excluded from comparison.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol, Union

from mangasync.utils.dates import isoformat, utcnow


class EntityKind(str, Enum):
    """Kinds of synchronised records, in phase order."""
    SOURCE = "source"
    LIBRARY = "library"
    HISTORY = "history"


def chapter_key(chapter_number: Optional[float]) -> str:
    """Chapter numbers travel as one-decimal strings."""
    return f"{float(chapter_number or 0):.1f}"


@dataclass(frozen=True)
class Source:
    """An installed content source."""
    source_id: str
    name: Optional[str] = None
    lang: Optional[str] = None
    # None for side-loaded sources, which cannot be reinstalled elsewhere
    origin_url: Optional[str] = None


@dataclass(frozen=True)
class LibraryItem:
    """An entry of the user's library."""
    source_id: str
    entity_id: str
    date_added: Optional[datetime] = None
    canonical_id: Optional[str] = None
    last_opened: Optional[datetime] = None
    last_read: Optional[datetime] = None
    last_updated: Optional[datetime] = None

    # Local context for identity resolution, never synced
    title: Optional[str] = field(default=None, compare=False)


@dataclass(frozen=True)
class HistoryEntry:
    """Reading progress for one chapter."""
    source_id: str
    entity_id: str
    chapter_number: float
    page_number: int = 0
    total_pages: int = 0
    completed: bool = False
    last_read_at: Optional[datetime] = None
    chapter_title: Optional[str] = None

    canonical_id: Optional[str] = field(default=None, compare=False)
    # Chapter ids differ between devices and are never synced
    chapter_id: Optional[str] = field(default=None, compare=False)
    title: Optional[str] = field(default=None, compare=False)

    @property
    def chapter_key(self) -> str:
        return chapter_key(self.chapter_number)


Record = Union[Source, LibraryItem, HistoryEntry]


@dataclass
class ChapterRef:
    """A chapter as listed by a content provider."""
    chapter_id: str
    chapter_number: Optional[float] = None
    title: Optional[str] = None


@dataclass
class MangaDetail:
    """Full metadata for one entity, as returned by a content provider."""
    source_id: str
    entity_id: str
    title: str
    author: Optional[str] = None
    description: Optional[str] = None
    cover_url: Optional[str] = None
    url: Optional[str] = None
    chapters: List[ChapterRef] = field(default_factory=list)


class Outcome(str, Enum):
    """What happened to one item during a phase."""
    UPLOADED = "uploaded"
    DOWNLOADED = "downloaded"
    MERGED = "merged"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ItemOutcome:
    """Result of processing a single item."""
    outcome: Outcome
    key: str
    reason: Optional[str] = None
    detail: Optional[str] = None


@dataclass
class ItemIssue:
    """A skipped or failed item, with the reason and its cause."""
    key: str
    reason: str
    detail: Optional[str] = None


@dataclass
class SyncReport:
    """Result of one phase (one entity kind)."""
    kind: EntityKind

    # Counts
    uploaded: int = 0
    downloaded: int = 0
    merged: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0

    failures: List[ItemIssue] = field(default_factory=list)
    skips: List[ItemIssue] = field(default_factory=list)

    # Set when the phase could not run at all (e.g. snapshot fetch failed)
    error: Optional[str] = None

    started_at: datetime = None
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        if self.started_at is None:
            self.started_at = utcnow()

    def record(self, item: ItemOutcome) -> None:
        """Fold one item outcome into the counters."""
        if item.outcome == Outcome.UPLOADED:
            self.uploaded += 1
        elif item.outcome == Outcome.DOWNLOADED:
            self.downloaded += 1
        elif item.outcome == Outcome.MERGED:
            self.merged += 1
        elif item.outcome == Outcome.UNCHANGED:
            self.unchanged += 1
        elif item.outcome == Outcome.SKIPPED:
            self.skipped += 1
            self.skips.append(ItemIssue(item.key, item.reason or "skipped", item.detail))
        else:
            self.failed += 1
            self.failures.append(ItemIssue(item.key, item.reason or "failed", item.detail))

    def extend(self, items: Iterable[ItemOutcome]) -> None:
        for item in items:
            self.record(item)

    @property
    def ok(self) -> bool:
        return self.error is None and self.failed == 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["started_at"] = isoformat(self.started_at)
        data["completed_at"] = isoformat(self.completed_at)
        return data


class RunStatus(str, Enum):
    """Orchestrator states; the last three are terminal report statuses."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"
    SKIPPED = "skipped"


@dataclass
class SyncRunReport:
    """Result of a complete sync run."""
    run_id: str
    status: RunStatus
    phases: List[SyncReport] = field(default_factory=list)
    started_at: datetime = None
    completed_at: Optional[datetime] = None
    abort_reason: Optional[str] = None

    def __post_init__(self):
        if self.started_at is None:
            self.started_at = utcnow()

    def phase(self, kind: EntityKind) -> Optional[SyncReport]:
        for report in self.phases:
            if report.kind == kind:
                return report
        return None

    def total(self, counter: str) -> int:
        return sum(getattr(report, counter) for report in self.phases)

    @property
    def changed_local(self) -> bool:
        """Whether local data changed, for listeners that refresh views."""
        return any(report.downloaded or report.merged for report in self.phases)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "abort_reason": self.abort_reason,
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
            "phases": [report.to_dict() for report in self.phases],
        }


class LocalStore(Protocol):
    """Device-resident persistence consumed by the engine."""

    def list(self, kind: EntityKind) -> List[Record]: ...

    def upsert(self, record: Record) -> None: ...

    def exists(self, source_id: str, entity_id: str) -> bool: ...

    def source_installed(self, source_id: str) -> bool: ...

    def get_manga(self, source_id: str, entity_id: str) -> Optional[MangaDetail]: ...

    def save_manga(self, detail: MangaDetail) -> None: ...

    def delete(self, kind: EntityKind, record: Record) -> None: ...


class RemoteService(Protocol):
    """Cloud service holding the account's copy of the data."""

    def list(self, kind: EntityKind, user_id: str) -> List[Record]: ...

    def upsert(self, kind: EntityKind, record: Record, user_id: str) -> Record: ...

    def delete(self, kind: EntityKind, record: Record, user_id: str) -> None: ...

    def resolve_canonical_id(self, title: str, source_id: str, entity_id: str) -> str: ...


class ContentProvider(Protocol):
    """Per-source access to full entity metadata."""

    def fetch_detail(self, source_id: str, entity_id: str) -> MangaDetail: ...
