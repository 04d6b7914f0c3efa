"""
Set-difference and field-merge helpers shared by every entity kind.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Generic, Hashable, Iterable, List, Optional, Sequence, Tuple, TypeVar

from mangasync.sync.models import ChapterRef
from mangasync.utils.dates import ensure_utc

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")

# Chapter numbers closer than this are considered the same chapter
CHAPTER_TOLERANCE = 0.05


def max_timestamp(local: Optional[datetime], remote: Optional[datetime]) -> Optional[datetime]:
    """Larger of two timestamps, with None ordered below every value."""
    local = ensure_utc(local)
    remote = ensure_utc(remote)
    if local is None:
        return remote
    if remote is None:
        return local
    return max(local, remote)


def merge_timestamps(local: object, remote: object, fields: Sequence[str]) -> Dict[str, Optional[datetime]]:
    """Per-field maximum of the named timestamp attributes."""
    return {
        name: max_timestamp(getattr(local, name), getattr(remote, name))
        for name in fields
    }


def max_optional(local, remote):
    """Larger of two comparable values, ignoring None."""
    if local is None:
        return remote
    if remote is None:
        return local
    return max(local, remote)


@dataclass
class ThreeWayDiff(Generic[K, T]):
    """Partition of two keyed snapshots."""
    upload: Dict[K, T] = field(default_factory=dict)
    download: Dict[K, T] = field(default_factory=dict)
    merge: Dict[K, Tuple[T, T]] = field(default_factory=dict)

    @property
    def empty(self) -> bool:
        return not (self.upload or self.download or self.merge)


def three_way_diff(local: Dict[K, T], remote: Dict[K, T]) -> ThreeWayDiff[K, T]:
    """Classify keys as local-only, remote-only, or present on both sides."""
    diff: ThreeWayDiff[K, T] = ThreeWayDiff()
    for key, record in local.items():
        if key in remote:
            diff.merge[key] = (record, remote[key])
        else:
            diff.upload[key] = record
    for key, record in remote.items():
        if key not in local:
            diff.download[key] = record
    return diff


def index_by_key(
    records: Iterable[T],
    key: Callable[[T], K],
) -> Tuple[Dict[K, T], List[Tuple[K, T]]]:
    """
    Index records by identity key.

    The first record wins; later records with the same key are returned
    separately so the caller can report them.
    """
    indexed: Dict[K, T] = {}
    duplicates: List[Tuple[K, T]] = []
    for record in records:
        record_key = key(record)
        if record_key in indexed:
            duplicates.append((record_key, record))
        else:
            indexed[record_key] = record
    return indexed, duplicates


def closest_chapter(
    chapters: Iterable[ChapterRef],
    chapter_number: float,
    tolerance: float = CHAPTER_TOLERANCE,
) -> Optional[ChapterRef]:
    """
    Local chapter whose number is closest to the given one.

    Chapter ids are not shared between devices, so restored history is
    attached by number. Chapters without a number never match.
    """
    best: Optional[ChapterRef] = None
    best_distance = None
    for chapter in chapters:
        if chapter.chapter_number is None:
            continue
        distance = abs(chapter.chapter_number - chapter_number)
        if distance > tolerance:
            continue
        if best_distance is None or distance < best_distance:
            best, best_distance = chapter, distance
    return best
