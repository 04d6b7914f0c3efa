"""
Content provider client for mangasync.

Talks to the source runner that fronts the installed third-party sources
and returns full entity metadata.
"""

from urllib.parse import quote

from pydantic import ValidationError

from mangasync.api.base import APIError, BaseClient
from mangasync.api.schemas import ProviderManga
from mangasync.errors import ContentProviderError
from mangasync.sync.models import ChapterRef, MangaDetail


class ContentProviderClient(BaseClient):
    """
    Client for the source runner API.

    Provides entity details (title, authors, chapter list) for a
    (source_id, entity_id) pair.
    """

    def __init__(self, base_url: str, timeout: float = 30, max_retries: int = 2):
        super().__init__(base_url, timeout=timeout, max_retries=max_retries)

    def fetch_detail(self, source_id: str, entity_id: str) -> MangaDetail:
        """
        Fetch full metadata for an entity.

        Args:
            source_id: Source identifier
            entity_id: Entity identifier within the source

        Returns:
            MangaDetail with its chapter list

        Raises:
            ContentProviderError: If the source or entity cannot be served
        """
        try:
            data = self.get(f"/sources/{quote(source_id, safe='')}/manga/{quote(entity_id, safe='')}")
        except APIError as e:
            if e.is_not_found:
                raise ContentProviderError(
                    f"Entity no longer exists upstream: {source_id}/{entity_id}",
                    cause=e,
                )
            raise ContentProviderError(f"Failed to fetch {source_id}/{entity_id}", cause=e)

        try:
            manga = ProviderManga.model_validate(data)
        except ValidationError as e:
            raise ContentProviderError(f"Invalid detail payload for {source_id}/{entity_id}", cause=e)

        return MangaDetail(
            source_id=source_id,
            entity_id=entity_id,
            title=manga.title,
            author=manga.author,
            description=manga.description,
            cover_url=manga.cover_url,
            url=manga.url,
            chapters=[
                ChapterRef(
                    chapter_id=chapter.id,
                    chapter_number=chapter.chapter_number,
                    title=chapter.title,
                )
                for chapter in manga.chapters
            ],
        )
