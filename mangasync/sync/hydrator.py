"""
Materialises local metadata for records that only exist remotely.
"""

from mangasync.errors import ContentProviderError, SourceNotInstalled
from mangasync.sync.models import ContentProvider, LocalStore, MangaDetail
from mangasync.utils.logging import get_logger

logger = get_logger(__name__)


class MetadataHydrator:
    """
    Builds the local metadata record a downloaded item depends on.

    This is the only part of the engine that talks to third-party content
    sources. Its failures are per item: the enclosing syncer turns them
    into a skipped download.
    """

    def __init__(self, local: LocalStore, provider: ContentProvider):
        self.local = local
        self.provider = provider

    def hydrate(self, source_id: str, entity_id: str) -> MangaDetail:
        """
        Return full metadata for an entity, fetching and storing it if needed.

        Raises:
            SourceNotInstalled: If the owning source is not installed
            ContentProviderError: If the provider cannot supply the details
        """
        if not self.local.source_installed(source_id):
            raise SourceNotInstalled(source_id)

        existing = self.local.get_manga(source_id, entity_id)
        if existing is not None:
            return existing

        try:
            detail = self.provider.fetch_detail(source_id, entity_id)
        except ContentProviderError:
            raise
        except Exception as e:
            raise ContentProviderError(f"Failed to fetch {source_id}/{entity_id}", cause=e)

        self.local.save_manga(detail)

        logger.info(
            "Hydrated metadata",
            source_id=source_id,
            entity_id=entity_id,
            title=detail.title,
            chapters=len(detail.chapters),
        )
        return detail
