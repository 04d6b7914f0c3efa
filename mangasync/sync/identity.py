"""
Canonical identity resolution.

Maps a local (source_id, entity_id) pair to the account-wide canonical id
shared by every device, using the remote resolve-or-create operation.
"""

import threading
from typing import Dict, Optional, Tuple

from mangasync.auth import AuthContext
from mangasync.errors import AuthRequired, IdentityResolutionFailed
from mangasync.sync.models import RemoteService
from mangasync.utils.logging import get_logger

logger = get_logger(__name__)

UNKNOWN_TITLE = "Unknown"


class IdentityResolver:
    """
    Resolves canonical ids for one sync run.

    Resolution priority:
    1. In-run cache (shared by all phases of the run)
    2. Remote resolve-or-create call

    The remote operation is idempotent, so two workers racing on the same
    key get the same answer and the cache keeps the first one.
    """

    def __init__(self, remote: RemoteService, auth: AuthContext):
        self.remote = remote
        self.auth = auth
        self._cache: Dict[Tuple[str, str], str] = {}
        self._lock = threading.Lock()
        self.remote_calls = 0

    def cached(self, source_id: str, entity_id: str) -> Optional[str]:
        with self._lock:
            return self._cache.get((source_id, entity_id))

    def remember(self, source_id: str, entity_id: str, canonical_id: Optional[str]) -> None:
        """Seed the cache with an id already known from either side."""
        if not canonical_id:
            return
        with self._lock:
            self._cache.setdefault((source_id, entity_id), canonical_id)

    def resolve(self, title: Optional[str], source_id: str, entity_id: str) -> str:
        """
        Resolve the canonical id of an entity.

        Args:
            title: Display title, used by the remote when creating the id
            source_id: Source identifier
            entity_id: Entity identifier within the source

        Returns:
            The canonical id

        Raises:
            AuthRequired: If there is no valid session
            RemoteUnavailable: On transport or server failure
            IdentityResolutionFailed: If the remote returned no usable id
        """
        cached = self.cached(source_id, entity_id)
        if cached:
            return cached

        if not self.auth.is_valid():
            raise AuthRequired("Identity resolution requires a session")

        with self._lock:
            self.remote_calls += 1

        canonical_id = self.remote.resolve_canonical_id(
            title or UNKNOWN_TITLE,
            source_id,
            entity_id,
        )
        if not canonical_id:
            raise IdentityResolutionFailed(f"Empty canonical id for {source_id}/{entity_id}")

        with self._lock:
            canonical_id = self._cache.setdefault((source_id, entity_id), canonical_id)

        logger.debug(
            "Resolved canonical id",
            source_id=source_id,
            entity_id=entity_id,
            canonical_id=canonical_id,
        )
        return canonical_id
