"""
Remote service client for mangasync.

The account data lives behind a PostgREST-style API: one table per entity
kind, upserts resolved on the identity columns, and two RPCs (library
upsert and canonical identity resolve-or-create).
"""

from typing import Any, Dict, List, Optional, Type

from pydantic import ValidationError

from mangasync.api.base import APIError, BaseClient
from mangasync.api.schemas import (
    RemoteHistoryRow,
    RemoteLibraryRow,
    RemoteSourceRow,
    ResolveCanonicalRequest,
    UpsertHistoryRequest,
    UpsertLibraryRequest,
    UpsertSourceRequest,
    WireModel,
)
from mangasync.auth import AuthContext
from mangasync.errors import (
    AuthRequired,
    IdentityResolutionFailed,
    RemoteUnavailable,
)
from mangasync.sync.models import (
    EntityKind,
    HistoryEntry,
    LibraryItem,
    Record,
    Source,
    chapter_key,
)

MERGE_DUPLICATES = "resolution=merge-duplicates,return=minimal"


class RemoteServiceClient(BaseClient):
    """
    Client for the remote account service.

    Every call requires a valid AuthContext. Credential rejections surface
    as AuthRequired; every other failure surfaces as RemoteUnavailable.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        auth: AuthContext,
        table_prefix: str = "scanio_",
        timeout: float = 30,
        max_retries: int = 2,
    ):
        """
        Initialize the remote service client.

        Args:
            base_url: Service URL (e.g., https://project.supabase.co)
            api_key: Public API key sent with every request
            auth: Session used for the Authorization header
            table_prefix: Prefix of the tables and RPC names
        """
        super().__init__(base_url, timeout=timeout, max_retries=max_retries)
        self.auth = auth
        self.table_prefix = table_prefix

        self.session.headers.update({
            "apikey": api_key,
            "Content-Type": "application/json",
        })

    # -- plumbing -----------------------------------------------------------

    def _table(self, name: str) -> str:
        return f"/rest/v1/{self.table_prefix}{name}"

    def _rpc(self, name: str) -> str:
        return f"/rest/v1/rpc/{self.table_prefix}{name}"

    def _call(self, method: str, endpoint: str, **kwargs) -> Any:
        if not self.auth.is_valid():
            raise AuthRequired("No valid session")

        headers = {"Authorization": f"Bearer {self.auth.access_token}"}
        headers.update(kwargs.pop("headers", {}))

        try:
            return self._request(method, endpoint, headers=headers, **kwargs)
        except APIError as e:
            if e.is_auth_error:
                raise AuthRequired("Session rejected by remote service", cause=e)
            raise RemoteUnavailable(f"{method} {endpoint} failed", cause=e)

    @staticmethod
    def _parse_rows(data: Any, model: Type[WireModel]) -> List[WireModel]:
        if data is None:
            return []
        if not isinstance(data, list):
            raise RemoteUnavailable(f"Expected a list of {model.__name__}")
        try:
            return [model.model_validate(row) for row in data]
        except ValidationError as e:
            raise RemoteUnavailable(f"Invalid {model.__name__} payload", cause=e)

    @staticmethod
    def _body(request: WireModel) -> Dict[str, Any]:
        return request.model_dump(mode="json")

    # -- generic entry points used by the engine ------------------------------

    def list(self, kind: EntityKind, user_id: str) -> List[Record]:
        """Fetch the account's snapshot of one entity kind."""
        if kind == EntityKind.SOURCE:
            return self.list_sources(user_id)
        if kind == EntityKind.LIBRARY:
            return self.list_library(user_id)
        return self.list_history(user_id)

    def upsert(self, kind: EntityKind, record: Record, user_id: str) -> Record:
        """Create or merge one record, keyed by its identity."""
        if kind == EntityKind.SOURCE:
            return self.upsert_source(record, user_id)
        if kind == EntityKind.LIBRARY:
            return self.upsert_library_item(record, user_id)
        return self.upsert_history_entry(record, user_id)

    def delete(self, kind: EntityKind, record: Record, user_id: str) -> None:
        """Delete one record, keyed by its identity."""
        if kind == EntityKind.SOURCE:
            self.delete_source(record.source_id, user_id)
        elif kind == EntityKind.LIBRARY:
            if not record.canonical_id:
                raise IdentityResolutionFailed("Library item has no canonical id")
            self.delete_library_item(record.canonical_id, user_id)
        else:
            self.delete_history(
                user_id,
                record.source_id,
                record.entity_id,
                chapter_number=record.chapter_number,
            )

    # -- sources ----------------------------------------------------------------

    def list_sources(self, user_id: str) -> List[Source]:
        data = self._call(
            "GET",
            self._table("user_sources"),
            params={"user_id": f"eq.{user_id}", "order": "added_at.desc"},
        )
        return [row.to_record() for row in self._parse_rows(data, RemoteSourceRow)]

    def upsert_source(self, record: Source, user_id: str) -> Source:
        self._call(
            "POST",
            self._table("user_sources"),
            params={"on_conflict": "user_id,source_id"},
            headers={"Prefer": MERGE_DUPLICATES},
            json=self._body(UpsertSourceRequest.from_record(record, user_id)),
        )
        return record

    def delete_source(self, source_id: str, user_id: str) -> None:
        self._call(
            "DELETE",
            self._table("user_sources"),
            params={"user_id": f"eq.{user_id}", "source_id": f"eq.{source_id}"},
        )

    # -- library ------------------------------------------------------------------

    def list_library(self, user_id: str) -> List[LibraryItem]:
        data = self._call(
            "GET",
            self._table("user_library"),
            params={"user_id": f"eq.{user_id}", "select": "*"},
        )
        return [row.to_record() for row in self._parse_rows(data, RemoteLibraryRow)]

    def upsert_library_item(self, record: LibraryItem, user_id: str) -> LibraryItem:
        if not record.canonical_id:
            raise IdentityResolutionFailed("Library item has no canonical id")
        self._call(
            "POST",
            self._rpc("upsert_user_library"),
            json=self._body(UpsertLibraryRequest.from_record(record, user_id)),
        )
        return record

    def delete_library_item(self, canonical_id: str, user_id: str) -> None:
        self._call(
            "DELETE",
            self._table("user_library"),
            params={
                "user_id": f"eq.{user_id}",
                "canonical_manga_id": f"eq.{canonical_id}",
            },
        )

    # -- reading history ----------------------------------------------------------

    def list_history(self, user_id: str) -> List[HistoryEntry]:
        data = self._call(
            "GET",
            self._table("reading_history"),
            params={"user_id": f"eq.{user_id}", "order": "last_read_at.desc"},
        )
        return [row.to_record() for row in self._parse_rows(data, RemoteHistoryRow)]

    def upsert_history_entry(self, record: HistoryEntry, user_id: str) -> HistoryEntry:
        if not record.canonical_id:
            raise IdentityResolutionFailed("History entry has no canonical id")
        self._call(
            "POST",
            self._table("reading_history"),
            params={"on_conflict": "user_id,source_id,manga_id,chapter_number"},
            headers={"Prefer": MERGE_DUPLICATES},
            json=self._body(UpsertHistoryRequest.from_record(record, user_id)),
        )
        return record

    def delete_history(
        self,
        user_id: str,
        source_id: str,
        entity_id: str,
        chapter_number: Optional[float] = None,
    ) -> None:
        """Delete one chapter's history, or the whole entity's when no chapter is given."""
        params = {
            "user_id": f"eq.{user_id}",
            "source_id": f"eq.{source_id}",
            "manga_id": f"eq.{entity_id}",
        }
        if chapter_number is not None:
            params["chapter_number"] = f"eq.{chapter_key(chapter_number)}"
        self._call("DELETE", self._table("reading_history"), params=params)

    # -- identity -------------------------------------------------------------------

    def resolve_canonical_id(self, title: str, source_id: str, entity_id: str) -> str:
        """
        Resolve-or-create the canonical id of an entity.

        The RPC is idempotent on (source_id, entity_id) and answers with a
        bare JSON string.
        """
        request = ResolveCanonicalRequest(
            p_title=title,
            p_source_id=source_id,
            p_manga_id=entity_id,
        )
        data = self._call("POST", self._rpc("get_or_create_canonical_manga"), json=self._body(request))

        if isinstance(data, str):
            canonical_id = data.strip().strip('"')
            if canonical_id:
                return canonical_id

        raise IdentityResolutionFailed(
            f"Invalid canonical id response for {source_id}/{entity_id}: {data!r}"
        )
