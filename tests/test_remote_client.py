"""Tests for the remote service and content provider clients"""

import json
from unittest.mock import MagicMock

import pytest
import requests

from conftest import at
from mangasync.api.content import ContentProviderClient
from mangasync.api.remote import RemoteServiceClient
from mangasync.auth import AuthContext
from mangasync.errors import (
    AuthRequired,
    ContentProviderError,
    IdentityResolutionFailed,
    RemoteUnavailable,
)
from mangasync.sync.models import EntityKind, HistoryEntry, LibraryItem


def make_response(status_code=200, json_data=None):
    response = MagicMock()
    response.status_code = status_code
    if json_data is None:
        response.content = b""
        response.text = ""
        response.json.side_effect = ValueError("No JSON")
    else:
        response.text = json.dumps(json_data)
        response.content = response.text.encode()
        response.json.return_value = json_data
    return response


@pytest.fixture
def client(auth):
    client = RemoteServiceClient("https://project.example.co/", "anon-key", auth)
    client.session.request = MagicMock(return_value=make_response(200, []))
    return client


class TestRemoteServiceClient:

    def test_requests_carry_api_key_and_bearer_token(self, client):
        client.list_sources("user-1")

        method, url = client.session.request.call_args[0]
        kwargs = client.session.request.call_args[1]
        assert method == "GET"
        assert url == "https://project.example.co/rest/v1/scanio_user_sources"
        assert kwargs["params"]["user_id"] == "eq.user-1"
        assert kwargs["headers"]["Authorization"] == "Bearer token-123"
        assert client.session.headers["apikey"] == "anon-key"

    def test_list_library_parses_rows(self, client):
        client.session.request.return_value = make_response(200, [{
            "id": "row-1",
            "user_id": "user-1",
            "canonical_manga_id": "c1",
            "source_id": "s1",
            "manga_id": "m1",
            "last_read": "2024-01-01T12:05:00+00:00",
            "unknown_column": True,
        }])

        items = client.list(EntityKind.LIBRARY, "user-1")

        assert items == [LibraryItem("s1", "m1", canonical_id="c1", last_read=at(5))]

    def test_history_rows_normalise_chapter_numbers(self, client):
        client.session.request.return_value = make_response(200, [{
            "source_id": "s1",
            "manga_id": "m1",
            "chapter_number": 12,
            "page_number": 3,
            "is_completed": True,
            "canonical_manga_id": "c1",
        }])

        entry = client.list_history("user-1")[0]

        assert entry.chapter_key == "12.0"
        assert entry.completed is True
        assert entry.canonical_id == "c1"

    def test_history_upsert_body(self, client):
        client.session.request.return_value = make_response(201)
        entry = HistoryEntry("s1", "m1", 4.5, page_number=2, canonical_id="c1", last_read_at=at(0))

        client.upsert(EntityKind.HISTORY, entry, "user-1")

        kwargs = client.session.request.call_args[1]
        assert kwargs["headers"]["Prefer"] == "resolution=merge-duplicates,return=minimal"
        assert kwargs["json"]["chapter_number"] == "4.5"
        assert kwargs["json"]["canonical_manga_id"] == "c1"
        assert kwargs["json"]["user_id"] == "user-1"
        assert kwargs["json"]["last_read_at"].startswith("2024-01-01T12:00:00")

    def test_library_upsert_uses_rpc(self, client):
        client.session.request.return_value = make_response(204)

        client.upsert_library_item(LibraryItem("s1", "m1", canonical_id="c1"), "user-1")

        method, url = client.session.request.call_args[0]
        body = client.session.request.call_args[1]["json"]
        assert method == "POST"
        assert url.endswith("/rest/v1/rpc/scanio_upsert_user_library")
        assert body["p_canonical_manga_id"] == "c1"
        assert body["p_manga_id"] == "m1"

    def test_upsert_without_canonical_id_is_refused(self, client):
        with pytest.raises(IdentityResolutionFailed):
            client.upsert_library_item(LibraryItem("s1", "m1"), "user-1")
        client.session.request.assert_not_called()

    def test_resolve_canonical_id(self, client):
        client.session.request.return_value = make_response(200, "c1")

        assert client.resolve_canonical_id("One Piece", "s1", "m1") == "c1"
        body = client.session.request.call_args[1]["json"]
        assert body == {"p_title": "One Piece", "p_source_id": "s1", "p_manga_id": "m1"}

    def test_resolve_rejects_non_string_answers(self, client):
        client.session.request.return_value = make_response(200, {"id": "c1"})

        with pytest.raises(IdentityResolutionFailed):
            client.resolve_canonical_id("One Piece", "s1", "m1")

    @pytest.mark.parametrize("status_code", [401, 403])
    def test_rejected_credentials_raise_auth_required(self, client, status_code):
        client.session.request.return_value = make_response(status_code, {"message": "JWT expired"})

        with pytest.raises(AuthRequired):
            client.list_sources("user-1")

    def test_server_error_raises_remote_unavailable(self, client):
        client.session.request.return_value = make_response(500, {"message": "boom"})

        with pytest.raises(RemoteUnavailable):
            client.list_sources("user-1")

    def test_timeout_raises_remote_unavailable(self, client):
        client.session.request.side_effect = requests.exceptions.Timeout("read timed out")

        with pytest.raises(RemoteUnavailable):
            client.list_history("user-1")

    def test_malformed_rows_raise_remote_unavailable(self, client):
        client.session.request.return_value = make_response(200, [{"source_id": "s1"}])

        with pytest.raises(RemoteUnavailable):
            client.list_library("user-1")

    def test_no_session_never_hits_the_network(self):
        client = RemoteServiceClient("https://project.example.co", "anon-key", AuthContext.anonymous())
        client.session.request = MagicMock()

        with pytest.raises(AuthRequired):
            client.list_sources("user-1")
        client.session.request.assert_not_called()

    def test_delete_history_for_one_chapter(self, client):
        client.session.request.return_value = make_response(204)

        client.delete_history("user-1", "s1", "m1", chapter_number=3)

        params = client.session.request.call_args[1]["params"]
        assert params == {
            "user_id": "eq.user-1",
            "source_id": "eq.s1",
            "manga_id": "eq.m1",
            "chapter_number": "eq.3.0",
        }

    def test_transport_retries_only_idempotent_verbs(self, client):
        retry = client.session.get_adapter("https://project.example.co").max_retries

        assert 503 in retry.status_forcelist
        assert "GET" in retry.allowed_methods
        assert "POST" not in retry.allowed_methods


class TestContentProviderClient:

    @pytest.fixture
    def content(self):
        content = ContentProviderClient("http://runner.local:8080")
        content.session.request = MagicMock()
        return content

    def test_fetch_detail(self, content):
        content.session.request.return_value = make_response(200, {
            "id": "m1",
            "title": "One Piece",
            "coverUrl": "https://img.example/op.jpg",
            "chapters": [
                {"id": "ch-1", "chapterNumber": 1, "title": "Romance Dawn"},
                {"id": "ch-2"},
            ],
        })

        detail = content.fetch_detail("s1", "m1")

        assert content.session.request.call_args[0][1] == "http://runner.local:8080/sources/s1/manga/m1"
        assert detail.title == "One Piece"
        assert detail.cover_url == "https://img.example/op.jpg"
        assert [chapter.chapter_number for chapter in detail.chapters] == [1.0, None]

    def test_missing_entity(self, content):
        content.session.request.return_value = make_response(404, {"error": "not found"})

        with pytest.raises(ContentProviderError) as exc:
            content.fetch_detail("s1", "gone")
        assert "no longer exists" in str(exc.value)

    def test_invalid_payload(self, content):
        content.session.request.return_value = make_response(200, {"id": "m1"})

        with pytest.raises(ContentProviderError):
            content.fetch_detail("s1", "m1")

    def test_path_like_entity_id_is_encoded(self, content):
        content.session.request.return_value = make_response(200, {"id": "/manga/one-piece?x=1", "title": "One Piece"})

        detail = content.fetch_detail("s1", "/manga/one-piece?x=1")

        url = content.session.request.call_args[0][1]
        assert url == "http://runner.local:8080/sources/s1/manga/%2Fmanga%2Fone-piece%3Fx%3D1"
        assert detail.entity_id == "/manga/one-piece?x=1"
