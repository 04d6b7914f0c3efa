"""Tests for canonical identity resolution and metadata hydration"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from mangasync.auth import AuthContext
from mangasync.errors import AuthRequired, ContentProviderError, IdentityResolutionFailed, SourceNotInstalled
from mangasync.sync.hydrator import MetadataHydrator
from mangasync.sync.identity import IdentityResolver
from mangasync.sync.models import Source


class TestIdentityResolver:

    def test_resolution_is_cached(self, remote, auth):
        resolver = IdentityResolver(remote, auth)

        first = resolver.resolve("One Piece", "s1", "m1")
        second = resolver.resolve("One Piece", "s1", "m1")

        assert first == second == "c-s1-m1"
        assert len(remote.resolve_calls) == 1
        assert resolver.remote_calls == 1

    def test_seeded_ids_skip_the_remote(self, remote, auth):
        resolver = IdentityResolver(remote, auth)
        resolver.remember("s1", "m1", "known")
        resolver.remember("s1", "m2", None)

        assert resolver.resolve(None, "s1", "m1") == "known"
        assert resolver.cached("s1", "m2") is None
        assert remote.resolve_calls == []

    def test_missing_title_is_sent_as_unknown(self, remote, auth):
        IdentityResolver(remote, auth).resolve(None, "s1", "m1")

        assert remote.resolve_calls == [("Unknown", "s1", "m1")]

    def test_requires_a_session(self, remote):
        resolver = IdentityResolver(remote, AuthContext.anonymous())

        with pytest.raises(AuthRequired):
            resolver.resolve("One Piece", "s1", "m1")
        assert remote.resolve_calls == []

    def test_empty_id_is_a_failure(self, remote, auth):
        remote.canonical_ids[("s1", "m1")] = ""

        with pytest.raises(IdentityResolutionFailed):
            IdentityResolver(remote, auth).resolve("One Piece", "s1", "m1")

    def test_concurrent_callers_agree(self, remote, auth):
        resolver = IdentityResolver(remote, auth)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: resolver.resolve("X", "s1", "m1"), range(32)))

        assert set(results) == {"c-s1-m1"}


class TestMetadataHydrator:

    def test_missing_source_fails_without_fetching(self, local, provider, sample_detail):
        provider.add(sample_detail)

        with pytest.raises(SourceNotInstalled):
            MetadataHydrator(local, provider).hydrate("s1", "m1")
        assert provider.calls == []

    def test_fetches_and_stores_once(self, local, provider, sample_detail):
        local.add(Source("s1"))
        provider.add(sample_detail)
        hydrator = MetadataHydrator(local, provider)

        first = hydrator.hydrate("s1", "m1")
        second = hydrator.hydrate("s1", "m1")

        assert first.title == second.title == "One Piece"
        assert provider.calls == [("s1", "m1")]
        assert ("s1", "m1") in local.manga

    def test_unexpected_provider_errors_are_wrapped(self, local):
        local.add(Source("s1"))

        class BrokenProvider:
            def fetch_detail(self, source_id, entity_id):
                raise ValueError("bad json")

        with pytest.raises(ContentProviderError) as exc:
            MetadataHydrator(local, BrokenProvider()).hydrate("s1", "m1")
        assert "bad json" in str(exc.value)
