"""
Test the Explorer facade.

These tests drive the same public surface the CLI uses, against the
in-memory fake registry.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from ociscope.auth import Anonymous, Basic, CredentialStore
from ociscope.errors import OciAuthError, OciConfigError, OciDeletionDisabled, OciNotFound, OciValidationError
from ociscope.models import ImageIndex, ImageManifest
from ociscope.operations import Explorer
from ociscope.settings import RegistryEntry, Settings, registry_cache_dir

from .conftest import REGISTRY_URL
from .fakes.fake_credentials import InMemoryCredentialStore

ALICE = Basic("alice", "secret")
ALICE_HEADER = "Basic YWxpY2U6c2VjcmV0"


def _iso(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


@pytest.fixture
def seeded(fake_registry):
    fake_registry.add_image("alpine", "3.19", created="2023-12-01T00:00:00Z")
    fake_registry.add_image("alpine", "3.20", created="2024-05-01T00:00:00Z")
    fake_registry.add_index("nginx", "stable", [
        ("linux", "amd64", "2024-01-01T00:00:00Z"),
        ("linux", "arm64", "2024-01-02T00:00:00Z"),
    ])
    fake_registry.add_image("team/api", "v1")
    return fake_registry


@pytest.fixture
def store():
    return InMemoryCredentialStore()


@pytest.fixture
def explorer(seeded, settings, store):
    with Explorer.from_settings(settings, credential_store=store, transport=seeded.transport) as e:
        yield e


class TestConstruction:
    """Test the ways an explorer is built."""

    def test_connect_is_uncached_and_anonymous(self, seeded):
        with Explorer.connect(REGISTRY_URL, transport=seeded.transport) as explorer:
            assert explorer.registry.cache is None
            assert isinstance(explorer.registry.credentials, Anonymous)
            assert explorer.list_repositories() == ["alpine", "nginx", "team/api"]

    def test_builder_requires_url(self):
        with pytest.raises(OciValidationError, match="Registry URL is required"):
            Explorer.builder().build()

    def test_builder_with_cache_and_credentials(self, seeded, cache_dir):
        seeded.required_auth = ALICE_HEADER
        explorer = (
            Explorer.builder()
            .registry_url(REGISTRY_URL)
            .with_cache(cache_dir)
            .with_credentials(ALICE)
            .with_transport(seeded.transport)
            .build()
        )
        assert explorer.registry.cache.disk_path == cache_dir
        explorer.check()

    def test_from_settings_uses_per_registry_cache(self, explorer, settings):
        assert explorer.registry_url == REGISTRY_URL
        assert explorer.cache_dir == registry_cache_dir(settings.cache_dir, REGISTRY_URL)

    def test_from_settings_loads_stored_credentials(self, seeded, settings):
        seeded.required_auth = ALICE_HEADER
        store = InMemoryCredentialStore({REGISTRY_URL: ALICE})
        explorer = Explorer.from_settings(settings, credential_store=store, transport=seeded.transport)
        assert explorer.registry.credentials == ALICE
        explorer.check()

    def test_from_settings_by_registry_name(self, seeded, tmp_path):
        settings = Settings(
            cache_dir=tmp_path / "c",
            registries=(RegistryEntry("test", "registry.test/"),),
        )
        explorer = Explorer.from_settings(settings, "test", transport=seeded.transport)
        assert explorer.registry_url == REGISTRY_URL

    def test_from_settings_without_registry(self):
        with pytest.raises(OciConfigError, match="No registry configured"):
            Explorer.from_settings(Settings())

    def test_cache_disabled(self, seeded, tmp_path):
        settings = Settings(registry_url=REGISTRY_URL, cache_enabled=False, cache_dir=tmp_path / "c")
        explorer = Explorer.from_settings(settings, transport=seeded.transport)
        assert explorer.registry.cache is None
        with pytest.raises(OciConfigError, match="Cache is not enabled"):
            explorer.cache_stats()

    def test_store_satisfies_protocol(self, store):
        assert isinstance(store, CredentialStore)


class TestLogin:
    """Test login and logout."""

    def test_login_verifies_and_persists(self, explorer, seeded, store):
        seeded.required_auth = ALICE_HEADER
        explorer.login(ALICE, persist=True)

        assert explorer.registry.credentials == ALICE
        assert store.get(REGISTRY_URL) == ALICE

    def test_failed_login_restores_previous_identity(self, explorer, seeded, store):
        seeded.required_auth = ALICE_HEADER
        with pytest.raises(OciAuthError):
            explorer.login(Basic("alice", "wrong"), persist=True)

        assert isinstance(explorer.registry.credentials, Anonymous)
        assert store.get(REGISTRY_URL) is None

    def test_login_without_verify(self, explorer, seeded):
        seeded.required_auth = ALICE_HEADER
        explorer.login(Basic("alice", "wrong"), verify=False)
        assert seeded.requests == []

    def test_logout(self, explorer, store):
        explorer.login(ALICE, persist=True)
        explorer.logout()
        assert isinstance(explorer.registry.credentials, Anonymous)
        assert store.get(REGISTRY_URL) == ALICE

        explorer.logout(forget=True)
        assert store.get(REGISTRY_URL) is None


class TestBrowsing:
    """Test listing, manifests and blobs."""

    def test_list_tags(self, explorer):
        assert explorer.list_tags("alpine") == ["3.19", "3.20"]

    def test_get_manifest(self, explorer, seeded):
        document, digest = explorer.get_manifest("alpine:3.20")
        assert isinstance(document, ImageManifest)
        assert digest == seeded.tags["alpine"]["3.20"]

    def test_get_manifest_of_index(self, explorer):
        document, _ = explorer.get_manifest("nginx:stable")
        assert isinstance(document, ImageIndex)

    def test_get_manifest_by_digest(self, explorer, seeded):
        digest = seeded.tags["team/api"]["v1"]
        _, returned = explorer.get_manifest(f"team/api@{digest}")
        assert returned == digest

    def test_get_config(self, explorer):
        config = explorer.get_config("alpine:3.19")
        assert config.created_at() == datetime(2023, 12, 1, tzinfo=timezone.utc)

    def test_get_config_picks_platform_from_index(self, explorer):
        config = explorer.get_config("nginx:stable", architecture="arm64")
        assert config.architecture == "arm64"
        assert explorer.get_config("nginx:stable", os="windows") is None

    def test_get_blob(self, explorer):
        document, _ = explorer.get_manifest("alpine:3.19")
        assert b"created" in explorer.get_blob("alpine", document.config.digest)

    def test_missing_image(self, explorer):
        with pytest.raises(OciNotFound):
            explorer.get_manifest("alpine:9.99")

    def test_tag_metadata(self, explorer):
        infos = explorer.tag_metadata("alpine")
        assert [i.tag for i in infos] == ["3.20", "3.19"]

    def test_repository_metadata(self, explorer):
        items = explorer.repository_metadata()
        assert [i.name for i in items] == ["alpine", "nginx", "team/api"]
        assert items[0].tag_count == 2


class TestDeletion:
    """Test tag deletion."""

    def test_delete_tag(self, explorer, seeded):
        digest = seeded.tags["alpine"]["3.19"]
        explorer.list_tags("alpine")

        assert explorer.delete_tag("alpine:3.19") == digest
        assert explorer.list_tags("alpine") == ["3.20"]
        assert [r.value for r in explorer.search_tags("alpine", "3")] == ["3.20"]

    def test_delete_tags_continues_after_failure(self, explorer, seeded):
        results = explorer.delete_tags("alpine", ["3.19", "missing", "3.20"])

        assert [(r.tag, r.ok) for r in results] == [("3.19", True), ("missing", False), ("3.20", True)]
        assert "not found" in results[1].error
        assert seeded.tags["alpine"] == {}

    def test_delete_tags_reports_malformed_response_and_continues(self, explorer, seeded):
        for tag in ("a", "b", "c"):
            seeded.add_image("batch", tag)
        explorer.list_tags("batch")
        seeded.overrides["/v2/batch/manifests/b"] = lambda request: httpx.Response(200, content=b"{}")

        results = explorer.delete_tags("batch", ["a", "b", "c"])

        assert [(r.tag, r.ok) for r in results] == [("a", True), ("b", False), ("c", True)]
        assert "Docker-Content-Digest" in results[1].error
        assert list(seeded.tags["batch"]) == ["b"]
        assert "batch" not in explorer._tags

    def test_delete_tags_stops_when_deletion_disabled(self, explorer, seeded):
        seeded.allow_delete = False
        with pytest.raises(OciDeletionDisabled, match="not enabled"):
            explorer.delete_tags("alpine", ["3.19", "3.20"])
        assert seeded.count("/v2/alpine/manifests/3.20") == 0

    def test_tags_older_than(self, seeded, explorer):
        now = datetime.now(timezone.utc)
        seeded.add_image("fresh", "old", created=_iso(now - timedelta(days=90)))
        seeded.add_image("fresh", "new", created=_iso(now - timedelta(days=1)))
        seeded.add_image("fresh", "undated", created=None)

        assert [i.tag for i in explorer.tags_older_than("fresh", 30)] == ["old"]

    def test_tags_older_than_uses_newest_platform(self, seeded, explorer):
        now = datetime.now(timezone.utc)
        seeded.add_index("multi", "mixed", [
            ("linux", "amd64", _iso(now - timedelta(days=90))),
            ("linux", "arm64", _iso(now - timedelta(days=2))),
        ])
        assert explorer.tags_older_than("multi", 30) == []
        assert [i.tag for i in explorer.tags_older_than("multi", 1)] == ["mixed"]


class TestSearch:
    """Test search through the facade."""

    def test_search_repositories_memoised(self, seeded):
        with Explorer.connect(REGISTRY_URL, transport=seeded.transport) as explorer:
            assert [r.value for r in explorer.search_repositories("alp")] == ["alpine"]
            explorer.search_repositories("ngx")
            assert seeded.count("/v2/_catalog") == 1

    def test_search_tags(self, explorer):
        assert [r.value for r in explorer.search_tags("alpine", "20")] == ["3.20"]

    def test_search_images(self, explorer):
        assert [r.value for r in explorer.search_images("alp:3.19")] == ["alpine:3.19"]

    def test_search_images_skips_failing_repository(self, explorer, seeded):
        seeded.overrides["/v2/nginx/tags/list"] = lambda request: httpx.Response(503)
        values = [r.value for r in explorer.search_images("n")]
        assert "alpine:3.19" in values
        assert not [v for v in values if v.startswith("nginx:")]


class TestCacheMaintenance:
    """Test cache operations through the facade."""

    def test_stats_prune_clear(self, explorer, seeded):
        explorer.list_repositories()
        explorer.list_tags("alpine")

        assert explorer.cache_stats().disk_entries == 2
        assert explorer.prune_cache().removed_files == 0

        cleared = explorer.clear_cache()
        assert cleared.removed_files == 2
        assert explorer.cache_stats().disk_entries == 0

        explorer.list_repositories()
        assert seeded.count("/v2/_catalog") == 2
