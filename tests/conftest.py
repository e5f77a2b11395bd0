"""Root pytest configuration for ociscope tests."""
from pathlib import Path

import pytest

from ociscope.auth import Anonymous, Basic, Bearer
from ociscope.cache import Cache
from ociscope.client import RegistryClient
from ociscope.registry import Registry
from ociscope.settings import Settings

from .fakes.fake_registry import FakeRegistry

REGISTRY_URL = "http://registry.test"


# Configure pytest markers
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow (may take significant time)"
    )


# Keep tests away from the user's config, cache and credentials
@pytest.fixture(autouse=True)
def test_env(monkeypatch, tmp_path):
    """Point every ociscope location at a per-test directory."""
    for name in (
        "OCISCOPE_CONFIG",
        "OCISCOPE_REGISTRY_URL",
        "OCISCOPE_CACHE_DIR",
        "OCISCOPE_DOCKERHUB_COMPAT",
        "OCISCOPE_HTTP_TIMEOUT",
        "OCISCOPE_HTTP_RETRY",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "xdg-cache"))
    monkeypatch.setenv("OCISCOPE_CREDENTIALS", str(tmp_path / "credentials.json"))


@pytest.fixture
def fake_registry():
    """Empty in-memory registry."""
    return FakeRegistry()


@pytest.fixture
def cache_dir(tmp_path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def settings(cache_dir):
    """Standard test settings."""
    return Settings(registry_url=REGISTRY_URL, cache_dir=cache_dir, concurrency=4)


@pytest.fixture
def cache(cache_dir):
    return Cache(cache_dir)


@pytest.fixture
def client(fake_registry):
    """Protocol client wired to the fake registry."""
    with RegistryClient(REGISTRY_URL, transport=fake_registry.transport) as c:
        yield c


@pytest.fixture
def registry(fake_registry, cache):
    """Cached orchestrator wired to the fake registry."""
    client = RegistryClient(REGISTRY_URL, transport=fake_registry.transport)
    with Registry(client, cache) as r:
        yield r


@pytest.fixture(params=["anonymous", "basic", "bearer"])
def any_credentials(request):
    return {
        "anonymous": Anonymous(),
        "basic": Basic(username="alice", password="secret"),
        "bearer": Bearer(token="tok"),
    }[request.param]
