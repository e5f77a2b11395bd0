"""
CLI smoke tests against the fake registry.

Tests basic CLI functionality and command wiring without a real
registry. The explorer factory is patched so every command talks to the
in-memory registry through ``httpx.MockTransport``.
"""
from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from ociscope.cli import app
from ociscope.operations.facade import Explorer

from .conftest import REGISTRY_URL
from .fakes.fake_registry import FakeRegistry

ALICE_HEADER = "Basic YWxpY2U6c2VjcmV0"


@pytest.fixture
def seeded():
    fake = FakeRegistry()
    fake.add_image("alpine", "3.19", created="2023-12-01T00:00:00Z")
    fake.add_image("alpine", "3.20", created="2024-05-01T00:00:00Z")
    fake.add_index("nginx", "stable", [
        ("linux", "amd64", "2024-01-01T00:00:00Z"),
        ("linux", "arm64", "2024-01-02T00:00:00Z"),
    ])
    return fake


@pytest.fixture(autouse=True)
def wired(monkeypatch, seeded, tmp_path):
    """Route the CLI's explorer to the fake registry."""
    unpatched = Explorer.from_settings.__func__

    def from_settings(cls, settings, registry=None, **kwargs):
        kwargs["transport"] = seeded.transport
        return unpatched(cls, settings, registry, **kwargs)

    monkeypatch.setattr(Explorer, "from_settings", classmethod(from_settings))
    monkeypatch.setenv("OCISCOPE_REGISTRY_URL", REGISTRY_URL)
    monkeypatch.setenv("OCISCOPE_CACHE_DIR", str(tmp_path / "cache"))


class TestCLISmokeTests:
    """Smoke tests for CLI commands."""

    def setup_method(self):
        """Set up test environment."""
        self.runner = CliRunner()

    def invoke(self, *args, **kwargs):
        return self.runner.invoke(app, list(args), **kwargs)

    def test_help_lists_commands(self):
        result = self.invoke("--help")
        assert result.exit_code == 0
        for command in ("check", "repos", "tags", "inspect", "rm", "search", "login", "logout", "cache"):
            assert command in result.output

    def test_check(self):
        result = self.invoke("check")
        assert result.exit_code == 0
        assert "reachable" in result.output
        assert "registry/2.0" in result.output

    def test_repos(self):
        result = self.invoke("repos")
        assert result.exit_code == 0
        assert "alpine" in result.output
        assert "nginx" in result.output

    def test_tags(self):
        result = self.invoke("tags", "alpine")
        assert result.exit_code == 0
        assert "3.19" in result.output
        assert "3.20" in result.output

    def test_inspect_manifest(self):
        result = self.invoke("inspect", "alpine:3.19")
        assert result.exit_code == 0
        assert "Layers" in result.output
        assert "linux/amd64" in result.output

    def test_inspect_index(self):
        result = self.invoke("inspect", "nginx:stable")
        assert result.exit_code == 0
        assert "Platforms" in result.output
        assert "linux/arm64" in result.output

    def test_inspect_missing_image(self):
        result = self.invoke("inspect", "alpine:9.99")
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_invalid_reference(self):
        result = self.invoke("inspect", "UPPER/Case")
        assert result.exit_code == 2

    def test_registry_option(self, monkeypatch):
        monkeypatch.delenv("OCISCOPE_REGISTRY_URL")
        result = self.invoke("--registry", REGISTRY_URL, "repos")
        assert result.exit_code == 0
        assert "alpine" in result.output

    def test_no_registry_configured(self, monkeypatch):
        monkeypatch.delenv("OCISCOPE_REGISTRY_URL")
        result = self.invoke("repos")
        assert result.exit_code == 5
        assert "No registry configured" in result.output

    def test_invalid_environment(self, monkeypatch):
        monkeypatch.setenv("OCISCOPE_HTTP_RETRY", "lots")
        result = self.invoke("repos")
        assert result.exit_code == 5

    def test_authentication_error_guidance(self, seeded):
        seeded.required_auth = ALICE_HEADER
        result = self.invoke("repos")
        assert result.exit_code == 4
        assert "ociscope login" in result.output


class TestSearchCommand:
    """Test the search command."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_search_repositories(self):
        result = self.runner.invoke(app, ["search", "alp"])
        assert result.exit_code == 0
        assert "alpine" in result.output
        assert "nginx" not in result.output

    def test_search_images(self):
        result = self.runner.invoke(app, ["search", "alp:3.19"])
        assert result.exit_code == 0
        assert "alpine:3.19" in result.output
        assert "alpine:3.20" not in result.output

    def test_search_tags_of_repository(self):
        result = self.runner.invoke(app, ["search", "20", "--repo", "alpine"])
        assert result.exit_code == 0
        assert "3.20" in result.output

    def test_no_matches(self):
        result = self.runner.invoke(app, ["search", "zzz"])
        assert result.exit_code == 0
        assert "No matches" in result.output


class TestRmCommand:
    """Test tag deletion from the CLI."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_rm_single_tag(self, seeded):
        result = self.runner.invoke(app, ["rm", "alpine:3.19", "--force"])
        assert result.exit_code == 0
        assert "Deleted" in result.output
        assert "3.19" not in seeded.tags["alpine"]

    def test_rm_dry_run(self, seeded):
        result = self.runner.invoke(app, ["rm", "alpine:3.19", "--dry-run"])
        assert result.exit_code == 0
        assert "Would delete" in result.output
        assert "3.19" in seeded.tags["alpine"]
        assert seeded.paths("DELETE") == []

    def test_rm_declined(self, seeded):
        result = self.runner.invoke(app, ["rm", "alpine:3.19"], input="n\n")
        assert result.exit_code == 1
        assert "3.19" in seeded.tags["alpine"]

    def test_rm_confirmed(self, seeded):
        result = self.runner.invoke(app, ["rm", "alpine:3.19"], input="y\n")
        assert result.exit_code == 0
        assert "3.19" not in seeded.tags["alpine"]

    def test_rm_older_than(self, seeded):
        result = self.runner.invoke(app, ["rm", "alpine", "--older-than", "30", "--force"])
        assert result.exit_code == 0
        assert seeded.tags["alpine"] == {}

    def test_rm_older_than_dry_run(self, seeded):
        result = self.runner.invoke(app, ["rm", "alpine", "--older-than", "30", "--dry-run"])
        assert result.exit_code == 0
        assert "Would delete 2 tag(s)" in result.output
        assert seeded.paths("DELETE") == []

    def test_rm_older_than_requires_repository(self):
        result = self.runner.invoke(app, ["rm", "alpine:3.19", "--older-than", "30"])
        assert result.exit_code == 2

    def test_rm_deletion_disabled(self, seeded):
        seeded.allow_delete = False
        result = self.runner.invoke(app, ["rm", "alpine:3.19", "--force"])
        assert result.exit_code == 2
        assert "not enabled" in result.output


class TestLoginCommands:
    """Test login and logout."""

    def setup_method(self):
        self.runner = CliRunner()

    def _stored(self, tmp_path):
        path = tmp_path / "credentials.json"
        return json.loads(path.read_text()) if path.exists() else {}

    def test_login_stores_credentials(self, seeded, tmp_path):
        seeded.required_auth = ALICE_HEADER
        result = self.runner.invoke(app, ["login", "-u", "alice", "-p", "secret"])

        assert result.exit_code == 0
        assert "Logged in" in result.output
        assert self._stored(tmp_path)[REGISTRY_URL]["username"] == "alice"

        result = self.runner.invoke(app, ["repos"])
        assert result.exit_code == 0

    def test_login_prompts(self, seeded, tmp_path):
        seeded.required_auth = ALICE_HEADER
        result = self.runner.invoke(app, ["login"], input="alice\nsecret\n")
        assert result.exit_code == 0
        assert REGISTRY_URL in self._stored(tmp_path)

    def test_login_rejected(self, seeded, tmp_path):
        seeded.required_auth = ALICE_HEADER
        result = self.runner.invoke(app, ["login", "-u", "alice", "-p", "wrong"])

        assert result.exit_code == 4
        assert self._stored(tmp_path) == {}

    def test_logout_forgets_credentials(self, tmp_path):
        self.runner.invoke(app, ["login", "-u", "alice", "-p", "secret"])
        result = self.runner.invoke(app, ["logout"])

        assert result.exit_code == 0
        assert self._stored(tmp_path) == {}


class TestCacheCommands:
    """Test cache maintenance commands."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_stats_prune_clear(self, seeded):
        assert self.runner.invoke(app, ["repos"]).exit_code == 0

        result = self.runner.invoke(app, ["cache", "stats"])
        assert result.exit_code == 0
        assert "Disk entries" in result.output

        result = self.runner.invoke(app, ["cache", "prune"])
        assert result.exit_code == 0
        assert "Removed 0 expired entries" in result.output

        result = self.runner.invoke(app, ["cache", "clear", "--force"])
        assert result.exit_code == 0
        assert "Removed" in result.output

    def test_repos_served_from_cache(self, seeded):
        self.runner.invoke(app, ["repos"])
        self.runner.invoke(app, ["repos"])
        assert seeded.count("/v2/_catalog") == 1

    def test_clear_declined(self):
        result = self.runner.invoke(app, ["cache", "clear"], input="n\n")
        assert result.exit_code == 1
