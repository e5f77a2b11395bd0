"""
Test credentials, challenge parsing and the file credential store.
"""
from __future__ import annotations

import json
import os
import stat

import pytest

from ociscope.auth import (
    Anonymous,
    AuthChallenge,
    Basic,
    Bearer,
    CredentialStore,
    FileCredentialStore,
    authorization_header,
    credentials_path,
)
from ociscope.errors import OciConfigError, OciValidationError


class TestAuthorizationHeader:
    """Test header construction per credential kind."""

    def test_anonymous_sends_nothing(self):
        assert authorization_header(Anonymous()) == {}
        assert authorization_header(None) == {}

    def test_basic(self):
        # base64("alice:secret")
        assert authorization_header(Basic("alice", "secret")) == {"Authorization": "Basic YWxpY2U6c2VjcmV0"}

    def test_bearer(self):
        assert authorization_header(Bearer("tok")) == {"Authorization": "Bearer tok"}

    def test_repr_hides_secrets(self):
        assert "secret" not in repr(Basic("alice", "secret"))
        assert "s3cr3t-token-value" not in repr(Bearer("s3cr3t-token-value"))


class TestAuthChallenge:
    """Test WWW-Authenticate parsing."""

    def test_parse_bearer_challenge(self):
        challenge = AuthChallenge.parse(
            'Bearer realm="https://auth.example.com/token",service="registry",scope="repository:alpine:pull"'
        )
        assert challenge.scheme == "Bearer"
        assert challenge.realm == "https://auth.example.com/token"
        assert challenge.service == "registry"
        assert challenge.scope == "repository:alpine:pull"

    def test_quoted_scope_with_comma(self):
        challenge = AuthChallenge.parse(
            'Bearer realm="https://auth.example.com/token", service=registry, '
            'scope="repository:team/app:pull,push"'
        )
        assert challenge.realm == "https://auth.example.com/token"
        assert challenge.service == "registry"
        assert challenge.scope == "repository:team/app:pull,push"

    def test_escaped_quote_in_value(self):
        challenge = AuthChallenge.parse(r'Basic realm="say \"hi\""')
        assert challenge.realm == 'say "hi"'

    def test_parse_realm_only(self):
        challenge = AuthChallenge.parse('Basic realm="fake"')
        assert challenge.realm == "fake"
        assert challenge.service is None
        assert challenge.scope is None

    def test_missing_realm(self):
        with pytest.raises(OciValidationError, match="realm"):
            AuthChallenge.parse('Bearer service="registry"')

    def test_no_parameters(self):
        with pytest.raises(OciValidationError, match="Invalid WWW-Authenticate"):
            AuthChallenge.parse("Bearer")


class TestFileCredentialStore:
    """Test the JSON file credential store."""

    def test_satisfies_protocol(self, tmp_path):
        assert isinstance(FileCredentialStore(tmp_path / "creds.json"), CredentialStore)

    def test_store_get_remove(self, tmp_path):
        path = tmp_path / "creds.json"
        store = FileCredentialStore(path)
        store.store("http://registry.test", Basic("alice", "secret"))

        assert store.get("http://registry.test") == Basic("alice", "secret")
        assert store.list() == ["http://registry.test"]

        store.remove("http://registry.test")
        assert store.get("http://registry.test") is None
        assert store.list() == []

    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "creds.json"
        FileCredentialStore(path).store("r1", Basic("bob", "pw"))
        assert FileCredentialStore(path).get("r1") == Basic("bob", "pw")

    def test_password_not_stored_in_clear(self, tmp_path):
        path = tmp_path / "creds.json"
        FileCredentialStore(path).store("r1", Basic("bob", "hunter2"))
        assert "hunter2" not in path.read_text()
        assert json.loads(path.read_text())["r1"]["username"] == "bob"

    @pytest.mark.skipif(os.name != "posix", reason="file modes are POSIX only")
    def test_file_mode_is_private(self, tmp_path):
        path = tmp_path / "creds.json"
        FileCredentialStore(path).store("r1", Basic("bob", "pw"))
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_rejects_anonymous_and_bearer(self, tmp_path):
        store = FileCredentialStore(tmp_path / "creds.json")
        with pytest.raises(OciValidationError):
            store.store("r1", Anonymous())
        with pytest.raises(OciValidationError):
            store.store("r1", Bearer("tok"))

    def test_corrupt_file_is_config_error(self, tmp_path):
        path = tmp_path / "creds.json"
        path.write_text("{not json")
        with pytest.raises(OciConfigError) as exc_info:
            FileCredentialStore(path)
        assert exc_info.value.path == str(path)

    def test_credentials_path_override(self, tmp_path):
        # OCISCOPE_CREDENTIALS is set by the autouse fixture
        assert credentials_path() == tmp_path / "credentials.json"
