"""
Test image reference parsing.
"""
from __future__ import annotations

import pytest

from ociscope.errors import OciValidationError
from ociscope.reference import Reference

DIGEST = "sha256:" + "a" * 64


class TestReferenceParse:
    """Test reference string parsing."""

    def test_bare_name_defaults(self):
        ref = Reference.parse("alpine")
        assert ref.registry == "docker.io"
        assert ref.repository == "library/alpine"
        assert ref.tag == "latest"
        assert ref.digest is None

    def test_name_and_tag(self):
        ref = Reference.parse("team/app:v1.2")
        assert ref.registry == "docker.io"
        assert ref.repository == "team/app"
        assert ref.tag == "v1.2"

    def test_registry_with_port(self):
        ref = Reference.parse("localhost:5000/app:dev")
        assert ref.registry == "localhost:5000"
        assert ref.repository == "app"
        assert ref.tag == "dev"

    def test_digest_reference(self):
        ref = Reference.parse(f"ghcr.io/org/app@{DIGEST}")
        assert ref.registry == "ghcr.io"
        assert ref.repository == "org/app"
        assert ref.tag is None
        assert ref.digest == DIGEST
        assert ref.reference == DIGEST

    def test_tag_and_digest_keeps_digest(self):
        ref = Reference.parse(f"app:v1@{DIGEST}")
        assert ref.tag is None
        assert ref.digest == DIGEST

    def test_str_round_trip(self):
        assert str(Reference.parse("localhost:5000/app:dev")) == "localhost:5000/app:dev"
        assert str(Reference.parse(f"ghcr.io/org/app@{DIGEST}")) == f"ghcr.io/org/app@{DIGEST}"

    @pytest.mark.parametrize("value", [
        "",
        "   ",
        "UPPER/case",
        "app:",
        "app:-bad",
        "app@sha256:short",
        "a//b",
    ])
    def test_rejects_malformed(self, value):
        with pytest.raises(OciValidationError, match="Invalid image reference"):
            Reference.parse(value)


class TestRepositoryForRegistry:
    """Test the implicit library/ prefix projection."""

    def test_strips_implicit_library_prefix(self):
        ref = Reference.parse("golang:1.22")
        assert ref.repository_for_registry(dockerhub_compat=False) == "golang"

    def test_keeps_prefix_in_compat_mode(self):
        ref = Reference.parse("golang:1.22")
        assert ref.repository_for_registry(dockerhub_compat=True) == "library/golang"

    def test_keeps_nested_library_path(self):
        ref = Reference.parse("library/team/app:v1")
        assert ref.repository_for_registry(dockerhub_compat=False) == "library/team/app"
