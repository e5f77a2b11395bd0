"""
Image reference parsing.

Supports the usual Docker/OCI forms:
- "alpine" -> docker.io/library/alpine:latest
- "ghcr.io/user/repo:1.0"
- "localhost:5000/ns/repo@sha256:<64 hex>"

Docker Hub implicitly prefixes single-segment names with ``library/``;
other registries (GHCR, Zot, Harbor) do not. ``repository_for_registry``
decides once which form is used for both URL paths and cache keys.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from .digest import Digest
from .errors import OciValidationError

DEFAULT_REGISTRY = "docker.io"
DEFAULT_TAG = "latest"
LIBRARY_PREFIX = "library/"

_COMPONENT_RE = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
_DOMAIN_RE = re.compile(
    r"^(?:localhost|[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?)*)(?::[0-9]+)?$"
)


def _looks_like_registry(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"


@dataclass(frozen=True)
class Reference:
    """
    A resolved image reference.

    Exactly one of ``tag`` and ``digest`` is set.
    """
    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    @classmethod
    def parse(cls, value: str) -> Reference:
        """
        Parse an image reference string.

        Raises:
            OciValidationError: If the reference is malformed
        """
        text = (value or "").strip()
        if not text:
            raise OciValidationError("Invalid image reference: empty string")

        digest: Optional[str] = None
        if "@" in text:
            text, digest_part = text.split("@", 1)
            try:
                digest = str(Digest.parse(digest_part))
            except OciValidationError as e:
                raise OciValidationError(f"Invalid image reference: {value!r}: {e}") from e

        tag: Optional[str] = None
        last_slash = text.rfind("/")
        last_colon = text.rfind(":")
        if last_colon > last_slash:
            text, tag = text[:last_colon], text[last_colon + 1:]
            if not _TAG_RE.match(tag):
                raise OciValidationError(f"Invalid image reference: bad tag {tag!r} in {value!r}")

        registry = DEFAULT_REGISTRY
        path = text
        if "/" in text:
            first, rest = text.split("/", 1)
            if _looks_like_registry(first):
                if not _DOMAIN_RE.match(first):
                    raise OciValidationError(f"Invalid image reference: bad registry {first!r}")
                registry, path = first, rest

        if not path or any(not _COMPONENT_RE.match(part) for part in path.split("/")):
            raise OciValidationError(f"Invalid image reference: bad repository name in {value!r}")

        if registry == DEFAULT_REGISTRY and "/" not in path:
            path = LIBRARY_PREFIX + path

        if digest is not None:
            tag = None
        elif tag is None:
            tag = DEFAULT_TAG

        return cls(registry=registry, repository=path, tag=tag, digest=digest)

    def repository_for_registry(self, dockerhub_compat: bool) -> str:
        """
        Return the repository path to use against the registry.

        With ``dockerhub_compat`` false, an implicit ``library/`` prefix is
        stripped. Only a prefix followed by a single segment counts as
        implicit: ``library/golang`` becomes ``golang`` but
        ``library/team/app`` is kept as written.
        """
        repo = self.repository
        if not dockerhub_compat and repo.startswith(LIBRARY_PREFIX):
            rest = repo[len(LIBRARY_PREFIX):]
            if "/" not in rest:
                return rest
        return repo

    @property
    def reference(self) -> str:
        """The tag or digest, whichever is set."""
        return self.digest if self.digest is not None else self.tag  # type: ignore[return-value]

    def __str__(self) -> str:
        base = f"{self.registry}/{self.repository}"
        if self.digest is not None:
            return f"{base}@{self.digest}"
        return f"{base}:{self.tag}"


__all__ = ["Reference", "DEFAULT_REGISTRY", "DEFAULT_TAG"]
