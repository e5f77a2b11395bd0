"""
Registry authentication.

Static credentials (anonymous, Basic, Bearer), WWW-Authenticate challenge
parsing, and credential storage backends.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Union, runtime_checkable

from .errors import OciConfigError, OciValidationError

logger = logging.getLogger(__name__)

# key=value or key="quoted, value" pairs in a challenge
_CHALLENGE_PARAM = re.compile(r'([A-Za-z][\w-]*)\s*=\s*(?:"((?:[^"\\]|\\.)*)"|([^,\s]*))')
_ESCAPED = re.compile(r'\\(.)')


@dataclass(frozen=True)
class Anonymous:
    """No authentication."""

    def header_value(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class Basic:
    """HTTP Basic authentication."""
    username: str
    password: str

    def header_value(self) -> Optional[str]:
        encoded = base64.b64encode(f"{self.username}:{self.password}".encode()).decode()
        return f"Basic {encoded}"

    def __repr__(self) -> str:
        return f"Basic(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class Bearer:
    """Pre-issued bearer token."""
    token: str

    def header_value(self) -> Optional[str]:
        return f"Bearer {self.token}"

    def __repr__(self) -> str:
        return "Bearer(token='***')"


Credentials = Union[Anonymous, Basic, Bearer]


def anonymous() -> Anonymous:
    return Anonymous()


def basic(username: str, password: str) -> Basic:
    return Basic(username=username, password=password)


def bearer(token: str) -> Bearer:
    return Bearer(token=token)


def authorization_header(credentials: Optional[Credentials]) -> Dict[str, str]:
    """Headers to attach for ``credentials`` (empty for anonymous/None)."""
    if credentials is None:
        return {}
    value = credentials.header_value()
    return {"Authorization": value} if value else {}


@dataclass(frozen=True)
class AuthChallenge:
    """
    Parsed ``WWW-Authenticate`` header.

    Example header:
        Bearer realm="https://auth.example.com/token",service="registry",scope="repository:alpine:pull"
    """
    scheme: str
    realm: str
    service: Optional[str] = None
    scope: Optional[str] = None

    @classmethod
    def parse(cls, header: str) -> AuthChallenge:
        """
        Parse a WWW-Authenticate header value.

        Raises:
            OciValidationError: If the header has no parameters or no realm
        """
        header = header.strip()
        if " " not in header:
            raise OciValidationError("Invalid WWW-Authenticate header format")

        scheme, params = header.split(" ", 1)
        values: Dict[str, str] = {}
        for match in _CHALLENGE_PARAM.finditer(params):
            key, quoted, bare = match.groups()
            if key in ("realm", "service", "scope"):
                values[key] = _ESCAPED.sub(r"\1", quoted) if quoted is not None else bare

        if "realm" not in values:
            raise OciValidationError("WWW-Authenticate header missing required 'realm' parameter")

        return cls(
            scheme=scheme,
            realm=values["realm"],
            service=values.get("service"),
            scope=values.get("scope"),
        )


@runtime_checkable
class CredentialStore(Protocol):
    """
    Storage backend for per-registry credentials.

    The file-based store is the only implementation today; an OS keyring
    backend can be added behind the same four operations.
    """

    def store(self, registry: str, credentials: Credentials) -> None:
        ...

    def get(self, registry: str) -> Optional[Credentials]:
        ...

    def remove(self, registry: str) -> None:
        ...

    def list(self) -> List[str]:
        ...


class FileCredentialStore:
    """
    JSON-file credential store.

    Layout: ``{"<registry>": {"username": "...", "password": "<base64>"}}``.
    The file is rewritten with mode 0600 after every change. Passwords are
    base64 encoded, which is obfuscation, not encryption.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise OciConfigError(
                f"Failed to create credentials directory: {e}", path=str(self.path.parent)
            ) from e
        self._entries: Dict[str, Dict[str, str]] = self._load() if self.path.exists() else {}

    def _load(self) -> Dict[str, Dict[str, str]]:
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except OSError as e:
            raise OciConfigError(f"Failed to read credentials file: {e}", path=str(self.path)) from e
        except json.JSONDecodeError as e:
            raise OciConfigError(f"Failed to parse credentials file: {e}", path=str(self.path)) from e

        if not isinstance(data, dict):
            raise OciConfigError("Failed to parse credentials file: expected an object", path=str(self.path))
        return data

    def _save(self) -> None:
        try:
            with open(self.path, "w") as f:
                json.dump(self._entries, f, indent=2, sort_keys=True)
            os.chmod(self.path, 0o600)
        except OSError as e:
            raise OciConfigError(f"Failed to write credentials file: {e}", path=str(self.path)) from e

    def store(self, registry: str, credentials: Credentials) -> None:
        if isinstance(credentials, Anonymous):
            raise OciValidationError("Cannot store anonymous credentials")
        if isinstance(credentials, Bearer):
            raise OciValidationError("Bearer token storage not yet supported")

        self._entries[registry] = {
            "username": credentials.username,
            "password": base64.b64encode(credentials.password.encode()).decode(),
        }
        self._save()
        logger.debug(f"Stored credentials for {registry}")

    def get(self, registry: str) -> Optional[Credentials]:
        entry = self._entries.get(registry)
        if entry is None:
            return None
        try:
            password = base64.b64decode(entry["password"], validate=True).decode()
        except (KeyError, binascii.Error, UnicodeDecodeError) as e:
            raise OciValidationError(f"Failed to decode password for {registry}") from e
        return Basic(username=entry.get("username", ""), password=password)

    def remove(self, registry: str) -> None:
        self._entries.pop(registry, None)
        self._save()
        logger.debug(f"Removed credentials for {registry}")

    def list(self) -> List[str]:
        return sorted(self._entries)


def credentials_path() -> Path:
    """Credentials file location (``OCISCOPE_CREDENTIALS`` overrides)."""
    override = os.getenv("OCISCOPE_CREDENTIALS")
    if override:
        return Path(override)
    return Path.home() / ".config" / "ociscope" / "credentials.json"


__all__ = [
    "Anonymous",
    "Basic",
    "Bearer",
    "Credentials",
    "anonymous",
    "basic",
    "bearer",
    "authorization_header",
    "AuthChallenge",
    "CredentialStore",
    "FileCredentialStore",
    "credentials_path",
]
