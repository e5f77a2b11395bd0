"""
Protocol client for the OCI Distribution API v2.

Provides the HTTP binding used by the registry orchestrator: version probe,
paginated catalog and tag listing, manifest fetch with the canonical
digest, verified blob fetch, and manifest deletion.

Every non-success status and every transport failure is classified once,
in ``_check_response``/``_send``, into the ``OciError`` taxonomy. The
client never retries; retry policy belongs to the caller.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .auth import Anonymous, Credentials, authorization_header
from .digest import Digest
from .errors import (
    OciAuthError,
    OciDeletionDisabled,
    OciNetworkError,
    OciNotFound,
    OciRateLimited,
    OciServerError,
    OciValidationError,
)
from .media_types import ACCEPTED_MANIFEST_TYPES

logger = logging.getLogger(__name__)

USER_AGENT = "ociscope/0.1.0"

_SERVER_ERRORS = (500, 502, 503, 504)
_MAX_ERROR_BODY = 512


@dataclass(frozen=True)
class ClientConfig:
    """
    HTTP client configuration.

    Args:
        timeout_s: Per-request timeout
        max_idle_per_host: Idle keep-alive connections kept in the pool
        dockerhub_compat: Keep implicit ``library/`` prefixes in repository paths
        verify_tls: Verify TLS certificates (disable for insecure dev registries)
    """
    timeout_s: float = 30.0
    max_idle_per_host: int = 10
    dockerhub_compat: bool = False
    verify_tls: bool = True

    def __post_init__(self):
        if self.timeout_s <= 0:
            raise ValueError(f"timeout_s must be positive, got {self.timeout_s}")
        if self.max_idle_per_host < 0:
            raise ValueError(f"max_idle_per_host must be non-negative, got {self.max_idle_per_host}")


@dataclass(frozen=True)
class RegistryVersion:
    """Result of the ``/v2/`` probe."""
    api_version: Optional[str] = None


def normalize_url(url: str) -> str:
    """
    Normalize a registry URL.

    Trims whitespace, prepends ``http://`` when no scheme is given and
    strips trailing slashes.

    Raises:
        OciValidationError: If the URL is empty
    """
    url = (url or "").strip()
    if not url:
        raise OciValidationError("Registry URL cannot be empty")
    if not url.startswith(("http://", "https://")):
        url = f"http://{url}"
    return url.rstrip("/")


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[int]:
    """
    Parse a ``Retry-After`` header into seconds.

    Accepts delay-seconds (``120``) or an HTTP-date
    (``Wed, 21 Oct 2025 07:28:00 GMT``). Dates in the past yield 0.
    Missing, negative or unparseable values yield None.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None

    if text.lstrip("+-").isdigit():
        seconds = int(text)
        return seconds if seconds >= 0 else None

    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)

    now = now or datetime.now(timezone.utc)
    delta = (when - now).total_seconds()
    return int(delta) if delta > 0 else 0


def extract_next_link(link_header: Optional[str]) -> Optional[str]:
    """
    Return the ``rel="next"`` target of a ``Link`` header.

    Format: ``</v2/_catalog?n=100&last=repo99>; rel="next"``; single or
    double quotes around ``next`` are accepted.
    """
    if not link_header:
        return None
    for part in link_header.split(","):
        part = part.strip()
        if 'rel="next"' not in part and "rel='next'" not in part:
            continue
        start = part.find("<")
        end = part.find(">")
        if start != -1 and end > start:
            return part[start + 1:end]
    return None


def _body_excerpt(response: httpx.Response) -> str:
    try:
        text = response.text
    except (UnicodeDecodeError, httpx.ResponseNotRead):
        return "(unable to read response body)"
    return text[:_MAX_ERROR_BODY]


def _json_body(response: httpx.Response, what: str) -> Any:
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise OciValidationError(f"Invalid JSON in {what} response: {e}") from e


class RegistryClient:
    """
    HTTP client for one registry.

    Holds a pooled ``httpx.Client``, the normalized base URL and the
    credentials attached to every request. Safe to reuse across calls;
    not shared across threads.
    """

    def __init__(
        self,
        registry_url: str,
        credentials: Optional[Credentials] = None,
        *,
        config: Optional[ClientConfig] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            registry_url: Registry URL or host[:port] (``http://`` is assumed)
            credentials: Static credentials, None for anonymous
            config: Timeouts and pool settings
            transport: Custom httpx transport (tests use ``httpx.MockTransport``)
        """
        self.registry_url = normalize_url(registry_url)
        self.config = config or ClientConfig()
        self.credentials: Credentials = credentials or Anonymous()

        self._http = httpx.Client(
            timeout=httpx.Timeout(self.config.timeout_s),
            limits=httpx.Limits(max_keepalive_connections=self.config.max_idle_per_host),
            follow_redirects=True,
            verify=self.config.verify_tls,
            headers={"User-Agent": USER_AGENT},
            transport=transport,
        )

    def set_credentials(self, credentials: Optional[Credentials]) -> None:
        self.credentials = credentials or Anonymous()

    def check_version(self) -> RegistryVersion:
        """
        Probe ``GET /v2/``.

        Raises:
            OciAuthError: If the registry requires (other) credentials
            OciNetworkError: If the registry is unreachable
        """
        url = f"{self.registry_url}/v2/"
        response = self._send("GET", url)
        api_version = response.headers.get("Docker-Distribution-API-Version")
        self._check_response(response, "endpoint", url)
        return RegistryVersion(api_version=api_version)

    def fetch_catalog(self, limit: Optional[int] = None) -> List[str]:
        """
        List every repository, following ``Link`` pagination.

        Args:
            limit: Page size hint sent as ``?n=``
        """
        repositories: List[str] = []
        for page in self._paginate("/v2/_catalog", limit, "catalog", "catalog"):
            if not isinstance(page, dict):
                raise OciValidationError("Invalid catalog response: expected an object")
            repositories.extend(page.get("repositories") or [])
        return repositories

    def fetch_tags(self, repository: str, limit: Optional[int] = None) -> List[str]:
        """
        List every tag of ``repository``, following ``Link`` pagination.

        Raises:
            OciValidationError: If the registry answers for another repository
            OciNotFound: If the repository does not exist
        """
        tags: List[str] = []
        for page in self._paginate(f"/v2/{repository}/tags/list", limit, "repository", repository):
            if not isinstance(page, dict):
                raise OciValidationError("Invalid tags response: expected an object")
            name = page.get("name")
            if name != repository:
                raise OciValidationError(
                    f"Tags response is for repository {name!r}, expected {repository!r}"
                )
            tags.extend(page.get("tags") or [])
        return tags

    def fetch_manifest(self, repository: str, reference: str) -> Tuple[bytes, str]:
        """
        Fetch a manifest or index by tag or digest.

        Returns:
            (raw manifest bytes, Docker-Content-Digest header value)

        Raises:
            OciNotFound: If the manifest does not exist
            OciValidationError: If the registry omits Docker-Content-Digest
        """
        url = f"{self.registry_url}/v2/{repository}/manifests/{reference}"
        headers = {"Accept": ", ".join(ACCEPTED_MANIFEST_TYPES)}
        response = self._send("GET", url, headers=headers)
        digest = response.headers.get("Docker-Content-Digest")
        self._check_response(response, "manifest", f"{repository}:{reference}")

        if not digest:
            raise OciValidationError(
                f"Registry did not return Docker-Content-Digest header for {repository}:{reference}"
            )
        return response.content, digest

    def fetch_blob(self, repository: str, digest: str) -> bytes:
        """
        Fetch a blob and verify it against ``digest``.

        Redirects to external storage are followed. Non-sha256 digests are
        rejected before any request is sent.

        Raises:
            OciValidationError: If the digest is malformed or not sha256
            OciDigestMismatch: If the content does not hash to ``digest``
            OciNotFound: If the blob does not exist
        """
        expected = Digest.parse(digest)
        expected.require_sha256()

        url = f"{self.registry_url}/v2/{repository}/blobs/{digest}"
        response = self._send("GET", url)
        self._check_response(response, "blob", digest)

        data = response.content
        expected.verify(data)
        return data

    def delete_manifest(self, repository: str, digest: str) -> None:
        """
        Delete a manifest by digest.

        Raises:
            OciValidationError: If the digest is malformed
            OciDeletionDisabled: If the registry does not allow deletion (405)
            OciNotFound: If the manifest does not exist
            OciAuthError: If deletion is not permitted
        """
        Digest.parse(digest)
        url = f"{self.registry_url}/v2/{repository}/manifests/{digest}"
        response = self._send("DELETE", url)

        if response.status_code in (202, 204):
            return
        if response.status_code == 405:
            raise OciDeletionDisabled(
                "Manifest deletion is not enabled on this registry. Check registry "
                "configuration (e.g., Zot requires 'storage.gc: true' and 'http.allowDelete: true')"
            )
        self._check_response(response, "manifest", f"{digest} in {repository}")
        raise OciNetworkError(
            f"Failed to delete manifest: HTTP {response.status_code} from {url}"
        )

    def close(self) -> None:
        """Close HTTP client."""
        self._http.close()

    def __enter__(self) -> RegistryClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _paginate(self, path: str, limit: Optional[int], resource_type: str, name: str):
        url = f"{self.registry_url}{path}"
        params: Optional[Dict[str, int]] = {"n": limit} if limit is not None else None
        seen = set()

        while True:
            response = self._send("GET", url, params=params)
            next_link = extract_next_link(response.headers.get("Link"))
            self._check_response(response, resource_type, name)
            yield _json_body(response, resource_type)

            if next_link is None:
                return
            url = next_link if next_link.startswith(("http://", "https://")) else f"{self.registry_url}{next_link}"
            params = None
            if url in seen:
                raise OciValidationError(f"Pagination loop detected at {url}")
            seen.add(url)

    def _send(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Issue one request; transport failures become OciNetworkError."""
        request_headers = dict(headers or {})
        request_headers.update(authorization_header(self.credentials))

        try:
            response = self._http.request(method, url, headers=request_headers, params=params)
        except httpx.TimeoutException as e:
            raise OciNetworkError(
                f"Request to {self.registry_url} timed out after {self.config.timeout_s} seconds"
            ) from e
        except httpx.ConnectError as e:
            raise OciNetworkError(f"Failed to connect to registry at {self.registry_url}") from e
        except httpx.RequestError as e:
            raise OciNetworkError(f"Network error communicating with {self.registry_url}: {e}") from e

        logger.debug(f"{method} {url} -> {response.status_code}")
        return response

    @staticmethod
    def _check_response(response: httpx.Response, resource_type: str, name: str) -> None:
        """Translate a non-success status into the matching OciError."""
        status = response.status_code
        if response.is_success:
            return

        url = str(response.request.url)
        if status == 401:
            raise OciAuthError(f"Authentication required for {url}: {_body_excerpt(response)}", status_code=401)
        if status == 403:
            raise OciAuthError(f"Access forbidden for {url}: {_body_excerpt(response)}", status_code=403)
        if status == 404:
            raise OciNotFound(resource_type, name)
        if status == 429:
            raise OciRateLimited(
                f"Rate limit exceeded for {url}",
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        if status in _SERVER_ERRORS:
            raise OciServerError(f"Server error from {url}: {_body_excerpt(response)}", status_code=status)
        raise OciNetworkError(f"HTTP {status} from {url}: {_body_excerpt(response)}")


__all__ = [
    "RegistryClient",
    "ClientConfig",
    "RegistryVersion",
    "normalize_url",
    "parse_retry_after",
    "extract_next_link",
]
