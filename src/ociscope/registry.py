"""
Registry orchestrator.

Composes the protocol client, the two-tier cache and the session
credentials into one cache-aside call per logical operation. This module
owns the cache key scheme, which every client sharing a disk cache must
agree on:

    =====================  ===============================  =========
    Operation              Key                              TTL class
    =====================  ===============================  =========
    list repositories      catalog                          CATALOG
    list tags              {repo}/_tags                     TAGS
    manifest by digest     {repo}/manifests/{digest}        MANIFEST
    manifest by tag        {repo}/tags/{tag}/manifest       MANIFEST
    blob                   blobs/{digest}                   CONFIG
    =====================  ===============================  =========

Blob keys are not repository-scoped: a digest names the same bytes in
every repository.

Cached entries carry no identity. Data fetched with credentials can be
served to a later anonymous session that shares the cache directory.
"""
from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Callable, List, Optional, Tuple, TypeVar

import httpx
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .auth import Anonymous, Credentials
from .cache import Cache, CacheType
from .client import ClientConfig, RegistryClient, RegistryVersion, normalize_url
from .digest import Digest
from .errors import (
    OciNetworkError,
    OciRateLimited,
    OciServerError,
    OciValidationError,
)
from .models import ImageConfiguration, ManifestOrIndex, parse_manifest_or_index
from .reference import Reference
from .settings import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

CATALOG_KEY = "catalog"

RETRYABLE_ERRORS = (OciRateLimited, OciNetworkError, OciServerError)

_backoff = wait_exponential(multiplier=1, min=1, max=10)


def tags_key(repository: str) -> str:
    return f"{repository}/_tags"


def manifest_digest_key(repository: str, digest: str) -> str:
    return f"{repository}/manifests/{digest}"


def manifest_tag_key(repository: str, tag: str) -> str:
    return f"{repository}/tags/{tag}/manifest"


def blob_key(digest: str) -> str:
    return f"blobs/{digest}"


def _wait_for_retry(retry_state: RetryCallState) -> float:
    """Honour the registry's Retry-After hint, else back off exponentially."""
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    if isinstance(exc, OciRateLimited) and exc.retry_after is not None:
        return float(exc.retry_after)
    return _backoff(retry_state)


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(f"Retrying after attempt {retry_state.attempt_number} failed: {exc}")


class Registry:
    """
    Cache-aside access to one registry.

    Args:
        client: Protocol client bound to the registry
        cache: Two-tier cache, or None to always hit the network
        credentials: Session identity; defaults to the client's
        retry_attempts: Total attempts for network calls that fail with a
                        rate-limit, network or server error (1 = no retry)
        sleep: Sleep function used between retries
    """

    def __init__(
        self,
        client: RegistryClient,
        cache: Optional[Cache] = None,
        credentials: Optional[Credentials] = None,
        *,
        retry_attempts: int = 1,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if retry_attempts < 1:
            raise ValueError(f"retry_attempts must be at least 1, got {retry_attempts}")
        self.client = client
        self.cache = cache
        self.retry_attempts = retry_attempts
        self._sleep = sleep
        self._credentials: Credentials = credentials or client.credentials
        self.client.set_credentials(self._credentials)

    @property
    def registry_url(self) -> str:
        return self.client.registry_url

    @property
    def dockerhub_compat(self) -> bool:
        return self.client.config.dockerhub_compat

    @property
    def credentials(self) -> Credentials:
        return self._credentials

    def set_credentials(self, credentials: Credentials) -> None:
        """Replace the session identity; cached data is left as is."""
        self._credentials = credentials
        self.client.set_credentials(credentials)

    def clear_credentials(self) -> None:
        self.set_credentials(Anonymous())

    def repository_path(self, reference: Reference) -> str:
        """Repository path used for both the URL and the cache keys."""
        return reference.repository_for_registry(self.dockerhub_compat)

    def check_version(self) -> RegistryVersion:
        return self._call(self.client.check_version)

    def list_repositories(self) -> List[str]:
        """All repositories in the registry (cached under ``catalog``)."""
        cached = self._cache_get(CATALOG_KEY)
        if cached is not None:
            return list(_load_json(cached, CATALOG_KEY).get("repositories") or [])

        repositories = self._call(self.client.fetch_catalog)
        self._cache_set(CATALOG_KEY, json.dumps({"repositories": repositories}).encode(), CacheType.CATALOG)
        return repositories

    def list_tags(self, repository: str) -> List[str]:
        """All tags of ``repository`` (cached under ``{repo}/_tags``)."""
        key = tags_key(repository)
        cached = self._cache_get(key)
        if cached is not None:
            return list(_load_json(cached, key).get("tags") or [])

        tags = self._call(self.client.fetch_tags, repository)
        self._cache_set(key, json.dumps({"name": repository, "tags": tags}).encode(), CacheType.TAGS)
        return tags

    def get_manifest(self, reference: Reference) -> Tuple[ManifestOrIndex, str]:
        """
        Manifest or index for a tag or digest reference.

        Returns:
            (parsed document, manifest digest)
        """
        repository = self.repository_path(reference)
        return self.get_repository_manifest(repository, reference.reference)

    def get_repository_manifest(self, repository: str, reference: str) -> Tuple[ManifestOrIndex, str]:
        """
        Manifest or index for ``repository`` as the registry names it.

        ``reference`` is a tag, or a digest when it contains ``:``.
        """
        data, digest = self.get_manifest_bytes(repository, reference)
        return parse_manifest_or_index(data), digest

    def get_manifest_bytes(self, repository: str, reference: str) -> Tuple[bytes, str]:
        is_digest = ":" in reference
        if is_digest:
            Digest.parse(reference)
            key = manifest_digest_key(repository, reference)
        else:
            key = manifest_tag_key(repository, reference)

        cached = self._cache_get(key)
        if cached is not None:
            digest = reference if is_digest else str(Digest.from_bytes(cached))
            return cached, digest

        data, digest = self._call(self.client.fetch_manifest, repository, reference)
        # Only well-formed documents are cached
        parse_manifest_or_index(data)
        self._cache_set(key, data, CacheType.MANIFEST)
        return data, digest

    def get_blob(self, repository: str, digest: str) -> bytes:
        """Verified blob content (cached globally under ``blobs/{digest}``)."""
        Digest.parse(digest).require_sha256()
        key = blob_key(digest)
        cached = self._cache_get(key)
        if cached is not None:
            return cached

        data = self._call(self.client.fetch_blob, repository, digest)
        self._cache_set(key, data, CacheType.CONFIG)
        return data

    def get_config(self, repository: str, digest: str) -> ImageConfiguration:
        """Image configuration blob, parsed."""
        return ImageConfiguration.from_bytes(self.get_blob(repository, digest))

    def delete_tag(self, reference: Reference) -> str:
        """
        Delete the manifest a tag points at and invalidate stale cache entries.

        The tag is resolved against the registry, not the cache, so the
        manifest deleted is the one the tag currently names.

        Returns:
            The deleted manifest digest

        Raises:
            OciValidationError: If the reference has no tag
        """
        if reference.tag is None:
            raise OciValidationError(f"Reference {reference} has no tag to delete")
        repository = self.repository_path(reference)

        _, digest = self._call(self.client.fetch_manifest, repository, reference.tag)
        self._call(self.client.delete_manifest, repository, digest)
        self.invalidate_tag(repository, reference.tag, digest)
        logger.info(f"Deleted {repository}:{reference.tag} ({digest})")
        return digest

    def delete_manifest(self, repository: str, digest: str) -> None:
        """Delete a manifest by digest and invalidate its cache entries."""
        self._call(self.client.delete_manifest, repository, digest)
        self._cache_delete(manifest_digest_key(repository, digest))
        self._cache_delete(tags_key(repository))
        logger.info(f"Deleted {repository}@{digest}")

    def invalidate_tag(self, repository: str, tag: str, digest: Optional[str] = None) -> None:
        """Drop every cache entry a change to ``repository:tag`` can make stale."""
        self._cache_delete(manifest_tag_key(repository, tag))
        self._cache_delete(tags_key(repository))
        if digest is not None:
            self._cache_delete(manifest_digest_key(repository, digest))

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> Registry:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _call(self, fn: Callable[..., T], *args) -> T:
        """Run a network call under the retry policy."""
        retrying = Retrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=_wait_for_retry,
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=_log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        return retrying(fn, *args)

    def _cache_get(self, key: str) -> Optional[bytes]:
        return self.cache.get(key) if self.cache is not None else None

    def _cache_set(self, key: str, data: bytes, cache_type: CacheType) -> None:
        if self.cache is not None:
            self.cache.set(key, data, cache_type)

    def _cache_delete(self, key: str) -> None:
        if self.cache is not None:
            self.cache.delete(key)


def _load_json(data: bytes, key: str) -> dict:
    try:
        value = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise OciValidationError(f"Failed to decode cached value {key!r}: {e}") from e
    if not isinstance(value, dict):
        raise OciValidationError(f"Failed to decode cached value {key!r}: expected an object")
    return value


def open_registry(
    registry_url: str,
    *,
    cache_dir: Optional[Path] = None,
    credentials: Optional[Credentials] = None,
    settings: Optional[Settings] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> Registry:
    """
    Build a client, cache and orchestrator for one registry.

    ``cache_dir`` is used as given; with ``settings.cache_enabled`` false
    (or no directory) the registry runs uncached. Worker threads call this
    once each so they never share a client or an in-memory cache.
    """
    settings = settings or Settings()
    config = ClientConfig(
        timeout_s=settings.http_timeout_s,
        dockerhub_compat=settings.dockerhub_compat,
        verify_tls=not _is_insecure(settings, registry_url),
    )
    client = RegistryClient(registry_url, credentials, config=config, transport=transport)

    cache = None
    if cache_dir is not None and settings.cache_enabled:
        cache = Cache(
            cache_dir,
            settings.ttl,
            settings.limits.memory_entries,
            max_disk_entries=settings.limits.disk_entries,
        )
    return Registry(client, cache, credentials, retry_attempts=settings.http_retry + 1)


def _is_insecure(settings: Settings, registry_url: str) -> bool:
    url = normalize_url(registry_url)
    return any(
        entry.insecure and normalize_url(entry.url) == url
        for entry in settings.registries
    )


__all__ = [
    "Registry",
    "open_registry",
    "CATALOG_KEY",
    "tags_key",
    "manifest_digest_key",
    "manifest_tag_key",
    "blob_key",
]
