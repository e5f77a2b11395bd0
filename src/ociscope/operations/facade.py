"""
Explorer facade - application service layer.

Provides one object per registry session that the CLI (or any other
front end) talks to: connectivity check, login/logout, listing, manifest
and blob access, deletion, search, and cache maintenance. Errors bubble up
unchanged for central mapping in ``mappers``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import httpx

from ..auth import Anonymous, CredentialStore, Credentials, FileCredentialStore, credentials_path
from ..cache import CacheStats, ClearStats, PruneStats
from ..client import RegistryVersion, normalize_url
from ..errors import OciConfigError, OciDeletionDisabled, OciError, OciValidationError
from ..metadata import (
    RepositoryItem,
    RepositoryMetadataFetcher,
    TagInfo,
    TagMetadataFetcher,
    filter_tags_by_age,
)
from ..models import ImageConfiguration, ImageIndex, ManifestOrIndex
from ..reference import Reference
from ..registry import Registry, open_registry
from ..search import SearchResult, search_images, search_repositories, search_tags
from ..settings import Settings, registry_cache_dir

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeletionResult:
    """Outcome of deleting one tag."""
    tag: str
    digest: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Explorer:
    """
    Session facade over one registry.

    Design Notes: Explorer Facade

    The explorer owns the orchestrator (and through it the client, cache
    and credentials) plus a per-session memo of the catalog and tag lists
    used by search. Metadata fan-out builds its own registries on the same
    cache directory, so the explorer keeps what it needs to do that:
    URL, cache directory, settings and transport.
    """

    def __init__(
        self,
        registry: Registry,
        *,
        settings: Optional[Settings] = None,
        cache_dir: Optional[Path] = None,
        credential_store: Optional[CredentialStore] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.registry = registry
        self.settings = settings or Settings()
        self.cache_dir = Path(cache_dir) if cache_dir is not None else None
        self.credential_store = credential_store
        self._transport = transport
        self._repositories: Optional[List[str]] = None
        self._tags: Dict[str, List[str]] = {}

    @classmethod
    def connect(cls, registry_url: str, *, transport: Optional[httpx.BaseTransport] = None) -> Explorer:
        """Uncached, anonymous session."""
        return cls.builder().registry_url(registry_url).with_transport(transport).build()

    @classmethod
    def builder(cls) -> ExplorerBuilder:
        return ExplorerBuilder()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        registry: Optional[str] = None,
        *,
        credential_store: Optional[CredentialStore] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> Explorer:
        """
        Session for a configured registry.

        The cache lives in a per-registry subdirectory of
        ``settings.cache_dir`` and stored credentials are picked up from
        ``credential_store`` (the credentials file by default).

        Raises:
            OciConfigError: If no registry is given or configured
        """
        url = settings.resolve_registry(registry)
        if not url:
            raise OciConfigError(
                "No registry configured. Pass --registry or set OCISCOPE_REGISTRY_URL"
            )
        url = normalize_url(url)
        store = credential_store or FileCredentialStore(credentials_path())
        builder = (
            cls.builder()
            .registry_url(url)
            .with_settings(settings)
            .with_credential_store(store)
            .with_transport(transport)
        )
        if settings.cache_enabled:
            builder = builder.with_cache(registry_cache_dir(settings.cache_dir, url))
        credentials = store.get(url)
        if credentials is not None:
            builder = builder.with_credentials(credentials)
        return builder.build()

    @property
    def registry_url(self) -> str:
        return self.registry.registry_url

    def check(self) -> RegistryVersion:
        return self.registry.check_version()

    def login(self, credentials: Credentials, *, verify: bool = True, persist: bool = False) -> None:
        """
        Switch the session to ``credentials``.

        With ``verify`` the credentials are probed against ``/v2/`` first
        and the previous identity is restored if the probe fails. With
        ``persist`` they are saved to the credential store.
        """
        previous = self.registry.credentials
        self.registry.set_credentials(credentials)
        if verify:
            try:
                self.registry.check_version()
            except OciError:
                self.registry.set_credentials(previous)
                raise
        if persist:
            self._store().store(self.registry_url, credentials)
        logger.info(f"Logged in to {self.registry_url}")

    def logout(self, *, forget: bool = False) -> None:
        """Return to anonymous access; ``forget`` also drops stored credentials."""
        self.registry.clear_credentials()
        if forget:
            self._store().remove(self.registry_url)
        logger.info(f"Logged out of {self.registry_url}")

    def list_repositories(self) -> List[str]:
        repositories = self.registry.list_repositories()
        self._repositories = list(repositories)
        return repositories

    def list_tags(self, repository: str) -> List[str]:
        tags = self.registry.list_tags(repository)
        self._tags[repository] = list(tags)
        return tags

    def get_manifest(self, image: str) -> Tuple[ManifestOrIndex, str]:
        """Manifest or index for an image reference (``repo:tag`` or ``repo@digest``)."""
        return self.registry.get_manifest(self._reference(image))

    def get_config(self, image: str, os: str = "linux", architecture: str = "amd64") -> Optional[ImageConfiguration]:
        """
        Image configuration for ``image``.

        For an index, the ``os``/``architecture`` platform is used; None
        when the index has no such platform.
        """
        reference = self._reference(image)
        repository = self.registry.repository_path(reference)
        document, _ = self.registry.get_manifest(reference)
        if isinstance(document, ImageIndex):
            descriptor = document.find_platform(os, architecture)
            if descriptor is None:
                return None
            document, _ = self.registry.get_repository_manifest(repository, descriptor.digest)
            if isinstance(document, ImageIndex):
                raise OciValidationError(f"Platform entry {descriptor.digest} is itself an index")
        return self.registry.get_config(repository, document.config.digest)

    def get_blob(self, repository: str, digest: str) -> bytes:
        return self.registry.get_blob(repository, digest)

    def delete_tag(self, image: str) -> str:
        """Delete the manifest ``image`` points at; returns its digest."""
        reference = self._reference(image)
        digest = self.registry.delete_tag(reference)
        repository = self.registry.repository_path(reference)
        if repository in self._tags and reference.tag in self._tags[repository]:
            self._tags[repository].remove(reference.tag)
        return digest

    def delete_tags(self, repository: str, tags: List[str]) -> List[DeletionResult]:
        """Delete several tags; one failure does not stop the rest."""
        results = []
        try:
            for tag in tags:
                try:
                    digest = self.registry.delete_tag(
                        Reference(registry=self.registry_url, repository=repository, tag=tag)
                    )
                except OciDeletionDisabled:
                    raise
                except OciError as e:
                    logger.warning(f"Failed to delete {repository}:{tag}: {e}")
                    results.append(DeletionResult(tag=tag, error=str(e)))
                    continue
                results.append(DeletionResult(tag=tag, digest=digest))
        finally:
            self._tags.pop(repository, None)
        return results

    def tag_metadata(self, repository: str, resolve_platform_timestamps: bool = False) -> List[TagInfo]:
        """Per-tag size, platform and creation time, newest first."""
        return self._tag_fetcher().fetch_tags(repository, resolve_platform_timestamps)

    def repository_metadata(self, progress_callback=None) -> List[RepositoryItem]:
        return self._repository_fetcher().fetch_repositories(progress_callback)

    def tags_older_than(self, repository: str, days: int) -> List[TagInfo]:
        """Tags whose newest platform was created at least ``days`` days ago."""
        infos = self.tag_metadata(repository, resolve_platform_timestamps=True)
        return filter_tags_by_age(infos, days)

    def search_repositories(self, query: str) -> List[SearchResult]:
        if self._repositories is None:
            self.list_repositories()
        return search_repositories(query, self._repositories or [])

    def search_tags(self, repository: str, query: str) -> List[SearchResult]:
        if repository not in self._tags:
            self.list_tags(repository)
        return search_tags(query, self._tags[repository])

    def search_images(self, query: str) -> List[SearchResult]:
        """
        Search ``repo:tag`` across the registry.

        Repositories whose tags cannot be listed are left out of the
        results rather than failing the search.
        """
        if self._repositories is None:
            self.list_repositories()
        repositories = self._repositories or []
        for repository in repositories:
            if repository in self._tags:
                continue
            try:
                self.list_tags(repository)
            except OciError as e:
                logger.warning(f"Skipping {repository} in search: {e}")
        return search_images(query, repositories, self._tags)

    def prune_cache(self) -> PruneStats:
        return self._cache().prune()

    def clear_cache(self) -> ClearStats:
        stats = self._cache().clear()
        self._repositories = None
        self._tags.clear()
        return stats

    def cache_stats(self) -> CacheStats:
        return self._cache().stats()

    def close(self) -> None:
        self.registry.close()

    def __enter__(self) -> Explorer:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _reference(self, image: str) -> Reference:
        return Reference.parse(image)

    def _cache(self):
        if self.registry.cache is None:
            raise OciConfigError("Cache is not enabled for this session")
        return self.registry.cache

    def _store(self) -> CredentialStore:
        if self.credential_store is None:
            raise OciConfigError("No credential store configured")
        return self.credential_store

    def _fetcher_args(self):
        credentials = self.registry.credentials
        return dict(
            registry_url=self.registry_url,
            cache_dir=self.cache_dir,
            credentials=None if isinstance(credentials, Anonymous) else credentials,
            concurrency=self.settings.concurrency,
            settings=self.settings,
            transport=self._transport,
        )

    def _tag_fetcher(self) -> TagMetadataFetcher:
        return TagMetadataFetcher(**self._fetcher_args())

    def _repository_fetcher(self) -> RepositoryMetadataFetcher:
        return RepositoryMetadataFetcher(**self._fetcher_args())


class ExplorerBuilder:
    """Step-by-step construction of an Explorer."""

    def __init__(self):
        self._registry_url: Optional[str] = None
        self._cache_dir: Optional[Path] = None
        self._settings: Optional[Settings] = None
        self._credentials: Optional[Credentials] = None
        self._credential_store: Optional[CredentialStore] = None
        self._transport: Optional[httpx.BaseTransport] = None

    def registry_url(self, url: str) -> ExplorerBuilder:
        self._registry_url = url
        return self

    def with_cache(self, cache_dir: Path) -> ExplorerBuilder:
        self._cache_dir = Path(cache_dir)
        return self

    def with_settings(self, settings: Settings) -> ExplorerBuilder:
        self._settings = settings
        return self

    def with_credentials(self, credentials: Credentials) -> ExplorerBuilder:
        self._credentials = credentials
        return self

    def with_credential_store(self, store: CredentialStore) -> ExplorerBuilder:
        self._credential_store = store
        return self

    def with_transport(self, transport: Optional[httpx.BaseTransport]) -> ExplorerBuilder:
        self._transport = transport
        return self

    def build(self) -> Explorer:
        """
        Raises:
            OciValidationError: If no registry URL was given
        """
        if not self._registry_url:
            raise OciValidationError("Registry URL is required")
        settings = self._settings or Settings()
        registry = open_registry(
            self._registry_url,
            cache_dir=self._cache_dir,
            credentials=self._credentials,
            settings=settings,
            transport=self._transport,
        )
        return Explorer(
            registry,
            settings=settings,
            cache_dir=self._cache_dir if registry.cache is not None else None,
            credential_store=self._credential_store,
            transport=self._transport,
        )


__all__ = ["Explorer", "ExplorerBuilder", "DeletionResult"]
