"""
Parallel tag and repository metadata.

Listing a repository with sizes, platforms and creation times takes one
manifest fetch plus one config blob fetch per tag. Those fetches run on a
bounded ``ThreadPoolExecutor``; each task opens its own client, cache and
registry over the shared cache directory, so workers share nothing but
the files on disk.

A failing tag never aborts the batch: it degrades to a placeholder row
(``N/A`` digest and size). Results are re-sorted after the batch
completes; workers finish in any order.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

import httpx

from .auth import Credentials
from .errors import OciError
from .formatting import PLACEHOLDER, format_platforms, format_size, format_timestamp, short_digest
from .models import ImageIndex, ImageManifest
from .registry import Registry, open_registry
from .settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 8

RegistryFactory = Callable[[], Registry]


@dataclass(frozen=True)
class TagInfo:
    """Metadata for one tag, with display helpers for tables."""
    tag: str
    digest: str = PLACEHOLDER
    size: int = 0
    created_timestamp: Optional[datetime] = None
    platforms: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def placeholder(cls, tag: str) -> TagInfo:
        return cls(tag=tag)

    @property
    def is_placeholder(self) -> bool:
        return self.digest == PLACEHOLDER

    @property
    def is_multiplatform(self) -> bool:
        return len(self.platforms) > 1

    @property
    def digest_display(self) -> str:
        return short_digest(self.digest)

    @property
    def size_display(self) -> str:
        return PLACEHOLDER if self.is_placeholder else format_size(self.size)

    @property
    def created_display(self) -> str:
        if self.created_timestamp is None:
            return PLACEHOLDER
        return format_timestamp(self.created_timestamp)

    @property
    def platforms_display(self) -> str:
        return format_platforms(list(self.platforms))


@dataclass(frozen=True)
class RepositoryItem:
    """Summary row for one repository."""
    name: str
    tag_count: int = 0
    total_size: int = 0
    last_updated: Optional[datetime] = None

    @property
    def size_display(self) -> str:
        return PLACEHOLDER if self.total_size == 0 else format_size(self.total_size)

    @property
    def last_updated_display(self) -> str:
        if self.last_updated is None:
            return PLACEHOLDER
        return format_timestamp(self.last_updated)


def sort_tag_infos(infos: Sequence[TagInfo]) -> List[TagInfo]:
    """Newest first; tags without a timestamp last, by name."""
    def key(info: TagInfo):
        ts = info.created_timestamp
        return (ts is None, -ts.timestamp() if ts is not None else 0.0, info.tag)
    return sorted(infos, key=key)


def filter_tags_by_age(
    tags: Sequence[TagInfo],
    days: int,
    now: Optional[datetime] = None,
) -> List[TagInfo]:
    """
    Keep tags created at least ``days`` days ago.

    A tag exactly ``days`` old is included. Tags without a timestamp are
    never selected, so an age-based delete cannot remove them blind.
    """
    now = now or datetime.now(timezone.utc)
    threshold = now - timedelta(days=days)
    selected = []
    for info in tags:
        if info.created_timestamp is None:
            logger.warning(f"Tag '{info.tag}' has no timestamp, skipping")
            continue
        if info.created_timestamp <= threshold:
            selected.append(info)
    return selected


def _platform_timestamp(
    registry_factory: RegistryFactory,
    repository: str,
    digest: str,
) -> Optional[datetime]:
    try:
        with registry_factory() as registry:
            document, _ = registry.get_repository_manifest(repository, digest)
            if not isinstance(document, ImageManifest):
                return None
            return registry.get_config(repository, document.config.digest).created_at()
    except OciError as e:
        logger.warning(f"Failed to resolve timestamp for {repository}@{digest}: {e}")
        return None


def resolve_multiplatform_timestamp(
    index: ImageIndex,
    repository: str,
    registry_factory: RegistryFactory,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> Optional[datetime]:
    """
    Newest creation time across every platform of an index.

    Each platform manifest is fetched by digest, with its config, in
    parallel. Using the newest time means an age policy only selects an
    image once every platform variant is old enough.
    """
    digests = [descriptor.digest for descriptor in index.manifests]
    if not digests:
        return None

    workers = max(1, min(concurrency, len(digests)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = pool.map(lambda d: _platform_timestamp(registry_factory, repository, d), digests)
        timestamps = [ts for ts in results if ts is not None]
    return max(timestamps, default=None)


class _Fetcher:
    def __init__(
        self,
        registry_url: str,
        cache_dir: Optional[Path],
        credentials: Optional[Credentials] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if concurrency <= 0:
            raise ValueError(f"concurrency must be positive, got {concurrency}")
        self.registry_url = registry_url
        self.cache_dir = Path(cache_dir) if cache_dir is not None else None
        self.credentials = credentials
        self.concurrency = concurrency
        self.settings = settings
        self._transport = transport

    def open_registry(self) -> Registry:
        """A fresh registry for the calling thread."""
        return open_registry(
            self.registry_url,
            cache_dir=self.cache_dir,
            credentials=self.credentials,
            settings=self.settings,
            transport=self._transport,
        )

    def _workers(self, count: int) -> int:
        return max(1, min(self.concurrency, count))


class TagMetadataFetcher(_Fetcher):
    """
    Fetch per-tag metadata for a repository in parallel.

    Example:
        >>> fetcher = TagMetadataFetcher("localhost:5000", Path("/tmp/cache"))
        >>> for info in fetcher.fetch_tags("alpine"):
        ...     print(info.tag, info.size_display, info.created_display)
    """

    def fetch_tags(self, repository: str, resolve_platform_timestamps: bool = False) -> List[TagInfo]:
        """
        Metadata for every tag of ``repository``, newest first.

        Args:
            repository: Repository name as listed by the registry
            resolve_platform_timestamps: For indexes, fetch every platform's
                config to find the newest creation time

        Raises:
            OciError: If the tag list itself cannot be fetched
        """
        with self.open_registry() as registry:
            tags = registry.list_tags(repository)

        if not tags:
            return []

        logger.debug(f"Fetching metadata for {len(tags)} tags of {repository}")
        with ThreadPoolExecutor(max_workers=self._workers(len(tags))) as pool:
            infos = list(pool.map(
                lambda tag: self._fetch_tag(repository, tag, resolve_platform_timestamps),
                tags,
            ))
        return sort_tag_infos(infos)

    def _fetch_tag(self, repository: str, tag: str, resolve_platform_timestamps: bool) -> TagInfo:
        try:
            with self.open_registry() as registry:
                document, digest = registry.get_repository_manifest(repository, tag)

                if isinstance(document, ImageIndex):
                    info = TagInfo(
                        tag=tag,
                        digest=digest,
                        size=document.total_size(),
                        platforms=tuple(f"{p.os}/{p.architecture}" for p, _ in document.platforms()),
                    )
                    if resolve_platform_timestamps:
                        created = resolve_multiplatform_timestamp(
                            document, repository, self.open_registry, self.concurrency
                        )
                        info = replace(info, created_timestamp=created)
                    return info

                info = TagInfo(tag=tag, digest=digest, size=document.total_size())
                try:
                    config = registry.get_config(repository, document.config.digest)
                except OciError as e:
                    logger.warning(f"Failed to fetch config for {repository}:{tag}: {e}")
                    return info
                return replace(
                    info,
                    created_timestamp=config.created_at(),
                    platforms=(config.platform(),),
                )
        except OciError as e:
            logger.warning(f"Failed to fetch manifest for {repository}:{tag}: {e}")
            return TagInfo.placeholder(tag)


class RepositoryMetadataFetcher(_Fetcher):
    """Fetch tag counts, sizes and last-updated times for every repository."""

    def fetch_repositories(self, progress_callback: Optional[Callable[[], None]] = None) -> List[RepositoryItem]:
        """
        Summaries in catalog order.

        Size and date come from the last tag in the registry's tag list.
        ``progress_callback`` is called once per finished repository, from
        worker threads.

        Raises:
            OciError: If the catalog itself cannot be fetched
        """
        with self.open_registry() as registry:
            repositories = registry.list_repositories()

        if not repositories:
            return []

        def work(name: str) -> RepositoryItem:
            item = self._fetch_repository(name)
            if progress_callback is not None:
                progress_callback()
            return item

        with ThreadPoolExecutor(max_workers=self._workers(len(repositories))) as pool:
            return list(pool.map(work, repositories))

    def _fetch_repository(self, name: str) -> RepositoryItem:
        with self.open_registry() as registry:
            try:
                tags = registry.list_tags(name)
            except OciError as e:
                logger.warning(f"Failed to list tags for {name}: {e}")
                return RepositoryItem(name=name)

            if not tags:
                return RepositoryItem(name=name)

            try:
                document, _ = registry.get_repository_manifest(name, tags[-1])
            except OciError as e:
                logger.warning(f"Failed to fetch manifest for {name}:{tags[-1]}: {e}")
                return RepositoryItem(name=name, tag_count=len(tags))

            last_updated = None
            if isinstance(document, ImageManifest):
                try:
                    last_updated = registry.get_config(name, document.config.digest).created_at()
                except OciError as e:
                    logger.warning(f"Failed to fetch config for {name}:{tags[-1]}: {e}")

            return RepositoryItem(
                name=name,
                tag_count=len(tags),
                total_size=document.total_size(),
                last_updated=last_updated,
            )


__all__ = [
    "TagInfo",
    "RepositoryItem",
    "TagMetadataFetcher",
    "RepositoryMetadataFetcher",
    "resolve_multiplatform_timestamp",
    "filter_tags_by_age",
    "sort_tag_infos",
]
