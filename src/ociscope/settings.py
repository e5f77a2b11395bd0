"""
Settings and configuration for ociscope.

Centralizes configuration values and provides validation with fail-fast
behavior. Settings come from an optional YAML file merged over defaults,
then environment variable overrides.

Example ``config.yaml``::

    registry_url: http://localhost:5000
    dockerhub_compat: false
    concurrency: 8
    http:
      timeout: 30
      retry: 0
    cache:
      enabled: true
      dir: ~/.cache/ociscope
      ttl: {catalog: 3600, tags: 1800, manifest: 86400, config: 31536000}
      limits: {memory_entries: 1000, disk_entries: 10000}
    registries:
      current: local
      list:
        - {name: local, url: http://localhost:5000, insecure: true}
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from .errors import OciConfigError

__all__ = [
    "CacheTtl",
    "CacheLimits",
    "RegistryEntry",
    "Settings",
    "load_settings",
    "create_settings_from_env",
    "default_config_path",
    "default_cache_dir",
    "registry_cache_dir",
]


@dataclass(frozen=True)
class CacheTtl:
    """
    Time-to-live per cache type, in seconds.

    Catalog and tags change as images are pushed; manifests resolved by
    tag can be repointed; config blobs are content-addressed and kept for
    a year.
    """
    catalog: int = 3600
    tags: int = 1800
    manifest: int = 86400
    config: int = 31536000

    def __post_init__(self):
        for name in ("catalog", "tags", "manifest", "config"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 0:
                raise ValueError(f"ttl.{name} must be a non-negative integer, got {value!r}")


@dataclass(frozen=True)
class CacheLimits:
    memory_entries: int = 1000
    disk_entries: int = 10000

    def __post_init__(self):
        if self.memory_entries <= 0:
            raise ValueError(f"memory_entries must be positive, got {self.memory_entries}")
        if self.disk_entries <= 0:
            raise ValueError(f"disk_entries must be positive, got {self.disk_entries}")


@dataclass(frozen=True)
class RegistryEntry:
    """A named registry from the configuration file."""
    name: str
    url: str
    insecure: bool = False

    def __post_init__(self):
        if not self.name:
            raise ValueError("registry name is required")
        if not self.url:
            raise ValueError(f"registry {self.name!r} has no url")


def default_config_path() -> Path:
    """``OCISCOPE_CONFIG`` or ``$XDG_CONFIG_HOME/ociscope/config.yaml``."""
    override = os.getenv("OCISCOPE_CONFIG")
    if override:
        return Path(override)
    base = os.getenv("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "ociscope" / "config.yaml"


def default_cache_dir() -> Path:
    base = os.getenv("XDG_CACHE_HOME") or str(Path.home() / ".cache")
    return Path(base) / "ociscope"


@dataclass(frozen=True)
class Settings:
    """
    Configuration settings for ociscope.

    Registry Settings:
        registry_url: Registry to talk to when none is given explicitly
        registries: Named registries from the config file
        default_registry: Name of the registry entry used when registry_url is unset
        dockerhub_compat: Keep the implicit ``library/`` prefix on repository names
        http_timeout_s: HTTP request timeout in seconds
        http_retry: Number of retries for rate-limited/transient failures (0=no retry)

    Cache Settings:
        cache_dir: Root of the on-disk cache (one subdirectory per registry)
        cache_enabled: Disable to always hit the network
        ttl: Per-type TTLs
        limits: In-memory and on-disk entry limits

    Metadata Settings:
        concurrency: Worker count for per-tag/per-repository fan-out
    """
    registry_url: Optional[str] = None
    cache_dir: Path = field(default_factory=default_cache_dir)
    cache_enabled: bool = True
    ttl: CacheTtl = field(default_factory=CacheTtl)
    limits: CacheLimits = field(default_factory=CacheLimits)
    http_timeout_s: float = 30.0
    http_retry: int = 0
    dockerhub_compat: bool = False
    concurrency: int = 8
    registries: Tuple[RegistryEntry, ...] = ()
    default_registry: Optional[str] = None

    def __post_init__(self):
        """Validate settings on construction."""
        if self.registry_url is not None:
            url_pattern = r"^(?:https?://)?[a-zA-Z0-9.-]+(?::[0-9]+)?(?:/.*)?$"
            if not re.match(url_pattern, self.registry_url.strip()):
                raise ValueError(f"Invalid registry_url format: {self.registry_url}")

        if self.http_timeout_s <= 0:
            raise ValueError(f"http_timeout_s must be positive, got {self.http_timeout_s}")

        if self.http_retry < 0:
            raise ValueError(f"http_retry must be non-negative, got {self.http_retry}")

        if self.concurrency <= 0:
            raise ValueError(f"concurrency must be positive, got {self.concurrency}")

        names = [r.name for r in self.registries]
        if len(names) != len(set(names)):
            raise ValueError("registry names must be unique")

        if self.default_registry is not None and self.default_registry not in names:
            raise ValueError(f"default_registry {self.default_registry!r} is not a configured registry")

    def resolve_registry(self, name_or_url: Optional[str] = None) -> Optional[str]:
        """
        Turn a registry name or URL into a URL.

        ``None`` falls back to ``registry_url``, then to the default entry.
        Names of configured registries map to their URL; anything else is
        returned as given.
        """
        if name_or_url is None:
            if self.registry_url:
                return self.registry_url
            name_or_url = self.default_registry
            if name_or_url is None:
                return None

        for entry in self.registries:
            if entry.name == name_or_url:
                return entry.url
        return name_or_url


def registry_cache_dir(base: Path, registry_url: str) -> Path:
    """
    Per-registry cache directory.

    ``http://localhost:5000`` becomes ``<base>/http_localhost_5000`` so that
    registries never share cache keys.
    """
    safe = registry_url.strip().replace("://", "_")
    for ch in ("/", ":", "."):
        safe = safe.replace(ch, "_")
    return Path(base) / safe


def _section(data: Dict[str, Any], key: str, path: Path) -> Dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise OciConfigError(f"Invalid configuration: '{key}' must be a mapping", path=str(path))
    return value


def _settings_from_mapping(data: Dict[str, Any], path: Path) -> Settings:
    http = _section(data, "http", path)
    cache = _section(data, "cache", path)
    registries = _section(data, "registries", path)

    entries = []
    for item in registries.get("list") or []:
        if not isinstance(item, dict):
            raise OciConfigError("Invalid configuration: registry entries must be mappings", path=str(path))
        entries.append(
            RegistryEntry(
                name=str(item.get("name", "")),
                url=str(item.get("url", "")),
                insecure=bool(item.get("insecure", False)),
            )
        )

    kwargs: Dict[str, Any] = {
        "ttl": CacheTtl(**_section(cache, "ttl", path)),
        "limits": CacheLimits(**_section(cache, "limits", path)),
        "registries": tuple(entries),
        "default_registry": registries.get("current"),
    }
    if "registry_url" in data:
        kwargs["registry_url"] = data["registry_url"]
    if "dockerhub_compat" in data:
        kwargs["dockerhub_compat"] = bool(data["dockerhub_compat"])
    if "concurrency" in data:
        kwargs["concurrency"] = int(data["concurrency"])
    if "timeout" in http:
        kwargs["http_timeout_s"] = float(http["timeout"])
    if "retry" in http:
        kwargs["http_retry"] = int(http["retry"])
    if "enabled" in cache:
        kwargs["cache_enabled"] = bool(cache["enabled"])
    if cache.get("dir"):
        kwargs["cache_dir"] = Path(str(cache["dir"])).expanduser()

    return Settings(**kwargs)


def load_settings(path: Optional[Path] = None) -> Settings:
    """
    Load settings from a YAML file merged over defaults.

    Args:
        path: Explicit config file. When None the default location is used
              and a missing file simply yields defaults.

    Raises:
        OciConfigError: If the file cannot be read or parsed, or holds invalid values
    """
    explicit = path is not None
    config_path = Path(path) if explicit else default_config_path()

    if not config_path.exists():
        if explicit:
            raise OciConfigError(f"Configuration file not found: {config_path}", path=str(config_path))
        return Settings()

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise OciConfigError(f"Failed to read configuration: {e}", path=str(config_path)) from e
    except yaml.YAMLError as e:
        raise OciConfigError(f"Failed to parse configuration: {e}", path=str(config_path)) from e

    if not isinstance(data, dict):
        raise OciConfigError("Invalid configuration: top level must be a mapping", path=str(config_path))

    try:
        return _settings_from_mapping(data, config_path)
    except (TypeError, ValueError) as e:
        raise OciConfigError(f"Invalid configuration: {e}", path=str(config_path)) from e


def create_settings_from_env() -> Settings:
    """
    Load settings from the config file and environment variables.

    Environment Variables:
        - OCISCOPE_CONFIG (config file path, optional)
        - OCISCOPE_REGISTRY_URL (optional)
        - OCISCOPE_CACHE_DIR (optional)
        - OCISCOPE_HTTP_TIMEOUT (default: 30.0)
        - OCISCOPE_HTTP_RETRY (default: 0)
        - OCISCOPE_DOCKERHUB_COMPAT (default: false)

    Returns:
        Settings object with validated configuration

    Raises:
        OciConfigError: If the config file or an override is invalid

    Note:
        Creates a fresh Settings instance every time (no caching).
    """
    return _load_settings_impl()


def _load_settings_impl() -> Settings:
    """Internal implementation of settings loading."""
    def str_to_bool(value: str) -> bool:
        return value.lower() in ('true', '1', 'yes', 'on')

    config_env = os.getenv("OCISCOPE_CONFIG")
    settings = load_settings(Path(config_env) if config_env else None)

    overrides: Dict[str, Any] = {}
    registry_url = os.getenv("OCISCOPE_REGISTRY_URL")
    if registry_url:
        overrides["registry_url"] = registry_url
    cache_dir = os.getenv("OCISCOPE_CACHE_DIR")
    if cache_dir:
        overrides["cache_dir"] = Path(cache_dir).expanduser()
    compat = os.getenv("OCISCOPE_DOCKERHUB_COMPAT")
    if compat:
        overrides["dockerhub_compat"] = str_to_bool(compat)

    try:
        timeout = os.getenv("OCISCOPE_HTTP_TIMEOUT")
        if timeout:
            overrides["http_timeout_s"] = float(timeout)
        retry = os.getenv("OCISCOPE_HTTP_RETRY")
        if retry:
            overrides["http_retry"] = int(retry)
        return replace(settings, **overrides) if overrides else settings
    except ValueError as e:
        raise OciConfigError(f"Invalid environment override: {e}") from e
