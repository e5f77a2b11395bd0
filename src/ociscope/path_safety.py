"""
Path safety utilities for the on-disk cache.

Cache keys map one-to-one onto file paths below the cache root, so every
key is validated before it touches the filesystem.
"""
from __future__ import annotations

from pathlib import Path, PurePosixPath

from .errors import OciValidationError


def safe_cache_key(key: str) -> str:
    """
    Validate a cache key before it is used as a relative path.

    This function enforces the following safety rules:
    - No empty strings or "." (the cache root itself is not an entry)
    - No absolute keys (starting with '/')
    - No parent directory references ('..' anywhere in the key)
    - No backslashes

    Args:
        key: Cache key such as ``alpine/_tags`` or ``blobs/sha256:abc...``

    Returns:
        The key unchanged

    Raises:
        OciValidationError: If the key violates a safety rule

    Examples:
        >>> safe_cache_key("library/alpine/tags/3.19/manifest")
        'library/alpine/tags/3.19/manifest'

        >>> safe_cache_key("../etc/passwd")
        OciValidationError: Invalid cache key: ../etc/passwd
    """
    if not key or key == "." or ".." in key or key.startswith("/") or "\\" in key:
        raise OciValidationError(f"Invalid cache key: {key!r}")
    rel = PurePosixPath(key)
    if rel.is_absolute():
        raise OciValidationError(f"Invalid cache key: {key!r}")
    return key


def key_to_path(root: Path, key: str) -> Path:
    """Resolve a validated key to its file below ``root``."""
    return Path(root).joinpath(*PurePosixPath(safe_cache_key(key)).parts)


__all__ = ["safe_cache_key", "key_to_path"]
