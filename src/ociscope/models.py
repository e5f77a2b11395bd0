"""
OCI document models.

These Pydantic models cover the subset of the OCI image spec the explorer
reads: manifests, indexes (and Docker manifest lists), descriptors,
platforms and image configurations. Unknown fields are ignored so that
vendor extensions never break parsing.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import OciUnsupportedMediaType, OciValidationError
from .media_types import INDEX_TYPES, MANIFEST_TYPES


class _OciModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Platform(_OciModel):
    """Target platform of a manifest inside an index."""
    architecture: str = Field(..., description="CPU architecture (amd64, arm64, ...)")
    os: str = Field(..., description="Operating system (linux, windows, ...)")
    variant: Optional[str] = Field(default=None, description="CPU variant (v7, v8, ...)")
    os_version: Optional[str] = Field(default=None, alias="os.version")

    def __str__(self) -> str:
        label = f"{self.os}/{self.architecture}"
        return f"{label}/{self.variant}" if self.variant else label


class Descriptor(_OciModel):
    """Content descriptor pointing at a blob or manifest."""
    media_type: Optional[str] = Field(default=None, alias="mediaType")
    digest: str = Field(..., description="Content digest (sha256:...)")
    size: int = Field(default=0, description="Content size in bytes")
    platform: Optional[Platform] = Field(default=None)
    annotations: Optional[Dict[str, str]] = Field(default=None)


class ImageManifest(_OciModel):
    """Single-platform image manifest."""
    schema_version: int = Field(default=2, alias="schemaVersion")
    media_type: Optional[str] = Field(default=None, alias="mediaType")
    config: Descriptor
    layers: List[Descriptor] = Field(default_factory=list)
    annotations: Optional[Dict[str, str]] = Field(default=None)

    def total_size(self) -> int:
        """Sum of layer sizes."""
        return sum(layer.size for layer in self.layers)


class ImageIndex(_OciModel):
    """Multi-platform index (OCI index or Docker manifest list)."""
    schema_version: int = Field(default=2, alias="schemaVersion")
    media_type: Optional[str] = Field(default=None, alias="mediaType")
    manifests: List[Descriptor] = Field(default_factory=list)
    annotations: Optional[Dict[str, str]] = Field(default=None)

    def platforms(self) -> Iterator[Tuple[Platform, Descriptor]]:
        """Yield ``(platform, descriptor)`` for entries that declare a platform."""
        for descriptor in self.manifests:
            if descriptor.platform is not None:
                yield descriptor.platform, descriptor

    def find_platform(self, os: str, architecture: str) -> Optional[Descriptor]:
        for platform, descriptor in self.platforms():
            if platform.os == os and platform.architecture == architecture:
                return descriptor
        return None

    def total_size(self) -> int:
        """Sum of the referenced manifest sizes."""
        return sum(m.size for m in self.manifests)


class RootFs(_OciModel):
    type: str = Field(default="layers")
    diff_ids: List[str] = Field(default_factory=list)


class ImageConfiguration(_OciModel):
    """Image configuration blob (only the fields the explorer displays)."""
    created: Optional[str] = Field(default=None, description="RFC 3339 creation time")
    author: Optional[str] = Field(default=None)
    architecture: str = Field(default="unknown")
    os: str = Field(default="unknown")
    variant: Optional[str] = Field(default=None)
    rootfs: Optional[RootFs] = Field(default=None)

    @classmethod
    def from_bytes(cls, data: bytes) -> ImageConfiguration:
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise OciValidationError(f"Invalid image configuration: {e}") from e

    def created_at(self) -> Optional[datetime]:
        """Creation time as an aware UTC datetime, or None."""
        return parse_timestamp(self.created)

    def platform(self) -> str:
        return f"{self.os}/{self.architecture}"


ManifestOrIndex = Union[ImageManifest, ImageIndex]


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp; None for missing or malformed values."""
    if not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    # fromisoformat handles at most microseconds
    if "." in text:
        head, _, tail = text.partition(".")
        digits = ""
        while tail and tail[0].isdigit():
            digits, tail = digits + tail[0], tail[1:]
        text = f"{head}.{digits[:6]}{tail}" if digits else head + tail
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return None
    return parsed.astimezone(timezone.utc)


def parse_manifest_or_index(data: bytes) -> ManifestOrIndex:
    """
    Parse manifest bytes into an ImageManifest or ImageIndex.

    The declared ``mediaType`` decides when it is a known type. Otherwise
    the structure decides: a ``manifests`` array means index, ``layers`` or
    ``config`` means manifest.

    Raises:
        OciValidationError: If the bytes are not JSON or fit neither shape
    """
    try:
        document = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise OciValidationError(f"Invalid JSON in manifest: {e}") from e

    if not isinstance(document, dict):
        raise OciUnsupportedMediaType("Manifest is not a JSON object")

    media_type = document.get("mediaType")
    if media_type in INDEX_TYPES:
        model = ImageIndex
    elif media_type in MANIFEST_TYPES:
        model = ImageManifest
    elif isinstance(document.get("manifests"), list):
        model = ImageIndex
    elif "layers" in document or "config" in document:
        model = ImageManifest
    else:
        raise OciUnsupportedMediaType(
            f"Unsupported manifest media type: {media_type}. "
            "Document has neither 'manifests' nor 'layers'/'config'"
        )

    try:
        return model.model_validate(document)
    except ValidationError as e:
        raise OciValidationError(f"Invalid {model.__name__}: {e}") from e


__all__ = [
    "Platform",
    "Descriptor",
    "ImageManifest",
    "ImageIndex",
    "ImageConfiguration",
    "ManifestOrIndex",
    "parse_manifest_or_index",
    "parse_timestamp",
]
