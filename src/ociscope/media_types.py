"""
OCI and Docker media types.

Single source of truth for the manifest media types the client requests
and recognises.
"""
from __future__ import annotations

# Single-platform manifests
OCI_IMAGE_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"

# Multi-platform indexes
OCI_IMAGE_INDEX = "application/vnd.oci.image.index.v1+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"

# Image configuration blobs
OCI_IMAGE_CONFIG = "application/vnd.oci.image.config.v1+json"
DOCKER_CONTAINER_CONFIG = "application/vnd.docker.container.image.v1+json"

MANIFEST_TYPES = frozenset({OCI_IMAGE_MANIFEST, DOCKER_MANIFEST_V2})
INDEX_TYPES = frozenset({OCI_IMAGE_INDEX, DOCKER_MANIFEST_LIST})

# Registries pick the response format from Accept, not from the path
ACCEPTED_MANIFEST_TYPES = [
    OCI_IMAGE_MANIFEST,
    OCI_IMAGE_INDEX,
    DOCKER_MANIFEST_V2,
    DOCKER_MANIFEST_LIST,
]


__all__ = [
    "OCI_IMAGE_MANIFEST",
    "DOCKER_MANIFEST_V2",
    "OCI_IMAGE_INDEX",
    "DOCKER_MANIFEST_LIST",
    "OCI_IMAGE_CONFIG",
    "DOCKER_CONTAINER_CONFIG",
    "MANIFEST_TYPES",
    "INDEX_TYPES",
    "ACCEPTED_MANIFEST_TYPES",
]
