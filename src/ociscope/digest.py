"""
OCI content digests.

A digest is ``algorithm:encoded``, e.g. ``sha256:7173b809...``. Any
well-formed algorithm parses, but only sha256 can be verified.
"""
from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass

from .errors import OciDigestMismatch, OciValidationError

SHA256 = "sha256"

_ALGORITHM_RE = re.compile(r"^[a-z0-9]+(?:[+._-][a-z0-9]+)*$")
_ENCODED_RE = re.compile(r"^[a-zA-Z0-9=_-]+$")
_SHA256_HEX_RE = re.compile(r"^[a-f0-9]{64}$")


@dataclass(frozen=True)
class Digest:
    """
    Content identifier.

    Invariants:
    - algorithm: lowercase, OCI grammar
    - hex: for sha256, exactly 64 lowercase hex characters
    """
    algorithm: str
    hex: str

    @classmethod
    def parse(cls, value: str) -> Digest:
        """
        Parse ``algorithm:hex`` into a Digest.

        Raises:
            OciValidationError: If the string is not a well-formed digest
        """
        if not isinstance(value, str) or ":" not in value:
            raise OciValidationError(f"Invalid digest format: {value!r}")

        algorithm, encoded = value.split(":", 1)
        if not _ALGORITHM_RE.match(algorithm) or not _ENCODED_RE.match(encoded):
            raise OciValidationError(f"Invalid digest format: {value!r}")

        if algorithm == SHA256 and not _SHA256_HEX_RE.match(encoded):
            raise OciValidationError(
                f"Invalid digest format: {value!r} (sha256 needs 64 lowercase hex characters)"
            )

        return cls(algorithm=algorithm, hex=encoded)

    @classmethod
    def from_bytes(cls, data: bytes) -> Digest:
        """Compute the sha256 digest of ``data``."""
        return cls(algorithm=SHA256, hex=hashlib.sha256(data).hexdigest())

    def require_sha256(self) -> None:
        """Reject algorithms the verification path cannot handle."""
        if self.algorithm != SHA256:
            raise OciValidationError(
                f"Unsupported digest algorithm: {self.algorithm}. "
                "Only sha256 is currently supported"
            )

    def verify(self, data: bytes) -> None:
        """
        Check that ``data`` hashes to this digest.

        Raises:
            OciValidationError: If the algorithm is not sha256
            OciDigestMismatch: If the content does not match
        """
        self.require_sha256()
        computed = hashlib.sha256(data).hexdigest()
        if computed != self.hex:
            raise OciDigestMismatch(
                f"Blob digest mismatch: expected {self}, computed sha256:{computed}",
                expected=str(self),
                actual=f"sha256:{computed}",
            )

    def __str__(self) -> str:
        return f"{self.algorithm}:{self.hex}"


__all__ = ["Digest", "SHA256"]
