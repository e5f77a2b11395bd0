"""
In-memory CredentialStore for testing.

Satisfies the same four-operation protocol as the file store, which is
what lets the explorer accept any backend.
"""
from __future__ import annotations

from typing import Dict, List, Optional

from ociscope.auth import Credentials


class InMemoryCredentialStore:
    """Test-only credential store keyed by registry URL."""

    def __init__(self, entries: Optional[Dict[str, Credentials]] = None):
        self.entries: Dict[str, Credentials] = dict(entries or {})

    def store(self, registry: str, credentials: Credentials) -> None:
        self.entries[registry] = credentials

    def get(self, registry: str) -> Optional[Credentials]:
        return self.entries.get(registry)

    def remove(self, registry: str) -> None:
        self.entries.pop(registry, None)

    def list(self) -> List[str]:
        return sorted(self.entries)
