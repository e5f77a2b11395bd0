"""
CLI Context for managing application dependencies.

Provides a clean way to manage CLI-level dependencies like settings and
the explorer session, avoiding global state.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .operations.facade import Explorer
from .settings import Settings, create_settings_from_env


@dataclass
class CLIContext:
    """
    Shared context for CLI commands.

    Holds the settings and the registry chosen on the command line. The
    explorer is created on first access and reused for the rest of the
    command.
    """
    settings: Settings
    registry: Optional[str] = None
    _explorer: Optional[Explorer] = None

    @classmethod
    def from_env(cls, registry: Optional[str] = None) -> CLIContext:
        """
        Create CLI context from the config file and environment variables.

        Args:
            registry: Registry name or URL from ``--registry``
        """
        settings = create_settings_from_env()
        return cls(settings=settings, registry=registry)

    @property
    def explorer(self) -> Explorer:
        """
        Get or create the explorer (lazy initialization).

        Returns:
            Explorer bound to the selected registry
        """
        if self._explorer is None:
            self._explorer = Explorer.from_settings(self.settings, self.registry)
        return self._explorer

    def close(self) -> None:
        if self._explorer is not None:
            self._explorer.close()
            self._explorer = None
