"""
Error mapping and CLI utilities.

Provides centralized exception-to-exit-code mapping and the CLI command
wrapper so every Typer command reports errors the same way.
"""
from __future__ import annotations

import typer
from typing import Callable, Optional, TypeVar

from ..errors import OciError

T = TypeVar('T')

# Exit codes by error kind
EXIT_CODES = {
    "not_found": 1,
    "validation": 2,
    "network": 3,
    "server": 3,
    "rate_limit": 3,
    "authentication": 4,
    "config": 5,
}

GUIDANCE = {
    "authentication": "Run `ociscope login` to store credentials for this registry.",
    "rate_limit": "The registry is rate limiting requests; wait and try again.",
    "network": "Check the registry URL and that the registry is reachable.",
    "config": "Check the configuration and credentials files.",
}


def exit_code_for(exc: BaseException) -> int:
    """
    Map exception to standardized exit code.

    Returns:
    - 1: Not found
    - 2: Validation error (including ValueError from settings)
    - 3: Network, server or rate-limit error, or unknown error
    - 4: Authentication error
    - 5: Configuration error

    Args:
        exc: Exception to map

    Returns:
        Exit code (1-5, with 3 as fallback for unknown exceptions)
    """
    if isinstance(exc, OciError):
        return EXIT_CODES.get(exc.kind, 3)
    if isinstance(exc, ValueError):
        return 2
    return 3


def guidance_for(exc: BaseException) -> Optional[str]:
    """Hint shown under the error message, if any."""
    if isinstance(exc, OciError):
        if exc.kind == "rate_limit" and getattr(exc, "retry_after", None) is not None:
            return f"The registry asked to retry after {exc.retry_after} seconds."
        return GUIDANCE.get(exc.kind)
    return None


def run_and_exit(func: Callable[[], T]) -> T:
    """
    Unified error wrapper for CLI commands.

    Executes the given function and maps any exceptions to appropriate
    exit codes using typer.Exit, after printing the message and guidance.

    Args:
        func: Function to execute

    Returns:
        Function result if successful

    Raises:
        typer.Exit: With appropriate exit code if function raises exception
    """
    try:
        return func()
    except (typer.Exit, typer.Abort):
        raise
    except Exception as e:
        from .printers import print_error
        print_error(str(e), guidance_for(e))
        raise typer.Exit(code=exit_code_for(e)) from e
