"""
Human-readable output formatting.

Centralizes all CLI output so commands stay thin. Tables are rendered
with rich; errors go to stderr.
"""
from __future__ import annotations

from typing import List, Optional, Sequence

from rich.console import Console
from rich.table import Table

from ..cache import CacheStats, ClearStats, PruneStats
from ..client import RegistryVersion
from ..formatting import format_size, format_timestamp, short_digest
from ..metadata import RepositoryItem, TagInfo
from ..models import ImageConfiguration, ImageIndex, ManifestOrIndex
from ..search import SearchResult
from .facade import DeletionResult

_console = Console()
_err_console = Console(stderr=True)


def print_error(message: str, guidance: Optional[str] = None) -> None:
    _err_console.print(f"[bold red]Error:[/] {message}", highlight=False)
    if guidance:
        _err_console.print(f"[dim]{guidance}[/]", highlight=False)


def print_success(message: str) -> None:
    _console.print(f"[green]✓[/] {message}", highlight=False)


def print_version(registry_url: str, version: RegistryVersion) -> None:
    api = version.api_version or "unknown"
    print_success(f"{registry_url} is reachable (API version: {api})")


def print_repositories(items: Sequence[RepositoryItem]) -> None:
    """Print repository summaries as a table."""
    if not items:
        _console.print("[dim]No repositories found[/]")
        return

    table = Table(title="Repositories")
    table.add_column("NAME", style="cyan")
    table.add_column("TAGS", justify="right")
    table.add_column("SIZE", justify="right")
    table.add_column("LAST UPDATED")
    for item in items:
        table.add_row(item.name, str(item.tag_count), item.size_display, item.last_updated_display)
    _console.print(table)


def print_tags(repository: str, infos: Sequence[TagInfo]) -> None:
    """Print tag metadata as a table."""
    if not infos:
        _console.print(f"[dim]No tags found for {repository}[/]")
        return

    table = Table(title=repository)
    table.add_column("TAG", style="cyan")
    table.add_column("DIGEST", style="dim")
    table.add_column("SIZE", justify="right")
    table.add_column("CREATED")
    table.add_column("PLATFORM")
    for info in infos:
        table.add_row(info.tag, info.digest_display, info.size_display, info.created_display, info.platforms_display)
    _console.print(table)


def print_manifest(
    image: str,
    document: ManifestOrIndex,
    digest: str,
    config: Optional[ImageConfiguration] = None,
) -> None:
    """
    Print manifest or index details.

    Args:
        image: Reference as given by the user
        document: Parsed manifest or index
        digest: Manifest digest
        config: Image configuration, when available
    """
    _console.print(f"[bold]Image:[/] {image}", highlight=False)
    _console.print(f"[bold]Digest:[/] [dim]{digest}[/]", highlight=False)
    if document.media_type:
        _console.print(f"[bold]Media type:[/] {document.media_type}", highlight=False)
    _console.print(f"[bold]Size:[/] {format_size(document.total_size())}")

    if isinstance(document, ImageIndex):
        table = Table(title="Platforms")
        table.add_column("PLATFORM", style="cyan")
        table.add_column("DIGEST", style="dim")
        table.add_column("SIZE", justify="right")
        for platform, descriptor in document.platforms():
            table.add_row(str(platform), short_digest(descriptor.digest), format_size(descriptor.size))
        _console.print(table)
    else:
        table = Table(title="Layers")
        table.add_column("#", justify="right")
        table.add_column("DIGEST", style="dim")
        table.add_column("SIZE", justify="right")
        for position, layer in enumerate(document.layers, start=1):
            table.add_row(str(position), short_digest(layer.digest), format_size(layer.size))
        _console.print(table)

    if config is not None:
        _console.print(f"[bold]Platform:[/] {config.platform()}", highlight=False)
        created = config.created_at()
        if created is not None:
            _console.print(f"[bold]Created:[/] {created.isoformat()} ({format_timestamp(created)})")


def print_search_results(results: Sequence[SearchResult], limit: Optional[int] = None) -> None:
    if not results:
        _console.print("[dim]No matches[/]")
        return
    shown = results[:limit] if limit else results
    for result in shown:
        _console.print(result.value, highlight=False)
    if limit and len(results) > limit:
        _console.print(f"[dim]... {len(results) - limit} more[/]")


def print_deletion_plan(repository: str, infos: Sequence[TagInfo], older_than: Optional[int], dry_run: bool) -> None:
    """Print the tags that would be (or are about to be) deleted."""
    verb = "Would delete" if dry_run else "Deleting"
    header = f"{verb} {len(infos)} tag(s) from {repository}"
    if older_than is not None:
        header += f" older than {older_than} days"
    _console.print(f"[bold]{header}:[/]", highlight=False)
    for info in infos:
        suffix = f" (created {info.created_display})" if info.created_timestamp else ""
        _console.print(f"  - {info.tag}{suffix}", highlight=False)


def print_deletion_results(repository: str, results: List[DeletionResult]) -> None:
    for result in results:
        if result.ok:
            print_success(f"Deleted {repository}:{result.tag}")
        else:
            print_error(f"Failed to delete {repository}:{result.tag}: {result.error}")


def print_cache_stats(stats: CacheStats) -> None:
    table = Table(title="Cache")
    table.add_column("METRIC", style="cyan")
    table.add_column("VALUE", justify="right")
    table.add_row("Disk entries", str(stats.disk_entries))
    table.add_row("Disk size", format_size(stats.disk_size))
    table.add_row("Memory entries", str(stats.memory_entries))
    _console.print(table)


def print_prune_stats(stats: PruneStats) -> None:
    print_success(f"Removed {stats.removed_files} expired entries ({format_size(stats.reclaimed_space)})")


def print_clear_stats(stats: ClearStats) -> None:
    print_success(f"Removed {stats.removed_files} entries ({format_size(stats.reclaimed_space)})")
