"""
ociscope CLI

Thin Typer front end over the Explorer facade:
- check: Verify the registry answers the v2 API
- repos: List repositories with tag counts, sizes and update times
- tags: List tags of a repository with metadata
- inspect: Show manifest or index details for an image
- rm: Delete a tag, or every tag older than N days
- search: Fuzzy search repositories or repo:tag images
- login/logout: Manage stored credentials
- cache stats|prune|clear: Maintain the local cache
"""
from __future__ import annotations

import logging
import typer
from typing import Optional

from .auth import basic, bearer
from .cli_context import CLIContext
from .errors import OciValidationError
from .models import ImageIndex
from .operations import run_and_exit
from .operations.printers import (
    print_cache_stats, print_clear_stats, print_deletion_plan, print_deletion_results,
    print_manifest, print_prune_stats, print_repositories, print_search_results,
    print_success, print_tags, print_version,
)
from .reference import Reference

app = typer.Typer(name="ociscope", help="Explore and maintain OCI container registries")
cache_app = typer.Typer(name="cache", help="Inspect and maintain the local cache")
app.add_typer(cache_app, name="cache")


@app.callback()
def _root(
    ctx: typer.Context,
    registry: Optional[str] = typer.Option(
        None, "--registry", "-r", help="Registry name from the config file, or a registry URL"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """Explore and maintain OCI container registries."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = run_and_exit(lambda: CLIContext.from_env(registry))
    ctx.call_on_close(ctx.obj.close)


def _context(ctx: typer.Context) -> CLIContext:
    return ctx.obj


@app.command()
def check(ctx: typer.Context) -> None:
    """Check that the registry is reachable and speaks the v2 API."""

    def _check() -> None:
        explorer = _context(ctx).explorer
        print_version(explorer.registry_url, explorer.check())

    run_and_exit(_check)


@app.command()
def repos(ctx: typer.Context) -> None:
    """List repositories in the registry catalog."""

    def _repos() -> None:
        print_repositories(_context(ctx).explorer.repository_metadata())

    run_and_exit(_repos)


@app.command()
def tags(
    ctx: typer.Context,
    repository: str = typer.Argument(..., help="Repository name"),
    platform_times: bool = typer.Option(
        False, "--platform-times", help="Use the newest platform creation time for multi-platform tags"
    ),
) -> None:
    """List tags of a repository, newest first."""

    def _tags() -> None:
        infos = _context(ctx).explorer.tag_metadata(repository, resolve_platform_timestamps=platform_times)
        print_tags(repository, infos)

    run_and_exit(_tags)


@app.command()
def inspect(
    ctx: typer.Context,
    image: str = typer.Argument(..., help="Image reference (repo:tag or repo@digest)"),
    os: str = typer.Option("linux", "--os", help="Platform OS to pick from an index"),
    arch: str = typer.Option("amd64", "--arch", help="Platform architecture to pick from an index"),
) -> None:
    """Show manifest, layers or platforms of an image."""

    def _inspect() -> None:
        explorer = _context(ctx).explorer
        document, digest = explorer.get_manifest(image)
        config = explorer.get_config(image, os=os, architecture=arch)
        if isinstance(document, ImageIndex) and config is None:
            typer.echo(f"No {os}/{arch} entry in index; showing platforms only", err=True)
        print_manifest(image, document, digest, config)

    run_and_exit(_inspect)


@app.command()
def rm(
    ctx: typer.Context,
    image: str = typer.Argument(..., help="Image reference, or a repository with --older-than"),
    older_than: Optional[int] = typer.Option(
        None, "--older-than", min=0, help="Delete every tag created at least N days ago"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be deleted without deleting"),
    force: bool = typer.Option(False, "--force", "-f", help="Do not ask for confirmation"),
) -> None:
    """Delete a tag, or all tags of a repository older than N days."""

    def _rm() -> None:
        explorer = _context(ctx).explorer

        if older_than is None:
            reference = Reference.parse(image)
            if reference.tag is None:
                raise OciValidationError("Deleting by digest is not supported; give repo:tag")
            if dry_run:
                typer.echo(f"Would delete {image}")
                return
            if not force:
                typer.confirm(f"Delete {image}?", abort=True)
            digest = explorer.delete_tag(image)
            print_success(f"Deleted {image} ({digest})")
            return

        if ":" in image or "@" in image:
            raise OciValidationError("--older-than takes a repository name, not an image reference")
        infos = explorer.tags_older_than(image, older_than)
        if not infos:
            typer.echo(f"No tags in {image} older than {older_than} days")
            return
        print_deletion_plan(image, infos, older_than, dry_run)
        if dry_run:
            return
        if not force:
            typer.confirm(f"Delete {len(infos)} tag(s)?", abort=True)
        results = explorer.delete_tags(image, [info.tag for info in infos])
        print_deletion_results(image, results)
        if any(not result.ok for result in results):
            raise typer.Exit(code=3)

    run_and_exit(_rm)


@app.command()
def search(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="Fuzzy query; use repo:tag to search images"),
    repository: Optional[str] = typer.Option(None, "--repo", help="Search tags of this repository only"),
    limit: Optional[int] = typer.Option(20, "--limit", min=1, help="Maximum results to show"),
) -> None:
    """Fuzzy search repositories, tags or images."""

    def _search() -> None:
        explorer = _context(ctx).explorer
        if repository is not None:
            results = explorer.search_tags(repository, query)
        elif ":" in query:
            results = explorer.search_images(query)
        else:
            results = explorer.search_repositories(query)
        print_search_results(results, limit)

    run_and_exit(_search)


@app.command()
def login(
    ctx: typer.Context,
    username: Optional[str] = typer.Option(None, "--username", "-u", help="Registry username"),
    password: Optional[str] = typer.Option(None, "--password", "-p", help="Registry password"),
    token: Optional[str] = typer.Option(None, "--token", help="Bearer token instead of username/password"),
) -> None:
    """Verify credentials against the registry and store them."""

    def _login() -> None:
        if token is not None:
            credentials = bearer(token)
        else:
            user = username or typer.prompt("Username")
            secret = password or typer.prompt("Password", hide_input=True)
            credentials = basic(user, secret)
        explorer = _context(ctx).explorer
        explorer.login(credentials, verify=True, persist=True)
        print_success(f"Logged in to {explorer.registry_url}")

    run_and_exit(_login)


@app.command()
def logout(ctx: typer.Context) -> None:
    """Forget stored credentials for the registry."""

    def _logout() -> None:
        explorer = _context(ctx).explorer
        explorer.logout(forget=True)
        print_success(f"Logged out of {explorer.registry_url}")

    run_and_exit(_logout)


@cache_app.command("stats")
def cache_stats(ctx: typer.Context) -> None:
    """Show cache entry counts and size."""
    run_and_exit(lambda: print_cache_stats(_context(ctx).explorer.cache_stats()))


@cache_app.command("prune")
def cache_prune(ctx: typer.Context) -> None:
    """Remove expired cache entries."""
    run_and_exit(lambda: print_prune_stats(_context(ctx).explorer.prune_cache()))


@cache_app.command("clear")
def cache_clear(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", "-f", help="Do not ask for confirmation"),
) -> None:
    """Remove every cache entry for the registry."""

    def _clear() -> None:
        if not force:
            typer.confirm("Clear the cache?", abort=True)
        print_clear_stats(_context(ctx).explorer.clear_cache())

    run_and_exit(_clear)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
