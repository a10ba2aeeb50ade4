"""Shared utilities for the CLI.

Provides the Rich console instance, error rendering, and the
size tree shown before a store.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from ..config import ProfilesConfig
from ..errors import (
    AuthError,
    IntegrityError,
    NotFoundError,
    ProfileError,
    RemoteStoreError,
    SizeExceededError,
)
from ..log import LogContext
from ..models import AuthStatus, SnapshotOptions
from ..sizeguard import format_bytes
from ..snapshot import SizeNode, directory_sizes

console = Console()


def auth_table(status: AuthStatus) -> Table:
    """Summarize ``gh auth status`` for an auth failure."""
    table = Table(title="GitHub authentication", show_header=False, box=None)
    table.add_column("Field", style="bold")
    table.add_column("Value")

    table.add_row(
        "Logged in",
        "[green]yes[/]" if status.authenticated else "[red]no[/]",
    )
    table.add_row("Account", escape(status.account or "unknown"))
    table.add_row("Protocol", escape(status.protocol or "unknown"))
    table.add_row("Token", escape(status.token or "unknown"))
    table.add_row("Scopes", escape(", ".join(status.scopes) or "none"))
    table.add_row(
        "Gist scope",
        "[green]present[/]" if status.has_gist_scope else "[red]MISSING[/]",
    )
    return table


def render_error(exc: ProfileError, log: LogContext) -> None:
    """Print a ProfileError with everything attached to it."""
    log.error(f"Error: {exc.message}")

    if isinstance(exc, IntegrityError) and exc.issues:
        log.error("Issues found:")
        for issue in exc.issues:
            log.error(f"   - {issue}")

    if isinstance(exc, NotFoundError):
        log.error("Available profiles:")
        if exc.available:
            for name in exc.available:
                log.error(f"   - {name}")
        else:
            log.error("   (no profiles found)")

    if isinstance(exc, SizeExceededError):
        log.debug(
            f"raw={exc.raw_size} encoded={exc.encoded_size} limit={exc.limit} "
            f"subtree_excluded={exc.subtree_excluded}"
        )

    if isinstance(exc, AuthError) and exc.auth_status is not None:
        log.console.print(auth_table(exc.auth_status))
        log.logger.error("Auth status:\n%s", exc.auth_status.raw_output)

    if isinstance(exc, RemoteStoreError) and exc.detail:
        log.debug(f"Details: {exc.detail.strip()}")

    for hint in exc.hints:
        log.warn(f"   {hint}")


def size_tree(node: SizeNode, label: Optional[str] = None) -> Tree:
    """Render a SizeNode as a Rich tree, directories first by size."""
    tree = Tree(f"[bold]{escape(label or node.name)}[/] [dim]{format_bytes(node.size)}[/]")
    _fill(tree, node)
    return tree


def _fill(tree: Tree, node: SizeNode) -> None:
    children = sorted(node.children, key=lambda c: (not c.is_dir, -c.size, c.name))
    for child in children:
        if child.is_dir:
            branch = tree.add(
                f"[cyan]{escape(child.name)}/[/] [dim]{format_bytes(child.size)}[/]"
            )
            _fill(branch, child)
        else:
            tree.add(f"{escape(child.name)} [dim]{format_bytes(child.size)}[/]")


def show_source_tree(
    config: ProfilesConfig, options: SnapshotOptions, log: LogContext
) -> None:
    """Print the size tree of every directory source entry."""
    for entry in config.sources:
        path: Path = config.expand(entry.source_path)
        if not path.is_dir():
            continue
        skip = config.excluded_subtree if options.for_entry(entry).exclude_subtree else None
        node = directory_sizes(path, subtree_name=skip)
        note = f" (excluding {config.excluded_subtree})" if skip else ""
        log.logger.info("Directory %s: %s%s", entry.source_path, format_bytes(node.size), note)
        if log.interactive:
            log.console.print(Panel(
                size_tree(node, entry.source_path),
                title=f"Directory structure and sizes{note}",
                border_style="dim",
            ))


def profiles_table(names: list[str], store_name: str) -> Table:
    table = Table(title=f"Stored profiles ({store_name})")
    table.add_column("Profile", style="cyan")
    for name in names:
        table.add_row(escape(name))
    return table
