"""
claude-profiles CLI -- store, restore and watch Claude profiles.

A single command with one action flag per operation. Exactly one
action runs per invocation; ``--store`` or ``--restore`` may be
combined with ``--watch`` and run first.

Entry point: claude_profiles.cli:main
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click

from .. import __version__
from ..config import load_config
from ..engine import ProfileEngine
from ..errors import ProfileError
from ..log import LogContext, default_log_path, setup_logging
from ..models import SnapshotOptions
from ._common import console, profiles_table, render_error, show_source_tree

EXAMPLES = """\b
Examples:
  claude-profiles --list
  claude-profiles --store work
  claude-profiles --store work --skip-projects
  claude-profiles --restore personal
  claude-profiles --delete old-profile
  claude-profiles --verify work
  claude-profiles --watch work --verbose
  claude-profiles --restore work --watch work
  claude-profiles --store work --log
"""


def check_actions(
    list_: bool,
    store: Optional[str],
    restore: Optional[str],
    delete: Optional[str],
    verify: Optional[str],
    watch: Optional[str],
) -> list[str]:
    """Validate the action flags.

    Returns:
        Names of the selected actions.

    Raises:
        click.UsageError: If no action, or an unsupported combination.
    """
    chosen = [
        name for name, value in (
            ("list", list_),
            ("store", store),
            ("restore", restore),
            ("delete", delete),
            ("verify", verify),
            ("watch", watch),
        )
        if value
    ]
    if not chosen:
        raise click.UsageError(
            "Please specify an action: --list, --store, --restore, --delete, --verify or --watch"
        )
    if len(chosen) == 1:
        return chosen
    if len(chosen) == 2 and "watch" in chosen and ("store" in chosen or "restore" in chosen):
        return chosen
    raise click.UsageError(
        "Only one action can be specified at a time "
        "(--store or --restore may be combined with --watch)"
    )


def _list(engine: ProfileEngine, log: LogContext) -> None:
    log.info("Fetching saved profiles...")
    names = engine.list_profiles(log)
    if not names:
        log.info("No profiles saved yet")
        log.info("Use --store <name> to save your current Claude configuration")
        return
    console.print(profiles_table(names, engine.store.name))
    log.logger.info("Profiles: %s", ", ".join(names))


@click.command(epilog=EXAMPLES, context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="claude-profiles")
@click.option("--list", "-l", "list_", is_flag=True, help="List all saved profiles.")
@click.option("--store", "-s", "--save", "store", metavar="NAME",
              help="Save current Claude configuration as a profile.")
@click.option("--restore", "-r", "restore", metavar="NAME",
              help="Restore a saved profile.")
@click.option("--delete", "-d", "delete", metavar="NAME", help="Delete a saved profile.")
@click.option("--verify", "-v", "verify", metavar="NAME",
              help="Verify a profile's integrity without restoring it.")
@click.option("--watch", "-w", "watch", metavar="NAME",
              help="Watch for changes and auto-save to a profile.")
@click.option("--verbose", is_flag=True, help="Show debug output.")
@click.option("--log", "log_path", is_flag=False, flag_value="", default=None,
              metavar="[PATH]", help="Write a detailed log file (default: timestamped name).")
@click.option("--skip-projects", is_flag=True,
              help="Exclude the projects folder from backups (reduces size).")
@click.option("--debounce-delay", type=click.IntRange(min=0), default=None, metavar="MS",
              help="Debounce delay for watch mode in milliseconds (default 2000).")
@click.option("--config", "config_path", default=None,
              type=click.Path(dir_okay=False, path_type=Path),
              help="Config file (default: ~/.config/claude-profiles/config.yaml).")
def main(
    list_: bool,
    store: Optional[str],
    restore: Optional[str],
    delete: Optional[str],
    verify: Optional[str],
    watch: Optional[str],
    verbose: bool,
    log_path: Optional[str],
    skip_projects: bool,
    debounce_delay: Optional[int],
    config_path: Optional[Path],
):
    """Claude Profiles -- store and restore Claude configurations via GitHub Gists."""
    chosen = check_actions(list_, store, restore, delete, verify, watch)

    log_file = None
    if log_path is not None:
        log_file = Path(log_path) if log_path else default_log_path()
    log = setup_logging(verbose=verbose, log_file=log_file, console=console)

    config = load_config(config_path)
    options = SnapshotOptions(exclude_subtree=skip_projects)
    log.debug(f"Actions: {', '.join(chosen)}; home: {config.home_path}")

    try:
        engine = ProfileEngine(config, log=log)

        if list_:
            _list(engine, log)
        elif delete:
            engine.delete(delete, log)
        elif verify:
            engine.verify(verify, log)

        if store:
            show_source_tree(config, options, log)
            engine.store_profile(store, options, log)
        elif restore:
            result = engine.restore(restore, options, log)
            for warning in result["warnings"]:
                log.debug(f"Restore warning: {warning}")
            log.info("You may need to restart Claude for changes to take effect")

        if watch:
            if not store:
                show_source_tree(config, options, log)
            debounce = debounce_delay / 1000 if debounce_delay is not None else None
            outcome = engine.watch(watch, options, debounce_seconds=debounce, log=log)
            if outcome["fatal"]:
                raise SystemExit(1)
    except ProfileError as exc:
        render_error(exc, log)
        raise SystemExit(1)
