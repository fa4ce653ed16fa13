"""
dvcs.cli — Command-line interface for the dvcs repository engine.

Usage:
    dvcs init                              Create an empty repository here
    dvcs add <filepath>                    Stage a file snapshot
    dvcs commit <author> <email> <msg>     Record staged snapshots
    dvcs revert                            Drop every staged snapshot
    dvcs set_remote <path>                 Set the repository to push/pull with
    dvcs push                              Send local history to the remote
    dvcs pull                              Fetch remote history
    dvcs branch_create <name>              Create a branch at the current commit
    dvcs branch_checkout <name>            Switch branch
    dvcs status | log | branches | show    Inspect the working copy
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from dvcs.core.errors import DVCSError
from dvcs.core.models import DVCSConfig, DVCSOperationResponse
from dvcs.operations.engine import DVCSEngine, init_repository

console = Console()
err_console = Console(stderr=True)


def _setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s — %(message)s",
        datefmt="%H:%M:%S",
    )


def _get_engine() -> DVCSEngine:
    try:
        return DVCSEngine.open(DVCSConfig.for_project())
    except DVCSError as exc:
        err_console.print(f"[red]✗[/red] {exc.message}")
        sys.exit(1)


def _report(result: DVCSOperationResponse) -> None:
    if result.success:
        console.print(f"[green]✓[/green] {result.message}")
    else:
        err_console.print(f"[red]✗[/red] {result.message}")
        sys.exit(1)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def main(verbose: bool) -> None:
    """dvcs — a minimal distributed version-control system."""
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------

@main.command()
@click.option("--path", default=".", help="Project root to initialise.")
def init(path: str) -> None:
    """Create an empty repository."""
    config = DVCSConfig.for_project(project_root=Path(path))
    _report(init_repository(config))


# ---------------------------------------------------------------------------
# add / commit / revert
# ---------------------------------------------------------------------------

@main.command()
@click.argument("filepath")
def add(filepath: str) -> None:
    """Add file contents to the staging area."""
    engine = _get_engine()
    try:
        _report(engine.add(filepath))
    finally:
        engine.close()


@main.command()
@click.argument("author", required=False, default="")
@click.argument("email", required=False, default="")
@click.argument("message", required=False, default="")
def commit(author: str, email: str, message: str) -> None:
    """Record staged changes to the repository."""
    engine = _get_engine()
    try:
        _report(engine.commit(
            author or engine.config.author,
            email or engine.config.email,
            message,
        ))
    finally:
        engine.close()


@main.command()
def revert() -> None:
    """Drop every uncommitted change."""
    engine = _get_engine()
    try:
        _report(engine.revert())
    finally:
        engine.close()


# ---------------------------------------------------------------------------
# remote
# ---------------------------------------------------------------------------

@main.command("set_remote")
@click.argument("path")
def set_remote(path: str) -> None:
    """Set the remote repository to pull/push changes from."""
    engine = _get_engine()
    try:
        _report(engine.set_remote(path))
    finally:
        engine.close()


@main.command()
def push() -> None:
    """Push local changes to the remote repository."""
    engine = _get_engine()
    try:
        _report(engine.push())
    finally:
        engine.close()


@main.command()
def pull() -> None:
    """Pull remote changes into the local repository."""
    engine = _get_engine()
    try:
        _report(engine.pull())
    finally:
        engine.close()


# ---------------------------------------------------------------------------
# branches
# ---------------------------------------------------------------------------

@main.command("branch_create")
@click.argument("name")
def branch_create(name: str) -> None:
    """Create a new branch at the current commit."""
    engine = _get_engine()
    try:
        _report(engine.create_branch(name))
    finally:
        engine.close()


@main.command("branch_checkout")
@click.argument("name")
def branch_checkout(name: str) -> None:
    """Check out a given branch."""
    engine = _get_engine()
    try:
        _report(engine.checkout_branch(name))
    finally:
        engine.close()


@main.command()
def branches() -> None:
    """List branches."""
    engine = _get_engine()
    try:
        result = engine.branches()
        if not result.success:
            _report(result)
            return
        table = Table(title="Branches")
        table.add_column("", width=1)
        table.add_column("Name", style="cyan")
        table.add_column("HEAD", style="yellow")
        table.add_column("Commits", justify="right")
        for b in result.detail["branches"]:
            table.add_row(
                "*" if b["active"] else "",
                b["name"],
                (b["head"] or "—")[:12],
                str(b["commits"]),
            )
        console.print(table)
    finally:
        engine.close()


# ---------------------------------------------------------------------------
# status / log / show
# ---------------------------------------------------------------------------

@main.command()
def status() -> None:
    """Show current branch, commit, remote and staged files."""
    engine = _get_engine()
    try:
        result = engine.status()
        if not result.success:
            _report(result)
            return
        table = Table(title="dvcs Status")
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="white")
        table.add_row("Branch", result.branch or "")
        table.add_row("Commit", (result.commit_hash or "")[:12])
        table.add_row("Remote", result.detail["remote"] or "—")
        table.add_row("Staged", str(len(result.detail["staged"])))
        console.print(table)
        for obj in result.detail["staged"]:
            console.print(f"  [green]{obj['path']}[/green] [dim]{obj['hash'][:12]}[/dim]")
    finally:
        engine.close()


@main.command()
@click.option("-n", "--limit", default=20, type=int, help="Max commits to show.")
def log(limit: int) -> None:
    """Show commit history from the current commit."""
    engine = _get_engine()
    try:
        result = engine.log(limit=limit)
        if not result.success:
            _report(result)
            return
        table = Table(title=f"Commit Log — {result.branch}")
        table.add_column("Hash", style="yellow", width=12)
        table.add_column("Author", style="cyan")
        table.add_column("Message")
        table.add_column("Objects", justify="right")
        for e in result.detail["commits"]:
            table.add_row(e["short"], f"{e['author']} <{e['email']}>", e["message"][:60], str(len(e["objects"])))
        console.print(table)
    finally:
        engine.close()


@main.command()
@click.argument("object_hash")
def show(object_hash: str) -> None:
    """Print the content of a committed object."""
    engine = _get_engine()
    try:
        result = engine.show(object_hash)
        if not result.success:
            _report(result)
            return
        click.echo(result.detail["data"].decode("utf-8", errors="replace"), nl=False)
    finally:
        engine.close()


if __name__ == "__main__":
    main()
