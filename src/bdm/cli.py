"""CLI commands for bdm - a bare-repository dotfiles manager."""

import json
from contextlib import nullcontext
from pathlib import Path
from typing import List, NoReturn, Optional

import typer
from git import Git, GitCommandError, InvalidGitRepositoryError, Repo
from rich.console import Console
from rich.status import Status
from typing_extensions import Annotated

from . import __version__, core
from .core import (
    add_files,
    commit_changes,
    diff_files,
    get_config_value,
    get_log,
    get_repo_status,
    init_repo,
    list_tracked_files,
    load_config,
    pull_repo,
    push_repo,
    reset_config,
    set_config_value,
    set_remote,
)
from .exceptions import BdmError
from .watcher import main as watcher_main

# Constants
MIN_GIT_VERSION = (2, 38)

# Global app and console instances
app = typer.Typer(help="bdm - a bare-repository dotfiles manager")
console = Console()


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================


def fail(error: Exception) -> NoReturn:
    """Report ``error`` on stderr and exit with status 1."""
    typer.secho(f"Error: {error}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def spinner(message: str, quiet: bool):
    return Status(message, console=console) if not quiet else nullcontext()


# ============================================================================
# REPOSITORY COMMANDS
# ============================================================================


@app.command()
def init(
    remote: Annotated[
        str, typer.Option(help="Optional remote URL to add as origin (SSH or HTTPS).")
    ] = "",
    quiet: Annotated[
        bool, typer.Option("--quiet", "-q", help="Suppress output")
    ] = False,
) -> None:
    """Initialize the bdm repository in ~/.config/bdm."""
    core.update_paths()
    try:
        success = init_repo(remote=remote, quiet=quiet)
    except (BdmError, GitCommandError) as e:
        fail(e)
    if not success:
        raise typer.Exit(code=1)


@app.command()
def add(
    files: Annotated[
        List[Path], typer.Argument(help="Files or directories to track")
    ],
    link: Annotated[
        bool,
        typer.Option(
            "--link",
            "-l",
            help="Move the files into the bdm store and leave a symlink behind",
        ),
    ] = False,
    message: Annotated[
        Optional[str],
        typer.Option("--commit", "-c", help="Commit right away with this message"),
    ] = None,
    quiet: Annotated[
        bool, typer.Option("--quiet", "-q", help="Suppress output")
    ] = False,
) -> None:
    """Stage files in the bdm repository."""
    core.update_paths()
    try:
        add_files(files, link=link, quiet=quiet)
        if message:
            commit_changes(message, quiet=quiet)
    except (BdmError, GitCommandError) as e:
        fail(e)


@app.command()
def commit(
    msg: Annotated[
        Optional[str], typer.Argument(help="Commit message")
    ] = None,
    message: Annotated[
        Optional[str], typer.Option("--message", "-m", help="Commit message")
    ] = None,
    allow_empty: Annotated[
        bool,
        typer.Option("--allow-empty", help="Commit even if nothing changed"),
    ] = False,
    quiet: Annotated[
        bool, typer.Option("--quiet", "-q", help="Suppress output")
    ] = False,
) -> None:
    """Commit the staged files."""
    core.update_paths()
    text = message or msg
    if not text:
        typer.secho("Error: A commit message is required", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    try:
        commit_changes(text, allow_empty=allow_empty, quiet=quiet)
    except (BdmError, GitCommandError) as e:
        fail(e)


@app.command()
def remote(
    url: Annotated[str, typer.Argument(help="Remote URL (SSH or HTTPS)")],
    replace: Annotated[
        bool,
        typer.Option("--replace", help="Change the URL if the remote already exists"),
    ] = False,
    quiet: Annotated[
        bool, typer.Option("--quiet", "-q", help="Suppress output")
    ] = False,
) -> None:
    """Register the remote used by push and pull."""
    core.update_paths()
    try:
        set_remote(url, replace=replace, quiet=quiet)
    except (BdmError, GitCommandError) as e:
        fail(e)


@app.command()
def push(
    username: Annotated[
        Optional[str],
        typer.Option("--username", "-u", help="Username for HTTPS remotes"),
    ] = None,
    login: Annotated[
        bool, typer.Option("--login", help="Prompt for username and password")
    ] = False,
    quiet: Annotated[
        bool, typer.Option("--quiet", "-q", help="Suppress output")
    ] = False,
) -> None:
    """Push the local branch to the remote."""
    core.update_paths()
    try:
        # Prompt before the spinner starts so the two don't fight over the tty
        if login or username or load_config()["push"]["username"]:
            success = push_repo(username=username, login=True, quiet=quiet)
        else:
            with spinner("Pushing...", quiet):
                success = push_repo(quiet=quiet)
    except (BdmError, GitCommandError) as e:
        fail(e)
    if not success:
        raise typer.Exit(code=1)


@app.command()
def pull(
    force: Annotated[
        bool,
        typer.Option(
            "--force", "-f", help="Overwrite local changes when checking out"
        ),
    ] = False,
    quiet: Annotated[
        bool, typer.Option("--quiet", "-q", help="Suppress output")
    ] = False,
) -> None:
    """Fetch the remote branch and fast-forward or merge it."""
    core.update_paths()
    try:
        with spinner("Pulling...", quiet):
            result = pull_repo(force=force, quiet=quiet)
    except (BdmError, GitCommandError) as e:
        fail(e)

    if result["status"] == "conflict":
        typer.secho("Conflicted files:", fg=typer.colors.RED, err=True)
        for path in result["conflicts"]:
            typer.secho(f"  {path}", fg=typer.colors.RED, err=True)
        typer.secho(
            "Resolve them, then run 'bdm add <file>' and 'bdm commit <message>'",
            fg=typer.colors.CYAN,
            err=True,
        )
        raise typer.Exit(code=1)


# ============================================================================
# INSPECTION COMMANDS
# ============================================================================


@app.command()
def status() -> None:
    """Show staged and modified tracked files and sync state."""
    core.update_paths()
    try:
        status_data = get_repo_status()
    except (BdmError, GitCommandError) as e:
        fail(e)

    typer.secho(
        f"On branch {status_data['branch']}", fg=typer.colors.WHITE, bold=True
    )
    if status_data["merging"]:
        typer.secho(
            "Merge in progress. Resolve conflicts, then 'bdm commit <message>'",
            fg=typer.colors.RED,
        )
    if status_data["ahead"]:
        typer.secho(
            f"Ahead of remote by {status_data['ahead']} commit(s)",
            fg=typer.colors.YELLOW,
        )
        typer.secho("  → Run 'bdm push' to publish them", fg=typer.colors.CYAN)
    if status_data["behind"]:
        typer.secho(
            f"Behind remote by {status_data['behind']} commit(s)",
            fg=typer.colors.YELLOW,
        )
        typer.secho("  → Run 'bdm pull' to update", fg=typer.colors.CYAN)

    if not status_data["staged"] and not status_data["modified"]:
        typer.secho("Nothing to commit", fg=typer.colors.GREEN)
        return

    if status_data["staged"]:
        typer.secho("Staged files:", fg=typer.colors.YELLOW)
        for file in status_data["staged"]:
            typer.secho(f"  {file}", fg=typer.colors.YELLOW)
        typer.secho(
            "  → Run 'bdm commit \"Update dotfiles\"' to commit",
            fg=typer.colors.CYAN,
        )
    if status_data["modified"]:
        typer.secho("Modified files:", fg=typer.colors.YELLOW)
        for file in status_data["modified"]:
            typer.secho(f"  {file}", fg=typer.colors.YELLOW)
        typer.secho(
            "  → Run 'bdm add <file>' to stage changes", fg=typer.colors.CYAN
        )


@app.command("list")
def list_files() -> None:
    """List all files tracked by bdm."""
    core.update_paths()
    try:
        tracked_files = list_tracked_files()
    except (BdmError, GitCommandError) as e:
        fail(e)

    if not tracked_files:
        typer.secho("No files tracked by bdm.", fg=typer.colors.YELLOW)
        return

    typer.secho("Tracked files:", fg=typer.colors.WHITE, bold=True)
    for f in tracked_files:
        typer.secho(f"  {f}", fg=typer.colors.GREEN)


@app.command()
def diff(
    files: Annotated[
        Optional[List[str]], typer.Argument(help="Limit the diff to these files")
    ] = None,
    staged: Annotated[
        bool, typer.Option("--staged", help="Show staged changes instead")
    ] = False,
) -> None:
    """Show changes to tracked files."""
    core.update_paths()
    try:
        output = diff_files(files, staged=staged)
    except (BdmError, GitCommandError) as e:
        fail(e)

    if output:
        typer.echo(output)
    else:
        typer.secho("No changes to show", fg=typer.colors.YELLOW)


@app.command()
def log(
    limit: Annotated[
        int, typer.Option("--limit", "-n", help="Number of commits to show")
    ] = 10,
) -> None:
    """Show recent commits."""
    core.update_paths()
    try:
        entries = get_log(limit)
    except (BdmError, GitCommandError) as e:
        fail(e)

    for entry in entries:
        marker = " (merge)" if entry["parents"] > 1 else ""
        typer.secho(f"{entry['sha'][:8]}", fg=typer.colors.YELLOW, nl=False)
        typer.echo(f" {entry['date']} {entry['author']}: {entry['summary']}{marker}")


@app.command()
def watch() -> None:
    """Commit tracked files automatically whenever they change."""
    core.update_paths()
    typer.secho("Starting watcher...", fg=typer.colors.WHITE)
    try:
        watcher_main()
    except (BdmError, GitCommandError) as e:
        fail(e)


@app.command()
def version() -> None:
    """Show bdm version."""
    try:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as get_version

        version_str = get_version("bdm")
    except PackageNotFoundError:
        version_str = __version__

    typer.secho(f"bdm version {version_str}", fg=typer.colors.GREEN)


# ============================================================================
# UTILITY COMMANDS
# ============================================================================


@app.command()
def diagnose() -> None:
    """
    Diagnose common bdm and git issues and print helpful advice.
    """
    core.update_paths()
    typer.secho("bdm Diagnostics", fg=typer.colors.WHITE, bold=True)
    typer.echo()

    git_version = Git().version_info
    if git_version[:2] < MIN_GIT_VERSION:
        typer.secho(
            f"WARNING: git {'.'.join(map(str, git_version))} is too old; "
            f"pull needs {'.'.join(map(str, MIN_GIT_VERSION))} or newer",
            fg=typer.colors.YELLOW,
        )
    else:
        typer.secho(
            f"git version {'.'.join(map(str, git_version))}", fg=typer.colors.GREEN
        )

    if not core.REPO_DIR.exists():
        typer.secho(
            "ERROR: bdm repository not initialized", fg=typer.colors.RED, bold=True
        )
        typer.secho("Solution: Run 'bdm init' to initialize", fg=typer.colors.CYAN)
        return

    try:
        Repo(str(core.REPO_DIR))
    except InvalidGitRepositoryError:
        typer.secho(
            f"ERROR: {core.REPO_DIR} is not a git repository", fg=typer.colors.RED
        )
        return

    repo = core.ensure_repo()
    config = load_config()

    identity = core.get_identity(repo)
    if identity:
        typer.secho(
            f"Committer: {identity['name']} <{identity['email']}>",
            fg=typer.colors.GREEN,
        )
    else:
        typer.secho("WARNING: No committer identity configured", fg=typer.colors.YELLOW)

    remote_names = [r.name for r in repo.remotes]
    if config["remote"] not in remote_names:
        typer.secho(
            f"WARNING: No '{config['remote']}' remote configured",
            fg=typer.colors.YELLOW,
        )
        typer.secho("Add remote: bdm remote <url>", fg=typer.colors.CYAN)
    else:
        typer.secho(
            f"Remote '{config['remote']}': {repo.remote(config['remote']).url}",
            fg=typer.colors.GREEN,
        )

    if config["branch"] not in repo.heads:
        typer.secho(
            f"WARNING: Branch '{config['branch']}' does not exist yet",
            fg=typer.colors.YELLOW,
        )
        typer.secho("Fetch it with: bdm pull", fg=typer.colors.CYAN)
    else:
        typer.secho(f"Branch '{config['branch']}' present", fg=typer.colors.GREEN)

    status_data = get_repo_status()
    if status_data["merging"]:
        typer.secho("WARNING: Merge in progress", fg=typer.colors.YELLOW)
        typer.secho(
            "Resolve conflicts, then: bdm add <file> && bdm commit <message>",
            fg=typer.colors.CYAN,
        )
    elif status_data["staged"] or status_data["modified"]:
        typer.secho("WARNING: Uncommitted changes detected", fg=typer.colors.YELLOW)
        typer.secho("Check status: bdm status", fg=typer.colors.CYAN)
    else:
        typer.secho("Repository is clean", fg=typer.colors.GREEN)

    typer.secho("Diagnosis complete", fg=typer.colors.WHITE, bold=True)


# ============================================================================
# CONFIGURATION MANAGEMENT COMMANDS
# ============================================================================

config_app = typer.Typer(help="Manage bdm configuration")
app.add_typer(config_app, name="config")


@config_app.command("show")
def config_show(
    key: Annotated[
        Optional[str],
        typer.Argument(help="Configuration key to show (e.g. 'identity.name')"),
    ] = None,
) -> None:
    """Show the current configuration or a single key."""
    core.update_paths()
    if key:
        value = get_config_value(key)
        if value is None:
            typer.secho(f"Configuration key '{key}' not found", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
        typer.echo(value if isinstance(value, str) else json.dumps(value, indent=2))
    else:
        typer.echo(json.dumps(load_config(), indent=2))


@config_app.command("set")
def config_set(
    key: Annotated[str, typer.Argument(help="Configuration key (e.g. 'branch')")],
    value: Annotated[str, typer.Argument(help="Value (parsed as JSON when possible)")],
) -> None:
    """Set a configuration value."""
    core.update_paths()
    try:
        set_config_value(key, value)
    except BdmError as e:
        fail(e)


@config_app.command("reset")
def config_reset(
    yes: Annotated[
        bool, typer.Option("--yes", "-y", help="Skip confirmation")
    ] = False,
) -> None:
    """Reset configuration to defaults."""
    core.update_paths()
    if not yes and not typer.confirm("Reset configuration to defaults?"):
        typer.secho("Cancelled", fg=typer.colors.YELLOW)
        return
    reset_config()


if __name__ == "__main__":
    app()
