"""Core functionality for bdm - a bare-repository dotfiles manager.

The repository is a bare git repository under ``~/.config/bdm`` whose work
tree is the home directory itself. Every operation here is a short sequence
of git calls made through GitPython.
"""

import copy
import json
import os
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import typer
from git import Git, GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo
from git.remote import PushInfo, Remote

from .exceptions import (
    BdmConfigurationError,
    BdmFileNotFoundError,
    BdmRemoteError,
    BdmRepositoryNotFoundError,
    BdmSymlinkError,
    BdmValidationError,
    CommitInfoDict,
    PullResultDict,
    RepoStatusDict,
)

# Constants
BDM_DIR_PARTS = (".config", "bdm")
REPO_DIR_NAME = "repo.git"
STORE_DIR_NAME = "files"
CONFIG_FILENAME = "config.json"
INITIAL_COMMIT_MESSAGE = "Initial commit"

# Any of these flags on a ref update means the push did not land
PUSH_FAILURE_FLAGS = (
    PushInfo.ERROR
    | PushInfo.REJECTED
    | PushInfo.REMOTE_REJECTED
    | PushInfo.REMOTE_FAILURE
)


# ============================================================================
# PATH MANAGEMENT
# ============================================================================


def get_home_dir() -> Path:
    """Get the home directory, respecting environment variables for testing."""
    if "HOME" in os.environ:
        return Path(os.environ["HOME"])
    return Path.home()


def get_bdm_paths(home_dir: Optional[Path] = None) -> Dict[str, Path]:
    """Get all bdm-related paths based on home directory."""
    if home_dir is None:
        home_dir = get_home_dir()

    bdm_dir = home_dir.joinpath(*BDM_DIR_PARTS)

    return {
        "home": home_dir,
        "bdm_dir": bdm_dir,
        "repo_dir": bdm_dir / REPO_DIR_NAME,
        "store_dir": bdm_dir / STORE_DIR_NAME,
        "config_file": bdm_dir / CONFIG_FILENAME,
    }


def update_paths(home_dir: Optional[Path] = None) -> None:
    """Update global paths. Useful for testing or when HOME changes."""
    global HOME, BDM_DIR, REPO_DIR, STORE_DIR, CONFIG_FILE
    paths = get_bdm_paths(home_dir)
    HOME = paths["home"]
    BDM_DIR = paths["bdm_dir"]
    REPO_DIR = paths["repo_dir"]
    STORE_DIR = paths["store_dir"]
    CONFIG_FILE = paths["config_file"]


# ============================================================================
# GLOBAL CONFIGURATION AND PATHS
# ============================================================================

DEFAULT_CONFIG: Dict[str, Any] = {
    "branch": "master",
    "remote": "origin",
    "identity": {
        "name": "bdm",
        "email": "bdm@localhost",
    },
    "push": {
        "username": "",
    },
}

# Global paths - can be overridden for testing
_paths = get_bdm_paths()
HOME = _paths["home"]
BDM_DIR = _paths["bdm_dir"]
REPO_DIR = _paths["repo_dir"]
STORE_DIR = _paths["store_dir"]
CONFIG_FILE = _paths["config_file"]


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================


def ensure_repo() -> Repo:
    """Open the bdm repository with the home directory as its work tree."""
    try:
        repo = Repo(str(REPO_DIR))
    except (InvalidGitRepositoryError, NoSuchPathError) as e:
        raise BdmRepositoryNotFoundError(
            "bdm repository not initialized. Run 'bdm init' first."
        ) from e

    # Paths passed to and printed by git are relative to HOME
    repo.git = Git(str(HOME))
    repo.git.update_environment(GIT_DIR=str(REPO_DIR), GIT_WORK_TREE=str(HOME))
    return repo


def get_remote(repo: Repo, name: str) -> Remote:
    """Return the named remote or raise if it is not configured."""
    if name not in [r.name for r in repo.remotes]:
        raise BdmRemoteError(
            f"No '{name}' remote found. Set one with 'bdm remote <URL>'."
        )
    return repo.remote(name)


def resolve_path(path: Path) -> Path:
    """Make ``path`` absolute without following symlinks.

    Relative paths are looked up in the current directory first, then in the
    home directory.
    """
    target = Path(path).expanduser()
    if not target.is_absolute():
        cwd_path = Path.cwd() / target
        home_path = HOME / target
        if os.path.lexists(cwd_path):
            target = cwd_path
        elif os.path.lexists(home_path):
            target = home_path
        else:
            target = cwd_path
    return Path(os.path.abspath(target))


def home_relative(path: Path) -> Path:
    """Return ``path`` relative to HOME, rejecting paths bdm cannot track."""
    try:
        rel = path.relative_to(HOME)
    except ValueError:
        raise BdmValidationError(f"{path} is not inside {HOME}")

    if rel == Path("."):
        raise BdmValidationError("Refusing to add the whole home directory")
    if _is_within(path, BDM_DIR) and not _is_within(path, STORE_DIR):
        raise BdmValidationError(f"{rel} belongs to bdm itself")
    if _is_within(BDM_DIR, path):
        raise BdmValidationError(f"{rel} contains the bdm directory {BDM_DIR}")
    return rel


def _is_within(path: Path, parent: Path) -> bool:
    return path == parent or parent in path.parents


def _merge_head(repo: Repo) -> Optional[str]:
    merge_head = Path(repo.git_dir) / "MERGE_HEAD"
    if not merge_head.exists():
        return None
    return merge_head.read_text().split()[0]


def _create_commit(repo: Repo, message: str, tree: str, parents: List[str]) -> str:
    """Write a commit object for ``tree`` and return its sha."""
    args = []
    for parent in parents:
        args.extend(["-p", parent])
    return repo.git.commit_tree(*args, "-m", message, tree)


def _advance_branch(repo: Repo, ref_name: str, sha: str, reflog: str) -> None:
    """Point ``ref_name`` at ``sha`` and make it the current branch."""
    repo.git.update_ref("-m", reflog, ref_name, sha)
    repo.git.symbolic_ref("HEAD", ref_name)


def _checkout(repo: Repo, old: Optional[str], new: str, force: bool) -> None:
    """Update the index and home directory from ``old`` to ``new``.

    The two-tree form refuses to clobber local modifications; the forced
    form overwrites them.
    """
    # Stale stat data would make untouched files look modified
    repo.git.update_index("-q", "--refresh", with_exceptions=False)
    if force or old is None:
        repo.git.read_tree("--reset", "-u", new)
    else:
        repo.git.read_tree("-m", "-u", old, new)


def get_identity(repo: Repo) -> Optional[Dict[str, str]]:
    """Return the committer identity git will use, if one is configured."""
    identity = {}
    for key in ("name", "email"):
        status, value, _ = repo.git.config(
            "--get", f"user.{key}", with_extended_output=True, with_exceptions=False
        )
        if status != 0 or not value:
            return None
        identity[key] = value
    return identity


def _ensure_identity(repo: Repo, config: Dict[str, Any]) -> None:
    if get_identity(repo) is not None:
        return
    identity = config["identity"]
    with repo.config_writer() as writer:
        writer.set_value("user", "name", identity["name"])
        writer.set_value("user", "email", identity["email"])


def _prompt_credential(label: str, hide_input: bool = False) -> str:
    return typer.prompt(label, hide_input=hide_input).strip()


def credential_environment(username: str, password: str) -> Dict[str, str]:
    """Build the environment that hands ``username``/``password`` to git.

    The credentials travel in environment variables read by an inline
    credential helper, so they never show up in argv or on disk. The empty
    helper entry clears helpers configured elsewhere.
    """
    helper = (
        '!f() { test "$1" = get || return 0; '
        'echo "username=$BDM_GIT_USERNAME"; '
        'echo "password=$BDM_GIT_PASSWORD"; }; f'
    )
    return {
        "BDM_GIT_USERNAME": username,
        "BDM_GIT_PASSWORD": password,
        "GIT_TERMINAL_PROMPT": "0",
        "GIT_CONFIG_COUNT": "2",
        "GIT_CONFIG_KEY_0": "credential.helper",
        "GIT_CONFIG_VALUE_0": "",
        "GIT_CONFIG_KEY_1": "credential.helper",
        "GIT_CONFIG_VALUE_1": helper,
    }


# ============================================================================
# REPOSITORY INITIALIZATION AND MANAGEMENT
# ============================================================================


def init_repo(remote: str = "", quiet: bool = False) -> bool:
    if REPO_DIR.exists():
        if not quiet:
            typer.secho(f"bdm already initialized at {REPO_DIR}", fg=typer.colors.YELLOW)
        return False

    if not quiet:
        typer.secho("Initializing bdm repository...", fg=typer.colors.BLUE)

    if not CONFIG_FILE.exists():
        save_config(DEFAULT_CONFIG)
    config = load_config()

    Repo.init(str(REPO_DIR), mkdir=True, bare=True, initial_branch=config["branch"])
    repo = ensure_repo()
    with repo.config_writer() as writer:
        writer.set_value("status", "showUntrackedFiles", "no")
        # Bare repositories skip reflogs unless asked
        writer.set_value("core", "logAllRefUpdates", "true")
    _ensure_identity(repo, config)

    tree = repo.git.write_tree()
    sha = _create_commit(repo, INITIAL_COMMIT_MESSAGE, tree, [])
    repo.git.update_ref("-m", f"commit (initial): {INITIAL_COMMIT_MESSAGE}", "HEAD", sha)
    if not quiet:
        typer.secho(f"Initial commit created: {sha[:8]}", fg=typer.colors.GREEN)

    if remote:
        repo.create_remote(config["remote"], remote)
        if not quiet:
            typer.secho(
                "WARNING: Ensure your remote repository is private for sensitive data",
                fg=typer.colors.YELLOW,
                bold=True,
            )

    if not quiet:
        typer.secho("bdm repository initialized successfully", fg=typer.colors.GREEN)
    return True


def set_remote(url: str, replace: bool = False, quiet: bool = False) -> None:
    """Register the configured remote, or repoint it when ``replace`` is set."""
    repo = ensure_repo()
    name = load_config()["remote"]

    if replace and name in [r.name for r in repo.remotes]:
        repo.remote(name).set_url(url)
        action = "Updated"
    else:
        repo.create_remote(name, url)
        action = "Added"

    if not quiet:
        typer.secho(f"{action} remote '{name}': {url}", fg=typer.colors.GREEN)


# ============================================================================
# DOTFILE MANAGEMENT
# ============================================================================


def _link_into_store(src: Path, rel: Path, quiet: bool = False) -> Path:
    """Move ``src`` into the link store and leave a symlink in its place."""
    stored = STORE_DIR / rel
    stored.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(src), str(stored))
    src.symlink_to(stored)
    if not quiet:
        typer.secho(f"Moved {rel} into {STORE_DIR}", fg=typer.colors.BLUE)
    return stored


def add_files(paths: List[Path], link: bool = False, quiet: bool = False) -> List[str]:
    """Stage files in the index, optionally relocating them into the link store.

    Returns the staged paths relative to the home directory.
    """
    repo = ensure_repo()

    # Validate everything before moving anything into the store
    plan: List[Tuple[Path, Path, bool]] = []
    for path in paths:
        src = resolve_path(path)
        if not os.path.lexists(src):
            raise BdmFileNotFoundError(f"{path} not found")
        rel = home_relative(src)

        if _is_within(src, STORE_DIR):
            plan.append((src, rel, False))
        elif src.is_symlink() and _is_within(src.resolve(), STORE_DIR.resolve()):
            # Already linked; track the stored copy instead of the symlink
            plan.append((STORE_DIR / rel, rel, False))
        elif link:
            if os.path.lexists(STORE_DIR / rel):
                raise BdmSymlinkError(f"{rel} already exists in the link store")
            plan.append((src, rel, True))
        else:
            plan.append((src, rel, False))

    staged: List[str] = []
    for src, rel, move in plan:
        target = _link_into_store(src, rel, quiet=quiet) if move else src
        staged.append(target.relative_to(HOME).as_posix())

    if staged:
        repo.git.add("--", *staged)
        if not quiet:
            for tracked in staged:
                typer.secho(f"Added {tracked}", fg=typer.colors.GREEN)
    return staged


def commit_changes(
    message: str, allow_empty: bool = False, quiet: bool = False
) -> Optional[str]:
    """Commit the index with HEAD (and a pending merge head) as parents."""
    repo = ensure_repo()

    tree = repo.git.write_tree()
    head = repo.head.commit
    parents = [head.hexsha]
    merge_head = _merge_head(repo)
    if merge_head:
        parents.append(merge_head)
    elif tree == head.tree.hexsha and not allow_empty:
        if not quiet:
            typer.secho("No changes to commit", fg=typer.colors.YELLOW)
        return None

    sha = _create_commit(repo, message, tree, parents)
    repo.git.update_ref("-m", f"commit: {message}", "HEAD", sha)
    if merge_head:
        repo.git.merge("--quit")

    if not quiet:
        typer.secho(f"Committed changes: {sha[:8]}", fg=typer.colors.GREEN)
        typer.secho(f"Message: {message}", fg=typer.colors.WHITE)
    return sha


# ============================================================================
# REMOTE SYNCHRONIZATION
# ============================================================================


def push_repo(
    username: Optional[str] = None,
    password: Optional[str] = None,
    login: bool = False,
    quiet: bool = False,
) -> bool:
    """Push the configured branch to the configured remote.

    When a username is known (argument or ``push.username``), or ``login``
    asks for one, credentials are prompted for on standard input and handed
    to git. Otherwise git's own authentication applies.
    """
    repo = ensure_repo()
    config = load_config()
    origin = get_remote(repo, config["remote"])
    branch = config["branch"]

    # Config values are JSON-decoded, so a numeric username arrives as an int
    username = str(username or config["push"]["username"] or "")
    if login and not username:
        username = _prompt_credential("username")
    env: Dict[str, str] = {}
    if username:
        if password is None:
            password = _prompt_credential("password", hide_input=True)
        env = credential_environment(username, password)

    refspec = f"refs/heads/{branch}:refs/heads/{branch}"
    with repo.git.custom_environment(**env):
        result = origin.push(refspec=refspec)

    failed = [r for r in result if r.flags & PUSH_FAILURE_FLAGS]
    if failed:
        if not quiet:
            for r in failed:
                summary = r.summary.strip()
                if r.flags & PushInfo.REJECTED:
                    typer.secho(
                        f"Error: Push rejected ({summary}). Run 'bdm pull' first.",
                        fg=typer.colors.RED,
                        err=True,
                    )
                else:
                    typer.secho(
                        f"Error pushing to {origin.name}: {summary}",
                        fg=typer.colors.RED,
                        err=True,
                    )
        return False

    if not quiet:
        typer.secho(f"Pushed {branch} to {origin.name}", fg=typer.colors.GREEN)
    return True


def _merge_trees(repo: Repo, local: str, fetched: str) -> Dict[str, Any]:
    """Three-way merge of ``local`` and ``fetched`` without touching HEAD.

    Returns the merge base (or None), the merged tree, and conflicted paths.
    """
    bases = repo.merge_base(local, fetched)
    base = bases[0].hexsha if bases else None

    args = ["--write-tree", "--name-only", "--no-messages", "-z"]
    if base is None:
        args.append("--allow-unrelated-histories")

    status, stdout, stderr = repo.git.merge_tree(
        *args, local, fetched, with_extended_output=True, with_exceptions=False
    )
    if status not in (0, 1):
        raise GitCommandError(["git", "merge-tree", *args, local, fetched], status, stderr)

    parts = stdout.split("\0")
    conflicts = list(dict.fromkeys(p for p in parts[1:] if p))
    return {"base": base, "tree": parts[0], "conflicts": conflicts}


def _record_conflicts(repo: Repo, fetched: str, unrelated: bool) -> None:
    """Write the conflicted merge into the index and home directory."""
    args = ["--no-ff", "--no-commit"]
    if unrelated:
        args.append("--allow-unrelated-histories")
    status, _, stderr = repo.git.merge(
        *args, fetched, with_extended_output=True, with_exceptions=False
    )
    if _merge_head(repo) is None:
        raise GitCommandError(["git", "merge", *args, fetched], status, stderr)


def pull_repo(force: bool = False, quiet: bool = False) -> PullResultDict:
    repo = ensure_repo()
    config = load_config()
    origin = get_remote(repo, config["remote"])
    branch = config["branch"]
    ref_name = f"refs/heads/{branch}"

    origin.fetch(refspec=branch)
    fetched = repo.git.rev_parse("FETCH_HEAD^{commit}")

    head_commit = repo.heads[branch].commit if branch in repo.heads else None

    # A branch holding only the empty initial commit has nothing to merge
    if head_commit is None or (not head_commit.parents and len(head_commit.tree) == 0):
        old = head_commit.hexsha if head_commit is not None else None
        _checkout(repo, old, fetched, force)
        _advance_branch(repo, ref_name, fetched, f"Setting {branch} to {fetched}")
        if not quiet:
            typer.secho(f"Checked out {branch} at {fetched[:8]}", fg=typer.colors.GREEN)
        return {"status": "unborn", "commit": fetched, "conflicts": []}

    local = head_commit.hexsha
    if fetched == local or repo.is_ancestor(fetched, local):
        if not quiet:
            typer.secho("nothing to do...", fg=typer.colors.YELLOW)
        return {"status": "up-to-date", "commit": local, "conflicts": []}

    if repo.is_ancestor(local, fetched):
        _checkout(repo, local, fetched, force)
        _advance_branch(
            repo, ref_name, fetched, f"Fast-Forward: Setting {ref_name} to id: {fetched}"
        )
        if not quiet:
            typer.secho(
                f"Fast-forwarded {branch} to {fetched[:8]}", fg=typer.colors.GREEN
            )
        return {"status": "fast-forward", "commit": fetched, "conflicts": []}

    merge = _merge_trees(repo, local, fetched)
    if merge["conflicts"]:
        if not quiet:
            typer.secho("Merge conflicts detected...", fg=typer.colors.RED, err=True)
        _record_conflicts(repo, fetched, unrelated=merge["base"] is None)
        return {"status": "conflict", "commit": None, "conflicts": merge["conflicts"]}

    message = f"Merge: {fetched} into {local}"
    sha = _create_commit(repo, message, merge["tree"], [local, fetched])
    _checkout(repo, local, sha, force)
    _advance_branch(repo, ref_name, sha, message)
    if not quiet:
        typer.secho(f"Merged {fetched[:8]} into {branch}: {sha[:8]}", fg=typer.colors.GREEN)
    return {"status": "merged", "commit": sha, "conflicts": []}


# ============================================================================
# INSPECTION
# ============================================================================


def get_repo_status() -> RepoStatusDict:
    repo = ensure_repo()
    config = load_config()
    branch = config["branch"]

    staged = repo.git.diff("--cached", "--name-only").splitlines()
    modified = repo.git.diff("--name-only").splitlines()

    ahead = behind = 0
    tracking = f"refs/remotes/{config['remote']}/{branch}"
    status, counts, _ = repo.git.rev_list(
        "--left-right",
        "--count",
        f"HEAD...{tracking}",
        with_extended_output=True,
        with_exceptions=False,
    )
    # No remote-tracking ref yet means nothing to compare against
    if status == 0:
        ahead, behind = (int(c) for c in counts.split())

    return {
        "branch": branch,
        "staged": staged,
        "modified": modified,
        "ahead": ahead,
        "behind": behind,
        "merging": _merge_head(repo) is not None,
    }


def list_tracked_files() -> List[str]:
    repo = ensure_repo()
    files_output: str = repo.git.ls_files()
    return files_output.splitlines()


def diff_files(files: Optional[List[str]] = None, staged: bool = False) -> str:
    """Return the diff of the home directory (or the index) for tracked files."""
    repo = ensure_repo()
    args = ["--cached"] if staged else []
    if files:
        rels = [home_relative(resolve_path(Path(f))).as_posix() for f in files]
        args.extend(["--", *rels])
    return repo.git.diff(*args)


def get_log(limit: int = 10) -> List[CommitInfoDict]:
    repo = ensure_repo()
    return [
        {
            "sha": commit.hexsha,
            "summary": str(commit.summary),
            "author": str(commit.author.name),
            "date": commit.committed_datetime.strftime("%Y-%m-%d %H:%M:%S"),
            "parents": len(commit.parents),
        }
        for commit in repo.iter_commits("HEAD", max_count=limit)
    ]


# ============================================================================
# CONFIGURATION MANAGEMENT
# ============================================================================


def load_config() -> Dict[str, Any]:
    """Load configuration from config file, or return default if not exists."""
    config = copy.deepcopy(DEFAULT_CONFIG)
    if not CONFIG_FILE.exists():
        return config

    try:
        with open(CONFIG_FILE, "r") as f:
            stored = json.load(f)
    except json.JSONDecodeError as e:
        typer.secho(
            f"Warning: Error reading config file: {e}. Using defaults.",
            fg=typer.colors.YELLOW,
            err=True,
        )
        return config

    # Merge nested sections key by key so partial files keep their defaults
    for key, value in stored.items():
        if isinstance(value, dict) and isinstance(config.get(key), dict):
            config[key].update(value)
        else:
            config[key] = value
    return config


def save_config(config: Dict[str, Any]) -> None:
    """Save configuration to config file."""
    BDM_DIR.mkdir(parents=True, exist_ok=True)
    with open(CONFIG_FILE, "w") as f:
        json.dump(config, f, indent=2)


def get_config_value(key_path: str) -> Any:
    """Get a configuration value using dot notation (e.g. 'identity.name')."""
    value: Any = load_config()
    for key in key_path.split("."):
        if not isinstance(value, dict) or key not in value:
            return None
        value = value[key]
    return value


def _parse_config_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def set_config_value(key_path: str, value: Any, quiet: bool = False) -> None:
    """Set a configuration value using dot notation.

    String values that parse as JSON are stored decoded.
    """
    keys = key_path.split(".")
    if keys[0] not in DEFAULT_CONFIG:
        raise BdmConfigurationError(f"Unknown configuration key: {key_path}")

    if isinstance(value, str):
        value = _parse_config_value(value)

    config = load_config()
    current = config
    for key in keys[:-1]:
        if key not in current:
            current[key] = {}
        elif not isinstance(current[key], dict):
            raise BdmConfigurationError(
                f"Cannot set {key_path}: '{key}' holds a value, not a section"
            )
        current = current[key]
    current[keys[-1]] = value
    save_config(config)

    if not quiet:
        typer.secho(f"Set {key_path} = {json.dumps(value)}", fg=typer.colors.GREEN)


def reset_config(quiet: bool = False) -> None:
    """Reset configuration to defaults."""
    save_config(DEFAULT_CONFIG)
    if not quiet:
        typer.secho("Configuration reset to defaults", fg=typer.colors.GREEN)
