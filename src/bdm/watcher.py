import os
import sys
import time
from typing import Dict, List, Optional, Union

from git import GitCommandError
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from . import core
from .exceptions import BdmError


def get_tracked_paths() -> Dict[str, str]:
    """Map absolute paths of tracked files to their index paths."""
    return {str(core.HOME / rel): rel for rel in core.list_tracked_files()}


def get_watched_dirs(tracked: Dict[str, str]) -> List[str]:
    """Return the existing parent directories of the tracked files."""
    dirs = {os.path.dirname(path) for path in tracked}
    return sorted(d for d in dirs if os.path.isdir(d))


def auto_commit(rel: str) -> Optional[str]:
    """Stage ``rel`` and commit it. Returns the new sha, if anything changed."""
    core.add_files([core.HOME / rel], quiet=True)
    return core.commit_changes(f"Auto-commit: update {rel}", quiet=True)


class BdmEventHandler(FileSystemEventHandler):
    def __init__(self) -> None:
        super().__init__()
        self.tracked = get_tracked_paths()

    def handle_path(self, raw_path: Union[str, bytes]) -> None:
        rel = self.tracked.get(os.fsdecode(raw_path))
        if rel is None:
            return
        # Errors must not escape into the observer thread
        try:
            sha = auto_commit(rel)
        except (BdmError, GitCommandError) as e:
            print(f"Error: could not auto-commit {rel}: {e}", file=sys.stderr)
            return
        if sha:
            print(f"Auto-committed {rel} ({sha[:8]})")

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self.handle_path(event.src_path)

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self.handle_path(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        # Editors that save atomically rename a temp file over the original
        if event.is_directory:
            return
        self.handle_path(event.dest_path)


def main() -> None:
    event_handler = BdmEventHandler()
    watched_dirs = get_watched_dirs(event_handler.tracked)
    if not watched_dirs:
        print("No tracked files. Add some with bdm add <file>")
        return

    observer = Observer()
    for d in watched_dirs:
        observer.schedule(event_handler, d, recursive=False)
    observer.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        observer.stop()
    observer.join()


if __name__ == "__main__":
    main()
