"""Watch mode: feed filesystem events for a vault into a ``TagEngine``."""

from __future__ import annotations

import time
from pathlib import Path

from watchdog.events import FileSystemEvent
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from foldertag.console import Logger
from foldertag.engine import TagEngine


def _is_hidden(relative_path: str) -> bool:
    return any(part.startswith(".") for part in relative_path.split("/"))


class VaultEventHandler(FileSystemEventHandler):
    """Turns created and moved files into engine signals.

    Directory events are skipped: moving a folder also reports a move for
    every file inside it. Files under hidden folders (state, temp files)
    are skipped too.
    """

    def __init__(self, engine: TagEngine) -> None:
        super().__init__()
        self.engine = engine

    def _relative(self, path: str | bytes) -> str | None:
        if isinstance(path, bytes):
            path = path.decode()
        try:
            relative = self.engine.vault.relpath(Path(path))
        except ValueError:
            return None
        return None if _is_hidden(relative) else relative

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        path = self._relative(event.src_path)
        if path is not None:
            self.engine.scheduler.dispatch(self.engine.on_create, path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        old_path = self._relative(event.src_path)
        path = self._relative(event.dest_path)
        if old_path is None or path is None:
            return
        self.engine.scheduler.dispatch(self.engine.on_rename, path, old_path)


def watch_vault(engine: TagEngine, logger: Logger) -> None:
    """Tag new and moved documents until interrupted."""
    logger.header("Watch Mode")
    logger.info(f"Watching {engine.vault.root}... (Ctrl+C to stop)")

    observer = Observer()
    observer.schedule(VaultEventHandler(engine), str(engine.vault.root), recursive=True)
    observer.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("\nStopping watch mode...")
        observer.stop()
    observer.join()
    engine.scheduler.dispatch(engine.teardown)
