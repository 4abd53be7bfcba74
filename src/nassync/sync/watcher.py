"""File system change source for watch mode.

This module provides:
- ChangeEventHandler: Normalizes watchdog events into FileChangeEvents
- FileWatcher: Watches a profile root and forwards changes to a callback

Events are forwarded as-is; coalescing and exclusion filtering happen in
the debounce engine.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from nassync.core.types import ChangeKind
from nassync.sync.types import ChangeCallback, FileChangeEvent

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

logger = logging.getLogger(__name__)


def _decode(path: str | bytes) -> Path:
    if isinstance(path, bytes):
        path = path.decode("utf-8", errors="replace")
    return Path(path)


class ChangeEventHandler(FileSystemEventHandler):
    """Event handler translating watchdog events."""

    def __init__(self, on_change: ChangeCallback) -> None:
        """Initialize the handler.

        Args:
            on_change: Receives every normalized change.
        """
        super().__init__()
        self._on_change = on_change

    def _handle_event(self, event: FileSystemEvent) -> None:
        # Directory mtime updates accompany every child change
        if isinstance(event, DirModifiedEvent):
            return

        if isinstance(event, FileCreatedEvent | DirCreatedEvent):
            kind = ChangeKind.CREATED
        elif isinstance(event, FileModifiedEvent):
            kind = ChangeKind.MODIFIED
        elif isinstance(event, FileDeletedEvent | DirDeletedEvent):
            kind = ChangeKind.DELETED
        elif isinstance(event, FileMovedEvent | DirMovedEvent):
            kind = ChangeKind.RENAMED
        else:
            return

        dest_path = None
        if kind is ChangeKind.RENAMED:
            dest_path = _decode(event.dest_path)

        change = FileChangeEvent(
            path=_decode(event.src_path),
            kind=kind,
            observed_at=time.monotonic(),
            dest_path=dest_path,
            is_directory=event.is_directory,
        )
        logger.debug("File change detected: %s %s", change.kind.value, change.path)
        self._on_change(change)

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle created event."""
        self._handle_event(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle modified event."""
        self._handle_event(event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Handle deleted event."""
        self._handle_event(event)

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle moved event."""
        self._handle_event(event)


class FileWatcher:
    """Watches a directory tree and forwards changes to a callback."""

    def __init__(self, watch_path: Path, on_change: ChangeCallback) -> None:
        """Initialize the file watcher.

        Args:
            watch_path: Directory to watch recursively.
            on_change: Receives every normalized change.

        Raises:
            ValueError: If watch_path is not a directory.
        """
        self._watch_path = Path(watch_path).resolve()
        if not self._watch_path.is_dir():
            raise ValueError(f"Watch path must be a directory: {watch_path}")

        self._handler = ChangeEventHandler(on_change)
        self._observer: BaseObserver = Observer()
        self._running = False

    @property
    def watch_path(self) -> Path:
        """Get the watched directory path."""
        return self._watch_path

    @property
    def is_running(self) -> bool:
        """Check if the watcher is running."""
        return self._running

    def start(self) -> None:
        """Start watching for changes."""
        if self._running:
            return

        self._observer.schedule(self._handler, str(self._watch_path), recursive=True)
        self._observer.start()
        self._running = True
        logger.info("Monitoring: %s", self._watch_path)

    def stop(self) -> None:
        """Stop watching for changes."""
        if not self._running:
            return

        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._running = False

