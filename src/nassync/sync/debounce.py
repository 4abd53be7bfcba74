"""Debounce engine coalescing change bursts into triggers.

This module provides:
- DebounceEngine: Per-profile pure debounce with an injectable clock
- DebounceWindow: Pending window of one profile

Every accepted event moves the profile's deadline to ``now + duration``.
When a deadline passes without renewal, exactly one DebounceTrigger is
emitted for the profile and the window is discarded. Triggers carry the
profile identity only; the sync pass re-scans the tree.

Excluded paths are filtered before they can open or renew a window, so
churn in excluded directories never keeps a profile from going idle.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from nassync.sync.ignore import ExclusionPatterns
from nassync.sync.types import DebounceTrigger, FileChangeEvent, TriggerCallback

logger = logging.getLogger(__name__)


@dataclass
class DebounceWindow:
    """Open coalescing window of one profile."""

    profile: str
    opened_at: float
    deadline: float
    paths: set[Path] = field(default_factory=set)
    event_count: int = 0


@dataclass(frozen=True)
class _ProfileFilter:
    root: Path
    duration: float
    exclusions: ExclusionPatterns


class DebounceEngine:
    """Coalesces change events per profile.

    Usage:
        engine = DebounceEngine(on_trigger=scheduler_lookup)
        engine.register("Docs", root, duration=5.0, exclude=[".git"])
        engine.start()
        engine.observe("Docs", event)  # from the watcher thread
        ...
        engine.stop()
    """

    def __init__(
        self,
        on_trigger: TriggerCallback,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the engine.

        Args:
            on_trigger: Receives one DebounceTrigger per elapsed window.
            clock: Monotonic time source.
        """
        self._on_trigger = on_trigger
        self._clock = clock
        self._lock = threading.Lock()
        self._wakeup = threading.Condition(self._lock)
        self._profiles: dict[str, _ProfileFilter] = {}
        self._windows: dict[str, DebounceWindow] = {}
        self._thread: threading.Thread | None = None
        self._stopped = False

    def register(
        self,
        profile: str,
        root: Path,
        duration: float,
        exclude: list[str] | tuple[str, ...] = (),
    ) -> None:
        """Register a profile with its root, quiet period and exclusions."""
        with self._lock:
            self._profiles[profile] = _ProfileFilter(
                root=Path(root).resolve(),
                duration=duration,
                exclusions=ExclusionPatterns(exclude),
            )

    def _is_excluded(self, settings: _ProfileFilter, event: FileChangeEvent) -> bool:
        if not settings.exclusions:
            return False
        paths = [event.path] if event.dest_path is None else [event.path, event.dest_path]
        return all(self._excluded_path(settings, path, event.is_directory) for path in paths)

    @staticmethod
    def _excluded_path(settings: _ProfileFilter, path: Path, is_dir: bool) -> bool:
        try:
            rel = path.relative_to(settings.root)
        except ValueError:
            return False
        return settings.exclusions.matches_relative(str(rel).replace("\\", "/"), is_dir=is_dir)

    def observe(self, profile: str, event: FileChangeEvent) -> bool:
        """Feed one change event for a profile.

        Returns:
            True if the event opened or renewed a window, False if it was
            excluded or the profile is unknown.
        """
        with self._lock:
            settings = self._profiles.get(profile)
            if settings is None:
                logger.warning("Change event for unregistered profile %s ignored", profile)
                return False
            if self._is_excluded(settings, event):
                logger.debug("Excluded change ignored: %s", event.path)
                return False

            now = self._clock()
            window = self._windows.get(profile)
            if window is None:
                window = DebounceWindow(profile=profile, opened_at=now, deadline=now)
                self._windows[profile] = window
                logger.debug("Debounce window opened for %s", profile)

            window.deadline = now + settings.duration
            window.event_count += 1
            window.paths.add(event.path)
            self._wakeup.notify()
            return True

    def pending(self, profile: str) -> DebounceWindow | None:
        """Return the open window of a profile, if any."""
        with self._lock:
            return self._windows.get(profile)

    def discard(self, profile: str | None = None) -> None:
        """Drop open windows without firing them."""
        with self._lock:
            if profile is None:
                self._windows.clear()
            else:
                self._windows.pop(profile, None)

    def fire_due(self, now: float | None = None) -> list[DebounceTrigger]:
        """Fire every window whose deadline has passed.

        Args:
            now: Current time (defaults to the engine clock).

        Returns:
            The triggers emitted.
        """
        with self._lock:
            now = self._clock() if now is None else now
            due = [w for w in self._windows.values() if w.deadline <= now]
            for window in due:
                del self._windows[window.profile]

        triggers = [
            DebounceTrigger(
                profile=window.profile,
                opened_at=window.opened_at,
                fired_at=window.deadline,
                event_count=window.event_count,
            )
            for window in due
        ]
        # Callbacks run outside the lock
        for trigger in triggers:
            logger.info(
                "Debounce period elapsed for %s (%d events), triggering sync",
                trigger.profile,
                trigger.event_count,
            )
            self._on_trigger(trigger)
        return triggers

    def _next_timeout(self) -> float | None:
        if not self._windows:
            return None
        earliest = min(w.deadline for w in self._windows.values())
        return max(0.0, earliest - self._clock())

    def _run(self) -> None:
        while True:
            with self._wakeup:
                if self._stopped:
                    return
                timeout = self._next_timeout()
                if timeout is None or timeout > 0:
                    self._wakeup.wait(timeout=timeout)
                if self._stopped:
                    return
            try:
                self.fire_due()
            except Exception:
                logger.exception("Debounce trigger callback failed")

    def start(self) -> None:
        """Start the background thread firing elapsed windows."""
        with self._lock:
            if self._thread is not None:
                return
            self._stopped = False
            self._thread = threading.Thread(target=self._run, name="DebounceEngine", daemon=True)
            self._thread.start()

    def stop(self) -> None:
        """Stop the background thread; pending windows are discarded."""
        with self._wakeup:
            self._stopped = True
            self._windows.clear()
            self._wakeup.notify_all()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None
