"""Top-level orchestration of all profiles.

This module provides:
- SyncOrchestrator: Builds one ProfileScheduler per profile and runs them
  once (one-shot mode) or continuously (watch mode)

Profiles share nothing but the mount manager, the state store and the
shutdown signal. A failure in one profile never aborts another.
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

from nassync.core.config import AppConfig, SyncProfile
from nassync.core.errors import ConfigurationError
from nassync.core.process import CommandRunner, run_command
from nassync.mount import DEFAULT_MOUNTS_TABLE, MountManager
from nassync.state import SyncStateStore
from nassync.sync.debounce import DebounceEngine
from nassync.sync.reconcile import TwoWayReconciler
from nassync.sync.scheduler import ProfileScheduler, TransferRunner
from nassync.sync.transfer import TransferInvoker
from nassync.sync.types import (
    DebounceTrigger,
    FileChangeEvent,
    ResultCallback,
    SyncRunResult,
)
from nassync.sync.watcher import FileWatcher

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Runs sync profiles in one-shot or watch mode.

    Usage:
        orchestrator = SyncOrchestrator(config)
        try:
            results = orchestrator.run_once()
        finally:
            orchestrator.close()
    """

    def __init__(
        self,
        config: AppConfig,
        dry_run: bool = False,
        runner: CommandRunner = run_command,
        mounts_table: Path = DEFAULT_MOUNTS_TABLE,
        transfer: TransferRunner | None = None,
        store: SyncStateStore | None = None,
        on_result: ResultCallback | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Loaded configuration.
            dry_run: Simulate transfers and resolutions.
            runner: Executes external commands (mount, umount, rsync).
            mounts_table: Kernel mount table used to verify mounts.
            transfer: Transfer runner (defaults to an rsync TransferInvoker).
            store: Sync state store (opened from the engine config on demand).
            on_result: Called with every finished SyncRunResult.
        """
        self._config = config
        self._dry_run = dry_run
        self._on_result = on_result
        self._transfer = transfer or TransferInvoker(
            config.nas,
            runner=runner,
            timeout=config.engine.transfer_timeout,
        )

        self._mounts: MountManager | None = None
        if config.nas.mount_available:
            assert config.nas.smb is not None
            self._mounts = MountManager(
                config.nas.smb,
                credentials_dir=config.engine.credentials_dir,
                runner=runner,
                mounts_table=mounts_table,
            )

        self._store = store
        self._owns_store = store is None
        self._shutdown = threading.Event()
        self._schedulers: dict[str, ProfileScheduler] = {}
        self._watchers: list[FileWatcher] = []
        self._debounce: DebounceEngine | None = None
        self._previous_handlers: dict[int, Any] = {}
        self._closed = False

    @property
    def shutdown_event(self) -> threading.Event:
        return self._shutdown

    @property
    def mounts(self) -> MountManager | None:
        return self._mounts

    @property
    def schedulers(self) -> dict[str, ProfileScheduler]:
        return dict(self._schedulers)

    # === Setup ===

    def _get_store(self) -> SyncStateStore:
        if self._store is None:
            self._store = SyncStateStore(self._config.engine.state_db)
        return self._store

    def _needs_store(self, profile: SyncProfile) -> bool:
        return profile.is_two_way or self._config.engine.state_retention_days > 0

    def _scheduler(self, profile: SyncProfile, watch: bool = False) -> ProfileScheduler:
        scheduler = self._schedulers.get(profile.name)
        if scheduler is not None:
            return scheduler

        store = self._get_store() if self._needs_store(profile) else None
        reconciler = TwoWayReconciler(store) if profile.is_two_way and store else None
        scheduler = ProfileScheduler(
            profile,
            self._config,
            self._transfer,
            mounts=self._mounts,
            store=store,
            reconciler=reconciler,
            shutdown_event=self._shutdown,
            dry_run=self._dry_run,
            watch=watch,
            on_result=self._on_result,
        )
        self._schedulers[profile.name] = scheduler
        return scheduler

    def _configuration_failure(self, name: str, error: ConfigurationError) -> SyncRunResult:
        result = SyncRunResult.begin(name, dry_run=self._dry_run)
        result.fail("configuration", str(error), "configuration")
        result.finish()
        if self._on_result is not None:
            self._on_result(result)
        return result

    def select_profiles(
        self, names: list[str] | tuple[str, ...] | None = None
    ) -> tuple[list[SyncProfile], dict[str, ConfigurationError]]:
        """Resolve requested profile names.

        Returns:
            Tuple of (runnable profiles, invalid profiles by name).

        Raises:
            ConfigurationError: If a requested profile does not exist or is
                disabled, or nothing is left to run.
        """
        config = self._config
        if not names:
            profiles = config.get_enabled_profiles()
            invalid = dict(config.invalid_profiles)
        else:
            profiles = []
            invalid = {}
            for name in names:
                if name in config.invalid_profiles:
                    invalid[name] = config.invalid_profiles[name]
                    continue
                profile = config.get_profile(name)
                if profile is None:
                    raise ConfigurationError(f"Profile not found: {name}")
                if not profile.enabled:
                    raise ConfigurationError(f"Profile is disabled: {name}")
                profiles.append(profile)

        if not profiles and not invalid:
            raise ConfigurationError("No enabled profiles found")
        return profiles, invalid

    # === One-shot mode ===

    def run_once(self, names: list[str] | tuple[str, ...] | None = None) -> list[SyncRunResult]:
        """Run every selected profile once, concurrently.

        Args:
            names: Profile names to run (default: all enabled profiles).

        Returns:
            One result per profile: invalid profiles first, then the runnable
            profiles in configuration order.
        """
        profiles, invalid = self.select_profiles(names)
        logger.info("Found %d profile(s) to sync", len(profiles))

        results = [self._configuration_failure(name, error) for name, error in invalid.items()]
        if profiles:
            schedulers = [self._scheduler(profile) for profile in profiles]
            with ThreadPoolExecutor(
                max_workers=len(schedulers), thread_name_prefix="nassync-profile"
            ) as pool:
                results.extend(pool.map(lambda s: s.run_cycle(), schedulers))

        self._release_mounts()
        return results

    # === Watch mode ===

    def _on_trigger(self, trigger: DebounceTrigger) -> None:
        scheduler = self._schedulers.get(trigger.profile)
        if scheduler is None:
            logger.warning("Trigger for unknown profile %s ignored", trigger.profile)
            return
        scheduler.trigger()

    def _install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return

        def handle_signal(signum: int, frame: object) -> None:
            logger.info("Received %s, shutting down", signal.Signals(signum).name)
            self._shutdown.set()

        for signum in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[signum] = signal.signal(signum, handle_signal)

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    def start_watching(self, names: list[str] | tuple[str, ...] | None = None) -> list[SyncRunResult]:
        """Run the initial sync, then start watchers, debounce and workers.

        Returns immediately after startup; see watch() for the blocking
        variant.

        Returns:
            Results of the initial sync of every watched profile.

        Raises:
            ConfigurationError: If no selected profile has watch_mode enabled.
        """
        profiles, invalid = self.select_profiles(names)
        for name, error in invalid.items():
            logger.error("Skipping invalid profile %s: %s", name, error)

        profiles = [p for p in profiles if p.watch_mode]
        if not profiles:
            raise ConfigurationError("No profiles with watch_mode enabled found in config")

        logger.info("Starting watch mode for %d profile(s)", len(profiles))
        schedulers = [self._scheduler(profile, watch=True) for profile in profiles]

        # Initial sync
        with ThreadPoolExecutor(
            max_workers=len(schedulers), thread_name_prefix="nassync-initial"
        ) as pool:
            results = list(pool.map(lambda s: s.run_cycle(), schedulers))

        self._debounce = DebounceEngine(on_trigger=self._on_trigger)
        for scheduler in schedulers:
            profile = scheduler.profile
            scheduler.start()
            try:
                self._debounce.register(
                    profile.name,
                    profile.local_path,
                    duration=profile.debounce_seconds,
                    exclude=profile.exclude,
                )
                watcher = FileWatcher(
                    profile.local_path,
                    lambda event, name=profile.name: self._debounce_observe(name, event),
                )
                watcher.start()
            except (OSError, ValueError) as e:
                logger.error("Cannot watch profile %s: %s", profile.name, e)
                continue
            self._watchers.append(watcher)
            logger.info(
                "Started watching profile %s (debounce: %ss)",
                profile.name,
                profile.debounce_seconds,
            )

        self._debounce.start()
        return results

    def _debounce_observe(self, profile: str, event: FileChangeEvent) -> None:
        if self._debounce is not None:
            self._debounce.observe(profile, event)

    def watch(self, names: list[str] | tuple[str, ...] | None = None) -> list[SyncRunResult]:
        """Run watch mode until SIGINT/SIGTERM or shutdown_event is set.

        Returns:
            The last result of every watched profile.
        """
        self._install_signal_handlers()
        try:
            self.start_watching(names)
            logger.info("Watch mode active. Press Ctrl+C to stop.")
            while not self._shutdown.wait(timeout=1.0):
                pass
        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down")
        finally:
            self.shutdown()
            self._restore_signal_handlers()

        return [s.last_result for s in self._schedulers.values() if s.last_result is not None]

    # === Shutdown ===

    def _release_mounts(self) -> list[str]:
        if self._mounts is None:
            return []
        unreleased = self._mounts.release_all()
        if unreleased:
            logger.error("Mounts that could not be released cleanly: %s", ", ".join(unreleased))
        return unreleased

    def shutdown(self, grace: float | None = None) -> list[str]:
        """Stop watching, let in-flight cycles finish, release all mounts.

        Args:
            grace: Seconds to wait for in-flight cycles (default from config).

        Returns:
            Mount points that could not be released cleanly.
        """
        if grace is None:
            grace = self._config.engine.shutdown_grace
        logger.info("Shutting down")
        self._shutdown.set()

        for watcher in self._watchers:
            watcher.stop()
        self._watchers.clear()

        if self._debounce is not None:
            self._debounce.stop()
            self._debounce = None

        deadline = time.monotonic() + grace
        for scheduler in self._schedulers.values():
            scheduler.stop(grace=max(deadline - time.monotonic(), 0.0))

        return self._release_mounts()

    def close(self) -> None:
        """Release mounts and close the state store."""
        if self._closed:
            return
        self._closed = True
        self._release_mounts()
        if self._store is not None and self._owns_store:
            self._store.close()
