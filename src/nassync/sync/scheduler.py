"""Per-profile scheduler and sync cycle state machine.

This module provides:
- ProfileScheduler: Runs the sync cycles of one profile, one at a time

The scheduler is the per-profile "brain" of the engine. One cycle walks:

    IDLE -> PREPARING -> [MOUNTING] -> SYNCING -> [RECONCILING]
         -> FINALIZING -> [UNMOUNTING] -> IDLE

ERROR is entered from any active state when the cycle fails, and
SHUTTING_DOWN once shutdown has been requested.

Single-flight: cycles of one profile never overlap. In watch mode a
trigger arriving mid-cycle sets a single pending flag, so any number of
triggers collapses into at most one follow-up cycle.

Failure policy:
    | Failure                    | One-shot        | Watch mode                       |
    |----------------------------|-----------------|----------------------------------|
    | ConfigurationError         | abort profile   | abort cycle                      |
    | MountError (retryable)     | abort profile   | backoff retries, then degraded   |
    | MountError (fatal)         | abort profile   | degraded until next trigger      |
    | TransferError (transient)  | retry once      | retry once                       |
    | TransferError (fatal)      | abort cycle     | abort cycle                      |
    | StateStoreError            | warning         | warning                          |
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from nassync.core.errors import (
    ConfigurationError,
    MountError,
    StateStoreError,
    TransferError,
)
from nassync.core.types import ProfileState
from nassync.sync.retry import retry_with_backoff
from nassync.sync.transfer import TransferPlan
from nassync.sync.types import ResultCallback, SyncRunResult, TransferStats

if TYPE_CHECKING:
    from nassync.core.config import AppConfig, SyncProfile
    from nassync.mount import MountManager, MountSession
    from nassync.state import SyncStateStore
    from nassync.sync.reconcile import TwoWayReconciler

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


class TransferRunner(Protocol):
    """Executes one rsync-style transfer pass."""

    def run(self, plan: TransferPlan) -> TransferStats:
        ...


class _ShutdownRequested(Exception):
    """Raised inside a cycle when shutdown was requested before a transfer."""


class ProfileScheduler:
    """Owns the lifecycle of one sync profile.

    Usage:
        scheduler = ProfileScheduler(profile, config, transfer, mounts=manager)

        # One-shot
        result = scheduler.run_cycle()

        # Watch mode
        scheduler.start()
        scheduler.trigger()  # from the debounce engine
        ...
        scheduler.stop(grace=30.0)
    """

    def __init__(
        self,
        profile: SyncProfile,
        config: AppConfig,
        transfer: TransferRunner,
        mounts: MountManager | None = None,
        store: SyncStateStore | None = None,
        reconciler: TwoWayReconciler | None = None,
        shutdown_event: threading.Event | None = None,
        dry_run: bool = False,
        watch: bool = False,
        on_result: ResultCallback | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            profile: Profile to run.
            config: Whole configuration (nas and engine settings).
            transfer: Runs rsync passes.
            mounts: Shared mount manager, required when the profile mounts.
            store: Sync state store used for retention pruning.
            reconciler: Two-way reconciler, required for two-way profiles.
            shutdown_event: Process-wide shutdown signal.
            dry_run: Simulate transfers and resolutions.
            watch: Watch mode (mount failures are retried with backoff).
            on_result: Called with every finished SyncRunResult.
        """
        self._profile = profile
        self._config = config
        self._transfer = transfer
        self._mounts = mounts
        self._store = store
        self._reconciler = reconciler
        self._shutdown = shutdown_event or threading.Event()
        self._dry_run = dry_run
        self._watch = watch
        self._on_result = on_result

        self._state = ProfileState.IDLE
        self._degraded = False
        self._last_result: SyncRunResult | None = None

        # Single-flight guard for run_cycle
        self._cycle_lock = threading.Lock()

        # Worker state, all guarded by _cond
        self._cond = threading.Condition()
        self._pending = False
        self._running = False
        self._stopping = False
        self._thread: threading.Thread | None = None

    @property
    def profile(self) -> SyncProfile:
        return self._profile

    @property
    def name(self) -> str:
        return self._profile.name

    @property
    def state(self) -> ProfileState:
        """Get the current lifecycle state."""
        return self._state

    @property
    def degraded(self) -> bool:
        """True after a watch-mode mount failure until a cycle succeeds."""
        return self._degraded

    @property
    def last_result(self) -> SyncRunResult | None:
        return self._last_result

    @property
    def has_pending_trigger(self) -> bool:
        with self._cond:
            return self._pending

    def _set_state(self, state: ProfileState) -> None:
        if state is not self._state:
            logger.debug("[%s] %s -> %s", self.name, self._state.value, state.value)
            self._state = state

    # === Cycle ===

    def run_cycle(self) -> SyncRunResult:
        """Run one complete sync cycle.

        Blocks while another cycle of this profile is in flight.

        Returns:
            The run result. Failures are reported in the result, not raised.
        """
        with self._cycle_lock:
            result = self._cycle()

        self._last_result = result
        if self._on_result is not None:
            try:
                self._on_result(result)
            except Exception:
                logger.exception("Result callback failed for %s", self.name)
        return result

    def _cycle(self) -> SyncRunResult:
        result = SyncRunResult.begin(self.name, dry_run=self._dry_run)
        session: MountSession | None = None

        if self._shutdown.is_set():
            self._set_state(ProfileState.SHUTTING_DOWN)
            result.fail(ProfileState.PREPARING.value, "shutdown requested before the cycle started")
            return result.finish()

        logger.info("Starting sync for profile: %s", self.name)
        try:
            self._set_state(ProfileState.PREPARING)
            source = self._prepare()

            if self._profile.use_smb_mount:
                self._set_state(ProfileState.MOUNTING)
                session = self._acquire_session()

            destination, remote = self._resolve_destination(session)

            if self._shutdown.is_set():
                raise _ShutdownRequested()

            if self._profile.is_two_way:
                self._set_state(ProfileState.SYNCING)
                self._set_state(ProfileState.RECONCILING)
                stats = self._reconcile(source, Path(destination))
            else:
                self._set_state(ProfileState.SYNCING)
                stats = self._run_transfer(source, destination, remote)
            result.add_stats(stats)

            self._set_state(ProfileState.FINALIZING)
            self._prune_state(result)
            self._degraded = False

        except _ShutdownRequested:
            logger.info("Shutdown requested, not starting transfer for %s", self.name)
            result.fail(self._state.value, "shutdown requested before the transfer started")
        except ConfigurationError as e:
            logger.error("Configuration error in profile %s: %s", self.name, e)
            result.fail(self._state.value, str(e), "configuration")
        except MountError as e:
            logger.error("Mount failed for profile %s: %s", self.name, e)
            result.fail(self._state.value, str(e), e.kind.value)
        except TransferError as e:
            logger.error("Sync failed for profile %s: %s", self.name, e)
            result.fail(self._state.value, str(e), e.kind.value)
        except Exception as e:
            logger.exception("Unexpected error in profile %s", self.name)
            result.fail(self._state.value, str(e), type(e).__name__)
        finally:
            if session is not None:
                self._finish_session(session, result)

        result.finish()
        if self._shutdown.is_set() or self._stopping:
            self._set_state(ProfileState.SHUTTING_DOWN)
        elif result.failed:
            self._set_state(ProfileState.ERROR)
        else:
            self._set_state(ProfileState.IDLE)

        if result.failed:
            logger.error("Profile %s failed: %s", self.name, result.failure)
        else:
            logger.info(
                "Sync completed for profile %s: %d files, %.2f MB, status %s",
                self.name,
                result.files_transferred,
                result.bytes_transferred / (1024 * 1024),
                result.status.value,
            )
        return result

    def _prepare(self) -> Path:
        source = self._profile.local_path
        if not source.is_dir():
            raise ConfigurationError(
                f"Local path for profile '{self.name}' does not exist or is not a directory: "
                f"{source}"
            )
        if self._profile.is_two_way and self._reconciler is None:
            raise ConfigurationError(f"Profile '{self.name}': no reconciler for two-way sync")
        return source

    def _acquire_session(self) -> MountSession:
        if self._mounts is None:
            raise ConfigurationError(
                f"Profile '{self.name}' uses an SMB mount but no mount is configured"
            )

        mounts = self._mounts
        session = mounts.session
        if session.persistent and session.is_mounted and self.name in session.holders:
            if not mounts.health_check(session):
                logger.warning("Mount session for %s is unhealthy, remounting", self.name)
                mounts.remount(session)
            return session

        if not self._watch:
            return mounts.acquire(self._profile)

        engine = self._config.engine
        try:
            return retry_with_backoff(
                lambda: mounts.acquire(self._profile),
                max_retries=max(engine.mount_retry_attempts - 1, 0),
                initial_backoff=engine.mount_retry_backoff,
                should_retry=lambda e: isinstance(e, MountError) and e.retryable,
                retryable_exceptions=(MountError,),
                stop_event=self._shutdown,
                description=f"Mount for {self.name}",
            )
        except MountError:
            self._degraded = True
            logger.warning(
                "Profile %s marked degraded; the mount is retried on the next trigger",
                self.name,
            )
            raise

    def _resolve_destination(self, session: MountSession | None) -> tuple[str, bool]:
        remote_path = self._profile.remote_path
        if session is None:
            return self._config.nas.remote_address(remote_path), True

        destination = session.mount_point / remote_path.lstrip("/")
        if not destination.is_dir():
            raise ConfigurationError(
                f"Remote path '{remote_path}' does not exist beneath mount point "
                f"{session.mount_point}"
            )
        return str(destination), False

    def _run_transfer(self, source: Path, destination: str, remote: bool) -> TransferStats:
        plan = TransferPlan(
            source=str(source),
            destination=destination,
            mode=self._profile.sync_type,
            exclude=self._profile.exclude,
            remote=remote,
            dry_run=self._dry_run,
        )
        logger.info(
            "Syncing %s -> %s (%s)", plan.source, plan.destination, plan.mode.value
        )
        return retry_with_backoff(
            lambda: self._transfer.run(plan),
            max_retries=1,
            initial_backoff=self._config.engine.transfer_retry_backoff,
            should_retry=lambda e: isinstance(e, TransferError) and e.retryable,
            retryable_exceptions=(TransferError,),
            stop_event=self._shutdown,
            description=f"Transfer for {self.name}",
        )

    def _reconcile(self, source: Path, destination: Path) -> TransferStats:
        assert self._reconciler is not None
        logger.info("Reconciling %s <-> %s (two-way)", source, destination)
        return self._reconciler.reconcile(
            self.name,
            source,
            destination,
            strategy=self._profile.conflict_resolution,
            exclude=self._profile.exclude,
            dry_run=self._dry_run,
        )

    def _prune_state(self, result: SyncRunResult) -> None:
        days = self._config.engine.state_retention_days
        if self._store is None or days <= 0 or self._dry_run:
            return
        try:
            pruned = self._store.prune(self.name, time.time() - days * SECONDS_PER_DAY)
        except StateStoreError as e:
            logger.error("Failed to prune sync state for %s: %s", self.name, e)
            result.warnings.append(str(e))
            return
        if pruned:
            logger.debug("Retention pass removed %d entries for %s", pruned, self.name)

    def _finish_session(self, session: MountSession, result: SyncRunResult) -> None:
        if session.persistent and not self._shutdown.is_set():
            logger.debug("Keeping persistent mount %s for %s", session.mount_point, self.name)
            return

        assert self._mounts is not None
        self._set_state(ProfileState.UNMOUNTING)
        try:
            self._mounts.release(session, self.name)
        except MountError as e:
            logger.error("Failed to release mount for %s: %s", self.name, e)
            result.warnings.append(str(e))

    # === Watch mode worker ===

    def trigger(self) -> None:
        """Request a cycle; collapses with any trigger already pending."""
        with self._cond:
            if self._stopping or self._shutdown.is_set():
                logger.debug("Ignoring trigger for %s during shutdown", self.name)
                return
            if self._pending:
                logger.debug("Trigger for %s collapsed into pending cycle", self.name)
            self._pending = True
            self._cond.notify_all()

    def _idle_wait(self) -> float | None:
        if self._mounts is None or not self._profile.use_smb_mount:
            return None
        session = self._mounts.session
        if session.persistent and self.name in session.holders:
            return self._config.engine.health_check_interval
        return None

    def _idle_health_check(self) -> None:
        assert self._mounts is not None
        session = self._mounts.session
        if not session.is_mounted or self.name not in session.holders:
            return
        if self._mounts.health_check(session):
            return
        logger.warning("Persistent mount for %s became unhealthy, remounting", self.name)
        try:
            self._mounts.remount(session)
        except MountError as e:
            logger.error("Remount for %s failed: %s", self.name, e)
            self._degraded = True

    def _run(self) -> None:
        logger.debug("Worker for %s started", self.name)
        while True:
            with self._cond:
                if not self._pending and not self._stopping:
                    self._cond.wait(timeout=self._idle_wait())
                if self._stopping:
                    break
                run_now = self._pending
                self._pending = False
                self._running = run_now

            if run_now:
                try:
                    self.run_cycle()
                finally:
                    with self._cond:
                        self._running = False
                        self._cond.notify_all()
            else:
                try:
                    self._idle_health_check()
                except Exception:
                    logger.exception("Idle health check failed for %s", self.name)
        self._set_state(ProfileState.SHUTTING_DOWN)
        logger.debug("Worker for %s stopped", self.name)

    def start(self) -> None:
        """Start the worker thread serving triggers."""
        with self._cond:
            if self._thread is not None:
                logger.warning("Scheduler for %s already running", self.name)
                return
            self._stopping = False
            self._thread = threading.Thread(
                target=self._run,
                name=f"ProfileScheduler-{self.name}",
                daemon=True,
            )
            self._thread.start()

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Wait until no cycle is running or pending.

        Returns:
            True if idle, False on timeout.
        """
        with self._cond:
            return self._cond.wait_for(lambda: not self._pending and not self._running, timeout)

    def stop(self, grace: float = 30.0) -> bool:
        """Stop the worker; a running cycle may finish within the grace period.

        Pending triggers are discarded.

        Returns:
            True if the worker stopped within the grace period.
        """
        with self._cond:
            self._stopping = True
            if self._pending:
                logger.info("Discarding pending trigger for %s", self.name)
            self._pending = False
            self._cond.notify_all()
            thread = self._thread

        if thread is None:
            self._set_state(ProfileState.SHUTTING_DOWN)
            return True
        thread.join(timeout=grace)
        if thread.is_alive():
            logger.warning("Cycle for %s still running after %.0fs grace period", self.name, grace)
            return False
        self._thread = None
        return True
