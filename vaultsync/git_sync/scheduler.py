"""Background sync loop and the exclusive-run guard shared by every pass."""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Optional

from ..config import ConfigStore, SyncConfig
from ..errors import SyncEngineError, SyncInProgressError, ToolUnavailableError
from .utils import SyncResult


class SyncGuard:
    """
    Exclusive-run guard: at most one sync pass, pull, push or migration at a time.

    ``holder`` names whoever owns the guard, for log lines and error messages.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._holder: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._lock.locked()

    @property
    def holder(self) -> Optional[str]:
        return self._holder

    def try_acquire(self, holder: str) -> bool:
        if not self._lock.acquire(blocking=False):
            return False
        self._holder = holder
        return True

    def acquire(self, holder: str, timeout: Optional[float] = None) -> bool:
        """Block up to ``timeout`` seconds (forever when None)."""
        acquired = self._lock.acquire(timeout=-1 if timeout is None else timeout)
        if acquired:
            self._holder = holder
        return acquired

    def release(self) -> None:
        self._holder = None
        self._lock.release()

    @contextmanager
    def hold(self, holder: str):
        """
        Hold the guard for a manual operation without waiting.

        Raises:
            SyncInProgressError: if another pass already holds the guard
        """
        if not self.try_acquire(holder):
            raise SyncInProgressError(
                f"Cannot start {holder}: {self._holder or 'another sync'} is already running",
                context={'running': self._holder or 'unknown'}
            )
        try:
            yield self
        finally:
            self.release()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait until no pass is running. Returns False on timeout."""
        if not self._lock.acquire(timeout=-1 if timeout is None else timeout):
            return False
        self._lock.release()
        return True


class SyncScheduler:
    """
    Process-wide timer that runs scheduled sync passes.

    Ticks every ``commit_interval`` seconds while sync is enabled. A tick that
    finds the guard taken is dropped, never queued. Config changes wake the
    loop so a new interval applies at once.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        run_pass: Callable[[], SyncResult],
        guard: SyncGuard,
        notifications=None
    ):
        self.config_store = config_store
        self.run_pass = run_pass
        self.guard = guard
        self.notifications = notifications
        self.logger = logging.getLogger('vaultsync.scheduler')

        self.ticks_run = 0
        self.ticks_dropped = 0
        self.last_result: Optional[SyncResult] = None

        self._thread: Optional[threading.Thread] = None
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._state_lock = threading.Lock()
        self._pause_depth = 0

        config_store.subscribe(self._on_config_change)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def paused(self) -> bool:
        with self._state_lock:
            return self._pause_depth > 0

    def start(self) -> None:
        if self._stop.is_set():
            raise RuntimeError("Scheduler has been shut down and cannot be restarted")
        if self.running:
            return

        self._thread = threading.Thread(target=self._loop, name="VaultSync-Scheduler", daemon=True)
        self._thread.start()
        self.logger.info("⏰ Sync scheduler started")

    def pause(self) -> None:
        with self._state_lock:
            self._pause_depth += 1
        self.logger.debug("Sync scheduler paused")

    def resume(self) -> None:
        with self._state_lock:
            self._pause_depth = max(0, self._pause_depth - 1)
        self.logger.debug("Sync scheduler resumed")
        self._wake.set()

    def _on_config_change(self, config: SyncConfig) -> None:
        self._wake.set()

    def _next_wait(self, policy: SyncConfig) -> Optional[float]:
        if policy.enabled and policy.commit_interval > 0:
            return policy.commit_interval
        return None

    def _loop(self) -> None:
        while not self._stop.is_set():
            wait = self._next_wait(self.config_store.get())
            woken = self._wake.wait(wait)

            if self._stop.is_set():
                break
            if woken:
                # Config changed or resumed: start a fresh interval
                self._wake.clear()
                continue

            self.tick()

        self.logger.debug("Sync scheduler loop stopped")

    def tick(self) -> Optional[SyncResult]:
        """
        Run one scheduled pass if nothing else is running.

        Returns:
            The pass result, or None when the tick was skipped or failed
        """
        if self._stop.is_set() or self.paused:
            self.ticks_dropped += 1
            return None

        if not self.config_store.get().enabled:
            return None

        if not self.guard.try_acquire("scheduled sync"):
            self.ticks_dropped += 1
            self.logger.debug(f"Tick dropped: {self.guard.holder or 'a pass'} is already running")
            return None

        # shutdown() may have seen the guard idle between the first check and the acquire
        if self._stop.is_set():
            self.guard.release()
            self.ticks_dropped += 1
            return None

        started = time.time()
        try:
            result = self.run_pass()
        except ToolUnavailableError as e:
            self.logger.error(f"❌ Scheduled sync skipped: {e.message}")
            self._notify_error(e.message)
            return None
        except SyncEngineError as e:
            self.logger.warning(f"⚠️ Scheduled sync failed [{e.code}]: {e.message}")
            self._notify_error(e.message)
            return None
        except Exception as e:
            self.logger.error(f"Unexpected error in scheduled sync: {e}", exc_info=True)
            self._notify_error(f"Scheduled sync failed: {e}")
            return None
        finally:
            self.guard.release()

        self.ticks_run += 1
        self.last_result = result
        self.logger.info(f"Scheduled sync finished in {time.time() - started:.2f}s: {result.status.value}")
        if self.notifications is not None:
            self.notifications.notify_result(result, source="scheduler")
        return result

    def _notify_error(self, message: str) -> None:
        if self.notifications is not None:
            self.notifications.error(message, source="scheduler")

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> bool:
        """
        Stop the timer; optionally wait for an in-flight pass.

        The running pass is never interrupted. Safe to call more than once.

        Returns:
            True if no pass was still running when this returned
        """
        if not self._stop.is_set():
            self._stop.set()
            self._wake.set()
            self.logger.info("🛑 Sync scheduler stopping")

        if not wait:
            return not self.guard.running

        deadline = None if timeout is None else time.monotonic() + timeout
        idle = self.guard.wait_idle(timeout)

        if self._thread is not None and self._thread is not threading.current_thread():
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            self._thread.join(remaining)

        if not idle:
            self.logger.warning("Shutdown timed out with a sync pass still running")
        return idle
