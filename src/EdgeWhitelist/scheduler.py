# === NAVMAP v1 ===
# {
#   "module": "EdgeWhitelist.scheduler",
#   "purpose": "Two-state background refresh loop with cooperative cancellation and bounded shutdown",
#   "sections": [
#     {"id": "schedulerstate", "name": "SchedulerState", "anchor": "class-schedulerstate", "kind": "class"},
#     {"id": "refreshscheduler", "name": "RefreshScheduler", "anchor": "class-refreshscheduler", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Periodic refresh driver.

A :class:`RefreshScheduler` owns one background thread, one
:class:`~EdgeWhitelist.cancellation.CancellationToken`, and a fixed-interval
timer.  On start it performs one immediate refresh, then one refresh per
tick until the token is cancelled.  Ticks are aligned to the start time; when
a refresh overruns one or more ticks the missed ticks are dropped rather than
replayed back to back.

Refresh failures (:class:`~EdgeWhitelist.errors.RefreshError`) are logged and
the loop carries on, leaving the last successful publication authoritative
at the consumer.  Any other exception is logged with its traceback and the
loop likewise carries on to the next tick.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from datetime import timedelta
from typing import Callable, Optional, Union

from .cancellation import CancellationToken
from .errors import ConstructionError, RefreshCancelled, RefreshError
from .settings import get_settings

LOGGER = logging.getLogger(__name__)

RefreshCallable = Callable[[CancellationToken], bool]


class SchedulerState(str, enum.Enum):
    """Lifecycle states of a :class:`RefreshScheduler`."""

    STOPPED = "stopped"
    RUNNING = "running"


def _as_seconds(interval: Union[float, timedelta]) -> float:
    if isinstance(interval, timedelta):
        return interval.total_seconds()
    return float(interval)


class RefreshScheduler:
    """Run ``refresh`` immediately and then every ``interval`` on a daemon thread.

    Args:
        interval: Tick period, as seconds or a timedelta.
        refresh: Callable performing one refresh-and-publish with the
            scheduler's token; returns whether a configuration was delivered.
        name: Thread name and log label.
        join_timeout: Upper bound for :meth:`stop` to wait on the thread;
            defaults to one HTTP request timeout plus one second.

    Examples:
        >>> scheduler = RefreshScheduler(60, lambda token: True)
        >>> scheduler.state
        <SchedulerState.STOPPED: 'stopped'>
        >>> scheduler.stop()
        True
    """

    def __init__(
        self,
        interval: Union[float, timedelta],
        refresh: RefreshCallable,
        *,
        name: str = "edge-whitelist",
        join_timeout: Optional[float] = None,
    ) -> None:
        self._interval = _as_seconds(interval)
        self._refresh = refresh
        self._name = name
        self._join_timeout = join_timeout
        self._token: Optional[CancellationToken] = None
        self._thread: Optional[threading.Thread] = None
        self._state = SchedulerState.STOPPED
        self._lock = threading.Lock()
        self.ticks = 0
        self.last_error: Optional[BaseException] = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SchedulerState.RUNNING

    @property
    def interval(self) -> float:
        return self._interval

    def start(self) -> None:
        """Start the background loop.

        Raises:
            ConstructionError: If the interval is not positive.
            RuntimeError: If the scheduler is already running.
        """

        if self._interval <= 0:
            raise ConstructionError("poll interval must be greater than 0")
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                raise RuntimeError(f"scheduler {self._name!r} is already running")
            token = CancellationToken()
            thread = threading.Thread(target=self._run, args=(token,), name=self._name, daemon=True)
            self._token = token
            self._thread = thread
            self._state = SchedulerState.RUNNING
            thread.start()
        LOGGER.info(
            "refresh scheduler started",
            extra={"stage": "schedule", "scheduler": self._name, "interval_sec": self._interval},
        )

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Cancel the loop and wait for the thread to exit.

        Safe to call repeatedly, concurrently with an in-flight refresh, or
        before :meth:`start`.

        Returns:
            True when no background thread remains alive.
        """

        with self._lock:
            token, thread = self._token, self._thread
        if token is not None:
            token.cancel()
        if thread is None:
            self._state = SchedulerState.STOPPED
            return True
        if thread is threading.current_thread():
            return False

        if timeout is None:
            timeout = self._join_timeout
        if timeout is None:
            timeout = get_settings().http.timeout_sec + 1.0
        thread.join(timeout)
        if thread.is_alive():
            LOGGER.warning(
                "refresh thread still running after stop",
                extra={"stage": "schedule", "scheduler": self._name, "timeout_sec": timeout},
            )
            return False

        with self._lock:
            if self._thread is thread:
                self._thread = None
            self._state = SchedulerState.STOPPED
        return True

    def run_once(self, cancellation_token: Optional[CancellationToken] = None) -> bool:
        """Perform a single refresh cycle synchronously on the calling thread."""

        return self._run_cycle(cancellation_token or CancellationToken())

    def _run_cycle(self, token: CancellationToken) -> bool:
        try:
            delivered = self._refresh(token)
        except RefreshCancelled:
            LOGGER.debug("refresh cancelled", extra={"stage": "refresh", "scheduler": self._name})
            return False
        except RefreshError as exc:
            self.last_error = exc
            LOGGER.warning(
                "failed to refresh configuration: %s",
                exc,
                extra={
                    "stage": "refresh",
                    "scheduler": self._name,
                    "error_type": type(exc).__name__,
                },
            )
            return False
        except Exception as exc:
            self.last_error = exc
            LOGGER.exception(
                "unexpected error during refresh",
                extra={"stage": "refresh", "scheduler": self._name, "error_type": type(exc).__name__},
            )
            return False
        if delivered:
            self.ticks += 1
            self.last_error = None
        return delivered

    def _run(self, token: CancellationToken) -> None:
        try:
            self._run_cycle(token)
            next_tick = time.monotonic() + self._interval
            while not token.wait(max(0.0, next_tick - time.monotonic())):
                self._run_cycle(token)
                next_tick += self._interval
                now = time.monotonic()
                if next_tick <= now:
                    missed = int((now - next_tick) // self._interval) + 1
                    next_tick += missed * self._interval
        finally:
            self._state = SchedulerState.STOPPED
            LOGGER.info("refresh scheduler stopped", extra={"stage": "schedule", "scheduler": self._name})


__all__ = ["RefreshScheduler", "SchedulerState"]
