"""Cooperative cancellation primitive shared by the scheduler and fetchers.

A single :class:`CancellationToken` is owned by each running scheduler.  The
refresh loop waits on it between ticks, the fetcher checks it between
streamed body chunks, and the emitter polls it while a delivery channel is
full.  The implementation avoids thread interruption in favour of explicit
checks so an in-flight refresh can unwind without leaving partial state
behind.
"""

from __future__ import annotations

import threading
from typing import Optional

from .errors import RefreshCancelled


class CancellationToken:
    """Thread-safe cancellation token for cooperative task cancellation.

    Examples:
        >>> token = CancellationToken()
        >>> token.is_cancelled()
        False
        >>> token.cancel()
        >>> token.wait(0.01)
        True
    """

    def __init__(self) -> None:
        """Initialize a new cancellation token."""
        self._is_cancelled = threading.Event()

    def cancel(self) -> None:
        """Signal that cancellation has been requested."""
        self._is_cancelled.set()

    def is_cancelled(self) -> bool:
        """Check if cancellation has been requested.

        Returns:
            True if cancellation has been requested, False otherwise.
        """
        return self._is_cancelled.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancellation is requested or ``timeout`` elapses.

        Args:
            timeout: Maximum number of seconds to wait; ``None`` waits forever.

        Returns:
            True when the token was cancelled, False when the timeout elapsed.
        """
        return self._is_cancelled.wait(timeout)

    def raise_if_cancelled(self, message: str = "refresh cancelled") -> None:
        """Raise :class:`RefreshCancelled` when cancellation was requested."""
        if self._is_cancelled.is_set():
            raise RefreshCancelled(message)


def check_cancelled(token: Optional[CancellationToken], message: str = "refresh cancelled") -> None:
    """Raise :class:`RefreshCancelled` if ``token`` is present and cancelled."""

    if token is not None:
        token.raise_if_cancelled(message)


__all__ = ["CancellationToken", "check_cancelled"]
# === NAVMAP v1 ===
# {
#   "module": "EdgeWhitelist.cancellation",
#   "purpose": "Provide the cooperative cancellation token shared by the scheduler, fetcher, and emitter",
#   "sections": [
#     {"id": "token", "name": "CancellationToken", "anchor": "TOK", "kind": "api"},
#     {"id": "check", "name": "check_cancelled", "anchor": "CHK", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
