"""
cancellation.py - Cooperative cancellation scoped to one mission run

Replaces a process-wide "is ok" flag: every long-running loop of a
mission checks the same token and exits on its next iteration once it
is cancelled.
"""

import threading
from typing import Optional


class CancellationToken:
    """Thread-safe, one-way cancellation flag."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        with self._lock:
            return self._reason

    def cancel(self, reason: str = '') -> bool:
        """
        Cancel the token.

        Returns:
            True for the call that actually cancelled it, False afterwards
        """
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
        return True

    def wait(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds; returns True early if cancelled."""
        return self._event.wait(timeout)

    def __repr__(self) -> str:
        return f'CancellationToken(cancelled={self.cancelled}, reason={self.reason!r})'
