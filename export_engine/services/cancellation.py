"""Cooperative cancellation for export jobs."""

import threading

from export_engine.exceptions import JobCancelledError


class CancellationToken:
    """Flag passed down the render call chain.

    Render loops call ``raise_if_cancelled()`` at every iteration boundary
    and before blocking I/O. Safe to set from another thread or task.
    """

    def __init__(self):
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise JobCancelledError(self.reason)
