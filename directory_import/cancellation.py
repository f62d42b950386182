"""
Cooperative cancellation for import runs.

A single token is shared by both import phases. It is checked at every
suspension point: before each remote page request, before each record, before
store lookups and before commit.
"""

import threading


class ImportCancelled(Exception):
    """Raised when a run observes that its cancellation token was triggered."""
    pass


class CancellationToken:
    """
    Thread-safe cancellation flag.

    ``cancel()`` may be called from a signal handler or another thread; the
    import task observes it the next time it reaches a checkpoint.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ImportCancelled("Import was cancelled")


def ensure_token(token=None) -> CancellationToken:
    """Return the given token, or a fresh one that is never cancelled."""
    return token if token is not None else CancellationToken()
