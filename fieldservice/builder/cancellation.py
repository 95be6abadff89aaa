"""Cancellation token shared by a builder session and its pending saves."""
import threading


class CancellationToken:
    """
    Set once when the owning dialog closes. Work that completes after that
    point checks `cancelled` and discards its result instead of touching
    state nobody is looking at anymore.
    """

    def __init__(self):
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()
