"""A fixed-capacity token pool for bounding concurrency."""

from __future__ import annotations

import threading

_POLL_INTERVAL = 0.05


class RateLimit:
    """Hands out at most ``capacity`` tokens at a time."""

    def __init__(self, capacity: int) -> None:
        if capacity < 0:
            raise ValueError("capacity must not be negative")
        self.capacity = capacity
        self._in_use = 0
        self._cond = threading.Condition()

    def get_token(self, done: threading.Event | None = None) -> bool:
        """Block until a token is taken or ``done`` is set.

        Returns True when the caller should exit because ``done`` was set,
        False when a token was acquired.
        """
        with self._cond:
            while True:
                if done is not None and done.is_set():
                    return True
                if self._in_use < self.capacity:
                    self._in_use += 1
                    return False
                self._cond.wait(_POLL_INTERVAL if done is not None else None)

    def put_token(self) -> None:
        """Return a token to the pool."""
        with self._cond:
            if self._in_use == 0:
                raise RuntimeError("put a redundant token")
            self._in_use -= 1
            self._cond.notify()