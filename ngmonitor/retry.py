"""Generic retry helpers with fixed or doubling delays."""

from __future__ import annotations

import threading
import time
from typing import Callable


def _pause(seconds: float, stop_event: threading.Event | None) -> bool:
    """Sleep for ``seconds``; return True if ``stop_event`` fired meanwhile."""
    if stop_event is None:
        time.sleep(seconds)
        return False
    return stop_event.wait(seconds)


def with_retry(
    max_retry_times: int,
    duration: float,
    func: Callable[[int], bool],
    stop_event: threading.Event | None = None,
) -> None:
    """Call ``func(retried)`` until it returns True, retries run out or ``stop_event`` is set.

    Between attempts this waits ``duration`` seconds. ``func`` receives the
    number of retries done so far, starting at 0.
    """
    for retried in range(max_retry_times + 1):
        if func(retried):
            return
        if retried < max_retry_times and _pause(duration, stop_event):
            return


def with_retry_backoff(
    max_retry_times: int,
    first_duration: float,
    func: Callable[[int], bool],
    stop_event: threading.Event | None = None,
) -> None:
    """Like :func:`with_retry`, but the delay doubles after every failed attempt."""
    duration = first_duration
    for retried in range(max_retry_times + 1):
        if func(retried):
            return
        if retried < max_retry_times:
            if _pause(duration, stop_event):
                return
            duration *= 2