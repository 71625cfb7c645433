import threading
import time

from ngmonitor.retry import with_retry, with_retry_backoff


def _counting(executed, done_at=None):
    def attempt(retried):
        assert retried == executed[0]
        executed[0] += 1
        return done_at is not None and retried == done_at

    return attempt


def _event_set_after(seconds):
    event = threading.Event()
    timer = threading.Timer(seconds, event.set)
    timer.daemon = True
    timer.start()
    return event


def test_with_retry():
    max_retry_times = 10
    executed = [0]
    with_retry(max_retry_times, 0.001, _counting(executed))
    assert executed[0] == max_retry_times + 1


def test_with_retry_ctx_done():
    stop = _event_set_after(0.01)
    executed = [0]
    started = time.monotonic()
    with_retry(10, 60.0, _counting(executed), stop)
    assert executed[0] == 1
    assert time.monotonic() - started < 30


def test_with_retry_done_midway():
    executed = [0]
    with_retry(10, 0.001, _counting(executed, done_at=3))
    assert executed[0] == 4


def test_with_retry_backoff():
    started = time.monotonic()
    max_retry_times = 10
    executed = [0]
    with_retry_backoff(max_retry_times, 0.001, _counting(executed))
    assert executed[0] == max_retry_times + 1
    # about 1023 milliseconds of waiting in total
    assert time.monotonic() - started > 1.0


def test_with_retry_backoff_ctx_done():
    stop = _event_set_after(0.01)
    executed = [0]
    with_retry_backoff(10, 60.0, _counting(executed), stop)
    assert executed[0] == 1


def test_with_retry_backoff_done_midway():
    executed = [0]
    with_retry_backoff(10, 0.001, _counting(executed, done_at=3))
    assert executed[0] == 4


def test_with_retry_zero_retries_runs_once():
    executed = [0]
    with_retry(0, 60.0, _counting(executed))
    assert executed[0] == 1