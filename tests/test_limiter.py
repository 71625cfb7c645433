import threading

import pytest

from ngmonitor.limiter import RateLimit


def test_capacity_is_kept():
    assert RateLimit(3).capacity == 3


def test_tokens_up_to_capacity_then_done_exits():
    limit = RateLimit(2)
    assert limit.get_token() is False
    assert limit.get_token() is False
    done = threading.Event()
    done.set()
    assert limit.get_token(done) is True


def test_redundant_put_raises():
    limit = RateLimit(1)
    with pytest.raises(RuntimeError, match="put a redundant token"):
        limit.put_token()


def test_put_then_get_again():
    limit = RateLimit(1)
    assert limit.get_token() is False
    limit.put_token()
    assert limit.get_token() is False
    with pytest.raises(RuntimeError):
        limit.put_token() or limit.put_token()


def test_blocked_getter_proceeds_after_put():
    limit = RateLimit(1)
    assert limit.get_token() is False
    results = []
    worker = threading.Thread(target=lambda: results.append(limit.get_token(threading.Event())))
    worker.start()
    worker.join(0.2)
    assert worker.is_alive()
    limit.put_token()
    worker.join(5)
    assert results == [False]


def test_blocked_getter_exits_when_done_set():
    limit = RateLimit(0)
    done = threading.Event()
    results = []
    worker = threading.Thread(target=lambda: results.append(limit.get_token(done)))
    worker.start()
    worker.join(0.1)
    assert worker.is_alive()
    done.set()
    worker.join(5)
    assert results == [True]


def test_negative_capacity_rejected():
    with pytest.raises(ValueError):
        RateLimit(-1)