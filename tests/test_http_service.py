import json
import sqlite3
import urllib.error
import urllib.request

import pytest

from ngmonitor.config import get_default_config, get_global_config, store_global_config
from ngmonitor.http_service import HTTPService
from ngmonitor.persist import load_config_from_storage


@pytest.fixture
def service(tmp_path):
    store_global_config(get_default_config())
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    load_config_from_storage(lambda: conn)
    cfg = get_default_config()
    cfg.address = "127.0.0.1:0"
    cfg.log.path = str(tmp_path)
    svc = HTTPService(cfg)
    svc.start()
    yield svc
    svc.stop()
    conn.close()


def call(svc, path, body=None):
    url = f"http://{svc.address()}{path}"
    req = urllib.request.Request(url, data=body, method="POST" if body is not None else "GET")
    if body is not None:
        req.add_header("Content-Type", "application/json")
    try:
        with urllib.request.urlopen(req, timeout=5) as resp:
            return resp.status, resp.read()
    except urllib.error.HTTPError as err:
        return err.code, err.read()


def test_health(service):
    status, body = call(service, "/health")
    assert status == 200
    assert json.loads(body) == {"health": True}


def test_get_config_matches_global(service):
    status, body = call(service, "/config")
    assert status == 200
    assert len(body) > 10
    assert json.loads(body) == get_global_config().to_dict()


def test_post_config_cases(service):
    status, _ = call(
        service,
        "/config",
        b'{"continuous_profiling": {"enable": true,"profile_seconds":6,"interval_seconds":11}}',
    )
    assert status == 200
    cfg = get_global_config().continue_profiling
    assert (cfg.enable, cfg.profile_seconds, cfg.interval_seconds) == (True, 6, 11)

    status, body = call(
        service,
        "/config",
        b'{"continuous_profiling": {"enable": true,"profile_seconds":1000,"interval_seconds":11}}',
    )
    assert status == 503
    assert body.decode() == (
        r'{"message":"new config is invalid: {\"data_retention_seconds\":259200,'
        r'\"enable\":true,\"interval_seconds\":11,\"profile_seconds\":1000,'
        r'\"timeout_seconds\":120}","status":"error"}'
    )

    status, body = call(service, "/config", b"")
    assert status == 503
    assert body.decode() == '{"message":"EOF","status":"error"}'

    status, body = call(service, "/config", b'{"unknown_module": {"enable": true}}')
    assert status == 503
    assert body.decode() == (
        '{"message":"config unknown_module not support modify or unknow","status":"error"}'
    )

    cfg = get_global_config().continue_profiling
    assert (cfg.enable, cfg.profile_seconds, cfg.interval_seconds) == (True, 6, 11)


def test_unknown_path_is_404(service):
    status, _ = call(service, "/nothing")
    assert status == 404


def test_access_log_written(service, tmp_path):
    status, body = call(service, "/health")
    assert status == 200
    assert json.loads(body) == {"health": True}
    log_text = (tmp_path / "service.log").read_text()
    assert "/health" in log_text


def test_stop_closes_listener(tmp_path):
    cfg = get_default_config()
    cfg.address = "127.0.0.1:0"
    cfg.log.path = str(tmp_path)
    svc = HTTPService(cfg)
    svc.start()
    url = f"http://{svc.address()}/health"
    svc.stop()
    with pytest.raises(urllib.error.URLError):
        urllib.request.urlopen(url, timeout=2)
    with pytest.raises(RuntimeError):
        svc.address()