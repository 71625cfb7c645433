import ipaddress
import logging
import socket
from unittest import mock

import pytest

from ngmonitor import misc


def test_go_with_recovery_runs_func_and_reports_none():
    ran = []
    recovered = []
    misc.go_with_recovery(lambda: ran.append(1), recovered.append)
    assert ran == [1]
    assert recovered == [None]


def test_go_with_recovery_contains_exception(caplog):
    boom = ValueError("boom")
    recovered = []

    def failing():
        raise boom

    with caplog.at_level(logging.ERROR, logger="ngmonitor.misc"):
        misc.go_with_recovery(failing, recovered.append)
    assert recovered == [boom]
    assert "panic in the recoverable goroutine" in caplog.text


def test_go_with_recovery_without_handler_still_contains(caplog):
    with caplog.at_level(logging.ERROR, logger="ngmonitor.misc"):
        misc.go_with_recovery(lambda: 1 / 0, None)
    assert "ZeroDivisionError" in caplog.text


@pytest.mark.parametrize(
    "address, expected",
    [
        ("127.0.0.1", False),
        ("0.0.0.0", False),
        ("::1", False),
        ("fe80::1%eth0", False),
        ("10.1.2.3", True),
    ],
)
def test_is_global_unicast(address, expected):
    assert misc._is_global_unicast(address) is expected


def test_get_local_ip_skips_loopback():
    infos = [
        (socket.AF_INET, socket.SOCK_DGRAM, 0, "", ("127.0.0.1", 0)),
        (socket.AF_INET, socket.SOCK_DGRAM, 0, "", ("10.1.2.3", 0)),
    ]
    with mock.patch("socket.getaddrinfo", return_value=infos):
        assert misc.get_local_ip() == "10.1.2.3"


def test_get_local_ip_empty_when_nothing_found():
    with mock.patch("socket.getaddrinfo", side_effect=OSError("no")), mock.patch(
        "socket.socket", side_effect=OSError("no")
    ):
        assert misc.get_local_ip() == ""


def test_get_local_ip_result_is_usable():
    result = misc.get_local_ip()
    if result:
        assert not ipaddress.ip_address(result).is_loopback
    else:
        assert result == ""