"""Small helpers: guarded execution and local address discovery."""

from __future__ import annotations

import ipaddress
import logging
import socket
from typing import Any, Callable

logger = logging.getLogger(__name__)

# A documentation-only address: connecting a UDP socket to it sends nothing
# but makes the system pick the outgoing interface.
_PROBE_ADDRESS = ("192.0.2.1", 9)


def go_with_recovery(
    func: Callable[[], Any],
    recover_fn: Callable[[BaseException | None], Any] | None = None,
) -> None:
    """Run ``func`` and never let an exception escape.

    ``recover_fn``, if given, is called afterwards with the caught exception,
    or with None if ``func`` finished normally. A caught exception is logged
    together with its traceback.
    """
    caught: BaseException | None = None
    try:
        func()
    except Exception as exc:  # noqa: BLE001 - the point is to contain any failure
        caught = exc
    if recover_fn is not None:
        recover_fn(caught)
    if caught is not None:
        logger.error(
            "panic in the recoverable goroutine: %r",
            caught,
            exc_info=(type(caught), caught, caught.__traceback__),
        )


def _is_global_unicast(address: str) -> bool:
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return False
    if ip.is_loopback or ip.is_multicast or ip.is_link_local or ip.is_unspecified:
        return False
    if ip.version == 4 and ip == ipaddress.IPv4Address("255.255.255.255"):
        return False
    return True


def _candidate_addresses():
    try:
        for info in socket.getaddrinfo(socket.gethostname(), None):
            yield str(info[4][0])
    except OSError:
        pass
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
            probe.connect(_PROBE_ADDRESS)
            yield str(probe.getsockname()[0])
    except OSError:
        pass


def get_local_ip() -> str:
    """Return a non-loopback, non-unspecified local IP, or "" if none is found."""
    for address in _candidate_addresses():
        if _is_global_unicast(address):
            return address.split("%", 1)[0]
    return ""