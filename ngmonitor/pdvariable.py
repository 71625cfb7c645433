"""Cluster-wide variables read from the coordination service's global config keys."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, replace
from typing import Callable, Iterable

from .misc import go_with_recovery

logger = logging.getLogger(__name__)

GLOBAL_CONFIG_PATH = "/global/config/"
DEFAULT_RETRY_COUNT = 5
DEFAULT_RETRY_INTERVAL = 0.2
DEFAULT_TICK_INTERVAL = 60.0
EVENT_PUT = "PUT"
EVENT_DELETE = "DELETE"

_TRUE_WORDS = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_WORDS = {"0", "f", "F", "FALSE", "false", "False"}

Fetch = Callable[[str], Iterable[tuple[str, str]]]
Watch = Callable[[str, threading.Event], Iterable[Iterable[tuple[str, str, str]]]]


@dataclass(frozen=True)
class PDVariable:
    enable_top_sql: bool = False


def default_pd_variable() -> PDVariable:
    return PDVariable(enable_top_sql=False)


def _text(value: str | bytes) -> str:
    return value.decode("utf-8") if isinstance(value, (bytes, bytearray)) else str(value)


def _parse_bool(value: str) -> bool:
    if value in _TRUE_WORDS:
        return True
    if value in _FALSE_WORDS:
        return False
    raise ValueError(value)


def parse_global_config(key: str | bytes, value: str | bytes, variable: PDVariable) -> PDVariable:
    """Return ``variable`` updated by one global config entry; unknown keys are ignored."""
    name = _text(key).removeprefix(GLOBAL_CONFIG_PATH)
    text = _text(value)
    if name == "enable_resource_metering":
        try:
            enabled = _parse_bool(text)
        except ValueError:
            raise ValueError(
                f"global config enable_resource_metering has invalid value: {text}"
            ) from None
        return replace(variable, enable_top_sql=enabled)
    return variable


class VariableLoader:
    """Keeps the latest PD variables, refreshed periodically and from a change feed.

    ``fetch(prefix)`` returns the ``(key, value)`` pairs stored under ``prefix``.
    ``watch(prefix, stop_event)``, if given, yields batches of
    ``(kind, key, value)`` change events; only ``"PUT"`` events are applied.
    """

    def __init__(
        self,
        fetch: Fetch,
        watch: Watch | None = None,
        *,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        retry_count: int = DEFAULT_RETRY_COUNT,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
        reconnect_delay: float = 1.0,
    ) -> None:
        self._fetch = fetch
        self._watch = watch
        self.tick_interval = tick_interval
        self.retry_count = retry_count
        self.retry_interval = retry_interval
        self.reconnect_delay = reconnect_delay
        self._variable = default_pd_variable()
        self._lock = threading.Lock()
        self._subscribers: list[queue.Queue] = []
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    def load(self) -> PDVariable:
        """Return the current variables."""
        with self._lock:
            return self._variable

    def subscribe(self) -> queue.Queue:
        """Return a queue that receives a getter for the variables whenever they change.

        One getter is queued at once; after :meth:`stop` the queue holds None.
        """
        channel: queue.Queue = queue.Queue(maxsize=1)
        with self._lock:
            self._subscribers.append(channel)
            channel.put_nowait(self.load)
        return channel

    def _notify(self) -> None:
        for channel in self._subscribers:
            try:
                channel.put_nowait(self.load)
            except queue.Full:
                pass

    def _store(self, variable: PDVariable) -> bool:
        with self._lock:
            if variable == self._variable:
                return False
            self._variable = variable
            self._notify()
        logger.info("load global config: %s", variable)
        return True

    def load_all(self) -> PDVariable:
        """Read every global config entry, retrying failed reads.

        Raises the last read error when all attempts fail, ValueError for an
        invalid value and RuntimeError once the loader is stopped.
        """
        last_error: Exception | None = None
        for _ in range(self.retry_count):
            if self._stop.is_set():
                raise RuntimeError("variable loader is stopped")
            try:
                pairs = list(self._fetch(GLOBAL_CONFIG_PATH))
            except Exception as exc:  # noqa: BLE001 - any client failure is retried
                last_error = exc
                logger.debug("load global config failed: %s", exc)
                self._stop.wait(self.retry_interval)
                continue
            variable = default_pd_variable()
            for key, value in pairs:
                variable = parse_global_config(key, value, variable)
            return variable
        if last_error is None:
            raise RuntimeError("no attempt was made to load global config")
        raise last_error

    def apply_events(self, events: Iterable[tuple[str, str, str]]) -> bool:
        """Apply a batch of change events; return True if the variables changed."""
        with self._lock:
            variable = self._variable
        for kind, key, value in events:
            if kind != EVENT_PUT:
                continue
            try:
                variable = parse_global_config(key, value, variable)
            except ValueError as exc:
                logger.error("load global config failed: %s", exc)
            logger.info("watch global config changed: %s", variable)
        return self._store(variable)

    def refresh(self) -> bool:
        """Reload all entries; return True if the variables changed."""
        try:
            variable = self.load_all()
        except Exception as exc:  # noqa: BLE001 - a failed round is only logged
            logger.error("load global config failed: %s", exc)
            return False
        return self._store(variable)

    def _tick_loop(self) -> None:
        self.refresh()
        while not self._stop.wait(self.tick_interval):
            self.refresh()

    def _watch_loop(self) -> None:
        assert self._watch is not None
        while not self._stop.is_set():
            try:
                for batch in self._watch(GLOBAL_CONFIG_PATH, self._stop):
                    if self._stop.is_set():
                        return
                    self.apply_events(batch)
            except Exception as exc:  # noqa: BLE001 - the feed is reopened below
                logger.error("global config watch failed: %s", exc)
            if self._stop.is_set():
                return
            logger.info("global config watch channel closed")
            self._stop.wait(self.reconnect_delay)

    def start(self) -> None:
        """Start loading in background threads."""
        if self._threads:
            raise RuntimeError("variable loader already started")
        targets = [self._tick_loop]
        if self._watch is not None:
            targets.append(self._watch_loop)
        for target in targets:
            thread = threading.Thread(target=go_with_recovery, args=(target,), daemon=True)
            thread.start()
            self._threads.append(thread)

    def stop(self) -> None:
        """Stop the background threads and close every subscription."""
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=5.0)
        with self._lock:
            for channel in self._subscribers:
                while True:
                    try:
                        channel.get_nowait()
                    except queue.Empty:
                        break
                channel.put_nowait(None)