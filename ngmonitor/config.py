"""Server configuration: defaults, TOML loading, validation and the shared global copy."""

from __future__ import annotations

import copy
import logging
import queue
import re
import signal
import ssl
import threading
import tomllib
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, Callable

from .misc import get_local_ip

logger = logging.getLogger(__name__)

LEVEL_DEBUG = "DEBUG"
LEVEL_INFO = "INFO"
LEVEL_WARN = "WARN"
LEVEL_ERROR = "ERROR"
LOG_LEVELS = (LEVEL_DEBUG, LEVEL_INFO, LEVEL_WARN, LEVEL_ERROR)

_RELOAD_POLL_INTERVAL = 0.1


class ConfigError(ValueError):
    """Raised for configuration that cannot be loaded or is invalid."""


def _opt(toml_key: str | None, json_key: str, default: Any = None, factory: Callable[[], Any] | None = None):
    meta = {"toml": toml_key, "json": json_key}
    if factory is not None:
        return field(default_factory=factory, metadata=meta)
    return field(default=default, metadata=meta)


def _to_dict(obj: Any) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for f in fields(obj):
        key = f.metadata.get("json")
        if key is None:
            continue
        value = getattr(obj, f.name)
        if is_dataclass(value):
            value = _to_dict(value)
        elif isinstance(value, list):
            value = list(value)
        out[key] = value
    return out


def _coerce(value: Any, current: Any, where: str) -> Any:
    if isinstance(current, bool):
        if isinstance(value, bool):
            return value
        expected = "boolean"
    elif isinstance(current, int):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        expected = "integer"
    elif isinstance(current, float):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        expected = "float"
    elif isinstance(current, str):
        if isinstance(value, str):
            return value
        expected = "string"
    elif isinstance(current, list):
        if isinstance(value, list) and all(isinstance(item, str) for item in value):
            return list(value)
        expected = "array of strings"
    else:
        return value
    raise ConfigError(f"toml: {where}: expected {expected}, got {type(value).__name__}")


def _apply_toml(obj: Any, table: dict[str, Any], prefix: str = "") -> None:
    for f in fields(obj):
        key = f.metadata.get("toml")
        if key is None or key not in table:
            continue
        value = table[key]
        where = prefix + key
        current = getattr(obj, f.name)
        if is_dataclass(current):
            if not isinstance(value, dict):
                raise ConfigError(f"toml: {where}: expected table, got {type(value).__name__}")
            _apply_toml(current, value, where + ".")
        else:
            setattr(obj, f.name, _coerce(value, current, where))


def _split_host_port(hostport: str) -> tuple[str, str]:
    def fail(reason: str) -> ConfigError:
        return ConfigError(f"address {hostport}: {reason}")

    i = hostport.rfind(":")
    if i < 0:
        raise fail("missing port in address")
    j = k = 0
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise fail("missing ']' in address")
        if end + 1 == len(hostport):
            raise fail("missing port in address")
        if end + 1 != i:
            if hostport[end + 1] == ":":
                raise fail("too many colons in address")
            raise fail("missing port in address")
        host = hostport[1:end]
        j, k = 1, end + 1
    else:
        host = hostport[:i]
        if ":" in host:
            raise fail("too many colons in address")
    if "[" in hostport[j:]:
        raise fail("unexpected '[' in address")
    if "]" in hostport[k:]:
        raise fail("unexpected ']' in address")
    return host, hostport[i + 1:]


def validate_address(address: str, name: str) -> None:
    """Check that ``address`` is ``host:port`` with a non-zero numeric port."""
    if not address:
        raise ConfigError(f"unexpected empty {name}")
    try:
        _, port = _split_host_port(address)
        if not re.fullmatch(r"[+-]?\d+", port):
            raise ConfigError(f'invalid port "{port}"')
        if int(port) == 0:
            raise ConfigError("port cannot be set to 0")
    except ConfigError as exc:
        raise ConfigError(f"{name} {address} is invalid, err: {exc}") from exc


@dataclass
class PD:
    endpoints: list[str] = _opt("endpoints", "endpoints", factory=list)

    def equal(self, other: PD) -> bool:
        """Compare endpoints regardless of order."""
        return sorted(self.endpoints) == sorted(other.endpoints)

    def _validate(self) -> None:
        if not self.endpoints:
            raise ConfigError(
                "unexpected empty pd endpoints, please specify at least one, "
                'e.g. --pd.endpoints "127.0.0.1:2379"'
            )


@dataclass
class Storage:
    path: str = _opt("path", "path", "")

    def _validate(self) -> None:
        if not self.path:
            raise ConfigError("unexpected empty storage path")


@dataclass
class Log:
    path: str = _opt("path", "path", "")
    level: str = _opt("level", "level", "")

    def _validate(self) -> None:
        if not self.level:
            raise ConfigError("unexpected empty log level")
        if self.level not in LOG_LEVELS:
            raise ConfigError(
                f"log level should be {LEVEL_DEBUG}, {LEVEL_INFO}, {LEVEL_WARN} or {LEVEL_ERROR}"
            )


@dataclass
class Security:
    ssl_ca: str = _opt("ca-path", "ca_path", "")
    ssl_cert: str = _opt("cert-path", "cert_path", "")
    ssl_key: str = _opt("key-path", "key_path", "")
    _tls_config: ssl.SSLContext | None = field(default=None, init=False, repr=False, compare=False)

    def __deepcopy__(self, memo: dict[int, Any]) -> Security:
        clone = Security(self.ssl_ca, self.ssl_cert, self.ssl_key)
        clone._tls_config = self._tls_config
        return clone

    def get_tls_config(self) -> ssl.SSLContext | None:
        """Return a client TLS context, or None when TLS is not fully configured."""
        if self._tls_config is not None:
            return self._tls_config
        if not (self.ssl_ca and self.ssl_cert and self.ssl_key):
            return None
        try:
            context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH, cafile=self.ssl_ca)
            context.load_cert_chain(self.ssl_cert, self.ssl_key)
        except OSError as exc:
            raise ConfigError(f"Failed to load certificates: {exc}") from exc
        self._tls_config = context
        return context


@dataclass
class TSDB:
    retention_period: str = _opt("retention-period", "retention_period", "")
    search_max_unique_timeseries: int = _opt(
        "search-max-unique-timeseries", "search_max_unique_timeseries", 0
    )


@dataclass
class DocDB:
    lsm_only: bool = _opt("lsm-only", "lsm_only", False)
    sync_writes: bool = _opt("sync-writes", "sync_writes", False)
    num_versions_to_keep: int = _opt("num-versions-to-keep", "num_versions_to_keep", 0)
    num_goroutines: int = _opt("num-goroutines", "num_goroutines", 0)
    mem_table_size: int = _opt("mem-table-size", "mem_table_size", 0)
    base_table_size: int = _opt("base-table-size", "base_table_size", 0)
    base_level_size: int = _opt("base-level-size", "base_level_size", 0)
    level_size_multiplier: int = _opt("level-size-multiplier", "level_size_multiplier", 0)
    max_levels: int = _opt("max-levels", "max_levels", 0)
    vlog_percentile: float = _opt("vlog-percentile", "vlog_percentile", 0.0)
    value_threshold: int = _opt("value-threshold", "value_threshold", 0)
    num_memtables: int = _opt("num-memtables", "num_memtables", 0)
    block_size: int = _opt("block-size", "block_size", 0)
    bloom_false_positive: float = _opt("bloom-false-positive", "bloom_false_positive", 0.0)
    block_cache_size: int = _opt("block-cache-size", "block_cache_size", 0)
    index_cache_size: int = _opt("index-cache-size", "index_cache_size", 0)
    num_level_zero_tables: int = _opt("num-level-zero-tables", "num_level_zero_tables", 0)
    num_level_zero_tables_stall: int = _opt(
        "num-level-zero-tables-stall", "num_level_zero_tables_stall", 0
    )
    value_log_file_size: int = _opt("value-log-file-size", "value_log_file_size", 0)
    value_log_max_entries: int = _opt("value-log-max-entries", "value_log_max_entries", 0)
    num_compactors: int = _opt("num-compactors", "num_compactors", 0)
    zstd_compression_level: int = _opt("zstd-compression-level", "zstd_compression_level", 0)


@dataclass
class ContinueProfilingConfig:
    enable: bool = _opt(None, "enable", False)
    profile_seconds: int = _opt(None, "profile_seconds", 0)
    interval_seconds: int = _opt(None, "interval_seconds", 0)
    timeout_seconds: int = _opt(None, "timeout_seconds", 0)
    data_retention_seconds: int = _opt(None, "data_retention_seconds", 0)

    def valid(self) -> bool:
        """True when all durations are set and a profile fits in interval and timeout."""
        if 0 in (
            self.profile_seconds,
            self.interval_seconds,
            self.timeout_seconds,
            self.data_retention_seconds,
        ):
            return False
        return not (
            self.profile_seconds > self.interval_seconds
            or self.profile_seconds > self.timeout_seconds
        )

    def to_dict(self) -> dict[str, Any]:
        return _to_dict(self)


@dataclass
class Config:
    address: str = _opt("address", "address", "")
    advertise_address: str = _opt("advertise-address", "advertise_address", "")
    pd: PD = _opt("pd", "pd", factory=PD)
    log: Log = _opt("log", "log", factory=Log)
    storage: Storage = _opt("storage", "storage", factory=Storage)
    continue_profiling: ContinueProfilingConfig = _opt(
        None, "continuous_profiling", factory=ContinueProfilingConfig
    )
    security: Security = _opt("security", "security", factory=Security)
    tsdb: TSDB = _opt("tsdb", "tsdb", factory=TSDB)
    docdb: DocDB = _opt("docdb", "docdb", factory=DocDB)

    def load(self, file_name: str) -> None:
        """Overlay the settings found in a TOML file onto this config."""
        try:
            with open(file_name, "rb") as fh:
                table = tomllib.load(fh)
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise ConfigError(str(exc)) from exc
        _apply_toml(self, table)

    def to_dict(self) -> dict[str, Any]:
        return _to_dict(self)

    def get_http_scheme(self) -> str:
        return "https" if self.security.get_tls_config() is not None else "http"

    def _trim_field_space(self) -> None:
        self.address = self.address.strip()
        self.advertise_address = self.advertise_address.strip()
        self.pd.endpoints = [endpoint.strip() for endpoint in self.pd.endpoints]

    def _set_default_advertise_address(self) -> None:
        if not self.advertise_address and self.address.startswith("0.0.0.0"):
            self.advertise_address = self.address.replace("0.0.0.0", get_local_ip(), 1)
        if not self.advertise_address:
            self.advertise_address = self.address

    def _validate(self) -> None:
        validate_address(self.address, "address")
        validate_address(self.advertise_address, "advertise-address")
        if not self.address:
            raise ConfigError("unexpected empty address")
        self.pd._validate()
        self.log._validate()
        self.storage._validate()


def _default_config() -> Config:
    return Config(
        address="0.0.0.0:12020",
        pd=PD(endpoints=["127.0.0.1:2379"]),
        log=Log(path="", level=LEVEL_INFO),
        storage=Storage(path="data"),
        continue_profiling=ContinueProfilingConfig(
            enable=False,
            profile_seconds=10,
            interval_seconds=60,
            timeout_seconds=120,
            data_retention_seconds=3 * 24 * 60 * 60,
        ),
        tsdb=TSDB(retention_period="1", search_max_unique_timeseries=300000),
        docdb=DocDB(
            lsm_only=False,
            sync_writes=False,
            num_versions_to_keep=1,
            num_goroutines=8,
            mem_table_size=64 << 20,
            base_table_size=2 << 20,
            base_level_size=10 << 20,
            level_size_multiplier=10,
            max_levels=7,
            vlog_percentile=0.0,
            value_threshold=1 << 20,
            num_memtables=5,
            block_size=4 * 1024,
            bloom_false_positive=0.01,
            block_cache_size=256 << 20,
            index_cache_size=0,
            num_level_zero_tables=5,
            num_level_zero_tables_stall=15,
            value_log_file_size=(1 << 30) - 1,
            value_log_max_entries=1000000,
            num_compactors=4,
            zstd_compression_level=1,
        ),
    )


_DEFAULT_CONFIG = _default_config()


def get_default_config() -> Config:
    """Return a fresh copy of the built-in defaults."""
    return copy.deepcopy(_DEFAULT_CONFIG)


_config_lock = threading.Lock()
_global_config = get_default_config()

_subscribers_lock = threading.Lock()
_subscribers: list[queue.Queue] = []


def get_global_config() -> Config:
    """Return a copy of the current global config."""
    with _config_lock:
        return copy.deepcopy(_global_config)


def subscribe() -> queue.Queue:
    """Return a queue that receives a config getter whenever the config changes.

    One getter is already in the queue, so the current config is available at once.
    Pending notifications are coalesced: the queue holds at most one getter.
    """
    channel: queue.Queue = queue.Queue(maxsize=1)
    with _subscribers_lock:
        _subscribers.append(channel)
        channel.put_nowait(get_global_config)
    return channel


def _notify_config_change() -> None:
    with _subscribers_lock:
        for channel in _subscribers:
            try:
                channel.put_nowait(get_global_config)
            except queue.Full:
                pass


def store_global_config(config: Config) -> None:
    """Replace the global config and notify subscribers."""
    global _global_config
    with _config_lock:
        _global_config = copy.deepcopy(config)
    _notify_config_change()


def update_global_config(update: Callable[[Config], Config]) -> None:
    """Replace the global config with ``update(current)`` and notify subscribers."""
    global _global_config
    with _config_lock:
        _global_config = copy.deepcopy(update(copy.deepcopy(_global_config)))
    _notify_config_change()


def init_config(config_path: str, override: Callable[[Config], None] | None) -> Config:
    """Build the startup config from defaults, an optional file and overrides."""
    config = get_default_config()
    if config_path:
        config.load(config_path)
    if override is not None:
        override(config)
    config._trim_field_space()
    config._set_default_advertise_address()
    config._validate()
    store_global_config(config)
    return config


def reload_config(config_path: str) -> bool:
    """Re-read PD endpoints from ``config_path`` into the global config.

    Returns False, leaving the global config untouched, when the file cannot be
    loaded or names no PD endpoints.
    """
    new_config = Config()
    try:
        new_config.load(config_path)
    except ConfigError as exc:
        logger.warning("failed to reload config: %s", exc)
        return False
    if not new_config.pd.endpoints:
        logger.warning("unexpected empty PD endpoints")
        return False

    def apply(current: Config) -> Config:
        if current.pd.equal(new_config.pd):
            return current
        current.pd = copy.deepcopy(new_config.pd)
        logger.info("PD endpoints changed: %s", current.pd.endpoints)
        return current

    update_global_config(apply)
    return True


def reload_routine(
    stop_event: threading.Event | None,
    config_path: str,
    reload_event: threading.Event | None = None,
) -> None:
    """Reload the config each time ``reload_event`` is set, until ``stop_event`` is set.

    Without ``reload_event`` a SIGHUP handler is installed to trigger reloads;
    that only works when called from the main thread.
    """
    if not config_path:
        logger.warning(
            "failed to reload config due to empty config path. "
            'Please specify the command line argument "--config <path>"'
        )
        return
    if stop_event is None:
        stop_event = threading.Event()
    if reload_event is None:
        reload_event = threading.Event()
        trigger = reload_event
        try:
            signal.signal(signal.SIGHUP, lambda signum, frame: trigger.set())
        except (AttributeError, ValueError) as exc:
            logger.warning("cannot watch SIGHUP for config reload: %s", exc)

    while not stop_event.is_set():
        if not reload_event.wait(_RELOAD_POLL_INTERVAL):
            continue
        reload_event.clear()
        if stop_event.is_set():
            return
        logger.info("received SIGHUP and ready to reload config")
        reload_config(config_path)