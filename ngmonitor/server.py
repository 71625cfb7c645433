"""Command-line entry point that wires the server together."""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sqlite3
import sys
import threading
from contextlib import ExitStack

from . import docdb
from .config import (
    LEVEL_DEBUG,
    LEVEL_ERROR,
    LEVEL_WARN,
    Config,
    ConfigError,
    Log,
    init_config,
    reload_routine,
)
from .http_service import HTTPService
from .misc import go_with_recovery
from .persist import load_config_from_storage
from .printer import get_ngm_info, print_ngm_info

logger = logging.getLogger(__name__)

_RETENTION_HELP = (
    "Data with timestamps outside the retentionPeriod is automatically deleted. "
    "The following optional suffixes are supported: h (hour), d (day), w (week), y (year). "
    "If suffix isn't set, then the duration is counted in months"
)


class _CommaListAction(argparse.Action):
    """Collect comma-separated values; repeated flags append."""

    def __call__(self, parser, namespace, values, option_string=None):
        items = list(getattr(namespace, self.dest) or [])
        items.extend(values.split(",") if values else [])
        setattr(namespace, self.dest, items)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ng-monitoring-server")
    parser.add_argument("-V", "--version", action="store_true",
                        help="print version information and exit")
    parser.add_argument("--address", dest="address", default=None,
                        help="TCP address to listen for http connections")
    parser.add_argument("--pd.endpoints", dest="pd_endpoints", action=_CommaListAction, default=None,
                        help="Addresses of PD instances, separated by commas")
    parser.add_argument("--log.path", dest="log_path", default=None,
                        help="Log path of ng monitoring server")
    parser.add_argument("--storage.path", dest="storage_path", default=None,
                        help="Storage path of ng monitoring server")
    parser.add_argument("--config", dest="config", default=None, help="config file path")
    parser.add_argument("--advertise-address", dest="advertise_address", default=None,
                        help="ngm server advertise IP:PORT")
    parser.add_argument("--retention-period", dest="retention_period", default=None,
                        help=_RETENTION_HELP)
    return parser.parse_args(argv)


def override_config(config: Config, args: argparse.Namespace) -> None:
    """Apply the flags given on the command line on top of ``config``."""
    if args.address is not None:
        config.address = args.address
    if args.pd_endpoints is not None:
        config.pd.endpoints = list(args.pd_endpoints)
    if args.log_path is not None:
        config.log.path = args.log_path
    if args.storage_path is not None:
        config.storage.path = args.storage_path
    if args.advertise_address is not None:
        config.advertise_address = args.advertise_address
    if args.retention_period is not None:
        config.tsdb.retention_period = args.retention_period


def must_create_dirs(config: Config) -> None:
    """Create the log and storage directories; raises OSError on failure."""
    if config.log.path:
        os.makedirs(config.log.path, exist_ok=True)
    os.makedirs(config.storage.path, exist_ok=True)


def _init_logging(log_config: Log) -> None:
    if log_config.path:
        os.makedirs(log_config.path, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(
            os.path.join(log_config.path, "ng.log"), encoding="utf-8"
        )
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"))
    levels = {LEVEL_DEBUG: logging.DEBUG, LEVEL_WARN: logging.WARNING, LEVEL_ERROR: logging.ERROR}
    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
    root.addHandler(handler)
    root.setLevel(levels.get(log_config.level, logging.INFO))


def _init_database(config: Config) -> None:
    docdb.init(config)
    logger.info("Initialize database successfully, path=%s", config.storage.path)


def _stop_database() -> None:
    logger.info("Stopping document database")
    docdb.stop()
    logger.info("Stop document database successfully")


def _wait_for_termination() -> str:
    done = threading.Event()
    received: list[int] = []

    def handler(signum, frame):
        received.append(signum)
        done.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, handler)
    while not done.wait(0.5):
        pass
    return signal.Signals(received[0]).name


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    if args.version:
        print(get_ngm_info())
        return 0

    config_path = args.config or ""
    try:
        config = init_config(config_path, lambda cfg: override_config(cfg, args))
    except ConfigError as exc:
        print(f"Failed to initialize config, err: {exc}", file=sys.stderr)
        return 1

    _init_logging(config.log)
    print_ngm_info()
    logger.info("config: %s", config.to_dict())

    try:
        must_create_dirs(config)
    except OSError as exc:
        logger.critical("failed to init directories: %s", exc)
        return 1

    with ExitStack() as stack:
        try:
            _init_database(config)
        except (OSError, sqlite3.Error) as exc:
            logger.critical("failed to open the document database: %s", exc)
            return 1
        stack.callback(_stop_database)

        try:
            load_config_from_storage(lambda: docdb.get().connection)
        except (ConfigError, sqlite3.Error) as exc:
            print(f"Failed to load config from storage, err: {exc}", file=sys.stderr)
            return 1

        service = HTTPService(config)
        try:
            service.start()
        except OSError as exc:
            logger.critical("failed to listen, address=%s: %s", config.address, exc)
            return 1
        stack.callback(service.stop)

        stop_event = threading.Event()
        stack.callback(stop_event.set)
        reload_event = threading.Event()
        if hasattr(signal, "SIGHUP"):
            signal.signal(signal.SIGHUP, lambda signum, frame: reload_event.set())
        threading.Thread(
            target=go_with_recovery,
            args=(lambda: reload_routine(stop_event, config_path, reload_event),),
            name="config-reload",
            daemon=True,
        ).start()

        sig = _wait_for_termination()
        logger.info("received signal %s", sig)
    return 0