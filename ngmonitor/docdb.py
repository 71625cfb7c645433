"""Embedded document database, its log file and its periodic compaction."""

from __future__ import annotations

import logging
import os
import re
import sqlite3
import threading
import time
from enum import IntEnum
from typing import Any, TextIO

from .config import (
    LEVEL_DEBUG,
    LEVEL_ERROR,
    LEVEL_INFO,
    LEVEL_WARN,
    Config,
    ConfigError,
)
from .misc import go_with_recovery

logger = logging.getLogger(__name__)

LAST_FLATTEN_TS_KEY = "last_flatten_ts"
FLATTEN_INTERVAL = 24 * 60 * 60
GC_INTERVAL = 10 * 60
META_TABLE = "docdb_meta"
DATA_FILE = "docdb.sqlite"
_MAX_GC_ROUNDS = 10
_TS_PATTERN = re.compile(r"[+-]?\d+")


class LoggingLevel(IntEnum):
    DEBUG = 0
    INFO = 1
    WARN = 2
    ERROR = 3


_LEVELS = {
    LEVEL_DEBUG: LoggingLevel.DEBUG,
    LEVEL_INFO: LoggingLevel.INFO,
    LEVEL_WARN: LoggingLevel.WARN,
    LEVEL_ERROR: LoggingLevel.ERROR,
}


class StorageLogger:
    """Writes timestamped, level-filtered lines to a text stream."""

    def __init__(self, stream: TextIO, level: LoggingLevel = LoggingLevel.INFO, prefix: str = "docdb ") -> None:
        self.stream = stream
        self.level = level
        self.prefix = prefix

    def _print(self, tag: str, fmt: str, args: tuple[Any, ...]) -> None:
        message = fmt % args if args else fmt
        line = f"{self.prefix}{time.strftime('%Y/%m/%d %H:%M:%S')} {tag}: {message}"
        if not line.endswith("\n"):
            line += "\n"
        self.stream.write(line)
        self.stream.flush()

    def error(self, fmt: str, *args: Any) -> None:
        if self.level <= LoggingLevel.ERROR:
            self._print("ERROR", fmt, args)

    def warning(self, fmt: str, *args: Any) -> None:
        if self.level <= LoggingLevel.WARN:
            self._print("WARN", fmt, args)

    def info(self, fmt: str, *args: Any) -> None:
        if self.level <= LoggingLevel.INFO:
            self._print("INFO", fmt, args)

    def debug(self, fmt: str, *args: Any) -> None:
        if self.level <= LoggingLevel.DEBUG:
            self._print("DEBUG", fmt, args)


def init_logger(config: Config) -> StorageLogger:
    """Open ``docdb.log`` in the log directory, or under the storage path if none is set."""
    if config.log.path:
        log_dir = config.log.path
    else:
        log_dir = os.path.join(config.storage.path, "docdb-log")
        os.makedirs(log_dir, exist_ok=True)
    file_name = os.path.join(log_dir, "docdb.log")
    try:
        stream = open(file_name, "a", encoding="utf-8")
    except OSError:
        logger.warning("Failed to init logger, filename=%s", file_name)
        raise
    level = _LEVELS.get(config.log.level)
    if level is None:
        stream.close()
        raise ConfigError(f"Unsupported log level: {config.log.level}")
    return StorageLogger(stream, level)


class DocumentDB:
    """A SQL document store kept in one directory."""

    def __init__(
        self,
        path: str | os.PathLike[str],
        *,
        sync_writes: bool = False,
        cache_size: int = 0,
        storage_logger: StorageLogger | None = None,
    ) -> None:
        self.path = os.fspath(path)
        os.makedirs(self.path, exist_ok=True)
        self.storage_logger = storage_logger
        self.lock = threading.RLock()
        self._closed = False
        self.connection = sqlite3.connect(
            os.path.join(self.path, DATA_FILE), isolation_level=None, check_same_thread=False
        )
        self.connection.execute("PRAGMA journal_mode=WAL")
        self.connection.execute(f"PRAGMA synchronous={'FULL' if sync_writes else 'NORMAL'}")
        if cache_size > 0:
            self.connection.execute(f"PRAGMA cache_size={-(int(cache_size) // 1024)}")
        self.connection.execute(
            f"CREATE TABLE IF NOT EXISTS {META_TABLE} (key TEXT PRIMARY KEY, value TEXT)"
        )
        self._log("info", "opened document database at %s", self.path)

    def _log(self, level: str, fmt: str, *args: Any) -> None:
        if self.storage_logger is not None:
            getattr(self.storage_logger, level)(fmt, *args)

    def close(self) -> None:
        """Close the database; further calls do nothing."""
        with self.lock:
            if self._closed:
                return
            self._closed = True
            self.connection.close()
        self._log("info", "closed document database at %s", self.path)

    def __enter__(self) -> DocumentDB:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def get_last_flatten_ts(db: DocumentDB) -> int:
    """Return the stored time of the last compaction, or 0 if none was recorded."""
    with db.lock:
        row = db.connection.execute(
            f"SELECT value FROM {META_TABLE} WHERE key = ?", (LAST_FLATTEN_TS_KEY,)
        ).fetchone()
    if row is None:
        return 0
    text = str(row[0])
    if not _TS_PATTERN.fullmatch(text):
        raise ValueError(f"invalid last flatten timestamp: {text!r}")
    return int(text)


def store_last_flatten_ts(db: DocumentDB, ts: int) -> None:
    with db.lock:
        db.connection.execute(
            f"INSERT OR REPLACE INTO {META_TABLE} (key, value) VALUES (?, ?)",
            (LAST_FLATTEN_TS_KEY, str(int(ts))),
        )


def need_flatten(db: DocumentDB) -> bool:
    """True when the last compaction is at least a day old or unknown."""
    try:
        ts = get_last_flatten_ts(db)
    except (ValueError, sqlite3.Error) as exc:
        logger.error("document db get last flatten ts failed: %s", exc)
        ts = 0
    return int(time.time()) - ts >= FLATTEN_INTERVAL


def _try_flatten_if_needed(db: DocumentDB) -> None:
    if not need_flatten(db):
        return
    try:
        with db.lock:
            db.connection.execute("VACUUM")
    except sqlite3.Error as exc:
        logger.error("document db flatten failed: %s", exc)
        return
    ts = int(time.time())
    try:
        store_last_flatten_ts(db, ts)
    except sqlite3.Error as exc:
        logger.error("document db store last flatten ts failed: %s", exc)
        return
    logger.info("document db flatten success, ts=%d", ts)
    db._log("info", "flatten success, ts=%d", ts)


def _run_log_gc(db: DocumentDB) -> None:
    for _ in range(_MAX_GC_ROUNDS):
        try:
            with db.lock:
                busy, log_frames, _ = db.connection.execute(
                    "PRAGMA wal_checkpoint(TRUNCATE)"
                ).fetchone()
        except sqlite3.Error as exc:
            logger.error("document db run log gc failed: %s", exc)
            return
        if busy:
            logger.error("document db run log gc failed: database is busy")
            return
        if log_frames <= 0:
            logger.info("document db has no log need gc now")
            return
        logger.info("document db run log gc success")


def run_gc(db: DocumentDB) -> None:
    """Compact the database if due and truncate its write-ahead log; never raises."""
    try:
        _try_flatten_if_needed(db)
        _run_log_gc(db)
    except Exception:  # noqa: BLE001 - a failed round must not stop the loop
        logger.exception("panic when run document db gc")


def _gc_loop(db: DocumentDB, closed: threading.Event) -> None:
    logger.info("document db start to run gc loop")
    try:
        run_gc(db)
        while not closed.wait(GC_INTERVAL):
            run_gc(db)
    finally:
        logger.info("document db stop running gc loop")


_document_db: DocumentDB | None = None
_storage_logger: StorageLogger | None = None
_close_event: threading.Event | None = None
_gc_thread: threading.Thread | None = None


def init(config: Config) -> DocumentDB:
    """Open the document database under the storage path and start its GC loop."""
    global _document_db, _storage_logger, _close_event, _gc_thread
    data_path = os.path.join(config.storage.path, "docdb")
    try:
        storage_logger: StorageLogger | None = init_logger(config)
    except OSError:
        storage_logger = None
    db = DocumentDB(
        data_path,
        sync_writes=config.docdb.sync_writes,
        cache_size=config.docdb.block_cache_size,
        storage_logger=storage_logger,
    )
    closed = threading.Event()
    thread = threading.Thread(
        target=go_with_recovery, args=(lambda: _gc_loop(db, closed),), name="docdb-gc", daemon=True
    )
    thread.start()
    _document_db, _storage_logger, _close_event, _gc_thread = db, storage_logger, closed, thread
    return db


def get() -> DocumentDB:
    """Return the database opened by :func:`init`."""
    if _document_db is None:
        raise RuntimeError("document database is not initialized")
    return _document_db


def stop() -> None:
    """Stop the GC loop and close the database opened by :func:`init`."""
    global _document_db, _storage_logger, _close_event, _gc_thread
    if _document_db is None:
        return
    if _close_event is not None:
        _close_event.set()
    if _gc_thread is not None:
        _gc_thread.join()
    _document_db.close()
    if _storage_logger is not None:
        _storage_logger.stream.close()
    _document_db = _storage_logger = _close_event = _gc_thread = None