import io
import re
import sqlite3
import time

import pytest

from ngmonitor import docdb
from ngmonitor.config import ConfigError, get_default_config
from ngmonitor.docdb import (
    FLATTEN_INTERVAL,
    LAST_FLATTEN_TS_KEY,
    META_TABLE,
    DocumentDB,
    LoggingLevel,
    StorageLogger,
    get_last_flatten_ts,
    init_logger,
    need_flatten,
    run_gc,
    store_last_flatten_ts,
)


@pytest.fixture
def db(tmp_path):
    database = DocumentDB(tmp_path / "db")
    yield database
    database.close()


def test_gc(db):
    assert get_last_flatten_ts(db) == 0

    ts = int(time.time())
    store_last_flatten_ts(db, ts)
    assert get_last_flatten_ts(db) == ts

    assert need_flatten(db) is False
    run_gc(db)
    assert get_last_flatten_ts(db) == ts

    last_ts = ts - FLATTEN_INTERVAL
    store_last_flatten_ts(db, last_ts)
    assert need_flatten(db) is True

    run_gc(db)
    last_flatten_ts = get_last_flatten_ts(db)
    assert last_flatten_ts != last_ts
    assert int(time.time()) - last_flatten_ts < 10


def test_corrupt_timestamp(db):
    db.connection.execute(
        f"INSERT OR REPLACE INTO {META_TABLE} (key, value) VALUES (?, ?)",
        (LAST_FLATTEN_TS_KEY, "abc"),
    )
    with pytest.raises(ValueError):
        get_last_flatten_ts(db)
    assert need_flatten(db) is True


def test_closed_database_rejects_queries(tmp_path):
    with DocumentDB(tmp_path / "db") as database:
        database.connection.execute("CREATE TABLE t (x INTEGER)")
    with pytest.raises(sqlite3.ProgrammingError):
        database.connection.execute("SELECT 1")


def test_data_survives_reopen(tmp_path):
    with DocumentDB(tmp_path / "db") as database:
        store_last_flatten_ts(database, 42)
    with DocumentDB(tmp_path / "db") as database:
        assert get_last_flatten_ts(database) == 42


def test_storage_logger_filters_levels():
    stream = io.StringIO()
    storage_logger = StorageLogger(stream, LoggingLevel.WARN)
    storage_logger.debug("hidden %d", 1)
    storage_logger.info("hidden %d", 2)
    storage_logger.warning("disk %d%% full", 90)
    storage_logger.error("boom")
    lines = stream.getvalue().splitlines()
    assert len(lines) == 2
    assert re.fullmatch(r"docdb \d{4}/\d{2}/\d{2} \d{2}:\d{2}:\d{2} WARN: disk 90% full", lines[0])
    assert re.fullmatch(r"docdb \d{4}/\d{2}/\d{2} \d{2}:\d{2}:\d{2} ERROR: boom", lines[1])


def test_debug_level_logs_everything():
    stream = io.StringIO()
    storage_logger = StorageLogger(stream, LoggingLevel.DEBUG)
    storage_logger.debug("a")
    storage_logger.info("b")
    assert [line.split(" ", 3)[3] for line in stream.getvalue().splitlines()] == ["DEBUG: a", "INFO: b"]


@pytest.mark.parametrize(
    "level, expected",
    [
        ("DEBUG", LoggingLevel.DEBUG),
        ("INFO", LoggingLevel.INFO),
        ("WARN", LoggingLevel.WARN),
        ("ERROR", LoggingLevel.ERROR),
    ],
)
def test_init_logger_in_log_path(tmp_path, level, expected):
    config = get_default_config()
    config.log.path = str(tmp_path)
    config.log.level = level
    storage_logger = init_logger(config)
    try:
        assert storage_logger.level == expected
        storage_logger.error("x")
    finally:
        storage_logger.stream.close()
    assert "ERROR: x" in (tmp_path / "docdb.log").read_text()


def test_init_logger_defaults_to_storage_dir(tmp_path):
    config = get_default_config()
    config.storage.path = str(tmp_path)
    storage_logger = init_logger(config)
    storage_logger.stream.close()
    assert (tmp_path / "docdb-log" / "docdb.log").is_file()


def test_init_logger_rejects_unknown_level(tmp_path):
    config = get_default_config()
    config.log.path = str(tmp_path)
    config.log.level = "TRACE"
    with pytest.raises(ConfigError):
        init_logger(config)


def test_init_get_stop(tmp_path):
    config = get_default_config()
    config.storage.path = str(tmp_path)
    database = docdb.init(config)
    try:
        assert docdb.get() is database
        assert database.path == str(tmp_path / "docdb")
        store_last_flatten_ts(database, 7)
        assert get_last_flatten_ts(database) == 7
    finally:
        docdb.stop()
    with pytest.raises(RuntimeError):
        docdb.get()
    log_text = (tmp_path / "docdb-log" / "docdb.log").read_text()
    assert "INFO: opened document database" in log_text
    assert "INFO: closed document database" in log_text