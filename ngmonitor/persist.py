"""Keeping runtime-modifiable configuration in the document database.

The database handle is any DB-API connection compatible with :mod:`sqlite3`
(it needs ``execute`` and ``commit``).
"""

from __future__ import annotations

import json
import logging
from dataclasses import fields
from typing import Any, Callable

from .config import (
    Config,
    ConfigError,
    ContinueProfilingConfig,
    get_global_config,
    update_global_config,
)

logger = logging.getLogger(__name__)

CONFIG_TABLE_NAME = "ng_monitoring_config"
CONTINUOUS_PROFILING_MODULE = "continuous_profiling"

_get_db: Callable[[], Any] | None = None

_PROFILING_FIELDS = {f.metadata["json"].lower(): f for f in fields(ContinueProfilingConfig)}


def _json_kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return f"number {value}"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return "object"


def decode_profiling_config(data: Any) -> ContinueProfilingConfig:
    """Build a profiling config from decoded JSON.

    Keys match case-insensitively, unknown keys and nulls are ignored and
    missing fields stay zero. Values of the wrong type raise ConfigError.
    """
    if not isinstance(data, dict):
        raise ConfigError(f"cannot unmarshal {_json_kind(data)} into continuous profiling config")
    result = ContinueProfilingConfig()
    for key, value in data.items():
        spec = _PROFILING_FIELDS.get(str(key).lower())
        if spec is None or value is None:
            continue
        name = spec.metadata["json"]
        if isinstance(getattr(result, spec.name), bool):
            if not isinstance(value, bool):
                raise ConfigError(f"cannot unmarshal {_json_kind(value)} into field {name} of type bool")
            setattr(result, spec.name, value)
            continue
        integral = (
            isinstance(value, int)
            or (isinstance(value, float) and value.is_integer())
        ) and not isinstance(value, bool)
        if not integral:
            raise ConfigError(f"cannot unmarshal {_json_kind(value)} into field {name} of type int")
        setattr(result, spec.name, int(value))
    return result


def load_config_from_storage(get_db: Callable[[], Any]) -> None:
    """Remember ``get_db`` and overlay the stored module configs onto the global config.

    Invalid stored profiling configs are skipped. An unknown module or an
    undecodable entry raises ConfigError; database errors propagate.
    """
    global _get_db
    _get_db = get_db
    db = get_db()
    db.execute(
        f"CREATE TABLE IF NOT EXISTS {CONFIG_TABLE_NAME} (module TEXT primary key, config TEXT)"
    )
    rows = db.execute(f"SELECT module, config FROM {CONFIG_TABLE_NAME}").fetchall()
    stored = {str(module): str(text) for module, text in rows}
    if not stored:
        return

    error: ConfigError | None = None

    def apply(current: Config) -> Config:
        nonlocal error
        for module, text in stored.items():
            if module != CONTINUOUS_PROFILING_MODULE:
                error = ConfigError(
                    f"unknow module config in storage, module: {module}, config: {text}"
                )
                return current
            try:
                candidate = decode_profiling_config(json.loads(text))
            except json.JSONDecodeError as exc:
                error = ConfigError(str(exc))
                return current
            except ConfigError as exc:
                error = exc
                return current
            if candidate.valid():
                current.continue_profiling = candidate
            else:
                logger.info("load invalid config, module=%s, module-config=%s", module, candidate)
            logger.info("load config from storage, module=%s, module-config=%s", module, text)
        return current

    update_global_config(apply)
    if error is not None:
        raise error


def save_config_into_storage() -> None:
    """Replace the stored module configs with the current global ones."""
    if _get_db is None:
        raise ConfigError("config storage has not been loaded")
    db = _get_db()
    data = json.dumps(
        get_global_config().continue_profiling.to_dict(), separators=(",", ":")
    )
    db.execute(f"DELETE FROM {CONFIG_TABLE_NAME}")
    db.execute(
        f"INSERT INTO {CONFIG_TABLE_NAME} (module, config) VALUES (?, ?)",
        (CONTINUOUS_PROFILING_MODULE, data),
    )
    db.commit()
    logger.info("save config into storage, module=%s, config=%s", CONTINUOUS_PROFILING_MODULE, data)