"""HTTP-level handlers for reading and modifying the configuration."""

from __future__ import annotations

import json
import logging
import sqlite3
from http import HTTPStatus
from typing import Any

from .config import Config, ConfigError, get_global_config, update_global_config
from .persist import decode_profiling_config, save_config_into_storage

logger = logging.getLogger(__name__)

_JSON_WHITESPACE = " \t\r\n"
_ESCAPES = (
    ("&", "\\u0026"),
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


def _normalize(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _normalize(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_normalize(item) for item in value]
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return int(value)
    return value


def _dumps(payload: Any, *, sort_keys: bool = False) -> str:
    return json.dumps(
        _normalize(payload), sort_keys=sort_keys, separators=(",", ":"), ensure_ascii=False
    )


def _encode(payload: Any, *, sort_keys: bool = False) -> bytes:
    text = _dumps(payload, sort_keys=sort_keys)
    for char, escaped in _ESCAPES:
        text = text.replace(char, escaped)
    return text.encode("utf-8")


def _same(old: Any, new: Any) -> bool:
    if isinstance(old, bool) or isinstance(new, bool):
        return type(old) is type(new) and old == new
    return old == new


def _decode_body(body: bytes | str) -> dict[str, Any]:
    if isinstance(body, (bytes, bytearray)):
        try:
            text = bytes(body).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ConfigError(str(exc)) from exc
    else:
        text = body
    text = text.lstrip(_JSON_WHITESPACE)
    if not text:
        raise ConfigError("EOF")
    try:
        value, _ = json.JSONDecoder().raw_decode(text)
    except json.JSONDecodeError as exc:
        if exc.pos >= len(text):
            raise ConfigError("unexpected EOF") from exc
        raise ConfigError(str(exc)) from exc
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError("request body must be a JSON object")
    return value


def _modify_continuous_profiling(request: dict[str, Any]) -> None:
    error: ConfigError | None = None

    def apply(current: Config) -> Config:
        nonlocal error
        nested = current.continue_profiling.to_dict()
        for key, new_value in request.items():
            if key not in nested:
                error = ConfigError(f"unknown config `{key}`")
                return current
            old_value = nested[key]
            if _same(old_value, new_value):
                continue
            nested[key] = new_value
            logger.info(
                "handle continuous profiling config modify, name=%s, old-value=%r, new-value=%r",
                key,
                old_value,
                new_value,
            )
        data = _dumps(nested, sort_keys=True)
        try:
            candidate = decode_profiling_config(json.loads(data))
        except ConfigError as exc:
            error = exc
            return current
        if not candidate.valid():
            error = ConfigError(f"new config is invalid: {data}")
            return current
        current.continue_profiling = candidate
        return current

    update_global_config(apply)
    if error is not None:
        raise error
    save_config_into_storage()


def modify_config(body: bytes | str) -> None:
    """Apply a JSON modification request to the global config and persist it."""
    request = _decode_body(body)
    for key, value in request.items():
        if key != "continuous_profiling":
            raise ConfigError(f"config {key} not support modify or unknow")
        if not isinstance(value, dict):
            raise ConfigError(f"{key} config value is invalid: {json.dumps(value)}")
        _modify_continuous_profiling(value)


def handle_get_config() -> tuple[int, bytes]:
    """Return the status code and JSON body describing the current config."""
    return int(HTTPStatus.OK), _encode(get_global_config().to_dict())


def handle_post_config(body: bytes | str) -> tuple[int, bytes]:
    """Apply a modification request; return the status code and JSON body."""
    try:
        modify_config(body)
    except (ConfigError, sqlite3.Error) as exc:
        return int(HTTPStatus.SERVICE_UNAVAILABLE), _encode(
            {"status": "error", "message": str(exc)}, sort_keys=True
        )
    return int(HTTPStatus.OK), _encode({"status": "ok"}, sort_keys=True)