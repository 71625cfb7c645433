# ngmonitor

A small monitoring server. It builds its configuration from built-in
defaults, a TOML file and command-line flags. It keeps a process-wide copy of
that configuration which other code can subscribe to. Changes made at run time
to the continuous-profiling settings are saved in an embedded SQLite document
store, and the server answers an HTTP API for health and configuration.

It needs Python 3.11 or later and only the standard library.

## Installation

```
pip install .
```

## Running

```
ngmonitor --config ngmonitor.toml --address 0.0.0.0:12020 --pd.endpoints 127.0.0.1:2379
```

Flags:

- `-V`, `--version`: print version information and exit
- `--address`: TCP address to listen on for HTTP connections
- `--advertise-address`: address advertised to others (IP:PORT). When it is
  empty and the address starts with `0.0.0.0`, a local IP is put in its place.
- `--pd.endpoints`: comma-separated PD addresses. The flag may be repeated.
- `--log.path`: directory for log files. Logs go to stdout when it is empty.
- `--storage.path`: directory for stored data
- `--config`: path of the TOML configuration file
- `--retention-period`: sets `tsdb.retention_period` in the configuration

Flags given on the command line take precedence over the file. The
configuration is checked at startup. The address must be `host:port` with a
non-zero port, at least one PD endpoint is required, the storage path must not
be empty, and the log level must be one of `DEBUG`, `INFO`, `WARN` or `ERROR`.

While it runs, the server does the following:

- logs to `<log.path>/ng.log` and writes HTTP access lines to
  `<log.path>/service.log`. Both go to stdout when no log path is set.
- keeps its document store in `<storage.path>/docdb/docdb.sqlite`, with a
  storage log in `docdb.log`. That log is written to the log path, or to
  `<storage.path>/docdb-log/` when no log path is set.
- checks the store every 10 minutes. At most once a day it runs `VACUUM`, and
  it truncates the write-ahead log.
- re-reads the configuration file on `SIGHUP`. Only changed PD endpoints are
  applied, and only when `--config` was given.
- stops on `SIGTERM` or `SIGINT`.

## Configuration file

```toml
address = "0.0.0.0:12020"
advertise-address = ""

[pd]
endpoints = ["127.0.0.1:2379"]

[log]
path = ""
level = "INFO"   # DEBUG, INFO, WARN or ERROR

[storage]
path = "data"

[security]
ca-path = ""
cert-path = ""
key-path = ""

[tsdb]
retention-period = "1"
search-max-unique-timeseries = 300000

[docdb]
sync-writes = false
block-cache-size = 268435456
```

The file can also set the other `[docdb]` keys (`lsm-only`,
`num-versions-to-keep`, `mem-table-size`, …). These keys are read into the
configuration and reported by `GET /config`. Only `sync-writes` and
`block-cache-size` change how the document store is opened.

## HTTP API

- `GET /health` returns `{"health":true}`.
- `GET /config` returns the current configuration as JSON.
- `POST /config` takes a body such as
  `{"continuous_profiling": {"enable": true, "profile_seconds": 6, "interval_seconds": 11}}`.
  It changes the continuous-profiling settings and saves them in the document
  store. On success the reply is `{"status":"ok"}`. An unknown module, an
  unknown key, an empty body or an invalid result is refused with status 503
  and `{"message": "...", "status": "error"}`. A result is invalid when any
  duration is zero, or when `profile_seconds` is greater than the interval or
  the timeout.

## Library use

```python
from ngmonitor import config

cfg = config.init_config("ngmonitor.toml", None)
updates = config.subscribe()
latest = updates.get()()          # a getter for the current config is queued at once
```

Other modules:

- `ngmonitor.config`:
  - `get_default_config`, `get_global_config`, `store_global_config`,
    `update_global_config`, `validate_address`
  - `reload_config` and `reload_routine`
  - the `Config` dataclass and its sections
- `ngmonitor.persist`:
  - `load_config_from_storage(get_db)` and `save_config_into_storage()`
    work with any sqlite3-style connection.
- `ngmonitor.config_service`:
  - `handle_get_config()` and `handle_post_config(body)` return
    `(status, body_bytes)`.
  - `modify_config(body)`
- `ngmonitor.docdb`:
  - `DocumentDB`, `init`, `get`, `stop`, `run_gc`, `need_flatten`
  - `StorageLogger`
- `ngmonitor.http_service`:
  - `HTTPService(config)` with `start()`, `address()` and `stop()`
- `ngmonitor.pdvariable`:
  - `VariableLoader(fetch, watch=None)` keeps `PDVariable.enable_top_sql`
    up to date. It reads `/global/config/enable_resource_metering` from
    callables you supply, and has `load`, `subscribe`, `refresh`,
    `apply_events`, `start` and `stop`.
- `ngmonitor.retry`:
  - `with_retry` and `with_retry_backoff` call a function until it returns
    True, retries run out, or a stop event is set.
- `ngmonitor.limiter`:
  - `RateLimit(capacity)` with `get_token(done)` and `put_token()`
- `ngmonitor.printer`:
  - `get_ngm_info()` and `print_ngm_info()`
- `ngmonitor.misc`:
  - `go_with_recovery(func, recover_fn)` and `get_local_ip()`

## What it does not do

- It has no time-series database. `retention-period` and the `[tsdb]` settings
  are only stored in the configuration, and nothing inserts or queries metrics.
- It does not discover cluster topology. It does not collect Top SQL data, and
  it does not scrape profiles. It serves no `/topsql`, `/continuous_profiling`,
  `/metrics` or profiling endpoints. The continuous-profiling section is
  configuration only.
- It does not connect to PD. The command never starts a `VariableLoader`. To
  use one, supply your own `fetch` and `watch` callables.
- The HTTP service always listens on plain HTTP. The `[security]` paths are
  used only by `Security.get_tls_config()` and `Config.get_http_scheme()`.

## Tests

```
pip install .[test]
pytest
```