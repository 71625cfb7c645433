import pytest

from ngmonitor.config import get_default_config
from ngmonitor.printer import get_ngm_info
from ngmonitor.server import main, must_create_dirs, override_config, parse_args


def test_parse_args_defaults_are_unset():
    args = parse_args([])
    assert args.version is False
    assert [args.address, args.pd_endpoints, args.log_path, args.config] == [None] * 4


def test_parse_args_endpoints_split_and_append():
    args = parse_args(["--pd.endpoints", "a:1,b:2", "--pd.endpoints", "c:3"])
    assert args.pd_endpoints == ["a:1", "b:2", "c:3"]


def test_parse_args_short_version_flag():
    assert parse_args(["-V"]).version is True


def test_override_config_only_touches_given_flags():
    args = parse_args(["--address", "127.0.0.1:1", "--retention-period", "2d"])
    cfg = get_default_config()
    override_config(cfg, args)
    default = get_default_config()
    assert cfg.address == "127.0.0.1:1"
    assert cfg.tsdb.retention_period == "2d"
    assert cfg.storage.path == default.storage.path
    assert cfg.pd.endpoints == default.pd.endpoints


def test_override_config_sets_paths_and_endpoints(tmp_path):
    args = parse_args([
        "--log.path", str(tmp_path / "log"),
        "--storage.path", str(tmp_path / "data"),
        "--pd.endpoints", "x:1",
        "--advertise-address", "x:2",
    ])
    cfg = get_default_config()
    override_config(cfg, args)
    assert cfg.log.path == str(tmp_path / "log")
    assert cfg.storage.path == str(tmp_path / "data")
    assert cfg.pd.endpoints == ["x:1"]
    assert cfg.advertise_address == "x:2"


def test_must_create_dirs(tmp_path):
    cfg = get_default_config()
    cfg.log.path = str(tmp_path / "logs")
    cfg.storage.path = str(tmp_path / "data")
    must_create_dirs(cfg)
    assert (tmp_path / "logs").is_dir()
    assert (tmp_path / "data").is_dir()


def test_must_create_dirs_without_log_path(tmp_path):
    cfg = get_default_config()
    cfg.log.path = ""
    cfg.storage.path = str(tmp_path / "store")
    must_create_dirs(cfg)
    assert sorted(p.name for p in tmp_path.iterdir()) == ["store"]


def test_must_create_dirs_fails_on_file(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("x")
    cfg = get_default_config()
    cfg.storage.path = str(blocker)
    with pytest.raises(OSError):
        must_create_dirs(cfg)


def test_main_version(capsys):
    assert main(["--version"]) == 0
    assert capsys.readouterr().out == get_ngm_info() + "\n"


def test_main_invalid_address(capsys):
    assert main(["--address", "bad"]) == 1
    assert "Failed to initialize config" in capsys.readouterr().err


def test_main_missing_config_file(tmp_path, capsys):
    assert main(["--config", str(tmp_path / "missing.toml")]) == 1
    assert "Failed to initialize config" in capsys.readouterr().err