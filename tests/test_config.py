import json
import logging
from datetime import timedelta

import pytest

from gqlgateway.config import (
    LOG_LEVEL_ENV,
    SERVICE_LIST_ENV,
    Config,
    ConfigError,
    PluginConfig,
    TimeoutConfig,
    load_config,
    parse_duration,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv(SERVICE_LIST_ENV, raising=False)
    monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)


def write_config(tmp_path, name, data):
    path = tmp_path / name
    path.write_text(json.dumps(data) if not isinstance(data, str) else data, encoding="utf-8")
    return str(path)


def test_port_provided():
    cfg = Config(gateway_port=8082, private_port=8083, metrics_port=8084)
    assert cfg.gateway_address() == ":8082"
    assert cfg.private_address() == ":8083"
    assert cfg.metric_address() == ":8084"


def test_address_preferred_over_port():
    cfg = Config(
        gateway_listen_address="0.0.0.0:8082",
        gateway_port=0,
        private_listen_address="127.0.0.1:8084",
        private_port=8083,
        metrics_listen_address="",
        metrics_port=8084,
    )
    assert cfg.gateway_address() == "0.0.0.0:8082"
    assert cfg.private_address() == "127.0.0.1:8084"
    assert cfg.metric_address() == ":8084"


def test_private_http_address_for_plugin_services():
    cfg = Config(private_port=8083)
    assert cfg.private_http_address("plugin") == "http://localhost:8083/plugin"
    cfg.private_listen_address = "127.0.0.1:8084"
    assert cfg.private_http_address("plugin") == "http://127.0.0.1:8084/plugin"


def test_parse_example_config(tmp_path):
    path = write_config(
        tmp_path,
        "config.json",
        {
            "services": ["http://service.example.com/query"],
            "gateway-port": 8082,
            "private-port": 8083,
            "metrics-port": 9009,
            "loglevel": "info",
            "poll-interval": "5s",
            "max-requests-per-query": 50,
            "gateway-timeouts": {"write": "20s"},
            "plugins": [{"name": "admin-ui"}, {"name": "cors", "config": {"allowed-origins": ["*"]}}],
        },
    )
    cfg = load_config([path])
    assert cfg.default_timeouts.read_timeout_duration == timedelta(seconds=5)
    assert cfg.default_timeouts.idle_timeout_duration == timedelta(seconds=120)
    assert cfg.gateway_timeouts.write_timeout_duration == timedelta(seconds=20)
    assert cfg.private_timeouts.write_timeout_duration == timedelta(seconds=10)
    assert cfg.poll_interval_duration == timedelta(seconds=5)
    assert cfg.http_client_timeout_duration == timedelta(seconds=5)
    assert cfg.log_level == logging.INFO
    assert cfg.services == ["http://service.example.com/query"]
    assert cfg.plugins == [
        PluginConfig(name="admin-ui"),
        PluginConfig(name="cors", config={"allowed-origins": ["*"]}),
    ]


def test_defaults_applied(tmp_path):
    path = write_config(tmp_path, "config.json", {"services": ["http://a.example.com"]})
    cfg = load_config([path])
    assert cfg.gateway_port == 8082
    assert cfg.private_port == 8083
    assert cfg.metrics_port == 9009
    assert cfg.max_requests_per_query == 50
    assert cfg.max_service_response_size == 1024 * 1024
    assert cfg.log_level == logging.DEBUG
    assert cfg.poll_interval_duration == timedelta(seconds=10)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("0", timedelta(0)),
        ("5s", timedelta(seconds=5)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("1.5s", timedelta(seconds=1, milliseconds=500)),
        ("300ms", timedelta(milliseconds=300)),
        ("-2m", timedelta(minutes=-2)),
        ("+10us", timedelta(microseconds=10)),
        ("2\u00b5s", timedelta(microseconds=2)),
        (".5h", timedelta(minutes=30)),
        ("2h45m10s", timedelta(hours=2, minutes=45, seconds=10)),
    ],
)
def test_parse_duration(text, expected):
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ["", "5", "5x", ".", "s", "-", "1..s", "10000000000h"])
def test_parse_duration_invalid(text):
    with pytest.raises(ValueError):
        parse_duration(text)


def test_invalid_poll_interval(tmp_path):
    path = write_config(
        tmp_path, "config.json", {"services": ["http://a.example.com"], "poll-interval": "soon"}
    )
    with pytest.raises(ConfigError, match="invalid poll interval"):
        load_config([path])


def test_invalid_gateway_timeout(tmp_path):
    path = write_config(
        tmp_path,
        "config.json",
        {"services": ["http://a.example.com"], "gateway-timeouts": {"read": "bad"}},
    )
    with pytest.raises(ConfigError, match="invalid gateway read timeout"):
        load_config([path])


def test_invalid_json(tmp_path):
    path = write_config(tmp_path, "config.json", "{not json")
    with pytest.raises(ConfigError, match="error decoding config file"):
        load_config([path])


def test_wrong_type(tmp_path):
    path = write_config(tmp_path, "config.json", {"services": ["x"], "gateway-port": "8082"})
    with pytest.raises(ConfigError, match="error decoding config file"):
        load_config([path])


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_config([str(tmp_path / "absent.json")])


def test_no_services(tmp_path):
    path = write_config(tmp_path, "config.json", {})
    with pytest.raises(ConfigError, match="no services found"):
        load_config([path])


def test_services_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv(SERVICE_LIST_ENV, "http://b.example.com  http://a.example.com\nhttp://c.example.com")
    path = write_config(tmp_path, "config.json", {"services": ["http://a.example.com"]})
    cfg = load_config([path])
    assert sorted(cfg.services) == [
        "http://a.example.com",
        "http://b.example.com",
        "http://c.example.com",
    ]


def test_multiple_files_merge(tmp_path):
    first = write_config(
        tmp_path,
        "first.json",
        {
            "services": ["http://a.example.com"],
            "gateway-port": 9000,
            "plugins": [{"name": "one"}],
            "extensions": {"alpha": 1},
        },
    )
    second = write_config(
        tmp_path,
        "second.json",
        {
            "Plugins": [{"Name": "two"}],
            "extensions": {"beta": {"x": True}},
            "default-timeouts": {"read": "7s"},
        },
    )
    cfg = load_config([first, second])
    assert cfg.gateway_port == 9000
    assert [plugin.name for plugin in cfg.plugins] == ["one", "two"]
    assert cfg.extensions == {"alpha": 1, "beta": {"x": True}}
    assert cfg.default_timeouts.read_timeout_duration == timedelta(seconds=7)
    assert cfg.default_timeouts.write_timeout_duration == timedelta(seconds=10)


def test_reload_reads_changes(tmp_path):
    path = write_config(tmp_path, "config.json", {"services": ["http://a.example.com"]})
    cfg = load_config([path])
    write_config(tmp_path, "config.json", {"services": ["http://b.example.com"], "plugins": [{"name": "p"}]})
    cfg.load()
    assert cfg.services == ["http://b.example.com"]
    assert [plugin.name for plugin in cfg.plugins] == ["p"]


def test_log_level_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv(LOG_LEVEL_ENV, "error")
    path = write_config(tmp_path, "config.json", {"services": ["x"], "loglevel": "info"})
    assert load_config([path]).log_level == logging.ERROR


def test_invalid_log_level_in_environment_is_ignored(tmp_path, monkeypatch):
    monkeypatch.setenv(LOG_LEVEL_ENV, "loud")
    path = write_config(tmp_path, "config.json", {"services": ["x"], "loglevel": "WARN"})
    assert load_config([path]).log_level == logging.WARNING


def test_invalid_log_level_in_file(tmp_path):
    path = write_config(tmp_path, "config.json", {"services": ["x"], "loglevel": "loud"})
    with pytest.raises(ConfigError):
        load_config([path])


def test_timeouts_keep_explicit_zero_default():
    cfg = Config(
        default_timeouts=TimeoutConfig(read_timeout="1s", write_timeout="2s", idle_timeout="3s"),
        poll_interval="1s",
        http_client_timeout="1s",
        services=["http://a.example.com"],
    )
    cfg.private_timeouts.idle_timeout = "9s"
    cfg.load()
    assert cfg.private_timeouts.idle_timeout_duration == timedelta(seconds=9)
    assert cfg.private_timeouts.read_timeout_duration == timedelta(seconds=1)
    assert cfg.gateway_timeouts.write_timeout_duration == timedelta(seconds=2)