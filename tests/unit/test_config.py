"""Tests for configuration loading and backend factories."""

import pytest

import runview.api as api_module
from runview.api import HttpRunsApi, InMemoryRunsApi, get_runs_api
from runview.channels import InMemoryChannel, get_channel
from runview.config import load_config
from runview.constants import TRIGGER_KEY_ALIASES


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for var in ("RUNVIEW_CONFIG", "RUNVIEW_API_URL", "RUNVIEW_CHANNEL"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr(api_module, "_api_instance", None)


def test_defaults_without_config_file():
    config = load_config()
    assert config.api.base_url is None
    assert config.api.timeout == 10.0
    assert config.channel.backend == "inmemory"
    assert config.view.tick_interval == 0.1
    assert config.view.row_tolerance == 50
    assert config.view.trigger_aliases == list(TRIGGER_KEY_ALIASES)
    assert config.approval.source == "run-sidebar"


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "runview.yaml"
    config_path.write_text(
        """
api:
  base_url: http://engine:8080
  timeout: 3
channel:
  backend: redis
  redis:
    host: testhost
    port: 1234
view:
  row_tolerance: 20
approval:
  approver: ops@example.com
"""
    )
    monkeypatch.setenv("RUNVIEW_CONFIG", str(config_path))

    config = load_config()
    assert config.api.base_url == "http://engine:8080"
    assert config.api.timeout == 3
    assert config.channel.backend == "redis"
    assert config.channel.redis.host == "testhost"
    assert config.channel.redis.port == 1234
    assert config.view.row_tolerance == 20
    assert config.view.tick_interval == 0.1
    assert config.approval.approver == "ops@example.com"


def test_env_overrides_file(tmp_path, monkeypatch):
    (tmp_path / "config.yaml").write_text("api:\n  base_url: http://from-file\n")
    monkeypatch.setenv("RUNVIEW_API_URL", "http://from-env")
    monkeypatch.setenv("RUNVIEW_CHANNEL", "REDIS")

    config = load_config()
    assert config.api.base_url == "http://from-env"
    assert config.channel.backend == "redis"


def test_empty_config_file_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_config(str(path)).channel.backend == "inmemory"


def test_get_runs_api_selects_backend():
    assert isinstance(get_runs_api(), InMemoryRunsApi)
    # later calls without arguments reuse the instance
    assert get_runs_api() is get_runs_api()

    http_api = get_runs_api("https://engine.example.com/")
    assert isinstance(http_api, HttpRunsApi)
    assert http_api.base_url == "https://engine.example.com"

    with pytest.raises(ValueError):
        get_runs_api("ftp://engine")


def test_get_runs_api_uses_env(monkeypatch):
    monkeypatch.setenv("RUNVIEW_API_URL", "http://engine:9000")
    api = get_runs_api()
    assert isinstance(api, HttpRunsApi)
    assert api.base_url == "http://engine:9000"


def test_get_channel_defaults_to_inmemory():
    assert isinstance(get_channel(), InMemoryChannel)
    with pytest.raises(ValueError):
        get_channel("kafka")


def test_get_channel_uses_config(tmp_path, monkeypatch):
    pytest.importorskip("redis")
    from runview.channels.redis import RedisChannel

    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
channel:
  backend: redis
  redis:
    host: confighost
    port: 6380
"""
    )
    monkeypatch.setenv("RUNVIEW_CONFIG", str(config_path))

    channel = get_channel()
    assert isinstance(channel, RedisChannel)
    assert channel.host == "confighost"
    assert channel.port == 6380
