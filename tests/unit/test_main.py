from __future__ import annotations

import threading
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

import lucid_asset_agent.main as m
from lucid_asset_agent.assets.manager import AssetManager


def _fake_cfg():
    return SimpleNamespace(
        mqtt_host="localhost",
        mqtt_port=1883,
        agent_username="agent_1",
        agent_password="pw",
        agent_version="1.0.0",
        download_url_template="https://files.test/{key}",
        cycle_delay_s=0,
        download_timeout_s=5,
    )


@pytest.fixture
def runtime_env(monkeypatch, tmp_path):
    monkeypatch.setenv("LUCID_AGENT_BASE_DIR", str(tmp_path / "agent_base"))
    monkeypatch.setattr("lucid_asset_agent.config.load_config", _fake_cfg)
    monkeypatch.setattr(m.signal, "signal", lambda *a, **k: None)

    fake_agent = MagicMock()
    ctor_kwargs = {}

    def _ctor(*a, **k):
        ctor_kwargs.update(k)
        return fake_agent

    monkeypatch.setattr("lucid_asset_agent.mqtt_client.AgentMQTTClient", _ctor)
    return SimpleNamespace(agent=fake_agent, ctor_kwargs=ctor_kwargs, base=tmp_path / "agent_base")


def test_parser_requires_subcommand():
    p = m.build_parser()
    with pytest.raises(SystemExit):
        p.parse_args([])


def test_version_flag_exits(monkeypatch, capsys):
    # argparse --version triggers SystemExit(0)
    with pytest.raises(SystemExit) as exc:
        m.main(["--version"])
    assert exc.value.code == 0
    assert capsys.readouterr().out.strip() == m.get_version_string()


def test_run_exits_with_run_agent_code(monkeypatch):
    monkeypatch.setattr(m, "run_agent", lambda: 7)
    with pytest.raises(SystemExit) as exc:
        m.main(["run"])
    assert exc.value.code == 7


def test_run_agent_returns_1_on_mqtt_connect_failure(runtime_env):
    runtime_env.agent.connect.return_value = False

    code = m.run_agent()

    assert code == 1
    runtime_env.agent.connect.assert_called_once()
    assert (runtime_env.base / "data" / "assets").is_dir()


def test_run_agent_returns_1_on_config_error(monkeypatch, runtime_env):
    from lucid_asset_agent.config import ConfigError

    def bad_config():
        raise ConfigError("Missing required environment variable: MQTT_HOST")

    monkeypatch.setattr("lucid_asset_agent.config.load_config", bad_config)

    assert m.run_agent() == 1
    runtime_env.agent.connect.assert_not_called()


def test_run_agent_wires_activation_and_shuts_down_in_order(monkeypatch, runtime_env):
    # Force immediate shutdown by monkeypatching threading.Event to be already set.
    class SetEvent(threading.Event):
        def __init__(self):
            super().__init__()
            self.set()

    monkeypatch.setattr("threading.Event", SetEvent)

    calls = []
    original_shutdown = AssetManager.shutdown

    def recording_shutdown(self, *, wait=True):
        calls.append("manager")
        original_shutdown(self, wait=wait)

    monkeypatch.setattr(AssetManager, "shutdown", recording_shutdown)
    runtime_env.agent.connect.return_value = True
    runtime_env.agent.disconnect.side_effect = lambda: calls.append("disconnect")

    code = m.run_agent()

    assert code == 0
    assert calls == ["manager", "disconnect"]
    on_change = runtime_env.ctor_kwargs["on_connection_change"]
    assert on_change.__self__.__class__ is AssetManager
    assert on_change.__name__ == "activate"
