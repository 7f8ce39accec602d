"""
tests/unit/test_config.py — Config Tests

Covers:
  - Valid config loads cleanly with defaults
  - Non-ws gateway.url is rejected at parse time
  - Non-positive reconnect delay / timeout / poll interval is rejected
  - Invalid log level is rejected
  - Gateway target: env var beats config.yaml beats openclaw.json
  - openclaw.json supplies port, shared secret and gateway version
  - No resolvable gateway → ConfigError from validate_all()
  - validate_all() raises ConfigError with numbered list
  - CLAWMONITOR_CONFIG env var is respected by load_settings()
  - Explicit config_path argument takes priority over env var
"""

from __future__ import annotations

import json
import os
import textwrap
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError


# ── Helpers ───────────────────────────────────────────────────────────────────

def _make_settings(**overrides):
    """Build a Settings object from keyword overrides (no YAML file needed)."""
    from config.settings import Settings
    return Settings(**overrides)


def _make_gateway_cfg(**kwargs):
    from config.settings import GatewayConfig
    return GatewayConfig(**kwargs)


def _write_openclaw_json(path: Path, doc: dict) -> None:
    path.write_text(json.dumps(doc), encoding="utf-8")


# ── GatewayConfig ─────────────────────────────────────────────────────────────

class TestGatewayConfig:
    def test_defaults(self):
        cfg = _make_gateway_cfg()
        assert cfg.url is None
        assert cfg.role == "operator"
        assert cfg.scopes == ["operator.admin", "operator.approvals", "operator.pairing"]
        assert cfg.origin == "http://localhost:18789"
        assert cfg.reconnect_delay_seconds == 1.0
        assert cfg.request_timeout_seconds is None

    def test_ws_and_wss_accepted(self):
        assert _make_gateway_cfg(url="ws://127.0.0.1:18789").url == "ws://127.0.0.1:18789"
        assert _make_gateway_cfg(url="wss://gw.example").url == "wss://gw.example"

    def test_empty_url_is_none(self):
        assert _make_gateway_cfg(url="").url is None

    def test_http_url_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            _make_gateway_cfg(url="http://127.0.0.1:18789")
        assert "ws://" in str(exc_info.value)

    @pytest.mark.parametrize("delay", [0, -1])
    def test_non_positive_delay_rejected(self, delay):
        with pytest.raises(ValidationError):
            _make_gateway_cfg(reconnect_delay_seconds=delay)

    def test_zero_timeout_rejected(self):
        with pytest.raises(ValidationError):
            _make_gateway_cfg(request_timeout_seconds=0)


class TestPollerAndStoreConfig:
    def test_zero_interval_rejected(self):
        from config.settings import PollerConfig
        with pytest.raises(ValidationError):
            PollerConfig(sessions_interval_seconds=0)

    def test_sessions_limit_bounds(self):
        from config.settings import PollerConfig
        assert PollerConfig(sessions_limit=5000).sessions_limit == 5000
        with pytest.raises(ValidationError):
            PollerConfig(sessions_limit=5001)

    def test_store_limits(self):
        from config.settings import StoreConfig
        with pytest.raises(ValidationError):
            StoreConfig(max_events=0)


class TestLoggingConfig:
    def test_case_insensitive(self):
        from config.settings import LoggingConfig
        assert LoggingConfig(level="debug").level == "DEBUG"

    def test_invalid_level_rejected(self):
        from config.settings import LoggingConfig
        with pytest.raises(ValidationError):
            LoggingConfig(level="LOUD")


# ── Gateway target resolution ────────────────────────────────────────────────

class TestGatewayTarget:
    def test_env_url_wins(self, monkeypatch):
        monkeypatch.setenv("OPENCLAW_GATEWAY_URL", "ws://env:1")
        monkeypatch.setenv("OPENCLAW_GATEWAY_TOKEN", "env-secret")
        s = _make_settings(gateway={"url": "ws://yaml:2", "token": "yaml-secret"})
        target = s.resolve_gateway_target()
        assert target.url == "ws://env:1"
        assert target.token == "env-secret"
        assert target.source == "env"

    def test_short_env_names(self, monkeypatch):
        monkeypatch.setenv("GATEWAY_URL", "ws://short:1")
        monkeypatch.setenv("GATEWAY_TOKEN", "t")
        target = _make_settings().resolve_gateway_target()
        assert target.url == "ws://short:1"
        assert target.token == "t"

    def test_env_url_without_token(self, monkeypatch):
        monkeypatch.setenv("OPENCLAW_GATEWAY_URL", "ws://env:1")
        assert _make_settings().resolve_gateway_target().token is None

    def test_yaml_url(self):
        target = _make_settings(gateway={"url": "ws://yaml:2", "token": "yaml-secret"}).resolve_gateway_target()
        assert target.url == "ws://yaml:2"
        assert target.token == "yaml-secret"
        assert target.source == "config"

    def test_env_token_overrides_yaml_token(self, monkeypatch):
        monkeypatch.setenv("OPENCLAW_GATEWAY_TOKEN", "env-secret")
        target = _make_settings(gateway={"url": "ws://yaml:2", "token": "yaml-secret"}).resolve_gateway_target()
        assert target.token == "env-secret"

    def test_openclaw_json(self, monkeypatch, tmp_path):
        host_cfg = tmp_path / "openclaw.json"
        _write_openclaw_json(host_cfg, {
            "meta": {"lastTouchedVersion": "2026.2.1"},
            "gateway": {"port": 19000, "bind": "lan", "auth": {"token": "host-secret"}},
        })
        monkeypatch.setenv("OPENCLAW_CONFIG_PATH", str(host_cfg))

        target = _make_settings().resolve_gateway_target()
        assert target.url == "ws://127.0.0.1:19000"
        assert target.token == "host-secret"
        assert target.gateway_version == "2026.2.1"
        assert target.source == "openclaw.json"

    def test_openclaw_json_default_port(self, monkeypatch, tmp_path):
        host_cfg = tmp_path / "openclaw.json"
        _write_openclaw_json(host_cfg, {})
        monkeypatch.setenv("OPENCLAW_CONFIG_PATH", str(host_cfg))
        monkeypatch.setenv("OPENCLAW_GATEWAY_TOKEN", "env-secret")

        target = _make_settings().resolve_gateway_target()
        assert target.url == "ws://127.0.0.1:18789"
        assert target.token == "env-secret"
        assert target.gateway_version is None

    def test_nothing_configured(self):
        from config.settings import ConfigError
        with pytest.raises(ConfigError) as exc_info:
            _make_settings().resolve_gateway_target()
        assert "OPENCLAW_GATEWAY_URL" in str(exc_info.value)

    def test_unreadable_openclaw_json(self, monkeypatch, tmp_path):
        from config.settings import ConfigError
        host_cfg = tmp_path / "openclaw.json"
        host_cfg.write_text("{broken", encoding="utf-8")
        monkeypatch.setenv("OPENCLAW_CONFIG_PATH", str(host_cfg))
        with pytest.raises(ConfigError):
            _make_settings().resolve_gateway_target()


# ── validate_all ──────────────────────────────────────────────────────────────

class TestValidateAll:
    def test_passes_with_gateway(self):
        _make_settings(gateway={"url": "ws://127.0.0.1:18789"}).validate_all()  # should not raise

    def test_fails_without_gateway(self):
        from config.settings import ConfigError
        with pytest.raises(ConfigError) as exc_info:
            _make_settings().validate_all()
        assert "1." in str(exc_info.value)

    def test_multiple_errors_all_reported(self):
        """All problems are collected and reported, not just the first."""
        from config.settings import ConfigError
        s = _make_settings(gateway={"role": "  ", "scopes": [" "]})
        with pytest.raises(ConfigError) as exc_info:
            s.validate_all()
        msg = str(exc_info.value)
        assert "3 configuration problem(s)" in msg
        assert "gateway.role" in msg
        assert "gateway.scopes" in msg

    def test_identity_dir_under_state_dir(self, tmp_path):
        s = _make_settings(gateway={"state_dir": str(tmp_path / "state")})
        assert s.identity_dir == tmp_path / "state" / "identity"


# ── Config path resolution ────────────────────────────────────────────────────

class TestConfigPathResolution:
    def test_explicit_path_takes_priority(self, tmp_path):
        """Explicit config_path arg overrides env var."""
        from config.settings import _resolve_config_path
        cfg_file = tmp_path / "custom.yaml"
        cfg_file.write_text("")
        env_file = tmp_path / "env.yaml"

        with patch.dict(os.environ, {"CLAWMONITOR_CONFIG": str(env_file)}):
            resolved = _resolve_config_path(str(cfg_file))
        assert resolved == Path(str(cfg_file))

    def test_env_var_used_when_no_explicit_path(self, tmp_path):
        from config.settings import _resolve_config_path
        env_file = tmp_path / "env_config.yaml"

        with patch.dict(os.environ, {"CLAWMONITOR_CONFIG": str(env_file)}):
            resolved = _resolve_config_path(None)
        assert resolved == Path(str(env_file))

    def test_default_path_when_no_arg_no_env(self):
        from config.settings import _resolve_config_path
        assert _resolve_config_path(None) == Path("config/config.yaml")

    def test_load_settings_from_file(self, tmp_path):
        """load_settings reads a custom YAML file and ignores unknown sections."""
        from config.settings import load_settings

        cfg_file = tmp_path / "test_config.yaml"
        cfg_file.write_text(textwrap.dedent("""
            gateway:
              url: "ws://10.0.0.5:18789"
              reconnect_delay_seconds: 2.5
            poller:
              sessions_limit: 50
            logging:
              level: debug
            unrelated:
              key: value
        """))

        s = load_settings(cfg_file)
        assert s.gateway.url == "ws://10.0.0.5:18789"
        assert s.gateway.reconnect_delay_seconds == 2.5
        assert s.poller.sessions_limit == 50
        assert s.log_level == "DEBUG"

    def test_load_settings_missing_file_uses_defaults(self, tmp_path):
        from config.settings import load_settings
        s = load_settings(tmp_path / "absent.yaml")
        assert s.gateway.url is None
        assert s.poller.sessions_interval_seconds == 5.0

    def test_load_settings_via_env_var(self, monkeypatch, tmp_path):
        from config.settings import load_settings
        cfg_file = tmp_path / "env.yaml"
        cfg_file.write_text("store:\n  max_events: 10\n")
        monkeypatch.setenv("CLAWMONITOR_CONFIG", str(cfg_file))
        assert load_settings().store.max_events == 10
