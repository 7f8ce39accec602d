"""
tests/unit/test_cli.py — Entry point argument parsing, identity command and monitor callbacks
"""

from __future__ import annotations

import logging
from io import StringIO

import pytest
import structlog
from rich.console import Console

import main


class TestParseArgs:
    def test_defaults(self):
        args = main.parse_args([])
        assert args.subcommand == "run"
        assert args.config is None
        assert args.log_level is None

    def test_identity_with_overrides(self):
        args = main.parse_args(["identity", "--config", "x.yaml", "--log-level", "DEBUG"])
        assert args.subcommand == "identity"
        assert args.config == "x.yaml"
        assert args.log_level == "DEBUG"

    def test_unknown_subcommand_rejected(self):
        with pytest.raises(SystemExit):
            main.parse_args(["serve"])


@pytest.fixture
def console():
    """Silent wide console so table rows are never wrapped."""
    return Console(file=StringIO(), width=200, highlight=False, color_system=None)


@pytest.fixture
def settings(tmp_path):
    from config.settings import Settings
    return Settings(gateway={"state_dir": str(tmp_path / "state")})


class TestShowIdentity:
    def test_prints_stable_device_id(self, settings, console):
        from gateway.identity import DeviceIdentityStore

        assert main.show_identity(settings, console) == 0
        out = console.file.getvalue()

        identity = DeviceIdentityStore(settings.identity_dir / "device.json").load_or_create()
        assert identity.device_id in out
        assert identity.public_key_b64url() in out
        assert "none" in out

    def test_reports_cached_token(self, settings, console):
        from gateway.identity import DeviceIdentityStore
        from gateway.token_store import DeviceTokenStore

        identity = DeviceIdentityStore(settings.identity_dir / "device.json").load_or_create()
        DeviceTokenStore(settings.identity_dir / "device-auth.json").save(
            identity.device_id, "operator", "tkn1", ["operator.admin"]
        )

        main.show_identity(settings, console)
        out = console.file.getvalue()
        assert "cached for role operator" in out
        assert "tkn1" not in out


class TestMain:
    @pytest.mark.asyncio
    async def test_run_without_gateway_exits(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc_info:
            await main.main(["run", "--config", str(tmp_path / "absent.yaml")])
        assert exc_info.value.code == 1
        assert "OPENCLAW_GATEWAY_URL" in capsys.readouterr().err


class TestMonitorCallbacks:
    def test_callbacks_feed_tracker_and_store(self, tmp_path):
        from gateway.protocol import make_event
        from gateway.state import StatusUpdate
        from monitor.status import GatewayStatusTracker
        from monitor.store import MonitorStore
        from observability.logger import get_logger, setup_logging

        setup_logging(level="DEBUG", log_dir=tmp_path / "logs", console_output=False)
        try:
            status = GatewayStatusTracker("ws://127.0.0.1:18789")
            store = MonitorStore()
            on_status, on_event = main.make_callbacks(status, store, get_logger("tests.callbacks"))

            on_status(StatusUpdate(connected=True, phase="connected"))
            on_event(make_event("chat", {"state": "final", "sessionKey": "agent:main:main"}))

            assert status.connected
            [row] = store.list_events()
            assert row.type == "chat"
            assert row.summary == "chat.final"
            log_text = (tmp_path / "logs" / "clawmonitor.log").read_text(encoding="utf-8")
            assert '"event_name": "chat"' in log_text
        finally:
            structlog.reset_defaults()
            logging.basicConfig(handlers=[logging.NullHandler()], force=True)
