"""
main.py — ClawMonitor Entry Point

Usage:
    python main.py                          # connect, poll and log until Ctrl+C
    python main.py run --log-level DEBUG    # verbose, every gateway event logged
    python main.py identity                 # show this installation's device id
    python main.py --config path/to/config.yaml
"""

from __future__ import annotations

# ─────────────────────────────────────────────────────────────────────────────
# Load environment variables FIRST so CLAWMONITOR_CONFIG and gateway
# overrides in .env are visible to the config loader.
# ─────────────────────────────────────────────────────────────────────────────

from pathlib import Path

from dotenv import load_dotenv

ENV_PATH = Path(__file__).parent / ".env"
load_dotenv(dotenv_path=ENV_PATH)

# ─────────────────────────────────────────────────────────────────────────────
import argparse
import asyncio
import signal
import sys

OVERVIEW_LOG_INTERVAL = 60.0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="clawmonitor",
        description="ClawMonitor — local operations console for an OpenClaw gateway",
    )
    parser.add_argument(
        "subcommand",
        nargs="?",
        choices=["run", "identity"],
        default="run",
        help=(
            "'run' — connect to the gateway, poll snapshots and log the live "
            "event stream (default). "
            "'identity' — print the device id and cached token state."
        ),
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $CLAWMONITOR_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace, *, require_gateway: bool = True):
    """
    Load config, validate it, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) if:
      - config.yaml has invalid values (Pydantic ValidationError)
      - cross-field problems are found (ConfigError from validate_all())
    """
    from config.settings import ConfigError, load_settings
    from observability.logger import get_logger, setup_logging
    from pydantic import ValidationError

    # -- Load and parse -------------------------------------------------------
    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {e['loc'][-1] if e['loc'] else '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (OSError, ValueError) as exc:
        print(
            f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n",
            file=sys.stderr,
        )
        sys.exit(1)

    # -- Cross-field validation -----------------------------------------------
    if require_gateway:
        try:
            settings.validate_all()
        except ConfigError as exc:
            print(str(exc), file=sys.stderr)
            sys.exit(1)

    # -- Logging --------------------------------------------------------------
    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.log_dir,
        json_format=settings.logging.json_format,
        console_output=settings.logging.console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )

    log = get_logger("clawmonitor.main")
    return settings, log


def show_identity(settings, console=None) -> int:
    """Print the device identity and whether the gateway has issued a token."""
    from rich import box
    from rich.console import Console
    from rich.table import Table

    from gateway.identity import DeviceIdentityStore
    from gateway.token_store import DeviceTokenStore

    console = console or Console()
    identity = DeviceIdentityStore(settings.identity_dir / "device.json").load_or_create()
    tokens = DeviceTokenStore(settings.identity_dir / "device-auth.json")
    cached = tokens.load(identity.device_id, settings.gateway.role)

    table = Table(title="ClawMonitor device identity", box=box.SIMPLE, show_header=False)
    table.add_column("Field", style="cyan bold", no_wrap=True)
    table.add_column("Value", no_wrap=True)
    table.add_row("device id", identity.device_id)
    table.add_row("public key", identity.public_key_b64url())
    table.add_row("identity dir", str(settings.identity_dir))
    table.add_row(
        "device token",
        f"[green]cached for role {settings.gateway.role}[/green]" if cached else "[dim]none[/dim]",
    )
    console.print(table)
    return 0


def make_callbacks(status, store, log):
    """Wire the connection's on_status / on_event into the tracker and store."""

    def on_status(update) -> None:
        status.update(update)
        log.info("monitor.gateway_status", **update.to_dict())

    def on_event(envelope) -> None:
        row = store.record_event(envelope)
        log.debug(
            "monitor.event",
            event_name=row.event,
            type=row.type,
            session_key=row.session_key,
            tool=row.tool,
            summary=row.summary,
        )

    return on_status, on_event


async def run_monitor(settings, log) -> int:
    """Connect, poll and record until SIGINT/SIGTERM."""
    from gateway.connection import GatewayConnection
    from monitor.poller import Poller
    from monitor.status import GatewayStatusTracker
    from monitor.store import MonitorStore
    from observability.logger import bind_gateway, clear_context

    target = settings.resolve_gateway_target()
    status = GatewayStatusTracker(target.url)
    store = MonitorStore(
        max_events=settings.store.max_events,
        max_query_limit=settings.store.max_query_limit,
    )

    on_status, on_event = make_callbacks(status, store, log)
    conn = GatewayConnection.from_settings(settings, target, on_status=on_status, on_event=on_event)
    bind_gateway(target.url, conn.identity.device_id)
    log.info(
        "clawmonitor.starting",
        source=target.source,
        gateway_version=target.gateway_version,
        shared_secret=bool(target.token),
    )

    poller = None
    if settings.poller.enabled:
        poller = Poller(
            conn,
            store.record_snapshot,
            sessions_interval=settings.poller.sessions_interval_seconds,
            cron_interval=settings.poller.cron_interval_seconds,
            sessions_limit=settings.poller.sessions_limit,
        )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows: KeyboardInterrupt still ends asyncio.run
            pass

    conn.start()
    if poller is not None:
        poller.start()

    try:
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=OVERVIEW_LOG_INTERVAL)
            except asyncio.TimeoutError:
                overview = store.overview(status)
                log.info(
                    "monitor.overview",
                    connected=overview["gateway"]["connected"],
                    uptime_pct=overview["gateway"]["uptimePct"],
                    sessions=overview["sessions"]["count"],
                    cron_jobs=overview["cron"]["count"],
                    events_last_hour=overview["events"]["lastHourTotal"],
                )
    finally:
        if poller is not None:
            await poller.stop()
        await conn.stop()
        log.info("clawmonitor.stopped")
        clear_context()
    return 0


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    if args.subcommand == "identity":
        settings, _ = bootstrap(args, require_gateway=False)
        return show_identity(settings)

    settings, log = bootstrap(args)
    return await run_monitor(settings, log)


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
