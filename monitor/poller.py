"""
monitor/poller.py — Periodic list snapshots

Polls two read-only gateway methods on fixed intervals and hands each
result to on_snapshot:

    sessions.list  every 5s   (sessions augmented with drift.pressure)
    cron.list      every 15s

Each loop polls once immediately on start. A failed poll (gateway not
connected yet, closed mid-request, or an error response) is logged and
skipped; the next tick tries again.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, Protocol

from exceptions import GatewayError
from monitor.store import Snapshot
from observability.logger import get_logger

log = get_logger(__name__)

SnapshotCallback = Callable[[Snapshot], None]


class RequestSender(Protocol):
    async def request(self, method: str, params: Any = None) -> Any: ...


def context_pressure(session: dict[str, Any]) -> float:
    """Percentage of the context window in use, 0 when unknown."""
    total = session.get("totalTokens")
    context = session.get("contextTokens")
    if not isinstance(total, (int, float)) or not isinstance(context, (int, float)) or context <= 0:
        return 0.0
    return round(total / context * 100, 2)


def with_drift(payload: Any) -> Any:
    if not isinstance(payload, dict) or not isinstance(payload.get("sessions"), list):
        return payload
    sessions = [
        {**s, "drift": {"pressure": context_pressure(s)}} if isinstance(s, dict) else s
        for s in payload["sessions"]
    ]
    return {**payload, "sessions": sessions}


class Poller:
    def __init__(
        self,
        gateway: RequestSender,
        on_snapshot: Optional[SnapshotCallback] = None,
        *,
        sessions_interval: float = 5.0,
        cron_interval: float = 15.0,
        sessions_limit: int = 500,
    ):
        self._gateway = gateway
        self._on_snapshot = on_snapshot
        self._sessions_interval = sessions_interval
        self._cron_interval = cron_interval
        self._sessions_limit = sessions_limit
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        if self._tasks:
            return
        log.info(
            "poller.starting",
            sessions_interval=self._sessions_interval,
            cron_interval=self._cron_interval,
        )
        self._tasks = [
            asyncio.create_task(self._loop(self.poll_sessions, self._sessions_interval)),
            asyncio.create_task(self._loop(self.poll_cron, self._cron_interval)),
        ]

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        log.info("poller.stopped")

    async def _loop(self, poll: Callable[[], Awaitable[None]], interval: float) -> None:
        while True:
            await poll()
            await asyncio.sleep(interval)

    async def poll_sessions(self) -> None:
        params = {"includeGlobal": True, "includeUnknown": True, "limit": self._sessions_limit}
        payload = await self._fetch("sessions.list", params)
        if payload is not None:
            self._deliver("sessions", with_drift(payload))

    async def poll_cron(self) -> None:
        payload = await self._fetch("cron.list", {"includeDisabled": True})
        if payload is not None:
            self._deliver("cron", payload)

    async def _fetch(self, method: str, params: dict[str, Any]) -> Any:
        try:
            return await self._gateway.request(method, params)
        except GatewayError as exc:
            log.debug("poller.poll_failed", method=method, error=str(exc), error_type=type(exc).__name__)
            return None

    def _deliver(self, kind: str, payload: Any) -> None:
        if self._on_snapshot is None:
            return
        try:
            self._on_snapshot(Snapshot(kind=kind, payload=payload))
        except Exception:
            log.exception("poller.on_snapshot_failed", kind=kind)
