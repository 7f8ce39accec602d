"""
monitor/store.py — In-memory event and snapshot store

Holds the live event stream (bounded, newest kept) and the latest
snapshot per kind, and derives the console overview from them. Lives on
the same event loop as the connection, so no locking.
"""

from __future__ import annotations

import itertools
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Optional

from monitor.events import classify_event
from monitor.status import GatewayStatusTracker, now_ms

HOUR_MS = 60 * 60 * 1000
TOP_N = 5
OVERVIEW_EVENT_WINDOW = 500
SUBAGENT_MARKER = ":subagent:"


@dataclass
class EventRow:
    id: int
    ts: int
    event: str
    type: str
    session_key: Optional[str] = None
    run_id: Optional[str] = None
    tool: Optional[str] = None
    summary: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ts": self.ts,
            "event": self.event,
            "type": self.type,
            "sessionKey": self.session_key,
            "runId": self.run_id,
            "tool": self.tool,
            "summary": self.summary,
            "payload": self.payload,
        }


@dataclass
class Snapshot:
    kind: str
    payload: Any
    ts: int = field(default_factory=now_ms)
    id: int = 0


class MonitorStore:
    def __init__(self, *, max_events: int = 5000, max_query_limit: int = 1000):
        self._events: deque[EventRow] = deque(maxlen=max_events)
        self._snapshots: dict[str, Snapshot] = {}
        self._ids = itertools.count(1)
        self._snapshot_ids = itertools.count(1)
        self._max_query_limit = max_query_limit

    # ── Events ────────────────────────────────────────────────────────────────

    def record_event(self, envelope: dict[str, Any], *, ts: Optional[int] = None) -> EventRow:
        """Classify and store one gateway event envelope. Usable as on_event."""
        meta = classify_event(envelope)
        row = EventRow(
            id=next(self._ids),
            ts=ts if ts is not None else now_ms(),
            event=str(envelope.get("event") or "event"),
            type=meta.type.value,
            session_key=meta.session_key,
            run_id=meta.run_id,
            tool=meta.tool,
            summary=meta.summary,
            payload=envelope,
        )
        self._events.append(row)
        return row

    __call__ = record_event

    def list_events(
        self,
        *,
        type: Optional[str] = None,
        session_key_like: Optional[str] = None,
        limit: Any = 100,
    ) -> list[EventRow]:
        """Newest first, optionally filtered by type and session key substring."""
        type_ = type.strip() if type and type.strip() else None
        needle = session_key_like.strip() if session_key_like and session_key_like.strip() else None
        try:
            limit = int(limit)
        except (TypeError, ValueError):
            limit = 100
        limit = max(1, min(self._max_query_limit, limit))

        out: list[EventRow] = []
        for row in sorted(self._events, key=lambda r: (r.ts, r.id), reverse=True):
            if type_ is not None and row.type != type_:
                continue
            if needle is not None and (row.session_key is None or needle not in row.session_key):
                continue
            out.append(row)
            if len(out) >= limit:
                break
        return out

    def latest_event_for_session(self, session_key: str) -> Optional[EventRow]:
        matches = [r for r in self._events if r.session_key == session_key]
        return max(matches, key=lambda r: (r.ts, r.id)) if matches else None

    # ── Snapshots ─────────────────────────────────────────────────────────────

    def record_snapshot(self, snapshot: Snapshot) -> None:
        """Keep snapshot as the latest for its kind. Usable as on_snapshot."""
        snapshot.id = next(self._snapshot_ids)
        self._snapshots[snapshot.kind] = snapshot

    def latest_snapshot(self, kind: str) -> Optional[Snapshot]:
        return self._snapshots.get(kind)

    def _snapshot_list(self, kind: str, key: str) -> list[dict[str, Any]]:
        snap = self._snapshots.get(kind)
        payload = snap.payload if snap is not None else None
        if isinstance(payload, dict) and isinstance(payload.get(key), list):
            return payload[key]
        if isinstance(payload, list):
            return payload
        return []

    # ── Derived views ─────────────────────────────────────────────────────────

    def subagents(self) -> list[dict[str, Any]]:
        """Subagent sessions from the latest sessions snapshot, with their last event."""
        subs = []
        for s in self._snapshot_list("sessions", "sessions"):
            key = s.get("key") if isinstance(s, dict) else None
            if not isinstance(key, str) or SUBAGENT_MARKER not in key:
                continue
            last = self.latest_event_for_session(key)
            subs.append({**s, "lastEvent": last.to_dict() if last else None})
        return subs

    def overview(self, status: GatewayStatusTracker, at_ms: Optional[int] = None) -> dict[str, Any]:
        now = at_ms if at_ms is not None else now_ms()

        sessions = [s for s in self._snapshot_list("sessions", "sessions") if isinstance(s, dict)]
        cron_jobs = [j for j in self._snapshot_list("cron", "jobs") if isinstance(j, dict)]

        top_pressure = sorted(
            (s for s in sessions if isinstance((s.get("drift") or {}).get("pressure"), (int, float))),
            key=lambda s: s["drift"]["pressure"],
            reverse=True,
        )[:TOP_N]

        scheduled = [j for j in cron_jobs if isinstance(j.get("nextRunAtMs"), (int, float))]
        next_cron = min(scheduled, key=lambda j: j["nextRunAtMs"]) if scheduled else None

        since = now - HOUR_MS
        recent = [
            r for r in self.list_events(limit=OVERVIEW_EVENT_WINDOW)
            if r.ts >= since
        ]
        by_type: dict[str, int] = {}
        for r in recent:
            by_type[r.type] = by_type.get(r.type, 0) + 1

        sessions_snap = self._snapshots.get("sessions")
        cron_snap = self._snapshots.get("cron")
        return {
            "now": now,
            "server": {
                "startedAt": status.started_at_ms,
                "upMs": now - status.started_at_ms,
            },
            "gateway": status.snapshot(now),
            "snapshots": {
                "sessionsTs": sessions_snap.ts if sessions_snap else None,
                "cronTs": cron_snap.ts if cron_snap else None,
            },
            "sessions": {"count": len(sessions), "topPressure": top_pressure},
            "cron": {"count": len(cron_jobs), "next": next_cron},
            "events": {"lastHourTotal": len(recent), "byType": by_type},
        }
