"""
monitor/events.py — Gateway event classification

Reduces a raw gateway event envelope to the few columns the console
filters on: a coarse type, the tool involved, run id, session key and a
one-line summary.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class EventType(str, Enum):
    CHAT     = "chat"
    CRON     = "cron"
    PRESENCE = "presence"
    AGENT    = "agent"
    DEVICE   = "device"
    OTHER    = "other"


_DIRECT_TYPES = {
    "chat": EventType.CHAT,
    "cron": EventType.CRON,
    "presence": EventType.PRESENCE,
    "agent": EventType.AGENT,
}


@dataclass
class EventMeta:
    type: EventType
    tool: Optional[str] = None
    run_id: Optional[str] = None
    session_key: Optional[str] = None
    summary: Optional[str] = None


def classify_event(envelope: dict[str, Any]) -> EventMeta:
    name = str(envelope.get("event") or "")
    payload = envelope.get("payload")
    if not isinstance(payload, dict):
        payload = {}

    if name in _DIRECT_TYPES:
        kind = _DIRECT_TYPES[name]
    elif name.startswith("device."):
        kind = EventType.DEVICE
    else:
        kind = EventType.OTHER

    meta = EventMeta(
        type=kind,
        run_id=payload.get("runId") or payload.get("toolRunId"),
        session_key=payload.get("sessionKey"),
    )

    if kind is EventType.AGENT and payload:
        meta.tool = payload.get("tool") or payload.get("name")
        if payload.get("kind") == "tool" and payload.get("tool"):
            meta.tool = payload["tool"]
        if payload.get("message"):
            meta.summary = payload["message"]

    elif kind is EventType.CHAT and payload:
        meta.summary = f"chat.{payload['state']}" if payload.get("state") else "chat"
        meta.run_id = payload.get("runId")

    return meta
