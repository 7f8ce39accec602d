"""
gateway/protocol.py — Gateway WebSocket Frame Protocol

Typed frames for client↔gateway communication. Every frame is a JSON
object with a `type` of "req", "res" or "event".

    client → gateway   {"type": "req", "id", "method", "params"}
    gateway → client   {"type": "res", "id", "ok", "payload"?, "error"?: {"message"}}
    gateway → client   {"type": "event", "event", "payload"?}
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


CONNECT_CHALLENGE_EVENT = "connect.challenge"
CONNECT_METHOD = "connect"


class FrameType(str, Enum):
    REQUEST  = "req"
    RESPONSE = "res"
    EVENT    = "event"


def new_request_id() -> str:
    return uuid.uuid4().hex


# ─────────────────────────────────────────────────────────────────────────────
# Frames
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class RequestFrame:
    method: str
    params: Any = None
    id: str = field(default_factory=new_request_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": FrameType.REQUEST.value,
            "id": self.id,
            "method": self.method,
            "params": self.params,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass
class ResponseFrame:
    id: str
    ok: bool
    payload: Any = None
    error_message: Optional[str] = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "ResponseFrame":
        error = d.get("error")
        message = error.get("message") if isinstance(error, dict) else None
        return cls(
            id=str(d.get("id", "")),
            ok=bool(d.get("ok")),
            payload=d.get("payload"),
            error_message=message if isinstance(message, str) else None,
        )


@dataclass
class EventFrame:
    event: str
    payload: Any = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "EventFrame":
        return cls(event=str(d.get("event", "")), payload=d.get("payload"), raw=d)

    @property
    def is_challenge(self) -> bool:
        return self.event == CONNECT_CHALLENGE_EVENT

    def nonce(self) -> Optional[str]:
        """Challenge nonce, or None when absent or empty."""
        if not isinstance(self.payload, dict):
            return None
        nonce = self.payload.get("nonce")
        return nonce if isinstance(nonce, str) and nonce else None


InboundFrame = Union[ResponseFrame, EventFrame]


def parse_frame(raw: Union[str, bytes]) -> Optional[InboundFrame]:
    """
    Parse an inbound frame. Returns None for anything that is not a JSON
    object with type "res" or "event".
    """
    try:
        d = json.loads(raw)
    except (ValueError, TypeError):
        return None
    if not isinstance(d, dict):
        return None

    kind = d.get("type")
    if kind == FrameType.EVENT.value:
        return EventFrame.from_dict(d)
    if kind == FrameType.RESPONSE.value:
        return ResponseFrame.from_dict(d)
    return None


# ─────────────────────────────────────────────────────────────────────────────
# Factory helpers: gateway → client frames
# ─────────────────────────────────────────────────────────────────────────────

def make_event(event: str, payload: Any = None) -> dict[str, Any]:
    frame: dict[str, Any] = {"type": FrameType.EVENT.value, "event": event}
    if payload is not None:
        frame["payload"] = payload
    return frame


def make_challenge(nonce: str) -> dict[str, Any]:
    return make_event(CONNECT_CHALLENGE_EVENT, {"nonce": nonce})


def make_response(
    request_id: str,
    payload: Any = None,
    *,
    ok: bool = True,
    error: Optional[str] = None,
) -> dict[str, Any]:
    frame: dict[str, Any] = {"type": FrameType.RESPONSE.value, "id": request_id, "ok": ok}
    if payload is not None:
        frame["payload"] = payload
    if error is not None:
        frame["error"] = {"message": error}
    return frame
