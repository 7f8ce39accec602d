"""
gateway/state.py — Connection state machine

Pure transition table for one gateway connection. The connection object
feeds it transport events and emits a StatusUpdate for every change.

    DISCONNECTED ──opened──▶ AWAITING_CHALLENGE ──challenge──▶ AUTHENTICATING
         ▲                                                        │
         │                                                   hello_ok
         └────────────── closed (from any state) ◀── CONNECTED ◀──┘
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Optional


class ConnectionState(str, Enum):
    DISCONNECTED       = "disconnected"
    AWAITING_CHALLENGE = "awaiting-challenge"
    AUTHENTICATING     = "authenticating"
    CONNECTED          = "connected"


class TransportEvent(str, Enum):
    OPENED       = "opened"
    CHALLENGE    = "challenge"
    HELLO_OK     = "hello_ok"
    HELLO_FAILED = "hello_failed"
    CLOSED       = "closed"


_TRANSITIONS: dict[tuple[ConnectionState, TransportEvent], ConnectionState] = {
    (ConnectionState.DISCONNECTED,       TransportEvent.OPENED):    ConnectionState.AWAITING_CHALLENGE,
    (ConnectionState.AWAITING_CHALLENGE, TransportEvent.CHALLENGE): ConnectionState.AUTHENTICATING,
    (ConnectionState.AUTHENTICATING,     TransportEvent.CHALLENGE): ConnectionState.AUTHENTICATING,
    (ConnectionState.CONNECTED,          TransportEvent.CHALLENGE): ConnectionState.AUTHENTICATING,
    (ConnectionState.AUTHENTICATING,     TransportEvent.HELLO_OK):  ConnectionState.CONNECTED,
    # A failed hello closes the transport; the CLOSED event finishes the job.
    (ConnectionState.AUTHENTICATING,     TransportEvent.HELLO_FAILED): ConnectionState.AUTHENTICATING,
    (ConnectionState.AWAITING_CHALLENGE, TransportEvent.HELLO_FAILED): ConnectionState.AWAITING_CHALLENGE,
}


def next_state(state: ConnectionState, event: TransportEvent) -> ConnectionState:
    """Return the state after event. Unknown pairs leave the state unchanged."""
    if event is TransportEvent.CLOSED:
        return ConnectionState.DISCONNECTED
    return _TRANSITIONS.get((state, event), state)


@dataclass
class StatusUpdate:
    """Payload for on_status notifications."""
    connected: bool
    phase: Optional[str] = None
    error: Optional[str] = None
    code: Optional[int] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}
