"""
monitor/status.py — Gateway uptime tracking

Folds the connection's StatusUpdate stream into connected-since and
accumulated connected time, so the console can show gateway uptime as a
share of its own uptime.
"""

from __future__ import annotations

import time
from typing import Optional

from gateway.state import StatusUpdate


def now_ms() -> int:
    return int(time.time() * 1000)


class GatewayStatusTracker:
    def __init__(self, url: str, *, started_at_ms: Optional[int] = None):
        self.url = url
        self.started_at_ms = started_at_ms if started_at_ms is not None else now_ms()
        self.connected = False
        self.connected_since_ms: Optional[int] = None
        self.total_connected_ms = 0
        self.error: Optional[str] = None
        self.phase: Optional[str] = None

    def update(self, status: StatusUpdate, *, at_ms: Optional[int] = None) -> None:
        """Apply one status notification. Usable directly as on_status."""
        at = at_ms if at_ms is not None else now_ms()

        if status.connected and not self.connected:
            self.connected_since_ms = at
        if not status.connected and self.connected and self.connected_since_ms is not None:
            self.total_connected_ms += at - self.connected_since_ms
            self.connected_since_ms = None

        self.connected = status.connected
        self.error = status.error
        self.phase = status.phase

    __call__ = update

    def connected_ms(self, at_ms: int) -> int:
        """Total connected time including the current session."""
        if self.connected and self.connected_since_ms is not None:
            return self.total_connected_ms + (at_ms - self.connected_since_ms)
        return self.total_connected_ms

    def uptime_pct(self, at_ms: int) -> float:
        up = at_ms - self.started_at_ms
        if up <= 0:
            return 0.0
        return round(self.connected_ms(at_ms) / up * 100, 2)

    def snapshot(self, at_ms: Optional[int] = None) -> dict:
        at = at_ms if at_ms is not None else now_ms()
        return {
            "connected": self.connected,
            "connectedSince": self.connected_since_ms,
            "totalConnectedMs": self.connected_ms(at),
            "uptimePct": self.uptime_pct(at),
            "url": self.url,
            "error": self.error,
            "phase": self.phase,
        }
