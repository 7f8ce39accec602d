"""
exceptions.py — ClawMonitor Unified Error Hierarchy

All ClawMonitor-specific exceptions live here. Every layer of the stack
raises typed subclasses of MonitorError — never bare Exception.

Import from here, not from individual modules:
    from exceptions import GatewayNotConnectedError, GatewayClosedError

Hierarchy:
    MonitorError
    ├── GatewayError
    │   ├── GatewayNotConnectedError
    │   ├── GatewayClosedError
    │   ├── GatewayRequestError
    │   │   └── GatewayTimeoutError
    │   └── HandshakeError
    │       └── MissingNonceError
    └── IdentityError

ConfigError lives in config/settings.py alongside the loader that raises it.
"""

from __future__ import annotations

from typing import Optional


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class MonitorError(Exception):
    """Base class for all ClawMonitor exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Gateway connection
# ─────────────────────────────────────────────────────────────────────────────

class GatewayError(MonitorError):
    """Base for gateway connection and request errors."""


class GatewayNotConnectedError(GatewayError):
    """request() was called while the transport was not open."""

    def __init__(self, message: str = "gateway not connected"):
        super().__init__(message)


class GatewayClosedError(GatewayError):
    """The transport closed while the request was still pending."""

    def __init__(self, code: Optional[int], reason: str = ""):
        self.code = code
        self.reason = reason
        super().__init__(f"gateway closed ({code}): {reason}")


class GatewayRequestError(GatewayError):
    """The gateway answered a request with ok=false."""


class GatewayTimeoutError(GatewayRequestError):
    """No response arrived within the per-request timeout."""


class HandshakeError(GatewayError):
    """The connect handshake was rejected or could not be built."""


class MissingNonceError(HandshakeError):
    """A handshake was attempted before any connect.challenge arrived."""

    def __init__(self, message: str = "missing connect.challenge nonce"):
        super().__init__(message)


# ─────────────────────────────────────────────────────────────────────────────
# Device identity
# ─────────────────────────────────────────────────────────────────────────────

class IdentityError(MonitorError):
    """Key material could not be decoded or is not an Ed25519 key."""
