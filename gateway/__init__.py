"""
gateway/ — Gateway connection subsystem

Maintains one authenticated WebSocket connection to the OpenClaw gateway:
device identity, cached device tokens, challenge/response handshake,
request correlation and automatic reconnection.

Collaborators (poller, monitor store, CLI) only use GatewayConnection's
start() / stop() / request() and its on_status / on_event callbacks.
"""

from gateway.connection import GatewayConnection
from gateway.identity import DeviceIdentity, DeviceIdentityStore
from gateway.protocol import EventFrame, FrameType, RequestFrame, ResponseFrame
from gateway.state import ConnectionState, StatusUpdate
from gateway.token_store import DeviceTokenRecord, DeviceTokenStore

__all__ = [
    "GatewayConnection",
    "DeviceIdentity",
    "DeviceIdentityStore",
    "DeviceTokenRecord",
    "DeviceTokenStore",
    "ConnectionState",
    "StatusUpdate",
    "FrameType",
    "RequestFrame",
    "ResponseFrame",
    "EventFrame",
]
