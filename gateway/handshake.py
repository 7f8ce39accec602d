"""
gateway/handshake.py — Device-authenticated connect handshake

Builds the params of the `connect` request sent after the gateway issues a
`connect.challenge`. The device proves possession of its key by signing a
pipe-joined canonical payload:

    v2|deviceId|clientId|clientMode|role|scope1,scope2|signedAtMs|token|nonce

v1 payloads omit the trailing nonce field.
"""

from __future__ import annotations

import platform
import socket
import sys
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from exceptions import MissingNonceError
from gateway.identity import DeviceIdentity

PAYLOAD_VERSION = "v2"
PROTOCOL_VERSION = 3

DEFAULT_ROLE = "operator"
DEFAULT_SCOPES = ("operator.admin", "operator.approvals", "operator.pairing")


@dataclass
class ClientInfo:
    id: str = "openclaw-control-ui"
    mode: str = "webchat"
    version: str = "dev"
    platform: str = field(default_factory=lambda: sys.platform)
    locale: str = "en-US"

    @property
    def user_agent(self) -> str:
        return f"clawmonitor/{socket.gethostname()}/python-{platform.python_version()}"


def build_device_auth_payload(
    *,
    device_id: str,
    client_id: str,
    client_mode: str,
    role: str,
    scopes: list[str],
    signed_at_ms: int,
    token: Optional[str] = None,
    nonce: Optional[str] = None,
    version: str = PAYLOAD_VERSION,
) -> str:
    fields = [
        version,
        device_id,
        client_id,
        client_mode,
        role,
        ",".join(scopes),
        str(signed_at_ms),
        token or "",
    ]
    if version == "v2":
        fields.append(nonce or "")
    return "|".join(fields)


def build_connect_params(
    identity: DeviceIdentity,
    *,
    nonce: Optional[str],
    client: ClientInfo,
    role: str = DEFAULT_ROLE,
    scopes: Optional[list[str]] = None,
    token: Optional[str] = None,
    signed_at_ms: Optional[int] = None,
) -> dict[str, Any]:
    """
    Build signed connect params for the current challenge.

    Raises MissingNonceError when no challenge nonce is available; the
    gateway rejects v2 handshakes without one.
    """
    if not nonce:
        raise MissingNonceError()

    scopes = list(scopes if scopes is not None else DEFAULT_SCOPES)
    signed_at_ms = signed_at_ms if signed_at_ms is not None else int(time.time() * 1000)

    payload = build_device_auth_payload(
        device_id=identity.device_id,
        client_id=client.id,
        client_mode=client.mode,
        role=role,
        scopes=scopes,
        signed_at_ms=signed_at_ms,
        token=token,
        nonce=nonce,
    )

    params: dict[str, Any] = {
        "minProtocol": PROTOCOL_VERSION,
        "maxProtocol": PROTOCOL_VERSION,
        "client": {
            "id": client.id,
            "version": client.version,
            "platform": client.platform,
            "mode": client.mode,
        },
        "role": role,
        "scopes": scopes,
        "device": {
            "id": identity.device_id,
            "publicKey": identity.public_key_b64url(),
            "signature": identity.sign(payload),
            "signedAt": signed_at_ms,
            "nonce": nonce,
        },
        "caps": [],
        "userAgent": client.user_agent,
        "locale": client.locale,
    }
    if token:
        params["auth"] = {"token": token}
    return params
