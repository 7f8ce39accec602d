"""
gateway/token_store.py — Device Token Store

Caches the role-scoped device tokens the gateway issues after a successful
handshake. The whole container is bound to one device id: if the current
identity differs from the stored one, every token in the file is ignored.

File format (owner read/write only):
    {
      "version": 1,
      "deviceId": "<hex sha256>",
      "tokens": {
        "operator": {"token": "...", "role": "operator",
                     "scopes": ["operator.admin"], "updatedAtMs": 1700000000000}
      }
    }
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional

from gateway.storage import read_json, write_private_json
from observability.logger import get_logger

log = get_logger(__name__)

TOKEN_STORE_VERSION = 1


@dataclass
class DeviceTokenRecord:
    token: str
    role: str
    scopes: list[str] = field(default_factory=list)
    updated_at_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["updatedAtMs"] = d.pop("updated_at_ms")
        return d


def normalize_scopes(scopes: Optional[Iterable[Any]]) -> list[str]:
    """Trim, drop blanks, dedupe and sort."""
    if not scopes or isinstance(scopes, (str, bytes)):
        return []
    return sorted({str(s).strip() for s in scopes} - {""})


class DeviceTokenStore:
    """Per-role device token cache gated on the owning device id."""

    def __init__(self, path: Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> Optional[dict[str, Any]]:
        stored = read_json(self._path)
        if stored is None:
            return None
        if (
            stored.get("version") != TOKEN_STORE_VERSION
            or not isinstance(stored.get("deviceId"), str)
            or not isinstance(stored.get("tokens"), dict)
        ):
            return None
        return stored

    def load(self, device_id: str, role: str) -> Optional[str]:
        """Return the cached token for role, or None."""
        stored = self._read()
        if stored is None or stored["deviceId"] != device_id:
            return None
        entry = stored["tokens"].get(role)
        if not isinstance(entry, dict) or not isinstance(entry.get("token"), str):
            return None
        return entry["token"]

    def save(
        self,
        device_id: str,
        role: str,
        token: Optional[str],
        scopes: Optional[Iterable[Any]] = None,
    ) -> None:
        """Store token for role, replacing any previous entry. Empty tokens are ignored."""
        if not token:
            return

        existing = self._read()
        tokens: dict[str, Any] = {}
        if existing is not None and existing["deviceId"] == device_id:
            tokens = dict(existing["tokens"])

        record = DeviceTokenRecord(
            token=token,
            role=role,
            scopes=normalize_scopes(scopes),
            updated_at_ms=int(time.time() * 1000),
        )
        tokens[role] = record.to_dict()

        write_private_json(
            self._path,
            {"version": TOKEN_STORE_VERSION, "deviceId": device_id, "tokens": tokens},
        )
        log.info("token_store.saved", role=role, scopes=record.scopes)
