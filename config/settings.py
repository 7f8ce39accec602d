"""
config/settings.py — ClawMonitor Runtime Settings

Merges config.yaml (defaults/structure) with .env and environment
variables (gateway URL and shared secret). Pydantic-powered — all fields
are validated and typed.

Gateway target resolution (resolve_gateway_target):
  1. OPENCLAW_GATEWAY_URL / GATEWAY_URL env var, token from
     OPENCLAW_GATEWAY_TOKEN / GATEWAY_TOKEN. The host config is not read.
  2. gateway.url from config.yaml, token from env or gateway.token.
  3. ~/.openclaw/openclaw.json written by the gateway host: port and
     shared secret are taken from its `gateway` section.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Raised by validate_all() when one or more config problems are found."""


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

DEFAULT_GATEWAY_PORT = 18789
DEFAULT_OPENCLAW_CONFIG = "~/.openclaw/openclaw.json"


@dataclass(frozen=True)
class GatewayTarget:
    """Where to connect and with which shared secret."""
    url: str
    token: Optional[str] = None
    gateway_version: Optional[str] = None
    source: str = "env"


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class GatewayConfig(BaseModel):
    url: Optional[str] = None
    token: Optional[str] = None
    origin: str = "http://localhost:18789"
    state_dir: str = "~/.openclaw/monitor-dashboard"
    role: str = "operator"
    scopes: List[str] = Field(
        default_factory=lambda: ["operator.admin", "operator.approvals", "operator.pairing"]
    )
    client_id: str = "openclaw-control-ui"
    client_mode: str = "webchat"
    client_version: str = "dev"
    locale: str = "en-US"
    reconnect_delay_seconds: float = 1.0
    request_timeout_seconds: Optional[float] = None

    @field_validator("url")
    @classmethod
    def _ws_scheme(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        if not v.startswith(("ws://", "wss://")):
            raise ValueError(f"gateway.url must start with ws:// or wss://, got '{v}'")
        return v

    @field_validator("reconnect_delay_seconds")
    @classmethod
    def _positive_delay(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("gateway.reconnect_delay_seconds must be > 0")
        return v

    @field_validator("request_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("gateway.request_timeout_seconds must be > 0 or null")
        return v


class PollerConfig(BaseModel):
    enabled: bool = True
    sessions_interval_seconds: float = 5.0
    cron_interval_seconds: float = 15.0
    sessions_limit: int = 500

    @field_validator("sessions_interval_seconds", "cron_interval_seconds")
    @classmethod
    def _positive_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("poller intervals must be > 0")
        return v

    @field_validator("sessions_limit")
    @classmethod
    def _valid_limit(cls, v: int) -> int:
        if not (1 <= v <= 5000):
            raise ValueError("poller.sessions_limit must be between 1 and 5000")
        return v


class StoreConfig(BaseModel):
    max_events: int = 5000
    max_query_limit: int = 1000

    @field_validator("max_events", "max_query_limit")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("store limits must be >= 1")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 100
    backup_count: int = 5
    console_output: bool = True
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    ClawMonitor runtime settings.

    Priority (highest to lowest):
      1. Environment variables
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Gateway target from the environment ---------------------------------
    gateway_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("OPENCLAW_GATEWAY_URL", "GATEWAY_URL"),
    )
    gateway_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("OPENCLAW_GATEWAY_TOKEN", "GATEWAY_TOKEN"),
    )
    openclaw_config_path: str = Field(
        default=DEFAULT_OPENCLAW_CONFIG,
        validation_alias=AliasChoices("OPENCLAW_CONFIG_PATH"),
    )

    # -- Structured config (from config.yaml) --------------------------------
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    poller: PollerConfig = Field(default_factory=PollerConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("gateway", mode="before")
    @classmethod
    def _coerce_gateway(cls, v: Any) -> Any:
        return GatewayConfig(**v) if isinstance(v, dict) else v

    @field_validator("poller", mode="before")
    @classmethod
    def _coerce_poller(cls, v: Any) -> Any:
        return PollerConfig(**v) if isinstance(v, dict) else v

    @field_validator("store", mode="before")
    @classmethod
    def _coerce_store(cls, v: Any) -> Any:
        return StoreConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    @property
    def state_dir(self) -> Path:
        return Path(self.gateway.state_dir).expanduser()

    @property
    def identity_dir(self) -> Path:
        return self.state_dir / "identity"

    # -- Gateway target ------------------------------------------------------

    def resolve_gateway_target(self) -> GatewayTarget:
        """
        Work out the gateway URL and shared secret.

        Raises ConfigError if neither the environment, config.yaml nor the
        host's openclaw.json names a gateway.
        """
        if self.gateway_url:
            return GatewayTarget(url=self.gateway_url, token=self.gateway_token or None, source="env")

        if self.gateway.url:
            return GatewayTarget(
                url=self.gateway.url,
                token=self.gateway_token or self.gateway.token,
                source="config",
            )

        return _target_from_openclaw_config(
            Path(self.openclaw_config_path).expanduser(),
            env_token=self.gateway_token,
        )

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time; this
        catches cross-field and runtime problems (no resolvable gateway,
        empty role or scopes).
        """
        errors: list[str] = []

        try:
            self.resolve_gateway_target()
        except ConfigError as exc:
            errors.append(str(exc))

        if not self.gateway.role.strip():
            errors.append("gateway.role must not be empty.")

        if not [s for s in self.gateway.scopes if s.strip()]:
            errors.append("gateway.scopes must list at least one scope.")

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nClawMonitor startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml, your .env file "
                f"or the environment and restart.\n"
            )


def _target_from_openclaw_config(path: Path, *, env_token: Optional[str]) -> GatewayTarget:
    try:
        cfg = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigError(
            f"No gateway configured: set OPENCLAW_GATEWAY_URL, gateway.url in "
            f"config.yaml, or provide {path}."
        ) from None
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Could not read gateway host config {path}: {exc}") from exc

    if not isinstance(cfg, dict):
        raise ConfigError(f"Gateway host config {path} is not a JSON object.")

    gw = cfg.get("gateway") if isinstance(cfg.get("gateway"), dict) else {}
    auth = gw.get("auth") if isinstance(gw.get("auth"), dict) else {}
    meta = cfg.get("meta") if isinstance(cfg.get("meta"), dict) else {}

    port = gw.get("port") or DEFAULT_GATEWAY_PORT
    # The monitor always runs beside the gateway, whatever its bind mode.
    return GatewayTarget(
        url=f"ws://127.0.0.1:{port}",
        token=env_token or auth.get("token"),
        gateway_version=meta.get("lastTouchedVersion"),
        source="openclaw.json",
    )


# ─────────────────────────────────────────────────────────────────────────────
# Loader
# ─────────────────────────────────────────────────────────────────────────────

_KNOWN_SECTIONS = {"gateway", "poller", "store", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. CLAWMONITOR_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("CLAWMONITOR_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    yaml_data = _load_yaml(_resolve_config_path(config_path))
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}
    return Settings(**init_kwargs)
