"""
Test conftest — isolate gateway environment variables so Settings tests
are not affected by a real gateway configured in the developer's or CI
environment.
"""
import pytest

_GATEWAY_ENV_VARS = [
    "OPENCLAW_GATEWAY_URL",
    "GATEWAY_URL",
    "OPENCLAW_GATEWAY_TOKEN",
    "GATEWAY_TOKEN",
    "CLAWMONITOR_CONFIG",
]


@pytest.fixture(autouse=True)
def _isolate_gateway_env(monkeypatch, tmp_path):
    """Remove gateway env vars for every test so Settings() behaves as if
    nothing is configured unless the test explicitly provides it. Points
    the host config lookup at a file that does not exist and disables .env
    loading so local developer files don't leak into tests."""
    for var in _GATEWAY_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("OPENCLAW_CONFIG_PATH", str(tmp_path / "no-openclaw.json"))

    import config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
