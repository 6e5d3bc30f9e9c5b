from __future__ import annotations

from pathlib import Path

import pytest

from planfix_mcp.config import DEFAULT_CONFIG_PATH, load_config, load_settings
from planfix_mcp.custom_fields import CustomFieldConfig


ENV_VARS = (
    "PLANFIX_ACCOUNT",
    "PLANFIX_TOKEN",
    "PLANFIX_BASE_URL",
    "PLANFIX_PROXY_URL",
    "PLANFIX_FIELD_ID_TELEGRAM",
    "PLANFIX_FIELD_ID_TELEGRAM_CUSTOM",
    "MCP_SERVER_HOST",
    "MCP_SERVER_PORT",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_load_config_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml")


def test_load_config_rejects_non_mapping(tmp_path: Path) -> None:
    path = tmp_path / "server.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path)


def test_default_config_file_loads() -> None:
    settings = load_settings(load_config(DEFAULT_CONFIG_PATH))
    assert settings.server.name == "planfix-mcp"
    assert settings.planfix.field_ids.telegram is True
    assert settings.planfix.contact_fields == []


def test_load_settings_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "server.yaml"
    path.write_text(
        """
server:
  name: test-planfix
  port: 8123
  log_level: debug
planfix:
  account: acme
  token: secret
  retries: 3
  field_ids:
    telegram: false
    telegram_custom: 55
  custom_fields:
    contact:
      - id: 201
        name: City
        arg_name: city
""",
        encoding="utf-8",
    )

    settings = load_settings(load_config(path))

    assert settings.server.name == "test-planfix"
    assert settings.server.port == 8123
    assert settings.server.log_level == "DEBUG"
    assert settings.planfix.api_url == "https://acme.planfix.com/rest/"
    assert settings.planfix.token == "secret"
    assert settings.planfix.retries == 3
    assert settings.planfix.proxy_url is None
    assert settings.planfix.field_ids.telegram is False
    assert settings.planfix.field_ids.telegram_custom == 55
    assert settings.planfix.field_ids.telegram_configured is True
    assert settings.planfix.contact_fields == [CustomFieldConfig(id=201, name="City", arg_name="city")]


def test_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("PLANFIX_ACCOUNT", "envco")
    monkeypatch.setenv("PLANFIX_TOKEN", " tok ")
    monkeypatch.setenv("PLANFIX_BASE_URL", "http://planfix.local/rest")
    monkeypatch.setenv("PLANFIX_PROXY_URL", "http://proxy:3128")
    monkeypatch.setenv("PLANFIX_FIELD_ID_TELEGRAM", "0")
    monkeypatch.setenv("PLANFIX_FIELD_ID_TELEGRAM_CUSTOM", "99")
    monkeypatch.setenv("MCP_SERVER_PORT", "9100")

    settings = load_settings({"planfix": {"account": "yaml", "field_ids": {"telegram": True}}})

    assert settings.planfix.account == "envco"
    assert settings.planfix.token == "tok"
    assert settings.planfix.api_url == "http://planfix.local/rest/"
    assert settings.planfix.proxy_url == "http://proxy:3128"
    assert settings.planfix.field_ids.telegram is False
    assert settings.planfix.field_ids.telegram_custom == 99
    assert settings.server.port == 9100


def test_invalid_env_int(monkeypatch) -> None:
    monkeypatch.setenv("PLANFIX_FIELD_ID_TELEGRAM_CUSTOM", "abc")
    with pytest.raises(ValueError):
        load_settings({})


def test_empty_config_defaults() -> None:
    settings = load_settings({})
    assert settings.server.port == 3000
    assert settings.planfix.field_ids.telegram_configured is False


def test_negative_retries_rejected() -> None:
    with pytest.raises(ValueError, match="retries"):
        load_settings({"planfix": {"retries": -1}})
