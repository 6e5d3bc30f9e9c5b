from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .custom_fields import CustomFieldConfig, parse_custom_fields
from .env_utils import env_flag


DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "server.yaml"


def config_path() -> Path:
    return Path(os.getenv("PLANFIX_MCP_CONFIG", str(DEFAULT_CONFIG_PATH)))


def load_config(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Planfix MCP config not found at {path}")
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError("Config root must be a mapping")
    return data


@dataclass
class PlanfixFieldIds:
    """Which contact field holds the telegram handle.

    ``telegram_custom`` is a custom field ID and wins over the built-in
    ``telegram`` flag when both are set.
    """

    telegram: bool = False
    telegram_custom: int = 0

    @property
    def telegram_configured(self) -> bool:
        return bool(self.telegram_custom or self.telegram)


@dataclass
class ServerSettings:
    name: str = "planfix-mcp"
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"


@dataclass
class PlanfixSettings:
    account: str = ""
    token: str = ""
    base_url: str = ""
    proxy_url: Optional[str] = None
    timeout: float = 30.0
    retries: int = 1
    field_ids: PlanfixFieldIds = field(default_factory=PlanfixFieldIds)
    contact_fields: List[CustomFieldConfig] = field(default_factory=list)

    @property
    def api_url(self) -> str:
        if self.base_url:
            return self.base_url.rstrip("/") + "/"
        return f"https://{self.account}.planfix.com/rest/"


@dataclass
class Settings:
    server: ServerSettings
    planfix: PlanfixSettings


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def load_settings(config: Dict[str, Any]) -> Settings:
    """Build typed settings from the raw YAML mapping, applying env overrides."""
    server_cfg = config.get("server", {}) or {}
    planfix_cfg = config.get("planfix", {}) or {}
    field_ids_cfg = planfix_cfg.get("field_ids", {}) or {}
    custom_cfg = planfix_cfg.get("custom_fields", {}) or {}

    server = ServerSettings(
        name=str(server_cfg.get("name", "planfix-mcp")),
        host=os.getenv("MCP_SERVER_HOST", str(server_cfg.get("host", "127.0.0.1"))),
        port=_env_int("MCP_SERVER_PORT", int(server_cfg.get("port", 3000))),
        log_level=os.getenv("LOG_LEVEL", str(server_cfg.get("log_level", "INFO"))).upper(),
    )

    field_ids = PlanfixFieldIds(
        telegram=env_flag("PLANFIX_FIELD_ID_TELEGRAM", str(field_ids_cfg.get("telegram", False))),
        telegram_custom=_env_int(
            "PLANFIX_FIELD_ID_TELEGRAM_CUSTOM", int(field_ids_cfg.get("telegram_custom") or 0)
        ),
    )

    retries = int(planfix_cfg.get("retries", 1))
    if retries < 0:
        raise ValueError(f"planfix.retries must be >= 0, got {retries}")

    proxy_url = os.getenv("PLANFIX_PROXY_URL", planfix_cfg.get("proxy_url") or "").strip()
    planfix = PlanfixSettings(
        account=os.getenv("PLANFIX_ACCOUNT", str(planfix_cfg.get("account") or "")).strip(),
        token=os.getenv("PLANFIX_TOKEN", str(planfix_cfg.get("token") or "")).strip(),
        base_url=os.getenv("PLANFIX_BASE_URL", str(planfix_cfg.get("base_url") or "")).strip(),
        proxy_url=proxy_url or None,
        timeout=float(planfix_cfg.get("timeout", 30.0)),
        retries=retries,
        field_ids=field_ids,
        contact_fields=parse_custom_fields(custom_cfg.get("contact")),
    )
    return Settings(server=server, planfix=planfix)
