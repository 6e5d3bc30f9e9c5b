"""
Environment helpers shared by the config layer and the HTTP app.
"""
from __future__ import annotations

import os


def is_production_env() -> bool:
    """
    True when ENVIRONMENT, APP_ENV or NODE_ENV equals "production"
    (case-insensitive, surrounding whitespace ignored).
    """
    env_vars = [
        os.getenv("ENVIRONMENT", ""),
        os.getenv("APP_ENV", ""),
        os.getenv("NODE_ENV", ""),
    ]
    return any(env_val.strip().lower() == "production" for env_val in env_vars)


def env_flag(name: str, default: str) -> bool:
    v = os.getenv(name, default).strip().lower()
    return v not in {"0", "false", "no", "off", "none", ""}
