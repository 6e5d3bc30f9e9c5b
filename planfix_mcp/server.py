from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import partial
from typing import Any, Dict, Optional

import httpx
from mcp.server.fastmcp import Context, FastMCP
from mcp.server.session import ServerSession

from .config import Settings, config_path, load_config, load_settings
from .contact_search import ContactResolver, ContactSearchInput
from .planfix_client import PlanfixClient, contact_url


CONFIG = load_config(config_path())
SETTINGS = load_settings(CONFIG)

SEARCH_CONTACT_DESCRIPTION = (
    "Search for a contact in Planfix by name, phone, email, or telegram. "
    "Use name in 2 languages: Russian and English."
)


class StructuredFormatter(logging.Formatter):
    """Formatter that fills missing structured fields with empty strings."""

    fields = ("tool", "duration_ms")

    def format(self, record: logging.LogRecord) -> str:
        for name in self.fields:
            if not hasattr(record, name):
                setattr(record, name, "")
        return super().format(record)


def setup_logger(settings: Settings) -> logging.Logger:
    logger = logging.getLogger("planfix_mcp")
    if logger.handlers:
        return logger
    level = getattr(logging, settings.server.log_level, logging.INFO)
    logger.setLevel(level)
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter(
        '{"ts":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","tool":"%(tool)s",'
        '"duration_ms":"%(duration_ms)s","msg":"%(message)s"}'
    ))
    logger.addHandler(handler)
    logger.propagate = False

    for noisy in ("httpx", "mcp.server"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    return logger


@dataclass
class AppContext:
    settings: Settings
    planfix: PlanfixClient
    contacts: ContactResolver
    logger: logging.Logger


TypedContext = Context[ServerSession, AppContext]


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    planfix_cfg = settings.planfix
    return httpx.AsyncClient(
        proxy=planfix_cfg.proxy_url,
        timeout=httpx.Timeout(planfix_cfg.timeout),
        follow_redirects=False,
    )


def build_app_context(settings: Settings, http_client: httpx.AsyncClient) -> AppContext:
    logger = setup_logger(settings)
    planfix_cfg = settings.planfix
    planfix = PlanfixClient(
        http_client=http_client,
        base_url=planfix_cfg.api_url,
        token=planfix_cfg.token,
        retries=planfix_cfg.retries,
    )
    contacts = ContactResolver(
        client=planfix,
        field_ids=planfix_cfg.field_ids,
        contact_url=partial(contact_url, planfix_cfg.account),
        contact_fields=planfix_cfg.contact_fields,
    )
    return AppContext(settings=settings, planfix=planfix, contacts=contacts, logger=logger)


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    http_client = build_http_client(SETTINGS)
    app_ctx = build_app_context(SETTINGS, http_client)
    if not SETTINGS.planfix.token or not SETTINGS.planfix.account:
        app_ctx.logger.warning(
            "Planfix account or token missing (PLANFIX_ACCOUNT / PLANFIX_TOKEN not set). "
            "Planfix requests will fail."
        )
    try:
        yield app_ctx
    finally:
        await http_client.aclose()


mcp = FastMCP(
    SETTINGS.server.name,
    lifespan=lifespan,
    host=SETTINGS.server.host,
    port=SETTINGS.server.port,
)


def _require_context(ctx: TypedContext | None) -> TypedContext:
    if ctx is None:
        raise RuntimeError("Context is required")
    return ctx


@mcp.tool(name="planfix_search_contact", description=SEARCH_CONTACT_DESCRIPTION)
async def planfix_search_contact(
    name: Optional[str] = None,
    name_translated: Optional[str] = None,
    phone: Optional[str] = None,
    email: Optional[str] = None,
    telegram: Optional[str] = None,
    custom_fields: Optional[Dict[str, Any]] = None,
    ctx: TypedContext | None = None,
) -> Dict[str, Any]:
    """
    custom_fields: extra Planfix contact fields keyed by their configured
    argument name; unknown keys are ignored.
    """
    ctx = _require_context(ctx)
    app = ctx.request_context.lifespan_context

    search = ContactSearchInput.from_args(
        {
            "name": name,
            "name_translated": name_translated,
            "phone": phone,
            "email": email,
            "telegram": telegram,
            "custom_fields": custom_fields,
        },
        app.contacts.contact_fields,
    )
    start = time.perf_counter()
    result = await app.contacts.resolve(search)
    duration_ms = (time.perf_counter() - start) * 1000.0
    app.logger.info(
        f"Contact search finished: found={result.found} contact_id={result.contact_id}",
        extra={"tool": "planfix_search_contact", "duration_ms": round(duration_ms, 1)},
    )
    return result.to_dict()
