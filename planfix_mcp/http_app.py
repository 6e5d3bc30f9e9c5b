"""
ASGI app for the Planfix MCP server.

- Bearer token auth for everything except /health
- Healthcheck under /health
- FastMCP SSE transport mounted at the root (/sse, /messages/)
"""
from __future__ import annotations

import hmac
import logging
import os
from typing import Any, Callable

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .env_utils import is_production_env
from .server import SETTINGS, mcp

logger = logging.getLogger("planfix_mcp.http_app")

PUBLIC_PATHS = ("/health",)


class BearerTokenAuthMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, expected_token: str | None = None) -> None:
        super().__init__(app)
        if expected_token is None:
            expected_token = os.getenv("MCP_SERVER_TOKEN", "")
        self.expected_token = expected_token.strip()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in PUBLIC_PATHS:
            return await call_next(request)

        if is_production_env() and not self.expected_token:
            logger.error("[Auth] MCP_SERVER_TOKEN not set in production")
            return JSONResponse(
                {"error": "server_error", "message": "MCP_SERVER_TOKEN not configured"},
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        if self.expected_token:
            auth_header = request.headers.get("authorization", "")
            if not auth_header.startswith("Bearer "):
                logger.warning(f"[Auth] Missing or invalid Authorization header for {request.method} {path}")
                return JSONResponse(
                    {"error": "unauthorized", "message": "Missing or invalid Authorization header"},
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    headers={"WWW-Authenticate": "Bearer"},
                )
            token = auth_header[len("Bearer "):]
            if not hmac.compare_digest(token, self.expected_token):
                logger.warning(f"[Auth] Invalid token for {request.method} {path}")
                return JSONResponse(
                    {"error": "unauthorized", "message": "Invalid token"},
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    headers={"WWW-Authenticate": "Bearer"},
                )

        return await call_next(request)


def create_app(expected_token: str | None = None) -> FastAPI:
    app = FastAPI(
        title="Planfix MCP Server",
        description="MCP tools for the Planfix CRM",
        version="1.0.0",
    )
    app.add_middleware(BearerTokenAuthMiddleware, expected_token=expected_token)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "ok": True,
            "status": "healthy",
            "server": SETTINGS.server.name,
            "planfix_account": SETTINGS.planfix.account or None,
        }

    app.mount("/", mcp.sse_app())
    return app
