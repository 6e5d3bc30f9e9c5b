"""
Entry point: serve the Planfix MCP tools over HTTP/SSE with uvicorn.
"""
from __future__ import annotations

import sys

import uvicorn

from .http_app import create_app
from .server import SETTINGS


def main() -> None:
    host = SETTINGS.server.host
    port = SETTINGS.server.port
    try:
        app = create_app()
        print(f"Starting Planfix MCP server on http://{host}:{port}")
        print(f"SSE endpoint: http://{host}:{port}/sse")
        print(f"Healthcheck: http://{host}:{port}/health")
        uvicorn.run(
            app,
            host=host,
            port=port,
            log_level=SETTINGS.server.log_level.lower(),
            server_header=False,
        )
    except KeyboardInterrupt:
        print("\nServer shutdown requested...")
        sys.exit(0)
    except Exception as e:
        print(f"Failed to start Planfix MCP server: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
