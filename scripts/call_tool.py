from __future__ import annotations

import asyncio
import json
import os
import sys
from typing import Any, Dict

from mcp import ClientSession
from mcp.client.sse import sse_client


SSE_URL = os.getenv("PLANFIX_MCP_URL", "http://127.0.0.1:3000/sse")


async def main() -> None:
    if len(sys.argv) < 3:
        print("Usage: python scripts/call_tool.py <tool_name> '<json-args>'")
        print("       python scripts/call_tool.py planfix_search_contact '{\"email\": \"john@example.com\"}'")
        raise SystemExit(1)

    tool_name = sys.argv[1]
    raw_args = sys.argv[2]

    try:
        params: Dict[str, Any] = json.loads(raw_args)
    except json.JSONDecodeError as exc:
        print("Failed to parse JSON arguments")
        print(repr(exc))
        raise SystemExit(1)

    headers = {}
    token = os.getenv("MCP_SERVER_TOKEN", "").strip()
    if token:
        headers["Authorization"] = f"Bearer {token}"

    async with sse_client(SSE_URL, headers=headers) as (read_stream, write_stream):
        async with ClientSession(read_stream, write_stream) as session:
            await session.initialize()
            try:
                result = await session.call_tool(tool_name, params)
                print("Tool call result:")
                print(result)
            except Exception as exc:
                print("Tool call failed:")
                print(repr(exc))


if __name__ == "__main__":
    asyncio.run(main())
