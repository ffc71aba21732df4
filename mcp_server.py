#!/usr/bin/env python3
"""
n8n Storytelling MCP server (stdio transport).

Exposes the storytelling tools to MCP clients. Every result is returned as a
single JSON text block; failures come back as {"success": false, "error": ...}
with isError set.

Run with: n8n-storytelling-mcp  (or python mcp_server.py)
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from config import LOG_FORMAT, LOG_LEVEL, N8N_BASE_URL, SERVER_NAME, SERVER_VERSION
from tools import StorytellingTools, get_storytelling_tools


class ToolInvocationError(Exception):
    """Carries an error envelope back through the MCP server as an isError result."""


def to_text(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


def tool_declarations(tools: StorytellingTools) -> List[Tool]:
    return [Tool(**declaration) for declaration in tools.declarations()]


def invoke_tool(tools: StorytellingTools, name: str, arguments: Optional[Dict[str, Any]]) -> List[TextContent]:
    """Dispatch one tool call and serialize its result.

    Raises ToolInvocationError (text = error envelope) for unknown tools and
    unexpected exceptions; the MCP server turns it into an isError result.
    """
    try:
        result = tools.dispatch(name, arguments or {})
    except Exception as e:
        logging.exception(f"❌ Tool call {name} failed")
        raise ToolInvocationError(to_text({"success": False, "error": str(e)})) from e
    return [TextContent(type="text", text=to_text(result))]


server = Server(SERVER_NAME, version=SERVER_VERSION)


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List the storytelling tools."""
    return tool_declarations(get_storytelling_tools())


@server.call_tool(validate_input=False)
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Handle a tool call. Calls are served one at a time on the event loop."""
    return invoke_tool(get_storytelling_tools(), name, arguments)


async def run() -> None:
    async with stdio_server() as (read_stream, write_stream):
        logging.info(f"🚀 {SERVER_NAME} running on stdio (n8n at {N8N_BASE_URL})")
        await server.run(read_stream, write_stream, server.create_initialization_options())


def main() -> None:
    # stdout carries the protocol; basicConfig logs to stderr.
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    asyncio.run(run())


if __name__ == "__main__":
    main()
