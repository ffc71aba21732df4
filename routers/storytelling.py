"""
Router for the storytelling tool endpoints.
Mirrors the MCP transport over HTTP: list the tools and invoke one by name.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException

from tools import StorytellingTools, UnknownToolError, get_storytelling_tools


# Create the router
router = APIRouter(tags=["tools"])


@router.get("/tools")
async def list_tools(tools: StorytellingTools = Depends(get_storytelling_tools)):
    """Returns the static tool declarations."""
    return {"tools": tools.declarations()}


@router.post("/tools/{name}")
def call_tool(
    name: str,
    arguments: Optional[Dict[str, Any]] = Body(default=None),
    tools: StorytellingTools = Depends(get_storytelling_tools),
):
    """
    Invokes a tool and returns its {"success": ...} envelope.
    Unknown tools are a 404; anything that escapes the tool is a 500.
    """
    try:
        return tools.dispatch(name, arguments or {})
    except UnknownToolError as e:
        raise HTTPException(status_code=404, detail={"success": False, "error": str(e)})
    except Exception as e:
        logging.exception(f"❌ Tool call {name} failed")
        raise HTTPException(status_code=500, detail={"success": False, "error": str(e)})
