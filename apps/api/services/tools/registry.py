"""Tool registry and dispatcher used mid-stream by the generation pipeline."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from services.tools import hashtags, posting_time
from services.tools.types import ToolDefinition, ToolResult

logger = logging.getLogger(__name__)

ToolRunner = Callable[[Dict[str, Any]], Dict[str, Any]]

TOOLS: List[ToolDefinition] = [
    hashtags.GENERATE_HASHTAGS_TOOL,
    posting_time.GET_BEST_TIME_TO_POST_TOOL,
]

_RUNNERS: Dict[str, ToolRunner] = {
    hashtags.TOOL_NAME: hashtags.run,
    posting_time.TOOL_NAME: posting_time.run,
}


def openai_tool_declarations() -> List[Dict[str, Any]]:
    return [tool.to_openai() for tool in TOOLS]


def dispatch_tool(name: str, tool_input: Optional[Dict[str, Any]]) -> ToolResult:
    """Run a tool by name. Unknown names and tool exceptions come back as error results."""
    payload = dict(tool_input or {})
    runner = _RUNNERS.get(name)
    if runner is None:
        logger.warning("Unknown tool requested: %s", name)
        return ToolResult(name=name, input=payload, output=None, error=f"Unknown tool: {name}")

    try:
        output = runner(payload)
    except Exception as exc:
        logger.error("Error executing tool %s: %s", name, exc)
        return ToolResult(name=name, input=payload, output=None, error=str(exc) or exc.__class__.__name__)

    logger.debug("Tool %s succeeded: %s", name, output)
    return ToolResult(name=name, input=payload, output=output)
