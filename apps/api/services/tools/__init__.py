"""Deterministic side-computations offered to the model during generation."""

from services.tools.hashtags import generate_hashtags
from services.tools.posting_time import get_best_time_to_post
from services.tools.registry import TOOLS, dispatch_tool, openai_tool_declarations
from services.tools.types import ToolDefinition, ToolResult

__all__ = [
    "TOOLS",
    "ToolDefinition",
    "ToolResult",
    "dispatch_tool",
    "generate_hashtags",
    "get_best_time_to_post",
    "openai_tool_declarations",
]
