"""Tool contracts shared by the registry and the generation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    input_schema: Dict[str, Any]
    required: List[str] = field(default_factory=list)

    def to_openai(self) -> Dict[str, Any]:
        """Function-calling declaration in chat-completions format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": self.input_schema,
                    "required": list(self.required),
                },
            },
        }


@dataclass
class ToolResult:
    name: str
    input: Dict[str, Any]
    output: Optional[Dict[str, Any]]
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None
