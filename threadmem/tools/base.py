"""Tool types a ``Memory`` exposes to the generation step.

threadmem ships one tool, ``update_working_memory``, used when working
memory runs in structured-call mode. The caller's LLM loop forwards the
model's tool calls to ``Memory.execute_tool`` and sends the returned
``ToolResult`` back as the tool's output.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel


@dataclass
class ToolResult:
    """Outcome of one tool call: ``data`` on success, ``error`` otherwise."""

    data: dict[str, Any] | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_content(self) -> str:
        """JSON text for the tool-result message sent back to the model."""
        if self.error:
            return json.dumps({"error": self.error})
        return json.dumps(self.data or {})


class ToolParams(BaseModel):
    """Arguments of a tool; ``model_json_schema()`` becomes its ``input_schema``."""


class BaseTool(ABC):
    """A tool the registry can describe and execute.

    ``execute`` receives the validated ``params_model`` fields as keyword
    arguments, plus ``runtime`` (the run's ``RuntimeContainer``) when its
    signature declares it.
    """

    name: str = ""
    description: str = ""
    category: str = ""
    params_model: type[ToolParams] | None = None

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult: ...
