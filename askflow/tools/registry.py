"""
Tool capabilities and the per-call registry that resolves them by name.

A Tool bundles a unique name, a pydantic argument model (single source of
truth for both the LLM-facing schema and runtime validation) and a handler.
Argument decoding is strict: malformed JSON, unknown fields, missing
required fields and values of the wrong JSON type (no "5" for an int) are
rejected before the handler runs.

Registries are built per ask call from the call's tool set - there is no
global mutable tool state.
"""

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from askflow.orchestrator.schemas import infer_json_schema
from askflow.shared.errors import (
    ConfigurationError,
    ToolArgumentDecodeError,
    ToolExecutionError,
    ToolNotFoundError,
)
from askflow.shared.models import RunContext

logger = logging.getLogger(__name__)


class NoArgs(BaseModel):
    """Argument model for tools that take no parameters."""
    pass


def normalize_tool_name(name: str) -> str:
    """The identifier declared to the model: lower-case, spaces/hyphens -> underscores."""
    return name.strip().lower().replace(" ", "_").replace("-", "_")


def _forbid_extra(model: type[BaseModel]) -> type[BaseModel]:
    """Subclass of ``model`` that rejects unknown fields."""
    if model.model_config.get("extra") == "forbid":
        return model

    class Strict(model):
        model_config = ConfigDict(extra="forbid")

    Strict.__name__ = model.__name__
    Strict.__qualname__ = model.__qualname__
    return Strict


@dataclass
class ToolContext:
    """Scoped context handed to a tool handler for one invocation."""
    client: Any
    run: RunContext
    call_id: str = ""
    tool_name: str = ""

    @property
    def cancelled(self) -> bool:
        return self.run.cancelled

    @property
    def logger(self) -> logging.Logger:
        return logging.getLogger(f"askflow.tools.{self.tool_name or 'tool'}")


@dataclass
class Tool:
    """
    A callable capability offered to the model.

    ``handler(ctx: ToolContext, args: <args_model>)`` may be sync or async and
    returns any value; raising an exception marks the invocation as failed.
    Sync handlers run in a worker thread; cancelling the round abandons the
    thread but cannot interrupt it, so long sync handlers should poll
    ``ctx.cancelled``.
    """
    name: str
    handler: Callable[..., Any]
    args_model: type = NoArgs
    description: str = ""
    _strict_args: type = field(init=False, repr=False)
    _parameters: dict = field(init=False, repr=False)

    def __post_init__(self):
        if not self.name or not normalize_tool_name(self.name):
            raise ConfigurationError("Tool name must not be empty")
        if not (inspect.isclass(self.args_model) and issubclass(self.args_model, BaseModel)):
            raise ConfigurationError(
                f"Tool {self.name!r}: args_model must be a pydantic BaseModel subclass"
            )
        self._strict_args = _forbid_extra(self.args_model)
        # Fails at construction for shapes strict mode cannot express
        self._parameters = infer_json_schema(self._strict_args)

    @property
    def tool_id(self) -> str:
        return normalize_tool_name(self.name)

    def definition(self) -> dict:
        """OpenAI function-calling declaration for this tool."""
        return {
            "type": "function",
            "function": {
                "name": self.tool_id,
                "description": self.description,
                "parameters": dict(self._parameters),
                "strict": True,
            },
        }

    def decode_arguments(self, arguments: str, call_id: str = "") -> BaseModel:
        try:
            return self._strict_args.model_validate_json(arguments or "{}", strict=True)
        except ValidationError as e:
            raise ToolArgumentDecodeError(
                f"Invalid arguments for tool {self.tool_id}: {e}",
                tool_name=self.tool_id,
                call_id=call_id,
            ) from e

    async def invoke(self, ctx: ToolContext, args: BaseModel) -> Any:
        try:
            if inspect.iscoroutinefunction(self.handler):
                result = await self.handler(ctx, args)
            else:
                # Sync handlers run on a worker thread so a round stays concurrent
                result = await asyncio.to_thread(self.handler, ctx, args)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            raise ToolExecutionError(
                f"Tool {self.tool_id} failed: {e}",
                tool_name=self.tool_id,
                call_id=ctx.call_id,
            ) from e
        return result


def serialize_result(value: Any) -> str:
    """Textual form of a handler result for the tool-result message."""
    if isinstance(value, str):
        return value
    if isinstance(value, BaseModel):
        return value.model_dump_json()
    return json.dumps(value, default=str)


class ToolRegistry:
    """
    Per-call mapping of tool id to capability.

    Unregistered tools are always rejected; lookups go through the mapping
    only, never through type inspection.
    """

    def __init__(self, tools=()):
        self._tools: dict[str, Tool] = {}
        for tool in tools or ():
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if not isinstance(tool, Tool):
            raise ConfigurationError(f"Expected a Tool, got {type(tool).__name__}")
        if tool.tool_id in self._tools:
            raise ConfigurationError(f"Duplicate tool name: {tool.tool_id}")
        self._tools[tool.tool_id] = tool
        logger.debug(f"Registered tool: {tool.tool_id}")

    def get(self, name: str, call_id: str = "") -> Tool:
        tool = self._tools.get(name) or self._tools.get(normalize_tool_name(name or ""))
        if tool is None:
            logger.warning(f"Model requested unregistered tool '{name}'")
            raise ToolNotFoundError(
                f"Unknown tool: {name}", tool_name=name or "", call_id=call_id
            )
        return tool

    def definitions(self) -> list[dict]:
        return [tool.definition() for tool in self._tools.values()]

    def names(self) -> list[str]:
        return list(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return normalize_tool_name(name) in self._tools
