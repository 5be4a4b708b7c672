"""
MCP serving for askflow tools.

MCPToolServer publishes Tools through the ``mcp`` SDK's low-level server.
Each tool keeps its strict declaration: the advertised input schema is the
one sent to chat models, incoming arguments go through
``Tool.decode_arguments`` before the handler runs, and results use the same
serialization as tool-result messages. A handler failure becomes an MCP
error result and never stops the server.

``deep_research_server`` builds the search/fetch pair that OpenAI deep
research expects from a connector.
"""

import inspect
import json
import logging
from typing import Any, Callable, Optional

import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server
from pydantic import BaseModel, Field

from askflow.shared.models import RunContext

from .registry import Tool, ToolContext, ToolRegistry, serialize_result

logger = logging.getLogger(__name__)


def _structured(value: Any) -> Optional[dict]:
    """MCP structured content must be a JSON object."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, dict):
        return json.loads(serialize_result(value))
    return None


class MCPToolServer:
    """An MCP server exposing a fixed set of Tools."""

    def __init__(self, name: str, version: str, tools=(), client: Any = None):
        self.name = name
        self.version = version
        self._client = client
        self._registry = ToolRegistry(tools)

        self.server = Server(name, version=version)
        self.server.list_tools()(self.list_tools)
        self.server.call_tool()(self.call_tool)

        for tool_name in self._registry.names():
            logger.info(f"Added MCP tool {tool_name} to server {name}")

    async def list_tools(self) -> list:
        declared = []
        for definition in self._registry.definitions():
            function = definition["function"]
            declared.append(types.Tool(
                name=function["name"],
                description=function["description"] or None,
                inputSchema=function["parameters"],
            ))
        return declared

    async def call_tool(self, name: str, arguments: Optional[dict]):
        """Decode, invoke and serialize one call. ToolErrors propagate to the SDK."""
        tool = self._registry.get(name)
        args = tool.decode_arguments(json.dumps(arguments or {}))
        ctx = ToolContext(
            client=self._client,
            run=RunContext(observation_name=tool.tool_id),
            tool_name=tool.tool_id,
        )
        logger.debug(f"MCP call {tool.tool_id} on server {self.name}")
        result = await tool.invoke(ctx, args)
        content = [types.TextContent(type="text", text=serialize_result(result))]
        return content, _structured(result)

    async def run_stdio(self) -> None:
        """Serve over stdin/stdout until the peer disconnects."""
        async with stdio_server() as (read_stream, write_stream):
            await self.server.run(
                read_stream,
                write_stream,
                self.server.create_initialization_options(),
            )


# ---------------------------------------------------------------------------
# Deep research connector (search + fetch)
# ---------------------------------------------------------------------------

class SearchResult(BaseModel):
    """One document in the format deep research reads."""
    id: str
    title: str
    text: str
    url: str


class SearchResults(BaseModel):
    results: list[SearchResult]


class SearchArgs(BaseModel):
    query: str = Field(description="Search query")


class FetchArgs(BaseModel):
    id: str = Field(description="Document id returned by search")


async def _call(fn: Callable, *args):
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def deep_research_server(
    name: str,
    version: str,
    search: Callable[[str], Any],
    fetch: Callable[[str], Any],
    search_description: str = "Search the document collection",
    fetch_description: str = "Fetch a document by id",
) -> MCPToolServer:
    """
    ``search(query)`` returns SearchResult-shaped items, ``fetch(id)`` one item
    (or None when unknown). Either may be sync or async.
    """
    async def run_search(ctx: ToolContext, args: SearchArgs) -> SearchResults:
        if not args.query:
            raise ValueError("query parameter is required")
        found = await _call(search, args.query)
        return SearchResults(results=[SearchResult.model_validate(item) for item in found or ()])

    async def run_fetch(ctx: ToolContext, args: FetchArgs) -> SearchResult:
        if not args.id:
            raise ValueError("id parameter is required")
        document = await _call(fetch, args.id)
        if document is None:
            raise LookupError(f"no document with id {args.id!r}")
        return SearchResult.model_validate(document)

    return MCPToolServer(name, version, tools=[
        Tool(name="search", handler=run_search, args_model=SearchArgs, description=search_description),
        Tool(name="fetch", handler=run_fetch, args_model=FetchArgs, description=fetch_description),
    ])
