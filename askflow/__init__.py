"""askflow: typed answers from OpenAI-compatible chat models, tool rounds and node graphs."""

from askflow.orchestrator.ask import ask
from askflow.orchestrator.client import Client
from askflow.orchestrator.graph import EXIT, RETRY, Graph, Node, NodeArg, Transition, TransitionKind, goto
from askflow.orchestrator.nodes import AICallNode
from askflow.orchestrator.task import ResearchResult, approved_mcp_server, deep_research
from askflow.orchestrator.tracing import TracingHooks, observe
from askflow.shared.config import (
    AskConfig,
    ClientConfig,
    TaskConfig,
    load_config,
    openrouter_file_parser,
    openrouter_providers,
)
from askflow.shared.errors import (
    AskFlowError,
    ConfigurationError,
    DecodeError,
    GraphError,
    NoChoicesError,
    SchemaError,
    ToolError,
    TransportError,
)
from askflow.shared.models import File, RunContext
from askflow.tools.mcp_server import MCPToolServer, deep_research_server
from askflow.tools.registry import Tool, ToolContext

__all__ = [
    "AICallNode",
    "AskConfig",
    "AskFlowError",
    "Client",
    "ClientConfig",
    "ConfigurationError",
    "DecodeError",
    "EXIT",
    "File",
    "Graph",
    "GraphError",
    "MCPToolServer",
    "NoChoicesError",
    "Node",
    "NodeArg",
    "RETRY",
    "ResearchResult",
    "RunContext",
    "SchemaError",
    "TaskConfig",
    "Tool",
    "ToolContext",
    "ToolError",
    "TracingHooks",
    "Transition",
    "TransitionKind",
    "TransportError",
    "approved_mcp_server",
    "ask",
    "deep_research",
    "deep_research_server",
    "goto",
    "load_config",
    "observe",
    "openrouter_file_parser",
    "openrouter_providers",
]
