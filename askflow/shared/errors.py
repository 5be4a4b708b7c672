"""
Typed exceptions for askflow.

Every error raised out of an ask call or a graph run derives from
AskFlowError and names the stage that failed, so callers can decide
whether a caller-level retry makes sense (only TransportError is retryable).
Lower-level exceptions are always chained via ``raise ... from``.
"""

from typing import Optional


class AskFlowError(Exception):
    """Base class for all askflow failures."""
    stage = "unknown"
    retryable = False


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigurationError(AskFlowError):
    """Missing or invalid option. Never retried."""
    stage = "configuration"


class SchemaError(ConfigurationError):
    """The declared output/argument shape cannot be expressed as a strict schema."""
    stage = "schema"


class GraphConfigurationError(ConfigurationError):
    """Graph construction failed (no nodes, duplicate names)."""
    stage = "graph_construction"


# ---------------------------------------------------------------------------
# Model call
# ---------------------------------------------------------------------------

class TransportError(AskFlowError):
    """The endpoint call failed on every attempt of the retry budget."""
    stage = "transport"
    retryable = True

    def __init__(self, message: str, attempts: int = 0, cancelled: bool = False):
        super().__init__(message)
        self.attempts = attempts
        self.cancelled = cancelled


class NoChoicesError(AskFlowError):
    """The endpoint answered with zero choices."""
    stage = "response"


class DecodeError(AskFlowError):
    """Assistant content did not match the declared output shape."""
    stage = "decode"

    def __init__(self, message: str, content: Optional[str] = None):
        super().__init__(message)
        self.content = content


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

class ToolError(AskFlowError):
    """A tool round failed; aborts the enclosing ask call."""
    stage = "tool"

    def __init__(self, message: str, tool_name: str = "", call_id: str = ""):
        super().__init__(message)
        self.tool_name = tool_name
        self.call_id = call_id


class ToolNotFoundError(ToolError):
    stage = "tool_lookup"


class ToolArgumentDecodeError(ToolError):
    stage = "tool_arguments"


class ToolExecutionError(ToolError):
    stage = "tool_execution"


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------

class PromptGenerationError(AskFlowError):
    """An AI node could not build its prompt from the graph context."""
    stage = "prompt"


class GraphError(AskFlowError):
    """A graph run halted. No partial context is returned."""
    stage = "graph"

    def __init__(self, message: str, graph_name: str = "", node_name: str = ""):
        super().__init__(message)
        self.graph_name = graph_name
        self.node_name = node_name


class GraphNodeNotFoundError(GraphError):
    stage = "graph_lookup"


class GraphNodeError(GraphError):
    stage = "graph_node"
