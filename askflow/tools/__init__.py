"""Tool capabilities: registry, strict argument decoding, concurrent tool rounds, MCP serving."""

__all__ = [
    "executor",
    "mcp_server",
    "registry",
]
