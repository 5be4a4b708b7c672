"""Core pipeline: ask driver, chat transport, schemas, hooks, graph engine, tracing, research tasks."""

__all__ = [
    "ask",
    "client",
    "graph",
    "hooks",
    "llm_client",
    "nodes",
    "schemas",
    "task",
    "tracing",
]
