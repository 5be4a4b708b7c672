"""Shared cross-cutting concerns: config, errors, interfaces, models, logging."""

__all__ = [
    "config",
    "errors",
    "interfaces",
    "logging_setup",
    "models",
]
