"""
Abstract interfaces (Ports) for askflow.
Following Dependency Inversion Principle - depend on abstractions, not concretions.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from .models import ChatRequest, ChatResponse, Observation, ObservationKind, ResearchResponse, Usage


class IChatTransport(ABC):
    """Interface for one chat-completion round trip to the model endpoint."""

    @abstractmethod
    async def complete(self, request: ChatRequest) -> ChatResponse:
        """Send a single request (no retry) and return the parsed response."""

    @abstractmethod
    async def get_usage(self) -> dict:
        """Return cumulative token usage for this transport."""


class IResponsesTransport(ABC):
    """Interface for one Responses API round trip (deep research tasks)."""

    @abstractmethod
    async def respond(self, params: dict) -> ResearchResponse:
        """Send ``responses.create(**params)`` once and return the parsed reply."""


class ITracer(ABC):
    """
    Interface for a tracing backend (Langfuse, OTEL, ...).

    Only consumed by askflow: tracing hooks, graph runs and tool rounds
    open observations through it and end them with output and usage.
    """

    @abstractmethod
    def start(
        self,
        kind: ObservationKind,
        name: str,
        input: Any = None,
        trace_id: Optional[str] = None,
        parent_id: Optional[str] = None,
        model: Optional[str] = None,
    ) -> Observation:
        """Open a trace, span or generation."""

    @abstractmethod
    def end(
        self,
        observation: Observation,
        output: Any = None,
        usage: Optional[Usage] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        """Close an observation with its output (or error) and token usage."""
