"""
Domain models for askflow.
Pure data classes with no external dependencies (Clean Architecture inner layer).
"""

import asyncio
import base64
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional, Union


class Role(Enum):
    """Chat message roles understood by the endpoint."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ObservationKind(Enum):
    """Kinds of tracing observations."""
    TRACE = "trace"
    SPAN = "span"
    GENERATION = "generation"


@dataclass(frozen=True)
class ToolCallRequest:
    """A tool invocation requested by the assistant. ``arguments`` is raw JSON text."""
    id: str
    name: str
    arguments: str = ""

    def to_param(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class Message:
    """One entry of the turn history."""
    role: Role
    content: Union[str, list, None] = None  # list = content parts (attachments)
    tool_calls: list = field(default_factory=list)  # list[ToolCallRequest]
    tool_call_id: Optional[str] = None

    @classmethod
    def system(cls, text: str) -> "Message":
        return cls(role=Role.SYSTEM, content=text)

    @classmethod
    def user(cls, content: Union[str, list]) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: Optional[str], tool_calls: Optional[list] = None) -> "Message":
        return cls(role=Role.ASSISTANT, content=content, tool_calls=list(tool_calls or []))

    @classmethod
    def tool_result(cls, content: str, call_id: str) -> "Message":
        return cls(role=Role.TOOL, content=content, tool_call_id=call_id)

    def to_param(self) -> dict:
        param: dict = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            param["tool_calls"] = [tc.to_param() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            param["tool_call_id"] = self.tool_call_id
        return param


@dataclass
class Usage:
    """Token counters for one response, or accumulated over several."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: Optional["Usage"]) -> None:
        if other is None:
            return
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens
        self.total_tokens += other.total_tokens

    def to_dict(self) -> dict:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class Choice:
    message: Message
    finish_reason: str = ""


@dataclass
class ChatResponse:
    """Parsed chat-completion reply."""
    choices: list = field(default_factory=list)  # list[Choice]
    usage: Optional[Usage] = None
    model: str = ""
    id: str = ""

    @property
    def first_message(self) -> Optional[Message]:
        return self.choices[0].message if self.choices else None


@dataclass
class ResearchResponse:
    """Parsed Responses API reply of a research task."""
    output_text: str = ""
    usage: Optional[Usage] = None
    model: str = ""
    id: str = ""
    status: str = ""


# Request fields that map 1:1 onto chat.completions.create() keyword arguments.
_SAMPLING_FIELDS = (
    "temperature", "max_tokens", "reasoning_effort", "frequency_penalty",
    "presence_penalty", "top_p", "seed",
)


@dataclass
class ChatRequest:
    """
    An outgoing chat-completion request.

    ``messages`` is the live turn history of the ask call: it is only ever
    appended to, and each model turn re-sends it whole.
    """
    model: str
    messages: list = field(default_factory=list)  # list[Message]
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    reasoning_effort: Optional[str] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    top_p: Optional[float] = None
    seed: Optional[int] = None
    user: str = ""
    response_format: Optional[dict] = None
    tools: list = field(default_factory=list)  # OpenAI function declarations
    parallel_tool_calls: Optional[bool] = None
    extra_body: dict = field(default_factory=dict)
    request_options: dict = field(default_factory=dict)  # extra_headers, timeout, ...

    def to_kwargs(self) -> dict:
        """Render as chat.completions.create() kwargs; unset parameters are omitted."""
        kwargs: dict = {
            "model": self.model,
            "messages": [m.to_param() for m in self.messages],
        }
        for name in _SAMPLING_FIELDS:
            value = getattr(self, name)
            if value is not None:
                kwargs[name] = value
        if self.user:
            kwargs["user"] = self.user
        if self.response_format is not None:
            kwargs["response_format"] = self.response_format
        if self.tools:
            kwargs["tools"] = self.tools
            if self.parallel_tool_calls is not None:
                kwargs["parallel_tool_calls"] = self.parallel_tool_calls
        if self.extra_body:
            kwargs["extra_body"] = dict(self.extra_body)
        kwargs.update(self.request_options)
        return kwargs


@dataclass(frozen=True)
class File:
    """An attachment sent alongside the prompt as a data URI."""
    data_uri: str
    name: str = ""

    @classmethod
    def from_bytes(cls, name: str, content: bytes, mime_type: str) -> "File":
        encoded = base64.b64encode(content).decode("ascii")
        return cls(data_uri=f"data:{mime_type};base64,{encoded}", name=name)

    @classmethod
    def pdf(cls, name: str, content: bytes) -> "File":
        return cls.from_bytes(name, content, "application/pdf")

    @classmethod
    def png(cls, name: str, content: bytes) -> "File":
        return cls.from_bytes(name, content, "image/png")

    @property
    def mime_type(self) -> str:
        header = self.data_uri.split(",", 1)[0]
        if not header.startswith("data:"):
            return ""
        return header[len("data:"):].split(";", 1)[0]

    @property
    def is_pdf(self) -> bool:
        return self.mime_type == "application/pdf"

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


@dataclass(frozen=True)
class Observation:
    """Handle to a tracing observation returned by an ITracer."""
    id: str
    kind: ObservationKind
    name: str
    trace_id: str = ""


def _new_run_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class RunContext:
    """
    Explicit context threaded by reference through an ask call or graph run.

    Carries trace linkage (set by tracing hooks / spans) and the single
    cancellation signal that governs the retry loop and in-flight tools.
    """
    run_id: str = field(default_factory=_new_run_id)
    trace_id: Optional[str] = None
    parent_observation_id: Optional[str] = None
    observation_name: Optional[str] = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    metadata: dict = field(default_factory=dict)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    def child(self, **changes: Any) -> "RunContext":
        """Scoped copy; shares run id and cancellation signal unless overridden."""
        changes.setdefault("metadata", dict(self.metadata))
        return replace(self, **changes)
