"""
Shared test fixtures for the askflow test suite.
"""

import copy
import itertools
import json
from dataclasses import replace

import pytest

from askflow.orchestrator.client import Client
from askflow.shared.config import ClientConfig
from askflow.shared.interfaces import IChatTransport, ITracer
from askflow.shared.models import (
    ChatResponse,
    Choice,
    Message,
    Observation,
    ObservationKind,
    ToolCallRequest,
    Usage,
)


# ---------------------------------------------------------------------------
# Response builders
# ---------------------------------------------------------------------------

def text_response(content, usage=None) -> ChatResponse:
    return ChatResponse(
        choices=[Choice(message=Message.assistant(content), finish_reason="stop")],
        usage=usage or Usage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
        model="test-model",
        id="resp-text",
    )


def tool_call_response(*calls) -> ChatResponse:
    """calls: (call_id, tool_name, arguments dict) triples."""
    requests = [
        ToolCallRequest(id=call_id, name=name, arguments=json.dumps(args))
        for call_id, name, args in calls
    ]
    return ChatResponse(
        choices=[Choice(message=Message.assistant(None, requests), finish_reason="tool_calls")],
        usage=Usage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
        model="test-model",
        id="resp-tools",
    )


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class ScriptedTransport(IChatTransport):
    """
    Plays back a script of responses / exceptions, one per complete() call.
    The last step repeats once the script is exhausted.

    ``requests`` holds a deep snapshot of every request as it was sent.
    """

    def __init__(self, *steps):
        self._steps = list(steps)
        self.requests = []
        self.calls = 0

    async def complete(self, request):
        self.calls += 1
        self.requests.append(copy.deepcopy(request))
        step = self._steps.pop(0) if len(self._steps) > 1 else self._steps[0]
        if callable(step) and not isinstance(step, ChatResponse):
            step = step(request)
        if isinstance(step, BaseException):
            raise step
        return step

    async def get_usage(self) -> dict:
        return {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}


class RecordingTracer(ITracer):
    """Keeps every start/end call for inspection."""

    def __init__(self, fail_on_start: bool = False):
        self.started = []
        self.ended = []
        self._ids = itertools.count(1)
        self._fail_on_start = fail_on_start

    def start(self, kind, name, input=None, trace_id=None, parent_id=None, model=None):
        if self._fail_on_start:
            raise RuntimeError("tracing backend unavailable")
        obs_id = f"obs-{next(self._ids)}"
        observation = Observation(
            id=obs_id,
            kind=kind,
            name=name,
            trace_id=obs_id if kind is ObservationKind.TRACE else (trace_id or ""),
        )
        self.started.append({
            "observation": observation,
            "input": input,
            "trace_id": trace_id,
            "parent_id": parent_id,
            "model": model,
        })
        return observation

    def end(self, observation, output=None, usage=None, error=None):
        self.ended.append({
            "observation": observation,
            "output": output,
            "usage": usage,
            "error": error,
        })

    def started_of(self, kind):
        return [s for s in self.started if s["observation"].kind is kind]

    def ended_of(self, kind):
        return [e for e in self.ended if e["observation"].kind is kind]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def client_config():
    return ClientConfig(
        api_key="test-key",
        default_model="test-model",
        request_timeout_seconds=5.0,
        retry_backoff_seconds=0.0,
    )


@pytest.fixture
def make_client(client_config):
    """Factory: a Client wired to the given transport (and optional tracer)."""
    def _make(transport, tracer=None, **overrides):
        config = client_config
        if overrides:
            config = replace(client_config, **overrides)
        return Client(config=config, transport=transport, tracer=tracer)
    return _make


@pytest.fixture
def tracer():
    return RecordingTracer()
