"""
Tracing glue between askflow runs and an ITracer backend.

TracingHooks is a hook plugin that wraps every ask call in a generation
(opening a trace first when the run is not part of one); ``observe`` scopes
graph runs (TRACE) and tool invocations (SPAN). Linkage travels explicitly
on the RunContext - never through globals.

Observability must never crash business logic: tracer failures are logged
and the observed work proceeds untraced.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from askflow.shared.interfaces import ITracer
from askflow.shared.models import (
    ChatRequest,
    ChatResponse,
    Observation,
    ObservationKind,
    RunContext,
    Usage,
)

logger = logging.getLogger(__name__)

DEFAULT_GENERATION_NAME = "chat-completion"

_GENERATION_KEY = "askflow.tracing.generation"
_TRACE_KEY = "askflow.tracing.trace"


def safe_start(tracer: ITracer, kind: ObservationKind, name: str, **kwargs: Any) -> Optional[Observation]:
    try:
        return tracer.start(kind, name, **kwargs)
    except Exception as e:
        logger.warning(f"Tracer failed to start {kind.value} '{name}': {e}")
        return None


def safe_end(tracer: ITracer, observation: Observation, **kwargs: Any) -> None:
    try:
        tracer.end(observation, **kwargs)
    except Exception as e:
        logger.warning(f"Tracer failed to end {observation.kind.value} '{observation.name}': {e}")


def _scoped(run: RunContext, observation: Observation, name: str) -> RunContext:
    trace_id = run.trace_id or observation.trace_id or observation.id
    return run.child(
        trace_id=trace_id,
        parent_observation_id=observation.id,
        observation_name=name,
    )


@dataclass
class Scope:
    """Handle yielded by ``observe``; set ``output``/``usage`` before leaving."""
    run: RunContext
    observation: Optional[Observation] = None
    output: Any = None
    usage: Optional[Usage] = None


@asynccontextmanager
async def observe(
    tracer: Optional[ITracer],
    run: RunContext,
    kind: ObservationKind,
    name: str,
    input: Any = None,
) -> AsyncIterator[Scope]:
    """
    Run the enclosed block inside an observation.

    Yields a Scope whose ``run`` is a child RunContext parented under the new
    observation. Without a tracer (or when the tracer fails) the block still
    runs, with a plain child context.
    """
    observation = None
    if tracer is not None:
        observation = safe_start(
            tracer,
            kind,
            name,
            input=input,
            trace_id=None if kind is ObservationKind.TRACE else run.trace_id,
            parent_id=None if kind is ObservationKind.TRACE else run.parent_observation_id,
        )

    if observation is None:
        yield Scope(run=run.child(observation_name=name))
        return

    scope = Scope(run=_scoped(run, observation, name), observation=observation)
    try:
        yield scope
    except BaseException as e:
        safe_end(tracer, observation, error=e)
        raise
    safe_end(tracer, observation, output=scope.output, usage=scope.usage)


class TracingHooks:
    """
    Hook plugin recording each ask call as a generation.

    Install with ``client.use(TracingHooks(tracer))``.
    """

    def __init__(self, tracer: ITracer, default_name: str = DEFAULT_GENERATION_NAME):
        self._tracer = tracer
        self._default_name = default_name

    def _generation_name(self, hctx) -> str:
        return (
            hctx.config.generation_name
            or hctx.run.observation_name
            or self._default_name
        )

    def before_request(self, hctx, request: ChatRequest) -> ChatRequest:
        run = hctx.run
        name = self._generation_name(hctx)

        if run.trace_id is None:
            trace = safe_start(
                self._tracer, ObservationKind.TRACE, name, input=hctx.config.prompt
            )
            if trace is not None:
                run.trace_id = trace.trace_id or trace.id
                run.metadata[_TRACE_KEY] = trace

        generation = safe_start(
            self._tracer,
            ObservationKind.GENERATION,
            name,
            input=[m.to_param() for m in request.messages],
            trace_id=run.trace_id,
            parent_id=run.parent_observation_id,
            model=request.model,
        )
        if generation is not None:
            run.metadata[_GENERATION_KEY] = generation
            run.parent_observation_id = generation.id
            run.observation_name = name
        return request

    def after_request(self, hctx, response: Optional[ChatResponse], error: Optional[BaseException]):
        output = None
        if response is not None and response.first_message is not None:
            output = response.first_message.content

        generation = hctx.run.metadata.pop(_GENERATION_KEY, None)
        if generation is not None:
            safe_end(self._tracer, generation, output=output, usage=hctx.usage, error=error)

        trace = hctx.run.metadata.pop(_TRACE_KEY, None)
        if trace is not None:
            safe_end(self._tracer, trace, output=output, error=error)

        return response, error
