"""
Tool round executor - runs every tool call of one assistant turn concurrently.

Production hardening:
- Every call resolved and its arguments validated before any handler runs
- One task per call, joined with a barrier; the first failure cancels the rest
- Results collected once, after the join, in the original call order
"""

import asyncio
import logging
from typing import Any, Optional

from askflow.orchestrator.tracing import observe
from askflow.shared.errors import ToolExecutionError
from askflow.shared.interfaces import ITracer
from askflow.shared.models import Message, ObservationKind, RunContext, ToolCallRequest

from .registry import Tool, ToolContext, ToolRegistry, serialize_result

logger = logging.getLogger(__name__)


class ToolRoundExecutor:
    """Executes tool rounds against a per-call ToolRegistry."""

    def __init__(self, registry: ToolRegistry, client: Any = None, tracer: Optional[ITracer] = None):
        self._registry = registry
        self._client = client
        self._tracer = tracer

    def _prepare(self, calls: list) -> list:
        prepared = []
        for call in calls:
            tool = self._registry.get(call.name, call_id=call.id)
            args = tool.decode_arguments(call.arguments, call_id=call.id)
            prepared.append((call, tool, args))
        return prepared

    async def _invoke(self, call: ToolCallRequest, tool: Tool, args, run: RunContext) -> Message:
        span_name = f"tool_call_{tool.tool_id}"
        async with observe(self._tracer, run, ObservationKind.SPAN, span_name, input=call.arguments) as scope:
            ctx = ToolContext(
                client=self._client,
                run=scope.run.child(observation_name=tool.tool_id),
                call_id=call.id,
                tool_name=tool.tool_id,
            )
            result = await tool.invoke(ctx, args)
            try:
                content = serialize_result(result)
            except (TypeError, ValueError) as e:
                raise ToolExecutionError(
                    f"Tool {tool.tool_id} returned an unserializable result: {e}",
                    tool_name=tool.tool_id,
                    call_id=call.id,
                ) from e
            scope.output = content
        return Message.tool_result(content, call.id)

    async def run_round(self, calls: list, run: RunContext) -> list:
        """
        Run one round of tool calls.

        Returns one tool-result message per call, in call order. Raises the
        first ToolError observed; sibling invocations still running are
        cancelled and nothing from the round is returned.
        """
        if not calls:
            return []
        prepared = self._prepare(calls)
        logger.info(f"Running tool round: {', '.join(tool.tool_id for _, tool, _ in prepared)}")

        tasks = [
            asyncio.ensure_future(self._invoke(call, tool, args, run))
            for call, tool, args in prepared
        ]
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        failed = [
            task for task in tasks
            if task in done and not task.cancelled() and task.exception() is not None
        ]
        if failed:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            error = failed[0].exception()
            logger.error(f"Tool round aborted: {error}")
            raise error

        # Single collection stage after the join
        return [task.result() for task in tasks]
