"""
Tests for the node-graph engine: construction, transitions, failures,
context isolation and tracing.
"""

import pytest

from askflow.orchestrator.graph import (
    EXIT,
    RETRY,
    Graph,
    Node,
    NodeArg,
    Transition,
    TransitionKind,
    goto,
)
from askflow.shared.errors import (
    GraphConfigurationError,
    GraphError,
    GraphNodeError,
    GraphNodeNotFoundError,
)
from askflow.shared.models import ObservationKind, RunContext

from conftest import RecordingTracer, ScriptedTransport, text_response


def _exit(arg):
    return arg.context, EXIT


# ═══════════════════════════════════════════════════════════════════════════
# Construction
# ═══════════════════════════════════════════════════════════════════════════

class TestGraphConstruction:
    def test_requires_a_node(self):
        with pytest.raises(GraphConfigurationError):
            Graph("empty")

    def test_duplicate_names_rejected(self):
        with pytest.raises(GraphConfigurationError):
            Graph("dup", Node("a", _exit), Node("b", _exit), Node("a", _exit))

    def test_entry_is_first_node(self):
        graph = Graph("g", Node("first", _exit), Node("second", _exit))
        assert graph.entry == "first"
        assert graph.node_names == ["first", "second"]

    def test_rejects_non_nodes(self):
        with pytest.raises(GraphConfigurationError):
            Graph("g", _exit)

    def test_empty_node_name_rejected(self):
        with pytest.raises(GraphConfigurationError):
            Node("", _exit)

    def test_node_without_runner_rejected(self):
        with pytest.raises(GraphConfigurationError):
            Node("idle")

    @pytest.mark.asyncio
    async def test_subclass_overriding_run_needs_no_runner(self):
        class Finish(Node):
            async def run(self, arg):
                return {**arg.context, "done": True}, EXIT

        assert await Graph("g", Finish("finish")).run({}) == {"done": True}


class TestTransition:
    def test_variants(self):
        assert goto("next") == Transition(TransitionKind.CONTINUE, "next")
        assert RETRY.kind is TransitionKind.RETRY
        assert EXIT.kind is TransitionKind.EXIT

    def test_goto_needs_target(self):
        with pytest.raises(ValueError):
            goto("")

    @pytest.mark.asyncio
    async def test_node_named_like_a_sentinel_is_just_a_node(self):
        visited = []

        def empty_named(arg):
            visited.append("retry")
            return arg.context, EXIT

        graph = Graph("g", Node("start", lambda arg: (arg.context, goto("retry"))), Node("retry", empty_named))
        await graph.run({})
        assert visited == ["retry"]


# ═══════════════════════════════════════════════════════════════════════════
# Execution
# ═══════════════════════════════════════════════════════════════════════════

class TestGraphRun:
    @pytest.mark.asyncio
    async def test_linear_flow(self):
        def fetch(arg):
            arg.context["steps"].append("fetch")
            return arg.context, goto("summarize")

        async def summarize(arg):
            arg.context["steps"].append("summarize")
            return arg.context, EXIT

        graph = Graph("pipeline", Node("fetch", fetch), Node("summarize", summarize))
        result = await graph.run({"steps": []})
        assert result == {"steps": ["fetch", "summarize"]}

    @pytest.mark.asyncio
    async def test_retry_reruns_same_node_with_returned_context(self):
        executions = []

        def counter(arg):
            executions.append(arg.context["count"])
            context = {"count": arg.context["count"] + 1}
            return context, (EXIT if context["count"] == 3 else RETRY)

        result = await Graph("loop", Node("counter", counter)).run({"count": 0})
        assert result == {"count": 3}
        assert executions == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_cycles_between_nodes(self):
        def ping(arg):
            arg.context["n"] += 1
            return arg.context, goto("pong")

        def pong(arg):
            return arg.context, (EXIT if arg.context["n"] >= 4 else goto("ping"))

        result = await Graph("pingpong", Node("ping", ping), Node("pong", pong)).run({"n": 0})
        assert result["n"] == 4

    @pytest.mark.asyncio
    async def test_unknown_target(self):
        graph = Graph("g", Node("start", lambda arg: (arg.context, goto("nowhere"))))
        with pytest.raises(GraphNodeNotFoundError) as exc_info:
            await graph.run({})
        assert exc_info.value.node_name == "nowhere"
        assert exc_info.value.graph_name == "g"

    @pytest.mark.asyncio
    async def test_node_failure_wrapped(self):
        def broken(arg):
            raise KeyError("missing")

        graph = Graph("g", Node("ok", lambda arg: (arg.context, goto("broken"))), Node("broken", broken))
        with pytest.raises(GraphNodeError) as exc_info:
            await graph.run({})
        assert exc_info.value.node_name == "broken"
        assert isinstance(exc_info.value.__cause__, KeyError)
        assert isinstance(exc_info.value, GraphError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_result", [
        None,
        {"only": "context"},
        ({}, "exit"),
        ({}, EXIT, "extra"),
    ])
    async def test_invalid_return_is_node_error(self, bad_result):
        graph = Graph("g", Node("bad", lambda arg: bad_result))
        with pytest.raises(GraphNodeError):
            await graph.run({})

    @pytest.mark.asyncio
    async def test_nodes_get_private_copies(self):
        initial = {"items": [1]}
        seen = []

        def mutate(arg):
            arg.context["items"].append(2)
            return {"items": [99]}, goto("inspect")

        def inspect_node(arg):
            seen.append(arg.context)
            arg.context["items"].append(100)
            return arg.context, EXIT

        result = await Graph("g", Node("mutate", mutate), Node("inspect", inspect_node)).run(initial)
        assert initial == {"items": [1]}
        assert seen == [{"items": [99, 100]}]
        assert result == {"items": [99, 100]}

    @pytest.mark.asyncio
    async def test_node_arg_fields(self):
        captured = {}

        def capture(arg: NodeArg):
            captured["client"] = arg.client
            captured["node"] = arg.node_name
            captured["observation"] = arg.run.observation_name
            captured["run_id"] = arg.run.run_id
            captured["metadata"] = arg.metadata
            return arg.context, EXIT

        client = object()
        run = RunContext(run_id="graph-run")
        await Graph("g", Node("capture", capture)).run({}, client=client, ctx=run)
        assert captured == {
            "client": client,
            "node": "capture",
            "observation": "capture",
            "run_id": "graph-run",
            "metadata": {},
        }


# ═══════════════════════════════════════════════════════════════════════════
# Tracing
# ═══════════════════════════════════════════════════════════════════════════

class TestGraphTracing:
    @pytest.mark.asyncio
    async def test_run_wrapped_in_trace(self, make_client):
        tracer = RecordingTracer()
        client = make_client(ScriptedTransport(text_response("unused")), tracer=tracer)
        parents = []

        def node(arg):
            parents.append((arg.run.trace_id, arg.run.parent_observation_id))
            return {"done": True}, EXIT

        await Graph("report", Node("only", node)).run({}, client=client)

        (trace,) = tracer.started_of(ObservationKind.TRACE)
        assert trace["observation"].name == "graph_report"
        assert parents == [(trace["observation"].id, trace["observation"].id)]
        (ended,) = tracer.ended_of(ObservationKind.TRACE)
        assert ended["output"] == {"done": True}

    @pytest.mark.asyncio
    async def test_trace_records_failure(self, make_client):
        tracer = RecordingTracer()
        client = make_client(ScriptedTransport(text_response("unused")), tracer=tracer)

        def broken(arg):
            raise RuntimeError("nope")

        with pytest.raises(GraphNodeError):
            await Graph("g", Node("broken", broken)).run({}, client=client)
        (ended,) = tracer.ended_of(ObservationKind.TRACE)
        assert isinstance(ended["error"], GraphNodeError)

    @pytest.mark.asyncio
    async def test_existing_trace_is_reused(self, make_client):
        tracer = RecordingTracer()
        client = make_client(ScriptedTransport(text_response("unused")), tracer=tracer)
        await Graph("g", Node("n", _exit)).run({}, client=client, ctx=RunContext(trace_id="outer"))
        assert tracer.started == []
