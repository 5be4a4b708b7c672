"""
Node-graph execution engine for multi-step workflows.

A graph is a set of uniquely named nodes; the first one is the entry.
Each node receives a private deep copy of the current context and returns
the next context plus a Transition:

  goto(name) -> run the named node next
  RETRY      -> run the same node again with the returned context
  EXIT       -> stop and return the returned context

Nodes run strictly one after another. There is no cycle detection: a
graph that never exits runs until a node fails or the caller cancels.
"""

import copy
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from askflow.shared.errors import (
    GraphConfigurationError,
    GraphNodeError,
    GraphNodeNotFoundError,
)
from askflow.shared.logging_setup import bind_run_id
from askflow.shared.models import ObservationKind, RunContext

from .tracing import observe

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

class TransitionKind(Enum):
    CONTINUE = "continue"
    RETRY = "retry"
    EXIT = "exit"


@dataclass(frozen=True)
class Transition:
    """Where a graph run goes after a node. Build with goto(), RETRY or EXIT."""
    kind: TransitionKind
    target: str = ""

    def __post_init__(self):
        if self.kind is TransitionKind.CONTINUE and not self.target:
            raise ValueError("goto() needs a node name")


def goto(name: str) -> Transition:
    return Transition(TransitionKind.CONTINUE, name)


RETRY = Transition(TransitionKind.RETRY)
EXIT = Transition(TransitionKind.EXIT)


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------

@dataclass
class NodeArg:
    """Input of one node execution."""
    context: Any  # private deep copy, safe to mutate
    client: Any = None
    run: RunContext = field(default_factory=RunContext)
    metadata: dict = field(default_factory=dict)  # per-execution scratch
    node_name: str = ""


NodeRunner = Callable[[NodeArg], Any]


class Node:
    """A named step. ``runner(arg) -> (context, Transition)``, sync or async."""

    def __init__(self, name: str, runner: Optional[NodeRunner] = None):
        if not name:
            raise GraphConfigurationError("Node name must not be empty")
        if runner is None and type(self).run is Node.run:
            raise GraphConfigurationError(f"Node {name!r} needs a runner")
        self.name = name
        self._runner = runner

    async def run(self, arg: NodeArg):
        result = self._runner(arg)
        if inspect.isawaitable(result):
            result = await result
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------

class Graph:
    """Named node graph; construction validates, ``run`` executes."""

    def __init__(self, name: str, *nodes: Node):
        if not nodes:
            raise GraphConfigurationError(f"Graph {name!r} needs at least one node")
        self.name = name
        self._nodes: dict = {}
        for node in nodes:
            if not isinstance(node, Node):
                raise GraphConfigurationError(
                    f"Graph {name!r}: expected Node, got {type(node).__name__}"
                )
            if node.name in self._nodes:
                raise GraphConfigurationError(f"Graph {name!r}: duplicate node name {node.name!r}")
            self._nodes[node.name] = node
        self.entry = nodes[0].name

    @property
    def node_names(self) -> list:
        return list(self._nodes)

    async def run(self, initial_context: Any, client: Any = None, ctx: Optional[RunContext] = None) -> Any:
        """
        Execute from the entry node until a node returns EXIT.

        Returns the context returned alongside EXIT. Any failure raises a
        GraphError and no partial context is returned.
        """
        base = ctx or RunContext()
        tracer = getattr(client, "tracer", None)

        with bind_run_id(base.run_id):
            if tracer is not None and base.trace_id is None:
                async with observe(
                    tracer, base, ObservationKind.TRACE, f"graph_{self.name}", input=initial_context
                ) as scope:
                    result = await self._execute(initial_context, client, scope.run)
                    scope.output = result
                return result
            return await self._execute(initial_context, client, base)

    async def _execute(self, context: Any, client: Any, run: RunContext) -> Any:
        current = self.entry
        steps = 0
        logger.info(f"Graph {self.name} started at node {current}")

        while True:
            node = self._nodes.get(current)
            if node is None:
                raise GraphNodeNotFoundError(
                    f"Graph {self.name}: no node named {current!r}",
                    graph_name=self.name,
                    node_name=current,
                )

            steps += 1
            logger.debug(f"Graph {self.name} step {steps}: {node.name}")
            try:
                arg = NodeArg(
                    context=copy.deepcopy(context),
                    client=client,
                    run=run.child(observation_name=node.name),
                    node_name=node.name,
                )
                result = await node.run(arg)
            except Exception as e:
                logger.error(f"Graph {self.name}: node {node.name} failed: {e}")
                raise GraphNodeError(
                    f"Graph {self.name}: node {node.name!r} failed: {e}",
                    graph_name=self.name,
                    node_name=node.name,
                ) from e

            if not (isinstance(result, tuple) and len(result) == 2 and isinstance(result[1], Transition)):
                raise GraphNodeError(
                    f"Graph {self.name}: node {node.name!r} must return (context, Transition), "
                    f"got {type(result).__name__}",
                    graph_name=self.name,
                    node_name=node.name,
                )
            context, transition = result

            if transition.kind is TransitionKind.EXIT:
                logger.info(f"Graph {self.name} exited at {node.name} after {steps} step(s)")
                return context
            if transition.kind is TransitionKind.CONTINUE:
                current = transition.target
            # RETRY: same node, new context
