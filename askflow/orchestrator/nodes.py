"""
AI node adapter: a graph node whose work is one structured ask call.
"""

import inspect
import logging
from typing import Any, Callable

from askflow.shared.config import AskConfig
from askflow.shared.errors import ConfigurationError, PromptGenerationError

from .ask import ask
from .graph import Node, NodeArg

logger = logging.getLogger(__name__)


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class AICallNode(Node):
    """
    Node that asks the model for an ``output_type`` value.

    ``prompt_generator(arg) -> str`` builds the prompt from the node's
    context copy; ``callback(arg, output) -> (context, Transition)`` folds the
    answer back into the context and picks the next step. Both may be sync
    or async. Extra keyword options are passed through to every ask call.
    """

    def __init__(
        self,
        name: str,
        output_type: Any,
        prompt_generator: Callable[[NodeArg], Any],
        callback: Callable[[NodeArg, Any], Any],
        **ask_options: Any,
    ):
        super().__init__(name)
        if "prompt" in ask_options:
            raise ConfigurationError(f"AICallNode {name!r}: the prompt comes from prompt_generator")
        self.output_type = output_type
        self._prompt_generator = prompt_generator
        self._callback = callback
        self._ask_options = dict(ask_options)
        self._ask_options.setdefault("generation_name", name)
        # Unknown options fail here, not mid-run
        AskConfig.from_options(**self._ask_options)

    async def run(self, arg: NodeArg):
        if arg.client is None:
            raise ConfigurationError(f"AICallNode {self.name!r} needs a client; pass one to Graph.run")
        try:
            prompt = await _maybe_await(self._prompt_generator(arg))
        except Exception as e:
            raise PromptGenerationError(f"Prompt generation failed for node {self.name!r}: {e}") from e

        output = await ask(arg.client, self.output_type, ctx=arg.run, prompt=prompt, **self._ask_options)
        return await _maybe_await(self._callback(arg, output))
