"""
Client facade: configuration, transport, hooks and tracer in one object.
"""

import logging
from typing import Any, Optional

from askflow.shared.config import AskConfig, ClientConfig, TaskConfig, load_config
from askflow.shared.interfaces import IChatTransport, ITracer
from askflow.shared.logging_setup import configure_logging
from askflow.shared.models import RunContext

from .ask import ask as _ask
from .hooks import AfterHook, BeforeHook, HookPipeline
from .llm_client import create_chat_client
from .task import ResearchResult, deep_research as _deep_research

logger = logging.getLogger(__name__)


class Client:
    """
    Entry point for asking a model.

    All collaborators are injectable; by default the configuration comes
    from the environment and the transport is the OpenAI SDK client.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        transport: Optional[IChatTransport] = None,
        tracer: Optional[ITracer] = None,
        before_hooks=(),
        after_hooks=(),
    ):
        self.config = config or load_config()
        self.logger = configure_logging(self.config)
        self.transport = transport or create_chat_client(self.config)
        self.tracer = tracer
        self.hooks = HookPipeline(before=before_hooks, after=after_hooks)

    def use(self, plugin: Any) -> "Client":
        """Install a plugin's ``before_request``/``after_request`` hooks."""
        self.hooks.use(plugin)
        logger.debug(f"Installed plugin {type(plugin).__name__}")
        return self

    def add_before_hook(self, hook: BeforeHook) -> None:
        self.hooks.add_before(hook)

    def add_after_hook(self, hook: AfterHook) -> None:
        self.hooks.add_after(hook)

    async def ask(
        self,
        output_type: Any = str,
        *,
        ctx: Optional[RunContext] = None,
        config: Optional[AskConfig] = None,
        **options: Any,
    ):
        return await _ask(self, output_type, ctx=ctx, config=config, **options)

    async def deep_research(
        self,
        output_type: Any = str,
        *,
        ctx: Optional[RunContext] = None,
        config: Optional[TaskConfig] = None,
        **options: Any,
    ) -> ResearchResult:
        return await _deep_research(self, output_type, ctx=ctx, config=config, **options)

    async def get_usage(self) -> dict:
        """Token totals over every call made through this client's transport."""
        return await self.transport.get_usage()

    async def aclose(self) -> None:
        close = getattr(self.transport, "aclose", None)
        if close is not None:
            await close()
