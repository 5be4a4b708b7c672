"""
Before/after request hooks.

Before-hooks see (and may replace) the outgoing ChatRequest; after-hooks
see the final (response, error) pair of an ask call. Each stage runs once
per ask call, hooks in registration order.

Hooks must never break the main run: an exception or an invalid return
value is logged and the pipeline carries on with the unmodified value.
"""

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Tuple, Union

from askflow.shared.config import AskConfig
from askflow.shared.models import ChatRequest, ChatResponse, RunContext, Usage

logger = logging.getLogger(__name__)

BeforeHook = Callable[["HookContext", ChatRequest], Union[ChatRequest, Awaitable[ChatRequest]]]
AfterHook = Callable[..., Any]


@dataclass
class HookContext:
    """What a hook knows about the ask call it is observing."""
    run: RunContext
    config: AskConfig
    usage: Usage = field(default_factory=Usage)  # accumulated over all turns
    logger: logging.Logger = logger
    client: Any = None


def _hook_name(hook) -> str:
    return getattr(hook, "__qualname__", None) or type(hook).__name__


async def _call(hook, *args):
    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def _is_valid_request(value) -> bool:
    return (
        isinstance(value, ChatRequest)
        and bool(value.model)
        and bool(value.messages)
    )


def _is_valid_outcome(value) -> bool:
    if not isinstance(value, tuple) or len(value) != 2:
        return False
    response, error = value
    if (response is None) == (error is None):
        return False
    if response is not None and not isinstance(response, ChatResponse):
        return False
    if error is not None and not isinstance(error, BaseException):
        return False
    return True


class HookPipeline:
    """Ordered before/after hooks with a non-throwing execution contract."""

    def __init__(self, before=(), after=()):
        self._before: list = list(before)
        self._after: list = list(after)

    def add_before(self, hook: BeforeHook) -> None:
        self._before.append(hook)

    def add_after(self, hook: AfterHook) -> None:
        self._after.append(hook)

    def use(self, plugin: Any) -> None:
        """Install an object exposing ``before_request`` and/or ``after_request``."""
        before = getattr(plugin, "before_request", None)
        after = getattr(plugin, "after_request", None)
        if before is None and after is None:
            raise TypeError(
                f"{type(plugin).__name__} has neither before_request nor after_request"
            )
        if before is not None:
            self.add_before(before)
        if after is not None:
            self.add_after(after)

    @property
    def before_hooks(self) -> tuple:
        return tuple(self._before)

    @property
    def after_hooks(self) -> tuple:
        return tuple(self._after)

    async def run_before(self, hctx: HookContext, request: ChatRequest) -> ChatRequest:
        for hook in self._before:
            name = _hook_name(hook)
            try:
                result = await _call(hook, hctx, request)
            except Exception as e:
                hctx.logger.error(f"Before-hook {name} raised, request left unchanged: {e}")
                continue
            if not _is_valid_request(result):
                hctx.logger.error(
                    f"Before-hook {name} returned an invalid request "
                    f"({type(result).__name__}), ignoring it"
                )
                continue
            request = result
        return request

    async def run_after(
        self,
        hctx: HookContext,
        response: Optional[ChatResponse],
        error: Optional[BaseException],
    ) -> Tuple[Optional[ChatResponse], Optional[BaseException]]:
        for hook in self._after:
            name = _hook_name(hook)
            try:
                result = await _call(hook, hctx, response, error)
            except Exception as e:
                hctx.logger.error(f"After-hook {name} raised, outcome left unchanged: {e}")
                continue
            if not _is_valid_outcome(result):
                hctx.logger.error(
                    f"After-hook {name} must return (response, error) with exactly "
                    f"one set, got {result!r:.80}; ignoring it"
                )
                continue
            response, error = result
        return response, error
