"""
Chat transport for askflow.
Talks to any OpenAI-compatible /v1/chat/completions endpoint through the
``openai`` SDK (OpenAI, OpenRouter, Bedrock Access Gateway, local servers).

Production hardening:
- Every attempt wrapped in a per-attempt timeout
- Exponential backoff retry owned by askflow (SDK retries disabled)
- Retry loop and backoff sleep both interrupted by the run's cancel event
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import httpx
from openai import AsyncOpenAI

from askflow.shared.config import (
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_RETRIES,
    DEFAULT_RETRY_BACKOFF_SECONDS,
    ClientConfig,
)
from askflow.shared.errors import ConfigurationError, TransportError
from askflow.shared.interfaces import IChatTransport, IResponsesTransport
from askflow.shared.models import (
    ChatRequest,
    ChatResponse,
    Choice,
    Message,
    ResearchResponse,
    ToolCallRequest,
    Usage,
)

logger = logging.getLogger(__name__)


class _CancelledByCaller(Exception):
    pass


async def _attempt(coro_factory, timeout: Optional[float], cancel_event: Optional[asyncio.Event]):
    """Run one attempt, racing it against the timeout and the cancel event."""
    if cancel_event is None:
        return await asyncio.wait_for(coro_factory(), timeout=timeout)

    call = asyncio.ensure_future(coro_factory())
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait(
            {call, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        for task in (call, waiter):
            if not task.done():
                task.cancel()

    if call in done:
        return call.result()
    if waiter in done:
        raise _CancelledByCaller()
    raise asyncio.TimeoutError()


async def _backoff(delay: float, cancel_event: Optional[asyncio.Event]) -> None:
    if delay <= 0:
        return
    if cancel_event is None:
        await asyncio.sleep(delay)
        return
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        pass  # backoff elapsed without cancellation


async def retry_with_backoff(
    coro_factory: Callable[[], Awaitable],
    attempts: int = DEFAULT_RETRIES,
    operation_name: str = "chat completion",
    cancel_event: Optional[asyncio.Event] = None,
    backoff_base: float = DEFAULT_RETRY_BACKOFF_SECONDS,
    timeout: Optional[float] = DEFAULT_REQUEST_TIMEOUT_SECONDS,
):
    """
    Execute an async operation with timeout + exponential backoff retry.

    Args:
        coro_factory: A callable that returns a new coroutine on each call.
                      (Must be a factory because coroutines can't be re-awaited.)
        attempts: Total attempts, at least 1.
        operation_name: For logging.
        cancel_event: When set, no further attempt is started and the
                      in-flight attempt / backoff sleep is abandoned.
        backoff_base: Delay after the first failure; doubles each time.
        timeout: Per-attempt bound in seconds (None or <= 0 disables it).

    Raises:
        TransportError: budget exhausted (``attempts`` set, last failure
            chained) or cancelled (``cancelled=True``).
        ConfigurationError: propagated immediately, never retried.
    """
    if attempts < 1:
        raise ConfigurationError(f"retries must be at least 1 (got {attempts})")
    if timeout is not None and timeout <= 0:
        timeout = None

    last_error: Optional[BaseException] = None
    for attempt in range(1, attempts + 1):
        if cancel_event is not None and cancel_event.is_set():
            raise TransportError(
                f"{operation_name} cancelled before attempt {attempt}",
                attempts=attempt - 1,
                cancelled=True,
            ) from last_error

        try:
            return await _attempt(coro_factory, timeout, cancel_event)
        except _CancelledByCaller:
            raise TransportError(
                f"{operation_name} cancelled during attempt {attempt}",
                attempts=attempt,
                cancelled=True,
            ) from last_error
        except asyncio.TimeoutError:
            last_error = TimeoutError(f"{operation_name} timed out after {timeout}s")
            logger.warning(f"{operation_name} timeout (attempt {attempt}/{attempts})")
        except ConfigurationError:
            raise
        except Exception as e:
            last_error = e
            logger.warning(f"{operation_name} failed (attempt {attempt}/{attempts}): {e}")

        # Backoff before retry (except after final attempt)
        if attempt < attempts:
            delay = backoff_base * (2 ** (attempt - 1))
            logger.info(f"{operation_name} retrying in {delay:.1f}s...")
            await _backoff(delay, cancel_event)

    logger.error(f"{operation_name} failed after {attempts} attempts: {last_error}")
    raise TransportError(
        f"{operation_name} failed after {attempts} attempts: {last_error}",
        attempts=attempts,
    ) from last_error


# ---------------------------------------------------------------------------
# HTTP exchange logging (httpx event hooks)
# ---------------------------------------------------------------------------

async def _log_request(request: httpx.Request) -> None:
    logger.debug(f"HTTP request: {request.method} {request.url}")


async def _log_response(response: httpx.Response) -> None:
    request = response.request
    logger.debug(f"HTTP response: {response.status_code} for {request.method} {request.url}")


# ---------------------------------------------------------------------------
# OpenAI-compatible client
# ---------------------------------------------------------------------------

class OpenAIChatClient(IChatTransport, IResponsesTransport):
    """
    Chat transport over the ``openai`` SDK.
    Also serves research tasks through the Responses API.

    One ``complete()`` is one HTTP round trip; retrying is the caller's job
    (see retry_with_backoff), so the SDK's own retries are turned off.
    """

    def __init__(self, config: ClientConfig):
        self._config = config
        self._client: Optional[AsyncOpenAI] = None  # Created lazily on first API call
        self._http_client: Optional[httpx.AsyncClient] = None
        self._usage = Usage()

    def _get_client(self) -> AsyncOpenAI:
        """Lazy-create the AsyncOpenAI client on first use.

        Keeps construction free of async resources so a Client can be built
        outside a running event loop.
        """
        if self._client is None:
            if not self._config.api_key:
                raise ConfigurationError("No API key configured (set OPENAI_API_KEY)")
            event_hooks = {}
            if self._config.log_http:
                event_hooks = {"request": [_log_request], "response": [_log_response]}
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.request_timeout_seconds),
                event_hooks=event_hooks,
            )
            self._client = AsyncOpenAI(
                api_key=self._config.api_key,
                base_url=self._config.base_url or None,
                http_client=self._http_client,
                max_retries=0,
            )
        return self._client

    async def complete(self, request: ChatRequest) -> ChatResponse:
        client = self._get_client()
        response = await client.chat.completions.create(**request.to_kwargs())
        return self._parse_response(response)

    def _parse_response(self, response) -> ChatResponse:
        """Parse an OpenAI-format completion into our domain response."""
        choices = []
        for choice in response.choices or []:
            message = choice.message
            tool_calls = [
                ToolCallRequest(
                    id=tc.id,
                    name=tc.function.name,
                    arguments=tc.function.arguments or "",
                )
                for tc in (message.tool_calls or [])
                if getattr(tc, "function", None) is not None
            ]
            choices.append(Choice(
                message=Message.assistant(message.content, tool_calls),
                finish_reason=choice.finish_reason or "",
            ))

        usage = None
        if response.usage is not None:
            usage = Usage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
                total_tokens=response.usage.total_tokens or 0,
            )
            self._usage.add(usage)

        return ChatResponse(
            choices=choices,
            usage=usage,
            model=response.model or "",
            id=response.id or "",
        )

    async def respond(self, params: dict) -> ResearchResponse:
        client = self._get_client()
        response = await client.responses.create(**params)
        return self._parse_research(response)

    def _parse_research(self, response) -> ResearchResponse:
        usage = None
        if response.usage is not None:
            usage = Usage(
                prompt_tokens=response.usage.input_tokens or 0,
                completion_tokens=response.usage.output_tokens or 0,
                total_tokens=response.usage.total_tokens or 0,
            )
            self._usage.add(usage)

        return ResearchResponse(
            output_text=response.output_text or "",
            usage=usage,
            model=response.model or "",
            id=response.id or "",
            status=response.status or "",
        )

    async def get_usage(self) -> dict:
        return self._usage.to_dict()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
            self._http_client = None


def create_chat_client(config: ClientConfig) -> IChatTransport:
    """Factory: the default transport for a client configuration."""
    target = config.base_url or "https://api.openai.com/v1"
    logger.info(f"Using OpenAI-compatible endpoint at {target}")
    return OpenAIChatClient(config)
