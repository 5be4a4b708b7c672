"""
Conversation driver: one ask call, from prompt to typed answer.

An ask call may span several model turns. Each turn re-sends the whole
(append-only) history; when the assistant requests tools, one concurrent
tool round runs and its results are appended before the next turn. The
loop ends at the first turn without tool calls.

Hooks bracket the whole call: before-hooks once over the initial request,
after-hooks once over the final response or the terminal error.
"""

import asyncio
import logging
from typing import Any, Optional

from askflow.shared.config import AskConfig
from askflow.shared.errors import ConfigurationError, NoChoicesError
from askflow.shared.logging_setup import bind_run_id
from askflow.shared.models import ChatRequest, ChatResponse, File, Message, RunContext
from askflow.tools.executor import ToolRoundExecutor
from askflow.tools.registry import ToolRegistry

from .hooks import HookContext
from .llm_client import retry_with_backoff
from .schemas import decode_structured, is_free_text, response_format

logger = logging.getLogger(__name__)


def _image_part(file: File) -> dict:
    return {"type": "image_url", "image_url": {"url": file.data_uri}}


def _pdf_part(file: File) -> dict:
    return {
        "type": "file",
        "file": {"filename": file.name or "document.pdf", "file_data": file.data_uri},
    }


def build_messages(config: AskConfig) -> list:
    """Initial history: [images], [pdfs], [system], user prompt."""
    images, pdfs = [], []
    for file in config.files:
        if not isinstance(file, File):
            raise ConfigurationError(f"files must contain File objects, got {type(file).__name__}")
        if file.is_image:
            images.append(_image_part(file))
        elif file.is_pdf:
            pdfs.append(_pdf_part(file))
        else:
            logger.warning(f"Skipping attachment {file.name or '<unnamed>'}: unsupported MIME type")

    messages = []
    if images:
        messages.append(Message.user(images))
    if pdfs:
        messages.append(Message.user(pdfs))
    if config.system:
        messages.append(Message.system(config.system))
    messages.append(Message.user(config.prompt))
    return messages


def build_request(config: AskConfig, model: str, output_type: Any, registry: ToolRegistry) -> ChatRequest:
    return ChatRequest(
        model=model,
        messages=build_messages(config),
        temperature=config.temperature,
        max_tokens=config.max_tokens,
        reasoning_effort=config.reasoning_effort,
        frequency_penalty=config.frequency_penalty,
        presence_penalty=config.presence_penalty,
        top_p=config.top_p,
        seed=config.seed,
        user=config.user,
        response_format=None if is_free_text(output_type) else response_format(output_type),
        tools=registry.definitions(),
        parallel_tool_calls=True if len(registry) else None,
        extra_body=dict(config.extra_fields),
        request_options=dict(config.request_options),
    )


async def _converse(client, request: ChatRequest, registry: ToolRegistry, hctx: HookContext) -> ChatResponse:
    """Turn loop. ``request.messages`` is the live history and only grows."""
    run = hctx.run
    settings = client.config
    history = request.messages
    executor = ToolRoundExecutor(registry, client=client, tracer=client.tracer)

    turn = 0
    while True:
        turn += 1
        response = await retry_with_backoff(
            lambda: client.transport.complete(request),
            attempts=hctx.config.retries,
            operation_name=f"Chat completion (turn {turn})",
            cancel_event=run.cancel_event,
            backoff_base=settings.retry_backoff_seconds,
            timeout=settings.request_timeout_seconds,
        )
        hctx.usage.add(response.usage)

        if not response.choices:
            raise NoChoicesError(f"Endpoint returned no choices (turn {turn})")

        message = response.first_message
        history.append(Message.assistant(message.content, message.tool_calls))
        if not message.tool_calls:
            logger.debug(f"Conversation finished after {turn} turn(s)")
            return response

        logger.info(f"Turn {turn}: assistant requested {len(message.tool_calls)} tool call(s)")
        results = await executor.run_round(message.tool_calls, run)
        history.extend(results)


def _final_value(output_type: Any, response: ChatResponse):
    message = response.first_message if response is not None else None
    content = message.content if message is not None else None
    if is_free_text(output_type):
        return content or ""
    return decode_structured(output_type, content)


async def ask(
    client,
    output_type: Any = str,
    *,
    ctx: Optional[RunContext] = None,
    config: Optional[AskConfig] = None,
    **options: Any,
):
    """
    Ask the model and return its answer.

    Args:
        client: The Client whose transport, hooks, tracer and defaults are used.
        output_type: ``str`` for free text, or a pydantic model class for a
                     schema-constrained answer.
        ctx: Caller's RunContext (trace linkage, cancellation). The call runs
             in a child of it.
        config: Base AskConfig; ``options`` override its fields.

    Raises:
        ConfigurationError / SchemaError: before any request is sent.
        TransportError: every attempt of a turn failed, or the run was cancelled.
        NoChoicesError, ToolError, DecodeError: see askflow.shared.errors.
    """
    cfg = AskConfig.from_options(config, **options)
    cfg.validate()
    model = cfg.model or client.config.default_model
    if not model:
        raise ConfigurationError("No model given and the client has no default model")

    registry = ToolRegistry(cfg.tools)
    request = build_request(cfg, model, output_type, registry)

    run = (ctx or RunContext()).child()
    with bind_run_id(run.run_id):
        mode = "free-text" if is_free_text(output_type) else f"structured:{output_type.__name__}"
        logger.info(f"Ask started: model={model}, mode={mode}, tools={registry.names()}")

        hctx = HookContext(run=run, config=cfg, logger=logger, client=client)
        request = await client.hooks.run_before(hctx, request)

        response, error = None, None
        try:
            response = await _converse(client, request, registry, hctx)
        except asyncio.CancelledError as e:
            # Cancellation still closes the after stage, then propagates unchanged
            logger.warning("Ask cancelled by caller")
            await client.hooks.run_after(hctx, None, e)
            raise
        except Exception as e:
            logger.error(f"Ask failed ({getattr(e, 'stage', type(e).__name__)}): {e}")
            error = e

        response, error = await client.hooks.run_after(hctx, response, error)
        if error is not None:
            raise error
        return _final_value(output_type, response)
