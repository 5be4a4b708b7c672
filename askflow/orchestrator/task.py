"""
Deep research tasks over the Responses API.

A research task is a single long-running ``responses.create`` call. The
model may consult remote MCP tool servers on its own, so there is no local
tool round and no conversation loop. The Responses API only accepts a plain
JSON object format for research models, so a structured answer is
requested by appending the strict schema to the prompt and is decoded
locally afterwards.
"""

import json
import logging
from typing import Any, NamedTuple, Optional

from askflow.shared.config import TaskConfig
from askflow.shared.errors import ConfigurationError
from askflow.shared.interfaces import IResponsesTransport
from askflow.shared.logging_setup import bind_run_id
from askflow.shared.models import ObservationKind, ResearchResponse, RunContext

from .llm_client import retry_with_backoff
from .schemas import decode_structured, infer_json_schema, is_free_text
from .tracing import observe

logger = logging.getLogger(__name__)

DEFAULT_RESEARCH_NAME = "deep-research"


class ResearchResult(NamedTuple):
    """Decoded answer plus the raw reply it came from."""
    output: Any
    response: ResearchResponse


def approved_mcp_server(label: str, url: str) -> dict:
    """A remote MCP server the model may call without per-call approval."""
    return {
        "type": "mcp",
        "server_label": label,
        "server_url": url,
        "require_approval": "never",
    }


def _schema_section(output_type: Any) -> str:
    schema = json.dumps(infer_json_schema(output_type), indent=1)
    return (
        "\n# Output structure\n"
        "Final answer's output schema must follow this json schema:\n"
        f'"""\n{schema}\n"""'
    )


def build_research_params(config: TaskConfig, model: str, output_type: Any) -> dict:
    prompt = config.prompt
    if is_free_text(output_type):
        text_format = {"type": "text"}
    else:
        prompt += _schema_section(output_type)
        text_format = {"type": "json_object"}

    params = {
        "model": model,
        "input": prompt,
        "background": False,
        "service_tier": "default",
        "text": {"format": text_format},
    }
    if config.instructions:
        params["instructions"] = config.instructions
    if config.user:
        params["user"] = config.user
    if config.mcp_servers:
        params["tools"] = [dict(server) for server in config.mcp_servers]
    return params


async def deep_research(
    client,
    output_type: Any = str,
    *,
    ctx: Optional[RunContext] = None,
    config: Optional[TaskConfig] = None,
    **options: Any,
) -> ResearchResult:
    """
    Run one research task and return its decoded answer.

    Raises:
        ConfigurationError / SchemaError: before the request is sent, including
            when the client's transport has no Responses API support.
        TransportError: every attempt failed, or the run was cancelled.
        DecodeError: structured mode and the answer does not match.
    """
    cfg = TaskConfig.from_options(config, **options)
    cfg.validate()
    model = cfg.model or client.config.default_model
    if not model:
        raise ConfigurationError("No model given and the client has no default model")
    transport = client.transport
    if not isinstance(transport, IResponsesTransport):
        raise ConfigurationError(
            f"{type(transport).__name__} does not support research tasks (Responses API)"
        )

    params = build_research_params(cfg, model, output_type)
    run = (ctx or RunContext()).child()
    name = cfg.generation_name or DEFAULT_RESEARCH_NAME

    with bind_run_id(run.run_id):
        logger.info(f"Research started: model={model}, mcp_servers={len(cfg.mcp_servers)}")
        async with observe(
            client.tracer, run, ObservationKind.GENERATION, name, input=params["input"]
        ) as scope:
            response = await retry_with_backoff(
                lambda: transport.respond(params),
                attempts=cfg.retries,
                operation_name="Deep research",
                cancel_event=scope.run.cancel_event,
                backoff_base=client.config.retry_backoff_seconds,
                timeout=cfg.timeout_seconds,
            )
            scope.output = response.output_text
            scope.usage = response.usage

        logger.info(f"Research finished: id={response.id}, status={response.status}")
        if is_free_text(output_type):
            return ResearchResult(response.output_text, response)
        return ResearchResult(decode_structured(output_type, response.output_text), response)
