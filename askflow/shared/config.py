"""
Centralized configuration management for askflow.
Client-level settings come from environment variables (12-factor style);
per-call settings are an AskConfig built fresh from defaults plus caller options.
"""

import logging
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

DEFAULT_RETRIES = 3
DEFAULT_REQUEST_TIMEOUT_SECONDS = 120.0
DEFAULT_RETRY_BACKOFF_SECONDS = 0.1

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _overlay(cls, base, options: dict, kind: str, sequences: tuple):
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(options) - known)
    if unknown:
        raise ConfigurationError(f"Unknown {kind} option(s): {', '.join(unknown)}")
    for key in sequences:
        if key in options and options[key] is not None:
            options[key] = tuple(options[key])
    return replace(base or cls(), **options)


@dataclass(frozen=True)
class ClientConfig:
    """Read-only client configuration, shared by every call made through a Client."""
    api_key: str = ""
    base_url: str = ""
    default_model: str = ""
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS  # per attempt
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS      # 0.1s, 0.2s, 0.4s...
    log_level: str = "ERROR"
    log_http: bool = False


@dataclass(frozen=True)
class AskConfig:
    """Configuration of one ask call. Sampling parameters left as None are not sent."""
    prompt: str = ""
    system: str = ""
    model: str = ""
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    reasoning_effort: Optional[str] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    top_p: Optional[float] = None
    user: str = ""
    seed: Optional[int] = None
    files: tuple = ()
    tools: tuple = ()
    retries: int = DEFAULT_RETRIES
    extra_fields: dict = field(default_factory=dict)
    request_options: dict = field(default_factory=dict)
    generation_name: str = ""

    @classmethod
    def from_options(cls, base: Optional["AskConfig"] = None, **options: Any) -> "AskConfig":
        """Overlay caller options onto ``base`` (or the defaults)."""
        return _overlay(cls, base, options, "ask", ("files", "tools"))

    def validate(self) -> None:
        if not self.prompt or not self.prompt.strip():
            raise ConfigurationError("A non-empty prompt is required")
        if self.retries < 1:
            raise ConfigurationError(f"retries must be at least 1 (got {self.retries})")


@dataclass(frozen=True)
class TaskConfig:
    """
    Configuration of one deep-research task (Responses API).

    Research runs are long and expensive, so a single attempt without a
    per-attempt timeout is the default.
    """
    prompt: str = ""
    instructions: str = ""
    model: str = ""
    user: str = ""
    mcp_servers: tuple = ()  # Responses API "mcp" tool entries
    retries: int = 1
    timeout_seconds: Optional[float] = None
    generation_name: str = ""

    @classmethod
    def from_options(cls, base: Optional["TaskConfig"] = None, **options: Any) -> "TaskConfig":
        return _overlay(cls, base, options, "task", ("mcp_servers",))

    def validate(self) -> None:
        if not self.prompt or not self.prompt.strip():
            raise ConfigurationError("A non-empty prompt is required")
        if self.retries < 1:
            raise ConfigurationError(f"retries must be at least 1 (got {self.retries})")


# ---------------------------------------------------------------------------
# Provider-specific extra fields
# ---------------------------------------------------------------------------

PARSER_ENGINE_MISTRAL_OCR = "mistral-ocr"
PARSER_ENGINE_NATIVE = "native"


def openrouter_providers(*providers: str) -> dict:
    """extra_fields restricting an OpenRouter request to the given providers."""
    return {"provider": {"only": list(providers)}}


def openrouter_file_parser(engine: str = PARSER_ENGINE_NATIVE) -> dict:
    """extra_fields selecting the OpenRouter file-parser plugin engine."""
    return {
        "plugins": [
            {
                "id": "file-parser",
                "image": {"engine": engine},
                "pdf": {"engine": engine},
            }
        ]
    }


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    try:
        return float(raw) if raw else default
    except ValueError:
        logging.getLogger(__name__).warning(f"Ignoring malformed {name}={raw!r}")
        return default


def load_config() -> ClientConfig:
    """
    Load client configuration from environment variables.
    Safe defaults are used when env vars are unset or malformed.
    """
    load_dotenv()  # Load .env file if present

    log_level = os.environ.get("ASKFLOW_LOG_LEVEL", "ERROR").upper()
    if log_level not in _LOG_LEVELS:
        log_level = "ERROR"  # Fail safe

    return ClientConfig(
        api_key=os.environ.get("OPENAI_API_KEY", ""),
        base_url=os.environ.get("OPENAI_API_BASE", ""),
        default_model=os.environ.get("ASKFLOW_DEFAULT_MODEL", ""),
        request_timeout_seconds=_float_env(
            "ASKFLOW_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS
        ),
        retry_backoff_seconds=_float_env(
            "ASKFLOW_RETRY_BACKOFF", DEFAULT_RETRY_BACKOFF_SECONDS
        ),
        log_level=log_level,
        log_http=os.environ.get("ASKFLOW_LOG_HTTP", "").lower() in ("1", "true", "yes"),
    )
