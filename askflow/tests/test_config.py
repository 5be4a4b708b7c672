"""
Tests for shared/config.py - client configuration loading and per-call options.
"""

import os
from dataclasses import FrozenInstanceError

import pytest
from unittest.mock import patch

from askflow.shared.config import (
    DEFAULT_RETRIES,
    PARSER_ENGINE_MISTRAL_OCR,
    AskConfig,
    ClientConfig,
    load_config,
    openrouter_file_parser,
    openrouter_providers,
)
from askflow.shared.errors import ConfigurationError
from askflow.shared.models import File


def _load(env: dict) -> ClientConfig:
    with patch.dict(os.environ, env, clear=True), \
            patch("askflow.shared.config.load_dotenv"):
        return load_config()


class TestClientConfigDefaults:
    def test_defaults(self):
        cfg = ClientConfig()
        assert cfg.request_timeout_seconds == 120.0
        assert cfg.retry_backoff_seconds == 0.1
        assert cfg.log_level == "ERROR"
        assert cfg.log_http is False

    def test_frozen(self):
        with pytest.raises(FrozenInstanceError):
            ClientConfig().api_key = "changed"


class TestLoadConfig:
    def test_reads_environment(self):
        cfg = _load({
            "OPENAI_API_KEY": "sk-env",
            "OPENAI_API_BASE": "https://openrouter.ai/api/v1",
            "ASKFLOW_DEFAULT_MODEL": "openai/gpt-4o-mini",
            "ASKFLOW_REQUEST_TIMEOUT": "30",
            "ASKFLOW_RETRY_BACKOFF": "0.5",
            "ASKFLOW_LOG_LEVEL": "debug",
            "ASKFLOW_LOG_HTTP": "true",
        })
        assert cfg.api_key == "sk-env"
        assert cfg.base_url == "https://openrouter.ai/api/v1"
        assert cfg.default_model == "openai/gpt-4o-mini"
        assert cfg.request_timeout_seconds == 30.0
        assert cfg.retry_backoff_seconds == 0.5
        assert cfg.log_level == "DEBUG"
        assert cfg.log_http is True

    def test_empty_environment_uses_defaults(self):
        cfg = _load({})
        assert cfg == ClientConfig()

    def test_malformed_numbers_fall_back(self):
        cfg = _load({"ASKFLOW_REQUEST_TIMEOUT": "soon", "ASKFLOW_RETRY_BACKOFF": "fast"})
        assert cfg.request_timeout_seconds == 120.0
        assert cfg.retry_backoff_seconds == 0.1

    def test_invalid_log_level_fails_safe(self):
        assert _load({"ASKFLOW_LOG_LEVEL": "CHATTY"}).log_level == "ERROR"

    def test_dotenv_is_loaded(self):
        with patch.dict(os.environ, {}, clear=True), \
                patch("askflow.shared.config.load_dotenv") as mock_dotenv:
            load_config()
        mock_dotenv.assert_called_once()


class TestAskConfig:
    def test_defaults(self):
        cfg = AskConfig()
        assert cfg.retries == DEFAULT_RETRIES == 3
        assert cfg.temperature is None
        assert cfg.tools == ()

    def test_from_options_overlays_base(self):
        base = AskConfig(prompt="base", temperature=0.3, system="sys")
        cfg = AskConfig.from_options(base, temperature=0.0, max_tokens=100)
        assert cfg.prompt == "base"
        assert cfg.system == "sys"
        assert cfg.temperature == 0.0
        assert cfg.max_tokens == 100
        assert base.temperature == 0.3

    def test_sequences_become_tuples(self):
        pdf = File.pdf("a.pdf", b"%PDF")
        cfg = AskConfig.from_options(files=[pdf], tools=[])
        assert cfg.files == (pdf,)
        assert cfg.tools == ()

    def test_unknown_option(self):
        with pytest.raises(ConfigurationError) as exc_info:
            AskConfig.from_options(prompt="hi", temprature=1.0)
        assert "temprature" in str(exc_info.value)

    @pytest.mark.parametrize("options", [
        {},
        {"prompt": "   "},
        {"prompt": "hi", "retries": 0},
        {"prompt": "hi", "retries": -2},
    ])
    def test_validate_rejects(self, options):
        with pytest.raises(ConfigurationError):
            AskConfig.from_options(**options).validate()

    def test_validate_accepts(self):
        AskConfig(prompt="hi", retries=1).validate()


class TestOpenRouterHelpers:
    def test_providers(self):
        assert openrouter_providers("anthropic", "openai") == {
            "provider": {"only": ["anthropic", "openai"]}
        }

    def test_file_parser(self):
        plugin = openrouter_file_parser(PARSER_ENGINE_MISTRAL_OCR)["plugins"][0]
        assert plugin["id"] == "file-parser"
        assert plugin["pdf"] == {"engine": "mistral-ocr"}
        assert plugin["image"] == {"engine": "mistral-ocr"}

    def test_file_parser_default_engine(self):
        assert openrouter_file_parser()["plugins"][0]["pdf"] == {"engine": "native"}
