"""Tests for model provider implementations.

Shared behaviour (complete, _call_with_retry, parse_json) lives in
BaseProvider and is tested once via a lightweight stub. Provider-specific
tests cover only what differs: the SDK client setup and class defaults.
"""

import json
from unittest.mock import patch

import pytest

from mergegate_core.providers.anthropic import AnthropicProvider
from mergegate_core.providers.base import BaseProvider, get_provider
from mergegate_core.providers.openai import OpenAIProvider

VALID_JSON = json.dumps({"decision": "confirm", "confidence": "high", "rationale": "real bug"})


class _StubProvider(BaseProvider):
    def _call_api(self, system_prompt: str, user_prompt: str) -> str:
        return VALID_JSON


# ---------------------------------------------------------------------------
# Shared behaviour
# ---------------------------------------------------------------------------


class TestParseJson:
    def test_parses_valid_json(self):
        assert _StubProvider().parse_json(VALID_JSON)["decision"] == "confirm"

    def test_strips_markdown_code_fences(self):
        raw = f"```json\n{VALID_JSON}\n```"
        assert _StubProvider().parse_json(raw)["confidence"] == "high"

    def test_preserves_code_blocks_inside_values(self):
        """Backticks inside string values must not be stripped."""
        payload = json.dumps({"content": "def f():\n    return '```'\n"})
        result = _StubProvider().parse_json(f"```json\n{payload}\n```")
        assert "```" in result["content"]

    def test_returns_none_on_invalid_json(self):
        assert _StubProvider().parse_json("not json at all") is None

    def test_returns_none_on_missing_response(self):
        assert _StubProvider().parse_json(None) is None


class TestRetry:
    def test_returns_none_after_max_retries(self):
        class _AlwaysFail(BaseProvider):
            def _call_api(self, system_prompt: str, user_prompt: str) -> str:
                raise RuntimeError("network error")

        with patch("mergegate_core.providers.base.time.sleep") as sleep:
            assert _AlwaysFail().complete("s", "u") is None
        assert sleep.call_count == BaseProvider.MAX_RETRIES - 1

    def test_retries_on_transient_failure(self):
        call_count = 0

        class _FailOnceThenSucceed(BaseProvider):
            def _call_api(self, system_prompt: str, user_prompt: str) -> str:
                nonlocal call_count
                call_count += 1
                if call_count == 1:
                    raise RuntimeError("transient")
                return VALID_JSON

        with patch("mergegate_core.providers.base.time.sleep"):
            assert _FailOnceThenSucceed().complete("s", "u") == VALID_JSON
        assert call_count == 2


class TestGetProvider:
    def test_unknown_provider_raises(self):
        with pytest.raises(ValueError, match="Unknown model provider"):
            get_provider("llama", {})

    def test_anthropic_provider_built_with_key(self, mocker):
        init = mocker.patch.object(AnthropicProvider, "__init__", return_value=None)
        provider = get_provider("anthropic", {"anthropic_api_key": "ant"})
        assert isinstance(provider, AnthropicProvider)
        init.assert_called_once_with(api_key="ant")

    def test_openai_provider_built_with_key(self, mocker):
        init = mocker.patch.object(OpenAIProvider, "__init__", return_value=None)
        provider = get_provider("openai", {"openai_api_key": "oai"})
        assert isinstance(provider, OpenAIProvider)
        init.assert_called_once_with(api_key="oai")


# ---------------------------------------------------------------------------
# Provider-specific
# ---------------------------------------------------------------------------


class TestAnthropicProvider:
    def test_raises_import_error_without_sdk(self):
        with patch.dict("sys.modules", {"anthropic": None}):
            with pytest.raises(ImportError, match="mergegate\\[anthropic\\]"):
                AnthropicProvider(api_key="key")

    def test_model_is_claude(self):
        assert "claude" in AnthropicProvider.MODEL

    def test_name_includes_model(self):
        assert AnthropicProvider.MODEL in AnthropicProvider.__new__(AnthropicProvider).name


class TestOpenAIProvider:
    def test_raises_import_error_without_sdk(self):
        import mergegate_core.providers.openai as openai_mod

        real_openai = openai_mod._OpenAI
        openai_mod._OpenAI = None
        try:
            with pytest.raises(ImportError):
                OpenAIProvider(api_key="key")
        finally:
            openai_mod._OpenAI = real_openai

    def test_model_is_gpt(self):
        assert "gpt" in OpenAIProvider.MODEL

    def test_temperature_is_low(self):
        assert OpenAIProvider.TEMPERATURE <= 0.2
