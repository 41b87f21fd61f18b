"""Base LLM provider implementing the Template Method pattern.

Every model-backed collaborator (local reviewer, triage, judge, fixer) runs
the same algorithm:
    complete() → _call_with_retry() → _call_api()   ← only this differs per provider
    parse_json()

Subclasses implement two things only:
  - __init__: validate and store the SDK client
  - _call_api: make one raw API call and return the text response

Prompt construction lives with each collaborator; retry and JSON parsing live
here so they are defined once and inherited by every provider.
"""

from __future__ import annotations

import json
import logging
import re
import time
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)

# Shared defaults; subclasses may override as class attributes if needed.
_MAX_RETRIES = 3
_MAX_TOKENS = 4096


class BaseProvider(ABC):
    MAX_RETRIES: int = _MAX_RETRIES
    MAX_TOKENS: int = _MAX_TOKENS
    MODEL: str = ""

    @property
    def name(self) -> str:
        return f"{self.__class__.__name__}:{self.MODEL}" if self.MODEL else self.__class__.__name__

    def complete(self, system_prompt: str, user_prompt: str) -> str | None:
        """Return the model's text response, or None when every attempt failed."""
        return self._call_with_retry(system_prompt, user_prompt)

    @abstractmethod
    def _call_api(self, system_prompt: str, user_prompt: str) -> str:
        """Make a single API call and return the raw text response.

        This is the only method subclasses must implement. It should raise
        on failure; _call_with_retry handles retries and logging.
        """

    def _call_with_retry(self, system_prompt: str, user_prompt: str) -> str | None:
        """Retry _call_api up to MAX_RETRIES times with exponential backoff."""
        for attempt in range(self.MAX_RETRIES):
            try:
                return self._call_api(system_prompt, user_prompt)
            except Exception as e:
                if attempt == self.MAX_RETRIES - 1:
                    logger.error(
                        "%s API failed after %d attempts: %s",
                        self.__class__.__name__,
                        self.MAX_RETRIES,
                        e,
                    )
                    return None
                delay = 2**attempt
                logger.warning(
                    "%s API error (attempt %d/%d): %s. Retrying in %ds...",
                    self.__class__.__name__,
                    attempt + 1,
                    self.MAX_RETRIES,
                    e,
                    delay,
                )
                time.sleep(delay)
        return None

    def parse_json(self, raw: str | None):
        """Parse a model response into JSON, tolerating an outer ```json fence.

        Returns None when the response is missing or not valid JSON.
        """
        if raw is None:
            return None
        try:
            # Strip only the outer ```json ... ``` fence that the model wraps
            # the response in, NOT backticks inside string values.
            cleaned = re.sub(r"^```(?:json)?\s*", "", raw.strip())
            cleaned = re.sub(r"\s*```$", "", cleaned.strip())
            return json.loads(cleaned)
        except json.JSONDecodeError:
            logger.warning(
                "%s: failed to parse response as JSON: %s",
                self.__class__.__name__,
                raw[:200],
            )
            return None


def get_provider(name: str, config: dict) -> BaseProvider:
    if name == "anthropic":
        from mergegate_core.providers.anthropic import AnthropicProvider

        return AnthropicProvider(api_key=config["anthropic_api_key"])
    if name == "openai":
        from mergegate_core.providers.openai import OpenAIProvider

        return OpenAIProvider(api_key=config["openai_api_key"])
    raise ValueError(f"Unknown model provider: {name!r}. Choose 'anthropic' or 'openai'.")
