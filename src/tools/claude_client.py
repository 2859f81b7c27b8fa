"""
Async Claude API client, one implementation of the AI generation capability.

Uses the ``anthropic`` Python SDK (``AsyncAnthropic``) to interact with
Anthropic's Messages API.

Key features:
    - Automatic retry with exponential backoff via ``@with_retry``
    - Token usage tracking (input + output)
    - Structured JSON generation with markdown-fence stripping
    - Missing credentials are a valid "capability unavailable" state:
      the client constructs fine and raises ``CapabilityUnavailableError``
      on use, so the synthesizer can fall back to templates.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import anthropic
from anthropic import AsyncAnthropic

from src.exceptions import CapabilityUnavailableError
from src.models import AIGeneration
from src.utils import with_retry

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5"

# Transient API failures worth retrying; auth and bad-request errors are not.
_RETRYABLE = (
    anthropic.APIConnectionError,
    anthropic.APITimeoutError,
    anthropic.RateLimitError,
    anthropic.InternalServerError,
)


def strip_code_fences(text: str) -> str:
    """Strip markdown code fences (e.g. `` ```json ... ``` ``) from a reply."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        # Remove opening fence (e.g. ```json)
        first_newline = cleaned.find("\n")
        if first_newline != -1:
            cleaned = cleaned[first_newline + 1 :]
        else:
            cleaned = cleaned[3:]
        # Remove closing fence
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]
    return cleaned.strip()


class ClaudeClient:
    """Async Claude API client.

    Args:
        api_key: Anthropic API key.  Falls back to the
            ``ANTHROPIC_API_KEY`` environment variable.  When neither is
            set the client is *unavailable* rather than broken.
        model: Model identifier.

    Usage::

        client = ClaudeClient()
        if client.available:
            result = await client.generate_content("Write about Pushpa 2")
    """

    name = "claude"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
    ) -> None:
        resolved_key = api_key or os.environ.get("ANTHROPIC_API_KEY", "")
        self.client: Optional[AsyncAnthropic] = (
            AsyncAnthropic(api_key=resolved_key) if resolved_key else None
        )
        self.model = model
        self._total_input_tokens: int = 0
        self._total_output_tokens: int = 0

    @property
    def available(self) -> bool:
        return self.client is not None

    async def is_available(self) -> bool:
        return self.available

    def _require_client(self) -> AsyncAnthropic:
        if self.client is None:
            raise CapabilityUnavailableError("ANTHROPIC_API_KEY not configured")
        return self.client

    # ------------------------------------------------------------------
    # Text generation
    # ------------------------------------------------------------------

    @with_retry(max_attempts=3, base_delay=1.0, retryable_exceptions=_RETRYABLE)
    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> str:
        """Generate a plain-text response from the model.

        Raises:
            CapabilityUnavailableError: If no API key is configured.
        """
        client = self._require_client()
        messages: List[Dict[str, str]] = [{"role": "user", "content": prompt}]

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if system:
            kwargs["system"] = system

        response = await client.messages.create(**kwargs)

        # Track token usage
        self._total_input_tokens += response.usage.input_tokens
        self._total_output_tokens += response.usage.output_tokens

        logger.debug(
            "Claude generate: in=%d out=%d tokens",
            response.usage.input_tokens,
            response.usage.output_tokens,
        )

        return response.content[0].text

    # ------------------------------------------------------------------
    # Capability interface
    # ------------------------------------------------------------------

    async def generate_content(self, prompt: str) -> AIGeneration:
        """Capability entry point: return text, no self-reported confidence."""
        text = await self.generate(prompt, temperature=0.7, max_tokens=2048)
        return AIGeneration(text=text, confidence=None, provider=self.name)

    # ------------------------------------------------------------------
    # Usage tracking
    # ------------------------------------------------------------------

    @property
    def usage_stats(self) -> Dict[str, int]:
        """Cumulative token usage since this client was instantiated."""
        return {
            "input_tokens": self._total_input_tokens,
            "output_tokens": self._total_output_tokens,
        }

    def reset_usage(self) -> None:
        """Reset cumulative token counters to zero."""
        self._total_input_tokens = 0
        self._total_output_tokens = 0
