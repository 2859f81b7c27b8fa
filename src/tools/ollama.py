"""
Async client for a local Ollama server, the second AI capability.

The server is probed with a short-timeout ``/api/tags`` call before use;
an unreachable server is the "capability unavailable" state, not an error.
"""

import logging
from typing import Any, Dict

import httpx

from src.exceptions import CapabilityUnavailableError, ContentGenerationError
from src.models import AIGeneration

logger = logging.getLogger(__name__)


class OllamaClient:
    """Async wrapper around Ollama's ``/api/generate`` endpoint.

    Args:
        base_url: Server URL, e.g. ``http://localhost:11434``.
        model: Local model tag.
        timeout: Generation timeout in seconds.
        probe_timeout: Availability probe timeout in seconds.
    """

    name = "ollama"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3:8b",
        timeout: float = 30.0,
        probe_timeout: float = 3.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.probe_timeout = probe_timeout

    async def is_available(self) -> bool:
        """Return ``True`` when the server answers ``/api/tags``."""
        try:
            async with httpx.AsyncClient(timeout=self.probe_timeout) as client:
                response = await client.get(f"{self.base_url}/api/tags")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.debug("Ollama probe failed: %s", e)
            return False

    async def generate(self, prompt: str, temperature: float = 0.8, num_predict: int = 1000) -> str:
        """Run a single non-streaming generation.

        Raises:
            CapabilityUnavailableError: If the server cannot be reached.
            ContentGenerationError: If the server answers without text.
        """
        payload: Dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": temperature, "num_predict": num_predict},
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(f"{self.base_url}/api/generate", json=payload)
                response.raise_for_status()
                data = response.json()
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            raise CapabilityUnavailableError(f"Ollama unreachable at {self.base_url}: {e}") from e
        except httpx.HTTPError as e:
            raise ContentGenerationError(f"Ollama request failed: {e}") from e

        text = data.get("response")
        if not text:
            raise ContentGenerationError("Ollama returned an empty response")
        return text

    async def generate_content(self, prompt: str) -> AIGeneration:
        """Capability entry point."""
        if not await self.is_available():
            raise CapabilityUnavailableError(f"Ollama not available at {self.base_url}")
        text = await self.generate(prompt)
        return AIGeneration(text=text, confidence=None, provider=self.name)
