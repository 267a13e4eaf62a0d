"""
Text generation providers used by the duplicate judge.

Two backends:
- ollama: local /api/generate, optionally with a JSON schema constraint
- gateway: OpenAI-compatible /chat/completions behind an AI gateway

Both normalize every anticipated failure to GenerationError.
"""

import json
import logging
import os

import httpx
import requests

from ..errors import GenerationError
from .base import get_registry
from .ollama_utils import ollama_base_url

logger = logging.getLogger(__name__)

# (connect, read)
GENERATE_TIMEOUT = (5, 60)

DEFAULT_GATEWAY_URL = "https://ai-gateway.vercel.sh/v1"

# Constrains structured output to a single verdict word
VERDICT_SCHEMA = {
    "type": "object",
    "properties": {
        "verdict": {"type": "string", "enum": ["DUPLICATE", "DISTINCT"]},
    },
    "required": ["verdict"],
}


class OllamaGeneration:
    """
    Generation provider using Ollama's /api/generate endpoint.

    With structured=True the request carries VERDICT_SCHEMA as its format,
    so the reply is a JSON object like {"verdict": "DISTINCT"}.

    Respects OLLAMA_HOST env var (default: http://localhost:11434).
    """

    def __init__(
        self,
        model: str = "llama3.2",
        base_url: str | None = None,
        structured: bool = False,
        timeout: tuple[float, float] = GENERATE_TIMEOUT,
    ):
        self.model = model
        self.base_url = ollama_base_url(base_url)
        self.structured = structured
        self.timeout = timeout

    def generate(self, prompt: str, *, system: str | None = None) -> str:
        """Send a prompt to Ollama and return the generated text."""
        payload: dict = {"model": self.model, "prompt": prompt, "stream": False}
        if system:
            payload["system"] = system
        if self.structured:
            payload["format"] = VERDICT_SCHEMA

        try:
            response = requests.post(
                f"{self.base_url}/api/generate",
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise GenerationError(f"Ollama unreachable at {self.base_url}: {e}") from e

        if not response.ok:
            detail = response.text[:200] if response.text else ""
            raise GenerationError(
                f"Ollama generate failed (model={self.model}): "
                f"HTTP {response.status_code} from {self.base_url}. {detail}"
            )
        try:
            data = response.json()
        except ValueError as e:
            raise GenerationError("Invalid JSON response from Ollama") from e
        if not isinstance(data, dict):
            raise GenerationError(f"Unexpected Ollama response: {data!r:.200}")
        return (data.get("response") or "").strip()


class GatewayGeneration:
    """
    Generation provider using an OpenAI-compatible AI gateway.

    Requires: AI_GATEWAY_API_KEY environment variable (or api_key).
    A missing key is reported at call time, not construction, so an
    unconfigured gateway degrades the judge instead of breaking startup.

    Model names are gateway-qualified, e.g. "anthropic/claude-haiku-4-5".
    """

    def __init__(
        self,
        model: str = "anthropic/claude-haiku-4-5",
        api_key: str | None = None,
        base_url: str | None = None,
        max_tokens: int = 16,
        timeout: float = 60.0,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self._api_key = api_key or os.environ.get("AI_GATEWAY_API_KEY")
        self._base_url = (
            base_url or os.environ.get("AI_GATEWAY_URL") or DEFAULT_GATEWAY_URL
        ).rstrip("/")
        self._client: httpx.Client | None = None
        self._timeout = httpx.Timeout(timeout, connect=5.0)

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                base_url=self._base_url,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self._timeout,
            )
        return self._client

    def generate(self, prompt: str, *, system: str | None = None) -> str:
        """Send a prompt through the gateway and return the generated text."""
        if not self._api_key:
            raise GenerationError("AI_GATEWAY_API_KEY not set, gateway unavailable")

        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        try:
            resp = self._get_client().post(
                "/chat/completions",
                json={
                    "model": self.model,
                    "messages": messages,
                    "max_tokens": self.max_tokens,
                    "temperature": 0,
                },
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            raise GenerationError(
                f"Gateway generate failed: {e.response.status_code} {e.response.text[:200]}"
            ) from e
        except (httpx.HTTPError, json.JSONDecodeError) as e:
            raise GenerationError(f"Gateway generate failed: {e}") from e

        try:
            return (data["choices"][0]["message"]["content"] or "").strip()
        except (KeyError, IndexError, TypeError) as e:
            raise GenerationError(f"Unexpected gateway response: {data!r:.200}") from e

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None


# Register providers
_registry = get_registry()
_registry.register_generation("ollama", OllamaGeneration)
_registry.register_generation("gateway", GatewayGeneration)
