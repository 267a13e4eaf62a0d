"""
Shared Ollama utilities: host resolution, model registry lookup, auto-pull.
"""

import json
import logging
import os
import sys

import requests

from ..errors import FolioError, TransientNetworkError

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_HOST = "http://localhost:11434"

# Health checks should answer quickly or be treated as down
HEALTH_TIMEOUT = 5


def ollama_base_url(base_url: str | None = None) -> str:
    """Resolve the Ollama URL: explicit value, then OLLAMA_HOST, then localhost."""
    url = base_url or os.environ.get("OLLAMA_HOST") or DEFAULT_OLLAMA_HOST
    # OLLAMA_HOST is often set as bare host:port
    if "://" not in url:
        url = f"http://{url}"
    return url.rstrip("/")


def ollama_installed_models(base_url: str, timeout: float = HEALTH_TIMEOUT) -> set[str]:
    """Names of locally installed models, as reported by /api/tags.

    Raises TransientNetworkError if Ollama is unreachable or not responding.
    """
    try:
        resp = requests.get(f"{base_url}/api/tags", timeout=timeout)
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as e:
        raise TransientNetworkError(
            f"Cannot reach Ollama at {base_url}. "
            "Is Ollama running? Start it with: ollama serve"
        ) from e
    return {m["name"] for m in data.get("models", []) if "name" in m}


def ollama_has_model(installed: set[str], model: str) -> bool:
    """Match a configured model name against installed "name:tag" entries."""
    # Ollama lists models as "name:tag"; a bare name means any tag
    if model in installed:
        return True
    return any(name.startswith(f"{model}:") for name in installed)


def ollama_pull_model(base_url: str, model: str) -> None:
    """Pull a model through the Ollama API, streaming progress to stderr.

    Raises FolioError if the pull fails or Ollama is unreachable.
    """
    logger.info("Pulling Ollama model %s (first use)...", model)
    print(f"Pulling Ollama model '{model}' (first use)...", file=sys.stderr)

    try:
        resp = requests.post(
            f"{base_url}/api/pull",
            json={"name": model, "stream": True},
            stream=True,
            timeout=600,
        )
        resp.raise_for_status()
    except requests.RequestException as e:
        raise FolioError(f"Failed to pull Ollama model '{model}': {e}") from e

    last_status = ""
    for line in resp.iter_lines():
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            continue

        if data.get("error"):
            print("", file=sys.stderr)
            raise FolioError(f"Ollama pull failed for '{model}': {data['error']}")

        status = data.get("status", "")
        total = data.get("total", 0)
        completed = data.get("completed", 0)

        if total and completed:
            pct = int(completed / total * 100)
            msg = f"\r  {status}: {pct}%"
        elif status != last_status:
            msg = f"\n  {status}"
        else:
            continue

        print(msg, end="", file=sys.stderr, flush=True)
        last_status = status

    print(f"\n  Model '{model}' ready.", file=sys.stderr)
