"""
Ollama helpers for the summarization provider.

The server is found through an explicit URL, then OLLAMA_HOST, then the
local default. A missing model is pulled once when the provider starts so
the first worker batch does not fail on it.
"""

import logging
import os

import requests

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434"

# Pulls can take minutes for a multi-GB model
PULL_TIMEOUT = 1800


def ollama_base_url(base_url: str | None = None) -> str:
    """Resolve the Ollama server URL: explicit value, then OLLAMA_HOST, then default."""
    url = base_url or os.environ.get("OLLAMA_HOST") or DEFAULT_OLLAMA_URL
    if not url.startswith(("http://", "https://")):
        url = f"http://{url}"
    return url.rstrip("/")


def _with_tag(name: str) -> str:
    return name if ":" in name else f"{name}:latest"


def ollama_installed_models(base_url: str) -> set[str]:
    """Names of the models the server has, always in "name:tag" form."""
    try:
        resp = requests.get(f"{base_url}/api/tags", timeout=5)
        resp.raise_for_status()
    except requests.RequestException as e:
        raise RuntimeError(
            f"Cannot reach Ollama at {base_url}. "
            "Is Ollama running? Start it with: ollama serve"
        ) from e
    return {_with_tag(m["name"]) for m in resp.json().get("models", [])}


def ollama_ensure_model(base_url: str, model: str) -> None:
    """Pull `model` unless the server already has it.

    Raises RuntimeError if Ollama is unreachable or the pull fails.
    """
    if _with_tag(model) in ollama_installed_models(base_url):
        return

    logger.info("Pulling Ollama model %s (first use)", model)
    try:
        resp = requests.post(
            f"{base_url}/api/pull",
            json={"model": model, "stream": False},
            timeout=(10, PULL_TIMEOUT),
        )
        resp.raise_for_status()
    except requests.RequestException as e:
        raise RuntimeError(f"Failed to pull Ollama model '{model}': {e}") from e

    status = resp.json()
    if status.get("error"):
        raise RuntimeError(f"Ollama pull failed for '{model}': {status['error']}")
    logger.info("Ollama model %s ready", model)
