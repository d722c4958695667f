"""
Summarization providers using LLMs.
"""

import os

from .base import (
    NOTE_SUMMARY_SYSTEM_PROMPT,
    build_summarization_prompt,
    get_registry,
    strip_summary_preamble,
)


class AnthropicSummarization:
    """
    Summarization provider using Anthropic's Claude API.

    Authentication (checked in priority order):
    1. api_key parameter (if provided)
    2. ANTHROPIC_API_KEY (API key from console.anthropic.com)

    Default model is claude-haiku-4.5. Configure via notesum.toml
    [summarization] section for other models.
    """

    def __init__(
        self,
        model: str = "claude-haiku-4-5-20251001",
        api_key: str | None = None,
        max_tokens: int = 150,
    ):
        try:
            from anthropic import Anthropic
        except ImportError:
            raise RuntimeError("AnthropicSummarization requires 'anthropic' library")

        self.model = model
        self.max_tokens = max_tokens

        key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not key:
            raise ValueError(
                "Anthropic authentication required. Set ANTHROPIC_API_KEY "
                "(API key from console.anthropic.com)"
            )

        self.client = Anthropic(api_key=key)

    def summarize(
        self,
        content: str,
        *,
        max_length: int = 500,
    ) -> str:
        """Generate summary using Anthropic Claude."""
        # The Anthropic SDK has built-in retry with exponential backoff for rate limits.
        # Let errors propagate so the channel can redeliver later.
        response = self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=NOTE_SUMMARY_SYSTEM_PROMPT,
            messages=[
                {"role": "user", "content": build_summarization_prompt(content)}
            ],
        )

        if response.content and len(response.content) > 0:
            return strip_summary_preamble(response.content[0].text)
        return ""


class OpenAISummarization:
    """
    Summarization provider using OpenAI's chat API.

    Requires: NOTESUM_OPENAI_API_KEY or OPENAI_API_KEY environment variable.

    Default model is gpt-4.1-mini.
    """

    def __init__(
        self,
        model: str = "gpt-4.1-mini",
        api_key: str | None = None,
        max_tokens: int = 150,
    ):
        try:
            from openai import OpenAI
        except ImportError:
            raise RuntimeError("OpenAISummarization requires 'openai' library")

        self.model = model
        self.max_tokens = max_tokens

        key = api_key or os.environ.get("NOTESUM_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")
        if not key:
            raise ValueError(
                "OpenAI API key required. Set NOTESUM_OPENAI_API_KEY or OPENAI_API_KEY"
            )

        self._client = OpenAI(api_key=key)

        # GPT-5+ and reasoning models use a different API surface:
        # - max_completion_tokens instead of max_tokens
        # - temperature must be omitted (only default=1 supported)
        self._new_api = self.model.startswith(("gpt-5", "o3", "o4"))

    def _completion_kwargs(self, max_tokens: int) -> dict:
        """Return model-appropriate kwargs for token limit and temperature."""
        if self._new_api:
            return {"max_completion_tokens": max_tokens}
        return {"max_tokens": max_tokens, "temperature": 0.3}

    def summarize(
        self,
        content: str,
        *,
        max_length: int = 500,
    ) -> str:
        """Generate a summary using OpenAI."""
        response = self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": NOTE_SUMMARY_SYSTEM_PROMPT},
                {"role": "user", "content": build_summarization_prompt(content)},
            ],
            **self._completion_kwargs(self.max_tokens),
        )

        if not response.choices:
            return ""
        return strip_summary_preamble(response.choices[0].message.content or "")


class OllamaSummarization:
    """
    Summarization provider using Ollama's local API.

    Respects OLLAMA_HOST env var (default: http://localhost:11434).
    """

    def __init__(
        self,
        model: str = "llama3.2",
        base_url: str | None = None,
        ensure_model: bool = True,
    ):
        self.model = model
        from .ollama_utils import ollama_base_url, ollama_ensure_model
        self.base_url = ollama_base_url(base_url)
        if ensure_model:
            ollama_ensure_model(self.base_url, self.model)

    def summarize(
        self,
        content: str,
        *,
        max_length: int = 500,
    ) -> str:
        """Generate a summary using Ollama."""
        import requests

        response = requests.post(
            f"{self.base_url}/api/chat",
            json={
                "model": self.model,
                "messages": [
                    {"role": "system", "content": NOTE_SUMMARY_SYSTEM_PROMPT},
                    {"role": "user", "content": build_summarization_prompt(content)},
                ],
                "stream": False,
            },
            timeout=(10, 120),  # (connect, read)
        )
        if not response.ok:
            detail = response.text[:200] if response.text else ""
            raise RuntimeError(
                f"Ollama summarization failed (model={self.model}): "
                f"HTTP {response.status_code} from {self.base_url}. {detail}"
            )

        return strip_summary_preamble(response.json()["message"]["content"])


class PassthroughSummarization:
    """
    Summarization provider that returns the leading text of the note.

    No LLM involved. Useful for testing or offline use.
    """

    def __init__(self, max_chars: int = 200):
        self.max_chars = max_chars

    def summarize(
        self,
        content: str,
        *,
        max_length: int = 500,
    ) -> str:
        """Return the first line, truncated at a word boundary."""
        text = content.strip().split("\n", 1)[0].strip()
        limit = min(self.max_chars, max_length)
        if len(text) <= limit:
            return text
        cut = text[:limit].rsplit(" ", 1)[0] or text[:limit]
        return cut + "..."


# Register providers
_registry = get_registry()
_registry.register_summarization("anthropic", AnthropicSummarization)
_registry.register_summarization("openai", OpenAISummarization)
_registry.register_summarization("ollama", OllamaSummarization)
_registry.register_summarization("passthrough", PassthroughSummarization)
