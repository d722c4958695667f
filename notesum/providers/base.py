"""
Base provider protocols.

These define the interfaces that concrete providers must implement.
Using Protocol for structural subtyping - no explicit inheritance required.
"""

import re
from typing import Protocol, runtime_checkable


# -----------------------------------------------------------------------------
# Summarization
# -----------------------------------------------------------------------------

# Shared system prompt for all LLM-based summarization providers
NOTE_SUMMARY_SYSTEM_PROMPT = """Summarize this note in 1-2 sentences.

Begin with the subject directly - do not start with meta-phrases like "This note describes..." or "The note is about...".

Keep names, dates, amounts and action items that appear in the note."""


def build_summarization_prompt(content: str) -> str:
    """
    Build the user prompt for a note.

    Args:
        content: The note text, already truncated to the input budget

    Returns:
        The complete prompt string for the LLM
    """
    return f"Summarize this note in 1-2 sentences:\n\n{content}"


def strip_summary_preamble(text: str) -> str:
    """
    Remove common LLM preambles from summaries.

    Many models add introductory phrases despite instructions not to.
    This post-processes the output to strip them.
    """
    preambles = [
        r"^here is a summary[^:]*[:.]\s*",
        r"^here is a concise summary[^:]*:\s*",
        r"^here is the summary[^:]*:\s*",
        r"^here's a summary[^:]*:\s*",
        r"^summary:\s*",
        r"^this note (is about|describes|says)\s+",
        r"^the note (is about|describes|says)\s+",
    ]
    result = text.strip()
    for pattern in preambles:
        result = re.sub(pattern, "", result, flags=re.IGNORECASE)
    return result


@runtime_checkable
class SummarizationProvider(Protocol):
    """
    Generates a short summary of a note.

    The pipeline treats this as untrusted I/O: it may be slow, raise, or
    return nothing. Failures are retried by the event channel, so providers
    should raise rather than return placeholder text.

    Example implementation:
        class OpenAISummarization:
            def __init__(self, model: str = "gpt-4o-mini"):
                self.client = OpenAI()
                self.model = model

            def summarize(self, content: str, *, max_length: int = 500) -> str:
                response = self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": "Summarize concisely."},
                        {"role": "user", "content": content}
                    ],
                )
                return response.choices[0].message.content
    """

    def summarize(
        self,
        content: str,
        *,
        max_length: int = 500,
    ) -> str:
        """
        Generate a summary of the content.

        Args:
            content: The note text
            max_length: Approximate maximum length in characters

        Returns:
            A concise summary of the content
        """
        ...


# -----------------------------------------------------------------------------
# Provider Registry
# -----------------------------------------------------------------------------

class ProviderRegistry:
    """
    Registry for discovering and instantiating providers.

    Providers are registered by name and can be instantiated from configuration.
    This allows the store configuration (TOML) to specify providers by name
    rather than requiring code changes.

    Example:
        registry = ProviderRegistry()
        registry.register_summarization("anthropic", AnthropicSummarization)

        # Later, from config:
        provider = registry.create_summarization("anthropic", {"model": "claude-haiku-4-5"})
    """

    def __init__(self):
        self._summarization_providers: dict[str, type] = {}
        self._lazy_loaded = False

    def _ensure_providers_loaded(self) -> None:
        """Lazily load all provider modules."""
        if self._lazy_loaded:
            return

        self._lazy_loaded = True

        # Import provider modules to trigger registration
        # These imports only register classes, they don't instantiate
        from . import llm  # noqa: F401

    def register_summarization(self, name: str, provider_class: type) -> None:
        """Register a summarization provider class."""
        self._summarization_providers[name] = provider_class

    def create_summarization(self, name: str, params: dict | None = None) -> SummarizationProvider:
        """Create a summarization provider instance."""
        self._ensure_providers_loaded()
        if name not in self._summarization_providers:
            available = ", ".join(self._summarization_providers.keys()) or "none"
            raise ValueError(
                f"Unknown summarization provider: '{name}'. "
                f"Available providers: {available}. "
                f"Install missing dependencies or check provider name."
            )
        try:
            return self._summarization_providers[name](**(params or {}))
        except ImportError as e:
            raise RuntimeError(
                f"Failed to create summarization provider '{name}': {e}\n"
                f"Install required dependencies."
            ) from e
        except Exception as e:
            raise RuntimeError(
                f"Failed to create summarization provider '{name}': {e}"
            ) from e

    def list_summarization_providers(self) -> list[str]:
        """List registered summarization provider names."""
        self._ensure_providers_loaded()
        return list(self._summarization_providers.keys())


# Global registry instance
# Concrete providers register themselves on import
_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    return _registry
