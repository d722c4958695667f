"""
Pure processing functions for notesum.

These functions encapsulate the "compute" portion of summarization without
any store reads or writes. The worker applies the result to the store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .errors import SummarizationError

logger = logging.getLogger(__name__)

# Input budget for the summarization call, in characters
DEFAULT_MAX_INPUT_CHARS = 2000

ELLIPSIS = "..."


@dataclass
class ProcessorResult:
    """Result of processing a note.  Caller applies to store."""

    summary: str
    truncated: bool = False


def truncate_for_summary(content: str, limit: int = DEFAULT_MAX_INPUT_CHARS) -> tuple[str, bool]:
    """Hard-cap content at ``limit`` characters, keeping the prefix.

    Returns the text and whether it was cut. Cut text ends with an ellipsis.
    """
    if len(content) <= limit:
        return content, False
    return content[:limit] + ELLIPSIS, True


def process_summarize(
    content: str,
    *,
    summarization_provider,
    max_input_chars: int = DEFAULT_MAX_INPUT_CHARS,
) -> ProcessorResult:
    """Summarize note content.  Pure function, no store access.

    Raises:
        SummarizationError: the provider returned nothing usable
    """
    text, truncated = truncate_for_summary(content, max_input_chars)
    if truncated:
        logger.debug("Truncated note content from %d to %d chars", len(content), max_input_chars)

    summary = summarization_provider.summarize(text)
    if summary is None or not isinstance(summary, str) or not summary.strip():
        raise SummarizationError("Summarization provider returned an empty summary")
    return ProcessorResult(summary=summary.strip(), truncated=truncated)
