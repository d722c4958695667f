"""Summarization providers."""

from .base import SummarizationProvider, get_registry

__all__ = ["SummarizationProvider", "get_registry"]
