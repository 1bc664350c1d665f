"""Categorization and reply suggestion services."""

from .category import RuleBasedCategorizer
from .llm import LLMClient, LLMError, OllamaClient
from .reply import (
    ReplyRetrievalEngine,
    build_reply_engine,
    default_snippets,
    load_snippets,
)

__all__ = [
    "LLMClient",
    "LLMError",
    "OllamaClient",
    "ReplyRetrievalEngine",
    "RuleBasedCategorizer",
    "build_reply_engine",
    "default_snippets",
    "load_snippets",
]
