"""Persistence adapters."""

from .snippets import JsonSnippetStore
from .sqlite import SqliteMessageRepository

__all__ = ["JsonSnippetStore", "SqliteMessageRepository"]
