"""Flat JSON persistence for reply context snippets."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from pathlib import Path

from ..core.models import ContextSnippet

LOGGER = logging.getLogger(__name__)


class JsonSnippetStore:
    """Keep context snippets in a single JSON document on disk."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        """Location of the backing JSON file."""
        return self._path

    def exists(self) -> bool:
        """Return ``True`` when a snippet file has been written before."""
        return self._path.is_file()

    def load(self) -> list[ContextSnippet]:
        """Return stored snippets, or an empty list when nothing is stored."""
        if not self.exists():
            return []
        payload = json.loads(self._path.read_text(encoding="utf-8"))
        return [
            ContextSnippet(id=str(item["id"]), content=str(item["content"]))
            for item in payload
        ]

    def save(self, snippets: Sequence[ContextSnippet]) -> None:
        """Overwrite the backing file with ``snippets``."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = [{"id": item.id, "content": item.content} for item in snippets]
        self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        LOGGER.debug("Saved %s context snippet(s) to %s", len(payload), self._path)


__all__ = ["JsonSnippetStore"]
