"""Protocol interfaces for decoupling components."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from typing import Protocol

from .models import (
    Category,
    MailboxStatistics,
    Message,
    MessageChunk,
    RawMessage,
    SearchFilter,
)


class PersistenceError(RuntimeError):
    """Raised when the message store rejects or fails a write."""


class NotificationError(RuntimeError):
    """Raised when a notification channel cannot be reached."""


class MailboxSession(Protocol):
    """Blocking session against one remote folder, such as IMAP."""

    mailbox: str

    def connect(self) -> None:
        """Open the session and select the folder."""
        raise NotImplementedError

    def search_since(self, since: datetime) -> Sequence[int]:
        """Return UIDs of messages dated on or after ``since``."""
        raise NotImplementedError

    def search_unseen(self) -> Sequence[int]:
        """Return UIDs of messages not yet flagged as seen."""
        raise NotImplementedError

    def fetch_messages(self, uids: Sequence[int]) -> Iterable[MessageChunk]:
        """Yield raw payloads for the requested UIDs."""
        raise NotImplementedError

    def idle(self, timeout: float, should_stop: Callable[[], bool]) -> int:
        """Wait for new-mail pushes; return the number of arrivals seen."""
        raise NotImplementedError

    def keepalive(self) -> int:
        """Re-check the selected folder; return arrivals noticed meanwhile."""
        raise NotImplementedError

    def close(self) -> None:
        """Release any network resources."""
        raise NotImplementedError


class MessageNormalizerProtocol(Protocol):
    """Converts raw payloads into canonical messages."""

    def normalize(self, raw: RawMessage) -> Message:
        """Return the canonical :class:`Message` for ``raw``."""
        raise NotImplementedError


class Categorizer(Protocol):
    """Assigns exactly one category to a message."""

    def categorize(self, message: Message) -> Category:
        """Return the category for ``message``."""
        raise NotImplementedError


class MessageRepository(Protocol):
    """Abstraction for message persistence."""

    def put_message(self, message: Message) -> None:
        """Insert or update ``message`` keyed by its ``id``."""
        raise NotImplementedError

    def get_message(self, message_id: str) -> Message | None:
        """Retrieve a stored message by id."""
        raise NotImplementedError

    def search(self, criteria: SearchFilter) -> list[Message]:
        """Return matching messages, newest first."""
        raise NotImplementedError

    def update_category(self, message_id: str, category: Category) -> bool:
        """Overwrite the category; return ``False`` for unknown ids."""
        raise NotImplementedError

    def statistics(self) -> MailboxStatistics:
        """Return aggregate counts over stored messages."""
        raise NotImplementedError

    def close(self) -> None:
        """Close database connections if necessary."""
        raise NotImplementedError


class Notifier(Protocol):
    """Fire-and-forget sink for high-value messages."""

    async def notify(self, message: Message) -> None:
        """Deliver a notification about ``message``."""
        raise NotImplementedError


__all__ = [
    "Categorizer",
    "MailboxSession",
    "MessageNormalizerProtocol",
    "MessageRepository",
    "NotificationError",
    "Notifier",
    "PersistenceError",
]
