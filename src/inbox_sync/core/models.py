"""Core domain models used across the application."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Category(str, Enum):
    """Closed set of labels the categorizer may assign."""

    INTERESTED = "Interested"
    MEETING_BOOKED = "Meeting Booked"
    NOT_INTERESTED = "Not Interested"
    SPAM = "Spam"
    OUT_OF_OFFICE = "Out of Office"
    UNCATEGORIZED = "Uncategorized"

    @classmethod
    def parse(cls, raw: str) -> Category:
        """Resolve a display value or member name, ignoring case and separators.

        Raises ``ValueError`` for anything outside the six known labels.
        """
        wanted = _squash(raw)
        for member in cls:
            if wanted in (_squash(member.value), _squash(member.name)):
                return member
        raise ValueError(f"Unknown category: {raw!r}")


def _squash(value: str) -> str:
    return "".join(ch for ch in value.lower() if ch.isalnum())


class ConnectionState(str, Enum):
    """Lifecycle of a mailbox connector session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    WATCHING = "watching"


class CoordinatorState(str, Enum):
    """Lifecycle of a per-account pipeline coordinator."""

    IDLE = "idle"
    CONNECTOR_BOUND = "connector_bound"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass(slots=True)
class MessageChunk:
    """Raw IMAP payload paired with its sequence number and UID."""

    sequence_number: int
    uid: int | None
    raw: bytes


@dataclass(slots=True)
class RawMessage:
    """Raw IMAP payload as handed from the connector to the coordinator."""

    account_id: str
    folder: str
    sequence_number: int
    uid: int | None
    raw: bytes


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class Message:
    """Canonical message record ready for persistence."""

    id: str
    account_id: str
    folder: str
    sender: str
    to: tuple[str, ...]
    subject: str
    body: str
    html: str | None
    date: datetime
    protocol_sequence_id: int
    category: Category | None = None


@dataclass(slots=True)
class ContextSnippet:
    """Stored text fragment used to ground reply suggestions."""

    id: str
    content: str


@dataclass(slots=True)
class SearchFilter:
    """Criteria accepted by the message store search."""

    text: str | None = None
    folder: str | None = None
    account_id: str | None = None
    category: Category | None = None
    offset: int = 0
    limit: int | None = None


@dataclass(slots=True)
class SuggestedReply:
    """Reply suggestion returned by the retrieval engine."""

    message_id: str
    reply: str
    context: tuple[ContextSnippet, ...]
    provider: str
    used_fallback: bool
    confidence: float


@dataclass(slots=True)
class MailboxStatistics:
    """Aggregate counts over stored messages."""

    total: int
    by_category: dict[str, int] = field(default_factory=dict)
    by_account: dict[str, int] = field(default_factory=dict)
    by_folder: dict[str, int] = field(default_factory=dict)


__all__ = [
    "Category",
    "ConnectionState",
    "ContextSnippet",
    "CoordinatorState",
    "MailboxStatistics",
    "Message",
    "MessageChunk",
    "RawMessage",
    "SearchFilter",
    "SuggestedReply",
]
