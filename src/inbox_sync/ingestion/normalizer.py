"""Utilities for normalizing raw RFC822 messages into canonical records."""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable
from datetime import datetime
from email import policy
from email.errors import MessageError
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import getaddresses, parsedate_to_datetime

from ..core.datetime_utils import ensure_utc, utcnow
from ..core.interfaces import MessageNormalizerProtocol
from ..core.models import Message, RawMessage


class NormalizationError(RuntimeError):
    """Raised when a single raw message cannot be turned into a record."""


def _random_token() -> str:
    return uuid.uuid4().hex


class MessageNormalizer(MessageNormalizerProtocol):
    """Convert raw email payloads into :class:`Message` records.

    Every call mints a fresh ``id`` of the form ``{account_id}-{token}``, so
    the same remote message fetched twice yields two distinct records.
    """

    def __init__(
        self,
        *,
        token_factory: Callable[[], str] = _random_token,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Prepare the parser with injectable id and time sources."""
        self._parser = BytesParser(policy=policy.default)
        self._token_factory = token_factory
        self._clock = clock

    def normalize(self, raw: RawMessage) -> Message:
        """Parse ``raw`` into a canonical message or raise :class:`NormalizationError`."""
        try:
            message = self._parser.parsebytes(raw.raw)
            sender = _header_text(message, "From")
            to_recipients = tuple(_extract_addresses(message.get_all("To", [])))
            subject = _header_text(message, "Subject")
            body_text, body_html = _extract_bodies(message)
            sent_at = _try_parse_datetime(message.get("Date"))
        except (MessageError, LookupError, TypeError, ValueError, AttributeError) as exc:
            raise NormalizationError(
                f"Unable to parse message {raw.uid or raw.sequence_number} "
                f"for account {raw.account_id}"
            ) from exc

        return Message(
            id=f"{raw.account_id}-{self._token_factory()}",
            account_id=raw.account_id,
            folder=raw.folder,
            sender=sender,
            to=to_recipients,
            subject=subject,
            body=body_text or "",
            html=body_html,
            date=sent_at if sent_at is not None else self._clock(),
            protocol_sequence_id=raw.uid if raw.uid else raw.sequence_number,
        )


def _header_text(message: EmailMessage, name: str) -> str:
    value = message.get(name)
    if value is None:
        return ""
    return str(value).strip()


def _extract_addresses(headers: Iterable[str]) -> Iterable[str]:
    for _, email_address in getaddresses([str(header) for header in headers]):
        if email_address:
            yield email_address


def _collapse_chunks(chunks: Iterable[str], separator: str) -> str | None:
    filtered_chunks = [chunk for chunk in chunks if chunk]
    if not filtered_chunks:
        return None
    return separator.join(filtered_chunks)


def _extract_bodies(message: EmailMessage) -> tuple[str | None, str | None]:
    plain_chunks: list[str] = []
    html_chunks: list[str] = []

    for part in message.walk():
        if part.is_multipart():
            continue
        content_type = part.get_content_type()
        disposition = part.get_content_disposition()
        if disposition == "attachment":
            continue
        try:
            content_obj = part.get_content()
        except LookupError:
            continue
        if not isinstance(content_obj, str):
            continue
        content = content_obj.strip()
        if content_type == "text/plain":
            plain_chunks.append(content)
        elif content_type == "text/html":
            html_chunks.append(content)

    text = _collapse_chunks(plain_chunks, "\n\n")
    html = _collapse_chunks(html_chunks, "\n")
    return text, html


def _try_parse_datetime(header_value: str | None) -> datetime | None:
    if header_value is None:
        return None
    try:
        return ensure_utc(parsedate_to_datetime(str(header_value)))
    except (TypeError, ValueError):
        return None


__all__ = ["MessageNormalizer", "NormalizationError"]
