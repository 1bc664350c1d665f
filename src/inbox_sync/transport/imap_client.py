"""IMAP transport adapter providing mailbox access."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from datetime import datetime
from types import TracebackType
from typing import Any

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientError

from ..core.config import AccountSettings
from ..core.datetime_utils import imap_date
from ..core.interfaces import MailboxSession
from ..core.models import MessageChunk

LOGGER = logging.getLogger(__name__)


class ImapError(RuntimeError):
    """Wrap low level IMAP errors with additional context."""


class ImapClient(MailboxSession):
    """Thin wrapper around ``imapclient`` offering typed fetch helpers."""

    def __init__(
        self,
        settings: AccountSettings,
        mailbox: str | None = None,
        *,
        poll_seconds: float = 1.0,
    ) -> None:
        """Initialise the client with account settings and mailbox."""
        self._settings = settings
        self._connection: IMAPClient | None = None
        self._exists = 0
        self._poll_seconds = poll_seconds
        self.mailbox = mailbox or settings.mailbox

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> ImapClient:
        """Connect on entering a context manager scope."""
        self.connect()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure resources are released on context exit."""
        self.close()

    # Public API ---------------------------------------------------------------
    def connect(self) -> None:
        """Establish IMAP connection and select the configured mailbox."""
        if self._connection is not None:
            return

        username = self._settings.username
        password = self._settings.app_password
        if not username or not password:
            raise ImapError("IMAP credentials are not configured")

        try:
            LOGGER.debug(
                "Connecting to IMAP host %s:%s (ssl=%s)",
                self._settings.host,
                self._settings.port,
                self._settings.use_ssl,
            )
            connection = IMAPClient(
                self._settings.host,
                port=self._settings.port,
                ssl=self._settings.use_ssl,
            )
            LOGGER.debug("Authenticating as %s", username)
            connection.login(username, password)
            if not connection.has_capability("IDLE"):
                LOGGER.warning(
                    "IMAP host %s does not advertise IDLE", self._settings.host
                )
            self._exists = _select(connection, self.mailbox)
            self._connection = connection
        except (IMAPClientError, OSError) as exc:  # pragma: no cover - network dependent
            raise ImapError("Failed to connect to IMAP server") from exc

    def search_since(self, since: datetime) -> list[int]:
        """Return UIDs of messages with an internal date on or after ``since``."""
        criteria = imap_date(since)
        LOGGER.debug("Searching %s for messages SINCE %s", self.mailbox, criteria)
        return self._uid_search(["SINCE", criteria])

    def search_unseen(self) -> list[int]:
        """Return UIDs of messages without the ``\\Seen`` flag."""
        LOGGER.debug("Searching %s for UNSEEN messages", self.mailbox)
        return self._uid_search(["UNSEEN"])

    def fetch_messages(self, uids: Sequence[int]) -> Iterable[MessageChunk]:
        """Yield RFC822 payloads for ``uids`` in the order requested."""
        connection = self._require_connection()

        def generator() -> Iterator[MessageChunk]:
            for uid in uids:
                LOGGER.debug("Fetching RFC822 payload for UID %s", uid)
                try:
                    response = connection.fetch([uid], ["RFC822"])
                except (IMAPClientError, OSError) as exc:
                    raise ImapError(f"IMAP error while fetching UID {uid}") from exc
                chunk = _extract_chunk(uid, response)
                if chunk is None:
                    LOGGER.warning("No RFC822 payload returned for UID %s", uid)
                    continue
                yield chunk

        return generator()

    def idle(self, timeout: float, should_stop: Callable[[], bool]) -> int:
        """Hold an IMAP IDLE for up to ``timeout`` seconds.

        Returns as soon as the server announces new messages, when
        ``should_stop`` turns true, or when the timeout elapses. The return
        value is the number of messages that arrived while idling.
        """
        connection = self._require_connection()
        arrivals = 0
        try:
            connection.idle()
            try:
                deadline = time.monotonic() + timeout
                while arrivals == 0 and not should_stop():
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    responses = connection.idle_check(
                        timeout=min(remaining, self._poll_seconds)
                    )
                    arrivals += self._track_responses(responses)
            finally:
                _, responses = connection.idle_done()
            arrivals += self._track_responses(responses)
        except (IMAPClientError, OSError) as exc:
            raise ImapError("IMAP error while idling") from exc

        if arrivals:
            LOGGER.debug("IDLE reported %s new message(s) in %s", arrivals, self.mailbox)
        return arrivals

    def keepalive(self) -> int:
        """Re-select the mailbox and return how many messages appeared since."""
        connection = self._require_connection()
        try:
            exists = _select(connection, self.mailbox)
        except (IMAPClientError, OSError) as exc:
            raise ImapError("IMAP error during keep-alive") from exc
        arrivals = max(exists - self._exists, 0)
        self._exists = exists
        return arrivals

    def close(self) -> None:
        """Terminate the IMAP session cleanly."""
        if self._connection is None:
            return
        try:
            LOGGER.debug("Closing IMAP connection")
            self._connection.close_folder()
        except (IMAPClientError, OSError):  # pragma: no cover - depends on server state
            LOGGER.debug("IMAP close raised; continuing with logout")
        finally:
            try:
                self._connection.logout()
            except (IMAPClientError, OSError):  # pragma: no cover
                LOGGER.debug("IMAP logout raised; suppressing during shutdown")
            self._connection = None

    # Internal helpers ---------------------------------------------------------
    def _require_connection(self) -> IMAPClient:
        if self._connection is None:
            raise ImapError("IMAP connection has not been established")
        return self._connection

    def _uid_search(self, criteria: list[str]) -> list[int]:
        connection = self._require_connection()
        try:
            uids = connection.search(criteria)
        except (IMAPClientError, OSError) as exc:
            raise ImapError("IMAP error while searching") from exc
        return [int(uid) for uid in uids]

    def _track_responses(self, responses: Iterable[Any]) -> int:
        arrivals = 0
        for response in responses:
            if not isinstance(response, tuple) or len(response) < 2:
                continue
            value, kind = response[0], response[1]
            if not isinstance(value, int):
                continue
            if kind == b"EXPUNGE":
                self._exists = max(self._exists - 1, 0)
            elif kind == b"EXISTS":
                arrivals += max(value - self._exists, 0)
                self._exists = value
        return arrivals


def _select(connection: IMAPClient, mailbox: str) -> int:
    info = connection.select_folder(mailbox)
    try:
        return int(info.get(b"EXISTS", 0))
    except (TypeError, ValueError):
        return 0


def _extract_chunk(
    uid: int, response: dict[int, dict[bytes, Any]]
) -> MessageChunk | None:
    """Build a chunk from an ``imapclient`` fetch response for ``uid``."""
    data = response.get(uid)
    if not data or b"RFC822" not in data:
        return None
    return MessageChunk(
        sequence_number=int(data.get(b"SEQ", 0)),
        uid=uid,
        raw=data[b"RFC822"],
    )


__all__ = [
    "ImapClient",
    "ImapError",
]
