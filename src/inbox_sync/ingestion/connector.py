"""Long-lived mailbox connector: backlog fetch, IDLE watch, reconnection."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from datetime import datetime, timedelta

from ..core.config import AccountSettings, SyncSettings
from ..core.datetime_utils import utcnow
from ..core.interfaces import MailboxSession
from ..core.models import ConnectionState, MessageChunk, RawMessage
from ..transport import ImapClient, ImapError

LOGGER = logging.getLogger(__name__)

SessionFactory = Callable[[AccountSettings], MailboxSession]


class MailboxConnector:
    """Own one session to one remote folder and surface raw messages.

    After :meth:`connect` the connector runs as a background task:

    1. open the session (``CONNECTING`` then ``READY``),
    2. fetch the backlog of messages newer than ``backlog_days``,
    3. hold IMAP IDLE (``WATCHING``) and fetch unseen mail on every push,
       re-selecting the folder once per keep-alive interval.

    Any session fault closes the session, moves to ``DISCONNECTED`` and
    retries the whole flow after ``reconnect_delay_seconds``. Raw messages are
    delivered through :attr:`events`, a bounded queue.
    """

    def __init__(
        self,
        account: AccountSettings,
        sync: SyncSettings,
        *,
        session_factory: SessionFactory | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._account = account
        self._sync = sync
        self._session_factory = session_factory or self._default_session
        self._clock = clock
        self._events: asyncio.Queue[RawMessage] = asyncio.Queue(
            maxsize=sync.queue_size
        )
        self._state = ConnectionState.DISCONNECTED
        self._task: asyncio.Task[None] | None = None
        self._session: MailboxSession | None = None
        self._stopping = False
        self._reconnect_pending = False
        self._emitted: set[int] = set()
        self.connect_count = 0

    @property
    def account_id(self) -> str:
        """Identifier of the account this connector serves."""
        return self._account.id

    @property
    def folder(self) -> str:
        """Folder being watched."""
        return self._account.mailbox

    @property
    def state(self) -> ConnectionState:
        """Current session state."""
        return self._state

    @property
    def events(self) -> asyncio.Queue[RawMessage]:
        """Queue of raw messages ready for normalization."""
        return self._events

    @property
    def is_running(self) -> bool:
        """``True`` while the background task is alive."""
        return self._task is not None and not self._task.done()

    # Public API ---------------------------------------------------------------
    def connect(self) -> None:
        """Start the session task; a no-op while it is already running.

        Must be called from inside the running event loop.
        """
        if self.is_running:
            return
        self._stopping = False
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"connector:{self.account_id}"
        )

    async def disconnect(self) -> None:
        """Stop emitting, cancel pending reconnection, and close the session."""
        self._stopping = True
        task = self._task
        if task is None:
            return
        if self._reconnect_pending:
            task.cancel()
        done, _ = await asyncio.wait({task}, timeout=self._sync.shutdown_grace_seconds)
        if not done:
            LOGGER.warning(
                "Connector %s did not stop within %.1fs; cancelling",
                self.account_id,
                self._sync.shutdown_grace_seconds,
            )
            task.cancel()
            await asyncio.wait({task})
        self._task = None
        LOGGER.info("Connector %s disconnected", self.account_id)

    # Session lifecycle --------------------------------------------------------
    async def _run(self) -> None:
        while not self._stopping:
            try:
                await self._session_lifetime()
            except (ImapError, OSError) as exc:
                LOGGER.warning(
                    "Connection fault for account %s: %s", self.account_id, exc
                )
            except Exception:  # pylint: disable=broad-except
                LOGGER.exception(
                    "Unexpected connector failure for account %s", self.account_id
                )
            finally:
                await self._close_session()
                self._set_state(ConnectionState.DISCONNECTED)

            if self._stopping:
                break
            LOGGER.info(
                "Reconnecting account %s in %.1fs",
                self.account_id,
                self._sync.reconnect_delay_seconds,
            )
            self._reconnect_pending = True
            try:
                await asyncio.sleep(self._sync.reconnect_delay_seconds)
            finally:
                self._reconnect_pending = False

    async def _session_lifetime(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        session = self._session_factory(self._account)
        self._session = session
        await asyncio.to_thread(session.connect)
        self.connect_count += 1
        self._emitted = set()
        self._set_state(ConnectionState.READY)
        LOGGER.info(
            "Mailbox %s ready for account %s", session.mailbox, self.account_id
        )

        await self._fetch_backlog(session)
        if self._stopping:
            return
        self._set_state(ConnectionState.WATCHING)
        await self._watch(session)

    async def _close_session(self) -> None:
        session = self._session
        self._session = None
        if session is None:
            return
        try:
            await asyncio.to_thread(session.close)
        except (ImapError, OSError) as exc:
            LOGGER.debug("Ignoring error while closing %s: %s", self.account_id, exc)

    # Fetching -----------------------------------------------------------------
    async def _fetch_backlog(self, session: MailboxSession) -> None:
        since = self._clock() - timedelta(days=self._account.backlog_days)
        uids = await asyncio.to_thread(session.search_since, since)
        if not uids:
            LOGGER.info(
                "No messages in the last %s day(s) for account %s",
                self._account.backlog_days,
                self.account_id,
            )
            return
        LOGGER.info("Found %s backlog message(s) for %s", len(uids), self.account_id)
        await self._emit(session, uids)

    async def _watch(self, session: MailboxSession) -> None:
        interval = self._sync.keepalive_interval_seconds
        next_keepalive = time.monotonic() + interval
        LOGGER.info("Watching %s for account %s", session.mailbox, self.account_id)
        while not self._stopping:
            timeout = next_keepalive - time.monotonic()
            arrivals = 0
            if timeout > 0:
                arrivals = await asyncio.to_thread(
                    session.idle, timeout, self._should_stop
                )
            if self._stopping:
                break
            if time.monotonic() >= next_keepalive:
                arrivals += await asyncio.to_thread(session.keepalive)
                next_keepalive = time.monotonic() + interval
            if not arrivals:
                continue
            LOGGER.info(
                "%s new message(s) received for account %s", arrivals, self.account_id
            )
            uids = await asyncio.to_thread(session.search_unseen)
            await self._emit(session, uids)

    async def _emit(self, session: MailboxSession, uids: Sequence[int]) -> None:
        pending = [uid for uid in uids if uid not in self._emitted]
        for batch in _chunked(pending, self._sync.batch_size):
            if self._stopping:
                return
            chunks = await asyncio.to_thread(_fetch_all, session, batch)
            for chunk in chunks:
                if self._stopping:
                    return
                if chunk.uid is not None:
                    self._emitted.add(chunk.uid)
                await self._events.put(
                    RawMessage(
                        account_id=self.account_id,
                        folder=session.mailbox,
                        sequence_number=chunk.sequence_number,
                        uid=chunk.uid,
                        raw=chunk.raw,
                    )
                )

    # Internal helpers ---------------------------------------------------------
    def _should_stop(self) -> bool:
        return self._stopping

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            LOGGER.debug(
                "Connector %s: %s -> %s", self.account_id, self._state.value, state.value
            )
        self._state = state

    def _default_session(self, account: AccountSettings) -> MailboxSession:
        return ImapClient(account, poll_seconds=self._sync.idle_poll_seconds)


def _fetch_all(session: MailboxSession, uids: Sequence[int]) -> list[MessageChunk]:
    return list(session.fetch_messages(uids))


def _chunked(items: Iterable[int], size: int) -> Iterator[list[int]]:
    """Yield successive lists of ``size`` elements."""
    bucket: list[int] = []
    for item in items:
        bucket.append(item)
        if len(bucket) >= size:
            yield bucket
            bucket = []
    if bucket:
        yield bucket


__all__ = ["MailboxConnector", "SessionFactory"]
