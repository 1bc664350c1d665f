"""Per-account wiring from connector to store and notifications."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from ..core.interfaces import (
    Categorizer,
    MessageNormalizerProtocol,
    MessageRepository,
    Notifier,
)
from ..core.models import Category, CoordinatorState, Message, RawMessage
from ..ingestion.connector import MailboxConnector
from ..ingestion.normalizer import NormalizationError

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class CoordinatorStats:
    """Running counters for one coordinator."""

    received: int = 0
    persisted: int = 0
    skipped: int = 0
    failed: int = 0
    notified: int = 0


class PipelineCoordinator:
    """Normalize, categorize, persist, and notify for a single account.

    Lifecycle is ``IDLE -> CONNECTOR_BOUND -> RUNNING -> STOPPED``; ``STOPPED``
    is terminal. Connector faults never stop the coordinator because the
    connector reconnects on its own.
    """

    def __init__(
        self,
        repository: MessageRepository,
        normalizer: MessageNormalizerProtocol,
        categorizer: Categorizer,
        *,
        notifier: Notifier | None = None,
        persistence_timeout: float = 10.0,
        notification_timeout: float = 10.0,
    ) -> None:
        self._repository = repository
        self._normalizer = normalizer
        self._categorizer = categorizer
        self._notifier = notifier
        self._persistence_timeout = persistence_timeout
        self._notification_timeout = notification_timeout
        self._connector: MailboxConnector | None = None
        self._state = CoordinatorState.IDLE
        self._consumer: asyncio.Task[None] | None = None
        self._handlers: set[asyncio.Task[None]] = set()
        self._notifications: set[asyncio.Task[None]] = set()
        self.stats = CoordinatorStats()

    @property
    def state(self) -> CoordinatorState:
        """Current lifecycle state."""
        return self._state

    @property
    def connector(self) -> MailboxConnector | None:
        """The bound connector, if any."""
        return self._connector

    @property
    def account_id(self) -> str | None:
        """Account served by the bound connector."""
        return self._connector.account_id if self._connector else None

    def bind(self, connector: MailboxConnector) -> None:
        """Attach the connector whose events this coordinator consumes."""
        if self._state is not CoordinatorState.IDLE:
            raise RuntimeError(f"Cannot bind a connector while {self._state.value}")
        self._connector = connector
        self._state = CoordinatorState.CONNECTOR_BOUND

    async def start(self) -> None:
        """Connect the bound connector and begin consuming its events."""
        if self._state is CoordinatorState.RUNNING:
            return
        if self._state is not CoordinatorState.CONNECTOR_BOUND or self._connector is None:
            raise RuntimeError(f"Cannot start a coordinator while {self._state.value}")
        connector = self._connector
        self._consumer = asyncio.create_task(
            self._consume(connector), name=f"coordinator:{connector.account_id}"
        )
        connector.connect()
        self._state = CoordinatorState.RUNNING
        LOGGER.info("Coordinator started for account %s", connector.account_id)

    async def stop(self) -> None:
        """Disconnect, finish in-flight work, and enter the terminal state."""
        if self._state is CoordinatorState.STOPPED:
            return
        self._state = CoordinatorState.STOPPED
        if self._connector is not None:
            await self._connector.disconnect()
        if self._consumer is not None:
            self._consumer.cancel()
            await asyncio.wait({self._consumer})
            self._consumer = None
        pending = self._handlers | self._notifications
        if pending:
            await asyncio.wait(pending)
        LOGGER.info(
            "Coordinator stopped for account %s (persisted=%s, skipped=%s, failed=%s)",
            self.account_id,
            self.stats.persisted,
            self.stats.skipped,
            self.stats.failed,
        )

    async def drain(self) -> None:
        """Wait until every queued event and scheduled task has been handled."""
        if self._connector is not None:
            await self._connector.events.join()
        while self._handlers or self._notifications:
            await asyncio.wait(self._handlers | self._notifications)

    async def _consume(self, connector: MailboxConnector) -> None:
        while True:
            raw = await connector.events.get()
            self.stats.received += 1
            task = asyncio.create_task(self._handle_event(connector, raw))
            self._handlers.add(task)
            task.add_done_callback(self._handlers.discard)

    async def _handle_event(self, connector: MailboxConnector, raw: RawMessage) -> None:
        try:
            await self.process(raw)
        except Exception:  # pylint: disable=broad-except
            self.stats.failed += 1
            LOGGER.exception(
                "Unexpected failure handling message from %s", raw.account_id
            )
        finally:
            connector.events.task_done()

    async def process(self, raw: RawMessage) -> Message | None:
        """Run one raw message through the pipeline; ``None`` when dropped."""
        try:
            message = self._normalizer.normalize(raw)
        except NormalizationError as exc:
            self.stats.skipped += 1
            LOGGER.error("Skipping unparseable message: %s", exc, exc_info=True)
            return None

        message.category = self._categorizer.categorize(message)

        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._repository.put_message, message),
                timeout=self._persistence_timeout,
            )
        except Exception as exc:  # pylint: disable=broad-except
            self.stats.failed += 1
            LOGGER.error(
                "Failed to persist message %s; dropping it: %s",
                message.id,
                exc,
                exc_info=True,
            )
            return None

        self.stats.persisted += 1
        LOGGER.info(
            "Message processed: %s [%s]", message.subject, message.category.value
        )

        if message.category is Category.INTERESTED and self._notifier is not None:
            task = asyncio.create_task(self._notify(message))
            self._notifications.add(task)
            task.add_done_callback(self._notifications.discard)
        return message

    async def _notify(self, message: Message) -> None:
        assert self._notifier is not None
        try:
            await asyncio.wait_for(
                self._notifier.notify(message), timeout=self._notification_timeout
            )
            self.stats.notified += 1
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.warning("Notification failed for message %s: %s", message.id, exc)


__all__ = ["CoordinatorStats", "PipelineCoordinator"]
