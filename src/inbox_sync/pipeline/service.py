"""Process-level owner of every per-account pipeline."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import Any

from ..core.config import AppSettings
from ..core.interfaces import (
    Categorizer,
    MessageNormalizerProtocol,
    MessageRepository,
    Notifier,
    PersistenceError,
)
from ..ingestion.connector import MailboxConnector, SessionFactory
from ..ingestion.normalizer import MessageNormalizer
from ..intelligence.category import RuleBasedCategorizer
from ..notification import WebhookNotifier
from ..storage import SqliteMessageRepository
from .coordinator import PipelineCoordinator

LOGGER = logging.getLogger(__name__)


class StartupError(RuntimeError):
    """Raised when a dependency required to run cannot be initialised."""


def open_repository(settings: AppSettings) -> SqliteMessageRepository:
    """Open the message store or raise :class:`StartupError`."""
    try:
        return SqliteMessageRepository(settings.storage)
    except (sqlite3.Error, OSError, PersistenceError) as exc:
        raise StartupError(
            f"Unable to open message store at {settings.storage.db_path}: {exc}"
        ) from exc


def build_notifier(settings: AppSettings) -> Notifier | None:
    """Return a notifier when at least one channel is configured."""
    notification = settings.notification
    if not (notification.slack_webhook_url or notification.webhook_url):
        LOGGER.info("No notification channels configured")
        return None
    return WebhookNotifier(notification)


class SyncService:
    """Bind one connector and coordinator to each usable account."""

    def __init__(
        self,
        settings: AppSettings,
        repository: MessageRepository,
        *,
        notifier: Notifier | None = None,
        normalizer: MessageNormalizerProtocol | None = None,
        categorizer: Categorizer | None = None,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self._settings = settings
        self._repository = repository
        self._notifier = notifier
        self._normalizer = normalizer or MessageNormalizer()
        self._categorizer = categorizer or RuleBasedCategorizer()
        self._session_factory = session_factory
        self._coordinators: dict[str, PipelineCoordinator] = {}
        self._started = False
        self._build_coordinators()

    @property
    def coordinators(self) -> dict[str, PipelineCoordinator]:
        """Coordinators keyed by account id (a copy)."""
        return dict(self._coordinators)

    @property
    def is_running(self) -> bool:
        """``True`` between :meth:`start` and :meth:`stop`."""
        return self._started

    async def start(self) -> None:
        """Start every coordinator."""
        if self._started:
            return
        if not self._coordinators:
            LOGGER.warning("No accounts with credentials configured; nothing to sync")
        for coordinator in self._coordinators.values():
            await coordinator.start()
        self._started = True
        LOGGER.info("Sync service started with %s account(s)", len(self._coordinators))

    async def stop(self) -> None:
        """Stop every coordinator concurrently."""
        if not self._started:
            return
        self._started = False
        await asyncio.gather(
            *(coordinator.stop() for coordinator in self._coordinators.values())
        )
        LOGGER.info("Sync service stopped")

    def status(self) -> list[dict[str, Any]]:
        """Return a JSON-ready snapshot of each account pipeline."""
        snapshot: list[dict[str, Any]] = []
        for account_id, coordinator in self._coordinators.items():
            connector = coordinator.connector
            snapshot.append(
                {
                    "id": account_id,
                    "folder": connector.folder if connector else None,
                    "connection": connector.state.value if connector else None,
                    "coordinator": coordinator.state.value,
                    "connects": connector.connect_count if connector else 0,
                    "persisted": coordinator.stats.persisted,
                    "skipped": coordinator.stats.skipped,
                    "failed": coordinator.stats.failed,
                }
            )
        return snapshot

    def _build_coordinators(self) -> None:
        sync = self._settings.sync
        for account in self._settings.accounts:
            if not account.has_credentials:
                LOGGER.warning(
                    "Skipping account %s: username or app password missing",
                    account.id,
                )
                continue
            if account.id in self._coordinators:
                LOGGER.warning("Skipping duplicate account id %s", account.id)
                continue
            connector = MailboxConnector(
                account, sync, session_factory=self._session_factory
            )
            coordinator = PipelineCoordinator(
                self._repository,
                self._normalizer,
                self._categorizer,
                notifier=self._notifier,
                persistence_timeout=sync.persistence_timeout_seconds,
                notification_timeout=self._settings.notification.timeout_seconds,
            )
            coordinator.bind(connector)
            self._coordinators[account.id] = coordinator


__all__ = ["StartupError", "SyncService", "build_notifier", "open_repository"]
