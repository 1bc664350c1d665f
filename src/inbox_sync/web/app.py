"""FastAPI application exposing stored messages as JSON."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Query, Request, status as http_status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from inbox_sync.core import AppSettings, load_app_settings
from inbox_sync.core.datetime_utils import serialize_datetime, utcnow
from inbox_sync.core.interfaces import MessageRepository, PersistenceError
from inbox_sync.core.models import (
    Category,
    ContextSnippet,
    MailboxStatistics,
    Message,
    SearchFilter,
)
from inbox_sync.intelligence import ReplyRetrievalEngine, build_reply_engine
from inbox_sync.pipeline import SyncService, build_notifier, open_repository

DEFAULT_SIZE = 900

LOGGER = logging.getLogger(__name__)


class CategoryUpdate(BaseModel):
    """Body of a manual category correction."""

    category: str


class SnippetCreate(BaseModel):
    """Body of a new context snippet."""

    id: str = Field(min_length=1)
    content: str = Field(min_length=1)


def create_app(
    settings: AppSettings | None = None,
    *,
    repository: MessageRepository | None = None,
    reply_engine: ReplyRetrievalEngine | None = None,
    service: SyncService | None = None,
    run_sync: bool = False,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Missing collaborators are built from ``settings`` when the application
    starts. With ``run_sync`` the ingestion pipeline runs for the lifetime of
    the application.
    """
    app_settings = settings or load_app_settings(env_file=".env")

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owns_repository = repository is None
        store = repository if repository is not None else open_repository(app_settings)
        app.state.repository = store
        app.state.reply_engine = reply_engine or build_reply_engine(app_settings)
        sync_service = service
        if sync_service is None and run_sync:
            sync_service = SyncService(
                app_settings, store, notifier=build_notifier(app_settings)
            )
        app.state.sync_service = sync_service
        if run_sync and sync_service is not None:
            await sync_service.start()
        try:
            yield
        finally:
            if run_sync and sync_service is not None:
                await sync_service.stop()
            if owns_repository:
                store.close()
                LOGGER.info("Message store closed")

    app = FastAPI(title="Inbox Sync", lifespan=lifespan)

    def get_repository(request: Request) -> MessageRepository:
        return request.app.state.repository

    def get_reply_engine(request: Request) -> ReplyRetrievalEngine:
        return request.app.state.reply_engine

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(
        _request: Request, exc: PersistenceError
    ) -> JSONResponse:
        LOGGER.error("Message store failure: %s", exc)
        return _failure(http_status.HTTP_500_INTERNAL_SERVER_ERROR, "Storage failure")

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        return {
            "success": True,
            "message": "Inbox sync is running",
            "timestamp": serialize_datetime(utcnow()),
        }

    @app.get("/api/emails", response_model=None)
    async def search_emails(
        query: str | None = None,
        folder: str | None = None,
        account_id: str | None = Query(default=None, alias="accountId"),
        category: str | None = None,
        offset: int = Query(default=0, alias="from", ge=0),
        size: int = Query(default=DEFAULT_SIZE, ge=1),
        repository: MessageRepository = Depends(get_repository),  # noqa: B008
    ) -> dict[str, Any] | JSONResponse:
        """Search stored messages, newest first."""
        parsed_category: Category | None = None
        if category:
            try:
                parsed_category = Category.parse(category)
            except ValueError:
                return _failure(http_status.HTTP_400_BAD_REQUEST, "Invalid category")
        criteria = SearchFilter(
            text=query or None,
            folder=folder or None,
            account_id=account_id or None,
            category=parsed_category,
            offset=offset,
            limit=size,
        )
        messages = repository.search(criteria)
        return {
            "success": True,
            "count": len(messages),
            "emails": [_serialize_message(message) for message in messages],
        }

    @app.get("/api/emails/{message_id}", response_model=None)
    async def get_email(
        message_id: str,
        repository: MessageRepository = Depends(get_repository),  # noqa: B008
    ) -> dict[str, Any] | JSONResponse:
        message = repository.get_message(message_id)
        if message is None:
            return _failure(http_status.HTTP_404_NOT_FOUND, "Email not found")
        return {"success": True, "email": _serialize_message(message)}

    @app.get("/api/emails/{message_id}/reply", response_model=None)
    async def suggest_reply(
        message_id: str,
        repository: MessageRepository = Depends(get_repository),  # noqa: B008
        engine: ReplyRetrievalEngine = Depends(get_reply_engine),  # noqa: B008
    ) -> dict[str, Any] | JSONResponse:
        """Suggest a reply grounded on the stored context snippets."""
        message = repository.get_message(message_id)
        if message is None:
            return _failure(http_status.HTTP_404_NOT_FOUND, "Email not found")
        suggestion = await asyncio.to_thread(engine.suggest_reply, message)
        return {
            "success": True,
            "email": _serialize_message(message),
            "suggestedReply": suggestion.reply,
            "confidence": suggestion.confidence,
            "provider": suggestion.provider,
            "usedFallback": suggestion.used_fallback,
            "context": [_serialize_snippet(item) for item in suggestion.context],
        }

    @app.put("/api/emails/{message_id}/category", response_model=None)
    async def update_category(
        message_id: str,
        payload: CategoryUpdate,
        repository: MessageRepository = Depends(get_repository),  # noqa: B008
    ) -> dict[str, Any] | JSONResponse:
        """Apply a manual category correction."""
        try:
            category = Category.parse(payload.category)
        except ValueError:
            return _failure(http_status.HTTP_400_BAD_REQUEST, "Invalid category")
        if not repository.update_category(message_id, category):
            return _failure(http_status.HTTP_404_NOT_FOUND, "Email not found")
        LOGGER.info("Category for %s set to %s", message_id, category.value)
        return {
            "success": True,
            "message": "Category updated successfully",
            "category": category.value,
        }

    @app.get("/api/statistics")
    async def statistics(
        repository: MessageRepository = Depends(get_repository),  # noqa: B008
    ) -> dict[str, Any]:
        return {
            "success": True,
            "statistics": _serialize_statistics(repository.statistics()),
        }

    @app.get("/api/accounts")
    async def accounts(request: Request) -> dict[str, Any]:
        """Report connection and coordinator state per account."""
        sync_service: SyncService | None = request.app.state.sync_service
        return {
            "success": True,
            "running": bool(sync_service and sync_service.is_running),
            "accounts": sync_service.status() if sync_service else [],
        }

    @app.get("/api/context")
    async def list_context(
        engine: ReplyRetrievalEngine = Depends(get_reply_engine),  # noqa: B008
    ) -> dict[str, Any]:
        return {
            "success": True,
            "snippets": [_serialize_snippet(item) for item in engine.snippets],
        }

    @app.post("/api/context", status_code=http_status.HTTP_201_CREATED)
    async def add_context(
        payload: SnippetCreate,
        engine: ReplyRetrievalEngine = Depends(get_reply_engine),  # noqa: B008
    ) -> dict[str, Any]:
        """Append a context snippet used for reply suggestions."""
        snippet = engine.add_snippet(payload.id, payload.content)
        return {"success": True, "snippet": _serialize_snippet(snippet)}

    return app


def _failure(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content={"success": False, "error": error}
    )


def _serialize_message(message: Message) -> dict[str, Any]:
    return {
        "id": message.id,
        "accountId": message.account_id,
        "folder": message.folder,
        "from": message.sender,
        "to": list(message.to),
        "subject": message.subject,
        "body": message.body,
        "html": message.html,
        "date": serialize_datetime(message.date),
        "uid": message.protocol_sequence_id,
        "category": message.category.value if message.category else None,
    }


def _serialize_snippet(snippet: ContextSnippet) -> dict[str, str]:
    return {"id": snippet.id, "content": snippet.content}


def _serialize_statistics(stats: MailboxStatistics) -> dict[str, Any]:
    return {
        "total": stats.total,
        "byCategory": stats.by_category,
        "byAccount": stats.by_account,
        "byFolder": stats.by_folder,
    }


__all__ = ["create_app"]
