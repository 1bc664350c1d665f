"""SQLite-backed message repository implementation."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections import Counter
from datetime import datetime
from pathlib import Path
from types import TracebackType
from typing import cast

from ..core.config import StorageSettings
from ..core.datetime_utils import parse_datetime, serialize_datetime, utcnow
from ..core.interfaces import MessageRepository, PersistenceError
from ..core.models import (
    Category,
    MailboxStatistics,
    Message,
    SearchFilter,
)

LOGGER = logging.getLogger(__name__)

_SELECT_COLUMNS = """
    SELECT
        id,
        account_id,
        folder,
        sender,
        to_recipients,
        subject,
        body,
        html,
        date,
        protocol_sequence_id,
        category
    FROM messages
"""


class SqliteMessageRepository(MessageRepository):
    """Persist canonical messages using SQLite.

    A single connection is shared by every coordinator; a lock serialises
    access so worker threads can call in concurrently.
    """

    def __init__(self, settings: StorageSettings) -> None:
        """Initialise the repository and apply migrations."""
        self._settings = settings
        self._lock = threading.Lock()
        db_path = Path(settings.db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = sqlite3.connect(
            db_path,
            detect_types=sqlite3.PARSE_DECLTYPES,
            check_same_thread=False,
        )
        self._connection.row_factory = sqlite3.Row
        self._apply_migrations()

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> SqliteMessageRepository:
        """Enter context manager scope."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure the connection is closed when exiting context manager."""
        self.close()

    # MessageRepository API ---------------------------------------------------
    def put_message(self, message: Message) -> None:
        """Insert or update the stored record for ``message``."""
        LOGGER.debug("Persisting message %s", message.id)

        if not message.id:
            raise ValueError("Message id is required")
        if not message.account_id:
            raise ValueError("Message account id is required")

        try:
            with self._lock, self._connection:
                self._connection.execute(
                    """
                    INSERT INTO messages (
                        id,
                        account_id,
                        folder,
                        sender,
                        to_recipients,
                        subject,
                        body,
                        html,
                        date,
                        protocol_sequence_id,
                        category,
                        stored_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        account_id=excluded.account_id,
                        folder=excluded.folder,
                        sender=excluded.sender,
                        to_recipients=excluded.to_recipients,
                        subject=excluded.subject,
                        body=excluded.body,
                        html=excluded.html,
                        date=excluded.date,
                        protocol_sequence_id=excluded.protocol_sequence_id,
                        category=excluded.category,
                        stored_at=excluded.stored_at
                    """,
                    (
                        message.id,
                        message.account_id,
                        message.folder,
                        message.sender,
                        json.dumps(list(message.to)),
                        message.subject,
                        message.body,
                        message.html,
                        serialize_datetime(message.date),
                        message.protocol_sequence_id,
                        message.category.value if message.category else None,
                        serialize_datetime(utcnow()),
                    ),
                )
        except sqlite3.Error as exc:
            LOGGER.error(
                "Database error persisting message %s: %s",
                message.id,
                exc,
                exc_info=True,
            )
            raise PersistenceError(f"Failed to persist message {message.id}") from exc

    def get_message(self, message_id: str) -> Message | None:
        """Retrieve a stored message."""
        with self._lock:
            cur = self._connection.execute(
                _SELECT_COLUMNS + " WHERE id = ?",
                (message_id,),
            )
            row = cur.fetchone()
        if row is None:
            return None
        return _row_to_message(row)

    def search(self, criteria: SearchFilter) -> list[Message]:
        """Return messages matching ``criteria`` ordered newest first."""
        conditions: list[str] = []
        params: list[object] = []
        if criteria.text:
            for term in criteria.text.split():
                conditions.append(
                    "(subject LIKE ? ESCAPE '\\' OR body LIKE ? ESCAPE '\\' "
                    "OR sender LIKE ? ESCAPE '\\')"
                )
                pattern = f"%{_escape_like(term)}%"
                params.extend((pattern, pattern, pattern))
        if criteria.folder is not None:
            conditions.append("folder = ?")
            params.append(criteria.folder)
        if criteria.account_id is not None:
            conditions.append("account_id = ?")
            params.append(criteria.account_id)
        if criteria.category is not None:
            conditions.append("category = ?")
            params.append(criteria.category.value)

        query = [_SELECT_COLUMNS]
        if conditions:
            query.append(" WHERE ")
            query.append(" AND ".join(conditions))
        query.append(" ORDER BY date DESC, rowid DESC LIMIT ? OFFSET ?")
        params.append(criteria.limit if criteria.limit is not None else -1)
        params.append(max(criteria.offset, 0))

        with self._lock:
            cur = self._connection.execute("".join(query), params)
            rows = cur.fetchall()
        return [_row_to_message(row) for row in rows]

    def update_category(self, message_id: str, category: Category) -> bool:
        """Overwrite the stored category. Returns ``False`` for unknown ids."""
        LOGGER.debug("Updating category for %s to %s", message_id, category.value)
        try:
            with self._lock, self._connection:
                cur = self._connection.execute(
                    "UPDATE messages SET category = ? WHERE id = ?",
                    (category.value, message_id),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(
                f"Failed to update category for message {message_id}"
            ) from exc
        return cur.rowcount > 0

    def statistics(self) -> MailboxStatistics:
        """Return totals grouped by category, account, and folder."""
        with self._lock:
            rows = self._connection.execute(
                "SELECT account_id, folder, category FROM messages"
            ).fetchall()
        by_category: Counter[str] = Counter()
        by_account: Counter[str] = Counter()
        by_folder: Counter[str] = Counter()
        for row in rows:
            by_category[row["category"] or Category.UNCATEGORIZED.value] += 1
            by_account[row["account_id"]] += 1
            by_folder[row["folder"]] += 1
        return MailboxStatistics(
            total=len(rows),
            by_category=dict(by_category),
            by_account=dict(by_account),
            by_folder=dict(by_folder),
        )

    def count_messages(self) -> int:
        """Return the number of stored messages."""
        with self._lock:
            row = self._connection.execute("SELECT COUNT(*) FROM messages").fetchone()
        return int(row[0])

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        with self._lock:
            self._connection.close()

    # Internal helpers --------------------------------------------------------
    def _apply_migrations(self) -> None:
        schema_dir = Path(__file__).resolve().parent / "schema"
        migrations = sorted(schema_dir.glob("*.sql"))
        for migration in migrations:
            LOGGER.debug("Applying migration %s", migration.name)
            script = migration.read_text(encoding="utf-8")
            with self._connection:
                self._connection.executescript(script)


def _row_to_message(row: sqlite3.Row) -> Message:
    raw_category = row["category"]
    return Message(
        id=row["id"],
        account_id=row["account_id"],
        folder=row["folder"],
        sender=row["sender"],
        to=tuple(str(item) for item in json.loads(row["to_recipients"] or "[]")),
        subject=row["subject"],
        body=row["body"],
        html=row["html"],
        date=cast(datetime, parse_datetime(row["date"])),
        protocol_sequence_id=row["protocol_sequence_id"],
        category=Category(raw_category) if raw_category else None,
    )


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


__all__ = ["SqliteMessageRepository"]
