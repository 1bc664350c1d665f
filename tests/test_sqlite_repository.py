"""Tests for the SQLite message repository."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from inbox_sync.core.config import StorageSettings
from inbox_sync.core.models import Category, Message, SearchFilter
from inbox_sync.storage import SqliteMessageRepository

BASE_DATE = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)


def _message(
    message_id: str,
    *,
    days: int = 0,
    account_id: str = "acct",
    folder: str = "INBOX",
    subject: str = "Hello",
    body: str = "Body",
    category: Category | None = Category.UNCATEGORIZED,
) -> Message:
    return Message(
        id=message_id,
        account_id=account_id,
        folder=folder,
        sender="Sender <sender@example.com>",
        to=("me@example.com", "team@example.com"),
        subject=subject,
        body=body,
        html="<p>Body</p>",
        date=BASE_DATE + timedelta(days=days),
        protocol_sequence_id=100 + days,
        category=category,
    )


@pytest.fixture
def repository(tmp_path: Path) -> Iterator[SqliteMessageRepository]:
    repo = SqliteMessageRepository(StorageSettings(db_path=tmp_path / "mail.db"))
    yield repo
    repo.close()


def test_put_and_get_round_trip(repository: SqliteMessageRepository) -> None:
    original = _message("acct-1", category=Category.INTERESTED)
    repository.put_message(original)

    stored = repository.get_message("acct-1")

    assert stored == original
    assert repository.get_message("missing") is None


def test_put_is_an_upsert_keyed_by_id(repository: SqliteMessageRepository) -> None:
    repository.put_message(_message("acct-1", subject="First"))
    repository.put_message(_message("acct-1", subject="Second"))

    assert repository.count_messages() == 1
    stored = repository.get_message("acct-1")
    assert stored is not None and stored.subject == "Second"


def test_search_without_filters_returns_newest_first(
    repository: SqliteMessageRepository,
) -> None:
    for message_id, days in (("acct-old", 0), ("acct-new", 5), ("acct-mid", 2)):
        repository.put_message(_message(message_id, days=days))

    results = repository.search(SearchFilter())

    assert [message.id for message in results] == ["acct-new", "acct-mid", "acct-old"]


def test_search_applies_filters_and_paging(repository: SqliteMessageRepository) -> None:
    repository.put_message(_message("a-1", days=1, subject="Backend role"))
    repository.put_message(
        _message("a-2", days=2, subject="Frontend role", category=Category.SPAM)
    )
    repository.put_message(_message("b-1", days=3, account_id="other", subject="Backend"))
    repository.put_message(_message("a-3", days=4, folder="Archive", body="backend talk"))

    by_text = repository.search(SearchFilter(text="backend"))
    assert [message.id for message in by_text] == ["a-3", "b-1", "a-1"]

    by_account = repository.search(SearchFilter(account_id="acct", folder="INBOX"))
    assert [message.id for message in by_account] == ["a-2", "a-1"]

    by_category = repository.search(SearchFilter(category=Category.SPAM))
    assert [message.id for message in by_category] == ["a-2"]

    paged = repository.search(SearchFilter(offset=1, limit=2))
    assert [message.id for message in paged] == ["b-1", "a-2"]


def test_search_treats_wildcards_literally(repository: SqliteMessageRepository) -> None:
    repository.put_message(_message("acct-1", subject="100% match"))
    repository.put_message(_message("acct-2", days=1, subject="100 matches"))

    results = repository.search(SearchFilter(text="100%"))

    assert [message.id for message in results] == ["acct-1"]


def test_update_category(repository: SqliteMessageRepository) -> None:
    repository.put_message(_message("acct-1"))

    assert repository.update_category("acct-1", Category.MEETING_BOOKED) is True
    assert repository.update_category("missing", Category.SPAM) is False
    stored = repository.get_message("acct-1")
    assert stored is not None and stored.category is Category.MEETING_BOOKED


def test_statistics_groups_counts(repository: SqliteMessageRepository) -> None:
    repository.put_message(_message("a-1", category=Category.INTERESTED))
    repository.put_message(_message("a-2", category=None, folder="Archive"))
    repository.put_message(_message("b-1", account_id="other", category=Category.INTERESTED))

    stats = repository.statistics()

    assert stats.total == 3
    assert stats.by_category == {"Interested": 2, "Uncategorized": 1}
    assert stats.by_account == {"acct": 2, "other": 1}
    assert stats.by_folder == {"INBOX": 2, "Archive": 1}


def test_data_survives_reopen(tmp_path: Path) -> None:
    settings = StorageSettings(db_path=tmp_path / "nested" / "mail.db")
    with SqliteMessageRepository(settings) as first:
        first.put_message(_message("acct-1"))

    with SqliteMessageRepository(settings) as second:
        assert second.get_message("acct-1") is not None
