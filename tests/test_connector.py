"""Tests for the mailbox connector lifecycle."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from fakes import FakeSession, SessionFactory, raw_payload

from inbox_sync.core.config import AccountSettings, SyncSettings
from inbox_sync.core.models import ConnectionState, RawMessage
from inbox_sync.ingestion import MailboxConnector, MessageNormalizer

NOW = datetime(2026, 10, 17, 8, 0, tzinfo=UTC)

ACCOUNT = AccountSettings(id="acct", username="me@example.com", app_password="pw")


def _sync(**overrides: float) -> SyncSettings:
    values: dict[str, float] = {
        "reconnect_delay_seconds": 0.01,
        "keepalive_interval_seconds": 0.05,
        "shutdown_grace_seconds": 1.0,
    }
    values.update(overrides)
    return SyncSettings(**values)


def _messages(*uids: int) -> dict[int, bytes]:
    return {uid: raw_payload(f"Message {uid}") for uid in uids}


async def _collect(connector: MailboxConnector, count: int) -> list[RawMessage]:
    return [
        await asyncio.wait_for(connector.events.get(), timeout=2.0)
        for _ in range(count)
    ]


async def _wait_for(predicate, timeout: float = 2.0) -> None:  # type: ignore[no-untyped-def]
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_backlog_then_watch_emits_each_message_once() -> None:
    session = FakeSession(_messages(1, 2, 3), backlog=[1, 2], pushes=[(1, [2, 3])])
    connector = MailboxConnector(
        ACCOUNT, _sync(), session_factory=SessionFactory(session), clock=lambda: NOW
    )

    connector.connect()
    events = await _collect(connector, 3)
    await _wait_for(lambda: session.keepalives > 0)

    assert [event.uid for event in events] == [1, 2, 3]
    assert all(event.account_id == "acct" and event.folder == "INBOX" for event in events)
    assert session.since == NOW - timedelta(days=30)
    assert session.fetched == [1, 2, 3]
    assert connector.state is ConnectionState.WATCHING

    await connector.disconnect()

    assert connector.state is ConnectionState.DISCONNECTED
    assert session.closed
    assert not connector.is_running
    assert connector.events.empty()


@pytest.mark.asyncio
async def test_disconnect_while_watching_stops_emission() -> None:
    session = FakeSession(
        _messages(1, 2, 3),
        backlog=[1],
        pushes=[(1, [2]), (1, [3])],
        push_on_stop=True,
    )
    connector = MailboxConnector(
        ACCOUNT,
        _sync(keepalive_interval_seconds=30.0),
        session_factory=SessionFactory(session),
    )

    connector.connect()
    await _collect(connector, 1)
    await _wait_for(lambda: connector.state is ConnectionState.WATCHING)

    await connector.disconnect()
    await asyncio.sleep(0.05)

    assert connector.events.empty()
    assert session.fetched == [1]
    assert session.pushes == [(1, [3])]
    assert connector.state is ConnectionState.DISCONNECTED
    assert session.closed


@pytest.mark.asyncio
async def test_connect_is_idempotent_while_running() -> None:
    factory = SessionFactory(FakeSession(_messages()))
    connector = MailboxConnector(ACCOUNT, _sync(), session_factory=factory)

    connector.connect()
    connector.connect()
    await _wait_for(lambda: connector.state is ConnectionState.WATCHING)
    await connector.disconnect()

    assert factory.calls == 1


@pytest.mark.asyncio
async def test_reconnect_replays_backlog_with_new_ids() -> None:
    broken = FakeSession(_messages(1, 2), backlog=[1, 2], fail_idle=True)
    healthy = FakeSession(_messages(1, 2), backlog=[1, 2])
    factory = SessionFactory(broken, healthy)
    connector = MailboxConnector(ACCOUNT, _sync(), session_factory=factory)

    connector.connect()
    events = await _collect(connector, 4)
    await connector.disconnect()

    assert [event.uid for event in events] == [1, 2, 1, 2]
    assert connector.connect_count == 2
    assert broken.closed

    normalizer = MessageNormalizer()
    first, replayed = normalizer.normalize(events[0]), normalizer.normalize(events[2])
    assert first.protocol_sequence_id == replayed.protocol_sequence_id
    assert first.id != replayed.id


@pytest.mark.asyncio
async def test_connection_failure_schedules_retry() -> None:
    refused = FakeSession(_messages(), fail_connect=True)
    healthy = FakeSession(_messages(5), backlog=[5])
    factory = SessionFactory(refused, healthy)
    connector = MailboxConnector(ACCOUNT, _sync(), session_factory=factory)

    connector.connect()
    events = await _collect(connector, 1)
    await connector.disconnect()

    assert events[0].uid == 5
    assert factory.calls == 2
    assert connector.connect_count == 1


@pytest.mark.asyncio
async def test_disconnect_cancels_pending_reconnect() -> None:
    factory = SessionFactory(FakeSession(_messages(), fail_connect=True))
    connector = MailboxConnector(
        ACCOUNT, _sync(reconnect_delay_seconds=30.0), session_factory=factory
    )

    connector.connect()
    await _wait_for(lambda: factory.calls == 1)
    await asyncio.sleep(0.05)
    await asyncio.wait_for(connector.disconnect(), timeout=1.0)

    assert factory.calls == 1
    assert connector.state is ConnectionState.DISCONNECTED
    assert not connector.is_running
