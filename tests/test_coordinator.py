"""Tests for the per-account pipeline coordinator."""

from __future__ import annotations

import pytest
from fakes import MemoryRepository, RecordingNotifier, StubConnector, raw_payload

from inbox_sync.core.interfaces import NotificationError
from inbox_sync.core.models import Category, CoordinatorState, Message, RawMessage
from inbox_sync.ingestion import MessageNormalizer, NormalizationError
from inbox_sync.intelligence import RuleBasedCategorizer
from inbox_sync.pipeline import PipelineCoordinator


class BrokenPayloadNormalizer:
    """Reject payloads that contain the ``broken`` marker."""

    def __init__(self) -> None:
        self._inner = MessageNormalizer()

    def normalize(self, raw: RawMessage) -> Message:
        if b"broken" in raw.raw:
            raise NormalizationError("malformed payload")
        return self._inner.normalize(raw)


class ExplodingCategorizer:
    """Fail on messages whose subject is ``Explode``."""

    def categorize(self, message: Message) -> Category:
        if message.subject == "Explode":
            raise KeyError("rule table corrupted")
        return Category.UNCATEGORIZED


def _coordinator(
    repository: MemoryRepository,
    notifier: RecordingNotifier | None = None,
    **kwargs: float,
) -> PipelineCoordinator:
    return PipelineCoordinator(
        repository,
        BrokenPayloadNormalizer(),
        RuleBasedCategorizer(),
        notifier=notifier,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_lifecycle_transitions() -> None:
    coordinator = _coordinator(MemoryRepository())
    connector = StubConnector()
    assert coordinator.state is CoordinatorState.IDLE

    coordinator.bind(connector)  # type: ignore[arg-type]
    assert coordinator.state is CoordinatorState.CONNECTOR_BOUND
    with pytest.raises(RuntimeError):
        coordinator.bind(StubConnector())  # type: ignore[arg-type]

    await coordinator.start()
    assert coordinator.state is CoordinatorState.RUNNING
    assert connector.connected

    await coordinator.stop()
    await coordinator.stop()
    assert coordinator.state is CoordinatorState.STOPPED
    assert connector.disconnected
    with pytest.raises(RuntimeError):
        await coordinator.start()


@pytest.mark.asyncio
async def test_start_requires_a_bound_connector() -> None:
    with pytest.raises(RuntimeError):
        await _coordinator(MemoryRepository()).start()


@pytest.mark.asyncio
async def test_persists_every_message_and_notifies_only_interested() -> None:
    repository = MemoryRepository()
    notifier = RecordingNotifier()
    coordinator = _coordinator(repository, notifier)
    connector = StubConnector()
    coordinator.bind(connector)  # type: ignore[arg-type]
    await coordinator.start()

    connector.push(raw_payload("Great opportunity", "We are interested in you."), 1)
    connector.push(raw_payload("Claim your prize", "Act now."), 2)
    connector.push(raw_payload("Weekly digest", "Nothing new."), 3)
    await coordinator.drain()
    await coordinator.stop()

    stored = {message.subject: message for message in repository.messages.values()}
    assert stored["Great opportunity"].category is Category.INTERESTED
    assert stored["Claim your prize"].category is Category.SPAM
    assert stored["Weekly digest"].category is Category.UNCATEGORIZED
    assert [message.subject for message in notifier.notified] == ["Great opportunity"]
    assert coordinator.stats.persisted == 3
    assert coordinator.stats.notified == 1


@pytest.mark.asyncio
async def test_unparseable_message_is_skipped() -> None:
    repository = MemoryRepository()
    coordinator = _coordinator(repository)
    connector = StubConnector()
    coordinator.bind(connector)  # type: ignore[arg-type]
    await coordinator.start()

    connector.push(b"broken", 1)
    connector.push(raw_payload("Still here"), 2)
    await coordinator.drain()
    await coordinator.stop()

    assert [m.subject for m in repository.messages.values()] == ["Still here"]
    assert coordinator.stats.skipped == 1


@pytest.mark.asyncio
async def test_persistence_failure_drops_message_without_notifying() -> None:
    repository = MemoryRepository(fail_subjects=["Interested lead"])
    notifier = RecordingNotifier()
    coordinator = _coordinator(repository, notifier)

    dropped = await coordinator.process(
        _raw(raw_payload("Interested lead", "Sounds interesting"), 1)
    )
    kept = await coordinator.process(_raw(raw_payload("Next one"), 2))

    assert dropped is None
    assert kept is not None and kept.id in repository.messages
    assert notifier.notified == []
    assert coordinator.stats.failed == 1


@pytest.mark.asyncio
async def test_persistence_timeout_counts_as_failure() -> None:
    repository = MemoryRepository(delay=0.2)
    coordinator = _coordinator(repository, persistence_timeout=0.01)

    assert await coordinator.process(_raw(raw_payload("Slow write"), 1)) is None
    assert coordinator.stats.failed == 1


@pytest.mark.asyncio
async def test_notification_failure_leaves_persisted_message() -> None:
    repository = MemoryRepository()
    notifier = RecordingNotifier(error=NotificationError("slack down"))
    coordinator = _coordinator(repository, notifier)
    connector = StubConnector()
    coordinator.bind(connector)  # type: ignore[arg-type]
    await coordinator.start()

    connector.push(raw_payload("Next steps", "Looking forward to it"), 1)
    await coordinator.drain()
    await coordinator.stop()

    assert len(repository.messages) == 1
    assert len(notifier.notified) == 1
    assert coordinator.stats.notified == 0


@pytest.mark.asyncio
async def test_unexpected_failure_is_logged_and_counted(
    caplog: pytest.LogCaptureFixture,
) -> None:
    repository = MemoryRepository()
    coordinator = PipelineCoordinator(
        repository, BrokenPayloadNormalizer(), ExplodingCategorizer()
    )
    connector = StubConnector()
    coordinator.bind(connector)  # type: ignore[arg-type]
    await coordinator.start()

    connector.push(raw_payload("Explode"), 1)
    connector.push(raw_payload("Calm"), 2)
    await coordinator.drain()
    await coordinator.stop()

    assert [m.subject for m in repository.messages.values()] == ["Calm"]
    assert coordinator.stats.failed == 1
    assert coordinator.stats.persisted == 1
    assert "Unexpected failure handling message from acct" in caplog.text


def _raw(payload: bytes, uid: int) -> RawMessage:
    return RawMessage(
        account_id="acct", folder="INBOX", sequence_number=uid, uid=uid, raw=payload
    )
