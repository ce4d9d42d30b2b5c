"""
Unit tests specific for the SyncClient logic.
Focuses on ordering, subscription lifecycle, and sending.
"""

# pylint: disable=redefined-outer-name
# pylint: disable=protected-access

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.core.errors import SendError, SubscriptionError
from src.core.message import Message
from src.core.session_state import SessionStore, SubscriptionStatus
from src.services.backend import InMemoryChatBackend
from src.services.sync import SyncClient

T0 = datetime(2024, 2, 14, 12, 0, tzinfo=timezone.utc)


def make_message(msg_id: str, text: str, offset: int, sender: str = "u1") -> Message:
    """Builds a message stamped offset seconds after T0"""
    return Message(id=msg_id, text=text, sender_id=sender, created_at=T0 + timedelta(seconds=offset))


class CountingBackend(InMemoryChatBackend):
    """In-memory backend recording every live query opened and closed."""

    def __init__(self) -> None:
        super().__init__()
        self.opened: list[str] = []
        self.closed: list[str] = []

    async def watch_messages(self, code):
        self.opened.append(code)
        try:
            async for batch in super().watch_messages(code):
                yield batch
        finally:
            self.closed.append(code)


@pytest.fixture
def backend() -> CountingBackend:
    """Counting in-memory backend"""
    return CountingBackend()


@pytest.fixture
def sync_client(backend, authed_store) -> SyncClient:
    """SyncClient over the counting backend and an authenticated session"""
    return SyncClient(backend, authed_store)


@pytest.mark.asyncio
async def test_subscribe_sorts_every_snapshot():
    """Snapshots are ordered by server timestamp whatever the delivery order"""
    hello = make_message("a", "hello", 1)
    hi = make_message("b", "hi", 2)
    late_first = make_message("c", "first", 0)

    async def deliveries(_code):
        yield [hi, hello]
        yield [late_first]

    backend = MagicMock()
    backend.watch_messages = MagicMock(side_effect=deliveries)
    client = SyncClient(backend, SessionStore())

    snapshots = [snapshot async for snapshot in client.subscribe("AB12CD")]

    assert [[m.text for m in s] for s in snapshots] == [["hello", "hi"], ["first", "hello", "hi"]]
    for snapshot in snapshots:
        assert all(a.created_at <= b.created_at for a, b in zip(snapshot, snapshot[1:]))


@pytest.mark.asyncio
async def test_subscribe_dedupes_by_id():
    """A message delivered twice is shown once"""
    hello = make_message("a", "hello", 1)

    async def deliveries(_code):
        yield [hello]
        yield [hello]

    backend = MagicMock()
    backend.watch_messages = MagicMock(side_effect=deliveries)
    client = SyncClient(backend, SessionStore())

    snapshots = [snapshot async for snapshot in client.subscribe("AB12CD")]

    assert len(snapshots[-1]) == 1


@pytest.mark.asyncio
async def test_activate_requires_identity(backend):
    """No subscription before the identity is established"""
    client = SyncClient(backend, SessionStore())

    await client.activate("AB12CD")

    assert backend.opened == []
    assert client.is_active() is False


@pytest.mark.asyncio
async def test_activate_requires_room(sync_client, backend):
    """No subscription without a room code"""
    await sync_client.activate("")

    assert backend.opened == []


@pytest.mark.asyncio
async def test_activate_delivers_messages(sync_client, backend, authed_store, wait_until):
    """Existing and new messages reach the session state"""
    await backend.append_message("AB12CD", "u2", "already there")

    await sync_client.activate("AB12CD")
    await wait_until(lambda: len(authed_store.state.subscription.messages) == 1)

    await backend.append_message("AB12CD", "u2", "new one")
    await wait_until(lambda: len(authed_store.state.subscription.messages) == 2)

    assert authed_store.state.subscription.status is SubscriptionStatus.ACTIVE
    assert [m.text for m in authed_store.state.subscription.messages] == ["already there", "new one"]

    await sync_client.deactivate()


@pytest.mark.asyncio
async def test_room_change_swaps_exactly_one_subscription(sync_client, backend, wait_until):
    """Changing room tears down one subscription and opens one, never two at once"""
    await sync_client.activate("ROOM01")
    await wait_until(lambda: backend.active_watchers("ROOM01") == 1)

    await sync_client.activate("ROOM02")
    await wait_until(lambda: backend.active_watchers("ROOM02") == 1)

    assert backend.opened == ["ROOM01", "ROOM02"]
    assert backend.closed == ["ROOM01"]
    assert backend.active_watchers("ROOM01") == 0

    await sync_client.deactivate()
    assert backend.closed == ["ROOM01", "ROOM02"]


@pytest.mark.asyncio
async def test_overlapping_room_changes_keep_one_subscription(sync_client, backend, authed_store, wait_until):
    """Concurrent activations settle on the last room with a single live query"""
    await sync_client.activate("ROOMAA")
    await wait_until(lambda: backend.active_watchers("ROOMAA") == 1)

    await asyncio.gather(sync_client.activate("ROOMBB"), sync_client.activate("ROOMCC"))
    await wait_until(lambda: backend.active_watchers("ROOMCC") == 1)

    assert backend.active_watchers("ROOMAA") == 0
    assert backend.active_watchers("ROOMBB") == 0
    assert authed_store.state.subscription.room_code == "ROOMCC"

    await sync_client.deactivate()
    assert backend.active_watchers("ROOMCC") == 0


@pytest.mark.asyncio
async def test_activate_same_room_does_not_double_subscribe(sync_client, backend, wait_until):
    """Re-activating the live room is a no-op"""
    await sync_client.activate("ROOM01")
    await wait_until(lambda: backend.active_watchers("ROOM01") == 1)

    await sync_client.activate("ROOM01")
    await asyncio.sleep(0.01)

    assert backend.opened == ["ROOM01"]
    assert backend.active_watchers("ROOM01") == 1

    await sync_client.deactivate()


@pytest.mark.asyncio
async def test_deactivate_is_idempotent(sync_client, backend, authed_store, wait_until):
    """Deactivating twice is harmless and releases the live query"""
    await sync_client.activate("ROOM01")
    await wait_until(lambda: backend.active_watchers("ROOM01") == 1)

    await sync_client.deactivate()
    await sync_client.deactivate()

    assert backend.active_watchers("ROOM01") == 0
    assert authed_store.state.subscription.status is SubscriptionStatus.IDLE


@pytest.mark.asyncio
async def test_subscription_error_keeps_last_snapshot(authed_store, caplog, wait_until):
    """A delivery failure is logged, the last snapshot stays, nothing is retried"""
    hello = make_message("a", "hello", 1)

    async def failing(_code):
        yield [hello]
        raise SubscriptionError("permission denied")

    backend = MagicMock()
    backend.watch_messages = MagicMock(side_effect=failing)
    client = SyncClient(backend, authed_store)

    await client.activate("AB12CD")
    await wait_until(lambda: authed_store.state.subscription.status is SubscriptionStatus.FAILED)

    assert [m.text for m in authed_store.state.subscription.messages] == ["hello"]
    assert "Error fetching messages for room AB12CD" in caplog.text
    assert backend.watch_messages.call_count == 1
    assert client.is_active() is False


@pytest.mark.asyncio
async def test_failed_subscription_can_be_reopened(authed_store, wait_until):
    """Activating the same room after a failure subscribes again"""

    async def failing(_code):
        raise SubscriptionError("offline")
        yield  # pylint: disable=unreachable

    backend = MagicMock()
    backend.watch_messages = MagicMock(side_effect=failing)
    client = SyncClient(backend, authed_store)

    await client.activate("AB12CD")
    await wait_until(lambda: authed_store.state.subscription.status is SubscriptionStatus.FAILED)
    await client.activate("AB12CD")
    await wait_until(lambda: backend.watch_messages.call_count == 2)


@pytest.mark.asyncio
async def test_send_appends_trimmed_text(sync_client, backend, authed_store, user, wait_until):
    """The next snapshot holds exactly one more message with the trimmed text"""
    await sync_client.activate("AB12CD")
    await wait_until(lambda: backend.active_watchers("AB12CD") == 1)
    before = len(authed_store.state.subscription.messages)

    message = await sync_client.send("AB12CD", user, "  hello  ")
    await wait_until(lambda: len(authed_store.state.subscription.messages) == before + 1)

    assert message.text == "hello"
    latest = authed_store.state.subscription.messages[-1]
    assert latest.text == "hello"
    assert latest.sender_id == user.id

    await sync_client.deactivate()


@pytest.mark.asyncio
async def test_send_blank_text_is_noop(user, authed_store):
    """Blank drafts never reach the backend"""
    backend = MagicMock()
    backend.append_message = AsyncMock()
    client = SyncClient(backend, authed_store)

    assert await client.send("AB12CD", user, "   ") is None
    backend.append_message.assert_not_called()


@pytest.mark.asyncio
async def test_send_without_subscription_is_noop(user, authed_store):
    """Nothing is written while no subscription is active"""
    backend = MagicMock()
    backend.append_message = AsyncMock()
    client = SyncClient(backend, authed_store)

    assert await client.send("AB12CD", user, "hello") is None
    backend.append_message.assert_not_called()


@pytest.mark.asyncio
async def test_send_failure_raises(sync_client, backend, user, wait_until):
    """Write failures surface as SendError to the caller"""
    await sync_client.activate("AB12CD")
    await wait_until(lambda: backend.active_watchers("AB12CD") == 1)
    backend.append_message = AsyncMock(side_effect=SendError("permission denied"))

    with pytest.raises(SendError):
        await sync_client.send("AB12CD", user, "hello")

    await sync_client.deactivate()
