"""
Sync client: keeps the session's message list in step with the Message Log
of the active room, and appends the messages the user sends.
"""

import asyncio
import logging
from typing import AsyncIterator, Dict, List, Optional

from src.core.auth_models import User
from src.core.errors import SubscriptionError
from src.core.message import Message, sort_by_created_at
from src.core.session_state import SessionStore, SubscriptionStatus
from src.services.backend import IChatBackend

logger = logging.getLogger(__name__)


class SyncClient:
    """Owns at most one live subscription at a time."""

    def __init__(self, backend: IChatBackend, store: SessionStore):
        self.backend = backend
        self.store = store
        self._task: Optional[asyncio.Task[None]] = None
        # Serializes the stop-then-start sequence of overlapping room changes
        self._lock = asyncio.Lock()

    def is_active(self, room_code: Optional[str] = None) -> bool:
        """True while a subscription is running (for the given room, if any)."""
        subscription = self.store.state.subscription
        if self._task is None or self._task.done():
            return False
        if subscription.status is not SubscriptionStatus.ACTIVE:
            return False
        return room_code is None or subscription.room_code == room_code

    async def subscribe(self, room_code: str) -> AsyncIterator[List[Message]]:
        """
        Live sequence of ordered snapshots for a room.

        The backend delivers the full log first, then deltas in any order.
        Every delivery is merged by message id and re-sorted by server
        timestamp, so arrival order never leaks into the snapshot.
        """
        known: Dict[str, Message] = {}
        async for batch in self.backend.watch_messages(room_code):
            for message in batch:
                known[message.id] = message
            yield sort_by_created_at(known.values())

    async def activate(self, room_code: str) -> None:
        """
        Points the subscription at a room.
        The previous subscription is torn down before the new one starts.
        """
        if not self.store.state.identity.is_auth_ready or not room_code:
            logger.debug("Subscription not started: identity or room missing")
            return

        async with self._lock:
            if self.is_active(room_code):
                return

            await self._stop()

            self.store.subscription_started(room_code)
            self._task = asyncio.create_task(self._run(room_code))
            logger.info("Subscription opened for room %s", room_code)

    async def deactivate(self) -> None:
        """Cancels the active subscription, if any."""
        async with self._lock:
            await self._stop()

    async def _stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return

        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self.store.subscription_stopped()
        logger.info("Subscription closed for room %s", self.store.state.subscription.room_code)

    async def send(self, room_code: str, user: User, text: str) -> Optional[Message]:
        """
        Appends a message to the room's log.
        Blank text or a missing subscription makes this a no-op returning None.
        Write failures raise SendError.
        """
        trimmed = text.strip()
        if not trimmed:
            return None

        if not self.is_active(room_code):
            logger.debug("Send ignored: no active subscription for room %s", room_code)
            return None

        message = await self.backend.append_message(room_code, user.id, trimmed)
        logger.info("Sent message %s to room %s", message.id, room_code)
        return message

    async def _run(self, room_code: str) -> None:
        try:
            async for snapshot in self.subscribe(room_code):
                self.store.set_messages(room_code, snapshot)

            logger.warning("Live query on room %s ended", room_code)
            self.store.subscription_failed(room_code)

        except SubscriptionError as e:
            logger.error("Error fetching messages for room %s: %s", room_code, e)
            self.store.subscription_failed(room_code)

        # pylint: disable=broad-exception-caught
        except Exception as e:
            logger.error("Unexpected subscription failure for room %s: %s", room_code, e)
            self.store.subscription_failed(room_code)
