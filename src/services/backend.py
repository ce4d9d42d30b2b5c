"""
Chat backend: the Room Directory and the per-room Message Log.

The production backend keeps rooms and messages in Redis: room records are
plain keys written with SET NX, each room's Message Log is a stream whose
entry ids are assigned by the server, and live delivery goes through a
pub/sub channel per room.
"""

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from src.config.settings import Settings
from src.core.errors import RoomCodeConflictError, RoomLookupError, SendError, SubscriptionError, WriteError
from src.core.message import Message, Room

logger = logging.getLogger(__name__)

SUBSCRIBE_TIMEOUT = 5.0


class IChatBackend(ABC):
    """
    Abstract interface for the hosted document store.
    Implementations raise the errors of src.core.errors, never driver errors.
    """

    @abstractmethod
    async def create_room(self, code: str, creator_id: str) -> Room:
        """
        Writes a new room record with a server-assigned creation time.
        Raises RoomCodeConflictError if the code is taken, WriteError otherwise.
        """
        pass

    @abstractmethod
    async def get_room(self, code: str) -> Optional[Room]:
        """Returns the room record, None if missing. Raises RoomLookupError."""
        pass

    @abstractmethod
    async def append_message(self, code: str, sender_id: str, text: str) -> Message:
        """Appends a message stamped with the server time. Raises SendError."""
        pass

    @abstractmethod
    def watch_messages(self, code: str) -> AsyncIterator[List[Message]]:
        """
        Live query on a room's Message Log.
        Yields the full log first, then the newly appended messages.
        Delivery order is not guaranteed. Raises SubscriptionError.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Releases connections."""
        pass


class RedisChatBackend(IChatBackend):
    """Redis implementation of the Room Directory and Message Log."""

    def __init__(self, client: "redis.Redis", app_id: str):
        self.client = client
        self.app_id = app_id

    def _room_key(self, code: str) -> str:
        return f"artifacts:{self.app_id}:public:data:chats:{code}"

    def _messages_key(self, code: str) -> str:
        return f"{self._room_key(code)}:messages"

    def _channel(self, code: str) -> str:
        return f"{self._messages_key(code)}:live"

    async def _server_time(self) -> datetime:
        seconds, microseconds = await self.client.time()
        return datetime.fromtimestamp(seconds, tz=timezone.utc) + timedelta(microseconds=microseconds)

    @staticmethod
    def _entry_to_message(entry_id: str, fields: Dict[str, str]) -> Message:
        # Stream ids are "<server milliseconds>-<sequence>"
        millis = int(entry_id.split("-", 1)[0])
        return Message(
            id=entry_id,
            text=fields["text"],
            sender_id=fields["senderId"],
            created_at=datetime.fromtimestamp(millis // 1000, tz=timezone.utc)
            + timedelta(milliseconds=millis % 1000),
        )

    async def create_room(self, code: str, creator_id: str) -> Room:
        try:
            room = Room(code=code, creator_id=creator_id, created_at=await self._server_time())
            written = await self.client.set(self._room_key(code), json.dumps(room.to_record()), nx=True)
        except RedisError as e:
            raise WriteError(f"Could not create room {code}: {e}") from e

        if not written:
            raise RoomCodeConflictError(code)
        return room

    async def get_room(self, code: str) -> Optional[Room]:
        try:
            raw = await self.client.get(self._room_key(code))
        except RedisError as e:
            raise RoomLookupError(f"Could not look up room {code}: {e}") from e

        if raw is None:
            return None

        try:
            return Room.from_record(code, json.loads(raw))
        except (KeyError, TypeError, ValueError) as e:
            raise RoomLookupError(f"Unreadable record for room {code}: {e}") from e

    async def append_message(self, code: str, sender_id: str, text: str) -> Message:
        fields = {"text": text, "senderId": sender_id}
        try:
            entry_id = await self.client.xadd(self._messages_key(code), fields)
        except RedisError as e:
            raise SendError(f"Could not append message to room {code}: {e}") from e

        message = self._entry_to_message(entry_id, fields)

        # The message is already stored, a failed notification must not make the sender retry
        try:
            await self.client.publish(self._channel(code), json.dumps(message.to_document()))
        except RedisError as e:
            logger.warning("Message %s stored but live notification failed: %s", message.id, e)

        return message

    async def watch_messages(self, code: str) -> AsyncIterator[List[Message]]:
        pubsub = self.client.pubsub()
        channel = self._channel(code)

        try:
            # Subscribe before reading the log so no append falls in between
            try:
                await pubsub.subscribe(channel)
                confirmation = await pubsub.get_message(timeout=SUBSCRIBE_TIMEOUT)
                if confirmation is None or confirmation["type"] != "subscribe":
                    raise SubscriptionError(f"Subscription to room {code} was not confirmed")
                entries = await self.client.xrange(self._messages_key(code))
            except RedisError as e:
                raise SubscriptionError(f"Could not open live query on room {code}: {e}") from e

            logger.info("Subscribed to Redis channel: %s", channel)
            yield [self._entry_to_message(entry_id, fields) for entry_id, fields in entries]

            try:
                async for raw in pubsub.listen():
                    if raw["type"] != "message":
                        continue

                    try:
                        message = Message.from_document(json.loads(raw["data"]))
                    except (KeyError, ValueError) as e:
                        logger.error("Could not parse live message: %s", e)
                        continue

                    yield [message]
            except RedisError as e:
                raise SubscriptionError(f"Live query on room {code} failed: {e}") from e

        finally:
            try:
                await pubsub.unsubscribe(channel)
                await pubsub.aclose()
                logger.info("Unsubscribed from %s", channel)
            except RedisError as e:
                logger.warning("Could not cleanly unsubscribe from %s: %s", channel, e)

    async def close(self) -> None:
        await self.client.aclose()


class InMemoryChatBackend(IChatBackend):
    """
    Process-local backend, used for local development and tests.
    Emulates server timestamps with a strictly increasing clock.
    """

    def __init__(self) -> None:
        self._rooms: Dict[str, Room] = {}
        self._messages: Dict[str, List[Message]] = {}
        self._watchers: Dict[str, List["asyncio.Queue[List[Message]]"]] = {}
        self._last_time: Optional[datetime] = None

    def _server_time(self) -> datetime:
        now = datetime.now(timezone.utc)
        if self._last_time is not None and now <= self._last_time:
            now = self._last_time + timedelta(microseconds=1)
        self._last_time = now
        return now

    def active_watchers(self, code: str) -> int:
        """Number of open live queries on a room"""
        return len(self._watchers.get(code, []))

    async def create_room(self, code: str, creator_id: str) -> Room:
        if code in self._rooms:
            raise RoomCodeConflictError(code)

        room = Room(code=code, creator_id=creator_id, created_at=self._server_time())
        self._rooms[code] = room
        return room

    async def get_room(self, code: str) -> Optional[Room]:
        return self._rooms.get(code)

    async def append_message(self, code: str, sender_id: str, text: str) -> Message:
        message = Message(id=uuid.uuid4().hex, text=text, sender_id=sender_id, created_at=self._server_time())
        self._messages.setdefault(code, []).append(message)

        for queue in self._watchers.get(code, []):
            queue.put_nowait([message])

        return message

    async def watch_messages(self, code: str) -> AsyncIterator[List[Message]]:
        queue: "asyncio.Queue[List[Message]]" = asyncio.Queue()
        self._watchers.setdefault(code, []).append(queue)
        try:
            yield list(self._messages.get(code, []))
            while True:
                yield await queue.get()
        finally:
            watchers = self._watchers.get(code, [])
            if queue in watchers:
                watchers.remove(queue)
            if not watchers:
                self._watchers.pop(code, None)

    async def close(self) -> None:
        self._watchers.clear()


def build_backend(config: Settings) -> IChatBackend:
    """Factory selecting the backend from the configuration."""
    if config.backend == "memory":
        logger.warning("Using the in-memory chat backend, nothing is shared between processes")
        return InMemoryChatBackend()

    client = redis.from_url(config.redis_url, decode_responses=True)  # type: ignore[no-untyped-call]
    return RedisChatBackend(client, config.app_id)
