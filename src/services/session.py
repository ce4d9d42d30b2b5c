"""
Chat session controllers, allows to centralize the session's services in
a structured and coherent object.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from src.config.settings import settings
from src.core.auth_models import User
from src.core.errors import AuthError, SendError
from src.core.message import Message
from src.core.session_state import SessionState, SessionStore
from src.services.backend import IChatBackend, build_backend
from src.services.identity import IdentityBootstrap, IIdentityProvider, LocalIdentityProvider
from src.services.rooms import RoomSessionController
from src.services.sync import SyncClient

logger = logging.getLogger(__name__)


class IChatSession(ABC):
    """
    Abstract Interface for the chat session.
    Defines the contract for the session's bootstrap, room
    transitions, messaging and teardown.
    """

    @property
    @abstractmethod
    def store(self) -> SessionStore:
        """Returns the session's state container"""
        pass

    @property
    def state(self) -> SessionState:
        """Returns the current session state"""
        return self.store.state

    @property
    def user(self) -> Optional[User]:
        """Returns the authenticated user (if set)"""
        return self.store.state.identity.user

    def is_ready(self) -> bool:
        """Checks if the identity is established"""
        return self.store.state.identity.is_auth_ready

    @abstractmethod
    async def start(self) -> None:
        """
        Runs the identity bootstrap.
        Raises AuthError when no identity at all can be established.
        """
        pass

    @abstractmethod
    async def create_room(self) -> Optional[str]:
        """Creates a room and subscribes to it"""
        pass

    @abstractmethod
    async def join_room(self, code: Optional[str] = None) -> bool:
        """Joins a room (the modal's input when no code is given) and subscribes to it"""
        pass

    @abstractmethod
    async def send_message(self, text: Optional[str] = None) -> Optional[Message]:
        """Sends the given text, or the composer draft"""
        pass

    @abstractmethod
    async def close(self) -> None:
        """
        Tears the session down, cancelling listeners and subscriptions.
        """
        pass

    def set_draft(self, text: str) -> None:
        """Updates the composer draft"""
        self.store.set_draft(text)

    def set_join_input(self, text: str) -> None:
        """Updates the join/create modal's room code input"""
        self.store.set_join_input(text)

    def show_modal(self) -> None:
        """Opens the join/create modal"""
        self.store.show_modal()


class LocalChatSession(IChatSession):
    """
    One user's session on top of an identity provider and a chat backend.
    """

    def __init__(
        self,
        provider: IIdentityProvider,
        backend: IChatBackend,
        store: Optional[SessionStore] = None,
        initial_token: Optional[str] = None,
        code_length: int = 6,
        create_attempts: int = 5,
    ) -> None:
        self._store = store or SessionStore()
        self.backend = backend
        self.identity = IdentityBootstrap(provider, self._store, initial_token)
        self.rooms = RoomSessionController(
            backend, self._store, code_length=code_length, create_attempts=create_attempts
        )
        self.sync = SyncClient(backend, self._store)
        self._refresh_lock = asyncio.Lock()

    @property
    def store(self) -> SessionStore:
        return self._store

    async def start(self) -> None:
        await self.identity.start()

    async def create_room(self) -> Optional[str]:
        user = self._require_user()
        code = await self.rooms.create_room(user)
        await self._refresh_subscription()
        return code

    async def join_room(self, code: Optional[str] = None) -> bool:
        user = self._require_user()
        if code is not None:
            self.store.set_join_input(code)

        joined = await self.rooms.join_room(user, self.state.modal.join_input)
        await self._refresh_subscription()
        return joined

    async def send_message(self, text: Optional[str] = None) -> Optional[Message]:
        user = self._require_user()
        if text is not None:
            self.store.set_draft(text)

        try:
            message = await self.sync.send(self.state.room.code, user, self.state.composer.draft)
        except SendError as e:
            # Keep the draft so the user can retry
            logger.error("Error sending message: %s", e)
            return None

        if message is not None:
            self.store.clear_draft()
        return message

    async def close(self) -> None:
        logger.info("Closing chat session...")
        self.identity.stop()
        await self.sync.deactivate()
        await self.backend.close()
        logger.info("Chat session closed.")

    async def _refresh_subscription(self) -> None:
        # Subscribe once identity is ready and a room is selected.
        # The room is read under the lock so the latest transition wins.
        async with self._refresh_lock:
            room_code = self.state.room.code
            if self.is_ready() and room_code:
                await self.sync.activate(room_code)

    def _require_user(self) -> User:
        user = self.user
        if not self.is_ready() or user is None:
            raise AuthError("Session has no authenticated user")
        return user


def build_chat_session() -> LocalChatSession:
    """Builds the session described by the process settings."""
    return LocalChatSession(
        provider=LocalIdentityProvider(),
        backend=build_backend(settings),
        initial_token=settings.initial_auth_token,
        code_length=settings.room_code_length,
        create_attempts=settings.room_create_attempts,
    )


chat_session: IChatSession = build_chat_session()
