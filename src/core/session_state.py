"""
Explicit session state container.

The session is split in independent slices (identity, room, subscription,
modal, composer). Each slice is an immutable pydantic model; the store swaps
whole slices on every transition and notifies its listeners with the new
SessionState, which a view renders as a pure function.
"""

import asyncio
import logging
from enum import Enum
from typing import AsyncIterator, Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from src.core.auth_models import IdentityStatus, User
from src.core.message import Message

logger = logging.getLogger(__name__)


class SubscriptionStatus(str, Enum):
    """Live subscription states."""

    IDLE = "IDLE"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"


class IdentitySlice(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: IdentityStatus = IdentityStatus.UNAUTHENTICATED
    user: Optional[User] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_auth_ready(self) -> bool:
        return self.status is IdentityStatus.AUTHENTICATED


class RoomSlice(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Empty means no active room
    code: str = ""


class SubscriptionSlice(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: SubscriptionStatus = SubscriptionStatus.IDLE
    room_code: str = ""
    messages: List[Message] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_chat_ready(self) -> bool:
        return self.status is SubscriptionStatus.ACTIVE


class ModalSlice(BaseModel):
    model_config = ConfigDict(frozen=True)

    visible: bool = True
    join_input: str = ""


class ComposerSlice(BaseModel):
    model_config = ConfigDict(frozen=True)

    draft: str = ""

    @computed_field  # type: ignore[prop-decorator]
    @property
    def trimmed(self) -> str:
        return self.draft.strip()


class SessionState(BaseModel):
    """Whole client-side session, as seen by the view."""

    model_config = ConfigDict(frozen=True)

    identity: IdentitySlice = Field(default_factory=IdentitySlice)
    room: RoomSlice = Field(default_factory=RoomSlice)
    subscription: SubscriptionSlice = Field(default_factory=SubscriptionSlice)
    modal: ModalSlice = Field(default_factory=ModalSlice)
    composer: ComposerSlice = Field(default_factory=ComposerSlice)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def can_send(self) -> bool:
        """Mirrors the enabled state of the send button."""
        return bool(self.composer.trimmed) and self.subscription.is_chat_ready


StateListener = Callable[[SessionState], None]


class SessionStore:
    """
    Holds the current SessionState and notifies listeners on every change.
    All transitions run on the event loop thread, so no locking is needed here.
    """

    def __init__(self, state: Optional[SessionState] = None) -> None:
        self._state = state or SessionState()
        self._listeners: List[StateListener] = []

    @property
    def state(self) -> SessionState:
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Registers a listener, returns the matching unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def watch(self) -> AsyncIterator[SessionState]:
        """
        Yields the current state, then the states that follow it.
        A slow consumer only sees the latest state, intermediate ones are dropped.
        Leaving the iteration unregisters the underlying listener.
        """
        queue: "asyncio.Queue[SessionState]" = asyncio.Queue(maxsize=1)

        def push_latest(state: SessionState) -> None:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(state)

        unsubscribe = self.subscribe(push_latest)
        try:
            yield self._state
            while True:
                yield await queue.get()
        finally:
            unsubscribe()

    def _replace(self, **slices: BaseModel) -> None:
        self._state = self._state.model_copy(update=slices)
        for listener in self._listeners[:]:
            try:
                listener(self._state)
            # pylint: disable=broad-exception-caught
            except Exception as e:
                logger.error("State listener failed: %s", e)

    # === Identity ===

    def set_user(self, user: User) -> None:
        """UNAUTHENTICATED -> AUTHENTICATED. There is no way back."""
        self._replace(identity=IdentitySlice(status=IdentityStatus.AUTHENTICATED, user=user))

    # === Room ===

    def set_room(self, code: str) -> None:
        self._replace(room=RoomSlice(code=code))

    # === Subscription ===

    def subscription_started(self, room_code: str) -> None:
        """A new subscription starts from an empty list for its room."""
        self._replace(subscription=SubscriptionSlice(status=SubscriptionStatus.ACTIVE, room_code=room_code))

    def set_messages(self, room_code: str, messages: List[Message]) -> None:
        current = self._state.subscription
        if current.room_code != room_code:
            logger.debug("Dropping snapshot for stale room %s", room_code)
            return
        self._replace(subscription=current.model_copy(update={"messages": list(messages)}))

    def subscription_failed(self, room_code: str) -> None:
        """Keeps the last known snapshot on screen."""
        current = self._state.subscription
        if current.room_code != room_code:
            return
        self._replace(subscription=current.model_copy(update={"status": SubscriptionStatus.FAILED}))

    def subscription_stopped(self) -> None:
        current = self._state.subscription
        self._replace(subscription=current.model_copy(update={"status": SubscriptionStatus.IDLE}))

    # === Modal ===

    def show_modal(self) -> None:
        self._replace(modal=self._state.modal.model_copy(update={"visible": True}))

    def hide_modal(self) -> None:
        self._replace(modal=self._state.modal.model_copy(update={"visible": False}))

    def set_join_input(self, text: str) -> None:
        """Room codes are typed upper-cased."""
        self._replace(modal=self._state.modal.model_copy(update={"join_input": text.upper()}))

    # === Composer ===

    def set_draft(self, text: str) -> None:
        self._replace(composer=ComposerSlice(draft=text))

    def clear_draft(self) -> None:
        self._replace(composer=ComposerSlice())
