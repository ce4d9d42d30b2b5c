"""Identity provider and the one-shot identity bootstrap of a session."""

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from src.core.auth_models import User
from src.core.errors import AuthError
from src.core.session_state import SessionStore

logger = logging.getLogger(__name__)

AuthStateListener = Callable[[Optional[User]], None]


class IIdentityProvider(ABC):
    """
    Abstract interface for the identity provider.
    Issues opaque user identities and notifies identity changes.
    """

    @abstractmethod
    def current_user(self) -> Optional[User]:
        """Returns the user of a previously issued credential, if any"""
        pass

    @abstractmethod
    async def sign_in_with_custom_token(self, token: str) -> User:
        """Exchanges an externally supplied credential for a user, raises AuthError"""
        pass

    @abstractmethod
    async def sign_in_anonymously(self) -> User:
        """Establishes a fresh anonymous identity, raises AuthError"""
        pass

    @abstractmethod
    def on_auth_state_changed(self, listener: AuthStateListener) -> Callable[[], None]:
        """
        Registers a state-change listener.
        Returns the callable that unregisters it.
        """
        pass


class LocalIdentityProvider(IIdentityProvider):
    """
    In-process identity provider, used for local development and tests
    in place of a hosted one. A custom token always maps to the same user id.
    """

    def __init__(self) -> None:
        self._user: Optional[User] = None
        self._listeners: List[AuthStateListener] = []

    def current_user(self) -> Optional[User]:
        return self._user

    async def sign_in_with_custom_token(self, token: str) -> User:
        if not token.strip():
            raise AuthError("Custom token is empty")

        user_uuid = uuid.uuid5(uuid.NAMESPACE_URL, token.strip())
        return self._set_user(User(id=user_uuid.hex, is_anonymous=False))

    async def sign_in_anonymously(self) -> User:
        return self._set_user(User(id=uuid.uuid4().hex, is_anonymous=True))

    def on_auth_state_changed(self, listener: AuthStateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_user(self, user: User) -> User:
        self._user = user
        for listener in self._listeners[:]:
            listener(user)
        return user


class IdentityBootstrap:
    """
    UNAUTHENTICATED -> AUTHENTICATED, attempted once per session.

    Resolves a previously issued credential, otherwise tries the configured
    bootstrap token, otherwise signs in anonymously. Failing to obtain any
    identity is fatal for the session.
    """

    def __init__(
        self, provider: IIdentityProvider, store: SessionStore, initial_token: Optional[str] = None
    ) -> None:
        self.provider = provider
        self.store = store
        self.initial_token = initial_token
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._attempted = False

    @property
    def user(self) -> Optional[User]:
        return self.store.state.identity.user

    async def start(self) -> User:
        """Runs the bootstrap. Later calls return the established user."""
        if self._attempted:
            if self.user is None:
                raise AuthError("Identity bootstrap already failed for this session")
            return self.user
        self._attempted = True

        self._unsubscribe = self.provider.on_auth_state_changed(self._on_auth_state_changed)

        user = self.provider.current_user()
        if user is None and self.initial_token:
            try:
                user = await self.provider.sign_in_with_custom_token(self.initial_token)
            except AuthError as e:
                logger.error("Custom token sign-in failed, falling back to anonymous: %s", e)

        if user is None:
            try:
                user = await self.provider.sign_in_anonymously()
            except AuthError as e:
                logger.error("Anonymous sign-in failed: %s", e)
                self.stop()
                raise

        # The listener may already have recorded it
        if self.user is None:
            self.store.set_user(user)

        logger.info("Identity ready: %s (anonymous=%s)", user.id, user.is_anonymous)
        return user

    def stop(self) -> None:
        """Unregisters the identity listener"""
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_auth_state_changed(self, user: Optional[User]) -> None:
        # AUTHENTICATED is terminal: sign-outs and identity swaps are ignored
        if user is None or self.user is not None:
            return
        self.store.set_user(user)
