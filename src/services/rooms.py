"""Room session controller: creating and joining rooms."""

import asyncio
import logging
from random import Random
from typing import Optional

from src.core.auth_models import User
from src.core.errors import RoomCodeConflictError, RoomLookupError, RoomNotFoundError, WriteError
from src.core.room_code import ROOM_CODE_LENGTH, generate_room_code, normalize_room_code
from src.core.session_state import SessionStore
from src.services.backend import IChatBackend

logger = logging.getLogger(__name__)


class RoomSessionController:
    """
    Owns the "no room / has room" state of the session.

    Errors never leave the controller: they are logged and the session keeps
    its previous room, which is the only signal the user gets.
    """

    def __init__(
        self,
        backend: IChatBackend,
        store: SessionStore,
        code_length: int = ROOM_CODE_LENGTH,
        create_attempts: int = 5,
        rng: Optional[Random] = None,
    ):
        self.backend = backend
        self.store = store
        self.code_length = code_length
        self.create_attempts = max(1, create_attempts)
        self.rng = rng
        self._lock = asyncio.Lock()

    async def create_room(self, user: User) -> Optional[str]:
        """
        Creates a room owned by the user and makes it the active room.
        Returns the new code, or None if the directory write failed.
        """
        async with self._lock:
            try:
                code = await self._write_new_room(user)
            except WriteError as e:
                logger.error("Error creating new chat: %s", e)
                return None

            self.store.set_room(code)
            self.store.hide_modal()
            logger.info("Created room %s for %s", code, user.id)
            return code

    async def join_room(self, user: User, code: str) -> bool:
        """
        Makes an existing room the active room.
        Returns False when the code is blank, unknown, or the lookup failed.
        """
        code = normalize_room_code(code)
        if not code:
            return False

        async with self._lock:
            try:
                room = await self.backend.get_room(code)
            except RoomLookupError as e:
                logger.error("Error joining chat %s: %s", code, e)
                return False

            if room is None:
                logger.error("Error joining chat: %s", RoomNotFoundError(code))
                return False

            self.store.set_room(code)
            self.store.hide_modal()
            logger.info("User %s joined room %s", user.id, code)
            return True

    async def _write_new_room(self, user: User) -> str:
        # Codes are random, a taken one is simply redrawn
        for attempt in range(1, self.create_attempts + 1):
            code = generate_room_code(self.code_length, self.rng)
            try:
                await self.backend.create_room(code, user.id)
                return code
            except RoomCodeConflictError:
                logger.warning("Room code %s already taken (attempt %d/%d)", code, attempt, self.create_attempts)

        raise WriteError(f"No free room code after {self.create_attempts} attempts")
