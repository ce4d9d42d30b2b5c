"""Shared fixtures"""

import asyncio
from typing import Awaitable, Callable

import pytest

from src.core.auth_models import User
from src.core.session_state import SessionStore


async def _wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Lets the event loop run until the predicate holds."""

    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    """Polls the event loop until a condition holds"""
    return _wait_until


@pytest.fixture
def user() -> User:
    """The session's user"""
    return User(id="u1")


@pytest.fixture
def authed_store(user) -> SessionStore:
    """Session state with an established identity"""
    store = SessionStore()
    store.set_user(user)
    return store
