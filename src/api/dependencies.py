"""
FastAPI dependencies for identity gating.
"""

from fastapi import HTTPException, status

from src.core.auth_models import User
from src.services.session import chat_session


async def get_current_user() -> User:
    """
    Dependency that checks if the session's identity is established.
    Returns the current user.
    """
    if not chat_session.is_ready() or not chat_session.user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Session has no identity yet."
        )
    return chat_session.user
