"""
API Routes definition.
Binds the view to the chat session: room transitions, composer, modal,
messages, and the real-time state WebSocket.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from src.api.dependencies import get_current_user
from src.core.auth_models import User
from src.core.message import Message
from src.core.session_state import SessionState
from src.services.session import chat_session

logger = logging.getLogger(__name__)

router = APIRouter()


class JoinRoomRequest(BaseModel):
    """Payload for joining a room. Falls back to the modal input."""

    code: Optional[str] = None


class SendMessageRequest(BaseModel):
    """Payload for sending a message. Falls back to the composer draft."""

    text: Optional[str] = None


class TextInput(BaseModel):
    """Payload for the view's text inputs."""

    text: str


# === PUBLIC ROUTES ===


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """Returns the session status"""
    user = chat_session.user

    return {
        "status": "online",
        "authenticated": chat_session.is_ready(),
        "user_id": user.id if user else None,
        "room_code": chat_session.state.room.code or None,
    }


@router.get("/state", response_model=SessionState)
async def get_state() -> SessionState:
    """Returns the whole session state the view renders"""
    return chat_session.state


# === Protected routes ===
# Failed operations answer with the unchanged state: the view only
# observes whether the state moved.


@router.get("/me", response_model=User)
async def get_me(current_user: User = Depends(get_current_user)) -> User:
    """Returns the current user"""
    return current_user


@router.post("/rooms", response_model=SessionState)
async def create_room(current_user: User = Depends(get_current_user)) -> SessionState:
    """
    Creates a new room and makes it the active one.
    """
    await chat_session.create_room()
    return chat_session.state


@router.post("/rooms/join", response_model=SessionState)
async def join_room(
    payload: Optional[JoinRoomRequest] = None, current_user: User = Depends(get_current_user)
) -> SessionState:
    """
    Joins an existing room by code.
    """
    code = payload.code if payload else None
    await chat_session.join_room(code)
    return chat_session.state


@router.get("/messages", response_model=List[Message])
async def get_messages(current_user: User = Depends(get_current_user)) -> List[Message]:
    """
    Retrieves the ordered messages of the active room
    """
    return chat_session.state.subscription.messages


@router.post("/messages", response_model=SessionState)
async def send_message(
    payload: Optional[SendMessageRequest] = None, current_user: User = Depends(get_current_user)
) -> SessionState:
    """Sends a message to the active room."""
    text = payload.text if payload else None
    await chat_session.send_message(text)
    return chat_session.state


@router.put("/composer", response_model=SessionState)
async def set_draft(payload: TextInput, current_user: User = Depends(get_current_user)) -> SessionState:
    """Updates the composer draft"""
    chat_session.set_draft(payload.text)
    return chat_session.state


@router.post("/modal", response_model=SessionState)
async def show_modal(current_user: User = Depends(get_current_user)) -> SessionState:
    """Opens the join/create modal"""
    chat_session.show_modal()
    return chat_session.state


@router.put("/modal/input", response_model=SessionState)
async def set_join_input(payload: TextInput, current_user: User = Depends(get_current_user)) -> SessionState:
    """Updates the modal's room code input"""
    chat_session.set_join_input(payload.text)
    return chat_session.state


# === WebSocket Route ===


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """
    Real-time state endpoint.
    Pushes the session state on connect and on every change.
    """
    await websocket.accept()
    logger.info("View connected")

    async def push_states() -> None:
        async for state in chat_session.store.watch():
            await websocket.send_json(state.model_dump(mode="json"))

    pusher = asyncio.create_task(push_states())
    try:
        while True:
            # Upstream actions come through HTTP, we only watch for disconnects here.
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("View disconnected")
    finally:
        pusher.cancel()
        try:
            await pusher
        except asyncio.CancelledError:
            pass
        # pylint: disable=broad-exception-caught
        except Exception as e:
            logger.warning("State push to view failed: %s", e)
