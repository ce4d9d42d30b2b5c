"""
Define Room and Message structures to ensure consistency in the system
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Room(BaseModel):
    """A chat room record as stored in the Room Directory."""

    model_config = ConfigDict(frozen=True)

    code: str
    creator_id: str
    created_at: datetime

    def to_record(self) -> Dict[str, Any]:
        """Directory payload, keyed externally by the room code."""
        return {"creatorId": self.creator_id, "createdAt": self.created_at.isoformat()}

    @classmethod
    def from_record(cls, code: str, record: Dict[str, Any]) -> "Room":
        return cls(code=code, creator_id=record["creatorId"], created_at=record["createdAt"])


class Message(BaseModel):
    """Message structure in the app. Immutable once appended."""

    model_config = ConfigDict(frozen=True)

    id: str
    text: str = Field(min_length=1)
    sender_id: str
    # Server-assigned at append time, the only ordering key
    created_at: datetime

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, value: str) -> str:
        """Messages never carry whitespace-only text."""
        if not value.strip():
            raise ValueError("message text must not be blank")
        return value

    def to_document(self) -> Dict[str, Any]:
        """Message Log document payload."""
        return {
            "id": self.id,
            "text": self.text,
            "senderId": self.sender_id,
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Message":
        return cls(
            id=document["id"],
            text=document["text"],
            sender_id=document["senderId"],
            created_at=document["createdAt"],
        )


def sort_by_created_at(messages: Iterable[Message]) -> List[Message]:
    """
    Orders messages ascending by their server timestamp.
    The sort is stable, so messages sharing a timestamp keep their relative order.
    """
    return sorted(messages, key=lambda msg: msg.created_at)
