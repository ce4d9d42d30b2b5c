"""
Error taxonomy of the chat session.

Every error raised by the backends and services derives from ChatError, so
operation boundaries can catch the whole family, log it and keep the
session in its previous consistent state.
"""


class ChatError(Exception):
    """Base class for all chat session errors."""


class AuthError(ChatError):
    """The identity provider could not establish a user."""


class WriteError(ChatError):
    """A write to the Room Directory or the Message Log failed."""


class SendError(WriteError):
    """Appending a message to the Message Log failed."""


class RoomCodeConflictError(WriteError):
    """A room record already exists under the requested code."""

    def __init__(self, code: str):
        super().__init__(f"Room code {code} is already taken")
        self.code = code


class RoomLookupError(ChatError):
    """The room existence check itself failed (network, permissions...)."""


class RoomNotFoundError(ChatError):
    """The lookup succeeded but no room matches the code."""

    def __init__(self, code: str):
        super().__init__(f"Chat room {code} not found")
        self.code = code


class SubscriptionError(ChatError):
    """Live delivery of the Message Log failed."""
