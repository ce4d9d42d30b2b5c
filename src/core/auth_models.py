"""Identity models shared by the identity provider and the API"""

from enum import Enum

from pydantic import BaseModel, ConfigDict


class User(BaseModel):
    """Represents the user issued by the identity provider."""

    model_config = ConfigDict(frozen=True)

    id: str
    is_anonymous: bool = False


class IdentityStatus(str, Enum):
    """Identity bootstrap states. AUTHENTICATED is terminal."""

    UNAUTHENTICATED = "UNAUTHENTICATED"
    AUTHENTICATED = "AUTHENTICATED"
