"""Room code generation"""

import secrets
import string
from random import Random
from typing import Optional

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
ROOM_CODE_LENGTH = 6

_system_random = secrets.SystemRandom()


def generate_room_code(length: int = ROOM_CODE_LENGTH, rng: Optional[Random] = None) -> str:
    """
    Draws a code of uppercase letters and digits, uniformly at random.
    Uniqueness is not guaranteed here; the directory write detects conflicts.
    """
    source = rng or _system_random
    return "".join(source.choice(ROOM_CODE_ALPHABET) for _ in range(length))


def normalize_room_code(code: str) -> str:
    """Room codes are compared upper-cased and without surrounding blanks."""
    return code.strip().upper()
