"""
EchoMesh - Room identity generation and validation.

Room id policy v2: "room-" followed by exactly 20 characters from [a-z0-9].
The policy is versioned; any change to the pattern must bump
ROOM_ID_POLICY_VERSION rather than silently altering validation.

The password is never derived from or stored in the room id.
"""

import re
import secrets
from dataclasses import dataclass, field

from .constants import (
    ROOM_ID_ALPHABET,
    ROOM_ID_LENGTH,
    ROOM_ID_POLICY_VERSION,
    ROOM_ID_PREFIX,
    ROOM_PASSWORD_BYTES,
)
from .errors import ErrorCode, ValidationError

ROOM_ID_PATTERN = re.compile(rf"^{re.escape(ROOM_ID_PREFIX)}[a-z0-9]{{{ROOM_ID_LENGTH}}}$")


@dataclass(frozen=True)
class RoomIdentity:
    """A room id and its password. The password never appears in repr()."""

    room_id: str
    password: str = field(repr=False)


def is_valid_room_id(room_id: str) -> bool:
    """Check a room id against the current policy."""
    return isinstance(room_id, str) and ROOM_ID_PATTERN.fullmatch(room_id) is not None


def validate_room_id(room_id: str) -> str:
    """
    Validate a candidate room id at the join boundary.

    Returns:
        The room id unchanged

    Raises:
        ValidationError: If the id is empty, has the wrong length, or
            contains characters outside [a-z0-9]
    """
    if not isinstance(room_id, str) or not room_id.strip():
        raise ValidationError(ErrorCode.E101_INVALID_ROOM_ID, "Room id must not be empty")

    if not is_valid_room_id(room_id):
        raise ValidationError(
            ErrorCode.E101_INVALID_ROOM_ID,
            f"Room id must be '{ROOM_ID_PREFIX}' followed by {ROOM_ID_LENGTH} "
            "lowercase letters or digits",
            {"policy_version": ROOM_ID_POLICY_VERSION},
        )

    return room_id


def generate_room_id() -> str:
    """Generate a random room id matching the current policy."""
    suffix = "".join(secrets.choice(ROOM_ID_ALPHABET) for _ in range(ROOM_ID_LENGTH))
    return ROOM_ID_PREFIX + suffix


def generate_password() -> str:
    """Generate a high-entropy room password (192 bits, url-safe)."""
    return secrets.token_urlsafe(ROOM_PASSWORD_BYTES)


def generate_room() -> RoomIdentity:
    return RoomIdentity(generate_room_id(), generate_password())
