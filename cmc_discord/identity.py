"""Canonical identity codec.

Every ID that crosses the bus is formatted as ``<nativeID>@<Kind>@<Platform>``
so modules can tell a Discord user apart from, say, a Telegram channel.
Decoding only looks at the native prefix, which makes it safe to call on
values that are already native.
"""

from enum import Enum
from typing import NamedTuple, Optional

DEFAULT_PLATFORM = "Discord"
SEPARATOR = "@"


class EntityKind(str, Enum):
    USER = "User"
    CHANNEL = "Channel"
    GUILD = "Guild"
    MESSAGE = "Message"
    SLASH_COMMAND = "SlashCommand"


class CanonicalID(NamedTuple):
    native_id: str
    kind: EntityKind
    platform: str


def encode_id(native_id, kind: EntityKind, platform: str = DEFAULT_PLATFORM) -> str:
    """Format a native ID as a canonical identity."""
    return f"{native_id}{SEPARATOR}{EntityKind(kind).value}{SEPARATOR}{platform}"


def decode_id(value: str) -> str:
    """Return the native ID of a canonical identity (or of a native ID)."""
    return str(value).split(SEPARATOR, 1)[0]


def parse_identity(value: str) -> Optional[CanonicalID]:
    """Split a full canonical identity into its parts.

    Returns None when the value is not ``native@Kind@Platform`` with a
    known kind.
    """
    parts = str(value).split(SEPARATOR)
    if len(parts) != 3 or not all(parts):
        return None
    native_id, kind, platform = parts
    try:
        return CanonicalID(native_id, EntityKind(kind), platform)
    except ValueError:
        return None
