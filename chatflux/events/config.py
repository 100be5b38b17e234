"""Event model constants and enums."""

from enum import Enum


class EventKind(str, Enum):
    """Closed set of event kinds."""

    USER = "user"
    SYSTEM = "system"
    JOIN = "join"
    LEAVE = "leave"


MAX_BODY_LENGTH = 5000
MAX_STREAM_ID_LENGTH = 100
DEFAULT_STREAM_ID = "global"

# Partition key for system-originated events without an origin.
SYSTEM_KEY = "system"

# Read API bounds
MIN_READ_LIMIT = 1
MAX_READ_LIMIT = 100
DEFAULT_READ_LIMIT = 50
