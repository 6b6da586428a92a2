from __future__ import annotations

import secrets
import string


# URL-safe alphabet; 64**10 candidates per identifier.
ALPHABET = string.ascii_letters + string.digits + "-_"
DEFAULT_SIZE = 10
MAX_ID_LENGTH = 100


def generate_paste_id(size: int = DEFAULT_SIZE) -> str:
    """Return a short random identifier drawn with ``secrets``."""
    return "".join(secrets.choice(ALPHABET) for _ in range(size))


def is_addressable(paste_id: object) -> bool:
    """Cheap guard run before any storage round trip."""
    return isinstance(paste_id, str) and 0 < len(paste_id) <= MAX_ID_LENGTH
