from __future__ import annotations

import re
import time


# ASCII digits only, short enough that int() can never hit its length limit.
_DIGITS = re.compile(r"^[0-9]{1,16}$")

# 9998-12-31T23:59:59.999Z. A one-year TTL added to this still fits in a
# datetime, so every stored timestamp can be rendered in a response.
MAX_OVERRIDE_MS = 253_370_764_799_999


def wall_clock_ms() -> int:
    """Return the current wall-clock time in milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


def resolve_now_ms(override: object = None, *, test_mode: bool = False) -> int:
    """
    Resolve "now" for expiry checks.

    In test mode an explicit ``override`` (an int, or a string of ASCII
    decimal digits) replaces the wall clock. Anything missing, malformed,
    negative or beyond ``MAX_OVERRIDE_MS`` falls back to real time; this
    function never raises.
    """

    if not test_mode or override is None or isinstance(override, bool):
        return wall_clock_ms()

    if isinstance(override, str):
        text = override.strip()
        if not _DIGITS.match(text):
            return wall_clock_ms()
        override = int(text)

    if isinstance(override, int) and 0 <= override <= MAX_OVERRIDE_MS:
        return override
    return wall_clock_ms()
