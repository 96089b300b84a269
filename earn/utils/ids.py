"""Reference id generation for positions, intents and simulated transactions."""

import secrets
import string
import time

_ALPHABET = string.digits + string.ascii_uppercase


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def make_ref(prefix: str, random_len: int = 6) -> str:
    """Return ``PREFIX-<base36 epoch ms>-<random>``, e.g. ``EARN-LZ4K2A1B-7QX0PD``."""
    stamp = _base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(random_len))
    return f"{prefix}-{stamp}-{suffix}"
