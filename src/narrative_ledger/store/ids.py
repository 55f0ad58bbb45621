"""Time-sortable entry identifiers (ULIDs).

26 Crockford Base32 characters: 48 bits of millisecond timestamp followed by
80 bits of entropy. Identifiers generated within the same millisecond
increment the entropy, so string order always matches generation order.
"""

import secrets
import threading
import time

_ULID_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_ENTROPY_BITS = 80
_MAX_ENTROPY = (1 << _ENTROPY_BITS) - 1

_lock = threading.Lock()
_last_ms = -1
_last_entropy = 0


def _encode(number: int) -> str:
    chars: list[str] = []
    for _ in range(26):
        number, remainder = divmod(number, 32)
        chars.append(_ULID_ALPHABET[remainder])
    return "".join(reversed(chars))


def new_entry_id(*, timestamp_ms: int | None = None) -> str:
    """Generate a new monotonic ULID string."""
    global _last_ms, _last_entropy
    ts_ms = int(time.time() * 1000) if timestamp_ms is None else int(timestamp_ms)
    if ts_ms < 0 or ts_ms >= (1 << 48):
        raise ValueError("timestamp_ms out of ULID 48-bit range")

    with _lock:
        if ts_ms <= _last_ms and _last_entropy < _MAX_ENTROPY:
            ts_ms = _last_ms
            entropy = _last_entropy + 1
        else:
            entropy = int.from_bytes(secrets.token_bytes(10), byteorder="big")
        _last_ms, _last_entropy = ts_ms, entropy

    return _encode((ts_ms << _ENTROPY_BITS) | entropy)
