"""Time-windowed rolling authentication codes.

The peer and this client share a secret and derive the same short numeric
code from wall-clock time, so no handshake is needed. The derivation is
HOTP (RFC 4226) with the counter taken from the current time window, as
in TOTP (RFC 6238).
"""

import hashlib
import hmac
import struct
import time
from collections.abc import Callable
from datetime import datetime

DEFAULT_WINDOW_SECONDS = 10
DEFAULT_DIGITS = 6


def _to_unix(at: datetime | float | int) -> float:
    if isinstance(at, datetime):
        return at.timestamp()
    return float(at)


def window_counter(at: datetime | float | int, window: int = DEFAULT_WINDOW_SECONDS) -> int:
    """Index of the time window containing ``at``."""
    return int(_to_unix(at) // window)


def rolling_code(
    secret: bytes | str,
    at: datetime | float | int,
    window: int = DEFAULT_WINDOW_SECONDS,
    digits: int = DEFAULT_DIGITS,
) -> str:
    """Derive the zero-padded code for the window containing ``at``.

    Args:
        secret: Shared secret (str is UTF-8 encoded).
        at: Unix seconds or an aware datetime.
        window: Window length in seconds.
        digits: Code length.

    Returns:
        Decimal code, exactly ``digits`` characters long.
    """
    key = secret.encode("utf-8") if isinstance(secret, str) else secret
    counter = struct.pack(">Q", window_counter(at, window))
    digest = hmac.new(key, counter, hashlib.sha1).digest()

    # Dynamic truncation: low nibble of the last byte picks a 4-byte slice.
    offset = digest[-1] & 0x0F
    (value,) = struct.unpack(">I", digest[offset : offset + 4])
    value &= 0x7FFFFFFF
    return str(value % (10**digits)).zfill(digits)


class RollingCodeGenerator:
    """Produces the current rolling code from a fixed shared secret."""

    def __init__(
        self,
        secret: bytes | str,
        window: int = DEFAULT_WINDOW_SECONDS,
        digits: int = DEFAULT_DIGITS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if window <= 0:
            raise ValueError(f"window must be positive, got {window}")
        if not 1 <= digits <= 9:
            raise ValueError(f"digits must be between 1 and 9, got {digits}")
        self._secret = secret.encode("utf-8") if isinstance(secret, str) else secret
        self.window = window
        self.digits = digits
        self._clock = clock

    def code(self, at: datetime | float | int | None = None) -> str:
        """Code for ``at``, or for now when omitted."""
        if at is None:
            at = self._clock()
        return rolling_code(self._secret, at, self.window, self.digits)

    def window_remaining(self, at: datetime | float | int | None = None) -> float:
        """Seconds until the current code expires."""
        now = self._clock() if at is None else _to_unix(at)
        return self.window - (now % self.window)

    def __repr__(self) -> str:
        return f"RollingCodeGenerator(window={self.window}, digits={self.digits})"
