"""
Attesta Nonce / Replay Tracker

Each account stores a u64 counter. A proof is fresh only when its nonce is
strictly greater than the stored value; after a successful action the stored
value advances by one, saturating at the u64 maximum.

These helpers are pure. Callers serialize the check-then-advance sequence
per account.
"""

import struct

from .errors import ErrorCode, FormatError, ReplayError
from .hashing import sha256_digest

U64_MAX = 2 ** 64 - 1
DERIVED_NONCE_LEN = 32

_I64 = struct.Struct("<q")


def is_valid_next(stored: int, candidate: int) -> bool:
    """True iff ``candidate`` may be consumed after ``stored``."""
    return candidate > stored


def check_next(stored: int, candidate: int) -> None:
    """Raise ReplayError unless ``candidate`` is strictly greater."""
    if not is_valid_next(stored, candidate):
        raise ReplayError(
            ErrorCode.REPLAY_ATTACK,
            f"nonce {candidate} not greater than stored {stored}",
        )


def advance(stored: int) -> int:
    """Next counter value; stays at U64_MAX once reached."""
    return min(stored + 1, U64_MAX)


def derive_nonce(message: bytes, timestamp: int, identity: bytes) -> bytes:
    """
    Deterministic 32-byte nonce bound to a message, time and identity.

    derive_nonce = SHA-256(message || i64 LE timestamp || identity)
    """
    return sha256_digest(bytes(message) + _I64.pack(timestamp) + bytes(identity))


def validate_nonce_format(nonce: bytes) -> None:
    if len(nonce) != DERIVED_NONCE_LEN:
        raise FormatError(
            ErrorCode.INVALID_NONCE,
            f"expected {DERIVED_NONCE_LEN} bytes, got {len(nonce)}",
        )


def nonce_challenge(nonce: int) -> bytes:
    """The 8-byte little-endian challenge a passkey signs for ``nonce``."""
    return nonce.to_bytes(8, "little")
