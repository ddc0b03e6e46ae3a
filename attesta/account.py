"""
Attesta Account

An Account is an immutable value. Every change produces a new Account;
the replay counter can only move through advance_after_success, which
requires a VerifiedAuthorization issued against this exact account state.

Persisted layout (little-endian), preceded in shared stores by the 8-byte
discriminator b"ATTESTA\\x00":

    owner          32 bytes
    public_key     64 bytes
    credential_id  u32 len || bytes
    nonce          u64
    policy         u32 len || bytes
    created_at     i64
    updated_at     i64
"""

from dataclasses import dataclass, replace
from typing import Any, Dict

from .auth import VerifiedAuthorization
from .codec import I64, U64, RecordReader, pack_sized
from .errors import ErrorCode, FormatError, ReplayError
from .p256 import PUBLIC_KEY_LEN
from .policy import Policy, decode_policy_bytes
from .replay import U64_MAX, advance

ACCOUNT_DISCRIMINATOR = b"ATTESTA\x00"
OWNER_LEN = 32


@dataclass(frozen=True)
class Account:
    owner: bytes
    public_key: bytes
    credential_id: bytes
    nonce: int = 0
    policy: bytes = b""
    created_at: int = 0
    updated_at: int = 0

    def __post_init__(self):
        if len(self.owner) != OWNER_LEN:
            raise FormatError(
                ErrorCode.INVALID_ACCOUNT_DATA,
                f"owner must be {OWNER_LEN} bytes, got {len(self.owner)}",
            )
        if len(self.public_key) != PUBLIC_KEY_LEN:
            raise FormatError(
                ErrorCode.INVALID_PUBLIC_KEY,
                f"expected {PUBLIC_KEY_LEN} bytes, got {len(self.public_key)}",
            )
        if not 0 <= self.nonce <= U64_MAX:
            raise FormatError(ErrorCode.INVALID_NONCE, f"nonce {self.nonce} outside u64 range")

    @classmethod
    def create(
        cls,
        owner: bytes,
        public_key: bytes,
        credential_id: bytes,
        policy: bytes = b"",
        now: int = 0,
    ) -> "Account":
        """New account with counter 0 and both timestamps set to ``now``."""
        return cls(
            owner=bytes(owner),
            public_key=bytes(public_key),
            credential_id=bytes(credential_id),
            nonce=0,
            policy=bytes(policy),
            created_at=now,
            updated_at=now,
        )

    def advance_after_success(self, verified: VerifiedAuthorization, now: int) -> "Account":
        """
        Consume one counter value after an authorized, policy-allowed action.

        Raises:
            ReplayError(REPLAY_ATTACK): the authorization was issued against
                a different account or an earlier counter value
        """
        if not isinstance(verified, VerifiedAuthorization):
            raise TypeError("advance_after_success requires a VerifiedAuthorization")
        if verified.owner != self.owner or verified.prior_nonce != self.nonce:
            raise ReplayError(
                ErrorCode.REPLAY_ATTACK,
                "authorization does not match current account state",
            )
        return replace(self, nonce=advance(self.nonce), updated_at=now)

    def with_policy(self, policy: bytes, now: int) -> "Account":
        return replace(self, policy=bytes(policy), updated_at=now)

    def decoded_policy(self) -> Policy:
        return decode_policy_bytes(self.policy)

    # Record codec

    def to_bytes(self) -> bytes:
        return (
            self.owner
            + self.public_key
            + pack_sized(self.credential_id)
            + U64.pack(self.nonce)
            + pack_sized(self.policy)
            + I64.pack(self.created_at)
            + I64.pack(self.updated_at)
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "Account":
        """
        Raises:
            FormatError(INVALID_ACCOUNT_DATA): truncated or trailing bytes
        """
        reader = RecordReader(data)
        account = cls(
            owner=reader.take(OWNER_LEN),
            public_key=reader.take(PUBLIC_KEY_LEN),
            credential_id=reader.sized(),
            nonce=reader.u64(),
            policy=reader.sized(),
            created_at=reader.i64(),
            updated_at=reader.i64(),
        )
        reader.finish()
        return account

    def to_record(self) -> bytes:
        """Discriminator-prefixed record for shared stores."""
        return ACCOUNT_DISCRIMINATOR + self.to_bytes()

    @classmethod
    def from_record(cls, data: bytes) -> "Account":
        if data[:len(ACCOUNT_DISCRIMINATOR)] != ACCOUNT_DISCRIMINATOR:
            raise FormatError(ErrorCode.INVALID_ACCOUNT_DATA, "account discriminator mismatch")
        return cls.from_bytes(data[len(ACCOUNT_DISCRIMINATOR):])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner.hex(),
            "public_key": self.public_key.hex(),
            "credential_id": self.credential_id.hex(),
            "nonce": self.nonce,
            "policy": self.policy.hex(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
