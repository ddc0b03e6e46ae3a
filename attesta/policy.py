"""
Attesta Policy Engine

A policy is a kind tag plus a configuration byte string. The configuration
is decoded once, up front, into a typed rule; evaluation is then a pure
function of (rule, amount, now, approvals).

Configuration layouts (little-endian):

    Open           empty
    SpendingLimit  u64 max_amount                      (8 bytes)
    DailyLimit     u64 max_amount || i64 reset_time    (16 bytes)
    MultiSig       N x 32-byte signer key, N >= 1
    TimeLocked     i64 unlock_timestamp                (8 bytes)

Evaluation fails closed: a configuration that cannot be decoded is DENIED.
"""

import logging
import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import AbstractSet, Any, Dict, Iterable, Optional, Tuple

from .errors import ErrorCode, PolicyError

logger = logging.getLogger(__name__)

U64_MAX = 2 ** 64 - 1
I64_MIN = -(2 ** 63)
I64_MAX = 2 ** 63 - 1
SIGNER_KEY_LEN = 32

_U64 = struct.Struct("<Q")
_I64 = struct.Struct("<q")
_U64_I64 = struct.Struct("<Qq")
_RECORD_HEADER = struct.Struct("<BI")


class PolicyType(IntEnum):
    """Policy kinds. Values are the persisted tag."""
    OPEN = 0
    SPENDING_LIMIT = 1
    DAILY_LIMIT = 2
    MULTI_SIG = 3
    TIME_LOCKED = 4


class PolicyResult(str, Enum):
    ALLOWED = "ALLOWED"
    DENIED = "DENIED"
    REQUIRES_APPROVAL = "REQUIRES_APPROVAL"


# =============================================================================
# Rules
# =============================================================================

class PolicyRule(ABC):
    """Decoded policy configuration."""

    policy_type: PolicyType

    @abstractmethod
    def evaluate(self, amount: int, now: int, approvals: AbstractSet[bytes]) -> PolicyResult:
        pass

    @abstractmethod
    def encode(self) -> bytes:
        pass

    def describe(self) -> Dict[str, Any]:
        return {"type": self.policy_type.name}


@dataclass(frozen=True)
class OpenRule(PolicyRule):
    policy_type = PolicyType.OPEN

    def evaluate(self, amount, now, approvals):
        return PolicyResult.ALLOWED

    def encode(self) -> bytes:
        return b""


@dataclass(frozen=True)
class SpendingLimitRule(PolicyRule):
    """Per-action cap."""
    max_amount: int
    policy_type = PolicyType.SPENDING_LIMIT

    def evaluate(self, amount, now, approvals):
        return PolicyResult.ALLOWED if amount <= self.max_amount else PolicyResult.DENIED

    def encode(self) -> bytes:
        return _U64.pack(self.max_amount)

    def describe(self):
        return {"type": self.policy_type.name, "max_amount": self.max_amount}


@dataclass(frozen=True)
class DailyLimitRule(PolicyRule):
    """
    Per-action cap with a reset timestamp.

    Only the single action amount is compared against max_amount. Totals
    across a day are not tracked here; the reset timestamp is carried for
    a ledger that does.
    """
    max_amount: int
    reset_timestamp: int
    policy_type = PolicyType.DAILY_LIMIT

    def evaluate(self, amount, now, approvals):
        return PolicyResult.ALLOWED if amount <= self.max_amount else PolicyResult.DENIED

    def encode(self) -> bytes:
        return _U64_I64.pack(self.max_amount, self.reset_timestamp)

    def describe(self):
        return {
            "type": self.policy_type.name,
            "max_amount": self.max_amount,
            "reset_timestamp": self.reset_timestamp,
        }


@dataclass(frozen=True)
class MultiSigRule(PolicyRule):
    """
    Every listed signer must approve.

    Approvals are verified by the caller; this rule only checks that the
    approving set covers all required signers.
    """
    signers: Tuple[bytes, ...]
    policy_type = PolicyType.MULTI_SIG

    def evaluate(self, amount, now, approvals):
        if set(self.signers).issubset(approvals):
            return PolicyResult.ALLOWED
        return PolicyResult.REQUIRES_APPROVAL

    def encode(self) -> bytes:
        return b"".join(self.signers)

    def describe(self):
        return {"type": self.policy_type.name, "signers": [s.hex() for s in self.signers]}


@dataclass(frozen=True)
class TimeLockedRule(PolicyRule):
    unlock_timestamp: int
    policy_type = PolicyType.TIME_LOCKED

    def evaluate(self, amount, now, approvals):
        return PolicyResult.ALLOWED if now >= self.unlock_timestamp else PolicyResult.DENIED

    def encode(self) -> bytes:
        return _I64.pack(self.unlock_timestamp)

    def describe(self):
        return {"type": self.policy_type.name, "unlock_timestamp": self.unlock_timestamp}


def _expect_len(config: bytes, expected: int, kind: PolicyType) -> None:
    if len(config) != expected:
        raise PolicyError(
            ErrorCode.MALFORMED_POLICY,
            f"{kind.name} config must be {expected} bytes, got {len(config)}",
        )


def decode_rule(policy_type: PolicyType, config: bytes) -> PolicyRule:
    """
    Decode configuration bytes for a policy kind.

    Raises:
        PolicyError(MALFORMED_POLICY): length does not match the layout
    """
    if policy_type == PolicyType.OPEN:
        # Open carries no configuration; stray bytes make the record malformed,
        # so an Open tag with a non-empty config evaluates to DENIED.
        _expect_len(config, 0, policy_type)
        return OpenRule()
    if policy_type == PolicyType.SPENDING_LIMIT:
        _expect_len(config, _U64.size, policy_type)
        return SpendingLimitRule(max_amount=_U64.unpack(config)[0])
    if policy_type == PolicyType.DAILY_LIMIT:
        _expect_len(config, _U64_I64.size, policy_type)
        max_amount, reset = _U64_I64.unpack(config)
        return DailyLimitRule(max_amount=max_amount, reset_timestamp=reset)
    if policy_type == PolicyType.MULTI_SIG:
        if not config or len(config) % SIGNER_KEY_LEN != 0:
            raise PolicyError(
                ErrorCode.MALFORMED_POLICY,
                f"MULTI_SIG config must be a non-empty multiple of {SIGNER_KEY_LEN} bytes",
            )
        signers = tuple(
            bytes(config[i:i + SIGNER_KEY_LEN])
            for i in range(0, len(config), SIGNER_KEY_LEN)
        )
        return MultiSigRule(signers=signers)
    if policy_type == PolicyType.TIME_LOCKED:
        _expect_len(config, _I64.size, policy_type)
        return TimeLockedRule(unlock_timestamp=_I64.unpack(config)[0])
    raise PolicyError(ErrorCode.MALFORMED_POLICY, f"unknown policy type {policy_type!r}")


# =============================================================================
# Policy
# =============================================================================

@dataclass(frozen=True)
class Policy:
    """
    A policy kind with its raw configuration.

    The rule is decoded at construction; a malformed configuration is kept
    (so it can be reported and replaced) and evaluates to DENIED.
    """
    policy_type: PolicyType
    config: bytes = b""
    rule: Optional[PolicyRule] = field(default=None, init=False, repr=False, compare=False)
    error: Optional[str] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "policy_type", PolicyType(self.policy_type))
        object.__setattr__(self, "config", bytes(self.config))
        try:
            object.__setattr__(self, "rule", decode_rule(self.policy_type, self.config))
        except PolicyError as e:
            object.__setattr__(self, "error", e.detail)

    # Factories

    @classmethod
    def open(cls) -> "Policy":
        return cls(PolicyType.OPEN)

    @classmethod
    def spending_limit(cls, max_amount: int) -> "Policy":
        _check_u64(max_amount, "max_amount")
        return cls(PolicyType.SPENDING_LIMIT, SpendingLimitRule(max_amount).encode())

    @classmethod
    def daily_limit(cls, max_amount: int, reset_timestamp: int) -> "Policy":
        _check_u64(max_amount, "max_amount")
        return cls(PolicyType.DAILY_LIMIT, DailyLimitRule(max_amount, reset_timestamp).encode())

    @classmethod
    def multi_sig(cls, signers: Iterable[bytes]) -> "Policy":
        signers = tuple(bytes(s) for s in signers)
        if not signers:
            raise ValueError("multi_sig requires at least one signer")
        for s in signers:
            if len(s) != SIGNER_KEY_LEN:
                raise ValueError(f"signer keys must be {SIGNER_KEY_LEN} bytes")
        return cls(PolicyType.MULTI_SIG, MultiSigRule(signers).encode())

    @classmethod
    def time_locked(cls, unlock_timestamp: int) -> "Policy":
        return cls(PolicyType.TIME_LOCKED, TimeLockedRule(unlock_timestamp).encode())

    # Evaluation

    def is_valid(self) -> bool:
        return self.rule is not None

    def evaluate(
        self,
        amount: int,
        now: int,
        approvals: Optional[AbstractSet[bytes]] = None,
    ) -> PolicyResult:
        """
        Decide whether an authorized action may proceed.

        Never raises. Malformed configuration, an amount outside u64 or a
        time outside i64 yields DENIED.
        """
        if self.rule is None:
            logger.warning("Malformed %s policy denied: %s", self.policy_type.name, self.error)
            return PolicyResult.DENIED
        if not 0 <= amount <= U64_MAX or not I64_MIN <= now <= I64_MAX:
            logger.warning("Out-of-range input denied: amount=%d now=%d", amount, now)
            return PolicyResult.DENIED
        return self.rule.evaluate(amount, now, frozenset(approvals or ()))

    def permits(self, amount: int, now: int) -> bool:
        return self.evaluate(amount, now) == PolicyResult.ALLOWED

    # Record codec

    def to_bytes(self) -> bytes:
        """u8 kind || u32 LE config length || config"""
        return _RECORD_HEADER.pack(int(self.policy_type), len(self.config)) + self.config

    @classmethod
    def from_bytes(cls, data: bytes) -> "Policy":
        """
        Raises:
            PolicyError(MALFORMED_POLICY): unknown kind, truncation, or
                trailing bytes
        """
        if len(data) < _RECORD_HEADER.size:
            raise PolicyError(ErrorCode.MALFORMED_POLICY, "truncated policy header")
        tag, length = _RECORD_HEADER.unpack_from(data, 0)
        try:
            kind = PolicyType(tag)
        except ValueError as e:
            raise PolicyError(ErrorCode.MALFORMED_POLICY, f"unknown policy tag {tag}") from e
        end = _RECORD_HEADER.size + length
        if end != len(data):
            raise PolicyError(
                ErrorCode.MALFORMED_POLICY,
                f"policy config length {length} does not match record size {len(data)}",
            )
        return cls(kind, bytes(data[_RECORD_HEADER.size:end]))

    def to_dict(self) -> Dict[str, Any]:
        d = self.rule.describe() if self.rule else {"type": self.policy_type.name}
        d["config"] = self.config.hex()
        if self.error:
            d["error"] = self.error
        return d


def _check_u64(value: int, name: str) -> None:
    if not 0 <= value <= U64_MAX:
        raise ValueError(f"{name} must fit in an unsigned 64-bit integer")


def decode_policy_bytes(policy_bytes: bytes) -> Policy:
    """Account policy bytes to a Policy; empty bytes mean Open."""
    if not policy_bytes:
        return Policy.open()
    return Policy.from_bytes(policy_bytes)


def evaluate_policy_bytes(
    policy_bytes: bytes,
    amount: int,
    now: int,
    approvals: Optional[AbstractSet[bytes]] = None,
) -> PolicyResult:
    """
    Evaluate the policy stored on an account.

    Empty bytes evaluate as Open; undecodable bytes as DENIED.
    """
    try:
        policy = decode_policy_bytes(policy_bytes)
    except PolicyError as e:
        logger.warning("Undecodable policy record denied: %s", e.detail)
        return PolicyResult.DENIED
    return policy.evaluate(amount, now, approvals)
