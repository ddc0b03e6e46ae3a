"""
Attesta Account Lifecycle

execute_action is the pure decision core:

    1. verify the authorization proof       (error: account untouched)
    2. evaluate the account policy          (DENIED raises, account untouched;
                                             REQUIRES_APPROVAL returns it as-is)
    3. advance the counter                  (ALLOWED only)

AccountService wraps it with storage, a clock, per-account serialization,
ownership checks for administrative operations, and audit logging.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, Iterator, Optional

from .account import Account
from .auth import AuthorizationProof, VerifiedAuthorization
from .config import registry_defaults
from .errors import (
    AttestaError,
    ErrorCode,
    FormatError,
    PolicyDeniedError,
    ReplayError,
    UnauthorizedError,
)
from .hashing import short_hex
from .logging_config import AuditLogger, audit_log
from .policy import I64_MAX, I64_MIN, U64_MAX, PolicyResult, PolicyType, evaluate_policy_bytes
from .registry import CredentialEntry, MultiCredentialRegistry
from .storage import (
    AccountStore,
    init_account,
    load_account,
    load_registry,
    save_account,
    save_registry,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def system_clock() -> int:
    """Current Unix time in whole seconds."""
    return int(time.time())


class ExecutionOutcome(str, Enum):
    EXECUTED = "EXECUTED"
    PENDING_APPROVAL = "PENDING_APPROVAL"


@dataclass(frozen=True)
class ActionContext:
    """
    Inputs to policy evaluation for one action.

    Raises:
        FormatError(INVALID_ACTION_CONTEXT): amount outside u64 or now
            outside i64
    """
    amount: int
    now: int
    approvals: FrozenSet[bytes] = field(default_factory=frozenset)

    def __post_init__(self):
        if not 0 <= self.amount <= U64_MAX:
            raise FormatError(ErrorCode.INVALID_ACTION_CONTEXT, f"amount {self.amount} outside u64")
        if not I64_MIN <= self.now <= I64_MAX:
            raise FormatError(ErrorCode.INVALID_ACTION_CONTEXT, f"time {self.now} outside i64")


@dataclass(frozen=True)
class ExecutionResult:
    outcome: ExecutionOutcome
    account: Account
    policy_result: PolicyResult
    verified: VerifiedAuthorization

    def executed(self) -> bool:
        return self.outcome == ExecutionOutcome.EXECUTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "policy_result": self.policy_result.value,
            "nonce": self.account.nonce,
            "verified": self.verified.to_dict(),
        }


def execute_action(
    account: Account,
    proof: AuthorizationProof,
    context: ActionContext,
    registry: Optional[MultiCredentialRegistry] = None,
) -> ExecutionResult:
    """
    Authorize and gate one action.

    Returns:
        ExecutionResult with the resulting account: advanced by one when
        EXECUTED, unchanged when PENDING_APPROVAL

    Raises:
        Any proof verification error
        PolicyDeniedError: policy returned DENIED
    """
    verified = proof.verify(account, registry)

    result = evaluate_policy_bytes(account.policy, context.amount, context.now, context.approvals)

    if result == PolicyResult.DENIED:
        raise PolicyDeniedError(result, f"amount {context.amount} at {context.now}")

    if result == PolicyResult.REQUIRES_APPROVAL:
        return ExecutionResult(ExecutionOutcome.PENDING_APPROVAL, account, result, verified)

    return ExecutionResult(
        ExecutionOutcome.EXECUTED,
        account.advance_after_success(verified, context.now),
        result,
        verified,
    )


def replace_policy(account: Account, policy_bytes: bytes, now: int) -> Account:
    """Overwrite the policy. Ownership is checked by the caller."""
    return account.with_policy(policy_bytes, now)


def _policy_label(policy_bytes: bytes) -> str:
    if not policy_bytes:
        return PolicyType.OPEN.name
    try:
        return PolicyType(policy_bytes[0]).name
    except ValueError:
        return "UNKNOWN"


class _AccountLock:
    """A per-address lock and the number of callers holding or awaiting it."""

    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = threading.Lock()
        self.holders = 0


class AccountService:
    """
    Stateful orchestration over an AccountStore.

    Calls touching the same account address are serialized with a
    per-address lock so check-then-advance of the counter is atomic.
    Different accounts proceed in parallel.

    Usage:
        service = AccountService(InMemoryAccountStore())
        address = service.register_account(owner, public_key, credential_id)
        result = service.execute(address, proof, amount=100)
    """

    def __init__(
        self,
        store: AccountStore,
        clock: Clock = system_clock,
        audit: Optional[AuditLogger] = None,
        max_credentials: Optional[int] = None,
        recovery_threshold: Optional[int] = None,
    ):
        defaults = registry_defaults()
        self.store = store
        self.clock = clock
        self.audit = audit or audit_log
        self.max_credentials = defaults["max_credentials"] if max_credentials is None else max_credentials
        self.recovery_threshold = (
            defaults["recovery_threshold"] if recovery_threshold is None else recovery_threshold
        )
        self._locks: Dict[bytes, _AccountLock] = {}
        self._locks_lock = threading.Lock()

    @contextmanager
    def _account_lock(self, address: bytes) -> Iterator[None]:
        """Hold the lock for ``address``; the entry is dropped once unused."""
        with self._locks_lock:
            slot = self._locks.get(address)
            if slot is None:
                slot = self._locks[address] = _AccountLock()
            slot.holders += 1
        try:
            with slot.lock:
                yield
        finally:
            with self._locks_lock:
                slot.holders -= 1
                if slot.holders == 0:
                    del self._locks[address]

    def _require_owner(self, account: Account, caller: bytes, address: bytes, operation: str) -> None:
        if account.owner != caller:
            self.audit.security_event(
                "unauthorized_" + operation,
                severity="high",
                account=address.hex(),
                caller=caller.hex(),
            )
            raise UnauthorizedError(ErrorCode.UNAUTHORIZED, f"{operation} requires the account owner")

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    def register_account(
        self,
        owner: bytes,
        public_key: bytes,
        credential_id: bytes,
        policy: bytes = b"",
        name: str = "primary",
        seed: Optional[bytes] = None,
    ) -> bytes:
        """Create the account and its registry. Returns the account address."""
        now = self.clock()
        primary = CredentialEntry(bytes(public_key), bytes(credential_id), name, True, now)
        registry = MultiCredentialRegistry(primary, self.recovery_threshold, self.max_credentials)
        address, _ = init_account(self.store, owner, public_key, credential_id, policy, now, seed)
        with self._account_lock(address):
            save_registry(self.store, address, registry)
        self.audit.credential_added(address.hex(), credential_id.hex(), name)
        return address

    def load(self, address: bytes) -> Account:
        return load_account(self.store, address)

    def load_registry(self, address: bytes) -> Optional[MultiCredentialRegistry]:
        return load_registry(self.store, address)

    def execute(
        self,
        address: bytes,
        proof: AuthorizationProof,
        amount: int,
        approvals: Optional[Iterable[bytes]] = None,
    ) -> ExecutionResult:
        """
        Verify, evaluate, and commit one action against a stored account.

        The store is written only when the outcome is EXECUTED.
        """
        with self._account_lock(address):
            account = load_account(self.store, address)
            registry = load_registry(self.store, address)
            context = ActionContext(
                amount=amount,
                now=self.clock(),
                approvals=frozenset(approvals or ()),
            )
            self.audit.authorization_attempt(
                address.hex(), proof.assertion.credential_id.hex(), proof.nonce, amount
            )

            try:
                result = execute_action(account, proof, context, registry)
            except ReplayError:
                self.audit.replay_rejected(address.hex(), account.nonce, proof.nonce)
                raise
            except AttestaError as e:
                self.audit.authorization_decision(
                    address.hex(), "REJECTED", proof.nonce, error=e.code.value
                )
                raise

            if result.executed():
                save_account(self.store, address, result.account)
                logger.debug("Account %s advanced to nonce %d", short_hex(address), result.account.nonce)
            self.audit.authorization_decision(address.hex(), result.policy_result.value, proof.nonce)
            return result

    def update_policy(self, address: bytes, caller: bytes, policy_bytes: bytes) -> Account:
        """Owner-only policy replacement."""
        with self._account_lock(address):
            account = load_account(self.store, address)
            self._require_owner(account, caller, address, "update_policy")
            updated = replace_policy(account, policy_bytes, self.clock())
            save_account(self.store, address, updated)
        self.audit.policy_replaced(address.hex(), _policy_label(policy_bytes), caller.hex())
        return updated

    # -------------------------------------------------------------------------
    # Credentials
    # -------------------------------------------------------------------------

    def _owned_registry(self, address: bytes, caller: bytes, operation: str) -> MultiCredentialRegistry:
        account = load_account(self.store, address)
        self._require_owner(account, caller, address, operation)
        registry = load_registry(self.store, address)
        if registry is None:
            primary = CredentialEntry(
                account.public_key, account.credential_id, "primary", True, account.created_at
            )
            registry = MultiCredentialRegistry(primary, self.recovery_threshold, self.max_credentials)
        return registry

    def add_credential(
        self,
        address: bytes,
        caller: bytes,
        public_key: bytes,
        credential_id: bytes,
        name: str = "",
    ) -> CredentialEntry:
        with self._account_lock(address):
            registry = self._owned_registry(address, caller, "add_credential")
            entry = registry.add_credential(public_key, credential_id, name, self.clock())
            save_registry(self.store, address, registry)
        self.audit.credential_added(address.hex(), credential_id.hex(), name)
        return entry

    def remove_credential(self, address: bytes, caller: bytes, credential_id: bytes) -> CredentialEntry:
        with self._account_lock(address):
            registry = self._owned_registry(address, caller, "remove_credential")
            entry = registry.remove(credential_id)
            save_registry(self.store, address, registry)
        self.audit.credential_removed(address.hex(), credential_id.hex())
        return entry

    def set_credential_enabled(
        self,
        address: bytes,
        caller: bytes,
        credential_id: bytes,
        enabled: bool,
    ) -> CredentialEntry:
        with self._account_lock(address):
            registry = self._owned_registry(address, caller, "set_credential_enabled")
            entry = registry.enable(credential_id) if enabled else registry.disable(credential_id)
            save_registry(self.store, address, registry)
        self.audit.credential_toggled(address.hex(), credential_id.hex(), enabled)
        return entry
