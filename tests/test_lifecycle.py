"""
Attesta Account Lifecycle Test Suite

Critical invariant tested:
    THE COUNTER ADVANCES ONLY WHEN PROOF AND POLICY BOTH PASS
"""

import threading
import unittest

from attesta.account import Account
from attesta.auth import AuthorizationProof
from attesta.errors import (
    AuthenticationError,
    ErrorCode,
    FormatError,
    PolicyDeniedError,
    RegistryError,
    ReplayError,
    UnauthorizedError,
)
from attesta.hashing import action_digest
from attesta.lifecycle import (
    AccountService,
    ActionContext,
    ExecutionOutcome,
    execute_action,
    replace_policy,
)
from attesta.logging_config import AuditLogger
from attesta.policy import Policy, PolicyResult
from attesta.signing import SoftwarePasskey
from attesta.storage import InMemoryAccountStore

OWNER = b"\x0a" * 32
STRANGER = b"\x0b" * 32
LIMIT = 1_000_000_000
NOW = 1_700_000_000


def proof_for(passkey: SoftwarePasskey, nonce: int, amount: int) -> AuthorizationProof:
    message_hash = action_digest({"op": "transfer", "amount": amount, "nonce": nonce})
    return AuthorizationProof(passkey.sign_nonce(nonce), nonce, message_hash)


class TestExecuteAction(unittest.TestCase):
    """Pure decision core."""

    def setUp(self):
        self.passkey = SoftwarePasskey.generate(credential_id=b"cred-e2e")
        self.account = Account.create(
            OWNER,
            self.passkey.public_key,
            self.passkey.credential_id,
            Policy.spending_limit(LIMIT).to_bytes(),
            now=NOW,
        )

    def test_end_to_end_scenario(self):
        """Allowed, then replay rejected, then policy denial leaves the counter."""
        # Step 1: nonce 1 within limit
        result = execute_action(
            self.account, proof_for(self.passkey, 1, 500_000_000), ActionContext(500_000_000, NOW + 1)
        )
        self.assertEqual(result.outcome, ExecutionOutcome.EXECUTED)
        self.assertEqual(result.policy_result, PolicyResult.ALLOWED)
        account = result.account
        self.assertEqual(account.nonce, 1)
        self.assertEqual(account.updated_at, NOW + 1)

        # Step 2: nonce 1 again
        with self.assertRaises(ReplayError) as ctx:
            execute_action(account, proof_for(self.passkey, 1, 500_000_000), ActionContext(500_000_000, NOW + 2))
        self.assertEqual(ctx.exception.code, ErrorCode.REPLAY_ATTACK)

        # Step 3: nonce 2 over the limit
        with self.assertRaises(PolicyDeniedError) as ctx:
            execute_action(account, proof_for(self.passkey, 2, 2_000_000_000), ActionContext(2_000_000_000, NOW + 3))
        self.assertEqual(ctx.exception.code, ErrorCode.POLICY_DENIED)
        self.assertEqual(ctx.exception.result, PolicyResult.DENIED)
        self.assertEqual(account.nonce, 1)

    def test_bad_signature_leaves_account(self):
        other = SoftwarePasskey.generate(credential_id=b"cred-e2e")
        with self.assertRaises(AuthenticationError):
            execute_action(self.account, proof_for(other, 1, 10), ActionContext(10, NOW))
        self.assertEqual(self.account.nonce, 0)

    def test_requires_approval_returns_unchanged(self):
        signer = b"\x5a" * 32
        account = replace_policy(self.account, Policy.multi_sig([signer]).to_bytes(), NOW)
        result = execute_action(account, proof_for(self.passkey, 1, 10), ActionContext(10, NOW))
        self.assertEqual(result.outcome, ExecutionOutcome.PENDING_APPROVAL)
        self.assertEqual(result.account, account)
        self.assertFalse(result.executed())

        approved = execute_action(
            account, proof_for(self.passkey, 1, 10), ActionContext(10, NOW, frozenset({signer}))
        )
        self.assertEqual(approved.outcome, ExecutionOutcome.EXECUTED)
        self.assertEqual(approved.account.nonce, 1)

    def test_malformed_policy_denies(self):
        account = replace_policy(self.account, b"\x01\x03\x00\x00\x00abc", NOW)
        with self.assertRaises(PolicyDeniedError):
            execute_action(account, proof_for(self.passkey, 1, 0), ActionContext(0, NOW))

    def test_time_lock(self):
        account = replace_policy(self.account, Policy.time_locked(NOW + 100).to_bytes(), NOW)
        with self.assertRaises(PolicyDeniedError):
            execute_action(account, proof_for(self.passkey, 1, 0), ActionContext(0, NOW + 99))
        result = execute_action(account, proof_for(self.passkey, 1, 0), ActionContext(0, NOW + 100))
        self.assertTrue(result.executed())

    def test_context_rejects_out_of_range(self):
        for amount in (-1, -10 ** 30, 2 ** 64):
            with self.assertRaises(FormatError) as ctx:
                ActionContext(amount, NOW)
            self.assertEqual(ctx.exception.code, ErrorCode.INVALID_ACTION_CONTEXT)
        for now in (2 ** 63, -(2 ** 63) - 1):
            with self.assertRaises(FormatError) as ctx:
                ActionContext(0, now)
            self.assertEqual(ctx.exception.code, ErrorCode.INVALID_ACTION_CONTEXT)
        self.assertEqual(ActionContext(2 ** 64 - 1, -(2 ** 63)).amount, 2 ** 64 - 1)

    def test_result_to_dict(self):
        result = execute_action(self.account, proof_for(self.passkey, 1, 1), ActionContext(1, NOW))
        d = result.to_dict()
        self.assertEqual(d["outcome"], "EXECUTED")
        self.assertEqual(d["nonce"], 1)
        self.assertEqual(d["verified"]["prior_nonce"], 0)


class FixedClock:

    def __init__(self, now: int):
        self.now = now

    def __call__(self) -> int:
        return self.now


class TestAccountService(unittest.TestCase):
    """Stateful orchestration over a store."""

    def setUp(self):
        self.clock = FixedClock(NOW)
        self.service = AccountService(
            InMemoryAccountStore(),
            clock=self.clock,
            audit=AuditLogger("attesta.audit.test"),
            max_credentials=3,
        )
        self.passkey = SoftwarePasskey.generate(credential_id=b"service-cred")
        self.address = self.service.register_account(
            OWNER,
            self.passkey.public_key,
            self.passkey.credential_id,
            Policy.spending_limit(LIMIT).to_bytes(),
        )

    def test_register(self):
        account = self.service.load(self.address)
        self.assertEqual(account.nonce, 0)
        self.assertEqual(account.created_at, NOW)
        registry = self.service.load_registry(self.address)
        self.assertEqual(registry.primary.credential_id, b"service-cred")
        self.assertEqual(registry.max_credentials, 3)

    def test_execute_persists_only_on_success(self):
        self.service.execute(self.address, proof_for(self.passkey, 1, 5), amount=5)
        self.assertEqual(self.service.load(self.address).nonce, 1)

        with self.assertRaises(ReplayError):
            self.service.execute(self.address, proof_for(self.passkey, 1, 5), amount=5)
        with self.assertRaises(PolicyDeniedError):
            self.service.execute(self.address, proof_for(self.passkey, 2, LIMIT + 1), amount=LIMIT + 1)
        self.assertEqual(self.service.load(self.address).nonce, 1)

    def test_execute_rejects_amount_outside_u64(self):
        for amount in (-1, -10 ** 30, 2 ** 64):
            with self.assertRaises(FormatError) as ctx:
                self.service.execute(self.address, proof_for(self.passkey, 1, 5), amount=amount)
            self.assertEqual(ctx.exception.code, ErrorCode.INVALID_ACTION_CONTEXT)
        self.assertEqual(self.service.load(self.address).nonce, 0)

    def test_lock_table_drained(self):
        self.service.execute(self.address, proof_for(self.passkey, 1, 5), amount=5)
        with self.assertRaises(ReplayError):
            self.service.execute(self.address, proof_for(self.passkey, 1, 5), amount=5)
        for n in range(20):
            self.service.register_account(
                OWNER, self.passkey.public_key, self.passkey.credential_id, seed=bytes([n])
            )
        self.assertEqual(self.service._locks, {})

    def test_execute_uses_clock(self):
        self.clock.now = NOW + 60
        self.service.execute(self.address, proof_for(self.passkey, 1, 5), amount=5)
        self.assertEqual(self.service.load(self.address).updated_at, NOW + 60)

    def test_pending_approval_not_persisted(self):
        signer = b"\x77" * 32
        self.service.update_policy(self.address, OWNER, Policy.multi_sig([signer]).to_bytes())
        result = self.service.execute(self.address, proof_for(self.passkey, 1, 5), amount=5)
        self.assertEqual(result.outcome, ExecutionOutcome.PENDING_APPROVAL)
        self.assertEqual(self.service.load(self.address).nonce, 0)

        result = self.service.execute(
            self.address, proof_for(self.passkey, 1, 5), amount=5, approvals=[signer]
        )
        self.assertTrue(result.executed())
        self.assertEqual(self.service.load(self.address).nonce, 1)

    def test_update_policy_owner_only(self):
        with self.assertRaises(UnauthorizedError) as ctx:
            self.service.update_policy(self.address, STRANGER, Policy.open().to_bytes())
        self.assertEqual(ctx.exception.code, ErrorCode.UNAUTHORIZED)

        self.clock.now = NOW + 5
        updated = self.service.update_policy(self.address, OWNER, Policy.open().to_bytes())
        self.assertEqual(updated.decoded_policy(), Policy.open())
        self.assertEqual(self.service.load(self.address).updated_at, NOW + 5)

    def test_additional_passkey_authorizes(self):
        laptop = SoftwarePasskey.generate(credential_id=b"laptop")
        self.service.add_credential(self.address, OWNER, laptop.public_key, b"laptop", "laptop")

        result = self.service.execute(self.address, proof_for(laptop, 1, 5), amount=5)
        self.assertTrue(result.executed())
        self.assertEqual(result.verified.credential_id, b"laptop")

        self.service.set_credential_enabled(self.address, OWNER, b"laptop", False)
        with self.assertRaises(AuthenticationError) as ctx:
            self.service.execute(self.address, proof_for(laptop, 2, 5), amount=5)
        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_CREDENTIAL_ID)

    def test_credential_management_owner_only(self):
        laptop = SoftwarePasskey.generate(credential_id=b"laptop")
        with self.assertRaises(UnauthorizedError):
            self.service.add_credential(self.address, STRANGER, laptop.public_key, b"laptop")
        self.service.add_credential(self.address, OWNER, laptop.public_key, b"laptop")
        with self.assertRaises(UnauthorizedError):
            self.service.remove_credential(self.address, STRANGER, b"laptop")
        with self.assertRaises(UnauthorizedError):
            self.service.set_credential_enabled(self.address, STRANGER, b"laptop", False)

    def test_registry_limits_persist(self):
        for n in (1, 2):
            key = SoftwarePasskey.generate(credential_id=bytes([n]) * 4)
            self.service.add_credential(self.address, OWNER, key.public_key, key.credential_id)
        extra = SoftwarePasskey.generate(credential_id=b"extra")
        with self.assertRaises(RegistryError) as ctx:
            self.service.add_credential(self.address, OWNER, extra.public_key, b"extra")
        self.assertEqual(ctx.exception.code, ErrorCode.MAX_CREDENTIALS_REACHED)

        with self.assertRaises(RegistryError) as ctx:
            self.service.remove_credential(self.address, OWNER, b"service-cred")
        self.assertEqual(ctx.exception.code, ErrorCode.CANNOT_REMOVE_PRIMARY)

        self.service.remove_credential(self.address, OWNER, b"\x01" * 4)
        self.assertEqual(len(self.service.load_registry(self.address)), 2)

    def test_concurrent_execute_consumes_nonce_once(self):
        """Racing the same proof from many threads advances the counter once."""
        proof = proof_for(self.passkey, 1, 5)
        outcomes = []
        lock = threading.Lock()

        def run():
            try:
                self.service.execute(self.address, proof, amount=5)
                outcome = "ok"
            except ReplayError:
                outcome = "replay"
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=run) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(outcomes.count("ok"), 1)
        self.assertEqual(outcomes.count("replay"), 7)
        self.assertEqual(self.service.load(self.address).nonce, 1)
        self.assertEqual(self.service._locks, {})


if __name__ == "__main__":
    unittest.main()
