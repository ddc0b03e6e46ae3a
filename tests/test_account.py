"""
Attesta Account Test Suite

Covers the value-type semantics and the persisted record.
"""

import unittest
from dataclasses import FrozenInstanceError

from attesta.account import ACCOUNT_DISCRIMINATOR, Account
from attesta.auth import VerifiedAuthorization
from attesta.errors import ErrorCode, FormatError, ReplayError
from attesta.policy import Policy, PolicyType
from attesta.replay import U64_MAX

OWNER = b"\x11" * 32
PUBLIC_KEY = b"\x22" * 64


def verified_for(account: Account) -> VerifiedAuthorization:
    return VerifiedAuthorization(
        owner=account.owner,
        credential_id=account.credential_id,
        nonce=account.nonce + 1,
        prior_nonce=account.nonce,
        message_hash=b"\x33" * 32,
    )


class TestAccountValue(unittest.TestCase):

    def setUp(self):
        self.account = Account.create(
            OWNER, PUBLIC_KEY, b"cred", Policy.spending_limit(10).to_bytes(), now=1_000
        )

    def test_create(self):
        self.assertEqual(self.account.nonce, 0)
        self.assertEqual(self.account.created_at, 1_000)
        self.assertEqual(self.account.updated_at, 1_000)
        self.assertEqual(self.account.decoded_policy().policy_type, PolicyType.SPENDING_LIMIT)

    def test_immutable(self):
        with self.assertRaises(FrozenInstanceError):
            self.account.nonce = 5

    def test_advance_after_success(self):
        advanced = self.account.advance_after_success(verified_for(self.account), 2_000)
        self.assertEqual(advanced.nonce, 1)
        self.assertEqual(advanced.updated_at, 2_000)
        self.assertEqual(advanced.created_at, 1_000)
        self.assertEqual(self.account.nonce, 0)

    def test_stale_authorization_rejected(self):
        verified = verified_for(self.account)
        advanced = self.account.advance_after_success(verified, 2_000)
        with self.assertRaises(ReplayError):
            advanced.advance_after_success(verified, 3_000)

    def test_foreign_authorization_rejected(self):
        other = Account.create(b"\x99" * 32, PUBLIC_KEY, b"cred")
        with self.assertRaises(ReplayError):
            self.account.advance_after_success(verified_for(other), 2_000)

    def test_requires_verified_token(self):
        with self.assertRaises(TypeError):
            self.account.advance_after_success(object(), 2_000)

    def test_saturates_at_u64_max(self):
        account = Account(OWNER, PUBLIC_KEY, b"cred", nonce=U64_MAX)
        self.assertEqual(account.advance_after_success(verified_for(account), 1).nonce, U64_MAX)

    def test_with_policy(self):
        updated = self.account.with_policy(Policy.open().to_bytes(), 5_000)
        self.assertEqual(updated.decoded_policy(), Policy.open())
        self.assertEqual(updated.updated_at, 5_000)
        self.assertEqual(updated.nonce, self.account.nonce)

    def test_field_validation(self):
        with self.assertRaises(FormatError):
            Account(b"\x11" * 31, PUBLIC_KEY, b"cred")
        with self.assertRaises(FormatError) as ctx:
            Account(OWNER, b"\x22" * 65, b"cred")
        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_PUBLIC_KEY)
        with self.assertRaises(FormatError):
            Account(OWNER, PUBLIC_KEY, b"cred", nonce=-1)


class TestAccountRecord(unittest.TestCase):

    def setUp(self):
        self.account = Account(
            owner=OWNER,
            public_key=PUBLIC_KEY,
            credential_id=b"credential-xyz",
            nonce=7,
            policy=Policy.time_locked(-3).to_bytes(),
            created_at=-100,
            updated_at=200,
        )

    def test_round_trip(self):
        self.assertEqual(Account.from_bytes(self.account.to_bytes()), self.account)
        self.assertEqual(Account.from_record(self.account.to_record()), self.account)

    def test_layout(self):
        data = self.account.to_bytes()
        self.assertEqual(data[:32], OWNER)
        self.assertEqual(data[32:96], PUBLIC_KEY)
        self.assertEqual(data[96:100], (14).to_bytes(4, "little"))
        self.assertEqual(data[100:114], b"credential-xyz")
        self.assertEqual(data[114:122], (7).to_bytes(8, "little"))
        self.assertEqual(data[-8:], (200).to_bytes(8, "little", signed=True))

    def test_discriminator(self):
        record = self.account.to_record()
        self.assertEqual(record[:8], b"ATTESTA\x00")
        self.assertEqual(ACCOUNT_DISCRIMINATOR, b"ATTESTA\x00")

        with self.assertRaises(FormatError) as ctx:
            Account.from_record(b"NOTATTST" + self.account.to_bytes())
        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_ACCOUNT_DATA)

        with self.assertRaises(FormatError):
            Account.from_record(b"ATTE")

    def test_truncated_and_trailing(self):
        data = self.account.to_bytes()
        for bad in (data[:-1], data[:50], data + b"\x00"):
            with self.assertRaises(FormatError) as ctx:
                Account.from_bytes(bad)
            self.assertEqual(ctx.exception.code, ErrorCode.INVALID_ACCOUNT_DATA)


if __name__ == "__main__":
    unittest.main()
