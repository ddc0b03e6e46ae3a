"""
Attesta Authorization Proof

An AuthorizationProof binds a passkey assertion to an account counter value
and a 32-byte message hash. Verifying it against an account:

    1. nonce must be strictly greater than the stored counter
    2. assertion credential id must match the resolved credential
    3. assertion must verify with challenge = u64 LE bytes of the nonce
    4. message hash and challenge must be non-empty

Verification never mutates the account. On success it returns a
VerifiedAuthorization, the only value Account.advance_after_success accepts.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

from .errors import AuthenticationError, ErrorCode, FormatError
from .replay import U64_MAX, check_next, nonce_challenge
from .webauthn import WebAuthnAssertion, verify_webauthn_assertion

if TYPE_CHECKING:
    from .account import Account
    from .registry import MultiCredentialRegistry

logger = logging.getLogger(__name__)

MESSAGE_HASH_LEN = 32


@dataclass(frozen=True)
class VerifiedAuthorization:
    """Proof that a specific nonce was authorized against a specific account state."""
    owner: bytes
    credential_id: bytes
    nonce: int
    prior_nonce: int
    message_hash: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner.hex(),
            "credential_id": self.credential_id.hex(),
            "nonce": self.nonce,
            "prior_nonce": self.prior_nonce,
            "message_hash": self.message_hash.hex(),
        }


@dataclass(frozen=True)
class AuthorizationProof:
    assertion: WebAuthnAssertion
    nonce: int
    message_hash: bytes

    def __post_init__(self):
        if not 0 <= self.nonce <= U64_MAX:
            raise FormatError(ErrorCode.INVALID_NONCE, f"nonce {self.nonce} outside u64 range")
        if self.message_hash and len(self.message_hash) != MESSAGE_HASH_LEN:
            raise FormatError(
                ErrorCode.INVALID_SIGNATURE_FORMAT,
                f"message hash must be {MESSAGE_HASH_LEN} bytes, got {len(self.message_hash)}",
            )

    @classmethod
    def from_wire(cls, assertion_bytes: bytes, nonce: int, message_hash: bytes) -> "AuthorizationProof":
        return cls(
            assertion=WebAuthnAssertion.from_bytes(assertion_bytes),
            nonce=nonce,
            message_hash=bytes(message_hash),
        )

    def challenge(self) -> bytes:
        return nonce_challenge(self.nonce)

    def verify(
        self,
        account: "Account",
        registry: Optional["MultiCredentialRegistry"] = None,
    ) -> VerifiedAuthorization:
        """
        Verify this proof against the account's current state.

        Args:
            account: Account whose counter and credential are checked
            registry: The account's credential registry. When given, the
                assertion may come from any enabled registered passkey;
                otherwise only the account's own credential is accepted

        Raises:
            ReplayError(REPLAY_ATTACK)
            AuthenticationError(INVALID_CREDENTIAL_ID, CHALLENGE_MISMATCH,
                SIGNATURE_VERIFICATION_FAILED)
            FormatError from the assertion verifier
        """
        # Step 1: Replay
        check_next(account.nonce, self.nonce)

        # Step 2: Credential binding
        if registry is not None:
            entry = registry.resolve(self.assertion.credential_id)
            public_key, credential_id = entry.public_key, entry.credential_id
        else:
            public_key, credential_id = account.public_key, account.credential_id
            if self.assertion.credential_id != credential_id:
                raise AuthenticationError(ErrorCode.INVALID_CREDENTIAL_ID)

        # Step 3: Assertion over the nonce challenge
        challenge = self.challenge()
        verify_webauthn_assertion(self.assertion, public_key, challenge)

        # Step 4: Non-empty binding inputs
        if not self.message_hash or not challenge:
            raise AuthenticationError(ErrorCode.CHALLENGE_MISMATCH, "empty message hash")

        logger.debug("Proof verified for nonce %d", self.nonce)
        return VerifiedAuthorization(
            owner=account.owner,
            credential_id=credential_id,
            nonce=self.nonce,
            prior_nonce=account.nonce,
            message_hash=self.message_hash,
        )
