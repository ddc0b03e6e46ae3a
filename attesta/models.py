"""
Request documents accepted by the command line interface.

Byte fields are lowercase or uppercase hex strings.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .account import Account
from .auth import AuthorizationProof
from .hashing import action_digest
from .policy import Policy
from .webauthn import WebAuthnAssertion


def _hex(value: str) -> str:
    try:
        bytes.fromhex(value)
    except ValueError as e:
        raise ValueError(f"not a hex string: {value[:16]}...") from e
    return value.lower()


class AssertionModel(BaseModel):
    authenticator_data: str
    client_data: str
    signature: str
    credential_id: str

    @field_validator("authenticator_data", "client_data", "signature", "credential_id")
    @classmethod
    def validate_hex(cls, v):
        return _hex(v)

    def to_assertion(self) -> WebAuthnAssertion:
        return WebAuthnAssertion(
            authenticator_data=bytes.fromhex(self.authenticator_data),
            client_data=bytes.fromhex(self.client_data),
            signature=bytes.fromhex(self.signature),
            credential_id=bytes.fromhex(self.credential_id),
        )


class ExecuteRequest(BaseModel):
    """
    One action to authorize.

    The message hash is either given directly or computed from ``action``.
    """
    assertion: AssertionModel
    nonce: int = Field(ge=0, le=2 ** 64 - 1)
    amount: int = Field(default=0, ge=0, le=2 ** 64 - 1)
    message_hash: Optional[str] = None
    action: Optional[Dict[str, Any]] = None
    approvals: List[str] = Field(default_factory=list)

    @field_validator("message_hash")
    @classmethod
    def validate_message_hash(cls, v):
        return None if v is None else _hex(v)

    @field_validator("approvals")
    @classmethod
    def validate_approvals(cls, v):
        return [_hex(a) for a in v]

    @model_validator(mode="after")
    def require_hash_source(self):
        if self.message_hash is None and self.action is None:
            raise ValueError("either message_hash or action is required")
        return self

    def to_proof(self) -> AuthorizationProof:
        if self.message_hash is not None:
            message_hash = bytes.fromhex(self.message_hash)
        else:
            message_hash = action_digest(self.action)
        return AuthorizationProof(self.assertion.to_assertion(), self.nonce, message_hash)

    def approval_set(self) -> frozenset:
        return frozenset(bytes.fromhex(a) for a in self.approvals)


class PolicyModel(BaseModel):
    type: Literal["OPEN", "SPENDING_LIMIT", "DAILY_LIMIT", "MULTI_SIG", "TIME_LOCKED"]
    max_amount: Optional[int] = Field(default=None, ge=0, le=2 ** 64 - 1)
    reset_timestamp: Optional[int] = None
    unlock_timestamp: Optional[int] = None
    signers: List[str] = Field(default_factory=list)

    def to_policy(self) -> Policy:
        if self.type == "OPEN":
            return Policy.open()
        if self.type == "SPENDING_LIMIT":
            return Policy.spending_limit(self._required(self.max_amount, "max_amount"))
        if self.type == "DAILY_LIMIT":
            return Policy.daily_limit(
                self._required(self.max_amount, "max_amount"),
                self._required(self.reset_timestamp, "reset_timestamp"),
            )
        if self.type == "MULTI_SIG":
            return Policy.multi_sig(bytes.fromhex(s) for s in self.signers)
        return Policy.time_locked(self._required(self.unlock_timestamp, "unlock_timestamp"))

    def _required(self, value, name: str):
        if value is None:
            raise ValueError(f"{self.type} policy requires {name}")
        return value


class AccountModel(BaseModel):
    owner: str
    public_key: str
    credential_id: str
    nonce: int = Field(default=0, ge=0, le=2 ** 64 - 1)
    policy: str = ""
    created_at: int = 0
    updated_at: int = 0

    @field_validator("owner", "public_key", "credential_id", "policy")
    @classmethod
    def validate_hex(cls, v):
        return _hex(v)

    @classmethod
    def from_account(cls, account: Account) -> "AccountModel":
        return cls(**account.to_dict())

    def to_account(self) -> Account:
        return Account(
            owner=bytes.fromhex(self.owner),
            public_key=bytes.fromhex(self.public_key),
            credential_id=bytes.fromhex(self.credential_id),
            nonce=self.nonce,
            policy=bytes.fromhex(self.policy),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
