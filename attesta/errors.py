"""
Attesta Error Taxonomy

Every rejection raised by the authorization engine carries an ErrorCode.
Callers that only need the category catch the intermediate classes
(FormatError, AuthenticationError, ...); callers that need the exact
reason inspect ``exc.code``.

All checks fail closed: an error means nothing was mutated.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Stable rejection codes."""
    # Format
    INVALID_PUBLIC_KEY = "INVALID_PUBLIC_KEY"
    INVALID_SIGNATURE_FORMAT = "INVALID_SIGNATURE_FORMAT"
    INVALID_AUTHENTICATOR_DATA = "INVALID_AUTHENTICATOR_DATA"
    INVALID_NONCE = "INVALID_NONCE"
    INVALID_ACCOUNT_DATA = "INVALID_ACCOUNT_DATA"
    INVALID_ATTESTATION = "INVALID_ATTESTATION"
    INVALID_ACTION_CONTEXT = "INVALID_ACTION_CONTEXT"
    # Authentication
    SIGNATURE_VERIFICATION_FAILED = "SIGNATURE_VERIFICATION_FAILED"
    INVALID_CREDENTIAL_ID = "INVALID_CREDENTIAL_ID"
    CHALLENGE_MISMATCH = "CHALLENGE_MISMATCH"
    # Replay
    REPLAY_ATTACK = "REPLAY_ATTACK"
    # Policy
    MALFORMED_POLICY = "MALFORMED_POLICY"
    POLICY_DENIED = "POLICY_DENIED"
    # Registry
    MAX_CREDENTIALS_REACHED = "MAX_CREDENTIALS_REACHED"
    DUPLICATE_CREDENTIAL = "DUPLICATE_CREDENTIAL"
    CANNOT_REMOVE_PRIMARY = "CANNOT_REMOVE_PRIMARY"
    CREDENTIAL_NOT_FOUND = "CREDENTIAL_NOT_FOUND"
    # Access
    UNAUTHORIZED = "UNAUTHORIZED"


class AttestaError(Exception):
    """Base class for all engine rejections."""

    default_code = ErrorCode.INVALID_ACCOUNT_DATA

    def __init__(self, code: Optional[ErrorCode] = None, detail: str = ""):
        self.code = code or self.default_code
        self.detail = detail
        message = self.code.value if not detail else f"{self.code.value}: {detail}"
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        d = {"error": self.code.value}
        if self.detail:
            d["detail"] = self.detail
        return d


class FormatError(AttestaError):
    """Malformed key, signature, authenticator data, nonce or record."""
    default_code = ErrorCode.INVALID_SIGNATURE_FORMAT


class AuthenticationError(AttestaError):
    """Signature, credential or challenge did not check out."""
    default_code = ErrorCode.SIGNATURE_VERIFICATION_FAILED


class ReplayError(AttestaError):
    default_code = ErrorCode.REPLAY_ATTACK


class PolicyError(AttestaError):
    """Policy bytes could not be decoded."""
    default_code = ErrorCode.MALFORMED_POLICY


class PolicyDeniedError(PolicyError):
    """
    Raised when an authorized action is rejected by the account policy.

    Carries the policy result so callers can report it.
    """
    default_code = ErrorCode.POLICY_DENIED

    def __init__(self, result: Any = None, detail: str = ""):
        self.result = result
        super().__init__(ErrorCode.POLICY_DENIED, detail)


class RegistryError(AttestaError):
    default_code = ErrorCode.CREDENTIAL_NOT_FOUND


class UnauthorizedError(AttestaError):
    default_code = ErrorCode.UNAUTHORIZED
