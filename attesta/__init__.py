"""
Attesta Passkey Authorization Engine

Version: 1.0.0
License: Apache 2.0

Authorizes actions on a user-controlled account with a device-bound P-256
credential (a passkey) and gates every authorized action through the
account's policy.

An action proceeds only if:
    - the passkey assertion verifies against a registered, enabled credential
    - the assertion signs the next unused nonce of the account
    - the account policy allows it

Anything else fails closed and leaves the account untouched.

Usage:
    from attesta import (
        AccountService,
        AuthorizationProof,
        InMemoryAccountStore,
        Policy,
        SoftwarePasskey,
        action_digest,
    )

    service = AccountService(InMemoryAccountStore())
    passkey = SoftwarePasskey.generate()
    address = service.register_account(
        owner, passkey.public_key, passkey.credential_id,
        policy=Policy.spending_limit(1_000).to_bytes(),
    )

    account = service.load(address)
    nonce = account.nonce + 1
    proof = AuthorizationProof(
        passkey.sign_nonce(nonce), nonce, action_digest({"op": "pay", "amount": 500})
    )
    result = service.execute(address, proof, amount=500)

    if result.executed():
        # counter advanced; the action may be carried out
        ...
"""

__version__ = "1.0.0"
__license__ = "Apache-2.0"

# Errors
from .errors import (
    ErrorCode,
    AttestaError,
    FormatError,
    AuthenticationError,
    ReplayError,
    PolicyError,
    PolicyDeniedError,
    RegistryError,
    UnauthorizedError,
)

# Hashing
from .hashing import sha256_digest, sha256_hex, canonicalize, action_digest

# Signature and assertion verification
from .p256 import (
    verify_p256_signature,
    decompress_p256_public_key,
    load_p256_public_key,
    encode_p256_public_key,
)
from .webauthn import (
    WebAuthnAssertion,
    AuthenticatorData,
    parse_authenticator_data,
    verify_webauthn_assertion,
)

# Replay protection
from .replay import (
    U64_MAX,
    is_valid_next,
    check_next,
    advance,
    derive_nonce,
    validate_nonce_format,
)

# Authorization
from .auth import AuthorizationProof, VerifiedAuthorization

# Policies
from .policy import (
    PolicyType,
    PolicyResult,
    Policy,
    decode_policy_bytes,
    evaluate_policy_bytes,
)

# Credentials
from .registry import CredentialEntry, MultiCredentialRegistry
from .attestation import credential_from_attestation, public_key_from_cose
from .signing import SoftwarePasskey

# Accounts
from .account import Account, ACCOUNT_DISCRIMINATOR
from .storage import (
    AccountStore,
    InMemoryAccountStore,
    SqliteAccountStore,
    derive_account_address,
    init_account,
    load_account,
    save_account,
    open_store,
)
from .lifecycle import (
    ActionContext,
    ExecutionOutcome,
    ExecutionResult,
    AccountService,
    execute_action,
    replace_policy,
)

__all__ = [
    # Version
    "__version__",

    # Errors
    "ErrorCode",
    "AttestaError",
    "FormatError",
    "AuthenticationError",
    "ReplayError",
    "PolicyError",
    "PolicyDeniedError",
    "RegistryError",
    "UnauthorizedError",

    # Hashing
    "sha256_digest",
    "sha256_hex",
    "canonicalize",
    "action_digest",

    # Verification
    "verify_p256_signature",
    "decompress_p256_public_key",
    "load_p256_public_key",
    "encode_p256_public_key",
    "WebAuthnAssertion",
    "AuthenticatorData",
    "parse_authenticator_data",
    "verify_webauthn_assertion",

    # Replay
    "U64_MAX",
    "is_valid_next",
    "check_next",
    "advance",
    "derive_nonce",
    "validate_nonce_format",

    # Authorization
    "AuthorizationProof",
    "VerifiedAuthorization",

    # Policies
    "PolicyType",
    "PolicyResult",
    "Policy",
    "decode_policy_bytes",
    "evaluate_policy_bytes",

    # Credentials
    "CredentialEntry",
    "MultiCredentialRegistry",
    "credential_from_attestation",
    "public_key_from_cose",
    "SoftwarePasskey",

    # Accounts
    "Account",
    "ACCOUNT_DISCRIMINATOR",
    "AccountStore",
    "InMemoryAccountStore",
    "SqliteAccountStore",
    "derive_account_address",
    "init_account",
    "load_account",
    "save_account",
    "open_store",
    "ActionContext",
    "ExecutionOutcome",
    "ExecutionResult",
    "AccountService",
    "execute_action",
    "replace_policy",
]
