"""
Attesta Registration Helper

Extracts the passkey public key and credential id from a WebAuthn
attestation object returned by navigator.credentials.create(), producing a
CredentialEntry ready for an account or registry. Only ES256 (COSE alg -7,
curve P-256) credentials are accepted.

The attestation statement itself is not verified; registration trusts the
client that relayed it.
"""

import logging
from typing import Mapping

from fido2 import cbor
from fido2.cose import ES256
from fido2.webauthn import AttestationObject

from .errors import ErrorCode, FormatError
from .hashing import short_hex
from .p256 import COORDINATE_LEN, load_p256_public_key
from .registry import CredentialEntry

logger = logging.getLogger(__name__)

COSE_KTY = 1
COSE_ALG = 3
COSE_EC2_CRV = -1
COSE_EC2_X = -2
COSE_EC2_Y = -3

COSE_KTY_EC2 = 2
COSE_CRV_P256 = 1


def public_key_from_cose(cose_key: Mapping[int, object]) -> bytes:
    """
    Raw 64-byte X || Y from a COSE_Key map.

    Raises:
        FormatError(INVALID_ATTESTATION): not an ES256 P-256 key
        FormatError(INVALID_PUBLIC_KEY): coordinates not on the curve
    """
    if cose_key.get(COSE_KTY) != COSE_KTY_EC2:
        raise FormatError(ErrorCode.INVALID_ATTESTATION, "credential key is not EC2")
    if cose_key.get(COSE_ALG) != ES256.ALGORITHM:
        raise FormatError(
            ErrorCode.INVALID_ATTESTATION,
            f"unsupported COSE algorithm {cose_key.get(COSE_ALG)}",
        )
    if cose_key.get(COSE_EC2_CRV) != COSE_CRV_P256:
        raise FormatError(ErrorCode.INVALID_ATTESTATION, "credential key is not on P-256")

    x = cose_key.get(COSE_EC2_X)
    y = cose_key.get(COSE_EC2_Y)
    if not isinstance(x, bytes) or not isinstance(y, bytes):
        raise FormatError(ErrorCode.INVALID_ATTESTATION, "missing key coordinates")
    if len(x) != COORDINATE_LEN or len(y) != COORDINATE_LEN:
        raise FormatError(ErrorCode.INVALID_PUBLIC_KEY, "coordinates must be 32 bytes")

    public_key = x + y
    load_p256_public_key(public_key)
    return public_key


def public_key_from_cose_bytes(data: bytes) -> bytes:
    """Same as public_key_from_cose for a CBOR-encoded COSE_Key."""
    try:
        cose_key = cbor.decode(bytes(data))
    except (ValueError, IndexError, KeyError, TypeError) as e:
        raise FormatError(ErrorCode.INVALID_ATTESTATION, f"bad COSE key encoding: {e}") from e
    if not isinstance(cose_key, Mapping):
        raise FormatError(ErrorCode.INVALID_ATTESTATION, "COSE key is not a map")
    return public_key_from_cose(cose_key)


def credential_from_attestation(
    attestation_object: bytes,
    name: str = "",
    added_at: int = 0,
) -> CredentialEntry:
    """
    Build a CredentialEntry from a CBOR attestation object.

    Raises:
        FormatError(INVALID_ATTESTATION): undecodable object, no attested
            credential data, or a non-ES256 key
    """
    try:
        parsed = AttestationObject(bytes(attestation_object))
    except (ValueError, IndexError, KeyError, TypeError) as e:
        raise FormatError(ErrorCode.INVALID_ATTESTATION, f"bad attestation object: {e}") from e

    credential_data = parsed.auth_data.credential_data
    if credential_data is None:
        raise FormatError(ErrorCode.INVALID_ATTESTATION, "no attested credential data")

    public_key = public_key_from_cose(credential_data.public_key)
    logger.debug(
        "Registered %s credential %s", parsed.fmt, short_hex(credential_data.credential_id)
    )
    return CredentialEntry(
        public_key=public_key,
        credential_id=bytes(credential_data.credential_id),
        name=name,
        enabled=True,
        added_at=added_at,
    )
