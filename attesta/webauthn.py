"""
Attesta Credential Assertion Verifier

Verifies a WebAuthn-style assertion produced by a passkey:

    signed_message = authenticator_data || SHA-256(client_data)

and defines the assertion wire format, four length-prefixed fields:

    u32 LE len || authenticator_data
    u32 LE len || client_data
    u32 LE len || signature
    u32 LE len || credential_id

Challenge binding is a substring match of the challenge text against the
client data text. The client data JSON is not parsed.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Dict

from .codec import RecordReader, pack_sized
from .errors import AuthenticationError, ErrorCode, FormatError
from .hashing import short_hex
from .p256 import verify_p256_signature

logger = logging.getLogger(__name__)

# rpIdHash (32) + flags (1) + signCount (4)
MIN_AUTHENTICATOR_DATA_LEN = 37

FLAG_USER_PRESENT = 0x01
FLAG_USER_VERIFIED = 0x04
FLAG_ATTESTED_CREDENTIAL_DATA = 0x40
FLAG_EXTENSION_DATA = 0x80


@dataclass(frozen=True)
class AuthenticatorData:
    """Fixed header of the authenticator data block."""
    rp_id_hash: bytes
    flags: int
    sign_count: int

    @property
    def user_present(self) -> bool:
        return bool(self.flags & FLAG_USER_PRESENT)

    @property
    def user_verified(self) -> bool:
        return bool(self.flags & FLAG_USER_VERIFIED)

    @property
    def has_attested_credential_data(self) -> bool:
        return bool(self.flags & FLAG_ATTESTED_CREDENTIAL_DATA)

    @property
    def has_extension_data(self) -> bool:
        return bool(self.flags & FLAG_EXTENSION_DATA)


def parse_authenticator_data(data: bytes) -> AuthenticatorData:
    """
    Split the 37-byte header: rpIdHash, flags, big-endian signCount.

    Raises:
        FormatError(INVALID_AUTHENTICATOR_DATA): shorter than 37 bytes
    """
    if len(data) < MIN_AUTHENTICATOR_DATA_LEN:
        raise FormatError(
            ErrorCode.INVALID_AUTHENTICATOR_DATA,
            f"need at least {MIN_AUTHENTICATOR_DATA_LEN} bytes, got {len(data)}",
        )
    return AuthenticatorData(
        rp_id_hash=bytes(data[:32]),
        flags=data[32],
        sign_count=int.from_bytes(data[33:37], "big"),
    )


@dataclass(frozen=True)
class WebAuthnAssertion:
    """A passkey assertion as received from the client."""
    authenticator_data: bytes
    client_data: bytes
    signature: bytes
    credential_id: bytes

    def signed_message(self) -> bytes:
        return self.authenticator_data + hashlib.sha256(self.client_data).digest()

    def to_bytes(self) -> bytes:
        return b"".join(
            pack_sized(field_bytes)
            for field_bytes in (
                self.authenticator_data,
                self.client_data,
                self.signature,
                self.credential_id,
            )
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "WebAuthnAssertion":
        """
        Decode the wire format.

        Raises:
            FormatError(INVALID_SIGNATURE_FORMAT): truncated buffer, length
                prefix past the end, or bytes left over after the last field
        """
        reader = RecordReader(data, ErrorCode.INVALID_SIGNATURE_FORMAT)
        fields = [reader.sized() for _ in range(4)]
        reader.finish()
        return cls(*fields)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "authenticator_data": self.authenticator_data.hex(),
            "client_data": self.client_data.hex(),
            "signature": self.signature.hex(),
            "credential_id": self.credential_id.hex(),
        }


def _check_challenge(client_data: bytes, expected_challenge: bytes) -> None:
    if not expected_challenge:
        raise AuthenticationError(ErrorCode.CHALLENGE_MISMATCH, "empty challenge")
    try:
        challenge_text = bytes(expected_challenge).decode("utf-8")
    except UnicodeDecodeError as e:
        raise AuthenticationError(
            ErrorCode.CHALLENGE_MISMATCH, "challenge is not valid UTF-8"
        ) from e
    client_text = bytes(client_data).decode("utf-8", errors="replace")
    if challenge_text not in client_text:
        raise AuthenticationError(
            ErrorCode.CHALLENGE_MISMATCH, "challenge not present in client data"
        )


def verify_webauthn_assertion(
    assertion: WebAuthnAssertion,
    public_key: bytes,
    expected_challenge: bytes,
) -> None:
    """
    Verify an assertion against a registered public key and challenge.

    Raises:
        FormatError(INVALID_AUTHENTICATOR_DATA): authenticator data < 37 bytes
        AuthenticationError(CHALLENGE_MISMATCH): challenge empty, not UTF-8,
            or absent from client data
        Any error of verify_p256_signature, unchanged
    """
    # Step 1: Authenticator data header
    parse_authenticator_data(assertion.authenticator_data)

    # Step 2: Challenge binding
    _check_challenge(assertion.client_data, expected_challenge)

    # Step 3: Signature over authData || SHA-256(clientData)
    verify_p256_signature(assertion.signed_message(), assertion.signature, public_key)
    logger.debug("Assertion verified for credential %s", short_hex(assertion.credential_id))
