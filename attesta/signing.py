"""
Attesta Software Passkey

A P-256 key held in process memory that produces assertions in the same
shape as a platform authenticator. Used by the CLI, examples and tests to
drive the engine end to end without a hardware device.

Not a substitute for a real authenticator: the private key is exportable.
"""

import hashlib
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

from .p256 import COORDINATE_LEN, encode_p256_public_key
from .replay import nonce_challenge
from .webauthn import FLAG_USER_PRESENT, FLAG_USER_VERIFIED, WebAuthnAssertion

DEFAULT_RP_ID = "attesta.local"
DEFAULT_ORIGIN = "https://attesta.local"
CREDENTIAL_ID_LEN = 16


def build_client_data(challenge: bytes, origin: str = DEFAULT_ORIGIN) -> bytes:
    """
    Client data carrying the challenge bytes verbatim.

    The challenge is embedded unescaped so the verifier's substring check
    finds it.
    """
    return (
        b'{"type":"webauthn.get","challenge":"'
        + bytes(challenge)
        + b'","origin":"'
        + origin.encode("utf-8")
        + b'"}'
    )


def build_authenticator_data(
    rp_id: str = DEFAULT_RP_ID,
    sign_count: int = 0,
    user_verified: bool = True,
) -> bytes:
    flags = FLAG_USER_PRESENT | (FLAG_USER_VERIFIED if user_verified else 0)
    return (
        hashlib.sha256(rp_id.encode("utf-8")).digest()
        + bytes([flags])
        + sign_count.to_bytes(4, "big")
    )


def raw_signature(private_key: ec.EllipticCurvePrivateKey, message: bytes) -> bytes:
    """ECDSA P-256 / SHA-256 signature as 64-byte r || s."""
    r, s = decode_dss_signature(private_key.sign(message, ec.ECDSA(hashes.SHA256())))
    return r.to_bytes(COORDINATE_LEN, "big") + s.to_bytes(COORDINATE_LEN, "big")


@dataclass
class SoftwarePasskey:
    """P-256 credential that signs WebAuthn-style assertions."""
    private_key: ec.EllipticCurvePrivateKey
    credential_id: bytes
    rp_id: str = DEFAULT_RP_ID
    origin: str = DEFAULT_ORIGIN
    sign_count: int = 0

    @classmethod
    def generate(cls, credential_id: Optional[bytes] = None, rp_id: str = DEFAULT_RP_ID) -> "SoftwarePasskey":
        return cls(
            private_key=ec.generate_private_key(ec.SECP256R1()),
            credential_id=credential_id or secrets.token_bytes(CREDENTIAL_ID_LEN),
            rp_id=rp_id,
        )

    @property
    def public_key(self) -> bytes:
        """Raw 64-byte X || Y."""
        return encode_p256_public_key(self.private_key.public_key())

    def sign_assertion(self, challenge: bytes, user_verified: bool = True) -> WebAuthnAssertion:
        """Sign authenticator_data || SHA-256(client_data) for ``challenge``."""
        self.sign_count += 1
        authenticator_data = build_authenticator_data(self.rp_id, self.sign_count, user_verified)
        client_data = build_client_data(challenge, self.origin)
        message = authenticator_data + hashlib.sha256(client_data).digest()
        return WebAuthnAssertion(
            authenticator_data=authenticator_data,
            client_data=client_data,
            signature=raw_signature(self.private_key, message),
            credential_id=self.credential_id,
        )

    def sign_nonce(self, nonce: int) -> WebAuthnAssertion:
        """Assertion over the 8-byte little-endian challenge for ``nonce``."""
        return self.sign_assertion(nonce_challenge(nonce))

    def to_dict(self) -> Dict[str, Any]:
        pem = self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return {
            "algorithm": "ES256",
            "private_key_pem": pem.decode("ascii"),
            "public_key": self.public_key.hex(),
            "credential_id": self.credential_id.hex(),
            "rp_id": self.rp_id,
            "origin": self.origin,
            "sign_count": self.sign_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SoftwarePasskey":
        private_key = serialization.load_pem_private_key(
            data["private_key_pem"].encode("ascii"), password=None
        )
        if not isinstance(private_key, ec.EllipticCurvePrivateKey):
            raise ValueError("private key is not an EC key")
        return cls(
            private_key=private_key,
            credential_id=bytes.fromhex(data["credential_id"]),
            rp_id=data.get("rp_id", DEFAULT_RP_ID),
            origin=data.get("origin", DEFAULT_ORIGIN),
            sign_count=data.get("sign_count", 0),
        )
