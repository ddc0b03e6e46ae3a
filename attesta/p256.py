"""
Attesta P-256 Signature Verifier

ECDSA over NIST P-256 (secp256r1) with SHA-256, as produced by platform
passkeys. Public keys travel as the raw 64-byte X || Y point without the
0x04 prefix; signatures as the raw 64-byte r || s pair, optionally followed
by a one-byte recovery id which is ignored.

The message is hashed once with SHA-256 and the digest is verified as a
prehashed ECDSA input.
"""

import hashlib
import logging

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed,
    encode_dss_signature,
)

from .errors import AuthenticationError, ErrorCode, FormatError
from .hashing import short_hex

logger = logging.getLogger(__name__)

PUBLIC_KEY_LEN = 64
COMPRESSED_PUBLIC_KEY_LEN = 33
SIGNATURE_LEN = 64
SIGNATURE_WITH_RECOVERY_LEN = 65
COORDINATE_LEN = 32

# Group order n of P-256.
CURVE_ORDER = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551


def load_p256_public_key(public_key: bytes) -> ec.EllipticCurvePublicKey:
    """
    Load a raw X || Y point into a cryptography public key.

    Raises:
        FormatError(INVALID_PUBLIC_KEY): wrong length or not on the curve
    """
    if len(public_key) != PUBLIC_KEY_LEN:
        raise FormatError(
            ErrorCode.INVALID_PUBLIC_KEY,
            f"expected {PUBLIC_KEY_LEN} bytes, got {len(public_key)}",
        )
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(
            ec.SECP256R1(), b"\x04" + bytes(public_key)
        )
    except ValueError as e:
        raise FormatError(ErrorCode.INVALID_PUBLIC_KEY, str(e)) from e


def encode_p256_public_key(key: ec.EllipticCurvePublicKey) -> bytes:
    """Raw 64-byte X || Y encoding of a public key."""
    point = key.public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )
    return point[1:]


def decompress_p256_public_key(compressed: bytes) -> bytes:
    """
    Expand a 33-byte SEC1 compressed point (0x02/0x03 || X) to X || Y.

    Raises:
        FormatError(INVALID_PUBLIC_KEY): wrong length or invalid point
    """
    if len(compressed) != COMPRESSED_PUBLIC_KEY_LEN:
        raise FormatError(
            ErrorCode.INVALID_PUBLIC_KEY,
            f"expected {COMPRESSED_PUBLIC_KEY_LEN} bytes, got {len(compressed)}",
        )
    if compressed[0] not in (0x02, 0x03):
        raise FormatError(ErrorCode.INVALID_PUBLIC_KEY, "bad compression prefix")
    try:
        key = ec.EllipticCurvePublicKey.from_encoded_point(
            ec.SECP256R1(), bytes(compressed)
        )
    except ValueError as e:
        raise FormatError(ErrorCode.INVALID_PUBLIC_KEY, str(e)) from e
    return encode_p256_public_key(key)


def _der_signature(signature: bytes) -> bytes:
    if len(signature) not in (SIGNATURE_LEN, SIGNATURE_WITH_RECOVERY_LEN):
        raise FormatError(
            ErrorCode.INVALID_SIGNATURE_FORMAT,
            f"expected 64 or 65 bytes, got {len(signature)}",
        )
    r = int.from_bytes(signature[:COORDINATE_LEN], "big")
    s = int.from_bytes(signature[COORDINATE_LEN:SIGNATURE_LEN], "big")
    if not (0 < r < CURVE_ORDER and 0 < s < CURVE_ORDER):
        raise FormatError(ErrorCode.INVALID_SIGNATURE_FORMAT, "scalar out of range")
    return encode_dss_signature(r, s)


def verify_p256_signature(message: bytes, signature: bytes, public_key: bytes) -> None:
    """
    Verify an ECDSA P-256 signature over ``message``.

    Returns None on success; raises on any failure.

    Raises:
        FormatError(INVALID_PUBLIC_KEY): public key not 64 bytes or off-curve
        FormatError(INVALID_SIGNATURE_FORMAT): signature not 64/65 bytes
        AuthenticationError(SIGNATURE_VERIFICATION_FAILED): check failed
    """
    key = load_p256_public_key(public_key)
    der = _der_signature(signature)
    digest = hashlib.sha256(message).digest()

    try:
        key.verify(der, digest, ec.ECDSA(Prehashed(hashes.SHA256())))
    except InvalidSignature as e:
        logger.debug("P-256 signature rejected for key %s", short_hex(public_key))
        raise AuthenticationError(ErrorCode.SIGNATURE_VERIFICATION_FAILED) from e
