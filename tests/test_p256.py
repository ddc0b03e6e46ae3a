"""
Attesta P-256 Verifier Test Suite

Signatures are produced with the cryptography package directly, independent
of the engine's own software passkey.
"""

import unittest

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

from attesta.errors import AttestaError, AuthenticationError, ErrorCode, FormatError
from attesta.p256 import (
    CURVE_ORDER,
    decompress_p256_public_key,
    encode_p256_public_key,
    load_p256_public_key,
    verify_p256_signature,
)


def sign_raw(private_key, message: bytes) -> bytes:
    r, s = decode_dss_signature(private_key.sign(message, ec.ECDSA(hashes.SHA256())))
    return r.to_bytes(32, "big") + s.to_bytes(32, "big")


def flip_bit(data: bytes, index: int) -> bytes:
    out = bytearray(data)
    out[index // 8] ^= 1 << (index % 8)
    return bytes(out)


class TestVerifyP256Signature(unittest.TestCase):
    """Round trip and rejection behavior."""

    def setUp(self):
        self.private_key = ec.generate_private_key(ec.SECP256R1())
        self.public_key = encode_p256_public_key(self.private_key.public_key())
        self.message = b"authorize payment #42"
        self.signature = sign_raw(self.private_key, self.message)

    def test_valid_signature_verifies(self):
        """A real signature over the message verifies."""
        self.assertEqual(len(self.public_key), 64)
        self.assertIsNone(verify_p256_signature(self.message, self.signature, self.public_key))

    def test_recovery_byte_is_ignored(self):
        """A 65-byte signature has its trailing byte discarded."""
        for recovery in (0, 1, 27, 255):
            verify_p256_signature(self.message, self.signature + bytes([recovery]), self.public_key)

    def test_wrong_message_fails(self):
        with self.assertRaises(AuthenticationError) as ctx:
            verify_p256_signature(b"authorize payment #43", self.signature, self.public_key)
        self.assertEqual(ctx.exception.code, ErrorCode.SIGNATURE_VERIFICATION_FAILED)

    def test_wrong_key_fails(self):
        other = encode_p256_public_key(ec.generate_private_key(ec.SECP256R1()).public_key())
        with self.assertRaises(AuthenticationError) as ctx:
            verify_p256_signature(self.message, self.signature, other)
        self.assertEqual(ctx.exception.code, ErrorCode.SIGNATURE_VERIFICATION_FAILED)

    def test_single_bit_mutation_of_message_fails(self):
        for i in range(0, len(self.message) * 8, 7):
            with self.assertRaises(AttestaError):
                verify_p256_signature(flip_bit(self.message, i), self.signature, self.public_key)

    def test_single_bit_mutation_of_signature_fails(self):
        for i in range(0, 512, 5):
            with self.assertRaises(AttestaError):
                verify_p256_signature(self.message, flip_bit(self.signature, i), self.public_key)

    def test_single_bit_mutation_of_key_fails(self):
        """Flipped keys are either off the curve or a different key."""
        for i in range(0, 512, 9):
            with self.assertRaises(AttestaError) as ctx:
                verify_p256_signature(self.message, self.signature, flip_bit(self.public_key, i))
            self.assertIn(
                ctx.exception.code,
                (ErrorCode.INVALID_PUBLIC_KEY, ErrorCode.SIGNATURE_VERIFICATION_FAILED),
            )

    def test_public_key_length(self):
        for bad in (b"", self.public_key[:63], self.public_key + b"\x00", b"\x04" + self.public_key):
            with self.assertRaises(FormatError) as ctx:
                verify_p256_signature(self.message, self.signature, bad)
            self.assertEqual(ctx.exception.code, ErrorCode.INVALID_PUBLIC_KEY)

    def test_point_not_on_curve(self):
        with self.assertRaises(FormatError) as ctx:
            verify_p256_signature(self.message, self.signature, b"\x01" * 64)
        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_PUBLIC_KEY)

    def test_signature_length(self):
        for bad in (b"", self.signature[:63], self.signature + b"\x00\x00"):
            with self.assertRaises(FormatError) as ctx:
                verify_p256_signature(self.message, bad, self.public_key)
            self.assertEqual(ctx.exception.code, ErrorCode.INVALID_SIGNATURE_FORMAT)

    def test_out_of_range_scalars(self):
        zero = bytes(64)
        overflow = CURVE_ORDER.to_bytes(32, "big") + self.signature[32:]
        for bad in (zero, overflow):
            with self.assertRaises(FormatError) as ctx:
                verify_p256_signature(self.message, bad, self.public_key)
            self.assertEqual(ctx.exception.code, ErrorCode.INVALID_SIGNATURE_FORMAT)

    def test_public_key_load_round_trip(self):
        key = load_p256_public_key(self.public_key)
        self.assertEqual(encode_p256_public_key(key), self.public_key)


class TestDecompressPublicKey(unittest.TestCase):

    def setUp(self):
        self.key = ec.generate_private_key(ec.SECP256R1()).public_key()
        self.compressed = self.key.public_bytes(
            serialization.Encoding.X962, serialization.PublicFormat.CompressedPoint
        )

    def test_decompress_matches_uncompressed(self):
        self.assertEqual(len(self.compressed), 33)
        self.assertEqual(decompress_p256_public_key(self.compressed), encode_p256_public_key(self.key))

    def test_wrong_length(self):
        for bad in (self.compressed[:32], self.compressed + b"\x00", b""):
            with self.assertRaises(FormatError) as ctx:
                decompress_p256_public_key(bad)
            self.assertEqual(ctx.exception.code, ErrorCode.INVALID_PUBLIC_KEY)

    def test_bad_prefix(self):
        with self.assertRaises(FormatError) as ctx:
            decompress_p256_public_key(b"\x05" + self.compressed[1:])
        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_PUBLIC_KEY)


if __name__ == "__main__":
    unittest.main()
