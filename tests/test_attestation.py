"""
Attesta Registration Helper Test Suite

Attestation objects are built with fido2's own data classes so the parser
is exercised against real CBOR.
"""

import unittest

from cryptography.hazmat.primitives.asymmetric import ec
from fido2 import cbor
from fido2.cose import ES256
from fido2.webauthn import Aaguid, AttestationObject, AttestedCredentialData, AuthenticatorData

from attesta.attestation import (
    credential_from_attestation,
    public_key_from_cose,
    public_key_from_cose_bytes,
)
from attesta.errors import ErrorCode, FormatError
from attesta.hashing import sha256_digest
from attesta.p256 import encode_p256_public_key

RP_ID_HASH = sha256_digest("attesta.local")
FLAGS_UP_UV_AT = 0x01 | 0x04 | 0x40


def make_attestation(public_key, credential_id: bytes) -> bytes:
    credential_data = AttestedCredentialData.create(
        Aaguid.NONE, credential_id, ES256.from_cryptography_key(public_key)
    )
    auth_data = AuthenticatorData.create(RP_ID_HASH, FLAGS_UP_UV_AT, 0, credential_data)
    return bytes(AttestationObject.create("none", auth_data, {}))


class TestCredentialFromAttestation(unittest.TestCase):

    def setUp(self):
        self.public_key = ec.generate_private_key(ec.SECP256R1()).public_key()

    def test_es256_credential(self):
        entry = credential_from_attestation(
            make_attestation(self.public_key, b"new-credential"), name="phone", added_at=99
        )
        self.assertEqual(entry.public_key, encode_p256_public_key(self.public_key))
        self.assertEqual(entry.credential_id, b"new-credential")
        self.assertEqual(entry.name, "phone")
        self.assertEqual(entry.added_at, 99)
        self.assertTrue(entry.enabled)

    def test_no_credential_data(self):
        auth_data = AuthenticatorData.create(RP_ID_HASH, 0x01, 0)
        attestation = bytes(AttestationObject.create("none", auth_data, {}))
        with self.assertRaises(FormatError) as ctx:
            credential_from_attestation(attestation)
        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_ATTESTATION)

    def test_undecodable(self):
        with self.assertRaises(FormatError) as ctx:
            credential_from_attestation(b"\xa0")
        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_ATTESTATION)


class TestCoseKey(unittest.TestCase):

    def setUp(self):
        self.public_key = ec.generate_private_key(ec.SECP256R1()).public_key()
        self.cose = dict(ES256.from_cryptography_key(self.public_key))

    def test_es256_map(self):
        self.assertEqual(
            public_key_from_cose(self.cose), encode_p256_public_key(self.public_key)
        )

    def test_cbor_encoded(self):
        self.assertEqual(
            public_key_from_cose_bytes(cbor.encode(self.cose)),
            encode_p256_public_key(self.public_key),
        )

    def test_wrong_algorithm(self):
        self.cose[3] = -257
        with self.assertRaises(FormatError) as ctx:
            public_key_from_cose(self.cose)
        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_ATTESTATION)

    def test_wrong_key_type(self):
        self.cose[1] = 1
        with self.assertRaises(FormatError) as ctx:
            public_key_from_cose(self.cose)
        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_ATTESTATION)

    def test_point_off_curve(self):
        self.cose[-3] = bytes(32)
        with self.assertRaises(FormatError) as ctx:
            public_key_from_cose(self.cose)
        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_PUBLIC_KEY)

    def test_not_a_map(self):
        with self.assertRaises(FormatError):
            public_key_from_cose_bytes(cbor.encode([1, 2, 3]))


if __name__ == "__main__":
    unittest.main()
