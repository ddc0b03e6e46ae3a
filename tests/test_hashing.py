"""
Attesta Hashing Test Suite
"""

import hashlib
import unittest

from attesta.hashing import action_digest, canonicalize, sha256_digest, sha256_hex, short_hex


class TestCanonicalization(unittest.TestCase):

    def test_key_order_irrelevant(self):
        self.assertEqual(
            canonicalize({"b": 1, "a": [1, 2], "c": {"y": 1, "x": 2}}),
            b'{"a":[1,2],"b":1,"c":{"x":2,"y":1}}',
        )

    def test_unicode_not_escaped(self):
        self.assertEqual(canonicalize({"to": "zoë"}), '{"to":"zoë"}'.encode("utf-8"))

    def test_floats_rejected(self):
        with self.assertRaises(ValueError):
            canonicalize({"amount": 1.5})
        with self.assertRaises(ValueError):
            canonicalize({"items": [{"price": 0.1}]})

    def test_non_string_keys_rejected(self):
        with self.assertRaises(ValueError):
            canonicalize({1: "x"})


class TestDigests(unittest.TestCase):

    def test_sha256(self):
        self.assertEqual(sha256_digest(b"abc"), hashlib.sha256(b"abc").digest())
        self.assertEqual(sha256_digest("abc"), sha256_digest(b"abc"))
        self.assertEqual(sha256_hex(b"abc"), "sha256:" + hashlib.sha256(b"abc").hexdigest())

    def test_action_digest(self):
        digest = action_digest({"op": "transfer", "amount": 10})
        self.assertEqual(len(digest), 32)
        self.assertEqual(digest, sha256_digest(b'{"amount":10,"op":"transfer"}'))

    def test_short_hex(self):
        self.assertEqual(short_hex(b"\xab" * 32), "ab" * 8)
        self.assertEqual(short_hex(b"\x01\x02", 2), "01")


if __name__ == "__main__":
    unittest.main()
