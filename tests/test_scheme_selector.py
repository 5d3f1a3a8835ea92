#!/usr/bin/env python3
"""
Tests for selecting schemes by homomorphic property.
"""

import os
import shutil
import sys
import tempfile
import unittest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from block_cipher import AESScheme
from homomorphic_encryption import ElGamal, Paillier
from key_store import InMemoryKeyStore
from phe_config import HomomorphicProperty
from phe_errors import ConfigurationError, UnsupportedOperationError
from scheme_selector import get_scheme, get_scheme_by_name, key_handles

KEY_BITS = 256


class TestSchemeSelector(unittest.TestCase):

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.path = self.test_dir + os.sep

    def tearDown(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_none_means_plaintext(self):
        self.assertIsNone(get_scheme(HomomorphicProperty.NONE, path=self.path))
        self.assertIsNone(get_scheme("none", path=self.path))

    def test_property_to_scheme(self):
        store = InMemoryKeyStore()
        cases = [
            (HomomorphicProperty.AHE, Paillier),
            ("MHE", ElGamal),
            (HomomorphicProperty.DET, AESScheme),
        ]
        for prop, cls in cases:
            with self.subTest(property=prop):
                scheme = get_scheme(prop, path=self.path, key_store=store, key_bits=KEY_BITS)
                self.assertIsInstance(scheme, cls)
                self.assertTrue(scheme.can_decrypt)

    def test_key_handles(self):
        self.assertEqual(key_handles("Paillier", "/tmp/", 1), ("/tmp/Paillier1.pk", "/tmp/Paillier1.sk"))

    def test_keys_written_under_path(self):
        get_scheme(HomomorphicProperty.AHE, path=self.path, key_bits=KEY_BITS)
        get_scheme(HomomorphicProperty.DET, path=self.path)
        self.assertEqual(sorted(os.listdir(self.test_dir)), ["AES1.sk", "Paillier1.pk", "Paillier1.sk"])

    def test_key_ids_are_independent(self):
        store = InMemoryKeyStore()
        one = get_scheme(HomomorphicProperty.MHE, path=self.path, key_id=1, key_store=store, key_bits=KEY_BITS)
        two = get_scheme(HomomorphicProperty.MHE, path=self.path, key_id=2, key_store=store, key_bits=KEY_BITS)
        self.assertNotEqual(one.p, two.p)
        self.assertEqual(get_scheme(HomomorphicProperty.MHE, path=self.path, key_id=1, key_store=store).p, one.p)

    def test_unsupported_properties(self):
        for prop in (HomomorphicProperty.RND, HomomorphicProperty.DMHE, HomomorphicProperty.OPE,
                     HomomorphicProperty.XOR, "FHE"):
            with self.subTest(property=prop):
                with self.assertRaises(UnsupportedOperationError):
                    get_scheme(prop, path=self.path, key_store=InMemoryKeyStore())

    def test_order_preserving_string_needs_length(self):
        with self.assertRaises(ConfigurationError):
            get_scheme(HomomorphicProperty.OPESTR, path=self.path)
        with self.assertRaises(UnsupportedOperationError):
            get_scheme(HomomorphicProperty.OPESTR, path=self.path, full_length=16)

    def test_unknown_scheme_name(self):
        with self.assertRaises(UnsupportedOperationError):
            get_scheme_by_name("Rot13", path=self.path)

    def test_sentence_flag_reaches_string_scheme(self):
        aes = get_scheme(HomomorphicProperty.DET, path=self.path, sentence=True, key_store=InMemoryKeyStore())
        self.assertTrue(aes.sentence)
        self.assertEqual(len(aes.encrypt("two words").split(" ")), 2)

    def test_add_numbers_given_as_text(self):
        scheme = get_scheme(HomomorphicProperty.AHE, path=self.path, key_bits=KEY_BITS)
        total = scheme.evaluate(scheme.encrypt("100"), scheme.encrypt("23"))
        self.assertEqual(str(scheme.decrypt(total)), "123")


if __name__ == "__main__":
    unittest.main()
