#!/usr/bin/env python3
"""
Tests for packing several 64-bit integers into one plaintext.
"""

import os
import sys
import unittest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from homomorphic_encryption import ElGamal, Paillier
from key_store import InMemoryKeyStore
from packing import (
    AHE_DEFAULT_PADDING_BITS,
    ITEM_MAX,
    ITEM_MIN,
    Packing,
    block_to_int,
    int_to_block,
)
from phe_config import HomomorphicProperty
from phe_errors import UnsupportedOperationError, ValueOutOfRangeError


class TestAdditivePacking(unittest.TestCase):

    def setUp(self):
        self.packing = Packing(HomomorphicProperty.AHE, 256)

    def test_layout_of_non_negative_items(self):
        """Each item is its 8-byte big-endian form behind 3 zero padding bytes."""
        blocks = self.packing.pack([1, 2])
        expected = bytes(3) + (1).to_bytes(8, 'big') + bytes(3) + (2).to_bytes(8, 'big')
        self.assertEqual(blocks, [expected])

    def test_partial_last_block(self):
        blocks = self.packing.pack([1, 2, 3])
        self.assertEqual(len(blocks), 2)
        self.assertEqual(self.packing.unpack(blocks), [1, 2, 3])

    def test_default_space_holds_five_items(self):
        packing = Packing(HomomorphicProperty.AHE)
        self.assertEqual(packing.plaintext_space, 512)
        self.assertEqual(packing.default_padding_bits, AHE_DEFAULT_PADDING_BITS)
        self.assertEqual(packing.items_per_block(), 5)
        numbers = list(range(7, 18))
        blocks = packing.pack(numbers)
        self.assertEqual(len(blocks), 3)
        self.assertEqual(packing.unpack(blocks), numbers)

    def test_extreme_and_negative_items(self):
        numbers = [ITEM_MAX, ITEM_MIN, -1, 5, -3, 1]
        self.assertEqual(self.packing.unpack(self.packing.pack(numbers)), numbers)

    def test_unpack_after_integer_round_trip(self):
        for numbers in ([1, 2], [5, -3], [-5, 1], [ITEM_MIN, ITEM_MAX]):
            with self.subTest(numbers=numbers):
                block = self.packing.pack(numbers)[0]
                self.assertEqual(self.packing.unpack(int_to_block(block_to_int(block))), numbers)

    def test_zero_leading_items_with_count(self):
        """Leading zero items lost in an integer round trip are restored from the count."""
        a = block_to_int(self.packing.pack([5, 1])[0])
        b = block_to_int(self.packing.pack([-5, 2])[0])
        summed = int_to_block(a + b)
        self.assertEqual(self.packing.unpack(summed, count=2), [0, 3])
        self.assertEqual(self.packing.unpack(summed), [3])

    def test_inner_blocks_keep_every_slot(self):
        blocks = [int_to_block(block_to_int(b)) for b in self.packing.pack([0, 5, 0, 0, 7])]
        self.assertEqual(self.packing.unpack(blocks), [0, 5, 0, 0, 7])
        self.assertEqual(self.packing.unpack(blocks, count=5), [0, 5, 0, 0, 7])

    def test_count_must_fit_blocks(self):
        blocks = self.packing.pack([1, 2, 3])
        for count in (0, 2, 5):
            with self.subTest(count=count):
                with self.assertRaises(ValueOutOfRangeError):
                    self.packing.unpack(blocks, count=count)

    def test_sums_of_blocks_add_slotwise(self):
        a = block_to_int(self.packing.pack([1000, -7])[0])
        b = block_to_int(self.packing.pack([24, 9])[0])
        self.assertEqual(self.packing.unpack(int_to_block(a + b)), [1024, 2])

    def test_infeasible_layout(self):
        packing = Packing(HomomorphicProperty.AHE, 160)
        with self.assertRaises(ValueOutOfRangeError):
            packing.pack([1, 2])
        with self.assertRaises(ValueOutOfRangeError):
            self.packing.pack([1, 2], padding_bits=12)

    def test_invalid_items(self):
        for bad in ([1 << 63], [ITEM_MIN - 1], [True], [1.5], ["7"]):
            with self.subTest(items=bad):
                with self.assertRaises(ValueOutOfRangeError):
                    self.packing.pack(bad)

    def test_unsupported_properties(self):
        for prop in (HomomorphicProperty.DET, HomomorphicProperty.XOR, HomomorphicProperty.NONE, "BOGUS"):
            with self.subTest(property=prop):
                with self.assertRaises(UnsupportedOperationError):
                    Packing(prop, 512)


class TestMultiplicativePacking(unittest.TestCase):

    def setUp(self):
        self.packing = Packing(HomomorphicProperty.MHE, 512)

    def test_default_padding_leaves_room_for_products(self):
        self.assertEqual(self.packing.default_padding_bits, 192)
        self.assertEqual(self.packing.items_per_block(), 2)

    def test_only_two_items_per_product_block(self):
        with self.assertRaises(ValueOutOfRangeError):
            self.packing.pack([1, 2, 3], padding_bits=24)
        blocks = self.packing.pack([1, 2, 3, 4, 5], padding_bits=24, is_constant_multiplier=True)
        self.assertEqual(len(blocks), 1)

    def test_last_block_filled_with_ones(self):
        blocks = self.packing.pack([4, 5, 6])
        self.assertEqual(len(blocks), 2)
        self.assertEqual(self.packing.unpack(blocks, is_constant_multiplier=True), [4, 5, 6, 1])

        # multiplying the filled block keeps the real item and the filler
        other = block_to_int(self.packing.pack([2, 3])[0])
        product = int_to_block(block_to_int(blocks[1]) * other)
        self.assertEqual(self.packing.unpack(product), [12, 3])

    def test_zero_leading_product(self):
        """A zero outer product must not shift the cross term into its slot."""
        a = block_to_int(self.packing.pack([0, 5])[0])
        b = block_to_int(self.packing.pack([3, 7])[0])
        self.assertEqual(self.packing.unpack(int_to_block(a * b)), [0, 35])
        self.assertEqual(self.packing.unpack([int_to_block(a * b), int_to_block(b * b)]), [0, 35, 9, 49])

    def test_product_unpacking_needs_two_item_layout(self):
        with self.assertRaises(ValueOutOfRangeError):
            self.packing.unpack(b"\x01", padding_bits=24)

    def test_cross_terms_are_discarded(self):
        """(10, 20) x (3, 7) gives 30, 130, 140; the outer products are kept."""
        a = block_to_int(self.packing.pack([10, 20])[0])
        b = block_to_int(self.packing.pack([3, 7])[0])
        self.assertEqual(self.packing.unpack(int_to_block(a * b)), [30, 140])

    def test_constant_multiplier_keeps_every_slot(self):
        block = self.packing.pack([3, 4], is_constant_multiplier=True)[0]
        product = int_to_block(block_to_int(block) * 5)
        self.assertEqual(self.packing.unpack(product, is_constant_multiplier=True), [15, 20])


class TestIntToBlock(unittest.TestCase):

    def test_minimal_signed_encoding(self):
        self.assertEqual(int_to_block(0), b'\x00')
        self.assertEqual(int_to_block(255), b'\x00\xff')
        self.assertEqual(int_to_block(-1), b'\xff')
        self.assertEqual(block_to_int(int_to_block(-(1 << 100))), -(1 << 100))

    def test_lifts_negative_residue(self):
        modulus = 1000003
        self.assertEqual(block_to_int(int_to_block(-999000, modulus)), 1003)
        # closer to zero as a negative number: kept
        self.assertEqual(block_to_int(int_to_block(-5, modulus)), -5)


class TestPackingWithSchemes(unittest.TestCase):
    """Packed plaintexts survive encryption and homomorphic evaluation."""

    @classmethod
    def setUpClass(cls):
        store = InMemoryKeyStore()
        cls.paillier = Paillier("Paillier1.pk", "Paillier1.sk", key_store=store, key_bits=512)
        cls.elgamal = ElGamal("ElGamal1.pk", "ElGamal1.sk", key_store=store, key_bits=512)

    def _add(self, packing, left, right):
        c = self.paillier.evaluate(self.paillier.encrypt(block_to_int(left)),
                                   self.paillier.encrypt(block_to_int(right)))
        return int_to_block(self.paillier.decrypt(c), self.paillier.n)

    def test_packed_addition(self):
        packing = Packing.for_scheme(self.paillier)
        self.assertEqual(packing.plaintext_space, 256)
        left = packing.pack([1, 2])[0]
        right = packing.pack([10, 20])[0]
        self.assertEqual(packing.unpack(self._add(packing, left, right)), [11, 22])

    def test_packed_addition_with_negatives(self):
        packing = Packing.for_scheme(self.paillier)
        left = packing.pack([5, -3])[0]
        right = packing.pack([-10, 4])[0]
        self.assertEqual(packing.unpack(self._add(packing, left, right)), [-5, 1])

    def test_packed_addition_to_zero(self):
        packing = Packing.for_scheme(self.paillier)
        left = packing.pack([5, 1])[0]
        right = packing.pack([-5, 2])[0]
        self.assertEqual(packing.unpack(self._add(packing, left, right), count=2), [0, 3])

    def test_packed_multiplication(self):
        packing = Packing.for_scheme(self.elgamal)
        left = packing.pack([3, 4])[0]
        right = packing.pack([5, 6])[0]
        c = self.elgamal.evaluate(self.elgamal.encrypt(block_to_int(left)),
                                  self.elgamal.encrypt(block_to_int(right)))
        product = int_to_block(self.elgamal.decrypt(c), self.elgamal.p)
        self.assertEqual(packing.unpack(product), [15, 24])

    def test_packed_multiplication_with_zero_item(self):
        packing = Packing.for_scheme(self.elgamal)
        left = packing.pack([0, 5])[0]
        right = packing.pack([3, 7])[0]
        c = self.elgamal.evaluate(self.elgamal.encrypt(block_to_int(left)),
                                  self.elgamal.encrypt(block_to_int(right)))
        product = int_to_block(self.elgamal.decrypt(c), self.elgamal.p)
        self.assertEqual(packing.unpack(product), [0, 35])

    def test_packed_constant_multiplication(self):
        packing = Packing.for_scheme(self.elgamal)
        block = packing.pack([3, 4], is_constant_multiplier=True)[0]
        c = self.elgamal.evaluate(self.elgamal.encrypt(block_to_int(block)), self.elgamal.encrypt(5))
        product = int_to_block(self.elgamal.decrypt(c), self.elgamal.p)
        self.assertEqual(packing.unpack(product, is_constant_multiplier=True), [15, 20])


if __name__ == "__main__":
    unittest.main()
