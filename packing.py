"""
Packing of several 64-bit integers into a single plaintext.

One ciphertext can carry many values when they are concatenated, each
preceded by padding bits that absorb the growth caused by homomorphic
operations. Adding two packed AHE ciphertexts adds the values slot by slot.
Multiplying two packed MHE ciphertexts holding two items each yields the two
slot products in the outer slots of the result, with the cross terms in
between; unpacking discards the cross terms.

A block holding items x_0 .. x_{K-1} encodes the integer
sum(x_i * 2^(W * (K-1-i))) with W = ITEM_BITS + padding bits, written as
big-endian two's complement. For non-negative items this is each item's
8-byte big-endian form behind zero padding bytes. Negative items borrow from
the slot above, which keeps sums and products of blocks exact; unpacking
peels signed slots off the low end.
"""

import logging
from typing import List, Optional, Sequence, Union

import phe_config
from phe_config import HomomorphicProperty
from phe_errors import UnsupportedOperationError, ValueOutOfRangeError

log = logging.getLogger(__name__)

# the bit length of the largest number supported
ITEM_BITS = 64
ITEM_MIN = -(1 << (ITEM_BITS - 1))
ITEM_MAX = (1 << (ITEM_BITS - 1)) - 1

# For N operands of the same bit length (N-1 additions) the result needs
# log2(N) extra bits. 3 bytes are enough for sums of millions of values.
AHE_DEFAULT_PADDING_BITS = 3 * 8

# Non-constant MHE packing holds exactly two items per plaintext.
MHE_DEFAULT_ITEMS_PER_CTXT = 2

SUPPORTED_PROPERTIES = (HomomorphicProperty.AHE, HomomorphicProperty.MHE)


def block_to_int(block: bytes) -> int:
    """Interpret a packed block as the integer plaintext to encrypt."""
    return int.from_bytes(block, 'big', signed=True)


def int_to_block(value: int, modulus: Optional[int] = None) -> bytes:
    """
    Convert a decrypted plaintext back into a packed block.

    A packed product can exceed half the modulus, in which case the scheme
    decrypts it as a negative number. When the modulus is given, the residue
    closest to zero is used.
    """
    if modulus is not None and value < 0 and value + modulus < -value:
        value += modulus
    length = (value.bit_length() + 8) // 8
    return value.to_bytes(length, 'big', signed=True)


class Packing:
    """Packs and unpacks 64-bit integers for an additive or multiplicative scheme."""

    def __init__(self, property: HomomorphicProperty, plaintext_space: Optional[int] = None):
        """
        Args:
            property: AHE or MHE.
            plaintext_space: Bit width of the target scheme's plaintexts.
                Defaults to the configured space of the property's scheme.
        """
        try:
            property = phe_config.parse_property(property)
        except ValueError as e:
            raise UnsupportedOperationError(str(e)) from None
        if property not in SUPPORTED_PROPERTIES:
            raise UnsupportedOperationError(f"Unsupported property for packing: {property.name}")
        self.homomorphic_property = property

        if plaintext_space is None:
            plaintext_space = phe_config.plaintext_space_for(property)
        if plaintext_space is None or plaintext_space <= 0:
            raise UnsupportedOperationError(f"No plaintext space known for {property.name}")
        self.plaintext_space = plaintext_space

    @classmethod
    def for_scheme(cls, scheme) -> "Packing":
        """Packing sized to a live scheme instance."""
        return cls(scheme.homomorphic_property, scheme.plaintext_space)

    @property
    def default_padding_bits(self) -> int:
        if self.homomorphic_property is HomomorphicProperty.AHE:
            return AHE_DEFAULT_PADDING_BITS

        # Y = P / (V + V*(N-1)), with V*(N-1) the padding for N items.
        return self.plaintext_space // MHE_DEFAULT_ITEMS_PER_CTXT - ITEM_BITS

    def _is_mhe_product(self, is_constant_multiplier: bool) -> bool:
        return self.homomorphic_property is HomomorphicProperty.MHE and not is_constant_multiplier

    def _resolve_padding(self, padding_bits: Optional[int]) -> int:
        if padding_bits is None:
            padding_bits = self.default_padding_bits
        if padding_bits < 0 or padding_bits % 8:
            raise ValueOutOfRangeError(f"Padding must be a non-negative multiple of 8 bits, got {padding_bits}")

        # there is no point packing fewer than 2 items per plaintext
        if 2 * (ITEM_BITS + padding_bits) > self.plaintext_space:
            raise ValueOutOfRangeError(
                f"Cannot pack items: two {ITEM_BITS}-bit items with {padding_bits} padding bits "
                f"exceed the {self.plaintext_space}-bit plaintext space")
        return padding_bits

    def items_per_block(self, padding_bits: Optional[int] = None) -> int:
        padding_bits = self._resolve_padding(padding_bits)
        return self.plaintext_space // (ITEM_BITS + padding_bits)

    @staticmethod
    def _join(items: List[int], width: int) -> bytes:
        value = 0
        for item in items:
            value = (value << width) + item
        length = max(len(items) * width // 8, (value.bit_length() + 8) // 8)
        return value.to_bytes(length, 'big', signed=True)

    def pack(self, numbers: Sequence[int], padding_bits: Optional[int] = None,
             is_constant_multiplier: bool = False) -> List[bytes]:
        """
        Pack numbers into as few plaintext blocks as possible.

        Items are laid out most significant first. Under non-constant MHE the
        last block is filled with ones so multiplying it leaves the other
        block's items untouched.
        """
        padding_bits = self._resolve_padding(padding_bits)
        width = ITEM_BITS + padding_bits
        items_per_ctxt = self.plaintext_space // width

        if self._is_mhe_product(is_constant_multiplier) and items_per_ctxt != 2:
            raise ValueOutOfRangeError(
                f"MHE packing supports only 2 items per ciphertext, layout gives {items_per_ctxt}")

        blocks = []
        current = []
        for number in numbers:
            if isinstance(number, bool) or not isinstance(number, int):
                raise ValueOutOfRangeError(f"Packed items must be integers, got {type(number).__name__}")
            if not ITEM_MIN <= number <= ITEM_MAX:
                raise ValueOutOfRangeError(f"Packed items must fit in {ITEM_BITS} signed bits")
            current.append(number)

            if len(current) == items_per_ctxt:
                blocks.append(self._join(current, width))
                current = []

        if current:
            if self._is_mhe_product(is_constant_multiplier):
                while len(current) < items_per_ctxt:
                    current.append(1)
            blocks.append(self._join(current, width))

        log.debug(f"Packed {len(numbers)} items into {len(blocks)} {self.homomorphic_property.name} blocks "
                  f"({items_per_ctxt} per block, {padding_bits} padding bits)")
        return blocks

    def unpack(self, blocks: Union[bytes, Sequence[bytes]], padding_bits: Optional[int] = None,
               is_constant_multiplier: bool = False, count: Optional[int] = None) -> List[int]:
        """
        Recover the items of one block or a sequence of blocks, in order.

        Leading zero bytes are lost in an integer round trip, so the number of
        slots is not taken from the block length where it is known:
        - non-constant MHE blocks are products of two 2-item blocks and always
          hold 3 slots, of which the outer two are kept;
        - every other block but the last holds a full items_per_block slots;
        - the last block holds whatever is left of `count` items, or as many
          slots as its length covers when `count` is not given.
        """
        padding_bits = self._resolve_padding(padding_bits)
        if isinstance(blocks, (bytes, bytearray)):
            blocks = [blocks]

        width = ITEM_BITS + padding_bits
        bytes_per_item = width // 8
        items_per_ctxt = self.plaintext_space // width
        mhe_product = self._is_mhe_product(is_constant_multiplier)

        if mhe_product and items_per_ctxt != 2:
            raise ValueOutOfRangeError(
                f"MHE packing supports only 2 items per ciphertext, layout gives {items_per_ctxt}")

        last_slots = None
        if count is not None and not mhe_product:
            last_slots = count - items_per_ctxt * (len(blocks) - 1)
            if not blocks or not 0 < last_slots <= items_per_ctxt:
                raise ValueOutOfRangeError(
                    f"{count} items do not fit {len(blocks)} blocks of {items_per_ctxt} items")

        numbers = []
        for index, block in enumerate(blocks):
            value = int.from_bytes(block, 'big', signed=True)

            if mhe_product:
                slots = 2 * MHE_DEFAULT_ITEMS_PER_CTXT - 1
            elif index < len(blocks) - 1:
                slots = items_per_ctxt
            elif last_slots is not None:
                slots = last_slots
            else:
                slots = max(1, -(-len(block) // bytes_per_item))

            block_numbers = []
            for _ in range(slots - 1):
                item = value & ((1 << width) - 1)
                if item >= 1 << (width - 1):
                    item -= 1 << width
                block_numbers.append(item)
                value = (value - item) >> width
            # the top slot takes whatever is left
            block_numbers.append(value)

            # 10, 20 x 3, 7 gives 30, 130, 140: keep the outer products only
            if mhe_product:
                del block_numbers[1:-1]

            block_numbers.reverse()
            numbers.extend(block_numbers)

        return numbers
