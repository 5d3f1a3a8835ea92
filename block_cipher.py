"""
Deterministic AES scheme (DET property).

Equal plaintexts give equal ciphertexts under the same key, which lets an
untrusted party test encrypted values for equality. Ciphertexts are base64
text. In sentence mode every space-separated word is encrypted on its own so
individual words can be matched.
"""

import base64
import binascii
import logging
import secrets
from typing import Dict, Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

import phe_config
from phe_config import DataType, HomomorphicProperty
from phe_errors import ConfigurationError, MalformedCiphertextError, TypeCoercionError
from homomorphic_scheme import HomomorphicScheme, KeyPair, RandomnessPolicy
from key_store import KeyStore

log = logging.getLogger(__name__)


class AESScheme(HomomorphicScheme):
    """
    AES in ECB mode with PKCS7 padding.

    ECB leaks equality of 16-byte blocks; that is the point of DET, but it
    also exposes shared prefixes of long values.
    """

    name = "AES"
    homomorphic_property = HomomorphicProperty.DET
    symmetric = True
    plaintext_type = DataType.TEXT
    ciphertext_type = DataType.TEXT

    PRIVATE_FIELDS = ('key_bits', 'key')

    DELIMITER = " "

    def __init__(self, private_key_handle: str, key_store: Optional[KeyStore] = None,
                 sentence: bool = False, compact: bool = False, key_bits: Optional[int] = None):
        """
        Args:
            private_key_handle: Where the secret key is stored.
            key_store: Storage backend, FileKeyStore by default.
            sentence: Encrypt each space-separated word separately.
            compact: In sentence mode, drop repeated words.
            key_bits: 128, 192 or 256; used when generating a key.
        """
        self.key_bits = key_bits or phe_config.KEY_BITLENGTH["AES"]
        if self.key_bits not in (128, 192, 256):
            raise ConfigurationError(f"AES key length must be 128, 192 or 256 bits, got {self.key_bits}")
        self.sentence = sentence
        self.compact = compact
        super().__init__(None, private_key_handle, key_store)

    def generate_keys(self) -> KeyPair:
        key = secrets.token_bytes(self.key_bits // 8)
        log.info(f"Generated {self.key_bits}-bit AES key")
        return KeyPair(public=None, private={'key_bits': self.key_bits, 'key': int.from_bytes(key, 'big')})

    def _load_keys(self, public_key: Optional[Dict[str, int]], private_key: Optional[Dict[str, int]]) -> None:
        self.key_bits = private_key['key_bits']
        try:
            key = private_key['key'].to_bytes(self.key_bits // 8, 'big')
        except OverflowError:
            raise ConfigurationError("Stored AES key does not match its declared length") from None
        self._cipher = Cipher(algorithms.AES(key), modes.ECB())

    def _encrypt_word(self, word: str) -> str:
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        data = padder.update(word.encode(phe_config.CHARSET_NAME)) + padder.finalize()
        encryptor = self._cipher.encryptor()
        ciphertext = encryptor.update(data) + encryptor.finalize()
        return base64.b64encode(ciphertext).decode('ascii')

    def _decrypt_word(self, ciphertext: str) -> str:
        try:
            data = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError):
            raise MalformedCiphertextError("AES ciphertext is not valid base64") from None
        if not data or len(data) % (algorithms.AES.block_size // 8):
            raise MalformedCiphertextError("AES ciphertext length is not a multiple of the block size")

        decryptor = self._cipher.decryptor()
        padded = decryptor.update(data) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        try:
            plaintext = unpadder.update(padded) + unpadder.finalize()
        except ValueError:
            raise MalformedCiphertextError("AES ciphertext has invalid padding") from None
        try:
            return plaintext.decode(phe_config.CHARSET_NAME)
        except UnicodeDecodeError:
            raise TypeCoercionError("Decrypted AES plaintext is not valid text") from None

    def encrypt_sentence(self, sentence: str, compact: bool = False) -> str:
        """Encrypt every word separately, skipping empty words (and repeats when compact)."""
        seen = set()
        parts = []
        for word in sentence.split(self.DELIMITER):
            if word == "" or (compact and word in seen):
                continue
            seen.add(word)
            parts.append(self._encrypt_word(word))
        return self.DELIMITER.join(parts)

    def _encrypt_text(self, plaintext: str, randomness: RandomnessPolicy) -> str:
        # Deterministic: the randomness policy has nothing to choose.
        if self.sentence:
            return self.encrypt_sentence(plaintext, self.compact)
        return self._encrypt_word(plaintext)

    def _decrypt_text(self, ciphertext: str) -> str:
        if self.sentence:
            return self.DELIMITER.join(self._decrypt_word(part)
                                       for part in ciphertext.split(self.DELIMITER) if part)
        return self._decrypt_word(ciphertext.strip())
