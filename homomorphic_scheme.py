"""
Partial Homomorphic Encryption Scheme Contract

Every scheme in the toolkit derives from HomomorphicScheme, which provides:
1. Key provisioning - load existing keys or generate and persist new ones
2. Representation coercion - plaintexts and ciphertexts are either text or
   arbitrary-precision integers; inputs are converted to what the scheme declares
3. Capability dispatch - encrypt / decrypt / evaluate routed to the scheme's
   text or integer implementation, failing when the capability is missing

Symmetric schemes need a private key handle only. Asymmetric schemes always
need a public key handle and may omit the private key handle, which gives an
evaluation-only instance for parties that combine ciphertexts but never decrypt.
"""

import logging
import math
import re
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Union

from phe_config import DataType, HomomorphicProperty
from phe_errors import (
    ConfigurationError,
    TypeCoercionError,
    UnsupportedOperationError,
)
from key_store import FileKeyStore, KeyRecord, KeyStore, PRIVATE_KIND, PUBLIC_KIND

log = logging.getLogger(__name__)

Plaintext = Union[int, str]
Ciphertext = Union[int, str]

# optional sign, then ASCII digits only (no "_" separators, no non-ASCII digits)
DECIMAL_TEXT = re.compile(r"[+-]?[0-9]+")


class RandomnessPolicy(Enum):
    """
    Source of the per-encryption randomness.

    FRESH draws new randomness from the CSPRNG on every call. FIXED reuses
    values precomputed once when the scheme was constructed; it exists only to
    benchmark encryption cost and produces deterministic, insecure ciphertexts.
    """
    FRESH = "fresh"
    FIXED = "fixed-for-benchmarking"


@dataclass(frozen=True)
class KeyPair:
    """Named integer fields of each key half. public is None for symmetric schemes."""
    public: Optional[Dict[str, int]]
    private: Dict[str, int]


def to_integer(value) -> int:
    """
    Convert a numeric-like value to an arbitrary-precision integer.

    Floats and Decimals are truncated toward zero; text must be a base-10 integer.
    """
    if isinstance(value, bool):
        raise TypeCoercionError("Boolean values are not integer plaintexts")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise TypeCoercionError(f"Cannot convert {value} to an integer")
        return int(value)
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise TypeCoercionError(f"Cannot convert {value} to an integer")
        return int(value)
    if isinstance(value, str):
        if not DECIMAL_TEXT.fullmatch(value.strip()):
            raise TypeCoercionError(f"Text is not a base-10 integer: {value!r}")
        return int(value.strip(), 10)
    raise TypeCoercionError(f"Unexpected type of value: {type(value).__name__}")


def to_text(value) -> str:
    """Convert a text or numeric value to text."""
    if isinstance(value, bool):
        raise TypeCoercionError("Boolean values are not text plaintexts")
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    raise TypeCoercionError(f"Unexpected type of value: {type(value).__name__}")


def coerce(value, data_type: DataType):
    if data_type is DataType.TEXT:
        return to_text(value)
    if data_type is DataType.INTEGER:
        return to_integer(value)
    raise TypeCoercionError(f"Unexpected representation: {data_type}")


class HomomorphicScheme:
    """
    Base class for all schemes.

    Subclasses set the class attributes below, implement generate_keys() and
    _load_keys(), and override the _encrypt/_decrypt/_evaluate hooks for the
    representations they declare.
    """

    name: str = None
    homomorphic_property: HomomorphicProperty = HomomorphicProperty.NONE
    symmetric: bool = False
    plaintext_type: DataType = DataType.INTEGER
    ciphertext_type: DataType = DataType.INTEGER

    PUBLIC_FIELDS = ()
    PRIVATE_FIELDS = ()

    def __init__(self, public_key_handle: Optional[str] = None,
                 private_key_handle: Optional[str] = None,
                 key_store: Optional[KeyStore] = None):
        self.public_key_handle = public_key_handle
        self.private_key_handle = private_key_handle
        self.key_store = key_store if key_store is not None else FileKeyStore()

        self.public_key: Optional[Dict[str, int]] = None
        self.private_key: Optional[Dict[str, int]] = None

        self._provision_keys()
        self._load_keys(self.public_key, self.private_key)

    # -- key material -------------------------------------------------------

    def generate_keys(self) -> KeyPair:
        """Generate fresh key material. Does not persist it."""
        raise NotImplementedError

    def _load_keys(self, public_key: Optional[Dict[str, int]], private_key: Optional[Dict[str, int]]) -> None:
        """Derive working values from loaded key fields."""
        raise NotImplementedError

    def _keys_exist(self) -> bool:
        store = self.key_store
        if not self.symmetric and not store.exists(self.public_key_handle):
            return False
        if self.private_key_handle is not None and not store.exists(self.private_key_handle):
            return False
        return True

    def _persist_keys(self, key_pair: KeyPair) -> None:
        if not self.symmetric:
            self.key_store.write(self.public_key_handle,
                                 KeyRecord(scheme=self.name, kind=PUBLIC_KIND, fields=key_pair.public))
        self.key_store.write(self.private_key_handle,
                             KeyRecord(scheme=self.name, kind=PRIVATE_KIND, fields=key_pair.private))

    def _generate_and_persist(self) -> None:
        # Re-check under the lock: another caller may have provisioned the keys.
        with self.key_store.lock(self.private_key_handle):
            if self._keys_exist():
                log.info(f"{self.name} keys appeared while waiting for lock, loading them")
                return
            log.info(f"Generating {self.name} keys for {self.private_key_handle}")
            start = time.perf_counter()
            key_pair = self.generate_keys()
            self._persist_keys(key_pair)
            log.info(f"Generated {self.name} keys in {time.perf_counter() - start:.2f}s")

    def _read_key(self, handle: str, kind: str, names) -> Dict[str, int]:
        record = self.key_store.read(handle)
        return dict(record.require(self.name, kind, *names))

    def _provision_keys(self) -> None:
        if self.symmetric:
            if self.private_key_handle is None:
                raise ConfigurationError(f"Private key path cannot be None in symmetric scheme {self.name}")
        else:
            if self.public_key_handle is None:
                raise ConfigurationError(f"Public key path cannot be None in asymmetric scheme {self.name}")
            # A public key without its private key cannot be generated.
            if self.private_key_handle is None and not self.key_store.exists(self.public_key_handle):
                raise ConfigurationError(f"Could not find {self.name} public key {self.public_key_handle}")

        if self.private_key_handle is not None and not self._keys_exist():
            self._generate_and_persist()

        if not self.symmetric:
            self.public_key = self._read_key(self.public_key_handle, PUBLIC_KIND, self.PUBLIC_FIELDS)
        if self.private_key_handle is not None:
            self.private_key = self._read_key(self.private_key_handle, PRIVATE_KIND, self.PRIVATE_FIELDS)

        log.debug(f"{self.name} keys loaded (private key {'present' if self.private_key else 'absent'})")

    @property
    def can_decrypt(self) -> bool:
        return self.private_key is not None

    def _require_private_key(self) -> None:
        if self.private_key is None:
            raise ConfigurationError(f"{self.name} instance has no private key; it can only encrypt and evaluate")

    @property
    def plaintext_space(self) -> Optional[int]:
        """Bit width of the largest plaintext, or None when not bounded numerically."""
        return None

    # -- public contract ----------------------------------------------------

    def encrypt(self, plaintext, randomness: RandomnessPolicy = RandomnessPolicy.FRESH) -> Ciphertext:
        if not isinstance(randomness, RandomnessPolicy):
            raise ValueError(f"Unknown randomness policy: {randomness!r}")
        value = coerce(plaintext, self.plaintext_type)
        if self.plaintext_type is DataType.TEXT:
            return self._encrypt_text(value, randomness)
        return self._encrypt_integer(value, randomness)

    def decrypt(self, ciphertext) -> Plaintext:
        self._require_private_key()
        value = coerce(ciphertext, self.ciphertext_type)
        if self.ciphertext_type is DataType.TEXT:
            return self._decrypt_text(value)
        return self._decrypt_integer(value)

    def evaluate(self, ciphertext_a, ciphertext_b) -> Ciphertext:
        """Combine two ciphertexts with the scheme's homomorphic operation."""
        a = coerce(ciphertext_a, self.ciphertext_type)
        b = coerce(ciphertext_b, self.ciphertext_type)
        if self.ciphertext_type is DataType.TEXT:
            return self._evaluate_text(a, b)
        return self._evaluate_integer(a, b)

    # -- per-representation hooks -------------------------------------------

    def _encrypt_text(self, plaintext: str, randomness: RandomnessPolicy):
        raise UnsupportedOperationError(f"{self.name} does not support encrypting text")

    def _encrypt_integer(self, plaintext: int, randomness: RandomnessPolicy):
        raise UnsupportedOperationError(f"{self.name} does not support encrypting integers")

    def _decrypt_text(self, ciphertext: str):
        raise UnsupportedOperationError(f"{self.name} does not support decrypting text")

    def _decrypt_integer(self, ciphertext: int):
        raise UnsupportedOperationError(f"{self.name} does not support decrypting integers")

    def _evaluate_text(self, ciphertext_a: str, ciphertext_b: str):
        raise UnsupportedOperationError(f"{self.name} does not support homomorphic evaluation")

    def _evaluate_integer(self, ciphertext_a: int, ciphertext_b: int):
        raise UnsupportedOperationError(f"{self.name} does not support homomorphic evaluation")

    def __repr__(self):
        return (f"{self.__class__.__name__}(public_key_handle={self.public_key_handle!r}, "
                f"private_key_handle={self.private_key_handle!r})")


def re_encrypt(from_scheme: HomomorphicScheme, to_scheme: HomomorphicScheme, ciphertext,
               randomness: RandomnessPolicy = RandomnessPolicy.FRESH) -> Ciphertext:
    """
    Decrypt under one scheme and encrypt the result under another.

    The plaintext is exposed to whoever runs this, for the duration of the call.
    """
    return to_scheme.encrypt(from_scheme.decrypt(ciphertext), randomness)
