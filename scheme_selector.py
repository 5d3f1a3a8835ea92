"""
Scheme selection by homomorphic property.

Callers ask for a property (AHE, MHE, DET, ...) instead of a concrete scheme,
so a scheme can be replaced by another with the same property without
changing the callers. Keys are stored at
<path><scheme name><key id>.pk / .sk, generated on first use and reused after.
"""

import logging
from typing import Callable, Dict, Optional, Union

import phe_config
from phe_config import HomomorphicProperty
from phe_errors import ConfigurationError, UnsupportedOperationError
from homomorphic_scheme import HomomorphicScheme
from homomorphic_encryption import ElGamal, Paillier
from block_cipher import AESScheme
from key_store import KeyStore

log = logging.getLogger(__name__)


def _paillier(public_key_handle, private_key_handle, key_store, sentence, full_length, key_bits):
    return Paillier(public_key_handle, private_key_handle, key_store=key_store, key_bits=key_bits)


def _elgamal(public_key_handle, private_key_handle, key_store, sentence, full_length, key_bits):
    return ElGamal(public_key_handle, private_key_handle, key_store=key_store, key_bits=key_bits)


def _aes(public_key_handle, private_key_handle, key_store, sentence, full_length, key_bits):
    return AESScheme(private_key_handle, key_store=key_store, sentence=sentence, key_bits=key_bits)


SchemeFactory = Callable[..., HomomorphicScheme]

# Schemes available in this toolkit. Names in PROPERTY_TO_SCHEME without an
# entry here (AESRND, RSA, OPE, OPESTR, GoldwasserMicali) are not provided.
SCHEME_FACTORIES: Dict[str, SchemeFactory] = {
    "Paillier": _paillier,
    "ElGamal": _elgamal,
    "AES": _aes,
}


def key_handles(scheme_name: str, path: str, key_id: int):
    """Public and private key handles for a scheme and key id."""
    key_path = f"{path}{scheme_name}{key_id}"
    return key_path + phe_config.PUBLIC_EXTENSION, key_path + phe_config.PRIVATE_EXTENSION


def get_scheme_by_name(scheme_name: str, path: Optional[str] = None, key_id: Optional[int] = None,
                       sentence: bool = False, full_length: int = 0,
                       key_store: Optional[KeyStore] = None, key_bits: Optional[int] = None) -> HomomorphicScheme:
    """
    Return an instance of the named scheme with keys loaded or generated.

    Args:
        scheme_name: Name as used in PROPERTY_TO_SCHEME, e.g. "Paillier".
        path: Key directory prefix, KEYS_PATH by default.
        key_id: Separates several key sets of the same scheme.
        sentence: Encrypt text word by word (string schemes only).
        full_length: Fixed length of string plaintexts (OPESTR only).
        key_store: Storage backend, FileKeyStore by default.
        key_bits: Key length used when keys are generated; configured default if None.
    """
    path = phe_config.KEYS_PATH if path is None else path
    key_id = phe_config.DEFAULT_KEY_ID if key_id is None else key_id

    if scheme_name == "OPESTR" and full_length == 0:
        raise ConfigurationError("Full length for OPESTR not defined")

    factory = SCHEME_FACTORIES.get(scheme_name)
    if factory is None:
        raise UnsupportedOperationError(f"Unsupported scheme: {scheme_name}")

    public_key_handle, private_key_handle = key_handles(scheme_name, path, key_id)
    log.debug(f"Providing {scheme_name} scheme with key id {key_id}")
    return factory(public_key_handle, private_key_handle, key_store, sentence, full_length, key_bits)


def get_scheme(property: Union[HomomorphicProperty, str], path: Optional[str] = None,
               key_id: Optional[int] = None, sentence: bool = False, full_length: int = 0,
               key_store: Optional[KeyStore] = None,
               key_bits: Optional[int] = None) -> Optional[HomomorphicScheme]:
    """
    Return a scheme offering the given homomorphic property.

    NONE returns None: values pass through unencrypted.
    """
    try:
        property = phe_config.parse_property(property)
    except ValueError as e:
        raise UnsupportedOperationError(str(e)) from None

    if property is HomomorphicProperty.NONE:
        return None

    scheme_name = phe_config.PROPERTY_TO_SCHEME[property]
    return get_scheme_by_name(scheme_name, path, key_id, sentence, full_length, key_store, key_bits)
