"""Exceptions raised by the homomorphic encryption toolkit."""


class HomomorphicSchemeError(Exception):
    """Base class for all toolkit errors."""
    pass


class ConfigurationError(HomomorphicSchemeError):
    """Key material is missing, unreadable or inconsistent."""
    pass


class UnsupportedOperationError(HomomorphicSchemeError):
    """The scheme or codec does not implement the requested capability."""
    pass


class ValueOutOfRangeError(HomomorphicSchemeError):
    """A plaintext or packing layout does not fit the plaintext space."""
    pass


class MalformedCiphertextError(HomomorphicSchemeError):
    """A ciphertext could not be parsed into its structured form."""
    pass


class TypeCoercionError(HomomorphicSchemeError):
    """A value cannot be represented in the scheme's declared representation."""
    pass
