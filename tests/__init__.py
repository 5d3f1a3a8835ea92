"""
Partial Homomorphic Encryption Toolkit Test Suite

Unit tests for the schemes, key storage, packing and scheme selection.
Run with `python -m tests.run_tests` or `python -m unittest discover tests`.
"""

# Version of the test suite
__version__ = '1.0.0'

# Test categories available
TEST_CATEGORIES = [
    'paillier',
    'elgamal',
    'block_cipher',
    'packing',
    'key_store',
    'homomorphic_scheme',
    'scheme_selector',
    'phe_config',
]
