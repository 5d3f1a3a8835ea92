"""
Homomorphic Encryption Schemes

Partially homomorphic schemes that allow one algebraic operation to be
performed directly on ciphertexts:

1. Paillier (AHE) - multiplying ciphertexts adds the plaintexts; raising a
   ciphertext to a public integer multiplies the plaintext by it
2. ElGamal (MHE) - multiplying ciphertexts multiplies the plaintexts; raising a
   ciphertext to a public integer raises the plaintext to that power

Both schemes encode negative integers in the upper half of their modulus, so
plaintexts must stay below half the key's bit length.
"""

import logging
import math
import secrets
import tempfile
from typing import Dict, Optional, Tuple

import phe_config
from phe_config import DataType, HomomorphicProperty
from phe_errors import ConfigurationError, MalformedCiphertextError, ValueOutOfRangeError
from homomorphic_scheme import HomomorphicScheme, KeyPair, RandomnessPolicy, to_integer, to_text
from key_store import KeyStore

he_logger = logging.getLogger(__name__)

MIN_KEY_BITS = 128

# Miller-Rabin rounds; error probability at most 4^-rounds per candidate.
PRIMALITY_ROUNDS = 40

_SMALL_PRIMES = (3, 5, 7, 11, 13, 17, 19, 23, 29, 31, 37, 41, 43, 47, 53, 59, 61, 67, 71,
                 73, 79, 83, 89, 97, 101, 103, 107, 109, 113, 127, 131, 137, 139, 149, 151)


def is_probable_prime(n: int, rounds: int = PRIMALITY_ROUNDS) -> bool:
    """Miller-Rabin primality test."""
    if n < 2:
        return False
    if n in (2, 3):
        return True
    if n % 2 == 0:
        return False
    for small in _SMALL_PRIMES:
        if n == small:
            return True
        if n % small == 0:
            return False

    # Write n-1 as d * 2^r
    r = 0
    d = n - 1
    while d % 2 == 0:
        r += 1
        d //= 2

    for _ in range(rounds):
        a = secrets.randbelow(n - 3) + 2
        x = pow(a, d, n)

        if x == 1 or x == n - 1:
            continue

        for _ in range(r - 1):
            x = pow(x, 2, n)
            if x == n - 1:
                break
        else:
            return False

    return True


def generate_probable_prime(bits: int) -> int:
    """Generate a random probable prime of exactly `bits` bits."""
    if bits < 2:
        raise ValueError("Prime bit length must be at least 2")
    while True:
        candidate = secrets.randbits(bits)
        candidate |= (1 << (bits - 1))  # Set MSB
        candidate |= 1  # Set LSB to make odd

        if is_probable_prime(candidate):
            return candidate


def extended_gcd(a: int, b: int) -> Tuple[int, int, int]:
    """Return (g, x, y) with a*x + b*y == g == gcd(a, b)."""
    old_r, r = a, b
    old_x, x = 1, 0
    old_y, y = 0, 1
    while r != 0:
        quotient = old_r // r
        old_r, r = r, old_r - quotient * r
        old_x, x = x, old_x - quotient * x
        old_y, y = y, old_y - quotient * y
    return old_r, old_x, old_y


def mod_inverse(a: int, m: int) -> int:
    """Compute modular multiplicative inverse."""
    gcd, x, _ = extended_gcd(a % m, m)
    if gcd != 1:
        raise ValueError("Modular inverse does not exist")
    return x % m


def lcm(a: int, b: int) -> int:
    return a * b // math.gcd(a, b)


def _check_key_bits(key_bits: int, scheme_name: str) -> int:
    if key_bits < MIN_KEY_BITS or key_bits % 2:
        raise ConfigurationError(
            f"{scheme_name} key length must be an even number of bits >= {MIN_KEY_BITS}, got {key_bits}")
    return key_bits


class Paillier(HomomorphicScheme):
    """
    Paillier cryptosystem - additively homomorphic.

    Supports addition of encrypted values and multiplication by plaintext
    constants. Plaintexts and ciphertexts are integers.
    """

    name = "Paillier"
    homomorphic_property = HomomorphicProperty.AHE
    plaintext_type = DataType.INTEGER
    ciphertext_type = DataType.INTEGER

    PUBLIC_FIELDS = ('key_bits', 'n', 'n_squared', 'g')
    PRIVATE_FIELDS = ('lambda',)

    GENERATOR = 2

    def __init__(self, public_key_handle: str, private_key_handle: Optional[str] = None,
                 key_store: Optional[KeyStore] = None, key_bits: Optional[int] = None):
        """
        Args:
            public_key_handle: Where the public key is stored.
            private_key_handle: Where the private key is stored, or None for an
                evaluation-only instance.
            key_store: Storage backend, FileKeyStore by default.
            key_bits: Bit length of n used when generating keys.
        """
        self.key_bits = _check_key_bits(key_bits or phe_config.KEY_BITLENGTH["Paillier"], self.name)
        super().__init__(public_key_handle, private_key_handle, key_store)

    @staticmethod
    def _l_function(x: int, n: int) -> int:
        return (x - 1) // n

    def generate_keys(self) -> KeyPair:
        """
        Generate Paillier public/private key pair.

        g is fixed to 2; when it is not a valid generator for the drawn primes
        (gcd(L(g^lambda mod n^2), n) != 1) fresh primes are drawn.
        """
        half = self.key_bits // 2
        g = self.GENERATOR
        attempt = 0
        while True:
            attempt += 1
            p = generate_probable_prime(half)
            q = generate_probable_prime(half)
            if p == q:
                continue

            n = p * q
            n_squared = n * n
            lambda_n = lcm(p - 1, q - 1)

            if math.gcd(self._l_function(pow(g, lambda_n, n_squared), n), n) == 1:
                break
            he_logger.warning(f"g={g} is not a valid Paillier generator for the drawn primes "
                              f"(attempt {attempt}), retrying with fresh primes")

        he_logger.info(f"Generated {self.key_bits}-bit Paillier keypair")
        return KeyPair(
            public={'key_bits': self.key_bits, 'n': n, 'n_squared': n_squared, 'g': g},
            private={'lambda': lambda_n},
        )

    def _load_keys(self, public_key: Optional[Dict[str, int]], private_key: Optional[Dict[str, int]]) -> None:
        if public_key['key_bits'] != self.key_bits:
            he_logger.info(f"Using stored {public_key['key_bits']}-bit Paillier key "
                           f"(configured {self.key_bits} bits)")
        self.key_bits = public_key['key_bits']
        self.n = public_key['n']
        self.n_squared = public_key['n_squared']
        self.g = public_key['g']
        if self.n_squared != self.n * self.n:
            raise ConfigurationError("Paillier public key is inconsistent: n_squared != n * n")

        # threshold that separates positive from negative numbers
        self.decryption_threshold = 1 << (self.key_bits // 2)

        self.lambda_n = None
        self.u = None
        if private_key is not None:
            self.lambda_n = private_key['lambda']
            try:
                self.u = mod_inverse(self._l_function(pow(self.g, self.lambda_n, self.n_squared), self.n), self.n)
            except ValueError:
                raise ConfigurationError("Paillier private key does not match public key") from None

        # Only used under RandomnessPolicy.FIXED.
        self._fixed_random_raised = pow(self._draw_random(), self.n, self.n_squared)

    @property
    def plaintext_space(self) -> int:
        return self.key_bits // 2

    def _draw_random(self) -> int:
        while True:
            r = secrets.randbits(self.key_bits)
            if r != 0 and math.gcd(r, self.n) == 1:
                return r

    def _check_ciphertext(self, ciphertext: int) -> int:
        if not 0 < ciphertext < self.n_squared:
            raise MalformedCiphertextError("Paillier ciphertext must lie in (0, n^2)")
        return ciphertext

    def _encrypt_integer(self, plaintext: int, randomness: RandomnessPolicy) -> int:
        if abs(plaintext).bit_length() >= self.plaintext_space:
            raise ValueOutOfRangeError(
                f"Plaintext too big for {self.key_bits}-bit Paillier key "
                f"(must be below {self.plaintext_space} bits)")

        if randomness is RandomnessPolicy.FIXED:
            random_raised = self._fixed_random_raised
        else:
            random_raised = pow(self._draw_random(), self.n, self.n_squared)

        # c = g^m * r^n mod n^2
        g_raised = pow(self.g, plaintext % self.n, self.n_squared)
        return (g_raised * random_raised) % self.n_squared

    def _decrypt_integer(self, ciphertext: int) -> int:
        self._check_ciphertext(ciphertext)

        # m = L(c^lambda mod n^2) * u mod n
        c_lambda = pow(ciphertext, self.lambda_n, self.n_squared)
        plaintext = (self._l_function(c_lambda, self.n) * self.u) % self.n

        if plaintext >= self.decryption_threshold:
            plaintext -= self.n

        return plaintext

    def _evaluate_integer(self, ciphertext_a: int, ciphertext_b: int) -> int:
        self._check_ciphertext(ciphertext_a)
        self._check_ciphertext(ciphertext_b)

        # Homomorphic addition: c1 * c2 mod n^2
        he_logger.debug("Performed Paillier homomorphic addition")
        return (ciphertext_a * ciphertext_b) % self.n_squared

    def evaluate_scalar(self, ciphertext, constant) -> int:
        """
        Homomorphically multiply an encrypted value by a plaintext constant.

        Returns c^k mod n^2, an encryption of m * k.
        """
        c = self._check_ciphertext(to_integer(ciphertext))
        k = to_integer(constant)
        if k < 0:
            try:
                c = mod_inverse(c, self.n_squared)
            except ValueError:
                raise MalformedCiphertextError("Paillier ciphertext is not invertible mod n^2") from None
            k = -k
        return pow(c, k, self.n_squared)

    def negate(self, ciphertext) -> int:
        return self.evaluate_scalar(ciphertext, -1)

    def subtract(self, ciphertext_a, ciphertext_b) -> int:
        """Encryption of the difference of the two plaintexts."""
        return self.evaluate(ciphertext_a, self.negate(ciphertext_b))


class ElGamal(HomomorphicScheme):
    """
    ElGamal cryptosystem - multiplicatively homomorphic.

    Plaintexts are integers; ciphertexts are the pair (c1, c2) serialized as
    "c1:c2". g is drawn as an independent prime and is not checked to generate
    the group, so the scheme keeps the arithmetic of existing keys but must not
    be treated as a secure configuration.
    """

    name = "ElGamal"
    homomorphic_property = HomomorphicProperty.MHE
    plaintext_type = DataType.INTEGER
    ciphertext_type = DataType.TEXT

    PUBLIC_FIELDS = ('key_bits', 'p', 'g', 'h')
    PRIVATE_FIELDS = ('sk',)

    DELIMITER = ":"

    def __init__(self, public_key_handle: str, private_key_handle: Optional[str] = None,
                 key_store: Optional[KeyStore] = None, key_bits: Optional[int] = None):
        self.key_bits = _check_key_bits(key_bits or phe_config.KEY_BITLENGTH["ElGamal"], self.name)
        super().__init__(public_key_handle, private_key_handle, key_store)

    def generate_keys(self) -> KeyPair:
        p = generate_probable_prime(self.key_bits)
        g = generate_probable_prime(self.key_bits)

        while True:
            sk = generate_probable_prime(self.key_bits)
            if math.gcd(sk, p) == 1:
                break

        h = pow(g, sk, p)

        he_logger.info(f"Generated {self.key_bits}-bit ElGamal keypair")
        return KeyPair(
            public={'key_bits': self.key_bits, 'p': p, 'g': g, 'h': h},
            private={'sk': sk},
        )

    def _load_keys(self, public_key: Optional[Dict[str, int]], private_key: Optional[Dict[str, int]]) -> None:
        self.key_bits = public_key['key_bits']
        self.p = public_key['p']
        self.g = public_key['g']
        self.h = public_key['h']
        self.sk = private_key['sk'] if private_key is not None else None

        self.decryption_threshold = 1 << (self.key_bits // 2)

        # Only used under RandomnessPolicy.FIXED.
        fixed_random = secrets.randbits(self.key_bits)
        self._fixed_c1 = pow(self.g, fixed_random, self.p)
        self._fixed_shared_secret = pow(self.h, fixed_random, self.p)

    @property
    def plaintext_space(self) -> int:
        return self.key_bits // 2

    def serialize(self, c1: int, c2: int) -> str:
        return f"{c1}{self.DELIMITER}{c2}"

    def deserialize(self, ciphertext: str) -> Tuple[int, int]:
        parts = ciphertext.split(self.DELIMITER)
        if len(parts) != 2:
            raise MalformedCiphertextError("Invalid ElGamal ciphertext: expected two parts")
        values = []
        for part in parts:
            part = part.strip()
            if not part.isascii() or not part.isdigit():
                raise MalformedCiphertextError("Invalid ElGamal ciphertext: parts must be decimal integers")
            values.append(int(part))
        return values[0], values[1]

    def _encrypt_integer(self, plaintext: int, randomness: RandomnessPolicy) -> str:
        if plaintext.bit_length() >= self.p.bit_length() // 2:
            raise ValueOutOfRangeError(f"Plaintext too big for key bit length: {self.p.bit_length()}")

        if randomness is RandomnessPolicy.FIXED:
            c1 = self._fixed_c1
            shared_secret = self._fixed_shared_secret
        else:
            r = secrets.randbits(self.key_bits)
            c1 = pow(self.g, r, self.p)
            shared_secret = pow(self.h, r, self.p)

        c2 = (plaintext * shared_secret) % self.p
        return self.serialize(c1, c2)

    def _decrypt_text(self, ciphertext: str) -> int:
        c1, c2 = self.deserialize(ciphertext)

        try:
            inverse = mod_inverse(pow(c1, self.sk, self.p), self.p)
        except ValueError:
            raise MalformedCiphertextError("Invalid ElGamal ciphertext: c1 is not invertible mod p") from None

        plaintext = (c2 * inverse) % self.p

        if plaintext >= self.decryption_threshold:
            plaintext -= self.p

        return plaintext

    def _evaluate_text(self, ciphertext_a: str, ciphertext_b: str) -> str:
        c1_a, c2_a = self.deserialize(ciphertext_a)
        c1_b, c2_b = self.deserialize(ciphertext_b)

        he_logger.debug("Performed ElGamal homomorphic multiplication")
        return self.serialize((c1_a * c1_b) % self.p, (c2_a * c2_b) % self.p)

    def evaluate_scalar(self, ciphertext, exponent) -> str:
        """
        Raise both ciphertext components to a public exponent.

        Returns an encryption of m ** k.
        """
        c1, c2 = self.deserialize(to_text(ciphertext))
        k = to_integer(exponent)
        if k < 0:
            try:
                c1, c2 = mod_inverse(c1, self.p), mod_inverse(c2, self.p)
            except ValueError:
                raise MalformedCiphertextError("ElGamal ciphertext is not invertible mod p") from None
            k = -k
        return self.serialize(pow(c1, k, self.p), pow(c2, k, self.p))


def main():
    """Encrypt two numbers with Paillier, add them encrypted, decrypt the sum."""
    from scheme_selector import get_scheme

    phe_config.setup_logging(log_dir=None)

    with tempfile.TemporaryDirectory() as key_dir:
        scheme = get_scheme(HomomorphicProperty.AHE, path=key_dir + "/")
        c1 = scheme.encrypt("100")
        c2 = scheme.encrypt("23")
        total = scheme.decrypt(scheme.evaluate(c1, c2))
        he_logger.info(f"100 + 23 computed under encryption: {total}")
        print(total)


if __name__ == "__main__":
    main()
