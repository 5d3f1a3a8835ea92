"""
Configuration for the partial homomorphic encryption toolkit.

Holds the constants used throughout the toolkit:
- the homomorphic properties and the scheme used for each of them
- the key length of each scheme and the plaintext space it supports
- where keys are stored by default

Every tunable can be overridden through an environment variable, read once
at import time.
"""

import logging
import os
import sys
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

log = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s [%(levelname)s] [%(filename)s:%(lineno)d] %(message)s'


class HomomorphicProperty(Enum):
    """Algebraic capability offered by a scheme."""
    NONE = "NONE"
    RND = "RND"
    DET = "DET"
    AHE = "AHE"
    MHE = "MHE"
    DMHE = "DMHE"
    OPE = "OPE"
    OPESTR = "OPESTR"
    XOR = "XOR"


class DataType(Enum):
    """Representation a scheme accepts as plaintext or produces as ciphertext."""
    TEXT = "text"
    INTEGER = "integer"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        log.warning(f"Ignoring non-integer value for {name}: {raw!r}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        log.warning(f"Ignoring non-numeric value for {name}: {raw!r}")
        return default


# Match partial homomorphic properties to specific encryption schemes.
PROPERTY_TO_SCHEME: Dict[HomomorphicProperty, str] = {
    HomomorphicProperty.RND: "AESRND",
    HomomorphicProperty.DET: "AES",
    HomomorphicProperty.AHE: "Paillier",
    HomomorphicProperty.MHE: "ElGamal",
    HomomorphicProperty.DMHE: "RSA",
    HomomorphicProperty.OPE: "OPE",
    HomomorphicProperty.OPESTR: "OPESTR",
    HomomorphicProperty.XOR: "GoldwasserMicali",
}

# Key length in bits of each scheme.
KEY_BITLENGTH: Dict[str, int] = {
    "AES": _env_int("PHE_AES_KEY_BITS", 128),
    "Paillier": _env_int("PHE_PAILLIER_KEY_BITS", 1024),
    "ElGamal": _env_int("PHE_ELGAMAL_KEY_BITS", 1024),
}

# Largest bit length of a plaintext each arithmetic scheme can carry. The upper
# half of the modulus is reserved for negative values.
PLAINTEXT_SPACE: Dict[str, int] = {
    "Paillier": KEY_BITLENGTH["Paillier"] // 2,
    "ElGamal": KEY_BITLENGTH["ElGamal"] // 2,
}

# Full key names are KEYS_PATH + scheme name + key id + extension.
KEYS_PATH = os.environ.get("PHE_KEYS_PATH", "/tmp/")
DEFAULT_KEY_ID = _env_int("PHE_DEFAULT_KEY_ID", 1)

PUBLIC_EXTENSION = ".pk"
PRIVATE_EXTENSION = ".sk"

# Key provisioning lock behaviour (seconds).
KEY_LOCK_TIMEOUT = _env_float("PHE_KEY_LOCK_TIMEOUT", 30.0)
KEY_LOCK_STALE_SECONDS = _env_float("PHE_KEY_LOCK_STALE_SECONDS", 300.0)

KEYRING_SERVICE = os.environ.get("PHE_KEYRING_SERVICE", "phe_toolkit")

CHARSET_NAME = "utf-8"


def parse_property(value) -> HomomorphicProperty:
    """Accept a HomomorphicProperty or its name."""
    if isinstance(value, HomomorphicProperty):
        return value
    try:
        return HomomorphicProperty[str(value).strip().upper()]
    except KeyError:
        raise ValueError(f"Unknown homomorphic property: {value}") from None


def plaintext_space_for(prop: HomomorphicProperty) -> Optional[int]:
    scheme_name = PROPERTY_TO_SCHEME.get(prop)
    return PLAINTEXT_SPACE.get(scheme_name)


def setup_logging(log_dir: Optional[str] = "logs", console_level: int = logging.INFO) -> logging.Logger:
    """
    Attach the toolkit's handlers to the root logger.

    Library modules only create loggers; entry points call this once.

    Args:
        log_dir: Directory for the DEBUG file log, or None for console only.
        console_level: Level of the stdout handler.

    Returns:
        The root logger.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_dir:
        try:
            Path(log_dir).mkdir(parents=True, exist_ok=True)
            log_file_path = Path(log_dir) / "homomorphic_encryption.log"
        except OSError as e:
            log_file_path = Path("homomorphic_encryption.log")
            log.warning(f"Could not create log directory, logging to {log_file_path}. Error: {e}")
        file_handler = logging.FileHandler(log_file_path, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    return root
