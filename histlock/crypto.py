"""
Password hashing for the histlock password gate.

LEGAL NOTICE:
Hashes produced here are stored unencrypted next to the MFA secret. They slow
down guessing but do not protect against someone who can read the local store.
"""

import os
import logging
from typing import Callable, Optional

from argon2.low_level import Type, hash_secret_raw
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import constant_time, hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from . import config
from .errors import RandomnessUnavailable

logger = logging.getLogger(__name__)

RandomSource = Callable[[int], bytes]


def secure_random(length: int, random_source: Optional[RandomSource] = None) -> bytes:
    """
    Read bytes from a cryptographically secure random source.

    Raises:
        RandomnessUnavailable: If the source fails or returns too few bytes
    """
    source = random_source or os.urandom
    try:
        data = source(length)
    except (OSError, NotImplementedError) as e:
        logger.error(f"Secure random source failed: {e}")
        raise RandomnessUnavailable(f"Could not obtain {length} random bytes") from e

    if data is None or len(data) != length:
        raise RandomnessUnavailable(f"Random source returned {0 if data is None else len(data)} of {length} bytes")
    return bytes(data)


class CryptoManager:
    """Derives and verifies password hashes."""

    SALT_SIZE = config.SALT_SIZE
    KEY_SIZE = config.KEY_SIZE

    def __init__(self, kdf: str = config.DEFAULT_KDF,
                 iterations: int = config.PBKDF2_ITERATIONS,
                 random_source: Optional[RandomSource] = None):
        """
        Initialize the crypto manager.

        Args:
            kdf: Key derivation function, config.KDF_PBKDF2 or config.KDF_ARGON2ID
            iterations: PBKDF2 iteration count
            random_source: Callable returning n random bytes, os.urandom by default
        """
        if kdf not in (config.KDF_PBKDF2, config.KDF_ARGON2ID):
            raise ValueError(f"Unknown key derivation function: {kdf}")
        self.kdf = kdf
        self.iterations = iterations
        self.random_source = random_source or os.urandom
        self.backend = default_backend()

    def random_bytes(self, length: int) -> bytes:
        return secure_random(length, self.random_source)

    def generate_salt(self) -> bytes:
        """Generate a cryptographically secure random salt."""
        return self.random_bytes(self.SALT_SIZE)

    def hash_password(self, password: str, salt: bytes, kdf: Optional[str] = None,
                      iterations: Optional[int] = None) -> bytes:
        """
        Derive a password hash.

        Args:
            password: The password in clear text
            salt: Random salt stored next to the hash
            kdf: Override the manager's KDF, used to verify records hashed with another one
            iterations: Override the PBKDF2 iteration count stored with an older record

        Returns:
            32-byte hash
        """
        kdf = kdf or self.kdf
        secret = password.encode('utf-8')

        if kdf == config.KDF_ARGON2ID:
            return hash_secret_raw(
                secret=secret,
                salt=salt,
                time_cost=config.ARGON2_TIME_COST,
                memory_cost=config.ARGON2_MEMORY_COST,
                parallelism=config.ARGON2_PARALLELISM,
                hash_len=self.KEY_SIZE,
                type=Type.ID
            )
        if kdf != config.KDF_PBKDF2:
            raise ValueError(f"Unknown key derivation function: {kdf}")

        pbkdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=self.KEY_SIZE,
            salt=salt,
            iterations=iterations or self.iterations,
            backend=self.backend
        )
        return pbkdf.derive(secret)

    def verify_password(self, password: str, salt: bytes, stored_hash: bytes,
                        kdf: Optional[str] = None, iterations: Optional[int] = None) -> bool:
        """Recompute the hash of a candidate password and compare it in constant time."""
        candidate = self.hash_password(password, salt, kdf, iterations)
        return self.secure_compare(candidate, stored_hash)

    def secure_compare(self, a: bytes, b: bytes) -> bool:
        """Constant-time comparison to prevent timing attacks."""
        return constant_time.bytes_eq(bytes(a), bytes(b))


_default_manager = CryptoManager()


def generate_salt() -> bytes:
    return _default_manager.generate_salt()


def hash_password(password: str, salt: bytes) -> bytes:
    return _default_manager.hash_password(password, salt)


def verify_password(password: str, salt: bytes, stored_hash: bytes) -> bool:
    return _default_manager.verify_password(password, salt, stored_hash)
