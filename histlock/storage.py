"""
Persistence of the security record.

LEGAL NOTICE:
The password hash, salt and MFA secret are stored without additional
encryption. Anyone who can read the store can copy the MFA secret.
"""

import os
import json
import copy
import base64
import binascii
import logging
import shutil
import threading
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Protocol

from . import base32, config
from .errors import StorageFailure
from .utils import default_store_path, restrict_to_owner

logger = logging.getLogger(__name__)


def _b64encode(data: Optional[bytes]) -> Optional[str]:
    return base64.b64encode(data).decode('ascii') if data is not None else None


def _b64decode(text: Optional[str]) -> Optional[bytes]:
    return base64.b64decode(text, validate=True) if text is not None else None


@dataclass
class SecurityRecord:
    """The single persisted security state of an installation."""
    password_hash: Optional[bytes] = None
    password_salt: Optional[bytes] = None
    mfa_secret: Optional[bytes] = None
    mfa_enabled: bool = False
    kdf: str = config.DEFAULT_KDF
    iterations: int = config.PBKDF2_ITERATIONS

    @property
    def has_password(self) -> bool:
        return self.password_hash is not None

    def check_invariants(self) -> None:
        """Raise ValueError if the record is in a state no operation can produce."""
        if (self.password_hash is None) != (self.password_salt is None):
            raise ValueError("Password hash and salt must be set or cleared together")
        if self.mfa_enabled and (self.mfa_secret is None or self.password_hash is None):
            raise ValueError("MFA requires both a password and a secret")
        if self.mfa_secret is not None and not self.mfa_secret:
            raise ValueError("MFA secret must not be empty")
        if self.kdf not in (config.KDF_PBKDF2, config.KDF_ARGON2ID):
            raise ValueError(f"Unknown key derivation function: {self.kdf}")
        if not isinstance(self.iterations, int) or isinstance(self.iterations, bool) or self.iterations < 1:
            raise ValueError(f"Invalid PBKDF2 iteration count: {self.iterations!r}")

    def copy(self) -> 'SecurityRecord':
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the stored representation (base64 hash/salt, Base32 secret)."""
        return {
            'passwordHash': _b64encode(self.password_hash),
            'passwordSalt': _b64encode(self.password_salt),
            'mfaSecret': base32.encode(self.mfa_secret) if self.mfa_secret is not None else None,
            'mfaEnabled': self.mfa_enabled,
            'kdf': self.kdf,
            'iterations': self.iterations,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SecurityRecord':
        """
        Create from the stored representation.

        Raises:
            ValueError: If a field is malformed or the invariants do not hold
        """
        try:
            secret_b32 = data.get('mfaSecret')
            record = cls(
                password_hash=_b64decode(data.get('passwordHash')),
                password_salt=_b64decode(data.get('passwordSalt')),
                mfa_secret=base32.decode(secret_b32, strict=True) if secret_b32 else None,
                mfa_enabled=bool(data.get('mfaEnabled', False)),
                kdf=data.get('kdf', config.KDF_PBKDF2),
                iterations=data.get('iterations', config.PBKDF2_ITERATIONS),
            )
        except (binascii.Error, TypeError, AttributeError) as e:
            raise ValueError(f"Malformed security record: {e}") from e
        record.check_invariants()
        return record


class KeyValueStore(Protocol):
    """Opaque string-keyed store, e.g. browser extension storage or a JSON file."""

    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any) -> None:
        ...


class MemoryKeyValueStore:
    """In-memory store. Values are deep-copied so callers cannot mutate stored state."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return copy.deepcopy(self._data.get(key))

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)


class JsonFileStore:
    """Key-value store kept as a single JSON object in a file."""

    def __init__(self, filepath: Optional[str] = None):
        """
        Args:
            filepath: Path to the JSON file, created on first write.
                Defaults to ~/.histman/storage.json
        """
        self.filepath = filepath or default_store_path(config.CONFIG_DIR_NAME, config.DEFAULT_STORE_FILE)
        self._lock = threading.Lock()

    def _read_all(self) -> Dict[str, Any]:
        if not os.path.exists(self.filepath):
            return {}
        with open(self.filepath, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Store file {self.filepath} does not contain a JSON object")
        return data

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._read_all().get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = value
            tmp_path = self.filepath + '.tmp'
            try:
                with open(tmp_path, 'w', encoding='utf-8') as f:
                    json.dump(data, f, indent=2)
                # Atomic replace so readers never see a partial record
                shutil.move(tmp_path, self.filepath)
            except Exception:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise

            if not restrict_to_owner(self.filepath):
                logger.warning(f"Failed to set secure file permissions for store: {self.filepath}")


class SecurityRepository:
    """Loads and saves the SecurityRecord under one key of a KeyValueStore."""

    def __init__(self, store: KeyValueStore, key: str = config.SECURITY_KEY):
        self.store = store
        self.key = key

    def load(self) -> SecurityRecord:
        """
        Read the record, returning the default (open) record if none is stored.

        Raises:
            StorageFailure: If the store fails or the stored value is corrupt
        """
        try:
            raw = self.store.get(self.key)
            if raw is None:
                return SecurityRecord()
            return SecurityRecord.from_dict(raw)
        except Exception as e:
            logger.error(f"Failed to load security record '{self.key}': {e}", exc_info=True)
            raise StorageFailure(f"Could not load security record: {e}") from e

    def save(self, record: SecurityRecord) -> None:
        """
        Write the whole record in a single put.

        Raises:
            StorageFailure: If the store rejects the write
        """
        record.check_invariants()
        try:
            self.store.set(self.key, record.to_dict())
        except Exception as e:
            logger.error(f"Failed to save security record '{self.key}': {e}", exc_info=True)
            raise StorageFailure(f"Could not save security record: {e}") from e
