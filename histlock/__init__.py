"""
histlock - password and TOTP lock for the HistMan settings screen
Copyright (c) 2025

LEGAL NOTICE AND THREAT MODEL:
The lock keeps casual users out of the settings UI on a shared device. The
password hash and MFA secret are stored unencrypted in the local store, so the
lock does not protect against anyone who can read that store.
"""

from .errors import (
    HistlockError,
    InvalidCredentials,
    InvalidMfaCode,
    InvalidSecret,
    InvalidStateError,
    RandomnessUnavailable,
    StorageFailure,
    WeakPassword,
)
from .otp import OtpSettings
from .session import AuthSessionController, AuthState
from .storage import JsonFileStore, MemoryKeyValueStore, SecurityRecord

__all__ = [
    "AuthSessionController",
    "AuthState",
    "HistlockError",
    "InvalidCredentials",
    "InvalidMfaCode",
    "InvalidSecret",
    "InvalidStateError",
    "JsonFileStore",
    "MemoryKeyValueStore",
    "OtpSettings",
    "RandomnessUnavailable",
    "SecurityRecord",
    "StorageFailure",
    "WeakPassword",
]
