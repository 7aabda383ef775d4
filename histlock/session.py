"""
Authentication session controller.

Holds the SecurityRecord and the in-memory MFA enrollment, and decides every
lock, unlock and settings change. Persistence, randomness and the clock are
injected so the whole flow can be driven by tests.
"""

import time
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from . import base32, config
from .crypto import CryptoManager
from .errors import (
    InvalidCredentials,
    InvalidMfaCode,
    InvalidStateError,
    WeakPassword,
)
from .otp import OtpSettings, build_otpauth_uri, generate_secret, match_totp
from .storage import KeyValueStore, SecurityRecord, SecurityRepository

logger = logging.getLogger(__name__)


class AuthState(Enum):
    UNLOCKED = "UNLOCKED"
    LOCKED = "LOCKED"
    LOCKED_AWAITING_MFA = "LOCKED_AWAITING_MFA"
    ENROLLING_MFA = "ENROLLING_MFA"


@dataclass(frozen=True)
class PendingEnrollment:
    """A generated MFA secret that the user has not confirmed yet. Never persisted."""
    secret: bytes

    @property
    def secret_base32(self) -> str:
        return base32.encode(self.secret)


@dataclass(frozen=True)
class EnrollmentInfo:
    """What the settings screen shows while enrolling: manual key and QR payload."""
    secret_base32: str
    formatted_secret: str
    otpauth_uri: str


class AuthSessionController:
    """
    State machine gating the settings UI behind a password and optional TOTP.

    All operations are serialized by a single lock. A failed operation leaves
    both the state and the stored record as they were.
    """

    def __init__(self, store: KeyValueStore,
                 crypto: Optional[CryptoManager] = None,
                 clock: Optional[Callable[[], float]] = None,
                 settings: Optional[OtpSettings] = None,
                 account_name: str = config.DEFAULT_ACCOUNT_NAME,
                 issuer: str = config.DEFAULT_ISSUER,
                 reject_replayed_codes: bool = False):
        """
        Load the security record and pick the initial state.

        Args:
            store: Key-value store holding the security record
            crypto: Password hashing and random source
            clock: Returns seconds since the epoch, time.time by default
            settings: OTP digits, step and drift window
            account_name: Account label for the otpauth URI
            issuer: Issuer label for the otpauth URI
            reject_replayed_codes: Refuse login codes from a time step already used

        Raises:
            StorageFailure: If the record cannot be read
        """
        self.repository = SecurityRepository(store)
        self.crypto = crypto or CryptoManager()
        self.clock = clock or time.time
        self.settings = settings or OtpSettings()
        self.account_name = account_name
        self.issuer = issuer
        self.reject_replayed_codes = reject_replayed_codes

        self._lock = threading.RLock()
        self._record = self.repository.load()
        self._pending: Optional[PendingEnrollment] = None
        self._last_used_counter: Optional[int] = None
        self._state = AuthState.LOCKED if self._record.has_password else AuthState.UNLOCKED

    # Accessors

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def is_locked(self) -> bool:
        return self._state in (AuthState.LOCKED, AuthState.LOCKED_AWAITING_MFA)

    @property
    def has_password(self) -> bool:
        return self._record.has_password

    @property
    def mfa_enabled(self) -> bool:
        return self._record.mfa_enabled

    @property
    def record(self) -> SecurityRecord:
        with self._lock:
            return self._record.copy()

    @property
    def pending_enrollment(self) -> Optional[PendingEnrollment]:
        return self._pending

    def _require_state(self, *allowed: AuthState) -> None:
        if self._state not in allowed:
            names = ", ".join(s.value for s in allowed)
            raise InvalidStateError(f"Operation requires state {names}, current state is {self._state.value}")

    def _require_password(self) -> None:
        if not self._record.has_password:
            raise InvalidStateError("No password is configured")

    def _commit(self, record: SecurityRecord) -> None:
        """Persist first, then swap the in-memory record."""
        self.repository.save(record)
        self._record = record

    def _validate_new_password(self, password: str, confirm: str) -> None:
        if not password:
            raise WeakPassword("Please enter a password")
        if len(password) < config.PASSWORD_MIN_LENGTH:
            raise WeakPassword(f"Password must be at least {config.PASSWORD_MIN_LENGTH} characters")
        if password != confirm:
            raise WeakPassword("Passwords do not match")

    def _hash_new_password(self, record: SecurityRecord, password: str) -> SecurityRecord:
        salt = self.crypto.generate_salt()
        record.password_salt = salt
        record.password_hash = self.crypto.hash_password(password, salt)
        record.kdf = self.crypto.kdf
        record.iterations = self.crypto.iterations
        return record

    def _check_password(self, password: str) -> bool:
        return self.crypto.verify_password(
            password,
            self._record.password_salt,
            self._record.password_hash,
            self._record.kdf,
            self._record.iterations
        )

    # Locking

    def lock(self) -> None:
        """
        Lock the session. Any enrollment in progress is discarded.

        Raises:
            InvalidStateError: If no password is configured
        """
        with self._lock:
            self._require_password()
            self._pending = None
            self._state = AuthState.LOCKED
            logger.info("Session locked")

    def submit_password(self, password: str) -> AuthState:
        """
        First unlock factor.

        Returns:
            UNLOCKED, or LOCKED_AWAITING_MFA when a code is still required

        Raises:
            InvalidCredentials: If the password is wrong
        """
        with self._lock:
            self._require_state(AuthState.LOCKED)
            if not self._check_password(password):
                logger.warning("Unlock attempt with incorrect password")
                raise InvalidCredentials("Incorrect password")

            if self._record.mfa_enabled:
                self._state = AuthState.LOCKED_AWAITING_MFA
                logger.info("Password accepted, waiting for MFA code")
            else:
                self._state = AuthState.UNLOCKED
                logger.info("Session unlocked")
            return self._state

    def submit_mfa_code(self, code: str) -> AuthState:
        """
        Second unlock factor.

        Raises:
            InvalidMfaCode: If the code is wrong, expired or already used
        """
        with self._lock:
            self._require_state(AuthState.LOCKED_AWAITING_MFA)
            counter = match_totp(
                self._record.mfa_secret,
                code,
                self.clock(),
                self.settings.step,
                self.settings.digits,
                self.settings.window
            )
            if counter is None:
                logger.warning("Unlock attempt with invalid MFA code")
                raise InvalidMfaCode("Invalid MFA code")
            if self.reject_replayed_codes:
                if self._last_used_counter is not None and counter <= self._last_used_counter:
                    logger.warning("Unlock attempt with an already used MFA code")
                    raise InvalidMfaCode("MFA code already used")
                self._last_used_counter = counter

            self._state = AuthState.UNLOCKED
            logger.info("Session unlocked")
            return self._state

    def unlock(self, password: str, code: Optional[str] = None) -> AuthState:
        """
        Single-form unlock: password and, if MFA is enabled, the code.

        A correct password with a missing or wrong code leaves the session in
        LOCKED_AWAITING_MFA so submit_mfa_code() can be retried.
        """
        with self._lock:
            self._require_state(AuthState.LOCKED, AuthState.LOCKED_AWAITING_MFA)
            self._state = AuthState.LOCKED
            self.submit_password(password)
            if self._state is AuthState.LOCKED_AWAITING_MFA:
                if not code or not code.strip():
                    raise InvalidMfaCode("Please enter your MFA code")
                self.submit_mfa_code(code)
            return self._state

    # Password management

    def set_password(self, password: str, confirm: str) -> None:
        """
        Configure the first password.

        Raises:
            WeakPassword: If too short or not confirmed
            InvalidStateError: If locked or a password already exists
        """
        with self._lock:
            self._require_state(AuthState.UNLOCKED)
            if self._record.has_password:
                raise InvalidStateError("A password is already set, use change_password()")
            self._validate_new_password(password, confirm)

            self._commit(self._hash_new_password(self._record.copy(), password))
            logger.info("Password set")

    def change_password(self, old_password: str, new_password: str, confirm: str) -> None:
        """
        Replace the password. A new salt is generated; MFA settings are kept.

        Raises:
            WeakPassword: If the new password is too short or not confirmed
            InvalidCredentials: If the current password is wrong
        """
        with self._lock:
            self._require_state(AuthState.UNLOCKED)
            self._require_password()
            self._validate_new_password(new_password, confirm)
            if not self._check_password(old_password):
                logger.warning("Password change rejected: current password is incorrect")
                raise InvalidCredentials("Current password is incorrect")

            self._commit(self._hash_new_password(self._record.copy(), new_password))
            logger.info("Password changed")

    def remove_password(self) -> None:
        """Remove the password. MFA goes with it."""
        with self._lock:
            self._require_state(AuthState.UNLOCKED)
            self._commit(SecurityRecord(kdf=self.crypto.kdf, iterations=self.crypto.iterations))
            self._last_used_counter = None
            logger.info("Password and MFA removed")

    # MFA management

    def begin_mfa_enrollment(self) -> EnrollmentInfo:
        """
        Generate a new secret and hold it until the user confirms a code.

        Returns:
            The Base32 secret and the otpauth URI to render as a QR code

        Raises:
            InvalidStateError: If locked or no password is configured
            RandomnessUnavailable: If no secret could be generated
        """
        with self._lock:
            self._require_state(AuthState.UNLOCKED, AuthState.ENROLLING_MFA)
            self._require_password()
            secret = generate_secret(config.OTP_SECRET_SIZE, self.crypto.random_source)

            self._pending = PendingEnrollment(secret)
            self._state = AuthState.ENROLLING_MFA
            secret_b32 = self._pending.secret_base32
            return EnrollmentInfo(
                secret_base32=secret_b32,
                formatted_secret=base32.format_secret(secret_b32),
                otpauth_uri=build_otpauth_uri(
                    secret_b32,
                    self.account_name,
                    self.issuer,
                    digits=self.settings.digits,
                    period=self.settings.step
                ),
            )

    def confirm_mfa_enrollment(self, code: str) -> None:
        """
        Enable MFA once the user proves their authenticator produces valid codes.

        Raises:
            InvalidMfaCode: If the code does not match; the pending secret is kept
        """
        with self._lock:
            self._require_state(AuthState.ENROLLING_MFA)
            counter = match_totp(
                self._pending.secret,
                code,
                self.clock(),
                self.settings.step,
                self.settings.digits,
                self.settings.window
            )
            if counter is None:
                logger.warning("MFA enrollment code rejected")
                raise InvalidMfaCode("Invalid code. Please try again.")

            record = self._record.copy()
            record.mfa_secret = self._pending.secret
            record.mfa_enabled = True
            self._commit(record)

            self._pending = None
            if self.reject_replayed_codes:
                self._last_used_counter = counter
            self._state = AuthState.UNLOCKED
            logger.info("MFA enabled")

    def cancel_mfa_enrollment(self) -> None:
        """Abandon an enrollment. Does nothing when none is in progress."""
        with self._lock:
            if self._state is not AuthState.ENROLLING_MFA:
                return
            self._pending = None
            self._state = AuthState.UNLOCKED

    def disable_mfa(self) -> None:
        with self._lock:
            self._require_state(AuthState.UNLOCKED)
            record = self._record.copy()
            record.mfa_secret = None
            record.mfa_enabled = False
            self._commit(record)
            self._last_used_counter = None
            logger.info("MFA disabled")
