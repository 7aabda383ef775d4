"""
Exceptions raised by histlock.
"""


class HistlockError(Exception):
    """Base class for all histlock errors."""


class AuthenticationError(HistlockError):
    """A user-supplied credential was rejected. Recoverable, the user may retry."""


class InvalidCredentials(AuthenticationError):
    """The password does not match the stored hash."""


class InvalidMfaCode(AuthenticationError):
    """The one-time code is wrong, expired or missing."""


class WeakPassword(HistlockError, ValueError):
    """The new password is too short or does not match its confirmation."""


class InvalidSecret(HistlockError, ValueError):
    """The MFA secret is empty or not valid Base32."""


class RandomnessUnavailable(HistlockError):
    """The secure random source failed to produce bytes."""


class StorageFailure(HistlockError):
    """The key-value store failed a read or write."""


class InvalidStateError(HistlockError, RuntimeError):
    """The operation is not allowed in the controller's current state."""
