"""
HOTP (RFC 4226) and TOTP (RFC 6238) one-time passwords.

Key points:
- HMAC-SHA1 over the 8-byte big-endian counter
- Dynamic truncation to a 31-bit integer, reduced to 6 digits by default
- 30-second time step, one step of clock drift accepted on each side
- Secrets are raw bytes here; Base32 is only used at the edges (URI, storage)

Verification is stateless: a code stays valid for the whole window and can be
accepted more than once. Callers that need one-time use must track the
counter returned by match_totp().
"""

import struct
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

from cryptography.hazmat.primitives import constant_time, hashes, hmac

from . import config
from .crypto import RandomSource, secure_random
from .errors import InvalidSecret


@dataclass(frozen=True)
class OtpSettings:
    """Algorithm parameters shared by code generation and verification."""
    digits: int = config.OTP_DIGITS
    step: int = config.OTP_TIME_STEP
    window: int = config.OTP_VERIFY_WINDOW

    def __post_init__(self):
        if not 1 <= self.digits <= 9:
            raise ValueError(f"digits must be between 1 and 9, got {self.digits}")
        if self.step < 1:
            raise ValueError(f"step must be a positive number of seconds, got {self.step}")
        if self.window < 0:
            raise ValueError(f"window must not be negative, got {self.window}")


def _dynamic_truncate(digest: bytes) -> int:
    offset = digest[-1] & 0x0F
    return (
        ((digest[offset] & 0x7F) << 24)
        | (digest[offset + 1] << 16)
        | (digest[offset + 2] << 8)
        | digest[offset + 3]
    )


def hotp(secret: bytes, counter: int, digits: int = config.OTP_DIGITS) -> str:
    """
    Compute an HOTP code.

    Args:
        secret: Raw shared secret
        counter: Moving factor, 0 <= counter < 2**64
        digits: Length of the code

    Returns:
        Zero-padded decimal code

    Raises:
        InvalidSecret: If the secret is empty
    """
    if not secret:
        raise InvalidSecret("OTP secret must not be empty")
    if not 0 <= counter < 2 ** 64:
        raise ValueError(f"HOTP counter out of range: {counter}")

    mac = hmac.HMAC(bytes(secret), hashes.SHA1())
    mac.update(struct.pack(">Q", counter))
    code = _dynamic_truncate(mac.finalize()) % (10 ** digits)
    return str(code).zfill(digits)


def totp(secret: bytes, now: float, step: int = config.OTP_TIME_STEP,
         digits: int = config.OTP_DIGITS) -> str:
    """Compute the TOTP code for the time step containing `now` (seconds since epoch)."""
    return hotp(secret, int(now // step), digits)


def seconds_remaining(now: float, step: int = config.OTP_TIME_STEP) -> int:
    """Seconds until the code for `now` rolls over."""
    return int(step - (int(now) % step))


def match_totp(secret: bytes, candidate: str, now: float,
               step: int = config.OTP_TIME_STEP,
               digits: int = config.OTP_DIGITS,
               window: int = config.OTP_VERIFY_WINDOW) -> Optional[int]:
    """
    Find the time-step counter a candidate code belongs to.

    Every counter in [current - window, current + window] is computed and
    compared, so the time taken does not depend on which one matched.

    Returns:
        The matching counter, or None
    """
    normalized = "".join(candidate.split()).encode('ascii', 'replace')
    current = int(now // step)
    matched = None

    for counter in range(current - window, current + window + 1):
        if counter < 0:
            continue
        expected = hotp(secret, counter, digits).encode('ascii')
        if constant_time.bytes_eq(expected, normalized) and matched is None:
            matched = counter

    return matched


def verify_totp(secret: bytes, candidate: str, now: float,
                step: int = config.OTP_TIME_STEP,
                digits: int = config.OTP_DIGITS,
                window: int = config.OTP_VERIFY_WINDOW) -> bool:
    """Check a candidate code against the current time step and its neighbours."""
    return match_totp(secret, candidate, now, step, digits, window) is not None


def generate_secret(byte_length: int = config.OTP_SECRET_SIZE,
                    random_source: Optional[RandomSource] = None) -> bytes:
    """Generate a new random shared secret (20 bytes = 160 bits by default)."""
    return secure_random(byte_length, random_source)


def build_otpauth_uri(secret_base32: str, account_name: str,
                      issuer: str = config.DEFAULT_ISSUER,
                      digits: int = config.OTP_DIGITS,
                      period: int = config.OTP_TIME_STEP) -> str:
    """
    Build the otpauth:// URI that authenticator apps import from a QR code.

    Format: otpauth://totp/{issuer}:{account}?secret=...&issuer=...&algorithm=SHA1&digits=6&period=30

    digits and period must match the settings codes are verified with.
    """
    encoded_issuer = quote(issuer, safe="")
    encoded_account = quote(account_name, safe="")
    return (
        f"otpauth://totp/{encoded_issuer}:{encoded_account}"
        f"?secret={secret_base32}&issuer={encoded_issuer}"
        f"&algorithm={config.OTP_ALGORITHM}&digits={digits}&period={period}"
    )

