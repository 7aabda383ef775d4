"""
RFC 4648 Base32 codec for OTP secrets.

Secrets are shown to the user and typed into authenticator apps, so the
encoder emits no '=' padding and the decoder is lenient: it ignores case,
whitespace and any character outside the alphabet.
"""

import logging

from .errors import InvalidSecret

logger = logging.getLogger(__name__)

ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
_LOOKUP = {char: index for index, char in enumerate(ALPHABET)}


def encode(data: bytes) -> str:
    """Encode bytes as unpadded Base32, most significant bit first."""
    result = []
    buffer = 0
    bits = 0

    for byte in bytes(data):
        buffer = ((buffer << 8) | byte) & 0xFFF
        bits += 8
        while bits >= 5:
            result.append(ALPHABET[(buffer >> (bits - 5)) & 0x1F])
            bits -= 5

    if bits > 0:
        # Zero-fill the low bits of the final group
        result.append(ALPHABET[(buffer << (5 - bits)) & 0x1F])

    return "".join(result)


def decode(text: str, strict: bool = False) -> bytes:
    """
    Decode Base32 text to bytes.

    Args:
        text: Base32 text, any case, whitespace allowed
        strict: Raise instead of skipping characters outside the alphabet

    Returns:
        Decoded bytes. Trailing bits that do not fill a whole byte are dropped.

    Raises:
        InvalidSecret: If strict is set and an invalid character is found
    """
    normalized = "".join(text.split()).upper()
    result = bytearray()
    buffer = 0
    bits = 0
    skipped = 0

    for position, char in enumerate(normalized):
        value = _LOOKUP.get(char)
        if value is None:
            if strict and char != "=":
                raise InvalidSecret(f"Invalid Base32 character at position {position}")
            skipped += 1
            continue
        buffer = ((buffer << 5) | value) & 0x1FFF
        bits += 5
        if bits >= 8:
            result.append((buffer >> (bits - 8)) & 0xFF)
            bits -= 8

    if skipped:
        logger.debug(f"Skipped {skipped} non-Base32 character(s) while decoding")

    return bytes(result)


def format_secret(secret_b32: str, group: int = 4) -> str:
    """Split a Base32 secret into space separated groups for manual entry."""
    compact = "".join(secret_b32.split())
    return " ".join(compact[i:i + group] for i in range(0, len(compact), group))
