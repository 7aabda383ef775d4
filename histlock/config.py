"""
Configuration constants for histlock.
"""

# Application Metadata
APP_VERSION = "1.0"  # Use: Current version of the package. Type: str. Range: Semantic versioning string.
APP_NAME = "HistMan"  # Use: Name of the application protected by the lock. Type: str. Range: Any valid string.
DEFAULT_ISSUER = APP_NAME  # Use: Issuer label written into otpauth:// URIs and shown by authenticator apps. Type: str. Range: Any non-empty string.
DEFAULT_ACCOUNT_NAME = "HistMan User"  # Use: Account label written into otpauth:// URIs. Type: str. Range: Any non-empty string.

# OTP Settings
OTP_DIGITS = 6  # Use: Length of generated one-time codes. Type: int. Range: 1 to 9; authenticator apps expect 6.
OTP_TIME_STEP = 30  # Use: Seconds per TOTP time window. Type: int. Range: Positive integer; authenticator apps expect 30.
OTP_VERIFY_WINDOW = 1  # Use: Number of time steps accepted on each side of the current one to tolerate clock drift. Type: int. Range: 0 or a small positive integer.
OTP_SECRET_SIZE = 20  # Use: Size of a freshly generated MFA shared secret in bytes. Type: int. Range: 20 bytes (160 bits) matches RFC 4226 recommendations.
OTP_ALGORITHM = "SHA1"  # Use: HMAC algorithm announced in otpauth:// URIs. Type: str. Range: "SHA1" (the only algorithm implemented).

# Security Settings
SALT_SIZE = 16  # Use: Size of the random password salt in bytes. Type: int. Range: At least 16 bytes (128 bits).
KEY_SIZE = 32  # Use: Length of the derived password hash in bytes. Type: int. Range: 32 bytes (256 bits).
PBKDF2_ITERATIONS = 100000  # Use: Number of iterations for PBKDF2-HMAC-SHA256 password hashing. Type: int. Range: At least 100,000; changing it invalidates stored hashes.
ARGON2_TIME_COST = 2  # Use: Argon2id time cost (number of passes). Type: int. Range: Positive integer, typically 1 to 4.
ARGON2_MEMORY_COST = 65536  # Use: Argon2id memory cost in KiB (64 MB). Type: int. Range: Positive integer, typically 19456 and up.
ARGON2_PARALLELISM = 4  # Use: Argon2id parallelism parameter. Type: int. Range: Typically 1 to 8.
KDF_PBKDF2 = "pbkdf2"  # Use: Identifier of the PBKDF2-HMAC-SHA256 key derivation function. Type: str. Range: Fixed value.
KDF_ARGON2ID = "argon2id"  # Use: Identifier of the Argon2id key derivation function. Type: str. Range: Fixed value.
DEFAULT_KDF = KDF_PBKDF2  # Use: Key derivation function used for new password hashes. Type: str. Range: KDF_PBKDF2 or KDF_ARGON2ID.
PASSWORD_MIN_LENGTH = 4  # Use: Minimum required length for the lock password. Type: int. Range: Positive integer.

# Storage Settings
SECURITY_KEY = "histman_security"  # Use: Key under which the security record is stored in the key-value store. Type: str. Range: Any non-empty string.
CONFIG_DIR_NAME = ".histman"  # Use: Name of the hidden directory within the user's home directory holding the store file. Type: str. Range: Any valid directory name.
DEFAULT_STORE_FILE = "storage.json"  # Use: Default filename of the JSON key-value store. Type: str. Range: Any valid filename.
