"""
Password hashing.

Argon2id (winner of the Password Hashing Competition) via argon2-cffi,
with the library's defaults (memory_cost=65536, time_cost=3, parallelism=4).
"""

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError


_hasher = PasswordHasher()

# Verified against when the email is unknown, so a miss costs as much as a hit
_DUMMY_HASH = _hasher.hash("civicdesk-timing-equalizer")


def hash_password(password: str) -> str:
    """
    Hash a password using Argon2id.

    Returns:
        Argon2 hash string (includes salt and parameters)
    """
    return _hasher.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against a stored Argon2 hash."""
    try:
        return _hasher.verify(password_hash, password)
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


def burn_verification(password: str) -> None:
    """Spend one verification's worth of time on a throwaway hash."""
    verify_password(password, _DUMMY_HASH)


def needs_rehash(password_hash: str) -> bool:
    return _hasher.check_needs_rehash(password_hash)
