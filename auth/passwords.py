"""
auth/passwords.py -- Password hashing and verification (bcrypt).

bcrypt is used directly rather than through passlib: passlib's wrap-bug
detection hashes a password longer than 72 bytes, which bcrypt 4.x rejects.
The API layer caps passwords at 72 characters for the same reason.

The cost factor is fixed per process (BCRYPT_ROUNDS, default 12). Tests lower
it to keep the suite fast.

DUMMY_HASH enables timing equalization in AuthCore.login(): bcrypt always
runs, whether or not the email exists, so response time does not reveal
which accounts are registered.
"""

from __future__ import annotations

from functools import lru_cache

import bcrypt

from core.config import get_settings


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    salt = bcrypt.gensalt(rounds=get_settings().bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash or an over-long password: never a match.
        return False


@lru_cache(maxsize=1)
def dummy_hash() -> str:
    """A throwaway hash used to equalize login timing for unknown accounts."""
    return hash_password("sessiongate_timing_dummy")
