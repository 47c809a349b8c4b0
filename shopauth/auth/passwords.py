"""Password hashing helpers."""
from __future__ import annotations

from typing import Optional, Tuple

from passlib.context import CryptContext
from passlib.exc import PasswordValueError

from ..config import settings
from .errors import HashingError


# bcrypt ignores everything past this many bytes
PASSWORD_MAX_BYTES = 72

_context_cache: Optional[Tuple[int, CryptContext]] = None


def _context() -> CryptContext:
    """Return a bcrypt context for the configured work factor."""

    global _context_cache
    rounds = settings.BCRYPT_ROUNDS
    if _context_cache is None or _context_cache[0] != rounds:
        context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=rounds,
            bcrypt__min_rounds=rounds,
        )
        _context_cache = (rounds, context)
    return _context_cache[1]


def hash_password(password: str) -> str:
    """Hash ``password`` using bcrypt with a fresh salt."""

    if not isinstance(password, str):
        raise TypeError("password must be a string")
    try:
        return _context().hash(password)
    except PasswordValueError:
        # the caller passed a password bcrypt cannot take, such as one with NUL
        raise
    except (ValueError, RuntimeError, OSError) as exc:
        raise HashingError("password hashing failed") from exc


def verify_password(password: str, hashed_password: str) -> bool:
    """Return ``True`` if ``password`` matches ``hashed_password``."""

    if not password or not hashed_password:
        return False
    try:
        return _context().verify(password, hashed_password)
    except (ValueError, TypeError):
        return False


def needs_rehash(hashed_password: str) -> bool:
    """Return ``True`` if the hash should be upgraded."""

    if not hashed_password:
        return True
    try:
        return _context().needs_update(hashed_password)
    except ValueError:
        return True


__all__ = ["PASSWORD_MAX_BYTES", "hash_password", "needs_rehash", "verify_password"]
