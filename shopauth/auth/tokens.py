"""Opaque tokens for the password reset flow."""
from __future__ import annotations

import secrets

from .errors import EntropyUnavailable

RESET_TOKEN_BYTES = 32


def generate_reset_token() -> str:
    """Return ``RESET_TOKEN_BYTES`` of OS randomness as lowercase hex."""

    try:
        return secrets.token_hex(RESET_TOKEN_BYTES)
    except (OSError, NotImplementedError) as exc:
        raise EntropyUnavailable("secure random source unavailable") from exc


def generate_session_id() -> str:
    try:
        return secrets.token_urlsafe(32)
    except (OSError, NotImplementedError) as exc:
        raise EntropyUnavailable("secure random source unavailable") from exc


__all__ = ["RESET_TOKEN_BYTES", "generate_reset_token", "generate_session_id"]
