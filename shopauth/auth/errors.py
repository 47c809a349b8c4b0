"""Exceptions raised by the authentication core.

Infrastructure failures derive from :class:`AuthInfrastructureError` and
propagate to the application's generic error handler.  User-correctable
problems never surface as exceptions from the controller; they are returned
as :class:`~shopauth.auth.controller.Failure` results instead.
"""
from __future__ import annotations


class AuthInfrastructureError(Exception):
    """Fatal-for-this-request failure of a collaborator."""


class StoreUnavailable(AuthInfrastructureError):
    """The persistence layer rejected a read or write."""


class HashingError(AuthInfrastructureError):
    """Password hashing failed inside the hashing backend."""


class EntropyUnavailable(AuthInfrastructureError):
    """The operating system RNG could not produce random bytes."""


class EmailDeliveryError(AuthInfrastructureError):
    """The outbound mail server refused or dropped a message."""


class DuplicateEmail(Exception):
    """A user with the same email already exists."""

    def __init__(self, email: str) -> None:
        super().__init__(f"email already registered: {email}")
        self.email = email


__all__ = [
    "AuthInfrastructureError",
    "DuplicateEmail",
    "EmailDeliveryError",
    "EntropyUnavailable",
    "HashingError",
    "StoreUnavailable",
]
