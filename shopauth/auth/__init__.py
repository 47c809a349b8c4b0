"""Authentication helpers and models."""

from .controller import AuthController, Failure, FailureKind, FieldError, Success
from .errors import (
    AuthInfrastructureError,
    DuplicateEmail,
    EmailDeliveryError,
    EntropyUnavailable,
    HashingError,
    StoreUnavailable,
)
from .passwords import hash_password, needs_rehash, verify_password
from .service import init_auth_storage
from .sessions import SESSION_COOKIE_NAME, SessionContext, SessionManager
from .store import UserStore, normalize_email
from .tokens import generate_reset_token

__all__ = [
    "SESSION_COOKIE_NAME",
    "AuthController",
    "AuthInfrastructureError",
    "DuplicateEmail",
    "EmailDeliveryError",
    "EntropyUnavailable",
    "Failure",
    "FailureKind",
    "FieldError",
    "HashingError",
    "SessionContext",
    "SessionManager",
    "StoreUnavailable",
    "Success",
    "UserStore",
    "generate_reset_token",
    "hash_password",
    "init_auth_storage",
    "needs_rehash",
    "normalize_email",
    "verify_password",
]
