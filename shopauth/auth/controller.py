"""Signup, login, logout and password reset flows.

Every public method of :class:`AuthController` returns either a
:class:`Success` or a :class:`Failure`.  Input problems and bad credentials
are ordinary results; only infrastructure errors (see
:mod:`shopauth.auth.errors`) are raised.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from email_validator import EmailNotValidError, validate_email

from .. import database
from ..config import settings
from .errors import DuplicateEmail, EmailDeliveryError, StoreUnavailable
from .mailer import ResetMailer
from .passwords import PASSWORD_MAX_BYTES, hash_password, needs_rehash, verify_password
from .service import record_audit_event
from .sessions import SessionContext, SessionManager
from .store import UserStore, normalize_email
from .throttling import AttemptLimiter
from .tokens import generate_reset_token

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password."
DUPLICATE_EMAIL_MESSAGE = "E-Mail exists already, please pick a different one."
INVALID_EMAIL_MESSAGE = "Please enter a valid email."
PASSWORD_MISMATCH_MESSAGE = "Passwords have to match!"
MISSING_PASSWORD_MESSAGE = "Please enter your password."
RATE_LIMITED_MESSAGE = "Too many login attempts. Try again shortly."
RESET_REQUESTED_MESSAGE = "If an account exists for that email, a reset link has been sent."
TOKEN_INVALID_MESSAGE = "This password reset link is invalid or has expired."
PASSWORD_UPDATED_MESSAGE = "Your password has been updated. Please log in."
PASSWORD_NUL_MESSAGE = "Passwords cannot contain NUL characters."
PASSWORD_TOO_LONG_MESSAGE = f"Please use a password of at most {PASSWORD_MAX_BYTES} bytes."


class FailureKind(str, Enum):
    VALIDATION_FAILED = "validation_failed"
    INVALID_CREDENTIALS = "invalid_credentials"
    DUPLICATE_EMAIL = "duplicate_email"
    TOKEN_INVALID_OR_EXPIRED = "token_invalid_or_expired"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class FieldError:
    field: Optional[str]
    message: str


@dataclass
class Success:
    redirect_to: Optional[str] = None
    message: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    ok = True


@dataclass
class Failure:
    kind: FailureKind
    errors: List[FieldError]
    old_input: Dict[str, str] = field(default_factory=dict)
    retry_after: int = 0

    ok = False

    @property
    def message(self) -> str:
        return self.errors[0].message if self.errors else ""

    @property
    def fields(self) -> List[str]:
        return [error.field for error in self.errors if error.field]


AuthResult = Union[Success, Failure]
Scheduler = Callable[..., Any]


def _run_now(func: Callable[..., Any], *args: Any) -> None:
    func(*args)


_dummy_hash_cache: Optional[Tuple[int, str]] = None


def _dummy_hash() -> str:
    """Return a throwaway hash at the configured work factor, built once per cost."""

    global _dummy_hash_cache
    rounds = settings.BCRYPT_ROUNDS
    if _dummy_hash_cache is None or _dummy_hash_cache[0] != rounds:
        _dummy_hash_cache = (rounds, hash_password("not-a-real-password"))
    return _dummy_hash_cache[1]


def password_policy_error(password: Optional[str]) -> Optional[str]:
    minimum = settings.PASSWORD_MIN_LENGTH
    if not password or len(password) < minimum:
        return f"Please enter a password with at least {minimum} characters."
    if "\x00" in password:
        return PASSWORD_NUL_MESSAGE
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        return PASSWORD_TOO_LONG_MESSAGE
    return None


def email_format_error(email: str) -> Optional[str]:
    if not email:
        return INVALID_EMAIL_MESSAGE
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return INVALID_EMAIL_MESSAGE
    return None


class AuthController:
    """Orchestrate the user store, hasher and session manager."""

    def __init__(
        self,
        store: UserStore,
        sessions: SessionManager,
        mailer: ResetMailer,
        *,
        limiter: Optional[AttemptLimiter] = None,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.sessions = sessions
        self.mailer = mailer
        self.limiter = limiter
        self._now = now or (lambda: datetime.now(timezone.utc))

    def _audit(self, action: str, *, actor_id: Optional[int] = None, summary: str, **data: Any) -> None:
        record_audit_event(
            self.store.session,
            actor_id=actor_id,
            action=action,
            summary=summary,
            data=data,
        )

    def _burn_verify(self, password: str) -> None:
        # unknown emails pay the same bcrypt cost as wrong passwords
        verify_password(password, _dummy_hash())

    # Signup -----------------------------------------------------------------

    def signup(self, email: str, password: str, confirm_password: str) -> AuthResult:
        normalized = normalize_email(email)
        old_input = {"email": (email or "").strip()}

        errors: List[FieldError] = []
        email_error = email_format_error(normalized)
        if email_error:
            errors.append(FieldError("email", email_error))
        password_error = password_policy_error(password)
        if password_error:
            errors.append(FieldError("password", password_error))
        if password != confirm_password:
            errors.append(FieldError("confirm_password", PASSWORD_MISMATCH_MESSAGE))
        if errors:
            return Failure(FailureKind.VALIDATION_FAILED, errors, old_input)

        if self.store.find_by_email(normalized) is not None:
            return self._duplicate(old_input)

        hashed = hash_password(password)
        try:
            user = self.store.create(normalized, hashed)
        except DuplicateEmail:
            # a concurrent signup won the unique index
            return self._duplicate(old_input)

        self._audit("signup", actor_id=user.id, summary=f"Account created for {user.email}")
        return Success(redirect_to="/login")

    def _duplicate(self, old_input: Dict[str, str]) -> Failure:
        return Failure(
            FailureKind.DUPLICATE_EMAIL,
            [FieldError("email", DUPLICATE_EMAIL_MESSAGE)],
            old_input,
        )

    # Login / logout ---------------------------------------------------------

    def login(
        self,
        email: str,
        password: str,
        ctx: SessionContext,
        *,
        client: str = "unknown",
    ) -> AuthResult:
        normalized = normalize_email(email)
        old_input = {"email": (email or "").strip()}

        errors: List[FieldError] = []
        email_error = email_format_error(normalized)
        if email_error:
            errors.append(FieldError("email", email_error))
        if not password:
            errors.append(FieldError("password", MISSING_PASSWORD_MESSAGE))
        if errors:
            return Failure(FailureKind.VALIDATION_FAILED, errors, old_input)

        if self.limiter is not None:
            state = self.limiter.check(client)
            if state.blocked:
                self._audit(
                    "login_rate_limited",
                    summary=f"Rate limit hit for {normalized}",
                    ip=client,
                    retry_after=state.retry_after,
                )
                return self._rate_limited(old_input, state.retry_after)

        user = self.store.find_by_email(normalized)
        if user is None:
            self._burn_verify(password)
            matched = False
        else:
            matched = verify_password(password, user.hashed_password)

        if user is None or not matched:
            blocked, retry_after = False, 0
            if self.limiter is not None:
                state = self.limiter.record_failure(client)
                blocked, retry_after = state.blocked, state.retry_after
            self._audit(
                "login_failed",
                summary=f"Failed login for {normalized}",
                ip=client,
                rate_limited=blocked,
            )
            if blocked:
                return self._rate_limited(old_input, retry_after)
            return Failure(
                FailureKind.INVALID_CREDENTIALS,
                [FieldError(None, INVALID_CREDENTIALS_MESSAGE)],
                old_input,
            )

        if needs_rehash(user.hashed_password):
            user.hashed_password = hash_password(password)
            self.store.save(user)
            logger.info("Upgraded password hash for user %s", user.id)

        self.sessions.mark_logged_in(ctx, user)
        if self.limiter is not None:
            self.limiter.reset(client)
        self._audit("login_success", actor_id=user.id, summary=f"User {user.email} signed in", ip=client)
        return Success(redirect_to="/")

    def _rate_limited(self, old_input: Dict[str, str], retry_after: int) -> Failure:
        return Failure(
            FailureKind.RATE_LIMITED,
            [FieldError(None, RATE_LIMITED_MESSAGE)],
            old_input,
            retry_after=retry_after,
        )

    def logout(self, ctx: SessionContext) -> Success:
        """Destroy the session; storage failures are logged, never surfaced."""

        user_id = self.sessions.current_user_id(ctx)
        try:
            self.sessions.destroy(ctx)
        except StoreUnavailable:
            logger.exception("Failed to destroy session for user %s", user_id)
        else:
            if user_id is not None:
                self._audit("logout", actor_id=user_id, summary=f"User {user_id} signed out")
        return Success(redirect_to="/")

    # Password reset ---------------------------------------------------------

    def request_reset(self, email: str, *, schedule: Optional[Scheduler] = None) -> AuthResult:
        """Open a reset window and mail the link.

        The result is the same whether or not the account exists.
        """

        token = generate_reset_token()
        normalized = normalize_email(email)
        if not normalized:
            return Failure(
                FailureKind.VALIDATION_FAILED,
                [FieldError("email", INVALID_EMAIL_MESSAGE)],
            )

        done = Success(message=RESET_REQUESTED_MESSAGE)
        user = self.store.find_by_email(normalized)
        if user is None:
            logger.info("Password reset requested for an unknown email")
            return done

        expires_at = self._now() + timedelta(seconds=settings.RESET_TOKEN_TTL_SECONDS)
        user.open_reset_window(token, expires_at)
        self.store.save(user)
        self._audit("reset_requested", actor_id=user.id, summary=f"Password reset requested for {user.email}")

        dispatch = schedule or _run_now
        dispatch(self.deliver_reset_email, user.email, token, user.id)
        return done

    def deliver_reset_email(self, recipient: str, token: str, user_id: Optional[int] = None) -> None:
        """Send the reset email; failures are logged and audited, never raised."""

        try:
            self.mailer.send_reset_email(recipient, token)
        except EmailDeliveryError as exc:
            logger.exception("Password reset email for user %s could not be delivered", user_id)
            # runs after the response, so the request's session is already closed
            with database.SessionLocal() as session:
                record_audit_event(
                    session,
                    actor_id=user_id,
                    action="reset_email_failed",
                    summary=f"Password reset email to {recipient} could not be delivered",
                    data={"error": str(exc)},
                )

    def render_reset_form(self, token: str) -> AuthResult:
        user = self.store.find_by_valid_reset_token(token, self._now())
        if user is None:
            return self._token_invalid()
        return Success(data={"user_id": str(user.id), "token": token})

    def set_new_password(self, new_password: str, user_id: Any, token: str) -> AuthResult:
        user = self.store.find_by_valid_reset_token(token, self._now(), user_id=user_id)
        if user is None:
            return self._token_invalid()

        policy_error = password_policy_error(new_password)
        if policy_error:
            return Failure(
                FailureKind.VALIDATION_FAILED,
                [FieldError("password", policy_error)],
                {"user_id": str(user.id), "token": token},
            )

        user.hashed_password = hash_password(new_password)
        user.close_reset_window()
        self.store.save(user)
        assert user.id is not None
        revoked = self.sessions.revoke_user_sessions(self.store.session, user.id)
        self._audit(
            "password_reset",
            actor_id=user.id,
            summary=f"Password reset completed for {user.email}",
            revoked_sessions=revoked,
        )
        return Success(redirect_to="/login", message=PASSWORD_UPDATED_MESSAGE)

    def _token_invalid(self) -> Failure:
        return Failure(
            FailureKind.TOKEN_INVALID_OR_EXPIRED,
            [FieldError(None, TOKEN_INVALID_MESSAGE)],
        )


__all__ = [
    "AuthController",
    "AuthResult",
    "Failure",
    "FailureKind",
    "FieldError",
    "INVALID_CREDENTIALS_MESSAGE",
    "RESET_REQUESTED_MESSAGE",
    "Success",
    "TOKEN_INVALID_MESSAGE",
]
