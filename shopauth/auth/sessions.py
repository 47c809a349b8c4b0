"""Server-side sessions and the signed cookie that references them."""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from ..config import settings
from .errors import StoreUnavailable
from .models import SessionRecord, User
from .tokens import generate_session_id

logger = logging.getLogger(__name__)

# Cookies ------------------------------------------------------------------
SESSION_COOKIE_NAME = "shop_session"
SESSION_COOKIE_PATH = "/"
SESSION_COOKIE_SAMESITE = "lax"

COOKIE_SET = "set"
COOKIE_CLEAR = "clear"

_TimeProvider = Callable[[], datetime]


def _default_time_provider() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionContext:
    """Session state of a single request.

    ``cookie_action`` tells the transport layer whether the response must
    set a new cookie or expire the current one.
    """

    db: Session
    record: Optional[SessionRecord] = None
    cookie_action: Optional[str] = None

    @property
    def session_id(self) -> Optional[str]:
        return self.record.id if self.record is not None else None


class SessionManager:
    """Create, read and destroy :class:`SessionRecord` rows."""

    def __init__(
        self,
        *,
        ttl_seconds: Optional[int] = None,
        time_provider: Optional[_TimeProvider] = None,
    ) -> None:
        self._ttl_seconds = ttl_seconds
        self._time_provider: _TimeProvider = time_provider or _default_time_provider

    @property
    def ttl(self) -> timedelta:
        seconds = self._ttl_seconds if self._ttl_seconds is not None else settings.SESSION_TTL_SECONDS
        return timedelta(seconds=seconds)

    def _now(self) -> datetime:
        return self._time_provider()

    def _commit(self, db: Session, what: str) -> None:
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StoreUnavailable(f"could not {what} session") from exc

    def load(self, db: Session, raw_cookie: Optional[str]) -> SessionContext:
        """Resolve ``raw_cookie`` to a live session, if any."""

        ctx = SessionContext(db=db)
        if not raw_cookie:
            return ctx

        session_id = unsign_session_id(raw_cookie)
        record: Optional[SessionRecord] = None
        if session_id is not None:
            statement = select(SessionRecord).where(
                SessionRecord.id == session_id,
                SessionRecord.expires_at > self._now(),
            )
            try:
                record = db.exec(statement).first()
            except SQLAlchemyError as exc:
                db.rollback()
                raise StoreUnavailable("session lookup failed") from exc

        if record is None:
            # stale, tampered or expired identifier
            ctx.cookie_action = COOKIE_CLEAR
        else:
            ctx.record = record
        return ctx

    def is_authenticated(self, ctx: SessionContext) -> bool:
        record = ctx.record
        return bool(record is not None and record.is_logged_in and record.user_id is not None)

    def current_user_id(self, ctx: SessionContext) -> Optional[int]:
        if not self.is_authenticated(ctx):
            return None
        assert ctx.record is not None
        return ctx.record.user_id

    def mark_logged_in(self, ctx: SessionContext, user: User) -> None:
        """Bind ``ctx`` to ``user`` and persist it under a fresh identifier."""

        if user.id is None:
            raise ValueError("user must be persisted before logging in")
        if self.current_user_id(ctx) == user.id:
            return

        now = self._now()
        previous = ctx.record
        if previous is not None:
            ctx.db.delete(previous)
        record = SessionRecord(
            id=generate_session_id(),
            is_logged_in=True,
            user_id=user.id,
            created_at=now,
            expires_at=now + self.ttl,
        )
        ctx.db.add(record)
        self._commit(ctx.db, "persist")
        ctx.record = record
        ctx.cookie_action = COOKIE_SET

    def destroy(self, ctx: SessionContext) -> None:
        """Delete the record behind ``ctx``; the cookie is expired regardless."""

        record = ctx.record
        ctx.record = None
        ctx.cookie_action = COOKIE_CLEAR
        if record is None:
            return
        ctx.db.delete(record)
        self._commit(ctx.db, "destroy")

    def revoke_user_sessions(self, db: Session, user_id: int) -> int:
        """Log ``user_id`` out everywhere, e.g. after a password change."""

        statement = select(SessionRecord).where(SessionRecord.user_id == user_id)
        try:
            records = db.exec(statement).all()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StoreUnavailable("session lookup failed") from exc
        for record in records:
            db.delete(record)
        self._commit(db, "revoke")
        return len(records)

    def purge_expired(self, db: Session) -> int:
        """Remove every session whose TTL has elapsed and return the count."""

        statement = select(SessionRecord).where(SessionRecord.expires_at <= self._now())
        try:
            expired = db.exec(statement).all()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StoreUnavailable("session purge failed") from exc
        for record in expired:
            db.delete(record)
        self._commit(db, "purge")
        removed = len(expired)
        if removed:
            logger.info("Purged %d expired sessions", removed)
        return removed


def sign_session_id(session_id: str) -> str:
    """Return ``session_id`` with an HMAC so the cookie cannot be forged."""

    signature = hmac.new(_secret_key(), session_id.encode("utf-8"), hashlib.sha256).digest()
    return f"{session_id}.{_b64encode(signature)}"


def unsign_session_id(value: str) -> Optional[str]:
    """Return the session identifier in ``value`` or ``None`` if tampered."""

    if not value or "." not in value:
        return None
    session_id, _, signature_b64 = value.rpartition(".")
    if not session_id:
        return None
    try:
        signature = _b64decode(signature_b64)
    except (ValueError, binascii.Error):
        return None
    expected = hmac.new(_secret_key(), session_id.encode("utf-8"), hashlib.sha256).digest()
    if not hmac.compare_digest(signature, expected):
        return None
    return session_id


def apply_session_cookie(response, ctx: SessionContext) -> None:
    """Write the cookie change recorded on ``ctx`` to ``response``."""

    if ctx.cookie_action == COOKIE_SET and ctx.session_id:
        set_session_cookie(response, sign_session_id(ctx.session_id))
    elif ctx.cookie_action == COOKIE_CLEAR:
        clear_session_cookie(response)


def set_session_cookie(response, value: str) -> None:
    max_age = settings.SESSION_TTL_SECONDS
    response.set_cookie(
        SESSION_COOKIE_NAME,
        value,
        max_age=max_age,
        expires=max_age,
        path=SESSION_COOKIE_PATH,
        httponly=True,
        secure=_session_cookie_secure(),
        samesite=SESSION_COOKIE_SAMESITE,
    )


def clear_session_cookie(response) -> None:
    response.set_cookie(
        SESSION_COOKIE_NAME,
        "",
        max_age=0,
        expires=0,
        path=SESSION_COOKIE_PATH,
        httponly=True,
        secure=_session_cookie_secure(),
        samesite=SESSION_COOKIE_SAMESITE,
    )


def _secret_key() -> bytes:
    secret = settings.SESSION_SECRET
    if not secret:
        raise RuntimeError("SESSION_SECRET must be configured")
    return secret.encode("utf-8")


def _session_cookie_secure() -> bool:
    return settings.PUBLIC_BASE.startswith("https://")


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


__all__ = [
    "SESSION_COOKIE_NAME",
    "SessionContext",
    "SessionManager",
    "apply_session_cookie",
    "clear_session_cookie",
    "set_session_cookie",
    "sign_session_id",
    "unsign_session_id",
]
