"""SQLModel tables for shop accounts and their sessions."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def _empty_cart() -> Dict[str, Any]:
    return {"items": []}


class UTCDateTime(TypeDecorator):
    """Store naive UTC and hand back aware UTC datetimes.

    SQLite drops the offset of ``DateTime(timezone=True)`` values, which would
    otherwise make expiry comparisons mix naive and aware timestamps.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime passed to a UTC column")
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _timestamp_column(*, onupdate: bool = False) -> Column:
    return Column(
        UTCDateTime(),
        nullable=False,
        server_default=func.now(),
        onupdate=_utcnow if onupdate else None,
    )


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(
        sa_column=Column(String(255), unique=True, index=True, nullable=False)
    )
    hashed_password: str = Field(sa_column=Column(String(255), nullable=False))
    reset_token: Optional[str] = Field(
        default=None,
        sa_column=Column(String(128), nullable=True, index=True),
    )
    reset_token_expiration: Optional[datetime] = Field(
        default=None,
        sa_column=Column(UTCDateTime(), nullable=True),
    )
    cart: Dict[str, Any] = Field(
        default_factory=_empty_cart,
        sa_column=Column(JSON, nullable=False, default=_empty_cart),
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp_column())
    updated_at: datetime = Field(
        default_factory=_utcnow, sa_column=_timestamp_column(onupdate=True)
    )

    @property
    def has_open_reset_window(self) -> bool:
        return self.reset_token is not None

    def open_reset_window(self, token: str, expires_at: datetime) -> None:
        """Attach ``token`` to the account until ``expires_at``."""

        if not token:
            raise ValueError("reset token cannot be empty")
        if expires_at.tzinfo is None:
            raise ValueError("expires_at must be timezone-aware")
        self.reset_token = token
        self.reset_token_expiration = expires_at

    def close_reset_window(self) -> None:
        self.reset_token = None
        self.reset_token_expiration = None


class SessionRecord(SQLModel, table=True):
    """Server-side session keyed by the identifier held in the cookie."""

    __tablename__ = "sessions"

    id: str = Field(sa_column=Column(String(64), primary_key=True))
    is_logged_in: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, default=False)
    )
    user_id: Optional[int] = Field(
        default=None,
        sa_column=Column(
            Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True
        ),
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp_column())
    expires_at: datetime = Field(sa_column=Column(UTCDateTime(), nullable=False, index=True))


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    actor_id: Optional[int] = Field(default=None, foreign_key="users.id")
    action: str = Field(sa_column=Column(String(120), nullable=False))
    summary: Optional[str] = Field(
        default=None,
        sa_column=Column(String(255), nullable=True),
    )
    data: Dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False, default=dict),
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp_column())


__all__ = ["AuditLog", "SessionRecord", "UTCDateTime", "User"]
