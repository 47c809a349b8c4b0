"""Persistence of :class:`User` records."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from .errors import DuplicateEmail, StoreUnavailable
from .models import User

logger = logging.getLogger(__name__)


def normalize_email(value: Optional[str]) -> str:
    """Strip and lower-case ``value``; emails are matched case-insensitively."""

    if value is None:
        return ""
    return str(value).strip().lower()


def _coerce_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


class UserStore:
    """Look up and persist users through a SQLModel ``Session``."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def _first(self, statement) -> Optional[User]:
        try:
            return self.session.exec(statement).first()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreUnavailable("user lookup failed") from exc

    def find_by_email(self, email: str) -> Optional[User]:
        normalized = normalize_email(email)
        if not normalized:
            return None
        return self._first(select(User).where(User.email == normalized))

    def find_by_id(self, user_id: Any) -> Optional[User]:
        coerced = _coerce_id(user_id)
        if coerced is None:
            return None
        return self._first(select(User).where(User.id == coerced))

    def find_by_valid_reset_token(
        self,
        token: str,
        now: datetime,
        *,
        user_id: Any = None,
    ) -> Optional[User]:
        """Return the user holding ``token`` if it expires after ``now``.

        With ``user_id`` the token must also belong to that user.
        """

        if not token:
            return None
        statement = select(User).where(
            User.reset_token == token,
            User.reset_token_expiration > now,
        )
        if user_id is not None:
            coerced = _coerce_id(user_id)
            if coerced is None:
                return None
            statement = statement.where(User.id == coerced)
        return self._first(statement)

    def create(self, email: str, hashed_password: str) -> User:
        """Insert a new user; the unique email index decides races."""

        normalized = normalize_email(email)
        if not normalized:
            raise ValueError("email cannot be empty")
        user = User(email=normalized, hashed_password=hashed_password)
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateEmail(normalized) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreUnavailable("could not create user") from exc
        self.session.refresh(user)
        logger.info("Created user %s", user.id)
        return user

    def save(self, user: User) -> None:
        self.session.add(user)
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreUnavailable(f"could not save user {user.id}") from exc


__all__ = ["UserStore", "normalize_email"]
