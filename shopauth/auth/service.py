"""Storage bootstrap and the audit trail for authentication events."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from .. import database
from .models import AuditLog, User
from .sessions import SessionManager

logger = logging.getLogger(__name__)


def init_auth_storage(session_manager: Optional[SessionManager] = None) -> None:
    """Ensure tables exist and drop sessions that expired while offline."""

    database.create_tables()
    manager = session_manager or SessionManager()
    with database.SessionLocal() as session:
        manager.purge_expired(session)


def record_audit_event(
    session: Session,
    *,
    actor: Optional[User] = None,
    actor_id: Optional[int] = None,
    action: str,
    summary: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
) -> Optional[AuditLog]:
    """Persist an :class:`AuditLog` entry.

    Auditing never fails the request it describes; storage errors are logged
    and ``None`` is returned.
    """

    if actor is not None and actor.id is not None:
        actor_id = actor.id
    entry = AuditLog(
        actor_id=actor_id,
        action=action,
        summary=summary,
        data=data or {},
    )
    session.add(entry)
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Failed to record audit event %s", action)
        return None
    return entry


__all__ = ["init_auth_storage", "record_audit_event"]
