"""FastAPI dependencies for sessions and the login gate."""
from __future__ import annotations

from fastapi import Depends, Request
from sqlmodel import Session

from ..database import get_session
from .controller import AuthController
from .models import User
from .sessions import SESSION_COOKIE_NAME, SessionContext, SessionManager
from .store import UserStore


class LoginRequired(Exception):
    """Raised by :func:`require_login`; carries the context so its cookie is applied."""

    def __init__(self, ctx: SessionContext) -> None:
        super().__init__("login required")
        self.ctx = ctx


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


def get_session_context(
    request: Request,
    db: Session = Depends(get_session),
    manager: SessionManager = Depends(get_session_manager),
) -> SessionContext:
    """Load the caller's session and expose its state to templates.

    Only the user id lives in the session; the user row is fetched again on
    every request so a changed account is never served from a stale copy.
    """

    ctx = manager.load(db, request.cookies.get(SESSION_COOKIE_NAME))
    user = None
    user_id = manager.current_user_id(ctx)
    if user_id is not None:
        user = UserStore(db).find_by_id(user_id)
        if user is None:
            # account vanished underneath a live session
            manager.destroy(ctx)

    request.state.session_context = ctx
    request.state.user = user
    request.state.is_authenticated = user is not None
    return ctx


def authorize(manager: SessionManager, ctx: SessionContext) -> bool:
    """Return ``True`` when ``ctx`` belongs to a logged-in session."""

    return manager.is_authenticated(ctx)


def require_login(
    request: Request,
    ctx: SessionContext = Depends(get_session_context),
    manager: SessionManager = Depends(get_session_manager),
) -> User:
    """Return the signed-in ``User`` or redirect to the login page."""

    user = getattr(request.state, "user", None)
    if not authorize(manager, ctx) or user is None:
        raise LoginRequired(ctx)
    return user


def get_auth_controller(
    request: Request,
    ctx: SessionContext = Depends(get_session_context),
    manager: SessionManager = Depends(get_session_manager),
) -> AuthController:
    state = request.app.state
    return AuthController(
        UserStore(ctx.db),
        manager,
        state.mailer,
        limiter=state.login_limiter,
    )


__all__ = [
    "LoginRequired",
    "authorize",
    "get_auth_controller",
    "get_session_context",
    "get_session_manager",
    "require_login",
]
