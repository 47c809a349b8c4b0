import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse

from .auth.dependencies import LoginRequired
from .auth.errors import AuthInfrastructureError
from .auth.mailer import ResetMailer
from .auth.service import init_auth_storage
from .auth.sessions import SessionManager, apply_session_cookie
from .auth.throttling import AttemptLimiter
from .routes_auth import router as auth_router
from .routes_auth import templates

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # collaborators are built once here and shared by every request
    app.state.session_manager = SessionManager()
    app.state.mailer = ResetMailer.from_settings()
    app.state.login_limiter = AttemptLimiter.from_settings()
    init_auth_storage(app.state.session_manager)
    yield


app = FastAPI(title="Shop", version="1.0", lifespan=lifespan)
app.include_router(auth_router)


@app.exception_handler(LoginRequired)
async def login_required_handler(request: Request, exc: LoginRequired):
    response = RedirectResponse("/login", status_code=303)
    apply_session_cookie(response, exc.ctx)
    return response


@app.exception_handler(AuthInfrastructureError)
async def infrastructure_error_handler(request: Request, exc: AuthInfrastructureError):
    logger.error(
        "Request %s %s failed: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=exc,
    )
    return templates.TemplateResponse(
        request,
        "500.html",
        {"request": request, "title": "Error!", "is_authenticated": False},
        status_code=500,
    )
