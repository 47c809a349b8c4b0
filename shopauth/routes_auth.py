from pathlib import Path
from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Depends, Form, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from .auth.controller import AuthController, Failure, FailureKind, Success
from .auth.dependencies import get_auth_controller, get_session_context, require_login
from .auth.models import User
from .auth.sessions import SessionContext, apply_session_cookie
from .config import settings


router = APIRouter()
TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

_FAILURE_STATUS = {
    FailureKind.VALIDATION_FAILED: 422,
    FailureKind.INVALID_CREDENTIALS: 422,
    FailureKind.DUPLICATE_EMAIL: 422,
    FailureKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    FailureKind.TOKEN_INVALID_OR_EXPIRED: status.HTTP_400_BAD_REQUEST,
}


def _render(
    request: Request,
    ctx: SessionContext,
    name: str,
    context: Dict[str, Any],
    *,
    status_code: int = status.HTTP_200_OK,
) -> HTMLResponse:
    response = templates.TemplateResponse(
        request,
        name,
        {
            "request": request,
            "is_authenticated": bool(getattr(request.state, "is_authenticated", False)),
            "current_user": getattr(request.state, "user", None),
            "password_min_length": settings.PASSWORD_MIN_LENGTH,
            **context,
        },
        status_code=status_code,
    )
    apply_session_cookie(response, ctx)
    return response


def _render_failure(
    request: Request,
    ctx: SessionContext,
    name: str,
    title: str,
    failure: Failure,
) -> HTMLResponse:
    response = _render(
        request,
        ctx,
        name,
        {
            "title": title,
            "error": failure.message,
            "old_input": failure.old_input,
            "validation_errors": failure.fields,
        },
        status_code=_FAILURE_STATUS[failure.kind],
    )
    if failure.kind is FailureKind.RATE_LIMITED and failure.retry_after:
        response.headers["Retry-After"] = str(failure.retry_after)
    return response


def _redirect(url: str, ctx: SessionContext) -> RedirectResponse:
    response = RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)
    apply_session_cookie(response, ctx)
    return response


@router.get("/", response_class=HTMLResponse)
def index(request: Request, ctx: SessionContext = Depends(get_session_context)):
    return _render(request, ctx, "index.html", {"title": "Shop"})


@router.get("/account", response_class=HTMLResponse)
def account(
    request: Request,
    current_user: User = Depends(require_login),
    ctx: SessionContext = Depends(get_session_context),
):
    return _render(request, ctx, "account.html", {"title": "Your account", "user": current_user})


@router.get("/login", response_class=HTMLResponse)
def login_page(request: Request, ctx: SessionContext = Depends(get_session_context)):
    if request.state.is_authenticated:
        return _redirect("/", ctx)
    return _render(request, ctx, "login.html", {"title": "Login", "old_input": {"email": ""}})


@router.post("/login", response_class=HTMLResponse)
def login_submit(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    ctx: SessionContext = Depends(get_session_context),
    controller: AuthController = Depends(get_auth_controller),
):
    client_host = request.client.host if request.client else "unknown"
    result = controller.login(email, password, ctx, client=client_host)
    if isinstance(result, Failure):
        return _render_failure(request, ctx, "login.html", "Login", result)
    return _redirect(result.redirect_to or "/", ctx)


@router.post("/logout")
def logout(
    ctx: SessionContext = Depends(get_session_context),
    controller: AuthController = Depends(get_auth_controller),
):
    result = controller.logout(ctx)
    return _redirect(result.redirect_to or "/", ctx)


@router.get("/signup", response_class=HTMLResponse)
def signup_page(request: Request, ctx: SessionContext = Depends(get_session_context)):
    return _render(request, ctx, "signup.html", {"title": "Signup", "old_input": {"email": ""}})


@router.post("/signup", response_class=HTMLResponse)
def signup_submit(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    confirm_password: str = Form(""),
    ctx: SessionContext = Depends(get_session_context),
    controller: AuthController = Depends(get_auth_controller),
):
    result = controller.signup(email, password, confirm_password)
    if isinstance(result, Failure):
        return _render_failure(request, ctx, "signup.html", "Signup", result)
    return _redirect(result.redirect_to or "/login", ctx)


@router.get("/reset", response_class=HTMLResponse)
def reset_page(request: Request, ctx: SessionContext = Depends(get_session_context)):
    return _render(request, ctx, "reset.html", {"title": "Reset Password"})


@router.post("/reset", response_class=HTMLResponse)
def reset_submit(
    request: Request,
    background_tasks: BackgroundTasks,
    email: str = Form(""),
    ctx: SessionContext = Depends(get_session_context),
    controller: AuthController = Depends(get_auth_controller),
):
    result = controller.request_reset(email, schedule=background_tasks.add_task)
    if isinstance(result, Failure):
        return _render_failure(request, ctx, "reset.html", "Reset Password", result)
    return _render(request, ctx, "reset.html", {"title": "Reset Password", "info": result.message})


@router.get("/reset/{token}", response_class=HTMLResponse)
def new_password_page(
    request: Request,
    token: str,
    ctx: SessionContext = Depends(get_session_context),
    controller: AuthController = Depends(get_auth_controller),
):
    result = controller.render_reset_form(token)
    if isinstance(result, Failure):
        return _render_failure(request, ctx, "reset.html", "Reset Password", result)
    return _render(
        request,
        ctx,
        "new_password.html",
        {
            "title": "New Password",
            "user_id": result.data["user_id"],
            "password_token": result.data["token"],
        },
    )


@router.post("/new-password", response_class=HTMLResponse)
def new_password_submit(
    request: Request,
    password: str = Form(""),
    user_id: str = Form(""),
    password_token: str = Form(""),
    ctx: SessionContext = Depends(get_session_context),
    controller: AuthController = Depends(get_auth_controller),
):
    result = controller.set_new_password(password, user_id, password_token)
    if isinstance(result, Success):
        return _redirect(result.redirect_to or "/login", ctx)
    if result.kind is FailureKind.TOKEN_INVALID_OR_EXPIRED:
        return _render_failure(request, ctx, "reset.html", "Reset Password", result)
    return _render_failure(request, ctx, "new_password.html", "New Password", result)
