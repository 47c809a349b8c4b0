from __future__ import annotations

import re

import pytest
from fastapi.testclient import TestClient
from sqlmodel import select

from shopauth import database
from shopauth.auth import controller as controller_module
from shopauth.auth.errors import EntropyUnavailable
from shopauth.auth.models import AuditLog, SessionRecord, User
from shopauth.auth.sessions import SESSION_COOKIE_NAME, unsign_session_id
from shopauth.auth.throttling import AttemptLimiter
from shopauth.config import settings


@pytest.fixture()
def client(db_url, mailer, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(settings, "PUBLIC_BASE", "https://testserver")

    from shopauth.main import app as fastapi_app

    with TestClient(fastapi_app, base_url="https://testserver") as client:
        fastapi_app.state.mailer = mailer
        yield client


def _signup(client: TestClient, email: str = "a@x.com", password: str = "Passw0rd!"):
    return client.post(
        "/signup",
        data={"email": email, "password": password, "confirm_password": password},
        follow_redirects=False,
    )


def _login(client: TestClient, email: str = "a@x.com", password: str = "Passw0rd!"):
    return client.post(
        "/login",
        data={"email": email, "password": password},
        follow_redirects=False,
    )


def test_signup_redirects_to_login(client: TestClient) -> None:
    response = _signup(client)

    assert response.status_code == 303
    assert response.headers["location"] == "/login"
    with database.SessionLocal() as session:
        user = session.exec(select(User).where(User.email == "a@x.com")).one()
        assert user.hashed_password != "Passw0rd!"


def test_signup_validation_echoes_email_but_not_password(client: TestClient) -> None:
    response = client.post(
        "/signup",
        data={"email": "a@x.com", "password": "Passw0rd!", "confirm_password": "Mismatch1!"},
    )

    assert response.status_code == 422
    assert "Passwords have to match!" in response.text
    assert 'value="a@x.com"' in response.text
    assert "Passw0rd!" not in response.text


def test_signup_duplicate_email(client: TestClient) -> None:
    _signup(client)
    response = _signup(client, email="A@x.com")

    assert response.status_code == 422
    assert "E-Mail exists already" in response.text


def test_login_sets_cookie_and_allows_account_page(client: TestClient) -> None:
    _signup(client)

    response = _login(client)
    assert response.status_code == 303
    assert response.headers["location"] == "/"

    cookie_header = response.headers.get("set-cookie", "")
    assert SESSION_COOKIE_NAME in cookie_header
    assert "HttpOnly" in cookie_header
    assert "SameSite=lax" in cookie_header
    assert "Secure" in cookie_header

    session_id = unsign_session_id(response.cookies.get(SESSION_COOKIE_NAME))
    assert session_id
    with database.SessionLocal() as session:
        record = session.get(SessionRecord, session_id)
        assert record is not None and record.is_logged_in

    page = client.get("/account")
    assert page.status_code == 200
    assert "a@x.com" in page.text

    # already signed in: the login page bounces home
    again = client.get("/login", follow_redirects=False)
    assert again.status_code == 303
    assert again.headers["location"] == "/"


def test_invalid_credentials_share_one_message(client: TestClient) -> None:
    _signup(client)

    wrong_password = _login(client, password="wrong-pass")
    unknown_email = _login(client, email="ghost@x.com")

    for response in (wrong_password, unknown_email):
        assert response.status_code == 422
        assert "Invalid email or password." in response.text
        assert SESSION_COOKIE_NAME not in response.cookies

    protected = client.get("/account", follow_redirects=False)
    assert protected.status_code == 303
    assert protected.headers["location"] == "/login"


def test_login_rate_limit_returns_429(client: TestClient) -> None:
    client.app.state.login_limiter = AttemptLimiter(
        max_attempts=2, window_seconds=60, block_seconds=60
    )
    _signup(client)

    assert _login(client, password="wrong-pass").status_code == 422
    blocked = _login(client, password="wrong-pass")
    assert blocked.status_code == 429
    assert "Too many login attempts" in blocked.text
    assert int(blocked.headers["retry-after"]) > 0

    assert _login(client).status_code == 429


def test_session_of_deleted_account_is_cleared_on_redirect(client: TestClient) -> None:
    _signup(client)
    _login(client)
    with database.SessionLocal() as session:
        session.delete(session.exec(select(User)).one())
        session.commit()

    response = client.get("/account", follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == "/login"
    cookie_header = response.headers.get("set-cookie", "")
    assert f"{SESSION_COOKIE_NAME}=" in cookie_header
    assert "Max-Age=0" in cookie_header

    with database.SessionLocal() as session:
        assert session.exec(select(SessionRecord)).all() == []


def test_logout_clears_cookie_and_blocks_access(client: TestClient) -> None:
    _signup(client)
    _login(client)
    assert client.get("/account").status_code == 200

    logout = client.post("/logout", follow_redirects=False)
    assert logout.status_code == 303
    assert logout.headers["location"] == "/"
    cookie_header = logout.headers.get("set-cookie", "")
    assert f"{SESSION_COOKIE_NAME}=" in cookie_header
    assert "Max-Age=0" in cookie_header

    protected = client.get("/account", follow_redirects=False)
    assert protected.status_code == 303
    assert protected.headers["location"] == "/login"

    with database.SessionLocal() as session:
        assert session.exec(select(SessionRecord)).all() == []
        actions = [entry.action for entry in session.exec(select(AuditLog)).all()]
        assert "logout" in actions


def test_password_reset_over_http(client: TestClient, mailer) -> None:
    _signup(client)

    requested = client.post("/reset", data={"email": "a@x.com"})
    assert requested.status_code == 200
    assert "If an account exists for that email" in requested.text

    # the email task runs after the response
    assert len(mailer.sent) == 1
    recipient, token = mailer.sent[0]
    assert recipient == "a@x.com"

    form = client.get(f"/reset/{token}")
    assert form.status_code == 200
    user_id = re.search(r'name="user_id" value="(\d+)"', form.text).group(1)
    assert f'value="{token}"' in form.text

    updated = client.post(
        "/new-password",
        data={"password": "NewPass1!", "user_id": user_id, "password_token": token},
        follow_redirects=False,
    )
    assert updated.status_code == 303
    assert updated.headers["location"] == "/login"

    assert _login(client, password="Passw0rd!").status_code == 422
    assert _login(client, password="NewPass1!").status_code == 303

    reused = client.post(
        "/new-password",
        data={"password": "Another1!", "user_id": user_id, "password_token": token},
    )
    assert reused.status_code == 400
    assert "invalid or has expired" in reused.text


def test_reset_for_unknown_email_looks_identical(client: TestClient, mailer) -> None:
    _signup(client)

    known = client.post("/reset", data={"email": "a@x.com"})
    unknown = client.post("/reset", data={"email": "ghost@x.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.text == unknown.text
    assert [recipient for recipient, _ in mailer.sent] == ["a@x.com"]


def test_reset_link_with_bad_token(client: TestClient) -> None:
    response = client.get("/reset/" + "0" * 64)

    assert response.status_code == 400
    assert "invalid or has expired" in response.text


def test_infrastructure_errors_render_generic_page(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    def _no_entropy():
        raise EntropyUnavailable("getrandom failed: secret detail")

    monkeypatch.setattr(controller_module, "generate_reset_token", _no_entropy)
    response = client.post("/reset", data={"email": "a@x.com"})

    assert response.status_code == 500
    assert "Some error occurred!" in response.text
    assert "secret detail" not in response.text
