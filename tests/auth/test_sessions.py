from __future__ import annotations

import pytest
from sqlmodel import select

from shopauth.auth.models import SessionRecord
from shopauth.auth.passwords import hash_password
from shopauth.auth.sessions import (
    COOKIE_CLEAR,
    COOKIE_SET,
    SessionContext,
    SessionManager,
    sign_session_id,
    unsign_session_id,
)
from shopauth.auth.store import UserStore
from shopauth.config import settings


@pytest.fixture()
def manager(clock) -> SessionManager:
    return SessionManager(ttl_seconds=3600, time_provider=clock)


@pytest.fixture()
def user(db):
    return UserStore(db).create("a@x.com", hash_password("Passw0rd!"))


def test_signed_identifier_round_trip_and_tamper_detection() -> None:
    signed = sign_session_id("abc123")
    assert unsign_session_id(signed) == "abc123"
    assert unsign_session_id("abc123") is None
    assert unsign_session_id(signed[:-2] + "xx") is None
    assert unsign_session_id("other." + signed.split(".", 1)[1]) is None


def test_signature_depends_on_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    signed = sign_session_id("abc123")
    monkeypatch.setattr(settings, "SESSION_SECRET", "rotated-secret")
    assert unsign_session_id(signed) is None


def test_anonymous_context_is_not_persisted(db, manager) -> None:
    ctx = manager.load(db, None)

    assert not manager.is_authenticated(ctx)
    assert manager.current_user_id(ctx) is None
    assert ctx.cookie_action is None
    assert db.exec(select(SessionRecord)).all() == []


def test_mark_logged_in_persists_user_id_only(db, manager, user, clock) -> None:
    ctx = SessionContext(db=db)
    manager.mark_logged_in(ctx, user)

    assert manager.is_authenticated(ctx)
    assert manager.current_user_id(ctx) == user.id
    assert ctx.cookie_action == COOKIE_SET

    record = db.exec(select(SessionRecord)).one()
    assert record.user_id == user.id
    assert record.is_logged_in is True
    assert record.expires_at == clock.now + manager.ttl


def test_mark_logged_in_is_idempotent(db, manager, user) -> None:
    ctx = SessionContext(db=db)
    manager.mark_logged_in(ctx, user)
    first_id = ctx.session_id

    manager.mark_logged_in(ctx, user)
    assert ctx.session_id == first_id
    assert len(db.exec(select(SessionRecord)).all()) == 1


def test_load_resolves_signed_cookie(db, manager, user) -> None:
    ctx = SessionContext(db=db)
    manager.mark_logged_in(ctx, user)
    cookie = sign_session_id(ctx.session_id)

    loaded = manager.load(db, cookie)
    assert manager.current_user_id(loaded) == user.id
    assert loaded.cookie_action is None


def test_load_clears_tampered_or_unknown_cookie(db, manager) -> None:
    tampered = manager.load(db, "forged.value")
    assert not manager.is_authenticated(tampered)
    assert tampered.cookie_action == COOKIE_CLEAR

    unknown = manager.load(db, sign_session_id("never-issued"))
    assert not manager.is_authenticated(unknown)
    assert unknown.cookie_action == COOKIE_CLEAR


def test_session_expires_after_ttl(db, manager, user, clock) -> None:
    ctx = SessionContext(db=db)
    manager.mark_logged_in(ctx, user)
    cookie = sign_session_id(ctx.session_id)

    clock.advance(minutes=59)
    assert manager.is_authenticated(manager.load(db, cookie))

    clock.advance(minutes=2)
    assert not manager.is_authenticated(manager.load(db, cookie))
    assert manager.purge_expired(db) == 1
    assert db.exec(select(SessionRecord)).all() == []


def test_destroy_makes_identifier_unusable(db, manager, user) -> None:
    ctx = SessionContext(db=db)
    manager.mark_logged_in(ctx, user)
    cookie = sign_session_id(ctx.session_id)

    manager.destroy(ctx)
    assert ctx.cookie_action == COOKIE_CLEAR
    assert not manager.is_authenticated(ctx)
    assert not manager.is_authenticated(manager.load(db, cookie))


def test_revoke_user_sessions(db, manager, user) -> None:
    for _ in range(2):
        manager.mark_logged_in(SessionContext(db=db), user)

    assert manager.revoke_user_sessions(db, user.id) == 2
    assert db.exec(select(SessionRecord)).all() == []
