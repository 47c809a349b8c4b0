from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Tuple

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from shopauth import database
from shopauth.auth.errors import EmailDeliveryError
from shopauth.auth.mailer import ResetMailer
from shopauth.config import settings


class FakeClock:
    """Callable time provider that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


class RecordingMailer(ResetMailer):
    def __init__(self, *, fail: bool = False) -> None:
        super().__init__(public_base="https://testserver", sender="shop@testserver")
        self.fail = fail
        self.sent: List[Tuple[str, str]] = []

    def send_reset_email(self, recipient: str, token: str) -> None:
        if self.fail:
            raise EmailDeliveryError(f"could not deliver reset email to {recipient}")
        self.sent.append((recipient, token))


@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch: pytest.MonkeyPatch) -> None:
    # bcrypt's minimum cost keeps the suite fast
    monkeypatch.setattr(settings, "BCRYPT_ROUNDS", 4)


@pytest.fixture()
def db_url(tmp_path):
    original_url = settings.DATABASE_URL
    url = f"sqlite:///{tmp_path / 'shop.sqlite3'}"
    database.reset_session_factory(url)
    database.create_tables()
    try:
        yield url
    finally:
        database.reset_session_factory(original_url)


@pytest.fixture()
def db(db_url):
    with database.SessionLocal() as session:
        yield session


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture()
def mailer() -> RecordingMailer:
    return RecordingMailer()
