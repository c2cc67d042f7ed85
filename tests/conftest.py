"""
Shared fixtures for the API tests.

The app runs against an in-memory SQLite database that is rebuilt for every
test. Outgoing mail never leaves the process: the send functions imported by
the route modules are replaced with recorders that fill ``outbox``.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["MAIL_SUPPRESS_SEND"] = "true"

import pytest
from fastapi.testclient import TestClient

import auth
import reports
from database import Base, SessionLocal, engine
from main import app


@pytest.fixture(autouse=True)
def fresh_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    sent = []

    def record(kind):
        def _send(*args):
            sent.append({"kind": kind, "to": args[0], "args": args})
        return _send

    monkeypatch.setattr(auth, "send_otp_email", record("otp"))
    monkeypatch.setattr(auth, "send_password_reset_email", record("reset"))
    monkeypatch.setattr(reports, "send_csv_report_email", record("csv"))
    return sent


def last_mail(outbox, kind):
    mails = [m for m in outbox if m["kind"] == kind]
    assert mails, f"no {kind} mail was sent"
    return mails[-1]


@pytest.fixture
def register_user(client, outbox):
    """Sign up and verify a user, returning the session token."""

    def _register(email="alice@example.com", name="Alice", password="secret123"):
        resp = client.post(
            "/api/auth/signup", json={"name": name, "email": email, "password": password}
        )
        assert resp.status_code == 201, resp.text
        otp = last_mail(outbox, "otp")["args"][2]
        resp = client.post("/api/auth/verify-otp", json={"email": email, "otp": otp})
        assert resp.status_code == 200, resp.text
        return resp.json()["data"]["token"]

    return _register


@pytest.fixture
def auth_headers(register_user):
    token = register_user()
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_expense(client):
    def _make(headers, **fields):
        payload = {"title": "Lunch", "amount": 12.5, "category": "Food & Dining"}
        payload.update(fields)
        resp = client.post("/api/expenses", json=payload, headers=headers)
        assert resp.status_code == 201, resp.text
        return resp.json()["data"]["expense"]

    return _make
