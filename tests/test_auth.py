"""Tests for signup, OTP verification, login and password reset."""

import time
from datetime import timedelta

import jwt
import pytest

import auth
from database import User, utcnow
from errors import EmailDeliveryError


def _mails(outbox, kind):
    return [m for m in outbox if m["kind"] == kind]


def _signup(client, email="bob@example.com", name="Bob", password="hunter22"):
    return client.post(
        "/api/auth/signup", json={"name": name, "email": email, "password": password}
    )


class TestSignup:

    def test_signup_creates_unverified_user(self, client, db_session, outbox):
        resp = _signup(client)
        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["email"] == "bob@example.com"
        assert body["data"]["name"] == "Bob"
        assert isinstance(body["data"]["userId"], int)

        user = db_session.query(User).filter_by(email="bob@example.com").one()
        assert user.verified is False
        assert user.password_hash != "hunter22"
        assert user.otp is not None and len(user.otp) == 6 and user.otp.isdigit()
        assert user.otp_expires > utcnow() + timedelta(minutes=4)

        mail = _mails(outbox, "otp")[-1]
        assert mail["to"] == "bob@example.com"
        assert mail["args"][2] == user.otp

    def test_email_is_stored_lowercase(self, client, db_session):
        assert _signup(client, email="Bob@Example.COM").status_code == 201
        assert db_session.query(User).filter_by(email="bob@example.com").count() == 1

    def test_duplicate_email_is_rejected(self, client):
        _signup(client)
        resp = _signup(client, name="Other Bob")
        assert resp.status_code == 400
        assert resp.json() == {
            "success": False,
            "message": "User with this email already exists",
        }

    def test_malformed_input_returns_itemized_errors(self, client):
        resp = client.post(
            "/api/auth/signup", json={"name": "B", "email": "not-an-email", "password": "123"}
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["message"] == "Validation failed"
        fields = {e["field"] for e in body["errors"]}
        assert {"name", "email", "password"} <= fields

    def test_email_failure_does_not_fail_signup(self, client, monkeypatch):
        def broken(*args):
            raise EmailDeliveryError("Failed to send email")

        monkeypatch.setattr(auth, "send_otp_email", broken)
        resp = _signup(client)
        assert resp.status_code == 201
        assert resp.json()["success"] is True


class TestVerifyOTP:

    def _otp(self, outbox):
        return _mails(outbox, "otp")[-1]["args"][2]

    def test_correct_otp_verifies_and_returns_token(self, client, db_session, outbox):
        _signup(client)
        resp = client.post(
            "/api/auth/verify-otp", json={"email": "bob@example.com", "otp": self._otp(outbox)}
        )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["token"]
        assert data["user"]["verified"] is True
        assert data["user"]["email"] == "bob@example.com"

        user = db_session.query(User).filter_by(email="bob@example.com").one()
        assert user.verified is True
        assert user.otp is None and user.otp_expires is None

    def test_wrong_otp_is_rejected(self, client, db_session, outbox):
        _signup(client)
        wrong = "000000" if self._otp(outbox) != "000000" else "111111"
        resp = client.post("/api/auth/verify-otp", json={"email": "bob@example.com", "otp": wrong})
        assert resp.status_code == 400
        assert resp.json()["message"] == "Invalid or expired OTP"
        user = db_session.query(User).filter_by(email="bob@example.com").one()
        assert user.verified is False

    def test_non_ascii_otp_is_rejected(self, client, db_session):
        _signup(client)
        resp = client.post(
            "/api/auth/verify-otp", json={"email": "bob@example.com", "otp": "12345é"}
        )
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "message": "Invalid or expired OTP"}
        user = db_session.query(User).filter_by(email="bob@example.com").one()
        assert user.verified is False

    def test_expired_otp_is_rejected_even_if_digits_match(self, client, db_session, outbox):
        _signup(client)
        otp = self._otp(outbox)
        user = db_session.query(User).filter_by(email="bob@example.com").one()
        user.otp_expires = utcnow() - timedelta(seconds=1)
        db_session.commit()

        resp = client.post("/api/auth/verify-otp", json={"email": "bob@example.com", "otp": otp})
        assert resp.status_code == 400
        assert resp.json()["message"] == "Invalid or expired OTP"

    def test_unknown_email_is_not_found(self, client):
        resp = client.post(
            "/api/auth/verify-otp", json={"email": "ghost@example.com", "otp": "123456"}
        )
        assert resp.status_code == 404
        assert resp.json()["success"] is False

    def test_already_verified(self, client, register_user):
        register_user(email="carol@example.com")
        resp = client.post(
            "/api/auth/verify-otp", json={"email": "carol@example.com", "otp": "123456"}
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "Email already verified"

    def test_resend_replaces_previous_code(self, client, outbox):
        _signup(client)
        first = self._otp(outbox)
        resp = client.post("/api/auth/resend-otp", json={"email": "bob@example.com"})
        assert resp.status_code == 200
        second = self._otp(outbox)
        assert len(_mails(outbox, "otp")) == 2

        if first != second:
            resp = client.post(
                "/api/auth/verify-otp", json={"email": "bob@example.com", "otp": first}
            )
            assert resp.status_code == 400
        resp = client.post("/api/auth/verify-otp", json={"email": "bob@example.com", "otp": second})
        assert resp.status_code == 200

    def test_resend_for_verified_user(self, client, register_user):
        register_user(email="carol@example.com")
        resp = client.post("/api/auth/resend-otp", json={"email": "carol@example.com"})
        assert resp.status_code == 400


class TestLogin:

    def test_login_success_updates_last_login(self, client, register_user, db_session):
        register_user(email="dave@example.com", password="correct-horse")
        resp = client.post(
            "/api/auth/login", json={"email": "dave@example.com", "password": "correct-horse"}
        )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["token"]
        assert data["user"]["lastLogin"] is not None
        user = db_session.query(User).filter_by(email="dave@example.com").one()
        assert user.last_login is not None

    def test_unknown_email_and_wrong_password_are_indistinguishable(self, client, register_user):
        register_user(email="dave@example.com", password="correct-horse")
        missing = client.post(
            "/api/auth/login", json={"email": "nobody@example.com", "password": "correct-horse"}
        )
        wrong = client.post(
            "/api/auth/login", json={"email": "dave@example.com", "password": "wrong-horse"}
        )
        assert missing.status_code == wrong.status_code == 401
        assert missing.json() == wrong.json() == {
            "success": False,
            "message": "Invalid credentials",
        }

    def test_unverified_user_cannot_login(self, client):
        _signup(client)
        resp = client.post(
            "/api/auth/login", json={"email": "bob@example.com", "password": "hunter22"}
        )
        assert resp.status_code == 401
        assert resp.json()["message"] == "Please verify your email before logging in"


class TestSessionToken:

    def test_profile_with_token(self, client, auth_headers):
        resp = client.get("/api/auth/profile", headers=auth_headers)
        assert resp.status_code == 200
        user = resp.json()["data"]["user"]
        assert user["email"] == "alice@example.com"
        assert user["name"] == "Alice"
        assert "passwordHash" not in user

    def test_missing_token(self, client):
        resp = client.get("/api/auth/profile")
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "message": "Access token is required"}

    def test_garbage_token(self, client):
        resp = client.get("/api/auth/profile", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401
        assert resp.json()["message"] == "Invalid token"

    def test_expired_token(self, client, register_user):
        register_user()
        token = jwt.encode(
            {"sub": "1", "exp": utcnow() - timedelta(minutes=1)}, "test-secret", algorithm="HS256"
        )
        resp = client.get("/api/auth/profile", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert resp.json()["message"] == "Token has expired"

    def test_token_for_deleted_user(self, client, auth_headers, db_session):
        db_session.query(User).delete()
        db_session.commit()
        resp = client.get("/api/auth/profile", headers=auth_headers)
        assert resp.status_code == 401

    def test_token_expires_after_24_hours(self):
        token = auth.create_access_token(42)
        payload = jwt.decode(token, "test-secret", algorithms=["HS256"])
        assert payload["sub"] == "42"
        lifetime = payload["exp"] - int(time.time())
        assert 24 * 3600 - 60 <= lifetime <= 24 * 3600 + 60


class TestPasswordReset:

    def test_forgot_password_does_not_reveal_accounts(self, client, register_user, outbox):
        register_user(email="erin@example.com")
        known = client.post("/api/auth/forgot-password", json={"email": "erin@example.com"})
        unknown = client.post("/api/auth/forgot-password", json={"email": "nope@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()
        assert [m["to"] for m in _mails(outbox, "reset")] == ["erin@example.com"]

    def test_reset_token_is_stored_hashed(self, client, register_user, outbox, db_session):
        register_user(email="erin@example.com")
        client.post("/api/auth/forgot-password", json={"email": "erin@example.com"})
        token = _mails(outbox, "reset")[-1]["args"][2]
        user = db_session.query(User).filter_by(email="erin@example.com").one()
        assert user.reset_token_hash == auth.hash_token(token)
        assert user.reset_token_hash != token
        assert user.reset_token_expires > utcnow() + timedelta(minutes=59)

    def test_reset_changes_password_once(self, client, register_user, outbox):
        register_user(email="erin@example.com", password="old-password")
        client.post("/api/auth/forgot-password", json={"email": "erin@example.com"})
        token = _mails(outbox, "reset")[-1]["args"][2]

        resp = client.post(
            "/api/auth/reset-password", json={"token": token, "password": "new-password"}
        )
        assert resp.status_code == 200

        old = client.post(
            "/api/auth/login", json={"email": "erin@example.com", "password": "old-password"}
        )
        new = client.post(
            "/api/auth/login", json={"email": "erin@example.com", "password": "new-password"}
        )
        assert old.status_code == 401
        assert new.status_code == 200

        again = client.post(
            "/api/auth/reset-password", json={"token": token, "password": "another-one"}
        )
        assert again.status_code == 400
        assert again.json()["message"] == "Invalid or expired reset token"

    def test_new_request_invalidates_pending_token(self, client, register_user, outbox):
        register_user(email="erin@example.com")
        client.post("/api/auth/forgot-password", json={"email": "erin@example.com"})
        first = _mails(outbox, "reset")[-1]["args"][2]
        client.post("/api/auth/forgot-password", json={"email": "erin@example.com"})

        resp = client.post(
            "/api/auth/reset-password", json={"token": first, "password": "new-password"}
        )
        assert resp.status_code == 400

    def test_expired_reset_token(self, client, register_user, outbox, db_session):
        register_user(email="erin@example.com")
        client.post("/api/auth/forgot-password", json={"email": "erin@example.com"})
        token = _mails(outbox, "reset")[-1]["args"][2]
        user = db_session.query(User).filter_by(email="erin@example.com").one()
        user.reset_token_expires = utcnow() - timedelta(seconds=1)
        db_session.commit()

        resp = client.post(
            "/api/auth/reset-password", json={"token": token, "password": "new-password"}
        )
        assert resp.status_code == 400

    def test_reset_email_failure_is_reported(self, client, register_user, monkeypatch):
        register_user(email="erin@example.com")

        def broken(*args):
            raise EmailDeliveryError("Failed to send email")

        monkeypatch.setattr(auth, "send_password_reset_email", broken)
        resp = client.post("/api/auth/forgot-password", json={"email": "erin@example.com"})
        assert resp.status_code == 500
        assert resp.json() == {"success": False, "message": "Failed to send reset email"}

    def test_unverified_account_gets_no_reset_link(self, client, outbox):
        _signup(client)
        resp = client.post("/api/auth/forgot-password", json={"email": "bob@example.com"})
        assert resp.status_code == 200
        assert _mails(outbox, "reset") == []


@pytest.mark.parametrize("path", ["/api/expenses", "/api/expenses/stats", "/api/reports/summary"])
def test_protected_routes_require_token(client, path):
    resp = client.get(path)
    assert resp.status_code == 401
    assert resp.json()["success"] is False
