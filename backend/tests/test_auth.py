from sqlalchemy import select

from app.core.config import settings
from app.core.security import create_email_verification_token, create_password_reset_token
from app.models.user import User

PASSWORD = "s3cure-pass"


def _register(client, email="ada@example.com", password=PASSWORD, **extra):
    payload = {"email": email, "first_name": "Ada", "last_name": "Lovelace", "password": password}
    payload.update(extra)
    return client.post("/auth/register", json=payload)


def _login(client, email, password=PASSWORD):
    return client.post(
        "/auth/token",
        data={"username": email, "password": password},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )


def test_register_creates_unverified_account_and_sends_verification(client, db, enqueued, monkeypatch):
    monkeypatch.setattr(settings, "allow_public_register", True)

    r = _register(client, email="Ada@Example.com", city="Cotonou")
    assert r.status_code == 200
    assert r.json()["email"] == "ada@example.com"
    assert r.json()["email_verified"] is False

    user = db.scalar(select(User).where(User.email == "ada@example.com"))
    assert user is not None
    assert user.city == "Cotonou"
    assert user.email_verified_at is None

    assert len(enqueued) == 1
    assert enqueued[0]["queue"] == settings.rq_queue_email
    assert enqueued[0]["kwargs"]["to"] == "ada@example.com"
    assert "verify" in enqueued[0]["kwargs"]["text_body"].lower()


def test_register_rejects_duplicates_and_weak_input(client):
    assert _register(client).status_code == 200

    r = _register(client)
    assert r.status_code == 409
    assert r.json()["error_code"] == "email_already_registered"

    r = _register(client, email="short@example.com", password="abc")
    assert r.status_code == 400
    assert r.json()["error_code"] == "password_too_short"

    r = _register(client, email="not-an-email")
    assert r.status_code == 400
    assert r.json()["error_code"] == "invalid_input"


def test_unverified_learner_can_log_in_but_not_learn(client):
    _register(client)

    r = _login(client, "ada@example.com")
    assert r.status_code == 200
    h = {"Authorization": f"Bearer {r.json()['access_token']}"}

    r = client.get("/auth/me", headers=h)
    assert r.status_code == 200
    assert r.json()["email_verified"] is False

    r = client.get("/certificates", headers=h)
    assert r.status_code == 403
    assert r.json()["error_code"] == "email_not_verified"


def test_wrong_password_is_unauthorized(client):
    _register(client)
    r = _login(client, "ada@example.com", "wrong-password")
    assert r.status_code == 401
    assert r.json()["error_code"] == "unauthorized"


def test_verify_email_flow(client, db, enqueued):
    _register(client)
    user = db.scalar(select(User).where(User.email == "ada@example.com"))
    token = create_email_verification_token(user)
    enqueued.clear()

    r = client.post("/auth/verify-email", json={"token": token})
    assert r.status_code == 200
    assert r.json() == {"ok": True, "already_verified": False}
    assert len(enqueued) == 1
    assert enqueued[0]["kwargs"]["to"] == "ada@example.com"

    r = client.post("/auth/verify-email", json={"token": token})
    assert r.json()["already_verified"] is True

    db.expire_all()
    assert db.scalar(select(User).where(User.email == "ada@example.com")).is_email_verified


def test_verify_email_rejects_bad_tokens(client, db, make_user):
    r = client.post("/auth/verify-email", json={"token": "garbage"})
    assert r.status_code == 400
    assert r.json()["error_code"] == "invalid_token"

    # An access token is not a verification token.
    user = make_user(verified=False)
    r = _login(client, user.email, "testpass123")
    r = client.post("/auth/verify-email", json={"token": r.json()["access_token"]})
    assert r.status_code == 400
    assert r.json()["error_code"] == "invalid_token"


def test_verification_token_is_bound_to_the_address(client, db, make_user):
    user = make_user(verified=False)
    token = create_email_verification_token(user)
    user.email = "changed@example.com"
    db.commit()

    r = client.post("/auth/verify-email", json={"token": token})
    assert r.status_code == 400


def test_resend_verification_does_not_leak_accounts(client, enqueued, make_user):
    r = client.post("/auth/resend-verification", json={"email": "nobody@example.com"})
    assert r.status_code == 200
    assert enqueued == []

    user = make_user(verified=False)
    r = client.post("/auth/resend-verification", json={"email": user.email})
    assert r.status_code == 200
    assert len(enqueued) == 1


def test_change_password(client, learner, auth_headers):
    r = client.post(
        "/auth/change-password",
        headers=auth_headers,
        json={"current_password": "wrong", "new_password": "another-pass"},
    )
    assert r.status_code == 401

    r = client.post(
        "/auth/change-password",
        headers=auth_headers,
        json={"current_password": "testpass123", "new_password": "another-pass"},
    )
    assert r.status_code == 200
    assert _login(client, learner.email, "another-pass").status_code == 200


def test_forgot_password_does_not_leak_accounts(client, enqueued, learner):
    r = client.post("/auth/forgot-password", json={"email": "nobody@example.com"})
    assert r.status_code == 200
    assert enqueued == []

    r = client.post("/auth/forgot-password", json={"email": learner.email.upper()})
    assert r.status_code == 200
    assert [(j["kwargs"]["to"], j["kwargs"]["subject"]) for j in enqueued] == [(learner.email, "Reset your password")]
    assert "/auth/reset-password?token=" in enqueued[0]["kwargs"]["text_body"]


def test_password_reset_flow_is_single_use(client, learner):
    token = create_password_reset_token(learner)

    r = client.post("/auth/verify-reset-token", json={"token": token})
    assert r.status_code == 200
    assert r.json()["email"] == learner.email

    r = client.post("/auth/reset-password", json={"token": token, "new_password": "short"})
    assert r.status_code == 400
    assert r.json()["error_code"] == "password_too_short"

    r = client.post("/auth/reset-password", json={"token": token, "new_password": "brand-new-pass"})
    assert r.status_code == 200

    assert _login(client, learner.email, "brand-new-pass").status_code == 200
    assert _login(client, learner.email, "testpass123").status_code == 401

    r = client.post("/auth/reset-password", json={"token": token, "new_password": "another-pass-1"})
    assert r.status_code == 400
    assert r.json()["error_code"] == "invalid_token"


def test_verification_token_cannot_reset_a_password(client, learner):
    r = client.post("/auth/reset-password", json={"token": create_email_verification_token(learner), "new_password": "brand-new-pass"})
    assert r.status_code == 400
    assert r.json()["error_code"] == "invalid_token"
