"""
Authentication tests.

Test blocks:
  1. Sign-up / sign-in
  2. Refresh and sign-out
  3. Password recovery
  4. Auth state callbacks
"""

import pytest

from grantdesk.core.exceptions import AuthError
from grantdesk.services import auth_service

TEST_PASSWORD = "Secret123!"  # matches the make_user fixture


def _sign_up(client, email, password=TEST_PASSWORD, **profile):
    return client.post("/api/v1/auth/sign-up", json={"email": email, "password": password, **profile})


# ── 1. Sign-up / sign-in ─────────────────────────────────────────────────────


def test_first_account_becomes_admin(client):
    res = _sign_up(client, "first@grantdesk.org", first_name="Awa")
    assert res.status_code == 201
    body = res.get_json()
    assert body["user"]["role"]["code"] == "ADMIN"
    assert body["access_token"]
    assert body["refresh_token"]

    res = _sign_up(client, "second@grantdesk.org")
    assert res.get_json()["user"]["role"]["code"] == "READ_ONLY"


def test_sign_up_rejects_duplicates_and_short_passwords(client):
    _sign_up(client, "dup@grantdesk.org")
    assert _sign_up(client, "DUP@grantdesk.org").status_code == 422
    assert _sign_up(client, "short@grantdesk.org", password="abc").status_code == 422
    assert _sign_up(client, "not-an-email").status_code == 422


def test_sign_in(client, grant_coordinator):
    res = client.post("/api/v1/auth/sign-in", json={
        "email": grant_coordinator.email, "password": TEST_PASSWORD,
    })
    assert res.status_code == 200
    assert res.get_json()["token_type"] == "Bearer"


@pytest.mark.parametrize("payload,status", [
    ({"email": "user1@grantdesk.org", "password": "wrong-password"}, 401),
    ({"email": "nobody@grantdesk.org", "password": TEST_PASSWORD}, 401),
    ({"email": "user1@grantdesk.org"}, 400),
])
def test_sign_in_failures(client, grant_coordinator, payload, status):
    res = client.post("/api/v1/auth/sign-in", json=payload)
    assert res.status_code == status


def test_inactive_account_cannot_sign_in(make_user):
    user = make_user(is_active=False)
    result = auth_service.sign_in(user.email, TEST_PASSWORD)
    assert not result.success
    assert "désactivé" in result.error


def test_session_endpoint_requires_token(client):
    assert client.get("/api/v1/auth/session").status_code == 401


# ── 2. Refresh and sign-out ──────────────────────────────────────────────────


def test_refresh_rotates_token(client, grant_coordinator):
    first = auth_service.sign_in(grant_coordinator.email, TEST_PASSWORD).tokens["refresh_token"]
    res = client.post("/api/v1/auth/refresh", json={"refresh_token": first})
    assert res.status_code == 200
    second = res.get_json()["refresh_token"]
    assert second != first

    # the rotated token is spent
    res = client.post("/api/v1/auth/refresh", json={"refresh_token": first})
    assert res.status_code == 401


def test_sign_out_revokes_refresh_token(client, grant_coordinator):
    token = auth_service.sign_in(grant_coordinator.email, TEST_PASSWORD).tokens["refresh_token"]
    assert auth_service.sign_out(token) is True
    with pytest.raises(AuthError):
        auth_service.refresh(token)


def test_access_token_is_not_a_refresh_token(grant_coordinator):
    access = auth_service.sign_in(grant_coordinator.email, TEST_PASSWORD).tokens["access_token"]
    with pytest.raises(AuthError):
        auth_service.refresh(access)


def test_get_session(grant_coordinator):
    access = auth_service.sign_in(grant_coordinator.email, TEST_PASSWORD).tokens["access_token"]
    session = auth_service.get_session(access)
    assert session["user"]["email"] == grant_coordinator.email
    assert session["role"]["code"] == "FINANCE_MANAGER"
    assert auth_service.get_session("garbage") is None
    assert auth_service.get_session(None) is None


# ── 3. Password recovery ─────────────────────────────────────────────────────


def test_reset_request_answers_identically(client, grant_coordinator):
    known = client.post("/api/v1/auth/password-reset/request", json={"email": grant_coordinator.email})
    unknown = client.post("/api/v1/auth/password-reset/request", json={"email": "ghost@grantdesk.org"})
    assert known.status_code == unknown.status_code == 200
    assert known.get_json() == unknown.get_json()


def test_recovery_link_carries_fragment(grant_coordinator):
    link = auth_service.request_password_reset(grant_coordinator.email, "https://app.grantdesk.org/reset")
    assert link.startswith("https://app.grantdesk.org/reset#")
    tokens = auth_service.parse_recovery_fragment(link)
    assert set(tokens) == {"access_token", "refresh_token"}


def test_reset_password_flow(client, grant_coordinator):
    link = auth_service.request_password_reset(grant_coordinator.email, "https://app.grantdesk.org/reset")
    fragment = link.split("#", 1)[1]

    res = client.post("/api/v1/auth/password-reset/confirm", json={
        "fragment": fragment, "new_password": "NouveauSecret1",
    })
    assert res.status_code == 200
    assert res.get_json()["access_token"]

    assert auth_service.sign_in(grant_coordinator.email, "NouveauSecret1").success
    assert not auth_service.sign_in(grant_coordinator.email, TEST_PASSWORD).success

    # a recovery link works once
    with pytest.raises(AuthError):
        auth_service.reset_password(fragment, "EncoreUnAutre1")


@pytest.mark.parametrize("fragment", [
    "type=signup&access_token=a&refresh_token=b",
    "type=recovery&access_token=a",
    "",
])
def test_malformed_recovery_fragment(fragment):
    with pytest.raises(AuthError):
        auth_service.parse_recovery_fragment(fragment)


def test_change_password(grant_coordinator):
    with pytest.raises(AuthError):
        auth_service.change_password(grant_coordinator, "wrong", "Nouveau123")
    auth_service.change_password(grant_coordinator, TEST_PASSWORD, "Nouveau123")
    assert auth_service.sign_in(grant_coordinator.email, "Nouveau123").success


# ── 4. Auth state callbacks ──────────────────────────────────────────────────


def test_auth_state_listener_and_unsubscribe(grant_coordinator):
    events = []
    unsubscribe = auth_service.on_auth_state_change(lambda event, payload: events.append(event))
    auth_service.sign_in(grant_coordinator.email, TEST_PASSWORD)
    unsubscribe()
    auth_service.sign_in(grant_coordinator.email, TEST_PASSWORD)
    assert events == ["SIGNED_IN"]


def test_failing_listener_does_not_break_sign_in(grant_coordinator):
    def boom(event, payload):
        raise RuntimeError("listener failure")

    unsubscribe = auth_service.on_auth_state_change(boom)
    try:
        assert auth_service.sign_in(grant_coordinator.email, TEST_PASSWORD).success
    finally:
        unsubscribe()
