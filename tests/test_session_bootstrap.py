"""Bounded profile/role loading at sign-in."""

import time

import pytest

from grantdesk.services.permission_service import has_permission
from grantdesk.services.session_bootstrap import bootstrap_session, fallback_role

PROFILE = {"id": 1, "email": "awa@grantdesk.org", "role_id": 7, "is_active": True}
ROLE = {
    "id": 7,
    "code": "CUSTOM",
    "is_active": True,
    "permissions": [{"module": "payments", "actions": ["view", "sign"]}],
}


def _slow(value, delay=0.5):
    def loader(_):
        time.sleep(delay)
        return value

    return loader


@pytest.fixture()
def short_timeouts(app):
    previous = (app.config["PROFILE_LOAD_TIMEOUT"], app.config["ROLE_LOAD_TIMEOUT"])
    app.config["PROFILE_LOAD_TIMEOUT"] = 0.1
    app.config["ROLE_LOAD_TIMEOUT"] = 0.1
    yield
    app.config["PROFILE_LOAD_TIMEOUT"], app.config["ROLE_LOAD_TIMEOUT"] = previous


def test_loaded_role_drives_permissions():
    result = bootstrap_session(1, "READ_ONLY", profile_loader=lambda _: PROFILE, role_loader=lambda _: ROLE)
    assert result.profile == PROFILE
    assert result.role["code"] == "CUSTOM"
    assert not result.role_fallback
    assert has_permission(result.permissions, "payments", "sign")
    assert result.to_dict()["permissions"] == {"payments": ["sign", "view"]}


def test_slow_role_falls_back_to_builtin(short_timeouts):
    result = bootstrap_session(1, "read_only", profile_loader=lambda _: PROFILE, role_loader=_slow(ROLE))
    assert result.role_fallback
    assert result.role["code"] == "READ_ONLY"
    assert has_permission(result.permissions, "payments", "view")
    assert not has_permission(result.permissions, "payments", "sign")


def test_slow_profile_is_reported(short_timeouts):
    started = time.monotonic()
    result = bootstrap_session(1, "ADMIN", profile_loader=_slow(PROFILE), role_loader=lambda _: ROLE)
    assert time.monotonic() - started < 0.45
    assert result.profile is None
    assert result.profile_timed_out
    # without a profile there is no role id to load
    assert result.role["code"] == "ADMIN"


def test_unknown_role_code_grants_nothing():
    result = bootstrap_session(1, "ghost", profile_loader=lambda _: None, role_loader=lambda _: None)
    assert result.role is None
    assert result.permissions == {}


def test_inactive_profile_grants_nothing():
    inactive = {**PROFILE, "is_active": False}
    result = bootstrap_session(1, None, profile_loader=lambda _: inactive, role_loader=lambda _: ROLE)
    assert result.permissions == {}


def test_inactive_role_grants_nothing():
    role = {**ROLE, "is_active": False}
    result = bootstrap_session(1, None, profile_loader=lambda _: PROFILE, role_loader=lambda _: role)
    assert result.permissions == {}


def test_fallback_role_lookup_is_case_insensitive():
    assert fallback_role("finance_manager")["code"] == "FINANCE_MANAGER"
    assert fallback_role(None) is None
