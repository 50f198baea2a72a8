"""
User and role administration.

Test blocks:
  1. Users (service)
  2. Roles (service)
  3. Admin API
"""

import pytest

from grantdesk.core.exceptions import BackendError, PermissionDeniedError, ValidationError
from grantdesk.services import user_service
from grantdesk.services.permission_service import get_user_permissions, has_permission


# ── 1. Users ─────────────────────────────────────────────────────────────────


def test_create_user_with_temporary_password(admin, roles):
    user, temporary = user_service.create_user(admin, {
        "email": "  Nouveau@GrantDesk.org ",
        "role_id": roles["PROJECT_MANAGER"].id,
        "first_name": "Fatou",
        "profession": "Comptable",
    })
    assert user.email == "nouveau@grantdesk.org"
    assert temporary and len(temporary) >= 12
    assert user.created_by == admin.id


def test_create_user_requires_role(admin):
    with pytest.raises(ValidationError):
        user_service.create_user(admin, {"email": "x@grantdesk.org"})
    with pytest.raises(ValidationError):
        user_service.create_user(admin, {"email": "x@grantdesk.org", "role_id": 999})


def test_duplicate_email_is_409(admin, roles, grant_coordinator):
    with pytest.raises(BackendError) as exc:
        user_service.create_user(admin, {"email": grant_coordinator.email, "role_id": roles["ADMIN"].id})
    assert exc.value.status_code == 409


def test_user_edits_own_profile_but_not_role(grant_coordinator, roles):
    user_service.update_user(grant_coordinator, grant_coordinator.id, {"first_name": "Awa-Marie"})
    assert grant_coordinator.first_name == "Awa-Marie"
    with pytest.raises(PermissionDeniedError):
        user_service.update_user(grant_coordinator, grant_coordinator.id, {"role_id": roles["ADMIN"].id})


def test_role_change_takes_effect_immediately(admin, grant_coordinator, roles):
    assert has_permission(get_user_permissions(grant_coordinator.id), "payments", "sign")
    user_service.update_user(admin, grant_coordinator.id, {"role_id": roles["READ_ONLY"].id})
    assert not has_permission(get_user_permissions(grant_coordinator.id), "payments", "sign")


def test_admin_cannot_deactivate_or_delete_self(admin):
    with pytest.raises(ValidationError):
        user_service.update_user(admin, admin.id, {"is_active": False})
    with pytest.raises(ValidationError):
        user_service.delete_user(admin, admin.id)


def test_delete_needs_permission(grant_coordinator, accountant):
    with pytest.raises(PermissionDeniedError):
        user_service.delete_user(grant_coordinator, accountant.id)


def test_list_users_search(admin, grant_coordinator, accountant):
    page = user_service.list_users(admin, search="mensah")
    assert [u.id for u in page["items"]] == [accountant.id]


# ── 2. Roles ─────────────────────────────────────────────────────────────────


def test_create_role_cleans_permissions(admin):
    role = user_service.create_role(admin, {
        "code": "auditor",
        "name": "Auditeur",
        "permissions": [{"module": "audit", "actions": ["view", "export"]}],
    })
    assert role.code == "AUDITOR"
    assert role.permissions == [{"module": "audit", "actions": ["export", "view"]}]


def test_create_role_rejects_unknown_action(admin):
    with pytest.raises(ValidationError):
        user_service.create_role(admin, {
            "code": "X", "name": "X", "permissions": [{"module": "audit", "actions": ["delete"]}],
        })


def test_assigned_role_cannot_be_deleted(admin, roles):
    with pytest.raises(ValidationError) as exc:
        user_service.delete_role(admin, roles["ADMIN"].id)
    assert exc.value.details == {"user_count": 1}
    user_service.delete_role(admin, roles["CONSULTANT"].id)


def test_role_permission_edit_invalidates_cache(admin, grant_coordinator, roles):
    assert has_permission(get_user_permissions(grant_coordinator.id), "payments", "sign")
    user_service.update_role(admin, roles["FINANCE_MANAGER"].id, {
        "permissions": [{"module": "payments", "actions": ["view"]}],
    })
    assert not has_permission(get_user_permissions(grant_coordinator.id), "payments", "sign")


# ── 3. Admin API ─────────────────────────────────────────────────────────────


def test_admin_create_user_endpoint(client, admin, roles, auth_header):
    res = client.post("/api/v1/admin/users", headers=auth_header(admin), json={
        "email": "api@grantdesk.org", "role_id": roles["CONSULTANT"].id,
    })
    assert res.status_code == 201
    body = res.get_json()
    assert body["user"]["email"] == "api@grantdesk.org"
    assert body["temporary_password"]


def test_non_admin_is_forbidden(client, grant_coordinator, auth_header):
    res = client.get("/api/v1/admin/users", headers=auth_header(grant_coordinator))
    assert res.status_code == 403


def test_modules_catalogue(client, admin, auth_header):
    res = client.get("/api/v1/admin/modules", headers=auth_header(admin))
    assert res.status_code == 200
    assert "payments" in {m["module"] for m in res.get_json()}
