import asyncio

import pytest

from admarket.db.session import get_session
from admarket.roles.permissions import (
    PERMISSIONS,
    can_access_route,
    dashboard_path,
    has_permission,
    permissions_for,
)
from admarket.services.audit import AuditEventService

from conftest import login_test_user, make_client, signed_login


@pytest.mark.parametrize(
    "permission,role,expected",
    [
        ("CREATE_ADS", "advertiser", True),
        ("CREATE_ADS", "publisher", False),
        ("APPROVE_ADS", "publisher", True),
        ("VIEW_ALL_ADS", "advertiser", False),
        ("VIEW_FINANCIAL_REPORTS", "stakeholder", True),
        ("MANAGE_SYSTEM_SETTINGS", "admin", True),
        ("USE_API", "viewer", True),
        ("CREATE_ADS", "superuser", False),
        ("NOT_A_PERMISSION", "admin", False),
    ],
)
def test_has_permission(permission, role, expected):
    assert has_permission(permission, role) is expected


def test_child_permission_inherits_parent_roles():
    # EXPORT_ANALYTICS -> VIEW_ADVANCED_ANALYTICS -> VIEW_BASIC_ANALYTICS, which viewers hold.
    assert has_permission("EXPORT_ANALYTICS", "viewer")
    assert not has_permission("VIEW_SYSTEM_LOGS", "publisher")


def test_admin_holds_every_permission():
    assert permissions_for("admin") == sorted(PERMISSIONS)
    assert "MANAGE_USERS" not in permissions_for("advertiser")


@pytest.mark.parametrize(
    "path,role,expected",
    [
        ("/dashboard", "viewer", True),
        ("/dashboard/settings", "viewer", True),
        ("/dashboard/advertiser", "advertiser", True),
        ("/dashboard/advertiser/", "advertiser", True),
        ("/dashboard/ads/edit/123", "advertiser", True),
        ("/dashboard/ads/edit/123", "publisher", False),
        ("/dashboard/publisher/earnings?month=1", "publisher", True),
        ("/dashboard/admin", "advertiser", False),
        ("/dashboard/admin/users", "publisher", False),
        ("/dashboard/finance", "stakeholder", True),
        ("/dashboard/anything", "admin", True),
        ("/elsewhere", "viewer", False),
        ("/dashboard", "nobody", False),
    ],
)
def test_can_access_route(path, role, expected):
    assert can_access_route(path, role) is expected


def test_dashboard_path():
    assert dashboard_path("publisher") == "/dashboard/publisher"
    assert dashboard_path("unknown") == "/dashboard"


def test_roles_summary_for_test_user(client):
    login_test_user(client)
    summary = client.get("/api/roles").json()
    assert summary["currentRole"] == "viewer"
    assert summary["availableRoles"] == ["viewer", "advertiser", "publisher"]
    assert summary["isTestMode"] is True
    assert summary["dashboard"] == "/dashboard/viewer"


def test_set_role_to_held_role(client):
    login_test_user(client)
    resp = client.post("/api/roles/set-role", json={"role": "publisher"})
    assert resp.status_code == 200
    assert resp.json()["currentRole"] == "publisher"
    assert "APPROVE_ADS" in resp.json()["permissions"]


def test_set_role_invalid_role(client):
    login_test_user(client)
    resp = client.post("/api/roles/set-role", json={"role": "wizard"})
    assert resp.status_code == 400
    assert "validRoles" in resp.json()["details"]


def test_set_role_unavailable_outside_test_mode(client):
    signed_login(client)
    resp = client.post("/api/roles/set-role", json={"role": "advertiser"})
    assert resp.status_code == 403


def test_test_mode_can_switch_to_any_role(client):
    login_test_user(client)
    resp = client.post("/api/roles/set-role", json={"role": "admin"})
    assert resp.status_code == 200
    assert "admin" in resp.json()["availableRoles"]


def test_self_service_role_toggle(client):
    signed_login(client)
    granted = client.post("/api/users/set-role", json={"role": "advertiser", "enabled": True})
    assert "advertiser" in granted.json()["availableRoles"]
    assert client.post("/api/roles/set-role", json={"role": "advertiser"}).status_code == 200

    dropped = client.post("/api/users/set-role", json={"role": "advertiser", "enabled": False}).json()
    assert "advertiser" not in dropped["availableRoles"]
    assert dropped["currentRole"] == "viewer"


def test_self_service_cannot_grant_admin(client):
    signed_login(client)
    assert client.post("/api/users/set-role", json={"role": "admin"}).status_code == 403


def test_viewer_role_cannot_be_removed(client):
    signed_login(client)
    resp = client.post("/api/users/set-role", json={"role": "viewer", "enabled": False})
    assert resp.status_code == 400


def test_enable_all_roles_requires_test_session(client):
    signed_login(client)
    assert client.post("/api/test-mode/enable-all-roles").status_code == 403


def test_enable_all_roles_in_test_mode(client):
    login_test_user(client)
    resp = client.post("/api/test-mode/enable-all-roles").json()
    assert resp["currentRole"] == "admin"
    assert resp["availableRoles"] == ["viewer", "advertiser", "publisher", "admin", "stakeholder"]


def test_reset_roles_returns_test_user_to_viewer(client):
    login_test_user(client)
    client.post("/api/test-mode/enable-all-roles")
    resp = client.post("/api/test-mode/reset-roles")
    assert resp.status_code == 200
    body = resp.json()
    assert (body["currentRole"], body["availableRoles"], body["dashboard"]) == ("viewer", ["viewer"], dashboard_path("viewer"))
    assert client.get("/api/roles").json()["availableRoles"] == ["viewer"]

    async def cleared_events():
        async with get_session() as session:
            return await AuditEventService(session).recent(action="roles_cleared")

    [event] = asyncio.run(cleared_events())
    assert event.actor_pubkey == "pk_test_alice"


def test_reset_roles_requires_test_session(client):
    signed_login(client)
    assert client.post("/api/test-mode/reset-roles").status_code == 403


def test_user_roles_visible_to_self_only(client):
    user = login_test_user(client, "carol")
    own = client.get(f"/api/users/{user['pubkey']}/roles")
    assert own.status_code == 200
    assert {r["role"] for r in own.json()["roles"]} == {"viewer", "advertiser", "publisher"}

    other = make_client()
    signed_login(other)
    assert other.get(f"/api/users/{user['pubkey']}/roles").status_code == 403
    assert other.get("/api/users/pk_test_nobody/roles").status_code == 404


def test_route_access_endpoint(client):
    login_test_user(client)
    resp = client.get("/api/access/route", params={"path": "/dashboard/admin"}).json()
    assert resp == {"path": "/dashboard/admin", "role": "viewer", "allowed": False}
