"""Role-based permissions and dashboard route access.

Permissions form a tree: a role that holds a parent permission also holds
every child that names it as ``parent``. Admin holds everything.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from admarket.db.models import Role

logger = logging.getLogger(__name__)

ALL_ROLES = tuple(r.value for r in Role)


class PermissionCategory(str, Enum):
    ad_management = "ad_management"
    placement = "placement"
    payments = "payments"
    administration = "administration"
    analytics = "analytics"
    api = "api"
    campaigns = "campaigns"


@dataclass(frozen=True)
class Permission:
    allowed_roles: tuple[str, ...]
    description: str
    category: PermissionCategory
    is_sensitive: bool = False
    parent: Optional[str] = None


ADV = ("advertiser", "admin")
PUB = ("publisher", "admin")
EARNERS = ("publisher", "advertiser", "admin")
ANALYSTS = ("advertiser", "publisher", "admin", "stakeholder")

PERMISSIONS: Dict[str, Permission] = {
    "CREATE_ADS": Permission(ADV, "Create new ad campaigns", PermissionCategory.ad_management),
    "EDIT_ADS": Permission(ADV, "Edit existing ads", PermissionCategory.ad_management),
    "VIEW_OWN_ADS": Permission(ADV, "View own ads", PermissionCategory.ad_management),
    "DELETE_ADS": Permission(ADV, "Delete ads", PermissionCategory.ad_management, True, "EDIT_ADS"),
    "APPROVE_ADS": Permission(PUB, "Approve or reject ads for placement", PermissionCategory.ad_management),
    "VIEW_ALL_ADS": Permission(("admin",), "View every ad in the system", PermissionCategory.ad_management),
    "MANAGE_AD_PLACEMENTS": Permission(PUB, "Manage ad spaces and placements", PermissionCategory.placement),
    "UPDATE_PLACEMENT_SETTINGS": Permission(
        PUB, "Update placement settings", PermissionCategory.placement, parent="MANAGE_AD_PLACEMENTS"
    ),
    "DELETE_PLACEMENT": Permission(PUB, "Delete placements", PermissionCategory.placement, True, "MANAGE_AD_PLACEMENTS"),
    "VIEW_EARNINGS": Permission(EARNERS, "View earnings", PermissionCategory.payments),
    "REQUEST_WITHDRAWAL": Permission(EARNERS, "Withdraw funds", PermissionCategory.payments, True, "VIEW_EARNINGS"),
    "MANAGE_PAYMENT_METHODS": Permission(EARNERS, "Manage payment methods", PermissionCategory.payments, True),
    "VIEW_PAYMENT_HISTORY": Permission(EARNERS, "View payment history", PermissionCategory.payments),
    "MANAGE_USERS": Permission(("admin",), "Manage users", PermissionCategory.administration, True),
    "MANAGE_ROLES": Permission(("admin",), "Assign and revoke roles", PermissionCategory.administration, True),
    "MANAGE_SYSTEM": Permission(("admin",), "Manage the system", PermissionCategory.administration, True),
    "VIEW_SYSTEM_LOGS": Permission(("admin",), "View system logs", PermissionCategory.administration, parent="MANAGE_SYSTEM"),
    "MANAGE_SYSTEM_SETTINGS": Permission(
        ("admin",), "Change system settings", PermissionCategory.administration, True, "MANAGE_SYSTEM"
    ),
    "VIEW_ANALYTICS": Permission(ALL_ROLES, "View analytics", PermissionCategory.analytics),
    "VIEW_BASIC_ANALYTICS": Permission(ALL_ROLES, "View basic analytics", PermissionCategory.analytics),
    "VIEW_ADVANCED_ANALYTICS": Permission(
        ANALYSTS, "View advanced analytics", PermissionCategory.analytics, parent="VIEW_BASIC_ANALYTICS"
    ),
    "EXPORT_ANALYTICS": Permission(ANALYSTS, "Export analytics", PermissionCategory.analytics, parent="VIEW_ADVANCED_ANALYTICS"),
    "VIEW_FINANCIAL_REPORTS": Permission(("stakeholder", "admin"), "View financial reports", PermissionCategory.analytics, True),
    "MANAGE_API_KEYS": Permission(EARNERS, "Manage API keys", PermissionCategory.api),
    "CREATE_API_KEY": Permission(EARNERS, "Create API keys", PermissionCategory.api, parent="MANAGE_API_KEYS"),
    "REVOKE_API_KEY": Permission(EARNERS, "Revoke API keys", PermissionCategory.api, True, "MANAGE_API_KEYS"),
    "USE_API": Permission(ALL_ROLES, "Call the public API", PermissionCategory.api),
    "MANAGE_CAMPAIGNS": Permission(ADV, "Manage campaigns", PermissionCategory.campaigns),
    "CREATE_CAMPAIGN": Permission(ADV, "Create campaigns", PermissionCategory.campaigns, parent="MANAGE_CAMPAIGNS"),
    "EDIT_CAMPAIGN": Permission(ADV, "Edit campaigns", PermissionCategory.campaigns, parent="MANAGE_CAMPAIGNS"),
    "DELETE_CAMPAIGN": Permission(ADV, "Delete campaigns", PermissionCategory.campaigns, True, "MANAGE_CAMPAIGNS"),
    "VIEW_PUBLISHER_STATS": Permission(PUB, "View publisher statistics", PermissionCategory.analytics),
}

ROUTE_PERMISSIONS: Dict[str, tuple[str, ...]] = {
    "/dashboard": ALL_ROLES,
    "/dashboard/advertiser": ADV,
    "/dashboard/ads/create": ADV,
    "/dashboard/ads/edit": ADV,
    "/dashboard/ads/view": ADV,
    "/dashboard/campaigns": ADV,
    "/dashboard/publisher": PUB,
    "/dashboard/publisher/placements": PUB,
    "/dashboard/publisher/earnings": PUB,
    "/dashboard/admin": ("admin",),
    "/dashboard/users": ("admin",),
    "/dashboard/system": ("admin",),
    "/dashboard/reports": ("stakeholder", "admin"),
    "/dashboard/finance": ("stakeholder", "admin"),
    "/dashboard/stakeholder": ("stakeholder", "admin"),
}

PUBLIC_ROUTES = {"/", "/login", "/dashboard", "/dashboard/profile", "/dashboard/settings", "/dashboard/viewer"}

DASHBOARD_BY_ROLE = {
    "advertiser": "/dashboard/advertiser",
    "publisher": "/dashboard/publisher",
    "admin": "/dashboard/admin",
    "stakeholder": "/dashboard/stakeholder",
    "viewer": "/dashboard/viewer",
}


def is_valid_role(role: str | None) -> bool:
    return role in ALL_ROLES


def has_permission(permission: str, role: str) -> bool:
    if not is_valid_role(role):
        logger.warning("Invalid role in permission check: %s", role)
        return False
    if permission not in PERMISSIONS:
        logger.warning("Unknown permission requested: %s", permission)
        return False
    if role == Role.admin.value:
        return True
    name: Optional[str] = permission
    seen: set[str] = set()
    while name and name not in seen:
        config = PERMISSIONS.get(name)
        if config is None:
            break
        if role in config.allowed_roles:
            return True
        seen.add(name)
        name = config.parent
    return False


def permissions_for(role: str) -> list[str]:
    return sorted(name for name in PERMISSIONS if has_permission(name, role))


def can_access_route(path: str, role: str) -> bool:
    """Whether ``role`` may open a dashboard path; nested paths use the longest configured prefix."""
    if not is_valid_role(role):
        return False
    if role == Role.admin.value:
        return True
    path = path.split("?", 1)[0].rstrip("/") or "/"
    if path in PUBLIC_ROUTES:
        return True
    candidate = path
    while candidate:
        allowed = ROUTE_PERMISSIONS.get(candidate)
        if allowed is not None:
            return role in allowed
        candidate = candidate.rsplit("/", 1)[0]
    return False


def dashboard_path(role: str) -> str:
    return DASHBOARD_BY_ROLE.get(role, "/dashboard")
