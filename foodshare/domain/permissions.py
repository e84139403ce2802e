from __future__ import annotations

from typing import Any

from foodshare.domain.models import UserRole

PERM_WILDCARD = "*"
PERM_PROFILE_READ = "profile.read"
PERM_PROFILE_WRITE = "profile.write"
PERM_REPORT_CREATE = "report.create"
PERM_REPORT_READ = "report.read"
PERM_REPORT_CANCEL = "report.cancel"
PERM_TASK_READ = "task.read"
PERM_TASK_CLAIM = "task.claim"
PERM_TASK_DELIVER = "task.deliver"
PERM_NEEDY_READ = "needy.read"
PERM_NEEDY_WRITE = "needy.write"
PERM_DASHBOARD_READ = "dashboard.read"
PERM_ADMIN = "admin.manage"

ROLE_PERMISSIONS: dict[UserRole, list[str]] = {
    UserRole.HOTEL: [
        PERM_PROFILE_READ,
        PERM_PROFILE_WRITE,
        PERM_REPORT_CREATE,
        PERM_REPORT_READ,
        PERM_REPORT_CANCEL,
        PERM_DASHBOARD_READ,
    ],
    UserRole.AGENT: [
        PERM_PROFILE_READ,
        PERM_PROFILE_WRITE,
        PERM_REPORT_READ,
        PERM_TASK_READ,
        PERM_TASK_CLAIM,
        PERM_TASK_DELIVER,
        PERM_NEEDY_READ,
        PERM_NEEDY_WRITE,
        PERM_DASHBOARD_READ,
    ],
    UserRole.ADMIN: [PERM_WILDCARD],
}


def permissions_for_role(role: UserRole | str) -> list[str]:
    try:
        return list(ROLE_PERMISSIONS[UserRole(role)])
    except ValueError:
        return []


def has_permission(claims: dict[str, Any], permission: str) -> bool:
    permissions = claims.get("permissions", [])
    if not isinstance(permissions, list):
        return False
    return permission in permissions or PERM_WILDCARD in permissions
