"""平台默认角色权限表与角色创建层级。"""

from __future__ import annotations

from careguard.models.permission import WILDCARD

_CRUD = ("create", "read", "update", "delete")

_GRANTS: dict[str, dict[str, tuple[str, ...]]] = {
    "super_admin": {WILDCARD: (WILDCARD,)},
    "org_admin": {
        "organization": ("read", "update"),
        "care_managers": _CRUD,
        "caretakers": _CRUD,
        "patients": _CRUD,
        "patient_mentors": _CRUD,
        "profile": ("read", "update"),
        "medications": ("read", "update"),
        "call_logs": ("read",),
        "reports": ("read",),
        "billing": ("read",),
        "organizations": ("read", "update"),
    },
    "care_manager": {
        "caretakers": _CRUD,
        "patients": ("create", "read", "update", "assign", "authorize", "revoke"),
        "patient_mentors": ("read",),
        "mentors": ("read", "update"),
        "medications": ("read", "update"),
        "call_logs": ("read", "create"),
        "reports": ("read",),
        "organizations": ("read",),
        "profile": ("read", "update"),
    },
    "caretaker": {
        "patients": ("read",),
        "medications": ("read",),
        "call_logs": ("create", "read"),
        "escalations": ("create",),
        "profile": ("read", "update"),
        "caretakers": ("read", "update"),
    },
    "patient_mentor": {
        "patients": ("read",),
        "medications": ("read", "create", "update"),
        "call_logs": ("read",),
        "health_journal": ("create", "read"),
        "profile": ("read", "update"),
        "mentors": ("read", "update"),
    },
    "patient": {
        "patients": ("read",),
        "medications": ("read",),
        "call_logs": ("read",),
        "mentors": ("authorize", "revoke"),
        "profile": ("read", "update"),
        "health_journal": ("create", "read"),
    },
}

# 显式映射，不由角色顺序推导
ROLE_CREATION_HIERARCHY: dict[str, frozenset[str]] = {
    "super_admin": frozenset({"org_admin", "care_manager", "caretaker", "caller", "patient_mentor", "patient"}),
    "org_admin": frozenset({"care_manager", "caretaker", "caller", "patient_mentor"}),
    "care_manager": frozenset({"caretaker", "caller"}),
}


def default_permissions() -> list[tuple[str, str, str, str]]:
    """展开为 (role, resource, action, description) 列表。"""

    rows: list[tuple[str, str, str, str]] = []
    for role, resources in _GRANTS.items():
        for resource, actions in resources.items():
            for action in actions:
                rows.append((role, resource, action, f"{role} 可对 {resource} 执行 {action}"))
    return rows


DEFAULT_PERMISSIONS = tuple(default_permissions())
