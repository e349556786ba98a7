"""角色权限模型。"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from beanie import Document
from pydantic import Field
from pymongo import IndexModel

WILDCARD = "*"

ROLES = ("super_admin", "org_admin", "care_manager", "caretaker", "patient_mentor", "patient")
# caller 角色存在于更大的系统中，但不在权限表内持有任何条目
PROFILE_ROLES = (*ROLES, "caller")
ACTIONS = ("create", "read", "update", "delete", "assign", "authorize", "revoke")

RoleName = Literal["super_admin", "org_admin", "care_manager", "caretaker", "patient_mentor", "patient"]
ActionName = Literal["create", "read", "update", "delete", "assign", "authorize", "revoke", "*"]

WILDCARD_DEFAULT_PRIORITY = 100


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RolePermission(Document):
    """角色-资源-动作授权条目（仅允许，无显式拒绝）。"""

    role: RoleName
    resource: str = Field(..., min_length=1, max_length=64)
    action: ActionName
    description: str = Field(default="", max_length=500)
    is_active: bool = True
    # 仅用于列表排序，不参与冲突裁决
    priority: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "role_permissions"
        indexes = [
            IndexModel([("role", 1), ("resource", 1), ("action", 1)], name="uniq_role_resource_action", unique=True),
            IndexModel([("role", 1), ("is_active", 1)], name="idx_role_active"),
            IndexModel([("resource", 1), ("action", 1), ("is_active", 1)], name="idx_resource_action_active"),
        ]

    def applies_to(self, resource: str, action: str) -> bool:
        resource_match = self.resource in {WILDCARD, resource}
        action_match = self.action in {WILDCARD, action}
        return resource_match and action_match and self.is_active


def is_wildcard(resource: str, action: str) -> bool:
    return resource == WILDCARD or action == WILDCARD


def effective_priority(resource: str, action: str, priority: int) -> int:
    """通配条目未显式设置优先级时默认 100。"""

    if is_wildcard(resource, action) and priority == 0:
        return WILDCARD_DEFAULT_PRIORITY
    return priority
