"""角色权限表解析服务。"""

from __future__ import annotations

import logging
from typing import Any

from careguard.models import RolePermission
from careguard.models.permission import WILDCARD
from careguard.services.permission_cache import PermissionCache
from careguard.services.permission_defaults import DEFAULT_PERMISSIONS, ROLE_CREATION_HIERARCHY

logger = logging.getLogger(__name__)

SUPER_ADMIN = "super_admin"


def lookup_tiers(resource: str, action: str) -> list[tuple[str, str]]:
    """按顺序返回四级查找键：精确、资源通配、动作通配、全通配。"""

    return [
        (resource, action),
        (WILDCARD, action),
        (resource, WILDCARD),
        (WILDCARD, WILDCARD),
    ]


def can_create_role(actor_role: str, target_role: str) -> bool:
    return target_role in ROLE_CREATION_HIERARCHY.get(actor_role, frozenset())


class PermissionRegistry:
    """只允许型的 (role, resource, action) 权限表，未命中即拒绝。"""

    def __init__(self, repository: Any, cache: PermissionCache | None = None) -> None:
        self.repository = repository
        self.cache = cache

    async def has_permission(self, role: str, resource: str, action: str) -> bool:
        if role == SUPER_ADMIN:
            return True
        if not role or not resource or not action:
            return False

        if self.cache is not None:
            cached = await self.cache.get(role, resource, action)
            if cached is not None:
                return cached

        allowed = False
        for tier_resource, tier_action in lookup_tiers(resource, action):
            if await self.repository.find_active(role, tier_resource, tier_action) is not None:
                allowed = True
                break

        if self.cache is not None:
            await self.cache.set(role, resource, action, allowed)
        return allowed

    async def get_accessible_resources(self, role: str) -> list[str]:
        # super_admin 不依赖存储条目，约定返回通配
        if role == SUPER_ADMIN:
            return [WILDCARD]
        return await self.repository.distinct_resources(role)

    async def get_allowed_actions(self, role: str, resource: str) -> list[str]:
        if role == SUPER_ADMIN:
            return [WILDCARD]
        return await self.repository.distinct_actions(role, resource)

    async def list_role_permissions(self, role: str) -> list[RolePermission]:
        """按 priority 降序列出有效条目，priority 仅用于展示。"""

        return await self.repository.list_active(role)

    async def upsert_permission(
        self,
        role: str,
        resource: str,
        action: str,
        description: str = "",
        *,
        priority: int = 0,
    ) -> RolePermission:
        permission = await self.repository.upsert(
            role, resource, action, description=description, priority=priority
        )
        await self._invalidate(role)
        return permission

    async def set_active(self, role: str, resource: str, action: str, is_active: bool) -> RolePermission | None:
        permission = await self.repository.set_active(role, resource, action, is_active)
        await self._invalidate(role)
        return permission

    async def ensure_default_permissions(self, *, reset: bool = False) -> int:
        """幂等写入默认权限表，返回写入条目数。"""

        if reset:
            removed = await self.repository.clear()
            logger.info("已清空权限表: %s 条", removed)

        roles: set[str] = set()
        for role, resource, action, description in DEFAULT_PERMISSIONS:
            await self.repository.upsert(role, resource, action, description=description)
            roles.add(role)
        for role in sorted(roles):
            await self._invalidate(role)

        logger.info("默认权限已同步: %s 条, 角色 %s 个", len(DEFAULT_PERMISSIONS), len(roles))
        return len(DEFAULT_PERMISSIONS)

    async def _invalidate(self, role: str) -> None:
        if self.cache is not None:
            await self.cache.invalidate_role(role)
