"""角色权限仓储。"""

from __future__ import annotations

from pymongo import ReturnDocument

from careguard.models import RolePermission
from careguard.models.permission import effective_priority, utc_now
from careguard.repositories.base import guarded


class PermissionRepository:
    """基于 Beanie 的 role_permissions 读写。"""

    @guarded
    async def find_active(self, role: str, resource: str, action: str) -> RolePermission | None:
        return await RolePermission.find_one(
            {"role": role, "resource": resource, "action": action, "is_active": True}
        )

    @guarded
    async def distinct_resources(self, role: str) -> list[str]:
        collection = RolePermission.get_motor_collection()
        return sorted(await collection.distinct("resource", {"role": role, "is_active": True}))

    @guarded
    async def distinct_actions(self, role: str, resource: str) -> list[str]:
        collection = RolePermission.get_motor_collection()
        query = {"role": role, "resource": {"$in": [resource, "*"]}, "is_active": True}
        return sorted(await collection.distinct("action", query))

    @guarded
    async def list_active(self, role: str) -> list[RolePermission]:
        return (
            await RolePermission.find({"role": role, "is_active": True})
            .sort([("priority", -1), ("resource", 1), ("action", 1)])
            .to_list()
        )

    @guarded
    async def upsert(
        self,
        role: str,
        resource: str,
        action: str,
        *,
        description: str = "",
        priority: int = 0,
    ) -> RolePermission:
        collection = RolePermission.get_motor_collection()
        now = utc_now()
        raw = await collection.find_one_and_update(
            {"role": role, "resource": resource, "action": action},
            {
                "$set": {
                    "description": description,
                    "is_active": True,
                    "priority": effective_priority(resource, action, priority),
                    "updated_at": now,
                },
                "$setOnInsert": {"created_at": now},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return RolePermission.model_validate(raw)

    @guarded
    async def set_active(self, role: str, resource: str, action: str, is_active: bool) -> RolePermission | None:
        collection = RolePermission.get_motor_collection()
        raw = await collection.find_one_and_update(
            {"role": role, "resource": resource, "action": action},
            {"$set": {"is_active": is_active, "updated_at": utc_now()}},
            return_document=ReturnDocument.AFTER,
        )
        if raw is None:
            return None
        return RolePermission.model_validate(raw)

    @guarded
    async def clear(self) -> int:
        result = await RolePermission.find_all().delete()
        return int(getattr(result, "deleted_count", 0))
