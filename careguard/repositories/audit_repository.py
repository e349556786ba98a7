"""审计日志仓储：只提供追加、查询与过期清理。"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from careguard.models import AuditLog
from careguard.repositories.base import guarded


class AuditLogRepository:
    @guarded
    async def insert(self, entry: AuditLog) -> AuditLog:
        await entry.insert()
        return entry

    @guarded
    async def find(self, query: dict[str, Any], *, limit: int = 100, offset: int = 0) -> list[AuditLog]:
        cursor = AuditLog.find(query).sort([("created_at", -1)])
        if offset:
            cursor = cursor.skip(offset)
        if limit:
            cursor = cursor.limit(limit)
        return await cursor.to_list()

    @guarded
    async def aggregate(self, pipeline: list[dict[str, Any]]) -> list[dict[str, Any]]:
        collection = AuditLog.get_motor_collection()
        return await collection.aggregate(pipeline).to_list(length=None)

    @guarded
    async def delete_expired(self, now: datetime) -> int:
        collection = AuditLog.get_motor_collection()
        result = await collection.delete_many({"expires_at": {"$lte": now}})
        return int(result.deleted_count)
