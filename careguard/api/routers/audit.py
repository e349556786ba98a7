"""审计查询接口（只读）。"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query

from careguard.api.deps import dump, require_permission, services_dep
from careguard.services.container import AccessServices
from careguard.services.identity import Caller

router = APIRouter(prefix="/api/audit", tags=["audit"])

# 审计日志只开放给平台运营方
AUDIT_READ = require_permission("audit_logs", "read")


@router.get("/actors/{actor_id}")
async def actor_logs(
    actor_id: str,
    action: str | None = None,
    resource_type: str | None = None,
    outcome: Literal["success", "failure", "partial"] | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    _caller: Caller = Depends(AUDIT_READ),
    services: AccessServices = Depends(services_dep),
) -> dict[str, Any]:
    items = await services.audit.find_by_actor(
        actor_id,
        limit=limit,
        offset=offset,
        action=action,
        resource_type=resource_type,
        outcome=outcome,
        start=start,
        end=end,
    )
    return {"items": [dump(item) for item in items], "count": len(items)}


@router.get("/actors/{actor_id}/summary")
async def actor_summary(
    actor_id: str,
    days: int = Query(default=30, ge=1, le=3650),
    _caller: Caller = Depends(AUDIT_READ),
    services: AccessServices = Depends(services_dep),
) -> dict[str, Any]:
    return {"items": await services.audit.activity_summary(actor_id, days)}


@router.get("/resources/{resource_type}/{resource_id}")
async def resource_logs(
    resource_type: str,
    resource_id: str,
    action: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    _caller: Caller = Depends(AUDIT_READ),
    services: AccessServices = Depends(services_dep),
) -> dict[str, Any]:
    items = await services.audit.find_by_resource(
        resource_type, resource_id, limit=limit, action=action, start=start, end=end
    )
    return {"items": [dump(item) for item in items], "count": len(items)}


@router.get("/incidents")
async def security_incidents(
    severity: Literal["low", "medium", "high", "critical"] | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    _caller: Caller = Depends(AUDIT_READ),
    services: AccessServices = Depends(services_dep),
) -> dict[str, Any]:
    items = await services.audit.find_security_incidents(limit=limit, severity=severity, start=start, end=end)
    return {"items": [dump(item) for item in items], "count": len(items)}
