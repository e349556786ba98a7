"""范围过滤预览接口，供列表服务获取当前调用方可见的查询条件。"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from careguard.api.deps import scope_for
from careguard.services.scope_service import ScopeFilter

router = APIRouter(prefix="/api/scope", tags=["scope"])


def describe(scope: ScopeFilter) -> dict[str, Any]:
    return {
        "kind": scope.kind,
        "organization_id": None if scope.organization_id is None else str(scope.organization_id),
        "ids": sorted(str(item) for item in scope.ids),
    }


@router.get("/patients")
async def patients_scope(scope: ScopeFilter = Depends(scope_for("patients"))) -> dict[str, Any]:
    return describe(scope)


@router.get("/caretakers")
async def caretakers_scope(scope: ScopeFilter = Depends(scope_for("caretakers"))) -> dict[str, Any]:
    return describe(scope)


@router.get("/mentors")
async def mentors_scope(scope: ScopeFilter = Depends(scope_for("mentors"))) -> dict[str, Any]:
    return describe(scope)


@router.get("/profile")
async def profile_scope(scope: ScopeFilter = Depends(scope_for("profile"))) -> dict[str, Any]:
    return describe(scope)
