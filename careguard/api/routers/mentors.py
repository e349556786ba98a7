"""导师授权接口。"""

from __future__ import annotations

from typing import Any

from beanie import PydanticObjectId
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from careguard.api.deps import dump, request_meta, require_any, require_permission, services_dep
from careguard.models import AccessSchedule
from careguard.models.mentor_authorization import Relationship
from careguard.services.container import AccessServices
from careguard.services.identity import Caller
from careguard.services.mentor_service import AuthorizationInput

router = APIRouter(prefix="/api/mentors", tags=["mentors"])

GRANT_PERMISSIONS = [("patients", "authorize"), ("mentors", "authorize")]
REVOKE_PERMISSIONS = [("patients", "revoke"), ("mentors", "revoke"), ("mentors", "update")]
MENTOR_READ_PERMISSIONS = [("mentors", "read"), ("patient_mentors", "read")]


class AuthorizeRequest(BaseModel):
    mentor_id: PydanticObjectId
    patient_id: PydanticObjectId
    permissions: list[str] | None = None
    relationship: Relationship | None = None
    access_schedule: AccessSchedule | None = None


class RevokeRequest(BaseModel):
    mentor_id: PydanticObjectId
    patient_id: PydanticObjectId
    reason: str = Field(default="", max_length=500)


class PermissionsRequest(BaseModel):
    mentor_id: PydanticObjectId
    patient_id: PydanticObjectId
    permissions: list[str]


class AccessLogRequest(BaseModel):
    action: str = Field(..., min_length=1, max_length=64)
    resource_type: str = Field(default="patient", max_length=64)
    resource_id: PydanticObjectId | None = None


@router.post("/authorizations")
async def authorize(
    payload: AuthorizeRequest,
    request: Request,
    caller: Caller = Depends(require_any(GRANT_PERMISSIONS)),
    services: AccessServices = Depends(services_dep),
) -> dict[str, Any]:
    data = AuthorizationInput(
        permissions=payload.permissions,
        relationship=payload.relationship,
        access_schedule=payload.access_schedule,
    )
    authorization = await services.mentors.authorize_mentor(
        caller, payload.mentor_id, payload.patient_id, data, meta=request_meta(request)
    )
    return dump(authorization)


@router.post("/authorizations/revoke")
async def revoke(
    payload: RevokeRequest,
    request: Request,
    caller: Caller = Depends(require_any(REVOKE_PERMISSIONS)),
    services: AccessServices = Depends(services_dep),
) -> dict[str, Any]:
    authorization = await services.mentors.revoke_authorization(
        caller, payload.mentor_id, payload.patient_id, payload.reason, meta=request_meta(request)
    )
    return dump(authorization)


@router.put("/authorizations/permissions")
async def update_permissions(
    payload: PermissionsRequest,
    request: Request,
    caller: Caller = Depends(require_any([("mentors", "update"), *GRANT_PERMISSIONS])),
    services: AccessServices = Depends(services_dep),
) -> dict[str, Any]:
    authorization = await services.mentors.update_permissions(
        caller, payload.mentor_id, payload.patient_id, payload.permissions, meta=request_meta(request)
    )
    return dump(authorization)


@router.get("/authorizations/check")
async def check_permission(
    mentor_id: PydanticObjectId,
    patient_id: PydanticObjectId,
    permission: str,
    enforce_hours: bool = False,
    caller: Caller = Depends(require_any(MENTOR_READ_PERMISSIONS)),
    services: AccessServices = Depends(services_dep),
) -> dict[str, Any]:
    allowed = await services.mentors.check_permission(
        caller, mentor_id, patient_id, permission, enforce_hours=enforce_hours
    )
    return {"allowed": allowed}


@router.post("/{mentor_id}/patients/{patient_id}/access-log")
async def log_access(
    mentor_id: PydanticObjectId,
    patient_id: PydanticObjectId,
    payload: AccessLogRequest,
    request: Request,
    caller: Caller = Depends(require_any(MENTOR_READ_PERMISSIONS)),
    services: AccessServices = Depends(services_dep),
) -> dict[str, Any]:
    authorization = await services.mentors.log_mentor_access(
        mentor_id,
        patient_id,
        payload.action,
        resource_type=payload.resource_type,
        resource_id=payload.resource_id,
        meta=request_meta(request),
        caller=caller,
    )
    return dump(authorization)


@router.get("/{mentor_id}/patients")
async def mentor_patients(
    mentor_id: PydanticObjectId,
    include_inactive: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    caller: Caller = Depends(require_any(MENTOR_READ_PERMISSIONS)),
    services: AccessServices = Depends(services_dep),
) -> dict[str, Any]:
    items = await services.mentors.list_mentor_patients(
        caller, mentor_id, include_inactive=include_inactive, limit=limit, offset=offset
    )
    return {"items": [dump(item) for item in items], "count": len(items)}


@router.get("/patients/{patient_id}")
async def patient_mentors(
    patient_id: PydanticObjectId,
    include_inactive: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    caller: Caller = Depends(require_permission("patients", "read")),
    services: AccessServices = Depends(services_dep),
) -> dict[str, Any]:
    items = await services.mentors.list_patient_mentors(
        caller, patient_id, include_inactive=include_inactive, limit=limit, offset=offset
    )
    return {"items": [dump(item) for item in items], "count": len(items)}
