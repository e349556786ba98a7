"""护理员分配接口。"""

from __future__ import annotations

from typing import Any

from beanie import PydanticObjectId
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from careguard.api.deps import dump, request_meta, require_any, require_permission, services_dep
from careguard.models import AssignmentSchedule
from careguard.services.assignment_service import AssignmentInput
from careguard.services.container import AccessServices
from careguard.services.identity import Caller

router = APIRouter(prefix="/api/assignments", tags=["assignments"])


class AssignRequest(BaseModel):
    caretaker_id: PydanticObjectId
    patient_id: PydanticObjectId
    priority: int | None = Field(default=None, ge=1, le=10)
    schedule: AssignmentSchedule | None = None
    care_instructions: str | None = Field(default=None, max_length=2000)


class EndAssignmentRequest(BaseModel):
    caretaker_id: PydanticObjectId
    patient_id: PydanticObjectId
    reason: str = Field(default="", max_length=500)


class NoteRequest(BaseModel):
    caretaker_id: PydanticObjectId
    patient_id: PydanticObjectId
    content: str
    is_private: bool = False


class CallRequest(BaseModel):
    caretaker_id: PydanticObjectId
    patient_id: PydanticObjectId
    duration_minutes: float | None = Field(default=None, ge=0)


@router.post("")
async def assign(
    payload: AssignRequest,
    request: Request,
    caller: Caller = Depends(require_permission("patients", "assign")),
    services: AccessServices = Depends(services_dep),
) -> dict[str, Any]:
    data = AssignmentInput(
        priority=payload.priority,
        schedule=payload.schedule,
        care_instructions=payload.care_instructions,
    )
    assignment = await services.assignments.create_or_renew(
        caller, payload.caretaker_id, payload.patient_id, data, meta=request_meta(request)
    )
    return dump(assignment)


@router.post("/end")
async def end_assignment(
    payload: EndAssignmentRequest,
    request: Request,
    caller: Caller = Depends(require_permission("patients", "assign")),
    services: AccessServices = Depends(services_dep),
) -> dict[str, Any]:
    assignment = await services.assignments.end_assignment(
        caller, payload.caretaker_id, payload.patient_id, payload.reason, meta=request_meta(request)
    )
    return dump(assignment)


@router.post("/notes")
async def add_note(
    payload: NoteRequest,
    request: Request,
    caller: Caller = Depends(require_any([("patients", "update"), ("caretakers", "update")])),
    services: AccessServices = Depends(services_dep),
) -> dict[str, Any]:
    assignment = await services.assignments.add_assignment_note(
        caller,
        payload.caretaker_id,
        payload.patient_id,
        payload.content,
        payload.is_private,
        meta=request_meta(request),
    )
    return dump(assignment)


@router.post("/calls")
async def record_call(
    payload: CallRequest,
    caller: Caller = Depends(require_permission("call_logs", "create")),
    services: AccessServices = Depends(services_dep),
) -> dict[str, Any]:
    assignment = await services.assignments.record_call(
        caller, payload.caretaker_id, payload.patient_id, payload.duration_minutes
    )
    return dump(assignment)


@router.get("/caretakers/{caretaker_id}/patients")
async def caretaker_patients(
    caretaker_id: PydanticObjectId,
    include_inactive: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    caller: Caller = Depends(require_permission("patients", "read")),
    services: AccessServices = Depends(services_dep),
) -> dict[str, Any]:
    items = await services.assignments.list_caretaker_patients(
        caller, caretaker_id, include_inactive=include_inactive, limit=limit, offset=offset
    )
    return {"items": [dump(item) for item in items], "count": len(items)}


@router.get("/patients/{patient_id}/caretakers")
async def patient_caretakers(
    patient_id: PydanticObjectId,
    include_inactive: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    caller: Caller = Depends(require_permission("patients", "read")),
    services: AccessServices = Depends(services_dep),
) -> dict[str, Any]:
    items = await services.assignments.list_patient_caretakers(
        caller, patient_id, include_inactive=include_inactive, limit=limit, offset=offset
    )
    return {"items": [dump(item) for item in items], "count": len(items)}
