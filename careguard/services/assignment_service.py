"""护理员-患者分配服务。"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from beanie import PydanticObjectId
from pydantic import BaseModel, Field

from careguard.exceptions import NotFound, OwnershipRequired, PermissionDenied, ValidationFailed
from careguard.models import AssignmentNote, AssignmentSchedule, CaretakerAssignment
from careguard.models.caretaker_assignment import AssignmentMetrics, utc_now
from careguard.services.audit_service import AuditEvent, AuditTrail, RequestMeta
from careguard.services.grant_common import (
    ADMIN_ROLES,
    load_party,
    organization_label,
    require_admin,
    require_same_organization,
)
from careguard.services.identity import Caller

logger = logging.getLogger(__name__)

RESOURCE_TYPE = "caretaker_patient"
NOTE_MAX_LENGTH = 1000


class AssignmentInput(BaseModel):
    """创建或续期分配时可覆盖的字段。"""

    priority: int | None = Field(default=None, ge=1, le=10)
    schedule: AssignmentSchedule | None = None
    care_instructions: str | None = Field(default=None, max_length=2000)


class AssignmentService:
    def __init__(
        self,
        assignments: Any,
        profiles: Any,
        audit: AuditTrail,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.assignments = assignments
        self.profiles = profiles
        self.audit = audit
        self.clock = clock

    async def create_or_renew(
        self,
        caller: Caller,
        caretaker_id: PydanticObjectId,
        patient_id: PydanticObjectId,
        data: AssignmentInput | None = None,
        *,
        meta: RequestMeta | None = None,
    ) -> CaretakerAssignment:
        """建立分配；已存在时原地更新并恢复为 active。"""

        require_admin(caller, "patients", "assign")
        caretaker = await load_party(self.profiles, caretaker_id, "caretaker", "caretaker_id")
        patient = await load_party(self.profiles, patient_id, "patient", "patient_id")

        if caller.is_super_admin:
            if caretaker.organization_id is None or caretaker.organization_id != patient.organization_id:
                raise ValidationFailed(
                    "护理员与患者必须属于同一机构",
                    field="organization_id",
                    constraint="same_organization",
                )
        else:
            require_same_organization(caller, caretaker, patient)

        now = self.clock()
        if caretaker.organization_id is not None:
            organization = await self.profiles.get_organization(caretaker.organization_id)
            if organization is not None and not organization.can_add_patient(now):
                raise ValidationFailed("机构患者容量已满或机构不可用", field="organization_id", constraint="capacity")

        overrides = {key: value for key, value in (data or AssignmentInput()) if value is not None}
        fields: dict[str, Any] = {
            "assigned_by": caller.id,
            "organization_id": caretaker.organization_id,
            "status": "active",
            "updated_at": now,
            **overrides,
        }
        defaults: dict[str, Any] = {
            "priority": 5,
            "schedule": AssignmentSchedule(start_date=now),
            "care_instructions": "",
            "notes": [],
            "metrics": AssignmentMetrics(),
            "created_at": now,
        }
        assignment = await self.assignments.upsert(caretaker_id, patient_id, fields, defaults)
        logger.info("护理员分配已生效: caretaker=%s patient=%s by=%s", caretaker_id, patient_id, caller.id)

        self._audit(
            caller,
            "patient_assigned",
            assignment,
            meta,
            {
                "caretaker_id": str(caretaker_id),
                "patient_id": str(patient_id),
                "caretaker_name": caretaker.full_name,
                "patient_name": patient.full_name,
                "organization_id": organization_label(caretaker.organization_id),
            },
        )
        return assignment

    async def end_assignment(
        self,
        caller: Caller,
        caretaker_id: PydanticObjectId,
        patient_id: PydanticObjectId,
        reason: str = "",
        *,
        meta: RequestMeta | None = None,
    ) -> CaretakerAssignment:
        """结束分配：置为 inactive 并追加备注，不删除历史。"""

        require_admin(caller, "patients", "assign")
        existing = await self.assignments.get(caretaker_id, patient_id)
        if existing is None:
            raise NotFound("分配关系不存在", entity="caretaker_assignment")

        if not caller.is_super_admin:
            caretaker = await self.profiles.get_profile(caretaker_id)
            if caretaker is None or not caller.same_organization(caretaker.organization_id):
                raise ValidationFailed(
                    "不能修改其他机构的分配关系",
                    field="organization_id",
                    constraint="same_organization",
                )

        now = self.clock()
        note = AssignmentNote(content=f"Unassigned: {reason}", added_by=caller.id, added_at=now)
        assignment = await self.assignments.update(
            caretaker_id,
            patient_id,
            {"status": "inactive", "updated_at": now},
            push={"notes": note},
        )
        if assignment is None:
            raise NotFound("分配关系不存在", entity="caretaker_assignment")
        logger.info("护理员分配已结束: caretaker=%s patient=%s by=%s", caretaker_id, patient_id, caller.id)

        self._audit(
            caller,
            "patient_unassigned",
            assignment,
            meta,
            {
                "caretaker_id": str(caretaker_id),
                "patient_id": str(patient_id),
                "reason": reason,
                "organization_id": organization_label(assignment.organization_id),
            },
        )
        return assignment

    async def list_caretaker_patients(
        self,
        caller: Caller,
        caretaker_id: PydanticObjectId,
        *,
        include_inactive: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[CaretakerAssignment]:
        if caller.role in {"patient", "patient_mentor", "caller"}:
            raise PermissionDenied(resource="caretakers", action="read", role=caller.role)
        if caller.role == "caretaker" and caller.id != caretaker_id:
            raise OwnershipRequired(resource="caretakers", action="read")

        caretaker = await self.profiles.get_profile(caretaker_id)
        if caretaker is None or caretaker.role != "caretaker":
            raise NotFound("护理员不存在", entity="caretaker")
        if not caller.is_super_admin and not caller.same_organization(caretaker.organization_id):
            raise OwnershipRequired(resource="caretakers", action="read")

        statuses = None if include_inactive else ["active"]
        return await self.assignments.list_by_caretaker(caretaker_id, statuses, limit=limit, offset=offset)

    async def list_patient_caretakers(
        self,
        caller: Caller,
        patient_id: PydanticObjectId,
        *,
        include_inactive: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[CaretakerAssignment]:
        if caller.role == "patient" and caller.id != patient_id:
            raise OwnershipRequired(resource="patients", action="read")

        patient = await self.profiles.get_profile(patient_id)
        if patient is None or patient.role != "patient":
            raise NotFound("患者不存在", entity="patient")
        if not caller.is_super_admin and not caller.same_organization(patient.organization_id):
            raise OwnershipRequired(resource="patients", action="read")

        statuses = None if include_inactive else ["active"]
        return await self.assignments.list_by_patient(patient_id, statuses, limit=limit, offset=offset)

    async def add_assignment_note(
        self,
        caller: Caller,
        caretaker_id: PydanticObjectId,
        patient_id: PydanticObjectId,
        content: str,
        is_private: bool = False,
        *,
        meta: RequestMeta | None = None,
    ) -> CaretakerAssignment:
        content = (content or "").strip()
        if not content or len(content) > NOTE_MAX_LENGTH:
            raise ValidationFailed(f"备注长度需在 1-{NOTE_MAX_LENGTH} 之间", field="content", constraint="length")

        existing = await self.assignments.get(caretaker_id, patient_id)
        if existing is None:
            raise NotFound("分配关系不存在", entity="caretaker_assignment")
        if caller.role == "caretaker" and caller.id != caretaker_id:
            raise OwnershipRequired(resource="caretaker_assignments", action="update")
        if caller.role == "patient" and caller.id != patient_id:
            raise OwnershipRequired(resource="caretaker_assignments", action="update")
        if caller.role in {"care_manager", "org_admin"} and not caller.same_organization(existing.organization_id):
            raise OwnershipRequired(resource="caretaker_assignments", action="update")

        now = self.clock()
        note = AssignmentNote(content=content, added_by=caller.id, added_at=now, is_private=is_private)
        assignment = await self.assignments.update(
            caretaker_id,
            patient_id,
            {"updated_at": now},
            push={"notes": note},
        )
        if assignment is None:
            raise NotFound("分配关系不存在", entity="caretaker_assignment")

        self._audit(
            caller,
            "assignment_note_added",
            assignment,
            meta,
            {
                "caretaker_id": str(caretaker_id),
                "patient_id": str(patient_id),
                "is_private": is_private,
                "note_length": len(content),
            },
        )
        return assignment

    async def record_call(
        self,
        caller: Caller,
        caretaker_id: PydanticObjectId,
        patient_id: PydanticObjectId,
        duration_minutes: float | None = None,
    ) -> CaretakerAssignment:
        """记录一次通话并更新分配统计；护理员只能记录自己的分配，管理员限本机构。"""

        if duration_minutes is not None and duration_minutes < 0:
            raise ValidationFailed("通话时长不能为负数", field="duration_minutes", constraint="min=0")

        if caller.role == "caretaker":
            if caller.id != caretaker_id:
                raise OwnershipRequired(resource="call_logs", action="create")
        elif caller.role not in ADMIN_ROLES:
            raise PermissionDenied(resource="call_logs", action="create", role=caller.role)

        existing = await self.assignments.get(caretaker_id, patient_id)
        if existing is None:
            raise NotFound("分配关系不存在", entity="caretaker_assignment")
        if caller.role in {"care_manager", "org_admin"} and not caller.same_organization(existing.organization_id):
            raise OwnershipRequired(resource="call_logs", action="create")

        assignment = await self.assignments.record_call(caretaker_id, patient_id, duration_minutes, self.clock())
        if assignment is None:
            raise NotFound("分配关系不存在", entity="caretaker_assignment")
        return assignment

    def _audit(
        self,
        caller: Caller,
        action: str,
        assignment: CaretakerAssignment,
        meta: RequestMeta | None,
        details: dict[str, Any],
    ) -> None:
        meta = meta or RequestMeta()
        self.audit.record(
            AuditEvent(
                actor_id=str(caller.id),
                action=action,
                resource_type=RESOURCE_TYPE,
                resource_id=None if assignment.id is None else str(assignment.id),
                details={**details, **meta.audit_details()},
                **meta.audit_fields(),
            )
        )
