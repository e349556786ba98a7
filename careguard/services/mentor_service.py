"""患者导师授权服务。"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable
from zoneinfo import ZoneInfo

from beanie import PydanticObjectId
from pydantic import BaseModel

from careguard.config import LOCAL_TIMEZONE, MENTOR_ACCESS_LOG_LIMIT
from careguard.exceptions import NotFound, OwnershipRequired, PermissionDenied, ValidationFailed
from careguard.models import AccessSchedule, MentorAuthorization
from careguard.models.mentor_authorization import (
    DEFAULT_MENTOR_PERMISSIONS,
    MENTOR_CAPABILITIES,
    AccessLogItem,
    Consent,
    Relationship,
    access_window_open,
    authorization_is_active,
    utc_now,
)
from careguard.services.audit_service import AuditEvent, AuditTrail, RequestMeta
from careguard.services.grant_common import ADMIN_ROLES, load_party, require_same_organization
from careguard.services.identity import Caller

logger = logging.getLogger(__name__)

RESOURCE_TYPE = "mentor_authorization"


class AuthorizationInput(BaseModel):
    permissions: list[str] | None = None
    relationship: Relationship | None = None
    access_schedule: AccessSchedule | None = None


def validate_capabilities(permissions: list[str]) -> list[str]:
    """整体校验，任一未知能力即拒绝整个列表。"""

    invalid = [item for item in permissions if item not in MENTOR_CAPABILITIES]
    if invalid:
        raise ValidationFailed(
            f"无效的导师权限: {', '.join(invalid)}",
            field="permissions",
            constraint="capability",
        )
    return list(dict.fromkeys(permissions))


class MentorService:
    def __init__(
        self,
        authorizations: Any,
        profiles: Any,
        audit: AuditTrail,
        *,
        clock: Callable[[], datetime] = utc_now,
        timezone_name: str = LOCAL_TIMEZONE,
        access_log_limit: int = MENTOR_ACCESS_LOG_LIMIT,
    ) -> None:
        self.authorizations = authorizations
        self.profiles = profiles
        self.audit = audit
        self.clock = clock
        self.tz = ZoneInfo(timezone_name)
        self.access_log_limit = access_log_limit

    def _require_grantor(self, caller: Caller, patient_id: PydanticObjectId, action: str) -> None:
        if caller.id != patient_id and caller.role not in ADMIN_ROLES:
            raise PermissionDenied(resource="mentors", action=action, role=caller.role)

    async def authorize_mentor(
        self,
        caller: Caller,
        mentor_id: PydanticObjectId,
        patient_id: PydanticObjectId,
        data: AuthorizationInput | None = None,
        *,
        meta: RequestMeta | None = None,
    ) -> MentorAuthorization:
        """授权导师访问患者数据；重复授权原地更新并恢复为 active。"""

        self._require_grantor(caller, patient_id, "authorize")
        data = data or AuthorizationInput()
        permissions = (
            validate_capabilities(data.permissions)
            if data.permissions is not None
            else list(DEFAULT_MENTOR_PERMISSIONS)
        )

        mentor = await load_party(self.profiles, mentor_id, "patient_mentor", "mentor_id")
        patient = await load_party(self.profiles, patient_id, "patient", "patient_id")
        patient_self = caller.id == patient_id
        if not patient_self:
            require_same_organization(caller, mentor, patient)
        # 导师授权允许跨机构，只在审计中标记
        cross_org = mentor.organization_id != patient.organization_id

        meta = meta or RequestMeta()
        now = self.clock()
        fields: dict[str, Any] = {
            "authorized_by": caller.id,
            "status": "active",
            "permissions": permissions,
            "relationship": data.relationship or "other",
            "consent": Consent(given_at=now, given_by=caller.id, ip_address=meta.ip_address),
            "revoked_at": None,
            "revoked_by": None,
            "revocation_reason": "",
            "updated_at": now,
        }
        if data.access_schedule is not None:
            fields["access_schedule"] = data.access_schedule
        defaults: dict[str, Any] = {
            "access_schedule": AccessSchedule(start_date=now),
            "access_log": [],
            "created_at": now,
        }
        authorization = await self.authorizations.upsert(mentor_id, patient_id, fields, defaults)
        logger.info("导师授权已生效: mentor=%s patient=%s by=%s", mentor_id, patient_id, caller.id)

        self._audit(
            caller,
            "mentor_authorized",
            authorization,
            meta,
            {
                "mentor_id": str(mentor_id),
                "patient_id": str(patient_id),
                "mentor_name": mentor.full_name,
                "patient_name": patient.full_name,
                "relationship": authorization.relationship,
                "permissions": list(authorization.permissions),
                "crossOrgAuth": cross_org,
            },
        )
        return authorization

    async def revoke_authorization(
        self,
        caller: Caller,
        mentor_id: PydanticObjectId,
        patient_id: PydanticObjectId,
        reason: str = "",
        *,
        meta: RequestMeta | None = None,
    ) -> MentorAuthorization:
        """撤销授权；对已撤销的授权重复调用会刷新撤销时间与原因。"""

        is_self = caller.id in {patient_id, mentor_id}
        if not is_self and caller.role not in ADMIN_ROLES:
            raise PermissionDenied(resource="mentors", action="revoke", role=caller.role)

        existing = await self.authorizations.get(mentor_id, patient_id)
        if existing is None:
            raise NotFound("导师授权不存在", entity="mentor_authorization")

        if not is_self and not caller.is_super_admin:
            mentor = await self.profiles.get_profile(mentor_id)
            if mentor is None or not caller.same_organization(mentor.organization_id):
                raise ValidationFailed(
                    "不能修改其他机构的导师授权",
                    field="organization_id",
                    constraint="same_organization",
                )

        now = self.clock()
        authorization = await self.authorizations.update(
            mentor_id,
            patient_id,
            {
                "status": "revoked",
                "revoked_at": now,
                "revoked_by": caller.id,
                "revocation_reason": reason,
                "updated_at": now,
            },
        )
        if authorization is None:
            raise NotFound("导师授权不存在", entity="mentor_authorization")
        logger.info("导师授权已撤销: mentor=%s patient=%s by=%s", mentor_id, patient_id, caller.id)

        self._audit(
            caller,
            "mentor_revoked",
            authorization,
            meta,
            {
                "mentor_id": str(mentor_id),
                "patient_id": str(patient_id),
                "reason": reason,
                "revoked_by": str(caller.id),
                "previous_status": existing.status,
            },
        )
        return authorization

    async def update_permissions(
        self,
        caller: Caller,
        mentor_id: PydanticObjectId,
        patient_id: PydanticObjectId,
        permissions: list[str],
        *,
        meta: RequestMeta | None = None,
    ) -> MentorAuthorization:
        self._require_grantor(caller, patient_id, "update")
        new_permissions = validate_capabilities(list(permissions))

        existing = await self.authorizations.get(mentor_id, patient_id)
        if existing is None:
            raise NotFound("导师授权不存在", entity="mentor_authorization")

        if caller.id != patient_id:
            mentor = await load_party(self.profiles, mentor_id, "patient_mentor", "mentor_id")
            patient = await load_party(self.profiles, patient_id, "patient", "patient_id")
            require_same_organization(caller, mentor, patient)

        authorization = await self.authorizations.update(
            mentor_id,
            patient_id,
            {"permissions": new_permissions, "updated_at": self.clock()},
        )
        if authorization is None:
            raise NotFound("导师授权不存在", entity="mentor_authorization")

        previous = list(existing.permissions)
        self._audit(
            caller,
            "mentor_permissions_updated",
            authorization,
            meta,
            {
                "mentor_id": str(mentor_id),
                "patient_id": str(patient_id),
                "new_permissions": new_permissions,
                "previous_permissions": previous,
            },
            previous_values={"permissions": previous},
            new_values={"permissions": new_permissions},
        )
        return authorization

    async def require_mentor_visibility(self, caller: Caller, mentor_id: PydanticObjectId, action: str) -> None:
        """超级管理员、导师所在机构的管理员或导师本人。"""

        if caller.is_super_admin:
            return
        if caller.role == "patient_mentor" and caller.id == mentor_id:
            return
        if caller.role in {"care_manager", "org_admin"}:
            mentor = await self.profiles.get_profile(mentor_id)
            if mentor is not None and caller.same_organization(mentor.organization_id):
                return
        raise OwnershipRequired(resource="mentors", action=action)

    async def check_permission(
        self,
        caller: Caller,
        mentor_id: PydanticObjectId,
        patient_id: PydanticObjectId,
        permission: str,
        *,
        enforce_hours: bool = False,
    ) -> bool:
        await self.require_mentor_visibility(caller, mentor_id, "read")
        return await self.has_permission(mentor_id, patient_id, permission, enforce_hours=enforce_hours)

    async def has_permission(
        self,
        mentor_id: PydanticObjectId,
        patient_id: PydanticObjectId,
        permission: str,
        *,
        enforce_hours: bool = False,
    ) -> bool:
        """授权有效、在时间窗口内且包含该能力时返回 True。"""

        authorization = await self.authorizations.get(mentor_id, patient_id)
        if authorization is None:
            return False
        now = self.clock()
        if not authorization_is_active(authorization, now) or permission not in authorization.permissions:
            return False
        if enforce_hours:
            return access_window_open(authorization, now.astimezone(self.tz))
        return True

    async def list_mentor_patients(
        self,
        caller: Caller,
        mentor_id: PydanticObjectId,
        *,
        include_inactive: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[MentorAuthorization]:
        if caller.role == "patient_mentor":
            if caller.id != mentor_id:
                raise OwnershipRequired(resource="mentors", action="read")
        elif caller.role not in ADMIN_ROLES:
            raise PermissionDenied(resource="mentors", action="read", role=caller.role)

        mentor = await self.profiles.get_profile(mentor_id)
        if mentor is None or mentor.role != "patient_mentor":
            raise NotFound("导师不存在", entity="patient_mentor")
        if caller.role in {"care_manager", "org_admin"} and not caller.same_organization(mentor.organization_id):
            raise OwnershipRequired(resource="mentors", action="read")

        statuses = None if include_inactive else ["active"]
        return await self.authorizations.list_by_mentor(mentor_id, statuses, limit=limit, offset=offset)

    async def list_patient_mentors(
        self,
        caller: Caller,
        patient_id: PydanticObjectId,
        *,
        include_inactive: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[MentorAuthorization]:
        if caller.role == "patient":
            if caller.id != patient_id:
                raise OwnershipRequired(resource="patients", action="read")
        elif caller.role not in ADMIN_ROLES:
            raise PermissionDenied(resource="mentors", action="read", role=caller.role)

        patient = await self.profiles.get_profile(patient_id)
        if patient is None or patient.role != "patient":
            raise NotFound("患者不存在", entity="patient")
        if caller.role in {"care_manager", "org_admin"} and not caller.same_organization(patient.organization_id):
            raise OwnershipRequired(resource="patients", action="read")

        statuses = None if include_inactive else ["active"]
        return await self.authorizations.list_by_patient(patient_id, statuses, limit=limit, offset=offset)

    async def log_mentor_access(
        self,
        mentor_id: PydanticObjectId,
        patient_id: PydanticObjectId,
        action: str,
        *,
        resource_type: str = "patient",
        resource_id: PydanticObjectId | None = None,
        meta: RequestMeta | None = None,
        caller: Caller | None = None,
    ) -> MentorAuthorization:
        """在授权上追加访问记录，只保留最近的若干条；经接口调用时校验调用方。"""

        if caller is not None:
            await self.require_mentor_visibility(caller, mentor_id, "read")
        existing = await self.authorizations.get(mentor_id, patient_id)
        now = self.clock()
        if existing is None or not authorization_is_active(existing, now):
            raise NotFound("未找到有效的导师授权", entity="mentor_authorization")

        meta = meta or RequestMeta()
        item = AccessLogItem(
            accessed_at=now,
            accessed_by=mentor_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id or patient_id,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
        authorization = await self.authorizations.update(
            mentor_id,
            patient_id,
            {},
            push={"access_log": {"$each": [item], "$slice": -self.access_log_limit}},
        )
        if authorization is None:
            raise NotFound("未找到有效的导师授权", entity="mentor_authorization")
        return authorization

    def _audit(
        self,
        caller: Caller,
        action: str,
        authorization: MentorAuthorization,
        meta: RequestMeta | None,
        details: dict[str, Any],
        **values: Any,
    ) -> None:
        meta = meta or RequestMeta()
        self.audit.record(
            AuditEvent(
                actor_id=str(caller.id),
                action=action,
                resource_type=RESOURCE_TYPE,
                resource_id=None if authorization.id is None else str(authorization.id),
                details={**details, **meta.audit_details()},
                **values,
                **meta.audit_fields(),
            )
        )
