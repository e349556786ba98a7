"""列表查询范围解析。

返回显式的 ScopeFilter 值，由调用方与自己的查询条件取交集，只会收窄结果集。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Literal

from beanie import PydanticObjectId

from careguard.exceptions import ConfigurationError
from careguard.models.caretaker_assignment import assignment_is_active, utc_now
from careguard.models.mentor_authorization import authorization_is_active
from careguard.services.identity import Caller

logger = logging.getLogger(__name__)

ScopeKind = Literal["unrestricted", "organization", "self", "id_in"]


@dataclass(frozen=True)
class ScopeFilter:
    kind: ScopeKind
    organization_id: PydanticObjectId | None = None
    ids: frozenset[PydanticObjectId] = frozenset()

    @classmethod
    def unrestricted(cls) -> "ScopeFilter":
        return cls(kind="unrestricted")

    @classmethod
    def organization(cls, organization_id: PydanticObjectId | None) -> "ScopeFilter":
        return cls(kind="organization", organization_id=organization_id)

    @classmethod
    def self_only(cls, caller_id: PydanticObjectId) -> "ScopeFilter":
        return cls(kind="self", ids=frozenset({caller_id}))

    @classmethod
    def id_in(cls, ids: set[PydanticObjectId] | frozenset[PydanticObjectId]) -> "ScopeFilter":
        return cls(kind="id_in", ids=frozenset(ids))

    def to_query(self) -> dict[str, Any]:
        if self.kind == "unrestricted":
            return {}
        if self.kind == "organization":
            if self.organization_id is None:
                # 无机构的管理员不匹配任何记录，与 allows 保持一致
                return {"_id": {"$in": []}}
            return {"organization_id": self.organization_id}
        if self.kind == "self":
            return {"_id": next(iter(self.ids))}
        return {"_id": {"$in": sorted(self.ids)}}

    def apply(self, extra: dict[str, Any] | None = None) -> dict[str, Any]:
        """与调用方条件取交集。"""

        base = self.to_query()
        if not extra:
            return base
        if not base:
            return dict(extra)
        return {"$and": [base, extra]}

    def allows(self, record_id: PydanticObjectId | None, organization_id: PydanticObjectId | None = None) -> bool:
        if self.kind == "unrestricted":
            return True
        if self.kind == "organization":
            return organization_id is not None and organization_id == self.organization_id
        return record_id is not None and record_id in self.ids


class ScopeResolver:
    def __init__(
        self,
        assignments: Any,
        authorizations: Any,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.assignments = assignments
        self.authorizations = authorizations
        self.clock = clock

    async def scope(self, caller: Caller, resource_type: str) -> ScopeFilter:
        role = caller.role
        if role == "super_admin":
            return ScopeFilter.unrestricted()
        if role in {"org_admin", "care_manager"}:
            if caller.organization_id is None:
                logger.warning("机构管理角色缺少机构标识，范围为空: role=%s caller=%s", role, caller.id)
            return ScopeFilter.organization(caller.organization_id)
        if role == "caretaker":
            if resource_type == "patients":
                return ScopeFilter.id_in(await self.active_assigned_patients(caller.id))
            return ScopeFilter.self_only(caller.id)
        if role == "patient_mentor":
            if resource_type == "patients":
                return ScopeFilter.id_in(await self.active_authorized_patients(caller.id))
            return ScopeFilter.self_only(caller.id)
        if role == "patient":
            return ScopeFilter.self_only(caller.id)

        logger.error("范围解析遇到未知角色: role=%s caller=%s", role, caller.id)
        raise ConfigurationError("Unknown role", role=role)

    async def active_assigned_patients(self, caretaker_id: PydanticObjectId) -> set[PydanticObjectId]:
        now = self.clock()
        assignments = await self.assignments.list_by_caretaker(caretaker_id, ["active"])
        return {item.patient_id for item in assignments if assignment_is_active(item, now)}

    async def active_authorized_patients(self, mentor_id: PydanticObjectId) -> set[PydanticObjectId]:
        now = self.clock()
        authorizations = await self.authorizations.list_by_mentor(mentor_id, ["active"])
        return {item.patient_id for item in authorizations if authorization_is_active(item, now)}
