"""关系授权服务共用的校验。"""

from __future__ import annotations

from typing import Any

from beanie import PydanticObjectId

from careguard.exceptions import NotFound, PermissionDenied, ValidationFailed
from careguard.models import Profile
from careguard.services.identity import Caller

ADMIN_ROLES = frozenset({"care_manager", "org_admin", "super_admin"})

ENTITY_LABELS = {
    "caretaker": "护理员",
    "patient": "患者",
    "patient_mentor": "导师",
}


async def load_party(profiles: Any, profile_id: PydanticObjectId, expected_role: str, field: str) -> Profile:
    """读取关系一方并校验角色，不存在为 NotFound，角色不符为 ValidationFailed。"""

    profile = await profiles.get_profile(profile_id)
    label = ENTITY_LABELS.get(expected_role, expected_role)
    if profile is None:
        raise NotFound(f"{label}不存在", entity=expected_role)
    if profile.role != expected_role:
        raise ValidationFailed(f"{label}角色不匹配", field=field, constraint=f"role={expected_role}")
    return profile


def require_admin(caller: Caller, resource: str, action: str) -> None:
    if caller.role not in ADMIN_ROLES:
        raise PermissionDenied(resource=resource, action=action, role=caller.role)


def require_same_organization(caller: Caller, *parties: Profile) -> None:
    """非超级管理员时，所有参与方都必须属于调用方所在机构。"""

    if caller.is_super_admin:
        return
    for party in parties:
        if not caller.same_organization(party.organization_id):
            raise ValidationFailed(
                "参与方必须与操作者属于同一机构",
                field="organization_id",
                constraint="same_organization",
            )


def organization_label(organization_id: PydanticObjectId | None) -> str | None:
    return None if organization_id is None else str(organization_id)
