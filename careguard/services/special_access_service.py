"""实例级特殊访问判定。

仅在角色权限已通过、且直接归属校验失败后调用，不再查询角色权限表。
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

from beanie import PydanticObjectId

from careguard.models.caretaker_assignment import assignment_is_active, utc_now
from careguard.models.mentor_authorization import authorization_is_active
from careguard.services.identity import Caller


class SpecialAccessResolver:
    def __init__(
        self,
        profiles: Any,
        assignments: Any,
        authorizations: Any,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.profiles = profiles
        self.assignments = assignments
        self.authorizations = authorizations
        self.clock = clock

    async def can_access_owned(
        self,
        caller: Caller,
        resource: str,
        action: str,
        owner_id: PydanticObjectId,
    ) -> bool:
        role = caller.role
        if role in {"care_manager", "org_admin"}:
            owner = await self.profiles.get_profile(owner_id)
            return owner is not None and caller.same_organization(owner.organization_id)

        if role == "caretaker" and resource == "patients":
            assignment = await self.assignments.get(caller.id, owner_id)
            return assignment is not None and assignment_is_active(assignment, self.clock())

        if role == "patient_mentor" and resource == "patients":
            authorization = await self.authorizations.get(caller.id, owner_id)
            return authorization is not None and authorization_is_active(authorization, self.clock())

        return False
