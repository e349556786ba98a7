"""用户档案与机构仓储（只读）。"""

from __future__ import annotations

from beanie import PydanticObjectId

from careguard.models import Organization, Profile
from careguard.repositories.base import guarded


class ProfileRepository:
    @guarded
    async def get_profile(self, profile_id: PydanticObjectId) -> Profile | None:
        return await Profile.get(profile_id)

    @guarded
    async def get_organization(self, organization_id: PydanticObjectId) -> Organization | None:
        return await Organization.get(organization_id)
