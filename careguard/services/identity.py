"""已认证调用方身份。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from beanie import PydanticObjectId

from careguard.exceptions import AuthenticationRequired


@dataclass(frozen=True)
class Caller:
    """外部身份系统解析后的调用方：``{id, role, organization_id}``。"""

    id: PydanticObjectId
    role: str
    organization_id: PydanticObjectId | None = None

    @classmethod
    def from_profile(cls, profile: Any) -> "Caller":
        return cls(id=profile.id, role=profile.role, organization_id=profile.organization_id)

    @property
    def is_super_admin(self) -> bool:
        return self.role == "super_admin"

    def same_organization(self, organization_id: PydanticObjectId | None) -> bool:
        return self.organization_id is not None and self.organization_id == organization_id


def require_caller(caller: Caller | None) -> Caller:
    """缺失或不完整的身份一律视为未认证。"""

    if caller is None or not caller.id or not caller.role:
        raise AuthenticationRequired("需要登录")
    return caller
