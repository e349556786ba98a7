"""用户档案与机构模型（仅包含访问决策需要的字段）。"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import Field
from pymongo import IndexModel

from careguard.config import DEFAULT_ORG_MAX_PATIENTS
from careguard.models.schedule import as_utc


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Profile(Document):
    """平台用户档案，由外部身份系统认证后映射到此。"""

    external_uid: str = Field(..., min_length=1, max_length=128)
    full_name: str = Field(default="", max_length=100)
    email: str = Field(default="", max_length=254)
    role: Literal["super_admin", "org_admin", "care_manager", "caretaker", "caller", "patient_mentor", "patient"]
    organization_id: PydanticObjectId | None = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "profiles"
        indexes = [
            IndexModel([("external_uid", 1)], name="uniq_external_uid", unique=True),
            IndexModel([("organization_id", 1), ("role", 1)], name="idx_org_role"),
        ]


class Organization(Document):
    """机构，承载患者容量上限。"""

    name: str = Field(..., min_length=2, max_length=200)
    max_patients: int = Field(default=DEFAULT_ORG_MAX_PATIENTS, ge=1, le=10000)
    current_patient_count: int = Field(default=0, ge=0)
    is_active: bool = True
    license_expiry_date: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "organizations"

    def is_at_patient_capacity(self) -> bool:
        return self.current_patient_count >= self.max_patients

    def is_license_expired(self, now: datetime | None = None) -> bool:
        if self.license_expiry_date is None:
            return False
        return as_utc(self.license_expiry_date) < as_utc(now or utc_now())

    def can_add_patient(self, now: datetime | None = None) -> bool:
        if self.is_at_patient_capacity():
            return False
        return self.is_active and not self.is_license_expired(now)
