"""患者导师授权模型。"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import BaseModel, Field
from pymongo import IndexModel

from careguard.models.caretaker_assignment import Weekday
from careguard.models.schedule import weekday_name, within_hours, within_window

AuthorizationStatus = Literal["active", "revoked", "expired", "suspended"]
Relationship = Literal["parent", "spouse", "child", "sibling", "friend", "caregiver", "other"]

MENTOR_CAPABILITIES = (
    "view_medical_info",
    "view_medications",
    "manage_medications",
    "view_call_logs",
    "make_calls_on_behalf",
    "view_health_journal",
    "manage_health_journal",
    "receive_notifications",
    "emergency_contact",
)
DEFAULT_MENTOR_PERMISSIONS = ("view_medical_info", "view_medications", "view_call_logs", "view_health_journal")

MentorCapability = Literal[
    "view_medical_info",
    "view_medications",
    "manage_medications",
    "view_call_logs",
    "make_calls_on_behalf",
    "view_health_journal",
    "manage_health_journal",
    "receive_notifications",
    "emergency_contact",
]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AllowedHours(BaseModel):
    start: str = Field(default="00:00", pattern=r"^\d{2}:\d{2}$")
    end: str = Field(default="23:59", pattern=r"^\d{2}:\d{2}$")


class AccessSchedule(BaseModel):
    """授权访问窗口。"""

    start_date: datetime | None = None
    end_date: datetime | None = None
    allowed_days: list[Weekday] = Field(default_factory=list)
    allowed_hours: AllowedHours | None = None


class Consent(BaseModel):
    given_at: datetime = Field(default_factory=utc_now)
    given_by: PydanticObjectId
    version: str = "1.0"
    ip_address: str | None = None


class AccessLogItem(BaseModel):
    accessed_at: datetime = Field(default_factory=utc_now)
    accessed_by: PydanticObjectId
    action: str = Field(..., min_length=1, max_length=64)
    resource_type: str | None = None
    resource_id: PydanticObjectId | None = None
    ip_address: str | None = None
    user_agent: str | None = None


class MentorAuthorization(Document):
    """导师对患者数据的授权，每个 (mentor_id, patient_id) 仅一条，允许跨机构。"""

    mentor_id: PydanticObjectId
    patient_id: PydanticObjectId
    authorized_by: PydanticObjectId
    status: AuthorizationStatus = "active"
    permissions: list[MentorCapability] = Field(default_factory=lambda: list(DEFAULT_MENTOR_PERMISSIONS))
    access_schedule: AccessSchedule = Field(default_factory=AccessSchedule)
    relationship: Relationship = "other"
    consent: Consent | None = None
    access_log: list[AccessLogItem] = Field(default_factory=list)
    revoked_at: datetime | None = None
    revoked_by: PydanticObjectId | None = None
    revocation_reason: str = Field(default="", max_length=500)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "mentor_authorizations"
        indexes = [
            IndexModel([("mentor_id", 1), ("patient_id", 1)], name="uniq_mentor_patient", unique=True),
            IndexModel([("mentor_id", 1), ("status", 1)], name="idx_mentor_status"),
            IndexModel([("patient_id", 1), ("status", 1)], name="idx_patient_status"),
            IndexModel([("access_schedule.end_date", 1)], name="idx_access_end_date"),
        ]


def authorization_is_active(authorization: MentorAuthorization, now: datetime) -> bool:
    """状态为 active 且当前时间在访问窗口内；窗口过期即视为 expired。"""

    if authorization.status != "active":
        return False
    schedule = authorization.access_schedule
    return within_window(schedule.start_date, schedule.end_date, now)


def effective_status(authorization: MentorAuthorization, now: datetime) -> str:
    """读取时推导的状态：存储为 active 但窗口已过时返回 expired。"""

    if authorization.status == "active" and not authorization_is_active(authorization, now):
        end_date = authorization.access_schedule.end_date
        if end_date is not None and not within_window(None, end_date, now):
            return "expired"
    return authorization.status


def access_window_open(authorization: MentorAuthorization, local_now: datetime) -> bool:
    """按允许的星期与时段判断当前是否可访问，local_now 为机构本地时间。"""

    schedule = authorization.access_schedule
    if schedule.allowed_days and weekday_name(local_now) not in schedule.allowed_days:
        return False
    if schedule.allowed_hours is None:
        return True
    return within_hours(schedule.allowed_hours.start, schedule.allowed_hours.end, local_now)
