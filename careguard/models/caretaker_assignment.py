"""护理员-患者分配模型。"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import BaseModel, Field
from pymongo import IndexModel

from careguard.models.schedule import within_window

AssignmentStatus = Literal["active", "inactive", "suspended", "terminated"]
Weekday = Literal["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AssignmentSchedule(BaseModel):
    """分配排班窗口。"""

    start_date: datetime | None = None
    end_date: datetime | None = None
    days_of_week: list[Weekday] = Field(default_factory=list)
    start_time: str | None = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    end_time: str | None = Field(default=None, pattern=r"^\d{2}:\d{2}$")


class AssignmentNote(BaseModel):
    content: str = Field(..., min_length=1, max_length=1000)
    added_by: PydanticObjectId
    added_at: datetime = Field(default_factory=utc_now)
    is_private: bool = False


class AssignmentMetrics(BaseModel):
    total_calls: int = 0
    # 单位：分钟
    average_call_duration: float = 0.0
    last_call_date: datetime | None = None


class CaretakerAssignment(Document):
    """护理员与患者的分配关系，每个 (caretaker_id, patient_id) 仅一条。"""

    caretaker_id: PydanticObjectId
    patient_id: PydanticObjectId
    assigned_by: PydanticObjectId
    organization_id: PydanticObjectId | None = None
    status: AssignmentStatus = "active"
    priority: int = Field(default=5, ge=1, le=10)
    schedule: AssignmentSchedule = Field(default_factory=AssignmentSchedule)
    care_instructions: str = Field(default="", max_length=2000)
    notes: list[AssignmentNote] = Field(default_factory=list)
    metrics: AssignmentMetrics = Field(default_factory=AssignmentMetrics)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "caretaker_assignments"
        indexes = [
            IndexModel([("caretaker_id", 1), ("patient_id", 1)], name="uniq_caretaker_patient", unique=True),
            IndexModel([("caretaker_id", 1), ("status", 1)], name="idx_caretaker_status"),
            IndexModel([("patient_id", 1), ("status", 1)], name="idx_patient_status"),
            IndexModel([("schedule.start_date", 1), ("schedule.end_date", 1)], name="idx_schedule_window"),
        ]


def assignment_is_active(assignment: CaretakerAssignment, now: datetime) -> bool:
    """状态为 active 且当前时间在排班窗口内。"""

    if assignment.status != "active":
        return False
    schedule = assignment.schedule
    return within_window(schedule.start_date, schedule.end_date, now)


def next_metrics(metrics: AssignmentMetrics, duration_minutes: float | None, now: datetime) -> AssignmentMetrics:
    """累加一次通话：次数加一，有时长时更新滚动平均。"""

    total = metrics.total_calls + 1
    average = metrics.average_call_duration
    if duration_minutes:
        average = (average * metrics.total_calls + duration_minutes) / total
    return AssignmentMetrics(total_calls=total, average_call_duration=average, last_call_date=now)
