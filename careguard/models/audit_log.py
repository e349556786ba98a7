"""审计日志模型（只追加）。"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Literal

from beanie import Document
from pydantic import BaseModel, Field
from pymongo import IndexModel

from careguard.config import AUDIT_RETENTION_DAYS
from careguard.models.schedule import as_utc

Outcome = Literal["success", "failure", "partial"]
Severity = Literal["low", "medium", "high", "critical"]
FlagType = Literal[
    "suspicious_location",
    "unusual_time",
    "multiple_failed_attempts",
    "privilege_escalation",
    "data_access_anomaly",
    "brute_force_detected",
    "session_hijacking",
    "unauthorized_device",
    "compliance_violation",
]

REDACTED = "[REDACTED]"
IDENTIFIER_MAX_LENGTH = 128
USER_AGENT_MAX_LENGTH = 500


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SecurityFlag(BaseModel):
    type: FlagType
    severity: Severity = "medium"
    description: str = ""
    detected_at: datetime = Field(default_factory=utc_now)


class AuditLog(Document):
    """审计条目，写入后不再修改。"""

    actor_id: str = Field(..., min_length=1, max_length=IDENTIFIER_MAX_LENGTH)
    action: str = Field(..., min_length=1, max_length=IDENTIFIER_MAX_LENGTH)
    resource_type: str | None = None
    resource_id: str | None = None
    outcome: Outcome = "success"
    ip_address: str | None = None
    user_agent: str | None = Field(default=None, max_length=USER_AGENT_MAX_LENGTH)
    session_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    previous_values: dict[str, Any] = Field(default_factory=dict)
    new_values: dict[str, Any] = Field(default_factory=dict)
    security_flags: list[SecurityFlag] = Field(default_factory=list)
    response_time_ms: int | None = None
    data_classification: Literal["public", "internal", "confidential", "restricted"] = "confidential"
    retention_days: int = Field(default=AUDIT_RETENTION_DAYS, ge=1)
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime | None = None

    class Settings:
        name = "audit_logs"
        indexes = [
            IndexModel([("created_at", -1)], name="idx_created_at"),
            IndexModel([("actor_id", 1), ("created_at", -1)], name="idx_actor_created"),
            IndexModel([("action", 1), ("created_at", -1)], name="idx_action_created"),
            IndexModel([("resource_type", 1), ("resource_id", 1), ("created_at", -1)], name="idx_resource_created"),
            IndexModel([("outcome", 1), ("created_at", -1)], name="idx_outcome_created"),
            IndexModel([("security_flags.severity", 1), ("created_at", -1)], name="idx_flag_severity"),
            # 到期自动清理，expires_at 按条目自身的 retention_days 计算
            IndexModel([("expires_at", 1)], name="ttl_expires_at", expireAfterSeconds=0),
        ]


def compute_expiry(created_at: datetime, retention_days: int) -> datetime:
    return as_utc(created_at) + timedelta(days=max(retention_days, 1))


def is_recent(entry: AuditLog, now: datetime) -> bool:
    return as_utc(entry.created_at) > as_utc(now) - timedelta(hours=24)


def has_high_priority_flags(entry: AuditLog) -> bool:
    return any(flag.severity in {"high", "critical"} for flag in entry.security_flags)
