"""审计轨迹服务。

写入是尽力而为的：``record`` 以 asyncio 任务提交，失败只记录本地日志，
绝不让被审计的主操作失败。查询只读，存储异常照常向上抛出。
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable
from zoneinfo import ZoneInfo

from careguard.config import (
    AUDIT_BUSINESS_HOUR_END,
    AUDIT_BUSINESS_HOUR_START,
    AUDIT_RETENTION_DAYS,
    LOCAL_TIMEZONE,
)
from careguard.models import AuditLog, SecurityFlag
from careguard.models.audit_log import (
    IDENTIFIER_MAX_LENGTH,
    REDACTED,
    USER_AGENT_MAX_LENGTH,
    compute_expiry,
    utc_now,
)
from careguard.models.schedule import as_utc

logger = logging.getLogger(__name__)

SENSITIVE_KEY_PATTERN = re.compile(r"password|token|secret|key|ssn|credit_card", re.IGNORECASE)


@dataclass
class AuditEvent:
    actor_id: str
    action: str
    resource_type: str | None = None
    resource_id: str | None = None
    outcome: str = "success"
    ip_address: str | None = None
    user_agent: str | None = None
    session_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    previous_values: dict[str, Any] = field(default_factory=dict)
    new_values: dict[str, Any] = field(default_factory=dict)
    security_flags: list[SecurityFlag] = field(default_factory=list)
    response_time_ms: int | None = None
    data_classification: str = "confidential"


@dataclass(frozen=True)
class RequestMeta:
    """随审计条目记录的请求上下文。"""

    ip_address: str | None = None
    user_agent: str | None = None
    session_id: str | None = None
    endpoint: str | None = None
    method: str | None = None

    def audit_fields(self) -> dict[str, Any]:
        return {"ip_address": self.ip_address, "user_agent": self.user_agent, "session_id": self.session_id}

    def audit_details(self) -> dict[str, Any]:
        return {key: value for key, value in (("endpoint", self.endpoint), ("method", self.method)) if value}


def redact(value: Any) -> Any:
    """递归替换敏感键的值，键名大小写不敏感地包含敏感词即命中。"""

    if isinstance(value, dict):
        return {
            key: REDACTED if SENSITIVE_KEY_PATTERN.search(str(key)) else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


def detect_security_flags(
    action: str,
    local_time: datetime,
    *,
    business_start: int = AUDIT_BUSINESS_HOUR_START,
    business_end: int = AUDIT_BUSINESS_HOUR_END,
) -> list[SecurityFlag]:
    flags: list[SecurityFlag] = []
    hour = local_time.hour
    if hour < business_start or hour > business_end:
        flags.append(
            SecurityFlag(
                type="unusual_time",
                severity="medium",
                description=f"非常规时段访问: {hour:02d}:00",
                detected_at=as_utc(local_time),
            )
        )
    if action == "login_failed":
        flags.append(
            SecurityFlag(
                type="multiple_failed_attempts",
                severity="high",
                description="登录失败",
                detected_at=as_utc(local_time),
            )
        )
    return flags


def _time_range(start: datetime | None, end: datetime | None) -> dict[str, datetime]:
    bounds: dict[str, datetime] = {}
    if start is not None:
        bounds["$gte"] = start
    if end is not None:
        bounds["$lte"] = end
    return bounds


def build_actor_query(
    actor_id: str,
    *,
    action: str | None = None,
    resource_type: str | None = None,
    outcome: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict[str, Any]:
    query: dict[str, Any] = {"actor_id": actor_id}
    if action:
        query["action"] = action
    if resource_type:
        query["resource_type"] = resource_type
    if outcome:
        query["outcome"] = outcome
    if bounds := _time_range(start, end):
        query["created_at"] = bounds
    return query


def build_resource_query(
    resource_type: str,
    resource_id: str,
    *,
    action: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict[str, Any]:
    query: dict[str, Any] = {"resource_type": resource_type, "resource_id": resource_id}
    if action:
        query["action"] = action
    if bounds := _time_range(start, end):
        query["created_at"] = bounds
    return query


def build_incident_query(
    *,
    severity: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict[str, Any]:
    query: dict[str, Any] = {"security_flags.0": {"$exists": True}}
    if severity:
        query["security_flags.severity"] = severity
    if bounds := _time_range(start, end):
        query["created_at"] = bounds
    return query


def build_activity_pipeline(actor_id: str, since: datetime) -> list[dict[str, Any]]:
    """按日期、再按动作分组统计次数与成功次数，日期升序。"""

    return [
        {"$match": {"actor_id": actor_id, "created_at": {"$gte": since}}},
        {
            "$group": {
                "_id": {
                    "date": {"$dateToString": {"format": "%Y-%m-%d", "date": "$created_at"}},
                    "action": "$action",
                },
                "count": {"$sum": 1},
                "success_count": {"$sum": {"$cond": [{"$eq": ["$outcome", "success"]}, 1, 0]}},
            }
        },
        {
            "$group": {
                "_id": "$_id.date",
                "actions": {
                    "$push": {"action": "$_id.action", "count": "$count", "success_count": "$success_count"}
                },
                "total_actions": {"$sum": "$count"},
                "total_success": {"$sum": "$success_count"},
            }
        },
        {"$sort": {"_id": 1}},
        {"$project": {"_id": 0, "date": "$_id", "actions": 1, "total_actions": 1, "total_success": 1}},
    ]


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _clip(value: str | None, limit: int) -> str | None:
    """截断请求方可控的字段，超长不应导致条目校验失败。"""

    if value is None or len(value) <= limit:
        return value
    return value[:limit]


class AuditTrail:
    def __init__(
        self,
        repository: Any,
        *,
        clock: Callable[[], datetime] = utc_now,
        timezone_name: str = LOCAL_TIMEZONE,
        retention_days: int = AUDIT_RETENTION_DAYS,
    ) -> None:
        self.repository = repository
        self.clock = clock
        self.tz = ZoneInfo(timezone_name)
        self.retention_days = retention_days
        self._pending: set[asyncio.Task[AuditLog | None]] = set()

    def build_entry(self, event: AuditEvent) -> AuditLog:
        """脱敏并附加安全标记，得到可持久化的审计条目。"""

        created_at = as_utc(self.clock())
        flags = [*event.security_flags, *detect_security_flags(event.action, created_at.astimezone(self.tz))]
        return AuditLog.model_validate(
            {
                "actor_id": _clip(event.actor_id, IDENTIFIER_MAX_LENGTH),
                "action": _clip(event.action, IDENTIFIER_MAX_LENGTH),
                "resource_type": event.resource_type,
                "resource_id": event.resource_id,
                "outcome": event.outcome,
                "ip_address": event.ip_address,
                "user_agent": _clip(event.user_agent, USER_AGENT_MAX_LENGTH),
                "session_id": event.session_id,
                "details": redact(event.details),
                "previous_values": redact(event.previous_values),
                "new_values": redact(event.new_values),
                "security_flags": flags,
                "response_time_ms": event.response_time_ms,
                "data_classification": event.data_classification,
                "retention_days": self.retention_days,
                "created_at": created_at,
                "expires_at": compute_expiry(created_at, self.retention_days),
            }
        )

    async def record_now(self, event: AuditEvent) -> AuditLog | None:
        """等待写入完成，但从不抛出。"""

        try:
            return await self.repository.insert(self.build_entry(event))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("审计日志写入失败: action=%s actor=%s: %s", event.action, event.actor_id, exc, exc_info=True)
            return None

    def record(self, event: AuditEvent) -> asyncio.Task[AuditLog | None]:
        """提交后台写入任务，调用方无需等待。"""

        task = asyncio.get_running_loop().create_task(self.record_now(event))
        self._pending.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[AuditLog | None]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.warning("审计写入任务被取消")
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("审计写入任务异常结束: %s", exc)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """等待所有未完成的审计写入。"""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def log_event(
        self,
        actor_id: Any,
        action: str,
        resource_type: str | None = None,
        resource_id: Any = None,
        **fields: Any,
    ) -> asyncio.Task[AuditLog | None]:
        return self.record(
            AuditEvent(
                actor_id=str(actor_id),
                action=action,
                resource_type=resource_type,
                resource_id=_optional_str(resource_id),
                **fields,
            )
        )

    def log_security_event(
        self,
        actor_id: Any,
        flag_type: str,
        severity: str,
        description: str,
        **fields: Any,
    ) -> asyncio.Task[AuditLog | None]:
        flag = SecurityFlag(type=flag_type, severity=severity, description=description, detected_at=self.clock())
        return self.log_event(actor_id, "security_event", "system", security_flags=[flag], **fields)

    def log_data_access(
        self,
        actor_id: Any,
        resource_type: str,
        resource_id: Any,
        action: str = "view",
        **fields: Any,
    ) -> asyncio.Task[AuditLog | None]:
        return self.log_event(actor_id, f"{resource_type}_{action}", resource_type, resource_id, **fields)

    def log_compliance_event(
        self,
        actor_id: Any,
        compliance_type: str,
        description: str,
        details: dict[str, Any] | None = None,
        **fields: Any,
    ) -> asyncio.Task[AuditLog | None]:
        payload = {"compliance_type": compliance_type, "description": description, **(details or {})}
        return self.log_event(actor_id, "compliance_event", "system", details=payload, **fields)

    async def find_by_actor(self, actor_id: str, *, limit: int = 100, offset: int = 0, **filters: Any) -> list[AuditLog]:
        return await self.repository.find(build_actor_query(actor_id, **filters), limit=limit, offset=offset)

    async def find_by_resource(
        self,
        resource_type: str,
        resource_id: str,
        *,
        limit: int = 100,
        **filters: Any,
    ) -> list[AuditLog]:
        return await self.repository.find(build_resource_query(resource_type, resource_id, **filters), limit=limit)

    async def find_security_incidents(self, *, limit: int = 50, **filters: Any) -> list[AuditLog]:
        return await self.repository.find(build_incident_query(**filters), limit=limit)

    async def activity_summary(self, actor_id: str, days: int = 30) -> list[dict[str, Any]]:
        since = as_utc(self.clock()) - timedelta(days=max(days, 1))
        return await self.repository.aggregate(build_activity_pipeline(actor_id, since))

    async def purge_expired(self, now: datetime | None = None) -> int:
        removed = await self.repository.delete_expired(as_utc(now or self.clock()))
        logger.info("已清理过期审计日志: %s 条", removed)
        return removed
