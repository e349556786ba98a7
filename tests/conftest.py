"""测试共用的内存仓储与时钟。"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio
from beanie import PydanticObjectId, init_beanie
from mongomock_motor import AsyncMongoMockClient
from redis.exceptions import ConnectionError as RedisConnectionError

from careguard.exceptions import StoreUnavailable
from careguard.models import (
    DOCUMENT_MODELS,
    AuditLog,
    CaretakerAssignment,
    MentorAuthorization,
    Organization,
    Profile,
    RolePermission,
)
from careguard.models.caretaker_assignment import next_metrics
from careguard.models.permission import effective_priority
from careguard.models.schedule import as_utc
from careguard.services.container import build_services

# 周三 10:00 UTC，落在默认业务时段内
DEFAULT_NOW = datetime(2024, 5, 15, 10, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime = DEFAULT_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class FakeProfileRepository:
    def __init__(self) -> None:
        self.profiles: dict[PydanticObjectId, Profile] = {}
        self.organizations: dict[PydanticObjectId, Organization] = {}

    def add_organization(self, name: str = "测试机构", **fields: Any) -> Organization:
        organization = Organization.model_validate({"id": PydanticObjectId(), "name": name, **fields})
        self.organizations[organization.id] = organization
        return organization

    def add_profile(self, role: str, organization_id: PydanticObjectId | None = None, **fields: Any) -> Profile:
        profile_id = PydanticObjectId()
        payload = {
            "id": profile_id,
            "external_uid": f"uid-{profile_id}",
            "full_name": fields.pop("full_name", f"{role}-{str(profile_id)[-4:]}"),
            "role": role,
            "organization_id": organization_id,
            **fields,
        }
        profile = Profile.model_validate(payload)
        self.profiles[profile.id] = profile
        return profile

    async def get_profile(self, profile_id: PydanticObjectId) -> Profile | None:
        return self.profiles.get(profile_id)

    async def get_organization(self, organization_id: PydanticObjectId) -> Organization | None:
        return self.organizations.get(organization_id)


class FakePermissionRepository:
    def __init__(self) -> None:
        self.rows: dict[tuple[str, str, str], RolePermission] = {}
        self.lookups = 0
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise StoreUnavailable("存储暂不可用，请稍后重试")

    async def find_active(self, role: str, resource: str, action: str) -> RolePermission | None:
        self._check()
        self.lookups += 1
        row = self.rows.get((role, resource, action))
        if row is None or not row.is_active:
            return None
        return row

    async def distinct_resources(self, role: str) -> list[str]:
        return sorted({row.resource for row in self.rows.values() if row.role == role and row.is_active})

    async def distinct_actions(self, role: str, resource: str) -> list[str]:
        return sorted(
            {
                row.action
                for row in self.rows.values()
                if row.role == role and row.is_active and row.resource in {resource, "*"}
            }
        )

    async def list_active(self, role: str) -> list[RolePermission]:
        rows = [row for row in self.rows.values() if row.role == role and row.is_active]
        return sorted(rows, key=lambda row: (-row.priority, row.resource, row.action))

    async def upsert(
        self,
        role: str,
        resource: str,
        action: str,
        *,
        description: str = "",
        priority: int = 0,
    ) -> RolePermission:
        self._check()
        row = RolePermission.model_validate(
            {
                "id": PydanticObjectId(),
                "role": role,
                "resource": resource,
                "action": action,
                "description": description,
                "is_active": True,
                "priority": effective_priority(resource, action, priority),
            }
        )
        existing = self.rows.get((role, resource, action))
        if existing is not None:
            row = existing.model_copy(
                update={"description": description, "is_active": True, "priority": row.priority}
            )
        self.rows[(role, resource, action)] = row
        return row

    async def set_active(self, role: str, resource: str, action: str, is_active: bool) -> RolePermission | None:
        existing = self.rows.get((role, resource, action))
        if existing is None:
            return None
        row = existing.model_copy(update={"is_active": is_active})
        self.rows[(role, resource, action)] = row
        return row

    async def clear(self) -> int:
        removed = len(self.rows)
        self.rows.clear()
        return removed


def _apply_push(document: Any, push: dict[str, Any] | None) -> dict[str, Any]:
    """按 Mongo $push 语义（含 $each/$slice）计算新的数组字段。"""

    updates: dict[str, Any] = {}
    for key, value in (push or {}).items():
        items = list(getattr(document, key))
        if isinstance(value, dict) and "$each" in value:
            items.extend(value["$each"])
            if "$slice" in value:
                limit = value["$slice"]
                items = items[limit:] if limit < 0 else items[:limit]
        else:
            items.append(value)
        updates[key] = items
    return updates


class _FakeGrantRepository:
    """以 (grantee, patient) 为键的内存分配/授权存储。"""

    model: Any = None
    grantee_field = ""

    def __init__(self) -> None:
        self.items: dict[tuple[PydanticObjectId, PydanticObjectId], Any] = {}
        self.upserts = 0

    async def get(self, grantee_id: PydanticObjectId, patient_id: PydanticObjectId) -> Any:
        return self.items.get((grantee_id, patient_id))

    async def upsert(
        self,
        grantee_id: PydanticObjectId,
        patient_id: PydanticObjectId,
        fields: dict[str, Any],
        defaults: dict[str, Any],
    ) -> Any:
        self.upserts += 1
        key = (grantee_id, patient_id)
        existing = self.items.get(key)
        if existing is not None:
            document = existing.model_copy(update=fields)
        else:
            document = self.model.model_validate(
                {
                    **defaults,
                    **fields,
                    "id": PydanticObjectId(),
                    self.grantee_field: grantee_id,
                    "patient_id": patient_id,
                }
            )
        self.items[key] = document
        return document

    async def update(
        self,
        grantee_id: PydanticObjectId,
        patient_id: PydanticObjectId,
        fields: dict[str, Any],
        push: dict[str, Any] | None = None,
    ) -> Any:
        key = (grantee_id, patient_id)
        existing = self.items.get(key)
        if existing is None:
            return None
        document = existing.model_copy(update={**fields, **_apply_push(existing, push)})
        self.items[key] = document
        return document

    def _list(self, field: str, value: PydanticObjectId, statuses: list[str] | None, limit: int, offset: int) -> list[Any]:
        rows = [item for item in self.items.values() if getattr(item, field) == value]
        if statuses:
            rows = [item for item in rows if item.status in statuses]
        rows.sort(key=lambda item: as_utc(item.updated_at), reverse=True)
        rows = rows[offset:]
        return rows[:limit] if limit else rows

    async def list_by_patient(
        self,
        patient_id: PydanticObjectId,
        statuses: list[str] | None = None,
        *,
        limit: int = 0,
        offset: int = 0,
    ) -> list[Any]:
        return self._list("patient_id", patient_id, statuses, limit, offset)


class FakeAssignmentRepository(_FakeGrantRepository):
    model = CaretakerAssignment
    grantee_field = "caretaker_id"

    async def list_by_caretaker(
        self,
        caretaker_id: PydanticObjectId,
        statuses: list[str] | None = None,
        *,
        limit: int = 0,
        offset: int = 0,
    ) -> list[CaretakerAssignment]:
        return self._list("caretaker_id", caretaker_id, statuses, limit, offset)

    async def record_call(
        self,
        caretaker_id: PydanticObjectId,
        patient_id: PydanticObjectId,
        duration_minutes: float | None,
        now: datetime,
    ) -> CaretakerAssignment | None:
        existing = self.items.get((caretaker_id, patient_id))
        if existing is None:
            return None
        metrics = next_metrics(existing.metrics, duration_minutes, now)
        return await self.update(caretaker_id, patient_id, {"metrics": metrics, "updated_at": now})


class FakeMentorAuthorizationRepository(_FakeGrantRepository):
    model = MentorAuthorization
    grantee_field = "mentor_id"

    async def list_by_mentor(
        self,
        mentor_id: PydanticObjectId,
        statuses: list[str] | None = None,
        *,
        limit: int = 0,
        offset: int = 0,
    ) -> list[MentorAuthorization]:
        return self._list("mentor_id", mentor_id, statuses, limit, offset)


class FakeAuditRepository:
    def __init__(self) -> None:
        self.entries: list[AuditLog] = []
        self.queries: list[dict[str, Any]] = []
        self.pipelines: list[list[dict[str, Any]]] = []
        self.fail = False

    async def insert(self, entry: AuditLog) -> AuditLog:
        if self.fail:
            raise StoreUnavailable("存储暂不可用，请稍后重试")
        self.entries.append(entry)
        return entry

    async def find(self, query: dict[str, Any], *, limit: int = 100, offset: int = 0) -> list[AuditLog]:
        self.queries.append(query)
        # 只比较简单等值条件，操作符条件由查询构造函数的单测覆盖
        plain = {key: value for key, value in query.items() if not isinstance(value, dict) and "." not in key}
        rows = [entry for entry in self.entries if all(getattr(entry, key) == value for key, value in plain.items())]
        if "security_flags.0" in query:
            rows = [entry for entry in rows if entry.security_flags]
        rows.sort(key=lambda entry: as_utc(entry.created_at), reverse=True)
        return rows[offset : offset + limit] if limit else rows[offset:]

    async def aggregate(self, pipeline: list[dict[str, Any]]) -> list[dict[str, Any]]:
        self.pipelines.append(pipeline)
        return []

    async def delete_expired(self, now: datetime) -> int:
        kept = [entry for entry in self.entries if entry.expires_at is None or as_utc(entry.expires_at) > now]
        removed = len(self.entries) - len(kept)
        self.entries = kept
        return removed

    def actions(self) -> list[str]:
        return [entry.action for entry in self.entries]

    def find_action(self, action: str) -> AuditLog:
        matched = [entry for entry in self.entries if entry.action == action]
        assert matched, f"未找到审计动作: {action}, 实际: {self.actions()}"
        return matched[-1]


class FakeRedis:
    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("redis 不可用")

    async def get(self, key: str) -> str | None:
        self._check()
        return self.store.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._check()
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def scan_iter(self, match: str | None = None):
        self._check()
        prefix = (match or "").rstrip("*")
        for key in list(self.store):
            if key.startswith(prefix):
                yield key

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest_asyncio.fixture
async def bound_documents():
    """把 Document 绑定到内存 Mongo；Beanie 构造文档前要求集合已初始化。"""

    client = AsyncMongoMockClient()
    await init_beanie(database=client["careguard_unit"], document_models=list(DOCUMENT_MODELS))
    return client


@pytest.fixture
def profiles(bound_documents) -> FakeProfileRepository:
    return FakeProfileRepository()


@pytest.fixture
def permission_repo(bound_documents) -> FakePermissionRepository:
    return FakePermissionRepository()


@pytest.fixture
def assignment_repo(bound_documents) -> FakeAssignmentRepository:
    return FakeAssignmentRepository()


@pytest.fixture
def mentor_repo(bound_documents) -> FakeMentorAuthorizationRepository:
    return FakeMentorAuthorizationRepository()


@pytest.fixture
def audit_repo(bound_documents) -> FakeAuditRepository:
    return FakeAuditRepository()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def services(clock, profiles, permission_repo, assignment_repo, mentor_repo, audit_repo):
    """使用内存仓储装配的完整服务集合（不启用缓存）。"""

    return build_services(
        permissions=permission_repo,
        profiles=profiles,
        assignments=assignment_repo,
        authorizations=mentor_repo,
        audit_logs=audit_repo,
        clock=clock,
    )


@pytest.fixture
def org_world(profiles):
    """两家机构，各自带管理员、护理员、患者与导师。"""

    first = profiles.add_organization("第一机构")
    second = profiles.add_organization("第二机构")
    world: dict[str, Any] = {"org1": first, "org2": second}
    for suffix, organization in (("1", first), ("2", second)):
        for role in ("org_admin", "care_manager", "caretaker", "patient", "patient_mentor"):
            world[f"{role}{suffix}"] = profiles.add_profile(role, organization.id)
    world["super_admin"] = profiles.add_profile("super_admin")
    return world
