"""请求级授权决策。

组合角色权限表与实例级特殊访问，每个决策（允许或拒绝）都写入审计轨迹。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Iterable

from beanie import PydanticObjectId

from careguard.exceptions import OwnershipRequired, PermissionDenied
from careguard.services.audit_service import AuditEvent, AuditTrail, RequestMeta
from careguard.services.identity import Caller, require_caller
from careguard.services.permission_service import PermissionRegistry
from careguard.services.special_access_service import SpecialAccessResolver

logger = logging.getLogger(__name__)

OWNERSHIP_ACTIONS = frozenset({"read", "update", "delete"})


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    resource: str
    action: str
    reason: str | None = None
    missing: tuple[tuple[str, str], ...] = ()
    code: str | None = None
    role: str | None = None

    def __bool__(self) -> bool:
        return self.allowed

    def raise_for_denial(self) -> "AccessDecision":
        """拒绝时抛出对应异常，允许时原样返回。"""

        if self.allowed:
            return self
        if self.code == OwnershipRequired.code:
            raise OwnershipRequired(resource=self.resource, action=self.action)
        raise PermissionDenied(
            resource=self.resource or None,
            action=self.action or None,
            role=self.role,
            missing=list(self.missing),
        )


def _allow(resource: str, action: str, role: str) -> AccessDecision:
    return AccessDecision(allowed=True, resource=resource, action=action, role=role)


def _deny_permission(
    resource: str,
    action: str,
    role: str,
    missing: Iterable[tuple[str, str]] = (),
) -> AccessDecision:
    return AccessDecision(
        allowed=False,
        resource=resource,
        action=action,
        reason="当前角色没有执行该操作的权限",
        missing=tuple(missing),
        code=PermissionDenied.code,
        role=role,
    )


def _pairs_payload(pairs: Iterable[tuple[str, str]]) -> list[dict[str, str]]:
    return [{"resource": resource, "action": action} for resource, action in pairs]


class AuthorizationEngine:
    def __init__(
        self,
        registry: PermissionRegistry,
        special_access: SpecialAccessResolver,
        audit: AuditTrail | None = None,
    ) -> None:
        self.registry = registry
        self.special_access = special_access
        self.audit = audit

    async def check(
        self,
        caller: Caller | None,
        resource: str,
        action: str,
        *,
        meta: RequestMeta | None = None,
    ) -> AccessDecision:
        caller = require_caller(caller)
        allowed = await self._guarded(caller, resource, action, meta, self._has(caller, resource, action))
        if not allowed:
            self._emit_denied(caller, resource, meta, {"required_action": action, "attempted_resource": resource})
            return _deny_permission(resource, action, caller.role)

        self._emit(caller, f"{action}_authorized", resource, "success", meta, {"authorized_action": action, "resource": resource})
        return _allow(resource, action, caller.role)

    async def check_any(
        self,
        caller: Caller | None,
        pairs: list[tuple[str, str]],
        *,
        meta: RequestMeta | None = None,
    ) -> AccessDecision:
        """任意一个权限满足即允许，命中第一个后不再继续。"""

        caller = require_caller(caller)
        for resource, action in pairs:
            if await self._guarded(caller, resource, action, meta, self._has(caller, resource, action)):
                self._emit(
                    caller,
                    f"{action}_authorized",
                    resource,
                    "success",
                    meta,
                    {"authorized_action": action, "resource": resource},
                )
                return _allow(resource, action, caller.role)

        self._emit_denied(caller, "system", meta, {"required_permissions": _pairs_payload(pairs)})
        return _deny_permission("", "", caller.role, missing=pairs)

    async def check_all(
        self,
        caller: Caller | None,
        pairs: list[tuple[str, str]],
        *,
        meta: RequestMeta | None = None,
    ) -> AccessDecision:
        """所有权限都需满足，拒绝时报告全部缺失项。"""

        caller = require_caller(caller)
        missing: list[tuple[str, str]] = []
        for resource, action in pairs:
            if not await self._guarded(caller, resource, action, meta, self._has(caller, resource, action)):
                missing.append((resource, action))

        if missing:
            self._emit_denied(
                caller,
                "system",
                meta,
                {"required_permissions": _pairs_payload(pairs), "missing_permissions": _pairs_payload(missing)},
            )
            return _deny_permission("", "", caller.role, missing=missing)

        self._emit(caller, "multiple_actions_authorized", "system", "success", meta, {"authorized_permissions": _pairs_payload(pairs)})
        return _allow("", "", caller.role)

    async def check_resource(
        self,
        caller: Caller | None,
        resource: str,
        action: str,
        owner_id: PydanticObjectId | None,
        *,
        meta: RequestMeta | None = None,
    ) -> AccessDecision:
        """角色权限通过后，对读写删动作继续校验实例归属。"""

        caller = require_caller(caller)
        if not await self._guarded(caller, resource, action, meta, self._has(caller, resource, action)):
            self._emit_denied(caller, resource, meta, {"required_action": action, "attempted_resource": resource})
            return _deny_permission(resource, action, caller.role)

        special_access = False
        needs_ownership = (
            not caller.is_super_admin
            and action in OWNERSHIP_ACTIONS
            and owner_id is not None
            and owner_id != caller.id
        )
        if needs_ownership:
            special_access = await self._guarded(
                caller,
                resource,
                action,
                meta,
                self.special_access.can_access_owned(caller, resource, action, owner_id),
            )
            if not special_access:
                self._emit(
                    caller,
                    "resource_access_denied",
                    resource,
                    "failure",
                    meta,
                    {"required_action": action, "user_role": caller.role, "owner_id": str(owner_id)},
                    resource_id=owner_id,
                )
                return AccessDecision(
                    allowed=False,
                    resource=resource,
                    action=action,
                    reason="无权访问该资源，需要资源归属或特殊授权",
                    code=OwnershipRequired.code,
                    role=caller.role,
                )

        self._emit(
            caller,
            f"{action}_authorized",
            resource,
            "success",
            meta,
            {"authorized_action": action, "resource": resource, "special_access": special_access},
            resource_id=owner_id,
        )
        return _allow(resource, action, caller.role)

    async def _has(self, caller: Caller, resource: str, action: str) -> bool:
        if caller.is_super_admin:
            return True
        return await self.registry.has_permission(caller.role, resource, action)

    async def _guarded(self, caller: Caller, resource: str, action: str, meta: RequestMeta | None, pending: Any) -> bool:
        """执行一次判定，系统错误先记审计再原样抛出。"""

        try:
            return bool(await pending)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("授权判定失败: role=%s %s:%s: %s", caller.role, resource, action, exc)
            self._emit(
                caller,
                "authorization_error",
                "system",
                "failure",
                meta,
                {"error": str(exc), "resource": resource, "action": action},
            )
            raise

    def _emit_denied(self, caller: Caller, resource_type: str, meta: RequestMeta | None, details: dict[str, Any]) -> None:
        self._emit(caller, "permission_denied", resource_type, "failure", meta, {**details, "user_role": caller.role})

    def _emit(
        self,
        caller: Caller,
        action: str,
        resource_type: str,
        outcome: str,
        meta: RequestMeta | None,
        details: dict[str, Any],
        *,
        resource_id: Any = None,
    ) -> None:
        if self.audit is None:
            return
        meta = meta or RequestMeta()
        self.audit.record(
            AuditEvent(
                actor_id=str(caller.id),
                action=action,
                resource_type=resource_type,
                resource_id=None if resource_id is None else str(resource_id),
                outcome=outcome,
                details={**details, **meta.audit_details()},
                **meta.audit_fields(),
            )
        )
