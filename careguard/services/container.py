"""服务装配：把仓储注入各个服务，进程内共享一份。"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from careguard.config import PERMISSION_CACHE_TTL_SECONDS
from careguard.models.permission import utc_now
from careguard.repositories.audit_repository import AuditLogRepository
from careguard.repositories.grant_repository import AssignmentRepository, MentorAuthorizationRepository
from careguard.repositories.permission_repository import PermissionRepository
from careguard.repositories.profile_repository import ProfileRepository
from careguard.services.assignment_service import AssignmentService
from careguard.services.audit_service import AuditTrail
from careguard.services.authorization_service import AuthorizationEngine
from careguard.services.mentor_service import MentorService
from careguard.services.permission_cache import PermissionCache
from careguard.services.permission_service import PermissionRegistry
from careguard.services.scope_service import ScopeResolver
from careguard.services.special_access_service import SpecialAccessResolver


@dataclass
class AccessServices:
    registry: PermissionRegistry
    audit: AuditTrail
    scope: ScopeResolver
    special_access: SpecialAccessResolver
    engine: AuthorizationEngine
    assignments: AssignmentService
    mentors: MentorService


def build_services(
    *,
    permissions: object | None = None,
    profiles: object | None = None,
    assignments: object | None = None,
    authorizations: object | None = None,
    audit_logs: object | None = None,
    cache: PermissionCache | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> AccessServices:
    """未传入的仓储使用 Beanie 实现。"""

    profiles = profiles or ProfileRepository()
    assignments = assignments or AssignmentRepository()
    authorizations = authorizations or MentorAuthorizationRepository()
    if cache is None and PERMISSION_CACHE_TTL_SECONDS > 0 and permissions is None:
        cache = PermissionCache()

    registry = PermissionRegistry(permissions or PermissionRepository(), cache)
    audit = AuditTrail(audit_logs or AuditLogRepository(), clock=clock)
    special_access = SpecialAccessResolver(profiles, assignments, authorizations, clock=clock)
    return AccessServices(
        registry=registry,
        audit=audit,
        scope=ScopeResolver(assignments, authorizations, clock=clock),
        special_access=special_access,
        engine=AuthorizationEngine(registry, special_access, audit),
        assignments=AssignmentService(assignments, profiles, audit, clock=clock),
        mentors=MentorService(authorizations, profiles, audit, clock=clock),
    )


_services: AccessServices | None = None


def get_services() -> AccessServices:
    global _services
    if _services is None:
        _services = build_services()
    return _services


def set_services(services: AccessServices | None) -> None:
    """替换进程级服务实例，None 表示下次按默认方式重建。"""

    global _services
    _services = services
