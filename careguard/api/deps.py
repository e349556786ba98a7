"""路由依赖：身份、权限校验与范围过滤。"""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from fastapi import Depends, Request

from careguard.services.audit_service import RequestMeta
from careguard.services.container import AccessServices, get_services
from careguard.services.identity import Caller, require_caller
from careguard.services.scope_service import ScopeFilter


def services_dep() -> AccessServices:
    return get_services()


def request_meta(request: Request) -> RequestMeta:
    client = request.client
    return RequestMeta(
        ip_address=client.host if client else None,
        user_agent=request.headers.get("user-agent"),
        session_id=request.headers.get("x-session-id"),
        endpoint=request.url.path,
        method=request.method,
    )


def get_caller(request: Request) -> Caller:
    """读取上游已解析的调用方，缺失时抛出 AuthenticationRequired。"""

    return require_caller(getattr(request.state, "caller", None))


def require_permission(resource: str, action: str) -> Callable[..., Awaitable[Caller]]:
    async def dependency(
        request: Request,
        caller: Caller = Depends(get_caller),
        services: AccessServices = Depends(services_dep),
    ) -> Caller:
        decision = await services.engine.check(caller, resource, action, meta=request_meta(request))
        decision.raise_for_denial()
        return caller

    return dependency


def require_any(pairs: list[tuple[str, str]]) -> Callable[..., Awaitable[Caller]]:
    async def dependency(
        request: Request,
        caller: Caller = Depends(get_caller),
        services: AccessServices = Depends(services_dep),
    ) -> Caller:
        decision = await services.engine.check_any(caller, pairs, meta=request_meta(request))
        decision.raise_for_denial()
        return caller

    return dependency


def require_all(pairs: list[tuple[str, str]]) -> Callable[..., Awaitable[Caller]]:
    async def dependency(
        request: Request,
        caller: Caller = Depends(get_caller),
        services: AccessServices = Depends(services_dep),
    ) -> Caller:
        decision = await services.engine.check_all(caller, pairs, meta=request_meta(request))
        decision.raise_for_denial()
        return caller

    return dependency


def scope_for(resource_type: str) -> Callable[..., Awaitable[ScopeFilter]]:
    async def dependency(
        caller: Caller = Depends(get_caller),
        services: AccessServices = Depends(services_dep),
    ) -> ScopeFilter:
        return await services.scope.scope(caller, resource_type)

    return dependency


def dump(document: Any) -> dict[str, Any]:
    return document.model_dump(mode="json")
