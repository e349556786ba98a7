"""访问控制引擎异常体系。

调用方（路由层、RPC 层）按 ``code`` / ``status_code`` 翻译成自己的协议；
拒绝类异常只携带被拒绝的资源与动作，不暴露调用方无权知道的数据。
"""

from __future__ import annotations

from typing import Any


class AccessError(Exception):
    """引擎异常基类。"""

    code = "ACCESS_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = {key: value for key, value in context.items() if value is not None}

    def to_payload(self) -> dict[str, Any]:
        """序列化为对外可见的错误载荷。"""

        return {"error": self.message, "code": self.code, **self.public_context()}

    def public_context(self) -> dict[str, Any]:
        return dict(self.context)


class AuthenticationRequired(AccessError):
    code = "AUTH_REQUIRED"
    status_code = 401


class PermissionDenied(AccessError):
    """角色权限表中没有匹配条目。"""

    code = "PERMISSION_DENIED"
    status_code = 403

    def __init__(
        self,
        message: str = "当前角色没有执行该操作的权限",
        *,
        resource: str | None = None,
        action: str | None = None,
        role: str | None = None,
        missing: list[tuple[str, str]] | None = None,
    ) -> None:
        super().__init__(message, resource=resource, action=action, role=role)
        self.resource = resource
        self.action = action
        self.role = role
        self.missing = list(missing or [])

    def public_context(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.resource is not None:
            payload["required"] = {"resource": self.resource, "action": self.action}
        if self.missing:
            payload["missing"] = [{"resource": r, "action": a} for r, a in self.missing]
        if self.role is not None:
            payload["current"] = self.role
        return payload


class OwnershipRequired(AccessError):
    """角色权限通过，但实例级归属校验失败。"""

    code = "RESOURCE_OWNERSHIP_REQUIRED"
    status_code = 403

    def __init__(
        self,
        message: str = "无权访问该资源，需要资源归属或特殊授权",
        *,
        resource: str | None = None,
        action: str | None = None,
    ) -> None:
        super().__init__(message, resource=resource, action=action)
        self.resource = resource
        self.action = action


class NotFound(AccessError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, message: str, *, entity: str | None = None) -> None:
        super().__init__(message, entity=entity)
        self.entity = entity


class ValidationFailed(AccessError):
    code = "VALIDATION_FAILED"
    status_code = 400

    def __init__(self, message: str, *, field: str | None = None, constraint: str | None = None) -> None:
        super().__init__(message, field=field, constraint=constraint)
        self.field = field
        self.constraint = constraint


class StoreUnavailable(AccessError):
    """后端存储不可用，调用方可重试。"""

    code = "STORE_UNAVAILABLE"
    status_code = 503
    retryable = True


class ConfigurationError(AccessError):
    """配置或程序缺陷，例如未知角色进入范围解析。"""

    code = "CONFIGURATION_ERROR"
    status_code = 500
