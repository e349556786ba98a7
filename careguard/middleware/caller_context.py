"""调用方身份注入中间件。

认证由上游身份网关完成，这里只把网关转发的身份头解析为 Caller 放入 request.state。
"""

from __future__ import annotations

import logging

from beanie import PydanticObjectId
from bson.errors import InvalidId
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from careguard.models.permission import PROFILE_ROLES
from careguard.services.identity import Caller

logger = logging.getLogger(__name__)

CALLER_ID_HEADER = "X-Caller-Id"
CALLER_ROLE_HEADER = "X-Caller-Role"
CALLER_ORG_HEADER = "X-Caller-Org"


def _object_id(value: str | None) -> PydanticObjectId | None:
    if not value:
        return None
    try:
        return PydanticObjectId(value.strip())
    except (InvalidId, TypeError):
        return None


def parse_caller(request: Request) -> Caller | None:
    caller_id = _object_id(request.headers.get(CALLER_ID_HEADER))
    role = (request.headers.get(CALLER_ROLE_HEADER) or "").strip()
    if caller_id is None or role not in PROFILE_ROLES:
        return None
    return Caller(id=caller_id, role=role, organization_id=_object_id(request.headers.get(CALLER_ORG_HEADER)))


class CallerContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request.state.caller = parse_caller(request)
        if request.state.caller is None and request.headers.get(CALLER_ID_HEADER):
            logger.warning("身份头无效，按未认证处理: path=%s", request.url.path)
        return await call_next(request)
