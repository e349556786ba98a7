"""FastAPI 应用入口。"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from .api.errors import register_exception_handlers
from .api.routers.assignments import router as assignments_router
from .api.routers.audit import router as audit_router
from .api.routers.mentors import router as mentors_router
from .api.routers.scope import router as scope_router
from .config import APP_NAME, SEED_DEFAULT_PERMISSIONS
from .db import close_db, init_db
from .middleware.caller_context import CallerContextMiddleware
from .services.container import get_services
from .services.permission_cache import close_cache_client

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """启动时初始化存储并同步默认权限，退出时等待审计写入后释放连接。"""

    await init_db()
    services = get_services()
    if SEED_DEFAULT_PERMISSIONS:
        await services.registry.ensure_default_permissions()
    try:
        yield
    finally:
        await services.audit.drain()
        await close_cache_client()
        await close_db()
        logger.info("应用已关闭")


def create_app() -> FastAPI:
    application = FastAPI(title=APP_NAME, lifespan=lifespan)
    application.add_middleware(CallerContextMiddleware)
    register_exception_handlers(application)
    application.include_router(assignments_router)
    application.include_router(mentors_router)
    application.include_router(audit_router)
    application.include_router(scope_router)

    @application.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    return application


app = create_app()
