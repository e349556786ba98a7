"""应用配置（通过 .env 覆盖）。"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# 优先加载项目根目录下的 .env
BASE_DIR = Path(__file__).resolve().parents[1]
load_dotenv(BASE_DIR / ".env")


def _to_int(value: str | None, default: int, *, minimum: int = 0) -> int:
    """安全解析整数环境变量。"""

    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= minimum else default


def _to_bool(value: str | None, default: bool = False) -> bool:
    """安全解析布尔环境变量。"""

    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "on", "yes"}


APP_NAME = os.getenv("APP_NAME", "CareGuard")
APP_ENV = os.getenv("APP_ENV", "dev")

MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "careguard")

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

APP_PORT = _to_int(os.getenv("APP_PORT"), 8000, minimum=1)
UVICORN_HOST = os.getenv("UVICORN_HOST", "0.0.0.0")
UVICORN_LOG_LEVEL = os.getenv("UVICORN_LOG_LEVEL", "info")
UVICORN_RELOAD = _to_bool(os.getenv("UVICORN_RELOAD"), default=False)

# 权限查询读穿缓存，0 表示关闭
PERMISSION_CACHE_TTL_SECONDS = _to_int(os.getenv("PERMISSION_CACHE_TTL_SECONDS"), 300, minimum=0)
SEED_DEFAULT_PERMISSIONS = _to_bool(os.getenv("SEED_DEFAULT_PERMISSIONS"), default=True)

# 审计日志保留约 7 年
AUDIT_RETENTION_DAYS = _to_int(os.getenv("AUDIT_RETENTION_DAYS"), 2555, minimum=1)
AUDIT_BUSINESS_HOUR_START = _to_int(os.getenv("AUDIT_BUSINESS_HOUR_START"), 6, minimum=0)
AUDIT_BUSINESS_HOUR_END = _to_int(os.getenv("AUDIT_BUSINESS_HOUR_END"), 22, minimum=0)
# 异常时段检测与导师访问时段均按此时区计算
LOCAL_TIMEZONE = os.getenv("LOCAL_TIMEZONE", "UTC")

DEFAULT_ORG_MAX_PATIENTS = _to_int(os.getenv("DEFAULT_ORG_MAX_PATIENTS"), 100, minimum=1)
MENTOR_ACCESS_LOG_LIMIT = _to_int(os.getenv("MENTOR_ACCESS_LOG_LIMIT"), 100, minimum=1)
