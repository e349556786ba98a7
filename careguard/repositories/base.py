"""仓储层公共工具。"""

from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar

from pydantic import BaseModel
from pymongo.errors import PyMongoError

from careguard.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


def guarded(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """把驱动层异常统一转换为可重试的 StoreUnavailable。"""

    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await func(*args, **kwargs)
        except PyMongoError as exc:
            logger.warning("存储操作失败: %s: %s", func.__qualname__, exc)
            raise StoreUnavailable("存储暂不可用，请稍后重试") from exc

    return wrapper


def to_mongo(value: Any) -> Any:
    """将 pydantic 值转换为可直接写入 Mongo 的结构。"""

    if isinstance(value, BaseModel):
        return value.model_dump(mode="python")
    if isinstance(value, dict):
        return {key: to_mongo(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_mongo(item) for item in value]
    return value


def insert_defaults(defaults: dict[str, Any], *, exclude: set[str]) -> dict[str, Any]:
    """构造 $setOnInsert 载荷，排除 $set 与过滤条件已覆盖的字段。"""

    return {key: to_mongo(value) for key, value in defaults.items() if key not in exclude}
