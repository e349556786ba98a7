"""权限查询的 Redis 读穿缓存。

键为 ``careguard:perm:<role>:<resource>:<action>``，值 "1"/"0"。
缓存故障只降级为直接查库，不影响判定结果。
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from careguard.config import PERMISSION_CACHE_TTL_SECONDS, REDIS_URL

logger = logging.getLogger(__name__)

KEY_PREFIX = "careguard:perm"

_client: Any = None
_client_lock = asyncio.Lock()


async def get_cache_client() -> Any:
    """进程级 Redis 客户端（懒加载单例）。"""

    global _client
    if _client is not None:
        return _client

    async with _client_lock:
        if _client is None:
            _client = Redis.from_url(REDIS_URL, encoding="utf-8", decode_responses=True)
    return _client


async def close_cache_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
    _client = None


def cache_key(role: str, resource: str, action: str) -> str:
    return f"{KEY_PREFIX}:{role}:{resource}:{action}"


class PermissionCache:
    def __init__(
        self,
        client_factory: Callable[[], Awaitable[Any]] = get_cache_client,
        *,
        ttl_seconds: int = PERMISSION_CACHE_TTL_SECONDS,
    ) -> None:
        self._client_factory = client_factory
        self.ttl_seconds = ttl_seconds

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    async def get(self, role: str, resource: str, action: str) -> bool | None:
        if not self.enabled:
            return None
        try:
            client = await self._client_factory()
            value = await client.get(cache_key(role, resource, action))
        except RedisError as exc:
            logger.warning("权限缓存读取失败，回退到存储查询: %s", exc)
            return None
        if value is None:
            return None
        return value == "1"

    async def set(self, role: str, resource: str, action: str, allowed: bool) -> None:
        if not self.enabled:
            return
        try:
            client = await self._client_factory()
            await client.set(cache_key(role, resource, action), "1" if allowed else "0", ex=self.ttl_seconds)
        except RedisError as exc:
            logger.warning("权限缓存写入失败: %s", exc)

    async def invalidate_role(self, role: str) -> int:
        """删除某角色的全部缓存键，返回删除数量。"""

        if not self.enabled:
            return 0
        removed = 0
        try:
            client = await self._client_factory()
            keys = [key async for key in client.scan_iter(match=f"{KEY_PREFIX}:{role}:*")]
            if keys:
                removed = int(await client.delete(*keys))
        except RedisError as exc:
            logger.warning("权限缓存失效失败: role=%s, %s", role, exc)
        return removed
