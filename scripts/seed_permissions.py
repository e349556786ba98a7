"""默认角色权限同步命令。"""

from __future__ import annotations

import argparse
import asyncio
import logging
from collections import Counter

from careguard.db import close_db, init_db
from careguard.repositories.permission_repository import PermissionRepository
from careguard.services.permission_defaults import DEFAULT_PERMISSIONS
from careguard.services.permission_service import PermissionRegistry

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="同步平台默认角色权限表")
    parser.add_argument("--reset", action="store_true", help="写入前清空现有权限条目")
    parser.add_argument("--mongo-url", default=None, help="覆盖 MONGO_URL")
    parser.add_argument("--db", default=None, help="覆盖 MONGO_DB")
    parser.add_argument("--dry-run", action="store_true", help="只打印按角色统计的条目数")
    return parser.parse_args(argv)


def summarize() -> dict[str, int]:
    """按角色统计默认权限条目数。"""

    return dict(sorted(Counter(role for role, *_ in DEFAULT_PERMISSIONS).items()))


async def run(args: argparse.Namespace) -> int:
    await init_db(args.mongo_url, args.db)
    try:
        # 脚本直接写库，不经过权限缓存；缓存条目会在 TTL 后自然过期
        registry = PermissionRegistry(PermissionRepository())
        return await registry.ensure_default_permissions(reset=args.reset)
    finally:
        await close_db()


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    args = parse_args(argv)
    for role, count in summarize().items():
        logger.info("  %s: %d 条", role, count)
    if args.dry_run:
        return 0

    written = asyncio.run(run(args))
    logger.info("权限同步完成: %d 条", written)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
