"""过期审计日志清理命令（TTL 索引之外的显式清理）。"""

from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import datetime

from careguard.db import close_db, init_db
from careguard.models.schedule import as_utc
from careguard.repositories.audit_repository import AuditLogRepository
from careguard.services.audit_service import AuditTrail

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="清理超过保留期限的审计日志")
    parser.add_argument("--before", default=None, help="以该时间（ISO 8601）为当前时间，默认取当前 UTC 时间")
    parser.add_argument("--mongo-url", default=None, help="覆盖 MONGO_URL")
    parser.add_argument("--db", default=None, help="覆盖 MONGO_DB")
    return parser.parse_args(argv)


def parse_before(value: str | None) -> datetime | None:
    if not value:
        return None
    return as_utc(datetime.fromisoformat(value))


async def run(args: argparse.Namespace) -> int:
    await init_db(args.mongo_url, args.db)
    try:
        return await AuditTrail(AuditLogRepository()).purge_expired(parse_before(args.before))
    finally:
        await close_db()


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    args = parse_args(argv)
    try:
        before = parse_before(args.before)
    except ValueError:
        logger.error("--before 不是合法的 ISO 8601 时间: %s", args.before)
        return 2
    removed = asyncio.run(run(args))
    logger.info("审计日志清理完成: 截止 %s, 删除 %d 条", before or "now", removed)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
