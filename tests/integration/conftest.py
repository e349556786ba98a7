"""集成测试 fixture：连接真实 MongoDB，每个用例使用独立数据库。"""

from __future__ import annotations

import os
from uuid import uuid4

import pytest
import pytest_asyncio
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from careguard.db import close_db, init_db
from careguard.models import Organization, Profile
from careguard.repositories.permission_repository import PermissionRepository
from careguard.services.container import build_services

TEST_MONGO_URL = os.getenv("TEST_MONGO_URL", "mongodb://localhost:27017")


def _mongo_reachable(mongo_url: str) -> bool:
    client = MongoClient(mongo_url, serverSelectionTimeoutMS=1500, connectTimeoutMS=1500)
    try:
        client.admin.command("ping")
        return True
    except PyMongoError:
        return False
    finally:
        client.close()


@pytest_asyncio.fixture
async def initialized_db():
    """初始化 Beanie 并在用例结束后删除测试库。"""

    if not _mongo_reachable(TEST_MONGO_URL):
        pytest.skip("MongoDB 不可用，跳过集成测试")

    db_name = f"careguard_test_{uuid4().hex[:8]}"
    await init_db(TEST_MONGO_URL, db_name)
    try:
        yield db_name
    finally:
        await close_db()
        client = MongoClient(TEST_MONGO_URL)
        try:
            client.drop_database(db_name)
        finally:
            client.close()


@pytest_asyncio.fixture
async def live_services(initialized_db):
    """使用真实仓储装配的服务，权限查询不经过缓存。"""

    services = build_services(permissions=PermissionRepository())
    yield services
    await services.audit.drain()


@pytest_asyncio.fixture
async def live_world(initialized_db):
    organization = Organization(name="晨光护理中心")
    await organization.insert()

    world = {"org": organization}
    for role in ("org_admin", "care_manager", "caretaker", "patient", "patient_mentor"):
        profile = Profile(external_uid=f"{role}-{uuid4().hex[:6]}", role=role, organization_id=organization.id)
        await profile.insert()
        world[role] = profile
    return world
