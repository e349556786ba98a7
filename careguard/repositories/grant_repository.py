"""关系授权仓储：护理员分配与导师授权。

两类记录都以业务键唯一，写入统一走 find_one_and_update，
并发的 assign/authorize 只会产生一条记录。
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from beanie import PydanticObjectId
from pymongo import ReturnDocument

from careguard.models import CaretakerAssignment, MentorAuthorization
from careguard.repositories.base import guarded, insert_defaults, to_mongo


class AssignmentRepository:
    @guarded
    async def get(self, caretaker_id: PydanticObjectId, patient_id: PydanticObjectId) -> CaretakerAssignment | None:
        return await CaretakerAssignment.find_one({"caretaker_id": caretaker_id, "patient_id": patient_id})

    @guarded
    async def upsert(
        self,
        caretaker_id: PydanticObjectId,
        patient_id: PydanticObjectId,
        fields: dict[str, Any],
        defaults: dict[str, Any],
    ) -> CaretakerAssignment:
        """按业务键写入；已存在时仅覆盖 fields，新建时其余字段取 defaults。"""

        collection = CaretakerAssignment.get_motor_collection()
        on_insert = insert_defaults(defaults, exclude={"caretaker_id", "patient_id", *fields})
        raw = await collection.find_one_and_update(
            {"caretaker_id": caretaker_id, "patient_id": patient_id},
            {"$set": to_mongo(fields), "$setOnInsert": on_insert},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return CaretakerAssignment.model_validate(raw)

    @guarded
    async def update(
        self,
        caretaker_id: PydanticObjectId,
        patient_id: PydanticObjectId,
        fields: dict[str, Any],
        push: dict[str, Any] | None = None,
    ) -> CaretakerAssignment | None:
        collection = CaretakerAssignment.get_motor_collection()
        update: dict[str, Any] = {"$set": to_mongo(fields)}
        if push:
            update["$push"] = to_mongo(push)
        raw = await collection.find_one_and_update(
            {"caretaker_id": caretaker_id, "patient_id": patient_id},
            update,
            return_document=ReturnDocument.AFTER,
        )
        if raw is None:
            return None
        return CaretakerAssignment.model_validate(raw)

    @guarded
    async def list_by_caretaker(
        self,
        caretaker_id: PydanticObjectId,
        statuses: list[str] | None = None,
        *,
        limit: int = 0,
        offset: int = 0,
    ) -> list[CaretakerAssignment]:
        query: dict[str, Any] = {"caretaker_id": caretaker_id}
        if statuses:
            query["status"] = {"$in": list(statuses)}
        return await _page(CaretakerAssignment.find(query), limit, offset)

    @guarded
    async def list_by_patient(
        self,
        patient_id: PydanticObjectId,
        statuses: list[str] | None = None,
        *,
        limit: int = 0,
        offset: int = 0,
    ) -> list[CaretakerAssignment]:
        query: dict[str, Any] = {"patient_id": patient_id}
        if statuses:
            query["status"] = {"$in": list(statuses)}
        return await _page(CaretakerAssignment.find(query), limit, offset)

    @guarded
    async def record_call(
        self,
        caretaker_id: PydanticObjectId,
        patient_id: PydanticObjectId,
        duration_minutes: float | None,
        now: datetime,
    ) -> CaretakerAssignment | None:
        """单文档流水线更新通话统计，并发调用不会丢失计数。"""

        collection = CaretakerAssignment.get_motor_collection()
        total = "$metrics.total_calls"
        average: Any = "$metrics.average_call_duration"
        if duration_minutes:
            average = {
                "$divide": [
                    {"$add": [{"$multiply": [average, total]}, duration_minutes]},
                    {"$add": [total, 1]},
                ]
            }
        raw = await collection.find_one_and_update(
            {"caretaker_id": caretaker_id, "patient_id": patient_id},
            [
                {
                    "$set": {
                        "metrics.total_calls": {"$add": [total, 1]},
                        "metrics.average_call_duration": average,
                        "metrics.last_call_date": now,
                        "updated_at": now,
                    }
                }
            ],
            return_document=ReturnDocument.AFTER,
        )
        if raw is None:
            return None
        return CaretakerAssignment.model_validate(raw)


class MentorAuthorizationRepository:
    @guarded
    async def get(self, mentor_id: PydanticObjectId, patient_id: PydanticObjectId) -> MentorAuthorization | None:
        return await MentorAuthorization.find_one({"mentor_id": mentor_id, "patient_id": patient_id})

    @guarded
    async def upsert(
        self,
        mentor_id: PydanticObjectId,
        patient_id: PydanticObjectId,
        fields: dict[str, Any],
        defaults: dict[str, Any],
    ) -> MentorAuthorization:
        collection = MentorAuthorization.get_motor_collection()
        on_insert = insert_defaults(defaults, exclude={"mentor_id", "patient_id", *fields})
        raw = await collection.find_one_and_update(
            {"mentor_id": mentor_id, "patient_id": patient_id},
            {"$set": to_mongo(fields), "$setOnInsert": on_insert},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return MentorAuthorization.model_validate(raw)

    @guarded
    async def update(
        self,
        mentor_id: PydanticObjectId,
        patient_id: PydanticObjectId,
        fields: dict[str, Any],
        push: dict[str, Any] | None = None,
    ) -> MentorAuthorization | None:
        collection = MentorAuthorization.get_motor_collection()
        update: dict[str, Any] = {}
        if fields:
            update["$set"] = to_mongo(fields)
        if push:
            update["$push"] = to_mongo(push)
        raw = await collection.find_one_and_update(
            {"mentor_id": mentor_id, "patient_id": patient_id},
            update,
            return_document=ReturnDocument.AFTER,
        )
        if raw is None:
            return None
        return MentorAuthorization.model_validate(raw)

    @guarded
    async def list_by_mentor(
        self,
        mentor_id: PydanticObjectId,
        statuses: list[str] | None = None,
        *,
        limit: int = 0,
        offset: int = 0,
    ) -> list[MentorAuthorization]:
        query: dict[str, Any] = {"mentor_id": mentor_id}
        if statuses:
            query["status"] = {"$in": list(statuses)}
        return await _page(MentorAuthorization.find(query), limit, offset)

    @guarded
    async def list_by_patient(
        self,
        patient_id: PydanticObjectId,
        statuses: list[str] | None = None,
        *,
        limit: int = 0,
        offset: int = 0,
    ) -> list[MentorAuthorization]:
        query: dict[str, Any] = {"patient_id": patient_id}
        if statuses:
            query["status"] = {"$in": list(statuses)}
        return await _page(MentorAuthorization.find(query), limit, offset)


async def _page(cursor: Any, limit: int, offset: int) -> list[Any]:
    cursor = cursor.sort([("updated_at", -1)])
    if offset:
        cursor = cursor.skip(offset)
    if limit:
        cursor = cursor.limit(limit)
    return await cursor.to_list()
