from __future__ import annotations

from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import ASCENDING, IndexModel, ReturnDocument

from ..models.hospital import Hospital, InventoryLevel, Partnership


class HospitalRepository:
    def __init__(self, collection: AsyncIOMotorCollection) -> None:
        self.collection = collection

    async def ensure_indexes(self) -> None:
        await self.collection.create_indexes(
            [
                IndexModel([("location", "2dsphere")]),
                IndexModel([("user_id", ASCENDING)], unique=True),
                IndexModel([("registration_number", ASCENDING)], unique=True),
            ]
        )

    async def insert(self, hospital: Hospital) -> Hospital:
        await self.collection.insert_one(hospital.model_dump(by_alias=True))
        return hospital

    async def get(self, hospital_id: str) -> Optional[Hospital]:
        document = await self.collection.find_one({"_id": hospital_id})
        return Hospital(**document) if document else None

    async def get_by_user(self, user_id: str) -> Optional[Hospital]:
        document = await self.collection.find_one({"user_id": user_id})
        return Hospital(**document) if document else None

    async def set_verification_status(self, hospital_id: str, verification_status: str) -> bool:
        result = await self.collection.update_one(
            {"_id": hospital_id}, {"$set": {"verification_status": verification_status}}
        )
        return result.matched_count == 1

    async def update_alert_settings(self, hospital_id: str, changes: Dict[str, Any]) -> Optional[Hospital]:
        document = await self.collection.find_one_and_update(
            {"_id": hospital_id},
            {"$set": {f"alert_settings.{key}": value for key, value in changes.items()}},
            return_document=ReturnDocument.AFTER,
        )
        return Hospital(**document) if document else None

    async def save_inventory_level(self, hospital_id: str, blood_type: str, level: InventoryLevel) -> None:
        await self.collection.update_one(
            {"_id": hospital_id},
            {"$set": {f"inventory.{blood_type}": level.model_dump()}},
        )

    async def add_partnership(self, hospital_id: str, partnership: Partnership) -> bool:
        """Append unless a partnership with the same hospital is already recorded."""
        result = await self.collection.update_one(
            {"_id": hospital_id, "partnerships.hospital_id": {"$ne": partnership.hospital_id}},
            {"$push": {"partnerships": partnership.model_dump()}},
        )
        return result.modified_count == 1

    async def increment_requests(self, hospital_id: str) -> None:
        await self.collection.update_one({"_id": hospital_id}, {"$inc": {"statistics.total_blood_requests": 1}})
