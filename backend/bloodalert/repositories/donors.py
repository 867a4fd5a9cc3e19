from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import ASCENDING, IndexModel, ReturnDocument

from ..models.common import GeoPoint
from ..models.donor import Donor
from ..services.eligibility import WHOLE_BLOOD_VOLUME_ML, next_eligible_date

EARTH_RADIUS_KM = 6378.1


class DonorRepository:
    def __init__(self, collection: AsyncIOMotorCollection) -> None:
        self.collection = collection

    async def ensure_indexes(self) -> None:
        await self.collection.create_indexes(
            [
                IndexModel([("location", "2dsphere")]),
                IndexModel([("medical_info.blood_group", ASCENDING)]),
                IndexModel([("user_id", ASCENDING)], unique=True),
            ]
        )

    async def insert(self, donor: Donor) -> Donor:
        await self.collection.insert_one(donor.model_dump(by_alias=True))
        return donor

    async def get(self, donor_id: str) -> Optional[Donor]:
        document = await self.collection.find_one({"_id": donor_id})
        return Donor(**document) if document else None

    async def get_by_user(self, user_id: str) -> Optional[Donor]:
        document = await self.collection.find_one({"user_id": user_id})
        return Donor(**document) if document else None

    async def find_candidates(
        self,
        blood_types: Iterable[str],
        point: GeoPoint,
        radius_km: float,
        limit: int,
    ) -> List[Donor]:
        """Verified, active, flagged-eligible donors of the given types within ``radius_km``."""
        query = {
            "medical_info.blood_group": {"$in": sorted(blood_types)},
            "eligibility.is_eligible": True,
            "verification_status": "verified",
            "is_active": True,
            "location": {"$geoWithin": {"$centerSphere": [point.coordinates, radius_km / EARTH_RADIUS_KM]}},
        }
        cursor = self.collection.find(query).sort("_id", ASCENDING).limit(limit)
        return [Donor(**document) async for document in cursor]

    async def set_verification_status(self, donor_id: str, verification_status: str) -> bool:
        result = await self.collection.update_one(
            {"_id": donor_id}, {"$set": {"verification_status": verification_status}}
        )
        return result.matched_count == 1

    async def update_preferences(self, donor_id: str, changes: Dict[str, Any]) -> Optional[Donor]:
        document = await self.collection.find_one_and_update(
            {"_id": donor_id},
            {"$set": {f"preferences.{key}": value for key, value in changes.items()}},
            return_document=ReturnDocument.AFTER,
        )
        return Donor(**document) if document else None

    async def record_donation(self, donor_id: str, donated_at: datetime) -> None:
        await self.collection.update_one(
            {"_id": donor_id},
            {
                "$set": {
                    "eligibility.last_donation_date": donated_at,
                    "eligibility.next_eligible_date": next_eligible_date(donated_at),
                    "statistics.last_donation_date": donated_at,
                },
                "$inc": {
                    "statistics.total_donations": 1,
                    "statistics.total_volume_donated": WHOLE_BLOOD_VOLUME_ML,
                },
            },
        )
        await self.collection.update_one(
            {"_id": donor_id, "statistics.first_donation_date": None},
            {"$set": {"statistics.first_donation_date": donated_at}},
        )
