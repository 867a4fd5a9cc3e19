from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import ASCENDING, DESCENDING, IndexModel
from pymongo.errors import DuplicateKeyError

from ..errors import ConcurrentModificationError, ConflictError
from ..models.alert import Alert
from ..models.common import OPEN_STATUSES, GeoPoint
from .donors import EARTH_RADIUS_KM


def status_filter(status: str, now: datetime) -> Dict[str, Any]:
    """Match on the status a reader would see, counting lapsed open alerts as expired."""
    if status in OPEN_STATUSES:
        return {"status": status, "expires_at": {"$gte": now}}
    if status == "expired":
        return {
            "$or": [
                {"status": "expired"},
                {"status": {"$in": list(OPEN_STATUSES)}, "expires_at": {"$lt": now}},
            ]
        }
    return {"status": status}


class AlertRepository:
    def __init__(self, collection: AsyncIOMotorCollection) -> None:
        self.collection = collection

    async def ensure_indexes(self) -> None:
        await self.collection.create_indexes(
            [
                IndexModel([("hospital_id", ASCENDING), ("status", ASCENDING)]),
                IndexModel([("blood_type", ASCENDING), ("status", ASCENDING)]),
                IndexModel([("expires_at", ASCENDING)]),
                IndexModel([("created_at", DESCENDING)]),
                IndexModel([("location.coordinates", "2dsphere")], sparse=True),
                IndexModel([("sharing.shared_with.hospital_id", ASCENDING)]),
                # one open automatic alert per hospital and blood type
                IndexModel(
                    [("hospital_id", ASCENDING), ("blood_type", ASCENDING)],
                    name="unique_active_auto_alert",
                    unique=True,
                    partialFilterExpression={"auto_generated": True, "status": "active"},
                ),
            ]
        )

    async def insert(self, alert: Alert) -> Alert:
        try:
            await self.collection.insert_one(alert.to_document())
        except DuplicateKeyError as exc:
            raise ConflictError("An open automatic alert already exists for this blood type") from exc
        return alert

    async def get(self, alert_id: str) -> Optional[Alert]:
        document = await self.collection.find_one({"_id": alert_id})
        return Alert(**document) if document else None

    async def save(self, alert: Alert) -> Alert:
        """Replace the stored alert if nobody else saved it since it was loaded."""
        expected = alert.version
        document = alert.to_document()
        document["version"] = expected + 1
        result = await self.collection.replace_one({"_id": alert.id, "version": expected}, document)
        if result.matched_count == 0:
            raise ConcurrentModificationError(f"Alert {alert.id} was modified concurrently")
        alert.version = expected + 1
        return alert

    async def _find(self, query: Dict[str, Any], *, skip: int = 0, limit: int = 20) -> List[Alert]:
        cursor = self.collection.find(query).sort("created_at", DESCENDING).skip(skip).limit(limit)
        return [Alert(**document) async for document in cursor]

    async def list_for_hospital(
        self,
        hospital_id: str,
        *,
        now: datetime,
        status: Optional[str] = None,
        blood_type: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Alert], int]:
        """Page of a hospital's alerts, newest first, plus the total match count."""
        query: Dict[str, Any] = {"hospital_id": hospital_id}
        if blood_type:
            query["blood_type"] = blood_type
        if status:
            query.update(status_filter(status, now))
        alerts = await self._find(query, skip=skip, limit=limit)
        total = await self.collection.count_documents(query)
        return alerts, total

    async def find_open_auto_alert(self, hospital_id: str, blood_type: str) -> Optional[Alert]:
        document = await self.collection.find_one(
            {
                "hospital_id": hospital_id,
                "blood_type": blood_type,
                "auto_generated": True,
                "status": {"$in": list(OPEN_STATUSES)},
            }
        )
        return Alert(**document) if document else None

    async def find_due_for_expiry(self, now: datetime, limit: int = 200) -> List[Alert]:
        cursor = self.collection.find(
            {"status": {"$in": list(OPEN_STATUSES)}, "expires_at": {"$lt": now}}
        ).limit(limit)
        return [Alert(**document) async for document in cursor]

    async def find_shared_with(
        self, hospital_id: str, *, now: datetime, skip: int = 0, limit: int = 20
    ) -> Tuple[List[Alert], int]:
        query = {
            "sharing.shared_with.hospital_id": hospital_id,
            "status": {"$in": list(OPEN_STATUSES)},
            "expires_at": {"$gte": now},
        }
        alerts = await self._find(query, skip=skip, limit=limit)
        total = await self.collection.count_documents(query)
        return alerts, total

    async def find_open_near(
        self,
        blood_types: Iterable[str],
        point: GeoPoint,
        max_distance_km: float,
        now: datetime,
        limit: int = 20,
    ) -> List[Alert]:
        query = {
            "blood_type": {"$in": sorted(blood_types)},
            "status": "active",
            "expires_at": {"$gte": now},
            "location.coordinates": {
                "$geoWithin": {"$centerSphere": [point.coordinates, max_distance_km / EARTH_RADIUS_KM]}
            },
        }
        cursor = self.collection.find(query).sort("created_at", DESCENDING).limit(limit)
        return [Alert(**document) async for document in cursor]
