from __future__ import annotations

from datetime import datetime
from typing import Annotated, List, Literal, get_args

from bson import ObjectId
from pydantic import AfterValidator, BaseModel, Field

from ..utils.clock import as_utc


BloodType = Literal["A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"]
UrgencyLevel = Literal["low", "medium", "high", "critical"]
AlertStatus = Literal["active", "partially_fulfilled", "fulfilled", "expired", "cancelled"]
NotificationChannel = Literal["email", "sms", "push"]
ResponseType = Literal["interested", "committed", "donated", "not_available", "not_eligible"]
ShareResponse = Literal["pending", "accepted", "declined", "partially_fulfilled"]
PartnershipType = Literal["blood_sharing", "emergency_backup", "referral"]
Gender = Literal["male", "female", "other"]
VerificationStatus = Literal["pending", "verified", "rejected", "suspended"]

BLOOD_TYPES: tuple[str, ...] = get_args(BloodType)
OPEN_STATUSES: tuple[str, ...] = ("active", "partially_fulfilled")
TERMINAL_STATUSES = frozenset({"fulfilled", "expired", "cancelled"})

UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


def new_id() -> str:
    return str(ObjectId())


class GeoPoint(BaseModel):
    type: Literal["Point"] = "Point"
    # [longitude, latitude], GeoJSON order
    coordinates: List[float] = Field(min_length=2, max_length=2)

    @property
    def longitude(self) -> float:
        return self.coordinates[0]

    @property
    def latitude(self) -> float:
        return self.coordinates[1]


class VerificationUpdate(BaseModel):
    verification_status: VerificationStatus
