from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from .common import BLOOD_TYPES, BloodType, GeoPoint, PartnershipType, UtcDatetime, new_id
from .donor import NotificationMethods


DEFAULT_CRITICAL_LEVELS: Dict[str, int] = {
    "A+": 5,
    "A-": 3,
    "B+": 5,
    "B-": 3,
    "AB+": 2,
    "AB-": 1,
    "O+": 10,
    "O-": 5,
}

SHAREABLE_PARTNERSHIP_TYPES = ("blood_sharing", "emergency_backup")


class InventoryLevel(BaseModel):
    available: int = Field(default=0, ge=0)
    reserved: int = Field(default=0, ge=0)
    critical: int = Field(default=0, ge=0)
    last_updated: UtcDatetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_critical(self) -> bool:
        return self.available <= self.critical

    @property
    def deficit(self) -> int:
        return self.critical - self.available if self.is_critical else 0


def _default_inventory() -> Dict[str, InventoryLevel]:
    return {blood_type: InventoryLevel(critical=DEFAULT_CRITICAL_LEVELS[blood_type]) for blood_type in BLOOD_TYPES}


class Partnership(BaseModel):
    hospital_id: str
    type: PartnershipType
    status: str = "active"
    established_date: UtcDatetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AlertSettings(BaseModel):
    critical_shortage_threshold: int = 3
    auto_alert_enabled: bool = True
    notification_preferences: NotificationMethods = Field(default_factory=NotificationMethods)


class AlertSettingsUpdate(BaseModel):
    email: bool | None = None
    sms: bool | None = None
    push: bool | None = None
    auto_alert_enabled: bool | None = None
    critical_shortage_threshold: int | None = Field(default=None, ge=0)


class HospitalStatistics(BaseModel):
    total_blood_requests: int = 0
    total_blood_supplied: int = 0


class Hospital(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id", default_factory=new_id)
    user_id: str
    name: str
    registration_number: str
    email: EmailStr
    primary_phone: str
    emergency_phone: str
    address: str | None = None
    city: str | None = None
    location: GeoPoint
    inventory: Dict[BloodType, InventoryLevel] = Field(default_factory=_default_inventory)
    partnerships: List[Partnership] = Field(default_factory=list)
    alert_settings: AlertSettings = Field(default_factory=AlertSettings)
    statistics: HospitalStatistics = Field(default_factory=HospitalStatistics)
    verification_status: str = "pending"
    is_active: bool = True
    created_at: UtcDatetime | None = None

    def level(self, blood_type: str) -> InventoryLevel:
        if blood_type not in self.inventory:
            self.inventory[blood_type] = InventoryLevel(critical=DEFAULT_CRITICAL_LEVELS.get(blood_type, 0))
        return self.inventory[blood_type]

    def critical_shortages(self) -> List[Dict[str, int | str]]:
        shortages = []
        for blood_type in BLOOD_TYPES:
            level = self.inventory.get(blood_type)
            if level is not None and level.is_critical:
                shortages.append(
                    {
                        "blood_type": blood_type,
                        "available": level.available,
                        "critical": level.critical,
                        "deficit": level.critical - level.available,
                    }
                )
        return shortages

    def partnership_with(self, hospital_id: str) -> Partnership | None:
        for partnership in self.partnerships:
            if partnership.hospital_id == hospital_id:
                return partnership
        return None

    def can_share_with(self, hospital_id: str) -> bool:
        partnership = self.partnership_with(hospital_id)
        return (
            partnership is not None
            and partnership.status == "active"
            and partnership.type in SHAREABLE_PARTNERSHIP_TYPES
        )


class HospitalCreate(BaseModel):
    name: str = Field(min_length=2)
    registration_number: str = Field(min_length=3)
    email: EmailStr
    primary_phone: str = Field(pattern=r"^\+?[\d\s\-()]+$")
    emergency_phone: str = Field(pattern=r"^\+?[\d\s\-()]+$")
    address: str | None = None
    city: str | None = None
    location: GeoPoint
    alert_settings: AlertSettings = Field(default_factory=AlertSettings)


class PartnershipCreate(BaseModel):
    hospital_id: str
    type: PartnershipType


class InventoryUpdate(BaseModel):
    available: int | None = Field(default=None, ge=0)
    reserved: int | None = Field(default=None, ge=0)
    critical: int | None = Field(default=None, ge=0)
    change: int | None = None
    reason: str | None = None
