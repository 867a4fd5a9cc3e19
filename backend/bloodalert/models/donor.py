from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from .common import BloodType, Gender, GeoPoint, UtcDatetime, new_id


class PersonalInfo(BaseModel):
    first_name: str = Field(min_length=2)
    last_name: str = Field(min_length=2)
    date_of_birth: UtcDatetime
    gender: Gender
    phone: str = Field(pattern=r"^\+?[\d\s\-()]+$")


class MedicalInfo(BaseModel):
    blood_group: BloodType
    weight: float
    height: float | None = None
    allergies: List[str] = Field(default_factory=list)
    medications: List[str] = Field(default_factory=list)
    is_diabetic: bool = False
    has_heart_condition: bool = False
    has_infectious_disease: bool = False


class TemporaryDeferral(BaseModel):
    reason: str | None = None
    until: UtcDatetime | None = None


class DonorEligibility(BaseModel):
    is_eligible: bool = True
    last_donation_date: UtcDatetime | None = None
    next_eligible_date: UtcDatetime | None = None
    restrictions: List[str] = Field(default_factory=list)
    temporary_deferral: TemporaryDeferral | None = None


class NotificationMethods(BaseModel):
    email: bool = True
    sms: bool = True
    push: bool = True


class DonorPreferences(BaseModel):
    notification_methods: NotificationMethods = Field(default_factory=NotificationMethods)
    max_travel_distance: float = Field(default=25, ge=5, le=100)
    emergency_only: bool = False


class DonorStatistics(BaseModel):
    total_donations: int = 0
    total_volume_donated: float = 0
    first_donation_date: UtcDatetime | None = None
    last_donation_date: UtcDatetime | None = None


class Donor(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id", default_factory=new_id)
    user_id: str
    email: EmailStr | None = None
    personal_info: PersonalInfo
    medical_info: MedicalInfo
    location: GeoPoint
    eligibility: DonorEligibility = Field(default_factory=DonorEligibility)
    preferences: DonorPreferences = Field(default_factory=DonorPreferences)
    statistics: DonorStatistics = Field(default_factory=DonorStatistics)
    is_active: bool = True
    verification_status: str = "pending"
    created_at: UtcDatetime | None = None

    @property
    def display_name(self) -> str:
        return f"{self.personal_info.first_name} {self.personal_info.last_name}"


class DonorCreate(BaseModel):
    personal_info: PersonalInfo
    medical_info: MedicalInfo
    location: GeoPoint
    preferences: DonorPreferences = Field(default_factory=DonorPreferences)


class PreferencesUpdate(BaseModel):
    email: bool | None = None
    sms: bool | None = None
    push: bool | None = None
    max_travel_distance: float | None = Field(default=None, ge=5, le=100)
    emergency_only: bool | None = None


class EligibilityStatus(BaseModel):
    eligible: bool
    reason: str
    next_eligible_date: datetime | None = None
    last_donation_date: datetime | None = None
    restrictions: List[str] = Field(default_factory=list)
