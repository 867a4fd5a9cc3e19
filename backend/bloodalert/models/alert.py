"""Blood shortage alert aggregate.

All mutation goes through the methods on :class:`Alert`; they enforce the
lifecycle below and never regress a terminal status::

    active -> partially_fulfilled -> fulfilled
    active | partially_fulfilled -> expired    (time passes expires_at)
    active | partially_fulfilled -> cancelled  (hospital action)

Derived figures (rates, completion, time remaining) are computed from the
recorded data on demand and are never stored.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import List, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from ..errors import AlertValidationError, ConflictError, NotFoundError, StateError
from .common import (
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    AlertStatus,
    BloodType,
    Gender,
    GeoPoint,
    NotificationChannel,
    ResponseType,
    ShareResponse,
    UrgencyLevel,
    UtcDatetime,
    new_id,
)

CRITICAL_EXPIRY_HOURS = 24
DEFAULT_EXPIRY_HOURS = 72
MIN_EXTENSION_HOURS = 1
MAX_EXTENSION_HOURS = 168


def _percent(numerator: float, denominator: float) -> int:
    if not denominator:
        return 0
    # half-up rounding
    return int(math.floor(100 * numerator / denominator + 0.5))


class PatientInfo(BaseModel):
    age: int | None = Field(default=None, ge=0, le=150)
    gender: Gender | None = None
    condition: str | None = None
    is_emergency: bool = False
    required_by: UtcDatetime


class AlertLocation(BaseModel):
    search_radius: float = Field(default=50, ge=5, le=200)
    coordinates: GeoPoint | None = None


class NotificationRecord(BaseModel):
    donor_id: str
    method: NotificationChannel
    sent_at: UtcDatetime
    opened: bool = False
    opened_at: UtcDatetime | None = None
    responded: bool = False
    responded_at: UtcDatetime | None = None
    response: ResponseType | None = None


class NotificationSummary(BaseModel):
    sent: int = 0
    opened: int = 0
    responded: int = 0
    sent_to: List[NotificationRecord] = Field(default_factory=list)


class ContactInfo(BaseModel):
    phone: str | None = None
    email: str | None = None
    preferred_time: str | None = None


class DonationDetails(BaseModel):
    volume: float | None = Field(default=None, gt=0)
    date: UtcDatetime | None = None
    location: str | None = None
    notes: str | None = None


class DonorResponse(BaseModel):
    donor_id: str
    response_type: ResponseType
    message: str | None = None
    contact_info: ContactInfo | None = None
    estimated_arrival: UtcDatetime | None = None
    actual_arrival: UtcDatetime | None = None
    donation_completed: bool = False
    donation_details: DonationDetails | None = None
    response_time: int | None = None
    timestamp: UtcDatetime


class ShareRecord(BaseModel):
    hospital_id: str
    shared_at: UtcDatetime
    response: ShareResponse = "pending"
    units_promised: int = Field(default=0, ge=0)
    units_delivered: int = Field(default=0, ge=0)
    notes: str | None = None


class SharingInfo(BaseModel):
    allow_sharing: bool = True
    shared_with: List[ShareRecord] = Field(default_factory=list)


class AlertMetrics(BaseModel):
    completion_percentage: int
    time_remaining: int
    response_rate: int
    conversion_rate: int


class AlertCreate(BaseModel):
    blood_type: BloodType
    urgency_level: UrgencyLevel
    units_needed: int = Field(ge=1, le=100)
    reason: str = Field(min_length=10)
    patient_info: PatientInfo
    search_radius: float = Field(default=50, ge=5, le=200)
    allow_sharing: bool = True
    tags: List[str] = Field(default_factory=list)


class Alert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    id: str = Field(alias="_id", default_factory=new_id)
    hospital_id: str
    blood_type: BloodType
    urgency_level: UrgencyLevel
    units_needed: int = Field(ge=1)
    units_collected: int = Field(default=0, ge=0)
    reason: str
    patient_info: PatientInfo
    location: AlertLocation = Field(default_factory=AlertLocation)
    status: AlertStatus = "active"
    notifications: NotificationSummary = Field(default_factory=NotificationSummary)
    responses: List[DonorResponse] = Field(default_factory=list)
    sharing: SharingInfo = Field(default_factory=SharingInfo)
    expires_at: UtcDatetime
    tags: List[str] = Field(default_factory=list)
    internal_notes: str | None = None
    auto_generated: bool = False
    created_by: str
    last_modified_by: str | None = None
    created_at: UtcDatetime
    updated_at: UtcDatetime | None = None
    version: int = 0

    @classmethod
    def create(
        cls,
        payload: AlertCreate,
        *,
        hospital_id: str,
        coordinates: GeoPoint | None,
        created_by: str,
        now: datetime,
        auto_generated: bool = False,
    ) -> "Alert":
        hours = CRITICAL_EXPIRY_HOURS if payload.urgency_level == "critical" else DEFAULT_EXPIRY_HOURS
        return cls(
            hospital_id=hospital_id,
            blood_type=payload.blood_type,
            urgency_level=payload.urgency_level,
            units_needed=payload.units_needed,
            reason=payload.reason,
            patient_info=payload.patient_info,
            location=AlertLocation(search_radius=payload.search_radius, coordinates=coordinates),
            sharing=SharingInfo(allow_sharing=payload.allow_sharing),
            expires_at=now + timedelta(hours=hours),
            tags=list(payload.tags),
            auto_generated=auto_generated,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)

    # lifecycle

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def is_inert(self, now: datetime) -> bool:
        return self.is_terminal or self.is_expired(now)

    def effective_status(self, now: datetime) -> str:
        if not self.is_terminal and self.is_expired(now):
            return "expired"
        return self.status

    def refresh_expiry(self, now: datetime) -> bool:
        """Apply the time-triggered expiry edge. Returns True if the status changed."""
        if self.is_terminal or not self.is_expired(now):
            return False
        self.status = "expired"
        self.updated_at = now
        return True

    def ensure_open(self, now: datetime, action: str = "This operation") -> None:
        if self.is_inert(now):
            raise StateError(f"{action} is not allowed: alert is {self.effective_status(now)}")

    def cancel(self, *, reason: str | None, modified_by: str, now: datetime) -> str:
        current = self.effective_status(now)
        if current in TERMINAL_STATUSES:
            raise StateError(f"Cannot cancel an alert that is already {current}")
        old_status = self.status
        self.status = "cancelled"
        self._note_status_change(old_status, reason, modified_by, now)
        return old_status

    def override_status(self, new_status: str, *, reason: str | None, modified_by: str, now: datetime) -> str:
        """Administrative override: sets any status, bypassing the automatic edges."""
        old_status = self.status
        if old_status == new_status:
            return old_status
        logger.warning(
            "Administrative status override on alert {}: {} -> {} by {} (reason: {})",
            self.id,
            old_status,
            new_status,
            modified_by,
            reason or "none given",
        )
        self.status = new_status
        self._note_status_change(old_status, reason, modified_by, now)
        return old_status

    def _note_status_change(self, old_status: str, reason: str | None, modified_by: str, now: datetime) -> None:
        line = f"{now.isoformat()}: Status changed from {old_status} to {self.status}."
        if reason:
            line += f" Reason: {reason}"
        self.internal_notes = f"{self.internal_notes}\n{line}" if self.internal_notes else line
        self.last_modified_by = modified_by
        self.updated_at = now

    def extend_expiry(self, hours: int, *, modified_by: str, now: datetime) -> tuple[datetime, datetime]:
        if not MIN_EXTENSION_HOURS <= hours <= MAX_EXTENSION_HOURS:
            raise AlertValidationError.for_field(
                "hours", f"hours must be between {MIN_EXTENSION_HOURS} and {MAX_EXTENSION_HOURS}"
            )
        if self.status not in OPEN_STATUSES or self.is_expired(now):
            raise StateError("Only active alerts can be extended")
        old_expiry = self.expires_at
        self.expires_at = old_expiry + timedelta(hours=hours)
        self.last_modified_by = modified_by
        self.updated_at = now
        return old_expiry, self.expires_at

    # donor responses

    def find_response(self, donor_id: str) -> Optional[DonorResponse]:
        for response in self.responses:
            if response.donor_id == donor_id:
                return response
        return None

    def has_responded(self, donor_id: str) -> bool:
        return self.find_response(donor_id) is not None

    def find_notification(self, donor_id: str) -> Optional[NotificationRecord]:
        for record in self.notifications.sent_to:
            if record.donor_id == donor_id:
                return record
        return None

    def add_response(
        self,
        donor_id: str,
        response_type: str,
        *,
        now: datetime,
        message: str | None = None,
        contact_info: ContactInfo | None = None,
        estimated_arrival: datetime | None = None,
        donation_details: DonationDetails | None = None,
    ) -> DonorResponse:
        if self.has_responded(donor_id):
            raise ConflictError("Donor has already responded to this alert")

        response = DonorResponse(
            donor_id=donor_id,
            response_type=response_type,
            message=message,
            contact_info=contact_info,
            estimated_arrival=estimated_arrival,
            timestamp=now,
        )
        notification = self.find_notification(donor_id)
        if notification is not None:
            response.response_time = int((now - notification.sent_at).total_seconds() // 60)
            notification.responded = True
            notification.responded_at = now
            notification.response = response_type

        self.responses.append(response)
        self.notifications.responded += 1

        if response_type == "donated" and donation_details is not None:
            response.donation_completed = True
            response.donation_details = donation_details
            response.actual_arrival = now
            self._collect_unit()
        self.updated_at = now
        return response

    def record_donation(self, donor_id: str, details: DonationDetails, *, now: datetime) -> DonorResponse:
        """Mark a donor's donation as completed, creating the response if there is none."""
        response = self.find_response(donor_id)
        if response is None:
            return self.add_response(donor_id, "donated", now=now, donation_details=details)
        if response.donation_completed:
            raise ConflictError("Donation already recorded for this donor")
        response.response_type = "donated"
        response.donation_completed = True
        response.donation_details = details
        response.actual_arrival = now
        self._collect_unit()
        self.updated_at = now
        return response

    def _collect_unit(self) -> None:
        self.units_collected += 1
        if self.is_terminal:
            return
        if self.units_collected >= self.units_needed:
            self.status = "fulfilled"
        elif self.units_collected > 0:
            self.status = "partially_fulfilled"

    # notification bookkeeping

    def record_notification(self, donor_id: str, method: str, now: datetime) -> NotificationRecord:
        record = NotificationRecord(donor_id=donor_id, method=method, sent_at=now)
        self.notifications.sent_to.append(record)
        return record

    def mark_opened(self, donor_id: str, now: datetime) -> bool:
        record = self.find_notification(donor_id)
        if record is None:
            raise NotFoundError("Notification not found")
        if record.opened:
            return False
        record.opened = True
        record.opened_at = now
        self.notifications.opened += 1
        return True

    # sharing

    def find_share(self, hospital_id: str) -> Optional[ShareRecord]:
        for record in self.sharing.shared_with:
            if record.hospital_id == hospital_id:
                return record
        return None

    def share_with(self, hospital_id: str, *, notes: str | None, now: datetime) -> ShareRecord:
        if self.find_share(hospital_id) is not None:
            raise ConflictError("Alert already shared with this hospital")
        record = ShareRecord(hospital_id=hospital_id, shared_at=now, notes=notes)
        self.sharing.shared_with.append(record)
        self.updated_at = now
        return record

    def respond_to_share(
        self,
        hospital_id: str,
        response: str,
        *,
        units_promised: int = 0,
        notes: str | None = None,
        now: datetime,
    ) -> ShareRecord:
        record = self.find_share(hospital_id)
        if record is None:
            raise NotFoundError("Alert was not shared with your hospital")
        if record.response != "pending":
            raise ConflictError("You have already responded to this alert")
        if response == "pending":
            raise AlertValidationError.for_field("response", "response must be accepted, declined or partially_fulfilled")
        record.response = response
        record.units_promised = units_promised
        record.notes = notes
        self.updated_at = now
        return record

    # metrics

    def get_response_rate(self) -> int:
        return _percent(self.notifications.responded, self.notifications.sent)

    def get_conversion_rate(self) -> int:
        completed = sum(1 for response in self.responses if response.donation_completed)
        return _percent(completed, len(self.responses))

    @property
    def completion_percentage(self) -> int:
        return _percent(self.units_collected, self.units_needed)

    def time_remaining(self, now: datetime) -> int:
        remaining = (self.expires_at - now).total_seconds()
        if remaining <= 0:
            return 0
        return int(remaining // 3600)

    def metrics(self, now: datetime) -> AlertMetrics:
        return AlertMetrics(
            completion_percentage=self.completion_percentage,
            time_remaining=self.time_remaining(now),
            response_rate=self.get_response_rate(),
            conversion_rate=self.get_conversion_rate(),
        )
