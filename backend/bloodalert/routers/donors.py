from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from ..models.common import VerificationUpdate
from ..models.donor import Donor, DonorCreate, EligibilityStatus, PreferencesUpdate
from ..schemas.alert import alert_document
from ..services.eligibility import evaluate
from .deps import AdminUser, CurrentDonor, DonorUser, ServicesDep

router = APIRouter(prefix="/donors", tags=["donors"])

CHANNEL_FIELDS = ("email", "sms", "push")


class DonorResponseRequest(BaseModel):
    response_type: Literal["interested", "committed", "not_available", "not_eligible"]
    message: str | None = None
    estimated_arrival: datetime | None = None


@router.post("/profile", response_model=Donor, status_code=status.HTTP_201_CREATED)
async def create_profile(payload: DonorCreate, user: DonorUser, services: ServicesDep) -> Donor:
    if await services.donors.get_by_user(user.id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Donor profile already exists")
    donor = Donor(
        user_id=user.id,
        email=user.email,
        personal_info=payload.personal_info,
        medical_info=payload.medical_info,
        location=payload.location,
        preferences=payload.preferences,
        created_at=services.clock.now(),
    )
    return await services.donors.insert(donor)


@router.get("/profile", response_model=Donor)
async def get_profile(donor: CurrentDonor) -> Donor:
    return donor


@router.get("/eligibility", response_model=EligibilityStatus)
async def get_eligibility(donor: CurrentDonor, services: ServicesDep) -> EligibilityStatus:
    result = evaluate(donor, services.clock.now())
    return EligibilityStatus(
        eligible=result.eligible,
        reason=result.reason,
        next_eligible_date=donor.eligibility.next_eligible_date,
        last_donation_date=donor.eligibility.last_donation_date,
        restrictions=donor.eligibility.restrictions,
    )


@router.get("/alerts")
async def available_alerts(donor: CurrentDonor, services: ServicesDep) -> Dict[str, Any]:
    alerts, reason = await services.alert_service.available_alerts_for_donor(donor)
    body: Dict[str, Any] = {"alerts": [alert_document(alert) for alert in alerts]}
    if reason:
        body["message"] = reason
    return body


@router.post("/alerts/{alert_id}/respond")
async def respond_to_alert(
    alert_id: str,
    payload: DonorResponseRequest,
    donor: CurrentDonor,
    services: ServicesDep,
) -> Dict[str, Any]:
    alert, response = await services.alert_service.respond_as_donor(
        alert_id,
        donor,
        payload.response_type,
        message=payload.message,
        estimated_arrival=payload.estimated_arrival,
    )
    return {
        "message": "Response recorded successfully",
        "response": response.model_dump(mode="json"),
        "alert": alert_document(alert),
    }


@router.put("/alerts/{alert_id}/read")
async def mark_notification_read(alert_id: str, donor: CurrentDonor, services: ServicesDep) -> Dict[str, Any]:
    changed = await services.alert_service.mark_opened(alert_id, donor.id)
    return {"message": "Notification marked as read", "notification_id": alert_id, "changed": changed}


@router.put("/preferences")
async def update_preferences(payload: PreferencesUpdate, donor: CurrentDonor, services: ServicesDep) -> Dict[str, Any]:
    changes: Dict[str, Any] = {}
    for key, value in payload.model_dump(exclude_none=True).items():
        if key in CHANNEL_FIELDS:
            changes[f"notification_methods.{key}"] = value
        else:
            changes[key] = value
    if not changes:
        return {"message": "No preference changes supplied", "preferences": donor.preferences.model_dump()}
    updated = await services.donors.update_preferences(donor.id, changes)
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Donor profile not found")
    return {"message": "Preferences updated successfully", "preferences": updated.preferences.model_dump()}


@router.get("/donations")
async def donation_statistics(donor: CurrentDonor) -> Dict[str, Any]:
    return {"statistics": donor.statistics.model_dump(mode="json")}


@router.put("/{donor_id}/verification")
async def set_verification(
    donor_id: str,
    payload: VerificationUpdate,
    _: AdminUser,
    services: ServicesDep,
) -> Dict[str, str]:
    if not await services.donors.set_verification_status(donor_id, payload.verification_status):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Donor not found")
    return {"donor_id": donor_id, "verification_status": payload.verification_status}
