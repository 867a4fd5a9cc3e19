from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, HTTPException, status

from ..models.common import VerificationUpdate
from ..models.hospital import AlertSettingsUpdate, Hospital, HospitalCreate, InventoryUpdate, PartnershipCreate
from ..services.inventory import inventory_summary
from .deps import AdminUser, CurrentHospital, HospitalUser, ServicesDep, VerifiedHospital

router = APIRouter(prefix="/hospitals", tags=["hospitals"])

CHANNEL_FIELDS = ("email", "sms", "push")


def alert_settings_document(hospital: Hospital) -> Dict[str, Any]:
    settings = hospital.alert_settings
    return {
        "preferences": settings.notification_preferences.model_dump(),
        "auto_alert_enabled": settings.auto_alert_enabled,
        "critical_shortage_threshold": settings.critical_shortage_threshold,
    }


@router.post("/profile", response_model=Hospital, status_code=status.HTTP_201_CREATED)
async def create_profile(payload: HospitalCreate, user: HospitalUser, services: ServicesDep) -> Hospital:
    if await services.hospitals.get_by_user(user.id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Hospital profile already exists")
    hospital = Hospital(user_id=user.id, created_at=services.clock.now(), **payload.model_dump())
    return await services.hospitals.insert(hospital)


@router.get("/profile", response_model=Hospital)
async def get_profile(hospital: CurrentHospital) -> Hospital:
    return hospital


@router.get("/inventory")
async def get_inventory(hospital: VerifiedHospital) -> Dict[str, Any]:
    return inventory_summary(hospital)


@router.put("/inventory/{blood_type}")
async def update_inventory(
    blood_type: str,
    payload: InventoryUpdate,
    hospital: VerifiedHospital,
    services: ServicesDep,
) -> Dict[str, Any]:
    result = await services.inventory_service.update_level(hospital, blood_type, payload, updated_by=hospital.user_id)
    return {"message": "Inventory updated successfully", **result}


@router.post("/partnerships")
async def create_partnership(
    payload: PartnershipCreate,
    hospital: VerifiedHospital,
    services: ServicesDep,
) -> Dict[str, Any]:
    partnership = await services.partnerships.establish(hospital, payload.hospital_id, payload.type)
    return {"message": "Partnership created successfully", "partnership": partnership.model_dump(mode="json")}


@router.get("/alert-settings")
async def get_alert_settings(hospital: CurrentHospital) -> Dict[str, Any]:
    return alert_settings_document(hospital)


@router.put("/alert-settings")
async def update_alert_settings(
    payload: AlertSettingsUpdate,
    hospital: CurrentHospital,
    services: ServicesDep,
) -> Dict[str, Any]:
    changes: Dict[str, Any] = {}
    for key, value in payload.model_dump(exclude_none=True).items():
        if key in CHANNEL_FIELDS:
            changes[f"notification_preferences.{key}"] = value
        else:
            changes[key] = value
    if not changes:
        return {"message": "No alert setting changes supplied", **alert_settings_document(hospital)}
    updated = await services.hospitals.update_alert_settings(hospital.id, changes)
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Hospital profile not found")
    return {"message": "Alert settings updated successfully", **alert_settings_document(updated)}


@router.put("/{hospital_id}/verification")
async def set_hospital_verification(
    hospital_id: str,
    payload: VerificationUpdate,
    _: AdminUser,
    services: ServicesDep,
) -> Dict[str, str]:
    if not await services.hospitals.set_verification_status(hospital_id, payload.verification_status):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Hospital not found")
    return {"hospital_id": hospital_id, "verification_status": payload.verification_status}
