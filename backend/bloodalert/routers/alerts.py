from __future__ import annotations

import math
from typing import Any, Dict, List, Literal

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from ..models.alert import AlertCreate, DonationDetails
from ..models.common import AlertStatus, BloodType
from ..schemas.alert import alert_document, shared_alert_document
from .deps import ServicesDep, VerifiedHospital

router = APIRouter(prefix="/alerts", tags=["alerts"])


class StatusUpdateRequest(BaseModel):
    status: AlertStatus
    reason: str | None = None


class ExtendRequest(BaseModel):
    hours: int = Field(ge=1, le=168)


class ShareRequest(BaseModel):
    hospital_ids: List[str] = Field(min_length=1)
    message: str | None = None


class ShareResponseRequest(BaseModel):
    response: Literal["accepted", "declined", "partially_fulfilled"]
    units_promised: int = Field(default=0, ge=0)
    notes: str | None = None


class DonationRequest(BaseModel):
    donor_id: str
    donation_details: DonationDetails = Field(default_factory=DonationDetails)


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_alert(payload: AlertCreate, hospital: VerifiedHospital, services: ServicesDep) -> Dict[str, Any]:
    created = await services.alert_service.create_alert(hospital, payload, created_by=hospital.user_id)
    return {
        "message": "Blood shortage alert created successfully",
        "alert": alert_document(created.alert),
        "notification_results": created.notification_results,
        "eligible_donors": created.eligible_donors,
    }


@router.get("/")
async def list_alerts(
    hospital: VerifiedHospital,
    services: ServicesDep,
    status_filter: AlertStatus | None = Query(default=None, alias="status"),
    blood_type: BloodType | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
) -> Dict[str, Any]:
    result = await services.alert_service.list_alerts(
        hospital.id, status=status_filter, blood_type=blood_type, page=page, limit=limit
    )
    return {
        "alerts": [alert_document(alert) for alert in result.alerts],
        "pagination": {"current": result.page, "pages": result.pages, "total": result.total},
    }


@router.get("/shared/received")
async def shared_alerts(
    hospital: VerifiedHospital,
    services: ServicesDep,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
) -> Dict[str, Any]:
    shared, total = await services.alert_service.list_shared_with(hospital.id, page=page, limit=limit)
    return {
        "alerts": [shared_alert_document(alert, record) for alert, record in shared],
        "pagination": {"current": page, "pages": math.ceil(total / limit), "total": total},
    }


@router.get("/{alert_id}")
async def get_alert(alert_id: str, hospital: VerifiedHospital, services: ServicesDep) -> Dict[str, Any]:
    alert, metrics = await services.alert_service.get_metrics(alert_id, hospital.id)
    return {"alert": alert_document(alert), "metrics": metrics.model_dump()}


@router.get("/{alert_id}/metrics")
async def get_alert_metrics(alert_id: str, hospital: VerifiedHospital, services: ServicesDep) -> Dict[str, Any]:
    _, metrics = await services.alert_service.get_metrics(alert_id, hospital.id)
    return metrics.model_dump()


@router.put("/{alert_id}/status")
async def update_status(
    alert_id: str,
    payload: StatusUpdateRequest,
    hospital: VerifiedHospital,
    services: ServicesDep,
) -> Dict[str, Any]:
    alert, old_status = await services.alert_service.update_status(
        alert_id, hospital.id, payload.status, reason=payload.reason, modified_by=hospital.user_id
    )
    return {
        "message": "Alert status updated successfully",
        "old_status": old_status,
        "alert": alert_document(alert),
    }


@router.put("/{alert_id}/extend")
async def extend_alert(
    alert_id: str,
    payload: ExtendRequest,
    hospital: VerifiedHospital,
    services: ServicesDep,
) -> Dict[str, Any]:
    _, old_expiry, new_expiry = await services.alert_service.extend_alert(
        alert_id, hospital.id, payload.hours, modified_by=hospital.user_id
    )
    return {
        "message": f"Alert extended by {payload.hours} hours",
        "old_expiry": old_expiry,
        "new_expiry": new_expiry,
    }


@router.post("/{alert_id}/share")
async def share_alert(
    alert_id: str,
    payload: ShareRequest,
    hospital: VerifiedHospital,
    services: ServicesDep,
) -> Dict[str, Any]:
    _, results = await services.alert_service.share_alert(alert_id, hospital, payload.hospital_ids, payload.message)
    return {"message": "Alert sharing completed", "results": [result.to_dict() for result in results]}


@router.post("/{alert_id}/respond-share")
async def respond_to_share(
    alert_id: str,
    payload: ShareResponseRequest,
    hospital: VerifiedHospital,
    services: ServicesDep,
) -> Dict[str, Any]:
    alert, record = await services.alert_service.respond_to_share(
        alert_id,
        hospital,
        payload.response,
        units_promised=payload.units_promised,
        notes=payload.notes,
    )
    return {
        "message": "Response recorded successfully",
        "response": {"alert": alert.id, **record.model_dump(mode="json")},
    }


@router.post("/{alert_id}/donations")
async def record_donation(
    alert_id: str,
    payload: DonationRequest,
    hospital: VerifiedHospital,
    services: ServicesDep,
) -> Dict[str, Any]:
    details = payload.donation_details
    alert, response = await services.alert_service.record_donation(alert_id, hospital.id, payload.donor_id, details)
    return {
        "message": "Donation recorded successfully",
        "response": response.model_dump(mode="json"),
        "alert": alert_document(alert),
    }
