from __future__ import annotations

import html
from typing import Optional

from ..models.alert import Alert
from ..models.donor import Donor
from ..models.hospital import Hospital
from .notifications import OutboundMessage

URGENCY_COLORS = {
    "low": "#28a745",
    "medium": "#ffc107",
    "high": "#fd7e14",
    "critical": "#dc3545",
}


def _hospital_name(hospital: Optional[Hospital]) -> str:
    return hospital.name if hospital else "a nearby hospital"


def donor_alert_email(alert: Alert, donor: Donor, hospital: Optional[Hospital], frontend_url: str) -> OutboundMessage:
    urgency = alert.urgency_level.upper()
    color = URGENCY_COLORS.get(alert.urgency_level, "#dc3545")
    required_by = alert.patient_info.required_by.strftime("%Y-%m-%d %H:%M UTC")
    respond_url = f"{frontend_url}/alerts/{alert.id}/respond"
    body = (
        f"Dear {donor.personal_info.first_name},\n\n"
        f"{_hospital_name(hospital)} has a {alert.urgency_level} shortage of {alert.blood_type} blood.\n"
        f"Units needed: {alert.units_needed}. Required by: {required_by}.\n"
        f"Your blood type ({donor.medical_info.blood_group}) is compatible with this request.\n\n"
        f"Respond here: {respond_url}\n"
    )
    first_name = html.escape(donor.personal_info.first_name)
    hospital_name = html.escape(_hospital_name(hospital))
    content = f"""
      <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <div style="background: {color}; color: white; padding: 20px; text-align: center;">
          <h1>BLOOD DONATION ALERT</h1>
          <h2>{urgency} SHORTAGE</h2>
        </div>
        <p>Dear {first_name},</p>
        <p><strong>{hospital_name}</strong> needs <strong>{alert.units_needed}</strong>
           units of <strong>{alert.blood_type}</strong> blood by {required_by}.</p>
        <p>
          <a href="{respond_url}?response=interested">I Can Donate</a> |
          <a href="{respond_url}?response=not_available">Not Available</a>
        </p>
        <p style="font-size: 0.8em; color: #999;">
          <a href="{frontend_url}/unsubscribe/{donor.id}">Unsubscribe</a>
        </p>
      </div>
    """
    return OutboundMessage(
        subject=f"URGENT: {alert.blood_type} Blood Needed - {urgency} Alert",
        body=body,
        html=content,
    )


def donor_alert_sms(alert: Alert, hospital: Optional[Hospital]) -> OutboundMessage:
    required_by = alert.patient_info.required_by.strftime("%Y-%m-%d")
    phone = f" or call {hospital.emergency_phone}" if hospital else ""
    body = (
        f"BLOOD ALERT: {alert.urgency_level.upper()} shortage of {alert.blood_type} blood at "
        f"{_hospital_name(hospital)}. {alert.units_needed} units needed by {required_by}. "
        f"Can you help? Reply YES to confirm{phone}."
    )
    return OutboundMessage(subject="Blood alert", body=body)


def donor_alert_push(alert: Alert) -> OutboundMessage:
    return OutboundMessage(
        subject=f"{alert.blood_type} Blood Needed",
        body=f"{alert.urgency_level.upper()} shortage at nearby hospital",
        data={
            "alert_id": alert.id,
            "blood_type": alert.blood_type,
            "urgency_level": alert.urgency_level,
            "url": f"/alerts/{alert.id}",
        },
    )


def hospital_alert_confirmation(alert: Alert, eligible_donors: int) -> OutboundMessage:
    body = (
        f"Blood shortage alert created.\n"
        f"Blood type: {alert.blood_type}\n"
        f"Units needed: {alert.units_needed}\n"
        f"Urgency level: {alert.urgency_level}\n"
        f"Required by: {alert.patient_info.required_by.isoformat()}\n\n"
        f"Notifications were sent to {eligible_donors} eligible donors in your area."
    )
    return OutboundMessage(subject=f"Blood Shortage Alert Created - {alert.blood_type}", body=body)
