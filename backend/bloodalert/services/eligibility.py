from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta

from ..models.donor import Donor

MIN_AGE = 18
MAX_AGE = 65
MIN_WEIGHT_KG = 45
DONATION_INTERVAL_DAYS = 56
WHOLE_BLOOD_VOLUME_ML = 450


@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    reason: str


def calculate_age(date_of_birth: date, today: date) -> int:
    age = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def evaluate(donor: Donor, now: datetime) -> EligibilityResult:
    """Current fitness to donate, derived only from the donor's record and ``now``."""
    age = calculate_age(donor.personal_info.date_of_birth.date(), now.date())
    if age < MIN_AGE or age > MAX_AGE:
        return EligibilityResult(False, f"Age not within eligible range ({MIN_AGE}-{MAX_AGE})")

    if donor.medical_info.weight < MIN_WEIGHT_KG:
        return EligibilityResult(False, f"Weight below minimum requirement ({MIN_WEIGHT_KG}kg)")

    last_donation = donor.eligibility.last_donation_date
    if last_donation is not None:
        days_since = (now - last_donation).days
        if days_since < DONATION_INTERVAL_DAYS:
            return EligibilityResult(
                False, f"Must wait {DONATION_INTERVAL_DAYS - days_since} more days since last donation"
            )

    deferral = donor.eligibility.temporary_deferral
    if deferral is not None and deferral.until is not None and deferral.until > now:
        return EligibilityResult(False, deferral.reason or "Temporarily deferred")

    if donor.medical_info.has_infectious_disease:
        return EligibilityResult(False, "Medical condition prevents donation")

    return EligibilityResult(True, "Eligible for donation")


def next_eligible_date(donated_at: datetime) -> datetime:
    return donated_at + timedelta(days=DONATION_INTERVAL_DAYS)
