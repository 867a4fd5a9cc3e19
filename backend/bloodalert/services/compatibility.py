"""ABO/Rh red cell compatibility lookups."""

from __future__ import annotations

from typing import Dict, FrozenSet

from ..models.common import BLOOD_TYPES

# alert (recipient) blood type -> donor blood types that can supply it
DONOR_TYPES_BY_ALERT_TYPE: Dict[str, FrozenSet[str]] = {
    "A+": frozenset({"A+", "A-", "O+", "O-"}),
    "A-": frozenset({"A-", "O-"}),
    "B+": frozenset({"B+", "B-", "O+", "O-"}),
    "B-": frozenset({"B-", "O-"}),
    "AB+": frozenset({"A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"}),
    "AB-": frozenset({"A-", "B-", "AB-", "O-"}),
    "O+": frozenset({"O+", "O-"}),
    "O-": frozenset({"O-"}),
}

ALERT_TYPES_BY_DONOR_TYPE: Dict[str, FrozenSet[str]] = {
    donor_type: frozenset(
        alert_type for alert_type, donor_types in DONOR_TYPES_BY_ALERT_TYPE.items() if donor_type in donor_types
    )
    for donor_type in BLOOD_TYPES
}


def compatible_donor_types(blood_type: str) -> FrozenSet[str]:
    return DONOR_TYPES_BY_ALERT_TYPE.get(blood_type, frozenset())


def compatible_alert_types_for_donor(blood_type: str) -> FrozenSet[str]:
    return ALERT_TYPES_BY_DONOR_TYPE.get(blood_type, frozenset())


def can_donate_to(donor_type: str, alert_type: str) -> bool:
    return donor_type in compatible_donor_types(alert_type)
