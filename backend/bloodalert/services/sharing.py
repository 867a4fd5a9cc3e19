from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from loguru import logger

from ..errors import AlertValidationError, ConflictError, NotFoundError, StateError
from ..models.alert import Alert, ShareRecord
from ..models.hospital import Hospital, Partnership
from ..repositories.hospitals import HospitalRepository
from ..utils.clock import Clock, system_clock

NOT_A_PARTNER = "Hospital is not a partner"
ALREADY_SHARED = "Alert already shared with this hospital"


@dataclass
class ShareResult:
    hospital_id: str
    success: bool
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        if self.reason is None:
            data.pop("reason")
        return data


def ensure_shareable(alert: Alert, now: datetime) -> None:
    if not alert.sharing.allow_sharing:
        raise StateError("Alert sharing is not allowed")
    alert.ensure_open(now, "Sharing")


def share_alert(
    alert: Alert,
    requester: Hospital,
    hospital_ids: Iterable[str],
    message: Optional[str],
    now: datetime,
) -> List[ShareResult]:
    """Share with each partner hospital; per-target failures are reported, not raised."""
    ensure_shareable(alert, now)
    results: List[ShareResult] = []
    for hospital_id in hospital_ids:
        if not requester.can_share_with(hospital_id):
            results.append(ShareResult(hospital_id, False, NOT_A_PARTNER))
            continue
        if alert.find_share(hospital_id) is not None:
            results.append(ShareResult(hospital_id, False, ALREADY_SHARED))
            continue
        alert.share_with(hospital_id, notes=message, now=now)
        results.append(ShareResult(hospital_id, True))
    return results


def respond_to_share(
    alert: Alert,
    hospital_id: str,
    response: str,
    units_promised: int,
    notes: Optional[str],
    now: datetime,
) -> ShareRecord:
    return alert.respond_to_share(
        hospital_id,
        response,
        units_promised=units_promised,
        notes=notes,
        now=now,
    )


class PartnershipService:
    def __init__(self, hospitals: HospitalRepository, clock: Clock = system_clock) -> None:
        self.hospitals = hospitals
        self.clock = clock

    async def establish(self, hospital: Hospital, target_id: str, partnership_type: str) -> Partnership:
        """Record the partnership on both hospitals."""
        if target_id == hospital.id:
            raise AlertValidationError.for_field("hospital_id", "Cannot create partnership with yourself")
        target = await self.hospitals.get(target_id)
        if target is None:
            raise NotFoundError("Target hospital not found")
        if hospital.partnership_with(target_id) is not None:
            raise ConflictError("Partnership already exists")

        now = self.clock.now()
        ours = Partnership(hospital_id=target_id, type=partnership_type, established_date=now)
        if not await self.hospitals.add_partnership(hospital.id, ours):
            raise ConflictError("Partnership already exists")
        theirs = Partnership(hospital_id=hospital.id, type=partnership_type, established_date=now)
        if not await self.hospitals.add_partnership(target_id, theirs):
            logger.warning("Hospital {} already lists {} as a partner", target_id, hospital.id)
        hospital.partnerships.append(ours)
        logger.info("Partnership {} established between {} and {}", partnership_type, hospital.id, target_id)
        return ours
