"""Alert use cases: the operations the HTTP layer exposes for shortage alerts.

Every change to a stored alert goes through :meth:`AlertService._mutate`,
which loads the alert, applies the expiry edge, runs the mutation and saves
it conditionally on the version it loaded. A lost race reloads and re-runs
the mutation; a mutation that raises leaves the stored alert untouched.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from loguru import logger
from pymongo.errors import PyMongoError

from ..errors import ConcurrentModificationError, NotFoundError, StateError, StoreUnavailableError
from ..hub import hospital_topic
from ..models.alert import (
    Alert,
    AlertCreate,
    AlertMetrics,
    ContactInfo,
    DonationDetails,
    DonorResponse,
    ShareRecord,
)
from ..models.donor import Donor
from ..models.hospital import Hospital
from ..repositories.alerts import AlertRepository
from ..repositories.donors import DonorRepository
from ..repositories.hospitals import HospitalRepository
from ..utils.clock import Clock, system_clock
from ..utils.logging import log_db_error
from ..utils.notifications import DeliveryError
from ..utils.templates import hospital_alert_confirmation
from . import sharing
from .compatibility import compatible_alert_types_for_donor
from .dispatch import DispatchOutcome, NotificationDispatcher, empty_results
from .eligibility import evaluate
from .matching import DonorMatchingService

T = TypeVar("T")
Mutation = Callable[[Alert, datetime], T]

URGENCY_RANK = {"critical": 0, "high": 1, "medium": 2, "low": 3}
DONOR_ALERT_LIMIT = 20


def alert_payload(alert: Alert) -> Dict[str, Any]:
    return alert.model_dump(mode="json", by_alias=True)


@dataclass
class CreatedAlert:
    alert: Alert
    notification_results: Dict[str, Dict[str, int]] = field(default_factory=empty_results)
    eligible_donors: int = 0


@dataclass
class AlertPage:
    alerts: List[Alert]
    page: int
    pages: int
    total: int


class AlertService:
    def __init__(
        self,
        alerts: AlertRepository,
        donors: DonorRepository,
        hospitals: HospitalRepository,
        matcher: DonorMatchingService,
        dispatcher: NotificationDispatcher,
        publisher,
        clock: Clock = system_clock,
        write_attempts: int = 3,
    ) -> None:
        self.alerts = alerts
        self.donors = donors
        self.hospitals = hospitals
        self.matcher = matcher
        self.dispatcher = dispatcher
        self.publisher = publisher
        self.clock = clock
        self.write_attempts = max(1, write_attempts)

    # loading and saving

    async def _load(self, alert_id: str, owner_id: Optional[str] = None) -> Alert:
        alert = await self.alerts.get(alert_id)
        if alert is None or (owner_id is not None and alert.hospital_id != owner_id):
            raise NotFoundError("Alert not found")
        return alert

    async def _mutate(self, alert_id: str, mutation: Mutation, *, owner_id: Optional[str] = None) -> Tuple[Alert, T]:
        for attempt in range(1, self.write_attempts + 1):
            alert = await self._load(alert_id, owner_id)
            now = self.clock.now()
            alert.refresh_expiry(now)
            result = mutation(alert, now)
            try:
                await self.alerts.save(alert)
            except ConcurrentModificationError:
                logger.warning("Alert {} changed during update (attempt {}/{})", alert_id, attempt, self.write_attempts)
                continue
            return alert, result
        raise StoreUnavailableError("Alert is busy, please retry")

    async def store_observed_expiry(self, alert: Alert) -> None:
        """Best-effort write of an expiry observed on read."""
        try:
            await self.alerts.save(alert)
        except ConcurrentModificationError:
            logger.debug("Alert {} changed before its expiry could be stored", alert.id)

    async def _publish(self, topic: str, event: str, payload: Dict[str, Any]) -> None:
        await self.publisher.publish(topic, event, payload)

    # creation

    async def create_alert(
        self,
        hospital: Hospital,
        payload: AlertCreate,
        *,
        created_by: str,
        auto_generated: bool = False,
    ) -> CreatedAlert:
        now = self.clock.now()
        alert = Alert.create(
            payload,
            hospital_id=hospital.id,
            coordinates=hospital.location,
            created_by=created_by,
            now=now,
            auto_generated=auto_generated,
        )
        await self.alerts.insert(alert)
        logger.info(
            "Alert {} created by hospital {}: {} x{} ({})",
            alert.id,
            hospital.id,
            alert.blood_type,
            alert.units_needed,
            alert.urgency_level,
        )

        try:
            donors = await self.matcher.find_eligible_donors(alert)
        except PyMongoError as exc:
            log_db_error("find_eligible_donors", exc)
            donors = []

        outcome = await self.dispatcher.dispatch(alert, donors, hospital)
        alert = await self._store_dispatch(alert, outcome)

        await self._confirm_to_hospital(hospital, alert, len(donors))
        await self._publish(
            hospital_topic(hospital.id),
            "alert-created",
            {
                "alert": alert_payload(alert),
                "notification_results": outcome.results,
                "eligible_donors": len(donors),
            },
        )
        await self.hospitals.increment_requests(hospital.id)
        return CreatedAlert(alert, outcome.results, len(donors))

    async def _store_dispatch(self, alert: Alert, outcome: DispatchOutcome) -> Alert:
        if not outcome.attempted:
            return alert
        try:
            return await self.alerts.save(alert)
        except ConcurrentModificationError:
            # a donor may have responded while notifications were going out
            alert, _ = await self._mutate(alert.id, lambda fresh, now: outcome.apply_to(fresh))
            return alert

    async def _confirm_to_hospital(self, hospital: Hospital, alert: Alert, eligible_donors: int) -> None:
        message = hospital_alert_confirmation(alert, eligible_donors)
        try:
            await self.dispatcher.sender.send("email", hospital.email, message)
        except DeliveryError as exc:
            logger.warning("Could not send alert confirmation to hospital {}: {}", hospital.id, exc)

    # queries

    async def list_alerts(
        self,
        hospital_id: str,
        *,
        status: Optional[str] = None,
        blood_type: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> AlertPage:
        now = self.clock.now()
        alerts, total = await self.alerts.list_for_hospital(
            hospital_id,
            now=now,
            status=status,
            blood_type=blood_type,
            skip=(page - 1) * limit,
            limit=limit,
        )
        for alert in alerts:
            alert.refresh_expiry(now)
        return AlertPage(alerts=alerts, page=page, pages=math.ceil(total / limit) if limit else 0, total=total)

    async def get_alert(self, alert_id: str, hospital_id: str) -> Alert:
        alert = await self._load(alert_id, hospital_id)
        if alert.refresh_expiry(self.clock.now()):
            await self.store_observed_expiry(alert)
        return alert

    async def get_metrics(self, alert_id: str, hospital_id: str) -> Tuple[Alert, AlertMetrics]:
        alert = await self.get_alert(alert_id, hospital_id)
        return alert, alert.metrics(self.clock.now())

    async def list_shared_with(
        self, hospital_id: str, *, page: int = 1, limit: int = 20
    ) -> Tuple[List[Tuple[Alert, ShareRecord]], int]:
        """Open alerts shared with the hospital, each with its share record, plus the total match count."""
        alerts, total = await self.alerts.find_shared_with(
            hospital_id, now=self.clock.now(), skip=(page - 1) * limit, limit=limit
        )
        return [(alert, alert.find_share(hospital_id)) for alert in alerts], total

    async def available_alerts_for_donor(self, donor: Donor) -> Tuple[List[Alert], Optional[str]]:
        """Open alerts the donor could help with, or an empty list and the reason they cannot."""
        now = self.clock.now()
        eligibility = evaluate(donor, now)
        if not eligibility.eligible:
            return [], f"You are currently not eligible: {eligibility.reason}"
        blood_types = compatible_alert_types_for_donor(donor.medical_info.blood_group)
        alerts = await self.alerts.find_open_near(
            blood_types,
            donor.location,
            donor.preferences.max_travel_distance,
            now,
            limit=DONOR_ALERT_LIMIT,
        )
        available = [alert for alert in alerts if not alert.has_responded(donor.id)]
        # stable sort keeps newest first within an urgency level
        available.sort(key=lambda alert: URGENCY_RANK[alert.urgency_level])
        return available, None

    # hospital actions

    async def update_status(
        self,
        alert_id: str,
        hospital_id: str,
        new_status: str,
        *,
        reason: Optional[str],
        modified_by: str,
    ) -> Tuple[Alert, str]:
        def change(alert: Alert, now: datetime) -> str:
            if new_status == "cancelled" and not alert.is_terminal:
                return alert.cancel(reason=reason, modified_by=modified_by, now=now)
            return alert.override_status(new_status, reason=reason, modified_by=modified_by, now=now)

        alert, old_status = await self._mutate(alert_id, change, owner_id=hospital_id)
        await self._publish(
            hospital_topic(hospital_id),
            "alert-status-updated",
            {"alert_id": alert.id, "old_status": old_status, "new_status": alert.status, "reason": reason},
        )
        return alert, old_status

    async def extend_alert(
        self, alert_id: str, hospital_id: str, hours: int, *, modified_by: str
    ) -> Tuple[Alert, datetime, datetime]:
        alert, (old_expiry, new_expiry) = await self._mutate(
            alert_id,
            lambda alert, now: alert.extend_expiry(hours, modified_by=modified_by, now=now),
            owner_id=hospital_id,
        )
        await self._publish(
            hospital_topic(hospital_id),
            "alert-extended",
            {"alert_id": alert.id, "old_expiry": old_expiry.isoformat(), "new_expiry": new_expiry.isoformat()},
        )
        return alert, old_expiry, new_expiry

    async def share_alert(
        self,
        alert_id: str,
        requester: Hospital,
        hospital_ids: Iterable[str],
        message: Optional[str],
    ) -> Tuple[Alert, List[sharing.ShareResult]]:
        targets = list(hospital_ids)
        alert, results = await self._mutate(
            alert_id,
            lambda alert, now: sharing.share_alert(alert, requester, targets, message, now),
            owner_id=requester.id,
        )
        payload = {"alert": alert_payload(alert), "shared_by": requester.name, "message": message}
        for result in results:
            if result.success:
                await self._publish(hospital_topic(result.hospital_id), "alert-shared", payload)
        logger.info(
            "Alert {} shared by {}: {}/{} hospitals",
            alert.id,
            requester.id,
            sum(1 for result in results if result.success),
            len(results),
        )
        return alert, results

    async def respond_to_share(
        self,
        alert_id: str,
        hospital: Hospital,
        response: str,
        *,
        units_promised: int = 0,
        notes: Optional[str] = None,
    ) -> Tuple[Alert, ShareRecord]:
        alert, record = await self._mutate(
            alert_id,
            lambda alert, now: sharing.respond_to_share(alert, hospital.id, response, units_promised, notes, now),
        )
        await self._publish(
            hospital_topic(alert.hospital_id),
            "share-response",
            {
                "alert_id": alert.id,
                "responding_hospital": hospital.name,
                "response": response,
                "units_promised": units_promised,
            },
        )
        return alert, record

    async def record_donation(
        self,
        alert_id: str,
        hospital_id: str,
        donor_id: str,
        details: DonationDetails,
    ) -> Tuple[Alert, DonorResponse]:
        donor = await self.donors.get(donor_id)
        if donor is None:
            raise NotFoundError("Donor not found")
        alert, response = await self._mutate(
            alert_id,
            lambda alert, now: alert.record_donation(donor_id, details, now=now),
            owner_id=hospital_id,
        )
        donated_at = details.date or response.actual_arrival
        await self.donors.record_donation(donor_id, donated_at)
        await self._publish(
            hospital_topic(hospital_id),
            "donation-recorded",
            {
                "alert_id": alert.id,
                "donor_id": donor_id,
                "units_collected": alert.units_collected,
                "units_needed": alert.units_needed,
                "status": alert.status,
            },
        )
        return alert, response

    # donor actions

    async def respond_as_donor(
        self,
        alert_id: str,
        donor: Donor,
        response_type: str,
        *,
        message: Optional[str] = None,
        estimated_arrival: Optional[datetime] = None,
    ) -> Tuple[Alert, DonorResponse]:
        contact = ContactInfo(phone=donor.personal_info.phone, email=donor.email)

        def respond(alert: Alert, now: datetime) -> DonorResponse:
            if alert.effective_status(now) != "active":
                raise StateError("Alert is no longer active")
            return alert.add_response(
                donor.id,
                response_type,
                now=now,
                message=message,
                contact_info=contact,
                estimated_arrival=estimated_arrival,
            )

        alert, response = await self._mutate(alert_id, respond)
        await self._publish(
            hospital_topic(alert.hospital_id),
            "alert-response",
            {
                "alert_id": alert.id,
                "response": response.model_dump(mode="json"),
                "donor_name": donor.display_name,
                "donor_blood_type": donor.medical_info.blood_group,
            },
        )
        return alert, response

    async def mark_opened(self, alert_id: str, donor_id: str) -> bool:
        _, changed = await self._mutate(alert_id, lambda alert, now: alert.mark_opened(donor_id, now))
        return changed

    # expiry

    async def expire_due_alerts(self, limit: int = 200) -> int:
        now = self.clock.now()
        expired = 0
        for alert in await self.alerts.find_due_for_expiry(now, limit):
            if not alert.refresh_expiry(now):
                continue
            try:
                await self.alerts.save(alert)
            except ConcurrentModificationError:
                # picked up again on the next sweep
                continue
            expired += 1
            await self._publish(
                hospital_topic(alert.hospital_id),
                "alert-expired",
                {"alert_id": alert.id, "expired_at": alert.expires_at.isoformat()},
            )
        if expired:
            logger.info("Expiry sweep marked {} alerts as expired", expired)
        return expired


async def run_expiry_sweeper(service: AlertService, interval_s: float) -> None:
    """Expire lapsed alerts every ``interval_s`` seconds until cancelled."""
    while True:
        try:
            await service.expire_due_alerts()
        except PyMongoError as exc:
            log_db_error("expire_due_alerts", exc)
        await asyncio.sleep(interval_s)
