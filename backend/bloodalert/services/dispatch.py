"""Fan-out of shortage alerts to matched donors.

Bookkeeping rules:

* a channel's ``sent`` counts successful sends on that channel;
* any failure for a donor stops that donor's remaining sends and adds one
  ``failed`` to every channel the donor has enabled;
* the alert gets one notification record per fully notified donor, tagged
  with the donor's preferred channel (email > sms > push);
* ``notifications.sent`` grows by the number of donors attempted.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger

from ..models.alert import Alert
from ..models.donor import Donor
from ..models.hospital import Hospital
from ..utils.clock import Clock, system_clock
from ..utils.notifications import MessageSender, OutboundMessage
from ..utils.templates import donor_alert_email, donor_alert_push, donor_alert_sms

CHANNEL_PRIORITY = ("email", "sms", "push")


def enabled_channels(donor: Donor) -> List[str]:
    methods = donor.preferences.notification_methods
    return [channel for channel in CHANNEL_PRIORITY if getattr(methods, channel)]


def preferred_method(donor: Donor) -> str:
    channels = enabled_channels(donor)
    return channels[0] if channels else "email"


def empty_results() -> Dict[str, Dict[str, int]]:
    return {channel: {"sent": 0, "failed": 0} for channel in CHANNEL_PRIORITY}


@dataclass
class DispatchOutcome:
    results: Dict[str, Dict[str, int]] = field(default_factory=empty_results)
    notified: List[Tuple[str, str]] = field(default_factory=list)
    attempted: int = 0
    sent_at: Optional[datetime] = None

    def apply_to(self, alert: Alert) -> None:
        """Record the outcome on an alert; safe to re-apply to a freshly loaded copy."""
        for donor_id, method in self.notified:
            alert.record_notification(donor_id, method, self.sent_at)
        alert.notifications.sent += self.attempted


@dataclass
class _DonorDelivery:
    donor: Donor
    sent: List[str]
    failed: bool


class NotificationDispatcher:
    def __init__(
        self,
        sender: MessageSender,
        clock: Clock = system_clock,
        concurrency: int = 10,
        frontend_url: str = "http://localhost:5173",
    ) -> None:
        self.sender = sender
        self.clock = clock
        self.semaphore = asyncio.Semaphore(concurrency)
        self.frontend_url = frontend_url

    def _address(self, channel: str, donor: Donor) -> str:
        if channel == "email":
            return donor.email or ""
        if channel == "sms":
            return donor.personal_info.phone
        return donor.id

    def _message(self, channel: str, alert: Alert, donor: Donor, hospital: Optional[Hospital]) -> OutboundMessage:
        if channel == "email":
            return donor_alert_email(alert, donor, hospital, self.frontend_url)
        if channel == "sms":
            return donor_alert_sms(alert, hospital)
        return donor_alert_push(alert)

    async def _deliver(self, alert: Alert, donor: Donor, hospital: Optional[Hospital]) -> _DonorDelivery:
        sent: List[str] = []
        async with self.semaphore:
            try:
                for channel in enabled_channels(donor):
                    await self.sender.send(channel, self._address(channel, donor), self._message(channel, alert, donor, hospital))
                    sent.append(channel)
            except Exception as exc:
                logger.warning("Failed to send notification to donor {}: {}", donor.id, exc)
                return _DonorDelivery(donor, sent, failed=True)
        return _DonorDelivery(donor, sent, failed=False)

    async def dispatch(
        self,
        alert: Alert,
        donors: Sequence[Donor],
        hospital: Optional[Hospital] = None,
    ) -> DispatchOutcome:
        outcome = DispatchOutcome(attempted=len(donors), sent_at=self.clock.now())
        if alert.is_inert(outcome.sent_at):
            logger.info("Alert {} is {}; not notifying donors", alert.id, alert.effective_status(outcome.sent_at))
            return DispatchOutcome(sent_at=outcome.sent_at)

        deliveries = await asyncio.gather(*(self._deliver(alert, donor, hospital) for donor in donors))
        for delivery in deliveries:
            for channel in delivery.sent:
                outcome.results[channel]["sent"] += 1
            if delivery.failed:
                for channel in enabled_channels(delivery.donor):
                    outcome.results[channel]["failed"] += 1
            else:
                outcome.notified.append((delivery.donor.id, preferred_method(delivery.donor)))

        outcome.apply_to(alert)
        logger.info("Dispatched alert {} to {} donors: {}", alert.id, outcome.attempted, outcome.results)
        return outcome
