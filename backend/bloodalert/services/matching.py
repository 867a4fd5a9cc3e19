from __future__ import annotations

from typing import List

from loguru import logger

from ..models.alert import Alert
from ..models.donor import Donor
from ..repositories.donors import DonorRepository
from ..utils.clock import Clock, system_clock
from .compatibility import compatible_donor_types
from .eligibility import evaluate


class DonorMatchingService:
    def __init__(self, donors: DonorRepository, clock: Clock = system_clock, candidate_limit: int = 500) -> None:
        self.donors = donors
        self.clock = clock
        self.candidate_limit = candidate_limit

    async def find_eligible_donors(self, alert: Alert) -> List[Donor]:
        """Compatible, eligible, willing donors in range of the alert, in query order."""
        blood_types = compatible_donor_types(alert.blood_type)
        if not blood_types:
            return []
        if alert.location.coordinates is None:
            logger.warning("Alert {} has no coordinates; skipping donor matching", alert.id)
            return []

        candidates = await self.donors.find_candidates(
            blood_types,
            alert.location.coordinates,
            alert.location.search_radius,
            self.candidate_limit,
        )
        now = self.clock.now()
        eligible: List[Donor] = []
        for donor in candidates:
            if not evaluate(donor, now).eligible:
                continue
            # travel ceiling must cover the whole search radius
            if donor.preferences.max_travel_distance < alert.location.search_radius:
                continue
            if alert.has_responded(donor.id):
                continue
            if donor.preferences.emergency_only and alert.urgency_level != "critical":
                continue
            eligible.append(donor)

        logger.info(
            "Alert {} ({}): {} candidates, {} eligible donors",
            alert.id,
            alert.blood_type,
            len(candidates),
            len(eligible),
        )
        return eligible
