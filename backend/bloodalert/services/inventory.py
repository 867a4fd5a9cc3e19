from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List, Optional

from loguru import logger

from ..errors import AlertValidationError, ConflictError
from ..hub import hospital_topic
from ..models.alert import AlertCreate, PatientInfo
from ..models.common import BLOOD_TYPES
from ..models.hospital import Hospital, InventoryLevel, InventoryUpdate
from ..repositories.alerts import AlertRepository
from ..repositories.hospitals import HospitalRepository
from ..utils.clock import Clock, system_clock
from .alerts import AlertService

AUTO_ALERT_REASON = "Automatic critical shortage alert"
AUTO_ALERT_RADIUS_KM = 50


def inventory_summary(hospital: Hospital) -> Dict[str, Any]:
    inventory: List[Dict[str, Any]] = []
    for blood_type in BLOOD_TYPES:
        level = hospital.level(blood_type)
        inventory.append(
            {
                "blood_type": blood_type,
                "available": level.available,
                "reserved": level.reserved,
                "critical": level.critical,
                "is_critical": level.is_critical,
                "deficit": level.deficit,
                "last_updated": level.last_updated,
            }
        )
    shortages = hospital.critical_shortages()
    return {
        "inventory": inventory,
        "summary": {
            "total_units": sum(item["available"] for item in inventory),
            "total_critical": len(shortages),
            "total_deficit": sum(item["deficit"] for item in inventory),
            "critical_shortages": shortages,
        },
        "last_updated": max(item["last_updated"] for item in inventory),
    }


def apply_update(level: InventoryLevel, update: InventoryUpdate) -> InventoryLevel:
    """New level after a signed change (floored at zero) or direct values."""
    if update.change is not None:
        return level.model_copy(update={"available": max(0, level.available + update.change)})
    changes = update.model_dump(include={"available", "reserved", "critical"}, exclude_none=True)
    return level.model_copy(update=changes)


class InventoryService:
    def __init__(
        self,
        hospitals: HospitalRepository,
        alerts: AlertRepository,
        alert_service: AlertService,
        publisher,
        clock: Clock = system_clock,
    ) -> None:
        self.hospitals = hospitals
        self.alerts = alerts
        self.alert_service = alert_service
        self.publisher = publisher
        self.clock = clock

    async def update_level(
        self,
        hospital: Hospital,
        blood_type: str,
        update: InventoryUpdate,
        *,
        updated_by: str,
    ) -> Dict[str, Any]:
        if blood_type not in BLOOD_TYPES:
            raise AlertValidationError.for_field("blood_type", "Invalid blood type")

        now = self.clock.now()
        old = hospital.level(blood_type)
        new = apply_update(old, update)
        new.last_updated = now
        await self.hospitals.save_inventory_level(hospital.id, blood_type, new)
        hospital.inventory[blood_type] = new
        logger.info(
            "Inventory updated for {}: {} from {} to {} units",
            hospital.name,
            blood_type,
            old.available,
            new.available,
        )

        topic = hospital_topic(hospital.id)
        await self.publisher.publish(
            topic,
            "inventory-updated",
            {
                "blood_type": blood_type,
                "old_value": old.available,
                "new_value": new.available,
                "is_critical": new.is_critical,
                "change": update.change,
                "reason": update.reason,
            },
        )
        if new.is_critical and not old.is_critical:
            await self.publisher.publish(
                topic,
                "critical-shortage-alert",
                {
                    "blood_type": blood_type,
                    "available": new.available,
                    "critical": new.critical,
                    "deficit": new.deficit,
                },
            )
        elif old.is_critical and not new.is_critical:
            await self.publisher.publish(
                topic,
                "shortage-resolved",
                {"blood_type": blood_type, "available": new.available, "critical": new.critical},
            )

        auto_alert_id = None
        if new.is_critical and hospital.alert_settings.auto_alert_enabled:
            auto_alert_id = await self._raise_auto_alert(hospital, blood_type, new, updated_by)

        return {
            "blood_type": blood_type,
            "old_inventory": old,
            "new_inventory": new,
            "is_critical": new.is_critical,
            "change": update.change if update.change is not None else "Direct update",
            "auto_alert_id": auto_alert_id,
        }

    async def _raise_auto_alert(
        self, hospital: Hospital, blood_type: str, level: InventoryLevel, created_by: str
    ) -> Optional[str]:
        now = self.clock.now()
        existing = await self.alerts.find_open_auto_alert(hospital.id, blood_type)
        if existing is not None:
            if not existing.refresh_expiry(now):
                logger.info("Open automatic alert {} already covers {} at {}", existing.id, blood_type, hospital.id)
                return None
            # lapsed but not yet swept; it must leave the unique index first
            await self.alert_service.store_observed_expiry(existing)

        payload = AlertCreate(
            blood_type=blood_type,
            urgency_level="critical",
            units_needed=max(1, level.critical - level.available),
            reason=AUTO_ALERT_REASON,
            patient_info=PatientInfo(
                condition="Critical blood shortage - automatic alert",
                is_emergency=True,
                required_by=now + timedelta(hours=24),
            ),
            search_radius=AUTO_ALERT_RADIUS_KM,
        )
        try:
            created = await self.alert_service.create_alert(
                hospital, payload, created_by=created_by, auto_generated=True
            )
        except ConflictError:
            logger.info("Concurrent update already raised an automatic {} alert for {}", blood_type, hospital.id)
            return None

        await self.publisher.publish(
            hospital_topic(hospital.id),
            "critical-shortage",
            {
                "blood_type": blood_type,
                "available": level.available,
                "critical": level.critical,
                "alert_id": created.alert.id,
            },
        )
        return created.alert.id
