from __future__ import annotations

from dataclasses import dataclass

from motor.motor_asyncio import AsyncIOMotorDatabase

from .database import Settings
from .hub import LiveUpdateHub
from .repositories.alerts import AlertRepository
from .repositories.donors import DonorRepository
from .repositories.hospitals import HospitalRepository
from .repositories.users import UserRepository
from .services.alerts import AlertService
from .services.dispatch import NotificationDispatcher
from .services.inventory import InventoryService
from .services.matching import DonorMatchingService
from .services.sharing import PartnershipService
from .utils.clock import Clock, system_clock
from .utils.notifications import MessageSender


@dataclass
class Services:
    alerts: AlertRepository
    donors: DonorRepository
    hospitals: HospitalRepository
    users: UserRepository
    alert_service: AlertService
    inventory_service: InventoryService
    partnerships: PartnershipService
    clock: Clock


def build_services(
    settings: Settings,
    database: AsyncIOMotorDatabase,
    hub: LiveUpdateHub,
    clock: Clock = system_clock,
) -> Services:
    alerts = AlertRepository(database.get_collection("alerts"))
    donors = DonorRepository(database.get_collection("donors"))
    hospitals = HospitalRepository(database.get_collection("hospitals"))
    users = UserRepository(database.get_collection("users"))

    sender = MessageSender(settings, hub)
    dispatcher = NotificationDispatcher(
        sender,
        clock,
        concurrency=settings.dispatch_concurrency,
        frontend_url=settings.frontend_url,
    )
    matcher = DonorMatchingService(donors, clock, candidate_limit=settings.match_candidate_limit)
    alert_service = AlertService(
        alerts,
        donors,
        hospitals,
        matcher,
        dispatcher,
        hub,
        clock,
        write_attempts=settings.alert_write_attempts,
    )
    return Services(
        alerts=alerts,
        donors=donors,
        hospitals=hospitals,
        users=users,
        alert_service=alert_service,
        inventory_service=InventoryService(hospitals, alerts, alert_service, hub, clock),
        partnerships=PartnershipService(hospitals, clock),
        clock=clock,
    )


async def ensure_indexes(services: Services) -> None:
    await services.alerts.ensure_indexes()
    await services.donors.ensure_indexes()
    await services.hospitals.ensure_indexes()
    await services.users.ensure_indexes()
