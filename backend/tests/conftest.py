from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import pytest

from bloodalert.container import Services
from bloodalert.errors import ConcurrentModificationError, ConflictError
from bloodalert.models.alert import Alert, AlertCreate, PatientInfo
from bloodalert.models.common import OPEN_STATUSES, GeoPoint, new_id
from bloodalert.models.donor import Donor, MedicalInfo, PersonalInfo
from bloodalert.models.hospital import Hospital, InventoryLevel, Partnership
from bloodalert.models.user import User
from bloodalert.services.alerts import AlertService
from bloodalert.services.dispatch import NotificationDispatcher
from bloodalert.services.eligibility import WHOLE_BLOOD_VOLUME_ML, next_eligible_date
from bloodalert.services.inventory import InventoryService
from bloodalert.services.matching import DonorMatchingService
from bloodalert.services.sharing import PartnershipService
from bloodalert.utils.clock import Clock
from bloodalert.utils.notifications import DeliveryError

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
HOSPITAL_POINT = GeoPoint(coordinates=[77.5946, 12.9716])


class FixedClock(Clock):
    def __init__(self, now: datetime = NOW) -> None:
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> datetime:
        self.current = self.current + timedelta(**delta)
        return self.current


class FakeAlertRepository:
    """Dict-backed alert store with the same version check as the Mongo repository."""

    def __init__(self) -> None:
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.conflicts_remaining = 0
        self.saves = 0

    def _load(self, document: Dict[str, Any]) -> Alert:
        return Alert(**copy.deepcopy(document))

    def stored(self, alert_id: str) -> Alert:
        return self._load(self.documents[alert_id])

    async def insert(self, alert: Alert) -> Alert:
        if alert.auto_generated and alert.status == "active":
            for document in self.documents.values():
                if (
                    document["auto_generated"]
                    and document["status"] == "active"
                    and document["hospital_id"] == alert.hospital_id
                    and document["blood_type"] == alert.blood_type
                ):
                    raise ConflictError("An open automatic alert already exists for this blood type")
        self.documents[alert.id] = copy.deepcopy(alert.to_document())
        return alert

    async def get(self, alert_id: str) -> Optional[Alert]:
        document = self.documents.get(alert_id)
        return self._load(document) if document else None

    async def save(self, alert: Alert) -> Alert:
        stored = self.documents.get(alert.id)
        if stored is not None and self.conflicts_remaining:
            # simulate another writer saving first
            self.conflicts_remaining -= 1
            stored["version"] += 1
        if stored is None or stored["version"] != alert.version:
            raise ConcurrentModificationError(f"Alert {alert.id} was modified concurrently")
        alert.version += 1
        self.documents[alert.id] = copy.deepcopy(alert.to_document())
        self.saves += 1
        return alert

    def _all(self) -> List[Alert]:
        alerts = [self._load(document) for document in self.documents.values()]
        return sorted(alerts, key=lambda alert: alert.created_at, reverse=True)

    async def list_for_hospital(
        self,
        hospital_id: str,
        *,
        now: datetime,
        status: Optional[str] = None,
        blood_type: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Alert], int]:
        matches = [
            alert
            for alert in self._all()
            if alert.hospital_id == hospital_id
            and (blood_type is None or alert.blood_type == blood_type)
            and (status is None or alert.effective_status(now) == status)
        ]
        return matches[skip : skip + limit], len(matches)

    async def find_open_auto_alert(self, hospital_id: str, blood_type: str) -> Optional[Alert]:
        for alert in self._all():
            if (
                alert.hospital_id == hospital_id
                and alert.blood_type == blood_type
                and alert.auto_generated
                and alert.status in OPEN_STATUSES
            ):
                return alert
        return None

    async def find_due_for_expiry(self, now: datetime, limit: int = 200) -> List[Alert]:
        due = [alert for alert in self._all() if alert.status in OPEN_STATUSES and alert.expires_at < now]
        return due[:limit]

    async def find_shared_with(self, hospital_id: str, *, now: datetime, skip: int = 0, limit: int = 20) -> Tuple[List[Alert], int]:
        shared = [
            alert
            for alert in self._all()
            if alert.find_share(hospital_id) is not None and alert.status in OPEN_STATUSES and alert.expires_at >= now
        ]
        return shared[skip : skip + limit], len(shared)

    async def find_open_near(
        self,
        blood_types: Iterable[str],
        point: GeoPoint,
        max_distance_km: float,
        now: datetime,
        limit: int = 20,
    ) -> List[Alert]:
        # distance is not modelled; every stored alert counts as in range
        wanted = set(blood_types)
        matches = [
            alert
            for alert in self._all()
            if alert.blood_type in wanted and alert.status == "active" and alert.expires_at >= now
        ]
        return matches[:limit]


class FakeDonorRepository:
    def __init__(self) -> None:
        self.donors: Dict[str, Donor] = {}

    def add(self, *donors: Donor) -> None:
        for donor in donors:
            self.donors[donor.id] = donor

    async def insert(self, donor: Donor) -> Donor:
        self.donors[donor.id] = donor
        return donor

    async def get(self, donor_id: str) -> Optional[Donor]:
        return self.donors.get(donor_id)

    async def get_by_user(self, user_id: str) -> Optional[Donor]:
        for donor in self.donors.values():
            if donor.user_id == user_id:
                return donor
        return None

    async def find_candidates(self, blood_types: Iterable[str], point: GeoPoint, radius_km: float, limit: int) -> List[Donor]:
        wanted = set(blood_types)
        matches = [
            donor
            for donor in self.donors.values()
            if donor.medical_info.blood_group in wanted
            and donor.eligibility.is_eligible
            and donor.verification_status == "verified"
            and donor.is_active
        ]
        return matches[:limit]

    async def set_verification_status(self, donor_id: str, verification_status: str) -> bool:
        donor = self.donors.get(donor_id)
        if donor is None:
            return False
        donor.verification_status = verification_status
        return True

    async def update_preferences(self, donor_id: str, changes: Dict[str, Any]) -> Optional[Donor]:
        donor = self.donors.get(donor_id)
        if donor is None:
            return None
        for key, value in changes.items():
            if key.startswith("notification_methods."):
                setattr(donor.preferences.notification_methods, key.split(".", 1)[1], value)
            else:
                setattr(donor.preferences, key, value)
        return donor

    async def record_donation(self, donor_id: str, donated_at: datetime) -> None:
        donor = self.donors[donor_id]
        donor.eligibility.last_donation_date = donated_at
        donor.eligibility.next_eligible_date = next_eligible_date(donated_at)
        donor.statistics.total_donations += 1
        donor.statistics.total_volume_donated += WHOLE_BLOOD_VOLUME_ML
        donor.statistics.last_donation_date = donated_at
        if donor.statistics.first_donation_date is None:
            donor.statistics.first_donation_date = donated_at


class FakeHospitalRepository:
    def __init__(self) -> None:
        self.hospitals: Dict[str, Hospital] = {}

    def add(self, *hospitals: Hospital) -> None:
        for hospital in hospitals:
            self.hospitals[hospital.id] = hospital.model_copy(deep=True)

    async def insert(self, hospital: Hospital) -> Hospital:
        self.hospitals[hospital.id] = hospital
        return hospital

    async def get(self, hospital_id: str) -> Optional[Hospital]:
        stored = self.hospitals.get(hospital_id)
        return stored.model_copy(deep=True) if stored else None

    async def get_by_user(self, user_id: str) -> Optional[Hospital]:
        for hospital in self.hospitals.values():
            if hospital.user_id == user_id:
                return hospital.model_copy(deep=True)
        return None

    async def set_verification_status(self, hospital_id: str, verification_status: str) -> bool:
        hospital = self.hospitals.get(hospital_id)
        if hospital is None:
            return False
        hospital.verification_status = verification_status
        return True

    async def update_alert_settings(self, hospital_id: str, changes: Dict[str, Any]) -> Optional[Hospital]:
        hospital = self.hospitals.get(hospital_id)
        if hospital is None:
            return None
        for key, value in changes.items():
            if key.startswith("notification_preferences."):
                setattr(hospital.alert_settings.notification_preferences, key.split(".", 1)[1], value)
            else:
                setattr(hospital.alert_settings, key, value)
        return hospital.model_copy(deep=True)

    async def save_inventory_level(self, hospital_id: str, blood_type: str, level: InventoryLevel) -> None:
        self.hospitals[hospital_id].inventory[blood_type] = level.model_copy()

    async def add_partnership(self, hospital_id: str, partnership: Partnership) -> bool:
        hospital = self.hospitals[hospital_id]
        if hospital.partnership_with(partnership.hospital_id) is not None:
            return False
        hospital.partnerships.append(partnership.model_copy())
        return True

    async def increment_requests(self, hospital_id: str) -> None:
        self.hospitals[hospital_id].statistics.total_blood_requests += 1


class FakeUserRepository:
    def __init__(self) -> None:
        self.users: Dict[str, User] = {}

    def add(self, *users: User) -> None:
        for user in users:
            self.users[user.id] = user

    async def insert(self, user: User) -> User:
        if any(existing.email == user.email for existing in self.users.values()):
            raise ConflictError("Email already registered")
        self.users[user.id] = user
        return user

    async def get(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    async def get_by_email(self, email: str) -> Optional[User]:
        for user in self.users.values():
            if user.email == email.lower():
                return user
        return None

    async def record_login(self, user_id: str, at: datetime) -> None:
        self.users[user_id].last_login = at


class RecordingSender:
    def __init__(self) -> None:
        self.sent: List[Tuple[str, str, Any]] = []
        self.failures: Set[Tuple[str, str]] = set()

    def fail(self, channel: str, address: str) -> None:
        self.failures.add((channel, address))

    async def send(self, channel: str, address: str, message: Any) -> None:
        if (channel, address) in self.failures:
            raise DeliveryError(f"{channel} delivery to {address} failed")
        self.sent.append((channel, address, message))

    def sent_to(self, address: str) -> List[str]:
        return [channel for channel, to, _ in self.sent if to == address]


class RecordingPublisher:
    def __init__(self) -> None:
        self.events: List[Tuple[str, str, Dict[str, Any]]] = []

    async def publish(self, topic: str, event: str, payload: Dict[str, Any]) -> None:
        self.events.append((topic, event, payload))

    def named(self, event: str) -> List[Tuple[str, Dict[str, Any]]]:
        return [(topic, payload) for topic, name, payload in self.events if name == event]


def make_donor(
    blood_group: str = "O-",
    *,
    email: str | None = None,
    max_travel_distance: float = 100,
    emergency_only: bool = False,
    channels: Tuple[str, ...] = ("email", "sms", "push"),
    last_donation_date: datetime | None = None,
    **overrides: Any,
) -> Donor:
    donor = Donor(
        user_id=overrides.pop("user_id", new_id()),
        email=email or "donor@example.com",
        personal_info=PersonalInfo(
            first_name="Asha",
            last_name="Rao",
            date_of_birth=datetime(1990, 1, 1, tzinfo=timezone.utc),
            gender="female",
            phone="+91 98765 43210",
        ),
        medical_info=MedicalInfo(blood_group=blood_group, weight=70),
        location=GeoPoint(coordinates=[77.6, 12.97]),
        verification_status="verified",
        **overrides,
    )
    donor.preferences.max_travel_distance = max_travel_distance
    donor.preferences.emergency_only = emergency_only
    for channel in ("email", "sms", "push"):
        setattr(donor.preferences.notification_methods, channel, channel in channels)
    donor.eligibility.last_donation_date = last_donation_date
    return donor


def make_hospital(name: str = "City General", **overrides: Any) -> Hospital:
    fields: Dict[str, Any] = {
        "user_id": f"user-{name}",
        "name": name,
        "registration_number": f"REG-{name}",
        "email": "bloodbank@citygeneral.example",
        "primary_phone": "+1 555 0100",
        "emergency_phone": "+1 555 0199",
        "location": HOSPITAL_POINT,
        "verification_status": "verified",
    }
    fields.update(overrides)
    return Hospital(**fields)


def make_alert_create(**overrides: Any) -> AlertCreate:
    fields: Dict[str, Any] = {
        "blood_type": "O-",
        "urgency_level": "critical",
        "units_needed": 3,
        "reason": "Trauma patient after road accident",
        "patient_info": PatientInfo(age=34, required_by=NOW + timedelta(hours=6)),
        "search_radius": 50,
    }
    fields.update(overrides)
    return AlertCreate(**fields)


def make_alert(now: datetime = NOW, hospital_id: str = "hospital-1", **overrides: Any) -> Alert:
    auto_generated = overrides.pop("auto_generated", False)
    return Alert.create(
        make_alert_create(**overrides),
        hospital_id=hospital_id,
        coordinates=HOSPITAL_POINT,
        created_by="user-1",
        now=now,
        auto_generated=auto_generated,
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def alert_repo() -> FakeAlertRepository:
    return FakeAlertRepository()


@pytest.fixture
def donor_repo() -> FakeDonorRepository:
    return FakeDonorRepository()


@pytest.fixture
def hospital_repo() -> FakeHospitalRepository:
    return FakeHospitalRepository()


@pytest.fixture
def user_repo() -> FakeUserRepository:
    return FakeUserRepository()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def hospital(hospital_repo: FakeHospitalRepository) -> Hospital:
    hospital = make_hospital()
    hospital_repo.add(hospital)
    return hospital


@pytest.fixture
def services(
    alert_repo: FakeAlertRepository,
    donor_repo: FakeDonorRepository,
    hospital_repo: FakeHospitalRepository,
    user_repo: FakeUserRepository,
    sender: RecordingSender,
    publisher: RecordingPublisher,
    clock: FixedClock,
) -> Services:
    dispatcher = NotificationDispatcher(sender, clock, concurrency=4, frontend_url="http://frontend.test")
    matcher = DonorMatchingService(donor_repo, clock, candidate_limit=100)
    alert_service = AlertService(
        alert_repo,
        donor_repo,
        hospital_repo,
        matcher,
        dispatcher,
        publisher,
        clock,
        write_attempts=3,
    )
    return Services(
        alerts=alert_repo,
        donors=donor_repo,
        hospitals=hospital_repo,
        users=user_repo,
        alert_service=alert_service,
        inventory_service=InventoryService(hospital_repo, alert_repo, alert_service, publisher, clock),
        partnerships=PartnershipService(hospital_repo, clock),
        clock=clock,
    )
