from datetime import timedelta

import pytest

from bloodalert.errors import AlertValidationError, ConflictError, NotFoundError, StateError
from bloodalert.models.alert import DonationDetails

from conftest import NOW, make_alert


def donate(alert, donor_id, at=NOW):
    return alert.add_response(donor_id, "donated", now=at, donation_details=DonationDetails(volume=450))


def test_critical_alert_lifecycle():
    alert = make_alert(blood_type="O-", units_needed=3, urgency_level="critical")
    assert alert.expires_at == NOW + timedelta(hours=24)
    assert alert.status == "active"

    donate(alert, "d1")
    donate(alert, "d2")
    assert alert.units_collected == 2
    assert alert.status == "partially_fulfilled"

    donate(alert, "d3")
    assert alert.units_collected == 3
    assert alert.status == "fulfilled"


def test_non_critical_alerts_last_three_days():
    assert make_alert(urgency_level="high").expires_at == NOW + timedelta(hours=72)


def test_duplicate_response_is_rejected():
    alert = make_alert()
    alert.add_response("d1", "interested", now=NOW)
    with pytest.raises(ConflictError):
        alert.add_response("d1", "committed", now=NOW)
    assert len(alert.responses) == 1
    assert alert.notifications.responded == 1


def test_response_time_comes_from_the_notification():
    alert = make_alert()
    alert.record_notification("d1", "sms", NOW)
    response = alert.add_response("d1", "committed", now=NOW + timedelta(minutes=42, seconds=30))
    notification = alert.find_notification("d1")
    assert response.response_time == 42
    assert notification.responded
    assert notification.response == "committed"


def test_donated_without_details_does_not_collect():
    alert = make_alert()
    alert.add_response("d1", "donated", now=NOW)
    assert alert.units_collected == 0
    assert alert.status == "active"


def test_fulfilled_status_is_sticky():
    alert = make_alert(units_needed=1)
    donate(alert, "d1")
    assert alert.status == "fulfilled"
    donate(alert, "d2")
    assert alert.units_collected == 2
    assert alert.status == "fulfilled"


def test_record_donation_upgrades_existing_response():
    alert = make_alert(units_needed=2)
    alert.add_response("d1", "committed", now=NOW)
    response = alert.record_donation("d1", DonationDetails(volume=450), now=NOW + timedelta(hours=1))
    assert response.response_type == "donated"
    assert response.donation_completed
    assert alert.units_collected == 1
    assert len(alert.responses) == 1
    with pytest.raises(ConflictError):
        alert.record_donation("d1", DonationDetails(), now=NOW)


def test_expiry_is_derived_from_time():
    alert = make_alert(urgency_level="critical")
    later = NOW + timedelta(hours=25)
    assert not alert.is_expired(NOW + timedelta(hours=24))
    assert alert.is_expired(later)
    assert alert.effective_status(later) == "expired"
    assert alert.refresh_expiry(later)
    assert alert.status == "expired"
    assert not alert.refresh_expiry(later)


def test_expired_alert_cannot_be_extended_or_answered():
    alert = make_alert(urgency_level="critical")
    later = NOW + timedelta(hours=30)
    with pytest.raises(StateError, match="Only active alerts can be extended"):
        alert.extend_expiry(12, modified_by="u1", now=later)
    with pytest.raises(StateError):
        alert.ensure_open(later, "Sharing")
    assert alert.is_expired(later)


def test_extend_expiry():
    alert = make_alert(urgency_level="critical")
    old, new = alert.extend_expiry(12, modified_by="u1", now=NOW)
    assert new - old == timedelta(hours=12)
    assert alert.last_modified_by == "u1"
    for hours in (0, 169):
        with pytest.raises(AlertValidationError):
            alert.extend_expiry(hours, modified_by="u1", now=NOW)


def test_cancel_only_from_open_states():
    alert = make_alert()
    assert alert.cancel(reason="Patient transferred", modified_by="u1", now=NOW) == "active"
    assert alert.status == "cancelled"
    assert "Reason: Patient transferred" in alert.internal_notes
    with pytest.raises(StateError):
        alert.cancel(reason=None, modified_by="u1", now=NOW)


def test_override_status_records_a_note():
    alert = make_alert(units_needed=1)
    donate(alert, "d1")
    old = alert.override_status("active", reason="Unit was rejected by lab", modified_by="u2", now=NOW)
    assert old == "fulfilled"
    assert alert.status == "active"
    assert "Status changed from fulfilled to active" in alert.internal_notes
    assert alert.units_collected == 1


def test_rates_are_zero_without_denominator():
    alert = make_alert()
    assert alert.get_response_rate() == 0
    assert alert.get_conversion_rate() == 0
    assert alert.completion_percentage == 0


def test_rates_round_half_up():
    alert = make_alert(units_needed=8)
    alert.notifications.sent = 8
    alert.add_response("d1", "interested", now=NOW)
    assert alert.get_response_rate() == 13
    donate(alert, "d2")
    assert alert.get_conversion_rate() == 50
    assert alert.completion_percentage == 13


def test_time_remaining_is_whole_hours_floored_at_zero():
    alert = make_alert(urgency_level="critical")
    assert alert.time_remaining(NOW + timedelta(minutes=30)) == 23
    assert alert.time_remaining(NOW + timedelta(hours=30)) == 0


def test_mark_opened_counts_once():
    alert = make_alert()
    alert.record_notification("d1", "email", NOW)
    assert alert.mark_opened("d1", NOW)
    assert not alert.mark_opened("d1", NOW)
    assert alert.notifications.opened == 1
    with pytest.raises(NotFoundError):
        alert.mark_opened("unknown", NOW)


def test_share_records():
    alert = make_alert()
    alert.share_with("h2", notes="Need help", now=NOW)
    with pytest.raises(ConflictError, match="already shared"):
        alert.share_with("h2", notes=None, now=NOW)

    record = alert.respond_to_share("h2", "accepted", units_promised=2, now=NOW)
    assert record.response == "accepted"
    assert record.units_promised == 2
    with pytest.raises(ConflictError, match="already responded"):
        alert.respond_to_share("h2", "declined", now=NOW)
    with pytest.raises(NotFoundError):
        alert.respond_to_share("h3", "accepted", now=NOW)


def test_metrics_snapshot():
    alert = make_alert(units_needed=4, urgency_level="critical")
    donate(alert, "d1")
    metrics = alert.metrics(NOW + timedelta(hours=2))
    assert metrics.completion_percentage == 25
    assert metrics.time_remaining == 22
    assert metrics.response_rate == 0
    assert metrics.conversion_rate == 100
