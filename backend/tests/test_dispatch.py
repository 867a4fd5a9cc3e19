from datetime import timedelta

from bloodalert.services.dispatch import NotificationDispatcher, preferred_method

from conftest import NOW, FixedClock, make_alert, make_donor, make_hospital


def dispatcher_for(sender, now=NOW):
    return NotificationDispatcher(sender, FixedClock(now), concurrency=2, frontend_url="http://frontend.test")


async def test_every_channel_succeeds(sender):
    donors = [make_donor(email=f"donor{i}@example.com") for i in range(3)]
    alert = make_alert()

    outcome = await dispatcher_for(sender).dispatch(alert, donors, make_hospital())

    assert outcome.results == {
        "email": {"sent": 3, "failed": 0},
        "sms": {"sent": 3, "failed": 0},
        "push": {"sent": 3, "failed": 0},
    }
    assert alert.notifications.sent == 3
    assert [record.method for record in alert.notifications.sent_to] == ["email"] * 3
    assert sender.sent_to("donor0@example.com") == ["email"]


async def test_failure_stops_remaining_channels_for_that_donor(sender):
    ok = make_donor(email="ok@example.com")
    flaky = make_donor(email="flaky@example.com")
    flaky.personal_info.phone = "+1 555 0000"
    sender.fail("sms", "+1 555 0000")
    alert = make_alert()

    outcome = await dispatcher_for(sender).dispatch(alert, [ok, flaky])

    assert outcome.results["email"] == {"sent": 2, "failed": 1}
    assert outcome.results["sms"] == {"sent": 1, "failed": 1}
    assert outcome.results["push"] == {"sent": 1, "failed": 1}
    assert sender.sent_to(flaky.id) == []
    # attempted donors are counted even when delivery failed
    assert alert.notifications.sent == 2
    assert [record.donor_id for record in alert.notifications.sent_to] == [ok.id]


async def test_record_uses_highest_priority_enabled_channel(sender):
    push_only = make_donor(channels=("push",))
    sms_and_push = make_donor(channels=("sms", "push"))
    alert = make_alert()

    await dispatcher_for(sender).dispatch(alert, [push_only, sms_and_push])

    methods = {record.donor_id: record.method for record in alert.notifications.sent_to}
    assert methods == {push_only.id: "push", sms_and_push.id: "sms"}
    assert preferred_method(make_donor(channels=())) == "email"


async def test_donor_without_channels_is_still_counted(sender):
    silent = make_donor(channels=())
    alert = make_alert()

    outcome = await dispatcher_for(sender).dispatch(alert, [silent])

    assert sender.sent == []
    assert outcome.attempted == 1
    assert alert.notifications.sent == 1


async def test_inert_alert_is_not_dispatched(sender):
    alert = make_alert(urgency_level="critical")
    late = NOW + timedelta(hours=30)

    outcome = await dispatcher_for(sender, late).dispatch(alert, [make_donor()])

    assert sender.sent == []
    assert outcome.attempted == 0
    assert alert.notifications.sent == 0


async def test_outcome_can_be_reapplied_to_a_fresh_copy(sender):
    alert = make_alert()
    outcome = await dispatcher_for(sender).dispatch(alert, [make_donor(), make_donor()])

    fresh = make_alert()
    outcome.apply_to(fresh)

    assert fresh.notifications.sent == 2
    assert len(fresh.notifications.sent_to) == 2
    assert fresh.notifications.sent_to[0].sent_at == NOW
