from datetime import datetime

import pytest

from tests.conftest import FrozenClock, RecordingGateway
from tolkbooking.domain.bookings.enums import Channel, NotificationKind
from tolkbooking.domain.bookings.events import NotificationEvent, Recipient
from tolkbooking.services import notification_templates as templates
from tolkbooking.services.notification_service import NotificationDispatcher

NIGHT = datetime(2026, 3, 2, 23, 30)
PAYLOAD = {"language": "Arabiska", "duration": 60, "due": "2026-03-05 14:00:00", "job_id": 7}


def recipient(user_id, **prefs):
    return Recipient(user_id=user_id, name=f"User {user_id}", email=f"u{user_id}@example.se", **prefs)


def push(*recipients, urgent=False, locale="sv"):
    return NotificationEvent(
        kind=NotificationKind.JOB_CREATED,
        channel=Channel.PUSH,
        job_id=7,
        recipients=tuple(recipients),
        payload=PAYLOAD,
        variant="immediate" if urgent else "regular",
        urgent=urgent,
        locale=locale,
    )


@pytest.mark.asyncio
async def test_quiet_hours_split_push_into_two_batches():
    gateway = RecordingGateway()
    dispatcher = NotificationDispatcher(gateway, FrozenClock(NIGHT))

    report = await dispatcher.notify(
        push(recipient(1), recipient(2, not_get_nighttime=True), recipient(3, not_get_notification=True))
    )

    assert len(gateway.pushes) == 2
    immediate, deferred = gateway.pushes
    assert immediate["user_ids"] == [1] and immediate["defer_until"] is None
    assert deferred["user_ids"] == [2]
    assert deferred["defer_until"] == datetime(2026, 3, 3, 7, 0)
    assert report.sent == [1]
    assert report.deferred == [2]
    assert report.skipped == {3: "push_opt_out"}


@pytest.mark.asyncio
async def test_daytime_push_is_one_call(gateway, clock):
    dispatcher = NotificationDispatcher(gateway, clock)
    await dispatcher.notify(push(recipient(1), recipient(2, not_get_nighttime=True)))

    [call] = gateway.pushes
    assert call["user_ids"] == [1, 2]
    assert call["message"] == "Ny bokning för Arabiskatolk 60min 2026-03-05 14:00:00"
    assert call["data"]["notification_type"] == "job_created"


@pytest.mark.asyncio
async def test_urgent_push_skips_emergency_opt_outs(gateway, clock):
    dispatcher = NotificationDispatcher(gateway, clock)
    report = await dispatcher.notify(push(recipient(1), recipient(2, not_get_emergency=True), urgent=True))

    assert [c["user_ids"] for c in gateway.pushes] == [[1]]
    assert report.skipped == {2: "emergency_opt_out"}


@pytest.mark.asyncio
async def test_empty_batches_are_not_sent(gateway, clock):
    dispatcher = NotificationDispatcher(gateway, clock)
    await dispatcher.notify(push(recipient(1, not_get_notification=True)))
    await dispatcher.notify(push())
    assert gateway.pushes == []


@pytest.mark.asyncio
async def test_gateway_failure_is_reported_not_raised(clock):
    dispatcher = NotificationDispatcher(RecordingGateway(fail=True), clock)
    report = await dispatcher.notify(push(recipient(1)))
    assert report.failed == [1]
    assert not report.ok


@pytest.mark.asyncio
async def test_email_goes_to_each_recipient(gateway, clock):
    dispatcher = NotificationDispatcher(gateway, clock)
    event = NotificationEvent(
        kind=NotificationKind.TRANSLATOR_CHANGED,
        channel=Channel.EMAIL,
        job_id=7,
        recipients=(recipient(1), Recipient(user_id=2, name="No mail")),
        payload=PAYLOAD,
        variant="customer",
    )

    report = await dispatcher.notify(event)

    [email] = gateway.emails
    assert email["address"] == "u1@example.se"
    assert email["subject"] == "Meddelande om tilldelning av tolkuppdrag för uppdrag #7"
    assert email["template"] == "job-changed-translator-customer"
    assert email["data"]["user"]["id"] == 1
    assert report.skipped == {2: "no_email"}


@pytest.mark.asyncio
async def test_sms_needs_a_mobile_number(gateway, clock):
    dispatcher = NotificationDispatcher(gateway, clock)
    event = NotificationEvent(
        kind=NotificationKind.JOB_CREATED,
        channel=Channel.SMS,
        job_id=7,
        recipients=(Recipient(user_id=1, name="A", mobile="0701234567"), Recipient(user_id=2, name="B")),
        payload=dict(PAYLOAD, date="05.03.2026", time="14:00", duration_text="1h", city="Malmö"),
        variant="physical",
    )

    await dispatcher.notify(event)

    [sms] = gateway.sms
    assert sms["number"] == "0701234567"
    assert "Platstolkning (Arabiska) i Malmö den 05.03.2026 kl 14:00, 1h" in sms["text"]


def test_unknown_locale_falls_back_to_english():
    text = templates.render_push(NotificationKind.JOB_EXPIRED, "default", "de", PAYLOAD)
    assert text.startswith("Unfortunately no interpreter accepted your booking")


def test_missing_payload_keys_render_empty():
    text = templates.render_push(NotificationKind.JOB_CREATED, "immediate", "sv", {"language": "Persiska"})
    assert text == "Ny akutbokning för Persiskatolk min"


def test_email_template_mentions_subject_and_session_time():
    mjml = templates.email_template(
        "session-ended", "Avslutad", "Kund 1", {"language": "Arabiska", "session_time": "1 tim 30 min", "for_text": "faktura"}
    )
    assert "<mjml>" in mjml
    assert "Tid: 1 tim 30 min. Underlag för faktura." in mjml
