from datetime import timedelta

import pytest

from tests.conftest import NOW
from tolkbooking.domain.bookings.enums import Channel, NotificationKind, TransitionOutcome
from tolkbooking.domain.bookings.errors import ConflictError, ValidationError
from tolkbooking.domain.bookings.lifecycle import LifecycleStateMachine, TransitionContext
from tolkbooking.models import Job


@pytest.fixture
def machine():
    return LifecycleStateMachine()


def kinds(events):
    return [(e.kind, e.channel, e.variant) for e in events]


@pytest.mark.parametrize(
    "old, new",
    [
        ("completed", "pending"),
        ("completed", "assigned"),
        ("withdrawbefore24", "pending"),
        ("withdrawafter24", "pending"),
        ("not_carried_out_customer", "assigned"),
        ("timedout", "started"),
        ("assigned", "started"),
        ("assigned", "pending"),
        ("pending", "bogus"),
    ],
)
def test_unsupported_pairs_leave_job_untouched(db, factory, arabic, machine, old, new):
    job = factory.job(factory.customer(), arabic, status=old, admin_comments="original")
    ctx = TransitionContext(now=NOW, admin_comments="new comment", session_time="1:00:00")

    result = machine.apply_status_change(db, job, new, ctx)

    assert result.outcome == TransitionOutcome.UNSUPPORTED
    assert result.events == []
    assert job.status == old
    assert job.admin_comments == "original"


def test_same_status_is_unchanged(db, factory, arabic, machine):
    job = factory.job(factory.customer(), arabic, status="assigned")
    result = machine.apply_status_change(db, job, "assigned", TransitionContext(now=NOW))
    assert result.outcome == TransitionOutcome.UNCHANGED
    assert result.events == []


@pytest.mark.parametrize(
    "old, new",
    [("completed", "timedout"), ("started", "completed"), ("started", "pending"), ("pending", "timedout")],
)
def test_comment_required(db, factory, arabic, machine, old, new):
    job = factory.job(factory.customer(), arabic, status=old)
    with pytest.raises(ValidationError, match="comment required"):
        machine.apply_status_change(db, job, new, TransitionContext(now=NOW, admin_comments="  "))
    assert job.status == old


def test_completed_to_timedout_with_comment(db, factory, arabic, machine):
    job = factory.job(factory.customer(), arabic, status="completed")
    result = machine.apply_status_change(db, job, "timedout", TransitionContext(now=NOW, admin_comments="fel"))
    assert result.outcome == TransitionOutcome.CHANGED
    assert job.status == "timedout"
    assert job.admin_comments == "fel"


def test_started_to_completed_records_session(db, factory, arabic, machine):
    translator = factory.translator(languages=[arabic])
    job = factory.job(factory.customer(), arabic, status="started")
    factory.assign(job, translator)
    job = db.get(Job, job.id)

    ctx = TransitionContext(now=NOW, admin_comments="klar", session_time="1:30:00", actor_id=42)
    result = machine.apply_status_change(db, job, "completed", ctx)

    assert result.outcome == TransitionOutcome.CHANGED
    assert job.status == "completed"
    assert job.session_time == "1:30:00"
    assert job.active_assignment is None
    assert job.assignments[0].completed_by == 42

    assert kinds(result.events) == [
        (NotificationKind.SESSION_ENDED, Channel.EMAIL, "customer"),
        (NotificationKind.SESSION_ENDED, Channel.EMAIL, "translator"),
    ]
    customer_mail, translator_mail = result.events
    assert customer_mail.payload["session_time"] == "1 tim 30 min"
    assert customer_mail.payload["for_text"] == "faktura"
    assert translator_mail.payload["for_text"] == "lön"
    assert translator_mail.recipients[0].user_id == translator.id


def test_started_to_completed_needs_valid_session_time(db, factory, arabic, machine):
    job = factory.job(factory.customer(), arabic, status="started")
    ctx = TransitionContext(now=NOW, admin_comments="klar", session_time="en timme")
    with pytest.raises(ValidationError):
        machine.apply_status_change(db, job, "completed", ctx)
    assert job.status == "started"
    assert job.session_time is None


def test_timedout_to_pending_resets_and_broadcasts(db, factory, arabic, machine):
    translator = factory.translator(languages=[arabic])
    due = NOW + timedelta(days=5)
    job = factory.job(factory.customer(), arabic, status="timedout", due=due, created_at=NOW - timedelta(days=3))

    result = machine.apply_status_change(db, job, "pending", TransitionContext(now=NOW, admin_comments="igen"))

    assert result.outcome == TransitionOutcome.CHANGED
    assert job.status == "pending"
    assert job.created_at == NOW
    assert job.will_expire_at == due - timedelta(hours=48)
    assert kinds(result.events) == [
        (NotificationKind.JOB_REOPENED, Channel.EMAIL, "default"),
        (NotificationKind.JOB_CREATED, Channel.PUSH, "regular"),
    ]
    assert [r.user_id for r in result.events[1].recipients] == [translator.id]


def test_timedout_to_assigned_needs_translator_change(db, factory, arabic, machine):
    job = factory.job(factory.customer(), arabic, status="timedout")
    result = machine.apply_status_change(db, job, "assigned", TransitionContext(now=NOW))
    assert result.outcome == TransitionOutcome.UNSUPPORTED

    result = machine.apply_status_change(db, job, "assigned", TransitionContext(now=NOW, translator_changed=True))
    assert result.outcome == TransitionOutcome.CHANGED
    assert kinds(result.events) == [(NotificationKind.JOB_ACCEPTED, Channel.EMAIL, "customer")]


def test_pending_to_assigned_with_new_translator(db, factory, arabic, machine):
    translator = factory.translator(languages=[arabic])
    job = factory.job(factory.customer(), arabic)
    ctx = TransitionContext(now=NOW, translator_changed=True, new_translator=translator)

    result = machine.apply_status_change(db, job, "assigned", ctx)

    assert job.status == "assigned"
    assert kinds(result.events) == [
        (NotificationKind.JOB_ACCEPTED, Channel.EMAIL, "customer"),
        (NotificationKind.JOB_ACCEPTED, Channel.EMAIL, "translator"),
        (NotificationKind.SESSION_REMINDER, Channel.PUSH, "default"),
    ]


def test_pending_to_withdrawn_emails_customer(db, factory, arabic, machine):
    job = factory.job(factory.customer(), arabic)
    result = machine.apply_status_change(db, job, "withdrawbefore24", TransitionContext(now=NOW))
    assert job.status == "withdrawbefore24"
    assert kinds(result.events) == [(NotificationKind.JOB_WITHDRAWN, Channel.EMAIL, "default")]


def test_assigned_withdrawal_emails_customer_and_translator(db, factory, arabic, machine):
    translator = factory.translator(languages=[arabic])
    job = factory.job(factory.customer(), arabic, status="assigned")
    factory.assign(job, translator)
    job = db.get(Job, job.id)

    result = machine.apply_status_change(db, job, "withdrawafter24", TransitionContext(now=NOW))

    assert job.status == "withdrawafter24"
    assert [e.variant for e in result.events] == ["customer", "translator"]
    assert result.events[1].recipients[0].user_id == translator.id


def test_customer_withdrawal_depends_on_notice(db, factory, arabic, machine):
    customer = factory.customer()
    early = factory.job(customer, arabic, due=NOW + timedelta(hours=24))
    late = factory.job(customer, arabic, due=NOW + timedelta(hours=23, minutes=59))

    assert machine.withdraw_by_customer(early, NOW).new_status == "withdrawbefore24"
    assert machine.withdraw_by_customer(late, NOW).new_status == "withdrawafter24"
    assert early.withdraw_at == NOW

    with pytest.raises(ConflictError):
        machine.withdraw_by_customer(early, NOW)


def test_translator_release_puts_job_back(db, factory, arabic, machine):
    leaving = factory.translator(languages=[arabic])
    other = factory.translator(languages=[arabic])
    job = factory.job(factory.customer(), arabic, status="assigned", due=NOW + timedelta(days=4))
    factory.assign(job, leaving)
    job = db.get(Job, job.id)

    result = machine.release_by_translator(db, job, leaving, NOW)

    assert job.status == "pending"
    assert job.active_assignment is None
    push_customer, broadcast = result.events
    assert push_customer.variant == "customer"
    assert [r.user_id for r in broadcast.recipients] == [other.id]


def test_translator_release_close_to_due_is_refused(db, factory, arabic, machine):
    translator = factory.translator(languages=[arabic])
    job = factory.job(factory.customer(), arabic, status="assigned", due=NOW + timedelta(hours=20))
    factory.assign(job, translator)
    job = db.get(Job, job.id)

    with pytest.raises(ConflictError, match="inom 24 timmar"):
        machine.release_by_translator(db, job, translator, NOW)
    assert job.status == "assigned"


def test_end_session(db, factory, arabic, machine):
    translator = factory.translator(languages=[arabic])
    job = factory.job(factory.customer(), arabic, status="started", due=NOW - timedelta(minutes=45))
    factory.assign(job, translator)
    job = db.get(Job, job.id)

    result = machine.end_session(job, NOW, translator.id)

    assert job.status == "completed"
    assert job.session_time == "0:45:00"
    assert job.end_at == NOW
    assert result.events[0].payload["session_time"] == "0 tim 45 min"
    assert machine.end_session(job, NOW, translator.id).outcome == TransitionOutcome.UNCHANGED


def test_customer_no_show(db, factory, arabic, machine):
    translator = factory.translator(languages=[arabic])
    job = factory.job(factory.customer(), arabic, status="assigned")
    factory.assign(job, translator)
    job = db.get(Job, job.id)

    machine.mark_customer_no_show(job, NOW)

    assert job.status == "not_carried_out_customer"
    assert job.assignments[0].completed_by == translator.id
    with pytest.raises(ConflictError):
        machine.mark_customer_no_show(job, NOW)


def test_reopen_timed_out_job_clones_it(db, factory, arabic, machine):
    job = factory.job(factory.customer(), arabic, status="timedout", reference="REF-1")

    reopened, result = machine.reopen(db, job, NOW)

    assert reopened.id != job.id
    assert job.status == "timedout"
    assert reopened.status == "pending"
    assert reopened.reference == "REF-1"
    assert reopened.admin_comments == f"This booking is a reopening of booking #{job.id}"
    assert result.events[0].kind == NotificationKind.JOB_CREATED


def test_reopen_in_place(db, factory, arabic, machine):
    translator = factory.translator(languages=[arabic])
    job = factory.job(factory.customer(), arabic, status="assigned")
    factory.assign(job, translator)
    job = db.get(Job, job.id)

    reopened, _ = machine.reopen(db, job, NOW)

    assert reopened is job
    assert job.status == "pending"
    assert job.active_assignment is None


def test_expire_only_after_deadline(db, factory, arabic, machine):
    job = factory.job(factory.customer(), arabic, will_expire_at=NOW + timedelta(minutes=1))
    assert machine.expire(job, NOW).outcome == TransitionOutcome.UNCHANGED

    result = machine.expire(job, NOW + timedelta(minutes=1))
    assert job.status == "timedout"
    assert kinds(result.events) == [(NotificationKind.JOB_EXPIRED, Channel.PUSH, "default")]
