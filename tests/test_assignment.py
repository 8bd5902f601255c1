import threading
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from tests.conftest import NOW
from tolkbooking.domain.bookings.assignment import AssignmentGuard, KeyedLocks
from tolkbooking.domain.bookings.enums import AssignOutcome
from tolkbooking.domain.bookings.errors import ConflictError, NotFound
from tolkbooking.models import Job, TranslatorAssignment


def active_assignments(db, job_id):
    return (
        db.query(TranslatorAssignment)
        .filter(
            TranslatorAssignment.job_id == job_id,
            TranslatorAssignment.cancel_at.is_(None),
            TranslatorAssignment.completed_at.is_(None),
        )
        .all()
    )


def test_assign_pending_job(db, factory, arabic):
    translator = factory.translator(languages=[arabic])
    job = factory.job(factory.customer(), arabic)

    result = AssignmentGuard().try_assign(db, job.id, translator.id, NOW)

    assert result.assigned
    assert db.get(Job, job.id).status == "assigned"
    [assignment] = active_assignments(db, job.id)
    assert assignment.user_id == translator.id
    assert assignment.id == result.assignment_id


def test_second_translator_is_too_late(db, factory, arabic):
    first = factory.translator(languages=[arabic])
    second = factory.translator(languages=[arabic])
    job = factory.job(factory.customer(), arabic)
    guard = AssignmentGuard()

    guard.try_assign(db, job.id, first.id, NOW)
    result = guard.try_assign(db, job.id, second.id, NOW)

    assert result.outcome == AssignOutcome.ALREADY_TAKEN
    assert [a.user_id for a in active_assignments(db, job.id)] == [first.id]


def test_translator_cannot_hold_two_jobs_at_the_same_time(db, factory, arabic):
    translator = factory.translator(languages=[arabic])
    customer = factory.customer()
    due = NOW + timedelta(days=2)
    booked = factory.job(customer, arabic, due=due)
    clashing = factory.job(customer, arabic, due=due)
    later = factory.job(customer, arabic, due=due + timedelta(minutes=30))
    guard = AssignmentGuard()

    assert guard.try_assign(db, booked.id, translator.id, NOW).assigned
    assert guard.try_assign(db, clashing.id, translator.id, NOW).outcome == AssignOutcome.ALREADY_BOOKED
    assert db.get(Job, clashing.id).status == "pending"
    # Only identical due timestamps collide
    assert guard.try_assign(db, later.id, translator.id, NOW).assigned


def test_missing_job(db, factory, arabic):
    translator = factory.translator(languages=[arabic])
    with pytest.raises(NotFound):
        AssignmentGuard().try_assign(db, 9999, translator.id, NOW)


def test_concurrent_accepts_have_one_winner(session_factory, factory, arabic):
    translators = [factory.translator(languages=[arabic]) for _ in range(8)]
    job = factory.job(factory.customer(), arabic)
    guard = AssignmentGuard()
    barrier = threading.Barrier(len(translators))
    outcomes = []

    def accept(translator_id):
        session = session_factory()
        try:
            barrier.wait()
            outcomes.append(guard.try_assign(session, job.id, translator_id, NOW).outcome)
        finally:
            session.close()

    threads = [threading.Thread(target=accept, args=(t.id,)) for t in translators]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count(AssignOutcome.ASSIGNED) == 1
    assert outcomes.count(AssignOutcome.ALREADY_TAKEN) == len(translators) - 1

    check = session_factory()
    try:
        assert len(active_assignments(check, job.id)) == 1
        assert check.get(Job, job.id).status == "assigned"
    finally:
        check.close()


def test_concurrent_accepts_of_clashing_jobs_book_the_translator_once(session_factory, factory, arabic):
    translator = factory.translator(languages=[arabic])
    customer = factory.customer()
    due = NOW + timedelta(days=2)
    jobs = [factory.job(customer, arabic, due=due) for _ in range(6)]
    guard = AssignmentGuard()
    barrier = threading.Barrier(len(jobs))
    outcomes = []

    def accept(job_id):
        session = session_factory()
        try:
            barrier.wait()
            outcomes.append(guard.try_assign(session, job_id, translator.id, NOW).outcome)
        finally:
            session.close()

    threads = [threading.Thread(target=accept, args=(job.id,)) for job in jobs]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count(AssignOutcome.ASSIGNED) == 1
    assert outcomes.count(AssignOutcome.ALREADY_BOOKED) == len(jobs) - 1

    check = session_factory()
    try:
        held = (
            check.query(TranslatorAssignment)
            .filter(
                TranslatorAssignment.user_id == translator.id,
                TranslatorAssignment.cancel_at.is_(None),
                TranslatorAssignment.completed_at.is_(None),
            )
            .count()
        )
        assert held == 1
    finally:
        check.close()


def test_keyed_locks_forget_released_keys():
    locks = KeyedLocks()
    with locks.hold(1):
        with locks.hold(2):
            assert len(locks) == 2
        assert len(locks) == 1
    assert len(locks) == 0


def test_keyed_locks_release_on_error():
    locks = KeyedLocks()
    with pytest.raises(RuntimeError):
        with locks.hold(7):
            raise RuntimeError("boom")
    assert len(locks) == 0
    with locks.hold(7):
        pass

def test_database_rejects_second_active_assignment(db, factory, arabic):
    job = factory.job(factory.customer(), arabic, status="assigned")
    factory.assign(job, factory.translator(languages=[arabic]))

    db.add(TranslatorAssignment(job_id=job.id, user_id=factory.translator(languages=[arabic]).id, created_at=NOW))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_assign_directly_soft_cancels_previous(db, factory, arabic):
    old = factory.translator(languages=[arabic])
    new = factory.translator(languages=[arabic])
    job = factory.job(factory.customer(), arabic, status="assigned")
    factory.assign(job, old)
    guard = AssignmentGuard()

    job = db.get(Job, job.id)
    guard.assign_directly(db, job, new.id, NOW)
    db.commit()

    rows = db.query(TranslatorAssignment).filter(TranslatorAssignment.job_id == job.id).all()
    assert len(rows) == 2
    assert [a.user_id for a in active_assignments(db, job.id)] == [new.id]
    assert next(a for a in rows if a.user_id == old.id).cancel_at == NOW

    with pytest.raises(ConflictError):
        guard.assign_directly(db, db.get(Job, job.id), new.id, NOW)
