"""
Assignment guard
At most one active translator per job, at most one booking per translator per time slot.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models import Job, TranslatorAssignment
from .enums import AssignOutcome, JobStatus
from .errors import ConflictError, NotFound
from .repository import BookingRepository

logger = logging.getLogger(__name__)


class KeyedLocks:
    """In-process locks keyed by id, dropped once nobody holds or waits on them"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}
        self._users: dict[int, int] = {}

    @contextmanager
    def hold(self, key: int):
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key]
                    del self._locks[key]

    def __len__(self):
        with self._guard:
            return len(self._locks)


# Shared by every guard and admin edit in this process.
# Lock order is translator before job.
JOB_LOCKS = KeyedLocks()
TRANSLATOR_LOCKS = KeyedLocks()


@dataclass
class AssignResult:
    outcome: AssignOutcome
    job_id: int
    translator_id: int
    assignment_id: Optional[int] = None

    @property
    def assigned(self) -> bool:
        return self.outcome == AssignOutcome.ASSIGNED


class AssignmentGuard:
    """
    Check-then-insert for translator assignments.

    The collision check, the pending check and the insert of the active
    assignment run inside the translator's and the job's critical sections and
    one database transaction; the status flip is a compare-and-swap so
    concurrent processes cannot both win the same job.

    Time-slot collisions are exact matches on the due timestamp.
    """

    def __init__(
        self,
        locks: Optional[KeyedLocks] = None,
        translator_locks: Optional[KeyedLocks] = None,
        log: Optional[logging.Logger] = None,
    ):
        self.locks = locks or JOB_LOCKS
        self.translator_locks = translator_locks or TRANSLATOR_LOCKS
        self.logger = log or logger
        self.repo = BookingRepository()

    def try_assign(self, db: Session, job_id: int, translator_id: int, now: datetime) -> AssignResult:
        """
        Assign `translator_id` to a pending job.

        Raises NotFound when the job does not exist; any other fault rolls the
        transaction back and propagates.
        """
        with self.translator_locks.hold(translator_id), self.locks.hold(job_id):
            job = db.query(Job).filter(Job.id == job_id).first()
            if not job:
                raise NotFound(f"Job {job_id} not found")
            due = job.due

            if self.repo.translator_has_booking_at(db, translator_id, due, exclude_job_id=job_id):
                self.logger.info(f"⛔ Translator {translator_id} already booked at {due} (job {job_id})")
                db.rollback()
                return AssignResult(AssignOutcome.ALREADY_BOOKED, job_id, translator_id)

            try:
                swapped = (
                    db.query(Job)
                    .filter(Job.id == job_id, Job.status == JobStatus.PENDING.value)
                    .update({Job.status: JobStatus.ASSIGNED.value}, synchronize_session=False)
                )
                if swapped != 1:
                    db.rollback()
                    self.logger.info(f"⛔ Job {job_id} no longer pending, translator {translator_id} lost the race")
                    return AssignResult(AssignOutcome.ALREADY_TAKEN, job_id, translator_id)

                assignment = TranslatorAssignment(job_id=job_id, user_id=translator_id, created_at=now)
                db.add(assignment)
                db.commit()
            except IntegrityError:
                # Another active assignment slipped in for this job
                db.rollback()
                self.logger.warning(f"⚠️ Active assignment already exists for job {job_id}")
                return AssignResult(AssignOutcome.ALREADY_TAKEN, job_id, translator_id)
            except Exception as e:
                db.rollback()
                self.logger.error(f"❌ Assignment of job {job_id} to translator {translator_id} failed: {e}")
                raise

        # The status was swapped behind the ORM's back
        db.expire_all()
        self.logger.info(f"✅ Job {job_id} assigned to translator {translator_id}")
        return AssignResult(AssignOutcome.ASSIGNED, job_id, translator_id, assignment.id)

    def assign_directly(
        self, db: Session, job: Job, translator_id: int, now: datetime
    ) -> TranslatorAssignment:
        """
        Make `translator_id` the job's active translator as part of an admin edit.

        The previous active assignment, if any, is soft-cancelled. The caller owns
        the transaction and must hold the job's lock.
        """
        current = job.active_assignment
        if current and current.user_id == translator_id:
            raise ConflictError(f"Translator {translator_id} is already assigned to job {job.id}")
        if current:
            current.cancel_at = now
            # Flush the cancel before inserting so the active-assignment index never sees two rows
            db.flush()

        assignment = TranslatorAssignment(job=job, user_id=translator_id, created_at=now)
        db.add(assignment)
        db.flush()
        self.logger.info(
            f"🔁 Job {job.id}: translator {current.user_id if current else None} → {translator_id}"
        )
        return assignment

    @staticmethod
    def release(job: Job, now: datetime) -> Optional[TranslatorAssignment]:
        """Soft-cancel the active assignment; returns it (or None when there was none)"""
        current = job.active_assignment
        if current:
            current.cancel_at = now
        return current

    @staticmethod
    def complete(job: Job, now: datetime, completed_by: Optional[int]) -> Optional[TranslatorAssignment]:
        current = job.active_assignment
        if current:
            current.completed_at = now
            current.completed_by = completed_by
        return current
