"""
Job lifecycle state machine
Every status change goes through here. Transitions mutate the job in the
caller's session and return the notifications to send once it is committed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ... import config
from ...models import Job, User
from . import events as ev
from .assignment import AssignmentGuard
from .clock import format_interval, format_session_time, parse_session_time, will_expire_at
from .enums import JobStatus, NotificationKind, TransitionOutcome, coerce_status
from .errors import ConflictError, ValidationError
from .matching import MatchingEngine

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("tolkbooking.audit")


@dataclass
class TransitionContext:
    now: datetime
    admin_comments: Optional[str] = None
    session_time: Optional[str] = None
    translator_changed: bool = False
    new_translator: Optional[User] = None
    actor_id: Optional[int] = None


@dataclass
class TransitionResult:
    outcome: TransitionOutcome
    old_status: Optional[str]
    new_status: Optional[str]
    events: list = field(default_factory=list)
    log_data: list = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.outcome == TransitionOutcome.CHANGED


def _require_comment(ctx: TransitionContext):
    if not (ctx.admin_comments or "").strip():
        raise ValidationError("comment required")


class LifecycleStateMachine:
    """Allowed status transitions and their side effects"""

    def __init__(
        self,
        matching: Optional[MatchingEngine] = None,
        guard: Optional[AssignmentGuard] = None,
        log: Optional[logging.Logger] = None,
        withdraw_notice_hours: int = config.WITHDRAW_NOTICE_HOURS,
    ):
        self.logger = log or logger
        self.matching = matching or MatchingEngine(log=self.logger)
        self.guard = guard or AssignmentGuard(log=self.logger)
        self.withdraw_notice = timedelta(hours=withdraw_notice_hours)
        self._handlers = {
            JobStatus.TIMED_OUT: self._from_timed_out,
            JobStatus.COMPLETED: self._from_completed,
            JobStatus.STARTED: self._from_started,
            JobStatus.PENDING: self._from_pending,
            JobStatus.WITHDRAW_AFTER_24: self._from_withdraw_after_24,
            JobStatus.ASSIGNED: self._from_assigned,
        }

    # ------------------------------------------------------------------
    # Admin-requested status change
    # ------------------------------------------------------------------

    def apply_status_change(
        self, db: Session, job: Job, requested_status, ctx: TransitionContext
    ) -> TransitionResult:
        """
        Move `job` to `requested_status` if the pair is allowed.

        Raises ValidationError (before touching the job) when a required
        comment or session time is missing. Unsupported pairs return
        UNSUPPORTED and leave status and admin_comments as they were.
        """
        old = coerce_status(job.status)
        target = coerce_status(requested_status)
        old_value = job.status

        if target is not None and target == old:
            return TransitionResult(TransitionOutcome.UNCHANGED, old_value, old_value)

        handler = self._handlers.get(old)
        if target is None or handler is None:
            self.logger.info(f"⏭️ Job {job.id}: unsupported status change {old_value} → {requested_status}")
            return TransitionResult(TransitionOutcome.UNSUPPORTED, old_value, old_value)

        events = handler(db, job, target, ctx)
        if events is None:
            self.logger.info(f"⏭️ Job {job.id}: unsupported status change {old_value} → {target.value}")
            return TransitionResult(TransitionOutcome.UNSUPPORTED, old_value, old_value)

        job.status = target.value
        if target == JobStatus.PENDING:
            self.guard.release(job, ctx.now)
        if ctx.admin_comments is not None:
            job.admin_comments = ctx.admin_comments

        log_data = [{"old_status": old_value, "new_status": target.value}]
        audit_logger.info(f"job {job.id} status {old_value} → {target.value} by {ctx.actor_id}")
        return TransitionResult(TransitionOutcome.CHANGED, old_value, target.value, events, log_data)

    def _from_timed_out(self, db, job, target, ctx):
        if target == JobStatus.PENDING:
            job.created_at = ctx.now
            job.will_expire_at = will_expire_at(job.due, ctx.now)
            # Released here so the broadcast below sees a pending, unassigned job
            job.status = target.value
            self.guard.release(job, ctx.now)
            return [
                ev.email_event(NotificationKind.JOB_REOPENED, job, [ev.customer_recipient(job)]),
                ev.broadcast_event(job, self.matching.find_eligible_translators(db, job)),
            ]
        if target == JobStatus.ASSIGNED and ctx.translator_changed:
            return [
                ev.email_event(NotificationKind.JOB_ACCEPTED, job, [ev.customer_recipient(job)], "customer"),
            ]
        return None

    def _from_completed(self, db, job, target, ctx):
        if target != JobStatus.TIMED_OUT:
            return None
        _require_comment(ctx)
        return []

    def _from_started(self, db, job, target, ctx):
        _require_comment(ctx)
        if target != JobStatus.COMPLETED:
            return []

        interval = parse_session_time(ctx.session_time)
        job.session_time = format_interval(interval)
        assignment = self.guard.complete(job, ctx.now, ctx.actor_id)
        translator = assignment.user if assignment else None
        return self._session_ended_events(job, translator, interval)

    def _from_pending(self, db, job, target, ctx):
        if target == JobStatus.TIMED_OUT:
            _require_comment(ctx)
        if target == JobStatus.ASSIGNED and ctx.translator_changed and ctx.new_translator:
            translator = ctx.new_translator
            return [
                ev.email_event(NotificationKind.JOB_ACCEPTED, job, [ev.customer_recipient(job)], "customer"),
                ev.email_event(
                    NotificationKind.JOB_ACCEPTED, job, [ev.Recipient.from_user(translator)], "translator"
                ),
                ev.push_event(
                    NotificationKind.SESSION_REMINDER,
                    job,
                    [ev.customer_recipient(job), ev.Recipient.from_user(translator)],
                ),
            ]
        return [ev.email_event(NotificationKind.JOB_WITHDRAWN, job, [ev.customer_recipient(job)])]

    def _from_withdraw_after_24(self, db, job, target, ctx):
        # Only reachable for the same status, which is handled as UNCHANGED earlier
        if target != JobStatus.WITHDRAW_AFTER_24:
            return None
        _require_comment(ctx)
        return []

    def _from_assigned(self, db, job, target, ctx):
        if target not in (JobStatus.WITHDRAW_BEFORE_24, JobStatus.WITHDRAW_AFTER_24, JobStatus.TIMED_OUT):
            return None
        if target == JobStatus.TIMED_OUT:
            _require_comment(ctx)
            return []

        assignment = job.active_assignment
        events = [ev.email_event(NotificationKind.JOB_CANCELLED, job, [ev.customer_recipient(job)], "customer")]
        if assignment:
            events.append(
                ev.email_event(
                    NotificationKind.JOB_CANCELLED,
                    job,
                    [ev.Recipient.from_user(assignment.user)],
                    "translator",
                )
            )
        return events

    # ------------------------------------------------------------------
    # Use-case transitions
    # ------------------------------------------------------------------

    def mark_assigned(self, job: Job, translator: User, push_customer: bool = False) -> list:
        """Notifications after the assignment guard flipped the job to assigned"""
        audit_logger.info(f"job {job.id} status pending → assigned by {translator.id}")
        events = [
            ev.email_event(NotificationKind.JOB_ACCEPTED, job, [ev.customer_recipient(job)], "customer"),
            ev.push_event(NotificationKind.JOB_ACCEPTED, job, [ev.Recipient.from_user(translator)], "translator"),
        ]
        if push_customer:
            events.append(
                ev.push_event(NotificationKind.JOB_ACCEPTED, job, [ev.customer_recipient(job)], "customer")
            )
        return events

    def withdraw_by_customer(self, job: Job, now: datetime) -> TransitionResult:
        old = job.status
        if old not in (JobStatus.PENDING.value, JobStatus.ASSIGNED.value):
            raise ConflictError(f"Booking #{job.id} can no longer be cancelled")

        target = JobStatus.WITHDRAW_BEFORE_24 if job.due - now >= self.withdraw_notice else JobStatus.WITHDRAW_AFTER_24
        job.status = target.value
        job.withdraw_at = now

        events = []
        assignment = job.active_assignment
        if assignment:
            events.append(
                ev.push_event(
                    NotificationKind.JOB_CANCELLED, job, [ev.Recipient.from_user(assignment.user)], "translator"
                )
            )
        audit_logger.info(f"job {job.id} status {old} → {target.value} by customer {job.user_id}")
        return TransitionResult(TransitionOutcome.CHANGED, old, target.value, events)

    def release_by_translator(self, db: Session, job: Job, translator: User, now: datetime) -> TransitionResult:
        assignment = job.active_assignment
        if job.status != JobStatus.ASSIGNED.value or not assignment or assignment.user_id != translator.id:
            raise ConflictError(f"Booking #{job.id} is not assigned to you")
        if job.due - now <= self.withdraw_notice:
            raise ConflictError(
                "Du kan inte avboka en bokning som sker inom 24 timmar genom DigitalTolk. "
                "Vänligen ring på +46 73 75 86 865 och gör din avbokning over telefon. Tack!"
            )

        old = job.status
        job.status = JobStatus.PENDING.value
        job.created_at = now
        job.will_expire_at = will_expire_at(job.due, now)
        self.guard.release(job, now)

        translators = self.matching.find_eligible_translators(db, job, exclude_user_ids=[translator.id])
        events = [
            ev.push_event(NotificationKind.JOB_CANCELLED, job, [ev.customer_recipient(job)], "customer"),
            ev.broadcast_event(job, translators),
        ]
        audit_logger.info(f"job {job.id} status {old} → pending, released by translator {translator.id}")
        return TransitionResult(TransitionOutcome.CHANGED, old, job.status, events)

    def end_session(self, job: Job, now: datetime, actor_id: Optional[int]) -> TransitionResult:
        """started → completed with the session time measured from due"""
        old = job.status
        if old != JobStatus.STARTED.value:
            return TransitionResult(TransitionOutcome.UNCHANGED, old, old)

        interval = now - job.due
        job.end_at = now
        job.status = JobStatus.COMPLETED.value
        job.session_time = format_interval(interval)
        assignment = self.guard.complete(job, now, actor_id)
        translator = assignment.user if assignment else None

        audit_logger.info(f"job {job.id} status {old} → completed by {actor_id}, session {job.session_time}")
        return TransitionResult(
            TransitionOutcome.CHANGED,
            old,
            job.status,
            self._session_ended_events(job, translator, interval),
        )

    def mark_customer_no_show(self, job: Job, now: datetime) -> TransitionResult:
        old = job.status
        if old not in (JobStatus.ASSIGNED.value, JobStatus.STARTED.value):
            raise ConflictError(f"Booking #{job.id} is not assigned")

        assignment = job.active_assignment
        job.status = JobStatus.NOT_CARRIED_OUT_CUSTOMER.value
        job.end_at = now
        self.guard.complete(job, now, assignment.user_id if assignment else None)
        audit_logger.info(f"job {job.id} status {old} → {job.status}")
        return TransitionResult(TransitionOutcome.CHANGED, old, job.status)

    def reopen(self, db: Session, job: Job, now: datetime, actor_id: Optional[int] = None) -> tuple[Job, TransitionResult]:
        """
        Put a booking back on the market.

        Timed-out bookings are cloned into a fresh pending booking; anything
        else is reset in place. Returns the pending job and the result.
        """
        old = job.status
        if old in (JobStatus.COMPLETED.value, JobStatus.NOT_CARRIED_OUT_CUSTOMER.value):
            raise ConflictError(f"Booking #{job.id} has been carried out and cannot be reopened")

        for assignment in job.assignments:
            if assignment.is_active:
                assignment.cancel_at = now

        if old == JobStatus.TIMED_OUT.value:
            reopened = self._clone(job, now)
            db.add(reopened)
            db.flush()
        else:
            reopened = job
            reopened.status = JobStatus.PENDING.value
            reopened.created_at = now
            reopened.will_expire_at = will_expire_at(job.due, now)
            reopened.withdraw_at = None

        translators = self.matching.find_eligible_translators(db, reopened)
        events = [ev.broadcast_event(reopened, translators)]
        audit_logger.info(f"job {job.id} reopened as {reopened.id} by {actor_id}")
        return reopened, TransitionResult(TransitionOutcome.CHANGED, old, JobStatus.PENDING.value, events)

    def expire(self, job: Job, now: datetime) -> TransitionResult:
        """pending → timedout once the acceptance deadline has passed"""
        old = job.status
        if old != JobStatus.PENDING.value or not job.will_expire_at or job.will_expire_at > now:
            return TransitionResult(TransitionOutcome.UNCHANGED, old, old)

        job.status = JobStatus.TIMED_OUT.value
        audit_logger.info(f"job {job.id} status pending → timedout (deadline {job.will_expire_at})")
        return TransitionResult(
            TransitionOutcome.CHANGED,
            old,
            job.status,
            [expired_event(job)],
        )

    # ------------------------------------------------------------------

    @staticmethod
    def _session_ended_events(job: Job, translator: Optional[User], interval: timedelta) -> list:
        extra = {"session_time": format_session_time(interval)}
        events = [
            ev.email_event(
                NotificationKind.SESSION_ENDED,
                job,
                [ev.customer_recipient(job)],
                "customer",
                dict(extra, for_text="faktura"),
            )
        ]
        if translator:
            events.append(
                ev.email_event(
                    NotificationKind.SESSION_ENDED,
                    job,
                    [ev.Recipient.from_user(translator)],
                    "translator",
                    dict(extra, for_text="lön"),
                )
            )
        return events

    @staticmethod
    def _clone(job: Job, now: datetime) -> Job:
        return Job(
            user=job.user,
            language=job.language,
            status=JobStatus.PENDING.value,
            due=job.due,
            duration=job.duration,
            immediate=job.immediate,
            gender=job.gender,
            certified=job.certified,
            job_type=job.job_type,
            service_mode=job.service_mode,
            specific_translator_id=job.specific_translator_id,
            town=job.town,
            address=job.address,
            instructions=job.instructions,
            reference=job.reference,
            user_email=job.user_email,
            by_admin=job.by_admin,
            created_at=now,
            will_expire_at=will_expire_at(job.due, now),
            admin_comments=f"This booking is a reopening of booking #{job.id}",
        )


def expired_event(job: Job):
    return ev.push_event(NotificationKind.JOB_EXPIRED, job, [ev.customer_recipient(job)])
