"""
Booking service - Business logic for interpreter bookings

Every operation returns a BookingResult: business-rule rejections become
"fail", anything unexpected rolls the session back and becomes "error".
Notifications go out only after the change is committed.
"""

import functools
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ... import config
from ...models import Job, Language, User
from ...services.notification_service import NotificationDispatcher
from . import events as ev
from .assignment import AssignmentGuard
from .clock import Clock, convert_to_hours_mins, will_expire_at
from .enums import AssignOutcome, JobForOption, JobStatus, JobType, NotificationKind, ServiceMode, TransitionOutcome, UserType
from .errors import BookingError, NotFound, ValidationError
from .lifecycle import LifecycleStateMachine, TransitionContext, expired_event
from .matching import MatchingEngine
from .repository import BookingRepository
from .schemas import AdminJobUpdate, BookingResult, JobCreate

logger = logging.getLogger(__name__)

CONSUMER_TYPE_TO_JOB_TYPE = {
    "rwsconsumer": JobType.RWS,
    "ngo": JobType.UNPAID,
    "paid": JobType.PAID,
}

ADMIN_TYPES = (UserType.ADMIN, UserType.SUPERADMIN)


def booking_operation(func):
    """Map domain errors to "fail" and unexpected faults to "error", rolling back either way"""

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except BookingError as e:
            self.db.rollback()
            self.logger.info(f"⚠️ {func.__name__} rejected: {e.message}")
            return BookingResult.fail(e.message)
        except Exception as e:
            self.db.rollback()
            self.logger.error(f"❌ {func.__name__} failed: {e}", exc_info=True)
            return BookingResult.error("An error occurred while processing the booking")

    return wrapper


def job_type_for_consumer(consumer_type: Optional[str]) -> JobType:
    try:
        return CONSUMER_TYPE_TO_JOB_TYPE[consumer_type]
    except KeyError:
        raise ValidationError(f"Unknown consumer type '{consumer_type}'") from None


def requirements_from_job_for(options) -> tuple[Optional[str], Optional[str]]:
    """Translate the customer's job_for ticks into (gender, certification requirement)"""
    options = set(options or [])
    gender = None
    if JobForOption.MALE in options:
        gender = "male"
    elif JobForOption.FEMALE in options:
        gender = "female"

    certified = JobForOption.CERTIFIED in options
    law = JobForOption.CERTIFIED_IN_LAW in options
    health = JobForOption.CERTIFIED_IN_HEALTH in options
    if JobForOption.NORMAL in options:
        if certified:
            return gender, "both"
        if law:
            return gender, "n_law"
        if health:
            return gender, "n_health"
        return gender, "normal"
    if certified:
        return gender, "yes"
    if law:
        return gender, "law"
    if health:
        return gender, "health"
    return gender, None


def parse_due(due_date: Optional[str], due_time: Optional[str]) -> datetime:
    if not due_date or not due_time:
        raise ValidationError("Du måste fylla in alla fält")
    try:
        return datetime.strptime(f"{due_date.strip()} {due_time.strip()}", "%m/%d/%Y %H:%M")
    except ValueError:
        raise ValidationError(f"Invalid due date '{due_date} {due_time}', expected MM/DD/YYYY HH:MM") from None


def job_sms_event(job: Job, translators: list[User]):
    """Booking SMS to translators; physical-only jobs get the on-site text"""
    variant = "physical" if job.service_mode == ServiceMode.PHYSICAL.value else "phone"
    extra = {
        "date": job.due.strftime("%d.%m.%Y"),
        "time": job.due.strftime("%H:%M"),
        "duration_text": convert_to_hours_mins(job.duration),
        "city": job.town or "",
    }
    return ev.sms_event(
        NotificationKind.JOB_CREATED,
        job,
        [ev.Recipient.from_user(t) for t in translators],
        variant,
        extra,
    )


class BookingService:
    """Orchestrates bookings across matching, assignment, lifecycle and notifications"""

    def __init__(
        self,
        db: Session,
        dispatcher: NotificationDispatcher,
        clock: Optional[Clock] = None,
        matching: Optional[MatchingEngine] = None,
        guard: Optional[AssignmentGuard] = None,
        lifecycle: Optional[LifecycleStateMachine] = None,
        log: Optional[logging.Logger] = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.logger = log or logger
        self.clock = clock or dispatcher.clock
        self.matching = matching or MatchingEngine(log=self.logger)
        self.guard = guard or AssignmentGuard(log=self.logger)
        self.lifecycle = lifecycle or LifecycleStateMachine(self.matching, self.guard, log=self.logger)
        self.repo = BookingRepository()

    # ------------------------------------------------------------------

    def _get_job(self, job_id: int, for_update: bool = False) -> Job:
        job = self.repo.get_job(self.db, job_id, for_update=for_update)
        if not job:
            raise NotFound(f"Booking #{job_id} not found")
        return job

    def _get_user(self, user_id: int) -> User:
        user = self.repo.get_user(self.db, user_id)
        if not user:
            raise NotFound(f"User {user_id} not found")
        return user

    def _get_translator(self, user_id: int) -> User:
        user = self._get_user(user_id)
        if not user.is_type(UserType.TRANSLATOR):
            raise ValidationError(f"User {user_id} is not a translator")
        return user

    async def _dispatch(self, events: list):
        if events:
            await self.dispatcher.notify_all(events)

    # ------------------------------------------------------------------
    # Customer operations
    # ------------------------------------------------------------------

    @booking_operation
    async def create_job(self, customer_id: int, data: JobCreate) -> BookingResult:
        """Create a pending booking and offer it to every eligible translator"""
        user = self._get_user(customer_id)
        if user.is_type(UserType.TRANSLATOR):
            raise ValidationError("Translator can not create booking")

        job_type = job_type_for_consumer(user.meta.consumer_type if user.meta else None)
        language = self.db.get(Language, data.from_language_id)
        if not language:
            raise ValidationError(f"Unknown language {data.from_language_id}")

        now = self.clock.now()
        if data.immediate:
            due = now + timedelta(minutes=config.IMMEDIATE_LEAD_MINUTES)
            # Immediate bookings are always reachable by phone
            service_mode = ServiceMode.from_flags(True, data.customer_physical_type)
        else:
            due = parse_due(data.due_date, data.due_time)
            if due < now:
                raise ValidationError("Can't create booking in the past")
            service_mode = ServiceMode.from_flags(data.customer_phone_type, data.customer_physical_type)

        gender, certified = requirements_from_job_for(data.job_for)
        job = Job(
            user=user,
            language=language,
            status=JobStatus.PENDING.value,
            due=due,
            duration=data.duration,
            immediate=data.immediate,
            gender=gender,
            certified=certified,
            job_type=job_type.value,
            service_mode=service_mode.value,
            specific_translator_id=data.specific_translator_id,
            town=data.town,
            address=data.address,
            instructions=data.instructions,
            reference=data.reference,
            user_email=data.user_email,
            by_admin=data.by_admin,
            created_at=now,
            will_expire_at=will_expire_at(due, now),
        )
        self.db.add(job)
        self.db.commit()
        self.db.refresh(job)
        self.logger.info(f"✅ Booking #{job.id} created for customer {user.id} (due {due}, {job.job_type})")

        translators = self.matching.find_eligible_translators(self.db, job)
        events = [
            ev.email_event(NotificationKind.JOB_CREATED, job, [ev.customer_recipient(job)]),
            ev.broadcast_event(job, translators),
        ]
        if job.immediate:
            events.append(job_sms_event(job, translators))
        await self._dispatch(events)

        return BookingResult.success(
            data=dict(ev.job_to_data(job), id=job.id, type="immediate" if job.immediate else "regular")
        )

    @booking_operation
    async def cancel_job(self, user_id: int, job_id: int) -> BookingResult:
        """Customer withdrawal or translator hand-back, depending on who asks"""
        user = self._get_user(user_id)
        job = self._get_job(job_id)
        now = self.clock.now()

        with self.guard.locks.hold(job_id):
            if user.id == job.user_id:
                result = self.lifecycle.withdraw_by_customer(job, now)
            elif user.is_type(UserType.TRANSLATOR):
                result = self.lifecycle.release_by_translator(self.db, job, user, now)
            else:
                raise ValidationError("You are not allowed to cancel this booking")
            self.db.commit()

        self.logger.info(f"🚫 Booking #{job_id} cancelled by {user_id}: {result.old_status} → {result.new_status}")
        await self._dispatch(result.events)
        return BookingResult.success(data={"job_id": job_id, "status": result.new_status})

    # ------------------------------------------------------------------
    # Translator operations
    # ------------------------------------------------------------------

    @booking_operation
    async def accept_job(self, translator_id: int, job_id: int) -> BookingResult:
        """Accept a job from the translator's list of open bookings"""
        return await self._accept(translator_id, job_id, by_id=False)

    @booking_operation
    async def accept_job_by_id(self, translator_id: int, job_id: int) -> BookingResult:
        """Accept a job from a direct link; the customer also gets a push"""
        return await self._accept(translator_id, job_id, by_id=True)

    async def _accept(self, translator_id: int, job_id: int, by_id: bool) -> BookingResult:
        translator = self._get_translator(translator_id)
        result = self.guard.try_assign(self.db, job_id, translator.id, self.clock.now())

        if result.outcome == AssignOutcome.ALREADY_BOOKED:
            return BookingResult.fail("Du har redan en bokning den tiden! Bokningen är inte accepterad.")

        job = self._get_job(job_id)
        if result.outcome == AssignOutcome.ALREADY_TAKEN:
            if by_id:
                return BookingResult.fail(
                    f"Denna {job.language_name}tolkning {job.duration}min {ev.format_due(job.due)} har redan "
                    "accepterats av annan tolk. Du har inte fått denna tolkning"
                )
            return BookingResult.fail("Denna bokning är redan accepterad av någon annan.")

        await self._dispatch(self.lifecycle.mark_assigned(job, translator, push_customer=by_id))

        if by_id:
            message = (
                f"Du har nu accepterat och fått bokningen för {job.language_name}tolk "
                f"{job.duration}min {ev.format_due(job.due)}"
            )
            return BookingResult.success(data={"job": ev.job_to_data(job)}, message=message)

        remaining = self.matching.find_eligible_jobs(self.db, translator)
        return BookingResult.success(
            data={"job": ev.job_to_data(job), "jobs": [ev.job_to_data(j) for j in remaining]}
        )

    @booking_operation
    async def end_job(self, job_id: int, user_id: int) -> BookingResult:
        """Close a started session; session time runs from due until now"""
        job = self._get_job(job_id)
        with self.guard.locks.hold(job_id):
            result = self.lifecycle.end_session(job, self.clock.now(), user_id)
            self.db.commit()

        if result.outcome == TransitionOutcome.UNCHANGED:
            return BookingResult.success(message="Session already ended", data={"job_id": job_id})

        await self._dispatch(result.events)
        return BookingResult.success(data={"job_id": job_id, "session_time": job.session_time})

    @booking_operation
    async def customer_no_show(self, job_id: int) -> BookingResult:
        job = self._get_job(job_id)
        with self.guard.locks.hold(job_id):
            result = self.lifecycle.mark_customer_no_show(job, self.clock.now())
            self.db.commit()
        return BookingResult.success(data={"job_id": job_id, "status": result.new_status})

    @booking_operation
    async def find_eligible_jobs_for_translator(self, translator_id: int) -> BookingResult:
        translator = self._get_translator(translator_id)
        jobs = self.matching.find_eligible_jobs(self.db, translator)
        return BookingResult.success(
            data={"job_ids": [j.id for j in jobs], "jobs": [ev.job_to_data(j) for j in jobs]}
        )

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    @booking_operation
    async def reopen_job(self, job_id: int, user_id: Optional[int] = None) -> BookingResult:
        """Put a booking back on the market; timed-out bookings are reopened as a copy"""
        job = self._get_job(job_id)
        with self.guard.locks.hold(job_id):
            reopened, result = self.lifecycle.reopen(self.db, job, self.clock.now(), user_id)
            self.db.commit()

        self.logger.info(f"🔄 Booking #{job_id} reopened as #{reopened.id}")
        await self._dispatch(result.events)
        return BookingResult.success(data={"job_id": reopened.id, "reopened_from": job_id})

    @booking_operation
    async def admin_update_job(self, job_id: int, data: AdminJobUpdate, admin_id: int) -> BookingResult:
        """
        Apply an admin edit: translator, due, language and status.

        The edit runs under the job's lock with the row locked for update.
        Status transition notifications always go out; translator, date and
        language change notices are skipped once the booking is no longer in
        the future. Resubmitting the current status leaves admin_comments alone.
        """
        admin = self._get_user(admin_id)
        if not any(admin.is_type(t) for t in ADMIN_TYPES):
            raise ValidationError("Only admins can update bookings")

        with self.guard.locks.hold(job_id):
            job = self._get_job(job_id, for_update=True)
            now = self.clock.now()
            log_data = []

            current = job.active_assignment
            old_translator = current.user if current else None
            new_translator = self._translator_change(job, data, now, log_data)

            old_due = job.due
            due_changed = data.due is not None and data.due != job.due
            if due_changed:
                job.due = data.due
                log_data.append({"old_due": ev.format_due(old_due), "new_due": ev.format_due(data.due)})

            old_language = job.language_name
            language_changed = data.from_language_id is not None and data.from_language_id != job.from_language_id
            if language_changed:
                language = self.db.get(Language, data.from_language_id)
                if not language:
                    raise ValidationError(f"Unknown language {data.from_language_id}")
                job.language = language
                log_data.append({"old_lang": old_language, "new_lang": language.language})

            result = None
            if data.status:
                ctx = TransitionContext(
                    now=now,
                    admin_comments=data.admin_comments,
                    session_time=data.session_time,
                    translator_changed=new_translator is not None,
                    new_translator=new_translator,
                    actor_id=admin.id,
                )
                result = self.lifecycle.apply_status_change(self.db, job, data.status, ctx)
                log_data.extend(result.log_data)

            if result is None and data.admin_comments is not None:
                job.admin_comments = data.admin_comments
            if data.reference is not None:
                job.reference = data.reference

            self.db.commit()

        for entry in log_data:
            self.logger.info(f"📝 Booking #{job_id} updated by admin {admin.id}: {entry}")
        payload = {"log": log_data, "transition": result.outcome.value if result else None}

        events = list(result.events) if result else []
        if job.due > now:
            translator = job.active_assignment.user if job.active_assignment else None
            if new_translator:
                events.extend(ev.translator_changed_events(job, old_translator, new_translator))
            if due_changed:
                events.extend(ev.date_changed_events(job, translator, old_due))
            if language_changed:
                events.extend(ev.language_changed_events(job, translator, old_language))
        elif new_translator or due_changed or language_changed:
            self.logger.info(f"🔕 Booking #{job_id} is not in the future, change notices suppressed")
        await self._dispatch(events)

        return BookingResult.success(message="Updated", data=payload)

    def _translator_change(self, job: Job, data: AdminJobUpdate, now: datetime, log_data: list) -> Optional[User]:
        """Switch the active translator when the edit names a different one"""
        if not data.translator and not data.translator_email:
            return None
        if data.translator:
            wanted = self.repo.get_user(self.db, data.translator)
        else:
            wanted = self.repo.get_user_by_email(self.db, data.translator_email)
        if not wanted or not wanted.is_type(UserType.TRANSLATOR):
            raise ValidationError("Translator not found")

        current = job.active_assignment
        if current and current.user_id == wanted.id:
            return None
        self.guard.assign_directly(self.db, job, wanted.id, now)
        log_data.append({"old_translator": current.user_id if current else None, "new_translator": wanted.id})
        return wanted

    # ------------------------------------------------------------------
    # Notifications and expiry
    # ------------------------------------------------------------------

    @booking_operation
    async def notify_expired(self, job_id: int) -> BookingResult:
        job = self._get_job(job_id)
        await self._dispatch([expired_event(job)])
        return BookingResult.success(data={"job_id": job_id})

    @booking_operation
    async def expire_overdue_jobs(self) -> BookingResult:
        """Time out pending bookings whose acceptance deadline has passed"""
        now = self.clock.now()
        expired, events = [], []
        for job in self.repo.overdue_pending_jobs(self.db, now):
            with self.guard.locks.hold(job.id):
                result = self.lifecycle.expire(job, now)
            if result.changed:
                expired.append(job.id)
                events.extend(result.events)
        self.db.commit()

        if expired:
            self.logger.info(f"⏰ {len(expired)} booking(s) timed out: {expired}")
        await self._dispatch(events)
        return BookingResult.success(data={"expired": expired})

    @booking_operation
    async def resend_notifications(self, job_id: int) -> BookingResult:
        """Push the booking to every eligible translator again"""
        job = self._get_job(job_id)
        translators = self.matching.find_eligible_translators(self.db, job)
        await self._dispatch([ev.broadcast_event(job, translators)])
        return BookingResult.success(message="Push sent", data={"recipients": len(translators)})

    @booking_operation
    async def resend_sms_notifications(self, job_id: int) -> BookingResult:
        """Text the booking to every eligible translator again"""
        job = self._get_job(job_id)
        translators = self.matching.find_eligible_translators(self.db, job)
        await self._dispatch([job_sms_event(job, translators)])
        return BookingResult.success(message="SMS sent", data={"recipients": len(translators)})
