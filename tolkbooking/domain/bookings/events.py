"""
Notification events produced by booking transitions.

Events are plain values: the state machine builds them, the orchestrator hands
them to the dispatcher once the transition is committed.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from ... import config
from ...models import Job, User
from .enums import Channel, NotificationKind

DUE_FORMAT = "%Y-%m-%d %H:%M:%S"

GENDER_LABELS = {"male": "Man", "female": "Kvinna"}
CERTIFIED_LABELS = {
    "both": ["Godkänd tolk", "Auktoriserad"],
    "yes": ["Auktoriserad"],
    "n_health": ["Sjukvårdstolk"],
    "health": ["Sjukvårdstolk"],
    "law": ["Rättstolk"],
    "n_law": ["Rättstolk"],
}


@dataclass(frozen=True)
class Recipient:
    user_id: int
    name: str
    email: Optional[str] = None
    mobile: Optional[str] = None
    not_get_notification: bool = False
    not_get_nighttime: bool = False
    not_get_emergency: bool = False

    @classmethod
    def from_user(cls, user: User, email_override: Optional[str] = None) -> "Recipient":
        meta = user.meta
        return cls(
            user_id=user.id,
            name=user.name,
            email=email_override or user.email,
            mobile=user.mobile,
            not_get_notification=bool(meta and meta.not_get_notification),
            not_get_nighttime=bool(meta and meta.not_get_nighttime),
            not_get_emergency=bool(meta and meta.not_get_emergency),
        )

    def as_dict(self) -> dict:
        return {"id": self.user_id, "name": self.name, "email": self.email}


@dataclass(frozen=True)
class NotificationEvent:
    kind: NotificationKind
    channel: Channel
    job_id: int
    recipients: tuple
    payload: dict = field(default_factory=dict)
    variant: str = "default"
    urgent: bool = False
    locale: str = config.DEFAULT_LOCALE


def format_due(due: Optional[datetime]) -> str:
    return due.strftime(DUE_FORMAT) if due else ""


def job_for_labels(job: Job) -> list[str]:
    """Display labels for the job's gender and certification requirement"""
    labels = []
    if job.gender:
        labels.append(GENDER_LABELS.get(job.gender, job.gender))
    if job.certified:
        labels.extend(CERTIFIED_LABELS.get(job.certified, [job.certified]))
    return labels


def job_to_data(job: Job) -> dict:
    """Job snapshot carried in notifications and API results"""
    due = format_due(job.due)
    due_date, _, due_time = due.partition(" ")
    customer_meta = job.user.meta if job.user else None
    return {
        "job_id": job.id,
        "from_language_id": job.from_language_id,
        "language": job.language_name,
        "immediate": "yes" if job.immediate else "no",
        "duration": job.duration,
        "status": job.status,
        "gender": job.gender,
        "certified": job.certified,
        "due": due,
        "due_date": due_date,
        "due_time": due_time,
        "job_type": job.job_type,
        "service_mode": job.service_mode,
        "customer_phone_type": "yes" if job.customer_phone_type else "no",
        "customer_physical_type": "yes" if job.customer_physical_type else "no",
        "customer_town": job.town,
        "customer_type": customer_meta.customer_type if customer_meta else None,
        "session_type": f"på plats i {job.town}" if job.customer_physical_type else "telefon",
        "job_for": job_for_labels(job),
        "admin_comments": job.admin_comments,
        "session_time": job.session_time,
    }


def customer_recipient(job: Job) -> Recipient:
    return Recipient.from_user(job.user, email_override=job.user_email)


def _event(
    kind: NotificationKind,
    channel: Channel,
    job: Job,
    recipients: Iterable[Recipient],
    variant: str = "default",
    extra: Optional[dict] = None,
) -> NotificationEvent:
    payload = job_to_data(job)
    if extra:
        payload.update(extra)
    return NotificationEvent(
        kind=kind,
        channel=channel,
        job_id=job.id,
        recipients=tuple(recipients),
        payload=payload,
        variant=variant,
        urgent=bool(job.immediate),
    )


def email_event(kind, job, recipients, variant="default", extra=None) -> NotificationEvent:
    return _event(kind, Channel.EMAIL, job, recipients, variant, extra)


def push_event(kind, job, recipients, variant="default", extra=None) -> NotificationEvent:
    return _event(kind, Channel.PUSH, job, recipients, variant, extra)


def sms_event(kind, job, recipients, variant="default", extra=None) -> NotificationEvent:
    return _event(kind, Channel.SMS, job, recipients, variant, extra)


def broadcast_event(job: Job, translators: Iterable[User]) -> NotificationEvent:
    """New-job push to every eligible translator"""
    variant = "immediate" if job.immediate else "regular"
    return push_event(
        NotificationKind.JOB_CREATED,
        job,
        [Recipient.from_user(t) for t in translators],
        variant=variant,
    )


def translator_changed_events(
    job: Job, old_translator: Optional[User], new_translator: User
) -> list[NotificationEvent]:
    """Customer, outgoing and incoming translator; one subject keyed by job id"""
    events = [
        email_event(NotificationKind.TRANSLATOR_CHANGED, job, [customer_recipient(job)], "customer"),
    ]
    if old_translator:
        events.append(
            email_event(
                NotificationKind.TRANSLATOR_CHANGED,
                job,
                [Recipient.from_user(old_translator)],
                "old_translator",
            )
        )
    events.append(
        email_event(
            NotificationKind.TRANSLATOR_CHANGED,
            job,
            [Recipient.from_user(new_translator)],
            "new_translator",
        )
    )
    return events


def date_changed_events(job: Job, translator: Optional[User], old_due: datetime) -> list[NotificationEvent]:
    recipients = [customer_recipient(job)]
    if translator:
        recipients.append(Recipient.from_user(translator))
    return [
        email_event(
            NotificationKind.DATE_CHANGED, job, recipients, extra={"old_time": format_due(old_due)}
        )
    ]


def language_changed_events(
    job: Job, translator: Optional[User], old_language: str
) -> list[NotificationEvent]:
    recipients = [customer_recipient(job)]
    if translator:
        recipients.append(Recipient.from_user(translator))
    return [
        email_event(
            NotificationKind.LANGUAGE_CHANGED, job, recipients, extra={"old_lang": old_language}
        )
    ]
