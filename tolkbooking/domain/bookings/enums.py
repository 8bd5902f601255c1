"""Tagged values used across the booking domain"""

import enum
from typing import Optional


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    STARTED = "started"
    COMPLETED = "completed"
    WITHDRAW_BEFORE_24 = "withdrawbefore24"
    WITHDRAW_AFTER_24 = "withdrawafter24"
    TIMED_OUT = "timedout"
    NOT_CARRIED_OUT_CUSTOMER = "not_carried_out_customer"


class UserType(str, enum.Enum):
    CUSTOMER = "customer"
    TRANSLATOR = "translator"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class JobType(str, enum.Enum):
    PAID = "paid"
    RWS = "rws"
    UNPAID = "unpaid"


class TranslatorLevel(str, enum.Enum):
    CERTIFIED = "Certified"
    CERTIFIED_LAW = "Certified with specialisation in law"
    CERTIFIED_HEALTH = "Certified with specialisation in health care"
    LAYMAN = "Layman"
    READ_TRANSLATION_COURSES = "Read Translation courses"


class CertificationLevel(str, enum.Enum):
    """Certification requirement stored on a job (null means any level)"""

    YES = "yes"
    BOTH = "both"
    LAW = "law"
    N_LAW = "n_law"
    HEALTH = "health"
    N_HEALTH = "n_health"
    NORMAL = "normal"


class JobForOption(str, enum.Enum):
    """Options a customer ticks when booking ("job_for")"""

    MALE = "male"
    FEMALE = "female"
    NORMAL = "normal"
    CERTIFIED = "certified"
    CERTIFIED_IN_LAW = "certified_in_law"
    CERTIFIED_IN_HEALTH = "certified_in_helth"


class ServiceMode(str, enum.Enum):
    """How the interpretation is carried out"""

    PHONE = "phone"
    PHYSICAL = "physical"
    EITHER = "either"

    @classmethod
    def from_flags(cls, phone: bool, physical: bool) -> "ServiceMode":
        if physical and phone:
            return cls.EITHER
        if physical:
            return cls.PHYSICAL
        # Neither flag set is treated as a phone booking
        return cls.PHONE


class TransitionOutcome(str, enum.Enum):
    CHANGED = "changed"
    UNCHANGED = "unchanged"
    UNSUPPORTED = "unsupported"


class AssignOutcome(str, enum.Enum):
    ASSIGNED = "assigned"
    ALREADY_BOOKED = "alreadyBooked"
    ALREADY_TAKEN = "alreadyTaken"


class ResultStatus(str, enum.Enum):
    SUCCESS = "success"
    FAIL = "fail"
    ERROR = "error"


class NotificationKind(str, enum.Enum):
    JOB_CREATED = "job_created"
    JOB_ACCEPTED = "job_accepted"
    JOB_CANCELLED = "job_cancelled"
    JOB_WITHDRAWN = "job_withdrawn"
    JOB_REOPENED = "job_reopened"
    TRANSLATOR_CHANGED = "translator_changed"
    DATE_CHANGED = "date_changed"
    LANGUAGE_CHANGED = "language_changed"
    SESSION_ENDED = "session_ended"
    SESSION_REMINDER = "session_reminder"
    JOB_EXPIRED = "job_expired"


class Channel(str, enum.Enum):
    PUSH = "push"
    SMS = "sms"
    EMAIL = "email"


def coerce_status(value) -> Optional[JobStatus]:
    """Map a raw status string onto JobStatus, None when it is not a known status"""
    if isinstance(value, JobStatus):
        return value
    try:
        return JobStatus(value)
    except ValueError:
        return None
