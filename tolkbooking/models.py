from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship

from .database import Base


class Language(Base):
    __tablename__ = "languages"

    id = Column(Integer, primary_key=True, index=True)
    language = Column(String(100), nullable=False)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    mobile = Column(String(50), nullable=True)
    # customer, translator, admin, superadmin
    user_type = Column(String(20), nullable=False, index=True)
    # active, inactive
    status = Column(String(20), default="active", nullable=False)

    meta = relationship("UserMeta", back_populates="user", uselist=False, lazy="joined")
    languages = relationship("UserLanguage", back_populates="user", cascade="all, delete-orphan")
    jobs = relationship("Job", back_populates="user", foreign_keys="Job.user_id")

    def is_type(self, user_type) -> bool:
        value = getattr(user_type, "value", user_type)
        return self.user_type == value

    @property
    def language_ids(self) -> set[int]:
        return {row.lang_id for row in self.languages}


class UserMeta(Base):
    """Profile managed by the profile collaborator; read-only for the booking core"""

    __tablename__ = "user_meta"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)

    # Customer profile
    consumer_type = Column(String(50), nullable=True)  # paid, rwsconsumer, ngo
    customer_type = Column(String(50), nullable=True)
    city = Column(String(100), nullable=True)

    # Translator profile
    gender = Column(String(10), nullable=True)  # male, female
    translator_type = Column(String(50), nullable=True)  # professional, rwstranslator, volunteer
    translator_level = Column(String(100), nullable=True)

    # Notification preferences
    not_get_notification = Column(Boolean, default=False, nullable=False)  # No pushes at all
    not_get_nighttime = Column(Boolean, default=False, nullable=False)  # Defer pushes at night
    not_get_emergency = Column(Boolean, default=False, nullable=False)  # No immediate-job pushes

    user = relationship("User", back_populates="meta")


class UserLanguage(Base):
    __tablename__ = "user_languages"
    __table_args__ = (UniqueConstraint("user_id", "lang_id", name="uq_user_language"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    lang_id = Column(Integer, ForeignKey("languages.id"), nullable=False, index=True)

    user = relationship("User", back_populates="languages")


class UsersBlacklist(Base):
    """A customer (user_id) refusing to work with a translator (translator_id)"""

    __tablename__ = "users_blacklist"
    __table_args__ = (UniqueConstraint("user_id", "translator_id", name="uq_blacklist_pair"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    translator_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)


class Job(Base):
    """Booking request"""

    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    from_language_id = Column(Integer, ForeignKey("languages.id"), nullable=False, index=True)

    # Status workflow: pending → assigned → started → completed
    # Side exits: withdrawbefore24, withdrawafter24, timedout, not_carried_out_customer
    status = Column(String(50), default="pending", nullable=False, index=True)

    due = Column(DateTime, nullable=False, index=True)
    duration = Column(Integer, nullable=False)  # minutes
    immediate = Column(Boolean, default=False, nullable=False)

    # Requirements
    gender = Column(String(10), nullable=True)
    certified = Column(String(20), nullable=True)
    job_type = Column(String(20), nullable=False, index=True)
    service_mode = Column(String(20), default="phone", nullable=False)
    specific_translator_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Where / who
    town = Column(String(100), nullable=True)
    address = Column(Text, nullable=True)
    instructions = Column(Text, nullable=True)
    reference = Column(String(255), nullable=True)
    user_email = Column(String(255), nullable=True)  # Overrides the customer's email
    by_admin = Column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at = Column(DateTime, nullable=False)
    will_expire_at = Column(DateTime, nullable=True, index=True)
    withdraw_at = Column(DateTime, nullable=True)
    end_at = Column(DateTime, nullable=True)

    # Admin bookkeeping
    admin_comments = Column(Text, nullable=True)
    session_time = Column(String(20), nullable=True)  # H:MM:SS once completed

    user = relationship("User", back_populates="jobs", foreign_keys=[user_id], lazy="joined")
    language = relationship("Language", lazy="joined")
    assignments = relationship(
        "TranslatorAssignment",
        back_populates="job",
        order_by="TranslatorAssignment.id",
    )

    @property
    def active_assignment(self):
        for assignment in self.assignments:
            if assignment.is_active:
                return assignment
        return None

    @property
    def language_name(self) -> str:
        return self.language.language if self.language else str(self.from_language_id)

    @property
    def customer_phone_type(self) -> bool:
        return self.service_mode in ("phone", "either")

    @property
    def customer_physical_type(self) -> bool:
        return self.service_mode in ("physical", "either")


class TranslatorAssignment(Base):
    """One translator's attempt at a job; never deleted, only soft-cancelled or completed"""

    __tablename__ = "translator_job_rel"
    __table_args__ = (
        # At most one active assignment per job
        Index(
            "uq_translator_job_rel_active",
            "job_id",
            unique=True,
            sqlite_where=text("cancel_at IS NULL AND completed_at IS NULL"),
            postgresql_where=text("cancel_at IS NULL AND completed_at IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False)
    cancel_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    completed_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    job = relationship("Job", back_populates="assignments")
    user = relationship("User", foreign_keys=[user_id], lazy="joined")

    @property
    def is_active(self) -> bool:
        return self.cancel_at is None and self.completed_at is None
