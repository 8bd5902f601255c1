"""Booking repository - Database operations for jobs, assignments and translators"""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from ...models import Job, TranslatorAssignment, User, UserLanguage, UserMeta, UsersBlacklist


class BookingRepository:
    """Repository for booking database operations"""

    @staticmethod
    def get_job(db: Session, job_id: int, for_update: bool = False) -> Optional[Job]:
        """Get a job with its assignment log loaded"""
        query = db.query(Job).options(selectinload(Job.assignments)).filter(Job.id == job_id)
        if for_update:
            query = query.with_for_update(of=Job)
        return query.first()

    @staticmethod
    def get_user(db: Session, user_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_user_by_email(db: Session, email: str) -> Optional[User]:
        return db.query(User).filter(User.email == email.strip().lower()).first()

    @staticmethod
    def translator_has_booking_at(
        db: Session, translator_id: int, due: datetime, exclude_job_id: int
    ) -> bool:
        """True when the translator already holds an active assignment due at the same time"""
        return (
            db.query(TranslatorAssignment.id)
            .join(Job, Job.id == TranslatorAssignment.job_id)
            .filter(
                TranslatorAssignment.user_id == translator_id,
                TranslatorAssignment.cancel_at.is_(None),
                TranslatorAssignment.completed_at.is_(None),
                TranslatorAssignment.job_id != exclude_job_id,
                Job.due == due,
            )
            .first()
            is not None
        )

    @staticmethod
    def blacklisted_translator_ids(db: Session, customer_id: int) -> set[int]:
        rows = db.query(UsersBlacklist.translator_id).filter(UsersBlacklist.user_id == customer_id)
        return {row.translator_id for row in rows}

    @staticmethod
    def customers_blacklisting(db: Session, translator_id: int) -> set[int]:
        rows = db.query(UsersBlacklist.user_id).filter(UsersBlacklist.translator_id == translator_id)
        return {row.user_id for row in rows}

    @staticmethod
    def candidate_pending_jobs(
        db: Session,
        job_type: str,
        language_ids: Iterable[int],
        gender: Optional[str],
        certifications: Iterable[Optional[str]],
    ) -> list[Job]:
        """Pending jobs pre-filtered on type, language, gender and certification requirement"""
        language_ids = list(language_ids)
        if not language_ids:
            return []

        certifications = list(certifications)
        values = [c for c in certifications if c is not None]
        cert_clauses = [Job.certified.in_(values)] if values else []
        if None in certifications:
            cert_clauses.append(Job.certified.is_(None))
        if not cert_clauses:
            return []

        gender_clauses = [Job.gender.is_(None)]
        if gender:
            gender_clauses.append(Job.gender == gender)

        return (
            db.query(Job)
            .filter(
                Job.status == "pending",
                Job.job_type == job_type,
                Job.from_language_id.in_(language_ids),
                or_(*gender_clauses),
                or_(*cert_clauses),
            )
            .order_by(Job.due.asc())
            .all()
        )

    @staticmethod
    def candidate_translators(
        db: Session,
        language_id: int,
        gender: Optional[str],
        levels: Iterable[str],
        exclude_ids: Iterable[int] = (),
    ) -> list[User]:
        """Active translators pre-filtered on language, gender and level"""
        levels = list(levels)
        if not levels:
            return []

        query = (
            db.query(User)
            .join(UserMeta, UserMeta.user_id == User.id)
            .join(UserLanguage, UserLanguage.user_id == User.id)
            .options(selectinload(User.languages))
            .filter(
                User.user_type == "translator",
                User.status == "active",
                UserLanguage.lang_id == language_id,
                UserMeta.translator_level.in_(levels),
            )
        )
        if gender:
            query = query.filter(UserMeta.gender == gender)

        exclude_ids = [i for i in exclude_ids if i is not None]
        if exclude_ids:
            query = query.filter(User.id.notin_(exclude_ids))

        return query.order_by(User.id.asc()).all()

    @staticmethod
    def overdue_pending_jobs(db: Session, now: datetime) -> list[Job]:
        """Pending jobs whose acceptance deadline has passed"""
        return (
            db.query(Job)
            .filter(
                Job.status == "pending",
                Job.will_expire_at.isnot(None),
                Job.will_expire_at <= now,
            )
            .order_by(Job.will_expire_at.asc())
            .all()
        )
