"""
Matching engine
Decides which pending jobs a translator may see, and which translators a job may be offered to.
Both directions go through the same eligibility predicate so they always agree.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ... import config
from ...models import Job, User
from .enums import CertificationLevel, JobStatus, JobType, ServiceMode, TranslatorLevel, UserStatus, UserType
from .repository import BookingRepository

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("tolkbooking.audit")

CERTIFIED_LEVELS = frozenset(
    {
        TranslatorLevel.CERTIFIED.value,
        TranslatorLevel.CERTIFIED_LAW.value,
        TranslatorLevel.CERTIFIED_HEALTH.value,
    }
)
LAYMAN_LEVELS = frozenset(
    {
        TranslatorLevel.LAYMAN.value,
        TranslatorLevel.READ_TRANSLATION_COURSES.value,
    }
)
ALL_LEVELS = CERTIFIED_LEVELS | LAYMAN_LEVELS


@dataclass(frozen=True)
class CertificationRule:
    name: str
    requirements: frozenset
    levels: frozenset


# Ordered; the first rule whose requirements contain the job's value wins
CERTIFICATION_RULES = (
    CertificationRule(
        "certified",
        frozenset({CertificationLevel.YES.value, CertificationLevel.BOTH.value}),
        CERTIFIED_LEVELS,
    ),
    CertificationRule(
        "law",
        frozenset({CertificationLevel.LAW.value, CertificationLevel.N_LAW.value}),
        frozenset({TranslatorLevel.CERTIFIED_LAW.value}),
    ),
    CertificationRule(
        "health",
        frozenset({CertificationLevel.HEALTH.value, CertificationLevel.N_HEALTH.value}),
        frozenset({TranslatorLevel.CERTIFIED_HEALTH.value}),
    ),
    CertificationRule(
        "layman",
        frozenset({CertificationLevel.NORMAL.value}),
        LAYMAN_LEVELS,
    ),
)
ANY_LEVEL_RULE = CertificationRule("any", frozenset({None}), ALL_LEVELS)

TRANSLATOR_TYPE_TO_JOB_TYPE = {
    "professional": JobType.PAID,
    "rwstranslator": JobType.RWS,
}


def job_type_for_translator(translator_type: Optional[str]) -> JobType:
    """professional → paid, rwstranslator → rws, anything else → unpaid"""
    return TRANSLATOR_TYPE_TO_JOB_TYPE.get(translator_type or "", JobType.UNPAID)


def certification_rule(certified) -> Optional[CertificationRule]:
    """Rule matching a job's certification requirement; None for an unknown value"""
    value = getattr(certified, "value", certified)
    if value is None or value == "":
        return ANY_LEVEL_RULE
    for rule in CERTIFICATION_RULES:
        if value in rule.requirements:
            return rule
    return None


def levels_for_requirement(certified, log: Optional[logging.Logger] = None) -> frozenset:
    """Translator levels that satisfy a job's certification requirement"""
    rule = certification_rule(certified)
    if rule is None:
        (log or logger).warning(f"⚠️ Unknown certification requirement '{certified}', no level matches")
        return frozenset()
    audit_logger.debug(f"certification rule '{rule.name}' fired for requirement {certified!r}")
    return rule.levels


def requirements_accepting(level: Optional[str]) -> list:
    """Job certification values (None included) whose superset contains the translator's level"""
    if not level:
        return []
    accepted = []
    for rule in CERTIFICATION_RULES + (ANY_LEVEL_RULE,):
        if level in rule.levels:
            accepted.extend(rule.requirements)
    return accepted


def same_town(job_town: Optional[str], translator_town: Optional[str]) -> bool:
    if not job_town or not translator_town:
        return False
    return job_town.strip().casefold() == translator_town.strip().casefold()


class MatchingEngine:
    """Eligibility between translators and pending jobs"""

    def __init__(
        self,
        log: Optional[logging.Logger] = None,
        physical_town_filter: bool = config.PHYSICAL_TOWN_FILTER_ENABLED,
    ):
        self.logger = log or logger
        self.physical_town_filter = physical_town_filter
        self.repo = BookingRepository()

    def rejection_reason(self, job: Job, translator: User, blacklisted: bool) -> Optional[str]:
        """Why `translator` may not take `job`, or None when eligible"""
        meta = translator.meta
        if not translator.is_type(UserType.TRANSLATOR) or meta is None:
            return "not_a_translator"
        if translator.status != UserStatus.ACTIVE.value:
            return "translator_inactive"
        if job.status != JobStatus.PENDING.value:
            return "job_not_pending"
        if job.job_type != job_type_for_translator(meta.translator_type).value:
            return "job_type"
        if job.from_language_id not in translator.language_ids:
            return "language"
        if job.gender and job.gender != meta.gender:
            return "gender"
        if meta.translator_level not in levels_for_requirement(job.certified, self.logger):
            return "certification"
        if blacklisted:
            return "blacklisted"
        if job.specific_translator_id and job.specific_translator_id != translator.id:
            return "earmarked_for_other_translator"
        if (
            self.physical_town_filter
            and job.service_mode == ServiceMode.PHYSICAL.value
            and not same_town(job.town, meta.city)
        ):
            return "physical_other_town"
        return None

    def is_eligible(self, job: Job, translator: User, blacklisted: bool = False) -> bool:
        return self.rejection_reason(job, translator, blacklisted) is None

    def find_eligible_jobs(self, db: Session, translator: User) -> list[Job]:
        """Pending jobs this translator may see and accept, ordered by due"""
        meta = translator.meta
        if meta is None:
            self.logger.warning(f"⚠️ Translator {translator.id} has no profile, no jobs matched")
            return []

        job_type = job_type_for_translator(meta.translator_type)
        candidates = self.repo.candidate_pending_jobs(
            db,
            job_type=job_type.value,
            language_ids=translator.language_ids,
            gender=meta.gender,
            certifications=requirements_accepting(meta.translator_level),
        )
        blocking_customers = self.repo.customers_blacklisting(db, translator.id)

        eligible = []
        for job in candidates:
            reason = self.rejection_reason(job, translator, job.user_id in blocking_customers)
            if reason:
                self.logger.debug(f"Job {job.id} excluded for translator {translator.id}: {reason}")
                continue
            eligible.append(job)

        self.logger.info(
            f"🔍 Translator {translator.id}: {len(eligible)} eligible of {len(candidates)} candidate jobs"
        )
        return eligible

    def find_eligible_translators(
        self, db: Session, job: Job, exclude_user_ids: Iterable[Optional[int]] = ()
    ) -> list[User]:
        """Active translators this job may be offered to"""
        levels = levels_for_requirement(job.certified, self.logger)
        candidates = self.repo.candidate_translators(
            db,
            language_id=job.from_language_id,
            gender=job.gender,
            levels=levels,
            exclude_ids=exclude_user_ids,
        )
        blacklist = self.repo.blacklisted_translator_ids(db, job.user_id)

        eligible = []
        for translator in candidates:
            reason = self.rejection_reason(job, translator, translator.id in blacklist)
            if reason:
                self.logger.debug(f"Translator {translator.id} excluded for job {job.id}: {reason}")
                continue
            eligible.append(translator)

        self.logger.info(
            f"🔍 Job {job.id}: {len(eligible)} eligible of {len(candidates)} candidate translators"
        )
        return eligible
