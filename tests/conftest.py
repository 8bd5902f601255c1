import itertools
from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from tolkbooking.database import Base, build_engine
from tolkbooking.domain.bookings.clock import Clock
from tolkbooking.domain.bookings.errors import TransportError
from tolkbooking.domain.bookings.service import BookingService
from tolkbooking.models import Job, Language, TranslatorAssignment, User, UserLanguage, UserMeta, UsersBlacklist
from tolkbooking.services.gateway import NotificationGateway
from tolkbooking.services.notification_service import NotificationDispatcher

# A Monday morning, well outside the night window
NOW = datetime(2026, 3, 2, 10, 0, 0)


class FrozenClock(Clock):
    def __init__(self, current: datetime = NOW, **kwargs):
        super().__init__(**kwargs)
        self.current = current

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


class RecordingGateway(NotificationGateway):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.pushes: list[dict] = []
        self.sms: list[dict] = []
        self.emails: list[dict] = []

    async def send_push(self, recipients, message, data, defer_until=None):
        if self.fail:
            raise TransportError("push gateway down")
        self.pushes.append(
            {
                "user_ids": [r.user_id for r in recipients],
                "message": message,
                "data": data,
                "defer_until": defer_until,
            }
        )
        return True

    async def send_sms(self, number, text):
        if self.fail:
            raise TransportError("sms gateway down")
        self.sms.append({"number": number, "text": text})
        return True

    async def send_email(self, address, name, subject, template, data):
        if self.fail:
            raise TransportError("email gateway down")
        self.emails.append(
            {"address": address, "name": name, "subject": subject, "template": template, "data": data}
        )
        return True

    def emails_with(self, template: str) -> list[dict]:
        return [e for e in self.emails if e["template"] == template]


class Factory:
    """Seeds users, languages and bookings"""

    def __init__(self, db):
        self.db = db
        self._seq = itertools.count(1)

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def language(self, name: str = "Arabiska") -> Language:
        return self._save(Language(language=name))

    def customer(self, consumer_type: str = "paid", **meta) -> User:
        n = next(self._seq)
        user = User(name=f"Kund {n}", email=f"kund{n}@example.se", mobile="0701234567", user_type="customer")
        user.meta = UserMeta(consumer_type=consumer_type, customer_type="kommun", **meta)
        return self._save(user)

    def translator(
        self,
        languages=(),
        translator_type: str = "professional",
        level: str = "Certified",
        gender: str = "female",
        city: str = "Stockholm",
        status: str = "active",
        mobile: str = "0731234567",
        **prefs,
    ) -> User:
        n = next(self._seq)
        user = User(
            name=f"Tolk {n}",
            email=f"tolk{n}@example.se",
            mobile=mobile,
            user_type="translator",
            status=status,
        )
        user.meta = UserMeta(
            translator_type=translator_type,
            translator_level=level,
            gender=gender,
            city=city,
            **prefs,
        )
        user.languages = [UserLanguage(lang_id=language.id) for language in languages]
        return self._save(user)

    def admin(self) -> User:
        n = next(self._seq)
        return self._save(User(name=f"Admin {n}", email=f"admin{n}@example.se", user_type="admin"))

    def job(
        self,
        customer: User,
        language: Language,
        due: datetime = NOW + timedelta(days=3),
        status: str = "pending",
        created_at: datetime = NOW,
        **fields,
    ) -> Job:
        fields.setdefault("duration", 60)
        fields.setdefault("job_type", "paid")
        fields.setdefault("will_expire_at", due - timedelta(hours=48))
        return self._save(
            Job(
                user_id=customer.id,
                from_language_id=language.id,
                due=due,
                status=status,
                created_at=created_at,
                **fields,
            )
        )

    def assign(self, job: Job, translator: User, at: datetime = NOW) -> TranslatorAssignment:
        assignment = self._save(TranslatorAssignment(job_id=job.id, user_id=translator.id, created_at=at))
        self.db.expire(job)
        return assignment

    def blacklist(self, customer: User, translator: User) -> UsersBlacklist:
        return self._save(UsersBlacklist(user_id=customer.id, translator_id=translator.id))


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'bookings.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def dispatcher(gateway, clock):
    return NotificationDispatcher(gateway, clock)


@pytest.fixture
def service(db, dispatcher, clock):
    return BookingService(db, dispatcher, clock=clock)


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def swedish(factory):
    return factory.language("Svenska")


@pytest.fixture
def arabic(factory):
    return factory.language("Arabiska")
