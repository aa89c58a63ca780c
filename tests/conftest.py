import os

# Configuración de test antes de importar la aplicación
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_TABLES"] = "False"
os.environ["SCHEDULER_ENABLED"] = "False"
os.environ["NOTIFICATION_SINK"] = "log"
os.environ["GYM_TIMEZONE"] = "Europe/Berlin"
os.environ["BASIC_MEMBER_WEEKLY_LIMIT"] = "2"

import itertools
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gymbooking.core.locks import RegistrationLocks
from gymbooking.db.base import Base
from gymbooking.db.session import get_db
from gymbooking.main import app
from gymbooking.models.member import MembershipType
from gymbooking.repositories.course import course_repository
from gymbooking.repositories.member import member_repository
from gymbooking.repositories.quota import quota_repository
from gymbooking.services.notification_sink import NotificationSink
from gymbooking.services.quota_ledger import QuotaLedger
from gymbooking.services.registration import RegistrationService, get_registration_service

GYM_TIMEZONE = "Europe/Berlin"

# Miércoles 11/03/2026 10:00 UTC
NOW = datetime(2026, 3, 11, 10, 0, tzinfo=timezone.utc)


class RecordingSink(NotificationSink):
    """Sink de test que guarda las notificaciones y puede simular fallos."""

    def __init__(self):
        self.notifications = []
        self.fail = False

    def emit(self, notification):
        if self.fail:
            raise ConnectionError("sink caído")
        self.notifications.append(notification)


def build_service(sink, **kwargs):
    return RegistrationService(
        quota_ledger=QuotaLedger(weekly_limit=2, gym_timezone=GYM_TIMEZONE),
        sink=sink,
        locks=RegistrationLocks(),
        **kwargs
    )


@pytest.fixture(scope="function")
def db_engine():
    """Base de datos en memoria nueva para cada test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(db_engine):
    """
    Crea una sesión de base de datos fresca para cada test y la cierra al finalizar.
    """
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def service(sink):
    return build_service(sink)


@pytest.fixture(scope="function")
def client(db, service):
    """
    Crea un cliente de prueba usando la sesión y el servicio de test.
    """
    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_registration_service] = lambda: service
    with_client = TestClient(app)
    yield with_client
    app.dependency_overrides.clear()


_emails = itertools.count(1)


@pytest.fixture
def make_member(db):
    def _make(membership_type=MembershipType.PREMIUM_MEMBER, first_name="Test", last_name=None, credits=None):
        member = member_repository.create(db, obj_in={
            "first_name": first_name,
            "last_name": last_name,
            "email": f"member{next(_emails)}@example.com",
            "membership_type": membership_type,
        })
        if credits is not None:
            quota_repository.create_credit_balance(db, member_id=member.id, credits=credits, now=NOW)
            db.commit()
        return member
    return _make


@pytest.fixture
def make_course(db):
    def _make(start_at=None, capacity=3, registration_deadline_minutes=0,
              cancellation_deadline_minutes=0, title="Functional Training", is_cancelled=False):
        start_at = start_at or NOW + timedelta(days=2)
        return course_repository.create(db, obj_in={
            "title": title,
            "start_at": start_at,
            "end_at": start_at + timedelta(hours=1),
            "capacity": capacity,
            "registration_deadline_minutes": registration_deadline_minutes,
            "cancellation_deadline_minutes": cancellation_deadline_minutes,
            "is_cancelled": is_cancelled,
        })
    return _make
