"""Pytest configuration and shared fixtures."""
import os

# Keep imports of clinic_audit.main from creating a database file in the working directory
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from clinic_audit.database import Base
from clinic_audit.models.audit import AuditLog, UserRole, utcnow
from clinic_audit.services.context import ClientInfo, Principal, SessionContext


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    TestingSessionLocal = sessionmaker(bind=engine)
    session = TestingSessionLocal()

    yield session

    session.close()


@pytest.fixture
def doctor():
    return Principal(id="user-doc-1", email="doc@example.com", role="psychologist")


@pytest.fixture
def doctor_session(doctor):
    """A live browser session for the doctor."""
    return SessionContext(
        principal=doctor,
        access_token="eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9.payload.signature",
        client=ClientInfo(
            user_agent="Mozilla/5.0 (X11; Linux x86_64)",
            platform="Linux",
            language="en-US",
            screen_resolution="1920x1080",
            timezone="Asia/Manila",
        ),
        ip_address="10.0.0.7",
    )


@pytest.fixture
def psychometrician_role(db_session, doctor):
    """Role assignment overriding the doctor's identity-provider claim."""
    db_session.add(UserRole(user_id=doctor.id, role="psychometrician"))
    db_session.commit()


@pytest.fixture
def make_log(db_session):
    """Insert an audit row directly, for read-path tests that need fixed timestamps."""
    def _make_log(**overrides):
        values = dict(
            actor_id="user-1",
            actor_email="user1@example.com",
            actor_role="psychologist",
            action_kind="view",
            resource_kind="patient",
            resource_id="p1",
            description="Patient data view",
            details={},
            status="success",
            severity="low",
            created_at=utcnow(),
        )
        values.update(overrides)
        log = AuditLog(**values)
        db_session.add(log)
        db_session.commit()
        db_session.refresh(log)
        return log
    return _make_log


@pytest.fixture
def populated_logs(make_log):
    """A small mixed log spread over a few days."""
    now = utcnow()
    return [
        make_log(actor_id="u1", actor_email="Alice@Clinic.org", actor_role="admin",
                 action_kind="login", resource_kind="user", resource_id=None,
                 description="User logged in successfully", created_at=now - timedelta(days=3)),
        make_log(actor_id="u2", actor_email="bob@clinic.org", actor_role="psychometrician",
                 action_kind="create", resource_kind="psychological_test", resource_id="t1",
                 description="psychological_test test create", severity="medium",
                 created_at=now - timedelta(days=2)),
        make_log(actor_id="u2", actor_email="bob@clinic.org", actor_role="psychometrician",
                 action_kind="print", resource_kind="report", resource_id=None,
                 description='Printed "Final" report', status="failed",
                 created_at=now - timedelta(days=1)),
        make_log(actor_id="u3", actor_email="carol@clinic.org", actor_role="psychologist",
                 action_kind="appointment_booked", resource_kind="appointment", resource_id="a9",
                 description="Appointment appointment_booked", created_at=now - timedelta(hours=5)),
        make_log(actor_id="u1", actor_email="Alice@Clinic.org", actor_role="admin",
                 action_kind="delete", resource_kind="patient", resource_id="p4",
                 description="Patient data delete", severity="high", created_at=now),
    ]
