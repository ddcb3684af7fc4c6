"""
Audit log model - the durable, append-only record of user and system actions.

Rows are written once by the EventRecorder and read by the query service.
Nothing in this package updates or deletes them.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, String, Integer, DateTime, JSON, Text
from clinic_audit.database import Base
from clinic_audit.models.enums import EventStatus, Severity


def utcnow() -> datetime:
    """Naive UTC timestamp; every stored time is UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AuditLog(Base):
    """
    Immutable audit event.

    Invariants:
    - Always has a resolved actor (actor_id, actor_email, actor_role)
    - details is structured data, never a serialized string
    - created_at is assigned here and is the only time axis for filtering and ordering
    - Once written, never edited or deleted
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Actor
    actor_id = Column(String, nullable=False, index=True)
    actor_email = Column(String, nullable=True, index=True)
    actor_role = Column(String, nullable=False, index=True)

    # What happened
    action_kind = Column(String, nullable=False, index=True)  # e.g. "print", "appointment_booked"
    resource_kind = Column(String, nullable=True, index=True)  # e.g. "patient"
    resource_id = Column(String, nullable=True)
    description = Column(Text, nullable=False)
    details = Column(JSON, nullable=False, default=dict)

    # Request context
    ip_address = Column(String, nullable=True)  # Trusted server-side source only
    user_agent = Column(String, nullable=True)
    session_id_hash = Column(String, nullable=True, index=True)

    status = Column(String, nullable=False, default=EventStatus.SUCCESS.value, index=True)
    severity = Column(String, nullable=False, default=Severity.LOW.value, index=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    @property
    def resource_ref(self) -> str:
        return f"{self.resource_kind}:{self.resource_id}"


class UserRole(Base):
    """Role assignment consulted by the recorder when crediting an actor."""
    __tablename__ = "user_roles"

    user_id = Column(String, primary_key=True)
    role = Column(String, nullable=False)
