"""
Best-effort role resolution for the recorder.

Lookups return a RoleLookupResult instead of raising, and the recorder
collapses a failed lookup to UNKNOWN_ROLE explicitly.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_audit.models.audit import UserRole
from clinic_audit.models.enums import UNKNOWN_ROLE
from clinic_audit.services.context import Principal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoleLookupResult:
    role: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def role_or_unknown(self) -> str:
        return self.role or UNKNOWN_ROLE


class RoleLookup:
    """Resolve a principal's role from the user_roles table, then from the principal's own claim."""

    def __init__(self, db: Session):
        self.db = db

    def lookup(self, principal: Principal) -> RoleLookupResult:
        try:
            row = self.db.query(UserRole).filter(UserRole.user_id == principal.id).first()
        except SQLAlchemyError as exc:
            self.db.rollback()
            return RoleLookupResult(role=principal.role, error=exc)

        if row is not None and row.role:
            return RoleLookupResult(role=row.role)
        return RoleLookupResult(role=principal.role)
