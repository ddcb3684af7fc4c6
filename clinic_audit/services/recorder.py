"""
Event recorder - the write path for the audit log.

Every feature that performs a user-visible action calls into here. Recording
must never break the feature it instruments: all failures end as a False return
plus log output, never as an exception in the caller.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_audit.models.audit import AuditLog, utcnow
from clinic_audit.models.enums import (
    ALERTING_SEVERITIES,
    ActionKind,
    EventStatus,
    ResourceKind,
    Severity,
    kind_value,
)
from clinic_audit.services.alerts import AlertSink, LoggingAlertSink
from clinic_audit.services.context import Principal, SessionContext, session_id_hash
from clinic_audit.services.details import coerce_details
from clinic_audit.services.roles import RoleLookup

logger = logging.getLogger(__name__)

Kind = Union[str, ActionKind, ResourceKind, EventStatus, Severity]

# Keys the recorder injects into details; caller values for these are replaced
RESERVED_DETAIL_KEYS = ("timestamp", "client_info")


def iso_timestamp() -> str:
    return utcnow().isoformat(timespec="milliseconds") + "Z"


class EventRecorder:
    """Enrich and append audit events for one database session."""

    def __init__(
        self,
        db: Session,
        role_lookup: Optional[RoleLookup] = None,
        alert_sink: Optional[AlertSink] = None
    ):
        self.db = db
        self.role_lookup = role_lookup or RoleLookup(db)
        self.alert_sink = alert_sink or LoggingAlertSink()

    def record(
        self,
        action_kind: Kind,
        description: str,
        *,
        resource_kind: Optional[Kind] = None,
        resource_id: Optional[Any] = None,
        details: Any = None,
        status: Kind = EventStatus.SUCCESS,
        severity: Kind = Severity.LOW,
        session: Optional[SessionContext] = None,
        actor_override: Optional[Principal] = None,
        triggering_error: Optional[BaseException] = None
    ) -> bool:
        """
        Record one event. Returns True only if the row was committed.

        Steps:
        - resolve the actor (override first, then the session); no actor is a no-op
        - resolve the role, collapsing lookup failures to "unknown"
        - merge caller details with the recorder-owned timestamp and client_info
        - insert; high/critical events also go to the alert sink whatever the outcome
        """
        try:
            return self._record(
                action_kind,
                description,
                resource_kind=resource_kind,
                resource_id=resource_id,
                details=details,
                status=status,
                severity=severity,
                session=session or SessionContext(),
                actor_override=actor_override,
                triggering_error=triggering_error
            )
        except Exception:
            logger.exception("Audit logging failed for action %s", kind_value(action_kind))
            return False

    def _record(
        self,
        action_kind,
        description,
        *,
        resource_kind,
        resource_id,
        details,
        status,
        severity,
        session: SessionContext,
        actor_override: Optional[Principal],
        triggering_error: Optional[BaseException]
    ) -> bool:
        actor = actor_override or session.principal
        if actor is None:
            logger.warning("No actor found for audit event %s; skipping", kind_value(action_kind))
            return False

        lookup = self.role_lookup.lookup(actor)
        if not lookup.ok:
            logger.warning("Could not fetch role for user %s: %s", actor.id, lookup.error)
        actor_role = lookup.role_or_unknown()

        client_info = session.client.as_dict()
        payload = coerce_details(details)
        payload = {key: value for key, value in payload.items() if key not in RESERVED_DETAIL_KEYS}
        payload["timestamp"] = iso_timestamp()
        payload["client_info"] = client_info

        event = AuditLog(
            actor_id=str(actor.id),
            actor_email=actor.email,
            actor_role=actor_role,
            action_kind=kind_value(action_kind),
            resource_kind=kind_value(resource_kind),
            resource_id=str(resource_id) if resource_id is not None else None,
            description=description,
            details=payload,
            ip_address=session.ip_address,
            user_agent=session.client.user_agent,
            session_id_hash=session_id_hash(session.access_token),
            status=kind_value(status) or EventStatus.SUCCESS.value,
            severity=kind_value(severity) or Severity.LOW.value,
            created_at=utcnow()
        )

        alerting = event.severity in ALERTING_SEVERITIES
        stored = self._insert(event, triggering_error)

        if alerting:
            self._alert(event)

        return stored

    def _insert(self, event: AuditLog, triggering_error: Optional[BaseException]) -> bool:
        try:
            self.db.add(event)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            if triggering_error is not None:
                logger.error(
                    "Error inserting audit log: %s (original error: %r)", exc, triggering_error
                )
            else:
                logger.error("Error inserting audit log: %s", exc)
            return False

        # The row is committed from here on; a failed reload must not report it as lost
        try:
            self.db.refresh(event)
        except SQLAlchemyError as exc:
            logger.warning("Audit log stored but could not be reloaded: %s", exc)
        return True

    def _alert(self, event: AuditLog) -> None:
        try:
            self.alert_sink.notify(event)
        except Exception:
            logger.exception("Alert sink failed for audit event %s", event.action_kind)

    # Convenience recorders for the common call sites

    def record_auth_event(
        self,
        action: Kind,
        details: Any = None,
        session: Optional[SessionContext] = None,
        actor_override: Optional[Principal] = None
    ) -> bool:
        descriptions = {
            ActionKind.LOGIN.value: "User logged in successfully",
            ActionKind.LOGOUT.value: "User logged out",
        }
        return self.record(
            action,
            descriptions.get(kind_value(action), "Authentication event"),
            resource_kind=ResourceKind.USER,
            details=details,
            severity=Severity.LOW,
            session=session,
            actor_override=actor_override
        )

    def record_patient_access(
        self,
        patient_id: Any,
        action: Kind,
        details: Any = None,
        session: Optional[SessionContext] = None
    ) -> bool:
        """Patient data access is always at least medium severity."""
        return self.record(
            action,
            f"Patient data {kind_value(action)}",
            resource_kind=ResourceKind.PATIENT,
            resource_id=patient_id,
            details=details,
            severity=Severity.MEDIUM,
            session=session
        )

    def record_test_action(
        self,
        test_kind: Kind,
        test_id: Any,
        action: Kind,
        details: Any = None,
        session: Optional[SessionContext] = None
    ) -> bool:
        severity = Severity.HIGH if kind_value(action) == ActionKind.DELETE.value else Severity.MEDIUM
        return self.record(
            action,
            f"{kind_value(test_kind)} test {kind_value(action)}",
            resource_kind=test_kind,
            resource_id=test_id,
            details=details,
            severity=severity,
            session=session
        )

    def record_appointment_action(
        self,
        appointment_id: Any,
        action: Kind,
        details: Any = None,
        session: Optional[SessionContext] = None
    ) -> bool:
        return self.record(
            action,
            f"Appointment {kind_value(action)}",
            resource_kind=ResourceKind.APPOINTMENT,
            resource_id=appointment_id,
            details=details,
            severity=Severity.LOW,
            session=session
        )

    def record_report_access(
        self,
        report_type: str,
        action: Kind,
        details: Any = None,
        session: Optional[SessionContext] = None
    ) -> bool:
        return self.record(
            action,
            f"{report_type} report {kind_value(action)}",
            resource_kind=ResourceKind.REPORT,
            details=details,
            severity=Severity.LOW,
            session=session
        )

    def record_security_event(
        self,
        action: Kind,
        description: str,
        details: Any = None,
        session: Optional[SessionContext] = None
    ) -> bool:
        return self.record(
            action,
            description,
            resource_kind=ResourceKind.SYSTEM,
            details=details,
            status=EventStatus.FAILED,
            severity=Severity.HIGH,
            session=session
        )

    def record_profile_update(
        self,
        profile_kind: Kind,
        profile_id: Any,
        changes: Dict[str, Any],
        details: Any = None,
        session: Optional[SessionContext] = None
    ) -> bool:
        payload = {"changes": changes}
        payload.update(coerce_details(details))
        return self.record(
            ActionKind.UPDATE,
            f"{kind_value(profile_kind)} profile updated",
            resource_kind=profile_kind,
            resource_id=profile_id,
            details=payload,
            severity=Severity.MEDIUM,
            session=session
        )

    def record_page_view(
        self,
        page_name: str,
        details: Any = None,
        session: Optional[SessionContext] = None
    ) -> bool:
        return self.record(
            ActionKind.VIEW,
            f"Viewed {page_name} page",
            resource_kind=ResourceKind.SYSTEM,
            details=details,
            severity=Severity.LOW,
            session=session
        )

    def record_form_submission(
        self,
        form_name: str,
        success: bool = True,
        details: Any = None,
        session: Optional[SessionContext] = None
    ) -> bool:
        if success:
            return self.record(
                ActionKind.CREATE,
                f"{form_name} form submitted successfully",
                resource_kind=ResourceKind.SYSTEM,
                details=details,
                status=EventStatus.SUCCESS,
                severity=Severity.LOW,
                session=session
            )
        return self.record(
            ActionKind.FORM_ERROR,
            f"{form_name} form submission failed",
            resource_kind=ResourceKind.SYSTEM,
            details=details,
            status=EventStatus.FAILED,
            severity=Severity.MEDIUM,
            session=session
        )

    def record_bulk(self, events: Iterable[Dict[str, Any]]) -> List[bool]:
        """
        Record each event (keyword arguments for `record`) in order.

        A malformed entry is logged and counts as False; the rest still get recorded.
        """
        results = []
        for event in events:
            try:
                results.append(self.record(**event))
            except TypeError as exc:
                logger.warning("Skipping malformed bulk audit event %r: %s", event, exc)
                results.append(False)
        return results
