"""
Tests for the event recorder (write path).

These tests prove:
- A resolvable actor produces exactly one enriched row
- Missing actors, role lookup failures and store failures never raise
- High and critical events reach the alert sink whether or not the insert worked
"""
import pytest
from sqlalchemy.exc import OperationalError

from clinic_audit.models.audit import AuditLog
from clinic_audit.models.enums import ActionKind, EventStatus, ResourceKind, Severity, UNKNOWN_ROLE
from clinic_audit.services.alerts import AlertSink
from clinic_audit.services.context import Principal, SessionContext, session_id_hash
from clinic_audit.services.recorder import EventRecorder
from clinic_audit.services.roles import RoleLookupResult


class CollectingSink(AlertSink):
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)


class FailingRoleLookup:
    def lookup(self, principal):
        return RoleLookupResult(error=RuntimeError("user_roles unavailable"))


def _fail_commit(*args, **kwargs):
    raise OperationalError("INSERT INTO audit_logs", {}, Exception("database is locked"))


class TestRecordSuccess:
    """Recording with a resolvable actor."""

    def test_record_returns_true_and_writes_one_row(self, db_session, doctor_session):
        recorder = EventRecorder(db_session)

        recorded = recorder.record(
            ActionKind.PRINT,
            "Printed psychological test report",
            resource_kind=ResourceKind.REPORT,
            resource_id=42,
            details={"file_name": "report_42.pdf"},
            session=doctor_session
        )

        assert recorded is True
        assert db_session.query(AuditLog).count() == 1

        log = db_session.query(AuditLog).first()
        assert log.id is not None
        assert log.created_at is not None
        assert log.actor_id == "user-doc-1"
        assert log.actor_email == "doc@example.com"
        assert log.action_kind == "print"
        assert log.resource_kind == "report"
        assert log.resource_id == "42"
        assert log.status == "success"
        assert log.severity == "low"

    def test_details_are_enriched(self, db_session, doctor_session):
        EventRecorder(db_session).record(
            "download", "Downloaded PDF", details={"file_name": "a.pdf"}, session=doctor_session
        )

        details = db_session.query(AuditLog).first().details
        assert details["file_name"] == "a.pdf"
        assert details["timestamp"].endswith("Z")
        assert details["client_info"] == {
            "user_agent": "Mozilla/5.0 (X11; Linux x86_64)",
            "platform": "Linux",
            "language": "en-US",
            "screen_resolution": "1920x1080",
            "timezone": "Asia/Manila",
        }

    def test_recorder_owns_timestamp_and_client_info(self, db_session, doctor_session):
        """Caller keys win except the two keys the recorder injects."""
        EventRecorder(db_session).record(
            "update",
            "Updated profile",
            details={"timestamp": "forged", "client_info": "forged", "field": "phone"},
            session=doctor_session
        )

        details = db_session.query(AuditLog).first().details
        assert details["timestamp"] != "forged"
        assert isinstance(details["client_info"], dict)
        assert details["field"] == "phone"

    def test_serialized_details_are_parsed(self, db_session, doctor_session):
        EventRecorder(db_session).record(
            "view", "Viewed test", details='{"test_type": "16PF"}', session=doctor_session
        )

        details = db_session.query(AuditLog).first().details
        assert details["test_type"] == "16PF"

    def test_malformed_details_become_empty(self, db_session, doctor_session):
        recorded = EventRecorder(db_session).record(
            "view", "Viewed test", details="{not json", session=doctor_session
        )

        assert recorded is True
        details = db_session.query(AuditLog).first().details
        assert set(details) == {"timestamp", "client_info"}

    def test_session_context_fields(self, db_session, doctor_session):
        EventRecorder(db_session).record("login", "Logged in", session=doctor_session)

        log = db_session.query(AuditLog).first()
        assert log.ip_address == "10.0.0.7"
        assert log.user_agent == "Mozilla/5.0 (X11; Linux x86_64)"
        assert log.session_id_hash == session_id_hash(doctor_session.access_token)

    def test_missing_token_and_client_hints_are_omitted(self, db_session, doctor):
        EventRecorder(db_session).record("login", "Logged in", session=SessionContext(principal=doctor))

        log = db_session.query(AuditLog).first()
        assert log.session_id_hash is None
        assert log.ip_address is None
        assert log.details["client_info"] == {}

    def test_actor_override_without_session(self, db_session):
        """System-originated events can be credited without a live session."""
        system = Principal(id="system", email="system@clinic.local", role="system")

        recorded = EventRecorder(db_session).record(
            "delete", "Purged expired drafts", actor_override=system
        )

        assert recorded is True
        assert db_session.query(AuditLog).first().actor_id == "system"

    def test_actor_override_wins_over_session(self, db_session, doctor_session):
        other = Principal(id="user-other", email="other@example.com")

        EventRecorder(db_session).record(
            "view", "Viewed", session=doctor_session, actor_override=other
        )

        assert db_session.query(AuditLog).first().actor_id == "user-other"


class TestRecordNoActor:
    """Recording without an actor is a silent no-op."""

    def test_no_session_no_override(self, db_session):
        recorded = EventRecorder(db_session).record("view", "Viewed dashboard")

        assert recorded is False
        assert db_session.query(AuditLog).count() == 0

    def test_session_without_principal(self, db_session):
        recorded = EventRecorder(db_session).record(
            "view", "Viewed dashboard", session=SessionContext(access_token="abc")
        )

        assert recorded is False
        assert db_session.query(AuditLog).count() == 0


class TestRoleResolution:
    """Role comes from user_roles, then the identity claim, then 'unknown'."""

    def test_role_table_wins(self, db_session, doctor_session, psychometrician_role):
        EventRecorder(db_session).record("view", "Viewed", session=doctor_session)

        assert db_session.query(AuditLog).first().actor_role == "psychometrician"

    def test_falls_back_to_principal_claim(self, db_session, doctor_session):
        EventRecorder(db_session).record("view", "Viewed", session=doctor_session)

        assert db_session.query(AuditLog).first().actor_role == "psychologist"

    def test_unknown_when_nothing_resolves(self, db_session):
        anonymous_role = SessionContext(principal=Principal(id="u9", email="u9@example.com"))

        EventRecorder(db_session).record("view", "Viewed", session=anonymous_role)

        assert db_session.query(AuditLog).first().actor_role == UNKNOWN_ROLE

    def test_lookup_failure_does_not_fail_record(self, db_session, doctor_session):
        recorder = EventRecorder(db_session, role_lookup=FailingRoleLookup())

        recorded = recorder.record("view", "Viewed", session=doctor_session)

        assert recorded is True
        assert db_session.query(AuditLog).first().actor_role == UNKNOWN_ROLE


class TestStoreFailure:
    """Store errors are converted to False, never raised."""

    def test_insert_failure_returns_false(self, db_session, doctor_session, monkeypatch):
        monkeypatch.setattr(db_session, "commit", _fail_commit)

        recorded = EventRecorder(db_session).record("view", "Viewed", session=doctor_session)

        assert recorded is False

    def test_insert_failure_logs_triggering_error(self, db_session, doctor_session, monkeypatch, caplog):
        monkeypatch.setattr(db_session, "commit", _fail_commit)

        EventRecorder(db_session).record(
            "application_error",
            "Crash",
            session=doctor_session,
            triggering_error=ValueError("render failed")
        )

        assert "render failed" in caplog.text
        assert "database is locked" in caplog.text

    def test_unexpected_errors_are_swallowed(self, db_session, doctor_session):
        class ExplodingLookup:
            def lookup(self, principal):
                raise RuntimeError("bug in lookup")

        recorder = EventRecorder(db_session, role_lookup=ExplodingLookup())

        assert recorder.record("view", "Viewed", session=doctor_session) is False

    def test_reload_failure_after_commit_still_counts(self, db_session, doctor_session, monkeypatch):
        def fail_refresh(*args, **kwargs):
            raise OperationalError("SELECT audit_logs", {}, Exception("connection reset"))

        monkeypatch.setattr(db_session, "refresh", fail_refresh)
        sink = CollectingSink()

        recorded = EventRecorder(db_session, alert_sink=sink).record(
            "delete", "Deleted test", resource_kind="psychological_test", resource_id="t1",
            severity=Severity.HIGH, session=doctor_session
        )

        assert recorded is True
        assert db_session.query(AuditLog).count() == 1
        assert len(sink.events) == 1


class TestSeverityAlerts:
    """High and critical events go to the alert sink."""

    @pytest.mark.parametrize("severity", [Severity.HIGH, Severity.CRITICAL])
    def test_alerting_severities_notify(self, db_session, doctor_session, severity):
        sink = CollectingSink()

        EventRecorder(db_session, alert_sink=sink).record(
            "delete", "Deleted test", resource_kind="psychological_test", resource_id="t1",
            severity=severity, session=doctor_session
        )

        assert len(sink.events) == 1
        assert sink.events[0].resource_ref == "psychological_test:t1"

    @pytest.mark.parametrize("severity", [Severity.LOW, Severity.MEDIUM])
    def test_quiet_severities_do_not_notify(self, db_session, doctor_session, severity):
        sink = CollectingSink()

        EventRecorder(db_session, alert_sink=sink).record(
            "view", "Viewed", severity=severity, session=doctor_session
        )

        assert sink.events == []

    def test_alert_sent_even_when_insert_fails(self, db_session, doctor_session, monkeypatch):
        sink = CollectingSink()
        monkeypatch.setattr(db_session, "commit", _fail_commit)

        recorded = EventRecorder(db_session, alert_sink=sink).record(
            "delete", "Deleted", severity=Severity.CRITICAL, session=doctor_session
        )

        assert recorded is False
        assert len(sink.events) == 1

    def test_default_sink_logs_warning(self, db_session, doctor_session, caplog):
        EventRecorder(db_session).record(
            "delete", "Deleted patient", resource_kind="patient", resource_id="p1",
            severity=Severity.HIGH, session=doctor_session
        )

        assert "[AUDIT HIGH] Deleted patient" in caplog.text
        assert "doc@example.com" in caplog.text
        assert "patient:p1" in caplog.text


class TestConvenienceRecorders:
    """Shortcut recorders fill in taxonomy and severity."""

    def test_auth_event(self, db_session, doctor_session):
        EventRecorder(db_session).record_auth_event(ActionKind.LOGIN, session=doctor_session)

        log = db_session.query(AuditLog).first()
        assert log.description == "User logged in successfully"
        assert log.resource_kind == "user"
        assert log.severity == "low"

    def test_patient_access_is_medium(self, db_session, doctor_session):
        EventRecorder(db_session).record_patient_access("p7", ActionKind.VIEW, session=doctor_session)

        log = db_session.query(AuditLog).first()
        assert log.description == "Patient data view"
        assert log.resource_id == "p7"
        assert log.severity == "medium"

    def test_test_deletion_is_high(self, db_session, doctor_session):
        recorder = EventRecorder(db_session)
        recorder.record_test_action(ResourceKind.NEUROPSYCHOLOGICAL_TEST, "t2", ActionKind.DELETE,
                                    session=doctor_session)
        recorder.record_test_action(ResourceKind.NEUROPSYCHOLOGICAL_TEST, "t3", ActionKind.UPDATE,
                                    session=doctor_session)

        severities = {log.resource_id: log.severity for log in db_session.query(AuditLog).all()}
        assert severities == {"t2": "high", "t3": "medium"}

    def test_security_event_is_failed_and_high(self, db_session, doctor_session):
        EventRecorder(db_session).record_security_event(
            "login", "Repeated failed login", session=doctor_session
        )

        log = db_session.query(AuditLog).first()
        assert log.status == EventStatus.FAILED.value
        assert log.severity == Severity.HIGH.value
        assert log.resource_kind == "system"

    def test_profile_update_carries_changes(self, db_session, doctor_session):
        EventRecorder(db_session).record_profile_update(
            ResourceKind.PROFILE, "u1", {"phone": ["111", "222"]}, session=doctor_session
        )

        log = db_session.query(AuditLog).first()
        assert log.action_kind == "update"
        assert log.details["changes"] == {"phone": ["111", "222"]}

    def test_failed_form_submission(self, db_session, doctor_session):
        EventRecorder(db_session).record_form_submission("Intake", success=False, session=doctor_session)

        log = db_session.query(AuditLog).first()
        assert log.action_kind == "form_error"
        assert log.status == "failed"
        assert log.description == "Intake form submission failed"

    def test_bulk_records_in_order(self, db_session, doctor_session):
        results = EventRecorder(db_session).record_bulk([
            {"action_kind": "view", "description": "first", "session": doctor_session},
            {"action_kind": "view", "description": "no actor"},
            {"action_kind": "print", "description": "second", "session": doctor_session},
        ])

        assert results == [True, False, True]
        assert [log.description for log in db_session.query(AuditLog).order_by(AuditLog.id)] == [
            "first", "second"
        ]

    def test_bulk_skips_malformed_entries(self, db_session, doctor_session):
        results = EventRecorder(db_session).record_bulk([
            {"action_kind": "view", "description": "first", "session": doctor_session},
            {"actionType": "view", "description": "x"},
            {"action_kind": "view", "session": doctor_session},
            {"action_kind": "print", "description": "last", "session": doctor_session},
        ])

        assert results == [True, False, False, True]
        assert [log.description for log in db_session.query(AuditLog).order_by(AuditLog.id)] == [
            "first", "last"
        ]


class TestAuditImmutability:
    """Audit events are append-only."""

    def test_audit_log_has_no_update_methods(self):
        assert not hasattr(AuditLog, "update")
        assert not hasattr(AuditLog, "delete")

    def test_events_accumulate(self, db_session, doctor_session):
        recorder = EventRecorder(db_session)
        recorder.record("login", "Logged in", session=doctor_session)
        recorder.record("view", "Viewed", session=doctor_session)
        recorder.record("logout", "Logged out", session=doctor_session)

        assert [log.action_kind for log in db_session.query(AuditLog).order_by(AuditLog.id)] == [
            "login", "view", "logout"
        ]
