"""
Alert sink boundary for high and critical events.

The recorder calls `notify(event)` once per alerting event. The default sink
writes a warning line; deployments plug in a real alerting integration here.
"""
import logging

from clinic_audit.models.audit import AuditLog

logger = logging.getLogger(__name__)


class AlertSink:
    """Receives events whose severity warrants operational attention."""

    def notify(self, event: AuditLog) -> None:
        raise NotImplementedError


class LoggingAlertSink(AlertSink):

    def notify(self, event: AuditLog) -> None:
        logger.warning(
            "[AUDIT %s] %s | user=%s action=%s resource=%s details=%s",
            (event.severity or "").upper(),
            event.description,
            event.actor_email,
            event.action_kind,
            event.resource_ref,
            event.details,
        )
