"""
Recording path for the top-level error handler.

Unlike every other call site, this one keeps a local copy when the audit store
is unreachable, so crashes are not lost together with the database.
"""
import logging
import random
import string
import time
import traceback
from typing import Any, Dict, Optional

from clinic_audit.models.enums import ActionKind, EventStatus, ResourceKind, Severity
from clinic_audit.services.context import SessionContext
from clinic_audit.services.fallback import FallbackErrorLog
from clinic_audit.services.recorder import EventRecorder, iso_timestamp

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_error_id() -> str:
    """ERR_<epoch ms>_<9 base36 chars>."""
    suffix = "".join(random.choice(_ID_ALPHABET) for _ in range(9))
    return f"ERR_{int(time.time() * 1000)}_{suffix}"


def format_stack(error: BaseException) -> str:
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


def record_application_error(
    recorder: EventRecorder,
    error: BaseException,
    session: Optional[SessionContext] = None,
    context: Optional[Dict[str, Any]] = None,
    fallback: Optional[FallbackErrorLog] = None,
    stack: Optional[str] = None
) -> str:
    """
    Record a crash as a critical application_error event.

    Falls back to the local error log when the recorder reports failure.
    Returns the generated error id.
    """
    error_id = new_error_id()
    message = str(error) or type(error).__name__
    stack = stack if stack is not None else format_stack(error)
    context = context or {}

    recorded = recorder.record(
        ActionKind.APPLICATION_ERROR,
        f"Critical application error occurred: {message}",
        resource_kind=ResourceKind.SYSTEM,
        resource_id=error_id,
        details={
            "error_id": error_id,
            "error_message": message,
            "error_stack": stack,
            "context": context,
        },
        status=EventStatus.FAILED,
        severity=Severity.CRITICAL,
        session=session,
        triggering_error=error
    )

    if not recorded:
        logger.error("Failed to log error %s to audit system; original error: %r", error_id, error)
        (fallback or FallbackErrorLog()).append({
            "timestamp": iso_timestamp(),
            "error_id": error_id,
            "message": message,
            "stack": stack,
            "context": context,
        })

    return error_id
