"""Taxonomy for audit events - the verbs, nouns, outcomes and tiers an event can carry."""
from enum import Enum


# Role recorded when the actor's role cannot be resolved
UNKNOWN_ROLE = "unknown"


class ActionKind(str, Enum):
    """
    What the actor did.

    Stored as a plain string, so call sites may record kinds outside this list.
    """
    # Authentication
    LOGIN = "login"
    LOGOUT = "logout"

    # CRUD operations
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    # Access and navigation
    VIEW = "view"
    DOWNLOAD = "download"
    PRINT = "print"

    # Scheduling
    APPOINTMENT_BOOKED = "appointment_booked"
    APPOINTMENT_CANCELLED = "appointment_cancelled"

    # Raised by the error handler and failed form submissions
    APPLICATION_ERROR = "application_error"
    FORM_ERROR = "form_error"


class ResourceKind(str, Enum):
    """The type of entity an event acted on."""
    USER = "user"
    PATIENT = "patient"
    PSYCHOLOGICAL_TEST = "psychological_test"
    NEUROPSYCHOLOGICAL_TEST = "neuropsychological_test"
    NEUROPSYCHIATRIC_TEST = "neuropsychiatric_test"
    PSYCHOTHERAPY_SESSION = "psychotherapy_session"
    APPOINTMENT = "appointment"
    REPORT = "report"
    PROFILE = "profile"
    SYSTEM = "system"
    AUTHENTICATION = "authentication"


class EventStatus(str, Enum):
    """Outcome of the recorded action."""
    SUCCESS = "success"
    FAILED = "failed"
    BLOCKED = "blocked"


class Severity(str, Enum):
    """Operational importance tier, independent of status."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Tiers that are pushed to the alert sink at record time
ALERTING_SEVERITIES = frozenset({Severity.HIGH.value, Severity.CRITICAL.value})


def kind_value(value):
    """Return the stored string for an enum member or a plain string."""
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)
