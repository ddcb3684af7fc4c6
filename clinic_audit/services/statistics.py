"""
Rollup statistics for the admin log viewer.

The fetch projects only the columns the rollups need. `summarize` is a pure
function over those rows so it can be exercised without a database.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_audit.config import settings
from clinic_audit.models.audit import AuditLog, utcnow
from clinic_audit.models.enums import UNKNOWN_ROLE, ActionKind, EventStatus
from clinic_audit.services.results import QueryError

logger = logging.getLogger(__name__)

TOP_USERS_LIMIT = 5


@dataclass
class RoleStatistics:
    user_count: int = 0
    total_actions: int = 0
    login_count: int = 0
    failed_actions: int = 0


@dataclass
class AuditStatistics:
    total_users: int = 0
    total_actions: int = 0
    login_count: int = 0
    failed_actions: int = 0
    by_role: Dict[str, RoleStatistics] = field(default_factory=dict)
    top_users: List[Tuple[str, int]] = field(default_factory=list)


@dataclass
class StatisticsResult:
    stats: Optional[AuditStatistics] = None
    error: Optional[QueryError] = None


def summarize(rows: Iterable) -> AuditStatistics:
    """
    Compute rollups in one pass.

    Each row needs actor_email, actor_role, action_kind and status attributes.
    """
    stats = AuditStatistics()
    emails = set()
    role_emails: Dict[str, set] = {}
    actions_per_user: Counter = Counter()

    for row in rows:
        role = row.actor_role or UNKNOWN_ROLE
        is_login = row.action_kind == ActionKind.LOGIN.value
        is_failed = row.status == EventStatus.FAILED.value

        stats.total_actions += 1
        stats.login_count += is_login
        stats.failed_actions += is_failed
        emails.add(row.actor_email)
        if row.actor_email:
            actions_per_user[row.actor_email] += 1

        role_stats = stats.by_role.setdefault(role, RoleStatistics())
        role_emails.setdefault(role, set()).add(row.actor_email)
        role_stats.total_actions += 1
        role_stats.login_count += is_login
        role_stats.failed_actions += is_failed

    stats.total_users = len(emails)
    for role, members in role_emails.items():
        stats.by_role[role].user_count = len(members)

    ranked = sorted(actions_per_user.items(), key=lambda item: (-item[1], item[0]))
    stats.top_users = ranked[:TOP_USERS_LIMIT]
    return stats


def collect_statistics(db: Session, window_days: Optional[int] = None) -> StatisticsResult:
    """Fetch the trailing window and summarize it."""
    if window_days is None:
        window_days = settings.statistics_window_days
    since = utcnow() - timedelta(days=window_days)

    try:
        rows = db.query(
            AuditLog.actor_email,
            AuditLog.actor_role,
            AuditLog.action_kind,
            AuditLog.status,
            AuditLog.created_at
        ).filter(
            AuditLog.created_at >= since
        ).all()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Error fetching audit statistics: %s", exc)
        return StatisticsResult(error=QueryError(message=str(exc), cause=exc))

    return StatisticsResult(stats=summarize(rows))
