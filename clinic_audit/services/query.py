"""
Read path for the audit log: filtered, sorted, paginated listing and CSV export.

Failures never raise to the admin viewer. They come back as a QueryError next to
an empty page, so "nothing matched" and "the query broke" stay distinguishable.
"""
import logging
from dataclasses import dataclass, field, fields
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from clinic_audit.config import settings
from clinic_audit.models.audit import AuditLog
from clinic_audit.services.results import QueryError
from clinic_audit.services.statistics import StatisticsResult, collect_statistics

logger = logging.getLogger(__name__)

SORTABLE_COLUMNS = {
    "created_at": AuditLog.created_at,
    "actor_email": AuditLog.actor_email,
    "actor_role": AuditLog.actor_role,
    "action_kind": AuditLog.action_kind,
    "resource_kind": AuditLog.resource_kind,
    "status": AuditLog.status,
    "severity": AuditLog.severity,
}

EXPORT_HEADERS = [
    "Timestamp", "User Email", "User Role", "Action Type", "Resource Type",
    "Resource ID", "Description", "Status", "IP Address"
]


@dataclass
class AuditLogFilters:
    """
    Admin viewer filters. Every field is optional; blank strings count as absent.

    actor_id_or_email routes on "@": emails match as a case-insensitive substring,
    anything else as an exact actor id. date_from/date_to are inclusive ISO days.
    """
    actor_id_or_email: Optional[str] = None
    action_kind: Optional[str] = None
    resource_kind: Optional[str] = None
    actor_role: Optional[str] = None
    severity: Optional[str] = None
    status: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AuditLogFilters":
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in names})

    def active(self) -> Dict[str, str]:
        """Filters that carry a value, stripped."""
        values = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, date):
                value = value.isoformat()
            value = str(value).strip()
            if value:
                values[f.name] = value
        return values


@dataclass
class QueryResult:
    items: List[AuditLog] = field(default_factory=list)
    total_count: int = 0
    error: Optional[QueryError] = None


@dataclass
class ExportResult:
    content: str = ""
    row_count: int = 0
    error: Optional[QueryError] = None


LIKE_ESCAPE = "\\"


def escape_like(value: str) -> str:
    """Make LIKE wildcards in user input match literally."""
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def _day_start(value: str) -> datetime:
    return datetime.combine(date.fromisoformat(value[:10]), time.min)


def _day_end(value: str) -> datetime:
    return datetime.combine(date.fromisoformat(value[:10]), time.max)


def apply_filters(query: Query, filters: AuditLogFilters) -> Query:
    """Add one predicate per non-blank filter."""
    active = filters.active()

    actor = active.get("actor_id_or_email")
    if actor:
        if "@" in actor:
            query = query.filter(
                AuditLog.actor_email.ilike(f"%{escape_like(actor)}%", escape=LIKE_ESCAPE)
            )
        else:
            query = query.filter(AuditLog.actor_id == actor)

    for name, column in (
        ("action_kind", AuditLog.action_kind),
        ("resource_kind", AuditLog.resource_kind),
        ("actor_role", AuditLog.actor_role),
        ("severity", AuditLog.severity),
        ("status", AuditLog.status),
    ):
        if name in active:
            query = query.filter(column == active[name])

    if "date_from" in active:
        query = query.filter(AuditLog.created_at >= _day_start(active["date_from"]))
    if "date_to" in active:
        query = query.filter(AuditLog.created_at <= _day_end(active["date_to"]))

    return query


def format_export_row(log: AuditLog) -> str:
    """One CSV line. Only the description is quoted, with inner quotes doubled."""
    description = (log.description or "").replace('"', '""')
    return ",".join([
        log.created_at.isoformat(timespec="milliseconds") + "Z" if log.created_at else "",
        log.actor_email or "",
        log.actor_role or "",
        log.action_kind or "",
        log.resource_kind or "",
        log.resource_id or "",
        f'"{description}"',
        log.status or "",
        log.ip_address or "",
    ])


def render_export(logs: List[AuditLog]) -> str:
    return "\n".join([",".join(EXPORT_HEADERS)] + [format_export_row(log) for log in logs])


def export_filename(today: Optional[date] = None) -> str:
    return f"audit_logs_{(today or date.today()).isoformat()}.csv"


class AuditQueryService:
    """Admin-facing queries over the audit log."""

    def __init__(self, db: Session):
        self.db = db

    def query(
        self,
        limit: int = 50,
        offset: int = 0,
        filters: Optional[AuditLogFilters] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc"
    ) -> QueryResult:
        """
        Return one page of matching events plus the exact filtered count.

        limit == 0 returns every matching event. Ordering is by `sort_by`, then
        by insertion order in the same direction, so pages never overlap.
        """
        filters = filters or AuditLogFilters()
        logger.debug(
            "Querying audit logs: limit=%s offset=%s filters=%s sort=%s %s",
            limit, offset, filters.active(), sort_by, sort_order
        )
        try:
            query = apply_filters(self.db.query(AuditLog), filters)
            total_count = query.count()

            column = SORTABLE_COLUMNS.get(sort_by, AuditLog.created_at)
            if sort_order == "asc":
                query = query.order_by(column.asc(), AuditLog.id.asc())
            else:
                query = query.order_by(column.desc(), AuditLog.id.desc())

            if limit > 0:
                query = query.offset(max(offset, 0)).limit(limit)

            items = query.all()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Error fetching audit logs: %s", exc)
            return QueryResult(error=QueryError(message=str(exc), cause=exc))
        except ValueError as exc:
            # Malformed date filter
            logger.warning("Rejected audit log filters %s: %s", filters.active(), exc)
            return QueryResult(error=QueryError(message=f"Invalid filter: {exc}", cause=exc))

        return QueryResult(items=items, total_count=total_count)

    def export_csv(self, filters: Optional[AuditLogFilters] = None) -> ExportResult:
        """Render up to the export cap of matching events as CSV, newest first."""
        result = self.query(limit=settings.export_row_cap, offset=0, filters=filters)
        if result.error is not None:
            return ExportResult(error=result.error)
        if result.total_count > len(result.items):
            logger.warning(
                "Audit export truncated to %d of %d rows", len(result.items), result.total_count
            )
        return ExportResult(content=render_export(result.items), row_count=len(result.items))

    def statistics(self, window_days: Optional[int] = None) -> StatisticsResult:
        """Rollups over the trailing window; see clinic_audit.services.statistics."""
        return collect_statistics(self.db, window_days)
