"""API routes for recording and reviewing audit events."""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from clinic_audit.api.dependencies import get_session_context
from clinic_audit.api.schemas import (
    AuditEventCreate,
    AuditLogPage,
    AuditLogResponse,
    ClientErrorReport,
    ClientErrorResponse,
    QueryErrorResponse,
    RecordResponse,
    RoleStatisticsResponse,
    StatisticsResponse,
    TopUser
)
from clinic_audit.config import settings
from clinic_audit.database import get_db
from clinic_audit.services.context import SessionContext
from clinic_audit.services.errors import record_application_error
from clinic_audit.services.query import AuditLogFilters, AuditQueryService, export_filename
from clinic_audit.services.recorder import EventRecorder
from clinic_audit.services.results import QueryError

router = APIRouter()


class ClientReportedError(Exception):
    """An error raised in the browser and reported to the server."""


def _error_response(error: QueryError) -> QueryErrorResponse:
    return QueryErrorResponse(
        message=error.message,
        details=repr(error.cause) if error.cause is not None else None
    )


def get_filters(
    actor_id_or_email: Optional[str] = None,
    action_kind: Optional[str] = None,
    resource_kind: Optional[str] = None,
    actor_role: Optional[str] = None,
    severity: Optional[str] = None,
    status: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None
) -> AuditLogFilters:
    """Filters from query parameters. Blank values are kept and ignored downstream."""
    return AuditLogFilters(
        actor_id_or_email=actor_id_or_email,
        action_kind=action_kind,
        resource_kind=resource_kind,
        actor_role=actor_role,
        severity=severity,
        status=status,
        date_from=date_from,
        date_to=date_to
    )


# Recording endpoints
@router.post("/audit-logs", response_model=RecordResponse, status_code=status.HTTP_201_CREATED)
def record_event(
    event: AuditEventCreate,
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_session_context)
):
    """
    Record an event for the calling session.

    Always answers 201: a False `recorded` tells the call site the entry was
    dropped, it must not block the action being audited.
    """
    recorder = EventRecorder(db)
    recorded = recorder.record(
        event.action_kind,
        event.description,
        resource_kind=event.resource_kind,
        resource_id=event.resource_id,
        details=event.details,
        status=event.status,
        severity=event.severity,
        session=session
    )
    return RecordResponse(recorded=recorded)


@router.post("/client-errors", response_model=ClientErrorResponse, status_code=status.HTTP_201_CREATED)
def report_client_error(
    report: ClientErrorReport,
    db: Session = Depends(get_db),
    session: SessionContext = Depends(get_session_context)
):
    """Record an error caught by the UI's error boundary, falling back to the local error log."""
    error_id = record_application_error(
        EventRecorder(db),
        ClientReportedError(report.message),
        session=session,
        context={
            "source": "client",
            "url": report.url,
            "component_stack": report.component_stack,
        },
        stack=report.stack or ""
    )
    return ClientErrorResponse(error_id=error_id)


# Admin viewer endpoints
@router.get("/audit-logs", response_model=AuditLogPage)
def list_audit_logs(
    limit: int = Query(settings.default_page_size, ge=0, le=settings.max_page_size),
    offset: int = Query(0, ge=0),
    sort_by: str = "created_at",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    filters: AuditLogFilters = Depends(get_filters),
    db: Session = Depends(get_db)
):
    """
    One page of audit events and the exact filtered count.

    limit=0 returns every matching event. A failed query answers 200 with an
    empty page and `error` set, so the viewer can offer a retry.
    """
    result = AuditQueryService(db).query(
        limit=limit,
        offset=offset,
        filters=filters,
        sort_by=sort_by,
        sort_order=sort_order
    )
    return AuditLogPage(
        items=[AuditLogResponse.model_validate(item) for item in result.items],
        total_count=result.total_count,
        error=_error_response(result.error) if result.error else None
    )


@router.get("/audit-logs/statistics", response_model=StatisticsResponse, responses={
    503: {"model": QueryErrorResponse, "description": "Audit store unavailable"}
})
def get_statistics(
    window_days: int = Query(settings.statistics_window_days, ge=1, le=365),
    db: Session = Depends(get_db)
):
    """Rollups over the trailing `window_days`."""
    result = AuditQueryService(db).statistics(window_days)
    if result.error is not None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=_error_response(result.error).model_dump()
        )

    stats = result.stats
    return StatisticsResponse(
        window_days=window_days,
        total_users=stats.total_users,
        total_actions=stats.total_actions,
        login_count=stats.login_count,
        failed_actions=stats.failed_actions,
        by_role={
            role: RoleStatisticsResponse.model_validate(role_stats)
            for role, role_stats in stats.by_role.items()
        },
        top_users=[TopUser(email=email, action_count=count) for email, count in stats.top_users]
    )


@router.get("/audit-logs/export", responses={
    200: {"content": {"text/csv": {}}, "description": "CSV of matching events"},
    503: {"model": QueryErrorResponse, "description": "Audit store unavailable"}
})
def export_audit_logs(
    filters: AuditLogFilters = Depends(get_filters),
    db: Session = Depends(get_db)
):
    """Download matching events (up to the export cap) as CSV."""
    result = AuditQueryService(db).export_csv(filters)
    if result.error is not None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=_error_response(result.error).model_dump()
        )

    return Response(
        content=result.content,
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="{export_filename(date.today())}"',
            "X-Row-Count": str(result.row_count),
        }
    )
