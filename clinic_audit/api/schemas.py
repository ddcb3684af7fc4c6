"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from clinic_audit.models.enums import EventStatus, Severity
from clinic_audit.services.details import coerce_details


# Recording
class AuditEventCreate(BaseModel):
    """An event reported by a call site. Kinds outside the taxonomy are accepted as strings."""
    action_kind: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    resource_kind: Optional[str] = None
    resource_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    status: EventStatus = EventStatus.SUCCESS
    severity: Severity = Severity.LOW

    @field_validator("details", mode="before")
    @classmethod
    def parse_details(cls, value):
        return coerce_details(value)

    @field_validator("resource_id", mode="before")
    @classmethod
    def stringify_resource_id(cls, value):
        return None if value is None else str(value)


class RecordResponse(BaseModel):
    recorded: bool


# Reading
class AuditLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    actor_id: str
    actor_email: Optional[str]
    actor_role: str
    action_kind: str
    resource_kind: Optional[str]
    resource_id: Optional[str]
    description: str
    details: Dict[str, Any]
    ip_address: Optional[str]
    user_agent: Optional[str]
    session_id_hash: Optional[str]
    status: str
    severity: str
    created_at: datetime

    @field_validator("details", mode="before")
    @classmethod
    def parse_details(cls, value):
        return coerce_details(value)


class QueryErrorResponse(BaseModel):
    """Lets the viewer tell a broken query apart from an empty result."""
    message: str
    details: Optional[str] = None


class AuditLogPage(BaseModel):
    items: List[AuditLogResponse] = []
    total_count: int = 0
    error: Optional[QueryErrorResponse] = None


class RoleStatisticsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_count: int
    total_actions: int
    login_count: int
    failed_actions: int


class TopUser(BaseModel):
    email: str
    action_count: int


class StatisticsResponse(BaseModel):
    window_days: int
    total_users: int
    total_actions: int
    login_count: int
    failed_actions: int
    by_role: Dict[str, RoleStatisticsResponse] = {}
    top_users: List[TopUser] = []


# Error handler fallback path
class ClientErrorReport(BaseModel):
    """An error caught by the browser's top-level error boundary."""
    message: str = Field(..., min_length=1)
    stack: Optional[str] = None
    component_stack: Optional[str] = None
    url: Optional[str] = None


class ClientErrorResponse(BaseModel):
    error_id: str
