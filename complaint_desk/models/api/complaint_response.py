# complaint_desk/models/api/complaint_response.py
"""
Complaint API response models.
Used by routes for output formatting; serialized camelCase.
"""

from typing import Any

from pydantic import Field

from complaint_desk.models.domain.complaint_domain import CamelModel
from complaint_desk.models.domain.directory_domain import Role


class ComplaintMutationResponse(CamelModel):
    ok: bool = Field(default=True, description="The transition was committed")
    complaint: dict[str, Any] = Field(..., description="Committed complaint record")


class ComplaintResponse(CamelModel):
    complaint: dict[str, Any] = Field(..., description="Complaint record")


class ComplaintListResponse(CamelModel):
    items: list[dict[str, Any]] = Field(..., description="Complaints, newest first")
    next_cursor: str | None = Field(None, description="Pass as `cursor` for the next page")


class ComplaintStatsResponse(CamelModel):
    total: int
    open: int
    closed: int
    overdue: int = Field(..., description="Open complaints older than the SLA")
    total_returns: int
    justified: int
    unjustified: int
    by_status: dict[str, int]
    by_department: dict[str, int]
    by_assignee: dict[str, int]
    sla_days: int


class ClosureLetterMetaResponse(CamelModel):
    complaint_id: str
    filename: str
    mime_type: str
    size: int = Field(..., description="Size in bytes")


class ActorResponse(CamelModel):
    user_id: str
    role: Role
    department_id: str | None = None
    email: str | None = None
    name: str | None = None


class DirectoryUserResponse(CamelModel):
    id: str
    name: str
    role: Role
    department_id: str
    email: str | None = None


class DepartmentResponse(CamelModel):
    id: str
    name: str
    manager_user_id: str | None = None
    members: list[str] = Field(default_factory=list)
