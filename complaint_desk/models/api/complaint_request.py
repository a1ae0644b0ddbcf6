# complaint_desk/models/api/complaint_request.py
"""
Complaint API request models.
Used by routes for input validation. Bodies are camelCase; text limits are
enforced by the workflow so every violation reports the same error shape.
"""

from pydantic import ConfigDict, Field, StrictBool

from complaint_desk.models.domain.complaint_domain import (
    CamelModel,
    ComplaintMessage,
    Timestamp,
    utc_now,
)
from complaint_desk.services.complaints.transitions import ComplaintPatch


class AssignRequest(CamelModel):
    """Assign, reassign, or unassign (null)."""

    assignee_user_id: str | None = Field(..., description="New assignee id, or null to unassign")


class ChangeDepartmentRequest(CamelModel):
    department_id: str | None = Field(..., description="New handling department id")
    clear_assignee_if_not_in_dept: bool = Field(
        default=True, description="Unassign when the assignee does not belong to the department"
    )


class SaveLetterRequest(CamelModel):
    body: str = Field(..., description="Reply letter body")


class ReturnForRedoRequest(CamelModel):
    reason: str = Field(..., description="Why the letter is sent back")


class CloseRequest(CamelModel):
    justified: StrictBool | None = Field(None, description="Whether the complaint was justified")
    summary: str | None = Field(None, description="Principal's decision summary")
    signed_by_user_id: str | None = Field(None, description="Signing principal's user id")
    signature_image_path: str | None = Field(None, description="Stored signature image, if any")


class PatchMessage(CamelModel):
    id: str
    author_id: str
    body: str
    created_at: Timestamp | None = None


class PatchComplaintRequest(CamelModel):
    """
    Generic edit. Only the fields present in the body are applied; unknown
    fields (status, principalReview, ...) are rejected.
    """

    model_config = ConfigDict(extra="forbid")

    department_id: str | None = None
    assignee_user_id: str | None = None
    messages: list[PatchMessage] | None = None
    clear_assignee_if_not_in_dept: bool = True

    def to_patch(self) -> ComplaintPatch:
        messages = None
        if self.messages is not None:
            messages = [
                ComplaintMessage(
                    id=message.id,
                    author_id=message.author_id,
                    body=message.body,
                    created_at=message.created_at or utc_now(),
                )
                for message in self.messages
            ]
        return ComplaintPatch(
            department_id=self.department_id,
            assignee_user_id=self.assignee_user_id,
            messages=messages,
            clear_assignee_if_not_in_dept=self.clear_assignee_if_not_in_dept,
            fields_set=set(self.model_fields_set),
        )
