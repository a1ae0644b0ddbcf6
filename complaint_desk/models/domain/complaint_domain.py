# models/domain/complaint_domain.py
"""
Complaint aggregate domain model.
Field names are snake_case in Python and camelCase on the wire and in the
sheet's JSON cells, matching what the web front end already writes.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from complaint_desk.utils.text import normalize_id


def _ensure_utc(value: datetime) -> datetime:
    # Legacy rows hold naive timestamps; they were always written in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


Timestamp = Annotated[datetime, AfterValidator(_ensure_utc)]


def utc_now() -> datetime:
    """Current time truncated to milliseconds, the precision the sheet keeps."""
    now = datetime.now(UTC)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def to_iso(value: datetime) -> str:
    """ISO-8601 with millisecond precision and a `Z` suffix."""
    return _ensure_utc(value).strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ComplaintStatus(str, Enum):
    """
    Complaint lifecycle
    - OPEN: created, unassigned
    - ASSIGNED: assigned to an employee/manager
    - IN_PROGRESS: assignee is composing the formal reply letter
    - AWAITING_PRINCIPAL_REVIEW: assignee submitted; waiting for principal review
    - CLOSED: principal approved & closed (terminal)
    """

    OPEN = "OPEN"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    AWAITING_PRINCIPAL_REVIEW = "AWAITING_PRINCIPAL_REVIEW"
    CLOSED = "CLOSED"


class ComplaintMessage(CamelModel):
    """Entry in the append-only communication trail."""

    id: str
    author_id: str
    body: str
    created_at: Timestamp


class StaffReporter(CamelModel):
    type: Literal["STAFF"] = "STAFF"
    full_name: str = ""
    email: str = ""
    phone: str = ""
    job_title: str = ""
    # The reporter's own department, not necessarily the handling one
    department_id: str = ""


class ParentStudentReporter(CamelModel):
    type: Literal["PARENT_STUDENT"] = "PARENT_STUDENT"
    full_name: str = ""
    email: str = ""
    phone: str = ""
    grade: str = ""
    class_number: str = ""


Reporter = Annotated[StaffReporter | ParentStudentReporter, Field(discriminator="type")]


class AssigneeLetter(CamelModel):
    """The formal reply the assignee drafts and submits."""

    body: str
    author_user_id: str
    updated_at: Timestamp
    submitted_at: Timestamp | None = None

    def has_body(self) -> bool:
        return bool(self.body.strip())


class ReturnInfo(CamelModel):
    """Latest "sent back for redo" state; `count` spans the complaint's lifetime."""

    count: int
    reason: str
    returned_at: Timestamp
    returned_by_user_id: str


class ReviewCycle(CamelModel):
    """One submit -> (return | approve | withdrawn by reassignment) round."""

    submitted_at: Timestamp
    submitted_by_user_id: str
    returned_at: Timestamp | None = None
    return_reason: str | None = None
    returned_by_user_id: str | None = None
    approved_at: Timestamp | None = None
    withdrawn_at: Timestamp | None = None
    principal_user_id: str | None = None
    justified: bool | None = None
    summary: str | None = None

    def is_open(self) -> bool:
        return self.returned_at is None and self.approved_at is None and self.withdrawn_at is None


class PrincipalReview(CamelModel):
    justified: bool
    summary: str
    signed_by_user_id: str = Field(
        validation_alias=AliasChoices("signedByUserId", "principalUserId", "signed_by_user_id"),
    )
    signed_at: Timestamp = Field(
        validation_alias=AliasChoices("signedAt", "reviewedAt", "signed_at"),
    )
    signature_image_path: str | None = None


class NotificationEmail(CamelModel):
    """Whether/when the closure notice reached the reporter."""

    sent: bool
    sent_at: Timestamp | None = None
    to: str | None = None


class Complaint(CamelModel):
    """Core complaint entity (aggregate root)."""

    id: str
    created_at: Timestamp
    updated_at: Timestamp

    subject: str = ""
    title: str = ""
    body: str = ""
    status: ComplaintStatus = ComplaintStatus.OPEN

    # Department responsible for handling
    department_id: str = ""
    assignee_user_id: str | None = None
    created_by_id: str | None = None

    reporter: Reporter = Field(default_factory=ParentStudentReporter)

    messages: list[ComplaintMessage] = Field(default_factory=list)
    assignee_letter: AssigneeLetter | None = None
    return_info: ReturnInfo | None = None
    review_cycles: list[ReviewCycle] = Field(default_factory=list)
    principal_review: PrincipalReview | None = None
    notification_email: NotificationEmail | None = None

    def is_closed(self) -> bool:
        return self.status == ComplaintStatus.CLOSED

    def is_awaiting_principal(self) -> bool:
        return self.status == ComplaintStatus.AWAITING_PRINCIPAL_REVIEW

    def has_employee_letter(self) -> bool:
        """A non-empty letter written by the current assignee."""
        letter = self.assignee_letter
        return (
            letter is not None
            and letter.has_body()
            and bool(self.assignee_user_id)
            and normalize_id(letter.author_user_id) == normalize_id(self.assignee_user_id)
        )

    def open_review_cycle_index(self) -> int | None:
        """Index of the most recent unresolved review cycle, if any."""
        for index in range(len(self.review_cycles) - 1, -1, -1):
            if self.review_cycles[index].is_open():
                return index
        return None

    def lifetime_return_count(self) -> int:
        """
        Number of returns over the whole lifetime.

        `return_info` is cleared when a fresh letter is saved, so the review
        log is the durable record; the stored count covers rows written
        before the log existed.
        """
        logged = sum(1 for cycle in self.review_cycles if cycle.returned_at is not None)
        stored = self.return_info.count if self.return_info else 0
        return max(logged, stored)

    def to_api(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
