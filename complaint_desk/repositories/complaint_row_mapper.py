"""
Complaint <-> sheet row codec.

database columns (sheet order):
A:id B:createdAt C:updatedAt D:subject E:title F:body G:status H:departmentId
I:assigneeUserId J:createdById K:reporterType L:reporterFullName M:reporterEmail
N:reporterPhone O:reporterJobTitle P:reporterDepartmentId Q:reporterGrade
R:reporterClassNumber S:messagesJSON T:assigneeLetterJSON U:returnInfoJSON
V:reviewCyclesJSON W:principalReviewJSON X:notificationEmailJSON
"""

import json
from datetime import datetime
from typing import Any

from pydantic import TypeAdapter, ValidationError

from complaint_desk.infrastructure.observability.logging import get_logger
from complaint_desk.models.domain.complaint_domain import (
    AssigneeLetter,
    Complaint,
    ComplaintMessage,
    ComplaintStatus,
    NotificationEmail,
    ParentStudentReporter,
    PrincipalReview,
    ReturnInfo,
    ReviewCycle,
    StaffReporter,
    Timestamp,
    to_iso,
)
from complaint_desk.utils.text import normalize_id

logger = get_logger(__name__)

COMPLAINT_COLUMNS = (
    "id",
    "createdAt",
    "updatedAt",
    "subject",
    "title",
    "body",
    "status",
    "departmentId",
    "assigneeUserId",
    "createdById",
    "reporterType",
    "reporterFullName",
    "reporterEmail",
    "reporterPhone",
    "reporterJobTitle",
    "reporterDepartmentId",
    "reporterGrade",
    "reporterClassNumber",
    "messagesJSON",
    "assigneeLetterJSON",
    "returnInfoJSON",
    "reviewCyclesJSON",
    "principalReviewJSON",
    "notificationEmailJSON",
)
COLUMN_COUNT = len(COMPLAINT_COLUMNS)
LAST_COLUMN = "X"

_timestamp = TypeAdapter(Timestamp)
_message = TypeAdapter(ComplaintMessage)
_cycles = TypeAdapter(list[ReviewCycle])
_letter = TypeAdapter(AssigneeLetter)
_return_info = TypeAdapter(ReturnInfo)
_principal_review = TypeAdapter(PrincipalReview)
_notification_email = TypeAdapter(NotificationEmail)


def pad_row(row: list[Any]) -> list[str]:
    """Sheets omits empty trailing cells; pad so indices never shift."""
    cells = ["" if cell is None else str(cell) for cell in (row or [])]
    cells.extend([""] * (COLUMN_COUNT - len(cells)))
    return cells[:COLUMN_COUNT]


def _parse_json(cell: str) -> Any:
    if not cell or cell.strip() == "null":
        return None
    try:
        return json.loads(cell)
    except ValueError:
        return None


def _parse_model(cell: str, adapter, fallback, column: str, complaint_id: str):
    payload = _parse_json(cell)
    if payload is None:
        return fallback
    try:
        return adapter.validate_python(payload)
    except ValidationError as e:
        logger.warning(
            "Ignoring malformed JSON cell",
            complaint_id=complaint_id,
            column=column,
            error_count=e.error_count(),
        )
        return fallback


def _parse_messages(cell: str, complaint_id: str) -> list[ComplaintMessage]:
    # One hand-edited entry must not cost the rest of the trail
    payload = _parse_json(cell)
    if not isinstance(payload, list):
        return []
    messages = []
    for item in payload:
        try:
            messages.append(_message.validate_python(item))
        except ValidationError:
            logger.warning("Skipping malformed message", complaint_id=complaint_id)
    return messages


def _parse_timestamp(cell: str) -> datetime | None:
    if not cell.strip():
        return None
    try:
        return _timestamp.validate_python(cell.strip())
    except ValidationError:
        return None


def _parse_status(cell: str, assignee_user_id: str | None) -> ComplaintStatus:
    try:
        return ComplaintStatus(cell.strip().upper())
    except ValueError:
        return ComplaintStatus.ASSIGNED if assignee_user_id else ComplaintStatus.OPEN


def _letter_from_messages(
    messages: list[ComplaintMessage], assignee_user_id: str, submitted: bool
) -> AssigneeLetter | None:
    """Latest message authored by the assignee, read back as their letter."""
    wanted = normalize_id(assignee_user_id)
    authored = [m for m in messages if normalize_id(m.author_id) == wanted]
    if not authored:
        return None
    latest = max(authored, key=lambda m: m.created_at)
    return AssigneeLetter(
        body=latest.body or "",
        author_user_id=latest.author_id,
        updated_at=latest.created_at,
        submitted_at=latest.created_at if submitted else None,
    )


def row_version(row: list[Any]) -> str:
    """Raw updatedAt cell (createdAt when blank), used as the write token."""
    cells = pad_row(row)
    return cells[2].strip() or cells[1].strip()


def row_to_complaint(row: list[Any]) -> Complaint | None:
    if not row:
        return None
    cells = pad_row(row)

    complaint_id = cells[0].strip()
    created_at = _parse_timestamp(cells[1])
    if not complaint_id or created_at is None or not cells[3].strip():
        return None
    updated_at = _parse_timestamp(cells[2]) or created_at

    if cells[10].strip().upper() == "STAFF":
        reporter = StaffReporter(
            full_name=cells[11],
            email=cells[12],
            phone=cells[13],
            job_title=cells[14],
            department_id=cells[15],
        )
    else:
        reporter = ParentStudentReporter(
            full_name=cells[11],
            email=cells[12],
            phone=cells[13],
            grade=cells[16],
            class_number=cells[17],
        )

    assignee_user_id = cells[8].strip() or None
    status = _parse_status(cells[6], assignee_user_id)
    messages = _parse_messages(cells[18], complaint_id)
    letter = _parse_model(cells[19], _letter, None, "assigneeLetterJSON", complaint_id)
    if letter is None and assignee_user_id:
        submitted = status in (ComplaintStatus.AWAITING_PRINCIPAL_REVIEW, ComplaintStatus.CLOSED)
        letter = _letter_from_messages(messages, assignee_user_id, submitted)

    return Complaint(
        id=complaint_id,
        created_at=created_at,
        updated_at=updated_at,
        subject=cells[3],
        title=cells[4],
        body=cells[5],
        status=status,
        department_id=cells[7].strip(),
        assignee_user_id=assignee_user_id,
        created_by_id=cells[9].strip() or None,
        reporter=reporter,
        messages=messages,
        assignee_letter=letter,
        return_info=_parse_model(cells[20], _return_info, None, "returnInfoJSON", complaint_id),
        review_cycles=_parse_model(cells[21], _cycles, [], "reviewCyclesJSON", complaint_id),
        principal_review=_parse_model(
            cells[22], _principal_review, None, "principalReviewJSON", complaint_id
        ),
        notification_email=_parse_model(
            cells[23], _notification_email, None, "notificationEmailJSON", complaint_id
        ),
    )


def _dump(value: Any) -> str:
    # Cleared nullable fields become empty cells, never the string "null"
    if value is None:
        return ""
    if isinstance(value, list):
        payload = [item.model_dump(mode="json", by_alias=True, exclude_none=True) for item in value]
    else:
        payload = value.model_dump(mode="json", by_alias=True, exclude_none=True)
    return json.dumps(payload, ensure_ascii=False)


def complaint_to_row(complaint: Complaint) -> list[str]:
    reporter = complaint.reporter
    job_title = department_id = grade = class_number = ""
    if isinstance(reporter, StaffReporter):
        job_title = reporter.job_title
        department_id = reporter.department_id
    else:
        grade = reporter.grade
        class_number = reporter.class_number

    return [
        complaint.id,
        to_iso(complaint.created_at),
        to_iso(complaint.updated_at),
        complaint.subject,
        complaint.title,
        complaint.body,
        complaint.status.value,
        complaint.department_id,
        complaint.assignee_user_id or "",
        complaint.created_by_id or "",
        reporter.type,
        reporter.full_name,
        reporter.email,
        reporter.phone,
        job_title,
        department_id,
        grade,
        class_number,
        json.dumps(
            [m.model_dump(mode="json", by_alias=True) for m in complaint.messages],
            ensure_ascii=False,
        ),
        _dump(complaint.assignee_letter),
        _dump(complaint.return_info),
        _dump(complaint.review_cycles) if complaint.review_cycles else "",
        _dump(complaint.principal_review),
        _dump(complaint.notification_email),
    ]
