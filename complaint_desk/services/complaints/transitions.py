"""
Complaint state machine.

Each operation is a pure transform `(complaint, actor, inputs, now) -> complaint`
that raises a ComplaintError subclass when its precondition does not hold.
Nothing here touches storage or sends mail; the workflow service owns that.

    OPEN/ASSIGNED -> IN_PROGRESS -> AWAITING_PRINCIPAL_REVIEW -> CLOSED
                          ^                    |
                          +---- return --------+
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime

from complaint_desk.models.domain.complaint_domain import (
    AssigneeLetter,
    Complaint,
    ComplaintMessage,
    ComplaintStatus,
    PrincipalReview,
    ReturnInfo,
    ReviewCycle,
)
from complaint_desk.models.domain.directory_domain import Actor, DirectorySnapshot
from complaint_desk.services.complaints import access
from complaint_desk.services.complaints.errors import (
    CLOSED,
    NO_LETTER,
    NOT_ASSIGNEE,
    NOT_PRINCIPAL,
    ForbiddenError,
    InvalidInputError,
    InvalidStateError,
)
from complaint_desk.utils.text import normalize_id

MAX_SUMMARY_LENGTH = 5000
MAX_REASON_LENGTH = 5000
MAX_LETTER_LENGTH = 20000


@dataclass
class ComplaintPatch:
    """
    Generic field edit. Only the attributes named in `fields_set` were sent;
    an attribute that was sent as null means "clear".
    """

    department_id: str | None = None
    assignee_user_id: str | None = None
    messages: list[ComplaintMessage] | None = None
    clear_assignee_if_not_in_dept: bool = True
    fields_set: set[str] = field(default_factory=set)

    def touched_fields(self) -> set[str]:
        names = {
            "department_id": "departmentId",
            "assignee_user_id": "assigneeUserId",
            "messages": "messages",
        }
        return {names[name] for name in self.fields_set if name in names}


def _new_message_id() -> str:
    return uuid.uuid4().hex


def ensure_not_closed(complaint: Complaint) -> None:
    if complaint.is_closed():
        raise InvalidStateError(
            "Complaint is closed and can no longer be changed",
            code=CLOSED,
            complaint_id=complaint.id,
        )


def _ensure_awaiting_review(complaint: Complaint, action: str) -> None:
    if not complaint.is_awaiting_principal():
        raise InvalidStateError(
            f"Cannot {action}: complaint is not awaiting principal review",
            complaint_id=complaint.id,
        )


def _ensure_letter(complaint: Complaint) -> None:
    if not complaint.has_employee_letter():
        raise ForbiddenError(
            "There is no assignee letter to review",
            code=NO_LETTER,
            complaint_id=complaint.id,
        )


def _ensure_letter_writer(actor: Actor, complaint: Complaint) -> None:
    if not access.can_write_letter(actor, complaint):
        raise ForbiddenError(
            "Only the current assignee can write the reply letter",
            code=NOT_ASSIGNEE,
            complaint_id=complaint.id,
        )


def _ensure_principal(actor: Actor) -> None:
    if not access.can_act_as_principal(actor):
        raise ForbiddenError("Principal or admin role required", code=NOT_PRINCIPAL)


def _same_id(left: str | None, right: str | None) -> bool:
    return normalize_id(left) == normalize_id(right)


def _withdraw_from_review(updated: Complaint, now: datetime) -> None:
    index = updated.open_review_cycle_index()
    if index is not None:
        updated.review_cycles[index].withdrawn_at = now
    if updated.assignee_letter is not None:
        updated.assignee_letter.submitted_at = None


def _apply_assignee(updated: Complaint, assignee_user_id: str | None, now: datetime) -> None:
    """
    Set the assignee and derive the status. Leaving review withdraws the open
    cycle; a letter is kept only while its author is the assignee.
    """
    updated.assignee_user_id = assignee_user_id or None
    if updated.is_awaiting_principal():
        _withdraw_from_review(updated, now)
    letter = updated.assignee_letter
    if letter is not None and not _same_id(letter.author_user_id, updated.assignee_user_id):
        updated.assignee_letter = None
    if updated.assignee_user_id:
        updated.status = ComplaintStatus.ASSIGNED
        updated.return_info = None
    else:
        updated.status = ComplaintStatus.OPEN


def _apply_department(
    updated: Complaint,
    department_id: str | None,
    directory: DirectorySnapshot,
    clear_assignee_if_not_in_dept: bool,
    now: datetime,
) -> None:
    updated.department_id = department_id or ""
    if (
        clear_assignee_if_not_in_dept
        and updated.assignee_user_id
        and not directory.is_member(updated.assignee_user_id, updated.department_id)
    ):
        _apply_assignee(updated, None, now)


def _validate_department(department_id: str | None, directory: DirectorySnapshot) -> None:
    if department_id and directory.get_department(department_id) is None:
        raise InvalidInputError(f"Unknown department: {department_id}")


def _validate_assignee(assignee_user_id: str | None, directory: DirectorySnapshot) -> None:
    if assignee_user_id and directory.get_user(assignee_user_id) is None:
        raise InvalidInputError(f"Unknown user: {assignee_user_id}")


def assign(
    complaint: Complaint,
    actor: Actor,
    assignee_user_id: str | None,
    directory: DirectorySnapshot,
    now: datetime,
) -> Complaint:
    """Assign, reassign or unassign. Status follows whether an assignee is set."""
    ensure_not_closed(complaint)
    if not access.can_assign(actor, complaint.department_id):
        raise ForbiddenError("Not allowed to assign this complaint", complaint_id=complaint.id)
    _validate_assignee(assignee_user_id, directory)

    updated = complaint.model_copy(deep=True)
    _apply_assignee(updated, assignee_user_id, now)
    updated.updated_at = now
    return updated


def change_department(
    complaint: Complaint,
    actor: Actor,
    department_id: str | None,
    directory: DirectorySnapshot,
    now: datetime,
    clear_assignee_if_not_in_dept: bool = True,
) -> Complaint:
    ensure_not_closed(complaint)
    if not access.can_change_department(actor):
        raise ForbiddenError("Only a principal or admin can change the department")
    _validate_department(department_id, directory)

    updated = complaint.model_copy(deep=True)
    _apply_department(updated, department_id, directory, clear_assignee_if_not_in_dept, now)
    updated.updated_at = now
    return updated


def save_letter(complaint: Complaint, actor: Actor, body: str, now: datetime) -> Complaint:
    """
    Upsert the assignee's draft. The draft is also appended to the message
    trail so it can be rebuilt from history.
    """
    ensure_not_closed(complaint)
    _ensure_letter_writer(actor, complaint)
    if complaint.is_awaiting_principal():
        raise InvalidStateError(
            "The letter is locked while the principal reviews it",
            complaint_id=complaint.id,
        )
    text = (body or "").strip()
    if not text:
        raise InvalidInputError("Letter body is required", complaint_id=complaint.id)
    if len(text) > MAX_LETTER_LENGTH:
        raise InvalidInputError(
            f"Letter body too long (max {MAX_LETTER_LENGTH})", complaint_id=complaint.id
        )

    updated = complaint.model_copy(deep=True)
    updated.assignee_letter = AssigneeLetter(
        body=text,
        author_user_id=actor.user_id,
        updated_at=now,
        submitted_at=None,
    )
    updated.messages.append(
        ComplaintMessage(id=_new_message_id(), author_id=actor.user_id, body=text, created_at=now)
    )
    updated.status = ComplaintStatus.IN_PROGRESS
    updated.return_info = None
    updated.updated_at = now
    return updated


def submit_for_review(complaint: Complaint, actor: Actor, now: datetime) -> Complaint:
    ensure_not_closed(complaint)
    _ensure_letter_writer(actor, complaint)
    if complaint.is_awaiting_principal():
        raise InvalidStateError(
            "Complaint is already awaiting principal review", complaint_id=complaint.id
        )
    if not complaint.has_employee_letter():
        raise InvalidInputError(
            "The assignee has not written a letter to submit", complaint_id=complaint.id
        )

    updated = complaint.model_copy(deep=True)
    updated.assignee_letter.submitted_at = now
    updated.review_cycles.append(ReviewCycle(submitted_at=now, submitted_by_user_id=actor.user_id))
    updated.status = ComplaintStatus.AWAITING_PRINCIPAL_REVIEW
    updated.updated_at = now
    return updated


def _current_cycle(updated: Complaint, now: datetime) -> ReviewCycle:
    """Open review cycle, synthesised for rows written before cycles were logged."""
    index = updated.open_review_cycle_index()
    if index is not None:
        return updated.review_cycles[index]
    letter = updated.assignee_letter
    cycle = ReviewCycle(
        submitted_at=(letter.submitted_at or letter.updated_at) if letter else now,
        submitted_by_user_id=(letter.author_user_id if letter else updated.assignee_user_id) or "",
    )
    updated.review_cycles.append(cycle)
    return cycle


def return_for_redo(complaint: Complaint, actor: Actor, reason: str, now: datetime) -> Complaint:
    ensure_not_closed(complaint)
    _ensure_principal(actor)
    _ensure_awaiting_review(complaint, "return")
    _ensure_letter(complaint)
    text = (reason or "").strip()
    if not text:
        raise InvalidInputError("A reason is required to return the letter", complaint_id=complaint.id)
    if len(text) > MAX_REASON_LENGTH:
        raise InvalidInputError(
            f"Return reason too long (max {MAX_REASON_LENGTH})", complaint_id=complaint.id
        )

    count = complaint.lifetime_return_count() + 1
    updated = complaint.model_copy(deep=True)
    cycle = _current_cycle(updated, now)
    cycle.returned_at = now
    cycle.return_reason = text
    cycle.returned_by_user_id = actor.user_id
    updated.return_info = ReturnInfo(
        count=count,
        reason=text,
        returned_at=now,
        returned_by_user_id=actor.user_id,
    )
    updated.status = ComplaintStatus.IN_PROGRESS
    updated.principal_review = None
    updated.updated_at = now
    return updated


def approve_and_close(
    complaint: Complaint,
    actor: Actor,
    justified: object,
    summary: str | None,
    signed_by_user_id: str | None,
    now: datetime,
    signature_image_path: str | None = None,
) -> Complaint:
    ensure_not_closed(complaint)
    _ensure_principal(actor)
    _ensure_awaiting_review(complaint, "close")
    _ensure_letter(complaint)
    if not isinstance(justified, bool):
        raise InvalidInputError("justified must be true or false", complaint_id=complaint.id)
    text = (summary or "").strip()
    if not text:
        raise InvalidInputError("Principal summary is required", complaint_id=complaint.id)
    if len(text) > MAX_SUMMARY_LENGTH:
        raise InvalidInputError(
            f"Principal summary too long (max {MAX_SUMMARY_LENGTH})", complaint_id=complaint.id
        )
    signer = (signed_by_user_id or "").strip()
    if not signer:
        raise InvalidInputError("signedByUserId is required", complaint_id=complaint.id)

    updated = complaint.model_copy(deep=True)
    cycle = _current_cycle(updated, now)
    cycle.approved_at = now
    cycle.principal_user_id = signer
    cycle.justified = justified
    cycle.summary = text
    updated.principal_review = PrincipalReview(
        justified=justified,
        summary=text,
        signed_by_user_id=signer,
        signed_at=now,
        signature_image_path=signature_image_path or None,
    )
    updated.return_info = None
    updated.status = ComplaintStatus.CLOSED
    updated.updated_at = now
    return updated


def _check_messages_append_only(
    complaint: Complaint, actor: Actor, messages: list[ComplaintMessage]
) -> list[ComplaintMessage]:
    existing = complaint.messages
    if len(messages) < len(existing):
        raise InvalidInputError("Messages can only be appended", complaint_id=complaint.id)
    for current, proposed in zip(existing, messages):
        if current.id != proposed.id:
            raise InvalidInputError("Messages can only be appended", complaint_id=complaint.id)
    appended = messages[len(existing):]
    for message in appended:
        if not _same_id(message.author_id, actor.user_id):
            raise ForbiddenError(
                "New messages must be authored by the caller", complaint_id=complaint.id
            )
        if not message.body.strip():
            raise InvalidInputError("Message body is required", complaint_id=complaint.id)
    return appended


def apply_patch(
    complaint: Complaint,
    actor: Actor,
    patch: ComplaintPatch,
    directory: DirectorySnapshot,
    now: datetime,
) -> Complaint:
    """
    Generic edit of department, assignee and the message trail.

    Department and assignee changes carry the same role rules as the
    dedicated operations. An explicit assignee wins over the automatic
    clearing that a department change may cause.
    """
    ensure_not_closed(complaint)
    sent = patch.fields_set
    department_changed = "department_id" in sent and not _same_id(
        patch.department_id, complaint.department_id
    )
    assignee_changed = "assignee_user_id" in sent and not _same_id(
        patch.assignee_user_id, complaint.assignee_user_id
    )

    if department_changed:
        if not access.can_change_department(actor):
            raise ForbiddenError("Only a principal or admin can change the department")
        _validate_department(patch.department_id, directory)
    if assignee_changed:
        effective_department = patch.department_id if department_changed else complaint.department_id
        if not access.can_assign(actor, effective_department):
            raise ForbiddenError("Not allowed to assign this complaint", complaint_id=complaint.id)
        _validate_assignee(patch.assignee_user_id, directory)
    appended: list[ComplaintMessage] = []
    if "messages" in sent and patch.messages is not None:
        appended = _check_messages_append_only(complaint, actor, patch.messages)

    updated = complaint.model_copy(deep=True)
    if department_changed:
        _apply_department(
            updated, patch.department_id, directory, patch.clear_assignee_if_not_in_dept, now
        )
    if assignee_changed:
        _apply_assignee(updated, patch.assignee_user_id, now)
    for message in appended:
        updated.messages.append(message.model_copy(update={"created_at": now}))
    updated.updated_at = now
    return updated
