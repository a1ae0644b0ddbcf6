"""
Role/access policy for complaints.

Pure predicates; callers turn a False into a ForbiddenError. The same
`can_read` gates list filtering, statistics and single-complaint access.
"""

from complaint_desk.models.domain.complaint_domain import Complaint, ComplaintStatus
from complaint_desk.models.domain.directory_domain import Actor, Role
from complaint_desk.utils.text import normalize_id

# Fields a non-privileged actor may not touch while the principal reviews
LOCKED_FIELDS = frozenset({"messages", "status", "assigneeUserId", "assigneeLetter"})


def _same_id(left: str | None, right: str | None) -> bool:
    if not left or not right:
        return False
    return normalize_id(left) == normalize_id(right)


def is_privileged(actor: Actor | None) -> bool:
    return actor is not None and actor.is_privileged


def can_read(actor: Actor | None, complaint: Complaint) -> bool:
    if actor is None:
        return False
    if actor.is_privileged:
        return True
    if actor.role == Role.MANAGER:
        return _same_id(actor.department_id, complaint.department_id)
    if actor.role == Role.EMPLOYEE:
        return _same_id(actor.user_id, complaint.assignee_user_id)
    return False


def can_mutate(actor: Actor | None, complaint: Complaint) -> bool:
    # Read and write visibility are symmetric
    return can_read(actor, complaint)


def can_change_department(actor: Actor | None) -> bool:
    return is_privileged(actor)


def can_assign(actor: Actor | None, effective_department_id: str | None) -> bool:
    if actor is None:
        return False
    if actor.is_privileged:
        return True
    if actor.role == Role.MANAGER:
        return _same_id(actor.department_id, effective_department_id)
    return False


def can_write_letter(actor: Actor | None, complaint: Complaint) -> bool:
    if actor is None or not complaint.assignee_user_id:
        return False
    return _same_id(actor.user_id, complaint.assignee_user_id)


def can_act_as_principal(actor: Actor | None) -> bool:
    return actor is not None and actor.role in (Role.PRINCIPAL, Role.ADMIN)


def violates_field_lock(actor: Actor | None, complaint: Complaint, touched_fields) -> bool:
    """True when a non-privileged actor touches a locked field mid-review."""
    if complaint.status != ComplaintStatus.AWAITING_PRINCIPAL_REVIEW:
        return False
    if is_privileged(actor):
        return False
    return bool(LOCKED_FIELDS.intersection(touched_fields))
