"""
Read side: role-scoped listing, search and statistics.

Visibility always goes through `access.can_read`, the same predicate that
guards single-complaint reads.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from pydantic import TypeAdapter, ValidationError

from complaint_desk.models.domain.complaint_domain import (
    Complaint,
    ComplaintStatus,
    Timestamp,
    to_iso,
)
from complaint_desk.models.domain.directory_domain import Actor
from complaint_desk.services.complaints import access
from complaint_desk.services.complaints.errors import InvalidInputError
from complaint_desk.utils.text import norm, normalize_id

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200
CURSOR_SEPARATOR = "|"

_timestamp = TypeAdapter(Timestamp)


@dataclass
class ComplaintFilters:
    status: ComplaintStatus | None = None
    department_id: str | None = None
    assignee_user_id: str | None = None
    q: str | None = None
    cursor: str | None = None
    limit: int = DEFAULT_PAGE_SIZE


@dataclass
class ComplaintPage:
    items: list[Complaint]
    next_cursor: str | None = None


@dataclass
class ComplaintStats:
    total: int = 0
    open: int = 0
    closed: int = 0
    overdue: int = 0
    total_returns: int = 0
    justified: int = 0
    unjustified: int = 0
    by_status: dict[str, int] = field(default_factory=dict)
    by_department: dict[str, int] = field(default_factory=dict)
    by_assignee: dict[str, int] = field(default_factory=dict)


def make_cursor(complaint: Complaint) -> str:
    return f"{to_iso(complaint.created_at)}{CURSOR_SEPARATOR}{complaint.id}"


def _parse_cursor(cursor: str) -> tuple[datetime, str]:
    created, _, complaint_id = cursor.partition(CURSOR_SEPARATOR)
    try:
        return _timestamp.validate_python(created), complaint_id
    except ValidationError as e:
        raise InvalidInputError("Invalid cursor") from e


def _sort_key(complaint: Complaint) -> tuple[datetime, str]:
    return complaint.created_at, complaint.id


def _matches_text(complaint: Complaint, needle: str) -> bool:
    haystack = (
        complaint.id,
        complaint.subject,
        complaint.title,
        complaint.body,
        complaint.reporter.full_name,
    )
    return any(needle in norm(value) for value in haystack)


def _matches(complaint: Complaint, filters: ComplaintFilters) -> bool:
    if filters.status and complaint.status != filters.status:
        return False
    if filters.department_id and normalize_id(complaint.department_id) != normalize_id(
        filters.department_id
    ):
        return False
    if filters.assignee_user_id and normalize_id(complaint.assignee_user_id) != normalize_id(
        filters.assignee_user_id
    ):
        return False
    needle = norm(filters.q)
    if needle and not _matches_text(complaint, needle):
        return False
    return True


def visible_complaints(actor: Actor | None, complaints: list[Complaint]) -> list[Complaint]:
    return [complaint for complaint in complaints if access.can_read(actor, complaint)]


def list_complaints(
    actor: Actor | None, complaints: list[Complaint], filters: ComplaintFilters
) -> ComplaintPage:
    """Newest first; the cursor is the (createdAt, id) of the last item returned."""
    if filters.limit < 1 or filters.limit > MAX_PAGE_SIZE:
        raise InvalidInputError(f"limit must be between 1 and {MAX_PAGE_SIZE}")

    selected = [c for c in visible_complaints(actor, complaints) if _matches(c, filters)]
    selected.sort(key=_sort_key, reverse=True)
    if filters.cursor:
        boundary = _parse_cursor(filters.cursor)
        selected = [c for c in selected if _sort_key(c) < boundary]

    items = selected[: filters.limit]
    next_cursor = make_cursor(items[-1]) if len(selected) > filters.limit else None
    return ComplaintPage(items=items, next_cursor=next_cursor)


def compute_stats(
    actor: Actor | None, complaints: list[Complaint], now: datetime, sla_days: int = 7
) -> ComplaintStats:
    visible = visible_complaints(actor, complaints)
    sla_cutoff = now - timedelta(days=sla_days)
    stats = ComplaintStats(total=len(visible))
    by_status: Counter[str] = Counter()
    by_department: Counter[str] = Counter()
    by_assignee: Counter[str] = Counter()

    for complaint in visible:
        by_status[complaint.status.value] += 1
        by_department[complaint.department_id or "unassigned"] += 1
        if complaint.assignee_user_id:
            by_assignee[complaint.assignee_user_id] += 1
        stats.total_returns += complaint.lifetime_return_count()

        if complaint.is_closed():
            stats.closed += 1
            if complaint.principal_review is not None:
                if complaint.principal_review.justified:
                    stats.justified += 1
                else:
                    stats.unjustified += 1
        else:
            stats.open += 1
            if complaint.created_at < sla_cutoff:
                stats.overdue += 1

    stats.by_status = dict(by_status)
    stats.by_department = dict(by_department)
    stats.by_assignee = dict(by_assignee)
    return stats
