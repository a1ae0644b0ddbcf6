"""
Complaint workflow service.

Every mutation runs the same pipeline against a single stored row:

    1. load by id                     -> NotFoundError
    2. actor present                  -> UnauthenticatedError
    3. access.can_mutate              -> ForbiddenError
    4. review field lock              -> ForbiddenError(field_locked)
    5. operation precondition         -> Forbidden / InvalidState / InvalidInput
    6. pure transform, updatedAt=now
    7. compare-and-swap full-row write
    8. audit + notifications (fire-and-forget)

Steps 1-6 have no side effects, so a failure leaves the row untouched.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime

import structlog

from complaint_desk.infrastructure.audit import AuditLogger, audit_logger
from complaint_desk.infrastructure.observability.logging import get_logger
from complaint_desk.models.domain.complaint_domain import Complaint, utc_now
from complaint_desk.models.domain.directory_domain import Actor, DirectorySnapshot
from complaint_desk.repositories.complaint_repository import ComplaintRepository, StoredComplaint
from complaint_desk.services.complaints import access, transitions
from complaint_desk.services.complaints.closure_artifact import (
    ClosureArtifact,
    ClosureArtifactRenderer,
    TextClosureArtifactRenderer,
    build_closure_artifact,
)
from complaint_desk.services.complaints.errors import (
    FIELD_LOCKED,
    ForbiddenError,
    NotFoundError,
    UnauthenticatedError,
)
from complaint_desk.services.complaints.notifications import NotificationDispatcher
from complaint_desk.services.complaints.query import (
    ComplaintFilters,
    ComplaintPage,
    ComplaintStats,
    compute_stats,
    list_complaints,
)
from complaint_desk.services.complaints.transitions import ComplaintPatch

logger = get_logger(__name__)

Transform = Callable[[Complaint, Actor, DirectorySnapshot, datetime], Complaint]


class ComplaintWorkflowService:
    def __init__(
        self,
        repository: ComplaintRepository,
        directory,
        dispatcher: NotificationDispatcher | None = None,
        audit: AuditLogger = audit_logger,
        clock: Callable[[], datetime] = utc_now,
        sla_days: int = 7,
        renderer: ClosureArtifactRenderer | None = None,
    ):
        self.repository = repository
        self.directory = directory
        self.dispatcher = dispatcher
        self.audit = audit
        self.clock = clock
        self.sla_days = sla_days
        self.renderer = renderer or TextClosureArtifactRenderer()

    # ------------------------------------------------------------------ reads

    async def get(self, complaint_id: str, actor: Actor | None) -> Complaint:
        stored = await self.repository.load(complaint_id)
        if stored is None:
            raise NotFoundError("Complaint not found", complaint_id=complaint_id)
        if actor is None:
            raise UnauthenticatedError("Authentication required")
        if not access.can_read(actor, stored.complaint):
            raise ForbiddenError("Not allowed to view this complaint", complaint_id=complaint_id)
        return stored.complaint

    async def closure_artifact(self, complaint_id: str, actor: Actor | None) -> ClosureArtifact:
        """Signed closure letter; exists only once the principal has closed the complaint."""
        complaint = await self.get(complaint_id, actor)
        if not complaint.is_closed() or complaint.principal_review is None:
            raise NotFoundError("Closure letter not available", complaint_id=complaint_id)
        directory = await self.directory.snapshot()
        return build_closure_artifact(self.renderer, complaint, directory)

    async def list_visible(self, actor: Actor | None, filters: ComplaintFilters) -> ComplaintPage:
        if actor is None:
            raise UnauthenticatedError("Authentication required")
        complaints = await self.repository.list_all()
        return list_complaints(actor, complaints, filters)

    async def stats(self, actor: Actor | None) -> ComplaintStats:
        if actor is None:
            raise UnauthenticatedError("Authentication required")
        complaints = await self.repository.list_all()
        return compute_stats(actor, complaints, self.clock(), self.sla_days)

    # -------------------------------------------------------------- mutations

    async def assign(
        self, complaint_id: str, actor: Actor | None, assignee_user_id: str | None
    ) -> Complaint:
        return await self._run(
            complaint_id,
            actor,
            "complaint_assigned",
            {"assigneeUserId", "status"},
            lambda c, a, d, now: transitions.assign(c, a, assignee_user_id, d, now),
        )

    async def change_department(
        self,
        complaint_id: str,
        actor: Actor | None,
        department_id: str | None,
        clear_assignee_if_not_in_dept: bool = True,
    ) -> Complaint:
        return await self._run(
            complaint_id,
            actor,
            "complaint_department_changed",
            {"departmentId"},
            lambda c, a, d, now: transitions.change_department(
                c, a, department_id, d, now, clear_assignee_if_not_in_dept
            ),
        )

    async def save_letter(self, complaint_id: str, actor: Actor | None, body: str) -> Complaint:
        return await self._run(
            complaint_id,
            actor,
            "letter_saved",
            {"assigneeLetter", "messages", "status"},
            lambda c, a, d, now: transitions.save_letter(c, a, body, now),
        )

    async def submit_for_review(self, complaint_id: str, actor: Actor | None) -> Complaint:
        return await self._run(
            complaint_id,
            actor,
            "letter_submitted",
            {"assigneeLetter", "status"},
            lambda c, a, d, now: transitions.submit_for_review(c, a, now),
        )

    async def return_for_redo(
        self, complaint_id: str, actor: Actor | None, reason: str
    ) -> Complaint:
        return await self._run(
            complaint_id,
            actor,
            "complaint_returned",
            {"status", "returnInfo"},
            lambda c, a, d, now: transitions.return_for_redo(c, a, reason, now),
        )

    async def approve_and_close(
        self,
        complaint_id: str,
        actor: Actor | None,
        justified: object,
        summary: str | None,
        signed_by_user_id: str | None,
        signature_image_path: str | None = None,
    ) -> Complaint:
        return await self._run(
            complaint_id,
            actor,
            "complaint_closed",
            {"status", "principalReview"},
            lambda c, a, d, now: transitions.approve_and_close(
                c, a, justified, summary, signed_by_user_id, now, signature_image_path
            ),
        )

    async def patch(self, complaint_id: str, actor: Actor | None, patch: ComplaintPatch) -> Complaint:
        return await self._run(
            complaint_id,
            actor,
            "complaint_patched",
            patch.touched_fields(),
            lambda c, a, d, now: transitions.apply_patch(c, a, patch, d, now),
        )

    # --------------------------------------------------------------- pipeline

    async def _run(
        self,
        complaint_id: str,
        actor: Actor | None,
        action: str,
        touched_fields: set[str],
        transform: Transform,
    ) -> Complaint:
        stored = await self.repository.load(complaint_id)
        if stored is None:
            raise NotFoundError("Complaint not found", complaint_id=complaint_id)
        if actor is None:
            raise UnauthenticatedError("Authentication required")

        current = stored.complaint
        if not access.can_mutate(actor, current):
            raise ForbiddenError("Not allowed to modify this complaint", complaint_id=current.id)
        if access.violates_field_lock(actor, current, touched_fields):
            raise ForbiddenError(
                "Complaint is locked while awaiting principal review",
                code=FIELD_LOCKED,
                complaint_id=current.id,
            )

        directory = await self.directory.snapshot()
        updated = transform(current, actor, directory, self.clock())

        # A client disconnect must not abandon a write halfway through
        committed = await asyncio.shield(self._commit(stored, updated, actor, action))
        return committed.complaint

    async def _commit(
        self, stored: StoredComplaint, updated: Complaint, actor: Actor, action: str
    ) -> StoredComplaint:
        before = stored.complaint
        committed = await self.repository.save(stored, updated)

        logger.info(
            "Complaint transition committed",
            complaint_id=before.id,
            actor_id=actor.user_id,
            operation=action,
            status_from=before.status.value,
            status_to=updated.status.value,
        )
        await self.audit.log(
            actor_id=actor.user_id,
            action=action,
            complaint_id=before.id,
            metadata={
                "status_from": before.status.value,
                "status_to": updated.status.value,
                "department_id": updated.department_id,
                "assignee_user_id": updated.assignee_user_id,
            },
            request_id=structlog.contextvars.get_contextvars().get("request_id"),
        )
        if self.dispatcher is not None:
            self.dispatcher.dispatch(before, committed.complaint)
        return committed
