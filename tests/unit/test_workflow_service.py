"""
Tests for the complaint workflow service: guard pipeline, persistence and
post-commit side effects, driven against the in-memory complaint table.
"""

from unittest.mock import AsyncMock

import pytest
import structlog

from complaint_desk.models.domain.complaint_domain import ComplaintMessage, ComplaintStatus
from complaint_desk.repositories.complaint_row_mapper import complaint_to_row
from complaint_desk.services.complaints.errors import (
    FIELD_LOCKED,
    ConcurrentModificationError,
    ForbiddenError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    StoreUnavailableError,
    UnauthenticatedError,
)
from complaint_desk.services.complaints.notifications import NotificationDispatcher
from complaint_desk.services.complaints.query import ComplaintFilters
from complaint_desk.services.complaints.transitions import ComplaintPatch
from complaint_desk.services.complaints.workflow_service import ComplaintWorkflowService


async def _to_awaiting(desk):
    await desk.workflow.assign("42", desk.actor("u5"), "u2")
    await desk.workflow.save_letter("42", desk.actor("u2"), "Dear parent")
    return await desk.workflow.submit_for_review("42", desk.actor("u2"))


@pytest.mark.asyncio
async def test_full_lifecycle_with_one_return(desk):
    manager, assignee, principal = desk.actor("u5"), desk.actor("u2"), desk.actor("u7")

    assigned = await desk.workflow.assign("42", manager, "u2")
    assert assigned.status == ComplaintStatus.ASSIGNED
    assert assigned.assignee_user_id == "u2"

    drafted = await desk.workflow.save_letter("42", assignee, "טיפלתי")
    assert drafted.status == ComplaintStatus.IN_PROGRESS
    assert drafted.assignee_letter.body == "טיפלתי"
    assert drafted.assignee_letter.submitted_at is None

    submitted = await desk.workflow.submit_for_review("42", assignee)
    assert submitted.status == ComplaintStatus.AWAITING_PRINCIPAL_REVIEW
    assert len(submitted.review_cycles) == 1
    assert submitted.review_cycles[0].submitted_at is not None

    returned = await desk.workflow.return_for_redo("42", principal, "חסר פירוט")
    assert returned.status == ComplaintStatus.IN_PROGRESS
    assert returned.return_info.count == 1
    assert returned.return_info.reason == "חסר פירוט"
    assert returned.review_cycles[0].returned_at is not None

    await desk.workflow.save_letter("42", assignee, "טיפלתי, כולל פירוט")
    await desk.workflow.submit_for_review("42", assignee)
    closed = await desk.workflow.approve_and_close(
        "42", principal, True, "טופל במלואו", "u7"
    )

    assert closed.status == ComplaintStatus.CLOSED
    assert closed.principal_review.justified is True
    assert closed.principal_review.signed_by_user_id == "u7"
    assert closed.return_info is None
    assert closed.lifetime_return_count() == 1

    # What was returned is what was stored
    reloaded = await desk.current()
    assert reloaded.status == ComplaintStatus.CLOSED
    assert reloaded.principal_review.summary == "טופל במלואו"
    assert len(reloaded.review_cycles) == 2


@pytest.mark.asyncio
async def test_non_assignee_employee_cannot_save_letter(desk):
    await desk.workflow.assign("42", desk.actor("u5"), "u2")
    writes_before = len(desk.table.writes)

    with pytest.raises(ForbiddenError):
        await desk.workflow.save_letter("42", desk.actor("u4"), "Not mine")

    assert len(desk.table.writes) == writes_before
    assert (await desk.current()).assignee_letter is None


@pytest.mark.asyncio
async def test_manager_cannot_write_assignee_letter(desk):
    await desk.workflow.assign("42", desk.actor("u5"), "u2")

    with pytest.raises(ForbiddenError):
        await desk.workflow.save_letter("42", desk.actor("u5"), "Written by manager")


@pytest.mark.asyncio
async def test_missing_complaint_is_not_found(desk):
    with pytest.raises(NotFoundError):
        await desk.workflow.assign("999", desk.actor("u1"), "u2")


@pytest.mark.asyncio
async def test_not_found_is_reported_before_unauthenticated(desk):
    with pytest.raises(NotFoundError):
        await desk.workflow.save_letter("999", None, "text")


@pytest.mark.asyncio
async def test_missing_actor_is_unauthenticated(desk):
    with pytest.raises(UnauthenticatedError):
        await desk.workflow.assign("42", None, "u2")
    with pytest.raises(UnauthenticatedError):
        await desk.workflow.get("42", None)
    with pytest.raises(UnauthenticatedError):
        await desk.workflow.list_visible(None, ComplaintFilters())


@pytest.mark.asyncio
async def test_field_lock_blocks_assignee_message_during_review(desk):
    submitted = await _to_awaiting(desk)
    writes_before = len(desk.table.writes)
    late = ComplaintMessage(
        id="m-late", author_id="u2", body="one more thing", created_at=submitted.updated_at
    )
    patch = ComplaintPatch(messages=[*submitted.messages, late], fields_set={"messages"})

    with pytest.raises(ForbiddenError) as exc_info:
        await desk.workflow.patch("42", desk.actor("u2"), patch)

    assert exc_info.value.code == FIELD_LOCKED
    assert len(desk.table.writes) == writes_before


@pytest.mark.asyncio
async def test_field_lock_blocks_manager_reassignment_during_review(desk):
    await _to_awaiting(desk)

    with pytest.raises(ForbiddenError) as exc_info:
        await desk.workflow.assign("42", desk.actor("u5"), "u4")
    assert exc_info.value.code == FIELD_LOCKED


@pytest.mark.asyncio
async def test_principal_may_reassign_during_review(desk):
    await _to_awaiting(desk)

    reassigned = await desk.workflow.assign("42", desk.actor("u7"), "u4")

    assert reassigned.assignee_user_id == "u4"
    assert reassigned.status == ComplaintStatus.ASSIGNED


@pytest.mark.asyncio
async def test_reassignment_mid_review_closes_cycle_before_next_submission(desk):
    await _to_awaiting(desk)
    principal = desk.actor("u7")

    reassigned = await desk.workflow.assign("42", principal, "u4")
    assert reassigned.open_review_cycle_index() is None
    assert reassigned.review_cycles[0].withdrawn_at is not None
    assert reassigned.assignee_letter is None

    await desk.workflow.save_letter("42", desk.actor("u4"), "Dear parent, Gil here")
    await desk.workflow.submit_for_review("42", desk.actor("u4"))
    closed = await desk.workflow.approve_and_close("42", principal, True, "Handled", "u7")

    assert closed.status == ComplaintStatus.CLOSED
    assert [cycle.is_open() for cycle in closed.review_cycles] == [False, False]
    assert closed.review_cycles[1].submitted_by_user_id == "u4"
    assert closed.review_cycles[1].approved_at is not None
    assert closed.assignee_letter.author_user_id == "u4"

    stored = await desk.current()
    assert stored.review_cycles == closed.review_cycles


@pytest.mark.asyncio
async def test_new_assignee_cannot_submit_inherited_draft(desk):
    await desk.workflow.assign("42", desk.actor("u5"), "u2")
    await desk.workflow.save_letter("42", desk.actor("u2"), "Draft by Dana")
    await desk.workflow.assign("42", desk.actor("u5"), "u4")

    with pytest.raises(InvalidInputError):
        await desk.workflow.submit_for_review("42", desk.actor("u4"))
    assert (await desk.current()).status == ComplaintStatus.ASSIGNED


@pytest.mark.asyncio
async def test_saving_same_letter_twice_only_advances_updated_at(desk):
    await desk.workflow.assign("42", desk.actor("u5"), "u2")
    assignee = desk.actor("u2")

    first = await desk.workflow.save_letter("42", assignee, "Dear parent")
    second = await desk.workflow.save_letter("42", assignee, "Dear parent")

    assert second.assignee_letter.body == first.assignee_letter.body == "Dear parent"
    assert second.status == ComplaintStatus.IN_PROGRESS
    assert second.updated_at > first.updated_at


@pytest.mark.asyncio
async def test_principal_may_append_message_during_review(desk):
    submitted = await _to_awaiting(desk)
    note = ComplaintMessage(
        id="m-principal", author_id="u7", body="Add the date", created_at=submitted.updated_at
    )
    patch = ComplaintPatch(messages=[*submitted.messages, note], fields_set={"messages"})

    patched = await desk.workflow.patch("42", desk.actor("u7"), patch)

    assert patched.status == ComplaintStatus.AWAITING_PRINCIPAL_REVIEW
    assert patched.messages[-1].id == "m-principal"
    assert (await desk.current()).messages[-1].author_id == "u7"


@pytest.mark.asyncio
async def test_closed_complaint_is_terminal(desk):
    await _to_awaiting(desk)
    await desk.workflow.approve_and_close("42", desk.actor("u7"), False, "Not justified", "u7")

    with pytest.raises(InvalidStateError):
        await desk.workflow.approve_and_close("42", desk.actor("u7"), True, "Again", "u7")
    with pytest.raises(InvalidStateError):
        await desk.workflow.assign("42", desk.actor("u1"), "u4")
    with pytest.raises(InvalidStateError):
        await desk.workflow.return_for_redo("42", desk.actor("u7"), "Reopen")

    assert (await desk.current()).principal_review.justified is False


@pytest.mark.asyncio
async def test_return_count_survives_several_cycles(desk):
    principal, assignee = desk.actor("u7"), desk.actor("u2")
    await _to_awaiting(desk)

    for expected in (1, 2, 3):
        returned = await desk.workflow.return_for_redo("42", principal, f"Redo {expected}")
        assert returned.return_info.count == expected
        await desk.workflow.save_letter("42", assignee, f"Draft {expected + 1}")
        await desk.workflow.submit_for_review("42", assignee)

    closed = await desk.workflow.approve_and_close("42", principal, True, "Finally", "u7")
    assert closed.lifetime_return_count() == 3


@pytest.mark.asyncio
async def test_updated_at_is_server_set(desk):
    before = await desk.current()
    updated = await desk.workflow.assign("42", desk.actor("u5"), "u2")

    assert updated.updated_at > before.updated_at
    assert updated.created_at == before.created_at


@pytest.mark.asyncio
async def test_concurrent_write_is_rejected(desk, clock):
    """A write that lands between our read and our write must not be overwritten."""
    await _to_awaiting(desk)
    inner = desk.directory

    class RacingDirectory:
        async def snapshot(self):
            # Another principal returns the letter while we are validating
            racing = (await desk.current()).model_copy(
                update={"status": ComplaintStatus.IN_PROGRESS}
            )
            racing.updated_at = racing.updated_at.replace(year=2030)
            desk.table.rows[1] = complaint_to_row(racing)
            return await inner.snapshot()

    racing_workflow = ComplaintWorkflowService(
        desk.repository, RacingDirectory(), desk.dispatcher, audit=desk.audit, clock=clock
    )
    desk.audit.log.reset_mock()
    desk.dispatcher.dispatch.reset_mock()

    with pytest.raises(ConcurrentModificationError):
        await racing_workflow.approve_and_close("42", desk.actor("u7"), True, "ok", "u7")

    assert (await desk.current()).status == ComplaintStatus.IN_PROGRESS
    desk.audit.log.assert_not_awaited()
    desk.dispatcher.dispatch.assert_not_called()


@pytest.mark.asyncio
async def test_store_failure_propagates_without_side_effects(desk):
    desk.table.write_row = AsyncMock(
        side_effect=StoreUnavailableError("sheet down", operation="write", recoverable=False)
    )

    with pytest.raises(StoreUnavailableError):
        await desk.workflow.assign("42", desk.actor("u5"), "u2")

    desk.audit.log.assert_not_awaited()
    desk.dispatcher.dispatch.assert_not_called()
    assert (await desk.current()).status == ComplaintStatus.OPEN


@pytest.mark.asyncio
async def test_commit_audits_and_dispatches(desk):
    with structlog.contextvars.bound_contextvars(request_id="req-123"):
        updated = await desk.workflow.assign("42", desk.actor("u5"), "u2")

    desk.audit.log.assert_awaited_once()
    kwargs = desk.audit.log.await_args.kwargs
    assert kwargs["actor_id"] == "u5"
    assert kwargs["action"] == "complaint_assigned"
    assert kwargs["complaint_id"] == "42"
    assert kwargs["request_id"] == "req-123"
    assert kwargs["metadata"]["status_from"] == "OPEN"
    assert kwargs["metadata"]["status_to"] == "ASSIGNED"

    before, after = desk.dispatcher.dispatch.call_args.args
    assert before.assignee_user_id is None
    assert after == updated


@pytest.mark.asyncio
async def test_failed_transition_has_no_side_effects(desk):
    with pytest.raises(ForbiddenError):
        await desk.workflow.assign("42", desk.actor("u6"), "u3")

    desk.audit.log.assert_not_awaited()
    desk.dispatcher.dispatch.assert_not_called()
    assert desk.table.writes == []


@pytest.mark.asyncio
async def test_notifications_follow_the_lifecycle(desk, fake_mailer, clock):
    mailer = fake_mailer
    dispatcher = NotificationDispatcher(mailer, desk.directory, desk.repository)
    workflow = ComplaintWorkflowService(
        desk.repository, desk.directory, dispatcher, audit=desk.audit, clock=clock
    )

    await workflow.assign("42", desk.actor("u5"), "u2")
    await dispatcher.drain()
    assert mailer.sent[-1]["to"] == ["dana@school.test"]

    await workflow.save_letter("42", desk.actor("u2"), "Dear parent")
    await workflow.submit_for_review("42", desk.actor("u2"))
    await dispatcher.drain()
    assert mailer.sent[-1]["to"] == ["principal@school.test"]

    await workflow.approve_and_close("42", desk.actor("u7"), True, "Handled", "u7")
    await dispatcher.drain()
    closing = mailer.sent[-1]
    assert closing["to"] == ["parent@example.com"]
    assert closing["attachments"][0].filename == "complaint-42.txt"

    stored = await desk.current()
    assert stored.notification_email.sent is True
    assert stored.notification_email.to == "parent@example.com"
    assert stored.status == ComplaintStatus.CLOSED


@pytest.mark.asyncio
async def test_mail_failure_does_not_fail_transition(desk, fake_mailer, clock):
    mailer = fake_mailer
    mailer.fail = True
    dispatcher = NotificationDispatcher(mailer, desk.directory, desk.repository)
    workflow = ComplaintWorkflowService(
        desk.repository, desk.directory, dispatcher, audit=desk.audit, clock=clock
    )

    updated = await workflow.assign("42", desk.actor("u5"), "u2")
    await dispatcher.drain()

    assert updated.status == ComplaintStatus.ASSIGNED
    assert (await desk.current()).assignee_user_id == "u2"
    assert mailer.sent == []


@pytest.mark.asyncio
async def test_reads_are_role_scoped(desk, complaint_factory):
    desk.table.append(complaint_factory(id="43", department_id="d2"))

    manager_page = await desk.workflow.list_visible(desk.actor("u5"), ComplaintFilters())
    principal_page = await desk.workflow.list_visible(desk.actor("u7"), ComplaintFilters())

    assert [c.id for c in manager_page.items] == ["42"]
    assert sorted(c.id for c in principal_page.items) == ["42", "43"]

    with pytest.raises(ForbiddenError):
        await desk.workflow.get("43", desk.actor("u5"))

    stats = await desk.workflow.stats(desk.actor("u6"))
    assert stats.total == 1
