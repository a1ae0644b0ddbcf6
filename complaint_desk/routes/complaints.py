# complaint_desk/routes/complaints.py
"""
Complaint endpoints: read side plus one endpoint per workflow transition.
Errors are raised as ComplaintError and rendered by the registered handler.
"""

from dataclasses import asdict
from typing import Literal

from fastapi import APIRouter, Depends, Query, Response

from complaint_desk.auth.verify import current_actor
from complaint_desk.dependencies import get_workflow_service
from complaint_desk.models.api.complaint_request import (
    AssignRequest,
    ChangeDepartmentRequest,
    CloseRequest,
    PatchComplaintRequest,
    ReturnForRedoRequest,
    SaveLetterRequest,
)
from complaint_desk.models.api.complaint_response import (
    ClosureLetterMetaResponse,
    ComplaintListResponse,
    ComplaintMutationResponse,
    ComplaintResponse,
    ComplaintStatsResponse,
)
from complaint_desk.models.domain.complaint_domain import Complaint, ComplaintStatus
from complaint_desk.models.domain.directory_domain import Actor
from complaint_desk.services.complaints.query import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    ComplaintFilters,
)
from complaint_desk.services.complaints.workflow_service import ComplaintWorkflowService

router = APIRouter(prefix="/complaints", tags=["complaints"])


def _committed(complaint: Complaint) -> ComplaintMutationResponse:
    return ComplaintMutationResponse(ok=True, complaint=complaint.to_api())


@router.get("", response_model=ComplaintListResponse)
async def list_complaints(
    status: ComplaintStatus | None = Query(default=None),
    department_id: str | None = Query(default=None, alias="departmentId"),
    assignee_user_id: str | None = Query(default=None, alias="assigneeUserId"),
    q: str | None = Query(default=None, description="Free-text search"),
    cursor: str | None = Query(default=None),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    actor: Actor | None = Depends(current_actor),
    workflow: ComplaintWorkflowService = Depends(get_workflow_service),
):
    filters = ComplaintFilters(
        status=status,
        department_id=department_id,
        assignee_user_id=assignee_user_id,
        q=q,
        cursor=cursor,
        limit=limit,
    )
    page = await workflow.list_visible(actor, filters)
    return ComplaintListResponse(
        items=[complaint.to_api() for complaint in page.items], next_cursor=page.next_cursor
    )


@router.get("/stats", response_model=ComplaintStatsResponse)
async def complaint_stats(
    actor: Actor | None = Depends(current_actor),
    workflow: ComplaintWorkflowService = Depends(get_workflow_service),
):
    stats = await workflow.stats(actor)
    return ComplaintStatsResponse(**asdict(stats), sla_days=workflow.sla_days)


@router.get("/{complaint_id}", response_model=ComplaintResponse)
async def get_complaint(
    complaint_id: str,
    actor: Actor | None = Depends(current_actor),
    workflow: ComplaintWorkflowService = Depends(get_workflow_service),
):
    complaint = await workflow.get(complaint_id, actor)
    return ComplaintResponse(complaint=complaint.to_api())


@router.patch("/{complaint_id}", response_model=ComplaintMutationResponse)
async def patch_complaint(
    complaint_id: str,
    request: PatchComplaintRequest,
    actor: Actor | None = Depends(current_actor),
    workflow: ComplaintWorkflowService = Depends(get_workflow_service),
):
    complaint = await workflow.patch(complaint_id, actor, request.to_patch())
    return _committed(complaint)


@router.post("/{complaint_id}/assign", response_model=ComplaintMutationResponse)
async def assign_complaint(
    complaint_id: str,
    request: AssignRequest,
    actor: Actor | None = Depends(current_actor),
    workflow: ComplaintWorkflowService = Depends(get_workflow_service),
):
    complaint = await workflow.assign(complaint_id, actor, request.assignee_user_id)
    return _committed(complaint)


@router.post("/{complaint_id}/department", response_model=ComplaintMutationResponse)
async def change_department(
    complaint_id: str,
    request: ChangeDepartmentRequest,
    actor: Actor | None = Depends(current_actor),
    workflow: ComplaintWorkflowService = Depends(get_workflow_service),
):
    complaint = await workflow.change_department(
        complaint_id, actor, request.department_id, request.clear_assignee_if_not_in_dept
    )
    return _committed(complaint)


@router.get(
    "/{complaint_id}/letter",
    response_model=None,
    responses={200: {"model": ClosureLetterMetaResponse}},
)
async def get_closure_letter(
    complaint_id: str,
    mode: Literal["file", "meta"] = Query(default="file"),
    actor: Actor | None = Depends(current_actor),
    workflow: ComplaintWorkflowService = Depends(get_workflow_service),
) -> Response | ClosureLetterMetaResponse:
    """Closure letter of a closed complaint, as a download or (mode=meta) its metadata."""
    artifact = await workflow.closure_artifact(complaint_id, actor)
    if mode == "meta":
        return ClosureLetterMetaResponse(
            complaint_id=complaint_id,
            filename=artifact.filename,
            mime_type=artifact.mime_type,
            size=len(artifact.content),
        )
    return Response(
        content=artifact.content,
        media_type=artifact.mime_type,
        headers={"Content-Disposition": f'inline; filename="{artifact.filename}"'},
    )


@router.put("/{complaint_id}/letter", response_model=ComplaintMutationResponse)
async def save_letter(
    complaint_id: str,
    request: SaveLetterRequest,
    actor: Actor | None = Depends(current_actor),
    workflow: ComplaintWorkflowService = Depends(get_workflow_service),
):
    complaint = await workflow.save_letter(complaint_id, actor, request.body)
    return _committed(complaint)


@router.post("/{complaint_id}/letter/submit", response_model=ComplaintMutationResponse)
async def submit_letter(
    complaint_id: str,
    actor: Actor | None = Depends(current_actor),
    workflow: ComplaintWorkflowService = Depends(get_workflow_service),
):
    complaint = await workflow.submit_for_review(complaint_id, actor)
    return _committed(complaint)


@router.post("/{complaint_id}/return", response_model=ComplaintMutationResponse)
async def return_for_redo(
    complaint_id: str,
    request: ReturnForRedoRequest,
    actor: Actor | None = Depends(current_actor),
    workflow: ComplaintWorkflowService = Depends(get_workflow_service),
):
    complaint = await workflow.return_for_redo(complaint_id, actor, request.reason)
    return _committed(complaint)


@router.post("/{complaint_id}/close", response_model=ComplaintMutationResponse)
async def approve_and_close(
    complaint_id: str,
    request: CloseRequest,
    actor: Actor | None = Depends(current_actor),
    workflow: ComplaintWorkflowService = Depends(get_workflow_service),
):
    complaint = await workflow.approve_and_close(
        complaint_id,
        actor,
        request.justified,
        request.summary,
        request.signed_by_user_id,
        request.signature_image_path,
    )
    return _committed(complaint)
