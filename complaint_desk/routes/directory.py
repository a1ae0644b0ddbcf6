# complaint_desk/routes/directory.py
"""Who am I, and the staff/department reference data the UI needs."""

from fastapi import APIRouter, Depends

from complaint_desk.auth.verify import require_actor
from complaint_desk.dependencies import get_directory
from complaint_desk.models.api.complaint_response import (
    ActorResponse,
    DepartmentResponse,
    DirectoryUserResponse,
)
from complaint_desk.models.domain.directory_domain import Actor

router = APIRouter(tags=["directory"])


@router.get("/me", response_model=ActorResponse)
async def me(actor: Actor = Depends(require_actor)):
    return ActorResponse(**actor.model_dump())


@router.get("/users", response_model=list[DirectoryUserResponse])
async def list_users(actor: Actor = Depends(require_actor), directory=Depends(get_directory)):
    snapshot = await directory.snapshot()
    return [
        DirectoryUserResponse(
            id=user.id,
            name=user.name,
            role=user.role,
            department_id=user.department_id,
            email=user.contact_email,
        )
        for user in snapshot.users
    ]


@router.get("/departments", response_model=list[DepartmentResponse])
async def list_departments(
    actor: Actor = Depends(require_actor), directory=Depends(get_directory)
):
    snapshot = await directory.snapshot()
    return [DepartmentResponse(**dept.model_dump()) for dept in snapshot.departments]
