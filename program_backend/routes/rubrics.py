"""
program_backend/routes/rubrics.py
Rubric Store API: phase rubrics and project rubrics of an event
Reads are open to reviewers, writes to managers (tenant_admin, organizer)
"""
import logging

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from program_backend.database import get_db
from program_backend.errors import BadRequestError, ErrorCode
from program_backend.orm.rubric import RubricScope
from program_backend.rbac import CallerContext, get_current_user
from program_backend.schemas.rubric import RubricCreate, RubricUpdate
from program_backend.services import rubric_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/events/{event_id}", tags=["Rubrics"])


# ================= PHASE RUBRICS =================

@router.get("/phases/{phase_id}/rubrics")
async def list_phase_rubrics(
    event_id: int,
    phase_id: int,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    rubrics = await rubric_service.list_phase_rubrics(db, caller, event_id, phase_id)
    return {"success": True, "data": [rubric.to_dict() for rubric in rubrics]}


@router.post("/phases/{phase_id}/rubrics", status_code=status.HTTP_201_CREATED)
async def create_phase_rubric(
    event_id: int,
    phase_id: int,
    data: RubricCreate,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Create a rubric linked to the phase. rubric_scope defaults to "phase"."""
    rubric = await rubric_service.create_rubric(db, caller, event_id, phase_id, data, RubricScope.phase)
    return {"success": True, "data": rubric.to_dict()}


@router.put("/phases/{phase_id}/rubrics/{rubric_id}")
async def update_phase_rubric(
    event_id: int,
    phase_id: int,
    rubric_id: int,
    data: RubricUpdate,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    rubric = await rubric_service.update_rubric(db, caller, event_id, rubric_id, data, phase_id=phase_id)
    return {"success": True, "data": rubric.to_dict()}


@router.delete("/phases/{phase_id}/rubrics/{rubric_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_phase_rubric(
    event_id: int,
    phase_id: int,
    rubric_id: int,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    await rubric_service.delete_rubric(db, caller, event_id, rubric_id, phase_id=phase_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ================= PROJECT RUBRICS =================

@router.get("/project-rubrics")
async def list_project_rubrics(
    event_id: int,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    rubrics = await rubric_service.list_project_rubrics(db, caller, event_id)
    return {"success": True, "data": [rubric.to_dict() for rubric in rubrics]}


@router.post("/project-rubrics", status_code=status.HTTP_201_CREATED)
async def create_project_rubric(
    event_id: int,
    data: RubricCreate,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Project rubrics are never linked to a phase."""
    if data.rubric_scope not in (None, RubricScope.project):
        raise BadRequestError(
            "Only project rubrics can be created on this route",
            ErrorCode.INVALID_SCOPE,
            details={"rubric_scope": data.rubric_scope.value}
        )
    rubric = await rubric_service.create_rubric(db, caller, event_id, data.phase_id, data, RubricScope.project)
    return {"success": True, "data": rubric.to_dict()}


@router.put("/project-rubrics/{rubric_id}")
async def update_project_rubric(
    event_id: int,
    rubric_id: int,
    data: RubricUpdate,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    rubric = await rubric_service.update_rubric(
        db, caller, event_id, rubric_id, data, scope_filter=RubricScope.project
    )
    return {"success": True, "data": rubric.to_dict()}


@router.delete("/project-rubrics/{rubric_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project_rubric(
    event_id: int,
    rubric_id: int,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    await rubric_service.delete_rubric(db, caller, event_id, rubric_id, scope_filter=RubricScope.project)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
