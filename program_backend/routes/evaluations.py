"""
program_backend/routes/evaluations.py
Evaluation Engine API: submission, phase and project evaluations

Manual evaluations are created as draft unless status=final is sent.
AI-assisted evaluations are always stored as draft for a reviewer to confirm.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from program_backend.core.rate_limit import ai_evaluation_limit, limiter
from program_backend.database import get_db
from program_backend.rbac import CallerContext, get_current_user
from program_backend.schemas.evaluation import (
    AIEvaluationRequest, EvaluationCreate, EvaluationUpdate, MultiSubmissionAIEvaluationRequest,
    PhaseEvaluationCreate, ProjectEvaluationCreate
)
from program_backend.services import evaluation_service

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Evaluations"])


def _envelope(evaluation):
    return {"success": True, "data": evaluation.to_dict()}


def _list_envelope(evaluations):
    return {"success": True, "data": [evaluation.to_dict() for evaluation in evaluations]}


# ================= SUBMISSION EVALUATIONS =================

@router.post("/submissions/{submission_id}/evaluations", status_code=status.HTTP_201_CREATED)
async def create_submission_evaluation(
    submission_id: int,
    data: EvaluationCreate,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    evaluation = await evaluation_service.create_submission_evaluation(db, caller, submission_id, data)
    return _envelope(evaluation)


@router.get("/submissions/{submission_id}/evaluations")
async def list_submission_evaluations(
    submission_id: int,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    evaluations = await evaluation_service.list_submission_evaluations(db, caller, submission_id)
    return _list_envelope(evaluations)


@router.get("/submissions/{submission_id}/evaluations/final")
async def get_final_submission_evaluation(
    submission_id: int,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    evaluation = await evaluation_service.get_final_submission_evaluation(db, caller, submission_id)
    return _envelope(evaluation)


@router.post("/submissions/{submission_id}/evaluations/ai", status_code=status.HTTP_201_CREATED)
@limiter.limit(ai_evaluation_limit)
async def create_submission_ai_evaluation(
    request: Request,
    submission_id: int,
    data: Optional[AIEvaluationRequest] = None,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Score the submission with the AI collaborator against the task's rubric."""
    evaluation = await evaluation_service.create_submission_ai_evaluation(
        db, caller, submission_id, data or AIEvaluationRequest()
    )
    return _envelope(evaluation)


# ================= PHASE EVALUATIONS =================

@router.post(
    "/events/{event_id}/phases/{phase_id}/teams/{team_id}/evaluations",
    status_code=status.HTTP_201_CREATED
)
async def create_phase_evaluation(
    event_id: int,
    phase_id: int,
    team_id: int,
    data: PhaseEvaluationCreate,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    evaluation = await evaluation_service.create_phase_evaluation(db, caller, event_id, phase_id, team_id, data)
    return _envelope(evaluation)


@router.get("/events/{event_id}/phases/{phase_id}/teams/{team_id}/evaluations")
async def list_phase_evaluations(
    event_id: int,
    phase_id: int,
    team_id: int,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    evaluations = await evaluation_service.list_phase_evaluations(db, caller, event_id, phase_id, team_id)
    return _list_envelope(evaluations)


@router.post(
    "/events/{event_id}/phases/{phase_id}/teams/{team_id}/evaluations/ai",
    status_code=status.HTTP_201_CREATED
)
@limiter.limit(ai_evaluation_limit)
async def create_phase_ai_evaluation(
    request: Request,
    event_id: int,
    phase_id: int,
    team_id: int,
    data: Optional[MultiSubmissionAIEvaluationRequest] = None,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Score the team's phase deliverables as a whole with the phase rubric.
    Without submission_ids the latest final submission of every task is used.
    """
    evaluation = await evaluation_service.create_phase_ai_evaluation(
        db, caller, event_id, phase_id, team_id, data or MultiSubmissionAIEvaluationRequest()
    )
    return _envelope(evaluation)


# ================= PROJECT EVALUATIONS =================

@router.post("/events/{event_id}/projects/{project_id}/evaluations", status_code=status.HTTP_201_CREATED)
async def create_project_evaluation(
    event_id: int,
    project_id: int,
    data: ProjectEvaluationCreate,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    evaluation = await evaluation_service.create_project_evaluation(db, caller, event_id, project_id, data)
    return _envelope(evaluation)


@router.get("/events/{event_id}/projects/{project_id}/evaluations")
async def list_project_evaluations(
    event_id: int,
    project_id: int,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    evaluations = await evaluation_service.list_project_evaluations(db, caller, event_id, project_id)
    return _list_envelope(evaluations)


@router.post("/events/{event_id}/projects/{project_id}/evaluations/ai", status_code=status.HTTP_201_CREATED)
@limiter.limit(ai_evaluation_limit)
async def create_project_ai_evaluation(
    request: Request,
    event_id: int,
    project_id: int,
    data: Optional[AIEvaluationRequest] = None,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    evaluation = await evaluation_service.create_project_ai_evaluation(
        db, caller, event_id, project_id, data or AIEvaluationRequest()
    )
    return _envelope(evaluation)


# ================= UPDATE =================

@router.patch("/evaluations/{evaluation_id}")
async def update_evaluation(
    evaluation_id: int,
    data: EvaluationUpdate,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Partial update. Send expected_status to guard against a concurrent
    status change (409 when it no longer matches).
    """
    evaluation = await evaluation_service.update_evaluation(db, caller, evaluation_id, data)
    return _envelope(evaluation)
