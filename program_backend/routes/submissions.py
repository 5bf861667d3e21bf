"""
program_backend/routes/submissions.py
Submission Ledger API
"""
import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from program_backend.database import get_db
from program_backend.rbac import CallerContext, get_current_user
from program_backend.schemas.submission import SubmissionCreate
from program_backend.services import submission_service

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Submissions"])


@router.post("/events/{event_id}/submissions/{task_id}", status_code=status.HTTP_201_CREATED)
async def create_event_submission(
    event_id: int,
    task_id: int,
    data: SubmissionCreate,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Submit a deliverable for a task of the event (captain, or a manager with team_id)."""
    submission = await submission_service.create_submission(db, caller, task_id, data, event_id=event_id)
    return {"success": True, "data": submission.to_dict()}


@router.post("/tasks/{task_id}/submissions", status_code=status.HTTP_201_CREATED)
async def create_task_submission(
    task_id: int,
    data: SubmissionCreate,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    submission = await submission_service.create_submission(db, caller, task_id, data)
    return {"success": True, "data": submission.to_dict()}


@router.get("/tasks/{task_id}/submissions")
async def list_task_submissions(
    task_id: int,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    submissions = await submission_service.list_submissions(db, caller, task_id)
    return {"success": True, "data": [submission.to_dict() for submission in submissions]}


@router.get("/submissions/{submission_id}")
async def get_submission(
    submission_id: int,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    submission = await submission_service.get_submission(db, caller, submission_id)
    return {"success": True, "data": submission.to_dict()}
