"""
Submission Ledger

Teams hand in deliverables against tasks. Only the team captain (or a
manager acting for a team) may submit. The deliverable of a team for a
task is always the final submission with the latest submitted_at.
"""
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from program_backend.core.tenant_guard import require_tenant_scope, resolve_tenant_id
from program_backend.errors import BadRequestError, ErrorCode, ForbiddenError, NotFoundError
from program_backend.orm.base import utcnow
from program_backend.orm.event import FILE_DELIVERY_TYPES, Task
from program_backend.orm.submission import Submission, SubmissionFile, SubmissionStatus, SubmissionType
from program_backend.orm.team import Team, TeamMemberRole
from program_backend.rbac import (
    CallerContext, ensure_can_view_team, find_membership, is_manager, is_reviewer
)
from program_backend.schemas.submission import SubmissionCreate, SubmissionFileInput

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024


# ================= LOOKUPS =================

async def get_task_or_404(db: AsyncSession, task_id: int, event_id: Optional[int] = None) -> Task:
    query = select(Task).where(Task.id == task_id)
    if event_id is not None:
        query = query.where(Task.event_id == event_id)
    result = await db.execute(query)
    task = result.scalar_one_or_none()
    if not task:
        raise NotFoundError("Task", task_id)
    return task


async def get_submission_or_404(db: AsyncSession, submission_id: int) -> Submission:
    result = await db.execute(select(Submission).where(Submission.id == submission_id))
    submission = result.scalar_one_or_none()
    if not submission:
        raise NotFoundError("Submission", submission_id)
    return submission


def _latest_final_query(*conditions):
    return (
        select(Submission)
        .where(Submission.status == SubmissionStatus.final, *conditions)
        .order_by(Submission.submitted_at.desc(), Submission.id.desc())
    )


async def latest_final_submissions_for_event(
    db: AsyncSession,
    event_id: int
) -> Dict[Tuple[int, int], Submission]:
    """Latest final submission per (team_id, task_id) across an event."""
    result = await db.execute(_latest_final_query(Submission.event_id == event_id))
    latest: Dict[Tuple[int, int], Submission] = {}
    for submission in result.scalars().all():
        latest.setdefault((submission.team_id, submission.task_id), submission)
    return latest


async def latest_final_submissions(
    db: AsyncSession,
    team_id: int,
    task_ids: Iterable[int]
) -> Dict[int, Submission]:
    """Latest final submission per task, for the given tasks only."""
    task_ids = list(task_ids)
    if not task_ids:
        return {}

    result = await db.execute(
        _latest_final_query(Submission.team_id == team_id, Submission.task_id.in_(task_ids))
    )
    latest: Dict[int, Submission] = {}
    for submission in result.scalars().all():
        latest.setdefault(submission.task_id, submission)
    return latest


# ================= VALIDATION =================

def validate_files(task: Task, files: List[SubmissionFileInput]) -> None:
    if not files:
        return

    if task.delivery_type not in FILE_DELIVERY_TYPES:
        raise BadRequestError(
            f"Task {task.id} does not accept file attachments",
            ErrorCode.INVALID_FILES,
            details={"delivery_type": task.delivery_type.value if task.delivery_type else None}
        )

    max_files = task.max_files or 1
    if len(files) > max_files:
        raise BadRequestError(
            f"Too many files: at most {max_files} allowed",
            ErrorCode.INVALID_FILES,
            details={"max_files": max_files, "received": len(files)}
        )

    allowed = set(task.allowed_mime_types or [])
    max_bytes = task.max_file_size_mb * BYTES_PER_MB if task.max_file_size_mb else None
    for file in files:
        if allowed and file.mime_type not in allowed:
            raise BadRequestError(
                f"File type {file.mime_type} is not allowed for this task",
                ErrorCode.INVALID_FILES,
                details={"allowed_mime_types": sorted(allowed)}
            )
        if max_bytes is not None and file.size_bytes is not None and file.size_bytes > max_bytes:
            raise BadRequestError(
                f"File {file.original_name or file.url} exceeds {task.max_file_size_mb} MB",
                ErrorCode.INVALID_FILES
            )


async def _resolve_submitting_team(
    db: AsyncSession,
    caller: CallerContext,
    task: Task,
    requested_team_id: Optional[int]
) -> int:
    if is_manager(caller):
        if requested_team_id is None:
            raise BadRequestError("team_id is required when submitting as a manager", ErrorCode.MISSING_FIELD)
        result = await db.execute(
            select(Team.id).where(Team.id == requested_team_id, Team.event_id == task.event_id)
        )
        if result.scalar_one_or_none() is None:
            raise NotFoundError("Team", requested_team_id)
        return requested_team_id

    membership = await find_membership(db, caller.user_id, task.event_id)
    if not membership:
        logger.warning(f"User {caller.user_id} tried to submit task {task.id} without a team")
        raise ForbiddenError("You are not part of a team in this event", ErrorCode.NOT_TEAM_MEMBER)

    if requested_team_id is not None and requested_team_id != membership.team_id:
        logger.warning(
            f"User {caller.user_id} tried to submit for team {requested_team_id} "
            f"but belongs to team {membership.team_id}"
        )
        raise ForbiddenError("You cannot submit on behalf of another team", ErrorCode.NOT_TEAM_MEMBER)

    if membership.role != TeamMemberRole.captain:
        raise ForbiddenError("Only the team captain can submit deliverables", ErrorCode.CAPTAIN_REQUIRED)

    return membership.team_id


# ================= COMMANDS =================

async def create_submission(
    db: AsyncSession,
    caller: CallerContext,
    task_id: int,
    payload: SubmissionCreate,
    event_id: Optional[int] = None
) -> Submission:
    task = await get_task_or_404(db, task_id, event_id)
    require_tenant_scope(caller, task.tenant_id, "Task", task_id)

    team_id = await _resolve_submitting_team(db, caller, task, payload.team_id)
    validate_files(task, payload.files)

    tenant_id = resolve_tenant_id(task.tenant_id, caller, "submission creation", task_id=task_id)

    submission = Submission(
        tenant_id=tenant_id,
        event_id=task.event_id,
        task_id=task.id,
        team_id=team_id,
        submitted_by=caller.user_id,
        status=payload.status or SubmissionStatus.draft,
        type=payload.type or SubmissionType.provisional,
        content=payload.content,
        attachment_url=payload.attachment_url,
        submitted_at=utcnow(),
        files=[
            SubmissionFile(
                tenant_id=tenant_id,
                url=file.url,
                storage_key=file.storage_key,
                mime_type=file.mime_type,
                size_bytes=file.size_bytes,
                original_name=file.original_name,
                checksum=file.checksum,
            )
            for file in payload.files
        ],
    )

    try:
        db.add(submission)
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error(f"Submission creation failed for task {task_id}, team {team_id}: {e}")
        raise

    logger.info(
        f"Submission {submission.id} created (task={task_id}, team={team_id}, "
        f"status={submission.status.value}, files={len(payload.files)})"
    )
    return submission


# ================= QUERIES =================

async def list_submissions(db: AsyncSession, caller: CallerContext, task_id: int) -> List[Submission]:
    """
    Reviewers see every team's submissions; members only their own team's.
    Callers without a team in the event get an empty list.
    """
    task = await get_task_or_404(db, task_id)
    require_tenant_scope(caller, task.tenant_id, "Task", task_id)

    query = (
        select(Submission)
        .where(Submission.task_id == task_id)
        .order_by(Submission.submitted_at.desc(), Submission.id.desc())
    )

    if not is_reviewer(caller):
        membership = await find_membership(db, caller.user_id, task.event_id)
        if not membership:
            return []
        query = query.where(Submission.team_id == membership.team_id)

    result = await db.execute(query)
    return list(result.scalars().all())


async def get_submission(db: AsyncSession, caller: CallerContext, submission_id: int) -> Submission:
    submission = await get_submission_or_404(db, submission_id)
    require_tenant_scope(caller, submission.tenant_id, "Submission", submission_id)
    await ensure_can_view_team(db, caller, submission.team_id)
    return submission
