"""
Evaluation Engine

Creates and updates scored feedback on three mutually exclusive scopes:

- submission: one deliverable, score in [0, 10]
- phase:      a team's deliverables for one phase, score in [0, 100]
- project:    a team's whole project, score in [0, 100], only once every
              phase with a required task has a final phase evaluation

Every write that has side effects (notifications, AI call + insert) runs
in one transaction and is rolled back before the error propagates.
Notifications go out exactly once, on the draft -> final transition.
"""
import logging
import math
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from program_backend.config.settings import settings
from program_backend.core.tenant_guard import require_tenant_scope, resolve_tenant_id
from program_backend.errors import (
    APIError, BadRequestError, ConflictError, ErrorCode, NotFoundError, AIServiceError
)
from program_backend.orm.base import utcnow
from program_backend.orm.event import Phase, Task
from program_backend.orm.evaluation import Evaluation, EvaluationScope, EvaluationSource, EvaluationStatus
from program_backend.orm.rubric import PhaseRubric
from program_backend.orm.submission import Submission
from program_backend.orm.team import Project, Team
from program_backend.rbac import CallerContext, ensure_can_view_team, require_reviewer
from program_backend.schemas.evaluation import (
    AIEvaluationRequest, EvaluationCreate, EvaluationUpdate, MultiSubmissionAIEvaluationRequest,
    PhaseEvaluationCreate, ProjectEvaluationCreate
)
from program_backend.services import ai_evaluation_client
from program_backend.services.ai_evaluation_client import ScoreRange
from program_backend.services.notification_service import notify_evaluation_finalized
from program_backend.services.rubric_service import (
    get_event_or_404, get_phase_for_event, resolve_phase_rubric, resolve_project_rubric,
    resolve_rubric_for_task
)
from program_backend.services.submission_service import (
    get_submission_or_404, get_task_or_404, latest_final_submissions
)

logger = logging.getLogger(__name__)

SUBMISSION_SCORE_RANGE = ScoreRange(0, 10)
PHASE_SCORE_RANGE = ScoreRange(0, 100)
PROJECT_SCORE_RANGE = ScoreRange(0, 100)

SCORE_RANGES = {
    EvaluationScope.submission: SUBMISSION_SCORE_RANGE,
    EvaluationScope.phase: PHASE_SCORE_RANGE,
    EvaluationScope.project: PROJECT_SCORE_RANGE,
}

SUBMISSIONS_MISMATCH_REASON = "submissionsNotBelongToTeamOrPhase"


# ================= VALIDATION =================

def parse_score(value: Any, score_range: ScoreRange) -> Optional[float]:
    """
    None and empty strings mean "no score" and are stored as NULL.
    Anything else must parse as a number inside the range (inclusive).
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if value == "":
            return None
    if isinstance(value, bool):
        raise BadRequestError("score must be a number", ErrorCode.INVALID_SCORE)

    try:
        number = float(value)
    except (TypeError, ValueError):
        raise BadRequestError("score must be a number", ErrorCode.INVALID_SCORE, details={"score": value})

    if math.isnan(number) or number < score_range.minimum or number > score_range.maximum:
        raise BadRequestError(
            f"score must be between {score_range.minimum:g} and {score_range.maximum:g}",
            ErrorCode.INVALID_SCORE,
            details={"score": value, "min": score_range.minimum, "max": score_range.maximum}
        )
    return round(number, 2)


def validate_comment(comment: Optional[str]) -> str:
    if comment is None or not comment.strip():
        raise BadRequestError("comment is required", ErrorCode.MISSING_FIELD, details={"field": "comment"})
    return comment.strip()


def coerce_ai_score(value: Any, score_range: ScoreRange) -> Tuple[Optional[float], bool]:
    """AI scores are clamped into the scope's range. Returns (score, clamped)."""
    if value is None or isinstance(value, bool):
        return None, False
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.warning(f"AI returned a non-numeric overall score: {value!r}")
        return None, False
    if math.isnan(number):
        return None, False

    clamped = min(max(number, score_range.minimum), score_range.maximum)
    return round(clamped, 2), clamped != number


def _log_failure(operation: str, exc: Exception, caller: CallerContext, **context) -> None:
    """Every rejected or failed write is logged with its ids before it reaches the client."""
    message = (
        f"{operation} failed: {type(exc).__name__}: {exc} "
        f"(user={caller.user_id}, tenant={caller.tenant_id}, context={context})"
    )
    if isinstance(exc, APIError) and exc.status_code < 500:
        logger.warning(message)
    else:
        logger.error(message)


def _request_body(payload) -> Dict[str, Any]:
    return payload.model_dump(exclude_unset=True, mode="json") if payload is not None else {}


# ================= LOOKUPS =================

async def get_evaluation_or_404(db: AsyncSession, evaluation_id: int) -> Evaluation:
    result = await db.execute(select(Evaluation).where(Evaluation.id == evaluation_id))
    evaluation = result.scalar_one_or_none()
    if not evaluation:
        raise NotFoundError("Evaluation", evaluation_id)
    return evaluation


async def get_team_or_404(db: AsyncSession, team_id: int) -> Team:
    result = await db.execute(select(Team).where(Team.id == team_id))
    team = result.scalar_one_or_none()
    if not team:
        raise NotFoundError("Team", team_id)
    return team


async def get_project_or_404(db: AsyncSession, event_id: int, project_id: int) -> Project:
    result = await db.execute(
        select(Project).where(Project.id == project_id, Project.event_id == event_id)
    )
    project = result.scalar_one_or_none()
    if not project:
        raise NotFoundError("Project", project_id)
    return project


async def load_phase_and_team(db: AsyncSession, event_id: int, phase_id: int, team_id: int) -> Tuple[Phase, Team]:
    phase = await get_phase_for_event(db, event_id, phase_id)
    team = await get_team_or_404(db, team_id)
    if team.event_id != phase.event_id:
        raise BadRequestError(
            "Team does not belong to the phase's event",
            ErrorCode.TEAM_EVENT_MISMATCH,
            details={"team_id": team_id, "phase_id": phase_id}
        )
    return phase, team


def _unique_ids(ids: Optional[List[int]]) -> List[int]:
    seen = []
    for value in ids or []:
        if value not in seen:
            seen.append(value)
    return seen


def _submissions_mismatch(ids: List[int], matched: List[Submission], scope: str) -> BadRequestError:
    return BadRequestError(
        f"Some submissions do not belong to this team or {scope}",
        ErrorCode.SUBMISSIONS_MISMATCH,
        details={
            "reason": SUBMISSIONS_MISMATCH_REASON,
            "submission_ids": ids,
            "matched_ids": sorted(s.id for s in matched),
        }
    )


async def validate_phase_submissions(
    db: AsyncSession,
    phase_id: int,
    team_id: int,
    submission_ids: List[int]
) -> List[Submission]:
    """Every cited submission must belong to the team AND to a task of the phase."""
    if not submission_ids:
        return []

    result = await db.execute(
        select(Submission)
        .join(Task, Task.id == Submission.task_id)
        .where(
            Submission.id.in_(submission_ids),
            Submission.team_id == team_id,
            Task.phase_id == phase_id
        )
        .order_by(Submission.id)
    )
    submissions = list(result.scalars().all())
    if len(submissions) != len(submission_ids):
        raise _submissions_mismatch(submission_ids, submissions, "phase")
    return submissions


async def validate_project_submissions(
    db: AsyncSession,
    event_id: int,
    team_id: int,
    submission_ids: List[int]
) -> List[Submission]:
    if not submission_ids:
        return []

    result = await db.execute(
        select(Submission)
        .where(
            Submission.id.in_(submission_ids),
            Submission.team_id == team_id,
            Submission.event_id == event_id
        )
        .order_by(Submission.id)
    )
    submissions = list(result.scalars().all())
    if len(submissions) != len(submission_ids):
        raise _submissions_mismatch(submission_ids, submissions, "project")
    return submissions


async def check_phase_prerequisites(db: AsyncSession, event_id: int, team_id: int) -> None:
    """
    Every phase with at least one required task needs a final phase
    evaluation for the team. Raises naming the first phase (by order) that lacks one.
    """
    result = await db.execute(
        select(Phase)
        .where(
            Phase.event_id == event_id,
            Phase.id.in_(
                select(Task.phase_id).where(Task.event_id == event_id, Task.is_required.is_(True))
            )
        )
        .order_by(Phase.order_index, Phase.id)
    )
    gated_phases = list(result.scalars().all())
    if not gated_phases:
        return

    result = await db.execute(
        select(Evaluation.phase_id).where(
            Evaluation.evaluation_scope == EvaluationScope.phase,
            Evaluation.team_id == team_id,
            Evaluation.status == EvaluationStatus.final,
            Evaluation.phase_id.in_([phase.id for phase in gated_phases])
        )
    )
    evaluated = set(result.scalars().all())

    for phase in gated_phases:
        if phase.id not in evaluated:
            raise BadRequestError(
                f'Phase "{phase.name}" has no final evaluation for this team yet',
                ErrorCode.PREREQUISITE_NOT_MET,
                details={"phase_id": phase.id, "phase_name": phase.name}
            )


def _require_usable_rubric(rubric: Optional[PhaseRubric], scope: str, **context) -> PhaseRubric:
    if rubric is None or not rubric.criteria:
        raise ConflictError(
            f"No rubric with criteria is configured for this {scope}",
            ErrorCode.RUBRIC_NOT_CONFIGURED,
            details=context or None
        )
    return rubric


def _ai_comment(result: Dict[str, Any]) -> str:
    feedback = (result.get("overallFeedback") or "").strip()
    if not feedback:
        raise AIServiceError("AI response has no overall feedback")
    return feedback


def _ai_metadata(result: Dict[str, Any], locale: Optional[str], clamped: bool) -> Dict[str, Any]:
    metadata = {
        "criteria": result.get("criteria", []),
        "usage": result.get("usage"),
        "raw": result.get("raw"),
        "model": result.get("model"),
        "locale": locale or settings.DEFAULT_LOCALE,
    }
    if clamped:
        metadata["scoreClamped"] = True
        metadata["aiOverallScore"] = result.get("overallScore")
    return metadata


async def _persist(
    db: AsyncSession,
    evaluation: Evaluation,
    notify_team_id: Optional[int],
) -> Evaluation:
    """Insert and, when final, notify the team. Caller handles rollback."""
    db.add(evaluation)
    if evaluation.status == EvaluationStatus.final and notify_team_id is not None:
        await notify_evaluation_finalized(
            db, notify_team_id, evaluation.tenant_id, evaluation.evaluation_scope.value
        )
    await db.commit()
    return evaluation


# ================= SUBMISSION SCOPE =================

async def create_submission_evaluation(
    db: AsyncSession,
    caller: CallerContext,
    submission_id: int,
    payload: EvaluationCreate
) -> Evaluation:
    require_reviewer(caller, "evaluate submissions")

    try:
        submission = await get_submission_or_404(db, submission_id)
        require_tenant_scope(caller, submission.tenant_id, "Submission", submission_id)
        tenant_id = resolve_tenant_id(
            submission.tenant_id, caller, "submission evaluation",
            submission_id=submission_id, body=_request_body(payload)
        )
        comment = validate_comment(payload.comment)
        score = parse_score(payload.score, SUBMISSION_SCORE_RANGE)

        evaluation = Evaluation(
            tenant_id=tenant_id,
            evaluation_scope=EvaluationScope.submission,
            submission_id=submission.id,
            reviewer_id=caller.user_id,
            score=score,
            comment=comment,
            status=payload.status or EvaluationStatus.draft,
            source=payload.source or EvaluationSource.manual,
            rubric_snapshot=payload.rubric_snapshot,
            evaluation_metadata=payload.metadata,
        )
        await _persist(db, evaluation, submission.team_id)
    except Exception as e:
        await db.rollback()
        _log_failure("Submission evaluation", e, caller, submission_id=submission_id, body=_request_body(payload))
        raise

    logger.info(
        f"Evaluation {evaluation.id} created for submission {submission_id} "
        f"(status={evaluation.status.value}, reviewer={caller.user_id})"
    )
    return evaluation


async def create_submission_ai_evaluation(
    db: AsyncSession,
    caller: CallerContext,
    submission_id: int,
    payload: AIEvaluationRequest
) -> Evaluation:
    """
    Rubric lookup, AI call and insert share one transaction.
    A missing rubric is a Conflict raised before any AI spend.
    """
    require_reviewer(caller, "request AI evaluations")
    locale = payload.locale if payload else None

    try:
        submission = await get_submission_or_404(db, submission_id)
        require_tenant_scope(caller, submission.tenant_id, "Submission", submission_id)
        task = await get_task_or_404(db, submission.task_id)
        rubric = _require_usable_rubric(
            await resolve_rubric_for_task(db, submission.event_id, task),
            "task",
            task_id=task.id,
        )
        event = await get_event_or_404(db, submission.event_id)

        result = await ai_evaluation_client.generate_ai_evaluation(
            rubric=rubric,
            submission=submission,
            task=task,
            locale=locale,
            score_range=SUBMISSION_SCORE_RANGE,
            event=event,
        )

        tenant_id = resolve_tenant_id(
            submission.tenant_id, caller, "submission AI evaluation", submission_id=submission_id
        )
        score, clamped = coerce_ai_score(result.get("overallScore"), SUBMISSION_SCORE_RANGE)

        evaluation = Evaluation(
            tenant_id=tenant_id,
            evaluation_scope=EvaluationScope.submission,
            submission_id=submission.id,
            reviewer_id=caller.user_id,
            score=score,
            comment=_ai_comment(result),
            status=EvaluationStatus.draft,
            source=EvaluationSource.ai_assisted,
            rubric_snapshot=result.get("rubricSnapshot"),
            evaluation_metadata=_ai_metadata(result, locale, clamped),
        )
        await _persist(db, evaluation, submission.team_id)
    except Exception as e:
        await db.rollback()
        _log_failure("Submission AI evaluation", e, caller, submission_id=submission_id, locale=locale)
        raise

    logger.info(f"AI evaluation {evaluation.id} created for submission {submission_id} (rubric={rubric.id})")
    return evaluation


# ================= PHASE SCOPE =================

async def create_phase_evaluation(
    db: AsyncSession,
    caller: CallerContext,
    event_id: int,
    phase_id: int,
    team_id: int,
    payload: PhaseEvaluationCreate
) -> Evaluation:
    require_reviewer(caller, "evaluate phases")
    submission_ids = _unique_ids(payload.submission_ids)

    try:
        phase, team = await load_phase_and_team(db, event_id, phase_id, team_id)
        require_tenant_scope(caller, phase.tenant_id, "Phase", phase_id)
        tenant_id = resolve_tenant_id(
            phase.tenant_id, caller, "phase evaluation",
            phase_id=phase_id, team_id=team_id, body=_request_body(payload)
        )
        comment = validate_comment(payload.comment)
        score = parse_score(payload.score, PHASE_SCORE_RANGE)
        await validate_phase_submissions(db, phase.id, team.id, submission_ids)

        evaluation = Evaluation(
            tenant_id=tenant_id,
            evaluation_scope=EvaluationScope.phase,
            phase_id=phase.id,
            team_id=team.id,
            evaluated_submission_ids=submission_ids,
            reviewer_id=caller.user_id,
            score=score,
            comment=comment,
            status=payload.status or EvaluationStatus.draft,
            source=payload.source or EvaluationSource.manual,
            rubric_snapshot=payload.rubric_snapshot,
            evaluation_metadata=payload.metadata,
        )
        await _persist(db, evaluation, team.id)
    except Exception as e:
        await db.rollback()
        _log_failure(
            "Phase evaluation", e, caller,
            phase_id=phase_id, team_id=team_id, body=_request_body(payload)
        )
        raise

    logger.info(
        f"Phase evaluation {evaluation.id} created (phase={phase_id}, team={team_id}, "
        f"status={evaluation.status.value})"
    )
    return evaluation


async def create_phase_ai_evaluation(
    db: AsyncSession,
    caller: CallerContext,
    event_id: int,
    phase_id: int,
    team_id: int,
    payload: MultiSubmissionAIEvaluationRequest
) -> Evaluation:
    """Requires a rubric_scope = phase rubric; task rubrics are not a fallback here."""
    require_reviewer(caller, "request AI evaluations")
    locale = payload.locale if payload else None
    submission_ids = _unique_ids(payload.submission_ids if payload else None)

    try:
        phase, team = await load_phase_and_team(db, event_id, phase_id, team_id)
        require_tenant_scope(caller, phase.tenant_id, "Phase", phase_id)
        rubric = _require_usable_rubric(
            await resolve_phase_rubric(db, event_id, phase.id), "phase", phase_id=phase.id
        )

        result = await db.execute(
            select(Task).where(Task.phase_id == phase.id).order_by(Task.order_index, Task.id)
        )
        tasks = list(result.scalars().all())

        if submission_ids:
            submissions = await validate_phase_submissions(db, phase.id, team.id, submission_ids)
        else:
            latest = await latest_final_submissions(db, team.id, [task.id for task in tasks])
            submissions = [latest[task.id] for task in tasks if task.id in latest]
        if not submissions:
            raise BadRequestError("The team has no final submissions in this phase to evaluate")

        event = await get_event_or_404(db, event_id)
        ai_result = await ai_evaluation_client.generate_multi_submission_ai_evaluation(
            rubric=rubric,
            submissions=submissions,
            tasks=tasks,
            locale=locale,
            score_range=PHASE_SCORE_RANGE,
            event=event,
        )

        tenant_id = resolve_tenant_id(
            phase.tenant_id, caller, "phase AI evaluation", phase_id=phase_id, team_id=team_id
        )
        score, clamped = coerce_ai_score(ai_result.get("overallScore"), PHASE_SCORE_RANGE)

        evaluation = Evaluation(
            tenant_id=tenant_id,
            evaluation_scope=EvaluationScope.phase,
            phase_id=phase.id,
            team_id=team.id,
            evaluated_submission_ids=[s.id for s in submissions],
            reviewer_id=caller.user_id,
            score=score,
            comment=_ai_comment(ai_result),
            status=EvaluationStatus.draft,
            source=EvaluationSource.ai_assisted,
            rubric_snapshot=ai_result.get("rubricSnapshot"),
            evaluation_metadata=_ai_metadata(ai_result, locale, clamped),
        )
        await _persist(db, evaluation, team.id)
    except Exception as e:
        await db.rollback()
        _log_failure(
            "Phase AI evaluation", e, caller,
            phase_id=phase_id, team_id=team_id, submission_ids=submission_ids
        )
        raise

    logger.info(f"Phase AI evaluation {evaluation.id} created (phase={phase_id}, team={team_id})")
    return evaluation


# ================= PROJECT SCOPE =================

async def create_project_evaluation(
    db: AsyncSession,
    caller: CallerContext,
    event_id: int,
    project_id: int,
    payload: ProjectEvaluationCreate
) -> Evaluation:
    require_reviewer(caller, "evaluate projects")
    submission_ids = _unique_ids(payload.submission_ids)

    try:
        project = await get_project_or_404(db, event_id, project_id)
        require_tenant_scope(caller, project.tenant_id, "Project", project_id)
        tenant_id = resolve_tenant_id(
            project.tenant_id, caller, "project evaluation",
            project_id=project_id, body=_request_body(payload)
        )
        comment = validate_comment(payload.comment)
        score = parse_score(payload.score, PROJECT_SCORE_RANGE)
        await validate_project_submissions(db, project.event_id, project.team_id, submission_ids)
        await check_phase_prerequisites(db, project.event_id, project.team_id)

        evaluation = Evaluation(
            tenant_id=tenant_id,
            evaluation_scope=EvaluationScope.project,
            project_id=project.id,
            team_id=project.team_id,
            evaluated_submission_ids=submission_ids or None,
            reviewer_id=caller.user_id,
            score=score,
            comment=comment,
            status=payload.status or EvaluationStatus.draft,
            source=payload.source or EvaluationSource.manual,
            rubric_snapshot=payload.rubric_snapshot,
            evaluation_metadata=payload.metadata,
        )
        await _persist(db, evaluation, project.team_id)
    except Exception as e:
        await db.rollback()
        _log_failure("Project evaluation", e, caller, project_id=project_id, body=_request_body(payload))
        raise

    logger.info(
        f"Project evaluation {evaluation.id} created (project={project_id}, "
        f"status={evaluation.status.value})"
    )
    return evaluation


async def create_project_ai_evaluation(
    db: AsyncSession,
    caller: CallerContext,
    event_id: int,
    project_id: int,
    payload: AIEvaluationRequest
) -> Evaluation:
    require_reviewer(caller, "request AI evaluations")
    locale = payload.locale if payload else None

    try:
        project = await get_project_or_404(db, event_id, project_id)
        require_tenant_scope(caller, project.tenant_id, "Project", project_id)
        await check_phase_prerequisites(db, project.event_id, project.team_id)
        rubric = _require_usable_rubric(
            await resolve_project_rubric(db, project.event_id), "project", project_id=project_id
        )

        result = await db.execute(
            select(Task)
            .join(Phase, Phase.id == Task.phase_id)
            .where(Task.event_id == project.event_id)
            .order_by(Phase.order_index, Task.order_index, Task.id)
        )
        tasks = list(result.scalars().all())
        latest = await latest_final_submissions(db, project.team_id, [task.id for task in tasks])
        submissions = [latest[task.id] for task in tasks if task.id in latest]
        if not submissions:
            raise BadRequestError("The team has no final submissions to evaluate")

        event = await get_event_or_404(db, project.event_id)
        ai_result = await ai_evaluation_client.generate_multi_submission_ai_evaluation(
            rubric=rubric,
            submissions=submissions,
            tasks=tasks,
            locale=locale,
            score_range=PROJECT_SCORE_RANGE,
            event=event,
        )

        tenant_id = resolve_tenant_id(project.tenant_id, caller, "project AI evaluation", project_id=project_id)
        score, clamped = coerce_ai_score(ai_result.get("overallScore"), PROJECT_SCORE_RANGE)

        evaluation = Evaluation(
            tenant_id=tenant_id,
            evaluation_scope=EvaluationScope.project,
            project_id=project.id,
            team_id=project.team_id,
            evaluated_submission_ids=[s.id for s in submissions],
            reviewer_id=caller.user_id,
            score=score,
            comment=_ai_comment(ai_result),
            status=EvaluationStatus.draft,
            source=EvaluationSource.ai_assisted,
            rubric_snapshot=ai_result.get("rubricSnapshot"),
            evaluation_metadata=_ai_metadata(ai_result, locale, clamped),
        )
        await _persist(db, evaluation, project.team_id)
    except Exception as e:
        await db.rollback()
        _log_failure("Project AI evaluation", e, caller, project_id=project_id, locale=locale)
        raise

    logger.info(f"Project AI evaluation {evaluation.id} created (project={project_id})")
    return evaluation


# ================= UPDATE =================

async def _owning_team_id(db: AsyncSession, evaluation: Evaluation) -> Optional[int]:
    if evaluation.team_id is not None:
        return evaluation.team_id
    if evaluation.submission_id is None:
        return None
    result = await db.execute(select(Submission.team_id).where(Submission.id == evaluation.submission_id))
    return result.scalar_one_or_none()


async def update_evaluation(
    db: AsyncSession,
    caller: CallerContext,
    evaluation_id: int,
    patch: EvaluationUpdate
) -> Evaluation:
    """
    Partial update: only fields present in the request are validated and applied.
    previous_status is captured before the write so the finalize
    notification fires only on a !final -> final transition.
    """
    require_reviewer(caller, "update evaluations")
    fields = patch.model_dump(exclude_unset=True)
    expected_status = fields.pop("expected_status", None)

    try:
        evaluation = await get_evaluation_or_404(db, evaluation_id)
        require_tenant_scope(caller, evaluation.tenant_id, "Evaluation", evaluation_id)
        previous_status = evaluation.status
        score_range = SCORE_RANGES[evaluation.evaluation_scope]

        if "score" in fields:
            fields["score"] = parse_score(fields["score"], score_range)
        if "comment" in fields:
            fields["comment"] = validate_comment(fields["comment"])
        if "status" in fields and fields["status"] is None:
            raise BadRequestError("status cannot be null", ErrorCode.MISSING_FIELD, details={"field": "status"})

        if expected_status is not None and settings.FEATURE_EVALUATION_VERSION_CHECK:
            # Compare-and-set on status so two concurrent finalizations cannot both pass
            guard = await db.execute(
                update(Evaluation)
                .where(Evaluation.id == evaluation_id, Evaluation.status == expected_status)
                .values(updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if guard.rowcount != 1:
                raise ConflictError(
                    "Evaluation status changed since it was read",
                    ErrorCode.STALE_STATUS,
                    details={
                        "expected_status": expected_status.value,
                        "current_status": previous_status.value if previous_status else None,
                    }
                )

        if "score" in fields:
            evaluation.score = fields["score"]
        if "comment" in fields:
            evaluation.comment = fields["comment"]
        if "status" in fields:
            evaluation.status = fields["status"]
        if "rubric_snapshot" in fields:
            evaluation.rubric_snapshot = fields["rubric_snapshot"]
        if "metadata" in fields:
            evaluation.evaluation_metadata = fields["metadata"]

        finalized = (
            evaluation.status == EvaluationStatus.final
            and previous_status != EvaluationStatus.final
        )
        if finalized:
            team_id = await _owning_team_id(db, evaluation)
            if team_id is not None:
                await notify_evaluation_finalized(
                    db, team_id, evaluation.tenant_id, evaluation.evaluation_scope.value
                )

        await db.commit()
    except Exception as e:
        await db.rollback()
        _log_failure("Evaluation update", e, caller, evaluation_id=evaluation_id, body=_request_body(patch))
        raise

    logger.info(
        f"Evaluation {evaluation_id} updated (fields={sorted(fields)}, "
        f"status {previous_status.value} -> {evaluation.status.value}, notified={finalized})"
    )
    return evaluation


# ================= READS =================

async def list_submission_evaluations(db: AsyncSession, caller: CallerContext, submission_id: int) -> List[Evaluation]:
    submission = await get_submission_or_404(db, submission_id)
    require_tenant_scope(caller, submission.tenant_id, "Submission", submission_id)
    await ensure_can_view_team(db, caller, submission.team_id)

    result = await db.execute(
        select(Evaluation)
        .where(Evaluation.submission_id == submission.id)
        .order_by(Evaluation.created_at.desc(), Evaluation.id.desc())
    )
    return list(result.scalars().all())


async def get_final_submission_evaluation(db: AsyncSession, caller: CallerContext, submission_id: int) -> Evaluation:
    """Latest final evaluation of the submission."""
    submission = await get_submission_or_404(db, submission_id)
    require_tenant_scope(caller, submission.tenant_id, "Submission", submission_id)
    await ensure_can_view_team(db, caller, submission.team_id)

    result = await db.execute(
        select(Evaluation)
        .where(Evaluation.submission_id == submission.id, Evaluation.status == EvaluationStatus.final)
        .order_by(Evaluation.created_at.desc(), Evaluation.id.desc())
        .limit(1)
    )
    evaluation = result.scalar_one_or_none()
    if not evaluation:
        raise NotFoundError("Final evaluation for submission", submission_id)
    return evaluation


async def list_phase_evaluations(
    db: AsyncSession,
    caller: CallerContext,
    event_id: int,
    phase_id: int,
    team_id: int
) -> List[Evaluation]:
    phase, team = await load_phase_and_team(db, event_id, phase_id, team_id)
    require_tenant_scope(caller, phase.tenant_id, "Phase", phase_id)
    await ensure_can_view_team(db, caller, team.id)

    result = await db.execute(
        select(Evaluation)
        .where(
            Evaluation.evaluation_scope == EvaluationScope.phase,
            Evaluation.phase_id == phase.id,
            Evaluation.team_id == team.id
        )
        .order_by(Evaluation.created_at.desc(), Evaluation.id.desc())
    )
    return list(result.scalars().all())


async def list_project_evaluations(
    db: AsyncSession,
    caller: CallerContext,
    event_id: int,
    project_id: int
) -> List[Evaluation]:
    project = await get_project_or_404(db, event_id, project_id)
    require_tenant_scope(caller, project.tenant_id, "Project", project_id)
    await ensure_can_view_team(db, caller, project.team_id)

    result = await db.execute(
        select(Evaluation)
        .where(Evaluation.evaluation_scope == EvaluationScope.project, Evaluation.project_id == project.id)
        .order_by(Evaluation.created_at.desc(), Evaluation.id.desc())
    )
    return list(result.scalars().all())
