"""
Rubric Store

Rubrics are scoped to a phase (phase_id set) or to the whole project
(phase_id NULL). Criteria are replaced wholesale on update.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from program_backend.core.tenant_guard import require_tenant_scope, resolve_tenant_id
from program_backend.errors import BadRequestError, ErrorCode, NotFoundError
from program_backend.orm.event import Event, Phase, Task
from program_backend.orm.rubric import PhaseRubric, PhaseRubricCriterion, RubricScope
from program_backend.rbac import CallerContext, require_manager, require_reviewer
from program_backend.schemas.rubric import CriterionInput, RubricCreate, RubricUpdate

logger = logging.getLogger(__name__)

DEFAULT_SCALE_MIN = 0
DEFAULT_SCALE_MAX = 100


# ================= LOOKUPS =================

async def get_event_or_404(db: AsyncSession, event_id: int) -> Event:
    result = await db.execute(select(Event).where(Event.id == event_id))
    event = result.scalar_one_or_none()
    if not event:
        raise NotFoundError("Event", event_id)
    return event


async def get_phase_for_event(db: AsyncSession, event_id: int, phase_id: int) -> Phase:
    """The phase must exist and belong to the event."""
    result = await db.execute(
        select(Phase).where(Phase.id == phase_id, Phase.event_id == event_id)
    )
    phase = result.scalar_one_or_none()
    if not phase:
        raise NotFoundError("Phase", phase_id)
    return phase


async def get_rubric_or_404(
    db: AsyncSession,
    event_id: int,
    rubric_id: int,
    scope: Optional[RubricScope] = None,
    phase_id: Optional[int] = None
) -> PhaseRubric:
    query = select(PhaseRubric).where(PhaseRubric.id == rubric_id, PhaseRubric.event_id == event_id)
    if scope is not None:
        query = query.where(PhaseRubric.rubric_scope == scope)
    if phase_id is not None:
        query = query.where(PhaseRubric.phase_id == phase_id)
    result = await db.execute(query)
    rubric = result.scalar_one_or_none()
    if not rubric:
        raise NotFoundError("Rubric", rubric_id)
    return rubric


# ================= VALIDATION =================

def validate_scope(scope: RubricScope, phase_id: Optional[int]) -> None:
    """phase scope needs a phase; project scope must not have one."""
    if scope == RubricScope.phase and phase_id is None:
        raise BadRequestError("A phase rubric requires phase_id", ErrorCode.INVALID_SCOPE)
    if scope == RubricScope.project and phase_id is not None:
        raise BadRequestError("A project rubric cannot be linked to a phase", ErrorCode.INVALID_SCOPE)


def validate_scale(scale_min: float, scale_max: float) -> None:
    if scale_min >= scale_max:
        raise BadRequestError(
            "scale_min must be lower than scale_max",
            details={"scale_min": scale_min, "scale_max": scale_max}
        )


def normalize_criteria(criteria: List[CriterionInput], tenant_id: int) -> List[PhaseRubricCriterion]:
    """
    Build criterion rows from the request list.
    weight defaults to 1, max_score to None (rubric scale), order_index to position + 1.
    """
    if not criteria:
        raise BadRequestError("A rubric needs at least one criterion", ErrorCode.EMPTY_CRITERIA)

    rows = []
    for index, criterion in enumerate(criteria):
        rows.append(PhaseRubricCriterion(
            tenant_id=tenant_id,
            title=criterion.title.strip(),
            description=criterion.description,
            weight=criterion.weight if criterion.weight is not None else 1,
            max_score=criterion.max_score,
            order_index=criterion.order_index if criterion.order_index is not None else index + 1,
        ))
    return rows


def build_rubric_snapshot(rubric: PhaseRubric) -> Dict[str, Any]:
    """Value copy of a rubric stored on evaluations, immune to later edits."""
    return {
        "id": rubric.id,
        "name": rubric.name,
        "description": rubric.description,
        "scope": rubric.rubric_scope.value if rubric.rubric_scope else None,
        "scaleMin": float(rubric.scale_min) if rubric.scale_min is not None else DEFAULT_SCALE_MIN,
        "scaleMax": float(rubric.scale_max) if rubric.scale_max is not None else DEFAULT_SCALE_MAX,
        "criteria": [
            {
                "id": criterion.id,
                "title": criterion.title,
                "description": criterion.description,
                "weight": float(criterion.weight) if criterion.weight is not None else 1.0,
                "maxScore": float(criterion.max_score) if criterion.max_score else None,
            }
            for criterion in rubric.sorted_criteria()
        ],
    }


# ================= COMMANDS =================

async def create_rubric(
    db: AsyncSession,
    caller: CallerContext,
    event_id: int,
    phase_id: Optional[int],
    payload: RubricCreate,
    default_scope: RubricScope = RubricScope.phase
) -> PhaseRubric:
    require_manager(caller, "create rubrics")

    event = await get_event_or_404(db, event_id)
    require_tenant_scope(caller, event.tenant_id, "Event", event_id)

    scope = payload.rubric_scope or default_scope
    validate_scope(scope, phase_id)
    if phase_id is not None:
        await get_phase_for_event(db, event_id, phase_id)

    scale_min = payload.scale_min if payload.scale_min is not None else DEFAULT_SCALE_MIN
    scale_max = payload.scale_max if payload.scale_max is not None else DEFAULT_SCALE_MAX
    validate_scale(scale_min, scale_max)

    tenant_id = resolve_tenant_id(event.tenant_id, caller, "rubric creation", event_id=event_id)
    criteria = normalize_criteria(payload.criteria, tenant_id)

    rubric = PhaseRubric(
        tenant_id=tenant_id,
        event_id=event_id,
        phase_id=phase_id,
        rubric_scope=scope,
        name=payload.name.strip(),
        description=payload.description,
        scale_min=scale_min,
        scale_max=scale_max,
        model_preference=payload.model_preference,
        created_by=caller.user_id,
        updated_by=caller.user_id,
        criteria=criteria,
    )

    try:
        db.add(rubric)
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error(f"Rubric creation failed for event {event_id}, phase {phase_id}: {e}")
        raise

    logger.info(f"Rubric {rubric.id} created (event={event_id}, phase={phase_id}, scope={scope.value})")
    return rubric


async def update_rubric(
    db: AsyncSession,
    caller: CallerContext,
    event_id: int,
    rubric_id: int,
    patch: RubricUpdate,
    phase_id: Optional[int] = None,
    scope_filter: Optional[RubricScope] = None
) -> PhaseRubric:
    require_manager(caller, "update rubrics")

    rubric = await get_rubric_or_404(db, event_id, rubric_id, scope=scope_filter, phase_id=phase_id)
    require_tenant_scope(caller, rubric.tenant_id, "Rubric", rubric_id)
    fields = patch.model_dump(exclude_unset=True)

    new_scope = fields.get("rubric_scope") or rubric.rubric_scope
    new_phase_id = fields["phase_id"] if "phase_id" in fields else rubric.phase_id
    validate_scope(new_scope, new_phase_id)
    if new_phase_id is not None and new_phase_id != rubric.phase_id:
        await get_phase_for_event(db, event_id, new_phase_id)

    scale_min = fields.get("scale_min", rubric.scale_min)
    scale_max = fields.get("scale_max", rubric.scale_max)
    if scale_min is None or scale_max is None:
        raise BadRequestError("Rubric scale bounds cannot be null")
    validate_scale(float(scale_min), float(scale_max))

    new_criteria = None
    if "criteria" in fields:
        new_criteria = normalize_criteria(patch.criteria or [], rubric.tenant_id)

    try:
        if "name" in fields and fields["name"] is not None:
            rubric.name = fields["name"].strip()
        if "description" in fields:
            rubric.description = fields["description"]
        if "model_preference" in fields:
            rubric.model_preference = fields["model_preference"]
        rubric.rubric_scope = new_scope
        rubric.phase_id = new_phase_id
        rubric.scale_min = scale_min
        rubric.scale_max = scale_max
        rubric.updated_by = caller.user_id

        if new_criteria is not None:
            # Full replace: delete-orphan cascade removes every previous row
            rubric.criteria = new_criteria

        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error(f"Rubric {rubric_id} update failed: {e}")
        raise

    logger.info(
        f"Rubric {rubric_id} updated (criteria_replaced={new_criteria is not None}, "
        f"scope={new_scope.value})"
    )
    return rubric


async def delete_rubric(
    db: AsyncSession,
    caller: CallerContext,
    event_id: int,
    rubric_id: int,
    phase_id: Optional[int] = None,
    scope_filter: Optional[RubricScope] = None
) -> None:
    """Detach tasks that point at the rubric, then drop it with its criteria."""
    require_manager(caller, "delete rubrics")

    rubric = await get_rubric_or_404(db, event_id, rubric_id, scope=scope_filter, phase_id=phase_id)
    require_tenant_scope(caller, rubric.tenant_id, "Rubric", rubric_id)

    try:
        await db.execute(
            update(Task).where(Task.phase_rubric_id == rubric_id).values(phase_rubric_id=None)
        )
        await db.delete(rubric)
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error(f"Rubric {rubric_id} deletion failed: {e}")
        raise

    logger.info(f"Rubric {rubric_id} deleted (event={event_id})")


# ================= QUERIES =================

async def list_phase_rubrics(db: AsyncSession, caller: CallerContext, event_id: int, phase_id: int) -> List[PhaseRubric]:
    require_reviewer(caller, "view rubrics")
    event = await get_event_or_404(db, event_id)
    require_tenant_scope(caller, event.tenant_id, "Event", event_id)
    await get_phase_for_event(db, event_id, phase_id)

    result = await db.execute(
        select(PhaseRubric)
        .where(PhaseRubric.event_id == event_id, PhaseRubric.phase_id == phase_id)
        .order_by(PhaseRubric.created_at.desc(), PhaseRubric.id.desc())
    )
    return list(result.scalars().all())


async def list_project_rubrics(db: AsyncSession, caller: CallerContext, event_id: int) -> List[PhaseRubric]:
    require_reviewer(caller, "view rubrics")
    event = await get_event_or_404(db, event_id)
    require_tenant_scope(caller, event.tenant_id, "Event", event_id)

    result = await db.execute(
        select(PhaseRubric)
        .where(PhaseRubric.event_id == event_id, PhaseRubric.rubric_scope == RubricScope.project)
        .order_by(PhaseRubric.created_at.desc(), PhaseRubric.id.desc())
    )
    return list(result.scalars().all())


async def resolve_rubric_for_task(db: AsyncSession, event_id: int, task: Task) -> Optional[PhaseRubric]:
    """
    1. the rubric linked on the task (phase_rubric_id)
    2. the most recently created rubric of the task's phase
    Returns None when neither exists.
    """
    if task.phase_rubric_id:
        result = await db.execute(
            select(PhaseRubric).where(
                PhaseRubric.id == task.phase_rubric_id,
                PhaseRubric.event_id == event_id
            )
        )
        rubric = result.scalar_one_or_none()
        if rubric:
            return rubric

    result = await db.execute(
        select(PhaseRubric)
        .where(PhaseRubric.event_id == event_id, PhaseRubric.phase_id == task.phase_id)
        .order_by(PhaseRubric.created_at.desc(), PhaseRubric.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def resolve_phase_rubric(db: AsyncSession, event_id: int, phase_id: int) -> Optional[PhaseRubric]:
    """Newest rubric with rubric_scope = phase for the phase. No task-rubric fallback."""
    result = await db.execute(
        select(PhaseRubric)
        .where(
            PhaseRubric.event_id == event_id,
            PhaseRubric.phase_id == phase_id,
            PhaseRubric.rubric_scope == RubricScope.phase
        )
        .order_by(PhaseRubric.created_at.desc(), PhaseRubric.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def resolve_project_rubric(db: AsyncSession, event_id: int) -> Optional[PhaseRubric]:
    result = await db.execute(
        select(PhaseRubric)
        .where(PhaseRubric.event_id == event_id, PhaseRubric.rubric_scope == RubricScope.project)
        .order_by(PhaseRubric.created_at.desc(), PhaseRubric.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()
