"""
Aggregation / tracking views

Read-only projections over an event for reviewers:

- deliverables grid: teams x (phases -> tasks), with evaluation flags
- tracking overview: registrations, teams, per-team deliverables, grade summary
- statistics: teams with captain/members/project, per-grade and per-custom-field
  counts split by has-team / no-team

Every submission index is built once per request, never per team or task.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from program_backend.core.tenant_guard import require_tenant_scope
from program_backend.errors import BadRequestError, ErrorCode
from program_backend.orm.base import isoformat
from program_backend.orm.event import Event, EventRegistration, Phase, RegistrationStatus, Task
from program_backend.orm.evaluation import Evaluation, EvaluationStatus
from program_backend.orm.submission import Submission, SubmissionStatus
from program_backend.orm.team import Project, Team, TeamMember, TeamMemberRole
from program_backend.orm.user import User, UserTenantRole
from program_backend.rbac import CallerContext, require_reviewer
from program_backend.services.rubric_service import get_event_or_404
from program_backend.services.submission_service import latest_final_submissions_for_event

logger = logging.getLogger(__name__)

NO_GRADE = "__NO_GRADE__"
NO_VALUE = "__NO_VALUE__"


def submission_key(team_id: int, task_id: int) -> str:
    return f"{team_id}:{task_id}"


def _relevant_at(submission):
    return submission.submitted_at or submission.created_at


def is_more_recent(candidate, existing) -> bool:
    """
    Tie-break for "most recent relevant submission per team+task".
    Strictly later timestamp wins; a timestamped entry beats one without.
    """
    candidate_at = _relevant_at(candidate)
    existing_at = _relevant_at(existing)
    if candidate_at and existing_at:
        return candidate_at > existing_at
    return bool(candidate_at and not existing_at)


def index_latest_submissions(submissions) -> Dict[str, Any]:
    """Drafts and submissions missing a team or task are skipped."""
    index: Dict[str, Any] = {}
    for submission in submissions:
        if not submission.team_id or not submission.task_id:
            continue
        if submission.status == SubmissionStatus.draft:
            continue
        key = submission_key(submission.team_id, submission.task_id)
        existing = index.get(key)
        if existing is None or is_more_recent(submission, existing):
            index[key] = submission
    return index


def summarize_counts(entries, key_name: str) -> List[Dict[str, Any]]:
    """[(key, has_team)] -> [{key_name, withTeam, withoutTeam, total}] in first-seen order."""
    summary: Dict[Any, Dict[str, Any]] = {}
    for key, has_team in entries:
        # True == 1 and hash(True) == hash(1); keep them apart
        slot = (type(key).__name__, key)
        if slot not in summary:
            summary[slot] = {key_name: key, "withTeam": 0, "withoutTeam": 0}
        if has_team:
            summary[slot]["withTeam"] += 1
        else:
            summary[slot]["withoutTeam"] += 1
    return [{**entry, "total": entry["withTeam"] + entry["withoutTeam"]} for entry in summary.values()]


async def _load_event(db: AsyncSession, caller: CallerContext, event_id: int, action: str) -> Event:
    if event_id is None or event_id <= 0:
        raise BadRequestError("Invalid event", ErrorCode.INVALID_INPUT, details={"event_id": event_id})
    require_reviewer(caller, action)
    event = await get_event_or_404(db, event_id)
    require_tenant_scope(caller, event.tenant_id, "Event", event_id)
    return event


async def _team_members(db: AsyncSession, team_ids: List[int]) -> Dict[int, List[Dict[str, Any]]]:
    """team_id -> members (joined with users), in join order."""
    members: Dict[int, List[Dict[str, Any]]] = {team_id: [] for team_id in team_ids}
    if not team_ids:
        return members

    result = await db.execute(
        select(TeamMember, User)
        .join(User, User.id == TeamMember.user_id)
        .where(TeamMember.team_id.in_(team_ids))
        .order_by(TeamMember.created_at, TeamMember.id)
    )
    for member, user in result.all():
        members[member.team_id].append({
            "id": member.id,
            "userId": user.id,
            "email": user.email,
            "firstName": user.first_name,
            "lastName": user.last_name,
            "role": member.role.value,
        })
    return members


async def _registrations(db: AsyncSession, event_id: int):
    result = await db.execute(
        select(EventRegistration, User)
        .join(User, User.id == EventRegistration.user_id)
        .where(
            EventRegistration.event_id == event_id,
            EventRegistration.status == RegistrationStatus.registered
        )
        .order_by(User.last_name, User.first_name, User.id)
    )
    return result.all()


async def _roles_by_user(db: AsyncSession, tenant_id: int, user_ids: List[int]) -> Dict[int, List[str]]:
    roles: Dict[int, List[str]] = {}
    if not user_ids:
        return roles
    result = await db.execute(
        select(UserTenantRole.user_id, UserTenantRole.scope)
        .where(UserTenantRole.tenant_id == tenant_id, UserTenantRole.user_id.in_(user_ids))
        .order_by(UserTenantRole.id)
    )
    for user_id, scope in result.all():
        roles.setdefault(user_id, []).append(scope.value)
    return roles


# ================= DELIVERABLES =================

async def get_deliverables_tracking(db: AsyncSession, caller: CallerContext, event_id: int) -> Dict[str, Any]:
    await _load_event(db, caller, event_id, "view deliverables tracking")

    teams = (await db.execute(
        select(Team).where(Team.event_id == event_id).order_by(Team.name, Team.id)
    )).scalars().all()
    phases = (await db.execute(
        select(Phase).where(Phase.event_id == event_id).order_by(Phase.order_index, Phase.id)
    )).scalars().all()
    tasks = (await db.execute(
        select(Task).where(Task.event_id == event_id).order_by(Task.phase_id, Task.order_index, Task.id)
    )).scalars().all()
    latest = await latest_final_submissions_for_event(db, event_id)

    final_by_submission: Dict[int, int] = {}
    pending_by_submission: Dict[int, int] = {}
    submission_ids = [submission.id for submission in latest.values()]
    if submission_ids:
        evaluations = (await db.execute(
            select(Evaluation.id, Evaluation.submission_id, Evaluation.status)
            .where(Evaluation.submission_id.in_(submission_ids))
            .order_by(Evaluation.created_at.desc(), Evaluation.id.desc())
        )).all()
        for evaluation_id, submission_id, status in evaluations:
            if status == EvaluationStatus.final:
                final_by_submission.setdefault(submission_id, evaluation_id)
            elif status == EvaluationStatus.draft:
                pending_by_submission.setdefault(submission_id, evaluation_id)

    tasks_by_phase: Dict[int, List[Task]] = {phase.id: [] for phase in phases}
    for task in tasks:
        tasks_by_phase.setdefault(task.phase_id, []).append(task)

    columns = []
    for phase in phases:
        for task in tasks_by_phase[phase.id]:
            columns.append({
                "phaseId": phase.id,
                "phaseName": phase.name,
                "taskId": task.id,
                "taskTitle": task.title,
                "orderIndex": task.order_index or 0,
            })

    teams_data = []
    for team in teams:
        deliverables = []
        for column in columns:
            submission = latest.get((team.id, column["taskId"]))
            submission_id = submission.id if submission else None
            deliverables.append({
                "taskId": column["taskId"],
                "taskTitle": column["taskTitle"],
                "phaseId": column["phaseId"],
                "phaseName": column["phaseName"],
                "submitted": submission is not None,
                "submissionId": submission_id,
                "attachmentUrl": submission.attachment_url if submission else None,
                "content": submission.content if submission else None,
                "submittedAt": isoformat(submission.submitted_at) if submission else None,
                "hasFinalEvaluation": submission_id in final_by_submission,
                "hasPendingEvaluation": submission_id in pending_by_submission,
                "finalEvaluationId": final_by_submission.get(submission_id),
            })
        teams_data.append({"id": team.id, "name": team.name, "deliverables": deliverables})

    logger.info(f"Deliverables tracking for event {event_id}: {len(teams)} teams x {len(columns)} tasks")
    return {
        "teams": teams_data,
        "columns": columns,
        "phases": [{"id": p.id, "name": p.name, "orderIndex": p.order_index} for p in phases],
        "tasks": [{"id": t.id, "title": t.title, "phaseId": t.phase_id} for t in tasks],
    }


# ================= OVERVIEW =================

async def get_tracking_overview(db: AsyncSession, caller: CallerContext, event_id: int) -> Dict[str, Any]:
    event = await _load_event(db, caller, event_id, "view event tracking")

    tasks = (await db.execute(
        select(Task).where(Task.event_id == event_id).order_by(Task.created_at, Task.id)
    )).scalars().all()
    teams = (await db.execute(
        select(Team).where(Team.event_id == event_id).order_by(Team.created_at, Team.id)
    )).scalars().all()
    projects = {
        project.team_id: project
        for project in (await db.execute(select(Project).where(Project.event_id == event_id))).scalars().all()
    }
    submissions = (await db.execute(
        select(Submission).where(Submission.event_id == event_id)
    )).scalars().all()

    members_by_team = await _team_members(db, [team.id for team in teams])
    registrations = await _registrations(db, event_id)
    roles = await _roles_by_user(db, event.tenant_id, [registration.user_id for registration, _ in registrations])

    team_by_user: Dict[int, Dict[str, Any]] = {}
    for team in teams:
        for member in members_by_team[team.id]:
            team_by_user[member["userId"]] = {"id": team.id, "name": team.name, "role": member["role"]}

    latest = index_latest_submissions(submissions)

    teams_data = []
    for team in teams:
        deliverables = []
        for task in tasks:
            submission = latest.get(submission_key(team.id, task.id))
            deliverables.append({
                "taskId": task.id,
                "taskTitle": task.title,
                "required": bool(task.is_required),
                "delivered": submission is not None,
                "submittedAt": isoformat(_relevant_at(submission)) if submission else None,
                "submissionId": submission.id if submission else None,
            })
        project = projects.get(team.id)
        teams_data.append({
            "id": team.id,
            "name": team.name,
            "description": team.description,
            "eventId": team.event_id,
            "project": project.to_dict() if project else None,
            "members": members_by_team[team.id],
            "deliverables": deliverables,
        })

    users = []
    for registration, user in registrations:
        users.append({
            "id": user.id,
            "email": user.email,
            "firstName": user.first_name,
            "lastName": user.last_name,
            "grade": registration.grade,
            "registrationAnswers": registration.answers if isinstance(registration.answers, dict) else None,
            "team": team_by_user.get(user.id),
            "roles": roles.get(user.id, []),
        })

    grade_summary = summarize_counts(
        ((user["grade"] or NO_GRADE, user["team"] is not None) for user in users), "grade"
    )

    return {
        "event": {
            "id": event.id,
            "name": event.name,
            "start_date": isoformat(event.start_date),
            "end_date": isoformat(event.end_date),
            "registration_schema": event.registration_schema,
        },
        "tasks": [{"id": t.id, "title": t.title, "is_required": t.is_required} for t in tasks],
        "teams": teams_data,
        "users": users,
        "unassignedUsers": [user for user in users if user["team"] is None],
        "gradeSummary": grade_summary,
        "totals": {
            "registrations": len({user["id"] for user in users}),
            "teams": len(teams),
            "tasks": len(tasks),
        },
    }


# ================= STATISTICS =================

def custom_fields_from_schema(schema: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not isinstance(schema, dict) or not isinstance(schema.get("fields"), list):
        return []
    return [
        {"name": field["name"], "label": field.get("label") or field["name"], "type": field["type"]}
        for field in schema["fields"]
        if isinstance(field, dict) and field.get("type") and field.get("name")
    ]


def _answer_key(value):
    # lists/dicts are not hashable; group them by their text form
    if value is None:
        return NO_VALUE
    if isinstance(value, (list, dict)):
        return str(value)
    return value


async def get_event_statistics(db: AsyncSession, caller: CallerContext, event_id: int) -> Dict[str, Any]:
    event = await _load_event(db, caller, event_id, "view event statistics")

    teams = (await db.execute(
        select(Team).where(Team.event_id == event_id).order_by(Team.created_at, Team.id)
    )).scalars().all()
    projects = {
        project.team_id: project
        for project in (await db.execute(select(Project).where(Project.event_id == event_id))).scalars().all()
    }
    members_by_team = await _team_members(db, [team.id for team in teams])
    registrations = await _registrations(db, event_id)
    roles = await _roles_by_user(db, event.tenant_id, [registration.user_id for registration, _ in registrations])

    team_by_user: Dict[int, Dict[str, Any]] = {}
    teams_data = []
    for team in teams:
        members = members_by_team[team.id]
        captain = next((m for m in members if m["role"] == TeamMemberRole.captain.value), None)
        for member in members:
            team_by_user[member["userId"]] = {"id": team.id, "name": team.name}

        project = projects.get(team.id)
        teams_data.append({
            "id": team.id,
            "name": team.name,
            "project": {
                "id": project.id,
                "name": project.name,
                "summary": project.summary,
                "status": project.status.value,
            } if project else None,
            "captain": {
                "id": captain["userId"],
                "firstName": captain["firstName"],
                "lastName": captain["lastName"],
                "email": captain["email"],
            } if captain else None,
            "members": [
                {
                    "id": m["userId"],
                    "firstName": m["firstName"],
                    "lastName": m["lastName"],
                    "email": m["email"],
                    "role": m["role"],
                }
                for m in members if m["role"] != TeamMemberRole.captain.value
            ],
            "totalMembers": len(members),
        })

    users = []
    for registration, user in registrations:
        users.append({
            "id": user.id,
            "firstName": user.first_name,
            "lastName": user.last_name,
            "email": user.email,
            "grade": registration.grade,
            "team": team_by_user.get(user.id),
            "roles": roles.get(user.id, []),
        })
    has_team = {user["id"]: user["team"] is not None for user in users}

    custom_fields = custom_fields_from_schema(event.registration_schema)
    custom_field_aggregates = {}
    for field in custom_fields:
        entries = []
        for registration, _ in registrations:
            answers = registration.answers if isinstance(registration.answers, dict) else {}
            entries.append((_answer_key(answers.get(field["name"])), has_team[registration.user_id]))
        custom_field_aggregates[field["name"]] = {
            "field": field,
            "summary": summarize_counts(entries, "value"),
        }

    logger.info(
        f"Statistics for event {event_id}: {len(teams)} teams, {len(users)} registrations, "
        f"{len(custom_fields)} custom fields"
    )
    return {
        "teams": teams_data,
        "users": users,
        "usersWithoutTeam": [user for user in users if user["team"] is None],
        "gradeSummary": summarize_counts(
            ((user["grade"] or NO_GRADE, user["team"] is not None) for user in users), "grade"
        ),
        "customFields": custom_fields,
        "customFieldAggregates": custom_field_aggregates,
    }
