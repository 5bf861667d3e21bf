"""
Shared fixtures: in-memory database, seeded program, callers, HTTP client

Fixtures hand out plain ids (SimpleNamespace) rather than ORM instances:
a service rollback expires everything in the session, and touching an
expired instance outside a query would trigger a sync lazy load.
"""
import json
from datetime import timedelta
from types import SimpleNamespace
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from program_backend.database import get_db
from program_backend.orm import (
    Base, DeliveryType, Event, EventRegistration, Evaluation, EvaluationScope, EvaluationStatus,
    Phase, PhaseRubric, PhaseRubricCriterion, Project, RoleScope, RubricScope, Submission,
    SubmissionStatus, Task, Team, TeamMember, TeamMemberRole, Tenant, User, UserTenantRole
)
from program_backend.orm.base import utcnow
from program_backend.rbac import CallerContext, create_access_token
from program_backend.services.ai_evaluation_client import LLMCompletion, set_llm_client

TEST_DATABASE_URL = "sqlite+aiosqlite://"

REGISTRATION_SCHEMA = {
    "fields": [
        {"name": "school", "label": "School", "type": "text"},
        {"name": "track", "type": "select"},
        {"label": "No name, skipped", "type": "text"},
    ]
}


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    async_session = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )
    async with async_session() as session:
        yield session


# =============================================================================
# Seed data
# =============================================================================

@pytest_asyncio.fixture
async def seed(db_session) -> SimpleNamespace:
    """
    Tenant 1 runs one event with two phases:
    - phase 1: task_file (required, file upload), task_text (optional)
    - phase 2: task_pitch (required)
    team_a (captain + member, has a project) and team_b (captain only).
    """
    tenant = Tenant(name="Innova Lab", slug="innova-lab")
    other_tenant = Tenant(name="Other Org", slug="other-org")
    db_session.add_all([tenant, other_tenant])
    await db_session.flush()

    def user(email, first, last, super_admin=False):
        return User(email=email, first_name=first, last_name=last, is_super_admin=super_admin)

    users = {
        "organizer": user("organizer@innova.test", "Olga", "Organizer"),
        "evaluator": user("evaluator@innova.test", "Eva", "Evaluator"),
        "mentor": user("mentor@innova.test", "Marta", "Mentor"),
        "captain": user("captain@innova.test", "Carla", "Captain"),
        "member": user("member@innova.test", "Mario", "Member"),
        "outsider": user("outsider@innova.test", "Oscar", "Outsider"),
        "captain_b": user("captain.b@innova.test", "Bruno", "Beta"),
        "super_admin": user("root@platform.test", "Sara", "Super", super_admin=True),
        "foreign_evaluator": user("evaluator@other.test", "Fede", "Foreign"),
    }
    db_session.add_all(users.values())
    await db_session.flush()

    scopes = [
        ("organizer", tenant, RoleScope.organizer),
        ("evaluator", tenant, RoleScope.evaluator),
        ("mentor", tenant, RoleScope.mentor),
        ("captain", tenant, RoleScope.participant),
        ("captain", tenant, RoleScope.team_captain),
        ("member", tenant, RoleScope.participant),
        ("outsider", tenant, RoleScope.participant),
        ("captain_b", tenant, RoleScope.participant),
        ("foreign_evaluator", other_tenant, RoleScope.evaluator),
    ]
    db_session.add_all([
        UserTenantRole(user_id=users[name].id, tenant_id=owner.id, scope=scope)
        for name, owner, scope in scopes
    ])

    event = Event(
        tenant_id=tenant.id,
        name="Reto Emprende 2024",
        description="Innovation program",
        registration_schema=REGISTRATION_SCHEMA,
    )
    db_session.add(event)
    await db_session.flush()

    phase_1 = Phase(tenant_id=tenant.id, event_id=event.id, name="Ideation", order_index=1)
    phase_2 = Phase(tenant_id=tenant.id, event_id=event.id, name="Prototype", order_index=2)
    db_session.add_all([phase_1, phase_2])
    await db_session.flush()

    task_file = Task(
        tenant_id=tenant.id, event_id=event.id, phase_id=phase_1.id, title="Business canvas",
        delivery_type=DeliveryType.file, is_required=True, order_index=1,
        max_files=2, max_file_size_mb=5, allowed_mime_types=["application/pdf"],
    )
    task_text = Task(
        tenant_id=tenant.id, event_id=event.id, phase_id=phase_1.id, title="Problem statement",
        delivery_type=DeliveryType.text, is_required=False, order_index=2,
    )
    task_pitch = Task(
        tenant_id=tenant.id, event_id=event.id, phase_id=phase_2.id, title="Pitch",
        delivery_type=DeliveryType.url, is_required=True, order_index=1,
    )
    db_session.add_all([task_file, task_text, task_pitch])

    team_a = Team(tenant_id=tenant.id, event_id=event.id, name="Alpha", captain_id=users["captain"].id)
    team_b = Team(tenant_id=tenant.id, event_id=event.id, name="Beta", captain_id=users["captain_b"].id)
    db_session.add_all([team_a, team_b])
    await db_session.flush()

    db_session.add_all([
        TeamMember(tenant_id=tenant.id, team_id=team_a.id, user_id=users["captain"].id, role=TeamMemberRole.captain),
        TeamMember(tenant_id=tenant.id, team_id=team_a.id, user_id=users["member"].id, role=TeamMemberRole.member),
        TeamMember(tenant_id=tenant.id, team_id=team_b.id, user_id=users["captain_b"].id, role=TeamMemberRole.captain),
    ])

    project_a = Project(tenant_id=tenant.id, event_id=event.id, team_id=team_a.id, name="EcoBox")
    db_session.add(project_a)

    registrations = [
        ("captain", "10", {"school": "IES Norte", "track": "social"}),
        ("member", "10", {"school": "IES Norte"}),
        ("outsider", None, {"school": "IES Sur", "track": "tech"}),
        ("captain_b", "11", None),
    ]
    db_session.add_all([
        EventRegistration(
            tenant_id=tenant.id, event_id=event.id, user_id=users[name].id, grade=grade, answers=answers
        )
        for name, grade, answers in registrations
    ])

    await db_session.commit()

    return SimpleNamespace(
        tenant_id=tenant.id,
        other_tenant_id=other_tenant.id,
        user_ids={name: u.id for name, u in users.items()},
        event_id=event.id,
        phase_1_id=phase_1.id,
        phase_2_id=phase_2.id,
        task_file_id=task_file.id,
        task_text_id=task_text.id,
        task_pitch_id=task_pitch.id,
        team_a_id=team_a.id,
        team_b_id=team_b.id,
        project_a_id=project_a.id,
    )


@pytest.fixture
def callers(seed) -> SimpleNamespace:
    """CallerContext per seeded user, as get_current_user would build them."""
    ids = seed.user_ids

    def caller(name, *scopes, tenant_id=seed.tenant_id, super_admin=False):
        return CallerContext(
            user_id=ids[name], tenant_id=tenant_id, role_scopes=set(scopes), is_super_admin=super_admin
        )

    return SimpleNamespace(
        organizer=caller("organizer", RoleScope.organizer),
        evaluator=caller("evaluator", RoleScope.evaluator),
        mentor=caller("mentor", RoleScope.mentor),
        captain=caller("captain", RoleScope.participant, RoleScope.team_captain),
        member=caller("member", RoleScope.participant),
        outsider=caller("outsider", RoleScope.participant),
        captain_b=caller("captain_b", RoleScope.participant),
        super_admin=caller("super_admin", super_admin=True),
        foreign_evaluator=caller("foreign_evaluator", RoleScope.evaluator, tenant_id=seed.other_tenant_id),
    )


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_submission(db_session, seed):
    """Insert a submission directly, bypassing the captain rules."""
    async def factory(team_id, task_id, status=SubmissionStatus.final, submitted_at=None, content="Deliverable"):
        submission = Submission(
            tenant_id=seed.tenant_id,
            event_id=seed.event_id,
            task_id=task_id,
            team_id=team_id,
            submitted_by=seed.user_ids["captain"],
            status=status,
            content=content,
            submitted_at=submitted_at or utcnow(),
            files=[],
        )
        db_session.add(submission)
        await db_session.commit()
        return submission.id

    return factory


@pytest.fixture
def make_rubric(db_session, seed):
    async def factory(phase_id=None, scope=RubricScope.phase, criteria=2, name="Rubric", created_at=None):
        rubric = PhaseRubric(
            tenant_id=seed.tenant_id,
            event_id=seed.event_id,
            phase_id=phase_id,
            rubric_scope=scope,
            name=name,
            scale_min=0,
            scale_max=10,
            created_by=seed.user_ids["organizer"],
            criteria=[
                PhaseRubricCriterion(
                    tenant_id=seed.tenant_id, title=f"Criterion {i}", weight=1, order_index=i
                )
                for i in range(1, criteria + 1)
            ],
        )
        if created_at is not None:
            rubric.created_at = created_at
        db_session.add(rubric)
        await db_session.commit()
        return rubric.id

    return factory


@pytest.fixture
def make_evaluation(db_session, seed):
    """Insert a phase evaluation row directly (prerequisite setup)."""
    async def factory(phase_id, team_id, status=EvaluationStatus.final, score=80):
        evaluation = Evaluation(
            tenant_id=seed.tenant_id,
            evaluation_scope=EvaluationScope.phase,
            phase_id=phase_id,
            team_id=team_id,
            reviewer_id=seed.user_ids["evaluator"],
            score=score,
            comment="Phase reviewed",
            status=status,
        )
        db_session.add(evaluation)
        await db_session.commit()
        return evaluation.id

    return factory


# =============================================================================
# AI collaborator
# =============================================================================

class FakeLLMClient:
    """Stands in for the provider adapter; records every prompt it receives."""

    def __init__(self, payload=None, text=None, error=None):
        self.payload = payload if payload is not None else {
            "overallScore": 7.5,
            "overallFeedback": "Clear value proposition, validate the market size.",
            "criteria": [{"criterionId": 1, "score": 8, "feedback": "Solid"}],
        }
        self.text = text
        self.error = error
        self.calls = []

    async def complete(self, prompt, model, temperature, max_tokens, timeout_seconds):
        self.calls.append({
            "prompt": prompt,
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        if self.error is not None:
            raise self.error
        text = self.text if self.text is not None else json.dumps(self.payload)
        return LLMCompletion(text=text, model=model, latency_ms=12, usage={"total_tokens": 321})


@pytest.fixture
def fake_llm():
    client = FakeLLMClient()
    set_llm_client(client)
    yield client
    set_llm_client(None)


# =============================================================================
# HTTP
# =============================================================================

@pytest.fixture
def auth_headers(seed):
    def headers(name, tenant_id=None):
        token = create_access_token(
            {"sub": str(seed.user_ids[name]), "tenant_id": tenant_id or seed.tenant_id},
            expires_delta=timedelta(minutes=5)
        )
        return {"Authorization": f"Bearer {token}"}

    return headers


@pytest_asyncio.fixture
async def client(db_session) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, sharing the test session."""
    from program_backend.core.rate_limit import limiter
    from program_backend.main import app

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    limiter.reset()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
