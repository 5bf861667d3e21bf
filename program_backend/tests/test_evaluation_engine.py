"""
Evaluation Engine tests: manual evaluations, updates and read paths

PRINCIPLE: exactly one scope per evaluation, scores inside the scope's
range, notifications only on the transition to final.
"""
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from program_backend.config.settings import settings
from program_backend.core.tenant_guard import resolve_tenant_id
from program_backend.errors import (
    BadRequestError, ConflictError, ErrorCode, ForbiddenError, InternalError, NotFoundError
)
from program_backend.orm import (
    Evaluation, EvaluationScope, EvaluationSource, EvaluationStatus, Event, Notification, Task, Team
)
from program_backend.orm.base import utcnow
from program_backend.rbac import CallerContext
from program_backend.schemas.evaluation import (
    EvaluationCreate, EvaluationUpdate, PhaseEvaluationCreate, ProjectEvaluationCreate
)
from program_backend.services import evaluation_service
from program_backend.services.evaluation_service import (
    PHASE_SCORE_RANGE, SUBMISSION_SCORE_RANGE, parse_score, validate_comment
)


async def _count(db, model, *criteria):
    result = await db.execute(select(func.count(model.id)).where(*criteria))
    return result.scalar_one()


def _scopes_populated(evaluation):
    return [
        evaluation.submission_id is not None,
        evaluation.phase_id is not None and evaluation.team_id is not None,
        evaluation.project_id is not None and evaluation.team_id is not None,
    ].count(True)


# =============================================================================
# Validation helpers
# =============================================================================

class TestScoreAndComment:

    @pytest.mark.parametrize("value,expected", [
        (0, 0), (10, 10), ("7.5", 7.5), (" 3 ", 3), (None, None), ("", None), ("   ", None),
    ])
    def test_valid_submission_scores(self, value, expected):
        assert parse_score(value, SUBMISSION_SCORE_RANGE) == expected

    @pytest.mark.parametrize("value", [-1, 11, 10.01, "abc", "nan", True])
    def test_invalid_submission_scores(self, value):
        with pytest.raises(BadRequestError) as exc:
            parse_score(value, SUBMISSION_SCORE_RANGE)
        assert exc.value.code == ErrorCode.INVALID_SCORE

    def test_phase_range_is_wider(self):
        assert parse_score(100, PHASE_SCORE_RANGE) == 100
        with pytest.raises(BadRequestError):
            parse_score(100.5, PHASE_SCORE_RANGE)

    @pytest.mark.parametrize("comment", [None, "", "   ", "\n\t"])
    def test_blank_comment_rejected(self, comment):
        with pytest.raises(BadRequestError) as exc:
            validate_comment(comment)
        assert exc.value.code == ErrorCode.MISSING_FIELD

    def test_unresolvable_tenant_is_internal_error(self):
        caller = CallerContext(user_id=1, tenant_id=None)

        with pytest.raises(InternalError) as exc:
            resolve_tenant_id(None, caller, "test", submission_id=1)
        assert exc.value.status_code == 500
        assert exc.value.code == ErrorCode.TENANT_UNRESOLVED

    def test_owner_tenant_wins_over_request_tenant(self):
        caller = CallerContext(user_id=1, tenant_id=2)
        assert resolve_tenant_id(1, caller, "test") == 1
        assert resolve_tenant_id(None, caller, "test") == 2


# =============================================================================
# Submission scope
# =============================================================================

class TestSubmissionEvaluation:

    @pytest.mark.parametrize("score,stored", [(0, 0), (10, 10), ("", None), (None, None)])
    async def test_accepted_scores(self, db_session, seed, callers, make_submission, score, stored):
        submission_id = await make_submission(seed.team_a_id, seed.task_text_id)

        evaluation = await evaluation_service.create_submission_evaluation(
            db_session, callers.evaluator, submission_id, EvaluationCreate(score=score, comment="Good work")
        )

        assert evaluation.score == stored
        assert evaluation.status == EvaluationStatus.draft
        assert evaluation.source == EvaluationSource.manual
        assert evaluation.tenant_id == seed.tenant_id
        assert evaluation.team_id is None
        assert _scopes_populated(evaluation) == 1

    @pytest.mark.parametrize("score", [-1, 11])
    async def test_out_of_range_scores_rejected(self, db_session, seed, callers, make_submission, score):
        submission_id = await make_submission(seed.team_a_id, seed.task_text_id)

        with pytest.raises(BadRequestError):
            await evaluation_service.create_submission_evaluation(
                db_session, callers.evaluator, submission_id, EvaluationCreate(score=score, comment="x")
            )
        assert await _count(db_session, Evaluation) == 0

    async def test_whitespace_comment_rejected(self, db_session, seed, callers, make_submission):
        submission_id = await make_submission(seed.team_a_id, seed.task_text_id)

        with pytest.raises(BadRequestError) as exc:
            await evaluation_service.create_submission_evaluation(
                db_session, callers.evaluator, submission_id, EvaluationCreate(score=5, comment="   ")
            )
        assert exc.value.code == ErrorCode.MISSING_FIELD

    async def test_missing_submission(self, db_session, seed, callers):
        with pytest.raises(NotFoundError):
            await evaluation_service.create_submission_evaluation(
                db_session, callers.evaluator, 9999, EvaluationCreate(comment="x")
            )

    async def test_participants_cannot_evaluate(self, db_session, seed, callers, make_submission):
        submission_id = await make_submission(seed.team_a_id, seed.task_text_id)

        with pytest.raises(ForbiddenError):
            await evaluation_service.create_submission_evaluation(
                db_session, callers.captain, submission_id, EvaluationCreate(comment="Self-review")
            )

    async def test_mentor_is_a_reviewer(self, db_session, seed, callers, make_submission):
        submission_id = await make_submission(seed.team_a_id, seed.task_text_id)

        evaluation = await evaluation_service.create_submission_evaluation(
            db_session, callers.mentor, submission_id, EvaluationCreate(comment="Mentor notes")
        )

        assert evaluation.reviewer_id == seed.user_ids["mentor"]

    async def test_final_notifies_every_member(self, db_session, seed, callers, make_submission):
        submission_id = await make_submission(seed.team_a_id, seed.task_text_id)

        await evaluation_service.create_submission_evaluation(
            db_session, callers.evaluator, submission_id,
            EvaluationCreate(score=8, comment="ok", status=EvaluationStatus.final)
        )

        result = await db_session.execute(select(Notification.user_id).order_by(Notification.user_id))
        assert sorted(result.scalars().all()) == sorted([seed.user_ids["captain"], seed.user_ids["member"]])

    async def test_draft_does_not_notify(self, db_session, seed, callers, make_submission):
        submission_id = await make_submission(seed.team_a_id, seed.task_text_id)

        await evaluation_service.create_submission_evaluation(
            db_session, callers.evaluator, submission_id, EvaluationCreate(score=8, comment="ok")
        )

        assert await _count(db_session, Notification) == 0

    async def test_cross_tenant_reviewer_sees_not_found(self, db_session, seed, callers, make_submission):
        submission_id = await make_submission(seed.team_a_id, seed.task_text_id)

        with pytest.raises(NotFoundError):
            await evaluation_service.create_submission_evaluation(
                db_session, callers.foreign_evaluator, submission_id, EvaluationCreate(comment="x")
            )


# =============================================================================
# Phase scope
# =============================================================================

class TestPhaseEvaluation:

    async def test_create_with_cited_submissions(self, db_session, seed, callers, make_submission):
        file_sub = await make_submission(seed.team_a_id, seed.task_file_id)
        text_sub = await make_submission(seed.team_a_id, seed.task_text_id)

        evaluation = await evaluation_service.create_phase_evaluation(
            db_session, callers.evaluator, seed.event_id, seed.phase_1_id, seed.team_a_id,
            PhaseEvaluationCreate(score=100, comment="Great phase", submission_ids=[file_sub, text_sub, file_sub])
        )

        assert evaluation.evaluation_scope == EvaluationScope.phase
        assert evaluation.team_id == seed.team_a_id
        assert evaluation.evaluated_submission_ids == [file_sub, text_sub]
        assert float(evaluation.score) == 100
        assert _scopes_populated(evaluation) == 1

    async def test_submission_of_other_team_rejected(self, db_session, seed, callers, make_submission):
        own = await make_submission(seed.team_a_id, seed.task_file_id)
        foreign = await make_submission(seed.team_b_id, seed.task_text_id)

        with pytest.raises(BadRequestError) as exc:
            await evaluation_service.create_phase_evaluation(
                db_session, callers.evaluator, seed.event_id, seed.phase_1_id, seed.team_a_id,
                PhaseEvaluationCreate(score=50, comment="x", submission_ids=[own, foreign])
            )

        assert exc.value.code == ErrorCode.SUBMISSIONS_MISMATCH
        assert exc.value.details["reason"] == "submissionsNotBelongToTeamOrPhase"
        assert await _count(db_session, Evaluation) == 0

    async def test_submission_of_other_phase_rejected(self, db_session, seed, callers, make_submission):
        pitch = await make_submission(seed.team_a_id, seed.task_pitch_id)

        with pytest.raises(BadRequestError) as exc:
            await evaluation_service.create_phase_evaluation(
                db_session, callers.evaluator, seed.event_id, seed.phase_1_id, seed.team_a_id,
                PhaseEvaluationCreate(comment="x", submission_ids=[pitch])
            )
        assert exc.value.code == ErrorCode.SUBMISSIONS_MISMATCH

    async def test_phase_score_range(self, db_session, seed, callers):
        with pytest.raises(BadRequestError):
            await evaluation_service.create_phase_evaluation(
                db_session, callers.evaluator, seed.event_id, seed.phase_1_id, seed.team_a_id,
                PhaseEvaluationCreate(score=101, comment="x")
            )

    async def test_team_from_other_event_rejected(self, db_session, seed, callers):
        other_event = Event(tenant_id=seed.tenant_id, name="Other program")
        db_session.add(other_event)
        await db_session.flush()
        stray_team = Team(tenant_id=seed.tenant_id, event_id=other_event.id, name="Stray")
        db_session.add(stray_team)
        await db_session.commit()
        stray_team_id = stray_team.id

        with pytest.raises(BadRequestError) as exc:
            await evaluation_service.create_phase_evaluation(
                db_session, callers.evaluator, seed.event_id, seed.phase_1_id, stray_team_id,
                PhaseEvaluationCreate(comment="x")
            )
        assert exc.value.code == ErrorCode.TEAM_EVENT_MISMATCH

    async def test_phase_of_other_event_not_found(self, db_session, seed, callers):
        with pytest.raises(NotFoundError):
            await evaluation_service.create_phase_evaluation(
                db_session, callers.evaluator, 9999, seed.phase_1_id, seed.team_a_id,
                PhaseEvaluationCreate(comment="x")
            )

    async def test_final_phase_evaluation_notifies_team(self, db_session, seed, callers):
        await evaluation_service.create_phase_evaluation(
            db_session, callers.evaluator, seed.event_id, seed.phase_1_id, seed.team_b_id,
            PhaseEvaluationCreate(score=70, comment="Done", status=EvaluationStatus.final)
        )

        result = await db_session.execute(select(Notification.user_id))
        assert result.scalars().all() == [seed.user_ids["captain_b"]]


# =============================================================================
# Project scope
# =============================================================================

class TestProjectEvaluation:

    async def test_prerequisite_names_first_missing_phase(self, db_session, seed, callers):
        with pytest.raises(BadRequestError) as exc:
            await evaluation_service.create_project_evaluation(
                db_session, callers.evaluator, seed.event_id, seed.project_a_id,
                ProjectEvaluationCreate(score=90, comment="Great project")
            )

        assert exc.value.code == ErrorCode.PREREQUISITE_NOT_MET
        assert "Ideation" in exc.value.message
        assert exc.value.details["phase_id"] == seed.phase_1_id

    async def test_draft_phase_evaluation_does_not_count(self, db_session, seed, callers, make_evaluation):
        await make_evaluation(seed.phase_1_id, seed.team_a_id, status=EvaluationStatus.draft)
        await make_evaluation(seed.phase_2_id, seed.team_a_id)

        with pytest.raises(BadRequestError) as exc:
            await evaluation_service.create_project_evaluation(
                db_session, callers.evaluator, seed.event_id, seed.project_a_id,
                ProjectEvaluationCreate(comment="x")
            )
        assert exc.value.details["phase_name"] == "Ideation"

    async def test_other_teams_phase_evaluation_does_not_count(self, db_session, seed, callers, make_evaluation):
        await make_evaluation(seed.phase_1_id, seed.team_b_id)
        await make_evaluation(seed.phase_2_id, seed.team_b_id)

        with pytest.raises(BadRequestError):
            await evaluation_service.create_project_evaluation(
                db_session, callers.evaluator, seed.event_id, seed.project_a_id,
                ProjectEvaluationCreate(comment="x")
            )

    async def test_succeeds_once_every_gated_phase_is_final(self, db_session, seed, callers, make_evaluation):
        await make_evaluation(seed.phase_1_id, seed.team_a_id)

        with pytest.raises(BadRequestError) as exc:
            await evaluation_service.create_project_evaluation(
                db_session, callers.evaluator, seed.event_id, seed.project_a_id,
                ProjectEvaluationCreate(score=90, comment="Great project")
            )
        assert exc.value.details["phase_name"] == "Prototype"

        await make_evaluation(seed.phase_2_id, seed.team_a_id)
        evaluation = await evaluation_service.create_project_evaluation(
            db_session, callers.evaluator, seed.event_id, seed.project_a_id,
            ProjectEvaluationCreate(score=90, comment="Great project")
        )

        assert evaluation.evaluation_scope == EvaluationScope.project
        assert evaluation.project_id == seed.project_a_id
        assert evaluation.team_id == seed.team_a_id
        assert _scopes_populated(evaluation) == 1

    async def test_phase_without_required_tasks_is_not_gated(self, db_session, seed, callers, make_evaluation):
        pitch = (await db_session.execute(select(Task).where(Task.id == seed.task_pitch_id))).scalar_one()
        pitch.is_required = False
        await db_session.commit()
        await make_evaluation(seed.phase_1_id, seed.team_a_id)

        evaluation = await evaluation_service.create_project_evaluation(
            db_session, callers.evaluator, seed.event_id, seed.project_a_id,
            ProjectEvaluationCreate(comment="Only ideation mattered")
        )

        assert evaluation.id is not None

    async def test_cited_submissions_must_belong_to_team(self, db_session, seed, callers, make_evaluation, make_submission):
        await make_evaluation(seed.phase_1_id, seed.team_a_id)
        await make_evaluation(seed.phase_2_id, seed.team_a_id)
        foreign = await make_submission(seed.team_b_id, seed.task_pitch_id)

        with pytest.raises(BadRequestError) as exc:
            await evaluation_service.create_project_evaluation(
                db_session, callers.evaluator, seed.event_id, seed.project_a_id,
                ProjectEvaluationCreate(comment="x", submission_ids=[foreign])
            )
        assert exc.value.code == ErrorCode.SUBMISSIONS_MISMATCH

    async def test_unknown_project(self, db_session, seed, callers):
        with pytest.raises(NotFoundError):
            await evaluation_service.create_project_evaluation(
                db_session, callers.evaluator, seed.event_id, 9999, ProjectEvaluationCreate(comment="x")
            )


# =============================================================================
# Update
# =============================================================================

class TestUpdateEvaluation:

    async def _draft(self, db_session, seed, callers, make_submission, **kwargs):
        submission_id = await make_submission(seed.team_a_id, seed.task_text_id)
        evaluation = await evaluation_service.create_submission_evaluation(
            db_session, callers.evaluator, submission_id,
            EvaluationCreate(**{"score": 5, "comment": "First pass", **kwargs})
        )
        return evaluation.id

    async def test_finalize_notifies_each_member_once(self, db_session, seed, callers, make_submission):
        evaluation_id = await self._draft(db_session, seed, callers, make_submission)

        await evaluation_service.update_evaluation(
            db_session, callers.evaluator, evaluation_id, EvaluationUpdate(status=EvaluationStatus.final)
        )
        assert await _count(db_session, Notification) == 2

        await evaluation_service.update_evaluation(
            db_session, callers.evaluator, evaluation_id, EvaluationUpdate(status=EvaluationStatus.final)
        )
        assert await _count(db_session, Notification) == 2

    async def test_omitted_comment_is_unchanged(self, db_session, seed, callers, make_submission):
        evaluation_id = await self._draft(db_session, seed, callers, make_submission)

        evaluation = await evaluation_service.update_evaluation(
            db_session, callers.evaluator, evaluation_id, EvaluationUpdate(score=9)
        )

        assert evaluation.comment == "First pass"
        assert float(evaluation.score) == 9

    async def test_explicit_null_score_clears_it(self, db_session, seed, callers, make_submission):
        evaluation_id = await self._draft(db_session, seed, callers, make_submission)

        evaluation = await evaluation_service.update_evaluation(
            db_session, callers.evaluator, evaluation_id, EvaluationUpdate(score=None)
        )

        assert evaluation.score is None

    async def test_blank_comment_rejected(self, db_session, seed, callers, make_submission):
        evaluation_id = await self._draft(db_session, seed, callers, make_submission)

        with pytest.raises(BadRequestError):
            await evaluation_service.update_evaluation(
                db_session, callers.evaluator, evaluation_id, EvaluationUpdate(comment=" ")
            )

        stored = await db_session.execute(select(Evaluation.comment).where(Evaluation.id == evaluation_id))
        assert stored.scalar_one() == "First pass"

    async def test_score_range_follows_scope(self, db_session, seed, callers, make_submission, make_evaluation):
        submission_eval = await self._draft(db_session, seed, callers, make_submission)
        phase_eval = await make_evaluation(seed.phase_1_id, seed.team_a_id, status=EvaluationStatus.draft)

        with pytest.raises(BadRequestError):
            await evaluation_service.update_evaluation(
                db_session, callers.evaluator, submission_eval, EvaluationUpdate(score=55)
            )
        updated = await evaluation_service.update_evaluation(
            db_session, callers.evaluator, phase_eval, EvaluationUpdate(score=55)
        )
        assert float(updated.score) == 55

    async def test_phase_finalize_notifies_team(self, db_session, seed, callers, make_evaluation):
        phase_eval = await make_evaluation(seed.phase_1_id, seed.team_a_id, status=EvaluationStatus.draft)

        await evaluation_service.update_evaluation(
            db_session, callers.evaluator, phase_eval, EvaluationUpdate(status=EvaluationStatus.final)
        )

        assert await _count(db_session, Notification) == 2

    async def test_stale_expected_status_conflicts(self, db_session, seed, callers, make_submission):
        evaluation_id = await self._draft(db_session, seed, callers, make_submission, status=EvaluationStatus.final)

        with pytest.raises(ConflictError) as exc:
            await evaluation_service.update_evaluation(
                db_session, callers.evaluator, evaluation_id,
                EvaluationUpdate(comment="Second pass", expected_status=EvaluationStatus.draft)
            )

        assert exc.value.code == ErrorCode.STALE_STATUS
        stored = await db_session.execute(select(Evaluation.comment).where(Evaluation.id == evaluation_id))
        assert stored.scalar_one() == "First pass"

    async def test_matching_expected_status_applies(self, db_session, seed, callers, make_submission):
        evaluation_id = await self._draft(db_session, seed, callers, make_submission)

        evaluation = await evaluation_service.update_evaluation(
            db_session, callers.evaluator, evaluation_id,
            EvaluationUpdate(status=EvaluationStatus.final, expected_status=EvaluationStatus.draft)
        )

        assert evaluation.status == EvaluationStatus.final

    async def test_expected_status_ignored_when_flag_off(self, db_session, seed, callers, make_submission, monkeypatch):
        monkeypatch.setattr(settings, "FEATURE_EVALUATION_VERSION_CHECK", False)
        evaluation_id = await self._draft(db_session, seed, callers, make_submission, status=EvaluationStatus.final)

        evaluation = await evaluation_service.update_evaluation(
            db_session, callers.evaluator, evaluation_id,
            EvaluationUpdate(comment="Second pass", expected_status=EvaluationStatus.draft)
        )

        assert evaluation.comment == "Second pass"

    async def test_missing_evaluation(self, db_session, seed, callers):
        with pytest.raises(NotFoundError):
            await evaluation_service.update_evaluation(
                db_session, callers.evaluator, 9999, EvaluationUpdate(score=1)
            )


# =============================================================================
# Reads
# =============================================================================

class TestReadPaths:

    async def test_final_evaluation_is_latest_final(self, db_session, seed, callers, make_submission):
        submission_id = await make_submission(seed.team_a_id, seed.task_text_id)
        older = await evaluation_service.create_submission_evaluation(
            db_session, callers.evaluator, submission_id,
            EvaluationCreate(score=6, comment="v1", status=EvaluationStatus.final)
        )
        older.created_at = utcnow() - timedelta(hours=1)
        await db_session.commit()
        newer = await evaluation_service.create_submission_evaluation(
            db_session, callers.mentor, submission_id,
            EvaluationCreate(score=9, comment="v2", status=EvaluationStatus.final)
        )
        await evaluation_service.create_submission_evaluation(
            db_session, callers.mentor, submission_id, EvaluationCreate(score=1, comment="draft")
        )

        final = await evaluation_service.get_final_submission_evaluation(db_session, callers.member, submission_id)

        assert final.id == newer.id

    async def test_no_final_evaluation_is_not_found(self, db_session, seed, callers, make_submission):
        submission_id = await make_submission(seed.team_a_id, seed.task_text_id)

        with pytest.raises(NotFoundError):
            await evaluation_service.get_final_submission_evaluation(db_session, callers.captain, submission_id)

    async def test_other_team_cannot_read(self, db_session, seed, callers, make_submission):
        submission_id = await make_submission(seed.team_a_id, seed.task_text_id)

        with pytest.raises(ForbiddenError):
            await evaluation_service.list_submission_evaluations(db_session, callers.captain_b, submission_id)

    async def test_list_phase_evaluations_for_member(self, db_session, seed, callers, make_evaluation):
        own = await make_evaluation(seed.phase_1_id, seed.team_a_id)
        await make_evaluation(seed.phase_1_id, seed.team_b_id)

        evaluations = await evaluation_service.list_phase_evaluations(
            db_session, callers.member, seed.event_id, seed.phase_1_id, seed.team_a_id
        )

        assert [e.id for e in evaluations] == [own]

    async def test_list_phase_evaluations_outsider_forbidden(self, db_session, seed, callers):
        with pytest.raises(ForbiddenError):
            await evaluation_service.list_phase_evaluations(
                db_session, callers.outsider, seed.event_id, seed.phase_1_id, seed.team_a_id
            )

    async def test_list_project_evaluations(self, db_session, seed, callers, make_evaluation):
        await make_evaluation(seed.phase_1_id, seed.team_a_id)
        await make_evaluation(seed.phase_2_id, seed.team_a_id)
        created = await evaluation_service.create_project_evaluation(
            db_session, callers.evaluator, seed.event_id, seed.project_a_id,
            ProjectEvaluationCreate(score=88, comment="Solid", status=EvaluationStatus.final)
        )

        evaluations = await evaluation_service.list_project_evaluations(
            db_session, callers.captain, seed.event_id, seed.project_a_id
        )

        assert [e.id for e in evaluations] == [created.id]
