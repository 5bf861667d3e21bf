"""
program_backend/orm/evaluation.py
Scored feedback on a submission, a phase (for a team) or a whole project

Exactly one scope is populated per row:
- submission: submission_id
- phase:      phase_id + team_id (evaluated_submission_ids lists what was considered)
- project:    project_id + team_id
"""
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, Integer, Text, Numeric, ForeignKey, Index, CheckConstraint, Enum as SQLEnum
)

from program_backend.orm.base import BaseModel, UniversalJSON, isoformat


class EvaluationScope(str, PyEnum):
    submission = "submission"
    phase = "phase"
    project = "project"


class EvaluationStatus(str, PyEnum):
    draft = "draft"
    final = "final"


class EvaluationSource(str, PyEnum):
    manual = "manual"
    ai_assisted = "ai_assisted"


class Evaluation(BaseModel):
    __tablename__ = "evaluations"
    __table_args__ = (
        CheckConstraint(
            "(evaluation_scope = 'submission' AND submission_id IS NOT NULL "
            "AND phase_id IS NULL AND project_id IS NULL) OR "
            "(evaluation_scope = 'phase' AND phase_id IS NOT NULL AND team_id IS NOT NULL "
            "AND submission_id IS NULL AND project_id IS NULL) OR "
            "(evaluation_scope = 'project' AND project_id IS NOT NULL AND team_id IS NOT NULL "
            "AND submission_id IS NULL AND phase_id IS NULL)",
            name="ck_evaluation_single_scope"
        ),
        Index("idx_evaluation_submission", "submission_id", "status"),
        Index("idx_evaluation_phase_team", "phase_id", "team_id", "status"),
        Index("idx_evaluation_project_team", "project_id", "team_id"),
    )

    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    evaluation_scope = Column(SQLEnum(EvaluationScope), default=EvaluationScope.submission, nullable=False)

    submission_id = Column(Integer, ForeignKey("submissions.id", ondelete="CASCADE"), nullable=True)
    phase_id = Column(Integer, ForeignKey("phases.id", ondelete="CASCADE"), nullable=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=True)
    evaluated_submission_ids = Column(UniversalJSON, nullable=True)

    reviewer_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    score = Column(Numeric(5, 2), nullable=True)
    comment = Column(Text, nullable=False)
    status = Column(SQLEnum(EvaluationStatus), default=EvaluationStatus.draft, nullable=False)
    source = Column(SQLEnum(EvaluationSource), default=EvaluationSource.manual, nullable=False)

    rubric_snapshot = Column(UniversalJSON, nullable=True)
    # "metadata" is reserved on declarative classes
    evaluation_metadata = Column("metadata", UniversalJSON, nullable=True)

    def __repr__(self):
        return (
            f"<Evaluation(id={self.id}, scope={self.evaluation_scope}, "
            f"status={self.status}, score={self.score})>"
        )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "evaluation_scope": self.evaluation_scope.value if self.evaluation_scope else None,
            "submission_id": self.submission_id,
            "phase_id": self.phase_id,
            "project_id": self.project_id,
            "team_id": self.team_id,
            "evaluated_submission_ids": self.evaluated_submission_ids,
            "reviewer_id": self.reviewer_id,
            "score": float(self.score) if self.score is not None else None,
            "comment": self.comment,
            "status": self.status.value if self.status else None,
            "source": self.source.value if self.source else None,
            "rubric_snapshot": self.rubric_snapshot,
            "metadata": self.evaluation_metadata,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
