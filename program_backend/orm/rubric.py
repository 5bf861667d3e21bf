"""
program_backend/orm/rubric.py
Scoring rubrics and their weighted criteria

A rubric belongs to an event and is scoped either to one phase
(rubric_scope = phase, phase_id set) or to the whole project
(rubric_scope = project, phase_id NULL).

Criteria are owned by the rubric as an ordered value list: an update
replaces the whole list, so criterion ids are not stable across edits.
Evaluations keep a rubric_snapshot copy instead of referencing them.
"""
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, Text, Numeric, ForeignKey, Index, Enum as SQLEnum
from sqlalchemy.orm import relationship

from program_backend.orm.base import BaseModel, isoformat


class RubricScope(str, PyEnum):
    phase = "phase"
    project = "project"


def _number(value):
    return float(value) if value is not None else None


class PhaseRubric(BaseModel):
    __tablename__ = "phase_rubrics"
    __table_args__ = (
        Index("idx_rubric_event_phase", "event_id", "phase_id"),
    )

    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    phase_id = Column(Integer, ForeignKey("phases.id", ondelete="CASCADE"), nullable=True)
    rubric_scope = Column(SQLEnum(RubricScope), default=RubricScope.phase, nullable=False)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    scale_min = Column(Numeric(6, 2), default=0, nullable=False)
    scale_max = Column(Numeric(6, 2), default=100, nullable=False)
    model_preference = Column(String(100), nullable=True)

    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    criteria = relationship(
        "PhaseRubricCriterion",
        back_populates="rubric",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="PhaseRubricCriterion.order_index"
    )

    def sorted_criteria(self):
        """Criteria by order_index, ties broken by insertion (id)."""
        return sorted(
            self.criteria,
            key=lambda c: (c.order_index if c.order_index is not None else 0, c.id or 0)
        )

    def __repr__(self):
        return f"<PhaseRubric(id={self.id}, scope={self.rubric_scope}, phase={self.phase_id})>"

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "event_id": self.event_id,
            "phase_id": self.phase_id,
            "rubric_scope": self.rubric_scope.value if self.rubric_scope else None,
            "name": self.name,
            "description": self.description,
            "scale_min": _number(self.scale_min),
            "scale_max": _number(self.scale_max),
            "model_preference": self.model_preference,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "criteria": [criterion.to_dict() for criterion in self.sorted_criteria()],
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }


class PhaseRubricCriterion(BaseModel):
    __tablename__ = "phase_rubric_criteria"

    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    rubric_id = Column(Integer, ForeignKey("phase_rubrics.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    weight = Column(Numeric(6, 2), default=1, nullable=False)
    max_score = Column(Numeric(6, 2), nullable=True)
    order_index = Column(Integer, default=1, nullable=False)

    rubric = relationship("PhaseRubric", back_populates="criteria")

    def __repr__(self):
        return f"<PhaseRubricCriterion(id={self.id}, rubric={self.rubric_id}, order={self.order_index})>"

    def to_dict(self):
        return {
            "id": self.id,
            "rubric_id": self.rubric_id,
            "title": self.title,
            "description": self.description,
            "weight": _number(self.weight),
            "max_score": _number(self.max_score),
            "order_index": self.order_index,
        }
