"""
Rubric request schemas
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from program_backend.orm.rubric import RubricScope


class CriterionInput(BaseModel):
    """One weighted criterion. Order defaults to its position in the list."""
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    weight: Optional[float] = Field(None, ge=0, description="Relative weight, defaults to 1")
    max_score: Optional[float] = Field(None, ge=0, description="Ceiling, defaults to the rubric scale")
    order_index: Optional[int] = None


class RubricCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    rubric_scope: Optional[RubricScope] = None
    phase_id: Optional[int] = None
    scale_min: Optional[float] = None
    scale_max: Optional[float] = None
    model_preference: Optional[str] = Field(None, max_length=100)
    criteria: List[CriterionInput] = Field(default_factory=list)


class RubricUpdate(BaseModel):
    """Partial update. A supplied criteria list replaces every existing criterion."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    rubric_scope: Optional[RubricScope] = None
    phase_id: Optional[int] = None
    scale_min: Optional[float] = None
    scale_max: Optional[float] = None
    model_preference: Optional[str] = Field(None, max_length=100)
    criteria: Optional[List[CriterionInput]] = None
