"""
Evaluation request schemas

score and comment are validated by the evaluation service, not here,
so that bad values come back as 400 with a specific error code.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from program_backend.orm.evaluation import EvaluationSource, EvaluationStatus

ScoreInput = Any


class EvaluationCreate(BaseModel):
    score: ScoreInput = None
    comment: Optional[str] = None
    status: Optional[EvaluationStatus] = None
    source: Optional[EvaluationSource] = None
    rubric_snapshot: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None


class PhaseEvaluationCreate(EvaluationCreate):
    submission_ids: Optional[List[int]] = Field(None, description="Submissions the evaluation is based on")


class ProjectEvaluationCreate(EvaluationCreate):
    submission_ids: Optional[List[int]] = None


class AIEvaluationRequest(BaseModel):
    locale: Optional[str] = Field(None, max_length=20)


class MultiSubmissionAIEvaluationRequest(AIEvaluationRequest):
    submission_ids: Optional[List[int]] = Field(
        None, description="Defaults to the latest final submission of every task"
    )


class EvaluationUpdate(BaseModel):
    """Partial update: only fields present in the request body are applied."""
    score: ScoreInput = None
    comment: Optional[str] = None
    status: Optional[EvaluationStatus] = None
    rubric_snapshot: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    expected_status: Optional[EvaluationStatus] = Field(
        None, description="Reject the update with 409 if the stored status differs"
    )
