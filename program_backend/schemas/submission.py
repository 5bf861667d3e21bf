"""
Submission request schemas
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from program_backend.orm.submission import SubmissionStatus, SubmissionType


class SubmissionFileInput(BaseModel):
    """Metadata of a file that was already uploaded to storage."""
    url: str = Field(..., min_length=1, max_length=1000)
    storage_key: Optional[str] = Field(None, max_length=500)
    mime_type: Optional[str] = Field(None, max_length=150)
    size_bytes: Optional[int] = Field(None, ge=0)
    original_name: Optional[str] = Field(None, max_length=255)
    checksum: Optional[str] = Field(None, max_length=64, description="sha256 hex digest")


class SubmissionCreate(BaseModel):
    team_id: Optional[int] = Field(None, description="Required when a manager submits on behalf of a team")
    status: Optional[SubmissionStatus] = None
    type: Optional[SubmissionType] = None
    content: Optional[str] = None
    attachment_url: Optional[str] = Field(None, max_length=500)
    files: List[SubmissionFileInput] = Field(default_factory=list)
