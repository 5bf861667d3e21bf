"""
program_backend/orm/submission.py
Team deliverables submitted against tasks, with attached file metadata

There is no "current submission" pointer: the deliverable of a team for
a task is always recomputed as the final submission with the latest
submitted_at.
"""
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, DateTime, Text, BigInteger, ForeignKey, Index, Enum as SQLEnum
from sqlalchemy.orm import relationship

from program_backend.orm.base import BaseModel, isoformat, utcnow


class SubmissionStatus(str, PyEnum):
    """Submission lifecycle status"""
    draft = "draft"
    final = "final"


class SubmissionType(str, PyEnum):
    provisional = "provisional"
    final = "final"


class Submission(BaseModel):
    __tablename__ = "submissions"
    __table_args__ = (
        Index("idx_submission_task_team", "task_id", "team_id"),
        Index("idx_submission_event_status", "event_id", "status"),
    )

    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    submitted_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    status = Column(SQLEnum(SubmissionStatus), default=SubmissionStatus.draft, nullable=False)
    type = Column(SQLEnum(SubmissionType), default=SubmissionType.provisional, nullable=False)
    content = Column(Text, nullable=True)
    attachment_url = Column(String(500), nullable=True)
    submitted_at = Column(DateTime, default=utcnow, nullable=True)

    files = relationship(
        "SubmissionFile",
        back_populates="submission",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="SubmissionFile.id"
    )

    def __repr__(self):
        return f"<Submission(id={self.id}, task={self.task_id}, team={self.team_id}, status={self.status})>"

    def to_dict(self, include_files=True):
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "event_id": self.event_id,
            "task_id": self.task_id,
            "team_id": self.team_id,
            "submitted_by": self.submitted_by,
            "status": self.status.value if self.status else None,
            "type": self.type.value if self.type else None,
            "content": self.content,
            "attachment_url": self.attachment_url,
            "submitted_at": isoformat(self.submitted_at),
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
        if include_files:
            data["files"] = [f.to_dict() for f in self.files]
        return data


class SubmissionFile(BaseModel):
    """Metadata for a stored attachment (upload itself happens elsewhere)."""
    __tablename__ = "submission_files"

    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    submission_id = Column(Integer, ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False, index=True)
    url = Column(String(1000), nullable=False)
    storage_key = Column(String(500), nullable=True)
    mime_type = Column(String(150), nullable=True)
    size_bytes = Column(BigInteger, nullable=True)
    original_name = Column(String(255), nullable=True)
    checksum = Column(String(64), nullable=True)  # sha256 hex

    submission = relationship("Submission", back_populates="files")

    def __repr__(self):
        return f"<SubmissionFile(id={self.id}, submission={self.submission_id})>"

    def to_dict(self):
        return {
            "id": self.id,
            "url": self.url,
            "storage_key": self.storage_key,
            "mime_type": self.mime_type,
            "size_bytes": self.size_bytes,
            "original_name": self.original_name,
            "checksum": self.checksum,
        }
