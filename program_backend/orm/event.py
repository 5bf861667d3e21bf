"""
program_backend/orm/event.py
Events, their ordered phases and tasks, and participant registrations

Event -> Phase (order_index) -> Task (order_index)
Tasks carry the delivery rules that submissions are validated against.
"""
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, Float, ForeignKey, Index,
    Enum as SQLEnum
)

from program_backend.orm.base import BaseModel, UniversalJSON, isoformat


class DeliveryType(str, PyEnum):
    """How a task's deliverable is handed in"""
    text = "text"
    file = "file"
    url = "url"
    video = "video"
    audio = "audio"
    zip = "zip"
    none = "none"


# Delivery types that accept attached files
FILE_DELIVERY_TYPES = {DeliveryType.file, DeliveryType.zip, DeliveryType.audio, DeliveryType.video}


class RegistrationStatus(str, PyEnum):
    registered = "registered"
    cancelled = "cancelled"


class Event(BaseModel):
    """
    A program run by a tenant.

    registration_schema holds the custom registration form:
    {"fields": [{"name": "...", "label": "...", "type": "..."}]}
    The ai_evaluation_* columns override the global AI settings per event.
    """
    __tablename__ = "events"

    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    registration_schema = Column(UniversalJSON, nullable=True)

    ai_evaluation_prompt = Column(Text, nullable=True)
    ai_evaluation_model = Column(String(100), nullable=True)
    ai_evaluation_temperature = Column(Float, nullable=True)
    ai_evaluation_max_tokens = Column(Integer, nullable=True)

    def __repr__(self):
        return f"<Event(id={self.id}, name='{self.name}')>"

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "start_date": isoformat(self.start_date),
            "end_date": isoformat(self.end_date),
            "created_at": isoformat(self.created_at),
        }


class Phase(BaseModel):
    __tablename__ = "phases"
    __table_args__ = (
        Index("idx_phase_event_order", "event_id", "order_index"),
    )

    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    order_index = Column(Integer, default=0, nullable=False)

    def __repr__(self):
        return f"<Phase(id={self.id}, event={self.event_id}, name='{self.name}')>"

    def to_dict(self):
        return {
            "id": self.id,
            "event_id": self.event_id,
            "name": self.name,
            "description": self.description,
            "order_index": self.order_index,
        }


class Task(BaseModel):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("idx_task_phase_order", "phase_id", "order_index"),
    )

    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    phase_id = Column(Integer, ForeignKey("phases.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    delivery_type = Column(SQLEnum(DeliveryType), default=DeliveryType.text, nullable=False)
    is_required = Column(Boolean, default=True, nullable=False)
    order_index = Column(Integer, default=0, nullable=False)
    due_date = Column(DateTime, nullable=True)

    phase_rubric_id = Column(
        Integer,
        ForeignKey("phase_rubrics.id", ondelete="SET NULL"),
        nullable=True
    )

    # File delivery constraints
    max_files = Column(Integer, default=1, nullable=False)
    max_file_size_mb = Column(Integer, nullable=True)
    allowed_mime_types = Column(UniversalJSON, nullable=True)

    def __repr__(self):
        return f"<Task(id={self.id}, phase={self.phase_id}, title='{self.title}')>"

    def to_dict(self):
        return {
            "id": self.id,
            "event_id": self.event_id,
            "phase_id": self.phase_id,
            "title": self.title,
            "description": self.description,
            "delivery_type": self.delivery_type.value if self.delivery_type else None,
            "is_required": self.is_required,
            "order_index": self.order_index,
            "phase_rubric_id": self.phase_rubric_id,
            "max_files": self.max_files,
            "max_file_size_mb": self.max_file_size_mb,
            "allowed_mime_types": self.allowed_mime_types,
            "due_date": isoformat(self.due_date),
        }


class EventRegistration(BaseModel):
    __tablename__ = "event_registrations"
    __table_args__ = (
        Index("idx_registration_event_user", "event_id", "user_id", unique=True),
    )

    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    grade = Column(String(100), nullable=True)
    answers = Column(UniversalJSON, nullable=True)
    status = Column(SQLEnum(RegistrationStatus), default=RegistrationStatus.registered, nullable=False)

    def __repr__(self):
        return f"<EventRegistration(event={self.event_id}, user={self.user_id}, status={self.status})>"
