"""
program_backend/orm/notification.py
In-app notifications delivered to individual users
"""
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, Boolean, Text, ForeignKey, Index, Enum as SQLEnum

from program_backend.orm.base import BaseModel, isoformat


class NotificationType(str, PyEnum):
    system = "system"
    evaluation = "evaluation"
    reminder = "reminder"


class Notification(BaseModel):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notification_user_read", "user_id", "is_read"),
    )

    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(SQLEnum(NotificationType), default=NotificationType.system, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)

    def __repr__(self):
        return f"<Notification(id={self.id}, user={self.user_id}, type={self.type})>"

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "message": self.message,
            "type": self.type.value if self.type else None,
            "is_read": self.is_read,
            "created_at": isoformat(self.created_at),
        }
