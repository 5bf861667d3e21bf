"""
program_backend/orm/team.py
Teams competing in an event, their members and the project they build
Each team belongs to exactly one event and one tenant.
"""
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, Text, ForeignKey, Index, Enum as SQLEnum

from program_backend.orm.base import BaseModel, isoformat


class TeamMemberRole(str, PyEnum):
    """Team-level roles (separate from tenant role scopes)"""
    captain = "captain"
    member = "member"
    mentor = "mentor"


class ProjectStatus(str, PyEnum):
    draft = "draft"
    active = "active"
    completed = "completed"


class Team(BaseModel):
    __tablename__ = "teams"
    __table_args__ = (
        Index("idx_team_event_name", "event_id", "name"),
    )

    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    captain_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    def __repr__(self):
        return f"<Team(id={self.id}, name='{self.name}', event={self.event_id})>"

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "event_id": self.event_id,
            "name": self.name,
            "description": self.description,
            "captain_id": self.captain_id,
            "created_at": isoformat(self.created_at),
        }


class TeamMember(BaseModel):
    __tablename__ = "team_members"
    __table_args__ = (
        Index("idx_team_member_unique", "team_id", "user_id", unique=True),
    )

    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(SQLEnum(TeamMemberRole), default=TeamMemberRole.member, nullable=False)

    def __repr__(self):
        return f"<TeamMember(team={self.team_id}, user={self.user_id}, role={self.role})>"

    def to_dict(self):
        return {
            "id": self.id,
            "team_id": self.team_id,
            "user_id": self.user_id,
            "role": self.role.value if self.role else None,
        }


class Project(BaseModel):
    __tablename__ = "projects"

    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    summary = Column(Text, nullable=True)
    status = Column(SQLEnum(ProjectStatus), default=ProjectStatus.draft, nullable=False)

    def __repr__(self):
        return f"<Project(id={self.id}, team={self.team_id}, name='{self.name}')>"

    def to_dict(self):
        return {
            "id": self.id,
            "event_id": self.event_id,
            "team_id": self.team_id,
            "name": self.name,
            "summary": self.summary,
            "status": self.status.value if self.status else None,
        }
