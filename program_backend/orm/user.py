"""
program_backend/orm/user.py
Platform users and their role scopes inside each tenant

A user can hold several scopes in the same tenant (e.g. organizer and
evaluator). Super admins bypass tenant role checks entirely.
"""
from enum import Enum

from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, Enum as SQLEnum, UniqueConstraint

from program_backend.orm.base import BaseModel, isoformat


class RoleScope(str, Enum):
    """Role scopes a user can hold within a tenant"""
    tenant_admin = "tenant_admin"
    organizer = "organizer"
    evaluator = "evaluator"
    mentor = "mentor"
    participant = "participant"
    team_captain = "team_captain"


class User(BaseModel):
    __tablename__ = "users"

    email = Column(String(255), nullable=False, unique=True, index=True)
    first_name = Column(String(150), nullable=False)
    last_name = Column(String(150), nullable=True)
    is_super_admin = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}')>"

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "is_super_admin": self.is_super_admin,
            "created_at": isoformat(self.created_at),
        }


class UserTenantRole(BaseModel):
    __tablename__ = "user_tenant_roles"
    __table_args__ = (
        UniqueConstraint("user_id", "tenant_id", "scope", name="uq_user_tenant_scope"),
    )

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    scope = Column(SQLEnum(RoleScope), nullable=False)

    def __repr__(self):
        return f"<UserTenantRole(user={self.user_id}, tenant={self.tenant_id}, scope={self.scope})>"
