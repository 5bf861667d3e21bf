"""
program_backend/orm/tenant.py
Tenant (organization) that owns events, teams and every scored record
"""
from sqlalchemy import Column, String, Boolean

from program_backend.orm.base import BaseModel, isoformat


class Tenant(BaseModel):
    __tablename__ = "tenants"

    name = Column(String(255), nullable=False)
    slug = Column(String(100), nullable=False, unique=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<Tenant(id={self.id}, slug='{self.slug}')>"

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "created_at": isoformat(self.created_at),
        }
