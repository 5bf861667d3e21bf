"""
program_backend/rbac.py
Caller context and role checks

Tokens are issued by the platform's auth service; this module only
verifies them. The caller's tenant comes from the X-Tenant-ID header
(falling back to the token's tenant_id claim) and their role scopes are
loaded for that tenant.

Reviewer: super admin, tenant_admin, organizer, evaluator or mentor.
Manager:  super admin, tenant_admin or organizer.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Set

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from program_backend.config.settings import settings
from program_backend.database import get_db
from program_backend.errors import ErrorCode, ForbiddenError, UnauthorizedError
from program_backend.orm.team import Team, TeamMember
from program_backend.orm.user import RoleScope, User, UserTenantRole

logger = logging.getLogger(__name__)

# ================= CONFIG =================

ACCESS_TOKEN_EXPIRE_MINUTES = 60
TENANT_HEADER = "X-Tenant-ID"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

REVIEWER_SCOPES = {RoleScope.tenant_admin, RoleScope.organizer, RoleScope.evaluator, RoleScope.mentor}
MANAGER_SCOPES = {RoleScope.tenant_admin, RoleScope.organizer}


@dataclass
class CallerContext:
    """Who is calling, in which tenant, with which role scopes."""
    user_id: int
    tenant_id: Optional[int]
    role_scopes: Set[str] = field(default_factory=set)
    is_super_admin: bool = False


# ================= TOKEN UTILS =================

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Mint an access token (used by tooling and tests)."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({
        "exp": expire,
        "type": "access"
    })
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate JWT token"""
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


def _parse_int(value) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# ================= AUTH DEPENDENCIES =================

async def get_current_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> CallerContext:
    """
    Build the caller context from the bearer token.
    Returns 401 if token is missing, invalid or expired.
    """
    if not token:
        raise UnauthorizedError()

    payload = decode_token(token)
    if not payload or payload.get("type") != "access":
        raise UnauthorizedError("Invalid or expired token", ErrorCode.AUTH_INVALID)

    user_id = _parse_int(payload.get("sub"))
    if user_id is None:
        raise UnauthorizedError("Invalid or expired token", ErrorCode.AUTH_INVALID)

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user or not user.is_active:
        raise UnauthorizedError("Invalid or expired token", ErrorCode.AUTH_INVALID)

    tenant_id = _parse_int(request.headers.get(TENANT_HEADER))
    if tenant_id is None:
        tenant_id = _parse_int(payload.get("tenant_id"))

    role_scopes = set()
    if tenant_id is not None:
        result = await db.execute(
            select(UserTenantRole.scope).where(
                UserTenantRole.user_id == user.id,
                UserTenantRole.tenant_id == tenant_id
            )
        )
        role_scopes = set(result.scalars().all())

    return CallerContext(
        user_id=user.id,
        tenant_id=tenant_id,
        role_scopes=role_scopes,
        is_super_admin=bool(user.is_super_admin),
    )


# ================= ROLE CHECKS =================

def is_reviewer(caller: CallerContext) -> bool:
    return caller.is_super_admin or bool(caller.role_scopes & REVIEWER_SCOPES)


def is_manager(caller: CallerContext) -> bool:
    return caller.is_super_admin or bool(caller.role_scopes & MANAGER_SCOPES)


def require_reviewer(caller: CallerContext, action: str = "evaluate") -> None:
    if not is_reviewer(caller):
        logger.warning(f"Access denied: user {caller.user_id} is not a reviewer (action={action})")
        raise ForbiddenError(f"Reviewer role required to {action}")


def require_manager(caller: CallerContext, action: str = "manage") -> None:
    if not is_manager(caller):
        logger.warning(f"Access denied: user {caller.user_id} is not a manager (action={action})")
        raise ForbiddenError(f"Manager role required to {action}")


# ================= TEAM MEMBERSHIP =================

async def find_membership(db: AsyncSession, user_id: int, event_id: int) -> Optional[TeamMember]:
    """The caller's team membership within an event, if any."""
    result = await db.execute(
        select(TeamMember)
        .join(Team, Team.id == TeamMember.team_id)
        .where(TeamMember.user_id == user_id, Team.event_id == event_id)
        .order_by(TeamMember.id)
    )
    return result.scalars().first()


async def is_team_member(db: AsyncSession, user_id: int, team_id: int) -> bool:
    result = await db.execute(
        select(TeamMember.id).where(TeamMember.team_id == team_id, TeamMember.user_id == user_id)
    )
    return result.first() is not None


async def can_view_team(db: AsyncSession, caller: CallerContext, team_id: Optional[int]) -> bool:
    """Reviewers see every team; anyone else only the team they belong to."""
    if is_reviewer(caller):
        return True
    if team_id is None:
        return False
    return await is_team_member(db, caller.user_id, team_id)


async def ensure_can_view_team(db: AsyncSession, caller: CallerContext, team_id: Optional[int]) -> None:
    if not await can_view_team(db, caller, team_id):
        logger.warning(f"Access denied: user {caller.user_id} cannot view team {team_id}")
        raise ForbiddenError("Not authorized to view this team", ErrorCode.NOT_TEAM_MEMBER)
