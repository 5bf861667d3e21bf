"""
Team notifications

Rows are added to the caller's session; the caller owns the commit so a
notification is never persisted without the write that triggered it.
"""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from program_backend.orm.notification import Notification, NotificationType
from program_backend.orm.team import TeamMember

logger = logging.getLogger(__name__)

EVALUATION_TITLE = "New evaluation"
EVALUATION_MESSAGES = {
    "submission": "Your submission has received a final evaluation.",
    "phase": "Your team has received a final phase evaluation.",
    "project": "Your project has received a final evaluation.",
}


async def notify_team(
    db: AsyncSession,
    team_id: int,
    tenant_id: int,
    title: str,
    message: str,
    notification_type: NotificationType = NotificationType.evaluation
) -> int:
    """Queue one notification per team member. Returns how many were queued."""
    result = await db.execute(
        select(TeamMember.user_id).where(TeamMember.team_id == team_id).order_by(TeamMember.id)
    )
    user_ids = list(result.scalars().all())

    for user_id in user_ids:
        db.add(Notification(
            tenant_id=tenant_id,
            user_id=user_id,
            title=title,
            message=message,
            type=notification_type,
            is_read=False,
        ))

    logger.info(f"Queued {len(user_ids)} notifications for team {team_id}")
    return len(user_ids)


async def notify_evaluation_finalized(db: AsyncSession, team_id: int, tenant_id: int, scope: str) -> int:
    return await notify_team(
        db,
        team_id=team_id,
        tenant_id=tenant_id,
        title=EVALUATION_TITLE,
        message=EVALUATION_MESSAGES.get(scope, EVALUATION_MESSAGES["submission"]),
    )
