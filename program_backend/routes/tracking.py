"""
program_backend/routes/tracking.py
Read-only tracking views of an event for reviewers
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from program_backend.database import get_db
from program_backend.rbac import CallerContext, get_current_user
from program_backend.services import tracking_service

router = APIRouter(prefix="/events/{event_id}", tags=["Tracking"])


@router.get("/deliverables")
async def deliverables_tracking(
    event_id: int,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    data = await tracking_service.get_deliverables_tracking(db, caller, event_id)
    return {"success": True, "data": data}


@router.get("/tracking/overview")
async def tracking_overview(
    event_id: int,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    data = await tracking_service.get_tracking_overview(db, caller, event_id)
    return {"success": True, "data": data}


@router.get("/statistics")
async def event_statistics(
    event_id: int,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    data = await tracking_service.get_event_statistics(db, caller, event_id)
    return {"success": True, "data": data}
