"""
program_backend/routes/__init__.py
Route registration
"""
from fastapi import APIRouter

from program_backend.routes import rubrics, submissions, evaluations, tracking

router = APIRouter()

router.include_router(rubrics.router)
router.include_router(submissions.router)
router.include_router(evaluations.router)
router.include_router(tracking.router)
