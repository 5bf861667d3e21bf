"""
Rate limiting for the expensive endpoints (AI scoring)
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

from program_backend.config.settings import settings

limiter = Limiter(key_func=get_remote_address)


def ai_evaluation_limit() -> str:
    return settings.AI_EVALUATION_RATE_LIMIT
