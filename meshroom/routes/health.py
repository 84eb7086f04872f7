"""Health Check API 라우터."""

import time

from fastapi import APIRouter

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
async def health_check():
    """서비스 상태를 확인합니다.

    Returns:
        dict: ``{"ok": True, "time": <epoch ms>}``
    """
    return {"ok": True, "time": int(time.time() * 1000)}
