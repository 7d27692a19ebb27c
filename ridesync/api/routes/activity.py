"""
Activity endpoints
==================

GET /api/v1/activity -- newest activity-log entries (employer / admin only)
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ridesync.api.dependencies import get_activity_engine
from ridesync.api.errors import raise_for
from ridesync.api.middleware import limiter
from ridesync.api.schemas import ActivityResponse
from ridesync.config import settings
from ridesync.domain.errors import StoreError
from ridesync.sync.activity import ActivityFeedEngine

router = APIRouter(prefix="/activity", tags=["activity"])


@router.get(
    "",
    response_model=list[ActivityResponse],
    summary="Recent activity, newest first",
)
@limiter.limit(settings.rate_limit)
async def recent_activity(
    request: Request,
    limit: int = Query(50, ge=1, le=500),
    engine: ActivityFeedEngine = Depends(get_activity_engine),
):
    if not engine.enabled:
        raise HTTPException(
            status_code=403, detail="Activity is visible to employers and admins only"
        )
    try:
        return await engine.fetch_recent(limit)
    except StoreError as exc:
        raise_for(exc)
