"""
FastAPI dependency injection helpers.

The store lives on ``app.state`` (built by the lifespan); the principal is
taken from the ``X-User-Id`` header, which the identity provider in front
of this service sets after verifying the caller's token.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from ridesync.api.errors import raise_for
from ridesync.domain.errors import StoreError
from ridesync.infrastructure.store import RecordStore
from ridesync.sync.activity import ActivityFeedEngine
from ridesync.sync.identity import IdentityContext
from ridesync.sync.rides import RideSyncEngine


def get_store(request: Request) -> RecordStore:
    return request.app.state.store


async def get_identity(
    store: RecordStore = Depends(get_store),
    x_user_id: Optional[str] = Header(None),
) -> IdentityContext:
    """Identity context bound to the caller; 401 when nobody is signed in."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Please sign in to continue")
    identity = IdentityContext(store)
    try:
        await identity.bind(x_user_id)
    except StoreError as exc:
        raise_for(exc)
    return identity


def get_ride_engine(
    request: Request,
    store: RecordStore = Depends(get_store),
    identity: IdentityContext = Depends(get_identity),
) -> RideSyncEngine:
    settings = request.app.state.settings
    return RideSyncEngine(
        store,
        identity,
        mutation_timeout=settings.mutation_timeout_seconds,
    )


def get_activity_engine(
    request: Request,
    store: RecordStore = Depends(get_store),
    identity: IdentityContext = Depends(get_identity),
) -> ActivityFeedEngine:
    settings = request.app.state.settings
    return ActivityFeedEngine(
        store,
        identity,
        limit=settings.activity_feed_limit,
        timeout=settings.mutation_timeout_seconds,
    )
