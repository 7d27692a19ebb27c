"""
Live endpoints
==============

WS /api/v1/live/rides     -- ride list snapshots, pushed on every change
WS /api/v1/live/activity  -- activity snapshots (employer / admin only)

Each socket owns one engine for its lifetime: the engine subscribes when
the socket opens and is torn down when the socket closes, whichever side
closes it.
"""

import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from ridesync.domain.errors import StoreError
from ridesync.sync.activity import ActivityFeedEngine
from ridesync.sync.identity import IdentityContext
from ridesync.sync.rides import RideSyncEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/live", tags=["live"])


async def _bind(websocket: WebSocket, user_id: Optional[str]) -> Optional[IdentityContext]:
    if not user_id:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Please sign in")
        return None
    identity = IdentityContext(websocket.app.state.store)
    try:
        await identity.bind(user_id)
    except StoreError:
        logger.exception("Could not resolve roles for %s", user_id)
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return None
    return identity


async def _drain(websocket: WebSocket) -> None:
    """Block until the client goes away; inbound messages are ignored."""
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass


@router.websocket("/rides")
async def live_rides(websocket: WebSocket, user_id: Optional[str] = None):
    await websocket.accept()
    identity = await _bind(websocket, user_id or websocket.headers.get("x-user-id"))
    if identity is None:
        return

    settings = websocket.app.state.settings
    engine = RideSyncEngine(
        websocket.app.state.store,
        identity,
        resync_interval=settings.resync_interval_seconds,
        mutation_timeout=settings.mutation_timeout_seconds,
    )

    async def push(rides):
        await websocket.send_json(
            {"type": "rides", "rides": [r.model_dump(mode="json") for r in rides]}
        )

    try:
        async with engine:
            await push(engine.rides)
            engine.add_listener(push)
            await _drain(websocket)
    except StoreError as exc:
        logger.warning("Live rides for %s ended: %s", user_id, exc)
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)


@router.websocket("/activity")
async def live_activity(websocket: WebSocket, user_id: Optional[str] = None):
    await websocket.accept()
    identity = await _bind(websocket, user_id or websocket.headers.get("x-user-id"))
    if identity is None:
        return

    settings = websocket.app.state.settings
    engine = ActivityFeedEngine(
        websocket.app.state.store,
        identity,
        limit=settings.activity_feed_limit,
        timeout=settings.mutation_timeout_seconds,
    )
    if not engine.enabled:
        await websocket.close(
            code=status.WS_1008_POLICY_VIOLATION,
            reason="Activity is visible to employers and admins only",
        )
        return

    async def push(entries):
        await websocket.send_json(
            {"type": "activity", "activities": [e.model_dump(mode="json") for e in entries]}
        )

    try:
        async with engine:
            await push(engine.activities)
            engine.add_listener(push)
            await _drain(websocket)
    except StoreError as exc:
        logger.warning("Live activity for %s ended: %s", user_id, exc)
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
