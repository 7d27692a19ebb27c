"""
Activity Feed Engine -- read-only mirror of the newest activity-log rows.

Only employers and admins get a feed; for everyone else the engine stays
empty, non-loading and never touches the store.  The cache is a bounded
ring buffer: each streamed INSERT is pushed on the front and the oldest
entry falls off the back in O(1).  The store keeps the full history.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from typing import Awaitable, Callable, Optional, Union

from .identity import IdentityContext
from ridesync.domain.entities import ActivityLogEntry, ChangeEvent, Principal
from ridesync.domain.enums import ChangeType, Table
from ridesync.domain.errors import StoreError
from ridesync.infrastructure.change_feed import Subscription
from ridesync.infrastructure.store import RecordStore

logger = logging.getLogger(__name__)

ActivityListener = Callable[[list[ActivityLogEntry]], Union[None, Awaitable[None]]]

DEFAULT_LIMIT = 50


class ActivityFeedEngine:
    def __init__(
        self,
        store: RecordStore,
        identity: IdentityContext,
        *,
        limit: int = DEFAULT_LIMIT,
        timeout: Optional[float] = 10.0,
    ):
        if limit < 1:
            raise ValueError("limit must be positive")
        self.store = store
        self.identity = identity
        self.limit = limit
        self.timeout = timeout

        self.loading = True
        self._entries: deque[ActivityLogEntry] = deque(maxlen=limit)
        self._ids: set[str] = set()
        self._listeners: list[ActivityListener] = []
        self._fetch_buffers: list[list[ChangeEvent]] = []
        self._subscription: Optional[Subscription] = None
        self._started = False

    @property
    def activities(self) -> list[ActivityLogEntry]:
        return list(self._entries)

    @property
    def enabled(self) -> bool:
        principal = self.identity.current_principal()
        return principal is not None and principal.can_view_activity

    def add_listener(self, listener: ActivityListener) -> None:
        self._listeners.append(listener)

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self.identity.add_listener(self._on_identity_change)
        await self._open()

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        self.identity.remove_listener(self._on_identity_change)
        await self._close()

    async def __aenter__(self) -> "ActivityFeedEngine":
        try:
            await self.start()
        except BaseException:
            await self.stop()
            raise
        return self

    async def __aexit__(self, *args) -> None:
        await self.stop()

    async def fetch_recent(self, limit: Optional[int] = None) -> list[ActivityLogEntry]:
        """Reload the newest *limit* entries (newest first)."""
        if not self.enabled:
            self._reset()
            self.loading = False
            return []

        limit = min(limit or self.limit, self.limit)
        buffer: list[ChangeEvent] = []
        self._fetch_buffers.append(buffer)
        try:
            rows = await self._bounded(
                self.store.select(Table.ACTIVITY_LOGS, limit=limit)
            )
        finally:
            self._fetch_buffers.remove(buffer)
            self.loading = False

        self._reset()
        for entry in rows:
            if entry.id not in self._ids:
                self._entries.append(entry)
                self._ids.add(entry.id)
        # Inserts streamed during the fetch go on top of the snapshot.
        for event in buffer:
            self._push(event.new)
        await self._notify()
        return self.activities

    # ── Reconciliation ────────────────────────────────────────────────

    def apply_event(self, event: ChangeEvent) -> bool:
        if event.table != Table.ACTIVITY_LOGS or event.type != ChangeType.INSERT:
            return False
        if not isinstance(event.new, ActivityLogEntry):
            return False
        for buffer in self._fetch_buffers:
            buffer.append(event)
        return self._push(event.new)

    def _push(self, entry: ActivityLogEntry) -> bool:
        if entry.id in self._ids:
            return False
        if len(self._entries) == self._entries.maxlen:
            self._ids.discard(self._entries[-1].id)
        self._entries.appendleft(entry)
        self._ids.add(entry.id)
        return True

    async def _handle_event(self, event: ChangeEvent) -> None:
        if self.apply_event(event):
            await self._notify()

    # ── Internals ─────────────────────────────────────────────────────

    def _reset(self) -> None:
        self._entries.clear()
        self._ids.clear()

    async def _bounded(self, awaitable: Awaitable):
        if not self.timeout:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise StoreError(
                "fetch activity", f"timed out after {self.timeout:g}s"
            ) from exc

    async def _notify(self) -> None:
        snapshot = self.activities
        for listener in list(self._listeners):
            result = listener(snapshot)
            if inspect.isawaitable(result):
                await result

    async def _open(self) -> None:
        if not self.enabled:
            self._reset()
            self.loading = False
            return
        self._subscription = await self._bounded(
            self.store.subscribe(
                Table.ACTIVITY_LOGS,
                (ChangeType.INSERT,),
                self._handle_event,
                on_gap=self._on_gap,
            )
        )
        await self.fetch_recent()

    async def _close(self) -> None:
        if self._subscription is not None:
            subscription, self._subscription = self._subscription, None
            await self.store.unsubscribe(subscription)

    async def _on_identity_change(self, principal: Optional[Principal]) -> None:
        await self._close()
        self.loading = True
        try:
            await self._open()
        except StoreError:
            logger.exception("Reloading activity after sign-in change failed")

    async def _on_gap(self) -> None:
        logger.info("Activity change feed reconnected; re-fetching")
        try:
            await self.fetch_recent()
        except StoreError:
            logger.exception("Re-fetch of activity after feed gap failed")
