"""
Ride Synchronization Engine
===========================

Keeps one client's view of ``ride_requests`` consistent with the store.

Subscribe-and-reconcile
-----------------------
1. Subscribe to INSERT / UPDATE / DELETE on ``ride_requests``.
2. Bulk-fetch the rows the principal may see, newest first.  Events that
   arrive while the fetch is in flight are replayed over the snapshot, and
   a row never moves back to an older ``updated_at``.
3. Reconcile every streamed event into the cache:

   * INSERT -- prepend if visible and not already cached (merge by id)
   * UPDATE -- replace the cached row in place, no re-sort
   * DELETE -- drop the cached row

4. Re-fetch on identity change, on a reported feed gap, and every
   ``resync_interval`` seconds as a safety net.

Visibility
----------
Drivers, employers and admins see every ride; everyone else sees only
rows where ``rider_id`` is their own id.  The store scopes the bulk
fetch; the reconciler re-applies the rule to fetched rows and inserts.

Mutations
---------
No optimistic updates.  Each transition is a conditional update guarded
on the ride's current status, so the store's affected-row count decides
the outcome: zero rows is a no-op (e.g. another driver won the accept
race), never an error.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional, Union

from .identity import IdentityContext
from ridesync.domain.entities import ChangeEvent, Principal, RideRequest, utcnow
from ridesync.domain.enums import (
    ACTIVE_STATUSES,
    ChangeType,
    RideStatus,
    Role,
    Table,
)
from ridesync.domain.errors import (
    AuthenticationError,
    PermissionDeniedError,
    RideSyncError,
    StoreError,
    ValidationError,
)
from ridesync.domain.results import MutationResult
from ridesync.infrastructure.change_feed import Subscription
from ridesync.infrastructure.store import RecordStore

logger = logging.getLogger(__name__)

RidesListener = Callable[[list[RideRequest]], Union[None, Awaitable[None]]]

RIDE_EVENTS = (ChangeType.INSERT, ChangeType.UPDATE, ChangeType.DELETE)


def _older(candidate: RideRequest, current: RideRequest) -> bool:
    """True if *candidate* is a strictly earlier version of *current*."""
    if candidate.updated_at is None or current.updated_at is None:
        return False
    return candidate.updated_at < current.updated_at


class RideSyncEngine:
    def __init__(
        self,
        store: RecordStore,
        identity: IdentityContext,
        *,
        resync_interval: float = 0,
        mutation_timeout: Optional[float] = 10.0,
    ):
        self.store = store
        self.identity = identity
        self.resync_interval = resync_interval
        self.mutation_timeout = mutation_timeout

        self.loading = True
        self._rides: list[RideRequest] = []
        self._pending: set[tuple[str, Optional[str]]] = set()
        self._listeners: list[RidesListener] = []
        # One buffer per in-flight bulk fetch; events seen meanwhile are
        # replayed over the fetched snapshot.
        self._fetch_buffers: list[list[ChangeEvent]] = []
        self._subscription: Optional[Subscription] = None
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._started = False

    # ── State ─────────────────────────────────────────────────────────

    @property
    def rides(self) -> list[RideRequest]:
        return list(self._rides)

    @property
    def principal(self) -> Optional[Principal]:
        return self.identity.current_principal()

    def get(self, ride_id: str) -> Optional[RideRequest]:
        for ride in self._rides:
            if ride.id == ride_id:
                return ride
        return None

    def is_pending(self, operation: str, ride_id: Optional[str] = None) -> bool:
        """True while *operation* (e.g. ``"accept ride"``) is in flight."""
        return (operation, ride_id) in self._pending

    def add_listener(self, listener: RidesListener) -> None:
        self._listeners.append(listener)

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self.identity.add_listener(self._on_identity_change)
        await self._open()
        if self.resync_interval > 0:
            self._stop_event = asyncio.Event()
            self._task = asyncio.create_task(self._resync_loop())

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        self.identity.remove_listener(self._on_identity_change)
        if self._stop_event:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self._close()

    async def __aenter__(self) -> "RideSyncEngine":
        try:
            await self.start()
        except BaseException:
            await self.stop()
            raise
        return self

    async def __aexit__(self, *args) -> None:
        await self.stop()

    async def refetch(self) -> list[RideRequest]:
        """Replace the cache with a fresh scoped bulk fetch."""
        principal = self.principal
        if principal is None:
            self._rides = []
            self.loading = False
            await self._notify()
            return []

        filters = None if principal.sees_all_rides else {"rider_id": principal.id}
        buffer: list[ChangeEvent] = []
        self._fetch_buffers.append(buffer)
        try:
            rows = await self._bounded(
                "fetch rides", self.store.select(Table.RIDE_REQUESTS, filters)
            )
        finally:
            self._fetch_buffers.remove(buffer)
            self.loading = False

        visible = [r for r in rows if principal.can_see(r)]
        visible.sort(key=lambda r: r.created_at, reverse=True)
        self._rides = visible
        # The snapshot may predate changes already streamed in.
        for event in buffer:
            self._reconcile(event)
        await self._notify()
        return self.rides

    # ── Reconciliation ────────────────────────────────────────────────

    def apply_event(self, event: ChangeEvent) -> bool:
        """Fold one change event into the cache.  Returns True if it changed."""
        if event.table != Table.RIDE_REQUESTS:
            return False
        if not isinstance(event.record, RideRequest):
            return False
        for buffer in self._fetch_buffers:
            buffer.append(event)
        return self._reconcile(event)

    def _reconcile(self, event: ChangeEvent) -> bool:
        ride = event.record
        if event.type == ChangeType.INSERT:
            principal = self.principal
            if principal is None or not principal.can_see(ride):
                return False
            return self._merge(ride)
        if event.type == ChangeType.UPDATE:
            return self._replace(ride)
        if event.type == ChangeType.DELETE:
            before = len(self._rides)
            self._rides = [r for r in self._rides if r.id != ride.id]
            return len(self._rides) != before
        return False

    async def _handle_event(self, event: ChangeEvent) -> None:
        logger.debug("Ride change %s for %s", event.type.value, getattr(event.record, "id", None))
        if self.apply_event(event):
            await self._notify()

    def _merge(self, ride: RideRequest) -> bool:
        if self.get(ride.id) is not None:
            return self._replace(ride)
        self._rides.insert(0, ride)
        return True

    def _replace(self, ride: RideRequest) -> bool:
        for index, current in enumerate(self._rides):
            if current.id == ride.id:
                if current == ride or _older(ride, current):
                    return False
                self._rides[index] = ride
                return True
        return False

    # ── Mutations ─────────────────────────────────────────────────────

    async def request_ride(
        self, pickup: str, destination: str, passenger_count: int = 1
    ) -> MutationResult[RideRequest]:
        principal = self.principal
        if principal is None:
            return MutationResult.failure(AuthenticationError())
        if not principal.can_request_rides:
            return MutationResult.failure(
                PermissionDeniedError("Only riders and employees can request rides")
            )

        pickup = (pickup or "").strip()
        destination = (destination or "").strip()
        if not pickup or not destination:
            return MutationResult.failure(
                ValidationError("Please fill in pickup and destination")
            )
        if (
            isinstance(passenger_count, bool)
            or not isinstance(passenger_count, int)
            or passenger_count < 1
        ):
            return MutationResult.failure(
                ValidationError("Passenger count must be a positive whole number")
            )

        async with self._in_flight("request ride"):
            try:
                ride = await self._bounded(
                    "request ride",
                    self.store.insert(
                        Table.RIDE_REQUESTS,
                        {
                            "rider_id": principal.id,
                            "driver_id": None,
                            "pickup_location": pickup,
                            "destination": destination,
                            "passenger_count": passenger_count,
                            "status": RideStatus.REQUESTED,
                        },
                        actor=principal.id,
                    ),
                )
            except StoreError as exc:
                return self._store_failure("request ride", exc)

        # Same path as a streamed insert, so the echo from the feed is a no-op.
        if self.apply_event(
            ChangeEvent(table=Table.RIDE_REQUESTS, type=ChangeType.INSERT, new=ride)
        ):
            await self._notify()
        return MutationResult.success(ride)

    async def accept_ride(self, ride_id: str) -> MutationResult[RideRequest]:
        principal = self.principal
        if principal is None:
            return MutationResult.failure(AuthenticationError())
        if not principal.can_accept_rides:
            return MutationResult.failure(
                PermissionDeniedError("Only drivers can accept rides")
            )

        return await self._transition(
            "accept ride",
            ride_id,
            patch={
                "driver_id": principal.id,
                "status": RideStatus.ACCEPTED,
                "accepted_at": utcnow(),
            },
            guard={"id": ride_id, "status": RideStatus.REQUESTED},
            actor=principal.id,
        )

    async def start_ride(self, ride_id: str) -> MutationResult[RideRequest]:
        return await self._driver_transition(
            "start ride", ride_id, RideStatus.ACCEPTED, RideStatus.IN_PROGRESS, {}
        )

    async def complete_ride(self, ride_id: str) -> MutationResult[RideRequest]:
        return await self._driver_transition(
            "complete ride",
            ride_id,
            RideStatus.IN_PROGRESS,
            RideStatus.COMPLETED,
            {"completed_at": utcnow()},
        )

    async def cancel_ride(self, ride_id: str) -> MutationResult[RideRequest]:
        principal = self.principal
        if principal is None:
            return MutationResult.failure(AuthenticationError())

        try:
            ride = await self._resolve("cancel ride", ride_id, principal)
            ride.ensure_transition(RideStatus.CANCELLED)
        except StoreError as exc:
            return self._store_failure("cancel ride", exc)
        except RideSyncError as exc:
            return MutationResult.failure(exc)

        if principal.id not in (ride.rider_id, ride.driver_id) and not principal.has_role(Role.ADMIN):
            return MutationResult.failure(
                PermissionDeniedError("Only the rider, the assigned driver or an admin can cancel this ride")
            )

        # Clearing the driver keeps driver_id set only for driver-held statuses.
        return await self._transition(
            "cancel ride",
            ride_id,
            patch={
                "status": RideStatus.CANCELLED,
                "driver_id": None,
                "accepted_at": None,
            },
            guard={"id": ride_id, "status": ACTIVE_STATUSES},
            actor=principal.id,
        )

    # ── Internals ─────────────────────────────────────────────────────

    async def _driver_transition(
        self,
        operation: str,
        ride_id: str,
        source: RideStatus,
        target: RideStatus,
        extra: dict,
    ) -> MutationResult[RideRequest]:
        principal = self.principal
        if principal is None:
            return MutationResult.failure(AuthenticationError())
        if not principal.can_accept_rides:
            return MutationResult.failure(
                PermissionDeniedError(f"Only drivers can {operation}")
            )

        try:
            ride = await self._resolve(operation, ride_id, principal)
            ride.ensure_transition(target)
        except StoreError as exc:
            return self._store_failure(operation, exc)
        except RideSyncError as exc:
            return MutationResult.failure(exc)

        if ride.driver_id != principal.id:
            return MutationResult.failure(
                PermissionDeniedError(f"Only the assigned driver can {operation}")
            )

        return await self._transition(
            operation,
            ride_id,
            patch={"status": target, **extra},
            guard={"id": ride_id, "status": source, "driver_id": principal.id},
            actor=principal.id,
        )

    async def _transition(
        self,
        operation: str,
        ride_id: str,
        patch: dict,
        guard: dict,
        actor: Optional[str] = None,
    ) -> MutationResult[RideRequest]:
        async with self._in_flight(operation, ride_id):
            try:
                rows = await self._bounded(
                    operation,
                    self.store.update(Table.RIDE_REQUESTS, patch, guard, actor=actor),
                )
            except StoreError as exc:
                return self._store_failure(operation, exc)

        if not rows:
            logger.info("%s on %s matched no row; treating as no-op", operation, ride_id)
            return MutationResult.no_op()

        ride = rows[0]
        if self.apply_event(
            ChangeEvent(table=Table.RIDE_REQUESTS, type=ChangeType.UPDATE, new=ride)
        ):
            await self._notify()
        return MutationResult.success(ride)

    async def _resolve(
        self, operation: str, ride_id: str, principal: Principal
    ) -> RideRequest:
        """Cached row, else a single-row fetch under the visibility rule."""
        ride = self.get(ride_id)
        if ride is not None:
            return ride
        rows = await self._bounded(
            operation,
            self.store.select(Table.RIDE_REQUESTS, {"id": ride_id}, limit=1),
        )
        rows = [r for r in rows if principal.can_see(r)]
        if not rows:
            raise ValidationError(f"Ride {ride_id} not found")
        return rows[0]

    async def _bounded(self, operation: str, awaitable: Awaitable):
        if not self.mutation_timeout:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout=self.mutation_timeout)
        except asyncio.TimeoutError as exc:
            raise StoreError(
                operation, f"timed out after {self.mutation_timeout:g}s"
            ) from exc

    @staticmethod
    def _store_failure(operation: str, exc: StoreError) -> MutationResult:
        logger.error("Failed to %s: %s", operation, exc)
        return MutationResult.failure(
            StoreError(operation, exc.store_message or str(exc))
        )

    @asynccontextmanager
    async def _in_flight(self, operation: str, ride_id: Optional[str] = None):
        key = (operation, ride_id)
        self._pending.add(key)
        try:
            yield
        finally:
            self._pending.discard(key)

    async def _notify(self) -> None:
        snapshot = self.rides
        for listener in list(self._listeners):
            result = listener(snapshot)
            if inspect.isawaitable(result):
                await result

    async def _open(self) -> None:
        if self.principal is None:
            await self.refetch()
            return
        self._subscription = await self._bounded(
            "subscribe to rides",
            self.store.subscribe(
                Table.RIDE_REQUESTS, RIDE_EVENTS, self._handle_event, on_gap=self._on_gap
            ),
        )
        await self.refetch()

    async def _close(self) -> None:
        if self._subscription is not None:
            subscription, self._subscription = self._subscription, None
            await self.store.unsubscribe(subscription)

    async def _on_identity_change(self, principal: Optional[Principal]) -> None:
        await self._close()
        self._rides = []
        self.loading = True
        try:
            await self._open()
        except StoreError:
            logger.exception("Reloading rides after sign-in change failed")

    async def _on_gap(self) -> None:
        logger.info("Ride change feed reconnected; re-fetching")
        try:
            await self.refetch()
        except StoreError:
            logger.exception("Re-fetch after feed gap failed")

    async def _resync_loop(self) -> None:
        """Periodic reconciling re-fetch until ``stop()``."""
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.resync_interval
                )
                break
            except asyncio.TimeoutError:
                pass
            try:
                await self.refetch()
            except Exception:
                logger.exception("Unhandled error in ride resync")
