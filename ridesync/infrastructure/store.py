"""
Record store -- the row-oriented data service the engines talk to.

``RecordStore`` is the boundary: select / insert / update against the
``ride_requests`` and ``activity_logs`` tables plus a subscription to
row-level change events.  Rows cross it as validated domain models.

``SqlRecordStore`` implements it on SQLAlchemy async sessions:

* Conditional updates are a single ``UPDATE ... WHERE ... RETURNING``
  statement, so a guard on ``status`` is an atomic compare-and-swap and
  the number of returned rows is the authoritative affected-row count.
* Every ride insert and status update appends an activity-log row in the
  same transaction (see ``triggers``).
* Change events are published only after the transaction commits.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable, Mapping, Optional

from pydantic import ValidationError as RowValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .change_feed import ChangeFeed, EventCallback, GapCallback, Subscription
from .models import TABLE_MODELS, ActivityLogModel, UserRoleModel
from .triggers import activity_for
from ridesync.domain.entities import (
    ROW_MODELS,
    ActivityLogEntry,
    ChangeEvent,
    RideRequest,
    Row,
    utcnow,
)
from ridesync.domain.enums import ChangeType, Role, Table
from ridesync.domain.errors import StoreError

logger = logging.getLogger(__name__)

Filters = Mapping[str, Any]


class RecordStore(ABC):
    @abstractmethod
    async def select(
        self,
        table: Table,
        filters: Optional[Filters] = None,
        *,
        order_by: str = "created_at",
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> list[Row]: ...

    @abstractmethod
    async def insert(
        self, table: Table, row: Mapping[str, Any], *, actor: Optional[str] = None
    ) -> Row:
        """Insert *row*; *actor* is the principal credited in the activity log."""

    @abstractmethod
    async def update(
        self,
        table: Table,
        patch: Mapping[str, Any],
        filters: Filters,
        *,
        actor: Optional[str] = None,
    ) -> list[Row]:
        """Apply *patch* to every row matching *filters*; return the updated rows."""

    @abstractmethod
    async def subscribe(
        self,
        table: Table,
        event_types: Iterable[ChangeType],
        callback: EventCallback,
        on_gap: Optional[GapCallback] = None,
    ) -> Subscription: ...

    @abstractmethod
    async def unsubscribe(self, subscription: Subscription) -> None: ...

    @abstractmethod
    async def roles_for(self, user_id: str) -> frozenset[Role]: ...


class SqlRecordStore(RecordStore):
    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession], feed: ChangeFeed
    ):
        self.session_factory = session_factory
        self.feed = feed

    # ── Reads ─────────────────────────────────────────────────────────

    async def select(
        self,
        table: Table,
        filters: Optional[Filters] = None,
        *,
        order_by: str = "created_at",
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> list[Row]:
        model = TABLE_MODELS[table]
        columns = model.__table__.c
        if order_by not in columns:
            raise StoreError(f"query {table.value}", f"unknown column {order_by!r}")
        order = columns[order_by].desc() if descending else columns[order_by].asc()
        query = (
            select(model)
            .where(*self._where(table, filters or {}))
            .order_by(order)
        )
        if limit is not None:
            query = query.limit(limit)

        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return [
                    ROW_MODELS[table].model_validate(obj)
                    for obj in result.scalars().all()
                ]
        except (SQLAlchemyError, RowValidationError) as exc:
            logger.exception("Query on %s failed", table.value)
            raise StoreError(f"query {table.value}", str(exc)) from exc

    async def roles_for(self, user_id: str) -> frozenset[Role]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(UserRoleModel.role).where(UserRoleModel.user_id == user_id)
                )
                return frozenset(Role(r) for r in result.scalars().all())
        except SQLAlchemyError as exc:
            logger.exception("Role lookup for %s failed", user_id)
            raise StoreError("fetch roles", str(exc)) from exc

    # ── Writes ────────────────────────────────────────────────────────

    async def insert(
        self, table: Table, row: Mapping[str, Any], *, actor: Optional[str] = None
    ) -> Row:
        if table is not Table.RIDE_REQUESTS:
            raise StoreError(
                f"insert into {table.value}", "table is written by the store only"
            )

        model = TABLE_MODELS[table]
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    obj = model(**row)
                    session.add(obj)
                    await session.flush()
                    record = RideRequest.model_validate(obj)
                    activity = await self._log_activity(session, record, actor)
        except (SQLAlchemyError, RowValidationError, TypeError) as exc:
            logger.exception("Insert into %s failed", table.value)
            raise StoreError(f"insert into {table.value}", str(exc)) from exc

        await self.feed.publish(
            ChangeEvent(table=table, type=ChangeType.INSERT, new=record)
        )
        await self._publish_activity([activity])
        return record

    async def update(
        self,
        table: Table,
        patch: Mapping[str, Any],
        filters: Filters,
        *,
        actor: Optional[str] = None,
    ) -> list[Row]:
        if table is not Table.RIDE_REQUESTS:
            raise StoreError(
                f"update {table.value}", "table is append-only"
            )
        if not filters:
            raise StoreError(f"update {table.value}", "refusing unfiltered update")

        model = TABLE_MODELS[table]
        columns = model.__table__.c
        stmt = (
            update(model.__table__)
            .where(*self._where(table, filters))
            .values(**dict(patch), updated_at=utcnow())
            .returning(*columns)
        )
        activities: list[ActivityLogEntry] = []
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    records = [
                        RideRequest.model_validate(dict(m))
                        for m in result.mappings().all()
                    ]
                    if "status" in patch:
                        for record in records:
                            activities.append(
                                await self._log_activity(session, record, actor)
                            )
        except (SQLAlchemyError, RowValidationError) as exc:
            logger.exception("Update of %s failed", table.value)
            raise StoreError(f"update {table.value}", str(exc)) from exc

        for record in records:
            await self.feed.publish(
                ChangeEvent(table=table, type=ChangeType.UPDATE, new=record)
            )
        await self._publish_activity(activities)
        return records

    # ── Subscriptions ─────────────────────────────────────────────────

    async def subscribe(self, table, event_types, callback, on_gap=None) -> Subscription:
        return await self.feed.subscribe(table, event_types, callback, on_gap)

    async def unsubscribe(self, subscription: Subscription) -> None:
        await self.feed.unsubscribe(subscription)

    # ── Internals ─────────────────────────────────────────────────────

    @staticmethod
    def _where(table: Table, filters: Filters) -> list:
        columns = TABLE_MODELS[table].__table__.c
        clauses = []
        for key, value in filters.items():
            if key not in columns:
                raise StoreError(f"filter {table.value}", f"unknown column {key!r}")
            column = columns[key]
            if value is None:
                clauses.append(column.is_(None))
            elif isinstance(value, (list, tuple, set, frozenset)):
                clauses.append(column.in_(list(value)))
            else:
                clauses.append(column == value)
        return clauses

    @staticmethod
    async def _log_activity(
        session: AsyncSession, ride: RideRequest, actor: Optional[str] = None
    ) -> ActivityLogEntry:
        entry = ActivityLogModel(**activity_for(ride, actor))
        session.add(entry)
        await session.flush()
        return ActivityLogEntry.model_validate(entry)

    async def _publish_activity(self, entries: list[ActivityLogEntry]) -> None:
        for entry in entries:
            await self.feed.publish(
                ChangeEvent(table=Table.ACTIVITY_LOGS, type=ChangeType.INSERT, new=entry)
            )
