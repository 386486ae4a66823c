"""
Order Store: single source of truth for order state.

Contract:
  - create() is create-only and never overwrites an existing order
  - update_status() is an atomic per-record conditional write: when
    expected_status is given, the write only lands if the stored status
    still matches it, and it never lands unless the stored status can move
    to the new one
  - get() always reads the current committed state
"""

import asyncio
import logging
from datetime import datetime
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from shared.errors import OrderAlreadyExistsError, OrderNotFoundError, StatusConflictError
from shared.models import OrderRecord
from shared.orders import Order, OrderStatus, can_transition, statuses_leading_to, utcnow

logger = logging.getLogger(__name__)


class OrderStore(Protocol):
    async def create(self, order: Order) -> None: ...

    async def get(self, order_id: str) -> Order: ...

    async def update_status(
        self,
        order_id: str,
        new_status: OrderStatus,
        *,
        expected_status: OrderStatus | None = None,
        payment_id: str | None = None,
        failure_reason: str | None = None,
    ) -> Order: ...

    async def list_by_status(
        self, status: OrderStatus, updated_before: datetime | None = None
    ) -> list[Order]: ...


def _expected_label(new_status: OrderStatus, expected_status: OrderStatus | None) -> str:
    if expected_status is not None:
        return expected_status.value
    return "|".join(status.value for status in statuses_leading_to(new_status)) or "none"


class InMemoryOrderStore:
    """Dict-backed store used by tests and local runs."""

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._lock = asyncio.Lock()

    async def create(self, order: Order) -> None:
        async with self._lock:
            if order.order_id in self._orders:
                raise OrderAlreadyExistsError(order.order_id)
            self._orders[order.order_id] = order.model_copy(deep=True)

    async def get(self, order_id: str) -> Order:
        async with self._lock:
            try:
                return self._orders[order_id].model_copy(deep=True)
            except KeyError:
                raise OrderNotFoundError(order_id) from None

    async def update_status(
        self,
        order_id: str,
        new_status: OrderStatus,
        *,
        expected_status: OrderStatus | None = None,
        payment_id: str | None = None,
        failure_reason: str | None = None,
    ) -> Order:
        async with self._lock:
            current = self._orders.get(order_id)
            if current is None:
                raise OrderNotFoundError(order_id)
            matches = expected_status is None or current.status == expected_status
            if not matches or not can_transition(current.status, new_status):
                raise StatusConflictError(order_id, _expected_label(new_status, expected_status), current.status.value)

            changes: dict = {"status": new_status, "updated_at": utcnow()}
            if payment_id is not None:
                changes["payment_id"] = payment_id
            if failure_reason is not None:
                changes["failure_reason"] = failure_reason
            updated = current.model_copy(update=changes, deep=True)
            self._orders[order_id] = updated
            return updated.model_copy(deep=True)

    async def list_by_status(
        self, status: OrderStatus, updated_before: datetime | None = None
    ) -> list[Order]:
        async with self._lock:
            return [
                order.model_copy(deep=True)
                for order in self._orders.values()
                if order.status == status
                and (updated_before is None or order.updated_at < updated_before)
            ]


class SqlOrderStore:
    """SQLAlchemy-backed store; conditional updates run as a single UPDATE ... WHERE."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _fetch(self, db: AsyncSession, order_id: str) -> OrderRecord | None:
        result = await db.execute(
            select(OrderRecord)
            .where(OrderRecord.id == order_id)
            .options(selectinload(OrderRecord.items))
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def create(self, order: Order) -> None:
        async with self._session_factory() as db:
            db.add(OrderRecord.from_domain(order))
            try:
                await db.commit()
            except IntegrityError as exc:
                await db.rollback()
                raise OrderAlreadyExistsError(order.order_id) from exc
        logger.debug("Order row inserted", extra={"order_id": order.order_id})

    async def get(self, order_id: str) -> Order:
        async with self._session_factory() as db:
            record = await self._fetch(db, order_id)
            if record is None:
                raise OrderNotFoundError(order_id)
            return record.to_domain()

    async def update_status(
        self,
        order_id: str,
        new_status: OrderStatus,
        *,
        expected_status: OrderStatus | None = None,
        payment_id: str | None = None,
        failure_reason: str | None = None,
    ) -> Order:
        values: dict = {"status": new_status, "updated_at": utcnow()}
        if payment_id is not None:
            values["payment_id"] = payment_id
        if failure_reason is not None:
            values["failure_reason"] = failure_reason

        stmt = update(OrderRecord).where(
            OrderRecord.id == order_id, OrderRecord.status.in_(statuses_leading_to(new_status))
        )
        if expected_status is not None:
            stmt = stmt.where(OrderRecord.status == expected_status)

        async with self._session_factory() as db:
            result = await db.execute(stmt.values(**values))
            await db.commit()

            record = await self._fetch(db, order_id)
            if record is None:
                raise OrderNotFoundError(order_id)
            if result.rowcount == 0:
                raise StatusConflictError(order_id, _expected_label(new_status, expected_status), record.status.value)
            return record.to_domain()

    async def list_by_status(
        self, status: OrderStatus, updated_before: datetime | None = None
    ) -> list[Order]:
        stmt = (
            select(OrderRecord)
            .where(OrderRecord.status == status)
            .options(selectinload(OrderRecord.items))
            .order_by(OrderRecord.updated_at)
        )
        if updated_before is not None:
            stmt = stmt.where(OrderRecord.updated_at < updated_before)
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return [record.to_domain() for record in result.scalars().all()]
