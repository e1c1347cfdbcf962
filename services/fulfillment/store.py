# NG-HEADER: Nombre de archivo: store.py
# NG-HEADER: Ubicación: services/fulfillment/store.py
# NG-HEADER: Descripción: Gateway de persistencia del pipeline (SQLAlchemy async)
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Acceso a datos para mixing, worker y notificaciones.

Única capa que conoce SQLAlchemy. Devuelve DTOs tipados y convierte cualquier
``SQLAlchemyError`` en ``PersistenceError``.

Las transiciones de estado se hacen con ``UPDATE ... WHERE status = <previo>``:
- claim: pending -> processing (compare-and-swap; seguro con varios workers)
- cierre: processing -> success|failed (nunca reescribe un estado terminal)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.models import (
    Account,
    BuyerOrder,
    FulfillmentLine,
    FulfillmentOrder,
    Product,
    RecipeLine,
    Supplier,
    UpstreamItem,
)
from services.fulfillment.dto import (
    BuyerOrderRow,
    LineSpec,
    MixItem,
    OrderContext,
    RecipeLineRow,
    SupplierRow,
)
from services.fulfillment.errors import OrderContextInvalid, PersistenceError

logger = logging.getLogger(__name__)


class FulfillmentStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"[store] ✗ Error de base de datos: {type(e).__name__}: {e}")
            raise PersistenceError(f"database error: {e}") from e

    # --- Lecturas de catálogo -------------------------------------------------

    async def recipe_lines(self, product_id: int) -> list[RecipeLineRow]:
        async with self._session() as db:
            rows = await db.execute(
                select(RecipeLine.upstream_item_id, UpstreamItem.external_ref, RecipeLine.multiplier)
                .join(UpstreamItem, UpstreamItem.id == RecipeLine.upstream_item_id)
                .where(RecipeLine.product_id == product_id)
                .order_by(RecipeLine.id)
            )
            return [RecipeLineRow(upstream_item_id=r[0], external_ref=r[1], multiplier=r[2]) for r in rows]

    async def get_supplier(self, supplier_id: int) -> Optional[SupplierRow]:
        async with self._session() as db:
            s = await db.get(Supplier, supplier_id)
            return SupplierRow(id=s.id, name=s.name, code=s.code) if s else None

    async def find_supplier_by_code(self, code: str) -> Optional[SupplierRow]:
        async with self._session() as db:
            s = await db.scalar(select(Supplier).where(Supplier.code == code))
            return SupplierRow(id=s.id, name=s.name, code=s.code) if s else None

    async def get_buyer_order(self, buyer_order_id: int) -> Optional[BuyerOrderRow]:
        async with self._session() as db:
            bo = await db.get(BuyerOrder, buyer_order_id)
            if bo is None:
                return None
            return BuyerOrderRow(
                id=bo.id,
                product_id=bo.product_id,
                quantity=bo.quantity,
                destination=bo.destination,
                status=bo.status,
                account_id=bo.account_id,
            )

    # --- Escritura de órdenes ---------------------------------------------------

    async def create_fulfillment_order(
        self, buyer_order_id: int, supplier_id: int, items: Sequence[MixItem]
    ) -> int:
        """Crea cabecera (pending) + líneas en una única transacción."""
        async with self._session() as db:
            async with db.begin():
                order = FulfillmentOrder(
                    buyer_order_id=buyer_order_id,
                    supplier_id=supplier_id,
                    status="pending",
                )
                db.add(order)
                await db.flush()
                order_id = order.id
                for it in items:
                    db.add(
                        FulfillmentLine(
                            fulfillment_order_id=order_id,
                            upstream_item_id=it.upstream_item_id,
                            quantity=it.quantity,
                        )
                    )
            return order_id

    async def oldest_pending(self, supplier_id: int) -> Optional[int]:
        async with self._session() as db:
            return await db.scalar(
                select(FulfillmentOrder.id)
                .where(
                    FulfillmentOrder.status == "pending",
                    FulfillmentOrder.supplier_id == supplier_id,
                )
                .order_by(FulfillmentOrder.created_at, FulfillmentOrder.id)
                .limit(1)
            )

    async def claim(self, order_id: int) -> bool:
        """pending -> processing. True solo para el llamador que ganó la carrera."""
        async with self._session() as db:
            async with db.begin():
                res = await db.execute(
                    update(FulfillmentOrder)
                    .where(FulfillmentOrder.id == order_id, FulfillmentOrder.status == "pending")
                    .values(status="processing", updated_at=datetime.utcnow())
                )
                if res.rowcount != 1:
                    return False
                bo_id = await db.scalar(
                    select(FulfillmentOrder.buyer_order_id).where(FulfillmentOrder.id == order_id)
                )
                await db.execute(
                    update(BuyerOrder)
                    .where(BuyerOrder.id == bo_id, BuyerOrder.status == "pending")
                    .values(status="processing", updated_at=datetime.utcnow())
                )
            return True

    async def load_context(self, order_id: int) -> OrderContext:
        async with self._session() as db:
            order = await db.get(FulfillmentOrder, order_id)
            if order is None:
                raise OrderContextInvalid(f"fulfillment order {order_id} not found")
            bo = await db.get(BuyerOrder, order.buyer_order_id)
            if bo is None:
                raise OrderContextInvalid("buyer order not found")
            product = await db.get(Product, bo.product_id)
            supplier = await db.get(Supplier, order.supplier_id)
            account = await db.get(Account, bo.account_id) if bo.account_id else None
            rows = await db.execute(
                select(UpstreamItem.external_ref, FulfillmentLine.quantity)
                .join(UpstreamItem, UpstreamItem.id == FulfillmentLine.upstream_item_id)
                .where(FulfillmentLine.fulfillment_order_id == order_id)
                .order_by(FulfillmentLine.id)
            )
            lines = [LineSpec(external_ref=r[0], quantity=r[1]) for r in rows]
            if not lines:
                raise OrderContextInvalid("no items found for this order")
            return OrderContext(
                fulfillment_order_id=order.id,
                buyer_order_id=bo.id,
                destination=bo.destination,
                lines=lines,
                product_id=bo.product_id,
                product_name=product.name if product else "",
                product_price=product.price if product else None,
                supplier_name=supplier.name if supplier else "",
                account_id=account.id if account else None,
                telegram_chat_id=account.telegram_chat_id if account else None,
                webhook_url=account.webhook_url if account else None,
            )

    async def _finish(
        self,
        order_id: int,
        status: str,
        *,
        transaction_ids: Sequence[str] = (),
        reason: Optional[str] = None,
    ) -> bool:
        values: dict[str, Any] = {
            "status": status,
            "provider_trx_ids": list(transaction_ids),
            "provider_trx_id": transaction_ids[0] if transaction_ids else None,
            "updated_at": datetime.utcnow(),
        }
        if reason is not None:
            values["last_error"] = reason
        async with self._session() as db:
            async with db.begin():
                res = await db.execute(
                    update(FulfillmentOrder)
                    .where(FulfillmentOrder.id == order_id, FulfillmentOrder.status == "processing")
                    .values(**values)
                )
                if res.rowcount != 1:
                    logger.warning(
                        f"[store] ⚠ Orden {order_id} no está en 'processing'; se omite cierre como '{status}'"
                    )
                    return False
                bo_id = await db.scalar(
                    select(FulfillmentOrder.buyer_order_id).where(FulfillmentOrder.id == order_id)
                )
                await db.execute(
                    update(BuyerOrder)
                    .where(BuyerOrder.id == bo_id, BuyerOrder.status.in_(("pending", "processing")))
                    .values(status=status, updated_at=datetime.utcnow())
                )
            return True

    async def mark_success(self, order_id: int, transaction_ids: Sequence[str]) -> bool:
        return await self._finish(order_id, "success", transaction_ids=transaction_ids)

    async def mark_failed(
        self, order_id: int, reason: str, transaction_ids: Sequence[str] = ()
    ) -> bool:
        return await self._finish(order_id, "failed", transaction_ids=transaction_ids, reason=reason)

    # --- Consultas auxiliares ---------------------------------------------------

    async def order_status(self, buyer_order_id: int) -> Optional[dict[str, Any]]:
        async with self._session() as db:
            bo = await db.get(BuyerOrder, buyer_order_id)
            if bo is None:
                return None
            fo = await db.scalar(
                select(FulfillmentOrder)
                .where(FulfillmentOrder.buyer_order_id == buyer_order_id)
                .order_by(FulfillmentOrder.id.desc())
                .limit(1)
            )
            return {
                "id": bo.id,
                "status": bo.status,
                "destination": bo.destination,
                "quantity": bo.quantity,
                "fulfillment": None
                if fo is None
                else {
                    "id": fo.id,
                    "status": fo.status,
                    "last_error": fo.last_error,
                    "transaction_ids": fo.provider_trx_ids or [],
                },
            }

    async def bind_telegram_chat(self, account_id: int, chat_id: str) -> bool:
        async with self._session() as db:
            async with db.begin():
                res = await db.execute(
                    update(Account).where(Account.id == account_id).values(telegram_chat_id=chat_id)
                )
                return res.rowcount == 1
