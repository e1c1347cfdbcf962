# NG-HEADER: Nombre de archivo: mixing.py
# NG-HEADER: Ubicación: services/fulfillment/mixing.py
# NG-HEADER: Descripción: Motor de mezcla por receta (producto interno -> ítems upstream)
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Motor de mezcla por receta.

Expande un producto interno en los ítems upstream que lo componen y
materializa la orden de fulfillment (cabecera + líneas) de forma atómica.

Ejemplo: "Coin-Mix-100" = 1 x BASE-60 + 40 x BASE-1; una orden de cantidad 2
produce las líneas (BASE-60, 2) y (BASE-1, 80).
"""

from __future__ import annotations

import logging

from services.fulfillment.dto import BuyerOrderRow, MixItem
from services.fulfillment.errors import (
    BuyerOrderNotFound,
    InvalidQuantity,
    RecipeNotFound,
    SupplierInvalid,
)
from services.fulfillment.store import FulfillmentStore

logger = logging.getLogger(__name__)


class MixingEngine:
    def __init__(self, store: FulfillmentStore) -> None:
        self.store = store

    async def expand(self, product_id: int, order_quantity: int) -> list[MixItem]:
        """Devuelve un ``MixItem`` por fila de receta con ``multiplier x order_quantity``."""
        if order_quantity < 1:
            raise InvalidQuantity(f"order quantity must be positive, got {order_quantity}")
        recipe = await self.store.recipe_lines(product_id)
        if not recipe:
            raise RecipeNotFound(product_id)
        items: list[MixItem] = []
        for line in recipe:
            if line.multiplier < 1:
                raise InvalidQuantity(
                    f"recipe multiplier for {line.external_ref} must be positive, got {line.multiplier}"
                )
            items.append(
                MixItem(
                    external_ref=line.external_ref,
                    quantity=line.multiplier * order_quantity,
                    upstream_item_id=line.upstream_item_id,
                )
            )
        return items

    async def materialize(self, buyer_order: BuyerOrderRow, supplier_id: int) -> int:
        """Crea la FulfillmentOrder (pending) con sus líneas. Devuelve su id.

        Valida proveedor y receta antes de escribir: si algo falla no queda
        ninguna fila persistida.
        """
        supplier = await self.store.get_supplier(supplier_id)
        if supplier is None:
            raise SupplierInvalid(f"supplier {supplier_id} not found")
        items = await self.expand(buyer_order.product_id, buyer_order.quantity)
        order_id = await self.store.create_fulfillment_order(buyer_order.id, supplier.id, items)
        logger.info(
            f"[mixing] ✓ Orden de fulfillment {order_id} creada para buyer_order={buyer_order.id} "
            f"({len(items)} líneas, {sum(i.quantity for i in items)} unidades, proveedor {supplier.code})"
        )
        return order_id

    async def materialize_buyer_order(self, buyer_order_id: int, supplier_code: str) -> int:
        """Punto de entrada del order-intake: resuelve orden y proveedor por código."""
        buyer_order = await self.store.get_buyer_order(buyer_order_id)
        if buyer_order is None:
            raise BuyerOrderNotFound(buyer_order_id)
        supplier = await self.store.find_supplier_by_code(supplier_code)
        if supplier is None:
            raise SupplierInvalid(f"supplier '{supplier_code}' not found")
        return await self.materialize(buyer_order, supplier.id)
