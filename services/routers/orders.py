# NG-HEADER: Nombre de archivo: orders.py
# NG-HEADER: Ubicación: services/routers/orders.py
# NG-HEADER: Descripción: Disparo de materialización de órdenes y consulta de estado
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Endpoints de órdenes.

- ``POST /orders/{id}/fulfillment``: expande la receta y encola la orden para el worker.
- ``GET /orders/{id}``: estado de la orden y de su último fulfillment.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from agent_core.config import settings
from services.deps import get_store
from services.fulfillment.errors import (
    BuyerOrderNotFound,
    InvalidQuantity,
    RecipeNotFound,
    SupplierInvalid,
)
from services.fulfillment.mixing import MixingEngine
from services.fulfillment.store import FulfillmentStore

router = APIRouter(prefix="/orders", tags=["orders"])
logger = logging.getLogger(__name__)


@router.post("/{buyer_order_id}/fulfillment", status_code=201)
async def create_fulfillment(
    buyer_order_id: int,
    supplier_code: Optional[str] = None,
    store: FulfillmentStore = Depends(get_store),
):
    code = supplier_code or settings.supplier_code
    try:
        order_id = await MixingEngine(store).materialize_buyer_order(buyer_order_id, code)
    except BuyerOrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (RecipeNotFound, SupplierInvalid, InvalidQuantity) as e:
        logger.warning(f"[orders] ⚠ No se pudo materializar buyer_order={buyer_order_id}: {e}")
        raise HTTPException(status_code=422, detail=str(e))
    return {"fulfillment_order_id": order_id, "buyer_order_id": buyer_order_id, "status": "pending"}


@router.get("/{buyer_order_id}")
async def get_order(buyer_order_id: int, store: FulfillmentStore = Depends(get_store)):
    status = await store.order_status(buyer_order_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"buyer order {buyer_order_id} not found")
    return status
