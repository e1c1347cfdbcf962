# NG-HEADER: Nombre de archivo: dto.py
# NG-HEADER: Ubicación: services/fulfillment/dto.py
# NG-HEADER: Descripción: DTOs tipados que devuelve la capa de persistencia
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Estructuras tipadas que cruzan la frontera store <-> lógica de negocio."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from services.fulfillment.errors import StorefrontError


@dataclass(frozen=True)
class RecipeLineRow:
    upstream_item_id: int
    external_ref: str
    multiplier: int


@dataclass(frozen=True)
class MixItem:
    """Resultado de expandir una receta: qué ítem upstream y cuántas unidades."""

    external_ref: str
    quantity: int
    upstream_item_id: int


@dataclass(frozen=True)
class SupplierRow:
    id: int
    name: str
    code: str


@dataclass(frozen=True)
class BuyerOrderRow:
    id: int
    product_id: int
    quantity: int
    destination: str
    status: str
    account_id: Optional[int] = None


@dataclass(frozen=True)
class LineSpec:
    """Una línea a ejecutar en el storefront."""

    external_ref: str
    quantity: int


@dataclass(frozen=True)
class OrderContext:
    """Todo lo que el worker necesita para ejecutar y notificar una orden."""

    fulfillment_order_id: int
    buyer_order_id: int
    destination: str
    lines: list[LineSpec]
    product_id: int
    product_name: str
    product_price: Optional[Decimal]
    supplier_name: str
    account_id: Optional[int] = None
    telegram_chat_id: Optional[str] = None
    webhook_url: Optional[str] = None

    @property
    def total_units(self) -> int:
        return sum(line.quantity for line in self.lines)


@dataclass
class PurchaseResult:
    """Resultado de ``place_order``: ids obtenidos y, si hubo, el error que cortó el loop."""

    transaction_ids: list[str] = field(default_factory=list)
    error: Optional[StorefrontError] = None

    @property
    def ok(self) -> bool:
        return self.error is None
