# NG-HEADER: Nombre de archivo: models.py
# NG-HEADER: Ubicación: db/models.py
# NG-HEADER: Descripción: Modelos ORM de catálogo, recetas y órdenes de fulfillment.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Modelos principales de la base de datos."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

ORDER_STATUSES = ("pending", "processing", "success", "failed")
TERMINAL_STATUSES = ("success", "failed")

_STATUS_CHECK = "status IN ('pending','processing','success','failed')"


class Product(Base):
    """Unidad vendible interna (lo que compra el cliente)."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    denomination: Mapped[Optional[int]] = mapped_column(Integer)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    status: Mapped[str] = mapped_column(String(20), default="active")
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)

    recipe_lines: Mapped[list["RecipeLine"]] = relationship(back_populates="product")


class Supplier(Base):
    __tablename__ = "suppliers"
    __table_args__ = (UniqueConstraint("code"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    # Identifica qué adaptador de automatización aplica (ej: MH_OFFICIAL)
    code: Mapped[str] = mapped_column(String(50))
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)

    items: Mapped[list["UpstreamItem"]] = relationship(back_populates="supplier")


class UpstreamItem(Base):
    """Ítem del catálogo del proveedor upstream."""

    __tablename__ = "upstream_items"
    __table_args__ = (UniqueConstraint("supplier_id", "external_ref", name="uq_upstream_items_supplier_ref"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    supplier_id: Mapped[int] = mapped_column(ForeignKey("suppliers.id", ondelete="CASCADE"))
    # Referencia usada para ubicar el elemento clickeable en la UI (no es la PK)
    external_ref: Mapped[str] = mapped_column(String(100))
    name: Mapped[Optional[str]] = mapped_column(String(200))
    denomination: Mapped[Optional[int]] = mapped_column(Integer)
    cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))

    supplier: Mapped["Supplier"] = relationship(back_populates="items")


class RecipeLine(Base):
    """Fila de receta (bill of materials): producto -> ítem upstream x multiplicador."""

    __tablename__ = "recipe_lines"
    __table_args__ = (
        CheckConstraint("multiplier > 0", name="ck_recipe_lines_multiplier"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    upstream_item_id: Mapped[int] = mapped_column(ForeignKey("upstream_items.id", ondelete="RESTRICT"))
    multiplier: Mapped[int] = mapped_column(Integer)

    product: Mapped["Product"] = relationship(back_populates="recipe_lines")
    upstream_item: Mapped["UpstreamItem"] = relationship()


class Account(Base):
    """Cuenta que origina órdenes (revendedor)."""

    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    telegram_chat_id: Mapped[Optional[str]] = mapped_column(String(64))
    webhook_url: Mapped[Optional[str]] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)


class BuyerOrder(Base):
    __tablename__ = "buyer_orders"
    __table_args__ = (
        CheckConstraint(_STATUS_CHECK, name="ck_buyer_orders_status"),
        CheckConstraint("quantity > 0", name="ck_buyer_orders_quantity"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"))
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))
    # Identificador de la cuenta destino en el sitio upstream (player id)
    destination: Mapped[str] = mapped_column(String(100))
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, onupdate=datetime.utcnow)

    product: Mapped["Product"] = relationship()
    account: Mapped[Optional["Account"]] = relationship()


class FulfillmentOrder(Base):
    __tablename__ = "fulfillment_orders"
    __table_args__ = (
        CheckConstraint(_STATUS_CHECK, name="ck_fulfillment_orders_status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    buyer_order_id: Mapped[int] = mapped_column(ForeignKey("buyer_orders.id", ondelete="CASCADE"), index=True)
    supplier_id: Mapped[int] = mapped_column(ForeignKey("suppliers.id"))
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    provider_trx_id: Mapped[Optional[str]] = mapped_column(String(100))
    # Todos los ids obtenidos (incluye parciales cuando la orden falla)
    provider_trx_ids: Mapped[Optional[list]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    buyer_order: Mapped["BuyerOrder"] = relationship()
    supplier: Mapped["Supplier"] = relationship()
    lines: Mapped[list["FulfillmentLine"]] = relationship(
        back_populates="order", order_by="FulfillmentLine.id"
    )


class FulfillmentLine(Base):
    __tablename__ = "fulfillment_lines"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_fulfillment_lines_quantity"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    fulfillment_order_id: Mapped[int] = mapped_column(
        ForeignKey("fulfillment_orders.id", ondelete="CASCADE"), index=True
    )
    upstream_item_id: Mapped[int] = mapped_column(ForeignKey("upstream_items.id"))
    quantity: Mapped[int] = mapped_column(Integer)

    order: Mapped["FulfillmentOrder"] = relationship(back_populates="lines")
    upstream_item: Mapped["UpstreamItem"] = relationship()
