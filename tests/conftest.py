#!/usr/bin/env python
# NG-HEADER: Nombre de archivo: conftest.py
# NG-HEADER: Ubicación: tests/conftest.py
# NG-HEADER: Descripción: Fixtures y configuración compartida de Pytest.
# NG-HEADER: Lineamientos: Ver AGENTS.md
import os
import sys
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio

# Asegurar path del proyecto antes de importar módulos internos
project_root = Path(__file__).resolve().parents[1]
if str(project_root) not in sys.path:
    sys.path.append(str(project_root))

# -------- Entorno base de tests --------
# DB en memoria y notificaciones externas apagadas
os.environ["DB_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENV"] = "dev"
os.environ["TELEGRAM_ENABLED"] = "0"

import db.session as _session  # noqa: E402
import db.base as _base  # noqa: E402
import db.models  # noqa: F401,E402
from db.models import (  # noqa: E402
    Account,
    BuyerOrder,
    Product,
    RecipeLine,
    Supplier,
    UpstreamItem,
)
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from services.fulfillment.store import FulfillmentStore  # noqa: E402

Base = _base.Base


@pytest_asyncio.fixture(scope="function", autouse=True)
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """DB limpia por test (SQLite memoria compartida). Retorna sesión para usar en fixtures/tests."""
    engine = _session.engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with _session.SessionLocal() as session:
        yield session

    # Cleanup
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture()
def store() -> FulfillmentStore:
    return FulfillmentStore(_session.SessionLocal)


@dataclass
class Catalog:
    """Ids del catálogo sembrado para los tests."""

    supplier_id: int
    other_supplier_id: int
    base_1_id: int
    base_60_id: int
    coin_5_id: int
    coin_mix_100_id: int
    no_recipe_id: int
    account_id: int
    bare_account_id: int


@pytest_asyncio.fixture
async def catalog(db_session: AsyncSession) -> Catalog:
    """Proveedor MH_OFFICIAL, ítems BASE-1/BASE-60 y productos con receta.

    - Coin-5       = 5 x BASE-1
    - Coin-Mix-100 = 1 x BASE-60 + 40 x BASE-1
    - Sin-Receta   = (sin filas)
    """
    supplier = Supplier(name="Mitra Higgs", code="MH_OFFICIAL")
    other = Supplier(name="Otro", code="OTHER")
    db_session.add_all([supplier, other])
    await db_session.flush()

    base_1 = UpstreamItem(supplier_id=supplier.id, external_ref="BASE-1", name="1 Coin", denomination=1)
    base_60 = UpstreamItem(supplier_id=supplier.id, external_ref="BASE-60", name="60 Coin", denomination=60)
    coin_5 = Product(name="Coin-5", denomination=5, price=Decimal("5000"))
    coin_mix = Product(name="Coin-Mix-100", denomination=100, price=Decimal("95000"))
    no_recipe = Product(name="Sin-Receta", denomination=1, price=Decimal("1000"))
    account = Account(name="Reseller", telegram_chat_id="777", webhook_url="https://hooks.example/trx")
    bare = Account(name="Sin canales")
    db_session.add_all([base_1, base_60, coin_5, coin_mix, no_recipe, account, bare])
    await db_session.flush()

    db_session.add_all(
        [
            RecipeLine(product_id=coin_5.id, upstream_item_id=base_1.id, multiplier=5),
            RecipeLine(product_id=coin_mix.id, upstream_item_id=base_60.id, multiplier=1),
            RecipeLine(product_id=coin_mix.id, upstream_item_id=base_1.id, multiplier=40),
        ]
    )
    await db_session.commit()
    return Catalog(
        supplier_id=supplier.id,
        other_supplier_id=other.id,
        base_1_id=base_1.id,
        base_60_id=base_60.id,
        coin_5_id=coin_5.id,
        coin_mix_100_id=coin_mix.id,
        no_recipe_id=no_recipe.id,
        account_id=account.id,
        bare_account_id=bare.id,
    )


@pytest.fixture()
def buyer_order_factory(db_session: AsyncSession):
    """Crea BuyerOrders pendientes."""

    async def _make(product_id: int, *, quantity: int = 1, destination: str = "12345678", account_id=None) -> int:
        bo = BuyerOrder(
            product_id=product_id,
            quantity=quantity,
            destination=destination,
            account_id=account_id,
            status="pending",
        )
        db_session.add(bo)
        await db_session.commit()
        return bo.id

    return _make


# -------- Cliente HTTP asíncrono para tests --------
@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    from services.api import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
