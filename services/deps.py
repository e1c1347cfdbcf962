# NG-HEADER: Nombre de archivo: deps.py
# NG-HEADER: Ubicación: services/deps.py
# NG-HEADER: Descripción: Dependencias FastAPI compartidas por los routers
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

from db.session import SessionLocal, ensure_schema_if_memory
from services.fulfillment.store import FulfillmentStore


async def get_store() -> FulfillmentStore:
    """Gateway de persistencia sobre el ``SessionLocal`` global."""
    await ensure_schema_if_memory()
    return FulfillmentStore(SessionLocal)
