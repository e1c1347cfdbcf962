# NG-HEADER: Nombre de archivo: health.py
# NG-HEADER: Ubicación: services/routers/health.py
# NG-HEADER: Descripción: Endpoints de healthcheck y estado de servicios.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Endpoints de health del backend de fulfillment.

- Liveness básico (`/health`)
- Conectividad DB/Redis (`/health/db`, `/health/redis`)
"""

from __future__ import annotations

from typing import Any, Dict

import redis.asyncio as aioredis
from fastapi import APIRouter
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from agent_core.config import settings
from db.session import SessionLocal

router = APIRouter(prefix="/health", tags=["health"])


def _status(ok: bool, detail: str | None = None) -> Dict[str, Any]:
    out: Dict[str, Any] = {"ok": ok}
    if detail:
        out["detail"] = detail
    return out


@router.get("")
async def health_root() -> Dict[str, str]:
    """Liveness simple del backend (si responde, está vivo)."""
    return {"status": "ok"}


@router.get("/db")
async def health_db() -> Dict[str, Any]:
    """Valida conexión a la base de datos (SELECT 1)."""
    try:
        async with SessionLocal() as db:
            await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        return _status(False, detail=str(e))
    return _status(True)


@router.get("/redis")
async def health_redis() -> Dict[str, Any]:
    """Verifica conexión a Redis (cache de cookies del storefront)."""
    client = aioredis.from_url(settings.redis_url, decode_responses=True)
    try:
        pong = await client.ping()
        return _status(bool(pong))
    except (RedisError, OSError) as e:
        return _status(False, detail=str(e))
    finally:
        await client.aclose()
