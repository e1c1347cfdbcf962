# NG-HEADER: Nombre de archivo: api.py
# NG-HEADER: Ubicación: services/api.py
# NG-HEADER: Descripción: Aplicación FastAPI (disparo de fulfillment, estado de órdenes, webhook de Telegram)
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Aplicación FastAPI principal."""

# --- Windows psycopg async fix (no-op en otros SO) ---
import sys, asyncio
if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
# --- end fix ---

import logging
import time

from fastapi import FastAPI, Request
from starlette.responses import JSONResponse

from agent_core.config import settings
from db.session import ensure_schema_if_memory
from services.fulfillment.errors import PersistenceError
from services.routers import health, orders, telegram

level_name = settings.log_level if settings.log_level in logging._nameToLevel else "INFO"
logger = logging.getLogger("gerbang")
logger.setLevel(level_name)
if not logger.handlers:
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
    logger.addHandler(stream_handler)

# `redirect_slashes=False` evita redirecciones 307 entre `/ruta` y `/ruta/`
app = FastAPI(title="Gerbang Fulfillment", redirect_slashes=False)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Registra cada solicitud con su duración."""
    start = time.perf_counter()
    resp = await call_next(request)
    dur = (time.perf_counter() - start) * 1000
    logger.info("%s %s -> %s (%.2fms)", request.method, request.url.path, resp.status_code, dur)
    return resp


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):  # type: ignore[override]
    """La base no respondió: 503 sin filtrar detalles internos."""
    logger.error("Error de persistencia en %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse({"detail": "database unavailable"}, status_code=503)


app.include_router(health.router)
app.include_router(orders.router)
app.include_router(telegram.router)


@app.on_event("startup")
async def _init_inmemory_db():
    """Auto-crea el esquema cuando usamos SQLite en memoria (tests)."""
    await ensure_schema_if_memory()
