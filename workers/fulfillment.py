#!/usr/bin/env python
# NG-HEADER: Nombre de archivo: fulfillment.py
# NG-HEADER: Ubicación: workers/fulfillment.py
# NG-HEADER: Descripción: Worker de fulfillment (poll -> claim -> compra en storefront -> persistir -> notificar)
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Worker de fulfillment de órdenes contra el storefront upstream.

Uso:
    python -m workers.fulfillment          # loop continuo
    python -m workers.fulfillment --once   # procesa a lo sumo una orden

Variables de entorno relevantes:
    DB_URL, REDIS_URL, SUPPLIER_CODE, WORKER_POLL_INTERVAL, ORDER_BUDGET_SECONDS,
    STOREFRONT_URL / STOREFRONT_USERNAME / STOREFRONT_PASSWORD,
    TELEGRAM_ENABLED / TELEGRAM_BOT_TOKEN / TELEGRAM_ADMIN_CHAT_ID
"""

from __future__ import annotations

import asyncio
import logging
import re
import signal
import sys
from pathlib import Path
from typing import Optional

# FIX: Windows ProactorEventLoop no soporta psycopg async
if sys.platform == 'win32':
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

import httpx

from agent_core.config import Settings, settings as default_settings
from services.fulfillment.errors import OrderContextInvalid, PersistenceError, StorefrontError
from services.fulfillment.store import FulfillmentStore
from services.notifications.dispatcher import NotificationDispatcher
from services.storefront.client import StorefrontSessionFactory
from services.storefront.session_cache import CookieJarStore, RedisSessionCache

ROOT = Path(__file__).resolve().parent.parent
LOGS_DIR = ROOT / "logs"

logger = logging.getLogger(__name__)


class TokenMaskingFilter(logging.Filter):
    """Filtro que enmascara tokens de Telegram en los logs."""

    # bot<ID>:<TOKEN> -> bot<ID>:***MASKED***
    TELEGRAM_TOKEN_PATTERN = re.compile(r'(bot\d+):([A-Za-z0-9_-]+)', re.IGNORECASE)

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = self.TELEGRAM_TOKEN_PATTERN.sub(r'\1:***MASKED***', str(record.msg))
            if record.args and isinstance(record.args, tuple):
                record.args = tuple(
                    self.TELEGRAM_TOKEN_PATTERN.sub(r'\1:***MASKED***', a) if isinstance(a, str) else a
                    for a in record.args
                )
        return True


def configure_logging(level: str = "INFO") -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_file_path = LOGS_DIR / "worker_fulfillment.log"
    try:
        LOGS_DIR.mkdir(exist_ok=True)
        handlers.append(logging.FileHandler(log_file_path, mode='a', encoding="utf-8"))
    except OSError as e:
        print(f"Warning: No se pudo abrir archivo de log {log_file_path}: {e}")
        print("Continuando solo con logging a consola...")

    token_filter = TokenMaskingFilter()
    for handler in handlers:
        handler.addFilter(token_filter)

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )
    # Evita que httpx loguee URLs con el token del bot
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


class FulfillmentWorker:
    def __init__(
        self,
        store: FulfillmentStore,
        storefront_factory: StorefrontSessionFactory,
        dispatcher: NotificationDispatcher,
        *,
        supplier_code: str,
        poll_interval: float = 5.0,
    ) -> None:
        self.store = store
        self.storefront_factory = storefront_factory
        self.dispatcher = dispatcher
        self.supplier_code = supplier_code
        self.poll_interval = poll_interval

    async def _fail(self, order_id: int, reason: str, transaction_ids: list[str] | None = None) -> None:
        ids = transaction_ids or []
        logger.error(f"[worker] ❌ Orden {order_id} falló: {reason} ({len(ids)} transacciones parciales)")
        if await self.store.mark_failed(order_id, reason, ids):
            self.dispatcher.dispatch_failure(order_id, reason)

    async def _fail_best_effort(self, order_id: int, reason: str) -> None:
        try:
            await self._fail(order_id, reason)
        except PersistenceError as e:
            logger.error(f"[worker] ✗ No se pudo marcar la orden {order_id} como fallida: {e}")

    async def process_next(self) -> Optional[int]:
        """Procesa la orden pendiente más antigua. Devuelve su id o None si no hubo."""
        supplier = await self.store.find_supplier_by_code(self.supplier_code)
        if supplier is None:
            logger.warning(f"[worker] ⚠ Proveedor '{self.supplier_code}' no encontrado en la base")
            return None

        order_id = await self.store.oldest_pending(supplier.id)
        if order_id is None:
            return None
        if not await self.store.claim(order_id):
            logger.info(f"[worker] Orden {order_id} ya fue reclamada por otro worker")
            return None
        logger.info(f"[worker] 🔥 Procesando orden #{order_id}")

        try:
            ctx = await self.store.load_context(order_id)
        except OrderContextInvalid as e:
            await self._fail(order_id, str(e))
            return order_id
        except Exception as e:
            # Orden ya reclamada: no puede quedar en processing
            await self._fail_best_effort(order_id, f"context load error: {type(e).__name__}: {e}")
            raise

        logger.info(
            f"[worker] 🛒 Destino {ctx.destination}: {ctx.total_units} unidades en {len(ctx.lines)} líneas"
        )
        try:
            async with self.storefront_factory.session() as client:
                result = await client.place_order(ctx.destination, ctx.lines)
        except StorefrontError as e:
            # Fallas de sesión (navegador, login): ninguna unidad ejecutada
            await self._fail(order_id, str(e))
            return order_id
        except Exception as e:
            await self._fail_best_effort(order_id, f"unexpected error: {type(e).__name__}: {e}")
            raise

        if not result.ok:
            await self._fail(order_id, str(result.error), result.transaction_ids)
            return order_id

        if await self.store.mark_success(order_id, result.transaction_ids):
            logger.info(f"[worker] ✅ Orden {order_id} completada: {len(result.transaction_ids)} transacciones")
            self.dispatcher.dispatch_success(ctx, result.transaction_ids)
        return order_id

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        stop = stop_event or asyncio.Event()
        logger.info(
            f"[worker] 🚀 Iniciando worker de fulfillment (proveedor={self.supplier_code}, "
            f"intervalo={self.poll_interval}s)"
        )
        while not stop.is_set():
            try:
                await self.process_next()
            except Exception as e:
                # Un error en una iteración nunca detiene el loop
                logger.error(f"[worker] ❌ Error en iteración: {type(e).__name__}: {e}", exc_info=True)
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("[worker] Deteniendo worker; esperando notificaciones pendientes...")
        await self.dispatcher.drain()


async def run_worker(cfg: Settings = default_settings, *, once: bool = False) -> None:
    from db.session import SessionLocal

    cache = RedisSessionCache.from_url(cfg.redis_url)
    cookie_jar = CookieJarStore(cache, key=cfg.session_cache_key, ttl=cfg.session_cache_ttl)
    async with httpx.AsyncClient(timeout=cfg.webhook_timeout) as http:
        worker = FulfillmentWorker(
            FulfillmentStore(SessionLocal),
            StorefrontSessionFactory(cfg, cookie_jar=cookie_jar),
            NotificationDispatcher.from_settings(cfg, http_client=http),
            supplier_code=cfg.supplier_code,
            poll_interval=cfg.worker_poll_interval,
        )
        try:
            if once:
                processed = await worker.process_next()
                logger.info(f"[worker] Ejecución única: orden procesada={processed}")
                await worker.dispatcher.drain()
            else:
                stop = asyncio.Event()
                loop = asyncio.get_running_loop()
                for sig in (signal.SIGINT, signal.SIGTERM):
                    try:
                        loop.add_signal_handler(sig, stop.set)
                    except NotImplementedError:
                        # Windows: sin soporte de señales en el loop
                        pass
                await worker.run_forever(stop)
        finally:
            await cache.close()


def main(argv: Optional[list[str]] = None) -> None:
    args = sys.argv[1:] if argv is None else argv
    configure_logging(default_settings.log_level)
    asyncio.run(run_worker(default_settings, once="--once" in args))


if __name__ == "__main__":
    main()
