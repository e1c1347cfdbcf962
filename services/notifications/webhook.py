# NG-HEADER: Nombre de archivo: webhook.py
# NG-HEADER: Ubicación: services/notifications/webhook.py
# NG-HEADER: Descripción: Entrega de callbacks HTTP a cuentas con reintentos acotados
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Entrega de webhooks de resultado de transacción."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from services.fulfillment.errors import NotificationDeliveryFailed
from services.fulfillment.retry import SleepFn

logger = logging.getLogger(__name__)


async def deliver_webhook(
    url: str,
    payload: dict[str, Any],
    *,
    client: Optional[httpx.AsyncClient] = None,
    max_attempts: int = 3,
    delay: float = 2.0,
    timeout: float = 10.0,
    sleep: SleepFn = asyncio.sleep,
) -> int:
    """POST JSON a ``url`` hasta ``max_attempts`` veces; solo 2xx es éxito.

    Devuelve el número de intentos usados. Levanta ``NotificationDeliveryFailed``
    si ninguno respondió 2xx.
    """
    attempts = 0

    async def _post(http: httpx.AsyncClient) -> None:
        nonlocal attempts
        attempts += 1
        try:
            resp = await http.post(url, json=payload, timeout=timeout)
        except httpx.HTTPError as e:
            logger.warning(f"[webhook] ⚠ Intento {attempts}/{max_attempts} a {url} falló: {type(e).__name__}: {e}")
            raise
        if not 200 <= resp.status_code < 300:
            logger.warning(f"[webhook] ⚠ Intento {attempts}/{max_attempts} a {url}: HTTP {resp.status_code}")
            # dispara reintento
            raise httpx.HTTPError(f"status {resp.status_code}")

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_fixed(delay),
        retry=retry_if_exception_type(httpx.HTTPError),
        sleep=sleep,
        reraise=True,
    )
    try:
        if client is not None:
            await retrying(_post, client)
        else:
            async with httpx.AsyncClient(timeout=timeout) as own:
                await retrying(_post, own)
    except httpx.HTTPError as e:
        logger.error(f"[webhook] ✗ Webhook abandonado tras {attempts} intentos: {url}")
        raise NotificationDeliveryFailed(f"webhook {url} gave up after {attempts} attempts") from e

    logger.info(f"[webhook] ✓ Webhook enviado a {url} (intento {attempts})")
    return attempts
