#!/usr/bin/env python
# NG-HEADER: Nombre de archivo: telegram.py
# NG-HEADER: Ubicación: services/notifications/telegram.py
# NG-HEADER: Descripción: Envío de mensajes a Telegram con feature flag y overrides
# NG-HEADER: Lineamientos: Ver AGENTS.md

from __future__ import annotations

import logging
from typing import Optional

import httpx

from agent_core.config import settings

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"


async def send_message(
    text: str,
    *,
    chat_id: Optional[str | int] = None,
    token: Optional[str] = None,
    enabled: Optional[bool] = None,
    timeout: float = 6.0,
    parse_mode: Optional[str] = "HTML",
    client: Optional[httpx.AsyncClient] = None,
) -> bool:
    """Envía un mensaje de texto a Telegram si la integración está habilitada.

    - Respeta TELEGRAM_ENABLED salvo que se pase ``enabled`` explícito.
    - Usa token/chat_id provistos, o defaults de entorno:
      TELEGRAM_BOT_TOKEN / TELEGRAM_ADMIN_CHAT_ID.
    - No levanta excepciones: devuelve True si intentó y fue 200 OK, False si omitió o falló.
    """
    if enabled is None:
        enabled = settings.telegram_enabled
    if not enabled:
        logger.debug("TELEGRAM_ENABLED no está habilitado, omitiendo envío")
        return False

    tok = token or settings.telegram_bot_token
    chat = chat_id or settings.telegram_admin_chat_id
    if not tok:
        logger.warning("TELEGRAM_BOT_TOKEN no está configurado, no se puede enviar mensaje")
        return False
    if not chat:
        logger.warning("chat_id no proporcionado y TELEGRAM_ADMIN_CHAT_ID no configurado, no se puede enviar mensaje")
        return False

    payload: dict = {"chat_id": chat, "text": text}
    if parse_mode:
        payload["parse_mode"] = parse_mode
    url = f"{TELEGRAM_API}/bot{tok}/sendMessage"
    try:
        if client is not None:
            resp = await client.post(url, json=payload, timeout=timeout)
        else:
            async with httpx.AsyncClient(timeout=timeout) as own:
                resp = await own.post(url, json=payload)
    except httpx.TimeoutException:
        logger.error(f"✗ Timeout enviando mensaje a chat_id={chat}")
        return False
    except httpx.HTTPError as e:
        logger.error(f"✗ Excepción enviando mensaje a chat_id={chat}: {type(e).__name__}: {e}")
        return False

    if resp.status_code == 200:
        logger.debug(f"✓ Mensaje enviado exitosamente a chat_id={chat}")
        return True
    # Log del error de Telegram API
    try:
        error_data = resp.json()
        error_code = error_data.get("error_code")
        description = error_data.get("description", "Unknown error")
        logger.error(f"✗ Error enviando mensaje a chat_id={chat}: code={error_code}, description={description}")
    except ValueError:
        logger.error(f"✗ Error enviando mensaje a chat_id={chat}: HTTP {resp.status_code} - {resp.text[:200]}")
    return False
