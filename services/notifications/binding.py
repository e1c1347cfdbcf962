# NG-HEADER: Nombre de archivo: binding.py
# NG-HEADER: Ubicación: services/notifications/binding.py
# NG-HEADER: Descripción: Vinculación de chats de Telegram con cuentas vía deep-link /start
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Vinculación ``/start <account_id>`` -> ``Account.telegram_chat_id``."""

from __future__ import annotations

import html
import logging
from typing import Any, Awaitable, Callable, Optional

from services.fulfillment.errors import PersistenceError
from services.fulfillment.store import FulfillmentStore
from services.notifications.telegram import send_message

logger = logging.getLogger(__name__)

START_PREFIX = "/start "


def parse_start_payload(text: Optional[str]) -> Optional[int]:
    """Devuelve el id de cuenta de un ``/start <id>`` o None si no aplica."""
    if not text or not text.startswith(START_PREFIX):
        return None
    parts = text.split()
    if len(parts) < 2:
        return None
    try:
        return int(parts[1])
    except ValueError:
        return None


async def handle_update(
    update: dict[str, Any],
    store: FulfillmentStore,
    *,
    reply: Callable[..., Awaitable[bool]] = send_message,
) -> str:
    """Procesa un update del bot. Devuelve 'bound', 'failed' o 'ignored'.

    Siempre termina sin excepción para que el webhook responda 200 y Telegram
    no reintente el mismo update.
    """
    message = update.get("message") or {}
    text = message.get("text")
    chat_id = (message.get("chat") or {}).get("id")
    first_name = (message.get("from") or {}).get("first_name") or ""
    logger.info(f"[telegram] 📩 Mensaje recibido: {text!r} | chat_id={chat_id}")

    if chat_id is None or not (text or "").startswith(START_PREFIX):
        return "ignored"

    account_id = parse_start_payload(text)
    bound = False
    if account_id is not None:
        try:
            bound = await store.bind_telegram_chat(account_id, str(chat_id))
        except PersistenceError as e:
            logger.error(f"[telegram] ✗ Error de base al vincular chat {chat_id}: {e}")

    if not bound:
        logger.warning(f"[telegram] ✗ No se pudo vincular chat {chat_id} (payload={text!r})")
        await reply(
            "❌ Gagal menghubungkan akun. Pastikan ID valid atau hubungi admin.",
            chat_id=chat_id,
        )
        return "failed"

    logger.info(f"[telegram] ✓ Chat {chat_id} vinculado a cuenta {account_id}")
    await reply(
        f"✅ <b>BERHASIL!</b>\n\nHalo {html.escape(first_name)}, akun Anda telah terhubung.\n"
        "Notifikasi transaksi akan dikirim ke sini.",
        chat_id=chat_id,
    )
    return "bound"
