# NG-HEADER: Nombre de archivo: dispatcher.py
# NG-HEADER: Ubicación: services/notifications/dispatcher.py
# NG-HEADER: Descripción: Fan-out de resultados de órdenes a Telegram y webhooks
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Dispatcher de notificaciones de fulfillment.

Canales:
- Admin (Telegram, HTML): siempre, en éxito y en fallo.
- Usuario (Telegram): solo en éxito y si la cuenta tiene ``telegram_chat_id``.
- Webhook de la cuenta: solo en éxito y si tiene ``webhook_url``.

El envío es fire-and-forget: ``dispatch_*`` agenda tareas y vuelve enseguida.
Los errores de entrega se registran y nunca alteran el estado de la orden.
"""

from __future__ import annotations

import asyncio
import html
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Sequence

import httpx

from agent_core.config import Settings
from services.fulfillment.dto import OrderContext
from services.fulfillment.errors import NotificationDeliveryFailed
from services.fulfillment.retry import SleepFn
from services.notifications.telegram import send_message
from services.notifications.webhook import deliver_webhook

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

Sender = Callable[..., Awaitable[bool]]


def success_admin_message(ctx: OrderContext, transaction_ids: Sequence[str], when: str) -> str:
    return (
        "✅ <b>TRANSAKSI SUKSES</b>\n\n"
        f"<b>User ID   :</b> {html.escape(ctx.destination)}\n"
        f"<b>Produk    :</b> {html.escape(ctx.product_name)}\n"
        f"<b>SN / Trx  :</b> {html.escape(', '.join(transaction_ids))}\n"
        f"<b>Supplier  :</b> {html.escape(ctx.supplier_name)}\n"
        f"<b>Tanggal   :</b> {when}\n\n"
        f"<i>Ref ID: {ctx.buyer_order_id}</i>"
    )


def success_user_message(ctx: OrderContext, transaction_ids: Sequence[str]) -> str:
    return (
        "✅ <b>Transaksi berhasil</b>\n\n"
        f"<b>Produk :</b> {html.escape(ctx.product_name)}\n"
        f"<b>Tujuan :</b> {html.escape(ctx.destination)}\n"
        f"<b>SN     :</b> {html.escape(', '.join(transaction_ids))}"
    )


def failure_admin_message(order_id: int, reason: str) -> str:
    return f"❌ <b>TRANSAKSI GAGAL</b>\n\n<b>Err:</b> {html.escape(reason)}\n<b>ID:</b> {order_id}"


def webhook_payload(ctx: OrderContext, transaction_ids: Sequence[str], when: str) -> dict[str, Any]:
    return {
        "seller_id": ctx.account_id,
        "message_type": "transaction_update",
        "timestamp": when,
        "data": {
            "trx_id": ctx.buyer_order_id,
            "ref_id": ctx.buyer_order_id,
            "product_name": ctx.product_name,
            "code": ctx.product_id,
            "price": float(ctx.product_price) if ctx.product_price is not None else None,
            "status": "success",
            "status_code": 1,
            "sn": ", ".join(transaction_ids),
            "destination": ctx.destination,
            "message": "Transaksi berhasil diproses",
        },
    }


class NotificationDispatcher:
    def __init__(
        self,
        *,
        admin_chat_id: Optional[str],
        bot_token: Optional[str] = None,
        telegram_enabled: Optional[bool] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        webhook_attempts: int = 3,
        webhook_delay: float = 2.0,
        webhook_timeout: float = 10.0,
        sender: Sender = send_message,
        sleep: SleepFn = asyncio.sleep,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.admin_chat_id = admin_chat_id
        self.bot_token = bot_token
        self.telegram_enabled = telegram_enabled
        self.http_client = http_client
        self.webhook_attempts = webhook_attempts
        self.webhook_delay = webhook_delay
        self.webhook_timeout = webhook_timeout
        self._send = sender
        self._sleep = sleep
        self._now = now
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "NotificationDispatcher":
        options: dict[str, Any] = {
            "admin_chat_id": settings.telegram_admin_chat_id,
            "bot_token": settings.telegram_bot_token,
            "telegram_enabled": settings.telegram_enabled,
            "webhook_attempts": settings.webhook_max_attempts,
            "webhook_delay": settings.webhook_retry_delay,
            "webhook_timeout": settings.webhook_timeout,
        }
        options.update(overrides)
        return cls(**options)

    async def _telegram(self, text: str, chat_id: Optional[str]) -> bool:
        return await self._send(
            text,
            chat_id=chat_id,
            token=self.bot_token,
            enabled=self.telegram_enabled,
            parse_mode="HTML",
            client=self.http_client,
        )

    async def notify_success(self, ctx: OrderContext, transaction_ids: Sequence[str]) -> None:
        when = self._now().strftime(TIMESTAMP_FORMAT)
        await self._telegram(success_admin_message(ctx, transaction_ids, when), self.admin_chat_id)

        if ctx.telegram_chat_id:
            await self._telegram(success_user_message(ctx, transaction_ids), ctx.telegram_chat_id)
        else:
            logger.debug(f"[notify] Cuenta {ctx.account_id} sin telegram_chat_id; se omite mensaje personal")

        if ctx.webhook_url:
            logger.info(f"[notify] 🔗 Enviando webhook a cuenta {ctx.account_id}: {ctx.webhook_url}")
            try:
                await deliver_webhook(
                    ctx.webhook_url,
                    webhook_payload(ctx, transaction_ids, when),
                    client=self.http_client,
                    max_attempts=self.webhook_attempts,
                    delay=self.webhook_delay,
                    timeout=self.webhook_timeout,
                    sleep=self._sleep,
                )
            except NotificationDeliveryFailed as e:
                logger.error(f"[notify] ✗ {e}")
        else:
            logger.info(f"[notify] ⚠ Cuenta {ctx.account_id} sin webhook_url, se omite callback")

    async def notify_failure(self, order_id: int, reason: str) -> None:
        await self._telegram(failure_admin_message(order_id, reason), self.admin_chat_id)

    # --- Fire-and-forget ----------------------------------------------------------

    def _spawn(self, coro: Awaitable[None], label: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error(f"[notify] ✗ Notificación '{label}' falló: {type(exc).__name__}: {exc}")

        task.add_done_callback(_done)
        return task

    def dispatch_success(self, ctx: OrderContext, transaction_ids: Sequence[str]) -> asyncio.Task:
        return self._spawn(self.notify_success(ctx, list(transaction_ids)), f"success:{ctx.fulfillment_order_id}")

    def dispatch_failure(self, order_id: int, reason: str) -> asyncio.Task:
        return self._spawn(self.notify_failure(order_id, reason), f"failure:{order_id}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Espera a que terminen todas las entregas en curso."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
