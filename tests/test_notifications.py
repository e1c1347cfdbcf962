# NG-HEADER: Nombre de archivo: test_notifications.py
# NG-HEADER: Ubicación: tests/test_notifications.py
# NG-HEADER: Descripción: Tests de webhooks, Telegram y dispatcher de notificaciones
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Tests de notificaciones (webhook con reintentos, Telegram y dispatcher)."""

import json
from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import pytest

from services.fulfillment.dto import LineSpec, OrderContext
from services.fulfillment.errors import NotificationDeliveryFailed
from services.notifications.dispatcher import NotificationDispatcher, webhook_payload
from services.notifications.telegram import send_message
from services.notifications.webhook import deliver_webhook
from tests.fakes import FakeClock


HOOK_URL = "https://hooks.example/x"
TELEGRAM_URL = "https://api.telegram.org/bot123:abc/sendMessage"


def _responses(*statuses):
    return [s if isinstance(s, Exception) else httpx.Response(s, json={"ok": s == 200}) for s in statuses]


def _ctx(**overrides) -> OrderContext:
    data = dict(
        fulfillment_order_id=10,
        buyer_order_id=20,
        destination="12345678",
        lines=[LineSpec("BASE-1", 5)],
        product_id=3,
        product_name="Coin-5",
        product_price=Decimal("5000.00"),
        supplier_name="Mitra Higgs",
        account_id=7,
        telegram_chat_id="777",
        webhook_url="https://hooks.example/trx",
    )
    data.update(overrides)
    return OrderContext(**data)


class TestDeliverWebhook:
    """Hasta 3 intentos con pausa fija; solo 2xx es éxito."""

    @pytest.mark.asyncio
    async def test_gives_up_after_exactly_three_attempts(self, respx_mock):
        route = respx_mock.post(HOOK_URL).mock(side_effect=_responses(500, 502, 503, 200))
        clock = FakeClock()
        async with httpx.AsyncClient() as client:
            with pytest.raises(NotificationDeliveryFailed):
                await deliver_webhook(HOOK_URL, {"a": 1}, client=client, sleep=clock.sleep)
        assert route.call_count == 3
        assert clock.sleeps == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_stops_on_first_2xx(self, respx_mock):
        route = respx_mock.post(HOOK_URL).mock(side_effect=_responses(500, 204, 200))
        async with httpx.AsyncClient() as client:
            attempts = await deliver_webhook(HOOK_URL, {"a": 1}, client=client, sleep=FakeClock().sleep)
        assert attempts == 2
        assert route.call_count == 2
        assert json.loads(route.calls[0].request.content) == {"a": 1}

    @pytest.mark.asyncio
    async def test_network_errors_count_as_attempts(self, respx_mock):
        respx_mock.post(HOOK_URL).mock(side_effect=_responses(httpx.ConnectError("refused"), 200))
        async with httpx.AsyncClient() as client:
            attempts = await deliver_webhook(HOOK_URL, {}, client=client, sleep=FakeClock().sleep)
        assert attempts == 2

    @pytest.mark.asyncio
    async def test_redirect_is_not_success(self, respx_mock):
        route = respx_mock.post(HOOK_URL).mock(side_effect=_responses(302, 302, 302))
        async with httpx.AsyncClient() as client:
            with pytest.raises(NotificationDeliveryFailed):
                await deliver_webhook(HOOK_URL, {}, client=client, sleep=FakeClock().sleep)
        assert route.call_count == 3


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_disabled_skips_request(self, respx_mock):
        async with httpx.AsyncClient() as client:
            assert await send_message("hola", chat_id="1", token="t", enabled=False, client=client) is False
        assert respx_mock.calls.call_count == 0

    @pytest.mark.asyncio
    async def test_posts_html_message(self, respx_mock):
        route = respx_mock.post(TELEGRAM_URL).mock(return_value=httpx.Response(200, json={"ok": True}))
        async with httpx.AsyncClient() as client:
            ok = await send_message("<b>hola</b>", chat_id="42", token="123:abc", enabled=True, client=client)
        assert ok is True
        body = json.loads(route.calls[0].request.content)
        assert body == {"chat_id": "42", "text": "<b>hola</b>", "parse_mode": "HTML"}

    @pytest.mark.asyncio
    async def test_api_error_returns_false(self, respx_mock):
        respx_mock.post(TELEGRAM_URL).mock(
            return_value=httpx.Response(400, json={"ok": False, "error_code": 400, "description": "chat not found"})
        )
        async with httpx.AsyncClient() as client:
            assert await send_message("x", chat_id="42", token="123:abc", enabled=True, client=client) is False

    @pytest.mark.asyncio
    async def test_timeout_returns_false(self, respx_mock):
        respx_mock.post(TELEGRAM_URL).mock(side_effect=httpx.TimeoutException("Timeout"))
        async with httpx.AsyncClient() as client:
            assert await send_message("x", chat_id="42", token="123:abc", enabled=True, client=client) is False


class TestDispatcher:
    """Selección de canales y envío fire-and-forget."""

    def _dispatcher(self, sender, client=None):
        return NotificationDispatcher(
            admin_chat_id="admin",
            bot_token="123:abc",
            telegram_enabled=True,
            http_client=client,
            sender=sender,
            sleep=FakeClock().sleep,
            now=lambda: datetime(2026, 1, 2, 3, 4, 5),
        )

    @pytest.mark.asyncio
    async def test_success_notifies_admin_user_and_webhook(self, respx_mock):
        route = respx_mock.post("https://hooks.example/trx").mock(return_value=httpx.Response(200))
        sender = AsyncMock(return_value=True)
        async with httpx.AsyncClient() as client:
            d = self._dispatcher(sender, client)
            d.dispatch_success(_ctx(), ["TRX-1", "TRX-2"])
            await d.drain()

        chats = [c.kwargs["chat_id"] for c in sender.await_args_list]
        assert chats == ["admin", "777"]
        admin_text = sender.await_args_list[0].args[0]
        assert "TRANSAKSI SUKSES" in admin_text
        assert "TRX-1, TRX-2" in admin_text
        assert route.call_count == 1
        body = json.loads(route.calls[0].request.content)
        assert body["message_type"] == "transaction_update"
        assert body["data"]["status_code"] == 1

    @pytest.mark.asyncio
    async def test_success_without_channels_only_notifies_admin(self, respx_mock):
        sender = AsyncMock(return_value=True)
        async with httpx.AsyncClient() as client:
            d = self._dispatcher(sender, client)
            await d.notify_success(_ctx(telegram_chat_id=None, webhook_url=None), ["TRX-1"])
        assert [c.kwargs["chat_id"] for c in sender.await_args_list] == ["admin"]
        assert respx_mock.calls.call_count == 0

    @pytest.mark.asyncio
    async def test_failure_is_admin_only_with_reason(self):
        sender = AsyncMock(return_value=True)
        d = self._dispatcher(sender)
        d.dispatch_failure(10, "Saldo tidak cukup")
        await d.drain()
        sender.assert_awaited_once()
        text = sender.await_args.args[0]
        assert "TRANSAKSI GAGAL" in text
        assert "Saldo tidak cukup" in text
        assert sender.await_args.kwargs["chat_id"] == "admin"

    @pytest.mark.asyncio
    async def test_webhook_exhaustion_is_only_logged(self, respx_mock):
        route = respx_mock.post("https://hooks.example/trx").mock(side_effect=_responses(500, 500, 500))
        sender = AsyncMock(return_value=True)
        async with httpx.AsyncClient() as client:
            d = self._dispatcher(sender, client)
            task = d.dispatch_success(_ctx(telegram_chat_id=None), ["TRX-1"])
            await d.drain()
        assert task.exception() is None
        assert route.call_count == 3

    @pytest.mark.asyncio
    async def test_sender_crash_does_not_escape_drain(self):
        sender = AsyncMock(side_effect=RuntimeError("telegram caído"))
        d = self._dispatcher(sender)
        d.dispatch_failure(1, "x")
        await d.drain()
        assert d.pending == 0

    def test_webhook_payload_shape(self):
        payload = webhook_payload(_ctx(), ["TRX-1"], "2026-01-02 03:04:05")
        assert payload["seller_id"] == 7
        assert payload["timestamp"] == "2026-01-02 03:04:05"
        assert payload["data"] == {
            "trx_id": 20,
            "ref_id": 20,
            "product_name": "Coin-5",
            "code": 3,
            "price": 5000.0,
            "status": "success",
            "status_code": 1,
            "sn": "TRX-1",
            "destination": "12345678",
            "message": "Transaksi berhasil diproses",
        }
