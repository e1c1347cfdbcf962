# NG-HEADER: Nombre de archivo: test_storefront_client.py
# NG-HEADER: Ubicación: tests/test_storefront_client.py
# NG-HEADER: Descripción: Tests de la máquina de estados del cliente de storefront con DOM falso
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Tests del cliente de automatización del storefront.

Usan ``FakeStorefrontPage`` (implementa ``BrowserCapability``) y ``FakeClock``,
así que ningún test abre un navegador real ni espera tiempo de pared.
"""

import json

import pytest

from services.fulfillment.dto import LineSpec
from services.fulfillment.errors import (
    BuyerValidationFailed,
    BuyerValidationTimeout,
    ItemNotFound,
    LoginRejected,
    LoginTimeout,
    NoServerResponse,
    PlaceOrderDeadlineExceeded,
    SessionNotReady,
    StockExhausted,
    TransactionRejected,
)
from services.storefront.client import (
    SessionState,
    StorefrontClient,
    StorefrontSessionFactory,
    is_error_banner,
    is_rejection,
)
from services.storefront.session_cache import CookieJarStore
from tests.fakes import ENTRY_URL, SEL, SESSION_COOKIE, FakeClock, FakeStorefrontPage, MemoryCache

NOW = 1_700_000_000


def make_client(page, *, clock=None, cookie_jar=None, **kw) -> StorefrontClient:
    clock = clock or FakeClock()
    return StorefrontClient(
        page,
        entry_url=ENTRY_URL,
        username="reseller",
        password="secreto",
        cookie_jar=cookie_jar,
        sleep=clock.sleep,
        clock=clock,
        now=lambda: NOW,
        **kw,
    )


async def logged_in_client(page, **kw) -> StorefrontClient:
    client = make_client(page, **kw)
    await client.establish_session()
    return client


class TestBannerClassification:
    @pytest.mark.parametrize("text", [None, "", "   ", "null", "NULL", "Berhasil", "Success!"])
    def test_non_error_banners(self, text):
        assert is_error_banner(text) is False

    @pytest.mark.parametrize("text", ["ID tidak ditemukan", "Player not found"])
    def test_error_banners(self, text):
        assert is_error_banner(text) is True

    @pytest.mark.parametrize(
        "text", ["Saldo tidak cukup", "Insufficient Balance", "Transaksi GAGAL", "failed", "System error"]
    )
    def test_rejection_phrases(self, text):
        assert is_rejection(text) is True

    def test_settled_banner_is_not_rejection(self):
        assert is_rejection("Transaksi berhasil") is False


class TestEstablishSession:
    """Login con layouts alternativos, rechazos y cache de cookies."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("layout", ["password", "id_tab", "alt_tab"])
    async def test_login_layouts(self, layout):
        page = FakeStorefrontPage(layout=layout)
        client = await logged_in_client(page)
        assert client.state == SessionState.AUTHENTICATED
        assert page.filled[SEL.username_input] == "reseller"
        assert page.filled[SEL.password_input] == "secreto"
        # Popup de invitación descartado tras el login
        assert any("hideInvitation" in s for s in page.scripts)

    @pytest.mark.asyncio
    async def test_alt_layout_uses_alternate_submit(self):
        page = FakeStorefrontPage(layout="alt_tab")
        await logged_in_client(page)
        assert SEL.alt_login_button in page.clicks

    @pytest.mark.asyncio
    async def test_login_rejected_carries_inline_message(self):
        page = FakeStorefrontPage(login_outcome="rejected", login_error_text="Password salah")
        client = make_client(page)
        with pytest.raises(LoginRejected) as exc:
            await client.establish_session()
        assert str(exc.value) == "Password salah"
        assert client.state == SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_login_timeout(self):
        page = FakeStorefrontPage(login_outcome="timeout")
        client = make_client(page)
        with pytest.raises(LoginTimeout):
            await client.establish_session()
        assert page.wait_for_url_timeouts == [15000]

    @pytest.mark.asyncio
    async def test_cookies_cached_after_login(self):
        cache = MemoryCache()
        jar = CookieJarStore(cache, key="storefront:cookies", ttl=86400)
        await logged_in_client(FakeStorefrontPage(), cookie_jar=jar)
        assert json.loads(cache.data["storefront:cookies"]) == [SESSION_COOKIE]
        assert cache.ttls["storefront:cookies"] == 86400

    @pytest.mark.asyncio
    async def test_cache_failure_does_not_fail_login(self):
        jar = CookieJarStore(MemoryCache(fail=True), key="storefront:cookies")
        client = await logged_in_client(FakeStorefrontPage(), cookie_jar=jar)
        assert client.state == SessionState.AUTHENTICATED

    @pytest.mark.asyncio
    async def test_cached_session_skips_form_login(self):
        cache = MemoryCache()
        cache.data["storefront:cookies"] = json.dumps([SESSION_COOKIE])
        page = FakeStorefrontPage()
        client = await logged_in_client(page, cookie_jar=CookieJarStore(cache, key="storefront:cookies"))
        assert client.state == SessionState.AUTHENTICATED
        assert page.fill_log == []
        assert SEL.login_button not in page.clicks

    @pytest.mark.asyncio
    async def test_stale_cached_cookies_fall_back_to_form(self):
        cache = MemoryCache()
        cache.data["storefront:cookies"] = json.dumps([{**SESSION_COOKIE, "value": "expired"}])
        page = FakeStorefrontPage()
        await logged_in_client(page, cookie_jar=CookieJarStore(cache, key="storefront:cookies"))
        assert SEL.login_button in page.clicks
        assert json.loads(cache.data["storefront:cookies"]) != [{**SESSION_COOKIE, "value": "expired"}]

    @pytest.mark.asyncio
    async def test_cache_reuse_can_be_disabled(self):
        cache = MemoryCache()
        cache.data["storefront:cookies"] = json.dumps([SESSION_COOKIE])
        page = FakeStorefrontPage()
        await logged_in_client(
            page, cookie_jar=CookieJarStore(cache, key="storefront:cookies"), reuse_cached_session=False
        )
        assert SEL.login_button in page.clicks


class TestPlaceOrder:
    """Loop por unidad y clasificación de fallas."""

    @pytest.mark.asyncio
    async def test_requires_authenticated_session(self):
        client = make_client(FakeStorefrontPage())
        with pytest.raises(SessionNotReady):
            await client.place_order("12345678", [LineSpec("BASE-1", 1)])

    @pytest.mark.asyncio
    async def test_coin_5_produces_five_ids(self):
        page = FakeStorefrontPage()
        client = await logged_in_client(page)
        result = await client.place_order("12345678", [LineSpec("BASE-1", 5)])
        assert result.ok
        assert result.transaction_ids == [f"TRX-{NOW}-{k}" for k in range(1, 6)]
        assert page.query_count == 5
        assert client.state == SessionState.SETTLED

    @pytest.mark.asyncio
    async def test_lines_run_sequentially_with_global_unit_index(self):
        page = FakeStorefrontPage()
        client = await logged_in_client(page)
        result = await client.place_order("12345678", [LineSpec("BASE-60", 1), LineSpec("BASE-1", 2)])
        assert result.transaction_ids == [f"TRX-{NOW}-1", f"TRX-{NOW}-2", f"TRX-{NOW}-3"]

    @pytest.mark.asyncio
    async def test_destination_typed_only_once(self):
        page = FakeStorefrontPage()
        client = await logged_in_client(page)
        await client.place_order("12345678", [LineSpec("BASE-1", 3)])
        typed = [v for sel, v in page.fill_log if sel == SEL.buyer_input and v]
        assert typed == ["12345678"]

    @pytest.mark.asyncio
    async def test_insufficient_balance_on_unit_3_of_10(self):
        page = FakeStorefrontPage(confirm_script={3: ["Saldo tidak cukup"]})
        client = await logged_in_client(page)
        result = await client.place_order("12345678", [LineSpec("BASE-1", 10)])
        assert result.transaction_ids == [f"TRX-{NOW}-1", f"TRX-{NOW}-2"]
        assert isinstance(result.error, TransactionRejected)
        assert str(result.error) == "Saldo tidak cukup"
        assert result.error.unit == 3
        # No se intentan unidades posteriores
        assert page.query_count == 3

    @pytest.mark.asyncio
    async def test_item_not_found(self):
        page = FakeStorefrontPage(items={"BASE-1": "99"})
        client = await logged_in_client(page)
        result = await client.place_order("12345678", [LineSpec("BASE-1", 1), LineSpec("BASE-999", 1)])
        assert result.transaction_ids == [f"TRX-{NOW}-1"]
        assert isinstance(result.error, ItemNotFound)
        assert result.error.unit == 2
        assert result.error.external_ref == "BASE-999"

    @pytest.mark.asyncio
    async def test_stock_exhausted(self):
        page = FakeStorefrontPage(items={"BASE-1": "0"})
        client = await logged_in_client(page)
        result = await client.place_order("12345678", [LineSpec("BASE-1", 2)])
        assert result.transaction_ids == []
        assert isinstance(result.error, StockExhausted)
        assert result.error.unit == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("banner", ["", "null", "Berhasil", "success"])
    async def test_buyer_validation_tolerates_non_error_banner(self, banner):
        page = FakeStorefrontPage(validation_banner=banner, validation_delay=2)
        client = await logged_in_client(page)
        result = await client.place_order("12345678", [LineSpec("BASE-1", 1)])
        assert result.ok
        assert result.transaction_ids == [f"TRX-{NOW}-1"]

    @pytest.mark.asyncio
    async def test_buyer_validation_failed_uses_banner_text(self):
        page = FakeStorefrontPage(buyer_outcome="invalid", buyer_error_text="ID tidak ditemukan")
        client = await logged_in_client(page)
        result = await client.place_order("00000000", [LineSpec("BASE-1", 1)])
        assert isinstance(result.error, BuyerValidationFailed)
        assert str(result.error) == "ID tidak ditemukan"
        assert result.error.unit == 1

    @pytest.mark.asyncio
    async def test_buyer_validation_timeout_after_15_polls(self):
        clock = FakeClock()
        page = FakeStorefrontPage(buyer_outcome="silent")
        client = await logged_in_client(page, clock=clock)
        result = await client.place_order("12345678", [LineSpec("BASE-1", 1)])
        assert isinstance(result.error, BuyerValidationTimeout)
        assert page.validation_polls == 15
        assert clock.sleeps.count(0.2) == 1 + 14  # overlay + esperas entre polls

    @pytest.mark.asyncio
    async def test_confirm_retried_until_banner(self):
        page = FakeStorefrontPage(confirm_script={1: [None, "Transaksi berhasil"]})
        client = await logged_in_client(page)
        result = await client.place_order("12345678", [LineSpec("BASE-1", 1)])
        assert result.ok
        assert page.confirm_attempts[1] == 2

    @pytest.mark.asyncio
    async def test_no_server_response_after_three_confirms(self):
        page = FakeStorefrontPage(confirm_script={2: [None]})
        client = await logged_in_client(page)
        result = await client.place_order("12345678", [LineSpec("BASE-1", 3)])
        assert result.transaction_ids == [f"TRX-{NOW}-1"]
        assert isinstance(result.error, NoServerResponse)
        assert result.error.unit == 2
        assert page.confirm_attempts[2] == 3

    @pytest.mark.asyncio
    async def test_overall_deadline_stops_between_units(self):
        clock = FakeClock()
        page = FakeStorefrontPage()
        client = await logged_in_client(page, clock=clock, order_budget=1.5)
        result = await client.place_order("12345678", [LineSpec("BASE-1", 5)])
        # Unidad 1: 0.2 + 0.3 + 0.5 = 1.0s; pausa 0.8s; la unidad 2 ya no arranca
        assert result.transaction_ids == [f"TRX-{NOW}-1"]
        assert isinstance(result.error, PlaceOrderDeadlineExceeded)
        assert result.error.unit == 2

    @pytest.mark.asyncio
    async def test_receipt_pattern_extracts_real_id(self):
        page = FakeStorefrontPage(default_confirm_text="Transaksi berhasil. Ref: MH-00991")
        client = await logged_in_client(page, receipt_pattern=r"Ref: (\S+)")
        result = await client.place_order("12345678", [LineSpec("BASE-1", 1)])
        assert result.transaction_ids == ["MH-00991"]


class TestSessionFactory:
    @pytest.mark.asyncio
    async def test_browser_closed_even_when_body_raises(self):
        from agent_core.config import Settings

        page = FakeStorefrontPage()

        async def _launcher(**_kw):
            return page

        factory = StorefrontSessionFactory(Settings(), launcher=_launcher, sleep=FakeClock().sleep)
        with pytest.raises(RuntimeError):
            async with factory.session() as client:
                assert client.state == SessionState.AUTHENTICATED
                raise RuntimeError("boom")
        assert page.closed is True
        assert client.state == SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_browser_closed_when_login_fails(self):
        from agent_core.config import Settings

        page = FakeStorefrontPage(login_outcome="rejected")

        async def _launcher(**_kw):
            return page

        factory = StorefrontSessionFactory(Settings(), launcher=_launcher, sleep=FakeClock().sleep)
        with pytest.raises(LoginRejected):
            async with factory.session():
                pass
        assert page.closed is True
