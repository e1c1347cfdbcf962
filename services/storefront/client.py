# NG-HEADER: Nombre de archivo: client.py
# NG-HEADER: Ubicación: services/storefront/client.py
# NG-HEADER: Descripción: Máquina de estados de sesión y compra por unidad en el storefront upstream
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Cliente de automatización del storefront upstream.

Estados:
    DISCONNECTED -> SESSION_ESTABLISHING -> AUTHENTICATED
      -> {ITEM_SELECTING -> BUYER_VALIDATING -> CONFIRM_PENDING -> SETTLED} x N
      -> CLOSED

Cada unidad es una compra completa (seleccionar ítem, cargar destino, validar
comprador, confirmar). La UI upstream admite una sola transacción en curso, así
que las unidades se ejecutan estrictamente en secuencia. Al primer error se
corta y se devuelven los ids ya obtenidos junto con el error.

Uso:
    factory = StorefrontSessionFactory(settings, cookie_jar=jar)
    async with factory.session() as client:
        result = await client.place_order("12345678", [LineSpec("BASE-1", 5)])
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Optional, Sequence

from agent_core.config import Settings
from services.fulfillment.dto import LineSpec, PurchaseResult
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
    StorefrontError,
    TransactionRejected,
)
from services.fulfillment.retry import ClockFn, Deadline, RetryExhausted, SleepFn, poll_until
from services.storefront.browser import BrowserCapability, PlaywrightBrowser
from services.storefront.session_cache import CookieJarStore

logger = logging.getLogger(__name__)

# Textos de banner que no son error durante la validación del comprador
SUCCESS_BANNER_MARKERS = ("berhasil", "success")
# Frases conocidas de rechazo tras confirmar
REJECTION_PHRASES = ("saldo tidak cukup", "insufficient balance", "gagal", "failed", "error")


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    SESSION_ESTABLISHING = "session_establishing"
    AUTHENTICATED = "authenticated"
    ITEM_SELECTING = "item_selecting"
    BUYER_VALIDATING = "buyer_validating"
    CONFIRM_PENDING = "confirm_pending"
    SETTLED = "settled"
    CLOSED = "closed"


@dataclass(frozen=True)
class StorefrontSelectors:
    """Landmarks de la UI upstream."""

    password_input: str = "input[type='password']"
    id_login_tab: str = "span[name='index-html-id-login']"
    alt_login_tab: str = ".login-text"
    username_input: str = "input[type='text']:visible"
    login_button: str = "#pwdLoginButton"
    alt_login_button: str = ".btnLogin"
    login_error: str = ".alert-danger"
    authenticated_url: str = "**/trade/index**"
    item: str = "#itemId_{ref}"
    stock_label: str = ".itemPriceLabel"
    buyer_input: str = "#buyerId"
    buyer_modal: str = "#queryBuyerName"
    banner: str = "#publicTip"
    banner_text: str = "#publicTxt"
    confirm_button: str = "a[onclick*='Index.sellItem']"

    def item_selector(self, external_ref: str) -> str:
        return self.item.format(ref=external_ref)


@dataclass(frozen=True)
class StorefrontScripts:
    dismiss_invitation: str = (
        "try { hideInvitation(); "
        "document.getElementById('thickdivInvitation').style.display = 'none'; } catch(e) {}"
    )
    close_overlay: str = "try { Common.close(); } catch(e) {}"
    query_buyer: str = "try { Index.queryBuyer(); } catch(e) {}"


@dataclass(frozen=True)
class StorefrontTimings:
    """Tiempos en segundos salvo los sufijados ``_ms``."""

    navigation_timeout_ms: int = 30000
    login_timeout_ms: int = 15000
    restored_session_timeout_ms: int = 5000
    page_ready_timeout_ms: int = 10000
    overlay_settle: float = 0.2
    item_settle: float = 0.3
    validation_interval: float = 0.2
    validation_attempts: int = 15
    pre_confirm_pause: float = 0.5
    confirm_attempts: int = 3
    confirm_poll_interval: float = 0.3
    confirm_poll_attempts: int = 10
    inter_unit_pause: float = 0.8


@dataclass(frozen=True)
class BannerReading:
    text: str


def is_error_banner(text: Optional[str]) -> bool:
    """Un banner vacío, 'null' o con texto de éxito no cuenta como error."""
    if text is None:
        return False
    t = text.strip()
    if not t or t.lower() == "null":
        return False
    low = t.lower()
    return not any(marker in low for marker in SUCCESS_BANNER_MARKERS)


def is_rejection(text: str) -> bool:
    low = text.strip().lower()
    return any(phrase in low for phrase in REJECTION_PHRASES)


class StorefrontClient:
    def __init__(
        self,
        browser: BrowserCapability,
        *,
        entry_url: str,
        username: str,
        password: str,
        cookie_jar: Optional[CookieJarStore] = None,
        reuse_cached_session: bool = True,
        selectors: StorefrontSelectors = StorefrontSelectors(),
        scripts: StorefrontScripts = StorefrontScripts(),
        timings: StorefrontTimings = StorefrontTimings(),
        order_budget: Optional[float] = None,
        receipt_pattern: Optional[str] = None,
        sleep: SleepFn = asyncio.sleep,
        clock: ClockFn = time.monotonic,
        now: Callable[[], float] = time.time,
    ) -> None:
        self.browser = browser
        self.entry_url = entry_url
        self._username = username
        self._password = password
        self.cookie_jar = cookie_jar
        self.reuse_cached_session = reuse_cached_session
        self.selectors = selectors
        self.scripts = scripts
        self.timings = timings
        self.order_budget = order_budget
        self._receipt_re = re.compile(receipt_pattern) if receipt_pattern else None
        self._sleep = sleep
        self._clock = clock
        self._now = now
        self.state = SessionState.DISCONNECTED

    def _transition(self, state: SessionState) -> None:
        logger.debug(f"[storefront] {self.state.value} -> {state.value}")
        self.state = state

    # --- Sesión ---------------------------------------------------------------

    async def establish_session(self) -> None:
        """Abre sesión autenticada (cookies cacheadas o formulario de login).

        Raises:
            LoginRejected: el sitio mostró un error inline
            LoginTimeout: no se alcanzó la URL autenticada a tiempo
        """
        self._transition(SessionState.SESSION_ESTABLISHING)
        sel = self.selectors
        restored = False
        if self.cookie_jar is not None and self.reuse_cached_session:
            cookies = await self.cookie_jar.load()
            if cookies:
                restored = await self.browser.add_cookies(cookies)

        logger.info("[storefront] 🚀 Abriendo storefront %s", self.entry_url)
        await self.browser.goto(self.entry_url, timeout_ms=self.timings.navigation_timeout_ms)

        if restored and await self.browser.wait_for_url(
            sel.authenticated_url, timeout_ms=self.timings.restored_session_timeout_ms
        ):
            logger.info("[storefront] ✓ Sesión restaurada desde cache")
            self._transition(SessionState.AUTHENTICATED)
            await self.browser.evaluate(self.scripts.dismiss_invitation)
            return

        try:
            await self._login_with_form()
        except StorefrontError:
            self._transition(SessionState.DISCONNECTED)
            raise

        logger.info("[storefront] ✓ Login exitoso")
        self._transition(SessionState.AUTHENTICATED)
        await self.browser.evaluate(self.scripts.dismiss_invitation)
        if self.cookie_jar is not None:
            await self.cookie_jar.save(await self.browser.cookies())

    async def _login_with_form(self) -> None:
        sel = self.selectors
        # Dos layouts posibles: el formulario de password ya visible o detrás de una pestaña
        if not await self.browser.is_visible(sel.password_input):
            await self.browser.click(sel.id_login_tab, force=True)
            if not await self.browser.is_visible(sel.password_input):
                await self.browser.click(sel.alt_login_tab, force=True)

        await self.browser.fill(sel.username_input, self._username)
        await self.browser.fill(sel.password_input, self._password)

        if not await self.browser.click(sel.login_button, force=True):
            await self.browser.click(sel.alt_login_button)

        if await self.browser.wait_for_url(sel.authenticated_url, timeout_ms=self.timings.login_timeout_ms):
            return
        if await self.browser.is_visible(sel.login_error):
            msg = (await self.browser.inner_text(sel.login_error) or "").strip()
            logger.error(f"[storefront] ✗ Login rechazado: {msg}")
            raise LoginRejected(msg or "login rejected")
        logger.error("[storefront] ✗ Login sin respuesta (timeout)")
        raise LoginTimeout()

    async def close(self) -> None:
        if self.state == SessionState.CLOSED:
            return
        try:
            await self.browser.close()
        finally:
            self._transition(SessionState.CLOSED)

    # --- Compra -----------------------------------------------------------------

    async def place_order(self, destination: str, lines: Sequence[LineSpec]) -> PurchaseResult:
        """Ejecuta ``quantity`` unidades por línea, en orden.

        Nunca levanta errores de storefront: los devuelve en ``PurchaseResult.error``
        junto con los ids de las unidades completadas antes del fallo.
        """
        if self.state not in (SessionState.AUTHENTICATED, SessionState.SETTLED):
            raise SessionNotReady(f"session is {self.state.value}, expected authenticated")

        total = sum(line.quantity for line in lines)
        deadline = Deadline(self.order_budget, clock=self._clock)
        result = PurchaseResult()
        logger.info(f"[storefront] 🛒 Iniciando {total} transacciones para destino {destination}")

        if not await self.browser.wait_for_selector(
            self.selectors.buyer_input, timeout_ms=self.timings.page_ready_timeout_ms
        ):
            logger.warning("[storefront] ⚠ Campo de destino no visible todavía; se continúa")
        await self.browser.evaluate(self.scripts.dismiss_invitation)

        unit = 0
        try:
            for line in lines:
                for _ in range(line.quantity):
                    unit += 1
                    if deadline.expired:
                        raise PlaceOrderDeadlineExceeded(self.order_budget or 0, unit=unit)
                    if unit == 1 or unit % 5 == 0:
                        logger.info(f"[storefront] 🔄 Unidad {unit}/{total} ({line.external_ref})")
                    trx_id = await self._purchase_unit(line.external_ref, destination, unit, deadline)
                    result.transaction_ids.append(trx_id)
                    if unit < total:
                        await self._sleep(self.timings.inter_unit_pause)
        except StorefrontError as e:
            if e.unit is None:
                e.unit = unit
            logger.warning(
                f"[storefront] ✗ Unidad {unit}/{total} falló: {type(e).__name__}: {e} "
                f"({len(result.transaction_ids)} completadas)"
            )
            result.error = e
            return result

        logger.info(f"[storefront] 🏁 {total} transacciones completadas")
        return result

    async def _purchase_unit(self, external_ref: str, destination: str, unit: int, deadline: Deadline) -> str:
        sel = self.selectors
        t = self.timings

        # 1. Cerrar overlays transitorios
        self._transition(SessionState.ITEM_SELECTING)
        await self.browser.evaluate(self.scripts.close_overlay)
        await self._sleep(t.overlay_settle)

        # 2. Seleccionar ítem
        item_sel = sel.item_selector(external_ref)
        if await self.browser.count(item_sel) == 0:
            raise ItemNotFound(external_ref, unit=unit)
        stock = await self.browser.inner_text(f"{item_sel} {sel.stock_label}")
        if stock is not None and stock.strip() == "0":
            raise StockExhausted(external_ref, unit=unit)
        if not await self.browser.click(item_sel, force=True):
            raise StorefrontError(f"could not select item {external_ref}", unit=unit)
        await self._sleep(t.item_settle)

        # 3. Destino (no se vuelve a tipear si ya está cargado)
        if await self.browser.input_value(sel.buyer_input) != destination:
            await self.browser.click(sel.buyer_input, force=True)
            await self.browser.fill(sel.buyer_input, "")
            if not await self.browser.fill(sel.buyer_input, destination):
                raise StorefrontError(f"could not type destination {destination}", unit=unit)

        # 4. Validación del comprador
        self._transition(SessionState.BUYER_VALIDATING)
        await self.browser.evaluate(self.scripts.query_buyer)

        async def _buyer_confirmed() -> Optional[bool]:
            if await self.browser.is_visible(sel.buyer_modal):
                name = await self.browser.inner_text(sel.buyer_modal)
                if name and name.strip():
                    return True
            if await self.browser.is_visible(sel.banner):
                text = await self.browser.inner_text(sel.banner_text)
                if is_error_banner(text):
                    await self.browser.evaluate(self.scripts.close_overlay)
                    raise BuyerValidationFailed((text or "").strip(), unit=unit)
            return None

        try:
            await poll_until(
                _buyer_confirmed,
                interval=t.validation_interval,
                max_attempts=t.validation_attempts,
                deadline=deadline,
                sleep=self._sleep,
            )
        except RetryExhausted as e:
            if e.deadline_hit:
                raise PlaceOrderDeadlineExceeded(self.order_budget or 0, unit=unit) from e
            raise BuyerValidationTimeout(unit=unit) from e

        await self._sleep(t.pre_confirm_pause)

        # 5. Confirmar (hasta N intentos si no aparece banner)
        self._transition(SessionState.CONFIRM_PENDING)
        reading = await self._confirm(unit, deadline)
        if reading is None:
            raise NoServerResponse(unit=unit)
        if is_rejection(reading.text):
            await self.browser.evaluate(self.scripts.close_overlay)
            raise TransactionRejected(reading.text, unit=unit)

        self._transition(SessionState.SETTLED)
        return self._transaction_id(reading.text, unit)

    async def _confirm(self, unit: int, deadline: Deadline) -> Optional[BannerReading]:
        sel = self.selectors
        t = self.timings

        async def _result_banner() -> Optional[BannerReading]:
            if not await self.browser.is_visible(sel.banner):
                return None
            return BannerReading((await self.browser.inner_text(sel.banner_text) or "").strip())

        for attempt in range(1, t.confirm_attempts + 1):
            if await self.browser.is_visible(sel.confirm_button):
                await self.browser.click(sel.confirm_button, force=True)
            try:
                return await poll_until(
                    _result_banner,
                    interval=t.confirm_poll_interval,
                    max_attempts=t.confirm_poll_attempts,
                    deadline=deadline,
                    sleep=self._sleep,
                )
            except RetryExhausted as e:
                if e.deadline_hit:
                    raise PlaceOrderDeadlineExceeded(self.order_budget or 0, unit=unit) from e
                logger.debug(f"[storefront] Unidad {unit}: sin respuesta en intento {attempt}/{t.confirm_attempts}")
        return None

    def _transaction_id(self, banner_text: str, unit: int) -> str:
        if self._receipt_re is not None:
            m = self._receipt_re.search(banner_text)
            if m:
                return m.group(1) if m.groups() else m.group(0)
        # El storefront no expone un comprobante: id sintético por tiempo + unidad
        return f"TRX-{int(self._now())}-{unit}"


BrowserLauncher = Callable[..., Awaitable[BrowserCapability]]


class StorefrontSessionFactory:
    """Abre sesiones autenticadas con liberación garantizada del navegador."""

    def __init__(
        self,
        settings: Settings,
        *,
        cookie_jar: Optional[CookieJarStore] = None,
        launcher: BrowserLauncher = PlaywrightBrowser.launch,
        **client_options,
    ) -> None:
        self.settings = settings
        self.cookie_jar = cookie_jar
        self.launcher = launcher
        self.client_options = client_options

    @asynccontextmanager
    async def session(self) -> AsyncIterator[StorefrontClient]:
        browser = await self.launcher(headless=self.settings.storefront_headless)
        client = StorefrontClient(
            browser,
            entry_url=self.settings.storefront_url,
            username=self.settings.storefront_username,
            password=self.settings.storefront_password,
            cookie_jar=self.cookie_jar,
            order_budget=self.settings.order_budget_seconds,
            **self.client_options,
        )
        try:
            await client.establish_session()
            yield client
        finally:
            await client.close()
