# NG-HEADER: Nombre de archivo: browser.py
# NG-HEADER: Ubicación: services/storefront/browser.py
# NG-HEADER: Descripción: Interfaz mínima de navegador y adaptador Playwright
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Capacidad de navegador headless usada por el cliente del storefront.

El cliente depende solo de ``BrowserCapability``; ``PlaywrightBrowser`` es el
único lugar que conoce Playwright. En tests se usa un DOM falso que implementa
el mismo protocolo.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeout,
    async_playwright,
)

from services.fulfillment.errors import BrowserUnavailable

logger = logging.getLogger(__name__)

MOBILE_USER_AGENT = (
    "Mozilla/5.0 (Linux; Android 10; SM-G960F) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Mobile Safari/537.36"
)

CHROMIUM_ARGS = [
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-dev-shm-usage',
    '--disable-gpu',
]


class BrowserCapability(Protocol):
    """Superficie mínima que necesita el cliente del storefront."""

    @property
    def current_url(self) -> str: ...

    async def goto(self, url: str, *, timeout_ms: int = 30000) -> None: ...

    async def fill(self, selector: str, value: str) -> bool: ...

    async def click(self, selector: str, *, force: bool = False) -> bool: ...

    async def is_visible(self, selector: str) -> bool: ...

    async def count(self, selector: str) -> int: ...

    async def inner_text(self, selector: str) -> Optional[str]: ...

    async def input_value(self, selector: str) -> str: ...

    async def evaluate(self, script: str) -> Any: ...

    async def wait_for_url(self, pattern: str, *, timeout_ms: int) -> bool: ...

    async def wait_for_selector(self, selector: str, *, timeout_ms: int) -> bool: ...

    async def cookies(self) -> list[dict[str, Any]]: ...

    async def add_cookies(self, cookies: list[dict[str, Any]]) -> bool: ...

    async def close(self) -> None: ...


class PlaywrightBrowser:
    """Adaptador de ``BrowserCapability`` sobre ``playwright.async_api``."""

    def __init__(
        self,
        playwright: Playwright,
        browser: Browser,
        context: BrowserContext,
        page: Page,
        *,
        action_timeout_ms: int = 5000,
    ) -> None:
        self._pw = playwright
        self._browser = browser
        self._context = context
        self._page = page
        self.action_timeout_ms = action_timeout_ms

    @classmethod
    async def launch(
        cls,
        *,
        headless: bool = True,
        user_agent: str = MOBILE_USER_AGENT,
        viewport: tuple[int, int] = (375, 812),
        action_timeout_ms: int = 5000,
    ) -> "PlaywrightBrowser":
        """Lanza Chromium con vista mobile. Levanta ``BrowserUnavailable`` si falla."""
        pw = None
        try:
            pw = await async_playwright().start()
            browser = await pw.chromium.launch(headless=headless, args=CHROMIUM_ARGS)
            context = await browser.new_context(
                user_agent=user_agent,
                viewport={'width': viewport[0], 'height': viewport[1]},
            )
            page = await context.new_page()
        except (PlaywrightError, OSError) as e:
            logger.error(f"[browser] ✗ Error al lanzar navegador: {e}")
            if pw is not None:
                await pw.stop()
            raise BrowserUnavailable(f"browser launch failed: {e}") from e
        logger.debug("[browser] Chromium lanzado (headless=%s)", headless)
        return cls(pw, browser, context, page, action_timeout_ms=action_timeout_ms)

    @property
    def current_url(self) -> str:
        return self._page.url

    async def goto(self, url: str, *, timeout_ms: int = 30000) -> None:
        try:
            await self._page.goto(url, timeout=timeout_ms, wait_until='domcontentloaded')
        except PlaywrightError as e:
            raise BrowserUnavailable(f"navigation to {url} failed: {e}") from e

    async def fill(self, selector: str, value: str) -> bool:
        try:
            await self._page.locator(selector).first.fill(value, timeout=self.action_timeout_ms)
            return True
        except PlaywrightError as e:
            logger.debug(f"[browser] fill({selector}) falló: {e}")
            return False

    async def click(self, selector: str, *, force: bool = False) -> bool:
        try:
            await self._page.locator(selector).first.click(force=force, timeout=self.action_timeout_ms)
            return True
        except PlaywrightError as e:
            logger.debug(f"[browser] click({selector}) falló: {e}")
            return False

    async def is_visible(self, selector: str) -> bool:
        try:
            return await self._page.locator(selector).first.is_visible()
        except PlaywrightError:
            return False

    async def count(self, selector: str) -> int:
        try:
            return await self._page.locator(selector).count()
        except PlaywrightError:
            return 0

    async def inner_text(self, selector: str) -> Optional[str]:
        try:
            return await self._page.locator(selector).first.inner_text(timeout=self.action_timeout_ms)
        except PlaywrightError:
            return None

    async def input_value(self, selector: str) -> str:
        try:
            return await self._page.locator(selector).first.input_value(timeout=self.action_timeout_ms)
        except PlaywrightError:
            return ""

    async def evaluate(self, script: str) -> Any:
        try:
            return await self._page.evaluate(script)
        except PlaywrightError as e:
            logger.debug(f"[browser] evaluate falló: {e}")
            return None

    async def wait_for_url(self, pattern: str, *, timeout_ms: int) -> bool:
        try:
            await self._page.wait_for_url(pattern, timeout=timeout_ms)
            return True
        except PlaywrightTimeout:
            return False
        except PlaywrightError as e:
            raise BrowserUnavailable(f"page lost while waiting for {pattern}: {e}") from e

    async def wait_for_selector(self, selector: str, *, timeout_ms: int) -> bool:
        try:
            await self._page.wait_for_selector(selector, timeout=timeout_ms)
            return True
        except PlaywrightTimeout:
            return False
        except PlaywrightError as e:
            raise BrowserUnavailable(f"page lost while waiting for {selector}: {e}") from e

    async def cookies(self) -> list[dict[str, Any]]:
        try:
            return [dict(c) for c in await self._context.cookies()]
        except PlaywrightError as e:
            logger.warning(f"[browser] No se pudieron leer cookies: {e}")
            return []

    async def add_cookies(self, cookies: list[dict[str, Any]]) -> bool:
        try:
            await self._context.add_cookies(cookies)  # type: ignore[arg-type]
            return True
        except PlaywrightError as e:
            logger.warning(f"[browser] No se pudieron restaurar cookies: {e}")
            return False

    async def close(self) -> None:
        try:
            await self._browser.close()
        except PlaywrightError as e:
            logger.warning(f"[browser] Error al cerrar navegador: {e}")
        try:
            await self._pw.stop()
        except PlaywrightError as e:
            logger.warning(f"[browser] Error al detener Playwright: {e}")
