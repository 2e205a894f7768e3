"""Driver Adapter - the boundary to the wrapped browser-automation library.

Field Registry and Mutation Engine depend only on the DriverAdapter protocol.
PlaywrightDriver implements it over the active page of a BrowserSession.
Every call is bounded: an elapsed timeout surfaces as EnvironmentNotReadyError.
"""

from __future__ import annotations

import asyncio
import logging
import typing
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

from playwright.async_api import Browser, BrowserContext, ConsoleMessage, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from dalil.errors import DriverError, EnvironmentNotReadyError, UsageError
from dalil.schemas.runtime import RunnerMode

__all__ = [
    'BrowserSession',
    'DriverAdapter',
    'PlaywrightDriver',
]

logger = logging.getLogger(__name__)


class DriverAdapter(Protocol):
    """Narrow page interface consumed by the Field Registry and Mutation Engine."""

    async def evaluate_in_page(self, script: str, arg: Any = None) -> Any:
        """Run a script from dalil.driver.scripts in the active page and return its result.

        Raises:
            DriverError: The script threw or the driver failed.
            EnvironmentNotReadyError: The call did not finish within the page timeout.
        """
        ...

    async def locator_type(self, selector: str, text: str, *, delay_ms: float) -> None:
        """Click to focus, clear, then type text one keystroke at a time."""
        ...


class BrowserSession:
    """Browser context owned (managed) or borrowed (attach) for the life of the controller."""

    def __init__(
        self,
        playwright: Playwright,
        context: BrowserContext,
        browser: Browser | None,  # Only set in attach mode
        mode: RunnerMode,
    ) -> None:
        self.playwright = playwright
        self.context = context
        self.browser = browser
        self.mode = mode
        self._page: Page | None = None

    @classmethod
    async def open(
        cls,
        mode: RunnerMode,
        *,
        profile_dir: Path,
        cdp_url: str | None = None,
    ) -> typing.Self:
        """Acquire the driver and establish a browser context - fails fast if anything is missing.

        Raises:
            UsageError: attach mode without a remote-debugging address.
            EnvironmentNotReadyError: Playwright or the browser could not be started/reached.
        """
        if mode == 'attach' and not cdp_url:
            raise UsageError('Attach mode requires `--cdp <url>`.')

        try:
            playwright = await async_playwright().start()
        except PlaywrightError as e:
            raise EnvironmentNotReadyError(f'Playwright driver is not available: {e}') from e

        try:
            if mode == 'managed':
                profile_dir.mkdir(parents=True, exist_ok=True)
                context = await playwright.chromium.launch_persistent_context(str(profile_dir), headless=False)
                logger.info(f'Launched managed browser (profile: {profile_dir})')
                return cls(playwright, context, None, mode)

            browser = await playwright.chromium.connect_over_cdp(typing.cast(str, cdp_url))
            if not browser.contexts:
                await browser.close()
                raise EnvironmentNotReadyError('No browser context is available in attached browser.')
            logger.info(f'Attached to browser at {cdp_url}')
            return cls(playwright, browser.contexts[0], browser, mode)
        except PlaywrightError as e:
            await playwright.stop()
            raise EnvironmentNotReadyError(
                f'Browser is not ready: {e}\nInstall browsers with `playwright install chromium`.'
            ) from e
        except EnvironmentNotReadyError:
            await playwright.stop()
            raise

    async def new_or_reused_page(self) -> Page:
        """First open page of the context, or a new one."""
        pages = self.context.pages
        return pages[0] if pages else await self.context.new_page()

    async def active_page(self) -> Page:
        if self._page is None or self._page.is_closed():
            self._page = await self.new_or_reused_page()
        return self._page

    async def install_safety_guard(self, script: str, on_console: Callable[[ConsoleMessage], None]) -> None:
        """Register the guard for every future document and apply it to already-open pages."""
        await self.context.add_init_script(script=script)
        self.context.on('console', on_console)
        for page in self.context.pages:
            # Attach mode: pages loaded before we arrived never ran the init script
            try:
                await page.evaluate(script)
            except PlaywrightError as e:
                logger.warning(f'Could not guard already-open page {page.url}: {e}')

    async def close(self) -> None:
        """Release the context (managed) or the connection (attach), then the driver."""
        try:
            if self.browser is not None:
                await self.browser.close()
            else:
                await self.context.close()
        finally:
            await self.playwright.stop()
        logger.info('Browser session released')


class PlaywrightDriver:
    """DriverAdapter over the active page of a BrowserSession."""

    def __init__(self, session: BrowserSession, *, timeout_seconds: float) -> None:
        self._session = session
        self._timeout = timeout_seconds

    async def evaluate_in_page(self, script: str, arg: Any = None) -> Any:
        page = await self._session.active_page()
        try:
            return await asyncio.wait_for(page.evaluate(script, arg), timeout=self._timeout)
        except TimeoutError as e:
            raise EnvironmentNotReadyError(f'Page did not respond within {self._timeout:g}s') from e
        except PlaywrightError as e:
            raise DriverError(_first_line(e)) from e

    async def locator_type(self, selector: str, text: str, *, delay_ms: float) -> None:
        page = await self._session.active_page()
        locator = page.locator(selector).first
        timeout_ms = self._timeout * 1000
        try:
            await locator.click(timeout=timeout_ms)
            await locator.fill('', timeout=timeout_ms)
            await locator.press_sequentially(text, delay=delay_ms, timeout=timeout_ms + delay_ms * len(text))
        except PlaywrightError as e:
            raise DriverError(_first_line(e)) from e


def _first_line(error: Exception) -> str:
    """Playwright messages carry a call log after the first line."""
    message = str(error).strip()
    return message.splitlines()[0] if message else type(error).__name__
