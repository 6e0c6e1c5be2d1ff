"""Extractor backed by one long-lived Chromium instance."""
from __future__ import annotations

import logging

from playwright.async_api import Browser, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from ..config import ExtractorConfig
from ..errors import ExtractionFailure
from ..models import PositionRecord, Target
from .page import CHROMIUM_ARGS, scrape_rows
from .parser import parse_rows

logger = logging.getLogger(__name__)


class SharedBrowserExtractor:
    """Reuses one browser across polls; each fetch gets its own context.

    The browser cannot serve concurrent navigations safely, so callers must
    fetch one target at a time.
    """

    def __init__(self, config: ExtractorConfig) -> None:
        self._config = config
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None

    async def _ensure_browser(self) -> Browser:
        if self._browser is not None:
            if self._browser.is_connected():
                return self._browser
            logger.warning("Browser disconnected, relaunching")
            await self._close_browser()

        if self._playwright is None:
            self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self._config.headless, args=CHROMIUM_ARGS
        )
        logger.info("Launched shared Chromium session")
        return self._browser

    async def fetch(self, target: Target, timeout_ms: int) -> list[PositionRecord]:
        try:
            browser = await self._ensure_browser()
            context = await browser.new_context(
                user_agent=self._config.user_agent or None
            )
        except PlaywrightError as e:
            raise ExtractionFailure(f"Could not start browser: {e}") from e

        try:
            page = await context.new_page()
            raw_rows = await scrape_rows(
                page,
                target.url,
                self._config.selectors,
                timeout_ms,
                self._config.block_resources,
            )
        finally:
            await self._close_quietly(context, "browser context")

        return parse_rows(raw_rows)

    async def _close_browser(self) -> None:
        if self._browser is not None:
            await self._close_quietly(self._browser, "browser")
            self._browser = None

    async def close(self) -> None:
        """Release the browser and the Playwright driver."""
        await self._close_browser()
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except PlaywrightError as e:
                logger.warning("Error stopping Playwright: %s", e)
            self._playwright = None
            logger.info("Shared Chromium session released")

    @staticmethod
    async def _close_quietly(resource, label: str) -> None:
        try:
            await resource.close()
        except PlaywrightError as e:
            logger.warning("Error closing %s: %s", label, e)
