"""Playwright page scraping shared by the browser-backed extractors."""
from __future__ import annotations

import logging
from typing import Any, Collection

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, Route
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..config import SelectorConfig
from ..errors import ExtractionFailure, ExtractionTimeout

logger = logging.getLogger(__name__)

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-gpu",
    "--disable-dev-shm-usage",
    "--disable-extensions",
    "--disable-background-networking",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--no-first-run",
    "--no-default-browser-check",
]

_EXTRACT_ROWS_JS = """
(rows, sel) => rows.map((row) => {
  const text = (el) => (el && el.innerText ? el.innerText.trim() : "");
  const handle = row.querySelector(sel.tokenCell);
  return {
    token_name: handle ? text(handle.querySelector(sel.tokenName)) : "",
    leverage: handle ? text(handle.querySelector(sel.leverage)) : "",
    cells: Array.from(row.querySelectorAll("td")).map(text),
  };
})
"""


async def block_resources(page: Page, resource_types: Collection[str]) -> None:
    """Abort requests for the given resource types (images, fonts, ...)."""
    blocked = frozenset(resource_types)
    if not blocked:
        return

    async def _handle(route: Route) -> None:
        if route.request.resource_type in blocked:
            await route.abort()
        else:
            await route.continue_()

    await page.route("**/*", _handle)


async def scrape_rows(
    page: Page,
    url: str,
    selectors: SelectorConfig,
    timeout_ms: int,
    blocked_resources: Collection[str] = (),
) -> list[dict[str, Any]]:
    """Navigate to ``url`` and return the raw position rows.

    Returns ``[]`` only when the empty-state marker is shown and no row is.

    Raises:
        ExtractionTimeout: navigation or waiting for the table timed out.
        ExtractionFailure: any other browser or page error.
    """
    try:
        await block_resources(page, blocked_resources)
        await page.goto(url, wait_until="networkidle", timeout=timeout_ms)

        rows = page.locator(selectors.row)
        empty = page.locator(selectors.empty_state)
        await rows.or_(empty).first.wait_for(state="visible", timeout=timeout_ms)

        if await rows.count() == 0:
            logger.debug("Empty-state marker shown for %s", url)
            return []

        return await page.eval_on_selector_all(
            selectors.row,
            _EXTRACT_ROWS_JS,
            {
                "tokenCell": selectors.token_cell,
                "tokenName": selectors.token_name,
                "leverage": selectors.leverage,
            },
        )
    except PlaywrightTimeoutError as e:
        raise ExtractionTimeout(f"Timed out after {timeout_ms}ms loading {url}") from e
    except PlaywrightError as e:
        raise ExtractionFailure(f"Browser error loading {url}: {e}") from e
