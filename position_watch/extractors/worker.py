"""Single-poll browser worker run in its own process by IsolatedBrowserExtractor.

Usage::

    python -m position_watch.extractors.worker --input-data <base64 json>

The payload carries the target url, timeout, browser options and selectors.
On success the raw rows are printed to stdout as ``{"rows": [...]}``; on
failure ``{"error": ..., "kind": "timeout" | "failure"}`` goes to stderr and
the exit code is 1.
"""
from __future__ import annotations

import argparse
import asyncio
import base64
import json
import sys
from typing import Any

from playwright.async_api import async_playwright
from playwright.async_api import Error as PlaywrightError

from ..config import SelectorConfig
from ..errors import ExtractionError, ExtractionFailure, ExtractionTimeout
from .page import CHROMIUM_ARGS, scrape_rows


def decode_payload(data: str) -> dict[str, Any]:
    try:
        payload = json.loads(base64.b64decode(data, validate=True).decode("utf-8"))
    except ValueError as e:
        raise ExtractionFailure(f"Invalid worker input: {e}") from e
    if not isinstance(payload, dict) or not payload.get("url"):
        raise ExtractionFailure("Worker input has no url")
    return payload


async def run(payload: dict[str, Any]) -> list[dict[str, Any]]:
    selectors = SelectorConfig(**payload.get("selectors", {}))
    timeout_ms = int(payload.get("timeout_ms", 60_000))

    async with async_playwright() as pw:
        try:
            browser = await pw.chromium.launch(
                headless=payload.get("headless", True), args=CHROMIUM_ARGS
            )
        except PlaywrightError as e:
            raise ExtractionFailure(f"Could not start browser: {e}") from e
        try:
            context = await browser.new_context(
                user_agent=payload.get("user_agent") or None
            )
            page = await context.new_page()
            return await scrape_rows(
                page,
                payload["url"],
                selectors,
                timeout_ms,
                payload.get("block_resources", ()),
            )
        finally:
            await browser.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="position_watch.extractors.worker")
    parser.add_argument("--input-data", required=True)
    args = parser.parse_args(argv)

    try:
        rows = asyncio.run(run(decode_payload(args.input_data)))
    except ExtractionError as e:
        kind = "timeout" if isinstance(e, ExtractionTimeout) else "failure"
        print(json.dumps({"error": str(e), "kind": kind}), file=sys.stderr)
        return 1

    print(json.dumps({"rows": rows}))
    return 0


if __name__ == "__main__":
    sys.exit(main())
