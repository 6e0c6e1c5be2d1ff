"""Unit tests for the browser-backed extractors with Playwright mocked out."""
from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from position_watch.config import ExtractorConfig, SelectorConfig
from position_watch.errors import ExtractionFailure, ExtractionTimeout
from position_watch.extractors import (
    IsolatedBrowserExtractor,
    SharedBrowserExtractor,
    build_extractor,
)
from position_watch.extractors.isolated import encode_payload
from position_watch.extractors.page import block_resources, scrape_rows
from position_watch.extractors.worker import decode_payload, main
from position_watch.models import Target

SELECTORS = SelectorConfig()
TARGET = Target(url="https://app.example.io/#/actions/0xabc", display_name="Alice")


def _fake_page(row_count: int, raw_rows: list | None = None) -> MagicMock:
    rows_locator = MagicMock()
    rows_locator.count = AsyncMock(return_value=row_count)
    rows_locator.or_.return_value.first.wait_for = AsyncMock()

    page = MagicMock()
    page.route = AsyncMock()
    page.goto = AsyncMock()
    page.locator = MagicMock(
        side_effect=lambda sel: rows_locator if sel == SELECTORS.row else MagicMock()
    )
    page.eval_on_selector_all = AsyncMock(return_value=raw_rows or [])
    return page


# ---------------------------------------------------------------------------
# Page scraping
# ---------------------------------------------------------------------------


class TestScrapeRows:
    @pytest.mark.asyncio
    async def test_returns_raw_rows(self, sample_raw_row: dict) -> None:
        page = _fake_page(1, [sample_raw_row])
        rows = await scrape_rows(page, TARGET.url, SELECTORS, 5000)
        assert rows == [sample_raw_row]
        page.goto.assert_awaited_once_with(TARGET.url, wait_until="networkidle", timeout=5000)

    @pytest.mark.asyncio
    async def test_empty_state_marker_returns_empty_list(self) -> None:
        page = _fake_page(0)
        assert await scrape_rows(page, TARGET.url, SELECTORS, 5000) == []
        page.eval_on_selector_all.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_timeout_maps_to_extraction_timeout(self) -> None:
        page = _fake_page(0)
        page.goto.side_effect = PlaywrightTimeoutError("Timeout 5000ms exceeded")
        with pytest.raises(ExtractionTimeout):
            await scrape_rows(page, TARGET.url, SELECTORS, 5000)

    @pytest.mark.asyncio
    async def test_browser_error_maps_to_failure(self) -> None:
        page = _fake_page(0)
        page.goto.side_effect = PlaywrightError("net::ERR_NAME_NOT_RESOLVED")
        with pytest.raises(ExtractionFailure):
            await scrape_rows(page, TARGET.url, SELECTORS, 5000)


class TestBlockResources:
    @pytest.mark.asyncio
    async def test_aborts_blocked_types(self) -> None:
        page = MagicMock()
        page.route = AsyncMock()
        await block_resources(page, ["image", "font"])
        handler = page.route.call_args[0][1]

        image = MagicMock(abort=AsyncMock(), continue_=AsyncMock())
        image.request.resource_type = "image"
        await handler(image)
        image.abort.assert_awaited_once()

        script = MagicMock(abort=AsyncMock(), continue_=AsyncMock())
        script.request.resource_type = "script"
        await handler(script)
        script.continue_.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_nothing_blocked_installs_no_route(self) -> None:
        page = MagicMock()
        page.route = AsyncMock()
        await block_resources(page, [])
        page.route.assert_not_awaited()


# ---------------------------------------------------------------------------
# SharedBrowserExtractor
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_playwright():
    context = MagicMock()
    context.new_page = AsyncMock(return_value=MagicMock())
    context.close = AsyncMock()

    browser = MagicMock()
    browser.is_connected = MagicMock(return_value=True)
    browser.new_context = AsyncMock(return_value=context)
    browser.close = AsyncMock()

    pw = MagicMock()
    pw.chromium.launch = AsyncMock(return_value=browser)
    pw.stop = AsyncMock()

    starter = MagicMock()
    starter.start = AsyncMock(return_value=pw)
    with patch("position_watch.extractors.shared.async_playwright", return_value=starter):
        yield pw, browser, context


class TestSharedBrowserExtractor:
    @pytest.mark.asyncio
    async def test_reuses_browser_across_fetches(
        self, fake_playwright, sample_raw_row: dict
    ) -> None:
        pw, browser, context = fake_playwright
        extractor = SharedBrowserExtractor(ExtractorConfig())

        with patch(
            "position_watch.extractors.shared.scrape_rows",
            AsyncMock(return_value=[sample_raw_row]),
        ):
            first = await extractor.fetch(TARGET, 5000)
            second = await extractor.fetch(TARGET, 5000)

        assert first == second
        assert first[0].token == "BTC 10.00x"
        pw.chromium.launch.assert_awaited_once()
        assert browser.new_context.await_count == 2
        assert context.close.await_count == 2

    @pytest.mark.asyncio
    async def test_relaunches_disconnected_browser(self, fake_playwright) -> None:
        pw, browser, _ = fake_playwright
        extractor = SharedBrowserExtractor(ExtractorConfig())

        with patch("position_watch.extractors.shared.scrape_rows", AsyncMock(return_value=[])):
            await extractor.fetch(TARGET, 5000)
            browser.is_connected.return_value = False
            await extractor.fetch(TARGET, 5000)

        assert pw.chromium.launch.await_count == 2

    @pytest.mark.asyncio
    async def test_context_closed_when_scrape_fails(self, fake_playwright) -> None:
        _, _, context = fake_playwright
        extractor = SharedBrowserExtractor(ExtractorConfig())

        with patch(
            "position_watch.extractors.shared.scrape_rows",
            AsyncMock(side_effect=ExtractionTimeout("slow")),
        ):
            with pytest.raises(ExtractionTimeout):
                await extractor.fetch(TARGET, 5000)

        context.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_releases_everything(self, fake_playwright) -> None:
        pw, browser, _ = fake_playwright
        extractor = SharedBrowserExtractor(ExtractorConfig())

        with patch("position_watch.extractors.shared.scrape_rows", AsyncMock(return_value=[])):
            await extractor.fetch(TARGET, 5000)
        await extractor.close()

        browser.close.assert_awaited_once()
        pw.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_without_fetch_is_noop(self) -> None:
        await SharedBrowserExtractor(ExtractorConfig()).close()


# ---------------------------------------------------------------------------
# IsolatedBrowserExtractor and its worker
# ---------------------------------------------------------------------------


def _fake_process(returncode: int, stdout: bytes = b"", stderr: bytes = b"") -> MagicMock:
    proc = MagicMock()
    proc.returncode = returncode
    proc.communicate = AsyncMock(return_value=(stdout, stderr))
    proc.kill = MagicMock()
    proc.wait = AsyncMock()
    return proc


class TestIsolatedBrowserExtractor:
    @pytest.mark.asyncio
    async def test_parses_worker_rows(self, sample_raw_row: dict) -> None:
        proc = _fake_process(0, json.dumps({"rows": [sample_raw_row]}).encode())
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)) as spawn:
            records = await IsolatedBrowserExtractor(ExtractorConfig()).fetch(TARGET, 5000)

        assert [r.token for r in records] == ["BTC 10.00x"]
        args = spawn.call_args[0]
        assert args[1:4] == ("-m", "position_watch.extractors.worker", "--input-data")
        assert decode_payload(args[4])["url"] == TARGET.url

    @pytest.mark.asyncio
    async def test_worker_timeout_report(self) -> None:
        stderr = json.dumps({"error": "Timed out", "kind": "timeout"}).encode()
        proc = _fake_process(1, stderr=stderr)
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(ExtractionTimeout, match="Timed out"):
                await IsolatedBrowserExtractor(ExtractorConfig()).fetch(TARGET, 5000)

    @pytest.mark.asyncio
    async def test_worker_crash_is_failure(self) -> None:
        proc = _fake_process(1, stderr=b"Traceback (most recent call last):\n  boom")
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(ExtractionFailure, match="exited with 1"):
                await IsolatedBrowserExtractor(ExtractorConfig()).fetch(TARGET, 5000)

    @pytest.mark.asyncio
    async def test_garbage_output_is_failure(self) -> None:
        proc = _fake_process(0, b"not json")
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(ExtractionFailure):
                await IsolatedBrowserExtractor(ExtractorConfig()).fetch(TARGET, 5000)

    @pytest.mark.asyncio
    async def test_overrunning_worker_is_killed(self) -> None:
        async def _hang() -> tuple[bytes, bytes]:
            await asyncio.sleep(10)
            return b"", b""

        proc = _fake_process(0)
        proc.communicate = _hang
        extractor = IsolatedBrowserExtractor(ExtractorConfig(), launch_allowance=0)
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(ExtractionTimeout, match="killed"):
                await extractor.fetch(TARGET, 10)

        proc.kill.assert_called_once()
        proc.wait.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cancelled_fetch_kills_worker(self) -> None:
        started = asyncio.Event()

        async def _hang() -> tuple[bytes, bytes]:
            started.set()
            await asyncio.sleep(10)
            return b"", b""

        proc = _fake_process(0)
        proc.communicate = _hang
        extractor = IsolatedBrowserExtractor(ExtractorConfig())
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            task = asyncio.create_task(extractor.fetch(TARGET, 60_000))
            await started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        proc.kill.assert_called_once()
        proc.wait.assert_awaited_once()


class TestWorker:
    def test_payload_carries_options(self) -> None:
        config = ExtractorConfig(headless=False, block_resources=("image",))
        payload = decode_payload(encode_payload(TARGET.url, 1234, config))
        assert payload["timeout_ms"] == 1234
        assert payload["headless"] is False
        assert payload["block_resources"] == ["image"]
        assert payload["selectors"]["row"] == SELECTORS.row

    def test_invalid_payload(self) -> None:
        with pytest.raises(ExtractionFailure):
            decode_payload("%%%not-base64%%%")

    def test_main_prints_rows(
        self, sample_raw_row: dict, capsys: pytest.CaptureFixture[str]
    ) -> None:
        data = encode_payload(TARGET.url, 1000, ExtractorConfig())
        with patch(
            "position_watch.extractors.worker.run", AsyncMock(return_value=[sample_raw_row])
        ):
            code = main(["--input-data", data])

        assert code == 0
        assert json.loads(capsys.readouterr().out) == {"rows": [sample_raw_row]}

    def test_main_reports_timeout(self, capsys: pytest.CaptureFixture[str]) -> None:
        data = encode_payload(TARGET.url, 1000, ExtractorConfig())
        with patch(
            "position_watch.extractors.worker.run",
            AsyncMock(side_effect=ExtractionTimeout("Timed out after 1000ms")),
        ):
            code = main(["--input-data", data])

        assert code == 1
        report = json.loads(capsys.readouterr().err)
        assert report == {"error": "Timed out after 1000ms", "kind": "timeout"}


class TestBuildExtractor:
    def test_shared_by_default(self) -> None:
        assert isinstance(build_extractor(ExtractorConfig()), SharedBrowserExtractor)

    def test_isolated(self) -> None:
        assert isinstance(
            build_extractor(ExtractorConfig(mode="isolated")), IsolatedBrowserExtractor
        )
