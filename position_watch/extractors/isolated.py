"""Extractor that runs every poll in a fresh worker process."""
from __future__ import annotations

import asyncio
import base64
import json
import logging
import sys
from dataclasses import asdict

from ..config import ExtractorConfig
from ..errors import ExtractionFailure, ExtractionTimeout
from ..models import PositionRecord, Target
from .parser import parse_rows

logger = logging.getLogger(__name__)

WORKER_MODULE = "position_watch.extractors.worker"

# Extra time granted to the worker for interpreter and browser start-up.
LAUNCH_ALLOWANCE_SECONDS = 30.0


def encode_payload(url: str, timeout_ms: int, config: ExtractorConfig) -> str:
    """Base64 JSON argument understood by the worker's ``--input-data``."""
    payload = {
        "url": url,
        "timeout_ms": timeout_ms,
        "headless": config.headless,
        "user_agent": config.user_agent,
        "block_resources": list(config.block_resources),
        "selectors": asdict(config.selectors),
    }
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


class IsolatedBrowserExtractor:
    """Spawns one worker process (with its own Chromium) per fetch.

    Nothing is shared between polls, so a crashed or leaking browser never
    outlives the poll that started it.
    """

    def __init__(
        self,
        config: ExtractorConfig,
        python: str = sys.executable,
        launch_allowance: float = LAUNCH_ALLOWANCE_SECONDS,
    ) -> None:
        self._config = config
        self._python = python
        self._launch_allowance = launch_allowance

    async def fetch(self, target: Target, timeout_ms: int) -> list[PositionRecord]:
        payload = encode_payload(target.url, timeout_ms, self._config)
        try:
            proc = await asyncio.create_subprocess_exec(
                self._python,
                "-m",
                WORKER_MODULE,
                "--input-data",
                payload,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ExtractionFailure(f"Could not start worker: {e}") from e

        deadline = timeout_ms / 1000 + self._launch_allowance
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=deadline)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise ExtractionTimeout(
                f"Worker for {target.url} exceeded {deadline:.0f}s and was killed"
            ) from e
        except asyncio.CancelledError:
            logger.info("Fetch of %s cancelled, killing worker", target.url)
            proc.kill()
            await proc.wait()
            raise

        if proc.returncode != 0:
            raise self._worker_error(target, proc.returncode, stderr)

        try:
            rows = json.loads(stdout.decode("utf-8"))["rows"]
        except (ValueError, KeyError, TypeError) as e:
            raise ExtractionFailure(f"Unreadable worker output for {target.url}") from e
        if not isinstance(rows, list):
            raise ExtractionFailure(f"Worker returned non-list rows for {target.url}")
        return parse_rows(rows)

    @staticmethod
    def _worker_error(
        target: Target, returncode: int | None, stderr: bytes
    ) -> ExtractionFailure | ExtractionTimeout:
        text = stderr.decode("utf-8", errors="replace").strip()
        last_line = text.splitlines()[-1] if text else ""
        try:
            report = json.loads(last_line)
        except ValueError:
            report = None

        if not isinstance(report, dict):
            logger.debug("Worker stderr for %s: %s", target.url, text)
            return ExtractionFailure(f"Worker for {target.url} exited with {returncode}")
        if report.get("kind") == "timeout":
            return ExtractionTimeout(str(report.get("error", "timeout")))
        return ExtractionFailure(str(report.get("error", "worker failed")))

    async def close(self) -> None:
        """Workers exit after every fetch; nothing to release."""
