"""Monitoring orchestration: poll every target, classify, persist, alert."""
from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Sequence

from ..config import AppConfig
from ..errors import ExtractionError
from ..extractors import build_extractor
from ..interfaces.extractor import Extractor
from ..interfaces.state_store import StateStore
from ..models import (
    ChangeResult,
    PollOutcome,
    PollStatus,
    PositionRecord,
    Target,
    TargetEvent,
)
from ..notifications import Route, build_routes
from .detector import ChangeDetector
from .messages import (
    STATUS_CLOSED,
    STATUS_FIRST_OBSERVATION,
    format_alert,
    subject_for,
    summarize_reasons,
)
from .state import MonitorState, build_state_store
from .trigger import Trigger

logger = logging.getLogger(__name__)


class Monitor:
    """Polls the configured targets and alerts on position changes.

    Targets are processed one after another within a cycle, and at most one
    cycle runs at a time; a cycle requested while another is running is
    skipped, not queued.
    """

    def __init__(
        self,
        config: AppConfig,
        extractor: Extractor | None = None,
        store: StateStore | None = None,
        routes: Iterable[Route] | None = None,
    ) -> None:
        self._config = config
        self._extractor = (
            extractor if extractor is not None else build_extractor(config.extractor)
        )
        self._state = MonitorState.for_store(
            store if store is not None else build_state_store(config.state)
        )
        self._routes: list[Route] = (
            list(routes) if routes is not None else build_routes(config.notifications)
        )
        self._detector = ChangeDetector.from_config(config.detection)
        self._cycle_tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def state(self) -> MonitorState:
        return self._state

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def poll(self, target: Target) -> PollOutcome:
        """Fetch one target with bounded retries.

        Any attempt returning a list (even an empty one) ends the retries.
        Raised extraction errors and ``None`` both count as failed attempts.
        """
        retry_count = self._config.monitor.retry_count
        timeout_ms = target.timeout_ms or self._config.monitor.default_timeout_ms

        for attempt in range(1, retry_count + 1):
            try:
                records = await self._extractor.fetch(target, timeout_ms)
            except ExtractionError as e:
                logger.warning(
                    "Attempt %d/%d for %s failed: %s", attempt, retry_count, target.url, e
                )
            except Exception:
                logger.exception(
                    "Attempt %d/%d for %s raised unexpectedly",
                    attempt,
                    retry_count,
                    target.url,
                )
            else:
                if records is not None:
                    return PollOutcome.from_records(records)
                logger.warning(
                    "Attempt %d/%d for %s returned no data", attempt, retry_count, target.url
                )

            if attempt < retry_count:
                await asyncio.sleep(self._config.monitor.retry_delay_seconds)

        logger.error("All %d attempts failed for %s", retry_count, target.url)
        return PollOutcome.failure()

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> dict[str, TargetEvent] | None:
        """Process every target once, in configuration order.

        Returns the event per target url, or ``None`` when skipped because
        another cycle is still running.
        """
        if self._state.in_flight:
            logger.warning("Previous cycle still running, skipping")
            return None

        self._state.in_flight = True
        events: dict[str, TargetEvent] = {}
        try:
            for target in self._config.targets:
                try:
                    events[target.key] = await self._process_target(target)
                except Exception:
                    logger.exception("Error processing %s", target.url)
                    events[target.key] = TargetEvent.ERROR
        finally:
            self._state.in_flight = False

        logger.info(
            "Cycle finished: %s",
            ", ".join(f"{key}={event.value}" for key, event in events.items()),
        )
        return events

    async def _process_target(self, target: Target) -> TargetEvent:
        outcome = await self.poll(target)
        store = self._state.store
        key = target.key

        if not self._state.is_bootstrapped(key):
            if outcome.status is not PollStatus.SUCCESS:
                logger.info("%s not bootstrapped yet (%s)", target.url, outcome.status.value)
                return TargetEvent.PENDING
            store.set(key, outcome.records)
            self._state.bootstrapped.add(key)
            logger.info(
                "Bootstrapped %s with %d positions", target.url, len(outcome.records)
            )
            return TargetEvent.BOOTSTRAPPED

        previous = store.get(key)

        if outcome.status is PollStatus.SUCCESS:
            if not previous:
                store.set(key, outcome.records)
                await self._alert(
                    TargetEvent.FIRST_OBSERVATION,
                    target,
                    outcome.records,
                    STATUS_FIRST_OBSERVATION,
                )
                return TargetEvent.FIRST_OBSERVATION

            result = self._detector.compare(previous, outcome.records)
            if not result.changed:
                logger.info("No changes for %s", target.url)
                return TargetEvent.UNCHANGED
            store.set(key, outcome.records)
            await self._alert_changes(target, outcome.records, result)
            return TargetEvent.CHANGED

        if not previous:
            logger.info("%s: %s with nothing held, no-op", target.url, outcome.status.value)
            return TargetEvent.NO_OP

        if outcome.status is PollStatus.EMPTY and not self._config.monitor.empty_is_closure:
            result = self._detector.compare(previous, ())
            store.set(key, ())
            await self._alert_changes(target, (), result)
            return TargetEvent.CHANGED

        store.clear(key)
        logger.info(
            "%s: %s after %d held positions, treating as closure",
            target.url,
            outcome.status.value,
            len(previous),
        )
        await self._alert(TargetEvent.CLOSED, target, previous, STATUS_CLOSED)
        return TargetEvent.CLOSED

    async def _alert_changes(
        self, target: Target, records: Sequence[PositionRecord], result: ChangeResult
    ) -> None:
        summary = summarize_reasons(result, self._config.detection.threshold_field)
        logger.info("Changes for %s:\n%s", target.url, summary)
        await self._alert(TargetEvent.CHANGED, target, records, summary)

    async def _alert(
        self,
        event: TargetEvent,
        target: Target,
        records: Sequence[PositionRecord],
        status: str,
    ) -> None:
        await self.dispatch(format_alert(target, records, status), subject_for(event, target))

    # ------------------------------------------------------------------
    # Notification dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, text: str, subject: str = "") -> None:
        """Send one alert to every route in parallel. Failures are logged only."""
        if self._config.notifications.dry_run:
            logger.info("Dry run, alert not sent: %s\n%s", subject, text)
            return
        if not self._routes:
            logger.warning("No notification channel configured, alert dropped: %s", subject)
            return

        results = await asyncio.gather(
            *(
                notifier.send(text, destinations, subject=subject)
                for notifier, destinations in self._routes
            ),
            return_exceptions=True,
        )
        for (notifier, _), result in zip(self._routes, results):
            name = type(notifier).__name__
            if isinstance(result, Exception):
                logger.error("%s failed: %s", name, result)
                continue
            failed = [dest for dest, ok in result.items() if not ok]
            if failed:
                logger.error("%s could not deliver to: %s", name, ", ".join(failed))

    # ------------------------------------------------------------------
    # Continuous mode and shutdown
    # ------------------------------------------------------------------

    def _start_cycle(self) -> asyncio.Task:
        task = asyncio.create_task(self.run_cycle())
        self._cycle_tasks.add(task)
        task.add_done_callback(self._cycle_done)
        return task

    def _cycle_done(self, task: asyncio.Task) -> None:
        self._cycle_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Cycle failed: %s", task.exception())

    async def run_once(
        self, stop_event: asyncio.Event | None = None
    ) -> dict[str, TargetEvent] | None:
        """Run a single cycle, then shut down.

        Setting ``stop_event`` while the cycle runs starts the shutdown early;
        the cycle then gets the usual grace period before it is abandoned.
        """
        stop_event = stop_event or asyncio.Event()
        cycle = self._start_cycle()
        stopper = asyncio.create_task(stop_event.wait())
        try:
            await asyncio.wait({cycle, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            await self.shutdown()

        if cycle.cancelled():
            return None
        return cycle.result()

    async def run_continuous(
        self,
        interval_seconds: float | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Run a cycle now and on every trigger tick until ``stop_event`` is set.

        Each cycle runs as a background task, so a tick arriving while a
        cycle is still running is skipped by the single-flight guard.
        """
        trigger = Trigger.from_config(self._config.monitor, interval_seconds)
        stop_event = stop_event or asyncio.Event()
        logger.info(
            "Starting continuous monitoring of %d targets (%s)",
            len(self._config.targets),
            trigger.describe(),
        )

        try:
            while not stop_event.is_set():
                self._start_cycle()
                delay = trigger.seconds_until_next()
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    continue
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Finish or abandon the running cycle, release the extractor, flush state."""
        if self._closed:
            return
        self._closed = True

        pending = {task for task in self._cycle_tasks if not task.done()}
        if pending:
            grace = self._config.monitor.shutdown_grace_seconds
            logger.info("Waiting up to %gs for the running cycle", grace)
            _, pending = await asyncio.wait(pending, timeout=grace)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                logger.warning("Abandoned the running cycle after %gs", grace)

        try:
            await self._extractor.close()
        except Exception as e:
            logger.error("Error closing extractor: %s", e)

        self._state.store.flush()
        logger.info("Monitor shut down")

    # ------------------------------------------------------------------
    # Stored state
    # ------------------------------------------------------------------

    def status_report(self) -> str:
        """Human-readable dump of every stored snapshot."""
        store = self._state.store
        configured = {target.key: target for target in self._config.targets}
        keys = list(configured) + [k for k in store.keys() if k not in configured]

        lines: list[str] = []
        for key in keys:
            target = configured.get(key)
            name = target.display_name if target and target.display_name else key
            snapshot = store.get(key)
            if snapshot is None:
                lines.append(f"{name}: no snapshot yet")
                continue
            suffix = "" if target else " (not configured)"
            if not snapshot:
                lines.append(f"{name}: no open positions{suffix}")
                continue
            lines.append(f"{name}: {len(snapshot)} open positions{suffix}")
            for record in snapshot:
                lines.append(
                    f"  - {record.token}: size {record.size}, entry {record.entry_price}, "
                    f"liquidation {record.liquidation_price}"
                )
        return "\n".join(lines) if lines else "No targets configured."

    def reset(self, keys: Iterable[str] | None = None) -> list[str]:
        """Forget stored snapshots (all of them when ``keys`` is None).

        A reset target bootstraps again on its next successful poll.
        """
        chosen = list(keys) if keys is not None else self._state.store.keys()
        removed = [key for key in chosen if self._state.store.get(key) is not None]
        for key in chosen:
            self._state.reset(key)
        for key in removed:
            logger.info("Reset stored snapshot for %s", key)
        return removed
