"""Unit tests for logging configuration."""
from __future__ import annotations

import logging

from position_watch.logging_setup import configure_logging


class TestConfigureLogging:
    def test_sets_info_level(self) -> None:
        configure_logging("INFO")
        assert logging.getLogger().level == logging.INFO

    def test_sets_debug_level(self) -> None:
        configure_logging("DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_silences_aiohttp(self) -> None:
        configure_logging("DEBUG")
        assert logging.getLogger("aiohttp").level == logging.WARNING

    def test_silences_asyncio(self) -> None:
        configure_logging("DEBUG")
        assert logging.getLogger("asyncio").level == logging.WARNING

    def test_invalid_level_defaults_to_info(self) -> None:
        configure_logging("NONEXISTENT")
        assert logging.getLogger().level == logging.INFO

    def test_does_not_stack_handlers(self) -> None:
        configure_logging("INFO")
        count = len(logging.getLogger().handlers)
        configure_logging("INFO")
        assert len(logging.getLogger().handlers) == count
