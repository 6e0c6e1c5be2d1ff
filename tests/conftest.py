"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from position_watch.config import (
    AppConfig,
    DetectionConfig,
    EmailConfig,
    MonitorConfig,
    NotificationsConfig,
    TelegramConfig,
)
from position_watch.models import PositionRecord, Target


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_target() -> Target:
    return Target(
        url="https://app.example.io/#/actions/0xabc",
        display_name="Alice",
        description="Swing trader",
        rating="A",
    )


@pytest.fixture()
def sample_app_config(sample_target: Target) -> AppConfig:
    return AppConfig(
        monitor=MonitorConfig(
            poll_interval_seconds=60,
            retry_count=3,
            retry_delay_seconds=0,
            default_timeout_ms=5_000,
            shutdown_grace_seconds=1,
        ),
        detection=DetectionConfig(key="token", threshold_field="size", threshold_percent=5.0),
        targets=(sample_target,),
        notifications=NotificationsConfig(
            telegram=TelegramConfig(
                enabled=True,
                bot_token="fake-token",
                chat_ids=("12345",),
            ),
            email=EmailConfig(enabled=False),
        ),
    )


# ---------------------------------------------------------------------------
# Model fixtures
# ---------------------------------------------------------------------------


def _record(token: str = "BTC 10x", size: str = "$100", **kwargs: str) -> PositionRecord:
    values = {
        "net_value": "$95.00",
        "collateral": "$10.00",
        "entry_price": "$60,000.00",
        "mark_price": "$60,500.00",
        "liquidation_price": "$54,500.00",
    }
    values.update(kwargs)
    return PositionRecord(token=token, size=size, **values)


@pytest.fixture()
def make_record():
    """Factory for records with realistic defaults; override any field by keyword."""
    return _record


@pytest.fixture()
def sample_record() -> PositionRecord:
    return _record()


@pytest.fixture()
def sample_raw_row() -> dict:
    """One row as returned by the in-page extraction script."""
    return {
        "token_name": "BTC",
        "leverage": "10.00x",
        "cells": [
            "BTC 10.00x Long",
            "$1,000.00",
            "$95.00",
            "$100.00",
            "$60,000.00",
            "$60,500.00",
            "$54,500.00",
            "Close",
        ],
    }


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    monitor:
      poll_interval_seconds: 120
      retry_count: 2
      retry_delay_seconds: 1.5
      default_timeout_ms: 30000
    detection:
      key: token
      threshold_field: size
      threshold_percent: 5
    extractor:
      mode: isolated
      headless: true
      block_resources: [image]
    state:
      path: data/state.json
    targets:
      - url: https://app.example.io/#/actions/0xabc
        display_name: Alice
        description: Swing trader
        rating: A
        timeout_ms: 90000
      - url: https://app.example.io/#/actions/0xdef
        owner: Bob
    notifications:
      telegram:
        enabled: true
        bot_token: "tok1"
        chat_ids: ["999", 1000]
      email:
        enabled: false
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
