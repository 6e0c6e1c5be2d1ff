"""Configuration loader: reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError
from .models import RECORD_FIELDS, Target

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "config.yaml"

DETECTION_KEYS = ("token", "entry_price")
EXTRACTOR_MODES = ("shared", "isolated")

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MonitorConfig:
    poll_interval_seconds: float = 300.0
    schedule: str = ""
    retry_count: int = 3
    retry_delay_seconds: float = 2.0
    default_timeout_ms: int = 60_000
    shutdown_grace_seconds: float = 30.0
    empty_is_closure: bool = True


@dataclass(frozen=True)
class DetectionConfig:
    key: str = "token"
    threshold_field: str = "size"
    threshold_percent: float | None = 5.0


@dataclass(frozen=True)
class SelectorConfig:
    row: str = 'tr[data-qa^="position-item-"]'
    empty_state: str = "text=No open positions"
    token_cell: str = 'td[data-qa="position-handle"]'
    token_name: str = ".Exchange-list-title"
    leverage: str = ".Exchange-list-info-label"


@dataclass(frozen=True)
class ExtractorConfig:
    mode: str = "shared"
    headless: bool = True
    user_agent: str = ""
    block_resources: tuple[str, ...] = ("image", "font")
    selectors: SelectorConfig = field(default_factory=SelectorConfig)


@dataclass(frozen=True)
class StateConfig:
    path: str = ""


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    bot_token: str = ""
    chat_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class EmailConfig:
    enabled: bool = False
    recipients: tuple[str, ...] = ()
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587
    sender_email: str = ""
    sender_password: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    dry_run: bool = False
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    email: EmailConfig = field(default_factory=EmailConfig)


@dataclass(frozen=True)
class AppConfig:
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    extractor: ExtractorConfig = field(default_factory=ExtractorConfig)
    state: StateConfig = field(default_factory=StateConfig)
    targets: tuple[Target, ...] = ()
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _number(
    raw: dict[str, Any], key: str, default: Any, kind: type, optional: bool = False
) -> Any:
    value = raw.get(key, default)
    if value is None:
        if optional:
            return None
        raise ConfigurationError(f"'{key}' must be a number, got null")
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"'{key}' must be a number, got {value!r}") from e


_TRUE = frozenset({"true", "yes", "on", "1"})
_FALSE = frozenset({"false", "no", "off", "0"})


def _flag(raw: dict[str, Any], key: str, default: bool) -> bool:
    """Read a boolean that may arrive as a string from ${VAR} interpolation."""
    value = raw.get(key, default)
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if not text:
        return default
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigurationError(f"'{key}' must be true or false, got {value!r}")


def _build_monitor(raw: dict[str, Any]) -> MonitorConfig:
    return MonitorConfig(
        poll_interval_seconds=_number(raw, "poll_interval_seconds", 300.0, float),
        schedule=str(raw.get("schedule") or ""),
        retry_count=_number(raw, "retry_count", 3, int),
        retry_delay_seconds=_number(raw, "retry_delay_seconds", 2.0, float),
        default_timeout_ms=_number(raw, "default_timeout_ms", 60_000, int),
        shutdown_grace_seconds=_number(raw, "shutdown_grace_seconds", 30.0, float),
        empty_is_closure=_flag(raw, "empty_is_closure", True),
    )


def _build_detection(raw: dict[str, Any]) -> DetectionConfig:
    return DetectionConfig(
        key=str(raw.get("key", "token")),
        threshold_field=str(raw.get("threshold_field", "size")),
        threshold_percent=_number(raw, "threshold_percent", 5.0, float, optional=True),
    )


def _build_extractor(raw: dict[str, Any]) -> ExtractorConfig:
    sel = raw.get("selectors") or {}
    defaults = SelectorConfig()
    return ExtractorConfig(
        mode=str(raw.get("mode", "shared")),
        headless=_flag(raw, "headless", True),
        user_agent=str(raw.get("user_agent") or ""),
        block_resources=tuple(raw.get("block_resources", ("image", "font")) or ()),
        selectors=SelectorConfig(
            row=sel.get("row", defaults.row),
            empty_state=sel.get("empty_state", defaults.empty_state),
            token_cell=sel.get("token_cell", defaults.token_cell),
            token_name=sel.get("token_name", defaults.token_name),
            leverage=sel.get("leverage", defaults.leverage),
        ),
    )


def _build_state(raw: dict[str, Any]) -> StateConfig:
    return StateConfig(path=str(raw.get("path") or ""))


def _build_targets(raw: list[dict[str, Any]]) -> tuple[Target, ...]:
    targets: list[Target] = []
    for index, t in enumerate(raw):
        if not isinstance(t, dict):
            raise ConfigurationError(f"Target #{index + 1} must be a mapping")
        targets.append(
            Target(
                url=str(t.get("url") or "").strip(),
                display_name=str(t.get("display_name") or t.get("owner") or ""),
                description=str(t.get("description") or ""),
                rating=str(t.get("rating") or ""),
                timeout_ms=_number(t, "timeout_ms", None, int, optional=True),
            )
        )
    return tuple(targets)


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram") or {}
    em = raw.get("email") or {}
    return NotificationsConfig(
        dry_run=_flag(raw, "dry_run", False),
        telegram=TelegramConfig(
            enabled=_flag(tg, "enabled", False),
            bot_token=tg.get("bot_token", ""),
            chat_ids=tuple(str(c) for c in tg.get("chat_ids", []) if str(c)),
        ),
        email=EmailConfig(
            enabled=_flag(em, "enabled", False),
            recipients=tuple(r for r in em.get("recipients", []) if r),
            smtp_server=em.get("smtp_server", "smtp.gmail.com"),
            smtp_port=_number(em, "smtp_port", 587, int),
            sender_email=em.get("sender_email", ""),
            sender_password=em.get("sender_password", ""),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            current working directory.

    Raises:
        FileNotFoundError: the file does not exist.
        ConfigurationError: the file is not valid YAML or fails validation.
    """
    load_dotenv()

    config_path = Path(config_path or DEFAULT_CONFIG_FILE)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping")

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        monitor=_build_monitor(raw.get("monitor") or {}),
        detection=_build_detection(raw.get("detection") or {}),
        extractor=_build_extractor(raw.get("extractor") or {}),
        state=_build_state(raw.get("state") or {}),
        targets=_build_targets(raw.get("targets") or []),
        notifications=_build_notifications(raw.get("notifications") or {}),
    )

    validate(cfg)
    logger.info(
        "Configuration loaded from %s (%d targets)", config_path, len(cfg.targets)
    )
    return cfg


def validate(cfg: AppConfig) -> None:
    """Raise ConfigurationError on invalid configuration."""
    if not cfg.targets:
        raise ConfigurationError("At least one target must be configured")

    seen: set[str] = set()
    for target in cfg.targets:
        label = target.display_name or target.url or "<unnamed>"
        if not target.url:
            raise ConfigurationError(f"Target '{label}' has no url")
        if urlparse(target.url).scheme not in ("http", "https"):
            raise ConfigurationError(
                f"Target '{label}' url must be http(s): {target.url}"
            )
        if target.url in seen:
            raise ConfigurationError(f"Duplicate target url: {target.url}")
        seen.add(target.url)
        if target.timeout_ms is not None and target.timeout_ms <= 0:
            raise ConfigurationError(f"Target '{label}' timeout_ms must be positive")

    mon = cfg.monitor
    if mon.retry_count < 1:
        raise ConfigurationError("monitor.retry_count must be at least 1")
    if mon.retry_delay_seconds < 0:
        raise ConfigurationError("monitor.retry_delay_seconds must not be negative")
    if mon.default_timeout_ms <= 0:
        raise ConfigurationError("monitor.default_timeout_ms must be positive")
    if mon.shutdown_grace_seconds < 0:
        raise ConfigurationError("monitor.shutdown_grace_seconds must not be negative")
    if mon.schedule:
        validate_schedule(mon.schedule)
    elif mon.poll_interval_seconds <= 0:
        raise ConfigurationError("monitor.poll_interval_seconds must be positive")

    det = cfg.detection
    if det.key not in DETECTION_KEYS:
        raise ConfigurationError(
            f"detection.key must be one of {', '.join(DETECTION_KEYS)}, got '{det.key}'"
        )
    if det.threshold_field not in RECORD_FIELDS:
        raise ConfigurationError(
            f"detection.threshold_field '{det.threshold_field}' is not a position field"
        )
    if det.threshold_percent is not None and det.threshold_percent < 0:
        raise ConfigurationError("detection.threshold_percent must not be negative")

    if cfg.extractor.mode not in EXTRACTOR_MODES:
        raise ConfigurationError(
            f"extractor.mode must be one of {', '.join(EXTRACTOR_MODES)}, "
            f"got '{cfg.extractor.mode}'"
        )


def validate_schedule(expression: str) -> None:
    """Raise ConfigurationError unless ``expression`` is a 5- or 6-field cron string."""
    from .services.trigger import build_cron_trigger

    try:
        build_cron_trigger(expression)
    except ValueError as e:
        raise ConfigurationError(f"Invalid schedule '{expression}': {e}") from e
