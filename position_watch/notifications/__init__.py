"""Notification modules."""
from __future__ import annotations

import logging

from ..config import NotificationsConfig
from ..interfaces.notifier import Notifier
from .email import EmailNotifier
from .telegram import TelegramNotifier

logger = logging.getLogger(__name__)

Route = tuple[Notifier, tuple[str, ...]]


def build_routes(config: NotificationsConfig) -> list[Route]:
    """One (notifier, destinations) route per enabled channel."""
    routes: list[Route] = []
    if config.telegram.enabled:
        if config.telegram.chat_ids:
            routes.append((TelegramNotifier(config.telegram), config.telegram.chat_ids))
        else:
            logger.warning("Telegram enabled but no chat_ids configured")
    if config.email.enabled:
        if config.email.recipients:
            routes.append((EmailNotifier(config.email), config.email.recipients))
        else:
            logger.warning("Email enabled but no recipients configured")
    return routes


__all__ = ["TelegramNotifier", "EmailNotifier", "Route", "build_routes"]
