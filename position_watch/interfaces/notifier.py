"""Notifier protocol: notification channel abstraction."""
from typing import Collection, Protocol


class Notifier(Protocol):
    """Abstract interface for delivering one message to several destinations.

    Each destination is attempted independently; the result maps every
    destination to whether delivery succeeded.
    """

    async def send(
        self, text: str, destinations: Collection[str], subject: str = ""
    ) -> dict[str, bool]: ...
