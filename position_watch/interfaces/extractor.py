"""Extractor protocol: fetches the current positions of one target."""
from typing import Protocol

from ..models import PositionRecord, Target


class Extractor(Protocol):
    """Abstract interface for reading a target's positions table.

    ``fetch`` is all-or-nothing: it returns every row as a well-formed record,
    ``[]`` when the page positively shows no open positions, and otherwise
    returns None or raises ``ExtractionError``.
    """

    async def fetch(self, target: Target, timeout_ms: int) -> list[PositionRecord] | None: ...

    async def close(self) -> None: ...
