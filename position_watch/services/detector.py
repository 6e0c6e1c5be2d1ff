"""Change detection between a stored snapshot and freshly polled records."""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Callable, Sequence

from ..config import DetectionConfig
from ..errors import ParseFailure
from ..models import ChangeKind, ChangeReason, ChangeResult, PositionRecord

KeyExtractor = Callable[[PositionRecord], str]

_NON_NUMERIC_RE = re.compile(r"[^0-9.\-]")


def parse_number(text: str) -> float:
    """Parse a page-formatted number, discarding currency and formatting characters.

    Examples:
        "$1,234.56" → 1234.56
        "-$12.00" → -12.0
        " 10.5 % " → 10.5

    Raises:
        ParseFailure: nothing numeric is left after stripping.
    """
    cleaned = _NON_NUMERIC_RE.sub("", text or "")
    try:
        return float(cleaned)
    except ValueError as e:
        raise ParseFailure(f"Not a number: {text!r}") from e


def token_key(record: PositionRecord) -> str:
    return record.token.strip()


def entry_price_key(record: PositionRecord) -> str:
    """Entry price canonicalised to two decimals, so "$1,500" and "1500.00" match."""
    try:
        return f"{parse_number(record.entry_price):.2f}"
    except ParseFailure:
        return record.entry_price.strip()


KEY_EXTRACTORS: dict[str, KeyExtractor] = {
    "token": token_key,
    "entry_price": entry_price_key,
}


@dataclass(frozen=True)
class ValueComparator:
    """Flags a shared position whose ``field`` moved by at least ``threshold_percent``."""

    threshold_percent: float
    field: str = "size"

    def compare(
        self, key: str, previous: PositionRecord, current: PositionRecord
    ) -> ChangeReason | None:
        prev_raw = getattr(previous, self.field)
        curr_raw = getattr(current, self.field)
        if prev_raw == curr_raw:
            return None

        try:
            prev_value = parse_number(prev_raw)
            curr_value = parse_number(curr_raw)
        except ParseFailure:
            return ChangeReason(ChangeKind.UNPARSEABLE, key, current, previous)

        if prev_value == curr_value:
            return None
        if prev_value == 0:
            return ChangeReason(ChangeKind.UNPARSEABLE, key, current, previous)

        delta = abs(curr_value - prev_value) * 100 / abs(prev_value)
        if delta >= self.threshold_percent or math.isclose(
            delta, self.threshold_percent, rel_tol=1e-9
        ):
            return ChangeReason(
                ChangeKind.THRESHOLD_EXCEEDED, key, current, previous, delta_percent=delta
            )
        return None


def _index(records: Sequence[PositionRecord], key: KeyExtractor) -> dict[str, PositionRecord]:
    indexed: dict[str, PositionRecord] = {}
    for record in records:
        indexed.setdefault(key(record), record)
    return indexed


class ChangeDetector:
    """Compares a snapshot against current records and reports every difference."""

    def __init__(
        self,
        key: KeyExtractor = token_key,
        comparator: ValueComparator | None = None,
    ) -> None:
        self._key = key
        self._comparator = comparator

    @classmethod
    def from_config(cls, config: DetectionConfig) -> ChangeDetector:
        comparator = None
        if config.threshold_percent is not None:
            comparator = ValueComparator(config.threshold_percent, config.threshold_field)
        return cls(key=KEY_EXTRACTORS[config.key], comparator=comparator)

    def compare(
        self,
        previous: Sequence[PositionRecord],
        current: Sequence[PositionRecord],
    ) -> ChangeResult:
        prev_by_key = _index(previous, self._key)
        curr_by_key = _index(current, self._key)

        reasons: list[ChangeReason] = []
        for key, record in prev_by_key.items():
            if key not in curr_by_key:
                reasons.append(ChangeReason(ChangeKind.REMOVED, key, record))
        for key, record in curr_by_key.items():
            if key not in prev_by_key:
                reasons.append(ChangeReason(ChangeKind.ADDED, key, record))

        if self._comparator is not None:
            for key, record in curr_by_key.items():
                if key in prev_by_key:
                    reason = self._comparator.compare(key, prev_by_key[key], record)
                    if reason is not None:
                        reasons.append(reason)

        return ChangeResult(tuple(reasons))
