"""Pure conversion of scraped table rows into position records."""
from __future__ import annotations

from typing import Any

from ..errors import ExtractionFailure
from ..models import PositionRecord

# Cell order of a positions row after the token cell.
VALUE_COLUMNS = (
    "size",
    "net_value",
    "collateral",
    "entry_price",
    "mark_price",
    "liquidation_price",
)


def build_token(token_name: str, leverage: str) -> str:
    """Join the market name and leverage label, e.g. "BTC" + "10.00x" → "BTC 10.00x"."""
    return " ".join(part for part in (token_name.strip(), leverage.strip()) if part)


def parse_row(raw: dict[str, Any], index: int = 0) -> PositionRecord:
    """Convert one raw row ``{"token_name", "leverage", "cells"}`` into a record.

    Raises:
        ExtractionFailure: the row lacks a token or any value cell.
    """
    token = build_token(str(raw.get("token_name") or ""), str(raw.get("leverage") or ""))
    if not token:
        raise ExtractionFailure(f"Row {index + 1} has no token")

    cells = [str(c).strip() for c in raw.get("cells") or []]
    if len(cells) < len(VALUE_COLUMNS) + 1:
        raise ExtractionFailure(
            f"Row {index + 1} ({token}) has {len(cells)} cells, "
            f"expected at least {len(VALUE_COLUMNS) + 1}"
        )

    values = dict(zip(VALUE_COLUMNS, cells[1 : len(VALUE_COLUMNS) + 1]))
    blank = [name for name, value in values.items() if not value]
    if blank:
        raise ExtractionFailure(
            f"Row {index + 1} ({token}) has blank cells: {', '.join(blank)}"
        )
    return PositionRecord(token=token, **values)


def parse_rows(raw_rows: list[dict[str, Any]]) -> list[PositionRecord]:
    """All-or-nothing: every row parses or the whole extraction fails."""
    return [parse_row(raw, index) for index, raw in enumerate(raw_rows)]
