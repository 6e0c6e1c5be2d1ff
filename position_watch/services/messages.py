"""Alert text formatting (Telegram HTML)."""
from __future__ import annotations

from html import escape
from typing import Sequence

from ..models import (
    ChangeKind,
    ChangeReason,
    ChangeResult,
    PositionRecord,
    Target,
    TargetEvent,
)

STATUS_FIRST_OBSERVATION = "First-time positions detected"
STATUS_CLOSED = "All positions closed"

_SUBJECTS = {
    TargetEvent.FIRST_OBSERVATION: "New positions",
    TargetEvent.CHANGED: "Positions changed",
    TargetEvent.CLOSED: "Positions closed",
}


def format_alert(
    target: Target, records: Sequence[PositionRecord], status: str = ""
) -> str:
    lines = [
        f"<b>Owner</b>: {escape(target.display_name)}",
        f"<b>Description</b>: {escape(target.description)}",
        f"<b>Rating</b>: {escape(target.rating)}",
        "",
    ]
    if status:
        lines += [f"<b>Status</b>: {escape(status)}", ""]
    lines += [f"<b>Positions for</b>: {escape(target.url)}", ""]

    for index, record in enumerate(records, start=1):
        lines += [
            f"<b>Position {index}:</b> {escape(record.token)}",
            f"- <b>Collateral:</b> {escape(record.collateral)}",
            f"- <b>Entry Price:</b> {escape(record.entry_price)}",
            f"- <b>Liquidation Price:</b> {escape(record.liquidation_price)}",
            "",
        ]

    return "\n".join(lines).rstrip() + "\n"


def describe_reason(reason: ChangeReason, field: str = "size") -> str:
    record = reason.record
    if reason.kind is ChangeKind.ADDED:
        return f"New position added: {record.token} at entry price {record.entry_price}"
    if reason.kind is ChangeKind.REMOVED:
        return f"Position closed: {record.token} at entry price {record.entry_price}"

    before = getattr(reason.previous, field, "") if reason.previous else ""
    after = getattr(record, field, "")
    label = field.replace("_", " ")
    if reason.kind is ChangeKind.THRESHOLD_EXCEEDED:
        return (
            f"{label.capitalize()} changed {reason.delta_percent:.2f}%: "
            f"{reason.subject_key} ({before} → {after})"
        )
    return f"{label.capitalize()} unreadable for {reason.subject_key} ({before} → {after})"


def summarize_reasons(result: ChangeResult, field: str = "size") -> str:
    return "\n".join(describe_reason(r, field) for r in result.reasons)


def subject_for(event: TargetEvent, target: Target) -> str:
    prefix = _SUBJECTS.get(event, "Position update")
    name = target.display_name or target.url
    return f"{prefix}: {name}"
