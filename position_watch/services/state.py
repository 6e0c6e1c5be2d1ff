"""Snapshot storage, in memory or JSON-file backed, plus the monitor's owned state."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from ..config import StateConfig
from ..errors import PersistenceFailure
from ..interfaces.state_store import StateStore
from ..models import PositionRecord, Snapshot

logger = logging.getLogger(__name__)


class MemoryStateStore:
    """Snapshots held for the lifetime of the process."""

    def __init__(self, snapshots: dict[str, Snapshot] | None = None) -> None:
        self._snapshots: dict[str, Snapshot] = dict(snapshots or {})

    def get(self, key: str) -> Snapshot | None:
        return self._snapshots.get(key)

    def set(self, key: str, records: Iterable[PositionRecord]) -> None:
        self._snapshots[key] = tuple(records)
        self._changed()

    def clear(self, key: str) -> None:
        """Mark the target as holding zero positions (present-but-empty)."""
        self._snapshots[key] = ()
        self._changed()

    def remove(self, key: str) -> None:
        """Forget the target entirely. Only used for explicit resets."""
        if self._snapshots.pop(key, None) is not None:
            self._changed()

    def keys(self) -> list[str]:
        return list(self._snapshots)

    def flush(self) -> None:
        """Nothing to persist."""

    def _changed(self) -> None:
        """Hook called after every mutation."""


class JsonStateStore(MemoryStateStore):
    """Memory store that rewrites a JSON file atomically after every mutation.

    File layout: ``{"<target url>": [{"token": ..., "size": ..., ...}, ...]}``.
    A missing or unreadable file yields an empty store; write errors are
    logged and the in-memory copy stays authoritative.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        super().__init__(self._load())

    def flush(self) -> None:
        self._persist()

    def _changed(self) -> None:
        self._persist()

    # ------------------------------------------------------------------
    # Load / save
    # ------------------------------------------------------------------

    def _load(self) -> dict[str, Snapshot]:
        if not self.path.exists():
            logger.info("No state file at %s, starting empty", self.path)
            return {}

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Could not read state file %s, starting empty: %s", self.path, e)
            return {}

        if not isinstance(raw, dict):
            logger.warning("State file %s is not a mapping, starting empty", self.path)
            return {}

        snapshots: dict[str, Snapshot] = {}
        for key, entries in raw.items():
            if not isinstance(entries, list):
                logger.warning("Skipping malformed state entry for %s", key)
                continue
            snapshots[key] = tuple(
                PositionRecord.from_dict(entry)
                for entry in entries
                if isinstance(entry, dict)
            )

        logger.info("Loaded %d snapshots from %s", len(snapshots), self.path)
        return snapshots

    def _serialize(self) -> dict[str, Any]:
        return {
            key: [record.to_dict() for record in records]
            for key, records in self._snapshots.items()
        }

    def _persist(self) -> None:
        try:
            self._write_atomic(self._serialize())
        except PersistenceFailure as e:
            logger.error("%s", e)

    def _write_atomic(self, payload: dict[str, Any]) -> None:
        tmp = self.path.with_name(f"{self.path.name}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except OSError as e:
            try:
                tmp.unlink(missing_ok=True)
            except OSError:
                logger.debug("Could not remove temporary state file %s", tmp)
            raise PersistenceFailure(f"Failed to write state file {self.path}: {e}") from e


@dataclass
class MonitorState:
    """Mutable state owned by one Monitor: snapshots, bootstrap flags, single-flight flag."""

    store: StateStore
    bootstrapped: set[str] = field(default_factory=set)
    in_flight: bool = False

    @classmethod
    def for_store(cls, store: StateStore) -> MonitorState:
        """Targets with a reloaded snapshot have already completed a successful poll."""
        return cls(store=store, bootstrapped=set(store.keys()))

    def is_bootstrapped(self, key: str) -> bool:
        return key in self.bootstrapped

    def reset(self, key: str) -> None:
        self.store.remove(key)
        self.bootstrapped.discard(key)


def build_state_store(config: StateConfig) -> StateStore:
    if config.path:
        return JsonStateStore(config.path)
    return MemoryStateStore()
