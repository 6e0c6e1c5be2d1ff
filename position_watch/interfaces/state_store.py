"""State store protocol: last accepted snapshot per target."""
from typing import Iterable, Protocol

from ..models import PositionRecord, Snapshot


class StateStore(Protocol):
    """Maps target keys to snapshots. ``get`` returns None for absent, () for present-but-empty."""

    def get(self, key: str) -> Snapshot | None: ...

    def set(self, key: str, records: Iterable[PositionRecord]) -> None: ...

    def clear(self, key: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...

    def flush(self) -> None: ...
