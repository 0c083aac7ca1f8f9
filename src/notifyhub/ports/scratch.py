from __future__ import annotations

from typing import Protocol


class ScratchStore(Protocol):
    """Durable small-state storage scoped to one subscription instance."""

    def get(self, key: str) -> bytes | None: ...
    def set(self, key: str, value: bytes) -> None: ...
    def delete(self, key: str) -> None: ...
