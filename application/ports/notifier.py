"""
Notifier port: receives domain events after the unit of work has committed.
"""
from __future__ import annotations

from typing import Any, Protocol, Sequence, runtime_checkable


@runtime_checkable
class Notifier(Protocol):
    async def publish(self, events: Sequence[Any]) -> None: ...
