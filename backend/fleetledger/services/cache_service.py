# Overview: Collection cache and change-notification bus shared by services.

"""
Collection cache contract:
- A cached read returns the collection as of its last invalidation.
- Same-process writes call broadcast(topic); every subscriber drops that topic.
- Other processes are not reachable through this bus. Nothing in the core relies
  on the cache for correctness, only for cheap repeated reads.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from blinker import Namespace


logger = logging.getLogger(__name__)

_signals = Namespace()
collection_changed = _signals.signal("collection-changed")

TOPICS = {
    "waybills",
    "stock",
    "drivers",
    "vehicles",
    "period_locks",
    "snapshots",
    "settings",
    "audit",
}


def broadcast(topic: str, **payload: Any) -> None:
    """Tell every subscriber that a collection changed."""
    if topic not in TOPICS:
        raise ValueError(f"Unknown topic '{topic}'")
    collection_changed.send(topic, **payload)


class CollectionCache:
    """Per-topic memo of loaded collections, dropped on broadcast."""

    def __init__(self) -> None:
        self._entries: dict[str, Any] = {}
        collection_changed.connect(self._on_change, weak=False)

    def _on_change(self, topic: str, **_payload: Any) -> None:
        if topic in self._entries:
            logger.debug("Cache invalidated for %s via bus", topic)
            self._entries.pop(topic, None)

    def get_or_load(self, topic: str, loader: Callable[[], Any]) -> Any:
        if topic not in self._entries:
            self._entries[topic] = loader()
        return self._entries[topic]

    def clear(self) -> None:
        self._entries.clear()
