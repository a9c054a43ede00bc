"""Bounded memory of recently delivered alert IDs."""

from __future__ import annotations

from collections import OrderedDict


class RecentlyProcessed:
    """LRU set of alert IDs this process has already finished with.

    A cheap pre-check before hitting the store. It is not what guarantees
    single delivery; the store's claim is.
    """

    def __init__(self, capacity: int = 1000) -> None:
        self._capacity = max(capacity, 1)
        self._ids: OrderedDict[str, None] = OrderedDict()

    def __contains__(self, alert_id: object) -> bool:
        return alert_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, alert_id: str) -> None:
        self._ids[alert_id] = None
        self._ids.move_to_end(alert_id)
        while len(self._ids) > self._capacity:
            self._ids.popitem(last=False)
