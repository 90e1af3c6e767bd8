"""
In-process change notifications.

Subscribers get a trigger to re-query, never the row of record. Callbacks
run synchronously on the publishing thread; a failing callback is logged
and does not stop the others.
"""
from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from loguru import logger

ChangeCallback = Callable[["ChangeEvent"], None]


@dataclass
class ChangeEvent:
    table: str
    event: str  # insert | update
    record: Dict[str, Any] = field(default_factory=dict)


@dataclass
class _Subscription:
    table: str
    filters: Dict[str, Any]
    callback: ChangeCallback

    def matches(self, evt: ChangeEvent) -> bool:
        if evt.table != self.table:
            return False
        return all(evt.record.get(k) == v for k, v in self.filters.items())


class ChangeFeed:
    def __init__(self):
        self._subs: Dict[int, _Subscription] = {}
        self._ids = itertools.count(1)

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        filters: Optional[Dict[str, Any]] = None,
    ) -> int:
        sub_id = next(self._ids)
        self._subs[sub_id] = _Subscription(table=table, filters=filters or {}, callback=callback)
        return sub_id

    def unsubscribe(self, sub_id: int) -> None:
        self._subs.pop(sub_id, None)

    def publish(self, table: str, event: str, record: Dict[str, Any]) -> None:
        evt = ChangeEvent(table=table, event=event, record=record)
        for sub in list(self._subs.values()):
            if not sub.matches(evt):
                continue
            try:
                sub.callback(evt)
            except Exception:
                logger.exception(f"[feed] subscriber failed for {table}.{event}")


change_feed = ChangeFeed()
