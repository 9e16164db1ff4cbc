"""Change events published by the ledger store and the channel that delivers them."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, fields
from typing import Any, Callable, ClassVar, Deque, Dict, List, Optional

from .models import Category, LedgerState, RecurringTemplate, Settings, Transaction

__all__ = [
    'ChangeEvent',
    'InitEvent',
    'MonthChanged',
    'TransactionAdded',
    'TransactionUpdated',
    'TransactionDeleted',
    'CategoryAdded',
    'CategoryUpdated',
    'RecurringAdded',
    'RecurringUpdated',
    'RecurringDeleted',
    'SettingsUpdated',
    'LedgerReset',
    'DataImported',
    'EventChannel',
    'Subscriber',
]


@dataclass(frozen=True)
class ChangeEvent:
    type: ClassVar[str] = 'change'

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {'type': self.type}
        for f in fields(self):
            value = getattr(self, f.name)
            payload[f.name] = value.to_dict() if hasattr(value, 'to_dict') else value
        return payload


@dataclass(frozen=True)
class InitEvent(ChangeEvent):
    type: ClassVar[str] = 'init'


@dataclass(frozen=True)
class MonthChanged(ChangeEvent):
    type: ClassVar[str] = 'month:change'


@dataclass(frozen=True)
class TransactionAdded(ChangeEvent):
    type: ClassVar[str] = 'transactions:add'
    transaction: Transaction


@dataclass(frozen=True)
class TransactionUpdated(ChangeEvent):
    type: ClassVar[str] = 'transactions:update'
    transaction: Transaction


@dataclass(frozen=True)
class TransactionDeleted(ChangeEvent):
    type: ClassVar[str] = 'transactions:delete'
    transaction: Transaction


@dataclass(frozen=True)
class CategoryAdded(ChangeEvent):
    type: ClassVar[str] = 'categories:add'
    category: Category


@dataclass(frozen=True)
class CategoryUpdated(ChangeEvent):
    type: ClassVar[str] = 'categories:update'
    category: Category


@dataclass(frozen=True)
class RecurringAdded(ChangeEvent):
    type: ClassVar[str] = 'recurring:add'
    template: RecurringTemplate


@dataclass(frozen=True)
class RecurringUpdated(ChangeEvent):
    type: ClassVar[str] = 'recurring:update'
    template: RecurringTemplate


@dataclass(frozen=True)
class RecurringDeleted(ChangeEvent):
    type: ClassVar[str] = 'recurring:delete'
    template: RecurringTemplate


@dataclass(frozen=True)
class SettingsUpdated(ChangeEvent):
    type: ClassVar[str] = 'settings:update'
    settings: Settings


@dataclass(frozen=True)
class LedgerReset(ChangeEvent):
    type: ClassVar[str] = 'app:reset'


@dataclass(frozen=True)
class DataImported(ChangeEvent):
    type: ClassVar[str] = 'data:import'
    strategy: str


Subscriber = Callable[[LedgerState, ChangeEvent], Any]


class EventChannel:
    """Synchronous broadcast of change events to subscribers.

    Events published while a delivery round is running (a subscriber that
    mutates the store) are queued and delivered after the round completes,
    so subscribers always see events one at a time and in order.
    """

    def __init__(self, snapshot: Callable[[], LedgerState]):
        self._snapshot = snapshot
        self._subscribers: List[Subscriber] = []
        self._queue: Deque[ChangeEvent] = deque()
        self._dispatching = False

    def subscribe(self, handler: Subscriber) -> Callable[[], None]:
        self._subscribers.append(handler)

        def unsubscribe() -> None:
            self.unsubscribe(handler)

        return unsubscribe

    def unsubscribe(self, handler: Subscriber) -> None:
        if handler in self._subscribers:
            self._subscribers.remove(handler)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: ChangeEvent) -> None:
        self._queue.append(event)
        if self._dispatching:
            return
        self._dispatching = True
        try:
            while self._queue:
                current: Optional[ChangeEvent] = self._queue.popleft()
                state = self._snapshot()
                for handler in list(self._subscribers):
                    handler(state, current)
        finally:
            self._dispatching = False
            self._queue.clear()
