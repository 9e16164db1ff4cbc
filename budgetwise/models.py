"""Domain model for the BudgetWise ledger.

Entities are frozen dataclasses.  Their ``to_dict`` methods produce the exact
JSON shapes written to storage and to export files, so the persisted layout
is defined in one place.
"""

from __future__ import annotations

import random
import string
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

SCHEMA_VERSION = 1

INCOME = 'income'
EXPENSE = 'expense'
TRANSACTION_TYPES = (INCOME, EXPENSE)

NECESSITIES = 'Necessities'
LEISURE = 'Leisure'
SAVINGS = 'Savings'
UNCATEGORIZED = 'Uncategorized'
BUCKETS = (NECESSITIES, LEISURE, SAVINGS)

# Synthetic category key used for expenses without a category.
UNCATEGORIZED_KEY = 'uncategorized'

# Largest amount accepted anywhere in the ledger (2**53 - 1, the largest
# integer exactly representable as a float).
MAX_AMOUNT_CENTS = 2 ** 53 - 1

DEFAULT_CATEGORY_NAME = 'Untitled'
DEFAULT_TEMPLATE_DESCRIPTION = 'Template'

DEFAULT_RULE: Dict[str, float] = {
    'necessities': 50,
    'leisure': 30,
    'savings': 20,
}

DEFAULT_SETTINGS: Dict[str, Any] = {
    'currency': 'USD',
    'locale': 'en-US',
    'rule': dict(DEFAULT_RULE),
    'firstDayOfWeek': 1,
    'showAdvancedCharts': False,
    'hapticFeedback': False,
    'schema_version': SCHEMA_VERSION,
}

STARTER_CATEGORIES: Tuple[Tuple[str, str], ...] = (
    ('Housing', NECESSITIES),
    ('Groceries', NECESSITIES),
    ('Fun', LEISURE),
)

_BASE36 = string.digits + string.ascii_lowercase


def _to_base36(value: int) -> str:
    if value == 0:
        return '0'
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return ''.join(reversed(digits))


class IdGenerator:
    """Chronologically sortable ids: ``<base36 millis>-<6 random chars>``.

    The millisecond part never repeats or goes backwards within one
    generator, so ids created later always sort after earlier ones.
    """

    def __init__(self, clock=time.time, rng: Optional[random.Random] = None):
        self._clock = clock
        self._rng = rng or random.Random()
        self._last_millis = 0

    def __call__(self) -> str:
        millis = int(self._clock() * 1000)
        if millis <= self._last_millis:
            millis = self._last_millis + 1
        self._last_millis = millis
        suffix = ''.join(self._rng.choice(_BASE36) for _ in range(6))
        return f"{_to_base36(millis)}-{suffix}"


create_id = IdGenerator()


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    stamp = datetime.now(timezone.utc).isoformat(timespec='milliseconds')
    return stamp.replace('+00:00', 'Z')


@dataclass(frozen=True)
class Rule:
    necessities: float = DEFAULT_RULE['necessities']
    leisure: float = DEFAULT_RULE['leisure']
    savings: float = DEFAULT_RULE['savings']

    def percentage_for(self, bucket: str) -> float:
        return {
            NECESSITIES: self.necessities,
            LEISURE: self.leisure,
            SAVINGS: self.savings,
        }.get(bucket, 0)

    def total(self) -> float:
        return self.necessities + self.leisure + self.savings

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class Settings:
    currency: str = DEFAULT_SETTINGS['currency']
    locale: str = DEFAULT_SETTINGS['locale']
    rule: Rule = field(default_factory=Rule)
    first_day_of_week: int = DEFAULT_SETTINGS['firstDayOfWeek']
    show_advanced_charts: bool = False
    haptic_feedback: bool = False
    schema_version: int = SCHEMA_VERSION

    def to_dict(self) -> Dict[str, Any]:
        # Persisted keys keep the camelCase names of the stored format.
        return {
            'currency': self.currency,
            'locale': self.locale,
            'rule': self.rule.to_dict(),
            'firstDayOfWeek': self.first_day_of_week,
            'showAdvancedCharts': self.show_advanced_charts,
            'hapticFeedback': self.haptic_feedback,
            'schema_version': self.schema_version,
        }


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    bucket: str = NECESSITIES
    archived: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Transaction:
    id: str
    type: str
    amount_cents: int
    description: str
    category_id: Optional[str]
    bucket: Optional[str]
    date_iso: str

    @property
    def is_income(self) -> bool:
        return self.type == INCOME

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RecurringTemplate:
    id: str
    description: str
    default_amount_cents: int
    category_id: Optional[str] = None

    @property
    def asks_for_amount(self) -> bool:
        """Templates saved without an amount prompt for one on each use."""
        return self.default_amount_cents == 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MonthSelection:
    year: int
    month_index: int  # 0-11

    @classmethod
    def current(cls) -> 'MonthSelection':
        today = datetime.now(timezone.utc)
        return cls(year=today.year, month_index=today.month - 1)


@dataclass(frozen=True)
class CorruptionReport:
    has_corruption: bool = False
    keys: Tuple[str, ...] = ()


@dataclass(frozen=True)
class LedgerState:
    """Immutable snapshot handed to subscribers and returned by ``get_state``."""

    settings: Settings
    categories: Tuple[Category, ...]
    transactions: Tuple[Transaction, ...]
    recurring: Tuple[RecurringTemplate, ...]
    month: MonthSelection
    corruption: CorruptionReport = field(default_factory=CorruptionReport)


def starter_categories() -> List[Category]:
    """Fresh copies of the categories seeded on first run and on reset."""
    return [Category(id=create_id(), name=name, bucket=bucket) for name, bucket in STARTER_CATEGORIES]


def transaction_sort_key(tx: Transaction) -> Tuple[str, str]:
    """Key for the canonical order; use with ``reverse=True`` (newest first)."""
    return (tx.date_iso, tx.id)


def sort_transactions(transactions) -> List[Transaction]:
    return sorted(transactions, key=transaction_sort_key, reverse=True)
