"""Derived views over the ledger: monthly totals, category spend, activity.

Month and day boundaries follow a single UTC policy: ``date_iso`` values are
parsed as ISO-8601, converted to UTC (naive values are taken as UTC) and
compared by calendar year/month/day.  Values that cannot be parsed belong to
no month.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from .formatting import format_day_label
from .models import (
    BUCKETS,
    EXPENSE,
    INCOME,
    UNCATEGORIZED,
    UNCATEGORIZED_KEY,
    Category,
    Settings,
    Transaction,
    sort_transactions,
)
from .pagination import CursorLike, paginate

REPORT_BUCKETS = BUCKETS + (UNCATEGORIZED,)
CHART_LABEL_LENGTH = 12

_FRAME_COLUMNS = ['id', 'type', 'amount_cents', 'description', 'category_id', 'bucket', 'date_iso']


def parse_date_utc(date_iso: Any) -> Optional[pd.Timestamp]:
    """Parse an ISO-8601 string to a UTC timestamp, ``None`` if invalid."""
    if not isinstance(date_iso, str) or not date_iso:
        return None
    stamp = pd.to_datetime(date_iso, errors='coerce', utc=True, format='ISO8601')
    if pd.isna(stamp):
        return None
    return stamp


def is_same_month(date_iso: Any, year: int, month_index: int) -> bool:
    stamp = parse_date_utc(date_iso)
    return stamp is not None and stamp.year == year and stamp.month - 1 == month_index


def round_half_up(value: float) -> int:
    """Round half up; the builtin ``round`` rounds halves to even."""
    return int(math.floor(value + 0.5))


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BucketTotals:
    spent_cents: int
    budget_cents: int
    remaining_cents: int

    def to_dict(self) -> Dict[str, int]:
        return {
            'spent_cents': self.spent_cents,
            'budget_cents': self.budget_cents,
            'remaining_cents': self.remaining_cents,
        }


@dataclass(frozen=True)
class MonthlyTotals:
    income_cents: int
    expense_cents: int
    buckets: Dict[str, BucketTotals] = field(default_factory=dict)

    @property
    def net_cents(self) -> int:
        return self.income_cents - self.expense_cents

    def to_dict(self) -> Dict[str, Any]:
        return {
            'income_cents': self.income_cents,
            'expense_cents': self.expense_cents,
            'buckets': {name: totals.to_dict() for name, totals in self.buckets.items()},
        }


@dataclass(frozen=True)
class CategorySpend:
    category_id: str
    name: str
    bucket: Optional[str]
    spent_cents: int
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'category_id': self.category_id,
            'name': self.name,
            'bucket': self.bucket,
            'spent_cents': self.spent_cents,
            'count': self.count,
        }


@dataclass(frozen=True)
class CategoryStat:
    category: Category
    current_month_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {**self.category.to_dict(), 'currentMonthCount': self.current_month_count}


@dataclass(frozen=True)
class ActivityGroup:
    date_label: str
    day: Optional[date]
    entries: Tuple[Transaction, ...]


@dataclass(frozen=True)
class ActivityPage:
    groups: Tuple[ActivityGroup, ...]
    next_cursor: Optional[str]
    has_more: bool


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


class LedgerAnalytics:
    """Aggregations over one snapshot of transactions, categories and settings."""

    def __init__(
        self,
        transactions: Sequence[Transaction],
        categories: Sequence[Category] = (),
        settings: Optional[Settings] = None,
    ):
        self.transactions: Tuple[Transaction, ...] = tuple(sort_transactions(transactions))
        self.categories: Tuple[Category, ...] = tuple(categories)
        self.settings = settings or Settings()
        self.data = self._build_frame()

    def _build_frame(self) -> pd.DataFrame:
        frame = pd.DataFrame([tx.to_dict() for tx in self.transactions], columns=_FRAME_COLUMNS)
        stamps = pd.to_datetime(frame['date_iso'], errors='coerce', utc=True, format='ISO8601')
        frame['year'] = stamps.dt.year
        frame['month_index'] = stamps.dt.month - 1
        frame['amount_cents'] = pd.to_numeric(frame['amount_cents'], errors='coerce').fillna(0).astype('int64')
        return frame

    def _month_rows(self, year: int, month_index: int) -> pd.DataFrame:
        data = self.data
        return data[(data['year'] == year) & (data['month_index'] == month_index)]

    def _month_expenses(self, year: int, month_index: int) -> pd.DataFrame:
        month = self._month_rows(year, month_index)
        return month[month['type'] == EXPENSE]

    def _category_lookup(self) -> Dict[str, Category]:
        return {category.id: category for category in self.categories}

    def monthly_totals(self, year: int, month_index: int) -> MonthlyTotals:
        """Income, expenses and per-bucket budget math for one month.

        Each rule bucket is budgeted ``round(income * pct / 100)``; the
        Uncategorized bucket never has a budget, so its remaining amount is
        the negated spend.
        """
        month = self._month_rows(year, month_index)
        income = int(month.loc[month['type'] == INCOME, 'amount_cents'].sum())
        expenses = month[month['type'] == EXPENSE]

        bucket_keys = expenses['bucket'].where(expenses['bucket'].isin(BUCKETS), UNCATEGORIZED)
        spent_by_bucket = expenses['amount_cents'].groupby(bucket_keys).sum()

        rule = self.settings.rule
        buckets: Dict[str, BucketTotals] = {}
        for name in REPORT_BUCKETS:
            spent = int(spent_by_bucket.get(name, 0))
            budget = round_half_up(income * (rule.percentage_for(name) / 100)) if name in BUCKETS else 0
            remaining = budget - spent if budget else -spent
            buckets[name] = BucketTotals(spent_cents=spent, budget_cents=budget, remaining_cents=remaining)

        return MonthlyTotals(
            income_cents=income,
            expense_cents=int(expenses['amount_cents'].sum()),
            buckets=buckets,
        )

    def spending_by_category(self, year: int, month_index: int) -> List[CategorySpend]:
        """Same-month expense totals per category, largest first.

        Names and buckets come from the current category list, so renaming
        a category relabels its history.
        """
        expenses = self._month_expenses(year, month_index)
        if expenses.empty:
            return []
        keys = expenses['category_id'].fillna(UNCATEGORIZED_KEY)
        grouped = (
            expenses['amount_cents']
            .groupby(keys, sort=False)
            .agg(['sum', 'count'])
            .sort_values('sum', ascending=False, kind='stable')
        )

        lookup = self._category_lookup()
        entries: List[CategorySpend] = []
        for category_id, row in grouped.iterrows():
            category = lookup.get(category_id)
            entries.append(CategorySpend(
                category_id=category_id,
                name=category.name if category else UNCATEGORIZED,
                bucket=category.bucket if category else None,
                spent_cents=int(row['sum']),
                count=int(row['count']),
            ))
        return entries

    def category_stats(self, year: int, month_index: int) -> List[CategoryStat]:
        """Every category with its number of expenses in the month."""
        expenses = self._month_expenses(year, month_index)
        counts = expenses['category_id'].fillna(UNCATEGORIZED_KEY).value_counts()
        return [
            CategoryStat(category=category, current_month_count=int(counts.get(category.id, 0)))
            for category in self.categories
        ]

    def recent_transactions(self, limit: int = 20, cursor: CursorLike = None):
        return paginate(self.transactions, limit, cursor)

    def activity_groups(self, page_size: int = 20, cursor: CursorLike = None) -> ActivityPage:
        """One page of global history grouped into consecutive days.

        Paging is not filtered by month, so loading more continues into
        neighbouring months without gaps.
        """
        page = paginate(self.transactions, page_size, cursor)
        return ActivityPage(
            groups=tuple(group_by_day(page.items, self.settings.locale)),
            next_cursor=page.next_cursor,
            has_more=page.has_more,
        )


def group_by_day(transactions: Iterable[Transaction], locale: str = 'en-US') -> List[ActivityGroup]:
    groups: List[ActivityGroup] = []
    current_label: Optional[str] = None
    current_day: Optional[date] = None
    entries: List[Transaction] = []

    for tx in transactions:
        stamp = parse_date_utc(tx.date_iso)
        day = stamp.date() if stamp is not None else None
        label = format_day_label(day, locale) if day is not None else tx.date_iso
        if current_label is not None and label != current_label:
            groups.append(ActivityGroup(date_label=current_label, day=current_day, entries=tuple(entries)))
            entries = []
        current_label, current_day = label, day
        entries.append(tx)

    if current_label is not None:
        groups.append(ActivityGroup(date_label=current_label, day=current_day, entries=tuple(entries)))
    return groups


# ---------------------------------------------------------------------------
# Chart data
# ---------------------------------------------------------------------------


def bucket_chart_data(totals: MonthlyTotals) -> List[Dict[str, Any]]:
    """Buckets with spending, values in major currency units."""
    return [
        {'label': name, 'value': bucket.spent_cents / 100}
        for name, bucket in totals.buckets.items()
        if bucket.spent_cents > 0
    ]


def category_chart_data(spending: Iterable[CategorySpend]) -> List[Dict[str, Any]]:
    """Category bars with spending; long names are cut with an ellipsis."""
    rows: List[Dict[str, Any]] = []
    for entry in spending:
        if entry.spent_cents <= 0:
            continue
        label = entry.name or UNCATEGORIZED
        if len(label) > CHART_LABEL_LENGTH:
            label = f"{label[:CHART_LABEL_LENGTH - 1]}…"
        rows.append({'label': label, 'value': entry.spent_cents / 100, 'bucket': entry.bucket})
    return rows
