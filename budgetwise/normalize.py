"""Coercion of untrusted records into domain entities.

Everything read from storage or from an import file passes through these
functions.  They never raise: malformed values are replaced with defaults
and records that cannot be repaired (non-mappings, zero-amount
transactions) are dropped.
"""

from __future__ import annotations

import logging
import math
import numbers
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pandas as pd

from .models import (
    BUCKETS,
    DEFAULT_CATEGORY_NAME,
    DEFAULT_RULE,
    DEFAULT_SETTINGS,
    EXPENSE,
    INCOME,
    MAX_AMOUNT_CENTS,
    NECESSITIES,
    SCHEMA_VERSION,
    Category,
    RecurringTemplate,
    Rule,
    Settings,
    Transaction,
    create_id,
    now_iso,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerSnapshot:
    settings: Settings
    categories: Tuple[Category, ...]
    transactions: Tuple[Transaction, ...]
    recurring: Tuple[RecurringTemplate, ...]


# ---------------------------------------------------------------------------
# Scalar helpers
# ---------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _clamp_cents(number: float) -> int:
    # Amounts above the ceiling are invalid, not capped.
    if number > MAX_AMOUNT_CENTS:
        return 0
    return max(0, int(number))


def _finite_cents(value: Any) -> int:
    """Strict amount coercion: only real finite numbers survive, truncated.

    Amounts above ``MAX_AMOUNT_CENTS`` become 0, like any other invalid amount.
    """
    if not _is_number(value) or not math.isfinite(value):
        return 0
    return _clamp_cents(value)


def coerce_cents(value: Any) -> int:
    """Lenient amount coercion for drafts and updates.

    Accepts numbers and numeric strings; anything else becomes 0.  The
    result is truncated toward zero and clamped at 0; amounts above
    ``MAX_AMOUNT_CENTS`` become 0.
    """
    if _is_number(value):
        return _finite_cents(value)
    if not isinstance(value, str) or not value.strip():
        return 0
    number = pd.to_numeric(pd.Series([value.strip()]), errors='coerce').iloc[0]
    if pd.isna(number) or not math.isfinite(number):
        return 0
    return _clamp_cents(number)


def valid_bucket(value: Any) -> Optional[str]:
    return value if value in BUCKETS else None


def _optional_id(value: Any) -> Optional[str]:
    if not value:
        return None
    return str(value)


def as_mapping(item: Any) -> Optional[Mapping[str, Any]]:
    """Entities become their dict form; other non-mappings become None."""
    if hasattr(item, 'to_dict'):
        item = item.to_dict()
    if isinstance(item, Mapping):
        return item
    return None


def _as_list(items: Any) -> List[Any]:
    if isinstance(items, (list, tuple)):
        return list(items)
    return []


# ---------------------------------------------------------------------------
# Collection normalizers
# ---------------------------------------------------------------------------


def _valid_percentage(value: Any) -> bool:
    return _is_number(value) and math.isfinite(value) and 0 <= value <= 100


def normalize_rule(raw: Any) -> Rule:
    """Bucket percentages; anything outside 0..100 falls back to the default."""
    source = as_mapping(raw) or {}
    values: Dict[str, float] = {}
    for key, default in DEFAULT_RULE.items():
        candidate = source.get(key, default)
        values[key] = candidate if _valid_percentage(candidate) else default
    return Rule(**values)


def normalize_settings(raw: Any) -> Settings:
    """Merge stored settings over the defaults and coerce every field."""
    source = as_mapping(raw) or {}
    merged = {**DEFAULT_SETTINGS, **source}

    currency = merged.get('currency')
    locale = merged.get('locale')
    first_day = merged.get('firstDayOfWeek')

    return Settings(
        currency=currency if isinstance(currency, str) and currency else DEFAULT_SETTINGS['currency'],
        locale=locale if isinstance(locale, str) and locale else DEFAULT_SETTINGS['locale'],
        rule=normalize_rule(source.get('rule')),
        first_day_of_week=0 if _is_number(first_day) and first_day == 0 else 1,
        show_advanced_charts=bool(merged.get('showAdvancedCharts')),
        haptic_feedback=bool(merged.get('hapticFeedback')),
        schema_version=SCHEMA_VERSION,
    )


def normalize_categories(items: Any) -> List[Category]:
    categories: List[Category] = []
    for raw in _as_list(items):
        item = as_mapping(raw)
        if item is None:
            continue
        name = item.get('name')
        categories.append(Category(
            id=_optional_id(item.get('id')) or create_id(),
            name=name if isinstance(name, str) else DEFAULT_CATEGORY_NAME,
            bucket=valid_bucket(item.get('bucket')) or NECESSITIES,
            archived=bool(item.get('archived')),
        ))
    return categories


def normalize_transactions(items: Any) -> List[Transaction]:
    transactions: List[Transaction] = []
    dropped = 0
    for raw in _as_list(items):
        item = as_mapping(raw)
        if item is None:
            dropped += 1
            continue
        amount = _finite_cents(item.get('amount_cents'))
        if amount <= 0:
            dropped += 1
            continue
        tx_type = INCOME if item.get('type') == INCOME else EXPENSE
        description = item.get('description')
        date_iso = item.get('date_iso')
        transactions.append(Transaction(
            id=_optional_id(item.get('id')) or create_id(),
            type=tx_type,
            amount_cents=amount,
            description=description if isinstance(description, str) else '',
            category_id=_optional_id(item.get('category_id')) if tx_type == EXPENSE else None,
            bucket=valid_bucket(item.get('bucket')) if tx_type == EXPENSE else None,
            date_iso=date_iso if isinstance(date_iso, str) else now_iso(),
        ))
    if dropped:
        logger.debug("Dropped %d unrecoverable transaction record(s)", dropped)
    return transactions


def normalize_recurring(items: Any) -> List[RecurringTemplate]:
    templates: List[RecurringTemplate] = []
    for raw in _as_list(items):
        item = as_mapping(raw)
        if item is None:
            continue
        description = item.get('description')
        templates.append(RecurringTemplate(
            id=_optional_id(item.get('id')) or create_id(),
            description=description if isinstance(description, str) else '',
            default_amount_cents=_finite_cents(item.get('default_amount_cents')),
            category_id=_optional_id(item.get('category_id')),
        ))
    return templates


def normalize_snapshot(raw: Any) -> LedgerSnapshot:
    """Normalize a ``{settings, categories, transactions, recurring}`` mapping."""
    source = as_mapping(raw) or {}
    return LedgerSnapshot(
        settings=normalize_settings(source.get('settings')),
        categories=tuple(normalize_categories(source.get('categories'))),
        transactions=tuple(normalize_transactions(source.get('transactions'))),
        recurring=tuple(normalize_recurring(source.get('recurring'))),
    )
