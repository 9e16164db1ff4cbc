"""Formatting utilities for currency amounts, dates and user input."""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Dict, Optional, Union

from .models import Rule

CURRENCY_SYMBOLS: Dict[str, str] = {
    'USD': '$',
    'CAD': 'CA$',
    'AUD': 'A$',
    'EUR': '€',
    'GBP': '£',
    'JPY': '¥',
    'CNY': 'CN¥',
    'INR': '₹',
    'KZT': '₸',
    'CHF': 'CHF ',
}

# Languages that use "." for grouping and "," for decimals, symbol after.
_COMMA_DECIMAL_LANGUAGES = {'de', 'fr', 'it', 'es', 'pt', 'nl', 'ru', 'pl', 'tr', 'sv', 'da', 'nb', 'fi'}

_MONTH_FIRST_LOCALES = {'en', 'en-us', 'en-ca', 'en-ph'}

_MONTH_ABBREVIATIONS = ('Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun', 'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec')


def _language(locale: Optional[str]) -> str:
    if not locale:
        return 'en'
    return re.split(r'[-_]', locale.strip())[0].lower() or 'en'


def format_currency(cents: Union[int, float, None], currency: str = 'USD', locale: str = 'en-US') -> str:
    """Format an amount in cents as a currency string.

    Example:
        >>> format_currency(123456)
        '$1,234.56'
        >>> format_currency(123456, 'EUR', 'de-DE')
        '1.234,56 €'
    """
    amount = float(cents or 0) / 100
    code = (currency or 'USD').upper()
    symbol = CURRENCY_SYMBOLS.get(code)
    number = f"{amount:,.2f}"

    if _language(locale) in _COMMA_DECIMAL_LANGUAGES:
        number = number.replace(',', '\0').replace('.', ',').replace('\0', '.')
        return f"{number} {(symbol or code).strip()}"

    if symbol is None:
        return f"{code} {number}"
    if number.startswith('-'):
        return f"-{symbol}{number[1:]}"
    return f"{symbol}{number}"


def format_signed_currency(cents: Union[int, float, None], currency: str = 'USD', locale: str = 'en-US') -> str:
    """Like ``format_currency`` but renders negatives as ``"- $1.00"``."""
    amount = int(cents or 0)
    formatted = format_currency(abs(amount), currency, locale)
    return f"- {formatted}" if amount < 0 else formatted


def parse_amount_to_cents(text: Any) -> Optional[int]:
    """Parse a user-typed amount into cents.

    The last ``.`` or ``,`` is treated as the decimal separator; every other
    non-digit is ignored.  Returns ``None`` when nothing numeric remains.

    Example:
        >>> parse_amount_to_cents('1,234.5')
        123450
        >>> parse_amount_to_cents('12')
        1200
    """
    if not isinstance(text, str):
        return None
    sanitized = re.sub(r'[^\d.,]', '', text)
    if not sanitized:
        return None

    separator_index = max(sanitized.rfind(','), sanitized.rfind('.'))
    if separator_index == -1:
        return int(sanitized) * 100

    integer_part = re.sub(r'\D', '', sanitized[:separator_index])
    fractional_part = re.sub(r'\D', '', sanitized[separator_index + 1:])
    if not integer_part:
        return None
    fractional_part = (fractional_part + '00')[:2]
    return int(integer_part) * 100 + int(fractional_part)


def validate_rule(rule: Union[Rule, Dict[str, Any]]) -> bool:
    """True when the three bucket percentages add up to exactly 100."""
    if isinstance(rule, Rule):
        return rule.total() == 100
    try:
        total = sum(float(rule.get(key, 0)) for key in ('necessities', 'leisure', 'savings'))
    except (TypeError, ValueError, AttributeError):
        return False
    return total == 100


def format_day_label(day: Union[date, datetime], locale: str = 'en-US') -> str:
    """Medium date label used to group activity by day.

    US-style locales read month first (``Jan 5, 2025``), others day first
    (``5 Jan 2025``).
    """
    month = _MONTH_ABBREVIATIONS[day.month - 1]
    if (locale or 'en').replace('_', '-').lower() in _MONTH_FIRST_LOCALES:
        return f"{month} {day.day}, {day.year}"
    return f"{day.day} {month} {day.year}"
