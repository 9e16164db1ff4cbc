"""The ledger store: owns the collections, persists and notifies.

Every mutation follows the same sequence: normalize the input, replace the
affected collection, persist all four collections, then publish a change
event to subscribers.  Queries build a :class:`LedgerAnalytics` over the
current state.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar

from . import events
from .analytics import (
    ActivityPage,
    CategorySpend,
    CategoryStat,
    LedgerAnalytics,
    MonthlyTotals,
)
from .events import ChangeEvent, EventChannel, Subscriber
from .models import (
    DEFAULT_CATEGORY_NAME,
    DEFAULT_TEMPLATE_DESCRIPTION,
    EXPENSE,
    INCOME,
    NECESSITIES,
    Category,
    CorruptionReport,
    LedgerState,
    MonthSelection,
    RecurringTemplate,
    Settings,
    Transaction,
    create_id,
    now_iso,
    sort_transactions,
)
from .normalize import (
    LedgerSnapshot,
    as_mapping,
    coerce_cents,
    normalize_categories,
    normalize_recurring,
    normalize_settings,
    normalize_transactions,
    valid_bucket,
)
from .pagination import CursorLike, Page
from .reconcile import STRATEGIES, export_snapshot, prepare_import, reconcile
from .storage import LedgerStorage

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Settings may be updated with either the stored camelCase keys or the
# attribute names of ``Settings``.
_SETTINGS_ALIASES = {
    'first_day_of_week': 'firstDayOfWeek',
    'show_advanced_charts': 'showAdvancedCharts',
    'haptic_feedback': 'hapticFeedback',
}


def _changes(updates: Any, fields: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(as_mapping(updates) or {})
    merged.update(fields)
    merged.pop('id', None)
    return merged


def _optional_id(value: Any) -> Optional[str]:
    return str(value) if value else None


def _text(value: Any, default: str = '') -> str:
    return value if isinstance(value, str) else default


def _index_of(items: Sequence[Any], item_id: str) -> int:
    for index, item in enumerate(items):
        if item.id == item_id:
            return index
    return -1


def _replaced(items: Sequence[T], index: int, item: T) -> List[T]:
    updated = list(items)
    updated[index] = item
    return updated


class LedgerStore:
    """In-memory ledger backed by a :class:`LedgerStorage`."""

    def __init__(self, storage: Optional[LedgerStorage] = None):
        self.storage = storage if storage is not None else LedgerStorage()
        self._settings = Settings()
        self._categories: List[Category] = []
        self._transactions: List[Transaction] = []
        self._recurring: List[RecurringTemplate] = []
        self._month = MonthSelection.current()
        self._corruption = CorruptionReport()
        self._events = EventChannel(self.get_state)

    # -- lifecycle -----------------------------------------------------------

    def init(self) -> LedgerState:
        self.storage.init()
        self._load(self.storage.get_snapshot())
        logger.info(
            "Ledger loaded: %d transactions, %d categories, %d templates",
            len(self._transactions), len(self._categories), len(self._recurring),
        )
        self._events.publish(events.InitEvent())
        return self.get_state()

    def _load(self, raw: Mapping[str, Any]) -> None:
        self._settings = normalize_settings(raw.get('settings'))
        self._categories = normalize_categories(raw.get('categories'))
        self._transactions = sort_transactions(normalize_transactions(raw.get('transactions')))
        self._recurring = normalize_recurring(raw.get('recurring'))
        self._corruption = CorruptionReport(
            has_corruption=self.storage.has_corruption,
            keys=tuple(self.storage.corrupted_keys),
        )

    def _persist(self) -> None:
        self.storage.save_all(export_snapshot(self.snapshot()))

    def _commit(self, event: ChangeEvent) -> None:
        self._persist()
        self._events.publish(event)

    # -- state and subscriptions ----------------------------------------------

    def get_state(self) -> LedgerState:
        return LedgerState(
            settings=self._settings,
            categories=tuple(self._categories),
            transactions=tuple(self._transactions),
            recurring=tuple(self._recurring),
            month=self._month,
            corruption=self._corruption,
        )

    def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            settings=self._settings,
            categories=tuple(self._categories),
            transactions=tuple(self._transactions),
            recurring=tuple(self._recurring),
        )

    def subscribe(self, callback: Subscriber):
        """Register ``callback(state, event)``; returns an unsubscribe function."""
        return self._events.subscribe(callback)

    def set_month(self, year: int, month_index: int) -> MonthSelection:
        if not 0 <= month_index <= 11:
            raise ValueError(f"month_index must be between 0 and 11, got {month_index}")
        self._month = MonthSelection(year=year, month_index=month_index)
        self._events.publish(events.MonthChanged())
        return self._month

    # -- lookups --------------------------------------------------------------

    def get_transaction(self, tx_id: str) -> Optional[Transaction]:
        index = _index_of(self._transactions, tx_id)
        return self._transactions[index] if index >= 0 else None

    def get_category(self, category_id: Optional[str]) -> Optional[Category]:
        if not category_id:
            return None
        index = _index_of(self._categories, category_id)
        return self._categories[index] if index >= 0 else None

    def get_active_categories(self) -> List[Category]:
        """Categories offered when logging new expenses."""
        return [c for c in self._categories if not c.archived]

    def _category_bucket(self, category_id: Optional[str]) -> Optional[str]:
        category = self.get_category(category_id)
        return category.bucket if category else None

    def _resolve_bucket(self, explicit: Any, category_id: Optional[str]) -> Optional[str]:
        return valid_bucket(explicit) or self._category_bucket(category_id)

    # -- transactions ---------------------------------------------------------

    def _build_transaction(self, data: Mapping[str, Any]) -> Transaction:
        tx_type = INCOME if data.get('type') == INCOME else EXPENSE
        category_id = _optional_id(data.get('category_id')) if tx_type == EXPENSE else None
        date_iso = data.get('date_iso')
        return Transaction(
            id=create_id(),
            type=tx_type,
            amount_cents=coerce_cents(data.get('amount_cents')),
            description=_text(data.get('description')),
            category_id=category_id,
            bucket=self._resolve_bucket(data.get('bucket'), category_id) if tx_type == EXPENSE else None,
            date_iso=date_iso if isinstance(date_iso, str) and date_iso else now_iso(),
        )

    def add_transaction(self, draft: Any = None, **fields: Any) -> Optional[Transaction]:
        """Create a transaction from a partial draft.

        The draft's ``id`` is ignored: re-adding a deleted transaction (undo)
        yields a new record with a new id.  Drafts without a positive amount
        create nothing and return ``None``.
        """
        transaction = self._build_transaction(_changes(draft, fields))
        if transaction.amount_cents <= 0:
            logger.warning("Ignored transaction draft without a positive amount")
            return None
        self._transactions = sort_transactions([*self._transactions, transaction])
        self._commit(events.TransactionAdded(transaction))
        return transaction

    def update_transaction(self, tx_id: str, updates: Any = None, **fields: Any) -> Optional[Transaction]:
        """Merge ``updates`` into a transaction and restore its consistency.

        Expenses keep their bucket unless the update names a bucket or moves
        the expense to another category, in which case the bucket is resolved
        again.  Income never carries a bucket or category.  Returns ``None``
        when the id is unknown or the update would leave a zero amount.
        """
        index = _index_of(self._transactions, tx_id)
        if index < 0:
            return None
        current = self._transactions[index]
        changes = _changes(updates, fields)
        merged = {**current.to_dict(), **changes}

        tx_type = INCOME if merged.get('type') == INCOME else EXPENSE
        if tx_type == EXPENSE:
            category_id = _optional_id(merged.get('category_id'))
            if 'bucket' in changes:
                explicit = changes['bucket']
            elif 'category_id' in changes:
                explicit = None
            else:
                explicit = current.bucket
            bucket = self._resolve_bucket(explicit, category_id)
        else:
            category_id = None
            bucket = None

        amount = coerce_cents(merged.get('amount_cents'))
        if amount <= 0:
            logger.warning("Rejected update leaving transaction %s without a positive amount", tx_id)
            return None

        date_iso = merged.get('date_iso')
        updated = Transaction(
            id=current.id,
            type=tx_type,
            amount_cents=amount,
            description=_text(merged.get('description')),
            category_id=category_id,
            bucket=bucket,
            date_iso=date_iso if isinstance(date_iso, str) and date_iso else now_iso(),
        )
        self._transactions = sort_transactions(_replaced(self._transactions, index, updated))
        self._commit(events.TransactionUpdated(updated))
        return updated

    def delete_transaction(self, tx_id: str) -> Optional[Transaction]:
        """Remove a transaction and hand it back so the caller can offer undo."""
        index = _index_of(self._transactions, tx_id)
        if index < 0:
            return None
        removed = self._transactions[index]
        self._transactions = [tx for tx in self._transactions if tx.id != tx_id]
        self._commit(events.TransactionDeleted(removed))
        return removed

    # -- categories -----------------------------------------------------------

    def add_category(self, draft: Any = None, **fields: Any) -> Category:
        data = _changes(draft, fields)
        category = Category(
            id=create_id(),
            name=_text(data.get('name')).strip() or DEFAULT_CATEGORY_NAME,
            bucket=valid_bucket(data.get('bucket')) or NECESSITIES,
            archived=False,
        )
        self._categories = [*self._categories, category]
        self._commit(events.CategoryAdded(category))
        return category

    def update_category(self, category_id: str, updates: Any = None, **fields: Any) -> Optional[Category]:
        index = _index_of(self._categories, category_id)
        if index < 0:
            return None
        current = self._categories[index]
        merged = {**current.to_dict(), **_changes(updates, fields)}
        updated = Category(
            id=current.id,
            name=_text(merged.get('name')).strip() or DEFAULT_CATEGORY_NAME,
            bucket=valid_bucket(merged.get('bucket')) or NECESSITIES,
            archived=bool(merged.get('archived')),
        )
        self._categories = _replaced(self._categories, index, updated)
        self._commit(events.CategoryUpdated(updated))
        return updated

    def archive_category(self, category_id: str, archived: bool = True) -> Optional[Category]:
        return self.update_category(category_id, archived=bool(archived))

    # -- recurring templates ----------------------------------------------------

    def add_recurring(self, draft: Any = None, **fields: Any) -> RecurringTemplate:
        data = _changes(draft, fields)
        template = RecurringTemplate(
            id=create_id(),
            description=_text(data.get('description')).strip() or DEFAULT_TEMPLATE_DESCRIPTION,
            default_amount_cents=coerce_cents(data.get('default_amount_cents')),
            category_id=_optional_id(data.get('category_id')),
        )
        self._recurring = [*self._recurring, template]
        self._commit(events.RecurringAdded(template))
        return template

    def update_recurring(self, template_id: str, updates: Any = None, **fields: Any) -> Optional[RecurringTemplate]:
        index = _index_of(self._recurring, template_id)
        if index < 0:
            return None
        current = self._recurring[index]
        merged = {**current.to_dict(), **_changes(updates, fields)}
        updated = RecurringTemplate(
            id=current.id,
            description=_text(merged.get('description'), current.description).strip(),
            default_amount_cents=coerce_cents(merged.get('default_amount_cents')),
            category_id=_optional_id(merged.get('category_id')),
        )
        self._recurring = _replaced(self._recurring, index, updated)
        self._commit(events.RecurringUpdated(updated))
        return updated

    def delete_recurring(self, template_id: str) -> Optional[RecurringTemplate]:
        index = _index_of(self._recurring, template_id)
        if index < 0:
            return None
        removed = self._recurring[index]
        self._recurring = [t for t in self._recurring if t.id != template_id]
        self._commit(events.RecurringDeleted(removed))
        return removed

    def log_from_template(
        self,
        template_id: str,
        amount_cents: Any = None,
        date_iso: Optional[str] = None,
    ) -> Optional[Transaction]:
        """Quick-log an expense from a template.

        Templates without a default amount need ``amount_cents``; an explicit
        amount also overrides the default.
        """
        index = _index_of(self._recurring, template_id)
        if index < 0:
            return None
        template = self._recurring[index]
        amount = template.default_amount_cents if amount_cents is None else coerce_cents(amount_cents)
        if amount <= 0:
            logger.warning("Template %s needs an amount before it can be logged", template_id)
            return None
        return self.add_transaction(
            type=EXPENSE,
            amount_cents=amount,
            description=template.description,
            category_id=template.category_id,
            date_iso=date_iso,
        )

    # -- settings -------------------------------------------------------------

    def save_settings(self, updates: Any = None, **fields: Any) -> Settings:
        changes = _changes(updates, fields)
        changes.pop('schema_version', None)
        for alias, key in _SETTINGS_ALIASES.items():
            if alias in changes:
                changes[key] = changes.pop(alias)

        merged = {**self._settings.to_dict(), **changes}
        rule_changes = as_mapping(changes.get('rule'))
        if rule_changes is not None:
            merged['rule'] = {**self._settings.rule.to_dict(), **rule_changes}

        self._settings = normalize_settings(merged)
        self._commit(events.SettingsUpdated(self._settings))
        return self._settings

    # -- reset, export, import ------------------------------------------------

    def reset(self) -> LedgerState:
        """Wipe the ledger and reseed the starter categories."""
        self._load(self.storage.reset())
        logger.info("Ledger reset to starter data")
        self._events.publish(events.LedgerReset())
        return self.get_state()

    def export_data(self) -> Dict[str, Any]:
        return export_snapshot(self.snapshot())

    def import_data(self, payload: Any, strategy: str = 'replace') -> LedgerState:
        """Replace or merge the ledger with an exported snapshot.

        Raises ``SchemaMismatchError`` before touching any state when the
        payload's schema version differs from the running one.
        """
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown import strategy: {strategy!r}")
        imported = prepare_import(payload)
        result = reconcile(self.snapshot(), imported, strategy)

        self._settings = result.settings
        self._categories = list(result.categories)
        self._transactions = sort_transactions(result.transactions)
        self._recurring = list(result.recurring)
        logger.info(
            "Imported ledger (%s): %d transactions, %d categories, %d templates",
            strategy, len(self._transactions), len(self._categories), len(self._recurring),
        )
        self._commit(events.DataImported(strategy))
        return self.get_state()

    # -- queries --------------------------------------------------------------

    def analytics(self) -> LedgerAnalytics:
        return LedgerAnalytics(self._transactions, self._categories, self._settings)

    def get_monthly_totals(self, year: int, month_index: int) -> MonthlyTotals:
        return self.analytics().monthly_totals(year, month_index)

    def get_spending_by_category(self, year: int, month_index: int) -> List[CategorySpend]:
        return self.analytics().spending_by_category(year, month_index)

    def get_recent_transactions(self, limit: int = 20, cursor: CursorLike = None) -> Page:
        """Newest-first page after ``cursor``; ``limit <= 0`` gives an empty page."""
        return self.analytics().recent_transactions(limit, cursor)

    def get_activity_groups(
        self,
        year: int,
        month_index: int,
        page_size: int = 20,
        cursor: CursorLike = None,
    ) -> ActivityPage:
        # year/month_index identify the view; paging runs over all history.
        return self.analytics().activity_groups(page_size, cursor)

    def get_category_stats(self, year: int, month_index: int) -> List[CategoryStat]:
        return self.analytics().category_stats(year, month_index)


def open_store(storage: Optional[LedgerStorage] = None) -> Tuple[LedgerStore, LedgerState]:
    """Create a store and load it; convenience for scripts."""
    store = LedgerStore(storage)
    return store, store.init()
