import json

import pytest

from budgetwise.models import LEISURE, MAX_AMOUNT_CENTS, NECESSITIES, SAVINGS, UNCATEGORIZED, Transaction
from budgetwise.storage import STORAGE_KEYS, LedgerStorage, MemoryBackend
from budgetwise.store import LedgerStore


def _store(initial=None):
    backend = MemoryBackend(initial)
    store = LedgerStore(LedgerStorage(backend))
    store.init()
    return store, backend


def _stored(backend, name):
    return json.loads(backend.values[STORAGE_KEYS[name]])


def _expense(amount, date_iso='2025-01-15T12:00:00.000Z', description='Lunch', **extra):
    return dict(type='expense', amount_cents=amount, description=description, date_iso=date_iso, **extra)


def _assert_sorted(transactions):
    for newer, older in zip(transactions, transactions[1:]):
        assert (newer.date_iso, newer.id) >= (older.date_iso, older.id)


def test_init_seeds_starter_categories():
    store, _ = _store()
    state = store.get_state()

    assert [c.name for c in state.categories] == ['Housing', 'Groceries', 'Fun']
    assert state.transactions == ()
    assert not state.corruption.has_corruption


def test_init_reports_corruption():
    store, _ = _store({STORAGE_KEYS['categories']: '[[['})
    state = store.get_state()

    assert state.corruption.has_corruption
    assert state.corruption.keys == ('categories',)
    assert len(state.categories) == 3


def test_add_transaction_persists_and_notifies():
    store, backend = _store()
    housing = store.get_state().categories[0]
    seen = []
    store.subscribe(lambda state, event: seen.append((event.type, len(state.transactions))))

    tx = store.add_transaction(_expense(1500, category_id=housing.id))

    assert tx.bucket == NECESSITIES
    assert tx.category_id == housing.id
    assert seen == [('transactions:add', 1)]
    assert _stored(backend, 'transactions')[0]['id'] == tx.id


def test_add_transaction_explicit_bucket_wins():
    store, _ = _store()
    housing = store.get_state().categories[0]

    tx = store.add_transaction(_expense(900, category_id=housing.id, bucket=SAVINGS))

    assert tx.bucket == SAVINGS


def test_add_income_has_no_bucket_or_category():
    store, _ = _store()
    housing = store.get_state().categories[0]

    tx = store.add_transaction(type='income', amount_cents=5000, category_id=housing.id, bucket=LEISURE)

    assert tx.type == 'income'
    assert tx.bucket is None
    assert tx.category_id is None


def test_add_transaction_without_amount_is_ignored():
    store, backend = _store()
    before = backend.values[STORAGE_KEYS['transactions']]
    seen = []
    store.subscribe(lambda state, event: seen.append(event.type))

    assert store.add_transaction(_expense(0)) is None
    assert store.add_transaction(_expense('abc')) is None

    assert store.get_state().transactions == ()
    assert backend.values[STORAGE_KEYS['transactions']] == before
    assert seen == []


def test_add_transaction_coerces_draft_fields():
    store, _ = _store()

    tx = store.add_transaction({'type': 'refund', 'amount_cents': '250', 'description': None, 'date_iso': ''})

    assert tx.type == 'expense'
    assert tx.amount_cents == 250
    assert tx.description == ''
    assert tx.date_iso.endswith('Z')
    assert tx.bucket is None


def test_transactions_stay_sorted_newest_first():
    store, _ = _store()
    for day in ('2025-01-03', '2025-02-01', '2024-12-31', '2025-01-03'):
        store.add_transaction(_expense(100, date_iso=f'{day}T00:00:00.000Z'))

    transactions = store.get_state().transactions
    assert transactions[0].date_iso.startswith('2025-02-01')
    assert transactions[-1].date_iso.startswith('2024-12-31')
    _assert_sorted(transactions)


def test_update_transaction_keeps_bucket_unless_category_changes():
    store, _ = _store()
    housing, _, fun = store.get_state().categories
    tx = store.add_transaction(_expense(2000, category_id=housing.id))

    renamed = store.update_transaction(tx.id, description='Rent')
    assert renamed.bucket == NECESSITIES
    assert renamed.id == tx.id

    moved = store.update_transaction(tx.id, category_id=fun.id)
    assert moved.bucket == LEISURE

    overridden = store.update_transaction(tx.id, {'bucket': SAVINGS})
    assert overridden.bucket == SAVINGS
    assert overridden.category_id == fun.id


def test_update_transaction_to_income_clears_bucket():
    store, _ = _store()
    housing = store.get_state().categories[0]
    tx = store.add_transaction(_expense(2000, category_id=housing.id))

    updated = store.update_transaction(tx.id, type='income')

    assert updated.type == 'income'
    assert updated.bucket is None
    assert updated.category_id is None


def test_update_transaction_rejects_zero_amount():
    store, _ = _store()
    tx = store.add_transaction(_expense(2000))

    assert store.update_transaction(tx.id, amount_cents=0) is None
    assert store.get_transaction(tx.id).amount_cents == 2000


def test_update_transaction_cannot_change_id_and_resorts():
    store, _ = _store()
    old = store.add_transaction(_expense(100, date_iso='2025-01-01T00:00:00.000Z'))
    store.add_transaction(_expense(100, date_iso='2025-01-10T00:00:00.000Z'))

    updated = store.update_transaction(old.id, id='hijack', date_iso='2025-03-01T00:00:00.000Z')

    assert updated.id == old.id
    assert store.get_state().transactions[0].id == old.id


def test_unknown_ids_are_noops():
    store, backend = _store()
    before = dict(backend.values)
    seen = []
    store.subscribe(lambda state, event: seen.append(event.type))

    assert store.update_transaction('missing', amount_cents=5) is None
    assert store.delete_transaction('missing') is None
    assert store.update_category('missing', name='X') is None
    assert store.update_recurring('missing', description='X') is None
    assert store.delete_recurring('missing') is None
    assert store.log_from_template('missing') is None

    assert backend.values == before
    assert seen == []


def test_delete_then_readd_restores_totals_with_new_id():
    store, _ = _store()
    store.add_transaction(type='income', amount_cents=100000, date_iso='2025-01-01T00:00:00.000Z')
    tx = store.add_transaction(_expense(4000, bucket=LEISURE))
    before = store.get_monthly_totals(2025, 0)

    removed = store.delete_transaction(tx.id)
    assert store.get_monthly_totals(2025, 0).expense_cents == 0

    restored = store.add_transaction(removed)

    assert restored.id != tx.id
    assert store.get_monthly_totals(2025, 0) == before


def test_categories_crud():
    store, _ = _store()

    added = store.add_category(name='  Travel  ', bucket=LEISURE)
    assert added.name == 'Travel'
    assert added.bucket == LEISURE

    blank = store.add_category(name='   ', bucket='Bogus')
    assert blank.name == 'Untitled'
    assert blank.bucket == NECESSITIES

    renamed = store.update_category(added.id, name='Trips', bucket='Nope')
    assert renamed.name == 'Trips'
    assert renamed.bucket == NECESSITIES

    archived = store.archive_category(added.id)
    assert archived.archived
    assert added.id not in [c.id for c in store.get_active_categories()]
    assert added.id in [c.id for c in store.get_state().categories]


def test_recurring_templates_and_quick_log():
    store, _ = _store()
    fun = store.get_state().categories[2]
    streaming = store.add_recurring(description='  Streaming ', default_amount_cents=1599, category_id=fun.id)
    utilities = store.add_recurring(description='', default_amount_cents=0)

    assert streaming.description == 'Streaming'
    assert utilities.description == 'Template'
    assert utilities.asks_for_amount

    logged = store.log_from_template(streaming.id, date_iso='2025-01-05T10:00:00.000Z')
    assert logged.amount_cents == 1599
    assert logged.bucket == LEISURE
    assert logged.description == 'Streaming'

    assert store.log_from_template(utilities.id) is None
    assert store.log_from_template(utilities.id, amount_cents=8200).amount_cents == 8200

    updated = store.update_recurring(streaming.id, default_amount_cents=1799)
    assert updated.default_amount_cents == 1799

    assert store.delete_recurring(utilities.id) == utilities
    assert [t.id for t in store.get_state().recurring] == [streaming.id]


def test_save_settings_merges_partial_updates():
    store, backend = _store()

    settings = store.save_settings({'currency': 'EUR', 'rule': {'savings': 25, 'leisure': 25}}, show_advanced_charts=True)

    assert settings.currency == 'EUR'
    assert settings.locale == 'en-US'
    assert settings.rule.necessities == 50
    assert settings.rule.leisure == 25
    assert settings.rule.savings == 25
    assert settings.show_advanced_charts is True
    assert _stored(backend, 'settings')['showAdvancedCharts'] is True


def test_set_month_validates_and_notifies():
    store, _ = _store()
    seen = []
    store.subscribe(lambda state, event: seen.append((event.type, state.month.month_index)))

    store.set_month(2024, 11)

    assert seen == [('month:change', 11)]
    with pytest.raises(ValueError):
        store.set_month(2024, 12)


def test_unsubscribe_stops_notifications():
    store, _ = _store()
    seen = []
    unsubscribe = store.subscribe(lambda state, event: seen.append(event.type))
    unsubscribe()

    store.add_category(name='Pets')

    assert seen == []


def test_reentrant_mutation_notifications_are_ordered():
    store, _ = _store()
    seen = []

    def auto_tip(state, event):
        seen.append((event.type, len(state.transactions)))
        if event.type == 'transactions:add' and event.transaction.description == 'Dinner':
            store.add_transaction(_expense(300, description='Tip'))

    store.subscribe(auto_tip)
    store.add_transaction(_expense(3000, description='Dinner'))

    assert seen == [('transactions:add', 1), ('transactions:add', 2)]
    assert [tx.description for tx in store.get_state().transactions] == ['Tip', 'Dinner']


def test_reset_restores_starter_state():
    store, backend = _store()
    store.add_transaction(_expense(100))
    store.add_recurring(description='Gym', default_amount_cents=3000)
    seen = []
    store.subscribe(lambda state, event: seen.append(event.type))

    state = store.reset()

    assert state.transactions == ()
    assert state.recurring == ()
    assert [c.name for c in state.categories] == ['Housing', 'Groceries', 'Fun']
    assert _stored(backend, 'transactions') == []
    assert seen == ['app:reset']


def test_state_survives_reload():
    store, backend = _store()
    tx = store.add_transaction(_expense(4200, bucket=SAVINGS))

    reloaded = LedgerStore(LedgerStorage(backend))
    reloaded.init()

    assert reloaded.get_state().transactions == (tx,)
    assert isinstance(reloaded.get_state().transactions[0], Transaction)


def test_infinite_rule_never_breaks_monthly_totals():
    store, _ = _store()
    store.add_transaction(type='income', amount_cents=1000, date_iso='2025-01-02T00:00:00.000Z')

    settings = store.save_settings(rule={'necessities': float('inf')})
    assert settings.rule.necessities == 50
    assert store.get_monthly_totals(2025, 0).buckets[NECESSITIES].budget_cents == 500

    payload = json.loads(
        '{"schema_version": 1, "settings": {"rule": {"necessities": Infinity}},'
        ' "transactions": [{"id": "pay", "type": "income", "amount_cents": 1000,'
        ' "date_iso": "2025-01-02T00:00:00.000Z"}]}'
    )
    store.import_data(payload, 'replace')

    totals = store.get_monthly_totals(2025, 0)
    assert totals.income_cents == 1000
    assert totals.buckets[NECESSITIES].budget_cents == 500


def test_amounts_above_ceiling_never_reach_totals():
    store, _ = _store()

    assert store.add_transaction(_expense(10 ** 19)) is None
    tx = store.add_transaction(_expense(MAX_AMOUNT_CENTS))
    assert store.update_transaction(tx.id, amount_cents=MAX_AMOUNT_CENTS + 1) is None

    totals = store.get_monthly_totals(2025, 0)
    assert totals.expense_cents == MAX_AMOUNT_CENTS
    assert totals.buckets[UNCATEGORIZED].remaining_cents == -MAX_AMOUNT_CENTS
