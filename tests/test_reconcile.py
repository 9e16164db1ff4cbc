import json
from datetime import date

import pytest

from budgetwise.errors import ImportFileError, SchemaMismatchError
from budgetwise.reconcile import (
    MERGE,
    REPLACE,
    check_schema,
    default_export_filename,
    export_to_file,
    load_import_file,
    reconcile,
)
from budgetwise.normalize import normalize_snapshot
from budgetwise.storage import STORAGE_KEYS, LedgerStorage, MemoryBackend
from budgetwise.store import LedgerStore


def _store():
    backend = MemoryBackend()
    store = LedgerStore(LedgerStorage(backend))
    store.init()
    return store, backend


def _record(tx_id, amount, description=''):
    return {
        'id': tx_id,
        'type': 'expense',
        'amount_cents': amount,
        'description': description,
        'category_id': None,
        'bucket': None,
        'date_iso': '2025-01-15T12:00:00.000Z',
    }


def _payload(transactions, **overrides):
    payload = {
        'schema_version': 1,
        'settings': {'currency': 'EUR'},
        'categories': [],
        'recurring': [],
        'transactions': transactions,
    }
    payload.update(overrides)
    return payload


def test_export_import_replace_round_trip():
    store, _ = _store()
    store.add_transaction(type='income', amount_cents=250000, date_iso='2025-01-01T00:00:00.000Z')
    store.add_transaction(type='expense', amount_cents=1200, description='Books')
    store.add_recurring(description='Rent', default_amount_cents=90000)
    store.save_settings(locale='de-DE')
    before = store.get_state()

    exported = store.export_data()
    other, _ = _store()
    other.import_data(json.loads(json.dumps(exported)), REPLACE)
    after = other.get_state()

    assert after.settings == before.settings
    assert after.categories == before.categories
    assert after.transactions == before.transactions
    assert after.recurring == before.recurring


def test_schema_mismatch_leaves_state_untouched():
    store, backend = _store()
    store.add_transaction(type='expense', amount_cents=500)
    before_state = store.get_state()
    before_storage = dict(backend.values)
    seen = []
    store.subscribe(lambda state, event: seen.append(event.type))

    with pytest.raises(SchemaMismatchError) as excinfo:
        store.import_data(_payload([_record('x', 100)], schema_version=2), MERGE)

    assert excinfo.value.code == 'SCHEMA_MISMATCH'
    assert excinfo.value.received == 2
    assert store.get_state() == before_state
    assert backend.values == before_storage
    assert seen == []


@pytest.mark.parametrize('payload', [None, [], {'schema_version': '1'}, {'schema_version': True}, {}])
def test_check_schema_rejects_bad_payloads(payload):
    with pytest.raises(SchemaMismatchError):
        check_schema(payload)


def test_merge_keeps_current_record_on_collision():
    store, _ = _store()
    store.import_data(_payload([_record('A', 100), _record('B', 200, 'mine')]), REPLACE)

    state = store.import_data(_payload([_record('B', 999, 'theirs'), _record('C', 300)]), MERGE)

    by_id = {tx.id: tx for tx in state.transactions}
    assert set(by_id) == {'A', 'B', 'C'}
    assert by_id['B'].amount_cents == 200
    assert by_id['B'].description == 'mine'


def test_merge_adds_new_categories_and_takes_imported_settings():
    store, _ = _store()
    existing = store.get_state().categories
    imported_categories = [
        {'id': existing[0].id, 'name': 'Renamed', 'bucket': 'Leisure'},
        {'id': 'new-cat', 'name': 'Pets', 'bucket': 'Necessities'},
    ]

    state = store.import_data(_payload([], categories=imported_categories), MERGE)

    assert state.categories[0] == existing[0]
    assert state.categories[-1].name == 'Pets'
    assert len(state.categories) == len(existing) + 1
    assert state.settings.currency == 'EUR'


def test_import_normalizes_and_sorts():
    store, _ = _store()
    records = [
        dict(_record('old', 100), date_iso='2024-01-01T00:00:00.000Z'),
        _record('zero', 0),
        dict(_record('new', 100), date_iso='2025-06-01T00:00:00.000Z'),
    ]

    state = store.import_data(_payload(records), REPLACE)

    assert [tx.id for tx in state.transactions] == ['new', 'old']


def test_import_notifies_once():
    store, _ = _store()
    seen = []
    store.subscribe(lambda state, event: seen.append(event.to_dict()))

    store.import_data(_payload([_record('A', 100)]), MERGE)

    assert seen == [{'type': 'data:import', 'strategy': 'merge'}]


def test_unknown_strategy_is_rejected():
    store, _ = _store()
    with pytest.raises(ValueError):
        store.import_data(_payload([]), 'append')
    with pytest.raises(ValueError):
        reconcile(normalize_snapshot({}), normalize_snapshot({}), 'append')


def test_export_file_helpers(tmp_path):
    store, _ = _store()
    store.add_transaction(type='expense', amount_cents=4321)
    target = tmp_path / 'exports' / default_export_filename(date(2025, 3, 9))

    written = export_to_file(store, target)

    assert written.name == 'budgetwise-export-2025-03-09.json'
    assert load_import_file(written) == store.export_data()


def test_load_import_file_errors(tmp_path):
    broken = tmp_path / 'broken.json'
    broken.write_text('{"schema_version": 1,', encoding='utf-8')

    with pytest.raises(ImportFileError):
        load_import_file(broken)
    with pytest.raises(ImportFileError):
        load_import_file(tmp_path / 'missing.json')


def test_export_contains_storage_shapes():
    store, backend = _store()
    exported = store.export_data()

    assert exported['schema_version'] == 1
    assert exported['categories'] == json.loads(backend.values[STORAGE_KEYS['categories']])
    assert set(exported['settings']) >= {'firstDayOfWeek', 'showAdvancedCharts', 'hapticFeedback', 'rule'}
