"""Export snapshots and reconcile imported ones with the current ledger."""

from __future__ import annotations

import json
import logging
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, TypeVar, Union

from .errors import ImportFileError, SchemaMismatchError
from .models import SCHEMA_VERSION
from .normalize import LedgerSnapshot, normalize_snapshot

logger = logging.getLogger(__name__)

REPLACE = 'replace'
MERGE = 'merge'
STRATEGIES = (REPLACE, MERGE)

T = TypeVar('T')


def export_snapshot(snapshot: LedgerSnapshot) -> Dict[str, Any]:
    """Self-contained, JSON-serializable copy of the ledger."""
    return {
        'schema_version': SCHEMA_VERSION,
        'settings': snapshot.settings.to_dict(),
        'categories': [c.to_dict() for c in snapshot.categories],
        'recurring': [r.to_dict() for r in snapshot.recurring],
        'transactions': [t.to_dict() for t in snapshot.transactions],
    }


def check_schema(payload: Any) -> Mapping[str, Any]:
    """Return ``payload`` if its schema version matches, else raise."""
    if not isinstance(payload, Mapping):
        raise SchemaMismatchError(SCHEMA_VERSION, None)
    version = payload.get('schema_version')
    if isinstance(version, bool) or version != SCHEMA_VERSION:
        raise SchemaMismatchError(SCHEMA_VERSION, version)
    return payload


def dedupe_by_id(items: Iterable[T]) -> List[T]:
    """Keep the first record for each id, preserving order."""
    seen = set()
    unique: List[T] = []
    for item in items:
        item_id = getattr(item, 'id', None)
        if not item_id or item_id in seen:
            continue
        seen.add(item_id)
        unique.append(item)
    return unique


def reconcile(current: LedgerSnapshot, imported: LedgerSnapshot, strategy: str = REPLACE) -> LedgerSnapshot:
    """Combine an imported snapshot with the current one.

    ``replace`` takes the imported collections as they are.  ``merge`` keeps
    every current record and adds imported ones whose ids are new; on an id
    collision the current record wins.  Settings always come from the import.
    Transaction order is restored by the caller.
    """
    if strategy == REPLACE:
        return imported
    if strategy != MERGE:
        raise ValueError(f"Unknown import strategy: {strategy!r}")

    existing_category_ids = {c.id for c in current.categories}
    categories = list(current.categories) + [
        c for c in imported.categories if c.id not in existing_category_ids
    ]
    return LedgerSnapshot(
        settings=imported.settings,
        categories=tuple(categories),
        transactions=tuple(dedupe_by_id(list(current.transactions) + list(imported.transactions))),
        recurring=tuple(dedupe_by_id(list(current.recurring) + list(imported.recurring))),
    )


def prepare_import(payload: Any) -> LedgerSnapshot:
    """Validate the schema version and normalize the payload collections."""
    return normalize_snapshot(check_schema(payload))


# ---------------------------------------------------------------------------
# Export files
# ---------------------------------------------------------------------------


def default_export_filename(today: Optional[date] = None) -> str:
    stamp = (today or date.today()).isoformat()
    return f"budgetwise-export-{stamp}.json"


def export_to_file(data: Any, path: Union[str, Path]) -> Path:
    """Write an export document, or the export of a store, as indented JSON."""
    if hasattr(data, 'export_data'):
        data = data.export_data()
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open('w', encoding='utf-8') as handle:
        json.dump(data, handle, indent=2)
    logger.info("Exported ledger to %s", target)
    return target


def load_import_file(path: Union[str, Path]) -> Any:
    """Read an export document; raises ``ImportFileError`` if unusable."""
    source = Path(path)
    try:
        with source.open('r', encoding='utf-8') as handle:
            return json.load(handle)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ImportFileError(f"Import failed: invalid JSON in {source}") from exc
    except OSError as exc:
        raise ImportFileError(f"Import failed: cannot read {source}: {exc}") from exc
