"""Top-level package for the BudgetWise ledger core.

The primary modules are:

* ``store`` – the ``LedgerStore`` owning transactions, categories,
  recurring templates and settings
* ``storage`` – persistence of the four collections with corruption tracking
* ``normalize`` – repair of untrusted records read from storage or imports
* ``analytics`` – monthly totals, category spend and activity history
* ``reconcile`` – export snapshots and replace/merge imports

A command-line front end lives in ``scripts/budget_cli.py``:

```bash
python scripts/budget_cli.py summary --year 2025 --month 1
```
"""

from .errors import BudgetwiseError, ImportFileError, SchemaMismatchError, StoreFileCorruptError
from .storage import JsonFileBackend, LedgerStorage, MemoryBackend, SQLiteBackend
from .store import LedgerStore, open_store

__all__ = [
    "BudgetwiseError",
    "ImportFileError",
    "SchemaMismatchError",
    "StoreFileCorruptError",
    "JsonFileBackend",
    "LedgerStorage",
    "MemoryBackend",
    "SQLiteBackend",
    "LedgerStore",
    "open_store",
]
