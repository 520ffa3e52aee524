"""Row store adapter: dict rows over SQLAlchemy Core with retry budgets."""

from gifts.rowstore.errors import ConstraintViolation, RowStoreError, TransportError, UniqueViolation
from gifts.rowstore.filters import all_of, any_of, asc, desc, eq, gt, gte, in_, is_null, lt, lte
from gifts.rowstore.retry import ResilientRowStore, RetryPolicy
from gifts.rowstore.store import Row, RowStore, SqlRowStore

__all__ = [
    "ConstraintViolation",
    "ResilientRowStore",
    "RetryPolicy",
    "Row",
    "RowStore",
    "RowStoreError",
    "SqlRowStore",
    "TransportError",
    "UniqueViolation",
    "all_of",
    "any_of",
    "asc",
    "desc",
    "eq",
    "gt",
    "gte",
    "in_",
    "is_null",
    "lt",
    "lte",
]

_store: RowStore | None = None


def init_store(store: RowStore) -> None:
    """Install the process-wide store."""
    global _store  # noqa: PLW0603
    _store = store


def close_store() -> None:
    global _store  # noqa: PLW0603
    _store = None


def get_store() -> RowStore:
    """Get the row store (FastAPI dependency)."""
    if _store is None:
        msg = "Row store not initialized. Call init_store() first."
        raise RuntimeError(msg)
    return _store
