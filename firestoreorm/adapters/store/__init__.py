from ._base import (
    Document,
    FieldFilter,
    OrderBy,
    QuerySpec,
    SortDirection,
    StoreBase,
    TransactionHandle,
    WhereOperator,
    WriteBatch,
)
from .memory import MemoryStore

__all__ = [
    "Document",
    "FieldFilter",
    "MemoryStore",
    "OrderBy",
    "QuerySpec",
    "SortDirection",
    "StoreBase",
    "TransactionHandle",
    "WhereOperator",
    "WriteBatch",
]
