from ._base import DELETED_AT_FIELD, ID, Entity, is_soft_deleted, utc_timestamp
from .batch import BatchAction, BatchWriter
from .hooks import (
    BulkDeletePayload,
    BulkSoftDeletePayload,
    BulkUpdateItem,
    HookCallback,
    HookEvent,
    HookRegistry,
)
from .query_builder import AggregateFunction, OffsetPage, Page, QueryBuilder
from .repository import Repository
from .transaction import (
    QueuedWrite,
    TransactionContext,
    TransactionCoordinator,
    TransactionMetrics,
    TransactionPhase,
    WriteKind,
)

__all__ = [
    "DELETED_AT_FIELD",
    "ID",
    "AggregateFunction",
    "BatchAction",
    "BatchWriter",
    "BulkDeletePayload",
    "BulkSoftDeletePayload",
    "BulkUpdateItem",
    "Entity",
    "HookCallback",
    "HookEvent",
    "HookRegistry",
    "OffsetPage",
    "Page",
    "QueryBuilder",
    "QueuedWrite",
    "Repository",
    "TransactionContext",
    "TransactionCoordinator",
    "TransactionMetrics",
    "TransactionPhase",
    "WriteKind",
    "is_soft_deleted",
    "utc_timestamp",
]
