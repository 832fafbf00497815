"""firestoreorm: repositories, batching, hooks and transactions over Firestore."""

from .adapters.store import MemoryStore, StoreBase
from .config import LoggerSettings, RepositorySettings, StoreSettings
from .dot_notation import UNSET
from .errors import (
    ConflictError,
    EntityNotFoundError,
    IndexRequiredError,
    RepositoryError,
    StoreError,
    TransactionOrderingError,
    ValidationError,
    ValidationIssue,
    error_response,
    http_status_for,
    parse_store_error,
)
from .logger import configure_logger, logger
from .repository import (
    DELETED_AT_FIELD,
    HookEvent,
    QueryBuilder,
    Repository,
    TransactionContext,
)
from .validation import PassThroughValidator, PydanticValidator, Validator, make_validator

__version__ = "0.1.0"

__all__ = [
    "DELETED_AT_FIELD",
    "UNSET",
    "ConflictError",
    "EntityNotFoundError",
    "HookEvent",
    "IndexRequiredError",
    "LoggerSettings",
    "MemoryStore",
    "PassThroughValidator",
    "PydanticValidator",
    "QueryBuilder",
    "Repository",
    "RepositoryError",
    "RepositorySettings",
    "StoreBase",
    "StoreError",
    "StoreSettings",
    "TransactionContext",
    "TransactionOrderingError",
    "ValidationError",
    "ValidationIssue",
    "Validator",
    "configure_logger",
    "error_response",
    "http_status_for",
    "logger",
    "make_validator",
    "parse_store_error",
]
