"""Error taxonomy for firestoreorm.

Every failure raised by the repository layer is a ``RepositoryError``:
- ``ValidationError`` for input rejected by the validator
- ``EntityNotFoundError`` for a missing target document
- ``ConflictError`` for business-rule violations raised from hooks
- ``IndexRequiredError`` when the store needs a composite index
- ``StoreError`` for any other store-originated failure
- ``TransactionOrderingError`` for reads issued after transaction writes

Store-native exceptions are translated once, by the store adapters, through
``parse_store_error``.
"""

from __future__ import annotations

import re

import typing as t
from dataclasses import dataclass

_INDEX_URL_PATTERN = re.compile(r"https://console\.firebase\.google\.com\S+")
_INDEX_FIELDS_PATTERN = re.compile(r"on fields \[(.*?)\]")


class RepositoryError(Exception):
    """Base exception for repository operations."""

    def __init__(
        self,
        message: str,
        entity_type: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.entity_type = entity_type
        self.operation = operation
        super().__init__(message)


@dataclass(frozen=True)
class ValidationIssue:
    path: tuple[str | int, ...]
    message: str

    def as_dict(self) -> dict[str, t.Any]:
        return {"path": list(self.path), "message": self.message}


class ValidationError(RepositoryError):
    """Raised when input does not satisfy the entity schema."""

    def __init__(
        self,
        issues: t.Sequence[ValidationIssue],
        entity_type: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.issues = list(issues)
        summary = "; ".join(
            f"{'.'.join(str(p) for p in issue.path) or '<root>'}: {issue.message}"
            for issue in self.issues
        )
        super().__init__(
            f"Validation failed: {summary}" if summary else "Validation failed",
            entity_type=entity_type,
            operation=operation,
        )

    def prefixed(self, *prefix: str | int) -> ValidationError:
        """Return a copy with ``prefix`` prepended to every issue path."""
        return ValidationError(
            [ValidationIssue((*prefix, *issue.path), issue.message) for issue in self.issues],
            entity_type=self.entity_type,
            operation=self.operation,
        )


class EntityNotFoundError(RepositoryError):
    """Raised when an entity is not found."""

    def __init__(
        self,
        entity_type: str,
        entity_id: t.Any,
        operation: str | None = None,
    ) -> None:
        super().__init__(
            f"{entity_type} with ID {entity_id} not found",
            entity_type=entity_type,
            operation=operation or "find",
        )
        self.entity_id = entity_id


class ConflictError(RepositoryError):
    """Business-rule conflict, e.g. a uniqueness check inside a hook."""


class IndexRequiredError(RepositoryError):
    """The store rejected a query because a composite index is missing."""

    def __init__(self, index_url: str, fields: list[str]) -> None:
        self.index_url = index_url
        self.fields = fields
        message = f"Query requires a composite index on fields {fields}"
        if index_url:
            message += f". Create it here: {index_url}"
        super().__init__(message, operation="query")


class StoreError(RepositoryError):
    """Any other failure reported by the document store."""

    def __init__(
        self,
        message: str,
        code: t.Any = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message, operation=operation)
        self.code = code


class TransactionOrderingError(RepositoryError):
    """A transaction read was attempted after writes were issued."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message
            or (
                "Cannot read after writes in transaction. "
                "Call all get() operations before create/update/delete."
            ),
            operation="transaction",
        )


def _error_details(error: BaseException) -> str:
    details = getattr(error, "details", None)
    if isinstance(details, str) and details:
        return details
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(error)


def _is_failed_precondition(error: BaseException) -> bool:
    for attr in ("grpc_status_code", "code"):
        code = getattr(error, attr, None)
        if code is None:
            continue
        if code == 9 or getattr(code, "name", None) == "FAILED_PRECONDITION":
            return True
        if getattr(code, "value", None) == (9, "failed precondition"):
            return True
    return False


def extract_index_url(details: str) -> str:
    match = _INDEX_URL_PATTERN.search(details)
    return match.group(0) if match else ""


def extract_index_fields(details: str) -> list[str]:
    match = _INDEX_FIELDS_PATTERN.search(details)
    if match:
        return [field.strip() for field in match.group(1).split(",")]
    return ["multiple fields"]


def parse_store_error(error: BaseException, operation: str | None = None) -> RepositoryError:
    """Translate a store-native exception into the repository taxonomy."""
    if isinstance(error, RepositoryError):
        return error

    details = _error_details(error)
    if _is_failed_precondition(error) and "requires an index" in details:
        return IndexRequiredError(
            extract_index_url(details),
            extract_index_fields(details),
        )

    return StoreError(
        f"Store operation failed: {details}",
        code=getattr(error, "grpc_status_code", None) or getattr(error, "code", None),
        operation=operation,
    )


_HTTP_STATUS: tuple[tuple[type[RepositoryError], int, str], ...] = (
    (ValidationError, 400, "ValidationError"),
    (EntityNotFoundError, 404, "NotFoundError"),
    (ConflictError, 409, "ConflictError"),
    (IndexRequiredError, 412, "IndexRequiredError"),
    (TransactionOrderingError, 500, "TransactionOrderingError"),
)


def http_status_for(error: BaseException) -> int:
    for error_type, status, _ in _HTTP_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


def error_response(error: BaseException) -> tuple[int, dict[str, t.Any]]:
    """Map an exception to ``(status_code, json_body)`` for an HTTP layer."""
    for error_type, status, name in _HTTP_STATUS:
        if not isinstance(error, error_type):
            continue
        if isinstance(error, ValidationError):
            return status, {
                "error": name,
                "details": [issue.as_dict() for issue in error.issues],
            }
        if isinstance(error, IndexRequiredError):
            return status, {
                "error": name,
                "message": str(error),
                "indexUrl": error.index_url,
                "fields": error.fields,
            }
        return status, {"error": name, "message": str(error)}

    return 500, {
        "error": "InternalServerError",
        "message": "Something went wrong",
    }
