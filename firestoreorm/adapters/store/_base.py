from abc import ABC, abstractmethod
from enum import StrEnum

import typing as t
from dataclasses import dataclass, field, replace

from firestoreorm.cleanup import CleanupMixin
from firestoreorm.config import StoreSettings
from firestoreorm.depends import depends

R = t.TypeVar("R")


class WhereOperator(StrEnum):
    EQUAL = "=="
    NOT_EQUAL = "!="
    LESS_THAN = "<"
    LESS_THAN_OR_EQUAL = "<="
    GREATER_THAN = ">"
    GREATER_THAN_OR_EQUAL = ">="
    IN = "in"
    NOT_IN = "not-in"
    ARRAY_CONTAINS = "array-contains"
    ARRAY_CONTAINS_ANY = "array-contains-any"


class SortDirection(StrEnum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class FieldFilter:
    field: str
    op: WhereOperator
    value: t.Any


@dataclass(frozen=True)
class OrderBy:
    field: str
    direction: SortDirection = SortDirection.ASC


@dataclass(frozen=True)
class QuerySpec:
    """Store-agnostic description of a collection query."""

    filters: tuple[FieldFilter, ...] = ()
    order_by: tuple[OrderBy, ...] = ()
    limit: int | None = None
    offset: int | None = None
    start_after: str | None = None
    select: tuple[str, ...] = ()

    def where(self, field_name: str, op: WhereOperator | str, value: t.Any) -> "QuerySpec":
        return replace(
            self,
            filters=(*self.filters, FieldFilter(field_name, WhereOperator(op), value)),
        )

    def with_changes(self, **changes: t.Any) -> "QuerySpec":
        return replace(self, **changes)


@dataclass
class Document:
    """A stored document: its id and its field data (id not included)."""

    id: str
    data: dict[str, t.Any] = field(default_factory=dict)

    def to_entity(self) -> dict[str, t.Any]:
        return {**self.data, "id": self.id}


class WriteBatch(ABC):
    """Store-native group of writes committed atomically."""

    @abstractmethod
    def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, t.Any],
        merge: bool = False,
    ) -> None: ...

    @abstractmethod
    def update(self, collection: str, doc_id: str, data: dict[str, t.Any]) -> None: ...

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None: ...

    @abstractmethod
    async def commit(self) -> None: ...

    @abstractmethod
    def __len__(self) -> int: ...


class TransactionHandle(ABC):
    """Native transaction: reads must all happen before any write."""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Document | None: ...

    @abstractmethod
    def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, t.Any],
        merge: bool = False,
    ) -> None: ...

    @abstractmethod
    def update(self, collection: str, doc_id: str, data: dict[str, t.Any]) -> None: ...

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None: ...


class StoreBase(CleanupMixin, ABC):
    """Document store collaborator used by repositories.

    Implementations translate every store-native exception through
    ``firestoreorm.errors.parse_store_error`` before it leaves the adapter.
    """

    def __init__(self, settings: StoreSettings | None = None) -> None:
        super().__init__()
        self.settings: StoreSettings = settings or depends.get_sync(StoreSettings)

    def collection_path(self, collection: str) -> str:
        return f"{self.settings.collection_prefix}{collection}"

    @abstractmethod
    def new_id(self, collection: str) -> str:
        """Generate an id without writing anything."""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Document | None: ...

    @abstractmethod
    async def add(self, collection: str, data: dict[str, t.Any]) -> str: ...

    @abstractmethod
    async def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, t.Any],
        merge: bool = False,
    ) -> None: ...

    @abstractmethod
    async def update(self, collection: str, doc_id: str, data: dict[str, t.Any]) -> None:
        """Partial update; dotted keys address nested fields."""

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None: ...

    @abstractmethod
    async def query(self, collection: str, spec: QuerySpec) -> list[Document]: ...

    @abstractmethod
    def stream(self, collection: str, spec: QuerySpec) -> t.AsyncIterator[Document]: ...

    @abstractmethod
    async def count(self, collection: str, spec: QuerySpec) -> int: ...

    @abstractmethod
    def batch(self) -> WriteBatch: ...

    @abstractmethod
    async def run_transaction(
        self,
        fn: t.Callable[[TransactionHandle], t.Awaitable[R]],
    ) -> R:
        """Run ``fn`` atomically, retrying it on contention."""
