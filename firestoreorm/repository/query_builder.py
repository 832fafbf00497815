"""Query Builder Implementation.

Provides a fluent query interface over one repository collection:
- filters, ordering, projection, limit/offset and cursors
- soft-delete filtering applied to every terminal operation
- cursor and offset pagination
- query-scoped bulk update, delete and soft delete
"""

from __future__ import annotations

import math
from enum import Enum

import typing as t
from dataclasses import dataclass

from firestoreorm.adapters.store import (
    Document,
    OrderBy,
    QuerySpec,
    SortDirection,
    StoreBase,
    WhereOperator,
)
from firestoreorm.dot_notation import get_path
from firestoreorm.errors import ValidationError, ValidationIssue

from ._base import DELETED_AT_FIELD, ID, Entity

if t.TYPE_CHECKING:
    from .repository import Repository

_MISSING = object()


class DeletedFilter(Enum):
    ACTIVE = "active"
    INCLUDE = "include"
    ONLY = "only"


class AggregateFunction(Enum):
    SUM = "sum"
    AVG = "avg"


@dataclass
class Page:
    """One page of a cursor-paginated query."""

    items: list[Entity]
    next_cursor_id: ID | None
    total: int | None = None

    @property
    def has_more(self) -> bool:
        return self.next_cursor_id is not None


@dataclass
class OffsetPage:
    items: list[Entity]
    page: int
    page_size: int
    total: int
    total_pages: int

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.page > 1


class QueryBuilder:
    """Fluent query builder for a repository.

    Builder methods mutate the builder and return it for chaining. Nothing
    touches the store until a terminal method is awaited. Unless
    ``include_deleted()`` or ``only_deleted()`` is called, terminals only see
    documents whose ``deletedAt`` is null.
    """

    def __init__(self, repository: Repository) -> None:
        self.repository = repository
        self._spec = QuerySpec()
        self._deleted = DeletedFilter.ACTIVE

    def _invalid(self, path: str, message: str) -> ValidationError:
        return ValidationError(
            [ValidationIssue((path,), message)],
            entity_type=self.repository.entity_name,
            operation="query",
        )

    def where(self, field: str, op: WhereOperator | str, value: t.Any) -> QueryBuilder:
        """Add a field filter.

        Args:
            field: Field name, dotted for nested fields
            op: One of ``==, !=, <, <=, >, >=, in, not-in, array-contains,
                array-contains-any``
            value: Comparison value

        Returns:
            Query builder for chaining
        """
        try:
            operator = WhereOperator(op)
        except ValueError:
            raise self._invalid(field, f"Unsupported operator {op!r}") from None
        self._spec = self._spec.where(field, operator, value)
        return self

    def order_by(
        self,
        field: str,
        direction: SortDirection | str = SortDirection.ASC,
    ) -> QueryBuilder:
        try:
            sort = SortDirection(str(direction).lower())
        except ValueError:
            raise self._invalid(field, f"Unsupported sort direction {direction!r}") from None
        self._spec = self._spec.with_changes(
            order_by=(*self._spec.order_by, OrderBy(field, sort)),
        )
        return self

    def limit(self, limit: int) -> QueryBuilder:
        if limit < 0:
            raise self._invalid("limit", "Limit must not be negative")
        self._spec = self._spec.with_changes(limit=limit)
        return self

    def offset(self, offset: int) -> QueryBuilder:
        if offset < 0:
            raise self._invalid("offset", "Offset must not be negative")
        self._spec = self._spec.with_changes(offset=offset)
        return self

    def select(self, *fields: str) -> QueryBuilder:
        self._spec = self._spec.with_changes(select=tuple(fields))
        return self

    def start_after_id(self, doc_id: ID | None) -> QueryBuilder:
        self._spec = self._spec.with_changes(start_after=doc_id)
        return self

    def include_deleted(self) -> QueryBuilder:
        self._deleted = DeletedFilter.INCLUDE
        return self

    def only_deleted(self) -> QueryBuilder:
        self._deleted = DeletedFilter.ONLY
        return self

    def build(self) -> QuerySpec:
        """The store query, with the soft-delete filter applied."""
        match self._deleted:
            case DeletedFilter.ACTIVE:
                return self._spec.where(DELETED_AT_FIELD, WhereOperator.EQUAL, None)
            case DeletedFilter.ONLY:
                return self._spec.where(DELETED_AT_FIELD, WhereOperator.NOT_EQUAL, None)
            case _:
                return self._spec

    def clone(self) -> QueryBuilder:
        builder = QueryBuilder(self.repository)
        builder._spec = self._spec
        builder._deleted = self._deleted
        return builder

    @property
    def _store(self) -> StoreBase:
        return self.repository.store

    @property
    def _collection(self) -> str:
        return self.repository.collection

    async def _fetch(self, spec: QuerySpec) -> list[Entity]:
        return [doc.to_entity() for doc in await self._store.query(self._collection, spec)]

    # terminals

    async def get(self) -> list[Entity]:
        return await self._fetch(self.build())

    async def get_one(self) -> Entity | None:
        items = await self._fetch(self.build().with_changes(limit=1))
        return items[0] if items else None

    async def count(self) -> int:
        return await self._store.count(self._collection, self.build())

    async def total_count(self) -> int:
        """Count every match, ignoring limit, offset and cursor."""
        spec = self.build().with_changes(limit=None, offset=None, start_after=None)
        return await self._store.count(self._collection, spec)

    async def exists(self) -> bool:
        spec = self.build().with_changes(limit=1, offset=None)
        return await self._store.count(self._collection, spec) > 0

    async def paginate(self, limit: int, cursor_id: ID | None = None) -> Page:
        """Fetch up to ``limit`` items after ``cursor_id``.

        ``next_cursor_id`` is the id of the last returned item when more
        results follow, otherwise None.
        """
        if limit < 1:
            raise self._invalid("limit", "Page size must be at least 1")
        spec = self.build().with_changes(limit=limit + 1, offset=None)
        if cursor_id is not None:
            spec = spec.with_changes(start_after=cursor_id)
        items = await self._fetch(spec)
        has_more = len(items) > limit
        items = items[:limit]
        return Page(items, items[-1]["id"] if has_more and items else None)

    async def paginate_with_count(self, limit: int, cursor_id: ID | None = None) -> Page:
        page = await self.paginate(limit, cursor_id)
        page.total = await self.total_count()
        return page

    async def offset_paginate(self, page: int = 1, page_size: int | None = None) -> OffsetPage:
        settings = self.repository.settings
        page_size = min(page_size or settings.default_page_size, settings.max_page_size)
        if page < 1:
            raise self._invalid("page", "Page number must be at least 1")
        total = await self.total_count()
        spec = self.build().with_changes(
            limit=page_size,
            offset=(page - 1) * page_size,
            start_after=None,
        )
        return OffsetPage(
            items=await self._fetch(spec),
            page=page,
            page_size=page_size,
            total=total,
            total_pages=math.ceil(total / page_size) if total else 0,
        )

    async def aggregate(self, field: str, function: AggregateFunction | str) -> float:
        """Sum or average the numeric values of ``field`` across matches."""
        try:
            func = AggregateFunction(function)
        except ValueError:
            raise self._invalid(field, f"Unsupported aggregate {function!r}") from None
        spec = self.build().with_changes(select=(field,))
        values = [
            value
            for doc in await self._store.query(self._collection, spec)
            if isinstance(value := get_path(doc.data, field), int | float)
            and not isinstance(value, bool)
        ]
        if not values:
            return 0
        total = sum(values)
        return total if func is AggregateFunction.SUM else total / len(values)

    async def distinct_values(self, field: str) -> list[t.Any]:
        spec = self.build().with_changes(select=(field,))
        distinct: list[t.Any] = []
        for doc in await self._store.query(self._collection, spec):
            value = get_path(doc.data, field, _MISSING)
            if value is not _MISSING and value not in distinct:
                distinct.append(value)
        return distinct

    async def stream(self) -> t.AsyncIterator[Entity]:
        async for doc in self._store.stream(self._collection, self.build()):
            yield doc.to_entity()

    # query-scoped writes

    async def _matching_documents(self) -> list[Document]:
        spec = self.build().with_changes(select=())
        return await self._store.query(self._collection, spec)

    async def update(self, data: t.Mapping[str, t.Any]) -> int:
        """Apply ``data`` to every match through the bulk-update pipeline.

        The patch is validated against each matched document before anything
        is written; one invalid result aborts the whole update.
        """
        if not self.repository._clean_patch(data):
            return 0
        docs = await self._matching_documents()
        updated = await self.repository._bulk_update_documents(
            docs,
            [data] * len(docs),
            operation="query_update",
        )
        return len(updated)

    async def delete(self) -> int:
        docs = await self._matching_documents()
        return await self.repository._bulk_delete_documents(docs)

    async def soft_delete(self) -> int:
        docs = await self._matching_documents()
        return await self.repository._bulk_soft_delete_documents(docs)
