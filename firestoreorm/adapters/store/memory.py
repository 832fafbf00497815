"""In-process document store with Firestore semantics.

Used by the test-suite and for local development. It mirrors the parts of
Firestore behaviour the repository layer relies on:
- queries exclude documents missing a filtered or ordered field
- default ordering is by document id
- batches are atomic and capped at ``MAX_BATCH_OPERATIONS`` writes
- transactions reject reads after writes and are retried on contention
"""

import asyncio
import secrets
import string
from copy import deepcopy
from datetime import datetime
from functools import cmp_to_key

import typing as t

from firestoreorm.config import MAX_BATCH_OPERATIONS, StoreSettings
from firestoreorm.dot_notation import get_path, is_dot_notation
from firestoreorm.errors import StoreError
from firestoreorm.logger import logger

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

R = t.TypeVar("R")

_ID_ALPHABET = string.ascii_letters + string.digits
_MISSING = object()

_Key = tuple[str, str]
_Write = t.Callable[[], None]


def _type_rank(value: t.Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        return 1
    if isinstance(value, int | float):
        return 2
    if isinstance(value, datetime):
        return 3
    if isinstance(value, str):
        return 4
    if isinstance(value, bytes):
        return 5
    if isinstance(value, list):
        return 7
    if isinstance(value, dict):
        return 8
    return 9


def _compare(a: t.Any, b: t.Any) -> int:
    rank_a, rank_b = _type_rank(a), _type_rank(b)
    if rank_a != rank_b:
        return -1 if rank_a < rank_b else 1
    if rank_a == 0:
        return 0
    if rank_a >= 7:
        a, b = repr(a), repr(b)
    if a == b:
        return 0
    return -1 if a < b else 1


def _equal(a: t.Any, b: t.Any) -> bool:
    return _type_rank(a) == _type_rank(b) and a == b


def _matches(data: dict[str, t.Any], flt: FieldFilter) -> bool:
    value = get_path(data, flt.field, _MISSING)
    if value is _MISSING:
        return False

    op, operand = flt.op, flt.value
    match op:
        case WhereOperator.EQUAL:
            return _equal(value, operand)
        case WhereOperator.NOT_EQUAL:
            if operand is None:
                return value is not None
            return value is not None and not _equal(value, operand)
        case WhereOperator.IN:
            return any(_equal(value, item) for item in operand)
        case WhereOperator.NOT_IN:
            return value is not None and not any(_equal(value, item) for item in operand)
        case WhereOperator.ARRAY_CONTAINS:
            return isinstance(value, list) and any(_equal(item, operand) for item in value)
        case WhereOperator.ARRAY_CONTAINS_ANY:
            return isinstance(value, list) and any(
                _equal(item, candidate) for item in value for candidate in operand
            )

    if value is None or _type_rank(value) != _type_rank(operand):
        return False
    result = _compare(value, operand)
    return {
        WhereOperator.LESS_THAN: result < 0,
        WhereOperator.LESS_THAN_OR_EQUAL: result <= 0,
        WhereOperator.GREATER_THAN: result > 0,
        WhereOperator.GREATER_THAN_OR_EQUAL: result >= 0,
    }[op]


def _document_comparator(
    order_by: tuple[OrderBy, ...],
) -> t.Callable[[Document, Document], int]:
    def compare(left: Document, right: Document) -> int:
        for order in order_by:
            result = _compare(
                get_path(left.data, order.field),
                get_path(right.data, order.field),
            )
            if result:
                return -result if order.direction == SortDirection.DESC else result
        return _compare(left.id, right.id)

    return compare


def _project(data: dict[str, t.Any], fields: tuple[str, ...]) -> dict[str, t.Any]:
    projected: dict[str, t.Any] = {}
    for field_path in fields:
        value = get_path(data, field_path, _MISSING)
        if value is _MISSING:
            continue
        _set_path(projected, field_path, value)
    return projected


def _set_path(target: dict[str, t.Any], key: str, value: t.Any) -> None:
    parts = key.split(".")
    current = target
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


def _deep_merge(existing: dict[str, t.Any], data: dict[str, t.Any]) -> dict[str, t.Any]:
    merged = dict(existing)
    for key, value in data.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged


class MemoryWriteBatch(WriteBatch):
    def __init__(self, store: "MemoryStore") -> None:
        self._store = store
        self._writes: list[_Write] = []
        self._committed = False

    def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, t.Any],
        merge: bool = False,
    ) -> None:
        payload = deepcopy(data)
        self._writes.append(lambda: self._store._write_set(collection, doc_id, payload, merge))

    def update(self, collection: str, doc_id: str, data: dict[str, t.Any]) -> None:
        payload = deepcopy(data)
        self._writes.append(lambda: self._store._write_update(collection, doc_id, payload))

    def delete(self, collection: str, doc_id: str) -> None:
        self._writes.append(lambda: self._store._write_delete(collection, doc_id))

    def __len__(self) -> int:
        return len(self._writes)

    async def commit(self) -> None:
        if self._committed:
            raise StoreError("Batch already committed", code="FAILED_PRECONDITION")
        await asyncio.sleep(0)
        self._store._commit_writes(self._writes, kind="batch")
        self._committed = True


class MemoryTransaction(TransactionHandle):
    def __init__(self, store: "MemoryStore") -> None:
        self._store = store
        self._read_versions: dict[_Key, int] = {}
        self._writes: list[_Write] = []

    async def get(self, collection: str, doc_id: str) -> Document | None:
        if self._writes:
            raise StoreError(
                "Firestore transactions require all reads to be executed before all writes.",
                code="INVALID_ARGUMENT",
            )
        await asyncio.sleep(0)
        path = self._store.collection_path(collection)
        self._read_versions[(path, doc_id)] = self._store._version(path, doc_id)
        return self._store._read(path, doc_id)

    def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, t.Any],
        merge: bool = False,
    ) -> None:
        payload = deepcopy(data)
        self._writes.append(lambda: self._store._write_set(collection, doc_id, payload, merge))

    def update(self, collection: str, doc_id: str, data: dict[str, t.Any]) -> None:
        payload = deepcopy(data)
        self._writes.append(lambda: self._store._write_update(collection, doc_id, payload))

    def delete(self, collection: str, doc_id: str) -> None:
        self._writes.append(lambda: self._store._write_delete(collection, doc_id))

    @property
    def write_count(self) -> int:
        return len(self._writes)

    def is_stale(self) -> bool:
        return any(
            self._store._version(*key) != version
            for key, version in self._read_versions.items()
        )


class MemoryStore(StoreBase):
    """Dictionary-backed store. ``commit_log`` records the size of every commit."""

    def __init__(self, settings: StoreSettings | None = None) -> None:
        super().__init__(settings)
        self._collections: dict[str, dict[str, dict[str, t.Any]]] = {}
        self._versions: dict[_Key, int] = {}
        self.commit_log: list[int] = []
        self.transaction_commits: list[int] = []
        self.transaction_attempts = 0
        self.failing_commits: set[int] = set()

    # internal write primitives, applied at commit time

    def _version(self, path: str, doc_id: str) -> int:
        return self._versions.get((path, doc_id), 0)

    def _bump(self, path: str, doc_id: str) -> None:
        self._versions[(path, doc_id)] = self._version(path, doc_id) + 1

    def _read(self, path: str, doc_id: str) -> Document | None:
        data = self._collections.get(path, {}).get(doc_id)
        if data is None:
            return None
        return Document(doc_id, deepcopy(data))

    def _write_set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, t.Any],
        merge: bool,
    ) -> None:
        path = self.collection_path(collection)
        docs = self._collections.setdefault(path, {})
        if merge and doc_id in docs:
            docs[doc_id] = _deep_merge(docs[doc_id], data)
        else:
            docs[doc_id] = deepcopy(data)
        self._bump(path, doc_id)

    def _write_update(self, collection: str, doc_id: str, data: dict[str, t.Any]) -> None:
        path = self.collection_path(collection)
        docs = self._collections.get(path, {})
        if doc_id not in docs:
            raise StoreError(f"No document to update: {path}/{doc_id}", code="NOT_FOUND")
        for key, value in data.items():
            if is_dot_notation(key):
                _set_path(docs[doc_id], key, deepcopy(value))
            else:
                docs[doc_id][key] = deepcopy(value)
        self._bump(path, doc_id)

    def _write_delete(self, collection: str, doc_id: str) -> None:
        path = self.collection_path(collection)
        self._collections.get(path, {}).pop(doc_id, None)
        self._bump(path, doc_id)

    def _commit_writes(self, writes: list[_Write], kind: str) -> None:
        if len(writes) > MAX_BATCH_OPERATIONS:
            raise StoreError(
                f"Maximum {MAX_BATCH_OPERATIONS} writes allowed per request",
                code="INVALID_ARGUMENT",
            )
        commit_number = len(self.commit_log) + 1
        if kind == "batch" and commit_number in self.failing_commits:
            raise StoreError(f"Simulated failure of commit {commit_number}", code="UNAVAILABLE")

        snapshot = deepcopy(self._collections), dict(self._versions)
        try:
            for write in writes:
                write()
        except Exception:
            self._collections, self._versions = snapshot
            raise
        if kind == "batch":
            self.commit_log.append(len(writes))
        else:
            self.transaction_commits.append(len(writes))

    # StoreBase

    def new_id(self, collection: str) -> str:
        return "".join(secrets.choice(_ID_ALPHABET) for _ in range(20))

    def dump(self, collection: str) -> dict[str, dict[str, t.Any]]:
        """Copy of every stored document in ``collection`` keyed by id."""
        return deepcopy(self._collections.get(self.collection_path(collection), {}))

    async def get(self, collection: str, doc_id: str) -> Document | None:
        await asyncio.sleep(0)
        return self._read(self.collection_path(collection), doc_id)

    async def add(self, collection: str, data: dict[str, t.Any]) -> str:
        doc_id = self.new_id(collection)
        await self.set(collection, doc_id, data)
        return doc_id

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, t.Any],
        merge: bool = False,
    ) -> None:
        await asyncio.sleep(0)
        self._write_set(collection, doc_id, data, merge)

    async def update(self, collection: str, doc_id: str, data: dict[str, t.Any]) -> None:
        await asyncio.sleep(0)
        self._write_update(collection, doc_id, data)

    async def delete(self, collection: str, doc_id: str) -> None:
        await asyncio.sleep(0)
        self._write_delete(collection, doc_id)

    def _run_query(self, collection: str, spec: QuerySpec) -> list[Document]:
        stored = self._collections.get(self.collection_path(collection), {})
        docs = [
            Document(doc_id, data)
            for doc_id, data in stored.items()
            if all(_matches(data, flt) for flt in spec.filters)
            and all(get_path(data, o.field, _MISSING) is not _MISSING for o in spec.order_by)
        ]
        comparator = _document_comparator(spec.order_by)
        docs.sort(key=cmp_to_key(comparator))

        if spec.start_after is not None and spec.start_after in stored:
            cursor = Document(spec.start_after, stored[spec.start_after])
            docs = [doc for doc in docs if comparator(doc, cursor) > 0]
        if spec.offset:
            docs = docs[spec.offset :]
        if spec.limit is not None:
            docs = docs[: spec.limit]

        return [
            Document(
                doc.id,
                _project(doc.data, spec.select) if spec.select else deepcopy(doc.data),
            )
            for doc in docs
        ]

    async def query(self, collection: str, spec: QuerySpec) -> list[Document]:
        await asyncio.sleep(0)
        return self._run_query(collection, spec)

    async def stream(self, collection: str, spec: QuerySpec) -> t.AsyncIterator[Document]:
        for doc in await self.query(collection, spec):
            yield doc

    async def count(self, collection: str, spec: QuerySpec) -> int:
        await asyncio.sleep(0)
        return len(self._run_query(collection, spec.with_changes(select=())))

    def batch(self) -> MemoryWriteBatch:
        return MemoryWriteBatch(self)

    async def run_transaction(
        self,
        fn: t.Callable[[TransactionHandle], t.Awaitable[R]],
    ) -> R:
        max_attempts = self.settings.transaction_max_attempts
        for attempt in range(1, max_attempts + 1):
            self.transaction_attempts += 1
            transaction = MemoryTransaction(self)
            result = await fn(transaction)
            if transaction.is_stale():
                logger.debug(f"Transaction contention, retrying (attempt {attempt})")
                continue
            self._commit_writes(transaction._writes, kind="transaction")
            return result

        raise StoreError(
            f"Transaction aborted after {max_attempts} attempts due to contention",
            code="ABORTED",
        )
