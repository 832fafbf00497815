from __future__ import annotations

import os
from functools import cached_property

import typing as t
from google.api_core.exceptions import GoogleAPICallError, RetryError
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter as NativeFieldFilter

from firestoreorm.config import StoreSettings
from firestoreorm.errors import parse_store_error
from firestoreorm.logger import logger

from ._base import (
    Document,
    QuerySpec,
    SortDirection,
    StoreBase,
    TransactionHandle,
    WriteBatch,
)

R = t.TypeVar("R")

_NATIVE_ERRORS = (GoogleAPICallError, RetryError)


def _to_document(snapshot: t.Any) -> Document | None:
    if not snapshot.exists:
        return None
    return Document(snapshot.id, snapshot.to_dict() or {})


class FirestoreWriteBatch(WriteBatch):
    def __init__(self, store: FirestoreStore) -> None:
        self._store = store
        self._batch = store.client.batch()
        self._size = 0

    def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, t.Any],
        merge: bool = False,
    ) -> None:
        self._batch.set(self._store.document_ref(collection, doc_id), data, merge=merge)
        self._size += 1

    def update(self, collection: str, doc_id: str, data: dict[str, t.Any]) -> None:
        self._batch.update(self._store.document_ref(collection, doc_id), data)
        self._size += 1

    def delete(self, collection: str, doc_id: str) -> None:
        self._batch.delete(self._store.document_ref(collection, doc_id))
        self._size += 1

    def __len__(self) -> int:
        return self._size

    async def commit(self) -> None:
        try:
            await self._batch.commit()
        except _NATIVE_ERRORS as e:
            raise parse_store_error(e, operation="batch_commit") from e


class FirestoreTransaction(TransactionHandle):
    """Wraps a native ``AsyncTransaction`` with collection/id addressing."""

    def __init__(self, store: FirestoreStore, transaction: t.Any) -> None:
        self._store = store
        self.native = transaction

    async def get(self, collection: str, doc_id: str) -> Document | None:
        try:
            snapshot = await self._store.document_ref(collection, doc_id).get(
                transaction=self.native,
            )
        except _NATIVE_ERRORS as e:
            raise parse_store_error(e, operation="transaction_get") from e
        return _to_document(snapshot)

    def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, t.Any],
        merge: bool = False,
    ) -> None:
        self.native.set(self._store.document_ref(collection, doc_id), data, merge=merge)

    def update(self, collection: str, doc_id: str, data: dict[str, t.Any]) -> None:
        self.native.update(self._store.document_ref(collection, doc_id), data)

    def delete(self, collection: str, doc_id: str) -> None:
        self.native.delete(self._store.document_ref(collection, doc_id))


class FirestoreStore(StoreBase):
    """Google Cloud Firestore store backed by ``firestore.AsyncClient``."""

    def __init__(
        self,
        settings: StoreSettings | None = None,
        client: t.Any = None,
    ) -> None:
        super().__init__(settings)
        self._client = client
        if self.settings.emulator_host:
            os.environ["FIRESTORE_EMULATOR_HOST"] = self.settings.emulator_host

    @cached_property
    def client(self) -> firestore.AsyncClient:
        if self._client is None:
            kwargs: dict[str, t.Any] = {}
            if self.settings.project_id:
                kwargs["project"] = self.settings.project_id
            if self.settings.database:
                kwargs["database"] = self.settings.database
            if self.settings.credentials_path:
                from google.oauth2 import service_account

                kwargs["credentials"] = (
                    service_account.Credentials.from_service_account_file(
                        self.settings.credentials_path,
                    )
                )
            if self.settings.emulator_host:
                logger.info(
                    f"Connecting to Firestore emulator at {self.settings.emulator_host}",
                )
            else:
                logger.info(
                    f"Connecting to Firestore project {self.settings.project_id or '<default>'}",
                )
            self._client = firestore.AsyncClient(**kwargs)
        self.register_resource(self._client)
        return self._client

    def collection_ref(self, collection: str) -> t.Any:
        return self.client.collection(self.collection_path(collection))

    def document_ref(self, collection: str, doc_id: str) -> t.Any:
        return self.collection_ref(collection).document(doc_id)

    async def _build_query(self, collection: str, spec: QuerySpec) -> t.Any:
        collection_ref = self.collection_ref(collection)
        query: t.Any = collection_ref
        for flt in spec.filters:
            query = query.where(filter=NativeFieldFilter(flt.field, flt.op.value, flt.value))
        for order in spec.order_by:
            direction = (
                firestore.Query.DESCENDING
                if order.direction == SortDirection.DESC
                else firestore.Query.ASCENDING
            )
            query = query.order_by(order.field, direction=direction)
        if spec.select:
            query = query.select(list(spec.select))
        if spec.start_after is not None:
            cursor = await collection_ref.document(spec.start_after).get()
            if cursor.exists:
                query = query.start_after(cursor)
        if spec.offset:
            query = query.offset(spec.offset)
        if spec.limit is not None:
            query = query.limit(spec.limit)
        return query

    def new_id(self, collection: str) -> str:
        return str(self.collection_ref(collection).document().id)

    async def get(self, collection: str, doc_id: str) -> Document | None:
        try:
            snapshot = await self.document_ref(collection, doc_id).get()
        except _NATIVE_ERRORS as e:
            raise parse_store_error(e, operation="get") from e
        return _to_document(snapshot)

    async def add(self, collection: str, data: dict[str, t.Any]) -> str:
        try:
            _, doc_ref = await self.collection_ref(collection).add(data)
        except _NATIVE_ERRORS as e:
            raise parse_store_error(e, operation="add") from e
        return str(doc_ref.id)

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, t.Any],
        merge: bool = False,
    ) -> None:
        try:
            await self.document_ref(collection, doc_id).set(data, merge=merge)
        except _NATIVE_ERRORS as e:
            raise parse_store_error(e, operation="set") from e

    async def update(self, collection: str, doc_id: str, data: dict[str, t.Any]) -> None:
        try:
            await self.document_ref(collection, doc_id).update(data)
        except _NATIVE_ERRORS as e:
            raise parse_store_error(e, operation="update") from e

    async def delete(self, collection: str, doc_id: str) -> None:
        try:
            await self.document_ref(collection, doc_id).delete()
        except _NATIVE_ERRORS as e:
            raise parse_store_error(e, operation="delete") from e

    async def query(self, collection: str, spec: QuerySpec) -> list[Document]:
        return [doc async for doc in self.stream(collection, spec)]

    async def stream(self, collection: str, spec: QuerySpec) -> t.AsyncIterator[Document]:
        try:
            query = await self._build_query(collection, spec)
            async for snapshot in query.stream():
                yield Document(snapshot.id, snapshot.to_dict() or {})
        except _NATIVE_ERRORS as e:
            raise parse_store_error(e, operation="query") from e

    async def count(self, collection: str, spec: QuerySpec) -> int:
        try:
            query = await self._build_query(collection, spec.with_changes(select=()))
            results = await query.count(alias="count").get()
        except _NATIVE_ERRORS as e:
            raise parse_store_error(e, operation="count") from e
        return int(results[0][0].value) if results and results[0] else 0

    def batch(self) -> FirestoreWriteBatch:
        return FirestoreWriteBatch(self)

    async def run_transaction(
        self,
        fn: t.Callable[[TransactionHandle], t.Awaitable[R]],
    ) -> R:
        transaction = self.client.transaction(
            max_attempts=self.settings.transaction_max_attempts,
        )

        @firestore.async_transactional
        async def _run(native: t.Any) -> R:
            return await fn(FirestoreTransaction(self, native))

        try:
            return await _run(transaction)
        except _NATIVE_ERRORS as e:
            raise parse_store_error(e, operation="transaction") from e
