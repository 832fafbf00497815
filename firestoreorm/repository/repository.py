"""Repository: the entity CRUD surface over one collection.

Single-document writes go straight to the store after validation; multi
document writes go through ``BatchWriter``. Every write fires the matching
before/after hooks registered with ``on()``.

Returned entities are plain dicts carrying an ``"id"`` key. The id is never
stored inside the document body.
"""

from __future__ import annotations

import asyncio

import typing as t
from pydantic import BaseModel

from firestoreorm.adapters.store import Document, QuerySpec, StoreBase, WhereOperator
from firestoreorm.config import RepositorySettings
from firestoreorm.depends import depends
from firestoreorm.dot_notation import (
    drop_unset,
    is_dot_notation,
    merge_dot_notation_update,
    get_root_fields,
    validate_dot_notation_path,
)
from firestoreorm.errors import EntityNotFoundError, ValidationError, ValidationIssue
from firestoreorm.logger import logger
from firestoreorm.validation import PassThroughValidator, PydanticValidator, Validator

from ._base import DELETED_AT_FIELD, ID, Entity, is_soft_deleted, utc_timestamp, without_id
from .batch import BatchAction, BatchWriter
from .hooks import (
    BulkDeletePayload,
    BulkSoftDeletePayload,
    BulkUpdateItem,
    HookCallback,
    HookEvent,
    HookRegistry,
)
from .query_builder import QueryBuilder
from .transaction import TransactionContext, TransactionCoordinator

R = t.TypeVar("R")


class Repository:
    def __init__(
        self,
        store: StoreBase,
        collection: str,
        validator: Validator | None = None,
        settings: RepositorySettings | None = None,
        entity_name: str | None = None,
    ) -> None:
        self.store = store
        self.collection = collection
        self.validator: Validator = validator or PassThroughValidator()
        self.settings: RepositorySettings = settings or depends.get_sync(RepositorySettings)
        self.entity_name = entity_name or collection.rsplit("/", 1)[-1]
        self.hooks = HookRegistry()
        self.batch_writer = BatchWriter(store, self.settings.max_batch_size)

    @classmethod
    def with_schema(
        cls,
        store: StoreBase,
        collection: str,
        model: type[BaseModel],
        update_model: type[BaseModel] | None = None,
        settings: RepositorySettings | None = None,
    ) -> Repository:
        return cls(
            store,
            collection,
            PydanticValidator(model, update_model),
            settings=settings,
            entity_name=model.__name__,
        )

    def subcollection(
        self,
        parent_id: ID,
        name: str,
        validator: Validator | None = None,
    ) -> Repository:
        """Repository for ``<collection>/<parent_id>/<name>``. Hooks are not shared."""
        return Repository(
            self.store,
            f"{self.collection}/{parent_id}/{name}",
            validator,
            settings=self.settings,
        )

    def on(self, event: HookEvent | str, callback: HookCallback) -> None:
        self.hooks.register(event, callback)

    def query(self) -> QueryBuilder:
        return QueryBuilder(self)

    async def run_in_transaction(
        self,
        callback: t.Callable[[TransactionContext], t.Awaitable[R]],
    ) -> R:
        """Run ``callback`` in one atomic store transaction.

        Reads through the context happen immediately; writes are queued and
        applied after the callback returns, and after-hooks run only once the
        store has committed. The store may re-run ``callback`` on contention,
        so it must not have side effects beyond the context calls.
        """
        return await TransactionCoordinator(self).run(callback)

    # validation and merging

    def _prepare_create(self, data: t.Mapping[str, t.Any]) -> dict[str, t.Any]:
        document = self.validator.validate_for_create(without_id(drop_unset(data)))
        document.pop("id", None)
        document[DELETED_AT_FIELD] = None
        return document

    def _clean_patch(self, data: t.Mapping[str, t.Any]) -> dict[str, t.Any]:
        patch = without_id(drop_unset(data))
        for key in patch:
            validate_dot_notation_path(key)
        return patch

    def _validate_patch(
        self,
        existing: t.Mapping[str, t.Any],
        data: t.Mapping[str, t.Any],
    ) -> dict[str, t.Any]:
        """Validated top-level fields to write for ``data`` applied to ``existing``.

        Dotted keys are merged into the stored value first so the validator
        sees complete nested objects.
        """
        patch = self._clean_patch(data)
        merged = merge_dot_notation_update(existing, patch)
        touched = {root: merged[root] for root in get_root_fields(patch)}
        return self.validator.validate_for_update(touched)

    def _validate_blind_patch(self, data: t.Mapping[str, t.Any]) -> dict[str, t.Any]:
        """Validate a patch without reading the stored document.

        Plain keys go through the validator; dotted keys are only checked for
        path syntax and written as-is.
        """
        patch = self._clean_patch(data)
        plain = {key: value for key, value in patch.items() if not is_dot_notation(key)}
        dotted = {key: value for key, value in patch.items() if is_dot_notation(key)}
        return self.validator.validate_for_update(plain) | dotted

    # store helpers

    async def _fetch(self, doc_id: ID) -> Document | None:
        return await self.store.get(self.collection, doc_id)

    async def _fetch_many(self, ids: t.Sequence[ID]) -> list[Document | None]:
        return list(await asyncio.gather(*(self._fetch(doc_id) for doc_id in ids)))

    async def _fetch_existing(self, ids: t.Iterable[ID]) -> list[Document]:
        unique_ids = list(dict.fromkeys(ids))
        return [doc for doc in await self._fetch_many(unique_ids) if doc is not None]

    async def _fetch_or_raise(self, doc_id: ID, operation: str) -> Document:
        doc = await self._fetch(doc_id)
        if doc is None:
            raise EntityNotFoundError(self.entity_name, doc_id, operation)
        return doc

    async def _fetch_soft_deleted(self) -> list[Document]:
        spec = QuerySpec().where(DELETED_AT_FIELD, WhereOperator.NOT_EQUAL, None)
        return await self.store.query(self.collection, spec)

    def _set_action(self, doc_id: ID, data: dict[str, t.Any]) -> BatchAction:
        collection = self.collection
        return lambda batch: batch.set(collection, doc_id, data)

    def _update_action(self, doc_id: ID, data: dict[str, t.Any]) -> BatchAction:
        collection = self.collection
        return lambda batch: batch.update(collection, doc_id, data)

    def _delete_action(self, doc_id: ID) -> BatchAction:
        collection = self.collection
        return lambda batch: batch.delete(collection, doc_id)

    # single-document operations

    async def create(self, data: t.Mapping[str, t.Any]) -> Entity:
        document = self._prepare_create(data)
        await self.hooks.fire(HookEvent.BEFORE_CREATE, document)
        doc_id = await self.store.add(self.collection, document)
        created = {**document, "id": doc_id}
        await self.hooks.fire(HookEvent.AFTER_CREATE, created)
        return created

    async def get_by_id(self, doc_id: ID, include_deleted: bool = False) -> Entity | None:
        doc = await self._fetch(doc_id)
        if doc is None:
            return None
        if not include_deleted and is_soft_deleted(doc.data):
            return None
        return doc.to_entity()

    async def _update_document(self, doc: Document, data: t.Mapping[str, t.Any]) -> Entity:
        changes = self._validate_patch(doc.data, data)
        updated = {**doc.data, **changes, "id": doc.id}
        await self.hooks.fire(HookEvent.BEFORE_UPDATE, updated)
        if changes:
            await self.store.update(
                self.collection,
                doc.id,
                {key: updated[key] for key in changes},
            )
        await self.hooks.fire(HookEvent.AFTER_UPDATE, updated)
        return updated

    async def update(self, doc_id: ID, data: t.Mapping[str, t.Any]) -> Entity:
        """Apply a partial update.

        Top-level keys replace stored values wholesale; dotted keys such as
        ``"address.city"`` replace one nested value. ``UNSET`` values are
        ignored.
        """
        doc = await self._fetch_or_raise(doc_id, "update")
        return await self._update_document(doc, data)

    async def upsert(self, doc_id: ID, data: t.Mapping[str, t.Any]) -> Entity:
        doc = await self._fetch(doc_id)
        if doc is not None:
            return await self._update_document(doc, data)

        document = self._prepare_create(data)
        created = {**document, "id": doc_id}
        await self.hooks.fire(HookEvent.BEFORE_CREATE, created)
        await self.store.set(self.collection, doc_id, without_id(created))
        await self.hooks.fire(HookEvent.AFTER_CREATE, created)
        return created

    async def delete(self, doc_id: ID) -> None:
        entity = (await self._fetch_or_raise(doc_id, "delete")).to_entity()
        await self.hooks.fire(HookEvent.BEFORE_DELETE, entity)
        await self.store.delete(self.collection, doc_id)
        await self.hooks.fire(HookEvent.AFTER_DELETE, entity)

    async def soft_delete(self, doc_id: ID) -> Entity:
        doc = await self._fetch_or_raise(doc_id, "soft_delete")
        deleted_at = utc_timestamp()
        entity = {**doc.to_entity(), DELETED_AT_FIELD: deleted_at}
        await self.hooks.fire(HookEvent.BEFORE_SOFT_DELETE, entity)
        await self.store.update(self.collection, doc_id, {DELETED_AT_FIELD: deleted_at})
        await self.hooks.fire(HookEvent.AFTER_SOFT_DELETE, entity)
        return entity

    async def restore(self, doc_id: ID) -> Entity:
        doc = await self._fetch_or_raise(doc_id, "restore")
        entity = {**doc.to_entity(), DELETED_AT_FIELD: None}
        await self.hooks.fire(HookEvent.BEFORE_RESTORE, entity)
        await self.store.update(self.collection, doc_id, {DELETED_AT_FIELD: None})
        await self.hooks.fire(HookEvent.AFTER_RESTORE, entity)
        return entity

    # bulk operations

    async def bulk_create(self, items: t.Sequence[t.Mapping[str, t.Any]]) -> list[Entity]:
        """Validate all items, then write them in chunked batches.

        Ids are generated before the hooks fire. Nothing is written unless
        every item validates.
        """
        issues: list[ValidationIssue] = []
        prepared: list[Entity] = []
        for index, item in enumerate(items):
            try:
                document = self._prepare_create(item)
            except ValidationError as e:
                issues.extend(e.prefixed(index).issues)
                continue
            prepared.append({**document, "id": self.store.new_id(self.collection)})

        if issues:
            raise ValidationError(issues, entity_type=self.entity_name, operation="bulk_create")
        if not prepared:
            return []

        await self.hooks.fire(HookEvent.BEFORE_BULK_CREATE, prepared)
        await self.batch_writer.commit_in_chunks(
            [self._set_action(entity["id"], without_id(entity)) for entity in prepared],
        )
        await self.hooks.fire(HookEvent.AFTER_BULK_CREATE, prepared)
        logger.debug(f"Created {len(prepared)} {self.entity_name} documents")
        return prepared

    async def bulk_update(self, updates: t.Sequence[BulkUpdateItem]) -> list[Entity]:
        """Update many documents; any missing id fails the whole call."""
        if not updates:
            return []

        docs: list[Document] = []
        for update, doc in zip(
            updates,
            await self._fetch_many([update["id"] for update in updates]),
            strict=True,
        ):
            if doc is None:
                raise EntityNotFoundError(self.entity_name, update["id"], "bulk_update")
            docs.append(doc)

        return await self._bulk_update_documents(
            docs,
            [update["data"] for update in updates],
            operation="bulk_update",
        )

    async def _bulk_update_documents(
        self,
        docs: t.Sequence[Document],
        patches: t.Sequence[t.Mapping[str, t.Any]],
        operation: str,
    ) -> list[Entity]:
        """Validate every patch against its document, then write them in batches.

        Issues from all items are collected, each prefixed with ``(index,
        "data")``, and nothing is written unless every patch validates.
        """
        issues: list[ValidationIssue] = []
        changes: list[tuple[ID, dict[str, t.Any]]] = []
        updated: list[Entity] = []
        for index, (doc, patch) in enumerate(zip(docs, patches, strict=True)):
            try:
                validated = self._validate_patch(doc.data, patch)
            except ValidationError as e:
                issues.extend(e.prefixed(index, "data").issues)
                continue
            changes.append((doc.id, validated))
            updated.append({**doc.data, **validated, "id": doc.id})

        if issues:
            raise ValidationError(issues, entity_type=self.entity_name, operation=operation)
        if not docs:
            return []

        raw = [
            BulkUpdateItem(id=doc.id, data=dict(patch))
            for doc, patch in zip(docs, patches, strict=True)
        ]
        await self.hooks.fire(HookEvent.BEFORE_BULK_UPDATE, raw)
        await self.batch_writer.commit_in_chunks(
            [self._update_action(doc_id, data) for doc_id, data in changes if data],
        )
        await self.hooks.fire(HookEvent.AFTER_BULK_UPDATE, raw)
        return updated

    async def _bulk_delete_documents(self, docs: t.Sequence[Document]) -> int:
        if not docs:
            return 0
        payload = BulkDeletePayload(
            ids=[doc.id for doc in docs],
            documents=[doc.to_entity() for doc in docs],
        )
        await self.hooks.fire(HookEvent.BEFORE_BULK_DELETE, payload)
        await self.batch_writer.commit_in_chunks([self._delete_action(doc.id) for doc in docs])
        await self.hooks.fire(HookEvent.AFTER_BULK_DELETE, payload)
        return len(docs)

    async def _bulk_soft_delete_documents(self, docs: t.Sequence[Document]) -> int:
        if not docs:
            return 0
        deleted_at = utc_timestamp()
        payload = BulkSoftDeletePayload(
            ids=[doc.id for doc in docs],
            documents=[doc.to_entity() for doc in docs],
            deletedAt=deleted_at,
        )
        await self.hooks.fire(HookEvent.BEFORE_BULK_SOFT_DELETE, payload)
        await self.batch_writer.commit_in_chunks(
            [self._update_action(doc.id, {DELETED_AT_FIELD: deleted_at}) for doc in docs],
        )
        await self.hooks.fire(HookEvent.AFTER_BULK_SOFT_DELETE, payload)
        return len(docs)

    async def bulk_delete(self, ids: t.Sequence[ID]) -> int:
        """Hard-delete the existing documents among ``ids``; missing ids are skipped."""
        return await self._bulk_delete_documents(await self._fetch_existing(ids))

    async def bulk_soft_delete(self, ids: t.Sequence[ID]) -> int:
        return await self._bulk_soft_delete_documents(await self._fetch_existing(ids))

    async def restore_all(self) -> int:
        docs = await self._fetch_soft_deleted()
        if not docs:
            return 0
        payload = BulkDeletePayload(
            ids=[doc.id for doc in docs],
            documents=[doc.to_entity() for doc in docs],
        )
        await self.hooks.fire(HookEvent.BEFORE_BULK_RESTORE, payload)
        await self.batch_writer.commit_in_chunks(
            [self._update_action(doc.id, {DELETED_AT_FIELD: None}) for doc in docs],
        )
        await self.hooks.fire(HookEvent.AFTER_BULK_RESTORE, payload)
        return len(docs)

    async def purge_delete(self) -> int:
        """Hard-delete every soft-deleted document. No hooks are fired."""
        docs = await self._fetch_soft_deleted()
        if not docs:
            return 0
        await self.batch_writer.commit_in_chunks([self._delete_action(doc.id) for doc in docs])
        logger.info(f"Purged {len(docs)} soft-deleted {self.entity_name} documents")
        return len(docs)

    # reads

    async def find_by_field(self, field: str, value: t.Any) -> list[Entity]:
        return await self.query().where(field, WhereOperator.EQUAL, value).get()

    async def list(
        self,
        limit: int | None = None,
        start_after_id: ID | None = None,
        include_deleted: bool = False,
    ) -> list[Entity]:
        query = self.query()
        if include_deleted:
            query.include_deleted()
        page_size = min(limit or self.settings.default_page_size, self.settings.max_page_size)
        page = await query.paginate(page_size, start_after_id)
        return page.items
