"""Transaction coordination.

Firestore transactions require every read to happen before any write. The
coordinator lets callers interleave reads and writes in one callback by
queueing writes on a ``TransactionContext`` and applying them to the native
transaction handle only after the callback returns. After-hooks run once the
store has committed.
"""

from __future__ import annotations

import uuid
from collections import deque
from enum import StrEnum

import typing as t
from dataclasses import dataclass, field
from datetime import UTC, datetime

from firestoreorm.adapters.store import Document, TransactionHandle
from firestoreorm.errors import EntityNotFoundError, TransactionOrderingError
from firestoreorm.logger import logger

from ._base import ID, Entity, is_soft_deleted, without_id
from .hooks import HookEvent

if t.TYPE_CHECKING:
    from .repository import Repository

R = t.TypeVar("R")

AfterCommit = t.Callable[[], t.Awaitable[None]]


class TransactionPhase(StrEnum):
    READ = "read"
    WRITE = "write"


class WriteKind(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class QueuedWrite:
    kind: WriteKind
    doc_id: ID
    apply: t.Callable[[TransactionHandle], None]
    after_commit: AfterCommit | None = None


@dataclass
class TransactionMetrics:
    transaction_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    attempts: int = 0
    writes: int = 0
    after_hook_failures: int = 0

    @property
    def duration(self) -> float | None:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()


class TransactionContext:
    """Per-attempt view of a transaction handed to the caller's callback.

    The context starts in the ``READ`` phase. The first queued write moves it
    to ``WRITE``; from then on ``get`` and ``delete`` raise
    ``TransactionOrderingError``.
    """

    def __init__(self, repository: Repository, transaction: TransactionHandle) -> None:
        self.repository = repository
        self._transaction = transaction
        self._phase = TransactionPhase.READ
        self._queue: deque[QueuedWrite] = deque()
        self._after_commit: list[AfterCommit] = []
        self._reads: dict[ID, Document] = {}

    @property
    def phase(self) -> TransactionPhase:
        return self._phase

    @property
    def raw_transaction(self) -> TransactionHandle:
        return self._transaction

    @property
    def pending_writes(self) -> int:
        return len(self._queue)

    @property
    def _collection(self) -> str:
        return self.repository.collection

    def _ensure_read_phase(self, operation: str) -> None:
        if self._phase is not TransactionPhase.READ:
            msg = (
                f"Cannot {operation} after a write has been queued in this transaction;"
                " perform all reads first"
            )
            raise TransactionOrderingError(msg)

    def _enqueue(self, write: QueuedWrite) -> None:
        self._queue.append(write)
        self._phase = TransactionPhase.WRITE

    async def _read(self, doc_id: ID) -> Document | None:
        doc = await self._transaction.get(self._collection, doc_id)
        if doc is not None:
            self._reads[doc_id] = doc
        return doc

    async def get(self, doc_id: ID, include_deleted: bool = False) -> Entity | None:
        self._ensure_read_phase("read")
        doc = await self._read(doc_id)
        if doc is None or (not include_deleted and is_soft_deleted(doc.data)):
            return None
        return doc.to_entity()

    async def create(self, data: t.Mapping[str, t.Any]) -> Entity:
        repository = self.repository
        document = repository._prepare_create(data)
        doc_id = repository.store.new_id(self._collection)
        entity = {**document, "id": doc_id}
        await repository.hooks.fire(HookEvent.BEFORE_CREATE, entity)

        collection = self._collection
        payload = without_id(entity)
        self._enqueue(
            QueuedWrite(
                WriteKind.CREATE,
                doc_id,
                lambda tx: tx.set(collection, doc_id, payload),
                lambda: repository.hooks.fire(HookEvent.AFTER_CREATE, entity),
            ),
        )
        return entity

    async def update(self, doc_id: ID, data: t.Mapping[str, t.Any]) -> Entity:
        """Queue a partial update.

        When ``doc_id`` was read earlier in this transaction the patch is
        merged and validated against that snapshot. Otherwise only plain keys
        are validated and the returned entity holds just the written fields.
        The write is a native update rather than a merge, so a missing
        document fails the whole commit with ``StoreError`` code ``NOT_FOUND``
        instead of being created.
        """
        repository = self.repository
        existing = self._reads.get(doc_id)
        if existing is not None:
            changes = repository._validate_patch(existing.data, data)
            entity = {**existing.data, **changes, "id": doc_id}
        else:
            changes = repository._validate_blind_patch(data)
            entity = {**changes, "id": doc_id}
        await repository.hooks.fire(HookEvent.BEFORE_UPDATE, entity)

        collection = self._collection
        self._enqueue(
            QueuedWrite(
                WriteKind.UPDATE,
                doc_id,
                lambda tx: tx.update(collection, doc_id, changes),
                lambda: repository.hooks.fire(HookEvent.AFTER_UPDATE, entity),
            ),
        )
        return entity

    async def delete(self, doc_id: ID) -> None:
        self._ensure_read_phase("delete")
        repository = self.repository
        doc = await self._read(doc_id)
        if doc is None:
            raise EntityNotFoundError(repository.entity_name, doc_id, "transaction_delete")
        entity = doc.to_entity()
        await repository.hooks.fire(HookEvent.BEFORE_DELETE, entity)

        collection = self._collection
        self._enqueue(
            QueuedWrite(
                WriteKind.DELETE,
                doc_id,
                lambda tx: tx.delete(collection, doc_id),
                lambda: repository.hooks.fire(HookEvent.AFTER_DELETE, entity),
            ),
        )

    def flush(self) -> int:
        """Apply every queued write to the native handle, each exactly once."""
        self._phase = TransactionPhase.WRITE
        applied = 0
        while self._queue:
            write = self._queue.popleft()
            write.apply(self._transaction)
            if write.after_commit is not None:
                self._after_commit.append(write.after_commit)
            applied += 1
        logger.debug(f"Flushed {applied} queued writes to {self._collection} transaction")
        return applied

    async def run_after_commit_hooks(self) -> int:
        """Run after-hooks in enqueue order. Returns the number that failed."""
        failures = 0
        for hook in self._after_commit:
            try:
                await hook()
            except Exception:
                failures += 1
                logger.exception(
                    f"After-commit hook failed for {self.repository.entity_name}"
                    " transaction; the transaction is already committed",
                )
        self._after_commit.clear()
        return failures


class TransactionCoordinator:
    """Runs a callback against one store transaction.

    The store may retry the transaction on contention; every attempt gets a
    fresh ``TransactionContext`` and re-runs the callback, including its
    before-hooks. Only the committed attempt's after-hooks run.
    """

    def __init__(self, repository: Repository) -> None:
        self.repository = repository
        self.metrics = TransactionMetrics()

    async def run(self, callback: t.Callable[[TransactionContext], t.Awaitable[R]]) -> R:
        contexts: list[TransactionContext] = []

        async def attempt(transaction: TransactionHandle) -> R:
            context = TransactionContext(self.repository, transaction)
            contexts.append(context)
            self.metrics.attempts += 1
            result = await callback(context)
            self.metrics.writes = context.flush()
            return result

        try:
            result = await self.repository.store.run_transaction(attempt)
        finally:
            self.metrics.end_time = datetime.now(UTC)

        logger.debug(
            f"Transaction {self.metrics.transaction_id} committed"
            f" {self.metrics.writes} writes in {self.metrics.attempts} attempt(s)",
        )
        self.metrics.after_hook_failures = await contexts[-1].run_after_commit_hooks()
        return result
