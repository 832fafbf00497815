"""Chunked batch writes.

Firestore caps a batch at 500 writes, so unbounded write sets are split into
consecutive batches. Each batch is atomic; the sequence is not. If batch
``k`` fails, batches ``1..k-1`` stay committed and the error propagates.
"""

import typing as t

from firestoreorm.adapters.store import StoreBase, WriteBatch
from firestoreorm.config import MAX_BATCH_OPERATIONS
from firestoreorm.logger import logger

BatchAction = t.Callable[[WriteBatch], None]


class BatchWriter:
    def __init__(self, store: StoreBase, max_batch_size: int = MAX_BATCH_OPERATIONS) -> None:
        if not 1 <= max_batch_size <= MAX_BATCH_OPERATIONS:
            msg = f"max_batch_size must be between 1 and {MAX_BATCH_OPERATIONS}"
            raise ValueError(msg)
        self.store = store
        self.max_batch_size = max_batch_size

    async def commit_in_chunks(self, actions: t.Iterable[BatchAction]) -> None:
        """Apply ``actions`` in order, committing every ``max_batch_size`` writes."""
        batch = self.store.batch()
        counter = 0
        commits = 0

        for action in actions:
            action(batch)
            counter += 1
            if counter == self.max_batch_size:
                await batch.commit()
                commits += 1
                logger.debug(f"Committed batch {commits} ({counter} writes)")
                batch = self.store.batch()
                counter = 0

        if counter > 0:
            await batch.commit()
            commits += 1
            logger.debug(f"Committed batch {commits} ({counter} writes)")
