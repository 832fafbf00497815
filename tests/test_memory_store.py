"""Tests for the in-process store."""

import pytest

from firestoreorm.adapters.store import MemoryStore, QuerySpec
from firestoreorm.errors import StoreError


class TestMemoryStore:
    @pytest.mark.asyncio
    async def test_crud(self, store: MemoryStore):
        doc_id = await store.add("items", {"a": {"b": 1}})

        assert len(doc_id) == 20
        doc = await store.get("items", doc_id)
        assert doc is not None
        assert doc.to_entity() == {"a": {"b": 1}, "id": doc_id}

        await store.update("items", doc_id, {"a.c": 2})
        assert (await store.get("items", doc_id)).data == {"a": {"b": 1, "c": 2}}

        await store.set("items", doc_id, {"a": {"d": 3}}, merge=True)
        assert (await store.get("items", doc_id)).data == {"a": {"b": 1, "c": 2, "d": 3}}

        await store.delete("items", doc_id)
        assert await store.get("items", doc_id) is None

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self, store: MemoryStore):
        await store.set("items", "a", {"tags": ["x"]})

        doc = await store.get("items", "a")
        doc.data["tags"].append("y")

        assert store.dump("items")["a"] == {"tags": ["x"]}

    @pytest.mark.asyncio
    async def test_update_missing_document(self, store: MemoryStore):
        with pytest.raises(StoreError) as exc_info:
            await store.update("items", "nope", {"a": 1})

        assert exc_info.value.code == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_query_skips_documents_missing_field(self, store: MemoryStore):
        await store.set("items", "a", {"rank": 2})
        await store.set("items", "b", {"other": 1})
        await store.set("items", "c", {"rank": 1})

        docs = await store.query("items", QuerySpec().where("rank", ">", 0))

        assert [doc.id for doc in docs] == ["a", "c"]
        assert await store.count("items", QuerySpec()) == 3

    @pytest.mark.asyncio
    async def test_batch_cap(self, store: MemoryStore):
        batch = store.batch()
        for i in range(501):
            batch.set("items", str(i), {"i": i})

        with pytest.raises(StoreError) as exc_info:
            await batch.commit()

        assert exc_info.value.code == "INVALID_ARGUMENT"
        assert store.dump("items") == {}

    @pytest.mark.asyncio
    async def test_batch_is_atomic(self, store: MemoryStore):
        batch = store.batch()
        batch.set("items", "a", {"n": 1})
        batch.update("items", "missing", {"n": 2})

        with pytest.raises(StoreError):
            await batch.commit()

        assert store.dump("items") == {}
        assert store.commit_log == []

    @pytest.mark.asyncio
    async def test_batch_commits_once(self, store: MemoryStore):
        batch = store.batch()
        batch.set("items", "a", {"n": 1})
        await batch.commit()

        with pytest.raises(StoreError):
            await batch.commit()

    @pytest.mark.asyncio
    async def test_transaction_rejects_read_after_write(self, store: MemoryStore):
        async def fn(tx):
            tx.set("items", "a", {"n": 1})
            await tx.get("items", "a")

        with pytest.raises(StoreError) as exc_info:
            await store.run_transaction(fn)

        assert exc_info.value.code == "INVALID_ARGUMENT"
        assert store.dump("items") == {}

    @pytest.mark.asyncio
    async def test_transaction_commits_writes(self, store: MemoryStore):
        await store.set("items", "a", {"n": 1})

        async def fn(tx):
            doc = await tx.get("items", "a")
            tx.update("items", "a", {"n": doc.data["n"] + 1})
            tx.delete("items", "gone")
            return doc.data["n"]

        assert await store.run_transaction(fn) == 1
        assert store.dump("items")["a"] == {"n": 2}
        assert store.transaction_commits == [2]

    @pytest.mark.asyncio
    async def test_cleanup_is_idempotent(self, store: MemoryStore):
        async with store:
            pass
        await store.cleanup()
