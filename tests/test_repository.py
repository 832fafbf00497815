"""Tests for Repository CRUD, soft delete and bulk operations."""

from unittest.mock import AsyncMock

import pytest

from firestoreorm import UNSET
from firestoreorm.adapters.store import MemoryStore
from firestoreorm.config import RepositorySettings
from firestoreorm.errors import EntityNotFoundError, ValidationError
from firestoreorm.repository import DELETED_AT_FIELD, HookEvent, Repository


def record(repository: Repository, *events: HookEvent) -> list:
    calls: list = []
    for event in events:
        repository.on(event, lambda payload, event=event: calls.append((event, payload)))
    return calls


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_stamps_and_persists(self, users: Repository, store: MemoryStore):
        user = await users.create({"name": "Ada", "email": "ada@example.com"})

        assert user["id"]
        assert user[DELETED_AT_FIELD] is None
        assert user["age"] == 0
        stored = store.dump("users")[user["id"]]
        assert "id" not in stored
        assert stored["name"] == "Ada"

    @pytest.mark.asyncio
    async def test_create_hooks(self, repo: Repository):
        calls = record(repo, HookEvent.BEFORE_CREATE, HookEvent.AFTER_CREATE)

        created = await repo.create({"name": "x"})

        (before_event, before), (after_event, after) = calls
        assert before_event == HookEvent.BEFORE_CREATE
        assert "id" not in before
        assert before[DELETED_AT_FIELD] is None
        assert after_event == HookEvent.AFTER_CREATE
        assert after == created

    @pytest.mark.asyncio
    async def test_invalid_create_writes_nothing(self, users: Repository, store: MemoryStore):
        with pytest.raises(ValidationError) as exc_info:
            await users.create({"name": "", "email": "a@b.c"})

        assert exc_info.value.issues[0].path == ("name",)
        assert store.dump("users") == {}

    @pytest.mark.asyncio
    async def test_before_hook_failure_aborts_write(self, repo: Repository, store: MemoryStore):
        repo.on(HookEvent.BEFORE_CREATE, AsyncMock(side_effect=RuntimeError("nope")))

        with pytest.raises(RuntimeError):
            await repo.create({"name": "x"})
        assert store.dump("items") == {}

    @pytest.mark.asyncio
    async def test_caller_id_is_ignored(self, repo: Repository):
        created = await repo.create({"id": "mine", "name": "x"})

        assert created["id"] != "mine"


class TestGetById:
    @pytest.mark.asyncio
    async def test_missing_returns_none(self, repo: Repository):
        assert await repo.get_by_id("nope") is None

    @pytest.mark.asyncio
    async def test_soft_deleted_hidden_unless_requested(self, repo: Repository):
        created = await repo.create({"name": "x"})
        await repo.soft_delete(created["id"])

        assert await repo.get_by_id(created["id"]) is None
        found = await repo.get_by_id(created["id"], include_deleted=True)
        assert found is not None
        assert found[DELETED_AT_FIELD]


class TestUpdate:
    @pytest.mark.asyncio
    async def test_update_merges_top_level(self, users: Repository, store: MemoryStore):
        user = await users.create(
            {"name": "Ada", "email": "ada@example.com", "address": {"city": "London", "zip": "N1"}},
        )

        updated = await users.update(user["id"], {"address": {"city": "Paris"}, "age": 36})

        assert updated["age"] == 36
        assert updated["name"] == "Ada"
        assert updated["address"] == {"street": "", "city": "Paris", "zip": None}
        assert store.dump("users")[user["id"]]["address"]["zip"] is None

    @pytest.mark.asyncio
    async def test_dot_notation_updates_one_nested_field(self, users: Repository, store: MemoryStore):
        user = await users.create(
            {"name": "Ada", "email": "a@b.c", "address": {"street": "Main", "city": "London"}},
        )

        updated = await users.update(user["id"], {"address.city": "Paris"})

        assert updated["address"] == {"street": "Main", "city": "Paris", "zip": None}
        assert store.dump("users")[user["id"]]["address"]["street"] == "Main"

    @pytest.mark.asyncio
    async def test_dot_notation_is_validated_after_merge(self, users: Repository):
        user = await users.create({"name": "Ada", "email": "a@b.c", "address": {"city": "London"}})

        with pytest.raises(ValidationError) as exc_info:
            await users.update(user["id"], {"address.city": 12})

        assert exc_info.value.issues[0].path[:2] == ("address", "city")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", [".city", "address.", "address..city", ""])
    async def test_malformed_path_rejected(self, repo: Repository, store: MemoryStore, key: str):
        created = await repo.create({"address": {"city": "x"}})

        with pytest.raises(ValidationError):
            await repo.update(created["id"], {key: "y"})
        assert store.dump("items")[created["id"]]["address"] == {"city": "x"}

    @pytest.mark.asyncio
    async def test_unset_values_are_dropped(self, repo: Repository, store: MemoryStore):
        created = await repo.create({"name": "x", "nickname": "nick"})

        updated = await repo.update(created["id"], {"nickname": UNSET, "name": "y"})

        assert updated["nickname"] == "nick"
        assert store.dump("items")[created["id"]]["nickname"] == "nick"

    @pytest.mark.asyncio
    async def test_none_stores_explicit_null(self, repo: Repository, store: MemoryStore):
        created = await repo.create({"name": "x", "nickname": "nick"})

        await repo.update(created["id"], {"nickname": None})

        assert store.dump("items")[created["id"]]["nickname"] is None

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, repo: Repository):
        with pytest.raises(EntityNotFoundError) as exc_info:
            await repo.update("missing", {"name": "x"})

        assert exc_info.value.entity_id == "missing"
        assert exc_info.value.operation == "update"

    @pytest.mark.asyncio
    async def test_update_hooks_receive_merged_draft(self, repo: Repository):
        created = await repo.create({"name": "x", "count": 1})
        calls = record(repo, HookEvent.BEFORE_UPDATE, HookEvent.AFTER_UPDATE)

        await repo.update(created["id"], {"count": 2})

        assert [payload for _, payload in calls] == [
            {"name": "x", "count": 2, DELETED_AT_FIELD: None, "id": created["id"]},
        ] * 2


class TestUpsert:
    @pytest.mark.asyncio
    async def test_creates_with_caller_id(self, repo: Repository, store: MemoryStore):
        calls = record(repo, HookEvent.BEFORE_CREATE)

        created = await repo.upsert("fixed", {"name": "x"})

        assert created["id"] == "fixed"
        assert calls[0][1]["id"] == "fixed"
        assert store.dump("items")["fixed"] == {"name": "x", DELETED_AT_FIELD: None}

    @pytest.mark.asyncio
    async def test_updates_existing(self, repo: Repository):
        await repo.upsert("fixed", {"name": "x", "count": 1})
        calls = record(repo, HookEvent.BEFORE_UPDATE, HookEvent.BEFORE_CREATE)

        updated = await repo.upsert("fixed", {"count": 2})

        assert updated == {"name": "x", "count": 2, DELETED_AT_FIELD: None, "id": "fixed"}
        assert [event for event, _ in calls] == [HookEvent.BEFORE_UPDATE]


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_removes_document(self, repo: Repository, store: MemoryStore):
        created = await repo.create({"name": "x"})
        calls = record(repo, HookEvent.BEFORE_DELETE, HookEvent.AFTER_DELETE)

        await repo.delete(created["id"])

        assert store.dump("items") == {}
        assert [payload for _, payload in calls] == [created, created]

    @pytest.mark.asyncio
    async def test_delete_missing_raises(self, repo: Repository):
        with pytest.raises(EntityNotFoundError):
            await repo.delete("missing")

    @pytest.mark.asyncio
    async def test_soft_delete_and_restore(self, repo: Repository, store: MemoryStore):
        created = await repo.create({"name": "x"})
        calls = record(
            repo,
            HookEvent.AFTER_SOFT_DELETE,
            HookEvent.AFTER_RESTORE,
        )

        deleted = await repo.soft_delete(created["id"])
        assert deleted[DELETED_AT_FIELD].endswith("Z")
        assert store.dump("items")[created["id"]][DELETED_AT_FIELD] == deleted[DELETED_AT_FIELD]

        restored = await repo.restore(created["id"])
        assert restored[DELETED_AT_FIELD] is None
        assert store.dump("items")[created["id"]][DELETED_AT_FIELD] is None

        assert calls[0][1][DELETED_AT_FIELD] == deleted[DELETED_AT_FIELD]
        assert calls[1][1][DELETED_AT_FIELD] is None

    @pytest.mark.asyncio
    async def test_restore_active_document_is_noop(self, repo: Repository, store: MemoryStore):
        created = await repo.create({"name": "x"})

        restored = await repo.restore(created["id"])

        assert restored == created
        assert store.dump("items")[created["id"]][DELETED_AT_FIELD] is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", ["soft_delete", "restore"])
    async def test_missing_target_raises(self, repo: Repository, operation: str):
        with pytest.raises(EntityNotFoundError):
            await getattr(repo, operation)("missing")


class TestBulkCreate:
    @pytest.mark.asyncio
    async def test_assigns_ids_before_hooks(self, repo: Repository, store: MemoryStore):
        calls = record(repo, HookEvent.BEFORE_BULK_CREATE, HookEvent.AFTER_BULK_CREATE)

        created = await repo.bulk_create([{"n": 1}, {"n": 2}])

        assert len(calls) == 2
        before = calls[0][1]
        assert [item["id"] for item in before] == [item["id"] for item in created]
        assert calls[1][1] == created
        assert set(store.dump("items")) == {item["id"] for item in created}
        assert store.commit_log == [2]

    @pytest.mark.asyncio
    async def test_invalid_item_aborts_everything(self, users: Repository, store: MemoryStore):
        hook = AsyncMock()
        users.on(HookEvent.BEFORE_BULK_CREATE, hook)

        with pytest.raises(ValidationError) as exc_info:
            await users.bulk_create(
                [
                    {"name": "Ada", "email": "a@b.c"},
                    {"name": "Bob"},
                ],
            )

        assert exc_info.value.issues[0].path == (1, "email")
        assert store.dump("users") == {}
        assert store.commit_log == []
        hook.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_large_bulk_create_is_chunked(self, store: MemoryStore):
        repo = Repository(store, "items", settings=RepositorySettings())

        created = await repo.bulk_create([{"n": i} for i in range(1200)])

        assert len(created) == 1200
        assert store.commit_log == [500, 500, 200]

    @pytest.mark.asyncio
    async def test_empty_input(self, repo: Repository, store: MemoryStore):
        assert await repo.bulk_create([]) == []
        assert store.commit_log == []


class TestBulkUpdate:
    @pytest.mark.asyncio
    async def test_updates_all(self, repo: Repository, store: MemoryStore):
        a = await repo.create({"n": 1, "tag": "a"})
        b = await repo.create({"n": 2, "tag": "b"})
        calls = record(repo, HookEvent.BEFORE_BULK_UPDATE, HookEvent.AFTER_BULK_UPDATE)
        updates = [{"id": a["id"], "data": {"n": 10}}, {"id": b["id"], "data": {"n": 20}}]

        results = await repo.bulk_update(updates)

        assert [r["n"] for r in results] == [10, 20]
        assert [r["tag"] for r in results] == ["a", "b"]
        assert calls[0][1] == updates
        assert calls[1][1] == updates
        assert store.dump("items")[b["id"]]["n"] == 20

    @pytest.mark.asyncio
    async def test_any_missing_fails_without_writes(self, repo: Repository, store: MemoryStore):
        a = await repo.create({"n": 1})

        with pytest.raises(EntityNotFoundError):
            await repo.bulk_update(
                [{"id": a["id"], "data": {"n": 5}}, {"id": "missing", "data": {"n": 6}}],
            )

        assert store.dump("items")[a["id"]]["n"] == 1
        assert store.commit_log == []

    @pytest.mark.asyncio
    async def test_invalid_item_fails_without_writes(self, users: Repository, store: MemoryStore):
        ada = await users.create({"name": "Ada", "email": "ada@example.com", "age": 36})
        bob = await users.create({"name": "Bob", "email": "bob@example.com", "age": 40})
        hook = AsyncMock()
        users.on(HookEvent.BEFORE_BULK_UPDATE, hook)

        with pytest.raises(ValidationError) as exc_info:
            await users.bulk_update(
                [
                    {"id": ada["id"], "data": {"age": 37}},
                    {"id": bob["id"], "data": {"age": -1}},
                ],
            )

        assert exc_info.value.issues[0].path[:2] == (1, "data")
        assert exc_info.value.operation == "bulk_update"
        assert store.commit_log == []
        stored = store.dump("users")
        assert stored[ada["id"]]["age"] == 36
        assert stored[bob["id"]]["age"] == 40
        hook.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_explicit_null_on_required_field(self, users: Repository, store: MemoryStore):
        ada = await users.create({"name": "Ada", "email": "ada@example.com"})

        with pytest.raises(ValidationError):
            await users.bulk_update([{"id": ada["id"], "data": {"name": None}}])

        assert store.dump("users")[ada["id"]]["name"] == "Ada"


class TestBulkDelete:
    @pytest.mark.asyncio
    async def test_skips_missing_ids(self, repo: Repository, store: MemoryStore):
        first = await repo.create({"n": 1})
        second = await repo.create({"n": 2})
        calls = record(repo, HookEvent.BEFORE_BULK_DELETE, HookEvent.AFTER_BULK_DELETE)

        removed = await repo.bulk_delete([first["id"], "missing", second["id"]])

        assert removed == 2
        assert store.dump("items") == {}
        for _, payload in calls:
            assert payload["ids"] == [first["id"], second["id"]]
            assert payload["documents"] == [first, second]

    @pytest.mark.asyncio
    async def test_nothing_to_delete(self, repo: Repository):
        hook = AsyncMock()
        repo.on(HookEvent.BEFORE_BULK_DELETE, hook)

        assert await repo.bulk_delete(["missing"]) == 0
        hook.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bulk_soft_delete_stamp_shared(self, repo: Repository, store: MemoryStore):
        first = await repo.create({"n": 1})
        second = await repo.create({"n": 2})
        calls = record(repo, HookEvent.AFTER_BULK_SOFT_DELETE)

        assert await repo.bulk_soft_delete([first["id"], second["id"], "missing"]) == 2

        payload = calls[0][1]
        stored = store.dump("items")
        assert stored[first["id"]][DELETED_AT_FIELD] == payload["deletedAt"]
        assert stored[second["id"]][DELETED_AT_FIELD] == payload["deletedAt"]
        assert payload["ids"] == [first["id"], second["id"]]

    @pytest.mark.asyncio
    async def test_restore_all_and_purge(self, repo: Repository, store: MemoryStore):
        keep = await repo.create({"n": 1})
        gone = [await repo.create({"n": i}) for i in range(3)]
        await repo.bulk_soft_delete([doc["id"] for doc in gone])
        calls = record(repo, HookEvent.BEFORE_BULK_RESTORE, HookEvent.AFTER_BULK_RESTORE)

        assert await repo.restore_all() == 3
        assert len(calls) == 2
        assert sorted(calls[0][1]["ids"]) == sorted(doc["id"] for doc in gone)
        assert await repo.restore_all() == 0

        await repo.soft_delete(gone[0]["id"])
        delete_hook = AsyncMock()
        repo.on(HookEvent.BEFORE_BULK_DELETE, delete_hook)

        assert await repo.purge_delete() == 1
        assert set(store.dump("items")) == {keep["id"], gone[1]["id"], gone[2]["id"]}
        delete_hook.assert_not_awaited()


class TestReads:
    @pytest.mark.asyncio
    async def test_find_by_field_excludes_soft_deleted(self, repo: Repository):
        a = await repo.create({"status": "open"})
        b = await repo.create({"status": "open"})
        await repo.create({"status": "closed"})
        await repo.soft_delete(b["id"])

        found = await repo.find_by_field("status", "open")

        assert [item["id"] for item in found] == [a["id"]]

    @pytest.mark.asyncio
    async def test_list_paginates_by_id(self, repo: Repository):
        for i in range(5):
            await repo.upsert(f"doc{i}", {"n": i})

        first = await repo.list(limit=2)
        second = await repo.list(limit=2, start_after_id=first[-1]["id"])

        assert [item["id"] for item in first] == ["doc0", "doc1"]
        assert [item["id"] for item in second] == ["doc2", "doc3"]

    @pytest.mark.asyncio
    async def test_list_default_page_size(self, repo: Repository):
        await repo.bulk_create([{"n": i} for i in range(15)])

        assert len(await repo.list()) == 10

    @pytest.mark.asyncio
    async def test_subcollection(self, repo: Repository, store: MemoryStore):
        parent = await repo.create({"name": "parent"})
        children = repo.subcollection(parent["id"], "children")

        child = await children.create({"name": "child"})

        assert children.collection == f"items/{parent['id']}/children"
        assert child["id"] in store.dump(children.collection)
        assert await repo.get_by_id(child["id"]) is None
