"""Lifecycle hooks fired around repository writes."""

import inspect
from collections import defaultdict
from enum import StrEnum

import typing as t


class HookEvent(StrEnum):
    BEFORE_CREATE = "before_create"
    AFTER_CREATE = "after_create"
    BEFORE_UPDATE = "before_update"
    AFTER_UPDATE = "after_update"
    BEFORE_DELETE = "before_delete"
    AFTER_DELETE = "after_delete"
    BEFORE_SOFT_DELETE = "before_soft_delete"
    AFTER_SOFT_DELETE = "after_soft_delete"
    BEFORE_RESTORE = "before_restore"
    AFTER_RESTORE = "after_restore"
    BEFORE_BULK_CREATE = "before_bulk_create"
    AFTER_BULK_CREATE = "after_bulk_create"
    BEFORE_BULK_UPDATE = "before_bulk_update"
    AFTER_BULK_UPDATE = "after_bulk_update"
    BEFORE_BULK_DELETE = "before_bulk_delete"
    AFTER_BULK_DELETE = "after_bulk_delete"
    BEFORE_BULK_SOFT_DELETE = "before_bulk_soft_delete"
    AFTER_BULK_SOFT_DELETE = "after_bulk_soft_delete"
    BEFORE_BULK_RESTORE = "before_bulk_restore"
    AFTER_BULK_RESTORE = "after_bulk_restore"

    @property
    def is_bulk(self) -> bool:
        return "_bulk_" in self.value


class BulkUpdateItem(t.TypedDict):
    id: str
    data: dict[str, t.Any]


class BulkDeletePayload(t.TypedDict):
    ids: list[str]
    documents: list[dict[str, t.Any]]


class BulkSoftDeletePayload(BulkDeletePayload):
    deletedAt: str


# Payload passed to callbacks, by event:
#   single events            -> entity dict
#   *_bulk_create            -> list of entity dicts
#   *_bulk_update            -> list[BulkUpdateItem]
#   *_bulk_delete / restore  -> BulkDeletePayload
#   *_bulk_soft_delete       -> BulkSoftDeletePayload
HookPayload = (
    dict[str, t.Any]
    | list[dict[str, t.Any]]
    | list[BulkUpdateItem]
    | BulkDeletePayload
    | BulkSoftDeletePayload
)
HookCallback = t.Callable[[t.Any], t.Awaitable[None] | None]


class HookRegistry:
    """Ordered callbacks per ``HookEvent``.

    Callbacks run sequentially in registration order and may be sync or
    async. Exceptions are not caught here.
    """

    def __init__(self) -> None:
        self._hooks: defaultdict[HookEvent, list[HookCallback]] = defaultdict(list)

    def register(self, event: HookEvent | str, callback: HookCallback) -> None:
        self._hooks[HookEvent(event)].append(callback)

    def count(self, event: HookEvent | str) -> int:
        return len(self._hooks.get(HookEvent(event), []))

    def clear(self, event: HookEvent | str | None = None) -> None:
        if event is None:
            self._hooks.clear()
        else:
            self._hooks.pop(HookEvent(event), None)

    async def fire(self, event: HookEvent, payload: HookPayload) -> None:
        for callback in list(self._hooks.get(event, ())):
            result = callback(payload)
            if inspect.isawaitable(result):
                await result
