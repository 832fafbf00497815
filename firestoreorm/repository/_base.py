"""Shared repository primitives."""

from datetime import UTC, datetime

import typing as t

# Reserved soft-delete marker: None means active, an ISO-8601 string deleted.
DELETED_AT_FIELD = "deletedAt"

ID = str
Entity = dict[str, t.Any]


def utc_timestamp() -> str:
    """Current UTC time as ``2024-01-31T12:00:00.000Z``."""
    return (
        datetime.now(UTC)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def without_id(data: t.Mapping[str, t.Any]) -> dict[str, t.Any]:
    return {key: value for key, value in data.items() if key != "id"}


def is_soft_deleted(data: t.Mapping[str, t.Any]) -> bool:
    return bool(data.get(DELETED_AT_FIELD))
