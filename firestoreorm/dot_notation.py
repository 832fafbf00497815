"""Helpers for nested-field patches written as dotted paths.

``{"address.city": "Lisbon"}`` updates one nested field and leaves the rest
of ``address`` untouched, whereas ``{"address": {...}}`` replaces the whole
map. Values equal to ``UNSET`` are dropped from patches so the stored value
is preserved; use ``None`` to store an explicit null.
"""

import typing as t

from .errors import ValidationError, ValidationIssue

PATH_DELIMITER = "."


class _Unset:
    _instance: "_Unset | None" = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: t.Any = _Unset()


def is_dot_notation(key: str) -> bool:
    return PATH_DELIMITER in key


def has_dot_notation_keys(data: t.Mapping[str, t.Any]) -> bool:
    return any(is_dot_notation(key) for key in data)


def validate_dot_notation_path(key: str) -> None:
    """Raise ``ValidationError`` if ``key`` is not a well-formed field path."""
    if not key or not key.strip():
        raise ValidationError([ValidationIssue((key,), "Field path cannot be empty")])

    if key.startswith(PATH_DELIMITER) or key.endswith(PATH_DELIMITER):
        raise ValidationError(
            [ValidationIssue((key,), "Field path cannot start or end with a dot")],
        )

    if any(not part.strip() for part in key.split(PATH_DELIMITER)):
        raise ValidationError(
            [ValidationIssue((key,), "Field path segments cannot be empty")],
        )


def drop_unset(data: t.Mapping[str, t.Any]) -> dict[str, t.Any]:
    return {key: value for key, value in data.items() if value is not UNSET}


def _assign_path(target: dict[str, t.Any], key: str, value: t.Any) -> None:
    parts = key.split(PATH_DELIMITER)
    current = target
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


def expand_dot_notation(flat: t.Mapping[str, t.Any]) -> dict[str, t.Any]:
    """Turn ``{"a.b": 1, "c": 2}`` into ``{"a": {"b": 1}, "c": 2}``."""
    result: dict[str, t.Any] = {}
    for key, value in flat.items():
        if is_dot_notation(key):
            _assign_path(result, key, value)
        else:
            result[key] = value
    return result


def flatten_to_dot_notation(
    data: t.Mapping[str, t.Any],
    prefix: str = "",
) -> dict[str, t.Any]:
    """Inverse of ``expand_dot_notation``; only plain dicts are descended into."""
    result: dict[str, t.Any] = {}
    for key, value in data.items():
        full_key = f"{prefix}{PATH_DELIMITER}{key}" if prefix else key
        if type(value) is dict and value:
            result.update(flatten_to_dot_notation(value, full_key))
        else:
            result[full_key] = value
    return result


def _copy_maps(data: t.Mapping[str, t.Any]) -> dict[str, t.Any]:
    return {
        key: _copy_maps(value) if isinstance(value, dict) else value
        for key, value in data.items()
    }


def merge_dot_notation_update(
    existing: t.Mapping[str, t.Any],
    updates: t.Mapping[str, t.Any],
) -> dict[str, t.Any]:
    """Apply ``updates`` onto a copy of ``existing``.

    Plain keys replace top-level values wholesale, dotted keys replace a single
    nested value, ``UNSET`` values are skipped. ``existing`` is not mutated.
    """
    result = _copy_maps(existing)
    for key, value in updates.items():
        if value is UNSET:
            continue
        if is_dot_notation(key):
            _assign_path(result, key, value)
        else:
            result[key] = value
    return result


def get_root_fields(keys: t.Iterable[str]) -> list[str]:
    """Top-level field names touched by ``keys``, in first-seen order."""
    return list(dict.fromkeys(key.split(PATH_DELIMITER)[0] for key in keys))


def get_dot_notation_depth(key: str) -> int:
    return len(key.split(PATH_DELIMITER))


def get_path(data: t.Mapping[str, t.Any], key: str, default: t.Any = None) -> t.Any:
    current: t.Any = data
    for part in key.split(PATH_DELIMITER):
        if not isinstance(current, t.Mapping) or part not in current:
            return default
        current = current[part]
    return current
