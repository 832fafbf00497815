"""Validation gate between callers and the store.

A repository holds one ``Validator``. ``PydanticValidator`` checks input
against a pydantic model; ``PassThroughValidator`` is used when no schema is
configured. Validators never touch the store.
"""

from __future__ import annotations

import typing as t
from pydantic import BaseModel, Field, create_model
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError, ValidationIssue


@t.runtime_checkable
class Validator(t.Protocol):
    def validate_for_create(self, data: t.Mapping[str, t.Any]) -> dict[str, t.Any]: ...

    def validate_for_update(self, data: t.Mapping[str, t.Any]) -> dict[str, t.Any]: ...


class PassThroughValidator:
    """Null validator: accepts any mapping unchanged."""

    def validate_for_create(self, data: t.Mapping[str, t.Any]) -> dict[str, t.Any]:
        return dict(data)

    def validate_for_update(self, data: t.Mapping[str, t.Any]) -> dict[str, t.Any]:
        return dict(data)


def _issues_from_pydantic(error: PydanticValidationError) -> list[ValidationIssue]:
    return [
        ValidationIssue(tuple(detail["loc"]), detail["msg"])
        for detail in error.errors()
    ]


def partial_model(model: type[BaseModel]) -> type[BaseModel]:
    """Build a subclass of ``model`` where every field may be omitted.

    Omitted fields default to None without being validated. A value that is
    given, None included, is checked against the original annotation and
    constraints, and the model's field and model validators are inherited.
    Model validators running in ``after`` mode see None for omitted fields.
    """
    fields: dict[str, t.Any] = {}
    for name, info in model.model_fields.items():
        annotation = info.annotation
        if info.metadata:
            annotation = t.Annotated[annotation, *info.metadata]
        fields[name] = (
            annotation,
            Field(default=None, alias=info.alias, validate_default=False),
        )
    return create_model(  # type: ignore[call-overload,no-any-return]
        f"{model.__name__}Update",
        __base__=model,
        **fields,
    )


class PydanticValidator:
    """Validate documents against a pydantic model.

    ``validate_for_create`` returns the full dump of the model, defaults
    included. ``validate_for_update`` returns only the fields present in the
    input, validated against ``update_model`` (an all-optional copy of
    ``model`` unless given). An explicit None is rejected for fields whose
    annotation does not allow it.
    """

    def __init__(
        self,
        model: type[BaseModel],
        update_model: type[BaseModel] | None = None,
    ) -> None:
        self.model = model
        self.update_model = update_model or partial_model(model)

    def validate_for_create(self, data: t.Mapping[str, t.Any]) -> dict[str, t.Any]:
        try:
            return self.model.model_validate(dict(data)).model_dump()
        except PydanticValidationError as e:
            raise ValidationError(
                _issues_from_pydantic(e),
                entity_type=self.model.__name__,
                operation="create",
            ) from e

    def validate_for_update(self, data: t.Mapping[str, t.Any]) -> dict[str, t.Any]:
        try:
            instance = self.update_model.model_validate(dict(data))
        except PydanticValidationError as e:
            raise ValidationError(
                _issues_from_pydantic(e),
                entity_type=self.model.__name__,
                operation="update",
            ) from e
        # Only top-level fields are filtered; nested models dump in full.
        dumped = instance.model_dump()
        return {key: dumped[key] for key in instance.model_fields_set}


def make_validator(
    model: type[BaseModel],
    update_model: type[BaseModel] | None = None,
) -> PydanticValidator:
    return PydanticValidator(model, update_model)
