"""Base type for instances of a schema descriptor."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar, Mapping, Optional

from strukt.errors import ConfigurationError, UnknownFieldError

if TYPE_CHECKING:  # pragma: no cover
    from strukt.schema import SchemaDescriptor


class Entity:
    """Immutable record holding one value per declared field.

    Construction applies field defaults but performs no casting or validation;
    use ``new``/``change`` for that.
    """

    __schema__: ClassVar[Optional["SchemaDescriptor"]] = None

    def __init__(self, **values: Any) -> None:
        schema = type(self)._require_schema()
        unknown = sorted(set(values) - set(schema.field_names))
        if unknown:
            raise UnknownFieldError(f"unknown fields for {schema.name}: {unknown}")
        for spec in schema.fields:
            value = values[spec.name] if spec.name in values else spec.default_value()
            object.__setattr__(self, spec.name, value)

    @classmethod
    def _require_schema(cls) -> "SchemaDescriptor":
        schema = cls.__dict__.get("__schema__")
        if schema is None:
            raise ConfigurationError(f"{cls.__name__} has no schema.")
        return schema

    @classmethod
    def _from_values(cls, values: Mapping[str, object]) -> "Entity":
        schema = cls._require_schema()
        instance = cls.__new__(cls)
        for spec in schema.fields:
            object.__setattr__(instance, spec.name, values.get(spec.name, spec.default_value()))
        return instance

    def field_values(self) -> dict[str, object]:
        """Shallow mapping of field name to value."""

        schema = type(self)._require_schema()
        return {spec.name: getattr(self, spec.name) for spec in schema.fields}

    def to_dict(self) -> dict[str, object]:
        """Field values with nested entities converted recursively."""

        return {name: _plain(value) for name, value in self.field_values().items()}

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __eq__(self, other: object) -> bool:
        if type(self) is not type(other):
            return NotImplemented
        return self.field_values() == other.field_values()  # type: ignore[attr-defined]

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        body = ", ".join(f"{name}={value!r}" for name, value in self.field_values().items())
        return f"{type(self).__name__}({body})"


def _plain(value: object) -> object:
    if isinstance(value, Entity):
        return value.to_dict()
    if isinstance(value, list):
        return [_plain(item) for item in value]
    return value
