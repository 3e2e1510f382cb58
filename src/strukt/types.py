"""Value types for fields and the primitive coercion substrate.

Primitive coercion is delegated to pydantic ``TypeAdapter`` instances, one per
primitive name, built lazily and shared for the lifetime of the process. The
compound types (arrays, typed maps, enums) and user-defined types are layered on
top of that.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from decimal import Decimal
from functools import lru_cache
from typing import Any, Mapping, Optional
from uuid import UUID
import base64
import binascii
import enum

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from strukt.errors import ConfigurationError


_PRIMITIVE_ANNOTATIONS: dict[str, Any] = {
    "id": int,
    "integer": int,
    "float": float,
    "decimal": Decimal,
    "boolean": bool,
    "string": str,
    "binary": bytes,
    "uuid": UUID,
    "binary_id": UUID,
    "map": dict[str, Any],
    "date": date,
    "time": time,
    "time_usec": time,
    "naive_datetime": datetime,
    "naive_datetime_usec": datetime,
    "utc_datetime": datetime,
    "utc_datetime_usec": datetime,
}

PRIMITIVE_TYPES = frozenset(_PRIMITIVE_ANNOTATIONS) | {"any"}

_NUMERIC = {"id", "integer", "float", "decimal"}
_TEMPORAL = {
    "date",
    "time",
    "time_usec",
    "naive_datetime",
    "naive_datetime_usec",
    "utc_datetime",
    "utc_datetime_usec",
}
_TRUNCATED = {"time", "naive_datetime", "utc_datetime"}
_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "id": (int,),
    "integer": (int,),
    "float": (int, float),
    "boolean": (bool,),
    "string": (str,),
    "uuid": (str,),
    "binary_id": (str,),
    "map": (dict,),
}

_BUILTIN_ALIASES: dict[object, str] = {
    str: "string",
    int: "integer",
    float: "float",
    bool: "boolean",
    bytes: "binary",
    dict: "map",
    Decimal: "decimal",
    date: "date",
    time: "time",
    UUID: "uuid",
}


class CastError(ValueError):
    """Raised by value types when a raw value cannot be coerced."""


@lru_cache(maxsize=None)
def _adapter(name: str) -> TypeAdapter:
    return TypeAdapter(_PRIMITIVE_ANNOTATIONS[name])


def _encode_binary(value: bytes, encoding: str) -> str:
    if encoding == "hex":
        return value.hex()
    return base64.b64encode(value).decode("ascii")


def _decode_binary(raw: object, encoding: str) -> bytes:
    if not isinstance(raw, str):
        raise CastError(f"expected {encoding} text for binary value")
    try:
        if encoding == "hex":
            return bytes.fromhex(raw)
        return base64.b64decode(raw.encode("ascii"), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CastError(f"invalid {encoding} payload") from exc


def _iso(value: date | time | datetime) -> str:
    text = value.isoformat()
    if isinstance(value, datetime) and value.tzinfo is not None and text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


class ValueType:
    """Declared value type of a scalar, array or map field."""

    name: str = "any"
    kind: str = "scalar"

    def cast(self, raw: object) -> object:
        return raw

    def dump(self, value: object, **options: object) -> object:
        return value

    def load(self, raw: object, **options: object) -> object:
        return self.cast(raw)

    def describe(self) -> object:
        return self.name

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.describe()!r})"

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and self.describe() == other.describe()  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        return hash((type(self).__name__, repr(self.describe())))


class PrimitiveType(ValueType):
    """Built-in primitive such as ``string`` or ``utc_datetime_usec``."""

    def __init__(self, name: str) -> None:
        if name not in PRIMITIVE_TYPES:
            raise ConfigurationError(f"Unknown primitive type: {name!r}")
        self.name = name
        self.kind = "map" if name == "map" else "scalar"

    def cast(self, raw: object) -> object:
        if raw is None or self.name == "any":
            return raw
        if self.name in _NUMERIC and isinstance(raw, bool):
            raise CastError(f"expected {self.name}, got boolean")
        try:
            value = _adapter(self.name).validate_python(raw)
        except PydanticValidationError as exc:
            raise CastError(f"cannot cast {raw!r} to {self.name}") from exc
        return self._normalize(value)

    def _normalize(self, value: Any) -> Any:
        name = self.name
        if name in ("uuid", "binary_id"):
            return str(value)
        if name.startswith("utc_datetime"):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            else:
                value = value.astimezone(timezone.utc)
        elif name.startswith("naive_datetime") and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        if name in _TRUNCATED:
            value = value.replace(microsecond=0)
        return value

    def dump(self, value: object, **options: object) -> object:
        if value is None:
            return None
        if self.name == "decimal":
            return str(value)
        if self.name == "binary":
            return _encode_binary(value, str(options.get("binary_encoding", "base64")))  # type: ignore[arg-type]
        if self.name in _TEMPORAL:
            return _iso(value)  # type: ignore[arg-type]
        return value

    def load(self, raw: object, **options: object) -> object:
        if raw is None:
            return None
        expected = _JSON_TYPES.get(self.name)
        if expected is not None and (
            not isinstance(raw, expected) or (isinstance(raw, bool) and bool not in expected)
        ):
            raise CastError(f"expected JSON {expected[-1].__name__} for {self.name}, got {type(raw).__name__}")
        if self.name == "binary":
            return _decode_binary(raw, str(options.get("binary_encoding", "base64")))
        if self.name in _TEMPORAL and not isinstance(raw, str):
            raise CastError(f"expected ISO 8601 text for {self.name}")
        if self.name == "decimal" and not isinstance(raw, (str, int)):
            raise CastError("expected decimal text")
        return self.cast(raw)


class ArrayType(ValueType):
    """Homogeneous list of an inner value type."""

    kind = "array"

    def __init__(self, inner: ValueType) -> None:
        self.inner = inner
        self.name = "array"

    def cast(self, raw: object) -> object:
        if raw is None:
            return None
        if not isinstance(raw, (list, tuple)):
            raise CastError("expected a list")
        return [self.inner.cast(item) for item in raw]

    def dump(self, value: object, **options: object) -> object:
        if value is None:
            return None
        return [self.inner.dump(item, **options) for item in value]  # type: ignore[union-attr]

    def load(self, raw: object, **options: object) -> object:
        if raw is None:
            return None
        if not isinstance(raw, list):
            raise CastError("expected a list")
        return [self.inner.load(item, **options) for item in raw]

    def describe(self) -> object:
        return ["array", self.inner.describe()]


class MapType(ValueType):
    """String-keyed mapping whose values share one value type."""

    kind = "map"

    def __init__(self, inner: ValueType) -> None:
        self.inner = inner
        self.name = "map"

    def _check(self, raw: object) -> Mapping[str, object]:
        if not isinstance(raw, Mapping):
            raise CastError("expected a map")
        for key in raw:
            if not isinstance(key, str):
                raise CastError("map keys must be strings")
        return raw

    def cast(self, raw: object) -> object:
        if raw is None:
            return None
        return {key: self.inner.cast(value) for key, value in self._check(raw).items()}

    def dump(self, value: object, **options: object) -> object:
        if value is None:
            return None
        return {key: self.inner.dump(item, **options) for key, item in value.items()}  # type: ignore[union-attr]

    def load(self, raw: object, **options: object) -> object:
        if raw is None:
            return None
        return {key: self.inner.load(value, **options) for key, value in self._check(raw).items()}

    def describe(self) -> object:
        return ["map", self.inner.describe()]


class EnumType(ValueType):
    """Closed set of symbolic labels, optionally backed by an ``enum.Enum``."""

    def __init__(
        self,
        values: Optional[list[str] | tuple[str, ...]] = None,
        *,
        enum_class: Optional[type[enum.Enum]] = None,
    ) -> None:
        self.name = "enum"
        self.enum_class = enum_class
        if enum_class is not None:
            labels = tuple(enum_class.__members__)
        else:
            if not isinstance(values, (list, tuple)) or not values:
                raise ConfigurationError("enum types require a non-empty list of values.")
            labels = tuple(values)
            for label in labels:
                if not isinstance(label, str) or not label:
                    raise ConfigurationError("enum values must be non-empty strings.")
            if len(set(labels)) != len(labels):
                raise ConfigurationError("enum values contain duplicates.")
        self.labels = labels

    def cast(self, raw: object) -> object:
        if raw is None:
            return None
        if self.enum_class is not None:
            if isinstance(raw, self.enum_class):
                return raw
            if isinstance(raw, str) and raw in self.enum_class.__members__:
                return self.enum_class[raw]
            try:
                return self.enum_class(raw)
            except ValueError as exc:
                raise CastError(f"{raw!r} is not a member of {self.enum_class.__name__}") from exc
        if isinstance(raw, enum.Enum):
            raw = raw.name
        if isinstance(raw, str) and raw in self.labels:
            return raw
        raise CastError(f"{raw!r} is not one of {list(self.labels)}")

    def dump(self, value: object, **options: object) -> object:
        if isinstance(value, enum.Enum):
            return value.name
        return value

    def load(self, raw: object, **options: object) -> object:
        if raw is not None and not isinstance(raw, str):
            raise CastError("expected an enum label")
        return self.cast(raw)

    def describe(self) -> object:
        return ["enum", list(self.labels)]


class CustomType(ValueType):
    """Base class for user-defined value types.

    Subclasses implement ``cast`` (raise ``ValueError`` on bad input) and may
    override ``dump``/``load`` for their JSON representation. A ``__shape__``
    method returning a type annotation makes the type discoverable by the shape
    generator.
    """

    name = "custom"

    def cast(self, raw: object) -> object:
        raise NotImplementedError

    def describe(self) -> object:
        return ["custom", type(self).__name__]


def resolve_type(declared: object, *, values: object = None) -> ValueType:
    """Resolve a declared value type into a ``ValueType``."""

    if isinstance(declared, ValueType):
        return declared
    if isinstance(declared, type) and issubclass(declared, CustomType):
        return declared()
    if isinstance(declared, type) and issubclass(declared, enum.Enum):
        return EnumType(enum_class=declared)
    if declared == "enum":
        if values is None:
            raise ConfigurationError("enum fields require the values option.")
        return EnumType(values)  # type: ignore[arg-type]
    if isinstance(declared, str):
        if declared not in PRIMITIVE_TYPES:
            raise ConfigurationError(f"Unknown value type: {declared!r}")
        return PrimitiveType(declared)
    if isinstance(declared, tuple) and len(declared) == 2:
        head, inner = declared
        if head == "array":
            return ArrayType(resolve_type(inner))
        if head == "map":
            return MapType(resolve_type(inner))
        if head == "enum":
            return EnumType(inner)  # type: ignore[arg-type]
    if isinstance(declared, type) and declared in _BUILTIN_ALIASES:
        return PrimitiveType(_BUILTIN_ALIASES[declared])
    raise ConfigurationError(f"Unsupported value type: {declared!r}")
