"""Structural shape of a schema: type annotations, text, pydantic model, JSON schema."""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Literal, Optional, Union, get_args, get_origin
import logging
import types as pytypes

from pydantic import BaseModel, ConfigDict, create_model

from strukt.field import FieldSpec
from strukt.schema import SchemaDescriptor, schema_of
from strukt.types import ArrayType, CustomType, EnumType, MapType, ValueType


logger = logging.getLogger(__name__)

PRIMITIVE_SHAPES: dict[str, Any] = {
    "id": int,
    "integer": int,
    "float": float,
    "decimal": Decimal,
    "boolean": bool,
    "string": str,
    "binary": bytes,
    "uuid": str,
    "binary_id": str,
    "map": dict[str, Any],
    "date": date,
    "time": time,
    "time_usec": time,
    "naive_datetime": datetime,
    "naive_datetime_usec": datetime,
    "utc_datetime": datetime,
    "utc_datetime_usec": datetime,
    "any": Any,
}


def value_shape(value_type: ValueType) -> Any:
    """Annotation for one value type."""

    if isinstance(value_type, ArrayType):
        return list[value_shape(value_type.inner)]  # type: ignore[misc]
    if isinstance(value_type, MapType):
        return dict[str, value_shape(value_type.inner)]  # type: ignore[misc]
    if isinstance(value_type, EnumType):
        if value_type.enum_class is not None:
            return value_type.enum_class
        return Literal[value_type.labels]  # type: ignore[valid-type]
    if isinstance(value_type, CustomType):
        probe = getattr(value_type, "__shape__", None)
        if probe is None:
            return Any
        try:
            return probe()
        except Exception:
            logger.debug("shape probe failed for %s", type(value_type).__name__, exc_info=True)
            return Any
    return PRIMITIVE_SHAPES.get(value_type.name, Any)


def is_nilable(spec: FieldSpec) -> bool:
    if spec.kind == "embed_many":
        return False
    if spec.rule("required"):
        return False
    return spec.default is None and spec.autogenerate is None


def _field_shape(spec: FieldSpec, embed_shape: Any) -> Any:
    if spec.kind == "embed_many":
        return list[embed_shape]  # type: ignore[valid-type]
    if spec.kind == "embed_one":
        base = embed_shape
    else:
        base = value_shape(spec.value_type)  # type: ignore[arg-type]
    if base is not Any and is_nilable(spec):
        return Optional[base]
    return base


def field_shapes(target: object) -> dict[str, Any]:
    """Field name to annotation; embeds refer to their entity types."""

    schema = schema_of(target)
    return {
        spec.name: _field_shape(spec, spec.embed.entity_type if spec.embed is not None else None)
        for spec in schema.fields
    }


def render_annotation(annotation: Any) -> str:
    if annotation is Any:
        return "Any"
    if annotation is type(None):
        return "None"
    origin = get_origin(annotation)
    args = get_args(annotation)
    if origin is Union or origin is pytypes.UnionType:
        return " | ".join(render_annotation(arg) for arg in args)
    if origin is Literal:
        return f"Literal[{', '.join(repr(arg) for arg in args)}]"
    if origin is not None:
        name = getattr(origin, "__name__", str(origin))
        return f"{name}[{', '.join(render_annotation(arg) for arg in args)}]"
    return getattr(annotation, "__name__", repr(annotation))


def describe_shape(target: object) -> str:
    """Render the shape as text, one field per line."""

    schema = schema_of(target)
    lines = [f"{schema.name}("]
    for name, annotation in field_shapes(schema).items():
        lines.append(f"    {name}: {render_annotation(annotation)},")
    lines.append(")")
    return "\n".join(lines)


def build_shape_model(target: object, *, _models: Optional[dict[int, type[BaseModel]]] = None) -> type[BaseModel]:
    """Pydantic model mirroring the schema's fields, embeds as nested models."""

    schema = schema_of(target)
    models = {} if _models is None else _models
    cached = models.get(id(schema))
    if cached is not None:
        return cached
    definitions: dict[str, Any] = {}
    for spec in schema.fields:
        embed_model = build_shape_model(spec.embed, _models=models) if spec.embed is not None else None
        annotation = _field_shape(spec, embed_model)
        if spec.kind == "embed_many":
            definitions[spec.name] = (annotation, [])
        elif spec.default is not None:
            definitions[spec.name] = (annotation, spec.default)
        elif is_nilable(spec) or annotation is Any:
            definitions[spec.name] = (annotation, None)
        else:
            definitions[spec.name] = (annotation, ...)
    model = create_model(  # type: ignore[call-overload]
        schema.name,
        __config__=ConfigDict(arbitrary_types_allowed=True, protected_namespaces=()),
        **definitions,
    )
    models[id(schema)] = model
    return model


def build_json_schema(target: object) -> dict[str, Any]:
    return build_shape_model(target).model_json_schema()
