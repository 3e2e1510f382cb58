"""Canonical JSON encoding for entities of JSON-enabled schemas."""

from __future__ import annotations

from typing import Any, Mapping, Optional
import json

from strukt.entity import Entity
from strukt.errors import ConfigurationError, DecodeError
from strukt.schema import SchemaDescriptor, schema_of


def _json_schema(target: object) -> SchemaDescriptor:
    schema = schema_of(target)
    if not schema.json:
        raise ConfigurationError(f"{schema.name} does not enable the JSON codec (json=True).")
    return schema


def _options(schema: SchemaDescriptor) -> dict[str, object]:
    return {"binary_encoding": schema.config.binary_encoding}


def _join(path: Optional[str], key: object) -> str:
    return str(key) if path is None else f"{path}.{key}"


def _dump_fields(schema: SchemaDescriptor, entity: Entity, options: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for spec in schema.fields:
        if spec.virtual:
            continue
        value = getattr(entity, spec.name)
        if spec.kind == "embed_one":
            out[spec.name] = None if value is None else _dump_fields(spec.embed, value, options)  # type: ignore[arg-type]
        elif spec.kind == "embed_many":
            out[spec.name] = [_dump_fields(spec.embed, item, options) for item in value or []]  # type: ignore[arg-type]
        else:
            out[spec.name] = spec.value_type.dump(value, **options)  # type: ignore[union-attr]
    return out


def dump_dict(entity: Entity) -> dict[str, Any]:
    """JSON-ready mapping for an entity."""

    schema = _json_schema(entity)
    return _dump_fields(schema, entity, _options(schema))


def dump(entity: Entity, *, indent: Optional[int] = None) -> str:
    return json.dumps(dump_dict(entity), indent=indent)


def _load_fields(
    schema: SchemaDescriptor,
    data: object,
    options: Mapping[str, object],
    path: Optional[str],
) -> Entity:
    if not isinstance(data, dict):
        raise DecodeError(f"expected an object for {schema.name}, got {type(data).__name__}", path=path)
    known = {spec.name for spec in schema.fields if not spec.virtual}
    unknown = sorted(key for key in data if key not in known)
    if unknown:
        raise DecodeError(f"unknown keys for {schema.name}: {unknown}", path=path)
    values: dict[str, object] = {}
    for spec in schema.fields:
        if spec.name not in data:
            continue
        raw = data[spec.name]
        here = _join(path, spec.name)
        if spec.kind == "embed_one":
            values[spec.name] = None if raw is None else _load_fields(spec.embed, raw, options, here)  # type: ignore[arg-type]
        elif spec.kind == "embed_many":
            if raw is None:
                raw = []
            if not isinstance(raw, list):
                raise DecodeError(f"expected a list, got {type(raw).__name__}", path=here)
            values[spec.name] = [
                _load_fields(spec.embed, item, options, _join(here, index))  # type: ignore[arg-type]
                for index, item in enumerate(raw)
            ]
        else:
            try:
                values[spec.name] = spec.value_type.load(raw, **options)  # type: ignore[union-attr]
            except ValueError as exc:
                raise DecodeError(str(exc), path=here) from exc
    return schema.entity_type._from_values(values)  # type: ignore[union-attr]


def load_dict(target: object, data: object) -> Entity:
    """Decode a parsed JSON object; the first malformed value aborts with ``DecodeError``."""

    schema = _json_schema(target)
    return _load_fields(schema, data, _options(schema), None)


def load(target: object, text: str | bytes) -> Entity:
    schema = _json_schema(target)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"malformed JSON: {exc.msg} at position {exc.pos}") from exc
    return _load_fields(schema, data, _options(schema), None)
