"""Schema descriptors: compiled, immutable metadata for one entity type."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional
import logging

from strukt.config import StruktConfig, load_config
from strukt.entity import Entity
from strukt.errors import ConfigurationError, UnknownFieldError
from strukt.field import EmbedResolver, FieldDecl, FieldSpec, compile_fields
from strukt.rules import CompiledRule, compile_rule_table
from strukt.validator import Pipeline, compile_pipeline


logger = logging.getLogger(__name__)

SYNTHETIC_KEY = "uuid"
CAST_KINDS = ("scalar", "array", "map")
EMBED_KINDS = ("embed_one", "embed_many")


@dataclass(frozen=True, eq=False)
class SchemaDescriptor:
    """Compiled metadata for one entity type.

    Attributes:
        name: Entity type name.
        fields: FieldSpecs in declaration order (synthetic key first).
        primary_key: The resolved primary key field.
        cast_fields: Names of scalar/array/map fields taken from params.
        embed_fields: Names of embed fields.
        rules: Compiled inline rules in field order.
        pipeline: Compiled validator pipeline.
        json: Whether the JSON codec is enabled.
        config: Resolved library configuration.
        entity_type: Entity subclass built by ``commit``.
    """

    name: str
    fields: tuple[FieldSpec, ...]
    primary_key: FieldSpec
    cast_fields: tuple[str, ...]
    embed_fields: tuple[str, ...]
    rules: tuple[CompiledRule, ...]
    pipeline: Pipeline
    json: bool
    config: StruktConfig
    entity_type: Optional[type[Entity]] = None

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(spec.name for spec in self.fields)

    def has_field(self, name: str) -> bool:
        return any(spec.name == name for spec in self.fields)

    def field(self, name: str) -> FieldSpec:
        for spec in self.fields:
            if spec.name == name:
                return spec
        raise UnknownFieldError(f"unknown field {name!r} for {self.name}")

    def defaults(self) -> dict[str, object]:
        return {spec.name: spec.default_value() for spec in self.fields}

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "primary_key": self.primary_key.name,
            "fields": [spec.to_dict() for spec in self.fields],
            "cast_fields": list(self.cast_fields),
            "embed_fields": list(self.embed_fields),
            "json": self.json,
            "validators": [step.name for step in self.pipeline.steps],
        }

    def __repr__(self) -> str:
        return f"SchemaDescriptor({self.name!r}, fields={list(self.field_names)!r})"


def _synthetic_key() -> FieldSpec:
    (spec,) = compile_fields([("field", SYNTHETIC_KEY, "uuid", {"primary_key": True, "autogenerate": True})])
    return spec


def _resolve_primary_key(
    name: str,
    specs: tuple[FieldSpec, ...],
    schema_key: object,
) -> tuple[tuple[FieldSpec, ...], FieldSpec, bool]:
    declared = [spec for spec in specs if spec.primary_key]
    if len(declared) > 1:
        raise ConfigurationError(
            f"{name} declares more than one primary key: {[spec.name for spec in declared]}"
        )
    if declared:
        if schema_key is not None:
            logger.debug("%s: field-level primary key %s overrides the schema-level one", name, declared[0].name)
        return specs, declared[0], False
    if schema_key is not None:
        if not isinstance(schema_key, (tuple, list)) or len(schema_key) not in (2, 3):
            raise ConfigurationError(f"primary_key must be (name, type[, options]), got: {schema_key!r}")
        options = dict(schema_key[2]) if len(schema_key) == 3 else {}
        options["primary_key"] = True
        (key,) = compile_fields([("field", schema_key[0], schema_key[1], options)])
        if any(spec.name == key.name for spec in specs):
            raise ConfigurationError(f"{name}: primary key {key.name!r} collides with a declared field")
        logger.debug("%s: schema-level primary key %s", name, key.name)
        return (key, *specs), key, False
    if any(spec.name == SYNTHETIC_KEY for spec in specs):
        raise ConfigurationError(
            f"{name} declares a {SYNTHETIC_KEY!r} field without marking a primary key"
        )
    key = _synthetic_key()
    logger.debug("%s: injecting synthetic primary key %s", name, key.name)
    return (key, *specs), key, True


def inline_resolver(config: StruktConfig) -> EmbedResolver:
    """Resolver compiling inline embed field lists into plain descriptors."""

    def resolve(type_name: str, fields: tuple[FieldDecl, ...]) -> SchemaDescriptor:
        return build_descriptor(type_name, fields, config=config)

    return resolve


def build_descriptor(
    name: str,
    declarations: Iterable[object],
    *,
    primary_key: object = None,
    json: bool = False,
    validators: Iterable[object] = (),
    config: Optional[StruktConfig] = None,
    timestamps_opts: Optional[Mapping[str, object]] = None,
    entity_type: Optional[type[Entity]] = None,
    resolve_embed: Optional[EmbedResolver] = None,
    on_replace: Optional[str] = None,
    binary_encoding: Optional[str] = None,
) -> SchemaDescriptor:
    """Compile declarations, rules and validators into a ``SchemaDescriptor``."""

    if not isinstance(name, str) or not name:
        raise ConfigurationError("Schema name must be a non-empty string.")
    resolved = (config or load_config()).merge(on_replace=on_replace, binary_encoding=binary_encoding)
    stamp_defaults = {"type": resolved.timestamp_type, **(timestamps_opts or {})}
    specs = compile_fields(
        declarations,
        resolve_embed=resolve_embed or inline_resolver(resolved),
        timestamps_opts=stamp_defaults,
    )
    specs, key, synthetic = _resolve_primary_key(name, specs, primary_key)
    cast_fields = tuple(
        spec.name for spec in specs if spec.kind in CAST_KINDS and not (synthetic and spec is key)
    )
    descriptor = SchemaDescriptor(
        name=name,
        fields=specs,
        primary_key=key,
        cast_fields=cast_fields,
        embed_fields=tuple(spec.name for spec in specs if spec.kind in EMBED_KINDS),
        rules=compile_rule_table(specs),
        pipeline=compile_pipeline(validators),
        json=bool(json),
        config=resolved,
    )
    if entity_type is None:
        entity_type = type(name, (Entity,), {"__module__": __name__, "__qualname__": name})
    elif not (isinstance(entity_type, type) and issubclass(entity_type, Entity)):
        raise ConfigurationError(f"entity_type must be an Entity subclass, got: {entity_type!r}")
    object.__setattr__(descriptor, "entity_type", entity_type)
    entity_type.__schema__ = descriptor
    logger.debug(
        "built schema %s: %d fields, %d rules, %d validators",
        name,
        len(specs),
        len(descriptor.rules),
        len(descriptor.pipeline),
    )
    return descriptor


def schema_of(target: object) -> SchemaDescriptor:
    """Descriptor of a descriptor, an entity type or an entity instance."""

    if isinstance(target, SchemaDescriptor):
        return target
    schema = getattr(target, "__schema__", None)
    if isinstance(schema, SchemaDescriptor):
        return schema
    raise ConfigurationError(f"{target!r} has no schema.")
