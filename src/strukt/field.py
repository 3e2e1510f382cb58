"""Field declarations and the FieldSpec compiler."""

from __future__ import annotations

from dataclasses import dataclass, field as dc_field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Iterable, Literal, Mapping, Optional
import copy
import keyword
import logging
import uuid

from strukt.config import check_on_replace
from strukt.errors import ConfigurationError
from strukt.types import EnumType, ValueType, resolve_type

if TYPE_CHECKING:  # pragma: no cover
    from strukt.schema import SchemaDescriptor


logger = logging.getLogger(__name__)

FieldKind = Literal["scalar", "array", "map", "embed_one", "embed_many", "timestamp"]
EmbedResolver = Callable[[str, tuple["FieldDecl", ...]], "SchemaDescriptor"]

DECLARATION_KINDS = ("field", "embeds_one", "embeds_many", "timestamps")
VALIDATION_OPTIONS = (
    "required",
    "length",
    "format",
    "one_of",
    "none_of",
    "subset_of",
    "range",
    "number",
)
RESERVED_NAMES = frozenset({"to_dict", "to_json", "field_values"})

_FIELD_OPTIONS = frozenset({"default", "primary_key", "source", "virtual", "autogenerate", "values"})
_EMBED_OPTIONS = frozenset({"source", "on_replace"})
_TIMESTAMP_OPTIONS = frozenset({"type", "inserted_at", "updated_at", "autogenerate"})


@dataclass(frozen=True)
class FieldDecl:
    """Canonical declaration of one entry in a field list."""

    kind: str
    name: Optional[str] = None
    value_type: object = None
    options: Mapping[str, object] = dc_field(default_factory=dict)
    fields: Optional[tuple["FieldDecl", ...]] = None


def field(name: str, value_type: object = "string", **options: object) -> FieldDecl:
    """Declare a plain field, e.g. ``field("age", "integer", number={"greater_than": 0})``."""

    return FieldDecl("field", name, value_type, dict(options))


def embeds_one(
    name: str,
    value_type: object,
    fields: Optional[Iterable[object]] = None,
    **options: object,
) -> FieldDecl:
    """Declare a single embedded entity, inline when ``fields`` is given."""

    return FieldDecl("embeds_one", name, value_type, dict(options), _inline(fields))


def embeds_many(
    name: str,
    value_type: object,
    fields: Optional[Iterable[object]] = None,
    **options: object,
) -> FieldDecl:
    """Declare a list of embedded entities, inline when ``fields`` is given."""

    return FieldDecl("embeds_many", name, value_type, dict(options), _inline(fields))


def timestamps(**options: object) -> FieldDecl:
    """Declare the ``inserted_at``/``updated_at`` pair."""

    return FieldDecl("timestamps", options=dict(options))


def _inline(fields: Optional[Iterable[object]]) -> Optional[tuple[FieldDecl, ...]]:
    if fields is None:
        return None
    return tuple(to_decl(item) for item in fields)


@dataclass(frozen=True)
class FieldSpec:
    """Compiled metadata for one field of an entity type."""

    name: str
    kind: FieldKind
    value_type: Optional[ValueType] = None
    default: object = None
    primary_key: bool = False
    source: Optional[str] = None
    virtual: bool = False
    autogenerate: Optional[Callable[[], object]] = None
    on_update: bool = False
    validations: tuple[tuple[str, object], ...] = ()
    embed: Optional["SchemaDescriptor"] = None
    on_replace: Optional[str] = None

    @property
    def is_embed(self) -> bool:
        return self.kind in ("embed_one", "embed_many")

    def default_value(self) -> object:
        if self.kind == "embed_many":
            return []
        return copy.deepcopy(self.default)

    def rule(self, name: str) -> object:
        for rule_name, spec in self.validations:
            if rule_name == name:
                return spec
        return None

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {"name": self.name, "kind": self.kind}
        if self.value_type is not None:
            data["value_type"] = self.value_type.describe()
        if self.embed is not None:
            data["embed"] = self.embed.name
        if self.primary_key:
            data["primary_key"] = True
        if self.source is not None:
            data["source"] = self.source
        if self.virtual:
            data["virtual"] = True
        if self.default is not None:
            data["default"] = self.default
        if self.validations:
            data["validations"] = [name for name, _ in self.validations]
        return data


def to_decl(item: object) -> FieldDecl:
    """Normalize a ``FieldDecl`` or a plain ``(kind, name, type[, options])`` tuple."""

    if isinstance(item, FieldDecl):
        return item
    if isinstance(item, (tuple, list)) and item:
        kind = item[0]
        if kind == "timestamps":
            options = item[1] if len(item) > 1 else {}
            if not isinstance(options, Mapping):
                raise ConfigurationError("timestamps options must be a mapping.")
            return FieldDecl("timestamps", options=dict(options))
        if len(item) in (3, 4):
            options = item[3] if len(item) == 4 else {}
            if not isinstance(options, Mapping):
                raise ConfigurationError(f"options for {item[1]!r} must be a mapping.")
            options = dict(options)
            fields = options.pop("fields", None)
            return FieldDecl(str(kind), item[1], item[2], options, _inline(fields))
        raise ConfigurationError(
            f"unsupported use of {kind}/{len(item) - 1} in a field list, "
            f"only {', '.join(DECLARATION_KINDS)} are permitted"
        )
    raise ConfigurationError(f"Unsupported field declaration: {item!r}")


def _check_name(name: object) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ConfigurationError("Field name must be a non-empty string.")
    name = name.strip()
    if not name.isidentifier() or keyword.iskeyword(name) or name.startswith("_"):
        raise ConfigurationError(f"Field name must be a public identifier: {name!r}")
    if name in RESERVED_NAMES:
        raise ConfigurationError(f"Field name is reserved: {name!r}")
    return name


def _check_options(decl: FieldDecl, allowed: frozenset[str]) -> None:
    unknown = sorted(set(decl.options) - allowed - set(VALIDATION_OPTIONS))
    if unknown:
        raise ConfigurationError(f"invalid options for {decl.kind} {decl.name!r}: {unknown}")


def _split_validations(options: Mapping[str, object]) -> tuple[tuple[str, object], ...]:
    return tuple((key, value) for key, value in options.items() if key in VALIDATION_OPTIONS)


def _autogenerator(value_type: ValueType, option: object, name: str) -> Optional[Callable[[], object]]:
    if option is None or option is False:
        return None
    if callable(option):
        return lambda: value_type.cast(option())
    if option is True:
        if value_type.name in ("uuid", "binary_id"):
            return lambda: str(uuid.uuid4())
        if value_type.name.endswith("datetime") or value_type.name.endswith("datetime_usec"):
            return lambda: value_type.cast(datetime.now(timezone.utc))
    raise ConfigurationError(f"Unsupported autogenerate option for {name!r}: {option!r}")


def _compile_field(decl: FieldDecl) -> FieldSpec:
    name = _check_name(decl.name)
    _check_options(decl, _FIELD_OPTIONS)
    options = decl.options
    value_type = resolve_type(decl.value_type, values=options.get("values"))
    if options.get("values") is not None and not isinstance(value_type, EnumType):
        raise ConfigurationError(f"values only applies to enum fields, not {name!r}")
    default = options.get("default")
    if default is not None:
        try:
            default = value_type.cast(default)
        except ValueError as exc:
            raise ConfigurationError(f"Default for {name!r} does not match its type: {default!r}") from exc
    source = options.get("source")
    if source is not None and (not isinstance(source, str) or not source):
        raise ConfigurationError(f"source for {name!r} must be a non-empty string.")
    return FieldSpec(
        name=name,
        kind=value_type.kind,  # type: ignore[arg-type]
        value_type=value_type,
        default=default,
        primary_key=bool(options.get("primary_key", False)),
        source=source,  # type: ignore[arg-type]
        virtual=bool(options.get("virtual", False)),
        autogenerate=_autogenerator(value_type, options.get("autogenerate"), name),
        validations=_split_validations(options),
    )


def _resolve_embed_schema(decl: FieldDecl, resolve_embed: Optional[EmbedResolver]) -> "SchemaDescriptor":
    from strukt.schema import SchemaDescriptor

    if decl.fields is not None:
        if not isinstance(decl.value_type, str) or not decl.value_type.isidentifier():
            raise ConfigurationError(
                f"inline {decl.kind} {decl.name!r} needs a type name, got: {decl.value_type!r}"
            )
        if resolve_embed is None:
            raise ConfigurationError(f"inline {decl.kind} {decl.name!r} cannot be compiled here.")
        return resolve_embed(decl.value_type, decl.fields)
    if isinstance(decl.value_type, SchemaDescriptor):
        return decl.value_type
    schema = getattr(decl.value_type, "__schema__", None)
    if isinstance(schema, SchemaDescriptor):
        return schema
    raise ConfigurationError(
        f"{decl.kind} {decl.name!r} expects a struct type or inline fields, got: {decl.value_type!r}"
    )


def _compile_embed(decl: FieldDecl, resolve_embed: Optional[EmbedResolver]) -> FieldSpec:
    name = _check_name(decl.name)
    _check_options(decl, _EMBED_OPTIONS)
    options = decl.options
    for rule_name in options:
        if rule_name in VALIDATION_OPTIONS and rule_name not in ("required", "length"):
            raise ConfigurationError(f"{rule_name} is not supported on {decl.kind} {name!r}")
    on_replace = options.get("on_replace")
    if on_replace is not None:
        if decl.kind != "embeds_many":
            raise ConfigurationError(f"on_replace only applies to embeds_many, not {name!r}")
        check_on_replace(on_replace)
    source = options.get("source")
    if source is not None and (not isinstance(source, str) or not source):
        raise ConfigurationError(f"source for {name!r} must be a non-empty string.")
    embed = _resolve_embed_schema(decl, resolve_embed)
    return FieldSpec(
        name=name,
        kind="embed_one" if decl.kind == "embeds_one" else "embed_many",
        source=source,  # type: ignore[arg-type]
        validations=_split_validations(options),
        embed=embed,
        on_replace=on_replace,  # type: ignore[arg-type]
    )


def _compile_timestamps(decl: FieldDecl, defaults: Mapping[str, object]) -> list[FieldSpec]:
    unknown = sorted(set(decl.options) - _TIMESTAMP_OPTIONS)
    if unknown:
        raise ConfigurationError(f"invalid options for timestamps: {unknown}")
    options: dict[str, Any] = {**defaults, **decl.options}
    value_type = resolve_type(options.get("type", "naive_datetime"))
    if not value_type.name.endswith(("datetime", "datetime_usec")):
        raise ConfigurationError(f"timestamps type must be a datetime type, got: {value_type.name}")
    generate = _autogenerator(value_type, options.get("autogenerate", True), "timestamps")
    specs: list[FieldSpec] = []
    for key, on_update in (("inserted_at", False), ("updated_at", True)):
        name = options.get(key, key)
        if name is False:
            continue
        specs.append(
            FieldSpec(
                name=_check_name(name),
                kind="timestamp",
                value_type=value_type,
                autogenerate=generate,
                on_update=on_update,
            )
        )
    return specs


def compile_fields(
    declarations: Iterable[object],
    *,
    resolve_embed: Optional[EmbedResolver] = None,
    timestamps_opts: Optional[Mapping[str, object]] = None,
) -> tuple[FieldSpec, ...]:
    """Compile declarations into FieldSpecs, preserving declaration order."""

    specs: list[FieldSpec] = []
    for item in declarations:
        decl = to_decl(item)
        if decl.kind == "field":
            specs.append(_compile_field(decl))
        elif decl.kind in ("embeds_one", "embeds_many"):
            specs.append(_compile_embed(decl, resolve_embed))
        elif decl.kind == "timestamps":
            specs.extend(_compile_timestamps(decl, timestamps_opts or {}))
        else:
            raise ConfigurationError(
                f"unsupported field kind {decl.kind!r}, only {', '.join(DECLARATION_KINDS)} are permitted"
            )
    seen: set[str] = set()
    for spec in specs:
        if spec.name in seen:
            raise ConfigurationError(f"Duplicate field name: {spec.name}")
        seen.add(spec.name)
    logger.debug("compiled %d field specs", len(specs))
    return tuple(specs)
