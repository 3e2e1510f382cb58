"""Changesets: casting params onto entities, tracking changes and errors.

A ``Changeset`` is an immutable value. Every helper returns a new changeset,
so validators thread it through like any other value. Embed changes hold child
changesets (a list of them for ``embed_many``); their errors are hoisted into
the parent with a path so the parent is invalid whenever a child is.
"""

from __future__ import annotations

from dataclasses import dataclass, field as dc_field, replace
from typing import Any, Callable, Iterable, Literal, Mapping, Optional
import logging

from strukt.entity import Entity
from strukt.errors import InvalidParamsError, UnknownFieldError
from strukt.field import FieldSpec
from strukt.rules import evaluate_rules
from strukt.schema import SchemaDescriptor, schema_of


logger = logging.getLogger(__name__)

Action = Optional[Literal["insert", "update", "delete"]]
ChangesetState = Literal["building", "valid", "invalid"]
ChangeValidator = Callable[[str, object], Iterable[object]]

_MISSING = object()


@dataclass(frozen=True)
class FieldError:
    """One validation or cast failure.

    ``path`` locates the embed holding the field, e.g. ``("items", 1)``.
    """

    field: str
    message: str
    validation: Optional[str] = None
    meta: Mapping[str, object] = dc_field(default_factory=dict)
    path: tuple[object, ...] = ()

    @property
    def location(self) -> str:
        return ".".join(str(part) for part in (*self.path, self.field))

    def nested(self, *prefix: object) -> "FieldError":
        return replace(self, path=(*prefix, *self.path))

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {"field": self.location, "message": self.message}
        if self.validation is not None:
            data["validation"] = self.validation
        if self.meta:
            data["meta"] = dict(self.meta)
        return data


@dataclass(frozen=True)
class Changeset:
    schema: SchemaDescriptor
    data: Optional[Entity] = None
    changes: Mapping[str, Any] = dc_field(default_factory=dict)
    errors: tuple[FieldError, ...] = ()
    action: Action = None
    params: Optional[Mapping[str, object]] = None
    validated: bool = False
    generated: Mapping[str, object] = dc_field(default_factory=dict)

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def state(self) -> ChangesetState:
        if not self.validated:
            return "building"
        return "valid" if self.valid else "invalid"

    # --- reading --------------------------------------------------------

    def _base_value(self, spec: FieldSpec) -> object:
        if self.data is not None:
            return getattr(self.data, spec.name)
        if spec.name in self.generated:
            return self.generated[spec.name]
        return spec.default_value()

    def fetch_field(self, name: str) -> Optional[tuple[str, object]]:
        """``("changes", value)``, ``("data", value)`` or ``None`` when neither holds it."""

        self.schema.field(name)
        if name in self.changes:
            return "changes", _applied(self.changes[name])
        if self.data is not None:
            return "data", getattr(self.data, name)
        if name in self.generated:
            return "data", self.generated[name]
        return None

    def get_field(self, name: str, default: object = None) -> object:
        spec = self.schema.field(name)
        if name in self.changes:
            return _applied(self.changes[name])
        value = self._base_value(spec)
        return default if value is None else value

    def get_change(self, name: str, default: object = None) -> object:
        if name not in self.changes:
            return default
        return _applied(self.changes[name])

    def changed(self, name: str) -> bool:
        return name in self.changes

    def errors_for(self, name: str) -> tuple[FieldError, ...]:
        """Errors on ``name``, including errors hoisted from an embed called ``name``."""

        return tuple(
            error for error in self.errors if (error.path[0] if error.path else error.field) == name
        )

    def error_messages(self) -> dict[str, list[str]]:
        messages: dict[str, list[str]] = {}
        for error in self.errors:
            messages.setdefault(error.location, []).append(error.message)
        return messages

    # --- writing --------------------------------------------------------

    def put_change(self, name: str, value: object) -> "Changeset":
        spec = self.schema.field(name)
        if name not in self.schema.cast_fields and name not in self.schema.embed_fields:
            raise UnknownFieldError(f"{name!r} cannot be changed on {self.schema.name}")
        changes = dict(self.changes)
        errors = list(self.errors)
        if spec.is_embed:
            _cast_embed(self, spec, value, changes, errors)
        else:
            try:
                value = spec.value_type.cast(value)  # type: ignore[union-attr]
            except ValueError:
                errors.append(_cast_error(spec))
                changes.pop(name, None)
            else:
                _record(self, spec, value, changes)
        return _rehoist(replace(self, changes=changes, errors=_dedupe(errors)))

    def delete_change(self, name: str) -> "Changeset":
        self.schema.field(name)
        if name not in self.changes:
            return self
        changes = dict(self.changes)
        del changes[name]
        return _rehoist(replace(self, changes=changes))

    def add_error(
        self,
        name: str,
        message: str,
        *,
        validation: Optional[str] = None,
        path: tuple[object, ...] = (),
        **meta: object,
    ) -> "Changeset":
        """Record an error; an identical error already present is not repeated."""

        error = FieldError(name, message, validation, meta, tuple(path))
        if error in self.errors:
            return self
        return replace(self, errors=(*self.errors, error))

    def validate_change(
        self,
        name: str,
        validator: ChangeValidator,
        *,
        validation: Optional[str] = None,
    ) -> "Changeset":
        """Run ``validator(name, value)`` on a pending non-None change.

        The validator yields error messages, or ``(message, meta)`` pairs.
        """

        self.schema.field(name)
        value = self.changes.get(name)
        if value is None:
            return self
        changeset = self
        for item in validator(name, value) or ():
            if isinstance(item, str):
                message, meta = item, {}
            else:
                message, meta = item  # type: ignore[misc]
            changeset = changeset.add_error(name, message, validation=validation, **dict(meta))
        return changeset

    def apply_changes(self) -> Entity:
        """Build the entity these changes describe, valid or not.

        Autogenerated values seeded at insert fill the base; an update with
        changes refreshes the ``on_update`` timestamps.
        """

        values = self.data.field_values() if self.data is not None else self.schema.defaults()
        values.update(self.generated)
        for name, value in self.changes.items():
            values[name] = _applied(value)
        if self.action == "update" and self.changes:
            for spec in self.schema.fields:
                if spec.on_update and spec.autogenerate is not None:
                    values[spec.name] = spec.autogenerate()
        return self.schema.entity_type._from_values(values)  # type: ignore[union-attr]


def _applied(value: object) -> object:
    if isinstance(value, Changeset):
        return value.apply_changes()
    if isinstance(value, list) and value and isinstance(value[0], Changeset):
        return [item.apply_changes() for item in value]
    return value


def _dedupe(errors: Iterable[FieldError]) -> tuple[FieldError, ...]:
    unique: list[FieldError] = []
    for error in errors:
        if error not in unique:
            unique.append(error)
    return tuple(unique)


def _rehoist(changeset: Changeset) -> Changeset:
    """Replace hoisted child errors with those of the current child changesets."""

    errors = [error for error in changeset.errors if not error.path]
    for name in changeset.schema.embed_fields:
        value = changeset.changes.get(name)
        if isinstance(value, Changeset):
            errors.extend(error.nested(name) for error in value.errors)
        elif isinstance(value, list):
            for index, child in enumerate(value):
                errors.extend(error.nested(name, index) for error in child.errors)
    return replace(changeset, errors=_dedupe(errors))


def _cast_error(spec: FieldSpec) -> FieldError:
    type_info = spec.value_type.describe() if spec.value_type is not None else spec.kind
    return FieldError(spec.name, "is invalid", "cast", {"type": type_info})


def _record(changeset: Changeset, spec: FieldSpec, value: object, changes: dict[str, object]) -> None:
    if changeset.data is not None and getattr(changeset.data, spec.name) == value:
        changes.pop(spec.name, None)
    else:
        changes[spec.name] = value


# --- params -----------------------------------------------------------------


def normalize_params(schema: SchemaDescriptor, params: object) -> dict[str, object]:
    """Accept a mapping, an entity of the schema's type, or key/value pairs."""

    if params is None:
        return {}
    if isinstance(params, Entity):
        if type(params) is not schema.entity_type:
            raise InvalidParamsError(
                f"expected params for {schema.name}, got a {type(params).__name__} entity"
            )
        return params.field_values()
    if isinstance(params, Mapping):
        values = dict(params)
    elif isinstance(params, (list, tuple)):
        values = {}
        for pair in params:
            if not isinstance(pair, (list, tuple)) or len(pair) != 2:
                raise InvalidParamsError(f"expected key/value pairs, got: {pair!r}")
            values[pair[0]] = pair[1]
    else:
        raise InvalidParamsError(f"expected a mapping or key/value pairs, got: {type(params).__name__}")
    for key in values:
        if not isinstance(key, str):
            raise InvalidParamsError(f"param keys must be strings, got: {key!r}")
    return values


def _lookup(values: Mapping[str, object], spec: FieldSpec) -> object:
    if spec.name in values:
        return values[spec.name]
    if spec.source is not None and spec.source in values:
        return values[spec.source]
    return _MISSING


# --- embeds -----------------------------------------------------------------


def _cast_child(child_schema: SchemaDescriptor, prior: Optional[Entity], raw: object) -> Optional[Changeset]:
    """Cast one embedded value; ``None`` when ``raw`` has an unusable shape."""

    if isinstance(raw, Changeset):
        return raw if raw.schema is child_schema else None
    if isinstance(raw, Entity):
        if type(raw) is not child_schema.entity_type:
            return None
        if prior is None:
            return Changeset(schema=child_schema, data=raw, action="insert")
        return _cast_onto(
            Changeset(schema=child_schema, data=prior, action="update"), raw.field_values()
        )
    try:
        values = normalize_params(child_schema, raw)
    except InvalidParamsError:
        return None
    if prior is None:
        return cast(child_schema, None, values, "insert")
    return cast(child_schema, prior, values, "update")


def _unchanged(child: Changeset) -> bool:
    return not child.changes and not child.errors


def _cast_embed(
    changeset: Changeset,
    spec: FieldSpec,
    raw: object,
    changes: dict[str, object],
    errors: list[FieldError],
) -> None:
    child_schema: SchemaDescriptor = spec.embed  # type: ignore[assignment]
    prior = changeset._base_value(spec) if changeset.data is not None else None
    if spec.kind == "embed_one":
        if raw is None:
            if changeset.data is not None and prior is None:
                changes.pop(spec.name, None)
            else:
                changes[spec.name] = None
            return
        child = _cast_child(child_schema, prior, raw)  # type: ignore[arg-type]
        if child is None:
            errors.append(_cast_error(spec))
            changes.pop(spec.name, None)
        elif prior is not None and _unchanged(child):
            changes.pop(spec.name, None)
        else:
            changes[spec.name] = child
        return

    if not isinstance(raw, (list, tuple)):
        errors.append(_cast_error(spec))
        changes.pop(spec.name, None)
        return
    prior_items: list[Entity] = list(prior or [])  # type: ignore[call-overload]
    children: list[Changeset] = []
    for index, item in enumerate(raw):
        child = None if item is None else _cast_child(
            child_schema, prior_items[index] if index < len(prior_items) else None, item
        )
        if child is None:
            errors.append(_cast_error(spec))
            changes.pop(spec.name, None)
            return
        children.append(child)
    if len(raw) < len(prior_items):
        policy = spec.on_replace or changeset.schema.config.on_replace
        logger.debug(
            "%s.%s: %d prior entries not in params, on_replace=%s",
            changeset.schema.name,
            spec.name,
            len(prior_items) - len(raw),
            policy,
        )
        if policy == "keep":
            children.extend(
                Changeset(schema=child_schema, data=item, action="update") for item in prior_items[len(raw):]
            )
        elif policy == "error":
            errors.append(
                FieldError(spec.name, "is invalid", "on_replace", {"on_replace": "error"})
            )
            changes.pop(spec.name, None)
            return
    if (
        changeset.data is not None
        and len(children) == len(prior_items)
        and all(_unchanged(child) for child in children)
    ):
        changes.pop(spec.name, None)
    else:
        changes[spec.name] = children


# --- engine -----------------------------------------------------------------


def _autogenerate(schema: SchemaDescriptor) -> dict[str, object]:
    return {spec.name: spec.autogenerate() for spec in schema.fields if spec.autogenerate is not None}


def _cast_onto(changeset: Changeset, values: Mapping[str, object]) -> Changeset:
    schema = changeset.schema
    if changeset.action == "insert" and changeset.data is None and not changeset.generated:
        changeset = replace(changeset, generated=_autogenerate(schema))
    changes = dict(changeset.changes)
    errors = list(changeset.errors)
    for name in schema.cast_fields:
        spec = schema.field(name)
        raw = _lookup(values, spec)
        if raw is _MISSING:
            continue
        try:
            value = spec.value_type.cast(raw)  # type: ignore[union-attr]
        except ValueError:
            errors.append(_cast_error(spec))
            changes.pop(name, None)
            continue
        _record(changeset, spec, value, changes)
    for name in schema.embed_fields:
        spec = schema.field(name)
        raw = _lookup(values, spec)
        if raw is not _MISSING:
            _cast_embed(changeset, spec, raw, changes, errors)

    merged = dict(changeset.params or {})
    merged.update(values)
    return _rehoist(replace(changeset, changes=changes, errors=_dedupe(errors), params=merged))


def cast(
    schema: object,
    data: Optional[Entity],
    params: object,
    action: Action = None,
) -> Changeset:
    """Cast ``params`` onto ``data`` (or onto nothing, for creation)."""

    descriptor = schema_of(schema)
    if data is not None and type(data) is not descriptor.entity_type:
        raise InvalidParamsError(f"expected a {descriptor.name} entity, got: {type(data).__name__}")
    values = normalize_params(descriptor, params)
    return _cast_onto(Changeset(schema=descriptor, data=data, action=action), values)


def validate(changeset: Changeset) -> Changeset:
    """Validate children, then run inline rules and the validator pipeline."""

    schema = changeset.schema
    changes = dict(changeset.changes)
    for name in schema.embed_fields:
        value = changes.get(name)
        if isinstance(value, Changeset):
            changes[name] = validate(value)
        elif isinstance(value, list):
            changes[name] = [validate(child) for child in value]
    result = _rehoist(replace(changeset, changes=changes))
    result = evaluate_rules(result, schema.rules)
    result = schema.pipeline(result)
    return replace(result, validated=True)


def commit(changeset: Changeset) -> Entity | Changeset:
    """The entity for a valid changeset, the changeset itself otherwise."""

    if not changeset.valid:
        return changeset
    return changeset.apply_changes()


from_changeset = commit


def change(target: object, params: object = None) -> Changeset:
    """Cast ``params`` onto an entity (as an update) or an existing changeset, then validate."""

    if isinstance(target, Changeset):
        values = normalize_params(target.schema, params)
        return validate(_cast_onto(replace(target, validated=False), values))
    if isinstance(target, Entity):
        return validate(cast(type(target), target, params, "update"))
    raise InvalidParamsError(f"change expects an entity or a changeset, got: {type(target).__name__}")


def new(schema: object, params: object = None) -> Entity | Changeset:
    """Cast ``params`` as an insert, validate and commit."""

    return commit(validate(cast(schema, None, params, "insert")))
