"""Class-based definition surface for entity types."""

from __future__ import annotations

from typing import Any, ClassVar, Iterable, Optional
import logging

from strukt import changeset as engine
from strukt import codec
from strukt.entity import Entity
from strukt.errors import ConfigurationError
from strukt.field import FieldDecl
from strukt.schema import SchemaDescriptor, build_descriptor
from strukt.shape import build_json_schema, describe_shape, field_shapes


logger = logging.getLogger(__name__)

META_OPTIONS = frozenset({"name", "primary_key", "json", "binary_encoding", "timestamps_opts", "on_replace"})
_INHERITED_META = ("json", "binary_encoding", "on_replace")


def _meta_options(meta_class: Optional[type]) -> dict[str, Any]:
    if meta_class is None:
        return {}
    options = {key: getattr(meta_class, key) for key in dir(meta_class) if not key.startswith("_")}
    unknown = sorted(set(options) - META_OPTIONS)
    if unknown:
        raise ConfigurationError(f"unknown Meta options: {unknown}")
    return options


class StructMeta(type):
    """Compile ``__fields__``, ``__validators__`` and ``Meta`` into the class schema."""

    def __new__(mcls, name, bases, namespace):
        cls = super().__new__(mcls, name, bases, namespace)
        if all(base is Entity for base in bases):
            return cls
        declarations = namespace.get("__fields__")
        if declarations is None:
            raise ConfigurationError(f"{name} must declare __fields__.")
        options = _meta_options(namespace.get("Meta"))
        schema_name = options.pop("name", name)
        child_meta = type("Meta", (), {key: options[key] for key in _INHERITED_META if key in options})
        inline: dict[str, type] = {}

        def resolve(type_name: str, fields: tuple[FieldDecl, ...]) -> SchemaDescriptor:
            child = StructMeta(
                type_name,
                (Struct,),
                {
                    "__module__": cls.__module__,
                    "__qualname__": f"{cls.__qualname__}.{type_name}",
                    "__fields__": fields,
                    "Meta": child_meta,
                },
            )
            inline[type_name] = child
            return child.__schema__

        build_descriptor(
            schema_name,
            declarations,
            validators=namespace.get("__validators__", ()),
            entity_type=cls,
            resolve_embed=resolve,
            **options,
        )
        for type_name, child in inline.items():
            setattr(cls, type_name, child)
        logger.debug("defined struct %s", cls.__qualname__)
        return cls


class Struct(Entity, metaclass=StructMeta):
    """Base class for declared entity types.

    Example::

        class User(Struct):
            __fields__ = [
                field("name", "string", required=True),
                field("age", "integer", number={"greater_than": 0}),
            ]
    """

    __fields__: ClassVar[Iterable[object]] = ()
    __validators__: ClassVar[Iterable[object]] = ()

    @classmethod
    def new(cls, params: object = None) -> Entity | engine.Changeset:
        return engine.new(cls, params)

    @classmethod
    def change(cls, target: object, params: object = None) -> engine.Changeset:
        return engine.change(target, params)

    @classmethod
    def changeset(
        cls,
        entity: Optional[Entity] = None,
        params: object = None,
        action: engine.Action = None,
    ) -> engine.Changeset:
        """Cast and validate, defaulting the action from whether ``entity`` is given."""

        if action is None:
            action = "update" if entity is not None else "insert"
        return engine.validate(engine.cast(cls, entity, params, action))

    @classmethod
    def cast(cls, params: object, *, data: Optional[Entity] = None, action: engine.Action = None) -> engine.Changeset:
        return engine.cast(cls, data, params, action)

    @classmethod
    def validate(cls, changeset: engine.Changeset) -> engine.Changeset:
        return engine.validate(changeset)

    @classmethod
    def from_changeset(cls, changeset: engine.Changeset) -> Entity | engine.Changeset:
        return engine.commit(changeset)

    @classmethod
    def from_json(cls, text: str | bytes) -> Entity:
        return codec.load(cls, text)

    @classmethod
    def shape(cls) -> dict[str, Any]:
        return field_shapes(cls)

    @classmethod
    def describe_shape(cls) -> str:
        return describe_shape(cls)

    @classmethod
    def json_schema(cls) -> dict[str, Any]:
        return build_json_schema(cls)

    def to_json(self, *, indent: Optional[int] = None) -> str:
        return codec.dump(self, indent=indent)


def defstruct(
    name: str,
    fields: Iterable[object],
    *,
    validators: Iterable[object] = (),
    module: Optional[str] = None,
    **meta: Any,
) -> type[Struct]:
    """Define a ``Struct`` subclass without a class statement."""

    namespace = {
        "__module__": module or __name__,
        "__qualname__": name,
        "__fields__": tuple(fields),
        "__validators__": tuple(validators),
        "Meta": type("Meta", (), meta),
    }
    return StructMeta(name, (Struct,), namespace)  # type: ignore[return-value]
