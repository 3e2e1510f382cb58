"""Declarative entity types with changesets, validation, shapes and JSON codec."""

from strukt.changeset import (
    Changeset,
    FieldError,
    cast,
    change,
    commit,
    from_changeset,
    new,
    validate,
)
from strukt.config import StruktConfig, load_config
from strukt.entity import Entity
from strukt.errors import (
    ConfigurationError,
    ContractViolation,
    DecodeError,
    InvalidParamsError,
    StruktError,
    UnknownFieldError,
)
from strukt.field import FieldDecl, FieldSpec, compile_fields, embeds_many, embeds_one, field, timestamps
from strukt.schema import SchemaDescriptor, build_descriptor
from strukt.struct import Struct, defstruct
from strukt.types import ArrayType, CustomType, EnumType, MapType, PrimitiveType, ValueType
from strukt.validator import (
    Validator,
    ValidatorStep,
    action_is,
    all_of,
    any_of,
    changed,
    compile_pipeline,
    negate,
    validation,
)
from strukt.validators import RequireFields

__all__ = [
    "ArrayType",
    "Changeset",
    "ConfigurationError",
    "ContractViolation",
    "CustomType",
    "DecodeError",
    "Entity",
    "EnumType",
    "FieldDecl",
    "FieldError",
    "FieldSpec",
    "InvalidParamsError",
    "MapType",
    "PrimitiveType",
    "RequireFields",
    "SchemaDescriptor",
    "Struct",
    "StruktConfig",
    "StruktError",
    "UnknownFieldError",
    "Validator",
    "ValidatorStep",
    "ValueType",
    "action_is",
    "all_of",
    "any_of",
    "build_descriptor",
    "cast",
    "change",
    "changed",
    "commit",
    "compile_fields",
    "compile_pipeline",
    "defstruct",
    "embeds_many",
    "embeds_one",
    "field",
    "from_changeset",
    "load_config",
    "negate",
    "new",
    "timestamps",
    "validate",
    "validation",
]
