"""Inline per-field validation rules.

Rules are declared as field options (``required=True``, ``length={"max": 3}``,
...) and compiled once per schema into an ordered tuple of ``CompiledRule``.
Every rule accepts either a bare bound or a structured mapping carrying the
bound plus a ``message`` override and rule specific flags.
"""

from __future__ import annotations

from dataclasses import dataclass, field as dc_field
from decimal import Decimal
from typing import TYPE_CHECKING, Callable, Iterable, Mapping, Optional
import re
import unicodedata

from strukt.errors import ConfigurationError
from strukt.field import FieldSpec
from strukt.types import CustomType

if TYPE_CHECKING:  # pragma: no cover
    from strukt.changeset import Changeset


Check = Callable[[object], Optional[tuple[str, dict[str, object]]]]

COUNT_UNITS = ("graphemes", "codepoints", "bytes")
NUMBER_COMPARATORS: dict[str, tuple[Callable[[object, object], bool], str]] = {
    "less_than": (lambda value, bound: value < bound, "must be less than {number}"),
    "greater_than": (lambda value, bound: value > bound, "must be greater than {number}"),
    "less_than_or_equal_to": (lambda value, bound: value <= bound, "must be less than or equal to {number}"),
    "greater_than_or_equal_to": (
        lambda value, bound: value >= bound,
        "must be greater than or equal to {number}",
    ),
    "equal_to": (lambda value, bound: value == bound, "must be equal to {number}"),
    "not_equal_to": (lambda value, bound: value != bound, "must be not equal to {number}"),
}

_TEXT_TYPES = {"string", "any", "custom"}
_LENGTH_TYPES = {"string", "binary", "array", "map", "any", "custom", "embed_many"}
_NUMERIC_TYPES = {"id", "integer", "float", "decimal", "any", "custom"}
_RANGE_TYPES = _NUMERIC_TYPES | {
    "date",
    "time",
    "time_usec",
    "naive_datetime",
    "naive_datetime_usec",
    "utc_datetime",
    "utc_datetime_usec",
}
_ARRAY_TYPES = {"array", "any", "custom"}

_ZWJ = "\u200d"


@dataclass(frozen=True)
class CompiledRule:
    """One validation rule bound to one field."""

    field: str
    rule: str
    check: Optional[Check] = None
    message: Optional[str] = None
    options: Mapping[str, object] = dc_field(default_factory=dict)

    def apply(self, changeset: "Changeset") -> "Changeset":
        if self.rule == "required":
            return _apply_required(self, changeset)
        check = self.check
        if check is None:
            raise ConfigurationError(f"{self.rule} rule on {self.field!r} has no check")

        def _validate(_field: str, value: object) -> list[tuple[str, dict[str, object]]]:
            failure = check(value)
            if failure is None:
                return []
            default_message, meta = failure
            return [(self.message or default_message, meta)]

        return changeset.validate_change(self.field, _validate, validation=self.rule)


def _type_name(spec: FieldSpec) -> str:
    if spec.is_embed:
        return spec.kind
    if isinstance(spec.value_type, CustomType):
        return "custom"
    return spec.value_type.name  # type: ignore[union-attr]


def _ensure_type(spec: FieldSpec, rule: str, allowed: set[str]) -> None:
    type_name = _type_name(spec)
    if type_name not in allowed:
        raise ConfigurationError(f"{rule} is not supported for field {spec.name!r} of type {type_name}")


def _structured(
    spec: FieldSpec,
    rule: str,
    value: Mapping[str, object],
    allowed: set[str],
) -> tuple[dict[str, object], Optional[str]]:
    unknown = sorted(set(value) - allowed - {"message"})
    if unknown:
        raise ConfigurationError(f"invalid {rule} options for field {spec.name!r}: {unknown}")
    message = value.get("message")
    if message is not None and not isinstance(message, str):
        raise ConfigurationError(f"{rule} message for field {spec.name!r} must be a string.")
    options = {key: item for key, item in value.items() if key != "message"}
    return options, message  # type: ignore[return-value]


def _shape_error(spec: FieldSpec, rule: str, value: object, expected: str) -> ConfigurationError:
    return ConfigurationError(
        f"invalid {rule} specifier for field {spec.name!r}, expected {expected}, got: {value!r}"
    )


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _is_collection(value: object) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


# --- required ---------------------------------------------------------------


def _compile_required(spec: FieldSpec, value: object) -> Optional[CompiledRule]:
    if isinstance(value, bool):
        if not value:
            return None
        return CompiledRule(spec.name, "required", options={"trim": True})
    if isinstance(value, Mapping):
        options, message = _structured(spec, "required", value, {"trim"})
        trim = options.get("trim", True)
        if not isinstance(trim, bool):
            raise _shape_error(spec, "required", value, "trim to be a boolean")
        return CompiledRule(spec.name, "required", message=message, options={"trim": trim})
    raise _shape_error(spec, "required", value, "a boolean or a mapping with message/trim")


def _missing(value: object, trim: bool) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return (value.strip() if trim else value) == ""
    if isinstance(value, (list, tuple, dict, set, frozenset, bytes)):
        return len(value) == 0
    return False


def _apply_required(rule: CompiledRule, changeset: "Changeset") -> "Changeset":
    if changeset.errors_for(rule.field):
        return changeset
    if not _missing(changeset.get_field(rule.field), bool(rule.options.get("trim", True))):
        return changeset
    return changeset.add_error(rule.field, rule.message or "can't be blank", validation="required")


# --- format -----------------------------------------------------------------


def _compile_pattern(spec: FieldSpec, pattern: object, raw: object) -> re.Pattern[str]:
    if isinstance(pattern, re.Pattern):
        return pattern
    if isinstance(pattern, str):
        try:
            return re.compile(pattern)
        except re.error as exc:
            raise ConfigurationError(f"invalid format pattern for field {spec.name!r}: {exc}") from exc
    raise _shape_error(spec, "format", raw, "a regex, or a mapping with a pattern that is a regex")


def _compile_format(spec: FieldSpec, value: object) -> CompiledRule:
    _ensure_type(spec, "format", _TEXT_TYPES)
    message = None
    if isinstance(value, Mapping):
        options, message = _structured(spec, "format", value, {"pattern"})
        if "pattern" not in options:
            raise _shape_error(spec, "format", value, "a mapping with a pattern")
        pattern = _compile_pattern(spec, options["pattern"], value)
    else:
        pattern = _compile_pattern(spec, value, value)

    def check(candidate: object) -> Optional[tuple[str, dict[str, object]]]:
        if isinstance(candidate, str) and pattern.search(candidate):
            return None
        return "has invalid format", {}

    return CompiledRule(spec.name, "format", check, message, {"pattern": pattern.pattern})


# --- length -----------------------------------------------------------------


def grapheme_count(text: str) -> int:
    """Approximate count of user-perceived characters.

    Combining marks, variation selectors, emoji modifiers and tags, ZWJ
    sequences, regional indicator pairs and CRLF join the preceding character.
    Prepend characters and Indic conjunct clusters are not joined, so such
    text can count higher than a full extended grapheme cluster walk.
    """

    count = 0
    joined = False
    regional_open = False
    previous = ""
    for char in text:
        code = ord(char)
        if joined:
            joined = False
            previous = char
            continue
        if char == _ZWJ:
            joined = count > 0
            continue
        if (
            unicodedata.category(char) in ("Mn", "Me", "Mc")
            or 0xFE00 <= code <= 0xFE0F
            or 0x1F3FB <= code <= 0x1F3FF
            or 0xE0020 <= code <= 0xE007F
            or 0x1160 <= code <= 0x11FF
        ) and count > 0:
            continue
        if 0x1F1E6 <= code <= 0x1F1FF:
            if regional_open:
                regional_open = False
                continue
            regional_open = True
            count += 1
            previous = char
            continue
        regional_open = False
        if char == "\n" and previous == "\r":
            previous = char
            continue
        count += 1
        previous = char
    return count


def _measure(value: object, unit: str) -> tuple[int, str]:
    if isinstance(value, str):
        if unit == "bytes":
            return len(value.encode("utf-8")), "bytes"
        if unit == "codepoints":
            return len(value), "text"
        return grapheme_count(value), "text"
    if isinstance(value, (bytes, bytearray)):
        return len(value), "bytes"
    return len(value), "items"  # type: ignore[arg-type]


_LENGTH_MESSAGES = {
    ("is", "text"): "should be {count} character(s)",
    ("min", "text"): "should be at least {count} character(s)",
    ("max", "text"): "should be at most {count} character(s)",
    ("is", "bytes"): "should be {count} byte(s)",
    ("min", "bytes"): "should be at least {count} byte(s)",
    ("max", "bytes"): "should be at most {count} byte(s)",
    ("is", "items"): "should have {count} item(s)",
    ("min", "items"): "should have at least {count} item(s)",
    ("max", "items"): "should have at most {count} item(s)",
}


def _compile_length(spec: FieldSpec, value: object) -> CompiledRule:
    _ensure_type(spec, "length", _LENGTH_TYPES)
    message = None
    if isinstance(value, int) and not isinstance(value, bool):
        options: dict[str, object] = {"is": value}
    elif isinstance(value, Mapping):
        options, message = _structured(spec, "length", value, {"is", "min", "max", "count"})
    else:
        raise _shape_error(spec, "length", value, "an integer or a mapping with is/min/max")
    bounds = {key: options[key] for key in ("is", "min", "max") if key in options}
    if not bounds:
        raise _shape_error(spec, "length", value, "at least one of is/min/max")
    for key, bound in bounds.items():
        if not isinstance(bound, int) or isinstance(bound, bool) or bound < 0:
            raise _shape_error(spec, "length", value, f"{key} to be a non-negative integer")
    unit = options.get("count", "graphemes")
    if unit not in COUNT_UNITS:
        raise _shape_error(spec, "length", value, f"count to be one of {list(COUNT_UNITS)}")

    def check(candidate: object) -> Optional[tuple[str, dict[str, object]]]:
        try:
            size, measure = _measure(candidate, str(unit))
        except TypeError:
            return "is invalid", {"type": type(candidate).__name__}
        for key, failed in (
            ("is", lambda bound: size != bound),
            ("min", lambda bound: size < bound),
            ("max", lambda bound: size > bound),
        ):
            if key in bounds and failed(bounds[key]):
                bound = bounds[key]
                text = _LENGTH_MESSAGES[(key, measure)].format(count=bound)
                return text, {"kind": key, "count": bound, "type": measure}
        return None

    return CompiledRule(spec.name, "length", check, message, {**bounds, "count": unit})


# --- range ------------------------------------------------------------------


def _range_bounds(spec: FieldSpec, bound: object, raw: object) -> tuple[Callable[[object], bool], str]:
    if isinstance(bound, range):
        if bound.step != 1:
            raise _shape_error(spec, "range", raw, "a range with step 1")
        text = f"{bound.start}..{bound.stop - 1}"
        return (lambda value: isinstance(value, int) and value in bound), text
    if isinstance(bound, (tuple, list)) and len(bound) == 2:
        low, high = bound
        if low is None or high is None or type(low) is bool or type(high) is bool:
            raise _shape_error(spec, "range", raw, "two bounds")
        try:
            if low > high:
                raise _shape_error(spec, "range", raw, "low <= high")
        except TypeError as exc:
            raise _shape_error(spec, "range", raw, "comparable bounds") from exc
        return (lambda value: low <= value <= high), f"{low}..{high}"
    raise _shape_error(spec, "range", raw, "a (low, high) pair or a range")


def _compile_range(spec: FieldSpec, value: object) -> CompiledRule:
    _ensure_type(spec, "range", _RANGE_TYPES)
    message = None
    if isinstance(value, Mapping):
        options, message = _structured(spec, "range", value, {"value"})
        if "value" not in options:
            raise _shape_error(spec, "range", value, "a mapping with value")
        contains, text = _range_bounds(spec, options["value"], value)
    else:
        contains, text = _range_bounds(spec, value, value)
    default_message = f"must be in the range {text}"

    def check(candidate: object) -> Optional[tuple[str, dict[str, object]]]:
        try:
            if contains(candidate):
                return None
        except TypeError:
            pass
        return default_message, {"range": text}

    return CompiledRule(spec.name, "range", check, message, {"range": text})


# --- number -----------------------------------------------------------------


def _compile_number(spec: FieldSpec, value: object) -> CompiledRule:
    _ensure_type(spec, "number", _NUMERIC_TYPES)
    message = None
    if _is_number(value):
        comparators: dict[str, object] = {"equal_to": value}
    elif isinstance(value, Mapping):
        comparators, message = _structured(spec, "number", value, set(NUMBER_COMPARATORS))
        if not comparators:
            raise _shape_error(spec, "number", value, "at least one comparator")
        for key, bound in comparators.items():
            if not _is_number(bound):
                raise _shape_error(spec, "number", value, f"{key} to be a number")
    else:
        raise _shape_error(spec, "number", value, "a number or a mapping of comparators")

    def check(candidate: object) -> Optional[tuple[str, dict[str, object]]]:
        for key, bound in comparators.items():
            compare, template = NUMBER_COMPARATORS[key]
            try:
                passed = compare(candidate, bound)
            except TypeError:
                passed = False
            if not passed:
                return template.format(number=bound), {"kind": key, "number": bound}
        return None

    return CompiledRule(spec.name, "number", check, message, dict(comparators))


# --- membership -------------------------------------------------------------


def _membership_values(spec: FieldSpec, rule: str, value: object) -> tuple[tuple[object, ...], Optional[str]]:
    message = None
    if isinstance(value, Mapping):
        options, message = _structured(spec, rule, value, {"values"})
        if "values" not in options:
            raise _shape_error(spec, rule, value, "a mapping with values")
        value = options["values"]
    if not _is_collection(value):
        raise _shape_error(spec, rule, value, "a list of values")
    return tuple(value), message  # type: ignore[arg-type]


def _compile_one_of(spec: FieldSpec, value: object) -> CompiledRule:
    values, message = _membership_values(spec, "one_of", value)

    def check(candidate: object) -> Optional[tuple[str, dict[str, object]]]:
        return None if candidate in values else ("is invalid", {"enum": list(values)})

    return CompiledRule(spec.name, "one_of", check, message, {"values": values})


def _compile_none_of(spec: FieldSpec, value: object) -> CompiledRule:
    values, message = _membership_values(spec, "none_of", value)

    def check(candidate: object) -> Optional[tuple[str, dict[str, object]]]:
        return ("is reserved", {"enum": list(values)}) if candidate in values else None

    return CompiledRule(spec.name, "none_of", check, message, {"values": values})


def _compile_subset_of(spec: FieldSpec, value: object) -> CompiledRule:
    _ensure_type(spec, "subset_of", _ARRAY_TYPES)
    values, message = _membership_values(spec, "subset_of", value)

    def check(candidate: object) -> Optional[tuple[str, dict[str, object]]]:
        if isinstance(candidate, (list, tuple)) and all(item in values for item in candidate):
            return None
        return "has an invalid entry", {"enum": list(values)}

    return CompiledRule(spec.name, "subset_of", check, message, {"values": values})


_COMPILERS: dict[str, Callable[[FieldSpec, object], Optional[CompiledRule]]] = {
    "required": _compile_required,
    "format": _compile_format,
    "length": _compile_length,
    "range": _compile_range,
    "number": _compile_number,
    "one_of": _compile_one_of,
    "none_of": _compile_none_of,
    "subset_of": _compile_subset_of,
}


def compile_rule(spec: FieldSpec, rule: str, value: object) -> Optional[CompiledRule]:
    """Compile one declared rule; ``None`` for rules that are switched off."""

    compiler = _COMPILERS.get(rule)
    if compiler is None:
        raise ConfigurationError(f"unknown validation {rule!r} on field {spec.name!r}")
    return compiler(spec, value)


def compile_rule_table(fields: Iterable[FieldSpec]) -> tuple[CompiledRule, ...]:
    """Compile the rules of every field, in field order then declaration order."""

    compiled: list[CompiledRule] = []
    for spec in fields:
        for rule, value in spec.validations:
            rule_obj = compile_rule(spec, rule, value)
            if rule_obj is not None:
                compiled.append(rule_obj)
    return tuple(compiled)


def evaluate_rules(changeset: "Changeset", rules: Iterable[CompiledRule]) -> "Changeset":
    """Run every rule against the changeset, accumulating errors."""

    for rule in rules:
        changeset = rule.apply(changeset)
    return changeset
