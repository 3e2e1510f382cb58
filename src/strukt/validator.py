"""Validator contract, guard predicates and the validator pipeline builder."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Iterable, Literal, Optional
import logging

from strukt.errors import ConfigurationError, ContractViolation

if TYPE_CHECKING:  # pragma: no cover
    from strukt.changeset import Changeset


logger = logging.getLogger(__name__)

Guard = Callable[["Changeset"], bool]
StepKind = Literal["function", "validator"]


class Validator:
    """Reusable validation step.

    ``init`` runs once when the pipeline is defined and may normalize the
    options; ``validate`` runs for every changeset and must return a changeset.
    """

    def init(self, opts: object) -> object:
        return opts

    def validate(self, changeset: "Changeset", opts: object) -> "Changeset":
        raise NotImplementedError


@dataclass(frozen=True)
class ValidatorStep:
    kind: StepKind
    target: object
    name: str
    opts: object = None
    guard: Optional[Guard] = None

    def run(self, changeset: "Changeset") -> "Changeset":
        if self.kind == "validator":
            return self.target.validate(changeset, self.opts)  # type: ignore[attr-defined]
        return self.target(changeset, self.opts)  # type: ignore[operator]


def _step_name(target: object) -> str:
    if isinstance(target, Validator):
        return type(target).__name__
    return getattr(target, "__qualname__", None) or getattr(target, "__name__", None) or repr(target)


def validation(step: object, opts: object = None, *, when: Optional[Guard] = None) -> ValidatorStep:
    """Define a pipeline step, resolving validator options once."""

    if when is not None and not callable(when):
        raise ConfigurationError(f"guard for {_step_name(step)} must be callable, got: {when!r}")
    if isinstance(step, type) and issubclass(step, Validator):
        step = step()
    if isinstance(step, Validator):
        return ValidatorStep("validator", step, _step_name(step), step.init(opts), when)
    if callable(step):
        return ValidatorStep("function", step, _step_name(step), opts, when)
    raise ConfigurationError(f"validator step must be a function or a Validator, got: {step!r}")


def resolve_step(item: object) -> ValidatorStep:
    """Normalize the accepted step forms into a ``ValidatorStep``."""

    if isinstance(item, ValidatorStep):
        return item
    if isinstance(item, tuple):
        if len(item) == 2:
            return validation(item[0], item[1])
        if len(item) == 3:
            return validation(item[0], item[1], when=item[2])
        raise ConfigurationError(f"validator tuples take (step, opts[, guard]), got: {item!r}")
    return validation(item)


# --- guards -----------------------------------------------------------------


def action_is(*actions: str) -> Guard:
    """Guard passing when the changeset action is one of ``actions``."""

    def guard(changeset: "Changeset") -> bool:
        return changeset.action in actions

    return guard


def changed(field: str) -> Guard:
    """Guard passing when ``field`` has a pending change."""

    def guard(changeset: "Changeset") -> bool:
        return changeset.changed(field)

    return guard


def all_of(*guards: Guard) -> Guard:
    def guard(changeset: "Changeset") -> bool:
        return all(_check_guard(item, changeset) for item in guards)

    return guard


def any_of(*guards: Guard) -> Guard:
    def guard(changeset: "Changeset") -> bool:
        return any(_check_guard(item, changeset) for item in guards)

    return guard


def negate(inner: Guard) -> Guard:
    def guard(changeset: "Changeset") -> bool:
        return not _check_guard(inner, changeset)

    return guard


def _check_guard(guard: Guard, changeset: "Changeset") -> bool:
    result = guard(changeset)
    if not isinstance(result, bool):
        raise ContractViolation(f"guard {_step_name(guard)} must return a bool, got: {result!r}")
    return result


# --- pipeline ---------------------------------------------------------------


class Pipeline:
    """Ordered validator steps compiled once per schema."""

    def __init__(self, steps: tuple[ValidatorStep, ...]) -> None:
        self.steps = steps

    def __call__(self, changeset: "Changeset") -> "Changeset":
        from strukt.changeset import Changeset

        for step in self.steps:
            if step.guard is not None and not _check_guard(step.guard, changeset):
                logger.debug("skipping validator %s", step.name)
                continue
            result = step.run(changeset)
            if not isinstance(result, Changeset):
                raise ContractViolation(
                    f"expected {step.name} to return a Changeset, got: {result!r}"
                )
            changeset = result
        return changeset

    def __len__(self) -> int:
        return len(self.steps)

    def __repr__(self) -> str:
        return f"Pipeline({[step.name for step in self.steps]!r})"


def compile_pipeline(steps: Iterable[object] = ()) -> Pipeline:
    return Pipeline(tuple(resolve_step(item) for item in steps))
