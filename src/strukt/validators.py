"""Validators shipped with the library."""

from __future__ import annotations

from typing import TYPE_CHECKING

from strukt.errors import ConfigurationError
from strukt.validator import Validator

if TYPE_CHECKING:  # pragma: no cover
    from strukt.changeset import Changeset


class RequireFields(Validator):
    """Require a list of fields, typically behind a guard such as ``action_is("update")``.

    Options are either a list of field names or a mapping with ``fields`` and
    an optional ``message``.
    """

    def init(self, opts: object) -> dict[str, object]:
        message = "can't be blank"
        fields = opts
        if isinstance(opts, dict):
            fields = opts.get("fields")
            message = opts.get("message", message)
        if isinstance(fields, str):
            fields = [fields]
        if not isinstance(fields, (list, tuple)) or not fields:
            raise ConfigurationError(f"RequireFields expects a list of field names, got: {opts!r}")
        for name in fields:
            if not isinstance(name, str):
                raise ConfigurationError(f"RequireFields field names must be strings, got: {name!r}")
        return {"fields": tuple(fields), "message": message}

    def validate(self, changeset: "Changeset", opts: dict[str, object]) -> "Changeset":
        for name in opts["fields"]:  # type: ignore[union-attr]
            if changeset.errors_for(name):
                continue
            value = changeset.get_field(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                changeset = changeset.add_error(name, str(opts["message"]), validation="required")
            elif isinstance(value, (list, dict)) and not value:
                changeset = changeset.add_error(name, str(opts["message"]), validation="required")
        return changeset
