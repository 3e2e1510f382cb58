"""Library configuration and environment overrides."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Literal, Mapping, Optional
import os

from strukt.errors import ConfigurationError


OnReplacePolicy = Literal["delete", "keep", "error"]
BinaryEncoding = Literal["base64", "hex"]

_ON_REPLACE_ENV = "STRUKT_ON_REPLACE"
_BINARY_ENCODING_ENV = "STRUKT_BINARY_ENCODING"
_TIMESTAMP_TYPE_ENV = "STRUKT_TIMESTAMP_TYPE"

ON_REPLACE_POLICIES = ("delete", "keep", "error")
BINARY_ENCODINGS = ("base64", "hex")
TIMESTAMP_TYPES = (
    "naive_datetime",
    "naive_datetime_usec",
    "utc_datetime",
    "utc_datetime_usec",
)


@dataclass(frozen=True)
class StruktConfig:
    """Defaults applied when a schema does not set an option itself.

    Attributes:
        on_replace: What happens to prior ``embeds_many`` entries when the
            incoming list is shorter: drop them, keep them, or record an error.
        binary_encoding: Text encoding used for ``binary`` values in JSON.
        timestamp_type: Value type of fields injected by ``timestamps()``.
    """

    on_replace: OnReplacePolicy = "delete"
    binary_encoding: BinaryEncoding = "base64"
    timestamp_type: str = "naive_datetime"

    def __post_init__(self) -> None:
        check_on_replace(self.on_replace)
        if self.binary_encoding not in BINARY_ENCODINGS:
            raise ConfigurationError(
                f"binary_encoding must be one of {list(BINARY_ENCODINGS)}, got: {self.binary_encoding!r}"
            )
        if self.timestamp_type not in TIMESTAMP_TYPES:
            raise ConfigurationError(
                f"timestamp_type must be one of {list(TIMESTAMP_TYPES)}, got: {self.timestamp_type!r}"
            )

    def merge(self, **overrides: object) -> "StruktConfig":
        """Return a copy with every non-None override applied."""

        updates = {key: value for key, value in overrides.items() if value is not None}
        if not updates:
            return self
        return replace(self, **updates)


def check_on_replace(policy: object) -> str:
    if policy not in ON_REPLACE_POLICIES:
        raise ConfigurationError(
            f"on_replace must be one of {list(ON_REPLACE_POLICIES)}, got: {policy!r}"
        )
    return policy  # type: ignore[return-value]


def load_config(environ: Optional[Mapping[str, str]] = None) -> StruktConfig:
    """Build the default config, honouring ``STRUKT_*`` environment variables."""

    env = os.environ if environ is None else environ
    config = StruktConfig()
    return config.merge(
        on_replace=env.get(_ON_REPLACE_ENV) or None,
        binary_encoding=env.get(_BINARY_ENCODING_ENV) or None,
        timestamp_type=env.get(_TIMESTAMP_TYPE_ENV) or None,
    )
