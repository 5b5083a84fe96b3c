"""Qualified identifiers for Substrait extension types and functions."""

from __future__ import annotations

from dataclasses import dataclass

import pyarrow as pa

ARROW_EXTENSION_TYPES_URI = (
    "https://github.com/apache/arrow/blob/master/format/substrait/extension_types.yaml"
)

_SUBSTRAIT_EXTENSIONS_ROOT = "https://github.com/substrait-io/substrait/blob/main/extensions/"
SUBSTRAIT_ARITHMETIC_FUNCTIONS_URI = _SUBSTRAIT_EXTENSIONS_ROOT + "functions_arithmetic.yaml"
SUBSTRAIT_COMPARISON_FUNCTIONS_URI = _SUBSTRAIT_EXTENSIONS_ROOT + "functions_comparison.yaml"
SUBSTRAIT_BOOLEAN_FUNCTIONS_URI = _SUBSTRAIT_EXTENSIONS_ROOT + "functions_boolean.yaml"
SUBSTRAIT_AGGREGATE_GENERIC_FUNCTIONS_URI = (
    _SUBSTRAIT_EXTENSIONS_ROOT + "functions_aggregate_generic.yaml"
)
SUBSTRAIT_STRING_FUNCTIONS_URI = _SUBSTRAIT_EXTENSIONS_ROOT + "functions_string.yaml"


@dataclass(frozen=True)
class Id:
    """A globally qualified extension identifier: the defining YAML URI and a name."""

    uri: str
    name: str

    def __str__(self) -> str:
        return f"{self.uri}#{self.name}"

    @property
    def base_name(self) -> str:
        """The name without any ``:signature`` suffix."""
        return self.name.split(":", 1)[0]

    @property
    def uri_basename(self) -> str:
        return self.uri.rstrip("/").rsplit("/", 1)[-1]


@dataclass(frozen=True)
class TypeRecord:
    """An extension type anchor resolved to its identifier and native type."""

    id: Id
    type: pa.DataType
