"""Registry mapping Substrait extension identifiers to native types and functions.

Registries nest: a lookup that misses locally is delegated to the parent.
The process-wide default registry is frozen after construction; use
``make_extension_id_registry()`` for a mutable registry layered on top of it.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Tuple, TypeVar

import pyarrow as pa

from substrait_acero.core._extensions.ids import (
    ARROW_EXTENSION_TYPES_URI,
    SUBSTRAIT_AGGREGATE_GENERIC_FUNCTIONS_URI,
    SUBSTRAIT_ARITHMETIC_FUNCTIONS_URI,
    SUBSTRAIT_BOOLEAN_FUNCTIONS_URI,
    SUBSTRAIT_COMPARISON_FUNCTIONS_URI,
    SUBSTRAIT_STRING_FUNCTIONS_URI,
    Id,
)
from substrait_acero.core.error import InvalidPlanError

logger = logging.getLogger(__name__)

V = TypeVar("V")


def _find(table: Dict[Id, V], id: Id) -> Optional[V]:
    if id in table:
        return table[id]
    # Retry ignoring signature suffixes and URI prefixes
    for candidate, value in table.items():
        if candidate.base_name == id.base_name and candidate.uri_basename == id.uri_basename:
            return value
    return None


class ExtensionIdRegistry:
    """Bidirectional mapping between extension ids and native types/function names."""

    def __init__(self, parent: Optional[ExtensionIdRegistry] = None):
        self._parent = parent
        self._types: Dict[Id, pa.DataType] = {}
        self._type_ids: Dict[pa.DataType, Id] = {}
        self._functions: Dict[Id, str] = {}
        self._function_ids: Dict[str, Id] = {}
        self._frozen = False

    @property
    def parent(self) -> Optional[ExtensionIdRegistry]:
        return self._parent

    def freeze(self) -> None:
        """Reject any further registration on this registry."""
        self._frozen = True

    def get_type(self, id: Id) -> Optional[pa.DataType]:
        """Native type registered for ``id``, or None."""
        found = _find(self._types, id)
        if found is None and self._parent is not None:
            return self._parent.get_type(id)
        return found

    def get_type_id(self, data_type: pa.DataType) -> Optional[Id]:
        """Identifier registered for a native type, or None."""
        found = self._type_ids.get(data_type)
        if found is None and self._parent is not None:
            return self._parent.get_type_id(data_type)
        return found

    def get_function_name(self, id: Id) -> Optional[str]:
        """Native function name registered for ``id``, or None."""
        found = _find(self._functions, id)
        if found is None and self._parent is not None:
            return self._parent.get_function_name(id)
        return found

    def get_function_id(self, function_name: str) -> Optional[Id]:
        """Identifier registered for a native function name, or None."""
        found = self._function_ids.get(function_name)
        if found is None and self._parent is not None:
            return self._parent.get_function_id(function_name)
        return found

    def register_type(self, id: Id, data_type: pa.DataType) -> None:
        """Register a native type under ``id``.

        Raises:
            InvalidPlanError: If the registry is frozen or either side is already registered
                here or in an ancestor.
        """
        self._check_mutable(id)
        if self.get_type(id) is not None:
            raise InvalidPlanError(f"Type id {id} is already registered")
        if self.get_type_id(data_type) is not None:
            raise InvalidPlanError(f"Type {data_type} is already registered")
        self._types[id] = data_type
        self._type_ids[data_type] = id

    def register_function(self, id: Id, function_name: str) -> None:
        """Register a native function name under ``id``.

        Several ids may alias one native function; the first registered id is
        the one used when encoding.

        Raises:
            InvalidPlanError: If the registry is frozen or ``id`` is already registered
                here or in an ancestor.
        """
        self._check_mutable(id)
        if self.get_function_name(id) is not None:
            raise InvalidPlanError(f"Function id {id} is already registered")
        self._functions[id] = function_name
        if self.get_function_id(function_name) is None:
            self._function_ids[function_name] = id

    def _check_mutable(self, id: Id) -> None:
        if self._frozen:
            raise InvalidPlanError(f"Cannot register {id}: the registry is frozen")


# Substrait name -> pyarrow.compute name, per extension YAML
_DEFAULT_FUNCTIONS: Tuple[Tuple[str, Iterable[Tuple[str, str]]], ...] = (
    (
        SUBSTRAIT_ARITHMETIC_FUNCTIONS_URI,
        (
            ("add", "add"),
            ("subtract", "subtract"),
            ("multiply", "multiply"),
            ("divide", "divide"),
            ("negate", "negate"),
            ("abs", "abs"),
            ("power", "power"),
            ("sqrt", "sqrt"),
            ("exp", "exp"),
            ("sum", "sum"),
            ("min", "min"),
            ("max", "max"),
            ("avg", "mean"),
            ("product", "product"),
            ("std_dev", "stddev"),
            ("variance", "variance"),
        ),
    ),
    (
        SUBSTRAIT_COMPARISON_FUNCTIONS_URI,
        (
            ("equal", "equal"),
            ("not_equal", "not_equal"),
            ("lt", "less"),
            ("gt", "greater"),
            ("lte", "less_equal"),
            ("gte", "greater_equal"),
            ("is_null", "is_null"),
            ("is_not_null", "is_valid"),
        ),
    ),
    (
        SUBSTRAIT_BOOLEAN_FUNCTIONS_URI,
        (
            ("and", "and_kleene"),
            ("or", "or_kleene"),
            ("not", "invert"),
            ("xor", "xor"),
        ),
    ),
    (SUBSTRAIT_AGGREGATE_GENERIC_FUNCTIONS_URI, (("count", "count"),)),
    (
        SUBSTRAIT_STRING_FUNCTIONS_URI,
        (
            ("lower", "utf8_lower"),
            ("upper", "utf8_upper"),
        ),
    ),
)

_DEFAULT_TYPES: Tuple[Tuple[str, pa.DataType], ...] = (
    ("null", pa.null()),
    ("u8", pa.uint8()),
    ("u16", pa.uint16()),
    ("u32", pa.uint32()),
    ("u64", pa.uint64()),
)


def _build_default_registry() -> ExtensionIdRegistry:
    registry = ExtensionIdRegistry()
    for name, data_type in _DEFAULT_TYPES:
        registry.register_type(Id(ARROW_EXTENSION_TYPES_URI, name), data_type)
    for uri, functions in _DEFAULT_FUNCTIONS:
        for substrait_name, native_name in functions:
            registry.register_function(Id(uri, substrait_name), native_name)
    registry.freeze()
    return registry


_default_registry: Optional[ExtensionIdRegistry] = None


def default_extension_id_registry() -> ExtensionIdRegistry:
    """The frozen process-wide registry of built-in types and functions."""
    global _default_registry
    if _default_registry is None:
        _default_registry = _build_default_registry()
        logger.debug("Built default extension id registry")
    return _default_registry


def make_extension_id_registry() -> ExtensionIdRegistry:
    """Create a mutable registry that falls back to the default registry."""
    return ExtensionIdRegistry(parent=default_extension_id_registry())
