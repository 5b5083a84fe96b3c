"""Per-plan symbol table between anchors and qualified extension identifiers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, Iterable, Optional, Set

import pyarrow as pa
from google.protobuf.message import Message

from substrait_acero.core._extensions.ids import Id, TypeRecord
from substrait_acero.core._extensions.registry import (
    ExtensionIdRegistry,
    default_extension_id_registry,
)
from substrait_acero.core.error import InvalidPlanError, UnsupportedFeatureError

if TYPE_CHECKING:
    from substrait_acero.api.config import ConversionOptions
    from substrait_acero.core._serde.proto.types import PlanProto

logger = logging.getLogger(__name__)


def _next_anchor(taken: Iterable[int]) -> int:
    taken = set(taken)
    anchor = 0
    while anchor in taken:
        anchor += 1
    return anchor


def referenced_function_anchors(message: Message) -> Set[int]:
    """Collect every ``function_reference`` value appearing anywhere in a message tree."""
    found: Set[int] = set()
    pending = [message]
    while pending:
        current = pending.pop()
        # Anchor 0 is a valid reference but is not listed as a set field
        if "function_reference" in current.DESCRIPTOR.fields_by_name:
            found.add(current.function_reference)
        for field, value in current.ListFields():
            if isinstance(value, Message):
                pending.append(value)
            elif field.message_type is not None:
                pending.extend(item for item in value if isinstance(item, Message))
    return found


class ExtensionSet:
    """Anchors for the extension types and functions used by one plan.

    Type and function anchors are numbered independently. Encoding the same
    identifier twice returns the anchor assigned the first time. Extension
    URIs get their own anchors, assigned when a type or function from that URI
    is first encoded.
    """

    def __init__(self, registry: Optional[ExtensionIdRegistry] = None):
        self._registry = registry if registry is not None else default_extension_id_registry()
        self._uris: Dict[int, str] = {}
        self._uri_anchors: Dict[str, int] = {}
        self._types: Dict[int, TypeRecord] = {}
        self._type_anchors: Dict[Id, int] = {}
        self._functions: Dict[int, Id] = {}
        self._function_anchors: Dict[Id, int] = {}
        self._unresolved_functions: Set[int] = set()

    @property
    def registry(self) -> ExtensionIdRegistry:
        return self._registry

    @property
    def uris(self) -> Dict[int, str]:
        return dict(self._uris)

    def num_types(self) -> int:
        return len(self._types)

    def num_functions(self) -> int:
        return len(self._functions)

    # =============================================================================
    # Types
    # =============================================================================

    def encode_type(self, data_type: pa.DataType) -> int:
        """Return the anchor for a registry-known native type, assigning one if needed.

        Raises:
            UnsupportedFeatureError: If the registry has no identifier for the type.
        """
        id = self._registry.get_type_id(data_type)
        if id is None:
            raise UnsupportedFeatureError(f"Type {data_type} has no extension type identifier")
        anchor = self._type_anchors.get(id)
        if anchor is not None:
            return anchor
        anchor = _next_anchor(self._types)
        self._encode_uri(id.uri)
        self._types[anchor] = TypeRecord(id, data_type)
        self._type_anchors[id] = anchor
        logger.debug(f"Assigned type anchor {anchor} to {id}")
        return anchor

    def decode_type(self, anchor: int) -> TypeRecord:
        """Resolve a type anchor.

        Raises:
            InvalidPlanError: If the anchor is not part of this set.
        """
        record = self._types.get(anchor)
        if record is None:
            raise InvalidPlanError(
                f"User defined type reference {anchor} did not have a corresponding anchor in the extension set"
            )
        return record

    # =============================================================================
    # Functions
    # =============================================================================

    def encode_function(self, id: Id) -> int:
        """Return the anchor for a function identifier, assigning one if needed."""
        anchor = self._function_anchors.get(id)
        if anchor is not None:
            return anchor
        anchor = _next_anchor(self._functions)
        self._encode_uri(id.uri)
        self._functions[anchor] = id
        self._function_anchors[id] = anchor
        logger.debug(f"Assigned function anchor {anchor} to {id}")
        return anchor

    def decode_function(self, anchor: int, require_resolved: bool = True) -> Id:
        """Resolve a function anchor to its identifier.

        Args:
            anchor: The function anchor.
            require_resolved: Whether a declared function that the registry could not
                resolve is an error. Relations that only inspect the identifier pass False.

        Raises:
            InvalidPlanError: If the anchor is not part of this set or the function it
                declares could not be resolved against the registry.
        """
        id = self._functions.get(anchor)
        if id is None:
            raise InvalidPlanError(
                f"Function reference {anchor} did not have a corresponding anchor in the extension set"
            )
        if require_resolved and anchor in self._unresolved_functions:
            raise InvalidPlanError(
                f"Function {id} (anchor {anchor}) could not be resolved against the extension id registry"
            )
        return id

    # =============================================================================
    # Plan level
    # =============================================================================

    def _encode_uri(self, uri: str) -> int:
        anchor = self._uri_anchors.get(uri)
        if anchor is None:
            # Anchor 0 reads as "unset" in the JSON form of a plan
            anchor = _next_anchor(list(self._uris) + [0])
            self._uris[anchor] = uri
            self._uri_anchors[uri] = anchor
        return anchor

    def load_plan(self, plan: PlanProto, options: Optional[ConversionOptions] = None) -> None:
        """Populate this set from a plan's extension URIs and declarations.

        Unresolvable type declarations are always invalid. Unresolvable function
        declarations are invalid when no expression in the plan references them,
        or when strict round-tripping is requested; otherwise they are recorded
        and fail only if an expression is decoded against them.

        Raises:
            InvalidPlanError: If a declaration is malformed or cannot be honored.
        """
        from substrait_acero.api.config import ConversionOptions, ConversionStrictness

        options = options or ConversionOptions()
        for extension_uri in plan.extension_uris:
            anchor = extension_uri.extension_uri_anchor
            if anchor in self._uris:
                raise InvalidPlanError(f"Duplicate extension URI anchor {anchor}")
            self._uris[anchor] = extension_uri.uri
            self._uri_anchors.setdefault(extension_uri.uri, anchor)

        referenced = referenced_function_anchors(plan)
        for declaration in plan.extensions:
            mapping_type = declaration.WhichOneof("mapping_type")
            if mapping_type == "extension_type":
                extension_type = declaration.extension_type
                id = Id(self._declared_uri(extension_type.extension_uri_reference), extension_type.name)
                data_type = self._registry.get_type(id)
                if data_type is None:
                    raise InvalidPlanError(f"Extension type {id} is not registered")
                anchor = extension_type.type_anchor
                if anchor in self._types:
                    raise InvalidPlanError(f"Duplicate type anchor {anchor}")
                self._types[anchor] = TypeRecord(id, data_type)
                self._type_anchors.setdefault(id, anchor)
            elif mapping_type == "extension_function":
                extension_function = declaration.extension_function
                id = Id(
                    self._declared_uri(extension_function.extension_uri_reference),
                    extension_function.name,
                )
                anchor = extension_function.function_anchor
                if anchor in self._functions:
                    raise InvalidPlanError(f"Duplicate function anchor {anchor}")
                if self._registry.get_function_name(id) is None:
                    if anchor not in referenced:
                        raise InvalidPlanError(
                            f"Extension function {id} is declared but cannot be resolved"
                        )
                    if options.strictness == ConversionStrictness.EXACT_ROUNDTRIP:
                        raise InvalidPlanError(
                            f"Extension function {id} cannot be resolved and exact round-tripping was requested"
                        )
                    logger.debug(f"Deferring resolution of function anchor {anchor} ({id})")
                    self._unresolved_functions.add(anchor)
                self._functions[anchor] = id
                self._function_anchors.setdefault(id, anchor)
            else:
                raise UnsupportedFeatureError(f"Extension declaration kind {mapping_type} is not supported")

    def _declared_uri(self, uri_anchor: int) -> str:
        uri = self._uris.get(uri_anchor)
        if uri is None:
            raise InvalidPlanError(
                f"Extension URI reference {uri_anchor} did not have a corresponding anchor in the plan"
            )
        return uri

    @classmethod
    def from_plan(
        cls,
        plan: PlanProto,
        registry: Optional[ExtensionIdRegistry] = None,
        options: Optional[ConversionOptions] = None,
    ) -> ExtensionSet:
        """Build a set from a plan's extension URIs and declarations."""
        extension_set = cls(registry)
        extension_set.load_plan(plan, options)
        return extension_set

    def add_to_plan(self, plan: PlanProto) -> None:
        """Write this set's URIs and declarations into a plan message."""
        from substrait_acero.core._serde.proto.types import (
            ExtensionFunctionProto,
            ExtensionTypeProto,
        )

        for anchor, uri in sorted(self._uris.items()):
            plan.extension_uris.add(extension_uri_anchor=anchor, uri=uri)
        for anchor, record in sorted(self._types.items()):
            plan.extensions.add(
                extension_type=ExtensionTypeProto(
                    extension_uri_reference=self._uri_anchors[record.id.uri],
                    type_anchor=anchor,
                    name=record.id.name,
                )
            )
        for anchor, id in sorted(self._functions.items()):
            plan.extensions.add(
                extension_function=ExtensionFunctionProto(
                    extension_uri_reference=self._uri_anchors[id.uri],
                    function_anchor=anchor,
                    name=id.name,
                )
            )
