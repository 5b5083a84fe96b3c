"""Helper utilities for path tracking in serde operations."""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterable, List, Optional, Tuple, Type

import pyarrow as pa
from google.protobuf.message import DecodeError

from substrait_acero.api.config import ConversionOptions
from substrait_acero.core._extensions.extension_set import ExtensionSet
from substrait_acero.core.error import (
    InvalidPlanError,
    SerdeError,
    UnsupportedFeatureError,
)
from substrait_acero.core.expressions import Expression

if TYPE_CHECKING:
    from substrait_acero.core._serde.proto.relation_serde import DeclarationInfo
    from substrait_acero.core._serde.proto.types import (
        ExpressionProto,
        LiteralProto,
        NamedStructProto,
        RelProto,
        TypeProto,
    )
    from substrait_acero.core.declarations import Declaration


class SerdeContext:
    """Context for managing conversion state and path tracking.

    Provides centralized error handling, path tracking, and field-level serde
    operations. It also carries the extension set that anchors are assigned
    in or resolved from, and the conversion options. All serde operations
    should go through a context so errors report where in the plan they
    occurred.
    """

    # Common field name constants for improved usability
    EXPRESSION = "expression"
    EXPRESSIONS = "expressions"
    ARGUMENTS = "arguments"
    INPUT = "input"
    LEFT = "left"
    RIGHT = "right"
    CONDITION = "condition"
    FILTER = "filter"
    TYPE = "type"
    TYPES = "types"
    VALUE = "value"
    BASE_SCHEMA = "base_schema"
    RELATIONS = "relations"
    REL = "rel"
    ROOT = "root"

    def __init__(
        self,
        extension_set: Optional[ExtensionSet] = None,
        options: Optional[ConversionOptions] = None,
    ):
        """Initialize a SerdeContext with an empty path tracker."""
        self._path_tracker = PathTracker()
        self._extension_set = extension_set if extension_set is not None else ExtensionSet()
        self._options = options if options is not None else ConversionOptions()
        self._input_schema: Optional[pa.Schema] = None

    @property
    def extension_set(self) -> ExtensionSet:
        return self._extension_set

    @property
    def options(self) -> ConversionOptions:
        return self._options

    @property
    def input_schema(self) -> Optional[pa.Schema]:
        """Schema expressions are currently being serialized against, if known."""
        return self._input_schema

    @contextmanager
    def schema_context(self, schema: pa.Schema):
        """Context manager setting the schema that serialized expressions refer to."""
        previous = self._input_schema
        self._input_schema = schema
        try:
            yield
        finally:
            self._input_schema = previous

    @property
    def current_path(self) -> str:
        """Get the current serde path for error reporting."""
        return self._path_tracker.current_path

    def clear_path(self) -> None:
        """Clear the current serde path."""
        self._path_tracker.clear()

    @contextmanager
    def path_context(self, field_name: str):
        """Context manager for tracking field paths during serde operations."""
        self._path_tracker.push(field_name)
        try:
            yield
        finally:
            self._path_tracker.pop()

    def create_serde_error(
        self,
        error_class: Type[SerdeError],
        message: str,
        object_type: Optional[Type] = None,
    ) -> SerdeError:
        """Create a serde error with the current path automatically included.

        Args:
            error_class: The type of serde error to create.
            message: The error message.
            object_type: Optional type information for the error.

        Returns:
            A serde error with path information included.
        """
        current_path = self.current_path
        return error_class(message, object_type, current_path if current_path else None)

    def _handle_serde_error(self, e: Exception) -> None:
        # If it already carries a path, re-raise as-is
        if getattr(e, "field_path", None):
            raise

        current_path = self.current_path or None
        if isinstance(e, SerdeError):
            if current_path:
                raise type(e)(e.message, e.object_type, current_path) from e
            raise
        # Engine and wire failures map onto the two conversion error kinds
        if isinstance(e, pa.ArrowNotImplementedError):
            raise UnsupportedFeatureError(str(e), None, current_path) from e
        if isinstance(e, (pa.ArrowException, DecodeError)):
            raise InvalidPlanError(str(e), None, current_path) from e
        if current_path:
            # Wrap non-serde errors
            raise PathAnnotatedError(f"{str(e)} at {current_path}", current_path) from e
        raise

    # =============================================================================
    # Core Serde Function Wrappers to preserve field path tracking
    # =============================================================================

    def serialize_type(
        self, field_name: str, data_type: pa.DataType, nullable: bool = True
    ) -> TypeProto:
        """Serialize a native type with field path tracking."""
        from substrait_acero.core._serde.proto.datatype_serde import serialize_type

        with self.path_context(field_name):
            try:
                return serialize_type(data_type, self, nullable)
            except Exception as e:
                self._handle_serde_error(e)

    def deserialize_type(
        self, field_name: str, type_proto: TypeProto
    ) -> Tuple[pa.DataType, bool]:
        """Deserialize a wire type with field path tracking.

        Returns:
            The native type and whether it is nullable.
        """
        from substrait_acero.core._serde.proto.datatype_serde import deserialize_type

        with self.path_context(field_name):
            try:
                return deserialize_type(type_proto, self)
            except Exception as e:
                self._handle_serde_error(e)

    def serialize_schema(self, field_name: str, schema: pa.Schema) -> NamedStructProto:
        """Serialize a schema to a named struct with field path tracking."""
        from substrait_acero.core._serde.proto.datatype_serde import serialize_schema

        with self.path_context(field_name):
            try:
                return serialize_schema(schema, self)
            except Exception as e:
                self._handle_serde_error(e)

    def deserialize_schema(
        self, field_name: str, named_struct_proto: NamedStructProto
    ) -> pa.Schema:
        """Deserialize a named struct to a schema with field path tracking."""
        from substrait_acero.core._serde.proto.datatype_serde import deserialize_schema

        with self.path_context(field_name):
            try:
                return deserialize_schema(named_struct_proto, self)
            except Exception as e:
                self._handle_serde_error(e)

    def serialize_literal(self, field_name: str, value: pa.Scalar) -> LiteralProto:
        """Serialize a scalar to a wire literal with field path tracking."""
        from substrait_acero.core._serde.proto.literal_serde import serialize_literal

        with self.path_context(field_name):
            try:
                return serialize_literal(value, self)
            except Exception as e:
                self._handle_serde_error(e)

    def deserialize_literal(self, field_name: str, literal_proto: LiteralProto) -> pa.Scalar:
        """Deserialize a wire literal to a scalar with field path tracking."""
        from substrait_acero.core._serde.proto.literal_serde import deserialize_literal

        with self.path_context(field_name):
            try:
                return deserialize_literal(literal_proto, self)
            except Exception as e:
                self._handle_serde_error(e)

    def serialize_expression(self, field_name: str, expr: Expression) -> ExpressionProto:
        """Serialize a native expression with field path tracking.

        Args:
            field_name: The name of the field being serialized.
            expr: The expression to serialize; field references must be bound.

        Returns:
            The serialized protobuf representation.
        """
        from substrait_acero.core._serde.proto.expression_serde import (
            serialize_expression,
        )

        with self.path_context(field_name):
            try:
                return serialize_expression(expr, self)
            except Exception as e:
                self._handle_serde_error(e)

    def deserialize_expression(
        self, field_name: str, expr_proto: ExpressionProto
    ) -> Expression:
        """Deserialize a wire expression with field path tracking.

        Args:
            field_name: The name of the field being deserialized.
            expr_proto: The protobuf representation to deserialize.

        Returns:
            The deserialized expression.
        """
        from substrait_acero.core._serde.proto.expression_serde import (
            deserialize_expression,
        )

        with self.path_context(field_name):
            try:
                return deserialize_expression(expr_proto, self)
            except Exception as e:
                self._handle_serde_error(e)

    def serialize_expression_list(
        self, field_name: str, expr_list: List[Expression]
    ) -> List[ExpressionProto]:
        """Serialize a list of expressions with field path tracking."""
        result = []
        with self.path_context(field_name):
            for i, expr in enumerate(expr_list):
                with self.path_context(f"[{i}]"):
                    try:
                        result.append(self._serialize_expression_item(expr))
                    except Exception as e:
                        self._handle_serde_error(e)
        return result

    def deserialize_expression_list(
        self, field_name: str, expr_proto_list: Iterable[ExpressionProto]
    ) -> List[Expression]:
        """Deserialize a list of expressions with field path tracking."""
        result = []
        if not expr_proto_list:
            return result
        with self.path_context(field_name):
            for i, expr_proto in enumerate(expr_proto_list):
                with self.path_context(f"[{i}]"):
                    try:
                        result.append(self._deserialize_expression_item(expr_proto))
                    except Exception as e:
                        self._handle_serde_error(e)
        return result

    def _serialize_expression_item(self, expr: Expression) -> ExpressionProto:
        from substrait_acero.core._serde.proto.expression_serde import (
            serialize_expression,
        )

        return serialize_expression(expr, self)

    def _deserialize_expression_item(self, expr_proto: ExpressionProto) -> Expression:
        from substrait_acero.core._serde.proto.expression_serde import (
            deserialize_expression,
        )

        return deserialize_expression(expr_proto, self)

    def serialize_relation(self, field_name: str, declaration: Declaration) -> RelProto:
        """Serialize a declaration tree to a wire relation with field path tracking."""
        from substrait_acero.core._serde.proto.relation_serde import serialize_relation

        with self.path_context(field_name):
            try:
                return serialize_relation(declaration, self)
            except Exception as e:
                self._handle_serde_error(e)

    def deserialize_relation(self, field_name: str, rel_proto: RelProto) -> DeclarationInfo:
        """Lower a wire relation to a declaration with field path tracking.

        Returns:
            The declaration and the schema it produces.
        """
        from substrait_acero.core._serde.proto.relation_serde import deserialize_relation

        with self.path_context(field_name):
            try:
                return deserialize_relation(rel_proto, self)
            except Exception as e:
                self._handle_serde_error(e)


def create_serde_context(
    extension_set: Optional[ExtensionSet] = None,
    options: Optional[ConversionOptions] = None,
) -> SerdeContext:
    """Create a new SerdeContext instance.

    This is the preferred way to get a context for serde operations.
    Each context is independent; the extension set it wraps is not.

    Returns:
        A new SerdeContext instance ready for serde operations.
    """
    return SerdeContext(extension_set, options)


class PathAnnotatedError(RuntimeError):
    """A non-conversion error raised while converting the field at ``field_path``."""

    def __init__(self, message: str, field_path: str):
        super().__init__(message)
        self.field_path = field_path


class PathTracker:
    """Path tracker for serde operations."""

    def __init__(self):
        """Initialize a PathTracker."""
        self._path_stack = []

    @property
    def current_path(self) -> str:
        """Get the current field path as a string, e.g. ``relations[0].rel.join``."""
        path = ""
        for segment in self._path_stack:
            if path and not segment.startswith("["):
                path += "."
            path += segment
        return path

    def push(self, field_name: str) -> None:
        """Push a field name onto the path stack."""
        self._path_stack.append(field_name)

    def pop(self) -> None:
        """Pop the last field name from the path stack."""
        if self._path_stack:
            self._path_stack.pop()

    def clear(self) -> None:
        """Clear the entire path stack."""
        self._path_stack.clear()
