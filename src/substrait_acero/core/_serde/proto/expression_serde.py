"""Expression serialization/deserialization using singledispatch.

This module provides the main dispatch functions for expression serialization.
The actual serialization implementations are organized in the expressions/ subdirectory.

Calls of a few compute functions (``if_else``, ``case_when``, ``list_element``,
``struct_field``, ``cast``) map onto core Substrait expression kinds rather
than extension functions. Their serializers are registered by function name
and tried before the generic extension-function encoding; a shape serializer
returns None when the call's arguments don't fit the core construct.
"""

from functools import singledispatch
from typing import Callable, Dict, Optional

from google.protobuf.message import Message

from substrait_acero.core._serde.proto.serde_context import SerdeContext
from substrait_acero.core._serde.proto.types import ExpressionProto, LiteralProto
from substrait_acero.core.error import InvalidPlanError, UnsupportedFeatureError
from substrait_acero.core.expressions import Call, Expression, Literal

CallShapeSerializer = Callable[[Call, SerdeContext], Optional[ExpressionProto]]

_CALL_SHAPE_SERIALIZERS: Dict[str, CallShapeSerializer] = {}


def register_call_shape(function_name: str) -> Callable[[CallShapeSerializer], CallShapeSerializer]:
    """Register the core-expression serializer for calls of ``function_name``."""

    def decorator(serializer: CallShapeSerializer) -> CallShapeSerializer:
        _CALL_SHAPE_SERIALIZERS[function_name] = serializer
        return serializer

    return decorator


@singledispatch
def serialize_expression(expr: Expression, context: SerdeContext) -> ExpressionProto:
    """Serialize a native expression to a wire expression.

    This function uses singledispatch to handle different expression types.
    Each expression type should have a corresponding register function that implements
    the specific serialization logic.

    Args:
        expr: The expression to serialize; field references must be bound.
        context: The serde context for error reporting and path tracking.

    Returns:
        ExpressionProto: The serialized wire expression.

    Raises:
        UnsupportedFeatureError: If the expression type is not registered.
    """
    raise context.create_serde_error(
        UnsupportedFeatureError,
        f"Serialization not implemented for expression: {type(expr).__name__}",
        type(expr),
    )


def deserialize_expression(expr_proto: ExpressionProto, context: SerdeContext) -> Expression:
    """Deserialize a wire expression.

    This function determines which oneof field is set in the ExpressionProto
    and delegates to the appropriate deserialization helper function.

    Args:
        expr_proto: The wire expression to deserialize.
        context: The serde context for error reporting and path tracking.

    Returns:
        Expression: The deserialized native expression.

    Raises:
        InvalidPlanError: If no expression kind is set.
        UnsupportedFeatureError: If the expression kind has no native form.
    """
    which_oneof = expr_proto.WhichOneof("rex_type")
    if which_oneof is None:
        raise context.create_serde_error(
            InvalidPlanError, "Expression has no kind set", ExpressionProto
        )
    underlying_proto = getattr(expr_proto, which_oneof)
    with context.path_context(which_oneof):
        return _deserialize_expression_helper(underlying_proto, context)


@singledispatch
def _deserialize_expression_helper(
    underlying_proto: Message, context: SerdeContext
) -> Expression:
    """Deserialize the message set in the Expression oneof.

    Raises:
        UnsupportedFeatureError: If the expression kind is not registered.
    """
    raise context.create_serde_error(
        UnsupportedFeatureError,
        f"Deserialization not implemented for expression kind {type(underlying_proto).__name__}",
        type(underlying_proto),
    )


# =============================================================================
# Literal
# =============================================================================


@serialize_expression.register
def _serialize_literal_expr(expr: Literal, context: SerdeContext) -> ExpressionProto:
    return ExpressionProto(literal=context.serialize_literal("literal", expr.value))


@_deserialize_expression_helper.register
def _deserialize_literal_expr(underlying_proto: LiteralProto, context: SerdeContext) -> Expression:
    from substrait_acero.core._serde.proto.literal_serde import deserialize_literal

    return Literal(deserialize_literal(underlying_proto, context))


# =============================================================================
# Call
# =============================================================================


@serialize_expression.register
def _serialize_call(expr: Call, context: SerdeContext) -> ExpressionProto:
    shape_serializer = _CALL_SHAPE_SERIALIZERS.get(expr.function_name)
    if shape_serializer is not None:
        encoded = shape_serializer(expr, context)
        if encoded is not None:
            return encoded
    from substrait_acero.core._serde.proto.expressions.function import (
        serialize_extension_call,
    )

    return serialize_extension_call(expr, context)


# Import all expression modules to register their serde functions
from substrait_acero.core._serde.proto.expressions import (  # noqa: F401, E402
    conditional,
    function,
    reference,
)
