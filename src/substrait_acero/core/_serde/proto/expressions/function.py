"""Scalar function and cast serialization/deserialization."""

import logging
from typing import List

from substrait_acero.core._serde.proto.expression_serde import (
    _deserialize_expression_helper,
    register_call_shape,
)
from substrait_acero.core._serde.proto.serde_context import SerdeContext
from substrait_acero.core._serde.proto.types import (
    CastProto,
    ExpressionProto,
    FunctionArgumentProto,
    ScalarFunctionProto,
)
from substrait_acero.core.error import InvalidPlanError, UnsupportedFeatureError
from substrait_acero.core.expressions import Call, Expression

logger = logging.getLogger(__name__)


# =============================================================================
# Extension functions
# =============================================================================


def serialize_extension_call(expr: Call, context: SerdeContext) -> ExpressionProto:
    """Serialize a call through an extension function anchor.

    Raises:
        UnsupportedFeatureError: If no extension function is registered for the
            compute function, or the call carries options.
    """
    if expr.options:
        raise context.create_serde_error(
            UnsupportedFeatureError,
            f"Function options of {expr.function_name} have no Substrait equivalent",
            Call,
        )
    id = context.extension_set.registry.get_function_id(expr.function_name)
    if id is None:
        raise context.create_serde_error(
            UnsupportedFeatureError,
            f"No Substrait function is registered for compute function {expr.function_name}",
            Call,
        )
    function = ScalarFunctionProto(
        function_reference=context.extension_set.encode_function(id),
        arguments=serialize_arguments(expr.arguments, context),
    )
    if context.input_schema is not None:
        output_type = expr.data_type(context.input_schema)
        function.output_type.CopyFrom(context.serialize_type("output_type", output_type, True))
    return ExpressionProto(scalar_function=function)


def serialize_arguments(
    arguments: List[Expression], context: SerdeContext
) -> List[FunctionArgumentProto]:
    result = []
    with context.path_context(SerdeContext.ARGUMENTS):
        for i, argument in enumerate(arguments):
            with context.path_context(f"[{i}]"):
                result.append(
                    FunctionArgumentProto(value=context.serialize_expression(SerdeContext.VALUE, argument))
                )
    return result


def deserialize_arguments(function_proto, context: SerdeContext) -> List[Expression]:
    """Deserialize the value arguments of a scalar or aggregate function.

    Enum arguments are skipped.

    Raises:
        UnsupportedFeatureError: If only the legacy ``args`` list is populated or a
            type argument is present.
        InvalidPlanError: If an argument has no kind set.
    """
    if not function_proto.arguments and function_proto.args:
        raise context.create_serde_error(
            UnsupportedFeatureError,
            "Function arguments given only in the deprecated 'args' field are not supported",
            type(function_proto),
        )
    arguments = []
    with context.path_context(SerdeContext.ARGUMENTS):
        for i, argument in enumerate(function_proto.arguments):
            with context.path_context(f"[{i}]"):
                kind = argument.WhichOneof("arg_type")
                if kind == "value":
                    arguments.append(context.deserialize_expression(SerdeContext.VALUE, argument.value))
                elif kind == "enum":
                    logger.warning(
                        f"Ignoring enum argument '{argument.enum}' at {context.current_path}"
                    )
                elif kind == "type":
                    raise context.create_serde_error(
                        UnsupportedFeatureError,
                        "Type arguments are not supported",
                        FunctionArgumentProto,
                    )
                else:
                    raise context.create_serde_error(
                        InvalidPlanError, "Function argument has no kind set", FunctionArgumentProto
                    )
    return arguments


def resolve_function_name(function_reference: int, context: SerdeContext) -> str:
    """Resolve a function anchor to the compute function name it stands for.

    Raises:
        InvalidPlanError: If the anchor is unknown or its function is not registered.
    """
    id = context.extension_set.decode_function(function_reference)
    function_name = context.extension_set.registry.get_function_name(id)
    if function_name is None:
        raise context.create_serde_error(
            InvalidPlanError,
            f"Function {id} is not registered with the extension id registry",
            ScalarFunctionProto,
        )
    return function_name


@_deserialize_expression_helper.register
def _deserialize_scalar_function(
    underlying_proto: ScalarFunctionProto, context: SerdeContext
) -> Expression:
    function_name = resolve_function_name(underlying_proto.function_reference, context)
    return Call(function_name, deserialize_arguments(underlying_proto, context))


# =============================================================================
# Cast
# =============================================================================


@register_call_shape("cast")
def _serialize_cast(expr: Call, context: SerdeContext) -> ExpressionProto:
    if len(expr.arguments) != 1 or set(expr.options) != {"target_type"}:
        return None
    return ExpressionProto(
        cast=CastProto(
            type=context.serialize_type(SerdeContext.TYPE, expr.options["target_type"], True),
            input=context.serialize_expression(SerdeContext.INPUT, expr.arguments[0]),
        )
    )


@_deserialize_expression_helper.register
def _deserialize_cast(underlying_proto: CastProto, context: SerdeContext) -> Expression:
    target_type, _ = context.deserialize_type(SerdeContext.TYPE, underlying_proto.type)
    return Call(
        "cast",
        [context.deserialize_expression(SerdeContext.INPUT, underlying_proto.input)],
        {"target_type": target_type},
    )
