"""Join relation serialization/deserialization.

The join condition must be a key comparison, or an ``and`` of key
comparisons, between one left and one right column. It is read straight off
the wire so that comparisons without a native compute function
(``is_not_distinct_from``) still lower to a join key.
"""

from typing import List, Tuple

import pyarrow as pa

from substrait_acero.core._extensions.ids import (
    SUBSTRAIT_BOOLEAN_FUNCTIONS_URI,
    SUBSTRAIT_COMPARISON_FUNCTIONS_URI,
    Id,
)
from substrait_acero.core._serde.proto.relation_serde import (
    DeclarationInfo,
    _deserialize_relation_helper,
    _serialize_relation_helper,
    require_input,
)
from substrait_acero.core._serde.proto.serde_context import SerdeContext
from substrait_acero.core._serde.proto.types import (
    ExpressionProto,
    FunctionArgumentProto,
    JoinRelProto,
    JoinTypeProto,
    RelProto,
    ScalarFunctionProto,
    TypeProto,
)
from substrait_acero.core.declarations import (
    Declaration,
    HashJoinNodeOptions,
    JoinKeyCmp,
    JoinType,
)
from substrait_acero.core.error import InvalidPlanError, UnsupportedFeatureError
from substrait_acero.core.expressions import FieldRef

_EQUAL = Id(SUBSTRAIT_COMPARISON_FUNCTIONS_URI, "equal")
_IS_NOT_DISTINCT_FROM = Id(SUBSTRAIT_COMPARISON_FUNCTIONS_URI, "is_not_distinct_from")
_AND = Id(SUBSTRAIT_BOOLEAN_FUNCTIONS_URI, "and")

_KEY_COMPARISONS = {
    _EQUAL: JoinKeyCmp.EQ,
    _IS_NOT_DISTINCT_FROM: JoinKeyCmp.IS,
}

_JOIN_TYPES = {
    JoinRelProto.JOIN_TYPE_INNER: JoinType.INNER,
    JoinRelProto.JOIN_TYPE_LEFT: JoinType.LEFT_OUTER,
    JoinRelProto.JOIN_TYPE_RIGHT: JoinType.RIGHT_OUTER,
    JoinRelProto.JOIN_TYPE_OUTER: JoinType.FULL_OUTER,
}
_JOIN_TYPE_PROTOS = {join_type: proto for proto, join_type in _JOIN_TYPES.items()}

# (key comparison, left field index, right field index)
KeyComparison = Tuple[JoinKeyCmp, int, int]


def _matches(id: Id, expected: Id) -> bool:
    return id.base_name == expected.base_name and id.uri_basename == expected.uri_basename


# =============================================================================
# Deserialization
# =============================================================================


@_deserialize_relation_helper.register
def _deserialize_join(join: JoinRelProto, context: SerdeContext) -> DeclarationInfo:
    left = require_input(join, SerdeContext.LEFT, context)
    right = require_input(join, SerdeContext.RIGHT, context)

    join_type = _JOIN_TYPES.get(join.type)
    if join_type is None:
        type_name = JoinTypeProto.Name(join.type)
        error_class = InvalidPlanError if join.type == JoinRelProto.JOIN_TYPE_UNSPECIFIED else UnsupportedFeatureError
        raise context.create_serde_error(error_class, f"Join type {type_name} is not supported", JoinRelProto)
    if join.HasField("post_join_filter"):
        raise context.create_serde_error(
            UnsupportedFeatureError, "Post-join filters are not supported", JoinRelProto
        )
    if not join.HasField(SerdeContext.EXPRESSION):
        raise context.create_serde_error(
            InvalidPlanError, "Join relation is missing its expression", JoinRelProto
        )

    num_left = len(left.schema)
    num_fields = num_left + len(right.schema)
    with context.path_context(SerdeContext.EXPRESSION):
        comparisons = _parse_key_comparisons(join.expression, num_left, num_fields, context)
        if not comparisons:
            raise context.create_serde_error(
                InvalidPlanError, "Join expression has no key comparisons", ExpressionProto
            )

    options = HashJoinNodeOptions(
        join_type,
        left_keys=[FieldRef(left_index) for _, left_index, _ in comparisons],
        right_keys=[FieldRef(right_index - num_left) for _, _, right_index in comparisons],
        key_cmp=[key_cmp for key_cmp, _, _ in comparisons],
    )
    declaration = Declaration("hashjoin", options, inputs=[left.declaration, right.declaration])
    return DeclarationInfo(declaration, pa.schema(list(left.schema) + list(right.schema)))


def _parse_key_comparisons(
    expr_proto: ExpressionProto, num_left: int, num_fields: int, context: SerdeContext
) -> List[KeyComparison]:
    if expr_proto.WhichOneof("rex_type") != "scalar_function":
        raise context.create_serde_error(
            InvalidPlanError,
            "Join expressions must be a key comparison or an 'and' of key comparisons",
            ExpressionProto,
        )
    function = expr_proto.scalar_function
    with context.path_context("scalar_function"):
        id = context.extension_set.decode_function(function.function_reference, require_resolved=False)
        arguments = _value_arguments(function, context)
        if _matches(id, _AND):
            if not arguments:
                raise context.create_serde_error(
                    InvalidPlanError, "Join expression 'and' has no key comparisons", ScalarFunctionProto
                )
            comparisons = []
            with context.path_context(SerdeContext.ARGUMENTS):
                for i, argument in enumerate(arguments):
                    with context.path_context(f"[{i}].value"):
                        comparisons.extend(_parse_key_comparisons(argument, num_left, num_fields, context))
            return comparisons
        key_cmp = next((cmp for known, cmp in _KEY_COMPARISONS.items() if _matches(id, known)), None)
        if key_cmp is None:
            raise context.create_serde_error(
                InvalidPlanError, f"Function {id} cannot be used to compare join keys", ScalarFunctionProto
            )
        if len(arguments) != 2:
            raise context.create_serde_error(
                InvalidPlanError, f"Join key comparison {id.name} needs 2 arguments", ScalarFunctionProto
            )
        with context.path_context(SerdeContext.ARGUMENTS):
            first = _key_field_index(arguments[0], num_fields, "[0].value", context)
            second = _key_field_index(arguments[1], num_fields, "[1].value", context)
        if first < num_left <= second:
            return [(key_cmp, first, second)]
        if second < num_left <= first:
            return [(key_cmp, second, first)]
        raise context.create_serde_error(
            InvalidPlanError,
            f"Join key comparison {id.name} must compare a left column with a right column",
            ScalarFunctionProto,
        )


def _value_arguments(function: ScalarFunctionProto, context: SerdeContext) -> List[ExpressionProto]:
    arguments = []
    for argument in function.arguments:
        if argument.WhichOneof("arg_type") != "value":
            raise context.create_serde_error(
                InvalidPlanError, "Join expression arguments must be values", FunctionArgumentProto
            )
        arguments.append(argument.value)
    return arguments


def _key_field_index(expr_proto: ExpressionProto, num_fields: int, field_name: str, context: SerdeContext) -> int:
    expr = context.deserialize_expression(field_name, expr_proto)
    if not (isinstance(expr, FieldRef) and expr.is_bound and len(expr.path) == 1):
        with context.path_context(field_name):
            raise context.create_serde_error(
                InvalidPlanError, f"Join keys must be top-level field references, got {expr}", ExpressionProto
            )
    index = expr.path[0]
    if index >= num_fields:
        with context.path_context(field_name):
            raise context.create_serde_error(
                InvalidPlanError,
                f"Join key field {index} is out of range for {num_fields} joined columns",
                ExpressionProto,
            )
    return index


# =============================================================================
# Serialization
# =============================================================================


@_serialize_relation_helper.register
def _serialize_hashjoin(options: HashJoinNodeOptions, declaration: Declaration, context: SerdeContext) -> RelProto:
    left_declaration, right_declaration = declaration.inputs
    left_schema = left_declaration.output_schema()
    right_schema = right_declaration.output_schema()
    key_cmp = options.key_cmp or [JoinKeyCmp.EQ] * len(options.left_keys)
    if not (len(options.left_keys) == len(options.right_keys) == len(key_cmp)) or not key_cmp:
        raise context.create_serde_error(
            InvalidPlanError, "Join keys and key comparisons must be non-empty and of equal length", HashJoinNodeOptions
        )

    comparisons = []
    with context.path_context(SerdeContext.EXPRESSION):
        for left_key, right_key, cmp in zip(options.left_keys, options.right_keys, key_cmp, strict=True):
            left_index = _top_level_index(left_key, left_schema, context)
            right_index = len(left_schema) + _top_level_index(right_key, right_schema, context)
            function_id = _EQUAL if cmp == JoinKeyCmp.EQ else _IS_NOT_DISTINCT_FROM
            comparisons.append(_boolean_call(function_id, [_direct_reference(left_index), _direct_reference(right_index)], context))
        expression = comparisons[0]
        if len(comparisons) > 1:
            expression = _boolean_call(_AND, comparisons, context)

    return RelProto(
        join=JoinRelProto(
            left=context.serialize_relation(SerdeContext.LEFT, left_declaration),
            right=context.serialize_relation(SerdeContext.RIGHT, right_declaration),
            expression=expression,
            type=_JOIN_TYPE_PROTOS[options.join_type],
        )
    )


def _top_level_index(key: FieldRef, schema: pa.Schema, context: SerdeContext) -> int:
    indices, _ = key.resolve(schema)
    if len(indices) != 1:
        raise context.create_serde_error(
            UnsupportedFeatureError, f"Nested join key {key} cannot be serialized", HashJoinNodeOptions
        )
    return indices[0]


def _direct_reference(index: int) -> ExpressionProto:
    reference = ExpressionProto.FieldReference(root_reference=ExpressionProto.FieldReference.RootReference())
    reference.direct_reference.struct_field.field = index
    return ExpressionProto(selection=reference)


def _boolean_call(id: Id, arguments: List[ExpressionProto], context: SerdeContext) -> ExpressionProto:
    return ExpressionProto(
        scalar_function=ScalarFunctionProto(
            function_reference=context.extension_set.encode_function(id),
            arguments=[FunctionArgumentProto(value=argument) for argument in arguments],
            output_type=TypeProto(bool=TypeProto.Boolean(nullability=TypeProto.NULLABILITY_NULLABLE)),
        )
    )
