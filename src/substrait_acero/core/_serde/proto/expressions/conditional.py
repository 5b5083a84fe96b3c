"""Conditional expression serialization/deserialization.

``if_else(cond, then, else)`` and ``case_when(make_struct(c1..cn), v1..vn[, else])``
both map onto the wire ``if_then`` expression.
"""

from typing import List, Optional

from substrait_acero.core._serde.proto.expression_serde import (
    _deserialize_expression_helper,
    register_call_shape,
)
from substrait_acero.core._serde.proto.serde_context import SerdeContext
from substrait_acero.core._serde.proto.types import (
    ExpressionProto,
    IfClauseProto,
    IfThenProto,
)
from substrait_acero.core.error import InvalidPlanError
from substrait_acero.core.expressions import Call, Expression


def _if_then(
    conditions: List[Expression],
    values: List[Expression],
    otherwise: Optional[Expression],
    context: SerdeContext,
) -> ExpressionProto:
    clauses = []
    with context.path_context("ifs"):
        for i, (condition, value) in enumerate(zip(conditions, values, strict=True)):
            with context.path_context(f"[{i}]"):
                clauses.append(
                    IfClauseProto(
                        **{
                            "if": context.serialize_expression("if", condition),
                            "then": context.serialize_expression("then", value),
                        }
                    )
                )
    if_then = IfThenProto(ifs=clauses)
    if otherwise is not None:
        getattr(if_then, "else").CopyFrom(context.serialize_expression("else", otherwise))
    return ExpressionProto(if_then=if_then)


@register_call_shape("if_else")
def _serialize_if_else(expr: Call, context: SerdeContext) -> Optional[ExpressionProto]:
    if len(expr.arguments) != 3 or expr.options:
        return None
    condition, then, otherwise = expr.arguments
    return _if_then([condition], [then], otherwise, context)


@register_call_shape("case_when")
def _serialize_case_when(expr: Call, context: SerdeContext) -> Optional[ExpressionProto]:
    if not expr.arguments or expr.options:
        return None
    conditions = expr.arguments[0]
    if not (isinstance(conditions, Call) and conditions.function_name == "make_struct"):
        return None
    num_conditions = len(conditions.arguments)
    values = expr.arguments[1:]
    if num_conditions == 0 or len(values) not in (num_conditions, num_conditions + 1):
        return None
    otherwise = values[num_conditions] if len(values) > num_conditions else None
    return _if_then(conditions.arguments, values[:num_conditions], otherwise, context)


@_deserialize_expression_helper.register
def _deserialize_if_then(underlying_proto: IfThenProto, context: SerdeContext) -> Expression:
    if not underlying_proto.ifs:
        raise context.create_serde_error(
            InvalidPlanError, "if_then expressions need at least one clause", IfThenProto
        )
    conditions = []
    values = []
    with context.path_context("ifs"):
        for i, clause in enumerate(underlying_proto.ifs):
            with context.path_context(f"[{i}]"):
                conditions.append(context.deserialize_expression("if", getattr(clause, "if")))
                values.append(context.deserialize_expression("then", clause.then))
    otherwise = None
    if underlying_proto.HasField("else"):
        otherwise = context.deserialize_expression("else", getattr(underlying_proto, "else"))

    if len(conditions) == 1 and otherwise is not None:
        return Call("if_else", [conditions[0], values[0], otherwise])
    names = [f"cond{i + 1}" for i in range(len(conditions))]
    arguments = [Call("make_struct", conditions, {"field_names": names}), *values]
    if otherwise is not None:
        arguments.append(otherwise)
    return Call("case_when", arguments)
