"""Aggregate relation serialization/deserialization."""

from typing import List

import pyarrow as pa

from substrait_acero.core._serde.proto.expressions.function import (
    deserialize_arguments,
    resolve_function_name,
)
from substrait_acero.core._serde.proto.relation_serde import (
    DeclarationInfo,
    _deserialize_relation_helper,
    _serialize_relation_helper,
    require_input,
    unique_name,
)
from substrait_acero.core._serde.proto.serde_context import SerdeContext
from substrait_acero.core._serde.proto.types import (
    AggregateFunctionProto,
    AggregateRelProto,
    AggregationPhaseProto,
    ExpressionProto,
    FunctionArgumentProto,
    GroupingProto,
    MeasureProto,
    RelProto,
)
from substrait_acero.core.declarations import (
    Aggregate,
    AggregateNodeOptions,
    Declaration,
)
from substrait_acero.core.error import InvalidPlanError, UnsupportedFeatureError
from substrait_acero.core.expressions import Expression, FieldRef

_HASH_PREFIX = "hash_"

# count() without arguments counts rows
_COUNT = "count"
_COUNT_ALL = "count_all"


# =============================================================================
# Deserialization
# =============================================================================


@_deserialize_relation_helper.register
def _deserialize_aggregate(aggregate: AggregateRelProto, context: SerdeContext) -> DeclarationInfo:
    input_info = require_input(aggregate, SerdeContext.INPUT, context)
    schema = input_info.schema

    if len(aggregate.groupings) > 1:
        raise context.create_serde_error(
            UnsupportedFeatureError,
            f"Aggregates with {len(aggregate.groupings)} grouping sets are not supported",
            AggregateRelProto,
        )
    keys: List[FieldRef] = []
    if aggregate.groupings:
        with context.path_context("groupings[0]"):
            keys = _deserialize_grouping(aggregate, aggregate.groupings[0], schema, context)
    names = [key.resolve(schema)[1].name for key in keys]

    aggregates: List[Aggregate] = []
    with context.path_context("measures"):
        for i, measure in enumerate(aggregate.measures):
            with context.path_context(f"[{i}]"):
                aggregates.append(_deserialize_measure(measure, bool(keys), schema, names, context))
                names.append(aggregates[-1].name)

    declaration = Declaration(
        "aggregate", AggregateNodeOptions(aggregates, keys), inputs=[input_info.declaration]
    )
    try:
        output_schema = declaration.output_schema()
    except Exception as e:
        context._handle_serde_error(e)
    return DeclarationInfo(declaration, output_schema)


def _deserialize_grouping(
    aggregate: AggregateRelProto, grouping: GroupingProto, schema: pa.Schema, context: SerdeContext
) -> List[FieldRef]:
    expressions = context.deserialize_expression_list("grouping_expressions", grouping.grouping_expressions)
    # Newer plans list grouping expressions once on the relation and refer to them by index
    if "expression_references" in GroupingProto.DESCRIPTOR.fields_by_name:
        with context.path_context("expression_references"):
            for reference in grouping.expression_references:
                if reference >= len(aggregate.grouping_expressions):
                    raise context.create_serde_error(
                        InvalidPlanError,
                        f"Grouping expression reference {reference} is out of range",
                        GroupingProto,
                    )
                expressions.append(
                    context.deserialize_expression(f"[{reference}]", aggregate.grouping_expressions[reference])
                )
    keys = []
    for i, expr in enumerate(expressions):
        keys.append(_direct_field_ref(expr, schema, f"grouping key {i}", context))
    return keys


def _deserialize_measure(
    measure: MeasureProto, grouped: bool, schema: pa.Schema, taken: List[str], context: SerdeContext
) -> Aggregate:
    if not measure.HasField("measure"):
        raise context.create_serde_error(InvalidPlanError, "Measure has no aggregate function", MeasureProto)
    if measure.HasField("filter"):
        raise context.create_serde_error(
            UnsupportedFeatureError, "Filtered aggregate measures are not supported", MeasureProto
        )
    function = measure.measure
    with context.path_context("measure"):
        if function.invocation == AggregateFunctionProto.AGGREGATION_INVOCATION_DISTINCT:
            raise context.create_serde_error(
                UnsupportedFeatureError, "DISTINCT aggregate invocations are not supported", AggregateFunctionProto
            )
        if function.phase != AggregationPhaseProto.AGGREGATION_PHASE_INITIAL_TO_RESULT:
            raise context.create_serde_error(
                UnsupportedFeatureError,
                f"Aggregation phase {AggregationPhaseProto.Name(function.phase)} is not supported",
                AggregateFunctionProto,
            )
        if function.sorts:
            raise context.create_serde_error(
                UnsupportedFeatureError, "Sorted aggregate measures are not supported", AggregateFunctionProto
            )
        id = context.extension_set.decode_function(function.function_reference)
        function_name = resolve_function_name(function.function_reference, context)
        arguments = deserialize_arguments(function, context)
        targets = [
            _direct_field_ref(argument, schema, f"argument {i} of {id.name}", context)
            for i, argument in enumerate(arguments)
        ]
    if function_name == _COUNT and not targets:
        function_name = _COUNT_ALL
    if grouped:
        function_name = _HASH_PREFIX + function_name
    return Aggregate(function_name, targets, unique_name(id.base_name, taken))


def _direct_field_ref(expr: Expression, schema: pa.Schema, description: str, context: SerdeContext) -> FieldRef:
    if not isinstance(expr, FieldRef):
        raise context.create_serde_error(
            UnsupportedFeatureError, f"The {description} must be a direct field reference, got {expr}", ExpressionProto
        )
    try:
        return expr.bind(schema)
    except Exception as e:
        context._handle_serde_error(e)


# =============================================================================
# Serialization
# =============================================================================


@_serialize_relation_helper.register
def _serialize_aggregate(options: AggregateNodeOptions, declaration: Declaration, context: SerdeContext) -> RelProto:
    input_declaration = declaration.input
    schema = input_declaration.output_schema()
    output_schema = declaration.output_schema()
    keys = [key.bind(schema) for key in options.keys]

    groupings = []
    measures = []
    with context.schema_context(schema):
        if keys:
            with context.path_context("groupings[0]"):
                groupings.append(
                    GroupingProto(grouping_expressions=context.serialize_expression_list("grouping_expressions", keys))
                )
        with context.path_context("measures"):
            for i, aggregate in enumerate(options.aggregates):
                with context.path_context(f"[{i}]"):
                    output_field = output_schema.field(len(keys) + i)
                    measures.append(
                        MeasureProto(measure=_serialize_measure(aggregate, output_field, schema, context))
                    )

    return RelProto(
        aggregate=AggregateRelProto(
            input=context.serialize_relation(SerdeContext.INPUT, input_declaration),
            groupings=groupings,
            measures=measures,
        )
    )


def _serialize_measure(
    aggregate: Aggregate, output_field: pa.Field, schema: pa.Schema, context: SerdeContext
) -> AggregateFunctionProto:
    function_name = aggregate.function
    if function_name.startswith(_HASH_PREFIX):
        function_name = function_name[len(_HASH_PREFIX):]
    if function_name == _COUNT_ALL:
        function_name = _COUNT
    id = context.extension_set.registry.get_function_id(function_name)
    if id is None:
        raise context.create_serde_error(
            UnsupportedFeatureError,
            f"No Substrait function is registered for aggregate function {aggregate.function}",
            Aggregate,
        )
    arguments = []
    with context.path_context(SerdeContext.ARGUMENTS):
        for i, target in enumerate(aggregate.targets):
            with context.path_context(f"[{i}]"):
                arguments.append(
                    FunctionArgumentProto(value=context.serialize_expression(SerdeContext.VALUE, target.bind(schema)))
                )
    return AggregateFunctionProto(
        function_reference=context.extension_set.encode_function(id),
        arguments=arguments,
        output_type=context.serialize_type("output_type", output_field.type, output_field.nullable),
        phase=AggregationPhaseProto.AGGREGATION_PHASE_INITIAL_TO_RESULT,
        invocation=AggregateFunctionProto.AGGREGATION_INVOCATION_ALL,
    )
