"""Project and filter relation serialization/deserialization."""

from typing import List

import pyarrow as pa

from substrait_acero.core._serde.proto.relation_serde import (
    DeclarationInfo,
    _deserialize_relation_helper,
    _serialize_relation_helper,
    deserialize_predicate,
    require_input,
    unique_name,
)
from substrait_acero.core._serde.proto.serde_context import SerdeContext
from substrait_acero.core._serde.proto.types import (
    EmitProto,
    FilterRelProto,
    ProjectRelProto,
    RelCommonProto,
    RelProto,
)
from substrait_acero.core.declarations import (
    Declaration,
    FilterNodeOptions,
    ProjectNodeOptions,
)
from substrait_acero.core.error import InvalidPlanError
from substrait_acero.core.expressions import Call, Expression, FieldRef, Literal

# =============================================================================
# Filter
# =============================================================================


@_deserialize_relation_helper.register
def _deserialize_filter(filter: FilterRelProto, context: SerdeContext) -> DeclarationInfo:
    input_info = require_input(filter, SerdeContext.INPUT, context)
    if not filter.HasField(SerdeContext.CONDITION):
        raise context.create_serde_error(
            InvalidPlanError, "Filter relation is missing its condition", FilterRelProto
        )
    condition = deserialize_predicate(SerdeContext.CONDITION, filter.condition, input_info.schema, context)
    declaration = Declaration("filter", FilterNodeOptions(condition), inputs=[input_info.declaration])
    return DeclarationInfo(declaration, input_info.schema)


@_serialize_relation_helper.register
def _serialize_filter(options: FilterNodeOptions, declaration: Declaration, context: SerdeContext) -> RelProto:
    input_declaration = declaration.input
    schema = input_declaration.output_schema()
    with context.schema_context(schema):
        condition = context.serialize_expression(
            SerdeContext.CONDITION, options.filter_expression.bind(schema)
        )
    return RelProto(
        filter=FilterRelProto(
            input=context.serialize_relation(SerdeContext.INPUT, input_declaration),
            condition=condition,
        )
    )


# =============================================================================
# Project
# =============================================================================


def _column_name(expr: Expression, schema: pa.Schema) -> str:
    if isinstance(expr, Call):
        return expr.function_name
    if isinstance(expr, FieldRef):
        return expr.resolve(schema)[1].name
    if isinstance(expr, Literal):
        return "literal"
    return type(expr).__name__.lower()


@_deserialize_relation_helper.register
def _deserialize_project(project: ProjectRelProto, context: SerdeContext) -> DeclarationInfo:
    input_info = require_input(project, SerdeContext.INPUT, context)
    schema = input_info.schema
    expressions: List[Expression] = [FieldRef(i) for i in range(len(schema))]
    fields: List[pa.Field] = list(schema)
    names = list(schema.names)
    with context.path_context(SerdeContext.EXPRESSIONS):
        for i, expr_proto in enumerate(project.expressions):
            with context.path_context(f"[{i}]"):
                try:
                    expr = context._deserialize_expression_item(expr_proto).bind(schema)
                    data_type = expr.data_type(schema)
                    name = unique_name(_column_name(expr, schema), names)
                except Exception as e:
                    context._handle_serde_error(e)
            expressions.append(expr)
            names.append(name)
            fields.append(pa.field(name, data_type))
    declaration = Declaration(
        "project", ProjectNodeOptions(expressions, names), inputs=[input_info.declaration]
    )
    return DeclarationInfo(declaration, pa.schema(fields))


@_serialize_relation_helper.register
def _serialize_project(options: ProjectNodeOptions, declaration: Declaration, context: SerdeContext) -> RelProto:
    input_declaration = declaration.input
    schema = input_declaration.output_schema()
    expressions = [expr.bind(schema) for expr in options.expressions]
    num_inputs = len(schema)
    input_rel = context.serialize_relation(SerdeContext.INPUT, input_declaration)

    if all(isinstance(expr, FieldRef) and len(expr.path) == 1 for expr in expressions):
        # A pure column selection becomes an emit on the input relation
        common = getattr(input_rel, input_rel.WhichOneof("rel_type")).common
        if common.WhichOneof("emit_kind") != "emit":
            common.emit.CopyFrom(EmitProto(output_mapping=[expr.path[0] for expr in expressions]))
            return input_rel

    # The wire project appends columns to its input's
    keeps_input = expressions[:num_inputs] == [FieldRef(i) for i in range(num_inputs)]
    appended = expressions[num_inputs:] if keeps_input else expressions
    with context.schema_context(schema):
        project = ProjectRelProto(
            input=input_rel,
            expressions=context.serialize_expression_list(SerdeContext.EXPRESSIONS, appended),
        )
    if not keeps_input:
        project.common.CopyFrom(
            RelCommonProto(emit=EmitProto(output_mapping=list(range(num_inputs, num_inputs + len(appended)))))
        )
    return RelProto(project=project)
