"""Entry points binding native declarations and expressions to pyarrow.acero."""

from __future__ import annotations

import dataclasses

import pyarrow as pa
import pyarrow.acero as acero
import pyarrow.compute as pc

from substrait_acero._backends.acero.expr_converter import ExprConverter
from substrait_acero._backends.acero.plan_converter import PlanConverter
from substrait_acero.core.declarations import Declaration, TableSourceNodeOptions
from substrait_acero.core.expressions import Expression

_LEAF_FACTORIES = ("table_source", "scan")


def convert_expression(expr: Expression) -> pc.Expression:
    return ExprConverter().convert(expr)


def convert_declaration(declaration: Declaration) -> acero.Declaration:
    return PlanConverter().convert(declaration)


def infer_type(expr: Expression, schema: pa.Schema) -> pa.DataType:
    """Type of ``expr`` evaluated against ``schema``, as bound by Acero."""
    empty_run = acero.Declaration.from_sequence(
        [
            acero.Declaration("table_source", acero.TableSourceNodeOptions(schema.empty_table())),
            acero.Declaration("project", acero.ProjectNodeOptions([convert_expression(expr)], ["value"])),
        ]
    )
    return empty_run.to_table(use_threads=False).schema.field(0).type


def output_schema(declaration: Declaration) -> pa.Schema:
    """Schema produced by a declaration.

    Sources report their own schema; joins concatenate their inputs. Other
    nodes are run by Acero over empty inputs of the same schema.
    """
    factory_name = declaration.factory_name
    if factory_name == "table_source":
        return declaration.options.table.schema
    if factory_name == "scan":
        return declaration.options.dataset.schema
    if factory_name in ("consuming_sink", "write", "filter"):
        return output_schema(declaration.input)
    if factory_name == "hashjoin":
        left, right = (output_schema(child) for child in declaration.inputs)
        return pa.schema(list(left) + list(right))
    empty_run = convert_declaration(_with_empty_sources(declaration))
    return empty_run.to_table(use_threads=False).schema


def _with_empty_sources(declaration: Declaration) -> Declaration:
    if declaration.factory_name in _LEAF_FACTORIES:
        empty = output_schema(declaration).empty_table()
        return Declaration("table_source", TableSourceNodeOptions(empty), label=declaration.label)
    return dataclasses.replace(
        declaration, inputs=[_with_empty_sources(child) for child in declaration.inputs]
    )
