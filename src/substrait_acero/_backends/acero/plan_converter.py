from __future__ import annotations

import logging
from typing import List

import pyarrow.acero as acero
import pyarrow.compute as pc

from substrait_acero._backends.acero.expr_converter import ExprConverter
from substrait_acero.core.declarations import (
    AggregateNodeOptions,
    Declaration,
    FilterNodeOptions,
    HashJoinNodeOptions,
    JoinKeyCmp,
    ProjectNodeOptions,
    ScanNodeOptions,
    TableSourceNodeOptions,
)
from substrait_acero.core.error import UnsupportedFeatureError

logger = logging.getLogger(__name__)


class PlanConverter:
    """Converts declarations to executable ``pyarrow.acero.Declaration`` trees."""

    def __init__(self):
        self.expr_converter = ExprConverter()

    def convert(self, declaration: Declaration) -> acero.Declaration:
        factory_name = declaration.factory_name
        logger.debug(f"Converting {factory_name} declaration to Acero")
        if factory_name in ("consuming_sink", "write"):
            return self.convert(declaration.input)
        inputs = [self.convert(child) for child in declaration.inputs]
        options = declaration.options

        if isinstance(options, TableSourceNodeOptions):
            return acero.Declaration("table_source", acero.TableSourceNodeOptions(options.table))
        if isinstance(options, ScanNodeOptions):
            return self._convert_scan(options)
        if isinstance(options, FilterNodeOptions):
            return acero.Declaration(
                "filter",
                acero.FilterNodeOptions(self.expr_converter.convert(options.filter_expression)),
                inputs=inputs,
            )
        if isinstance(options, ProjectNodeOptions):
            expressions = [self.expr_converter.convert(expr) for expr in options.expressions]
            names = list(options.names) if options.names else None
            return acero.Declaration(
                "project", acero.ProjectNodeOptions(expressions, names), inputs=inputs
            )
        if isinstance(options, HashJoinNodeOptions):
            return self._convert_hashjoin(options, inputs)
        if isinstance(options, AggregateNodeOptions):
            return self._convert_aggregate(options, inputs, declaration.input)
        raise UnsupportedFeatureError(f"Cannot convert {factory_name} declarations to Acero")

    def _convert_scan(self, options: ScanNodeOptions) -> acero.Declaration:
        # The scan node only uses its filter for pruning and appends
        # __fragment_index etc.; filter exactly, then keep the dataset columns.
        nodes: List[acero.Declaration] = []
        if options.filter is not None:
            predicate = self.expr_converter.convert(options.filter)
            nodes.append(acero.Declaration("scan", acero.ScanNodeOptions(options.dataset, filter=predicate)))
            nodes.append(acero.Declaration("filter", acero.FilterNodeOptions(predicate)))
        else:
            nodes.append(acero.Declaration("scan", acero.ScanNodeOptions(options.dataset)))
        schema = options.dataset.schema
        nodes.append(
            acero.Declaration(
                "project",
                acero.ProjectNodeOptions(
                    [pc.field(i) for i in range(len(schema))], list(schema.names)
                ),
            )
        )
        return acero.Declaration.from_sequence(nodes)

    def _convert_hashjoin(
        self, options: HashJoinNodeOptions, inputs: List[acero.Declaration]
    ) -> acero.Declaration:
        if any(cmp == JoinKeyCmp.IS for cmp in options.key_cmp):
            raise UnsupportedFeatureError(
                "pyarrow's hashjoin node does not support null-matching (IS) key comparison"
            )
        opts = acero.HashJoinNodeOptions(
            options.join_type.value,
            [self.expr_converter.convert(key) for key in options.left_keys],
            [self.expr_converter.convert(key) for key in options.right_keys],
        )
        return acero.Declaration("hashjoin", opts, inputs=inputs)

    def _convert_aggregate(
        self,
        options: AggregateNodeOptions,
        inputs: List[acero.Declaration],
        input_declaration: Declaration,
    ) -> acero.Declaration:
        agg_specs = []
        for aggregate in options.aggregates:
            targets = [self.expr_converter.convert(target) for target in aggregate.targets]
            target = targets[0] if len(targets) == 1 else targets
            agg_specs.append((target, aggregate.function, None, aggregate.name))
        keys = [self.expr_converter.convert(key) for key in options.keys] or None
        aggregate_node = acero.Declaration(
            "aggregate", acero.AggregateNodeOptions(agg_specs, keys=keys), inputs=inputs
        )
        if not options.keys:
            return aggregate_node
        # Acero versions disagree on whether keys precede measures; pin keys first
        input_schema = input_declaration.output_schema()
        names = [key.resolve(input_schema)[1].name for key in options.keys]
        names += [aggregate.name for aggregate in options.aggregates]
        return acero.Declaration(
            "project",
            acero.ProjectNodeOptions([pc.field(name) for name in names], names),
            inputs=[aggregate_node],
        )
