"""Tests for relation lowering and encoding."""

import pyarrow as pa
import pyarrow.dataset as ds
import pyarrow.fs as pafs
import pytest
from plan_builders import (
    call,
    customers_read,
    field,
    make_plan,
    make_rel,
    named_read,
    named_struct,
    orders_read,
)

from substrait_acero import (
    Aggregate,
    AggregateNodeOptions,
    Call,
    CollectingConsumer,
    ConversionOptions,
    Declaration,
    ExtensionSet,
    FieldRef,
    FilterNodeOptions,
    HashJoinNodeOptions,
    InvalidPlanError,
    JoinKeyCmp,
    JoinType,
    ProjectNodeOptions,
    ScanNodeOptions,
    TableSourceNodeOptions,
    UnsupportedFeatureError,
    deserialize_plan,
    deserialize_relation,
    serialize_relation,
)
from substrait_acero.core._extensions import (
    SUBSTRAIT_AGGREGATE_GENERIC_FUNCTIONS_URI,
    SUBSTRAIT_ARITHMETIC_FUNCTIONS_URI,
    SUBSTRAIT_BOOLEAN_FUNCTIONS_URI,
    SUBSTRAIT_COMPARISON_FUNCTIONS_URI,
    Id,
)
from substrait_acero.core._serde.proto.types import RelProto

ADD = Id(SUBSTRAIT_ARITHMETIC_FUNCTIONS_URI, "add")
SUM = Id(SUBSTRAIT_ARITHMETIC_FUNCTIONS_URI, "sum")
COUNT = Id(SUBSTRAIT_AGGREGATE_GENERIC_FUNCTIONS_URI, "count")


def _local_files_read(*items):
    return {
        "read": {
            "base_schema": named_struct(["a", "b"], ["i32", "bool"]),
            "local_files": {"items": list(items)},
        }
    }


def _function_references(expression):
    if isinstance(expression, dict):
        found = {expression["function_reference"]} if "function_reference" in expression else set()
        for value in expression.values():
            found |= _function_references(value)
        return found
    if isinstance(expression, list):
        return set().union(*(_function_references(item) for item in expression))
    return set()


class TestReadRel:
    """Test cases for read relations."""

    def setup_method(self):
        self.extension_set = ExtensionSet()

    def test_local_files(self):
        rel = _local_files_read(
            {"uri_file": "file:///tmp/dat1.parquet", "parquet": {}},
            {"uri_file": "file:///tmp/dat2.parquet", "parquet": {}},
        )
        rel["read"]["filter"] = field(1)

        declaration = deserialize_relation(make_rel(rel), self.extension_set)

        assert declaration.factory_name == "scan"
        assert isinstance(declaration.options, ScanNodeOptions)
        assert declaration.options.filter == FieldRef(1)
        dataset = declaration.options.dataset
        assert isinstance(dataset.format, ds.ParquetFileFormat)
        assert list(dataset.files) == ["/tmp/dat1.parquet", "/tmp/dat2.parquet"]
        assert dataset.schema == pa.schema([pa.field("a", pa.int32()), pa.field("b", pa.bool_())])

    @pytest.mark.parametrize(
        "file_format, format_class",
        [("parquet", ds.ParquetFileFormat), ("arrow", ds.IpcFileFormat)],
    )
    def test_local_file_formats(self, file_format, format_class):
        rel = _local_files_read({"uri_file": "file:///tmp/dat.data", file_format: {}})
        declaration = deserialize_relation(make_rel(rel), self.extension_set)
        assert isinstance(declaration.options.dataset.format, format_class)
        assert declaration.options.filter is None

    def test_filter_must_be_boolean(self):
        rel = _local_files_read({"uri_file": "file:///tmp/dat1.parquet", "parquet": {}})
        rel["read"]["filter"] = field(0)
        with pytest.raises(InvalidPlanError, match="must be boolean") as exc_info:
            deserialize_relation(make_rel(rel), self.extension_set)
        assert exc_info.value.field_path == "rel.read.filter"

    @pytest.mark.parametrize(
        "items, error_class, match",
        [
            (
                [{"uri_path_glob": "file:///tmp/*.parquet", "parquet": {}}],
                UnsupportedFeatureError,
                "uri_path_glob",
            ),
            (
                [{"uri_folder": "file:///tmp/data", "parquet": {}}],
                UnsupportedFeatureError,
                "uri_folder",
            ),
            (
                [
                    {"uri_file": "file:///tmp/dat1.parquet", "parquet": {}},
                    {"uri_file": "file:///tmp/dat2.arrow", "arrow": {}},
                ],
                UnsupportedFeatureError,
                "mix the parquet and arrow formats",
            ),
            (
                [{"uri_file": "file:///tmp/dat1.parquet", "parquet": {}, "start": "100", "length": "10"}],
                UnsupportedFeatureError,
                "non-zero start",
            ),
            ([{"uri_file": "file:///tmp/dat1.parquet"}], InvalidPlanError, "no format set"),
            ([{"parquet": {}}], InvalidPlanError, "no path set"),
        ],
    )
    def test_invalid_local_files(self, items, error_class, match):
        with pytest.raises(error_class, match=match):
            deserialize_relation(make_rel(_local_files_read(*items)), self.extension_set)

    def test_missing_base_schema(self):
        rel = {"read": {"named_table": {"names": ["orders"]}}}
        with pytest.raises(InvalidPlanError, match="require a base_schema"):
            deserialize_relation(make_rel(rel), self.extension_set)

    def test_projection(self, options):
        rel = orders_read()
        rel["read"]["projection"] = {"select": {"struct_items": [{"field": 0}]}}
        with pytest.raises(UnsupportedFeatureError, match="projections are not supported"):
            deserialize_relation(make_rel(rel), self.extension_set, options)

    def test_no_read_kind(self):
        rel = {"read": {"base_schema": named_struct(["a"], ["i32"])}}
        with pytest.raises(InvalidPlanError, match="neither a named table nor local files"):
            deserialize_relation(make_rel(rel), self.extension_set)

    def test_named_table(self, options, orders_table):
        declaration = deserialize_relation(make_rel(orders_read()), self.extension_set, options)
        assert declaration == Declaration("table_source", TableSourceNodeOptions(orders_table), label="orders")

    def test_named_table_with_filter(self, options, orders_table):
        rel = orders_read()
        rel["read"]["filter"] = field(3)
        declaration = deserialize_relation(make_rel(rel), self.extension_set, options)

        assert declaration.factory_name == "filter"
        assert declaration.options == FilterNodeOptions(FieldRef(3))
        assert declaration.input.options.table == orders_table

    def test_provider_may_return_a_table(self, orders_table):
        options = ConversionOptions(named_table_provider=lambda names: orders_table)
        declaration = deserialize_relation(make_rel(orders_read()), self.extension_set, options)
        assert declaration == Declaration("table_source", TableSourceNodeOptions(orders_table), label="orders")

    def test_provider_label_is_kept(self, orders_table):
        provider = lambda names: Declaration("table_source", TableSourceNodeOptions(orders_table), label="mine")  # noqa: E731
        options = ConversionOptions(named_table_provider=provider)
        declaration = deserialize_relation(make_rel(orders_read()), self.extension_set, options)
        assert declaration.label == "mine"

    def test_multi_segment_names_are_joined_for_the_label(self, orders_table):
        seen = []

        def provider(names):
            seen.append(names)
            return orders_table

        rel = named_read(["sales", "orders"], ["order_id"], ["i32"])
        declaration = deserialize_relation(make_rel(rel), self.extension_set, ConversionOptions(named_table_provider=provider))
        assert seen == [["sales", "orders"]]
        assert declaration.label == "sales.orders"

    def test_provider_declaration_is_not_modified(self, orders_table):
        source = Declaration.table_source(orders_table)
        options = ConversionOptions(named_table_provider=lambda names: source)
        declaration = deserialize_relation(make_rel(orders_read()), self.extension_set, options)

        assert declaration.label == "orders"
        assert declaration is not source
        assert source.label == ""

    def test_named_table_without_provider(self):
        with pytest.raises(InvalidPlanError, match="no named table provider was configured"):
            deserialize_relation(make_rel(orders_read()), self.extension_set)

    @pytest.mark.parametrize(
        "provider, match",
        [
            (lambda names: None, "returned nothing"),
            (lambda names: {}[names[0]], "Named table provider failed"),
            (lambda names: "orders", "expected a Declaration"),
        ],
    )
    def test_invalid_provider_results(self, provider, match):
        options = ConversionOptions(named_table_provider=provider)
        with pytest.raises(InvalidPlanError, match=match) as exc_info:
            deserialize_relation(make_rel(orders_read()), self.extension_set, options)
        assert exc_info.value.field_path == "rel.read.named_table"

    def test_serialize_table_source(self, orders_table):
        declaration = Declaration("table_source", TableSourceNodeOptions(orders_table), label="sales.orders")
        rel = RelProto.FromString(serialize_relation(declaration, self.extension_set))

        assert list(rel.read.named_table.names) == ["sales", "orders"]
        assert list(rel.read.base_schema.names) == orders_table.schema.names

    def test_serialize_unlabeled_table_source(self, orders_table):
        with pytest.raises(UnsupportedFeatureError, match="need a label"):
            serialize_relation(Declaration.table_source(orders_table), self.extension_set)

    def test_scan_roundtrip(self):
        schema = pa.schema([pa.field("a", pa.int32()), pa.field("b", pa.bool_())])
        dataset = ds.FileSystemDataset.from_paths(
            ["/tmp/dat1.parquet", "/tmp/dat2.parquet"],
            schema=schema,
            format=ds.ParquetFileFormat(),
            filesystem=pafs.LocalFileSystem(),
        )
        declaration = Declaration("scan", ScanNodeOptions(dataset, FieldRef("b")))

        rel = RelProto.FromString(serialize_relation(declaration, self.extension_set))
        assert [item.uri_file for item in rel.read.local_files.items] == [
            "file:///tmp/dat1.parquet",
            "file:///tmp/dat2.parquet",
        ]
        assert all(item.HasField("parquet") for item in rel.read.local_files.items)

        lowered = deserialize_relation(rel.SerializeToString(), self.extension_set)
        assert lowered.options.filter == FieldRef(1)
        assert list(lowered.options.dataset.files) == list(dataset.files)
        assert lowered.options.dataset.schema == schema


class TestFilterAndProjectRel:
    """Test cases for filter and project relations."""

    def setup_method(self):
        self.extension_set = ExtensionSet()

    def test_filter(self, options, orders_table):
        rel = {"filter": {"input": orders_read(), "condition": field(3)}}
        declaration = deserialize_relation(make_rel(rel), self.extension_set, options)
        assert declaration == Declaration(
            "filter",
            FilterNodeOptions(FieldRef(3)),
            inputs=[Declaration("table_source", TableSourceNodeOptions(orders_table), label="orders")],
        )

    def test_filter_without_condition(self, options):
        with pytest.raises(InvalidPlanError, match="missing its condition"):
            deserialize_relation(make_rel({"filter": {"input": orders_read()}}), self.extension_set, options)

    def test_filter_without_input(self):
        with pytest.raises(InvalidPlanError, match="missing its 'input' relation") as exc_info:
            deserialize_relation(make_rel({"filter": {"condition": field(0)}}), self.extension_set)
        assert exc_info.value.field_path == "rel.filter"

    def test_filter_condition_out_of_range(self, options):
        rel = {"filter": {"input": orders_read(), "condition": field(9)}}
        with pytest.raises(InvalidPlanError, match="out of range") as exc_info:
            deserialize_relation(make_rel(rel), self.extension_set, options)
        assert exc_info.value.field_path == "rel.filter.condition"

    def test_project_appends_columns(self, options):
        add = self.extension_set.encode_function(ADD)
        rel = {"project": {"input": orders_read(), "expressions": [call(add, field(2), field(2)), field(0)]}}
        declaration = deserialize_relation(make_rel(rel), self.extension_set, options)

        assert declaration.factory_name == "project"
        assert declaration.options == ProjectNodeOptions(
            [FieldRef(0), FieldRef(1), FieldRef(2), FieldRef(3), Call("add", [FieldRef(2), FieldRef(2)]), FieldRef(0)],
            ["order_id", "customer_id", "amount", "shipped", "add", "order_id_1"],
        )
        assert declaration.output_schema().names == ["order_id", "customer_id", "amount", "shipped", "add", "order_id_1"]

    def test_project_emit(self, options):
        add = self.extension_set.encode_function(ADD)
        rel = {
            "project": {
                "common": {"emit": {"output_mapping": [4, 0]}},
                "input": orders_read(),
                "expressions": [call(add, field(2), field(2))],
            }
        }
        declaration = deserialize_relation(make_rel(rel), self.extension_set, options)

        assert declaration.options == ProjectNodeOptions([FieldRef(4), FieldRef(0)], ["add", "order_id"])
        assert declaration.input.options.names[-1] == "add"
        assert declaration.output_schema() == pa.schema([pa.field("add", pa.int64()), pa.field("order_id", pa.int32())])

    def test_emit_out_of_range(self, options):
        rel = orders_read()
        rel["read"]["common"] = {"emit": {"output_mapping": [0, 4]}}
        with pytest.raises(InvalidPlanError, match="Emit index 4 is out of range") as exc_info:
            deserialize_relation(make_rel(rel), self.extension_set, options)
        assert exc_info.value.field_path == "rel.read.common.emit"

    def test_unsupported_relation_kind(self, options):
        rel = {"sort": {"input": orders_read(), "sorts": []}}
        with pytest.raises(UnsupportedFeatureError, match="Relation kind 'sort' is not supported"):
            deserialize_relation(make_rel(rel), self.extension_set, options)

    def test_empty_relation(self):
        with pytest.raises(InvalidPlanError, match="Relation has no kind set"):
            deserialize_relation(b"", self.extension_set)

    def test_filter_and_project_roundtrip(self, orders_table, named_table_provider):
        source = Declaration("table_source", TableSourceNodeOptions(orders_table), label="orders")
        filtered = Declaration("filter", FilterNodeOptions(FieldRef("shipped")), inputs=[source])
        declaration = Declaration(
            "project",
            ProjectNodeOptions(
                [FieldRef(0), FieldRef(1), FieldRef(2), FieldRef(3), Call("add", [FieldRef(2), FieldRef(2)])],
                ["order_id", "customer_id", "amount", "shipped", "add"],
            ),
            inputs=[filtered],
        )
        rel = RelProto.FromString(serialize_relation(declaration, self.extension_set))
        # Only the appended column travels in the project
        assert len(rel.project.expressions) == 1
        assert rel.project.expressions[0].scalar_function.output_type.WhichOneof("kind") == "i64"

        options = ConversionOptions(named_table_provider=named_table_provider)
        assert deserialize_relation(rel.SerializeToString(), self.extension_set, options) == Declaration(
            "project",
            ProjectNodeOptions(declaration.options.expressions, declaration.options.names),
            inputs=[Declaration("filter", FilterNodeOptions(FieldRef(3)), inputs=[source])],
        )

    def test_column_selection_becomes_an_emit(self, orders_table, options):
        source = Declaration("table_source", TableSourceNodeOptions(orders_table), label="orders")
        declaration = Declaration(
            "project", ProjectNodeOptions([FieldRef("amount"), FieldRef(0)], ["amount", "order_id"]), inputs=[source]
        )
        rel = RelProto.FromString(serialize_relation(declaration, self.extension_set))

        assert rel.WhichOneof("rel_type") == "read"
        assert list(rel.read.common.emit.output_mapping) == [2, 0]
        assert deserialize_relation(rel.SerializeToString(), self.extension_set, options) == Declaration(
            "project", ProjectNodeOptions([FieldRef(2), FieldRef(0)], ["amount", "order_id"]), inputs=[source]
        )

    def test_reordering_project_is_emitted(self, orders_table, options):
        source = Declaration("table_source", TableSourceNodeOptions(orders_table), label="orders")
        declaration = Declaration(
            "project",
            ProjectNodeOptions([Call("add", [FieldRef(2), FieldRef(2)]), FieldRef(1)], ["doubled", "customer_id"]),
            inputs=[source],
        )
        rel = RelProto.FromString(serialize_relation(declaration, self.extension_set))

        assert len(rel.project.expressions) == 2
        assert list(rel.project.common.emit.output_mapping) == [4, 5]
        lowered = deserialize_relation(rel.SerializeToString(), self.extension_set, options)
        assert lowered.options.expressions == [FieldRef(4), FieldRef(5)]
        assert lowered.output_schema().names == ["add", "customer_id_1"]


class TestJoinRel:
    """Test cases for join relations, lowered as part of a plan."""

    FUNCTIONS = [
        (1, SUBSTRAIT_COMPARISON_FUNCTIONS_URI, "equal"),
        (2, SUBSTRAIT_COMPARISON_FUNCTIONS_URI, "is_not_distinct_from"),
        (3, SUBSTRAIT_BOOLEAN_FUNCTIONS_URI, "and"),
        (4, SUBSTRAIT_ARITHMETIC_FUNCTIONS_URI, "add"),
    ]

    def _join_plan(self, expression, join_type="JOIN_TYPE_INNER", **extra):
        join = {"left": orders_read(), "right": customers_read(), "expression": expression, "type": join_type}
        join.update(extra)
        # is_not_distinct_from has no compute function, so it may only be declared where it is used
        used = _function_references(expression)
        return make_plan([{"rel": {"join": join}}], [f for f in self.FUNCTIONS if f[0] in used])

    def _lower(self, plan, options):
        return deserialize_plan(plan, CollectingConsumer(), options=options).input

    def test_basic(self, options, orders_table, customers_table):
        declaration = self._lower(self._join_plan(call(1, field(1), field(4))), options)

        assert declaration == Declaration(
            "hashjoin",
            HashJoinNodeOptions(JoinType.INNER, [FieldRef(1)], [FieldRef(0)], [JoinKeyCmp.EQ]),
            inputs=[
                Declaration("table_source", TableSourceNodeOptions(orders_table), label="orders"),
                Declaration("table_source", TableSourceNodeOptions(customers_table), label="customers"),
            ],
        )
        assert declaration.output_schema().names == ["order_id", "customer_id", "amount", "shipped", "id", "name"]

    def test_swapped_key_order(self, options):
        declaration = self._lower(self._join_plan(call(1, field(4), field(1))), options)
        assert declaration.options.left_keys == [FieldRef(1)]
        assert declaration.options.right_keys == [FieldRef(0)]

    def test_and_of_comparisons(self, options):
        expression = call(3, call(1, field(1), field(4)), call(2, field(0), field(4)))
        declaration = self._lower(self._join_plan(expression), options)

        assert declaration.options.left_keys == [FieldRef(1), FieldRef(0)]
        assert declaration.options.right_keys == [FieldRef(0), FieldRef(0)]
        assert declaration.options.key_cmp == [JoinKeyCmp.EQ, JoinKeyCmp.IS]

    @pytest.mark.parametrize(
        "join_type, expected",
        [
            ("JOIN_TYPE_LEFT", JoinType.LEFT_OUTER),
            ("JOIN_TYPE_RIGHT", JoinType.RIGHT_OUTER),
            ("JOIN_TYPE_OUTER", JoinType.FULL_OUTER),
        ],
    )
    def test_join_types(self, options, join_type, expected):
        declaration = self._lower(self._join_plan(call(1, field(1), field(4)), join_type), options)
        assert declaration.options.join_type == expected

    def test_unspecified_join_type(self, options):
        with pytest.raises(InvalidPlanError, match="JOIN_TYPE_UNSPECIFIED"):
            self._lower(self._join_plan(call(1, field(1), field(4)), "JOIN_TYPE_UNSPECIFIED"), options)

    def test_semi_join(self, options):
        # 5 is the left semi join
        with pytest.raises(UnsupportedFeatureError, match="Join type"):
            self._lower(self._join_plan(call(1, field(1), field(4)), 5), options)

    def test_post_join_filter(self, options):
        plan = self._join_plan(call(1, field(1), field(4)), post_join_filter=field(3))
        with pytest.raises(UnsupportedFeatureError, match="Post-join filters"):
            self._lower(plan, options)

    def test_invalid_key_comparison(self, options):
        with pytest.raises(InvalidPlanError, match="cannot be used to compare join keys") as exc_info:
            self._lower(self._join_plan(call(4, field(1), field(4))), options)
        assert exc_info.value.field_path == "relations[0].rel.join.expression.scalar_function"

    @pytest.mark.parametrize(
        "expression, match",
        [
            ({"literal": {"boolean": True}}, "must be a key comparison"),
            (call(3), "'and' has no key comparisons"),
            (call(3, call(1, field(1), field(4)), call(3)), "'and' has no key comparisons"),
        ],
    )
    def test_invalid_expression(self, options, expression, match):
        with pytest.raises(InvalidPlanError, match=match):
            self._lower(self._join_plan(expression), options)

    @pytest.mark.parametrize(
        "expression, match",
        [
            (call(1, field(0), field(1)), "must compare a left column with a right column"),
            (call(1, field(4), field(5)), "must compare a left column with a right column"),
            (call(1, field(1), field(40)), "out of range for 6 joined columns"),
            (call(1, field(1)), "needs 2 arguments"),
            (call(1, field(1), {"literal": {"i32": 10}}), "top-level field references"),
        ],
    )
    def test_invalid_keys(self, options, expression, match):
        with pytest.raises(InvalidPlanError, match=match):
            self._lower(self._join_plan(expression), options)

    def test_missing_inputs(self, options):
        plan = make_plan(
            [{"rel": {"join": {"right": customers_read(), "expression": call(1, field(0), field(1)), "type": "JOIN_TYPE_INNER"}}}],
            [(1, SUBSTRAIT_COMPARISON_FUNCTIONS_URI, "equal")],
        )
        with pytest.raises(InvalidPlanError, match="missing its 'left' relation"):
            self._lower(plan, options)

    def test_missing_expression(self, options):
        plan = make_plan([{"rel": {"join": {"left": orders_read(), "right": customers_read(), "type": "JOIN_TYPE_INNER"}}}])
        with pytest.raises(InvalidPlanError, match="missing its expression"):
            self._lower(plan, options)

    def test_is_not_distinct_from_cannot_run(self, options):
        declaration = self._lower(self._join_plan(call(2, field(1), field(4))), options)
        assert declaration.options.key_cmp == [JoinKeyCmp.IS]
        with pytest.raises(UnsupportedFeatureError, match="null-matching"):
            declaration.to_acero()

    def test_serialize_roundtrip(self, orders_table, customers_table, options):
        extension_set = ExtensionSet()
        declaration = Declaration(
            "hashjoin",
            HashJoinNodeOptions(
                JoinType.LEFT_OUTER, [FieldRef(1), FieldRef(0)], [FieldRef("id"), FieldRef(0)], [JoinKeyCmp.EQ, JoinKeyCmp.EQ]
            ),
            inputs=[
                Declaration("table_source", TableSourceNodeOptions(orders_table), label="orders"),
                Declaration("table_source", TableSourceNodeOptions(customers_table), label="customers"),
            ],
        )
        rel = RelProto.FromString(serialize_relation(declaration, extension_set))
        assert rel.join.type == rel.join.JOIN_TYPE_LEFT
        assert rel.join.expression.scalar_function.output_type.WhichOneof("kind") == "bool"
        assert extension_set.num_functions() == 2

        lowered = deserialize_relation(rel.SerializeToString(), extension_set, options)
        assert lowered.options == HashJoinNodeOptions(
            JoinType.LEFT_OUTER, [FieldRef(1), FieldRef(0)], [FieldRef(0), FieldRef(0)], [JoinKeyCmp.EQ, JoinKeyCmp.EQ]
        )
        assert lowered.inputs == declaration.inputs


class TestAggregateRel:
    """Test cases for aggregate relations."""

    def setup_method(self):
        self.extension_set = ExtensionSet()
        self.sum = self.extension_set.encode_function(SUM)
        self.count = self.extension_set.encode_function(COUNT)

    def _measure(self, anchor, *arguments, **extra):
        measure = {
            "function_reference": anchor,
            "arguments": [{"value": argument} for argument in arguments],
            "phase": "AGGREGATION_PHASE_INITIAL_TO_RESULT",
            "output_type": {"i64": {"nullability": "NULLABILITY_NULLABLE"}},
        }
        measure.update(extra)
        return {"measure": measure}

    def _aggregate(self, measures, groupings=(), **extra):
        aggregate = {"input": orders_read(), "groupings": list(groupings), "measures": list(measures)}
        aggregate.update(extra)
        return make_rel({"aggregate": aggregate})

    def test_basic(self, options):
        rel = self._aggregate(
            [self._measure(self.sum, field(2))],
            groupings=[{"grouping_expressions": [field(1)]}],
        )
        declaration = deserialize_relation(rel, self.extension_set, options)

        assert declaration.factory_name == "aggregate"
        assert declaration.options == AggregateNodeOptions(
            [Aggregate("hash_sum", [FieldRef(2)], "sum")], keys=[FieldRef(1)]
        )
        assert declaration.output_schema() == pa.schema(
            [pa.field("customer_id", pa.int32()), pa.field("sum", pa.int64())]
        )

    def test_ungrouped(self, options):
        rel = self._aggregate([self._measure(self.sum, field(2)), self._measure(self.sum, field(0)), self._measure(self.count)])
        declaration = deserialize_relation(rel, self.extension_set, options)

        assert declaration.options == AggregateNodeOptions(
            [
                Aggregate("sum", [FieldRef(2)], "sum"),
                Aggregate("sum", [FieldRef(0)], "sum_1"),
                Aggregate("count_all", [], "count"),
            ]
        )

    def test_serialize_roundtrip(self, orders_table, options):
        source = Declaration("table_source", TableSourceNodeOptions(orders_table), label="orders")
        declaration = Declaration(
            "aggregate",
            AggregateNodeOptions([Aggregate("hash_sum", [FieldRef("amount")], "sum")], keys=[FieldRef("customer_id")]),
            inputs=[source],
        )
        extension_set = ExtensionSet()
        rel = RelProto.FromString(serialize_relation(declaration, extension_set))
        measure = rel.aggregate.measures[0].measure
        assert extension_set.decode_function(measure.function_reference) == SUM
        assert measure.output_type.WhichOneof("kind") == "i64"
        assert len(rel.aggregate.groupings) == 1

        lowered = deserialize_relation(rel.SerializeToString(), extension_set, options)
        assert lowered == Declaration(
            "aggregate",
            AggregateNodeOptions([Aggregate("hash_sum", [FieldRef(2)], "sum")], keys=[FieldRef(1)]),
            inputs=[source],
        )

    def test_missing_input(self):
        rel = make_rel({"aggregate": {"measures": [self._measure(self.sum, field(2))]}})
        with pytest.raises(InvalidPlanError, match="missing its 'input' relation"):
            deserialize_relation(rel, self.extension_set)

    def test_empty_measure(self, options):
        with pytest.raises(InvalidPlanError, match="Measure has no aggregate function") as exc_info:
            deserialize_relation(self._aggregate([{}]), self.extension_set, options)
        assert exc_info.value.field_path == "rel.aggregate.measures[0]"

    @pytest.mark.parametrize(
        "extra, match",
        [
            ({"invocation": "AGGREGATION_INVOCATION_DISTINCT"}, "DISTINCT"),
            ({"phase": "AGGREGATION_PHASE_INITIAL_TO_INTERMEDIATE"}, "AGGREGATION_PHASE_INITIAL_TO_INTERMEDIATE"),
            ({"phase": "AGGREGATION_PHASE_UNSPECIFIED"}, "AGGREGATION_PHASE_UNSPECIFIED"),
            ({"args": [{"literal": {"i32": 1}}], "arguments": []}, "deprecated 'args'"),
        ],
    )
    def test_unsupported_measures(self, options, extra, match):
        rel = self._aggregate([self._measure(self.sum, field(2), **extra)])
        with pytest.raises(UnsupportedFeatureError, match=match):
            deserialize_relation(rel, self.extension_set, options)

    def test_filtered_measure(self, options):
        measure = self._measure(self.sum, field(2))
        measure["filter"] = field(3)
        with pytest.raises(UnsupportedFeatureError, match="Filtered aggregate measures"):
            deserialize_relation(self._aggregate([measure]), self.extension_set, options)

    def test_computed_target(self, options):
        add = self.extension_set.encode_function(ADD)
        rel = self._aggregate([self._measure(self.sum, call(add, field(2), field(2)))])
        with pytest.raises(UnsupportedFeatureError, match="must be a direct field reference"):
            deserialize_relation(rel, self.extension_set, options)

    def test_grouping_sets(self, options):
        rel = self._aggregate(
            [self._measure(self.sum, field(2))],
            groupings=[{"grouping_expressions": [field(0)]}, {"grouping_expressions": [field(1)]}],
        )
        with pytest.raises(UnsupportedFeatureError, match="2 grouping sets"):
            deserialize_relation(rel, self.extension_set, options)

    def test_computed_grouping_key(self, options):
        rel = self._aggregate(
            [self._measure(self.sum, field(2))],
            groupings=[{"grouping_expressions": [{"literal": {"i32": 1}}]}],
        )
        with pytest.raises(UnsupportedFeatureError, match="grouping key 0 must be a direct field reference"):
            deserialize_relation(rel, self.extension_set, options)


class TestEmit:
    """Test cases for emit on each relation kind, checked by running the lowered declaration."""

    def setup_method(self):
        self.extension_set = ExtensionSet()

    def _run(self, rel, options):
        return deserialize_relation(make_rel(rel), self.extension_set, options).to_table()

    def test_read(self, options):
        rel = orders_read()
        rel["read"]["common"] = {"emit": {"output_mapping": [3, 0]}}
        table = self._run(rel, options).sort_by("order_id")

        assert table.schema.names == ["shipped", "order_id"]
        assert table.column("shipped").to_pylist() == [True, False, True, None]

    def test_filter(self, options):
        rel = {"filter": {"common": {"emit": {"output_mapping": [2]}}, "input": orders_read(), "condition": field(3)}}
        table = self._run(rel, options)

        assert table.schema.names == ["amount"]
        assert sorted(table.column("amount").to_pylist()) == [5, 25]

    def test_join(self, options):
        equal = self.extension_set.encode_function(Id(SUBSTRAIT_COMPARISON_FUNCTIONS_URI, "equal"))
        rel = {
            "join": {
                "common": {"emit": {"output_mapping": [5, 0]}},
                "left": orders_read(),
                "right": customers_read(),
                "expression": call(equal, field(1), field(4)),
                "type": "JOIN_TYPE_INNER",
            }
        }
        table = self._run(rel, options).sort_by("order_id")

        assert table.schema.names == ["name", "order_id"]
        assert table.to_pydict() == {"name": ["ada", "grace", "ada"], "order_id": [1, 2, 3]}

    def test_aggregate(self, options):
        total = self.extension_set.encode_function(SUM)
        rel = {
            "aggregate": {
                "common": {"emit": {"output_mapping": [1, 0]}},
                "input": orders_read(),
                "groupings": [{"grouping_expressions": [field(1)]}],
                "measures": [
                    {
                        "measure": {
                            "function_reference": total,
                            "arguments": [{"value": field(2)}],
                            "phase": "AGGREGATION_PHASE_INITIAL_TO_RESULT",
                        }
                    }
                ],
            }
        }
        table = self._run(rel, options).sort_by("customer_id")

        assert table.schema.names == ["sum", "customer_id"]
        assert table.to_pydict() == {"sum": [30, 15, 35], "customer_id": [10, 20, 30]}
