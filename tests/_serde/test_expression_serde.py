"""Tests for expression conversion."""

import logging

import pyarrow as pa
import pytest

from substrait_acero import (
    Call,
    ConversionOptions,
    ExtensionSet,
    FieldRef,
    InvalidPlanError,
    Literal,
    UnsupportedFeatureError,
    deserialize_expression,
    serialize_expression,
)
from substrait_acero.core._extensions import SUBSTRAIT_ARITHMETIC_FUNCTIONS_URI, Id
from substrait_acero.core._serde.proto.serde_context import SerdeContext
from substrait_acero.core._serde.proto.types import (
    ExpressionProto,
    FieldReferenceProto,
    FunctionArgumentProto,
    IfThenProto,
    LiteralProto,
    ReferenceSegmentProto,
    ScalarFunctionProto,
)


def _int32(value: int) -> Literal:
    return Literal(pa.scalar(value, type=pa.int32()))


def _int64(value: int) -> Literal:
    return Literal(pa.scalar(value, type=pa.int64()))


def _struct_field(index: int, child: ReferenceSegmentProto = None) -> ReferenceSegmentProto:
    segment = ReferenceSegmentProto(struct_field=ReferenceSegmentProto.StructField(field=index))
    if child is not None:
        segment.struct_field.child.CopyFrom(child)
    return segment


def _selection(segment: ReferenceSegmentProto) -> ExpressionProto:
    return ExpressionProto(
        selection=FieldReferenceProto(
            direct_reference=segment, root_reference=FieldReferenceProto.RootReference()
        )
    )


roundtrip_expressions = [
    FieldRef(0),
    FieldRef(2, 1),
    FieldRef(1, 0, 3),
    _int64(5),
    Literal(pa.scalar("text")),
    Call("list_element", [FieldRef(2), _int32(1)]),
    Call("struct_field", [Call("list_element", [FieldRef(2), _int32(0)])], {"indices": [1, 0]}),
    Call("struct_field", [Call("if_else", [FieldRef(3), FieldRef(5), FieldRef(6)])], {"indices": [1]}),
    Call("add", [FieldRef(0), _int64(1)]),
    Call("and_kleene", [Call("less", [FieldRef(0), _int64(3)]), Call("is_valid", [FieldRef(1)])]),
    Call("if_else", [FieldRef(3), _int64(1), _int64(2)]),
    Call(
        "case_when",
        [
            Call("make_struct", [FieldRef(3), FieldRef(4)], {"field_names": ["cond1", "cond2"]}),
            _int64(1),
            _int64(2),
        ],
    ),
    Call(
        "case_when",
        [Call("make_struct", [FieldRef(3), FieldRef(4)], {"field_names": ["cond1", "cond2"]}), _int64(1), _int64(2), _int64(3)],
    ),
    Call("cast", [FieldRef(0)], {"target_type": pa.float64()}),
]


class TestExpressionSerde:
    """Test cases for expression serialization and deserialization."""

    def setup_method(self):
        """Set up test fixtures."""
        self.context = SerdeContext()

    def _roundtrip(self, expr):
        serialized = self.context.serialize_expression("expression", expr)
        return self.context.deserialize_expression("expression", serialized)

    @pytest.mark.parametrize("expr", roundtrip_expressions, ids=str)
    def test_roundtrip(self, expr):
        assert self._roundtrip(expr) == expr

    def test_field_ref_encoding(self):
        serialized = self.context.serialize_expression("expression", FieldRef(2, 1))
        assert serialized.selection.HasField("root_reference")
        segment = serialized.selection.direct_reference
        assert segment.struct_field.field == 2
        assert segment.struct_field.child.struct_field.field == 1
        assert not segment.struct_field.child.struct_field.HasField("child")

    def test_field_ref_of_an_expression(self):
        expr = Call("struct_field", [Call("if_else", [FieldRef(3), FieldRef(5), FieldRef(6)])], {"indices": [1]})
        serialized = self.context.serialize_expression("expression", expr)

        selection = serialized.selection
        assert selection.WhichOneof("root_type") == "expression"
        assert not selection.HasField("root_reference")
        assert selection.expression.WhichOneof("rex_type") == "if_then"
        assert selection.direct_reference.struct_field.field == 1
        assert not selection.direct_reference.struct_field.HasField("child")

    def test_unbound_field_ref(self):
        with pytest.raises(InvalidPlanError, match="must be bound"):
            self.context.serialize_expression("expression", FieldRef("a"))

    def test_unset_root_type_is_a_root_reference(self):
        expr_proto = ExpressionProto(selection=FieldReferenceProto(direct_reference=_struct_field(4)))
        assert self.context.deserialize_expression("expression", expr_proto) == FieldRef(4)

    def test_reference_off_an_unencodable_expression(self):
        expr = Call("struct_field", [Call("make_struct", [FieldRef(0)], {"field_names": ["x"]})], {"indices": [0]})
        with pytest.raises(UnsupportedFeatureError, match="make_struct"):
            self.context.serialize_expression("expression", expr)

    def test_reference_depth_limit(self):
        context = SerdeContext(options=ConversionOptions(max_reference_depth=2))
        expr_proto = context.serialize_expression("expression", FieldRef(0, 0, 0))
        with pytest.raises(InvalidPlanError, match="deeper than 2 segments"):
            context.deserialize_expression("expression", expr_proto)

        expr_proto = context.serialize_expression("expression", FieldRef(0, 0))
        assert context.deserialize_expression("expression", expr_proto) == FieldRef(0, 0)

    def test_max_reference_depth_must_be_positive(self):
        with pytest.raises(ValueError):
            ConversionOptions(max_reference_depth=0)

    def test_outer_reference(self):
        expr_proto = ExpressionProto(
            selection=FieldReferenceProto(
                direct_reference=_struct_field(0),
                outer_reference=FieldReferenceProto.OuterReference(steps_out=1),
            )
        )
        with pytest.raises(UnsupportedFeatureError, match="Outer references"):
            self.context.deserialize_expression("expression", expr_proto)

    def test_map_key_reference(self):
        segment = ReferenceSegmentProto(
            map_key=ReferenceSegmentProto.MapKey(map_key=LiteralProto(string="key"))
        )
        with pytest.raises(UnsupportedFeatureError, match="Map key references"):
            self.context.deserialize_expression("expression", _selection(segment))

    def test_list_element_of_the_root(self):
        segment = ReferenceSegmentProto(list_element=ReferenceSegmentProto.ListElement(offset=0))
        with pytest.raises(InvalidPlanError, match="cannot be selected from the root"):
            self.context.deserialize_expression("expression", _selection(segment))

    def test_empty_expression(self):
        with pytest.raises(InvalidPlanError, match="Expression has no kind set") as exc_info:
            self.context.deserialize_expression("condition", ExpressionProto())
        assert exc_info.value.field_path == "condition"

    def test_empty_if_then(self):
        with pytest.raises(InvalidPlanError, match="at least one clause"):
            self.context.deserialize_expression("expression", ExpressionProto(if_then=IfThenProto()))

    def test_single_clause_without_else_is_a_case_when(self):
        expr_proto = self.context.serialize_expression(
            "expression",
            Call("case_when", [Call("make_struct", [FieldRef(1)], {"field_names": ["c"]}), _int64(1)]),
        )
        assert len(expr_proto.if_then.ifs) == 1
        assert not expr_proto.if_then.HasField("else")
        assert self.context.deserialize_expression("expression", expr_proto) == Call(
            "case_when", [Call("make_struct", [FieldRef(1)], {"field_names": ["cond1"]}), _int64(1)]
        )


class TestFunctionSerde:
    """Test cases for extension function calls."""

    def setup_method(self):
        """Set up test fixtures."""
        self.extension_set = ExtensionSet()
        self.context = SerdeContext(self.extension_set)

    def test_call_assigns_function_anchors(self):
        expr = Call("add", [Call("multiply", [FieldRef(0), FieldRef(1)]), Call("add", [FieldRef(0), _int64(2)])])
        serialized = self.context.serialize_expression("expression", expr)

        assert self.extension_set.num_functions() == 2
        assert self.extension_set.uris == {1: SUBSTRAIT_ARITHMETIC_FUNCTIONS_URI}
        add_anchor = serialized.scalar_function.function_reference
        assert self.extension_set.decode_function(add_anchor) == Id(SUBSTRAIT_ARITHMETIC_FUNCTIONS_URI, "add")
        assert serialized.scalar_function.arguments[1].value.scalar_function.function_reference == add_anchor

    def test_output_type_requires_a_schema(self):
        expr = Call("add", [FieldRef(0), _int64(1)])
        assert not self.context.serialize_expression("expression", expr).scalar_function.HasField("output_type")

        schema = pa.schema([pa.field("a", pa.int64())])
        with self.context.schema_context(schema):
            serialized = self.context.serialize_expression("expression", expr)
        assert serialized.scalar_function.output_type.WhichOneof("kind") == "i64"

    def test_unregistered_compute_function(self):
        with pytest.raises(UnsupportedFeatureError, match="No Substrait function is registered for compute function utf8_length"):
            self.context.serialize_expression("expression", Call("utf8_length", [FieldRef(0)]))

    def test_function_options(self):
        with pytest.raises(UnsupportedFeatureError, match="Function options of round"):
            self.context.serialize_expression("expression", Call("round", [FieldRef(0)], {"ndigits": 2}))

    def test_unknown_function_anchor(self):
        expr_proto = ExpressionProto(scalar_function=ScalarFunctionProto(function_reference=42))
        with pytest.raises(InvalidPlanError, match="Function reference 42"):
            self.context.deserialize_expression("expression", expr_proto)

    def test_legacy_args(self):
        anchor = self.extension_set.encode_function(Id(SUBSTRAIT_ARITHMETIC_FUNCTIONS_URI, "negate"))
        expr_proto = ExpressionProto(
            scalar_function=ScalarFunctionProto(
                function_reference=anchor,
                args=[self.context.serialize_expression("expression", FieldRef(0))],
            )
        )
        with pytest.raises(UnsupportedFeatureError, match="deprecated 'args'"):
            self.context.deserialize_expression("expression", expr_proto)

    def test_type_argument(self):
        anchor = self.extension_set.encode_function(Id(SUBSTRAIT_ARITHMETIC_FUNCTIONS_URI, "negate"))
        type_proto = self.context.serialize_type("type", pa.int32())
        expr_proto = ExpressionProto(
            scalar_function=ScalarFunctionProto(
                function_reference=anchor, arguments=[FunctionArgumentProto(type=type_proto)]
            )
        )
        with pytest.raises(UnsupportedFeatureError, match="Type arguments") as exc_info:
            self.context.deserialize_expression("expression", expr_proto)
        assert exc_info.value.field_path == "expression.scalar_function.arguments[0]"

    def test_empty_argument(self):
        anchor = self.extension_set.encode_function(Id(SUBSTRAIT_ARITHMETIC_FUNCTIONS_URI, "negate"))
        expr_proto = ExpressionProto(
            scalar_function=ScalarFunctionProto(function_reference=anchor, arguments=[FunctionArgumentProto()])
        )
        with pytest.raises(InvalidPlanError, match="Function argument has no kind set"):
            self.context.deserialize_expression("expression", expr_proto)

    def test_enum_arguments_are_skipped(self, caplog):
        anchor = self.extension_set.encode_function(Id(SUBSTRAIT_ARITHMETIC_FUNCTIONS_URI, "add"))
        expr_proto = ExpressionProto(
            scalar_function=ScalarFunctionProto(
                function_reference=anchor,
                arguments=[
                    FunctionArgumentProto(enum="SILENT"),
                    FunctionArgumentProto(value=self.context.serialize_expression("value", FieldRef(0))),
                    FunctionArgumentProto(value=self.context.serialize_expression("value", FieldRef(1))),
                ],
            )
        )
        with caplog.at_level(logging.WARNING):
            expr = self.context.deserialize_expression("expression", expr_proto)
        assert expr == Call("add", [FieldRef(0), FieldRef(1)])
        assert "Ignoring enum argument 'SILENT'" in caplog.text


class TestSerializedExpressionApi:
    """Test cases for the binary expression entry points."""

    def test_roundtrip_through_bytes(self):
        extension_set = ExtensionSet()
        expr = Call("greater", [FieldRef(1), _int64(10)])
        schema = pa.schema([pa.field("a", pa.utf8()), pa.field("b", pa.int64())])

        buf = serialize_expression(expr, extension_set, schema)
        assert ExpressionProto.FromString(buf).scalar_function.output_type.WhichOneof("kind") == "bool"
        assert deserialize_expression(buf, extension_set) == expr

    def test_truncated_bytes(self):
        with pytest.raises(InvalidPlanError, match="Failed to parse Expression"):
            deserialize_expression(b"\x0a\x05ab", ExtensionSet())
