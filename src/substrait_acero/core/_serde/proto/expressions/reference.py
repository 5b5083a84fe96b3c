"""Field reference serialization/deserialization.

A direct reference is a chain of segments. Struct-field segments off the
root become a plain ``FieldRef`` index path; struct-field segments off any
other expression become ``struct_field`` calls, and list-element segments
become ``list_element`` calls. Serialization folds those calls back into a
single reference chain.
"""

from typing import List, Optional, Tuple

import pyarrow as pa

from substrait_acero.core._serde.proto.expression_serde import (
    _deserialize_expression_helper,
    register_call_shape,
    serialize_expression,
)
from substrait_acero.core._serde.proto.serde_context import SerdeContext
from substrait_acero.core._serde.proto.types import (
    ExpressionProto,
    FieldReferenceProto,
    ReferenceSegmentProto,
)
from substrait_acero.core.error import InvalidPlanError, UnsupportedFeatureError
from substrait_acero.core.expressions import Call, Expression, FieldRef, Literal

# ("struct", field index) or ("list", element offset)
Segment = Tuple[str, int]


# =============================================================================
# FieldRef
# =============================================================================


@serialize_expression.register
def _serialize_field_ref(expr: FieldRef, context: SerdeContext) -> ExpressionProto:
    if not expr.is_bound:
        raise context.create_serde_error(
            InvalidPlanError,
            f"{expr} must be bound to a schema before serialization",
            FieldRef,
        )
    return _serialize_reference(None, [("struct", index) for index in expr.path], context)


@_deserialize_expression_helper.register
def _deserialize_field_reference(
    underlying_proto: FieldReferenceProto, context: SerdeContext
) -> Expression:
    root_type = underlying_proto.WhichOneof("root_type")
    if root_type == "outer_reference":
        raise context.create_serde_error(
            UnsupportedFeatureError, "Outer references are not supported", FieldReferenceProto
        )
    current: Optional[Expression] = None
    if root_type == "expression":
        current = context.deserialize_expression(SerdeContext.EXPRESSION, underlying_proto.expression)

    reference_type = underlying_proto.WhichOneof("reference_type")
    if reference_type == "masked_reference":
        raise context.create_serde_error(
            UnsupportedFeatureError, "Masked references are not supported", FieldReferenceProto
        )
    if reference_type is None:
        raise context.create_serde_error(
            InvalidPlanError, "Field reference has no reference set", FieldReferenceProto
        )

    max_depth = context.options.max_reference_depth
    pending: List[int] = []
    segment = underlying_proto.direct_reference
    depth = 0
    with context.path_context("direct_reference"):
        while True:
            depth += 1
            if depth > max_depth:
                raise context.create_serde_error(
                    InvalidPlanError,
                    f"Field reference is nested deeper than {max_depth} segments",
                    ReferenceSegmentProto,
                )
            kind = segment.WhichOneof("reference_type")
            if kind == "struct_field":
                if segment.struct_field.field < 0:
                    raise context.create_serde_error(
                        InvalidPlanError,
                        f"Negative struct field index {segment.struct_field.field}",
                        ReferenceSegmentProto,
                    )
                pending.append(segment.struct_field.field)
                child_holder = segment.struct_field
            elif kind == "list_element":
                current = _apply_struct_fields(current, pending)
                pending = []
                if current is None:
                    raise context.create_serde_error(
                        InvalidPlanError,
                        "A list element cannot be selected from the root",
                        ReferenceSegmentProto,
                    )
                offset = Literal(pa.scalar(segment.list_element.offset, type=pa.int32()))
                current = Call("list_element", [current, offset])
                child_holder = segment.list_element
            elif kind == "map_key":
                raise context.create_serde_error(
                    UnsupportedFeatureError, "Map key references are not supported", ReferenceSegmentProto
                )
            else:
                raise context.create_serde_error(
                    InvalidPlanError, "Reference segment has no kind set", ReferenceSegmentProto
                )
            if not child_holder.HasField("child"):
                break
            segment = child_holder.child
    return _apply_struct_fields(current, pending)


def _apply_struct_fields(current: Optional[Expression], indices: List[int]) -> Optional[Expression]:
    if not indices:
        return current
    if current is None:
        return FieldRef(*indices)
    if isinstance(current, FieldRef) and current.is_bound:
        return FieldRef(*current.path, *indices)
    return Call("struct_field", [current], {"indices": list(indices)})


# =============================================================================
# struct_field / list_element
# =============================================================================


def _as_reference_chain(expr: Expression) -> Optional[Tuple[Optional[Expression], List[Segment]]]:
    """Split an expression into a reference root (None for the input row) and segments.

    Returns None if ``expr`` is not a field reference, ``struct_field`` or
    ``list_element`` chain.
    """
    if isinstance(expr, FieldRef) and expr.is_bound:
        return None, [("struct", index) for index in expr.path]
    if not isinstance(expr, Call):
        return None
    if expr.function_name == "struct_field":
        indices = expr.options.get("indices")
        if len(expr.arguments) != 1 or not indices or set(expr.options) != {"indices"}:
            return None
        segments = [("struct", index) for index in indices]
    elif expr.function_name == "list_element":
        if len(expr.arguments) != 2 or expr.options:
            return None
        offset = expr.arguments[1]
        if not (
            isinstance(offset, Literal)
            and pa.types.is_integer(offset.type)
            and offset.value.is_valid
        ):
            return None
        segments = [("list", offset.value.as_py())]
    else:
        return None
    base = expr.arguments[0]
    inner = _as_reference_chain(base)
    if inner is None:
        return base, segments
    root, inner_segments = inner
    return root, inner_segments + segments


def _serialize_call_as_reference(expr: Call, context: SerdeContext) -> Optional[ExpressionProto]:
    chain = _as_reference_chain(expr)
    if chain is None:
        return None
    root, segments = chain
    return _serialize_reference(root, segments, context)


register_call_shape("struct_field")(_serialize_call_as_reference)
register_call_shape("list_element")(_serialize_call_as_reference)


def _serialize_reference(
    root: Optional[Expression], segments: List[Segment], context: SerdeContext
) -> ExpressionProto:
    segment_proto: Optional[ReferenceSegmentProto] = None
    for kind, value in reversed(segments):
        child = segment_proto
        if kind == "struct":
            segment_proto = ReferenceSegmentProto(struct_field=ReferenceSegmentProto.StructField(field=value))
            holder = segment_proto.struct_field
        else:
            segment_proto = ReferenceSegmentProto(list_element=ReferenceSegmentProto.ListElement(offset=value))
            holder = segment_proto.list_element
        if child is not None:
            holder.child.CopyFrom(child)
    if root is None:
        reference = FieldReferenceProto(
            direct_reference=segment_proto,
            root_reference=FieldReferenceProto.RootReference(),
        )
    else:
        reference = FieldReferenceProto(
            direct_reference=segment_proto,
            expression=context.serialize_expression(SerdeContext.EXPRESSION, root),
        )
    return ExpressionProto(selection=reference)
