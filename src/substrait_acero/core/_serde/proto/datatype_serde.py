"""Data type serialization/deserialization using singledispatch."""

from functools import singledispatch
from typing import Iterable, Iterator, List, Tuple

import pyarrow as pa
from google.protobuf.message import Message

from substrait_acero.core._serde.proto.serde_context import SerdeContext
from substrait_acero.core._serde.proto.types import (
    BinaryTypeProto,
    BooleanTypeProto,
    DateTypeProto,
    DecimalTypeProto,
    FixedBinaryTypeProto,
    FixedCharTypeProto,
    FP32TypeProto,
    FP64TypeProto,
    I8TypeProto,
    I16TypeProto,
    I32TypeProto,
    I64TypeProto,
    IntervalDayTypeProto,
    IntervalYearTypeProto,
    ListTypeProto,
    MapTypeProto,
    NamedStructProto,
    NullabilityProto,
    StringTypeProto,
    StructTypeProto,
    TimestampTypeProto,
    TimestampTZTypeProto,
    TimeTypeProto,
    TypeProto,
    UserDefinedTypeProto,
    UUIDTypeProto,
    VarCharTypeProto,
)
from substrait_acero.core.error import InvalidPlanError, UnsupportedFeatureError
from substrait_acero.core.types.extension_types import (
    FixedCharType,
    IntervalDayType,
    IntervalYearType,
    UuidType,
    VarCharType,
)

# Wire type kind <-> native type, for types without parameters
_SIMPLE_TYPES: Tuple[Tuple[str, type, pa.DataType], ...] = (
    ("bool", BooleanTypeProto, pa.bool_()),
    ("i8", I8TypeProto, pa.int8()),
    ("i16", I16TypeProto, pa.int16()),
    ("i32", I32TypeProto, pa.int32()),
    ("i64", I64TypeProto, pa.int64()),
    ("fp32", FP32TypeProto, pa.float32()),
    ("fp64", FP64TypeProto, pa.float64()),
    ("string", StringTypeProto, pa.utf8()),
    ("binary", BinaryTypeProto, pa.binary()),
    ("date", DateTypeProto, pa.date32()),
)

_SIMPLE_KINDS_BY_NATIVE = {native: (kind, proto_class) for kind, proto_class, native in _SIMPLE_TYPES}


def _nullability(nullable: bool) -> int:
    return NullabilityProto.NULLABILITY_NULLABLE if nullable else NullabilityProto.NULLABILITY_REQUIRED


def _is_nullable(nullability: int) -> bool:
    # NULLABILITY_UNSPECIFIED is treated as nullable
    return nullability != NullabilityProto.NULLABILITY_REQUIRED


MAX_DECIMAL_PRECISION = 38


def check_length(length: int, kind: str, proto_class: type, context: SerdeContext) -> int:
    """Return a wire length parameter, rejecting lengths that are not positive."""
    if length <= 0:
        raise context.create_serde_error(
            InvalidPlanError, f"Length of {kind} must be positive, got {length}", proto_class
        )
    return length


def check_decimal(precision: int, scale: int, proto_class: type, context: SerdeContext) -> pa.Decimal128Type:
    """Build a decimal type from wire parameters.

    Raises:
        InvalidPlanError: If precision is outside ``[1, 38]`` or scale outside ``[0, precision]``.
    """
    if not 1 <= precision <= MAX_DECIMAL_PRECISION:
        raise context.create_serde_error(
            InvalidPlanError,
            f"Decimal precision must be between 1 and {MAX_DECIMAL_PRECISION}, got {precision}",
            proto_class,
        )
    if not 0 <= scale <= precision:
        raise context.create_serde_error(
            InvalidPlanError,
            f"Decimal scale must be between 0 and the precision {precision}, got {scale}",
            proto_class,
        )
    return pa.decimal128(precision, scale)


# =============================================================================
# Top-level functions
# =============================================================================


@singledispatch
def serialize_type(
    data_type: pa.DataType, context: SerdeContext, nullable: bool = True
) -> TypeProto:
    """Serialize a native type to its wire representation.

    Types with a fixed wire kind are looked up directly; types the extension
    id registry knows (null, unsigned integers) become user-defined types
    anchored in the context's extension set. Parametrized Arrow type classes
    have their own registered implementations.

    Args:
        data_type: The native type to serialize.
        context: The serde context for error reporting and path tracking.
        nullable: Whether values of the type may be null.

    Returns:
        TypeProto: The serialized wire type.

    Raises:
        UnsupportedFeatureError: If the type has no wire equivalent.
    """
    simple = _SIMPLE_KINDS_BY_NATIVE.get(data_type)
    if simple is not None:
        kind, proto_class = simple
        return TypeProto(**{kind: proto_class(nullability=_nullability(nullable))})
    return _serialize_user_defined_type(data_type, context, nullable)


def _serialize_user_defined_type(
    data_type: pa.DataType, context: SerdeContext, nullable: bool
) -> TypeProto:
    if context.extension_set.registry.get_type_id(data_type) is None:
        raise context.create_serde_error(
            UnsupportedFeatureError,
            f"Type {data_type} has no Substrait equivalent",
            type(data_type),
        )
    anchor = context.extension_set.encode_type(data_type)
    return TypeProto(
        user_defined=UserDefinedTypeProto(
            type_reference=anchor, nullability=_nullability(nullable)
        )
    )


def deserialize_type(
    type_proto: TypeProto, context: SerdeContext
) -> Tuple[pa.DataType, bool]:
    """Deserialize a wire type.

    This function determines which oneof field is set in the TypeProto
    and delegates to the appropriate deserialization helper function.

    Args:
        type_proto: The wire type to deserialize.
        context: The serde context for error reporting and path tracking.

    Returns:
        The native type and whether it is nullable.

    Raises:
        InvalidPlanError: If no kind is set.
        UnsupportedFeatureError: If the kind has no native equivalent.
    """
    which_oneof = type_proto.WhichOneof("kind")
    if which_oneof is None:
        raise context.create_serde_error(InvalidPlanError, "Type has no kind set", TypeProto)
    underlying_proto = getattr(type_proto, which_oneof)
    data_type = _deserialize_type_helper(underlying_proto, context)
    return data_type, _is_nullable(underlying_proto.nullability)


@singledispatch
def _deserialize_type_helper(underlying_proto: Message, context: SerdeContext) -> pa.DataType:
    """Deserialize a native type from the message set in the Type oneof.

    Raises:
        UnsupportedFeatureError: If the wire type kind is not registered.
    """
    raise context.create_serde_error(
        UnsupportedFeatureError,
        f"Deserialization not implemented for Substrait type {type(underlying_proto).__name__}",
        type(underlying_proto),
    )


def _register_simple_type(proto_class: type, native: pa.DataType) -> None:
    def _deserialize(underlying_proto: Message, context: SerdeContext) -> pa.DataType:
        return native

    _deserialize_type_helper.register(proto_class, _deserialize)


for _kind, _proto_class, _native in _SIMPLE_TYPES:
    _register_simple_type(_proto_class, _native)


# =============================================================================
# Timestamps and times
# =============================================================================


@serialize_type.register
def _serialize_timestamp_type(
    data_type: pa.TimestampType, context: SerdeContext, nullable: bool = True
) -> TypeProto:
    if data_type.unit != "us":
        raise context.create_serde_error(
            UnsupportedFeatureError,
            f"Only microsecond timestamps have a Substrait equivalent, got {data_type}",
            type(data_type),
        )
    if data_type.tz is None:
        return TypeProto(timestamp=TimestampTypeProto(nullability=_nullability(nullable)))
    if data_type.tz == "UTC":
        return TypeProto(timestamp_tz=TimestampTZTypeProto(nullability=_nullability(nullable)))
    raise context.create_serde_error(
        UnsupportedFeatureError,
        f"Only UTC timestamps with a time zone have a Substrait equivalent, got {data_type}",
        type(data_type),
    )


@_deserialize_type_helper.register
def _deserialize_timestamp_type(
    underlying_proto: TimestampTypeProto, context: SerdeContext
) -> pa.DataType:
    return pa.timestamp("us")


@_deserialize_type_helper.register
def _deserialize_timestamp_tz_type(
    underlying_proto: TimestampTZTypeProto, context: SerdeContext
) -> pa.DataType:
    return pa.timestamp("us", "UTC")


@serialize_type.register
def _serialize_time64_type(
    data_type: pa.Time64Type, context: SerdeContext, nullable: bool = True
) -> TypeProto:
    if data_type.unit != "us":
        raise context.create_serde_error(
            UnsupportedFeatureError,
            f"Only microsecond times have a Substrait equivalent, got {data_type}",
            type(data_type),
        )
    return TypeProto(time=TimeTypeProto(nullability=_nullability(nullable)))


@_deserialize_type_helper.register
def _deserialize_time_type(underlying_proto: TimeTypeProto, context: SerdeContext) -> pa.DataType:
    return pa.time64("us")


# =============================================================================
# Fixed binary and decimal
# =============================================================================


@serialize_type.register
def _serialize_fixed_size_binary_type(
    data_type: pa.FixedSizeBinaryType, context: SerdeContext, nullable: bool = True
) -> TypeProto:
    return TypeProto(
        fixed_binary=FixedBinaryTypeProto(
            length=data_type.byte_width, nullability=_nullability(nullable)
        )
    )


@_deserialize_type_helper.register
def _deserialize_fixed_binary_type(
    underlying_proto: FixedBinaryTypeProto, context: SerdeContext
) -> pa.DataType:
    return pa.binary(check_length(underlying_proto.length, "fixed_binary", FixedBinaryTypeProto, context))


@serialize_type.register
def _serialize_decimal_type(
    data_type: pa.Decimal128Type, context: SerdeContext, nullable: bool = True
) -> TypeProto:
    return TypeProto(
        decimal=DecimalTypeProto(
            precision=data_type.precision,
            scale=data_type.scale,
            nullability=_nullability(nullable),
        )
    )


@_deserialize_type_helper.register
def _deserialize_decimal_type(
    underlying_proto: DecimalTypeProto, context: SerdeContext
) -> pa.DataType:
    return check_decimal(underlying_proto.precision, underlying_proto.scale, DecimalTypeProto, context)


# =============================================================================
# Extension types
# =============================================================================


@serialize_type.register
def _serialize_extension_type(
    data_type: pa.BaseExtensionType, context: SerdeContext, nullable: bool = True
) -> TypeProto:
    nullability = _nullability(nullable)
    if isinstance(data_type, FixedCharType):
        return TypeProto(
            fixed_char=FixedCharTypeProto(length=data_type.length, nullability=nullability)
        )
    if isinstance(data_type, VarCharType):
        return TypeProto(varchar=VarCharTypeProto(length=data_type.length, nullability=nullability))
    if isinstance(data_type, IntervalYearType):
        return TypeProto(interval_year=IntervalYearTypeProto(nullability=nullability))
    if isinstance(data_type, IntervalDayType):
        return TypeProto(interval_day=IntervalDayTypeProto(nullability=nullability))
    if isinstance(data_type, UuidType):
        return TypeProto(uuid=UUIDTypeProto(nullability=nullability))
    return _serialize_user_defined_type(data_type, context, nullable)


@_deserialize_type_helper.register
def _deserialize_fixed_char_type(
    underlying_proto: FixedCharTypeProto, context: SerdeContext
) -> pa.DataType:
    return FixedCharType(check_length(underlying_proto.length, "fixed_char", FixedCharTypeProto, context))


@_deserialize_type_helper.register
def _deserialize_varchar_type(
    underlying_proto: VarCharTypeProto, context: SerdeContext
) -> pa.DataType:
    return VarCharType(check_length(underlying_proto.length, "varchar", VarCharTypeProto, context))


@_deserialize_type_helper.register
def _deserialize_interval_year_type(
    underlying_proto: IntervalYearTypeProto, context: SerdeContext
) -> pa.DataType:
    return IntervalYearType()


@_deserialize_type_helper.register
def _deserialize_interval_day_type(
    underlying_proto: IntervalDayTypeProto, context: SerdeContext
) -> pa.DataType:
    return IntervalDayType()


@_deserialize_type_helper.register
def _deserialize_uuid_type(underlying_proto: UUIDTypeProto, context: SerdeContext) -> pa.DataType:
    return UuidType()


@_deserialize_type_helper.register
def _deserialize_user_defined_type(
    underlying_proto: UserDefinedTypeProto, context: SerdeContext
) -> pa.DataType:
    return context.extension_set.decode_type(underlying_proto.type_reference).type


# =============================================================================
# Nested types
# =============================================================================


@serialize_type.register
def _serialize_struct_type(
    data_type: pa.StructType, context: SerdeContext, nullable: bool = True
) -> TypeProto:
    types = []
    with context.path_context(SerdeContext.TYPES):
        for i in range(data_type.num_fields):
            field = data_type.field(i)
            types.append(context.serialize_type(f"[{i}]", field.type, field.nullable))
    return TypeProto(struct=StructTypeProto(types=types, nullability=_nullability(nullable)))


@_deserialize_type_helper.register
def _deserialize_struct_type(
    underlying_proto: StructTypeProto, context: SerdeContext
) -> pa.DataType:
    return pa.struct(_deserialize_unnamed_fields(underlying_proto, context))


def _deserialize_unnamed_fields(
    struct_proto: StructTypeProto, context: SerdeContext
) -> List[pa.Field]:
    fields = []
    with context.path_context(SerdeContext.TYPES):
        for i, child_proto in enumerate(struct_proto.types):
            child_type, child_nullable = context.deserialize_type(f"[{i}]", child_proto)
            fields.append(pa.field("", child_type, nullable=child_nullable))
    return fields


@serialize_type.register
def _serialize_list_type(
    data_type: pa.ListType, context: SerdeContext, nullable: bool = True
) -> TypeProto:
    value_field = data_type.value_field
    element = context.serialize_type(SerdeContext.TYPE, value_field.type, value_field.nullable)
    return TypeProto(**{"list": ListTypeProto(type=element, nullability=_nullability(nullable))})


@_deserialize_type_helper.register
def _deserialize_list_type(underlying_proto: ListTypeProto, context: SerdeContext) -> pa.DataType:
    element_type, element_nullable = context.deserialize_type(SerdeContext.TYPE, underlying_proto.type)
    return pa.list_(pa.field("item", element_type, nullable=element_nullable))


@serialize_type.register
def _serialize_map_type(
    data_type: pa.MapType, context: SerdeContext, nullable: bool = True
) -> TypeProto:
    key = context.serialize_type("key", data_type.key_type, False)
    item_field = data_type.item_field
    value = context.serialize_type(SerdeContext.VALUE, item_field.type, item_field.nullable)
    return TypeProto(**{"map": MapTypeProto(key=key, value=value, nullability=_nullability(nullable))})


@_deserialize_type_helper.register
def _deserialize_map_type(underlying_proto: MapTypeProto, context: SerdeContext) -> pa.DataType:
    key_type, key_nullable = context.deserialize_type("key", underlying_proto.key)
    if key_nullable:
        raise context.create_serde_error(
            UnsupportedFeatureError, "Map keys must be declared non-nullable", MapTypeProto
        )
    value_type, value_nullable = context.deserialize_type(SerdeContext.VALUE, underlying_proto.value)
    return pa.map_(key_type, pa.field("value", value_type, nullable=value_nullable))


# =============================================================================
# Schemas
# =============================================================================


def serialize_schema(schema: pa.Schema, context: SerdeContext) -> NamedStructProto:
    """Serialize a schema as a named struct.

    Names are emitted depth-first, descending into struct fields only.

    Raises:
        InvalidPlanError: If the schema or any field at any depth carries metadata.
    """
    if schema.metadata:
        raise context.create_serde_error(
            InvalidPlanError, "Schema metadata has no Substrait equivalent", pa.Schema
        )
    names: List[str] = []
    types = []
    with context.path_context("struct"):
        with context.path_context(SerdeContext.TYPES):
            for i, field in enumerate(schema):
                with context.path_context(f"[{i}]"):
                    _check_no_metadata(field, context)
                _collect_names(field, names)
                types.append(context.serialize_type(f"[{i}]", field.type, field.nullable))
    return NamedStructProto(
        names=names,
        struct=StructTypeProto(
            types=types, nullability=NullabilityProto.NULLABILITY_REQUIRED
        ),
    )


def _nested_fields(data_type: pa.DataType) -> List[pa.Field]:
    if pa.types.is_struct(data_type):
        return [data_type.field(i) for i in range(data_type.num_fields)]
    if pa.types.is_map(data_type):
        return [data_type.key_field, data_type.item_field]
    if pa.types.is_list(data_type) or pa.types.is_large_list(data_type) or pa.types.is_fixed_size_list(data_type):
        return [data_type.value_field]
    return []


def _check_no_metadata(field: pa.Field, context: SerdeContext) -> None:
    if field.metadata:
        raise context.create_serde_error(
            InvalidPlanError,
            f"Metadata on field '{field.name}' has no Substrait equivalent",
            pa.Field,
        )
    for child in _nested_fields(field.type):
        _check_no_metadata(child, context)


def flatten_names(fields: Iterable[pa.Field]) -> List[str]:
    """Names of ``fields`` and their struct children, depth-first."""
    names: List[str] = []
    for field in fields:
        _collect_names(field, names)
    return names


def _collect_names(field: pa.Field, names: List[str]) -> None:
    names.append(field.name)
    if pa.types.is_struct(field.type):
        for i in range(field.type.num_fields):
            _collect_names(field.type.field(i), names)


def deserialize_schema(named_struct_proto: NamedStructProto, context: SerdeContext) -> pa.Schema:
    """Deserialize a named struct, zipping its depth-first names onto the type tree.

    Raises:
        InvalidPlanError: If there are fewer or more names than named fields.
    """
    with context.path_context("struct"):
        unnamed = _deserialize_unnamed_fields(named_struct_proto.struct, context)
    with context.path_context("names"):
        return pa.schema(name_fields(unnamed, named_struct_proto.names, context))


def name_fields(fields: List[pa.Field], names: Iterable[str], context: SerdeContext) -> List[pa.Field]:
    """Rename ``fields`` and their struct children from a depth-first list of names.

    Raises:
        InvalidPlanError: If there are fewer or more names than named fields.
    """
    names = iter(names)
    named = [_name_field(field, names, context) for field in fields]
    leftover = sum(1 for _ in names)
    if leftover:
        raise context.create_serde_error(
            InvalidPlanError,
            f"Got {leftover} more names than there are fields to name",
            NamedStructProto,
        )
    return named


def _name_field(field: pa.Field, names: Iterator[str], context: SerdeContext) -> pa.Field:
    name = next(names, None)
    if name is None:
        raise context.create_serde_error(
            InvalidPlanError, "Too few names for the fields to name", NamedStructProto
        )
    data_type = field.type
    if pa.types.is_struct(data_type):
        data_type = pa.struct(
            [_name_field(data_type.field(i), names, context) for i in range(data_type.num_fields)]
        )
    return pa.field(name, data_type, nullable=field.nullable)
